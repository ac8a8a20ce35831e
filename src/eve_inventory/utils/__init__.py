"""Shared helpers for EVE Inventory."""
