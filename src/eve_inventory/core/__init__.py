"""
Core package for EVE Inventory.

This package provides configuration and service construction.
"""

from .config import AppConfig, load_config
from .services import Services

__all__ = [
    "AppConfig",
    "load_config",
    "Services",
]
