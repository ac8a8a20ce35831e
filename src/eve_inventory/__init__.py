"""EVE Inventory - EVE Online asset browser and MCP server.

This package logs EVE Online characters in through EVE SSO (OAuth2 with PKCE),
keeps their tokens fresh, and synchronizes their assets from ESI into a local
cache grouped by location.
"""
from .core import AppConfig, Services, load_config

__version__ = "0.1.0"
__all__ = ["AppConfig", "Services", "load_config"]
