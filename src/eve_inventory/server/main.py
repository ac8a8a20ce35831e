"""MCP Server initialization and entry point."""

from fastmcp import FastMCP
from ..core import Services, load_config
from typing import Optional

# Initialize MCP Server
mcp = FastMCP("EVE Inventory")

# Services, initialized lazily
_services: Optional[Services] = None


def get_services() -> Services:
    """Get or create the server's Services instance.

    Returns:
        The Services built from the environment (and .env, if present).
    """
    global _services
    if not _services:
        _services = Services(load_config())
    return _services


def set_services(services: Optional[Services]) -> None:
    """Replace the server's Services instance (None resets to lazy creation)."""
    global _services
    _services = services
