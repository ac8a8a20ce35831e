"""EVE Inventory MCP Server."""

from .main import mcp, get_services, set_services

from . import auth_tools
from . import asset_tools
from . import character_tools

__all__ = ["mcp", "get_services", "set_services", "main"]


def main():
    """Entry point for the EVE Inventory MCP server."""
    mcp.run(show_banner=False)
