"""Character position MCP tools for EVE Inventory."""

import logging
from typing import Optional

import httpx

from .asset_tools import _resolve_character
from .main import mcp, get_services
from ..core import Services
from ..utils.errors import EveInventoryError, format_error

logger = logging.getLogger(__name__)


async def _get_character_location_impl(services: Services, character_id: Optional[int]) -> str:
    try:
        identity_id = _resolve_character(services, character_id)
        position = await services.sync.locate_character(identity_id)
    except (EveInventoryError, httpx.HTTPError) as e:
        return format_error("Character location", e)
    except (KeyError, TypeError, ValueError) as e:
        logger.error(f"Unexpected location payload: {e}")
        return format_error("Character location", e)

    location = position.location
    security = f" [{location.security_class.value}]" if location.security_class else ""
    state = "Docked at" if position.docked else "In space in"
    return f"{state} {location.describe()}{security}"


async def _get_character_ship_impl(services: Services, character_id: Optional[int]) -> str:
    try:
        identity_id = _resolve_character(services, character_id)
        ship = await services.sync.get_active_ship(identity_id)
    except (EveInventoryError, httpx.HTTPError) as e:
        return format_error("Active ship", e)
    except (KeyError, TypeError, ValueError) as e:
        logger.error(f"Unexpected ship payload: {e}")
        return format_error("Active ship", e)

    if ship.name == ship.kind.name:
        return f"Flying a {ship.kind.name} (type {ship.kind.type_id})"
    return f"Flying **{ship.name}**, a {ship.kind.name} (type {ship.kind.type_id})"


@mcp.tool()
async def get_character_location(character_id: Optional[int] = None) -> str:
    """
    Show where a character is: the station or structure it is docked in, or
    the solar system it is flying in.

    Args:
        character_id: EVE character ID (default: the selected character).
    """
    return await _get_character_location_impl(get_services(), character_id)


@mcp.tool()
async def get_character_ship(character_id: Optional[int] = None) -> str:
    """
    Show the ship a character is currently flying.

    Args:
        character_id: EVE character ID (default: the selected character).
    """
    return await _get_character_ship_impl(get_services(), character_id)
