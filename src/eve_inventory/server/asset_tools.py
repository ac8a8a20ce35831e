"""Asset MCP tools for EVE Inventory."""

import logging
from datetime import datetime, timezone
from typing import List, Optional

import httpx

from .main import mcp, get_services
from ..core import Services
from ..sync.engine import Inventory
from ..sync.hierarchy import HierarchyNode
from ..utils.errors import EveInventoryError, UnauthenticatedError, format_error

logger = logging.getLogger(__name__)

# Cap on top-level items listed per location group.
MAX_ITEMS_PER_GROUP = 50


def _resolve_character(services: Services, character_id: Optional[int]) -> int:
    if character_id is not None:
        return character_id
    selected = services.credentials.get_selected()
    if selected is None:
        raise UnauthenticatedError("No character selected. Use `start_eve_auth` first.")
    return selected


def _format_time(timestamp: Optional[float]) -> str:
    if timestamp is None:
        return "never"
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%d %H:%M UTC")


def _format_node(inventory: Inventory, node: HierarchyNode, depth: int, lines: List[str]) -> None:
    record = node.record
    indent = "  " * depth
    slot = f"[{record.container_slot}] " if depth and record.container_slot else ""
    copy = " (copy)" if record.is_copy else ""
    lines.append(f"{indent}- {slot}{record.quantity} x {inventory.kind_name(record.kind_id)}{copy}")
    for child in node.children:
        _format_node(inventory, child, depth + 1, lines)


def format_inventory(inventory: Inventory) -> str:
    lines = [f"## Assets of character {inventory.identity_id}", ""]
    source = "cache" if inventory.from_cache else "ESI"
    lines.append(f"Last sync: {_format_time(inventory.synced_at)} (from {source})")
    if inventory.error:
        lines.append(f"**Warning:** sync failed, showing cached data: {inventory.error}")
    if not inventory.groups:
        lines.append("")
        lines.append("No assets found.")
        return "\n".join(lines)

    for group in inventory.groups:
        location = group.location
        security = f" [{location.security_class.value}]" if location.security_class else ""
        lines.append("")
        lines.append(f"### {location.describe()}{security} - {group.container_slot or 'unknown slot'}")
        for node in group.nodes[:MAX_ITEMS_PER_GROUP]:
            _format_node(inventory, node, 0, lines)
        hidden = len(group.nodes) - MAX_ITEMS_PER_GROUP
        if hidden > 0:
            lines.append(f"- ... and {hidden} more")

    if inventory.degraded_locations:
        lines.append("")
        lines.append(f"_{len(inventory.degraded_locations)} location(s) could not be resolved._")
    return "\n".join(lines)


async def _get_assets_impl(
    services: Services, character_id: Optional[int], force_refresh: bool
) -> str:
    action = "Refresh assets" if force_refresh else "Get assets"
    try:
        identity_id = _resolve_character(services, character_id)
        inventory = await services.sync.get_inventory(identity_id, force_refresh=force_refresh)
    except EveInventoryError as e:
        return format_error(action, e)
    except httpx.HTTPError as e:
        logger.error(f"{action} failed: {e}")
        return format_error(action, e)
    return format_inventory(inventory)


async def _search_assets_impl(
    services: Services, term: str, character_id: Optional[int]
) -> str:
    try:
        identity_id = _resolve_character(services, character_id)
        matches = await services.sync.search_records(identity_id, term)
    except (EveInventoryError, httpx.HTTPError) as e:
        return format_error("Search assets", e)

    if not matches:
        return f"No assets matching '{term}'."
    lines = [f"Found {len(matches)} asset(s) matching '{term}':", ""]
    for record, item_type in matches:
        lines.append(
            f"- {record.quantity} x {item_type.name} (type {record.kind_id}) "
            f"in {record.container_id} [{record.container_slot}]"
        )
    return "\n".join(lines)


async def _get_asset_stats_impl(services: Services, character_id: Optional[int]) -> str:
    try:
        identity_id = _resolve_character(services, character_id)
        stats = await services.sync.get_asset_stats(identity_id)
    except EveInventoryError as e:
        return format_error("Asset statistics", e)

    return "\n".join(
        [
            f"## Asset statistics for character {identity_id}",
            "",
            f"- Items: {stats.total_items}",
            f"- Unique types: {stats.unique_kinds}",
            f"- Locations: {stats.unique_locations}",
            f"- Total volume: {stats.total_volume:,.2f} m3",
            f"- Total mass: {stats.total_mass:,.0f} kg",
            f"- Last sync: {_format_time(stats.last_sync_time)}",
        ]
    )


async def _get_server_status_impl(services: Services) -> str:
    try:
        status = await services.esi.get_server_status()
    except (EveInventoryError, httpx.HTTPError) as e:
        return format_error("Server status", e)
    return (
        f"Tranquility is up: {status.get('players', 0)} players online, "
        f"server version {status.get('server_version', 'unknown')}"
    )


@mcp.tool()
async def get_assets(character_id: Optional[int] = None, force_refresh: bool = False) -> str:
    """
    Show a character's assets grouped by location, with fitted and contained
    items nested under their ship or container.

    Cached assets are used while they are less than 30 minutes old.

    Args:
        character_id: EVE character ID (default: the selected character).
        force_refresh: If True, fetch from ESI even if the cache is fresh.
    """
    return await _get_assets_impl(get_services(), character_id, force_refresh)


@mcp.tool()
async def refresh_assets(character_id: Optional[int] = None) -> str:
    """
    Fetch a character's assets from ESI now and show them.

    Args:
        character_id: EVE character ID (default: the selected character).
    """
    return await _get_assets_impl(get_services(), character_id, True)


@mcp.tool()
async def search_assets(term: str, character_id: Optional[int] = None) -> str:
    """
    Search a character's assets by item name, description or type ID.

    Args:
        term: Text to look for (case-insensitive).
        character_id: EVE character ID (default: the selected character).
    """
    return await _search_assets_impl(get_services(), term, character_id)


@mcp.tool()
async def get_asset_stats(character_id: Optional[int] = None) -> str:
    """
    Summarize a character's cached assets (count, types, locations, volume).

    Args:
        character_id: EVE character ID (default: the selected character).
    """
    return await _get_asset_stats_impl(get_services(), character_id)


@mcp.tool()
async def get_server_status() -> str:
    """Check whether the EVE Online server is up and how many players are online."""
    return await _get_server_status_impl(get_services())
