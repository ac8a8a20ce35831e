"""Authentication MCP tools for EVE Inventory."""

import logging
from datetime import datetime

from .main import mcp, get_services
from ..core import Services
from ..utils.errors import EveInventoryError, format_error

logger = logging.getLogger(__name__)


def _format_expiry(expiry: datetime) -> str:
    return expiry.strftime("%Y-%m-%d %H:%M UTC")


async def _start_eve_auth_impl(services: Services) -> str:
    try:
        credential = await services.authenticate()
    except EveInventoryError as e:
        return f"**Authentication Error:** {format_error('EVE SSO login', e)}"
    except OSError as e:
        logger.error(f"Callback listener could not start: {e}")
        return f"**Error:** Callback listener unavailable: {e}"

    scopes = ", ".join(credential.granted_permissions) or "none"
    return (
        f"Authenticated **{credential.display_name}** ({credential.identity_id}).\n"
        f"Granted scopes: {scopes}"
    )


def _list_characters_impl(services: Services) -> str:
    summaries = services.credentials.list_all()
    if not summaries:
        return "No characters authenticated. Use `start_eve_auth` to add one."

    selected = services.credentials.get_selected()
    lines = ["## Characters", ""]
    for summary in summaries:
        marker = " (selected)" if summary.identity_id == selected else ""
        expired = services.credentials.is_expired(summary.identity_id)
        token_state = "refresh due" if expired else f"valid until {_format_expiry(summary.access_expiry)}"
        lines.append(
            f"- **{summary.display_name}** `{summary.identity_id}`{marker}: "
            f"{token_state}, {len(summary.granted_permissions)} scopes"
        )
    return "\n".join(lines)


def _select_character_impl(services: Services, character_id: int) -> str:
    credential = services.credentials.get(character_id)
    if credential is None:
        return f"Select character failed: character {character_id} is not authenticated"
    services.credentials.set_selected(character_id)
    return f"Selected **{credential.display_name}** ({character_id})"


def _remove_character_impl(services: Services, character_id: int) -> str:
    credential = services.credentials.get(character_id)
    if credential is None:
        return f"Remove character failed: character {character_id} is not authenticated"
    services.credentials.remove(character_id)
    services.records.delete_records(character_id)

    selected = services.credentials.get_selected()
    suffix = f" Selected character is now {selected}." if selected else ""
    return f"Removed **{credential.display_name}** ({character_id}).{suffix}"


@mcp.tool()
async def start_eve_auth() -> str:
    """
    Log in an EVE Online character through EVE SSO.

    Opens the SSO page in the default browser and waits (up to the configured
    timeout) for the login to complete. The character is stored and, if it is
    the first one, selected.

    Returns:
        The authenticated character and its granted scopes, or an error message.
    """
    return await _start_eve_auth_impl(get_services())


@mcp.tool()
def list_characters() -> str:
    """List authenticated characters and their token state."""
    return _list_characters_impl(get_services())


@mcp.tool()
def select_character(character_id: int) -> str:
    """
    Make a character the default for asset tools.

    Args:
        character_id: The EVE character ID.
    """
    return _select_character_impl(get_services(), character_id)


@mcp.tool()
def remove_character(character_id: int) -> str:
    """
    Remove a character's stored tokens and cached assets.

    Args:
        character_id: The EVE character ID.
    """
    return _remove_character_impl(get_services(), character_id)
