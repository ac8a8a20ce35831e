"""
ESI OAuth Scopes for EVE Inventory.

This module defines the SSO scopes required for inventory access.
"""

from typing import List

ASSETS_SCOPE = "esi-assets.read_assets.v1"
LOCATION_SCOPE = "esi-location.read_location.v1"
SHIP_TYPE_SCOPE = "esi-location.read_ship_type.v1"
STRUCTURES_SCOPE = "esi-universe.read_structures.v1"

# Combined scopes for EVE Inventory
SCOPES = [
    ASSETS_SCOPE,
    LOCATION_SCOPE,
    SHIP_TYPE_SCOPE,
    STRUCTURES_SCOPE,
]


def get_scopes() -> List[str]:
    """
    Get the list of SSO scopes required for EVE Inventory.

    Returns:
        List of unique scopes, in declaration order.
    """
    return list(dict.fromkeys(SCOPES))


def missing_scopes(granted: List[str], required: List[str]) -> List[str]:
    """Return the required scopes the provider did not grant."""
    granted_set = set(granted)
    return [scope for scope in required if scope not in granted_set]
