"""
Location resolution.

Turns raw numeric location IDs into named places with their solar system,
region and security class. NPC stations and solar systems come from static
data, falling back to public ESI universe lookups for IDs the static data
lacks; player structures need an authenticated ESI lookup. Any remote lookup
may fail per location without failing the pass.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Tuple

import httpx

from .models import LocationKind, RegionRef, ResolvedLocation, SystemRef
from ..storage.static_data import StaticDataSource
from ..utils.constants import NPC_STATION_ID_RANGE, PLAYER_STRUCTURE_ID_MIN, SOLAR_SYSTEM_ID_RANGE
from ..utils.errors import EveInventoryError, ResolutionDegradedError

logger = logging.getLogger(__name__)

StructureLookup = Callable[[int], Awaitable[Dict[str, Any]]]

# Failures a remote lookup may raise for a single location.
LOOKUP_ERRORS = (EveInventoryError, httpx.HTTPError, AttributeError, KeyError, ValueError, TypeError)


def is_player_structure(location_id: int) -> bool:
    """True if the ID lies in ESI's player-structure range."""
    return location_id >= PLAYER_STRUCTURE_ID_MIN


def is_npc_station(location_id: int) -> bool:
    start, end = NPC_STATION_ID_RANGE
    return start <= location_id < end


def is_solar_system(location_id: int) -> bool:
    start, end = SOLAR_SYSTEM_ID_RANGE
    return start <= location_id < end


class LocationResolver:
    """
    Resolves location IDs for one synchronization pass.

    Remote results (placeholders included) are cached on the instance, so
    build a new resolver per pass and never share one between characters.
    """

    def __init__(
        self,
        static_data: StaticDataSource,
        structure_lookup: Optional[StructureLookup] = None,
        is_structure: Callable[[int], bool] = is_player_structure,
        universe: Optional[Any] = None,
    ) -> None:
        """
        Args:
            static_data: Reference data for stations, systems and regions.
            structure_lookup: Coroutine returning ESI structure info
                (``name``, ``solar_system_id``) for a structure ID. Without it
                every structure resolves to a placeholder.
            is_structure: Predicate deciding whether an ID is a player structure.
            universe: Client with ``get_station_info`` and ``get_system_info``
                coroutines, consulted for stations and systems missing from
                static data. Usually the EsiClient.
        """
        self.static_data = static_data
        self.structure_lookup = structure_lookup
        self.is_structure = is_structure
        self.universe = universe
        self._structure_cache: Dict[int, ResolvedLocation] = {}
        self._remote_cache: Dict[Tuple[str, int], Optional[Dict[str, Any]]] = {}
        self.degraded: Dict[int, str] = {}

    def _degrade(self, error: ResolutionDegradedError) -> None:
        logger.warning(error.message)
        self.degraded[error.location_id] = error.message

    async def _remote(self, kind: str, location_id: int) -> Optional[Dict[str, Any]]:
        """Public universe lookup of a station or system, once per pass."""
        key = (kind, location_id)
        if key in self._remote_cache:
            return self._remote_cache[key]

        info = None
        if self.universe is not None:
            fetch = self.universe.get_station_info if kind == "station" else self.universe.get_system_info
            try:
                info = await fetch(location_id)
                if not isinstance(info, dict):
                    raise TypeError(f"unexpected {kind} payload")
            except LOOKUP_ERRORS as e:
                self._degrade(ResolutionDegradedError(location_id, str(e)))
                info = None
        self._remote_cache[key] = info
        return info

    async def _system_refs(self, system_id: Optional[int]) -> Tuple[Optional[SystemRef], Optional[RegionRef]]:
        if system_id is None:
            return None, None
        system = await self.static_data.get_system(system_id)
        if system is None:
            info = await self._remote("system", system_id)
            if info is None:
                return None, None
            return (
                SystemRef(
                    id=system_id,
                    name=info.get("name") or f"System {system_id}",
                    security=float(info.get("security_status") or 0.0),
                ),
                None,
            )
        region = await self.static_data.get_region(system.region_id)
        return (
            SystemRef(id=system.system_id, name=system.name, security=system.security),
            RegionRef(id=region.region_id, name=region.name) if region else None,
        )

    async def _resolve_structure(self, location_id: int) -> ResolvedLocation:
        cached = self._structure_cache.get(location_id)
        if cached is not None:
            return cached

        placeholder = ResolvedLocation(
            location_id=location_id,
            display_name=f"Structure {location_id}",
            location_kind=LocationKind.PLAYER_STRUCTURE,
        )
        if self.structure_lookup is None:
            self._degrade(ResolutionDegradedError(location_id, "no authenticated character available"))
            resolved = placeholder
        else:
            try:
                info = await self.structure_lookup(location_id)
                system, region = await self._system_refs(info.get("solar_system_id"))
                resolved = ResolvedLocation(
                    location_id=location_id,
                    display_name=info.get("name") or placeholder.display_name,
                    location_kind=LocationKind.PLAYER_STRUCTURE,
                    system=system,
                    region=region,
                )
            except LOOKUP_ERRORS as e:
                self._degrade(ResolutionDegradedError(location_id, str(e)))
                resolved = placeholder

        self._structure_cache[location_id] = resolved
        return resolved

    async def _station(self, location_id: int) -> Optional[ResolvedLocation]:
        station = await self.static_data.get_station(location_id)
        if station is not None:
            name, system_id = station.name, station.system_id
        elif is_npc_station(location_id):
            info = await self._remote("station", location_id)
            if info is None:
                return None
            name = info.get("name") or f"Station {location_id}"
            system_id = info.get("system_id")
        else:
            return None

        system, region = await self._system_refs(system_id)
        return ResolvedLocation(
            location_id=location_id,
            display_name=name,
            location_kind=LocationKind.FIXED_STATION,
            system=system,
            region=region,
        )

    async def _system(self, location_id: int) -> Optional[ResolvedLocation]:
        known = await self.static_data.get_system(location_id)
        if known is None and not (is_solar_system(location_id) and self.universe is not None):
            return None
        system, region = await self._system_refs(location_id)
        if system is None:
            return None
        return ResolvedLocation(
            location_id=location_id,
            display_name=system.name,
            location_kind=LocationKind.STAR_SYSTEM,
            system=system,
            region=region,
        )

    async def resolve(self, location_id: int) -> ResolvedLocation:
        """
        Resolve one location ID.

        Tries NPC station, then solar system, then player structure. IDs
        matching none resolve to an ``unknown`` location named "Location <id>".
        """
        station = await self._station(location_id)
        if station is not None:
            return station

        system = await self._system(location_id)
        if system is not None:
            return system

        if self.is_structure(location_id):
            return await self._resolve_structure(location_id)

        return ResolvedLocation(
            location_id=location_id,
            display_name=f"Location {location_id}",
            location_kind=LocationKind.UNKNOWN,
        )

    async def resolve_many(self, location_ids: Iterable[int]) -> Dict[int, ResolvedLocation]:
        """
        Resolve a batch of location IDs.

        A location that fails to resolve gets a placeholder; the rest of the
        batch is unaffected.
        """
        resolved: Dict[int, ResolvedLocation] = {}
        for location_id in location_ids:
            if location_id in resolved:
                continue
            try:
                resolved[location_id] = await self.resolve(location_id)
            except (EveInventoryError, LookupError, ValueError, TypeError) as e:
                self._degrade(ResolutionDegradedError(location_id, str(e)))
                resolved[location_id] = ResolvedLocation(
                    location_id=location_id,
                    display_name=f"Location {location_id}",
                    location_kind=LocationKind.UNKNOWN,
                )
        return resolved
