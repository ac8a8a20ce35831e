"""
Synchronization engine.

Decides between serving a character's cached assets and fetching them from
ESI, replaces the cache wholesale after a successful fetch, and assembles the
resolved, location-grouped inventory view.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import httpx

from .hierarchy import HierarchyNode, build_hierarchy
from .locations import LocationResolver
from .models import RemoteRecord, ResolvedLocation
from ..auth.credential_store import CredentialStore
from ..auth.scopes import STRUCTURES_SCOPE
from ..client.esi_client import EsiClient
from ..storage.record_store import RecordRepository, RecordSnapshot
from ..storage.static_data import ItemType, StaticDataSource
from ..utils.constants import DEFAULT_CACHE_FRESHNESS
from ..utils.errors import EveInventoryError

logger = logging.getLogger(__name__)

# Failures that a cached record set can stand in for.
FETCH_ERRORS = (EveInventoryError, httpx.HTTPError)


@dataclass
class SyncResult:
    """Outcome of ``get_records``."""

    records: List[RemoteRecord]
    synced_at: Optional[float]
    from_cache: bool
    error: Optional[str] = None

    @property
    def is_stale_fallback(self) -> bool:
        return self.from_cache and self.error is not None


@dataclass
class InventoryGroup:
    location: ResolvedLocation
    container_slot: str
    nodes: List[HierarchyNode]


@dataclass
class Inventory:
    """Resolved inventory of one character."""

    identity_id: int
    groups: List[InventoryGroup]
    kinds: Dict[int, ItemType]
    synced_at: Optional[float]
    from_cache: bool
    error: Optional[str] = None
    degraded_locations: Dict[int, str] = field(default_factory=dict)

    def kind_name(self, kind_id: int) -> str:
        item_type = self.kinds.get(kind_id)
        return item_type.name if item_type else f"Type {kind_id}"


@dataclass(frozen=True)
class CharacterLocation:
    identity_id: int
    location: ResolvedLocation
    docked: bool


@dataclass(frozen=True)
class ActiveShip:
    identity_id: int
    item_id: Optional[int]
    name: str
    kind: ItemType


@dataclass(frozen=True)
class AssetStats:
    total_items: int
    unique_kinds: int
    unique_locations: int
    last_sync_time: Optional[float]
    total_volume: float
    total_mass: float


class SyncEngine:
    """Fetch-or-cache orchestration and inventory assembly."""

    def __init__(
        self,
        client: EsiClient,
        records: RecordRepository,
        static_data: StaticDataSource,
        credentials: CredentialStore,
        freshness_seconds: float = DEFAULT_CACHE_FRESHNESS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.client = client
        self.records = records
        self.static_data = static_data
        self.credentials = credentials
        self.freshness_seconds = freshness_seconds
        self.clock = clock
        self._remote_kinds: Dict[int, ItemType] = {}

    def is_fresh(self, snapshot: RecordSnapshot) -> bool:
        return self.clock() - snapshot.synced_at <= self.freshness_seconds

    async def get_records(self, identity_id: int, force_refresh: bool = False) -> SyncResult:
        """
        Get a character's records, from cache when fresh enough.

        A successful fetch replaces the whole cached set. If fetching fails
        and a cached set exists it is returned instead, with ``error`` set.

        Raises:
            EveInventoryError, httpx.HTTPError: If fetching failed and
                nothing is cached.
        """
        snapshot = self.records.load_records(identity_id)
        if not force_refresh and snapshot is not None and self.is_fresh(snapshot):
            logger.debug(f"Serving fresh cached assets for character {identity_id}")
            return SyncResult(records=snapshot.records, synced_at=snapshot.synced_at, from_cache=True)

        try:
            fetched = await self.client.get_character_assets(identity_id)
        except FETCH_ERRORS as e:
            if snapshot is None:
                logger.error(f"Asset sync failed for character {identity_id} with no cache: {e}")
                raise
            logger.warning(f"Asset sync failed for character {identity_id}, serving cache: {e}")
            return SyncResult(
                records=snapshot.records,
                synced_at=snapshot.synced_at,
                from_cache=True,
                error=str(e),
            )

        synced_at = self.clock()
        self.records.replace_records(identity_id, fetched, synced_at)
        return SyncResult(records=fetched, synced_at=synced_at, from_cache=False)

    def _structure_lookup_for(self, identity_id: int):
        """
        Build a structure lookup preferring ``identity_id``, then any other
        stored character holding the structures scope.
        """
        candidates = [identity_id] + [
            summary.identity_id
            for summary in self.credentials.list_all()
            if summary.identity_id != identity_id
            and STRUCTURES_SCOPE in summary.granted_permissions
        ]

        async def lookup(structure_id: int) -> dict:
            last_error: Optional[Exception] = None
            for candidate in candidates:
                try:
                    return await self.client.get_structure_info(candidate, structure_id)
                except FETCH_ERRORS as e:
                    logger.debug(f"Structure {structure_id} lookup via {candidate} failed: {e}")
                    last_error = e
            raise last_error or EveInventoryError(f"No character can look up structure {structure_id}")

        return lookup

    def _resolver_for(self, identity_id: int) -> LocationResolver:
        return LocationResolver(
            self.static_data,
            structure_lookup=self._structure_lookup_for(identity_id),
            universe=self.client,
        )

    async def describe_kinds(self, kind_ids: Iterable[int], fetch_missing: bool = True) -> Dict[int, ItemType]:
        """
        Reference data for each kind ID.

        Kinds missing from static data are fetched from ESI once and
        remembered; kinds that cannot be described get a "Type <id>"
        placeholder.
        """
        wanted = set(kind_ids)
        kinds = await self.static_data.get_types(wanted)
        for kind_id in sorted(wanted - set(kinds)):
            known = self._remote_kinds.get(kind_id)
            if known is None and fetch_missing:
                try:
                    info = await self.client.get_type_info(kind_id)
                    known = ItemType(
                        type_id=kind_id,
                        name=info.get("name") or f"Type {kind_id}",
                        description=info.get("description"),
                        group_id=info.get("group_id"),
                        volume=info.get("volume"),
                        mass=info.get("mass"),
                    )
                    self._remote_kinds[kind_id] = known
                except FETCH_ERRORS as e:
                    logger.warning(f"Could not look up type {kind_id}: {e}")
            kinds[kind_id] = known or ItemType(type_id=kind_id, name=f"Type {kind_id}")
        return kinds

    async def get_inventory(self, identity_id: int, force_refresh: bool = False) -> Inventory:
        """Get the location-grouped, resolved inventory of a character."""
        result = await self.get_records(identity_id, force_refresh=force_refresh)
        hierarchy = build_hierarchy(result.records)

        resolver = self._resolver_for(identity_id)
        locations = await resolver.resolve_many(hierarchy.location_ids())
        kinds = await self.describe_kinds(record.kind_id for record in result.records)

        groups = [
            InventoryGroup(
                location=locations[group.location_id],
                container_slot=group.container_slot,
                nodes=group.nodes,
            )
            for group in hierarchy.groups
        ]
        logger.info(
            f"Resolved {len(result.records)} assets in {len(locations)} locations "
            f"for character {identity_id}"
        )
        return Inventory(
            identity_id=identity_id,
            groups=groups,
            kinds=kinds,
            synced_at=result.synced_at,
            from_cache=result.from_cache,
            error=result.error,
            degraded_locations=dict(resolver.degraded),
        )

    async def locate_character(self, identity_id: int) -> CharacterLocation:
        """
        Where a character is right now: docked station or structure, else
        the solar system it is flying in.
        """
        info = await self.client.get_character_location(identity_id)
        docked_at = info.get("station_id") or info.get("structure_id")
        resolver = self._resolver_for(identity_id)
        location = await resolver.resolve(docked_at or info["solar_system_id"])
        return CharacterLocation(identity_id, location, docked=docked_at is not None)

    async def get_active_ship(self, identity_id: int) -> ActiveShip:
        """The ship a character is currently boarded in."""
        info = await self.client.get_character_ship(identity_id)
        kind_id = int(info["ship_type_id"])
        kinds = await self.describe_kinds([kind_id])
        return ActiveShip(
            identity_id=identity_id,
            item_id=info.get("ship_item_id"),
            name=info.get("ship_name") or kinds[kind_id].name,
            kind=kinds[kind_id],
        )

    async def search_records(self, identity_id: int, term: str) -> List[Tuple[RemoteRecord, ItemType]]:
        """Records whose kind name or description contains ``term``, or whose kind ID does."""
        needle = term.strip().lower()
        if not needle:
            return []
        result = await self.get_records(identity_id)
        kinds = await self.describe_kinds(record.kind_id for record in result.records)

        matches = []
        for record in result.records:
            item_type = kinds[record.kind_id]
            if (
                needle in item_type.name.lower()
                or needle in (item_type.description or "").lower()
                or needle in str(record.kind_id)
            ):
                matches.append((record, item_type))
        return matches

    async def get_asset_stats(self, identity_id: int) -> AssetStats:
        """Summary of the cached record set. Never fetches assets."""
        snapshot = self.records.load_records(identity_id)
        if snapshot is None or not snapshot.records:
            return AssetStats(0, 0, 0, snapshot.synced_at if snapshot else None, 0.0, 0.0)

        records = snapshot.records
        kinds = await self.describe_kinds((r.kind_id for r in records), fetch_missing=False)
        total_volume = sum(r.quantity * (kinds[r.kind_id].volume or 0.0) for r in records)
        total_mass = sum(r.quantity * (kinds[r.kind_id].mass or 0.0) for r in records)
        return AssetStats(
            total_items=len(records),
            unique_kinds=len({r.kind_id for r in records}),
            unique_locations=len({(r.container_id, r.container_slot) for r in records}),
            last_sync_time=snapshot.synced_at,
            total_volume=total_volume,
            total_mass=total_mass,
        )
