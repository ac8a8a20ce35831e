"""
Static reference data (SDE) for EVE Inventory.

Read-only lookups of item types, NPC stations, solar systems and regions by
numeric ID. SQLite exports of the SDE differ in column naming; rows are
normalized into one shape here so nothing downstream branches on variants.
"""

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional

import aiosqlite

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ItemType:
    type_id: int
    name: str
    description: Optional[str] = None
    group_id: Optional[int] = None
    volume: Optional[float] = None
    mass: Optional[float] = None


@dataclass(frozen=True)
class Station:
    station_id: int
    name: str
    system_id: int


@dataclass(frozen=True)
class SolarSystem:
    system_id: int
    name: str
    region_id: int
    security: float


@dataclass(frozen=True)
class Region:
    region_id: int
    name: str


class StaticDataSource(ABC):
    """Abstract read-only reference data lookup."""

    @abstractmethod
    async def get_type(self, type_id: int) -> Optional[ItemType]:
        pass

    @abstractmethod
    async def get_station(self, station_id: int) -> Optional[Station]:
        pass

    @abstractmethod
    async def get_system(self, system_id: int) -> Optional[SolarSystem]:
        pass

    @abstractmethod
    async def get_region(self, region_id: int) -> Optional[Region]:
        pass

    async def get_types(self, type_ids: Iterable[int]) -> Dict[int, ItemType]:
        """Look up several types, skipping unknown IDs."""
        found = {}
        for type_id in set(type_ids):
            item_type = await self.get_type(type_id)
            if item_type is not None:
                found[type_id] = item_type
        return found

    async def close(self) -> None:
        pass


class InMemoryStaticData(StaticDataSource):
    """Mapping-backed reference data, used in tests and when no SDE file exists."""

    def __init__(
        self,
        types: Optional[Iterable[ItemType]] = None,
        stations: Optional[Iterable[Station]] = None,
        systems: Optional[Iterable[SolarSystem]] = None,
        regions: Optional[Iterable[Region]] = None,
    ) -> None:
        self.types: Dict[int, ItemType] = {t.type_id: t for t in types or []}
        self.stations: Dict[int, Station] = {s.station_id: s for s in stations or []}
        self.systems: Dict[int, SolarSystem] = {s.system_id: s for s in systems or []}
        self.regions: Dict[int, Region] = {r.region_id: r for r in regions or []}

    async def get_type(self, type_id: int) -> Optional[ItemType]:
        return self.types.get(type_id)

    async def get_station(self, station_id: int) -> Optional[Station]:
        return self.stations.get(station_id)

    async def get_system(self, system_id: int) -> Optional[SolarSystem]:
        return self.systems.get(system_id)

    async def get_region(self, region_id: int) -> Optional[Region]:
        return self.regions.get(region_id)


def _pick(row: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        if name in row and row[name] is not None:
            return row[name]
    return None


def _optional_float(value: Any) -> Optional[float]:
    return float(value) if value is not None else None


def _optional_int(value: Any) -> Optional[int]:
    return int(value) if value is not None else None


class SqliteStaticData(StaticDataSource):
    """
    Reference data read from an SDE SQLite export.

    All access is non-blocking via aiosqlite, with one read-only connection
    per query.
    """

    def __init__(self, db_path: str) -> None:
        """
        Raises:
            FileNotFoundError: If ``db_path`` does not exist.
        """
        if not os.path.exists(db_path):
            raise FileNotFoundError(f"Static data file not found: {db_path}")
        self.db_path = db_path
        logger.info(f"Static data loaded from {db_path}")

    def _connect(self) -> aiosqlite.Connection:
        return aiosqlite.connect(f"file:{self.db_path}?mode=ro", uri=True)

    async def _query(self, sql: str, params: tuple = ()) -> List[Dict[str, Any]]:
        try:
            async with self._connect() as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(sql, params)
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            logger.error(f"Static data query failed ({params}): {e}")
            return []
        return [dict(row) for row in rows]

    async def _query_one(self, sql: str, key: int) -> Optional[Dict[str, Any]]:
        rows = await self._query(sql, (key,))
        return rows[0] if rows else None

    @staticmethod
    def _normalize_type(row: Mapping[str, Any]) -> ItemType:
        type_id = int(_pick(row, "typeID", "type_id", "id"))
        return ItemType(
            type_id=type_id,
            name=_pick(row, "typeName", "name", "itemName") or f"Type {type_id}",
            description=_pick(row, "description", "desc"),
            group_id=_optional_int(_pick(row, "groupID", "group_id")),
            volume=_optional_float(_pick(row, "volume")),
            mass=_optional_float(_pick(row, "mass")),
        )

    async def get_type(self, type_id: int) -> Optional[ItemType]:
        row = await self._query_one("SELECT * FROM invTypes WHERE typeID = ?", type_id)
        return self._normalize_type(row) if row else None

    async def get_types(self, type_ids: Iterable[int]) -> Dict[int, ItemType]:
        wanted = sorted(set(type_ids))
        if not wanted:
            return {}
        placeholders = ", ".join("?" for _ in wanted)
        rows = await self._query(
            f"SELECT * FROM invTypes WHERE typeID IN ({placeholders})", tuple(wanted)
        )
        types = (self._normalize_type(row) for row in rows)
        return {item_type.type_id: item_type for item_type in types}

    async def get_station(self, station_id: int) -> Optional[Station]:
        row = await self._query_one("SELECT * FROM staStations WHERE stationID = ?", station_id)
        if not row:
            return None
        return Station(
            station_id=int(row["stationID"]),
            name=_pick(row, "stationName", "name") or f"Station {station_id}",
            system_id=int(_pick(row, "solarSystemID", "solar_system_id")),
        )

    async def get_system(self, system_id: int) -> Optional[SolarSystem]:
        row = await self._query_one(
            "SELECT * FROM mapSolarSystems WHERE solarSystemID = ?", system_id
        )
        if not row:
            return None
        return SolarSystem(
            system_id=int(row["solarSystemID"]),
            name=_pick(row, "solarSystemName", "name") or f"System {system_id}",
            region_id=int(_pick(row, "regionID", "region_id")),
            security=float(_pick(row, "security", "securityStatus") or 0.0),
        )

    async def get_region(self, region_id: int) -> Optional[Region]:
        row = await self._query_one("SELECT * FROM mapRegions WHERE regionID = ?", region_id)
        if not row:
            return None
        return Region(
            region_id=int(row["regionID"]),
            name=_pick(row, "regionName", "name") or f"Region {region_id}",
        )
