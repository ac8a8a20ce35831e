"""Local persistence: record snapshots and static reference data."""
from .record_store import LocalDirectoryRecordStore, RecordRepository, RecordSnapshot
from .static_data import (
    InMemoryStaticData,
    ItemType,
    Region,
    SolarSystem,
    SqliteStaticData,
    StaticDataSource,
    Station,
)

__all__ = [
    "RecordRepository",
    "RecordSnapshot",
    "LocalDirectoryRecordStore",
    "StaticDataSource",
    "InMemoryStaticData",
    "SqliteStaticData",
    "ItemType",
    "Station",
    "SolarSystem",
    "Region",
]
