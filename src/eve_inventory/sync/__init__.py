"""Asset synchronization: canonical models, containment and location resolution.

The engine and resolver are imported from their modules directly
(``eve_inventory.sync.engine``, ``eve_inventory.sync.locations``).
"""
from .models import (
    LocationKind,
    RegionRef,
    RemoteRecord,
    ResolvedLocation,
    SecurityClass,
    SystemRef,
    classify_security,
)
from .hierarchy import Hierarchy, HierarchyNode, LocationGroup, build_hierarchy

__all__ = [
    "LocationKind",
    "SecurityClass",
    "classify_security",
    "SystemRef",
    "RegionRef",
    "ResolvedLocation",
    "RemoteRecord",
    "Hierarchy",
    "HierarchyNode",
    "LocationGroup",
    "build_hierarchy",
]
