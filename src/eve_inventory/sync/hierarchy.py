"""
Containment hierarchy reconstruction.

A record's ``container_id`` is either a location or the ``record_id`` of
another record in the same set (a module fitted to a ship, an item in a
container). Which one it is gets decided here, structurally, by looking the
ID up in the set itself. Pure functions, no I/O.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from .models import RemoteRecord

logger = logging.getLogger(__name__)


@dataclass
class HierarchyNode:
    """A record and the records contained in it."""

    record: RemoteRecord
    parent_id: Optional[int] = None
    children: List["HierarchyNode"] = field(default_factory=list)

    @property
    def is_contained(self) -> bool:
        return self.parent_id is not None

    def walk(self) -> Iterable["HierarchyNode"]:
        """This node and all its descendants, depth first."""
        yield self
        for child in self.children:
            yield from child.walk()


@dataclass
class LocationGroup:
    """Top-level records sharing one raw location and placement slot."""

    location_id: int
    container_slot: str
    nodes: List[HierarchyNode] = field(default_factory=list)

    @property
    def key(self) -> str:
        return f"{self.location_id}-{self.container_slot}"

    def item_count(self) -> int:
        return sum(1 for node in self.nodes for _ in node.walk())


@dataclass
class Hierarchy:
    groups: List[LocationGroup]
    nodes: Dict[int, HierarchyNode]

    @property
    def roots(self) -> List[HierarchyNode]:
        return [node for group in self.groups for node in group.nodes]

    def location_ids(self) -> List[int]:
        """Distinct raw location IDs of the top-level groups, in first-seen order."""
        seen: Dict[int, None] = {}
        for group in self.groups:
            seen.setdefault(group.location_id, None)
        return list(seen)

    def is_contained(self, record_id: int) -> bool:
        node = self.nodes.get(record_id)
        return node is not None and node.is_contained

    def root_location_of(self, record_id: int) -> Optional[int]:
        """The raw location of the outermost record containing ``record_id``."""
        node = self.nodes.get(record_id)
        if node is None:
            return None
        seen = set()
        while node.parent_id is not None and node.record.record_id not in seen:
            seen.add(node.record.record_id)
            node = self.nodes[node.parent_id]
        return node.record.container_id


def find_parent_id(record: RemoteRecord, by_id: Dict[int, RemoteRecord]) -> Optional[int]:
    """
    Return the ``record_id`` of the record containing ``record``, if any.

    A record is never its own parent; a self-referencing ``container_id`` is
    treated as a location.
    """
    if record.container_id == record.record_id:
        logger.warning(f"Record {record.record_id} references itself as container")
        return None
    if record.container_id in by_id:
        return record.container_id
    return None


def build_hierarchy(records: Iterable[RemoteRecord]) -> Hierarchy:
    """
    Group one character's records by location, nesting contained records
    under their parents.

    Every record appears exactly once in the result. Records caught in a
    containment cycle (which upstream should never produce) are detached from
    their parent and listed as top-level items at their raw location.
    """
    ordered = list(records)
    by_id: Dict[int, RemoteRecord] = {}
    for record in ordered:
        if record.record_id in by_id:
            logger.warning(f"Duplicate record {record.record_id}; keeping the last one")
        by_id[record.record_id] = record

    nodes: Dict[int, HierarchyNode] = {
        record_id: HierarchyNode(record=record) for record_id, record in by_id.items()
    }
    roots: List[HierarchyNode] = []
    for node in nodes.values():
        node.parent_id = find_parent_id(node.record, by_id)
        if node.parent_id is None:
            roots.append(node)
        else:
            nodes[node.parent_id].children.append(node)

    visited = set()

    def mark(node: HierarchyNode) -> None:
        for descendant in node.walk():
            visited.add(descendant.record.record_id)

    for root in roots:
        mark(root)

    # Whatever is left is only reachable through a cycle.
    for record_id, node in nodes.items():
        if record_id in visited:
            continue
        logger.warning(f"Record {record_id} is part of a containment cycle; listing standalone")
        nodes[node.parent_id].children.remove(node)
        node.parent_id = None
        roots.append(node)
        mark(node)

    groups: Dict[Tuple[int, str], LocationGroup] = {}
    for root in roots:
        key = (root.record.container_id, root.record.container_slot)
        group = groups.get(key)
        if group is None:
            group = groups[key] = LocationGroup(
                location_id=root.record.container_id,
                container_slot=root.record.container_slot,
            )
        group.nodes.append(root)

    return Hierarchy(groups=list(groups.values()), nodes=nodes)
