"""Canonical record and location models."""

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict, Optional

from ..utils.constants import HIGH_SEC_THRESHOLD, NULL_SEC_THRESHOLD


class LocationKind(str, Enum):
    FIXED_STATION = "station"
    STAR_SYSTEM = "solar_system"
    PLAYER_STRUCTURE = "structure"
    UNKNOWN = "unknown"


class SecurityClass(str, Enum):
    HIGH = "high-sec"
    LOW = "low-sec"
    NULL = "null-sec"


def classify_security(security: float) -> SecurityClass:
    """Map a system security value to its classification tier."""
    if security >= HIGH_SEC_THRESHOLD:
        return SecurityClass.HIGH
    if security > NULL_SEC_THRESHOLD:
        return SecurityClass.LOW
    return SecurityClass.NULL


@dataclass(frozen=True)
class SystemRef:
    id: int
    name: str
    security: float

    @property
    def security_class(self) -> SecurityClass:
        return classify_security(self.security)


@dataclass(frozen=True)
class RegionRef:
    id: int
    name: str


@dataclass(frozen=True)
class ResolvedLocation:
    """Human-readable form of a raw location ID."""

    location_id: int
    display_name: str
    location_kind: LocationKind
    system: Optional[SystemRef] = None
    region: Optional[RegionRef] = None

    @property
    def security_class(self) -> Optional[SecurityClass]:
        return self.system.security_class if self.system else None

    def describe(self) -> str:
        """One-line label, e.g. ``Jita IV - Moon 4 (Jita 0.9 - The Forge)``."""
        if self.system is None:
            return self.display_name
        region = f" - {self.region.name}" if self.region else ""
        if self.location_kind == LocationKind.STAR_SYSTEM:
            return f"{self.display_name} System ({self.system.security:.1f}{region})"
        return f"{self.display_name} ({self.system.name} {self.system.security:.1f}{region})"


@dataclass(frozen=True)
class RemoteRecord:
    """
    One asset owned by a character.

    ``container_id`` is either a location ID or the ``record_id`` of another
    record of the same character; which one is decided structurally by the
    hierarchy builder.
    """

    record_id: int
    kind_id: int
    quantity: int
    container_id: int
    container_slot: str
    is_unique_instance: bool
    is_copy: Optional[bool] = None

    def __post_init__(self) -> None:
        if self.quantity < 0:
            raise ValueError(f"Record {self.record_id} has negative quantity {self.quantity}")

    @classmethod
    def from_esi(cls, payload: Dict[str, Any]) -> "RemoteRecord":
        """Build a record from an ESI asset payload."""
        return cls(
            record_id=int(payload["item_id"]),
            kind_id=int(payload["type_id"]),
            quantity=int(payload["quantity"]),
            container_id=int(payload["location_id"]),
            container_slot=str(payload.get("location_flag") or ""),
            is_unique_instance=bool(payload.get("is_singleton", False)),
            is_copy=payload.get("is_blueprint_copy"),
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RemoteRecord":
        """Build a record from its stored form (see ``to_dict``)."""
        return cls(
            record_id=int(data["record_id"]),
            kind_id=int(data["kind_id"]),
            quantity=int(data["quantity"]),
            container_id=int(data["container_id"]),
            container_slot=str(data["container_slot"]),
            is_unique_instance=bool(data["is_unique_instance"]),
            is_copy=data.get("is_copy"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
