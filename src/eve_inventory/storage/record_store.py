"""
Record Store for EVE Inventory.

Persists each character's asset set as a whole. The synchronization engine
only ever replaces a full set or reads it back; there is no partial merge.
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from threading import RLock
from typing import List, Optional

from ..sync.models import RemoteRecord
from ..utils.files import atomic_write_json

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecordSnapshot:
    """A stored record set and the time (epoch seconds) it was synced."""

    records: List[RemoteRecord]
    synced_at: float


class RecordRepository(ABC):
    """Abstract base class for per-character record persistence."""

    @abstractmethod
    def replace_records(
        self, identity_id: int, records: List[RemoteRecord], synced_at: float
    ) -> None:
        """Replace the whole stored record set of a character."""
        pass

    @abstractmethod
    def load_records(self, identity_id: int) -> Optional[RecordSnapshot]:
        """Load the stored record set, or None if nothing was ever stored."""
        pass

    @abstractmethod
    def delete_records(self, identity_id: int) -> bool:
        """Delete the stored record set of a character."""
        pass


class LocalDirectoryRecordStore(RecordRepository):
    """Record store that keeps one JSON file per character."""

    def __init__(self, base_dir: str) -> None:
        self.base_dir = base_dir
        self._lock = RLock()
        os.makedirs(self.base_dir, exist_ok=True)
        logger.info(f"LocalDirectoryRecordStore initialized: {base_dir}")

    def _get_records_path(self, identity_id: int) -> str:
        return os.path.join(self.base_dir, f"{int(identity_id)}.json")

    def replace_records(
        self, identity_id: int, records: List[RemoteRecord], synced_at: float
    ) -> None:
        data = {
            "identity_id": int(identity_id),
            "synced_at": synced_at,
            "records": [record.to_dict() for record in records],
        }
        with self._lock:
            atomic_write_json(self._get_records_path(identity_id), data)
        logger.info(f"Stored {len(records)} records for character {identity_id}")

    def load_records(self, identity_id: int) -> Optional[RecordSnapshot]:
        path = self._get_records_path(identity_id)
        with self._lock:
            if not os.path.exists(path):
                return None
            try:
                with open(path, "r") as f:
                    data = json.load(f)
            except (IOError, json.JSONDecodeError) as e:
                logger.error(f"Error loading records for {identity_id}: {e}")
                return None

        try:
            return RecordSnapshot(
                records=[RemoteRecord.from_dict(item) for item in data["records"]],
                synced_at=float(data["synced_at"]),
            )
        except (KeyError, ValueError, TypeError) as e:
            logger.error(f"Malformed record file for {identity_id}: {e}")
            return None

    def delete_records(self, identity_id: int) -> bool:
        path = self._get_records_path(identity_id)
        with self._lock:
            if not os.path.exists(path):
                return False
            try:
                os.remove(path)
            except OSError as e:
                logger.error(f"Error deleting records for {identity_id}: {e}")
                return False
        logger.info(f"Deleted stored records for character {identity_id}")
        return True
