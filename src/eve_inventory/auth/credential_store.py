"""
Credential Store for EVE Inventory.

This module provides a standardized interface for per-character credential
storage and retrieval, using local JSON files with encrypted token fields.
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from threading import RLock
from typing import Any, Dict, List, Optional

from .crypto import InvalidToken, TokenCipher
from ..utils.constants import DEFAULT_EXPIRY_MARGIN
from ..utils.errors import UnauthenticatedError
from ..utils.files import atomic_write_json

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Any) -> datetime:
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class IdentityCredential:
    """Token pair and metadata for one authenticated character."""

    identity_id: int
    display_name: str
    access_token: str = field(repr=False)
    refresh_token: str = field(repr=False)
    access_expiry: datetime
    granted_permissions: List[str] = field(default_factory=list)
    last_updated: datetime = field(default_factory=utcnow)

    def expires_within(self, margin_seconds: float, now: Optional[datetime] = None) -> bool:
        """True if the access token expires within ``margin_seconds`` of now."""
        now = now or utcnow()
        return self.access_expiry <= now + timedelta(seconds=margin_seconds)


@dataclass(frozen=True)
class CredentialSummary:
    """Bulk-listing view of a credential. Never carries tokens."""

    identity_id: int
    display_name: str
    access_expiry: datetime
    granted_permissions: List[str]
    last_updated: datetime


class CredentialStore(ABC):
    """Abstract base class for credential storage."""

    @abstractmethod
    def put(self, credential: IdentityCredential) -> None:
        """Store (or replace) credentials for a character."""
        pass

    @abstractmethod
    def get(self, identity_id: int) -> Optional[IdentityCredential]:
        """Get decrypted credentials for a character."""
        pass

    @abstractmethod
    def list_all(self) -> List[CredentialSummary]:
        """List all stored characters without their tokens."""
        pass

    @abstractmethod
    def update_tokens(
        self,
        identity_id: int,
        access_token: str,
        refresh_token: str,
        access_expiry: datetime,
    ) -> None:
        """Replace the token pair of an existing character."""
        pass

    @abstractmethod
    def remove(self, identity_id: int) -> bool:
        """Delete credentials for a character."""
        pass

    @abstractmethod
    def is_expired(self, identity_id: int) -> bool:
        """True if the access token is expired or about to expire."""
        pass

    @abstractmethod
    def get_selected(self) -> Optional[int]:
        """Get the currently selected character."""
        pass

    @abstractmethod
    def set_selected(self, identity_id: int) -> None:
        """Select a stored character."""
        pass

    def has_identities(self) -> bool:
        return bool(self.list_all())

    def clear_all(self) -> None:
        """Remove every stored character."""
        for summary in self.list_all():
            self.remove(summary.identity_id)


class LocalDirectoryCredentialStore(CredentialStore):
    """Credential store that keeps one JSON file per character."""

    SELECTED_FILE = "selected.json"

    def __init__(
        self,
        base_dir: str,
        cipher: TokenCipher,
        expiry_margin: float = DEFAULT_EXPIRY_MARGIN,
    ) -> None:
        """
        Initialize the local credential store.

        Args:
            base_dir: Directory holding the credential files.
            cipher: Cipher used for the access and refresh token fields.
            expiry_margin: Seconds before expiry at which a token counts as expired.
        """
        self.base_dir = base_dir
        self.cipher = cipher
        self.expiry_margin = expiry_margin
        self._lock = RLock()
        self._ensure_dir_exists()
        logger.info(f"LocalDirectoryCredentialStore initialized: {base_dir}")

    def _ensure_dir_exists(self) -> None:
        """Ensure the credentials directory exists."""
        if not os.path.exists(self.base_dir):
            os.makedirs(self.base_dir, exist_ok=True)
            logger.info(f"Created credentials directory: {self.base_dir}")

    def _get_credential_path(self, identity_id: int) -> str:
        return os.path.join(self.base_dir, f"{int(identity_id)}.json")

    def _read_raw(self, identity_id: int) -> Optional[Dict[str, Any]]:
        path = self._get_credential_path(identity_id)
        if not os.path.exists(path):
            return None
        try:
            with open(path, "r") as f:
                return json.load(f)
        except (IOError, json.JSONDecodeError) as e:
            logger.error(f"Error loading credentials for {identity_id}: {e}")
            return None

    def _write_raw(self, identity_id: int, data: Dict[str, Any]) -> None:
        atomic_write_json(self._get_credential_path(identity_id), data)

    def _stored_ids(self) -> List[int]:
        if not os.path.exists(self.base_dir):
            return []
        ids = []
        for filename in os.listdir(self.base_dir):
            stem, ext = os.path.splitext(filename)
            if ext == ".json" and stem.isdigit():
                ids.append(int(stem))
        return sorted(ids)

    def put(self, credential: IdentityCredential) -> None:
        data = {
            "identity_id": credential.identity_id,
            "display_name": credential.display_name,
            "access_token": self.cipher.encrypt(credential.access_token),
            "refresh_token": self.cipher.encrypt(credential.refresh_token),
            "access_expiry": credential.access_expiry.isoformat(),
            "granted_permissions": list(credential.granted_permissions),
            "last_updated": credential.last_updated.isoformat(),
        }
        with self._lock:
            self._write_raw(credential.identity_id, data)
            if self.get_selected() is None:
                self.set_selected(credential.identity_id)
        logger.info(f"Stored credentials for character {credential.identity_id}")

    def get(self, identity_id: int) -> Optional[IdentityCredential]:
        with self._lock:
            data = self._read_raw(identity_id)
        if data is None:
            logger.debug(f"No credential file found for {identity_id}")
            return None

        try:
            return IdentityCredential(
                identity_id=int(data["identity_id"]),
                display_name=data["display_name"],
                access_token=self.cipher.decrypt(data["access_token"]),
                refresh_token=self.cipher.decrypt(data["refresh_token"]),
                access_expiry=_parse_timestamp(data["access_expiry"]),
                granted_permissions=list(data.get("granted_permissions") or []),
                last_updated=_parse_timestamp(data["last_updated"]),
            )
        except InvalidToken:
            logger.error(f"Failed to decrypt credentials for {identity_id}")
            return None
        except (KeyError, ValueError) as e:
            logger.error(f"Malformed credentials for {identity_id}: {e}")
            return None

    def list_all(self) -> List[CredentialSummary]:
        summaries = []
        with self._lock:
            for identity_id in self._stored_ids():
                data = self._read_raw(identity_id)
                if data is None:
                    continue
                try:
                    summaries.append(
                        CredentialSummary(
                            identity_id=int(data["identity_id"]),
                            display_name=data["display_name"],
                            access_expiry=_parse_timestamp(data["access_expiry"]),
                            granted_permissions=list(data.get("granted_permissions") or []),
                            last_updated=_parse_timestamp(data["last_updated"]),
                        )
                    )
                except (KeyError, ValueError) as e:
                    logger.warning(f"Skipping malformed credential file {identity_id}: {e}")
        return summaries

    def update_tokens(
        self,
        identity_id: int,
        access_token: str,
        refresh_token: str,
        access_expiry: datetime,
    ) -> None:
        with self._lock:
            data = self._read_raw(identity_id)
            if data is None:
                raise UnauthenticatedError("Character not found in store", identity_id)
            data["access_token"] = self.cipher.encrypt(access_token)
            data["refresh_token"] = self.cipher.encrypt(refresh_token)
            data["access_expiry"] = access_expiry.isoformat()
            data["last_updated"] = utcnow().isoformat()
            self._write_raw(identity_id, data)
        logger.debug(f"Updated tokens for character {identity_id}")

    def remove(self, identity_id: int) -> bool:
        path = self._get_credential_path(identity_id)
        with self._lock:
            try:
                if os.path.exists(path):
                    os.remove(path)
                    logger.info(f"Deleted credentials for character {identity_id}")
            except OSError as e:
                logger.error(f"Error deleting credentials for {identity_id}: {e}")
                return False

            if self.get_selected() == identity_id:
                remaining = self._stored_ids()
                if remaining:
                    self.set_selected(remaining[0])
                else:
                    self._clear_selected()
        return True

    def is_expired(self, identity_id: int) -> bool:
        credential = self.get(identity_id)
        if credential is None:
            return True
        return credential.expires_within(self.expiry_margin)

    def get_selected(self) -> Optional[int]:
        path = os.path.join(self.base_dir, self.SELECTED_FILE)
        with self._lock:
            if not os.path.exists(path):
                return None
            try:
                with open(path, "r") as f:
                    selected = json.load(f).get("identity_id")
            except (IOError, json.JSONDecodeError) as e:
                logger.warning(f"Could not read selected character: {e}")
                return None
        return int(selected) if selected is not None else None

    def set_selected(self, identity_id: int) -> None:
        with self._lock:
            atomic_write_json(
                os.path.join(self.base_dir, self.SELECTED_FILE),
                {"identity_id": int(identity_id)},
            )

    def _clear_selected(self) -> None:
        path = os.path.join(self.base_dir, self.SELECTED_FILE)
        if os.path.exists(path):
            os.remove(path)
