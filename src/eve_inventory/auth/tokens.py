"""
Token lifecycle management.

Looks up a character's access token, refreshes it ahead of expiry and
invalidates credentials whose refresh token no longer works. Refreshes are
serialized per character so concurrent callers never lose a token update.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from .credential_store import CredentialStore, IdentityCredential, utcnow
from .sso import SsoClient
from ..utils.errors import SsoUnavailableError, TokenRefreshError, UnauthenticatedError

logger = logging.getLogger(__name__)


class TokenManager:
    """Access-token provider with proactive and on-demand refresh."""

    def __init__(
        self,
        store: CredentialStore,
        sso: SsoClient,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.sso = sso
        self.now = now
        self._locks: Dict[int, asyncio.Lock] = {}

    def lock_for(self, identity_id: int) -> asyncio.Lock:
        """Per-character update lock."""
        lock = self._locks.get(identity_id)
        if lock is None:
            lock = self._locks[identity_id] = asyncio.Lock()
        return lock

    def _require(self, identity_id: int) -> IdentityCredential:
        credential = self.store.get(identity_id)
        if credential is None:
            raise UnauthenticatedError("No authentication found", identity_id)
        return credential

    async def get_access_token(self, identity_id: int) -> str:
        """
        Return a usable access token, refreshing first if it is about to expire.

        Raises:
            UnauthenticatedError: If the character has no stored credential.
            TokenRefreshError: If a needed refresh was rejected (credential removed).
            SsoUnavailableError: If SSO was unreachable (credential kept).
        """
        credential = self._require(identity_id)
        if self.store.is_expired(identity_id):
            logger.info(f"Access token for {identity_id} expires soon, refreshing")
            credential = await self.refresh(identity_id, stale_access_token=credential.access_token)
        return credential.access_token

    async def refresh(
        self, identity_id: int, stale_access_token: Optional[str] = None
    ) -> IdentityCredential:
        """
        Refresh a character's token pair using its refresh token.

        If ``stale_access_token`` is given and another caller already replaced
        it with a still-valid token while this one waited for the lock, the
        current credential is returned without another round trip.

        Raises:
            UnauthenticatedError: If the character has no stored credential.
            TokenRefreshError: If SSO rejects the refresh token. The
                credential is invalidated before raising.
            SsoUnavailableError: If SSO could not be reached or failed on
                its side. The credential is kept.
        """
        async with self.lock_for(identity_id):
            credential = self._require(identity_id)
            if (
                stale_access_token is not None
                and credential.access_token != stale_access_token
                and not self.store.is_expired(identity_id)
            ):
                logger.debug(f"Token for {identity_id} already refreshed by another request")
                return credential

            try:
                tokens = await self.sso.refresh(credential.refresh_token)
            except TokenRefreshError as e:
                logger.error(f"Failed to refresh token for character {identity_id}: {e}")
                self.invalidate(identity_id)
                raise TokenRefreshError(e.message, identity_id)
            except SsoUnavailableError as e:
                logger.warning(f"SSO unavailable while refreshing character {identity_id}: {e}")
                raise SsoUnavailableError(e.message, e.status_code, identity_id)

            self.store.update_tokens(
                identity_id,
                tokens.access_token,
                tokens.refresh_token,
                self.now() + timedelta(seconds=tokens.expires_in),
            )
            logger.info(f"Refreshed access token for character {identity_id}")
            return self._require(identity_id)

    def invalidate(self, identity_id: int) -> None:
        """Remove a credential that can no longer be used."""
        logger.warning(f"Invalidating stored credential for character {identity_id}")
        self.store.remove(identity_id)
