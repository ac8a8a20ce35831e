"""
Service construction for EVE Inventory.

Builds every long-lived collaborator once, in dependency order, from an
AppConfig. Nothing here is global; the server layer decides how many
Services instances exist.
"""

import logging
import os
from typing import Any, Callable, Optional

import httpx

from .config import AppConfig
from ..auth.callback_server import CallbackListener
from ..auth.credential_store import (
    CredentialStore,
    IdentityCredential,
    LocalDirectoryCredentialStore,
)
from ..auth.crypto import TokenCipher
from ..auth.sso import AuthorizationFlow, SsoClient
from ..auth.tokens import TokenManager
from ..client.esi_client import DEFAULT_HEADERS, EsiClient
from ..client.rate_limiter import DispatchQueue
from ..storage.record_store import LocalDirectoryRecordStore, RecordRepository
from ..storage.static_data import InMemoryStaticData, SqliteStaticData, StaticDataSource
from ..sync.engine import SyncEngine
from ..utils.errors import AuthenticationConfigError

logger = logging.getLogger(__name__)


class Services:
    """
    Composition root.

    Initialization order: token cipher, credential store, static data,
    record store, HTTP client, dispatch queue, SSO client, token manager,
    ESI client, sync engine.
    """

    def __init__(
        self,
        config: AppConfig,
        http: Optional[httpx.AsyncClient] = None,
        static_data: Optional[StaticDataSource] = None,
        open_browser: Optional[Callable[[str], Any]] = None,
    ) -> None:
        self.config = config
        self.open_browser = open_browser

        self.cipher = TokenCipher.load_or_create(config.key_path)
        self.credentials: CredentialStore = LocalDirectoryCredentialStore(
            config.credentials_dir, self.cipher, expiry_margin=config.expiry_margin
        )
        self.static_data = static_data or self._load_static_data()
        self.records: RecordRepository = LocalDirectoryRecordStore(config.records_dir)

        self.http = http or httpx.AsyncClient(
            headers=DEFAULT_HEADERS, timeout=config.request_timeout
        )
        self.dispatch = DispatchQueue(rate=config.requests_per_second)
        self.sso = SsoClient(
            self.http, config.client_id, config.sso_base_url, config.verify_url
        )
        self.tokens = TokenManager(self.credentials, self.sso)
        self.esi = EsiClient(
            self.http,
            self.tokens,
            self.dispatch,
            base_url=config.esi_base_url,
            max_rate_limit_retries=config.rate_limit_retries,
            default_retry_after=config.default_retry_after,
        )
        self.sync = SyncEngine(
            self.esi,
            self.records,
            self.static_data,
            self.credentials,
            freshness_seconds=config.cache_freshness,
        )
        logger.info("EVE Inventory services initialized")

    def _load_static_data(self) -> StaticDataSource:
        path = self.config.static_db_path
        if os.path.exists(path):
            return SqliteStaticData(path)
        logger.warning(
            f"No static data found at {path}; locations and item names will be placeholders"
        )
        return InMemoryStaticData()

    def new_listener(self) -> CallbackListener:
        return CallbackListener(
            host=self.config.callback_host,
            port=self.config.callback_port,
            path=self.config.callback_path,
            max_port_attempts=self.config.callback_port_attempts,
            grace_period=self.config.callback_grace,
        )

    def new_authorization_flow(self) -> AuthorizationFlow:
        """
        Build a flow for one authentication attempt.

        Raises:
            AuthenticationConfigError: If no client ID is configured.
        """
        if not self.config.is_configured():
            raise AuthenticationConfigError(
                "EVE_CLIENT_ID is not set. Register an application at "
                "https://developers.eveonline.com and set its client ID."
            )
        kwargs = {}
        if self.open_browser is not None:
            kwargs["open_browser"] = self.open_browser
        return AuthorizationFlow(
            self.sso,
            self.config.scopes,
            self.new_listener,
            callback_timeout=self.config.callback_timeout,
            **kwargs,
        )

    async def authenticate(self) -> IdentityCredential:
        """Run the authorization flow and store the resulting credential."""
        credential = await self.new_authorization_flow().authorize()
        self.credentials.put(credential)
        return credential

    async def aclose(self) -> None:
        await self.http.aclose()
        await self.static_data.close()
