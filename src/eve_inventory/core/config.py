"""
Configuration Management for EVE Inventory.

This module centralizes SSO, ESI and storage configuration to eliminate
hardcoded values. Values come from the environment (optionally via a .env file).
"""

import os
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from ..auth.scopes import get_scopes
from ..utils.constants import (
    CALLBACK_PATH,
    DEFAULT_CACHE_FRESHNESS,
    DEFAULT_CALLBACK_GRACE,
    DEFAULT_CALLBACK_HOST,
    DEFAULT_CALLBACK_PORT,
    DEFAULT_CALLBACK_PORT_ATTEMPTS,
    DEFAULT_CALLBACK_TIMEOUT,
    DEFAULT_EXPIRY_MARGIN,
    DEFAULT_RATE_LIMIT_RETRIES,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_REQUESTS_PER_SECOND,
    DEFAULT_RETRY_AFTER,
    ESI_BASE_URL,
    SSO_BASE_URL,
    SSO_VERIFY_URL,
)


class AppConfig:
    """
    Centralized configuration.

    Provides a single source of truth for SSO, ESI, callback listener and
    storage settings. Instances are built explicitly and passed to the
    services that need them.
    """

    def __init__(self, env: Optional[Dict[str, str]] = None) -> None:
        env = os.environ if env is None else env

        # SSO / ESI endpoints
        self.client_id = env.get("EVE_CLIENT_ID", "")
        self.sso_base_url = env.get("EVE_SSO_BASE_URL", SSO_BASE_URL).rstrip("/")
        self.verify_url = env.get("EVE_SSO_VERIFY_URL", SSO_VERIFY_URL)
        self.esi_base_url = env.get("EVE_ESI_BASE_URL", ESI_BASE_URL).rstrip("/")

        # Local callback listener
        self.callback_host = env.get("EVE_CALLBACK_HOST", DEFAULT_CALLBACK_HOST)
        self.callback_port = int(env.get("EVE_CALLBACK_PORT", DEFAULT_CALLBACK_PORT))
        self.callback_port_attempts = int(
            env.get("EVE_CALLBACK_PORT_ATTEMPTS", DEFAULT_CALLBACK_PORT_ATTEMPTS)
        )
        self.callback_path = CALLBACK_PATH
        self.callback_timeout = float(
            env.get("EVE_CALLBACK_TIMEOUT", DEFAULT_CALLBACK_TIMEOUT)
        )
        self.callback_grace = float(env.get("EVE_CALLBACK_GRACE", DEFAULT_CALLBACK_GRACE))

        # Storage
        self.data_dir = os.path.expanduser(
            env.get("EVE_INVENTORY_DATA_DIR", "~/.config/eve-inventory")
        )
        self.static_db_path = os.path.expanduser(
            env.get("EVE_STATIC_DB_PATH", os.path.join(self.data_dir, "sde.sqlite"))
        )

        # Rate limiting and retries
        self.requests_per_second = int(
            env.get("EVE_RATE_LIMIT", DEFAULT_REQUESTS_PER_SECOND)
        )
        self.rate_limit_retries = int(
            env.get("EVE_RATE_LIMIT_RETRIES", DEFAULT_RATE_LIMIT_RETRIES)
        )
        self.default_retry_after = float(
            env.get("EVE_DEFAULT_RETRY_AFTER", DEFAULT_RETRY_AFTER)
        )
        self.request_timeout = float(
            env.get("EVE_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT)
        )

        # Cache windows
        self.cache_freshness = int(env.get("EVE_CACHE_FRESHNESS", DEFAULT_CACHE_FRESHNESS))
        self.expiry_margin = int(env.get("EVE_EXPIRY_MARGIN", DEFAULT_EXPIRY_MARGIN))

        custom_scopes = env.get("EVE_SCOPES")
        if custom_scopes:
            self.scopes: List[str] = [s.strip() for s in custom_scopes.split(",") if s.strip()]
        else:
            self.scopes = get_scopes()

    @property
    def credentials_dir(self) -> str:
        return os.path.join(self.data_dir, "credentials")

    @property
    def records_dir(self) -> str:
        return os.path.join(self.data_dir, "assets")

    @property
    def key_path(self) -> str:
        return os.path.join(self.data_dir, "token.key")

    def is_configured(self) -> bool:
        """Check if SSO is configured (a client ID is required for PKCE)."""
        return bool(self.client_id)

    def get_environment_summary(self) -> Dict[str, Any]:
        """Get a summary of the current configuration (excluding secrets)."""
        return {
            "sso_base_url": self.sso_base_url,
            "esi_base_url": self.esi_base_url,
            "callback": f"http://{self.callback_host}:{self.callback_port}{self.callback_path}",
            "data_dir": self.data_dir,
            "static_db_path": self.static_db_path,
            "client_configured": self.is_configured(),
            "requests_per_second": self.requests_per_second,
            "scopes": list(self.scopes),
        }


def load_config(dotenv_path: Optional[str] = None) -> AppConfig:
    """Load .env (if present) and build a fresh configuration."""
    load_dotenv(dotenv_path)
    return AppConfig()
