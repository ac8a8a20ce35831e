"""
EVE SSO Authentication Package for EVE Inventory.

This package provides the OAuth2 PKCE implementation with:
- Single-use loopback callback listener
- Authorization flow state machine (no client secret)
- Encrypted per-character credential store
- Token refresh and invalidation
"""

from .scopes import SCOPES, get_scopes, missing_scopes
from .crypto import TokenCipher
from .credential_store import (
    CredentialStore,
    CredentialSummary,
    IdentityCredential,
    LocalDirectoryCredentialStore,
)
from .pkce import PkceSession, build_authorization_url
from .callback_server import CallbackListener
from .sso import (
    AuthorizationFlow,
    FlowState,
    SsoClient,
    TokenResponse,
    VerifiedIdentity,
    parse_callback,
)
from .tokens import TokenManager

__all__ = [
    # Scopes
    "SCOPES",
    "get_scopes",
    "missing_scopes",
    # Credential Store
    "TokenCipher",
    "CredentialStore",
    "CredentialSummary",
    "IdentityCredential",
    "LocalDirectoryCredentialStore",
    # Flow
    "PkceSession",
    "build_authorization_url",
    "CallbackListener",
    "AuthorizationFlow",
    "FlowState",
    "SsoClient",
    "TokenResponse",
    "VerifiedIdentity",
    "parse_callback",
    "TokenManager",
]
