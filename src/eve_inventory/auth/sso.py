"""
Core EVE SSO Logic for EVE Inventory.

This module provides the OAuth2 authorization flow with PKCE (no client
secret) and the token-endpoint operations used for code exchange, refresh
and identity verification.
"""

import logging
import webbrowser
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import parse_qs, urlparse

import httpx
from oauthlib.oauth2 import WebApplicationClient

from .callback_server import CallbackListener
from .credential_store import IdentityCredential, utcnow
from .pkce import PkceSession, build_authorization_url
from .scopes import missing_scopes
from ..utils.constants import (
    DEFAULT_CALLBACK_TIMEOUT,
    RATE_LIMIT_STATUSES,
    SSO_AUTHORIZE_PATH,
    SSO_TOKEN_PATH,
    USER_AGENT,
)
from ..utils.errors import (
    CsrfMismatchError,
    ProviderDeniedError,
    SsoUnavailableError,
    TokenExchangeError,
    TokenRefreshError,
)

logger = logging.getLogger(__name__)

FORM_HEADERS = {
    "Content-Type": "application/x-www-form-urlencoded",
    "User-Agent": USER_AGENT,
}


@dataclass(frozen=True)
class TokenResponse:
    """Token endpoint response."""

    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "Bearer"
    scope: str = ""

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "TokenResponse":
        """Raises KeyError/ValueError/TypeError on a malformed payload."""
        return cls(
            access_token=payload["access_token"],
            refresh_token=payload["refresh_token"],
            expires_in=int(payload["expires_in"]),
            token_type=payload.get("token_type", "Bearer"),
            scope=payload.get("scope", ""),
        )


@dataclass(frozen=True)
class VerifiedIdentity:
    """The provider's own record of who authenticated and what it granted."""

    identity_id: int
    display_name: str
    granted_scopes: List[str]


def _provider_error(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    if not isinstance(payload, dict):
        return f"HTTP {response.status_code}"
    return (
        f"{payload.get('error', response.status_code)} - "
        f"{payload.get('error_description') or 'Unknown error'}"
    )


class SsoClient:
    """Token endpoint and verification calls against EVE SSO."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        client_id: str,
        sso_base_url: str,
        verify_url: str,
    ) -> None:
        self.http = http
        self.client_id = client_id
        self.sso_base_url = sso_base_url.rstrip("/")
        self.verify_url = verify_url

    @property
    def authorize_url(self) -> str:
        return f"{self.sso_base_url}{SSO_AUTHORIZE_PATH}"

    @property
    def token_url(self) -> str:
        return f"{self.sso_base_url}{SSO_TOKEN_PATH}"

    def new_oauth_client(self) -> WebApplicationClient:
        return WebApplicationClient(self.client_id)

    async def _post_token(self, body: str) -> httpx.Response:
        return await self.http.post(self.token_url, content=body, headers=FORM_HEADERS)

    async def exchange_code(
        self, code: str, code_verifier: str, redirect_uri: str
    ) -> TokenResponse:
        """
        Exchange an authorization code and its PKCE verifier for tokens.

        Raises:
            TokenExchangeError: If the provider rejects the exchange.
        """
        body = self.new_oauth_client().prepare_request_body(
            code=code,
            redirect_uri=redirect_uri,
            code_verifier=code_verifier,
            include_client_id=True,
        )
        try:
            response = await self._post_token(body)
        except httpx.HTTPError as e:
            raise TokenExchangeError(f"Token exchange failed: {e}")

        if response.is_error:
            raise TokenExchangeError(f"Token exchange failed: {_provider_error(response)}")
        try:
            tokens = TokenResponse.from_payload(response.json())
        except (KeyError, ValueError, TypeError) as e:
            raise TokenExchangeError(f"Token exchange returned a malformed response: {e}")

        logger.info("Successfully exchanged authorization code for tokens")
        return tokens

    async def refresh(self, refresh_token: str) -> TokenResponse:
        """
        Exchange a refresh token for a new token pair.

        Raises:
            TokenRefreshError: If SSO rejects the refresh token.
            SsoUnavailableError: If SSO could not be reached, failed on its
                side or rate limited the request.
        """
        body = self.new_oauth_client().prepare_refresh_body(
            refresh_token=refresh_token,
            client_id=self.client_id,
        )
        try:
            response = await self._post_token(body)
        except httpx.HTTPError as e:
            raise SsoUnavailableError(f"Token refresh could not reach SSO: {e}")

        if response.status_code >= 500 or response.status_code in RATE_LIMIT_STATUSES:
            raise SsoUnavailableError(
                f"Token refresh failed on the SSO side: {_provider_error(response)}",
                response.status_code,
            )
        if response.is_error:
            raise TokenRefreshError(f"Token refresh failed: {_provider_error(response)}")
        try:
            payload = response.json()
            # The provider may keep the refresh token unchanged and omit it.
            payload.setdefault("refresh_token", refresh_token)
            return TokenResponse.from_payload(payload)
        except (AttributeError, KeyError, ValueError, TypeError) as e:
            raise SsoUnavailableError(f"Token refresh returned a malformed response: {e}", response.status_code)

    async def verify(self, access_token: str) -> VerifiedIdentity:
        """
        Ask SSO who the token belongs to and which scopes it carries.

        Raises:
            TokenExchangeError: If verification fails.
        """
        try:
            response = await self.http.get(
                self.verify_url,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "User-Agent": USER_AGENT,
                },
            )
        except httpx.HTTPError as e:
            raise TokenExchangeError(f"Failed to verify character: {e}")

        if response.is_error:
            raise TokenExchangeError(
                f"Failed to verify character: {_provider_error(response)}"
            )
        try:
            data = response.json()
            identity_id = int(data["CharacterID"])
        except (KeyError, ValueError, TypeError) as e:
            raise TokenExchangeError(f"Verification returned a malformed response: {e}")

        scopes = data.get("Scopes") or ""
        return VerifiedIdentity(
            identity_id=identity_id,
            display_name=data.get("CharacterName") or f"Character_{identity_id}",
            granted_scopes=scopes.split() if isinstance(scopes, str) else list(scopes),
        )

    async def verify_token(self, access_token: str) -> bool:
        """Check whether an access token is still accepted."""
        try:
            await self.verify(access_token)
            return True
        except TokenExchangeError:
            return False


class FlowState(str, Enum):
    IDLE = "idle"
    AWAITING_CALLBACK = "awaiting_callback"
    EXCHANGING_CODE = "exchanging_code"
    VERIFYING_IDENTITY = "verifying_identity"
    COMPLETE = "complete"
    FAILED = "failed"


def parse_callback(callback_url: str, session: PkceSession) -> str:
    """
    Validate the redirect URL against the session and return the code.

    Raises:
        ProviderDeniedError: If the provider returned an error.
        CsrfMismatchError: If the state does not match the issued state.
        TokenExchangeError: If no code was returned.
    """
    params = parse_qs(urlparse(callback_url).query)

    def first(name: str) -> Optional[str]:
        values = params.get(name)
        return values[0] if values else None

    error = first("error")
    if error:
        raise ProviderDeniedError(error, first("error_description"))

    if not session.state_matches(first("state")):
        logger.error("SSO callback state mismatch - possible CSRF attempt")
        raise CsrfMismatchError("Invalid state parameter - potential CSRF attack")

    code = first("code")
    if not code:
        raise TokenExchangeError("No authorization code received")
    return code


class AuthorizationFlow:
    """
    One PKCE authorization attempt.

    idle -> awaiting_callback -> exchanging_code -> verifying_identity -> complete,
    or failed from any state. A flow object may be reused; each call to
    authorize() runs with a fresh PKCE session.
    """

    def __init__(
        self,
        sso: SsoClient,
        scopes: List[str],
        listener_factory: Callable[[], CallbackListener],
        open_browser: Callable[[str], Any] = webbrowser.open,
        callback_timeout: float = DEFAULT_CALLBACK_TIMEOUT,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self.sso = sso
        self.scopes = list(scopes)
        self.listener_factory = listener_factory
        self.open_browser = open_browser
        self.callback_timeout = callback_timeout
        self.now = now
        self.state = FlowState.IDLE
        self.authorization_url: Optional[str] = None

    def _transition(self, state: FlowState) -> None:
        logger.debug(f"Authorization flow: {self.state.value} -> {state.value}")
        self.state = state

    async def authorize(self) -> IdentityCredential:
        """
        Run the full authorization flow.

        Returns:
            The new credential (not yet stored).

        Raises:
            CallbackTimeoutError, CsrfMismatchError, ProviderDeniedError,
            TokenExchangeError: Propagated unchanged after teardown.
        """
        self.state = FlowState.IDLE
        oauth_client = self.sso.new_oauth_client()
        session: Optional[PkceSession] = PkceSession.generate(oauth_client)
        listener = self.listener_factory()

        try:
            redirect_uri = await listener.start()
            self.authorization_url = build_authorization_url(
                oauth_client, self.sso.authorize_url, redirect_uri, self.scopes, session
            )
            self._transition(FlowState.AWAITING_CALLBACK)
            logger.info(f"Auth flow started. State: {session.state[:8]}...")
            if not self.open_browser(self.authorization_url):
                logger.warning("Could not open a browser; open the authorization URL manually")

            callback_url = await listener.wait_for_callback(self.callback_timeout)

            self._transition(FlowState.EXCHANGING_CODE)
            code = parse_callback(callback_url, session)
            tokens = await self.sso.exchange_code(code, session.verifier, redirect_uri)

            self._transition(FlowState.VERIFYING_IDENTITY)
            identity = await self.sso.verify(tokens.access_token)
            missing = missing_scopes(identity.granted_scopes, self.scopes)
            if missing:
                logger.warning(f"SSO did not grant requested scopes: {', '.join(missing)}")

            now = self.now()
            credential = IdentityCredential(
                identity_id=identity.identity_id,
                display_name=identity.display_name,
                access_token=tokens.access_token,
                refresh_token=tokens.refresh_token,
                access_expiry=now + timedelta(seconds=tokens.expires_in),
                granted_permissions=identity.granted_scopes,
                last_updated=now,
            )
            self._transition(FlowState.COMPLETE)
            logger.info(f"Authenticated character: {identity.display_name} ({identity.identity_id})")
            return credential

        except BaseException:
            self._transition(FlowState.FAILED)
            await listener.stop()
            raise

        finally:
            session = None
            oauth_client.code_verifier = None
