"""
ESI client with authentication, re-authentication and rate limiting.

Every request passes through the shared DispatchQueue. Authenticated
requests carry a bearer token from the TokenManager; a 401 triggers one
refresh-and-retry, and 420/429 responses are retried after the delay the
provider asks for.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from .rate_limiter import DispatchQueue
from ..auth.tokens import TokenManager
from ..sync.models import RemoteRecord
from ..utils.constants import (
    DEFAULT_RATE_LIMIT_RETRIES,
    DEFAULT_RETRY_AFTER,
    ESI_BASE_URL,
    RATE_LIMIT_STATUSES,
    USER_AGENT,
)
from ..utils.errors import EsiApiError, RateLimitedError, UnauthenticatedError, handle_http_error

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "application/json",
}


def _malformed(
    response: httpx.Response, path: str, error: Exception, identity_id: Optional[int]
) -> EsiApiError:
    logger.error(f"Malformed ESI response for {path}: {error}")
    return EsiApiError(
        f"Malformed response from ESI for {path}: {error}",
        response.status_code,
        identity_id,
    )


class EsiClient:
    """Resilient ESI API client."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        tokens: TokenManager,
        dispatch: DispatchQueue,
        base_url: str = ESI_BASE_URL,
        max_rate_limit_retries: int = DEFAULT_RATE_LIMIT_RETRIES,
        default_retry_after: float = DEFAULT_RETRY_AFTER,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.http = http
        self.tokens = tokens
        self.dispatch = dispatch
        self.base_url = base_url.rstrip("/")
        self.max_rate_limit_retries = max_rate_limit_retries
        self.default_retry_after = default_retry_after
        self._sleep = sleep

    def _retry_after(self, response: httpx.Response) -> float:
        for header in ("Retry-After", "X-Esi-Error-Limit-Reset"):
            value = response.headers.get(header)
            if value is None:
                continue
            try:
                return max(0.0, float(value))
            except ValueError:
                logger.debug(f"Ignoring unparseable {header} header: {value!r}")
        return self.default_retry_after

    async def request(
        self,
        method: str,
        path: str,
        identity_id: Optional[int] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """
        Send one logical request.

        Args:
            method: HTTP method.
            path: Path relative to the ESI base URL.
            identity_id: Character whose token authenticates the call, or
                None for public endpoints.
            params: Optional query parameters.

        Returns:
            The successful response.

        Raises:
            UnauthenticatedError: No credential, or a second consecutive 401
                (the credential is invalidated).
            TokenRefreshError: The refresh token was rejected.
            SsoUnavailableError: SSO was unreachable during a refresh.
            RateLimitedError: Rate limited more than the retry budget allows.
            EsiApiError: Any other non-success status, or a body that is not
                valid JSON (from the ``get_*`` helpers).
        """
        url = f"{self.base_url}{path}"
        token = None
        if identity_id is not None:
            token = await self.tokens.get_access_token(identity_id)

        auth_retried = False
        rate_limit_retries = 0
        while True:
            headers = dict(DEFAULT_HEADERS)
            if token is not None:
                headers["Authorization"] = f"Bearer {token}"

            await self.dispatch.acquire()
            response = await self.http.request(method, url, params=params, headers=headers)

            if response.status_code == 401 and identity_id is not None:
                if auth_retried:
                    self.tokens.invalidate(identity_id)
                    raise UnauthenticatedError(
                        "ESI rejected the refreshed token; credential removed", identity_id
                    )
                auth_retried = True
                logger.info(f"401 from ESI for {path}, refreshing token and retrying")
                credential = await self.tokens.refresh(identity_id, stale_access_token=token)
                token = credential.access_token
                continue

            if response.status_code in RATE_LIMIT_STATUSES:
                delay = self._retry_after(response)
                if rate_limit_retries >= self.max_rate_limit_retries:
                    raise RateLimitedError(
                        f"Still rate limited after {rate_limit_retries} retries",
                        retry_after=delay,
                        identity_id=identity_id,
                    )
                rate_limit_retries += 1
                logger.warning(f"Rate limited. Retrying after {delay} seconds")
                await self._sleep(delay)
                continue

            if response.is_error:
                raise handle_http_error(response, identity_id)
            return response

    async def get_json(
        self,
        path: str,
        identity_id: Optional[int] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        response = await self.request("GET", path, identity_id=identity_id, params=params)
        try:
            return response.json()
        except ValueError as e:
            raise _malformed(response, path, e, identity_id)

    async def get_character_assets(self, character_id: int) -> List[RemoteRecord]:
        """Get all assets of a character, following ESI pagination."""
        path = f"/characters/{character_id}/assets/"
        records: List[RemoteRecord] = []
        page = 1
        total_pages = 1
        while page <= total_pages:
            response = await self.request(
                "GET", path, identity_id=character_id, params={"page": page}
            )
            try:
                records.extend(RemoteRecord.from_esi(item) for item in response.json())
            except (ValueError, KeyError, TypeError) as e:
                raise _malformed(response, path, e, character_id)
            try:
                total_pages = int(response.headers.get("X-Pages", "1"))
            except ValueError:
                total_pages = page
            page += 1

        logger.info(f"Fetched {len(records)} assets for character {character_id}")
        return records

    async def get_character_location(self, character_id: int) -> Dict[str, Any]:
        return await self.get_json(
            f"/characters/{character_id}/location/", identity_id=character_id
        )

    async def get_character_ship(self, character_id: int) -> Dict[str, Any]:
        return await self.get_json(f"/characters/{character_id}/ship/", identity_id=character_id)

    async def get_structure_info(self, character_id: int, structure_id: int) -> Dict[str, Any]:
        """Get a player structure's name and system (requires docking access)."""
        return await self.get_json(
            f"/universe/structures/{structure_id}/", identity_id=character_id
        )

    async def get_type_info(self, type_id: int) -> Dict[str, Any]:
        return await self.get_json(f"/universe/types/{type_id}/")

    async def get_station_info(self, station_id: int) -> Dict[str, Any]:
        return await self.get_json(f"/universe/stations/{station_id}/")

    async def get_system_info(self, system_id: int) -> Dict[str, Any]:
        return await self.get_json(f"/universe/systems/{system_id}/")

    async def get_server_status(self) -> Dict[str, Any]:
        return await self.get_json("/status/")
