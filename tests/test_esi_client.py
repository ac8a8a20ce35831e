"""Tests for the resilient ESI client."""
import asyncio
from urllib.parse import parse_qs

import httpx
import pytest

from eve_inventory.auth.sso import SsoClient
from eve_inventory.auth.tokens import TokenManager
from eve_inventory.client.esi_client import EsiClient
from eve_inventory.client.rate_limiter import DispatchQueue
from eve_inventory.utils.errors import (
    EsiApiError,
    RateLimitedError,
    SsoUnavailableError,
    TokenRefreshError,
    UnauthenticatedError,
)
from factories import FakeClock, make_credential

ESI_BASE = "https://esi.evetech.net/latest"
SSO_BASE = "https://login.eveonline.com/v2/oauth"
VERIFY_URL = "https://login.eveonline.com/oauth/verify"

ASSET = {
    "item_id": 1000000016835,
    "type_id": 587,
    "quantity": 1,
    "location_id": 60003760,
    "location_flag": "Hangar",
    "is_singleton": True,
}


class FakeEsi:
    """ESI and SSO token endpoint with scripted ESI responses."""

    def __init__(self, responses=None, refresh_status=200):
        self.responses = list(responses or [])
        self.refresh_status = refresh_status
        self.esi_requests = []
        self.refresh_bodies = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/token"):
            self.refresh_bodies.append(parse_qs(request.content.decode()))
            if self.refresh_status != 200:
                return httpx.Response(self.refresh_status, json={"error": "invalid_grant"})
            n = len(self.refresh_bodies) + 1
            return httpx.Response(
                200, json={"access_token": f"T{n}", "refresh_token": f"R{n}", "expires_in": 1200}
            )
        self.esi_requests.append(request)
        response = self.responses.pop(0)
        return response(request) if callable(response) else response

    @property
    def auth_headers(self):
        return [r.headers.get("Authorization") for r in self.esi_requests]


class TestEsiClient:
    """Tests for EsiClient.request and its endpoints."""

    def _client(self, fake, credential_store, max_retries=5):
        self.http = httpx.AsyncClient(transport=httpx.MockTransport(fake.handler))
        sso = SsoClient(self.http, "client-id", SSO_BASE, VERIFY_URL)
        self.tokens = TokenManager(credential_store, sso)
        self.dispatch = DispatchQueue(rate=150)
        self.clock = FakeClock()
        return EsiClient(
            self.http,
            self.tokens,
            self.dispatch,
            base_url=ESI_BASE,
            max_rate_limit_retries=max_retries,
            default_retry_after=60.0,
            sleep=self.clock.sleep,
        )

    @pytest.mark.asyncio
    async def test_bearer_token_attached(self, credential_store):
        credential_store.put(make_credential(42))
        fake = FakeEsi([httpx.Response(200, json={"solar_system_id": 30000142})])
        client = self._client(fake, credential_store)

        data = await client.get_character_location(42)
        await self.http.aclose()

        assert data["solar_system_id"] == 30000142
        assert fake.auth_headers == ["Bearer T1"]
        assert fake.esi_requests[0].url.path == "/latest/characters/42/location/"
        assert self.dispatch.admitted == 1

    @pytest.mark.asyncio
    async def test_no_credential(self, credential_store):
        fake = FakeEsi()
        client = self._client(fake, credential_store)

        with pytest.raises(UnauthenticatedError):
            await client.get_character_assets(42)
        await self.http.aclose()

        assert fake.esi_requests == []

    @pytest.mark.asyncio
    async def test_401_refreshes_and_retries_once(self, credential_store):
        credential_store.put(make_credential(42))
        fake = FakeEsi([httpx.Response(401, json={"error": "token expired"}), httpx.Response(200, json=[ASSET])])
        client = self._client(fake, credential_store)

        records = await client.get_character_assets(42)
        await self.http.aclose()

        assert [r.record_id for r in records] == [ASSET["item_id"]]
        assert fake.auth_headers == ["Bearer T1", "Bearer T2"]
        assert len(fake.refresh_bodies) == 1
        assert fake.refresh_bodies[0]["refresh_token"] == ["R1"]
        assert credential_store.get(42).access_token == "T2"
        assert credential_store.get(42).refresh_token == "R2"

    @pytest.mark.asyncio
    async def test_second_401_invalidates_credential(self, credential_store):
        credential_store.put(make_credential(42))
        fake = FakeEsi([httpx.Response(401, json={}), httpx.Response(401, json={}), httpx.Response(200, json=[])])
        client = self._client(fake, credential_store)

        with pytest.raises(UnauthenticatedError):
            await client.get_character_assets(42)
        await self.http.aclose()

        assert len(fake.esi_requests) == 2
        assert len(fake.refresh_bodies) == 1
        assert credential_store.get(42) is None

    @pytest.mark.asyncio
    async def test_refresh_failure_invalidates_credential(self, credential_store):
        credential_store.put(make_credential(42))
        fake = FakeEsi([httpx.Response(401, json={})], refresh_status=400)
        client = self._client(fake, credential_store)

        with pytest.raises(TokenRefreshError) as exc_info:
            await client.get_character_assets(42)
        await self.http.aclose()

        assert exc_info.value.identity_id == 42
        assert credential_store.get(42) is None

    @pytest.mark.asyncio
    async def test_refreshes_before_expiry(self, credential_store):
        credential_store.put(make_credential(42, expires_in=60))
        fake = FakeEsi([httpx.Response(200, json={"ship_type_id": 587})])
        client = self._client(fake, credential_store)

        await client.get_character_ship(42)
        await self.http.aclose()

        assert len(fake.refresh_bodies) == 1
        assert fake.auth_headers == ["Bearer T2"]

    @pytest.mark.asyncio
    async def test_rate_limit_honors_retry_after(self, credential_store):
        credential_store.put(make_credential(42))
        fake = FakeEsi(
            [
                httpx.Response(429, headers={"Retry-After": "3"}, json={}),
                httpx.Response(420, json={"error": "error limited"}),
                httpx.Response(200, json=[]),
            ]
        )
        client = self._client(fake, credential_store)

        records = await client.get_character_assets(42)
        await self.http.aclose()

        assert records == []
        assert self.clock.sleeps == [3.0, 60.0]
        assert len(fake.esi_requests) == 3
        assert self.dispatch.admitted == 3

    @pytest.mark.asyncio
    async def test_rate_limit_retries_are_bounded(self, credential_store):
        credential_store.put(make_credential(42))
        fake = FakeEsi([httpx.Response(429, headers={"Retry-After": "1"}, json={}) for _ in range(3)])
        client = self._client(fake, credential_store, max_retries=2)

        with pytest.raises(RateLimitedError) as exc_info:
            await client.get_character_assets(42)
        await self.http.aclose()

        assert exc_info.value.retry_after == 1.0
        assert self.clock.sleeps == [1.0, 1.0]
        assert len(fake.esi_requests) == 3

    @pytest.mark.asyncio
    async def test_other_errors_raise(self, credential_store):
        fake = FakeEsi([httpx.Response(404, json={"error": "Type not found"})])
        client = self._client(fake, credential_store)

        with pytest.raises(EsiApiError) as exc_info:
            await client.get_type_info(999999999)
        await self.http.aclose()

        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_public_endpoint_has_no_token(self, credential_store):
        fake = FakeEsi([httpx.Response(200, json={"players": 23000, "server_version": "2500000"})])
        client = self._client(fake, credential_store)

        status = await client.get_server_status()
        await self.http.aclose()

        assert status["players"] == 23000
        assert fake.auth_headers == [None]
        assert self.dispatch.admitted == 1

    @pytest.mark.asyncio
    async def test_assets_follow_pagination(self, credential_store):
        credential_store.put(make_credential(42))
        page_one = [dict(ASSET, item_id=1), dict(ASSET, item_id=2)]
        page_two = [dict(ASSET, item_id=3, location_id=1, location_flag="Cargo")]
        fake = FakeEsi(
            [
                httpx.Response(200, json=page_one, headers={"X-Pages": "2"}),
                httpx.Response(200, json=page_two, headers={"X-Pages": "2"}),
            ]
        )
        client = self._client(fake, credential_store)

        records = await client.get_character_assets(42)
        await self.http.aclose()

        assert [r.record_id for r in records] == [1, 2, 3]
        assert [r.url.params["page"] for r in fake.esi_requests] == ["1", "2"]
        assert records[2].container_id == 1
        assert records[2].container_slot == "Cargo"
        assert records[0].is_unique_instance

    @pytest.mark.asyncio
    async def test_concurrent_401s_share_one_refresh(self, credential_store):
        credential_store.put(make_credential(42))

        def by_token(request):
            if request.headers["Authorization"] == "Bearer T1":
                return httpx.Response(401, json={})
            return httpx.Response(200, json={"solar_system_id": 30000142})

        fake = FakeEsi([by_token] * 4)
        client = self._client(fake, credential_store)

        results = await asyncio.gather(
            client.get_character_location(42), client.get_character_location(42)
        )
        await self.http.aclose()

        assert all(r["solar_system_id"] == 30000142 for r in results)
        assert len(fake.refresh_bodies) == 1
        assert credential_store.get(42).access_token == "T2"

    @pytest.mark.asyncio
    async def test_refresh_transport_error_keeps_credential(self, credential_store):
        credential_store.put(make_credential(42, expires_in=10))

        def handler(request):
            raise httpx.ConnectError("dns failure", request=request)

        self.http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        sso = SsoClient(self.http, "client-id", SSO_BASE, VERIFY_URL)
        client = EsiClient(self.http, TokenManager(credential_store, sso), DispatchQueue(rate=150), base_url=ESI_BASE)

        with pytest.raises(SsoUnavailableError) as exc_info:
            await client.get_character_assets(42)
        await self.http.aclose()

        assert exc_info.value.identity_id == 42
        assert exc_info.value.status_code is None
        assert credential_store.get(42).refresh_token == "R1"

    @pytest.mark.asyncio
    async def test_refresh_server_error_keeps_credential(self, credential_store):
        credential_store.put(make_credential(42))
        fake = FakeEsi([httpx.Response(401, json={})], refresh_status=503)
        client = self._client(fake, credential_store)

        with pytest.raises(SsoUnavailableError) as exc_info:
            await client.get_character_assets(42)
        await self.http.aclose()

        assert exc_info.value.status_code == 503
        assert credential_store.get(42).access_token == "T1"

    @pytest.mark.asyncio
    async def test_malformed_json_raises_api_error(self, credential_store):
        fake = FakeEsi([httpx.Response(200, text="<html>bad gateway page</html>")])
        client = self._client(fake, credential_store)

        with pytest.raises(EsiApiError) as exc_info:
            await client.get_server_status()
        await self.http.aclose()

        assert exc_info.value.status_code == 200
        assert "Malformed response" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_asset_page_missing_fields_raises_api_error(self, credential_store):
        credential_store.put(make_credential(42))
        fake = FakeEsi([httpx.Response(200, json=[{"item_id": 1, "quantity": 1}])])
        client = self._client(fake, credential_store)

        with pytest.raises(EsiApiError):
            await client.get_character_assets(42)
        await self.http.aclose()

    @pytest.mark.asyncio
    async def test_universe_endpoints(self, credential_store):
        fake = FakeEsi(
            [
                httpx.Response(200, json={"name": "Jita IV - Moon 4", "system_id": 30000142}),
                httpx.Response(200, json={"name": "Jita", "security_status": 0.9459}),
            ]
        )
        client = self._client(fake, credential_store)

        station = await client.get_station_info(60003760)
        system = await client.get_system_info(30000142)
        await self.http.aclose()

        assert station["system_id"] == 30000142
        assert system["name"] == "Jita"
        assert [r.url.path for r in fake.esi_requests] == [
            "/latest/universe/stations/60003760/",
            "/latest/universe/systems/30000142/",
        ]
        assert fake.auth_headers == [None, None]
