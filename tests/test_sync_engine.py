"""Tests for the synchronization engine."""
import os
from unittest.mock import AsyncMock, Mock

import httpx
import pytest

from eve_inventory.auth.credential_store import CredentialSummary
from eve_inventory.auth.scopes import STRUCTURES_SCOPE
from eve_inventory.auth.sso import SsoClient
from eve_inventory.auth.tokens import TokenManager
from eve_inventory.client.esi_client import EsiClient
from eve_inventory.client.rate_limiter import DispatchQueue
from eve_inventory.storage.record_store import LocalDirectoryRecordStore
from eve_inventory.storage.static_data import InMemoryStaticData, ItemType, Region, SolarSystem, Station
from eve_inventory.sync.engine import SyncEngine
from eve_inventory.sync.models import LocationKind
from eve_inventory.utils.errors import EsiApiError, UnauthenticatedError
from factories import FIXED_NOW, FakeClock, make_credential, make_record

JITA = 30000142
JITA_4_4 = 60003760
STRUCTURE = 1022734985679


def _summary(identity_id, scopes):
    return CredentialSummary(identity_id, f"Pilot {identity_id}", FIXED_NOW, scopes, FIXED_NOW)


class TestSyncEngine:
    """Tests for SyncEngine."""

    def setup_method(self):
        self.client = Mock()
        self.client.get_character_assets = AsyncMock(return_value=[])
        self.client.get_structure_info = AsyncMock(return_value={"name": "Keepstar", "solar_system_id": JITA})
        self.client.get_type_info = AsyncMock(side_effect=EsiApiError("Not found", 404))
        self.credentials = Mock()
        self.credentials.list_all.return_value = []
        self.static_data = InMemoryStaticData(
            types=[
                ItemType(587, "Rifter", "Minmatar frigate", volume=27289.0, mass=1067000.0),
                ItemType(34, "Tritanium", "The main building block", volume=0.01, mass=1.0),
            ],
            stations=[Station(JITA_4_4, "Jita IV - Moon 4", JITA)],
            systems=[SolarSystem(JITA, "Jita", 10000002, 0.9459)],
            regions=[Region(10000002, "The Forge")],
        )
        self.clock = FakeClock(start=10_000.0)

    def _engine(self, tmp_path):
        self.records = LocalDirectoryRecordStore(os.path.join(str(tmp_path), "assets"))
        return SyncEngine(
            self.client,
            self.records,
            self.static_data,
            self.credentials,
            freshness_seconds=1800,
            clock=self.clock,
        )

    @pytest.mark.asyncio
    async def test_fetch_replaces_whole_cache(self, tmp_path):
        engine = self._engine(tmp_path)
        self.records.replace_records(42, [make_record(1, JITA_4_4), make_record(2, JITA_4_4), make_record(3, JITA_4_4)], 0.0)
        self.client.get_character_assets.return_value = [make_record(2, JITA_4_4), make_record(4, JITA_4_4)]

        result = await engine.get_records(42)

        assert not result.from_cache
        assert result.synced_at == 10_000.0
        stored = self.records.load_records(42)
        assert [r.record_id for r in stored.records] == [2, 4]
        assert stored.synced_at == 10_000.0

    @pytest.mark.asyncio
    async def test_fresh_cache_skips_fetch(self, tmp_path):
        engine = self._engine(tmp_path)
        self.records.replace_records(42, [make_record(1, JITA_4_4)], self.clock.now - 600)

        result = await engine.get_records(42)

        assert result.from_cache
        assert result.error is None
        self.client.get_character_assets.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_force_refresh_fetches(self, tmp_path):
        engine = self._engine(tmp_path)
        self.records.replace_records(42, [make_record(1, JITA_4_4)], self.clock.now - 60)

        result = await engine.get_records(42, force_refresh=True)

        assert not result.from_cache
        self.client.get_character_assets.assert_awaited_once_with(42)

    @pytest.mark.asyncio
    async def test_failure_without_cache_propagates(self, tmp_path):
        engine = self._engine(tmp_path)
        self.client.get_character_assets.side_effect = httpx.ConnectError("network down")

        with pytest.raises(httpx.ConnectError):
            await engine.get_records(42)

    @pytest.mark.asyncio
    async def test_failure_with_stale_cache_serves_cache(self, tmp_path):
        engine = self._engine(tmp_path)
        self.records.replace_records(42, [make_record(1, JITA_4_4)], self.clock.now - 7200)
        self.client.get_character_assets.side_effect = httpx.ConnectError("network down")

        result = await engine.get_records(42)

        assert result.from_cache
        assert result.is_stale_fallback
        assert "network down" in result.error
        assert [r.record_id for r in result.records] == [1]

    @pytest.mark.asyncio
    async def test_auth_failure_with_cache_serves_cache(self, tmp_path):
        engine = self._engine(tmp_path)
        self.records.replace_records(42, [make_record(1, JITA_4_4)], self.clock.now - 7200)
        self.client.get_character_assets.side_effect = UnauthenticatedError("No authentication found", 42)

        result = await engine.get_records(42)

        assert result.is_stale_fallback

    @pytest.mark.asyncio
    async def test_inventory_groups_and_resolves(self, tmp_path):
        engine = self._engine(tmp_path)
        self.client.get_character_assets.return_value = [
            make_record(100, JITA_4_4, kind_id=587, unique=True),
            make_record(101, 100, kind_id=34, quantity=500, slot="Cargo"),
            make_record(200, STRUCTURE, kind_id=99999),
        ]

        inventory = await engine.get_inventory(42)

        assert [g.location.location_id for g in inventory.groups] == [JITA_4_4, STRUCTURE]
        station_group, structure_group = inventory.groups
        assert station_group.location.location_kind == LocationKind.FIXED_STATION
        assert station_group.nodes[0].children[0].record.record_id == 101
        assert structure_group.location.display_name == "Keepstar"
        assert inventory.kind_name(587) == "Rifter"
        assert inventory.kind_name(99999) == "Type 99999"
        self.client.get_structure_info.assert_awaited_once_with(42, STRUCTURE)

    @pytest.mark.asyncio
    async def test_structure_lookup_falls_back_to_other_character(self, tmp_path):
        engine = self._engine(tmp_path)
        self.credentials.list_all.return_value = [
            _summary(42, [STRUCTURES_SCOPE]),
            _summary(7, []),
            _summary(8, [STRUCTURES_SCOPE]),
        ]
        self.client.get_character_assets.return_value = [make_record(1, STRUCTURE)]

        async def structure_info(character_id, structure_id):
            if character_id == 42:
                raise EsiApiError("Forbidden", 403, character_id)
            return {"name": "Fortizar", "solar_system_id": JITA}

        self.client.get_structure_info.side_effect = structure_info

        inventory = await engine.get_inventory(42)

        assert inventory.groups[0].location.display_name == "Fortizar"
        called_with = [c.args[0] for c in self.client.get_structure_info.await_args_list]
        assert called_with == [42, 8]

    @pytest.mark.asyncio
    async def test_structure_lookup_failure_degrades(self, tmp_path):
        engine = self._engine(tmp_path)
        self.client.get_character_assets.return_value = [make_record(1, STRUCTURE), make_record(2, JITA_4_4)]
        self.client.get_structure_info.side_effect = EsiApiError("Forbidden", 403)

        inventory = await engine.get_inventory(42)

        names = [g.location.display_name for g in inventory.groups]
        assert names == [f"Structure {STRUCTURE}", "Jita IV - Moon 4"]
        assert STRUCTURE in inventory.degraded_locations

    @pytest.mark.asyncio
    async def test_missing_types_fetched_once(self, tmp_path):
        engine = self._engine(tmp_path)
        self.client.get_type_info = AsyncMock(return_value={"name": "Mystery Box", "volume": 2.0})

        first = await engine.describe_kinds([12345, 34])
        second = await engine.describe_kinds([12345])

        assert first[12345].name == "Mystery Box"
        assert first[34].name == "Tritanium"
        assert second[12345].volume == 2.0
        self.client.get_type_info.assert_awaited_once_with(12345)

    @pytest.mark.asyncio
    async def test_search_records(self, tmp_path):
        engine = self._engine(tmp_path)
        self.client.get_character_assets.return_value = [
            make_record(1, JITA_4_4, kind_id=587),
            make_record(2, JITA_4_4, kind_id=34),
        ]

        by_name = await engine.search_records(42, "rift")
        by_description = await engine.search_records(42, "BUILDING")
        by_kind = await engine.search_records(42, "587")

        assert [r.record_id for r, _ in by_name] == [1]
        assert [r.record_id for r, _ in by_description] == [2]
        assert [t.name for _, t in by_kind] == ["Rifter"]
        assert await engine.search_records(42, "  ") == []

    @pytest.mark.asyncio
    async def test_asset_stats(self, tmp_path):
        engine = self._engine(tmp_path)
        self.records.replace_records(
            42,
            [
                make_record(1, JITA_4_4, kind_id=587),
                make_record(2, 1, kind_id=34, quantity=1000, slot="Cargo"),
                make_record(3, JITA_4_4, kind_id=34, quantity=100),
            ],
            1234.0,
        )

        stats = await engine.get_asset_stats(42)

        assert stats.total_items == 3
        assert stats.unique_kinds == 2
        assert stats.unique_locations == 2
        assert stats.last_sync_time == 1234.0
        assert stats.total_volume == pytest.approx(27289.0 + 11.0)
        assert stats.total_mass == pytest.approx(1067000.0 + 1100.0)
        self.client.get_character_assets.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_asset_stats_without_cache(self, tmp_path):
        stats = await self._engine(tmp_path).get_asset_stats(42)
        assert stats.total_items == 0
        assert stats.last_sync_time is None

    @pytest.mark.asyncio
    async def test_locate_docked_character(self, tmp_path):
        engine = self._engine(tmp_path)
        self.client.get_character_location = AsyncMock(
            return_value={"solar_system_id": JITA, "station_id": JITA_4_4}
        )

        position = await engine.locate_character(42)

        assert position.docked
        assert position.location.display_name == "Jita IV - Moon 4"
        assert position.location.location_kind == LocationKind.FIXED_STATION

    @pytest.mark.asyncio
    async def test_locate_character_in_structure(self, tmp_path):
        engine = self._engine(tmp_path)
        self.client.get_character_location = AsyncMock(
            return_value={"solar_system_id": JITA, "structure_id": STRUCTURE}
        )

        position = await engine.locate_character(42)

        assert position.docked
        assert position.location.display_name == "Keepstar"
        self.client.get_structure_info.assert_awaited_once_with(42, STRUCTURE)

    @pytest.mark.asyncio
    async def test_locate_character_in_space(self, tmp_path):
        engine = self._engine(tmp_path)
        self.client.get_character_location = AsyncMock(return_value={"solar_system_id": JITA})

        position = await engine.locate_character(42)

        assert not position.docked
        assert position.location.location_kind == LocationKind.STAR_SYSTEM
        assert position.location.system.name == "Jita"

    @pytest.mark.asyncio
    async def test_active_ship(self, tmp_path):
        engine = self._engine(tmp_path)
        self.client.get_character_ship = AsyncMock(
            return_value={"ship_item_id": 1000000016991, "ship_name": "Lucky Star", "ship_type_id": 587}
        )

        ship = await engine.get_active_ship(42)

        assert ship.name == "Lucky Star"
        assert ship.kind.name == "Rifter"
        assert ship.item_id == 1000000016991


class TestSyncEngineWithEsi:
    """Cache fallback against malformed ESI responses."""

    @pytest.mark.asyncio
    async def test_malformed_asset_page_serves_cache(self, tmp_path, credential_store):
        credential_store.put(make_credential(42))
        records = LocalDirectoryRecordStore(os.path.join(str(tmp_path), "assets"))
        records.replace_records(42, [make_record(1, JITA_4_4)], 0.0)

        def handler(request):
            return httpx.Response(200, text="<html>bad gateway page</html>")

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            sso = SsoClient(http, "client-id", "https://login.eveonline.com/v2/oauth", "https://login.eveonline.com/oauth/verify")
            esi = EsiClient(http, TokenManager(credential_store, sso), DispatchQueue(rate=150))
            engine = SyncEngine(esi, records, InMemoryStaticData(), credential_store, clock=FakeClock(start=10_000.0))

            result = await engine.get_records(42)

        assert result.is_stale_fallback
        assert "Malformed response" in result.error
        assert [r.record_id for r in result.records] == [1]

    @pytest.mark.asyncio
    async def test_asset_missing_fields_serves_cache(self, tmp_path, credential_store):
        credential_store.put(make_credential(42))
        records = LocalDirectoryRecordStore(os.path.join(str(tmp_path), "assets"))
        records.replace_records(42, [make_record(1, JITA_4_4)], 0.0)

        def handler(request):
            return httpx.Response(200, json=[{"item_id": 5, "quantity": 1}])

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            sso = SsoClient(http, "client-id", "https://login.eveonline.com/v2/oauth", "https://login.eveonline.com/oauth/verify")
            esi = EsiClient(http, TokenManager(credential_store, sso), DispatchQueue(rate=150))
            engine = SyncEngine(esi, records, InMemoryStaticData(), credential_store, clock=FakeClock(start=10_000.0))

            result = await engine.get_records(42)

        assert result.is_stale_fallback
        assert [r.record_id for r in result.records] == [1]
        assert [r.record_id for r in records.load_records(42).records] == [1]
