"""Tests for the admin ban and intrusion endpoints."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from aiohttp.test_utils import TestClient, TestServer, make_mocked_request

from bastion.api.server import SecurityAPIServer
from bastion.bans.cache import MemoryBanCache
from bastion.bans.manager import BanManager
from bastion.bans.models import BanCacheError, BanKind, BanPersistenceError
from bastion.security.models import Severity

ADMIN_KEY = "test-admin-key"
AUTH = {"X-Admin-Key": ADMIN_KEY}


@pytest.fixture
def make_client(scanner, ban_manager, intrusions, mock_settings):
    """Factory for a test client over the full app."""

    def _make(manager: BanManager | None = None) -> TestClient:
        server = SecurityAPIServer(manager or ban_manager, scanner, intrusions, mock_settings)
        return TestClient(TestServer(server.create_app()))

    return _make


class TestAdminAuth:
    @pytest.mark.asyncio
    async def test_missing_key_rejected(self, make_client):
        async with make_client() as client:
            resp = await client.get("/admin/bans")
            body = await resp.json()

        assert resp.status == 401
        assert body["slug"] == "UNAUTHORIZED_ACCESS"
        assert body["data"] is None

    @pytest.mark.asyncio
    async def test_wrong_key_rejected(self, make_client):
        async with make_client() as client:
            resp = await client.get("/admin/intrusions", headers={"X-Admin-Key": "nope"})

        assert resp.status == 401

    @pytest.mark.asyncio
    async def test_rejected_before_body_is_read(self, make_client, ban_manager):
        async with make_client() as client:
            resp = await client.post(
                "/admin/bans", json={"type": "ip", "value": "198.51.100.7"}
            )

        assert resp.status == 401
        assert await ban_manager.is_banned(BanKind.IP, "198.51.100.7") is False


class TestBanEndpoints:
    @pytest.mark.asyncio
    async def test_reason_quoting_an_attack_is_applied(self, make_client, ban_manager):
        async with make_client() as client:
            resp = await client.post(
                "/admin/bans",
                json={"type": "ip", "value": "198.51.100.7", "reason": "probing ../../etc/passwd"},
                headers=AUTH,
            )
            body = await resp.json()
            follow_up = await client.get("/admin/bans", headers=AUTH)

        assert resp.status == 200
        assert body["data"] == {"created": True}
        assert (await ban_manager.list(BanKind.IP)) == {
            "198.51.100.7": "probing ../../etc/passwd"
        }
        assert await ban_manager.is_banned(BanKind.IP, "127.0.0.1") is False
        assert follow_up.status == 200

    @pytest.mark.asyncio
    async def test_list_bans(self, make_client, ban_manager):
        await ban_manager.ban(BanKind.IP, "198.51.100.7", "abuse")
        await ban_manager.ban(BanKind.USER, "user-9")

        async with make_client() as client:
            resp = await client.get("/admin/bans", headers=AUTH)
            body = await resp.json()

        assert resp.status == 200
        assert body["slug"] == "DATA_RETRIEVED"
        assert body["data"] == {
            "ips": {"198.51.100.7": "abuse"},
            "users": {"user-9": "Manual Ban"},
            "tokens": {},
        }

    @pytest.mark.asyncio
    async def test_ban_created(self, make_client, ban_manager, mock_store):
        async with make_client() as client:
            resp = await client.post(
                "/admin/bans",
                json={"type": "ip", "value": "198.51.100.7", "reason": "abuse"},
                headers=AUTH,
            )
            body = await resp.json()

        assert resp.status == 200
        assert body["data"] == {"created": True}
        assert await ban_manager.is_banned(BanKind.IP, "198.51.100.7") is True
        mock_store.insert.assert_awaited_once_with(BanKind.IP, "198.51.100.7", "abuse", None)

    @pytest.mark.asyncio
    async def test_ban_twice_keeps_first_reason(self, make_client, ban_manager):
        await ban_manager.ban(BanKind.TOKEN, "sig-abc", "leaked")

        async with make_client() as client:
            resp = await client.post(
                "/admin/bans",
                json={"type": "token", "value": "sig-abc", "reason": "other"},
                headers=AUTH,
            )
            body = await resp.json()

        assert body["data"] == {"created": False}
        assert (await ban_manager.list(BanKind.TOKEN)) == {"sig-abc": "leaked"}

    @pytest.mark.asyncio
    async def test_unban(self, make_client, ban_manager):
        await ban_manager.ban(BanKind.USER, "user-9")

        async with make_client() as client:
            first = await client.delete(
                "/admin/bans", json={"type": "user", "value": "user-9"}, headers=AUTH
            )
            second = await client.delete(
                "/admin/bans", json={"type": "user", "value": "user-9"}, headers=AUTH
            )
            first_body = await first.json()
            second_body = await second.json()

        assert first_body["data"] == {"removed": True}
        assert second_body["data"] == {"removed": False}
        assert await ban_manager.is_banned(BanKind.USER, "user-9") is False

    @pytest.mark.asyncio
    async def test_unknown_kind_rejected(self, make_client):
        async with make_client() as client:
            resp = await client.post(
                "/admin/bans", json={"type": "device", "value": "abc"}, headers=AUTH
            )
            body = await resp.json()

        assert resp.status == 400
        assert "type" in body["data"]

    @pytest.mark.asyncio
    async def test_blank_identity_rejected(self, make_client, mock_store):
        async with make_client() as client:
            resp = await client.post(
                "/admin/bans", json={"type": "ip", "value": "   "}, headers=AUTH
            )
            body = await resp.json()

        assert resp.status == 400
        assert "value" in body["data"]
        mock_store.insert.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_persistence_failure_is_500(self, make_client, mock_store):
        mock_store.insert.side_effect = BanPersistenceError("db down")

        async with make_client() as client:
            resp = await client.post(
                "/admin/bans", json={"type": "ip", "value": "198.51.100.7"}, headers=AUTH
            )
            body = await resp.json()

        assert resp.status == 500
        assert body["slug"] == "SERVER_ERROR"
        assert "debug" not in body

    @pytest.mark.asyncio
    async def test_cache_outage_on_list_is_503(self, make_client, mock_store):
        cache = AsyncMock(spec=MemoryBanCache)
        cache.contains.return_value = False
        cache.get_all.side_effect = BanCacheError("redis unreachable")

        async with make_client(BanManager(cache, mock_store)) as client:
            resp = await client.get("/admin/bans", headers=AUTH)
            body = await resp.json()

        assert resp.status == 503
        assert body["slug"] == "SERVICE_UNAVAILABLE"


class TestIntrusionsEndpoint:
    @pytest.mark.asyncio
    async def test_snapshot(self, make_client, intrusions):
        request = make_mocked_request("POST", "/api/login")
        request["client_ip"] = "198.51.100.7"
        intrusions.record(request, severity=Severity.CRITICAL, threat_type="MALICIOUS_INPUT")

        async with make_client() as client:
            resp = await client.get("/admin/intrusions", headers=AUTH)
            body = await resp.json()

        assert resp.status == 200
        assert body["data"]["total"] == 1
        event = body["data"]["recent"][0]
        assert event["ip"] == "198.51.100.7"
        assert event["route"] == "/api/login"
        assert event["type"] == "MALICIOUS_INPUT"
