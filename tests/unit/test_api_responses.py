"""Tests for the response envelope and framing middlewares."""

from __future__ import annotations

import pytest
from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer

from bastion.api.responses import (
    DEFAULT_MESSAGES,
    ResponseKey,
    create_error_middleware,
    create_request_id_middleware,
    send_response,
)


def _make_app(*, debug_errors: bool = False) -> web.Application:
    app = web.Application(
        middlewares=[create_request_id_middleware(), create_error_middleware()]
    )
    app["debug_errors"] = debug_errors

    async def ok(request: web.Request) -> web.Response:
        return send_response(request, 200, ResponseKey.DATA_RETRIEVED, {"answer": 42})

    async def boom(request: web.Request) -> web.Response:
        raise RuntimeError("database password is hunter2")

    async def forbidden(request: web.Request) -> web.Response:
        raise web.HTTPForbidden()

    async def redirect(request: web.Request) -> web.Response:
        raise web.HTTPFound("/ok")

    app.router.add_get("/ok", ok)
    app.router.add_get("/boom", boom)
    app.router.add_get("/forbidden", forbidden)
    app.router.add_get("/redirect", redirect)
    return app


class TestEnvelope:
    @pytest.mark.asyncio
    async def test_success_envelope(self):
        async with TestClient(TestServer(_make_app())) as client:
            resp = await client.get("/ok")
            body = await resp.json()

        assert resp.status == 200
        assert body["success"] is True
        assert body["code"] == 200
        assert body["slug"] == "DATA_RETRIEVED"
        assert body["message"] == DEFAULT_MESSAGES[ResponseKey.DATA_RETRIEVED]
        assert body["data"] == {"answer": 42}
        assert body["meta"]["request_id"].startswith("req_")
        assert "timestamp" in body["meta"]
        assert "debug" not in body

    @pytest.mark.asyncio
    async def test_request_id_echoed(self):
        async with TestClient(TestServer(_make_app())) as client:
            resp = await client.get("/ok", headers={"X-Request-ID": "abc-123"})
            body = await resp.json()

        assert resp.headers["X-Request-ID"] == "abc-123"
        assert body["meta"]["request_id"] == "abc-123"

    @pytest.mark.asyncio
    async def test_generated_request_id_format(self):
        async with TestClient(TestServer(_make_app())) as client:
            resp = await client.get("/ok")

        request_id = resp.headers["X-Request-ID"]
        assert request_id.startswith("req_")
        assert len(request_id) == 12


class TestErrorMiddleware:
    @pytest.mark.asyncio
    async def test_unknown_route_is_not_found_envelope(self):
        async with TestClient(TestServer(_make_app())) as client:
            resp = await client.get("/missing")
            body = await resp.json()

        assert resp.status == 404
        assert body["success"] is False
        assert body["slug"] == "NOT_FOUND"
        assert body["data"] is None

    @pytest.mark.asyncio
    async def test_http_error_mapped(self):
        async with TestClient(TestServer(_make_app())) as client:
            resp = await client.get("/forbidden")
            body = await resp.json()

        assert resp.status == 403
        assert body["slug"] == "PERMISSION_DENIED"

    @pytest.mark.asyncio
    async def test_crash_hides_details_outside_development(self):
        async with TestClient(TestServer(_make_app())) as client:
            resp = await client.get("/boom")
            text = await resp.text()

        assert resp.status == 500
        assert "SERVER_ERROR" in text
        assert "hunter2" not in text

    @pytest.mark.asyncio
    async def test_crash_includes_debug_in_development(self):
        async with TestClient(TestServer(_make_app(debug_errors=True))) as client:
            resp = await client.get("/boom")
            body = await resp.json()

        assert body["debug"]["type"] == "RuntimeError"

    @pytest.mark.asyncio
    async def test_redirects_pass_through(self):
        async with TestClient(TestServer(_make_app())) as client:
            resp = await client.get("/redirect", allow_redirects=False)

        assert resp.status == 302
