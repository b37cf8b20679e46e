"""Administrative endpoints for bans and intrusion history.

Every endpoint requires the ``X-Admin-Key`` header. The routes are only
mounted when ``ADMIN_API_KEY`` is configured. Admin bodies are validated but
not threat-scanned: ban reasons routinely quote the attack they answer.
"""

from __future__ import annotations

import functools
import hmac
from typing import Any

from aiohttp import web
from pydantic import BaseModel, Field

from bastion.api.responses import ResponseKey, send_response
from bastion.api.validation import Handler, validate
from bastion.bans.models import BanCacheError, BanKind, BanPersistenceError
from bastion.logging import get_logger

log = get_logger("bastion.api.routes.admin")

ADMIN_KEY_HEADER = "X-Admin-Key"


class BanRequest(BaseModel):
    """Body of ``POST /admin/bans``."""

    type: BanKind
    value: str = Field(min_length=1, max_length=512)
    reason: str | None = Field(default=None, max_length=500)


class UnbanRequest(BaseModel):
    """Body of ``DELETE /admin/bans``."""

    type: BanKind
    value: str = Field(min_length=1, max_length=512)


def require_admin(handler: Handler) -> Handler:
    """Reject requests without a matching ``X-Admin-Key`` (constant-time compare)."""

    @functools.wraps(handler)
    async def wrapper(request: web.Request) -> web.StreamResponse:
        expected: str | None = request.config_dict.get("admin_api_key")
        provided = request.headers.get(ADMIN_KEY_HEADER, "")
        if not expected or not hmac.compare_digest(
            provided.encode("utf-8"), expected.encode("utf-8")
        ):
            log.warning(
                "admin_auth_failed",
                ip=request.get("client_ip") or request.remote,
                path=request.path,
            )
            return send_response(request, 401, ResponseKey.UNAUTHORIZED_ACCESS)
        return await handler(request)

    return wrapper


@require_admin
async def handle_list_bans(request: web.Request) -> web.Response:
    """GET /admin/bans - current fast-tier ban lists."""
    manager = request.app["ban_manager"]
    try:
        data: dict[str, Any] = {
            "ips": await manager.list(BanKind.IP),
            "users": await manager.list(BanKind.USER),
            "tokens": await manager.list(BanKind.TOKEN),
        }
    except BanCacheError as exc:
        log.error("admin_list_bans_failed", error=str(exc))
        return send_response(request, 503, ResponseKey.SERVICE_UNAVAILABLE, error=exc)
    return send_response(request, 200, ResponseKey.DATA_RETRIEVED, data)


@require_admin
@validate(body_model=BanRequest, scan=False)
async def handle_ban(request: web.Request) -> web.Response:
    """POST /admin/bans - ban an IP, user or token signature."""
    body: BanRequest = request["body"]
    manager = request.app["ban_manager"]
    try:
        created = await manager.ban(body.type, body.value, body.reason)
    except ValueError as exc:
        return send_response(
            request, 400, ResponseKey.VALIDATION_ERROR, {"value": str(exc)}
        )
    except BanPersistenceError as exc:
        return send_response(request, 500, ResponseKey.SERVER_ERROR, error=exc)

    log.info("admin_ban_applied", kind=body.type.value, created=created)
    return send_response(request, 200, ResponseKey.OPERATION_SUCCESS, {"created": created})


@require_admin
@validate(body_model=UnbanRequest, scan=False)
async def handle_unban(request: web.Request) -> web.Response:
    """DELETE /admin/bans - lift a ban."""
    body: UnbanRequest = request["body"]
    manager = request.app["ban_manager"]
    try:
        removed = await manager.unban(body.type, body.value)
    except ValueError as exc:
        return send_response(
            request, 400, ResponseKey.VALIDATION_ERROR, {"value": str(exc)}
        )
    except BanPersistenceError as exc:
        return send_response(request, 500, ResponseKey.SERVER_ERROR, error=exc)

    log.info("admin_ban_lifted", kind=body.type.value, removed=removed)
    return send_response(request, 200, ResponseKey.OPERATION_SUCCESS, {"removed": removed})


@require_admin
async def handle_intrusions(request: web.Request) -> web.Response:
    """GET /admin/intrusions - recent intrusion attempts in this process."""
    return send_response(
        request, 200, ResponseKey.DATA_RETRIEVED, request.app["intrusions"].snapshot()
    )


def register_admin_routes(app: web.Application) -> None:
    """Mount the admin endpoints on *app*."""
    app.router.add_get("/admin/bans", handle_list_bans)
    app.router.add_post("/admin/bans", handle_ban)
    app.router.add_delete("/admin/bans", handle_unban)
    app.router.add_get("/admin/intrusions", handle_intrusions)
