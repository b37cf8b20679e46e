"""Standard JSON response envelope and the middlewares that frame it.

Every response the service produces, including denials, fake successes and
router 404s, has the same shape::

    {
        "success": bool,
        "code": int,
        "slug": "NOT_FOUND",
        "message": "Resource not found.",
        "data": ...,
        "meta": {"request_id": "req_1a2b3c4d", "timestamp": "..."}
    }

A ``debug`` block is only added when the app runs with ``debug_errors``.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from aiohttp import web

from bastion.httputil import DEFAULT_MESSAGES, ResponseKey
from bastion.logging import get_logger

log = get_logger("bastion.api.responses")

REQUEST_ID_HEADER = "X-Request-ID"

_STATUS_KEYS: dict[int, ResponseKey] = {
    400: ResponseKey.VALIDATION_ERROR,
    401: ResponseKey.UNAUTHORIZED_ACCESS,
    403: ResponseKey.PERMISSION_DENIED,
    404: ResponseKey.NOT_FOUND,
    405: ResponseKey.NOT_FOUND,
    413: ResponseKey.VALIDATION_ERROR,
    503: ResponseKey.SERVICE_UNAVAILABLE,
}


def send_response(
    request: web.Request,
    status: int,
    key: ResponseKey | str,
    data: Any = None,
    *,
    message: str | None = None,
    error: BaseException | None = None,
) -> web.Response:
    """Build a JSON response in the standard envelope."""
    slug = ResponseKey(key)
    body: dict[str, Any] = {
        "success": 200 <= status < 300,
        "code": status,
        "slug": slug.value,
        "message": message or DEFAULT_MESSAGES[slug],
        "data": data,
        "meta": {
            "request_id": request.get("request_id"),
            "timestamp": datetime.now(UTC).isoformat(),
        },
    }
    if error is not None and request.config_dict.get("debug_errors", False):
        body["debug"] = {"type": type(error).__name__, "error": str(error)}
    return web.json_response(body, status=status)


def create_request_id_middleware() -> Any:
    """Create middleware that tags each request with an id and echoes it back."""

    @web.middleware
    async def request_id_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
        request_id = request.headers.get(REQUEST_ID_HEADER) or f"req_{uuid.uuid4().hex[:8]}"
        request["request_id"] = request_id
        try:
            response: web.StreamResponse = await handler(request)
        except web.HTTPException as exc:
            exc.headers[REQUEST_ID_HEADER] = request_id
            raise
        response.headers[REQUEST_ID_HEADER] = request_id
        return response

    return request_id_middleware


def create_error_middleware() -> Any:
    """Create middleware rendering HTTP errors and crashes as envelopes.

    Redirects and other non-error ``HTTPException`` subclasses pass through
    untouched.
    """

    @web.middleware
    async def error_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
        try:
            response: web.StreamResponse = await handler(request)
            return response
        except web.HTTPException as exc:
            if exc.status < 400:
                raise
            key = _STATUS_KEYS.get(exc.status, ResponseKey.SERVER_ERROR)
            return send_response(request, exc.status, key, error=exc)
        except Exception as exc:
            log.exception(
                "unhandled_exception",
                request_id=request.get("request_id"),
                method=request.method,
                path=request.path,
                error=str(exc),
            )
            return send_response(request, 500, ResponseKey.SERVER_ERROR, error=exc)

    return error_middleware
