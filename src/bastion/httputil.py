"""HTTP primitives shared by the security and API layers.

Response slugs and the request identity helpers live here so that the
decision policy and the intrusion log never import the aiohttp app modules.
"""

from __future__ import annotations

from enum import StrEnum

from aiohttp import web


class ResponseKey(StrEnum):
    """Machine-readable response slugs."""

    OPERATION_SUCCESS = "OPERATION_SUCCESS"
    DATA_RETRIEVED = "DATA_RETRIEVED"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    NOT_FOUND = "NOT_FOUND"
    UNAUTHORIZED_ACCESS = "UNAUTHORIZED_ACCESS"
    SERVER_ERROR = "SERVER_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


DEFAULT_MESSAGES: dict[ResponseKey, str] = {
    ResponseKey.OPERATION_SUCCESS: "Operation completed successfully.",
    ResponseKey.DATA_RETRIEVED: "Data retrieved successfully.",
    ResponseKey.VALIDATION_ERROR: "The provided data is invalid.",
    ResponseKey.PERMISSION_DENIED: "You do not have permission to access this resource.",
    ResponseKey.NOT_FOUND: "Resource not found.",
    ResponseKey.UNAUTHORIZED_ACCESS: "You are not authorized to perform this action.",
    ResponseKey.SERVER_ERROR: "An internal server error occurred.",
    ResponseKey.SERVICE_UNAVAILABLE: "The service is temporarily unavailable.",
}


def client_ip(request: web.Request, *, trust_forwarded_for: bool = False) -> str | None:
    """Return the client address, honouring ``X-Forwarded-For`` only when trusted."""
    if trust_forwarded_for:
        forwarded = request.headers.get("X-Forwarded-For", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    return request.remote


def bearer_token(request: web.Request) -> str | None:
    """Return the bearer token from ``Authorization`` or the ``access_token`` cookie."""
    auth = request.headers.get("Authorization", "")
    if auth.lower().startswith("bearer "):
        token = auth[7:].strip()
        if token:
            return token
    return request.cookies.get("access_token") or None
