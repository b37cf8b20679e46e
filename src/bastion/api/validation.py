"""Handler decorator combining the payload scan with pydantic validation.

Usage::

    @validate(body_model=BanRequest)
    async def handle_ban(request: web.Request) -> web.Response:
        body: BanRequest = request["body"]
        ...

The scanner, ban manager and intrusion log are read from the app
(``app["scanner"]``, ``app["ban_manager"]``, ``app["intrusions"]``).
"""

from __future__ import annotations

import functools
from collections.abc import Awaitable, Callable
from typing import Any

from aiohttp import web
from pydantic import BaseModel, ValidationError

from bastion.api.responses import ResponseKey, send_response
from bastion.bans.models import BanKind, BanPersistenceError
from bastion.logging import get_logger
from bastion.security.forensics import log_escalation_failure, log_threat_event
from bastion.security.models import ScanContext, ThreatAction
from bastion.security.policy import decide, highest_severity

log = get_logger("bastion.api.validation")

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def _error_map(exc: ValidationError, default_field: str) -> dict[str, str]:
    errors: dict[str, str] = {}
    for err in exc.errors():
        field = ".".join(str(part) for part in err["loc"]) or default_field
        errors.setdefault(field, err["msg"])
    return errors


async def _read_body(request: web.Request) -> Any:
    if not request.body_exists:
        return None
    return await request.json()


def validate(
    body_model: type[BaseModel] | None = None,
    query_model: type[BaseModel] | None = None,
    *,
    scan: bool = True,
) -> Callable[[Handler], Handler]:
    """Scan and validate the request before calling the handler.

    Malicious payloads (risk at or above the block threshold) get a fake
    ``OPERATION_SUCCESS`` with no data and the client is banned when a
    CRITICAL signature matched. Suspicious payloads get a bare 400. Clean
    payloads are validated against the given models; the parsed models are
    stored as ``request["body"]`` and ``request["query"]``.

    With ``scan=False`` only the models are applied. Use it for trusted
    callers such as admin routes, whose bodies legitimately quote attack
    strings (ban reasons) and must never reach the deception path.
    """

    def decorator(handler: Handler) -> Handler:
        @functools.wraps(handler)
        async def wrapper(request: web.Request) -> web.StreamResponse:
            try:
                body = await _read_body(request)
            except ValueError:  # malformed JSON or undecodable bytes
                return send_response(
                    request, 400, ResponseKey.VALIDATION_ERROR, message="Invalid JSON"
                )
            query = dict(request.query)
            params = dict(request.match_info)

            if scan:
                denied = await _screen(request, {"body": body, "query": query, "params": params})
                if denied is not None:
                    return denied

            if body_model is not None:
                try:
                    request["body"] = body_model.model_validate(body if body is not None else {})
                except ValidationError as exc:
                    return send_response(
                        request, 400, ResponseKey.VALIDATION_ERROR, _error_map(exc, "body")
                    )
            if query_model is not None:
                try:
                    request["query"] = query_model.model_validate(query)
                except ValidationError as exc:
                    return send_response(
                        request, 400, ResponseKey.VALIDATION_ERROR, _error_map(exc, "query")
                    )

            return await handler(request)

        return wrapper

    return decorator


async def _escalate(request: web.Request, reason: str) -> None:
    ip = request.get("client_ip") or request.remote
    if not ip:
        return
    try:
        await request.config_dict["ban_manager"].ban(BanKind.IP, ip, reason)
    except (BanPersistenceError, ValueError) as exc:
        log_escalation_failure(request, reason=reason, error=exc)


async def _screen(request: web.Request, payload: dict[str, Any]) -> web.Response | None:
    """Deep-scan *payload*; return the denial response, or None to proceed."""
    result = request.config_dict["scanner"].deep_scan(payload)
    decision = decide(result, ScanContext.PAYLOAD)
    severity = highest_severity(decision.threats)

    if decision.allowed:
        if decision.threats:
            log_threat_event(
                "LOW_RISK_INPUT_ALLOWED",
                request,
                severity=severity,
                threats=decision.threats,
                risk_score=decision.risk_score,
                action=decision.action.value,
            )
        return None

    event = (
        "MALICIOUS_INPUT_BLOCKED"
        if decision.action is ThreatAction.DECEIVE
        else "SUSPICIOUS_INPUT_REJECTED"
    )
    log_threat_event(
        event,
        request,
        severity=severity,
        threats=decision.threats,
        risk_score=decision.risk_score,
        action=decision.action.value,
    )
    if severity is not None:
        request.config_dict["intrusions"].record(
            request,
            severity=severity,
            threat_type="MALICIOUS_INPUT",
            details={"threats": [t.type for t in decision.threats]},
        )
    if decision.escalate:
        await _escalate(request, decision.ban_reason)
    return send_response(request, decision.status, decision.slug)
