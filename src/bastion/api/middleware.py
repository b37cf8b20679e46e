"""Admission middleware for the aiohttp app.

Provides request access logging, ban enforcement for IPs, users and tokens,
and the user-agent WAF with automatic escalation to an IP ban.
"""

from __future__ import annotations

import time
from typing import Any

from aiohttp import web

from bastion.api.responses import send_response
from bastion.bans.manager import BanManager
from bastion.bans.models import BanKind, BanPersistenceError, token_signature
from bastion.httputil import ResponseKey, bearer_token, client_ip
from bastion.logging import get_logger
from bastion.security.forensics import log_escalation_failure, log_threat_event
from bastion.security.intrusions import IntrusionLog
from bastion.security.models import ScanContext, Severity
from bastion.security.policy import decide, highest_severity
from bastion.security.scanner import Scanner

log = get_logger("bastion.api.middleware")

# Paths excluded from the access log
QUIET_PATHS = frozenset({"/health"})

_BANNED_ACCESS_TYPES = {
    BanKind.IP: "BANNED_IP_ACCESS",
    BanKind.USER: "BANNED_USER_ACCESS",
    BanKind.TOKEN: "REVOKED_TOKEN_ACCESS",
}


def create_access_log_middleware() -> Any:
    """Create middleware logging every completed request with its status."""

    @web.middleware
    async def access_log_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
        start = time.monotonic()
        status = 500
        try:
            response: web.StreamResponse = await handler(request)
            status = response.status
            return response
        except web.HTTPException as exc:
            status = exc.status
            raise
        finally:
            if request.path not in QUIET_PATHS:
                fields = {
                    "request_id": request.get("request_id"),
                    "method": request.method,
                    "path": request.path,
                    "status": status,
                    "duration_ms": round((time.monotonic() - start) * 1000, 2),
                    "ip": request.get("client_ip") or request.remote,
                }
                if status >= 500:
                    log.error("request_failed", **fields)
                elif status >= 400:
                    log.warning("request_rejected", **fields)
                else:
                    log.debug("request_completed", **fields)

    return access_log_middleware


def create_ban_middleware(
    ban_manager: BanManager,
    intrusions: IntrusionLog,
    *,
    trust_forwarded_for: bool = False,
) -> Any:
    """Create middleware rejecting banned IPs, users and revoked tokens.

    A banned client gets the same ``NOT_FOUND`` envelope the router sends for
    an unknown path, so the ban itself is not revealed. The user id is read
    from ``request["user_id"]`` when an earlier layer has authenticated the
    caller.
    """

    @web.middleware
    async def ban_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
        ip = client_ip(request, trust_forwarded_for=trust_forwarded_for)
        request["client_ip"] = ip

        user_id = request.get("user_id")
        identities: list[tuple[BanKind, str | None]] = [
            (BanKind.IP, ip),
            (BanKind.USER, str(user_id) if user_id is not None else None),
            (BanKind.TOKEN, token_signature(bearer_token(request))),
        ]

        for kind, identity in identities:
            if identity and await ban_manager.is_banned(kind, identity):
                log.warning(
                    "banned_identity_blocked",
                    kind=kind.value,
                    ip=ip,
                    path=request.path,
                    request_id=request.get("request_id"),
                )
                intrusions.record(
                    request,
                    severity=Severity.HIGH,
                    threat_type=_BANNED_ACCESS_TYPES[kind],
                    details={"kind": kind.value},
                )
                return send_response(request, 404, ResponseKey.NOT_FOUND)

        response: web.StreamResponse = await handler(request)
        return response

    return ban_middleware


def create_waf_middleware(
    scanner: Scanner,
    ban_manager: BanManager,
    intrusions: IntrusionLog,
) -> Any:
    """Create middleware that screens the ``User-Agent`` header.

    Known attack tools are denied with 403 and, when the match is HIGH or
    CRITICAL, the client IP is banned. Generic scripting clients (curl,
    python-requests) only carry LOW findings: they are logged and let through.
    """

    @web.middleware
    async def waf_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
        user_agent = request.headers.get("User-Agent", "")
        result = scanner.scan_string(user_agent)
        decision = decide(result, ScanContext.PERIMETER)
        severity = highest_severity(decision.threats)

        if decision.allowed:
            if decision.threats:
                log_threat_event(
                    "SUSPICIOUS_USER_AGENT",
                    request,
                    severity=severity,
                    threats=decision.threats,
                    risk_score=decision.risk_score,
                    action=decision.action.value,
                )
            response: web.StreamResponse = await handler(request)
            return response

        log_threat_event(
            "SUSPICIOUS_USER_AGENT",
            request,
            severity=severity,
            threats=decision.threats,
            risk_score=decision.risk_score,
            action=decision.action.value,
        )
        intrusions.record(
            request,
            severity=Severity.HIGH if decision.escalate else Severity.MEDIUM,
            threat_type="SUSPICIOUS_USER_AGENT",
            details={"threats": [t.type for t in decision.threats]},
        )

        ip = request.get("client_ip") or request.remote
        if decision.escalate and ip:
            try:
                await ban_manager.ban(BanKind.IP, ip, decision.ban_reason)
            except (BanPersistenceError, ValueError) as exc:
                log_escalation_failure(request, reason=decision.ban_reason, error=exc)

        return send_response(request, decision.status, decision.slug)

    return waf_middleware
