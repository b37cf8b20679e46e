"""Forensic logging for security events.

Every event is emitted on a ``bastion.security.*`` logger, so it lands in the
dedicated security sink (``logs/bastion_security.log``) and never in the
general application log.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

from aiohttp import web

from bastion.logging import get_logger
from bastion.security.models import SEVERITY_TABLE, Severity, Threat

log = get_logger("bastion.security.forensics")


def log_threat_event(
    event: str,
    request: web.Request,
    *,
    severity: Severity | None,
    threats: Sequence[Threat],
    risk_score: int,
    action: str,
    **extra: Any,
) -> None:
    """Log a forensic record for a detected threat.

    The log level follows the highest severity involved: CRITICAL goes to
    ``error``, HIGH to ``warning`` and everything below to ``info``.
    """
    level = SEVERITY_TABLE[severity].log_level if severity is not None else "info"
    emit = getattr(log, level)
    emit(
        event,
        timestamp=datetime.now(UTC).isoformat(),
        request_id=request.get("request_id"),
        ip=request.get("client_ip") or request.remote,
        user_id=request.get("user_id"),
        method=request.method,
        route=request.path,
        user_agent=request.headers.get("User-Agent", "")[:200],
        action=action,
        risk_score=risk_score,
        threat_count=len(threats),
        threats=[t.to_dict() for t in threats],
        **extra,
    )


def log_escalation_failure(request: web.Request, *, reason: str, error: Exception) -> None:
    """Record that an automatic ban could not be persisted."""
    log.error(
        "auto_escalation_degraded",
        request_id=request.get("request_id"),
        ip=request.get("client_ip") or request.remote,
        reason=reason,
        error=str(error),
    )
