"""In-process record of intrusion attempts for the admin surface."""

from __future__ import annotations

import uuid
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

from aiohttp import web

from bastion.httputil import bearer_token
from bastion.security.models import Severity

DEFAULT_MAX_RECENT = 50
_TOKEN_PREVIEW_CHARS = 15


@dataclass
class IntrusionEvent:
    """A single blocked or suspicious request."""

    ip: str | None
    severity: Severity
    type: str
    method: str
    route: str
    token: str | None = None
    user_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["severity"] = self.severity.value
        return data


def _token_preview(request: web.Request) -> str | None:
    token = bearer_token(request)
    if not token:
        return None
    return token[:_TOKEN_PREVIEW_CHARS] + "..."


class IntrusionLog:
    """Counter plus a bounded window of the most recent intrusion events.

    State is per process; in a multi-worker deployment each worker keeps its
    own window.
    """

    def __init__(self, max_recent: int = DEFAULT_MAX_RECENT) -> None:
        self._recent: deque[IntrusionEvent] = deque(maxlen=max_recent)
        self._total = 0

    @property
    def total(self) -> int:
        return self._total

    def record(
        self,
        request: web.Request,
        *,
        severity: Severity,
        threat_type: str,
        details: dict[str, Any] | None = None,
    ) -> IntrusionEvent:
        user_id = request.get("user_id")
        event = IntrusionEvent(
            ip=request.get("client_ip") or request.remote,
            severity=severity,
            type=threat_type,
            method=request.method,
            route=request.path,
            token=_token_preview(request),
            user_id=str(user_id) if user_id is not None else None,
            details=dict(details or {}),
        )
        self._total += 1
        self._recent.append(event)
        return event

    def snapshot(self) -> dict[str, Any]:
        """Return the counter and the recent events, newest first."""
        return {
            "total": self._total,
            "recent": [e.to_dict() for e in reversed(self._recent)],
        }
