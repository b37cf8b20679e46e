"""Data models for the threat detection pipeline."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import StrEnum


class Severity(StrEnum):
    """Severity tier of a threat signature."""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class ThreatAction(StrEnum):
    """Action suggested by a severity, a scan, or a decision."""

    ALLOW = "ALLOW"
    LOG = "LOG"  # Allow but record
    WARN = "WARN"  # Reject with a validation error
    BLOCK = "BLOCK"  # Reject with a generic denial
    DECEIVE = "DECEIVE"  # Fake success, no data


class ScanContext(StrEnum):
    """Where in the request path a scan ran."""

    PERIMETER = "perimeter"  # Headers such as the user agent
    PAYLOAD = "payload"  # Body, query and route params


@dataclass(frozen=True)
class SeverityInfo:
    """Fixed score, action and log level for a severity tier."""

    score: int
    action: ThreatAction
    log_level: str


SEVERITY_TABLE: dict[Severity, SeverityInfo] = {
    Severity.CRITICAL: SeverityInfo(score=100, action=ThreatAction.BLOCK, log_level="error"),
    Severity.HIGH: SeverityInfo(score=75, action=ThreatAction.BLOCK, log_level="warning"),
    Severity.MEDIUM: SeverityInfo(score=50, action=ThreatAction.WARN, log_level="info"),
    Severity.LOW: SeverityInfo(score=25, action=ThreatAction.LOG, log_level="info"),
}


@dataclass(frozen=True)
class ThreatSignature:
    """A named detection rule from the pattern catalog."""

    key: str
    rule: re.Pattern[str]
    severity: Severity
    description: str

    @property
    def score(self) -> int:
        return SEVERITY_TABLE[self.severity].score

    def matches(self, value: str) -> bool:
        return self.rule.search(value) is not None


@dataclass(frozen=True)
class Threat:
    """A single signature hit."""

    type: str
    severity: Severity
    description: str

    def to_dict(self) -> dict[str, str]:
        return {
            "type": self.type,
            "severity": self.severity.value,
            "description": self.description,
        }


@dataclass
class ScanResult:
    """Outcome of scanning one string."""

    is_safe: bool
    threats: list[Threat] = field(default_factory=list)
    risk_score: int = 0
    action: ThreatAction = ThreatAction.ALLOW

    @property
    def threat_types(self) -> list[str]:
        return [t.type for t in self.threats]


@dataclass
class DeepScanResult:
    """Outcome of walking a nested JSON-like value."""

    has_threats: bool
    threats: list[Threat] = field(default_factory=list)
    total_risk: int = 0
    action: ThreatAction = ThreatAction.ALLOW

    @property
    def threat_types(self) -> list[str]:
        return [t.type for t in self.threats]


@dataclass(frozen=True)
class Decision:
    """What to do with a request after a scan.

    ``status`` and ``slug`` describe the response to send; ``escalate`` tells
    the caller to ban the client and ``ban_reason`` is the text to store.
    """

    action: ThreatAction
    status: int
    slug: str
    context: ScanContext
    risk_score: int = 0
    threats: tuple[Threat, ...] = ()
    escalate: bool = False
    ban_reason: str = ""

    @property
    def allowed(self) -> bool:
        return self.action is ThreatAction.ALLOW
