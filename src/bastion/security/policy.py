"""Decision policy: turn scan output into a response and an escalation flag.

Perimeter checks (the user agent) answer with a plain denial because the
client is already a scanner and learns nothing new. Payload checks answer
malicious input with a fake success so a human crafting injections gets no
signal that detection happened.

=================  ============================  ===============================
risk score         PERIMETER                     PAYLOAD
=================  ============================  ===============================
< warn             ALLOW                         ALLOW
[warn, block)      BLOCK 403 PERMISSION_DENIED   WARN 400 VALIDATION_ERROR
>= block           BLOCK 403 PERMISSION_DENIED   DECEIVE 200 OPERATION_SUCCESS
=================  ============================  ===============================
"""

from __future__ import annotations

from bastion.httputil import ResponseKey
from bastion.security.models import (
    Decision,
    DeepScanResult,
    ScanContext,
    ScanResult,
    Severity,
    Threat,
    ThreatAction,
)

_ESCALATING_SEVERITIES = {
    ScanContext.PERIMETER: frozenset({Severity.CRITICAL, Severity.HIGH}),
    ScanContext.PAYLOAD: frozenset({Severity.CRITICAL}),
}

PAYLOAD_BAN_REASON = "CRITICAL: Malicious Input Detected"


def decide(result: ScanResult | DeepScanResult, context: ScanContext) -> Decision:
    """Classify a scan result for the given request context.

    The result's own ``action`` (already derived from the scanner's
    thresholds) drives the outcome, so a scanner configured with custom
    thresholds is honoured here without repeating them.
    """
    if isinstance(result, DeepScanResult):
        score = result.total_risk
    else:
        score = result.risk_score
    threats = tuple(result.threats)

    if result.action is ThreatAction.ALLOW:
        return Decision(
            action=ThreatAction.ALLOW,
            status=200,
            slug=ResponseKey.OPERATION_SUCCESS,
            context=context,
            risk_score=score,
            threats=threats,
        )

    escalate = _should_escalate(threats, context)

    if context is ScanContext.PERIMETER:
        return Decision(
            action=ThreatAction.BLOCK,
            status=403,
            slug=ResponseKey.PERMISSION_DENIED,
            context=context,
            risk_score=score,
            threats=threats,
            escalate=escalate,
            ban_reason=_perimeter_reason(threats) if escalate else "",
        )

    if result.action is ThreatAction.WARN:
        return Decision(
            action=ThreatAction.WARN,
            status=400,
            slug=ResponseKey.VALIDATION_ERROR,
            context=context,
            risk_score=score,
            threats=threats,
        )

    return Decision(
        action=ThreatAction.DECEIVE,
        status=200,
        slug=ResponseKey.OPERATION_SUCCESS,
        context=context,
        risk_score=score,
        threats=threats,
        escalate=escalate,
        ban_reason=PAYLOAD_BAN_REASON if escalate else "",
    )


def highest_severity(threats: tuple[Threat, ...] | list[Threat]) -> Severity | None:
    """Return the most severe tier among *threats*, or ``None`` if empty."""
    order = [Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM, Severity.LOW]
    present = {t.severity for t in threats}
    for severity in order:
        if severity in present:
            return severity
    return None


def _should_escalate(threats: tuple[Threat, ...], context: ScanContext) -> bool:
    escalating = _ESCALATING_SEVERITIES[context]
    return any(t.severity in escalating for t in threats)


def _perimeter_reason(threats: tuple[Threat, ...]) -> str:
    return "High Severity Threat: " + ", ".join(t.type for t in threats)
