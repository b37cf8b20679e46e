"""Tests for forensic security logging."""

from __future__ import annotations

from unittest.mock import patch

from aiohttp.test_utils import make_mocked_request

from bastion.security.forensics import log_escalation_failure, log_threat_event
from bastion.security.models import Severity, Threat


def _request():
    request = make_mocked_request(
        "POST", "/api/login", headers={"User-Agent": "x" * 500}
    )
    request["request_id"] = "req_0000abcd"
    request["client_ip"] = "203.0.113.9"
    return request


CRITICAL = Threat(type="SQL_INJECTION", severity=Severity.CRITICAL, description="sqli")
HIGH = Threat(type="SUSPICIOUS_UA", severity=Severity.HIGH, description="scanner")


class TestLogThreatEvent:
    def test_critical_logged_at_error(self) -> None:
        with patch("bastion.security.forensics.log") as mock_log:
            log_threat_event(
                "MALICIOUS_INPUT_BLOCKED",
                _request(),
                severity=Severity.CRITICAL,
                threats=[CRITICAL],
                risk_score=100,
                action="DECEIVE",
            )

        mock_log.error.assert_called_once()
        args, kwargs = mock_log.error.call_args
        assert args == ("MALICIOUS_INPUT_BLOCKED",)
        assert kwargs["ip"] == "203.0.113.9"
        assert kwargs["request_id"] == "req_0000abcd"
        assert kwargs["route"] == "/api/login"
        assert kwargs["threat_count"] == 1
        assert kwargs["threats"][0]["type"] == "SQL_INJECTION"
        assert len(kwargs["user_agent"]) == 200

    def test_high_logged_at_warning(self) -> None:
        with patch("bastion.security.forensics.log") as mock_log:
            log_threat_event(
                "SUSPICIOUS_USER_AGENT",
                _request(),
                severity=Severity.HIGH,
                threats=[HIGH],
                risk_score=75,
                action="BLOCK",
            )

        mock_log.warning.assert_called_once()
        mock_log.error.assert_not_called()

    def test_no_severity_logged_at_info(self) -> None:
        with patch("bastion.security.forensics.log") as mock_log:
            log_threat_event(
                "LOW_RISK_INPUT_ALLOWED",
                _request(),
                severity=None,
                threats=[],
                risk_score=0,
                action="ALLOW",
                note="extra field",
            )

        assert mock_log.info.call_args.kwargs["note"] == "extra field"


class TestLogEscalationFailure:
    def test_logged_at_error(self) -> None:
        with patch("bastion.security.forensics.log") as mock_log:
            log_escalation_failure(
                _request(), reason="High Severity Threat: X", error=RuntimeError("db down")
            )

        args, kwargs = mock_log.error.call_args
        assert args == ("auto_escalation_degraded",)
        assert kwargs["error"] == "db down"
        assert kwargs["ip"] == "203.0.113.9"
