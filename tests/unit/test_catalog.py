"""Tests for the threat signature catalog."""

from __future__ import annotations

import re

import pytest

from bastion.security.catalog import CatalogError, PatternCatalog, build_default_catalog
from bastion.security.models import Severity, ThreatSignature


class TestDefaultCatalog:
    """Tests for the shipped signature set."""

    def test_keys_in_order(self):
        catalog = build_default_catalog()
        assert catalog.keys == (
            "SQL_INJECTION",
            "SQL_BLIND",
            "SQL_LOGIC",
            "XSS_SCRIPT",
            "XSS_EVENTS",
            "XSS_VECTORS",
            "XSS_HTML_TAGS",
            "PROTOTYPE_POLLUTION",
            "COMMAND_INJECTION",
            "PATH_TRAVERSAL",
            "NOSQL_INJECTION",
            "XXE_INJECTION",
            "SUSPICIOUS_UA",
            "BAD_BOTS",
        )

    def test_each_build_is_independent(self):
        assert build_default_catalog() is not build_default_catalog()

    @pytest.mark.parametrize(
        ("key", "severity"),
        [
            ("SQL_INJECTION", Severity.CRITICAL),
            ("SQL_LOGIC", Severity.HIGH),
            ("XSS_SCRIPT", Severity.CRITICAL),
            ("SUSPICIOUS_UA", Severity.HIGH),
            ("BAD_BOTS", Severity.LOW),
        ],
    )
    def test_severities(self, key, severity):
        sig = build_default_catalog().get(key)
        assert sig is not None
        assert sig.severity is severity

    @pytest.mark.parametrize(
        ("key", "text"),
        [
            ("SQL_INJECTION", "1; DROP TABLE users"),
            ("SQL_INJECTION", "x UNION SELECT password FROM users"),
            ("SQL_BLIND", "1; WAITFOR DELAY '0:0:5'"),
            ("SQL_BLIND", "pg_sleep(10)"),
            ("SQL_LOGIC", "admin' OR 1=1"),
            ("SQL_LOGIC", "x' or 'a'='a"),
            ("XSS_SCRIPT", "<script>alert(1)</script>"),
            ("XSS_EVENTS", '<img src=x onerror="alert(1)">'),
            ("XSS_VECTORS", "javascript:alert(1)"),
            ("XSS_HTML_TAGS", "<iframe src=//evil>"),
            ("PROTOTYPE_POLLUTION", '{"__proto__": {"admin": true}}'),
            ("PROTOTYPE_POLLUTION", "__proto__"),
            ("COMMAND_INJECTION", "foo && rm -rf /"),
            ("COMMAND_INJECTION", "$(whoami)"),
            ("PATH_TRAVERSAL", "../../etc/passwd"),
            ("PATH_TRAVERSAL", "%2e%2e%2fsecret"),
            ("NOSQL_INJECTION", '{"$ne": null}'),
            ("NOSQL_INJECTION", "$where"),
            ("XXE_INJECTION", '<!DOCTYPE foo [<!ENTITY xxe SYSTEM "file:///etc/passwd">]>'),
            ("SUSPICIOUS_UA", "sqlmap/1.7.2#stable (https://sqlmap.org)"),
            ("BAD_BOTS", "curl/8.4.0"),
        ],
    )
    def test_signature_matches(self, key, text):
        sig = build_default_catalog().get(key)
        assert sig is not None
        assert sig.matches(text)

    @pytest.mark.parametrize(
        ("key", "text"),
        [
            ("SQL_INJECTION", "Please select a plan from the list"),
            ("SQL_LOGIC", "rock and roll"),
            ("XSS_SCRIPT", "the script was great"),
            ("PATH_TRAVERSAL", "see chapter 1..2"),
            ("NOSQL_INJECTION", "price is $5 or less"),
            ("XXE_INJECTION", "../../etc/passwd"),
            ("SUSPICIOUS_UA", "Mozilla/5.0 (X11; Linux x86_64)"),
        ],
    )
    def test_signature_ignores_benign_text(self, key, text):
        sig = build_default_catalog().get(key)
        assert sig is not None
        assert not sig.matches(text)

    def test_contains_and_len(self):
        catalog = build_default_catalog()
        assert "XSS_SCRIPT" in catalog
        assert "NOT_A_RULE" not in catalog
        assert len(catalog) == 14
        assert catalog.get("NOT_A_RULE") is None


class TestFromDefinitions:
    """Tests for loading custom definitions."""

    def test_custom_catalog(self):
        catalog = PatternCatalog.from_definitions(
            [{"key": "EVIL", "pattern": r"evil", "severity": "medium", "description": "Evil"}]
        )
        sig = catalog.get("EVIL")
        assert sig is not None
        assert sig.severity is Severity.MEDIUM
        assert sig.score == 50

    def test_flags_applied(self):
        catalog = PatternCatalog.from_definitions(
            [{"key": "EVIL", "pattern": "evil", "flags": re.IGNORECASE, "severity": "LOW"}]
        )
        assert catalog.get("EVIL").matches("EVIL")

    def test_description_defaults_to_key(self):
        catalog = PatternCatalog.from_definitions([{"key": "EVIL", "pattern": "x", "severity": "LOW"}])
        assert catalog.get("EVIL").description == "EVIL"

    @pytest.mark.parametrize(
        "definition",
        [
            {"pattern": "x", "severity": "LOW"},
            {"key": "", "pattern": "x", "severity": "LOW"},
            {"key": "A", "pattern": "x", "severity": "SEVERE"},
            {"key": "A", "severity": "LOW"},
            {"key": "A", "pattern": "(unclosed", "severity": "LOW"},
        ],
    )
    def test_malformed_definition_rejected(self, definition):
        with pytest.raises(CatalogError):
            PatternCatalog.from_definitions([definition])

    def test_duplicate_keys_rejected(self):
        sig = ThreatSignature(
            key="A", rule=re.compile("a"), severity=Severity.LOW, description="a"
        )
        with pytest.raises(CatalogError, match="Duplicate"):
            PatternCatalog([sig, sig])

    def test_catalog_error_is_value_error(self):
        assert issubclass(CatalogError, ValueError)
