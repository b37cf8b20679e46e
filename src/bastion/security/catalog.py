"""Threat signature catalog.

The catalog is built once at startup and handed to the :class:`Scanner`.
Every rule is compiled up front so a malformed definition fails the process
at load time rather than on the first request that reaches it.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator, Mapping
from typing import Any

from bastion.security.models import Severity, ThreatSignature


class CatalogError(ValueError):
    """Raised when a signature definition cannot be loaded."""


# ---------------------------------------------------------------------------
# Default signatures: key -> (pattern, flags, severity, description)
# Order is significant: scans report threats in this order.
# ---------------------------------------------------------------------------

_DEFAULT_DEFINITIONS: list[dict[str, Any]] = [
    # --- SQL injection (classic, blind, logic) ---
    {
        "key": "SQL_INJECTION",
        "pattern": (
            r"(\b(SELECT|INSERT|UPDATE|DELETE|DROP|ALTER|CREATE|REPLACE)\b\s+"
            r"([*(`'\"]|FROM|INTO|TABLE|DATABASE|SET|VALUES))"
            r"|(\b(UNION\s+SELECT|TRUNCATE\s+TABLE|EXEC(\s|\()|GRANT\s+\w+\s+TO|REVOKE\s+\w+\s+FROM)\b)"
        ),
        "flags": re.IGNORECASE,
        "severity": "CRITICAL",
        "description": "SQL Injection Attempt (Standard Keywords)",
    },
    {
        "key": "SQL_BLIND",
        "pattern": r"\b(WAITFOR\s+DELAY|BENCHMARK\(|SLEEP\(|PG_SLEEP\(|GENERATE_SERIES\()",
        "flags": re.IGNORECASE,
        "severity": "CRITICAL",
        "description": "Blind/Time-based SQL Injection Attempt",
    },
    {
        "key": "SQL_LOGIC",
        "pattern": r"(\b(OR|AND)\b\s+['\"]?(\d+|\w+)['\"]?\s*=\s*['\"]?\3['\"]?)",
        "flags": re.IGNORECASE,
        "severity": "HIGH",
        "description": "Logic Manipulation SQL Injection (OR 1=1)",
    },
    # --- Cross-site scripting ---
    {
        "key": "XSS_SCRIPT",
        "pattern": r"<script[^>]*>[\s\S]*?</script>",
        "flags": re.IGNORECASE,
        "severity": "CRITICAL",
        "description": "XSS Attack (Script Tag)",
    },
    {
        "key": "XSS_EVENTS",
        "pattern": (
            r"\b(on(error|load|click|mouseover|mouseout|keydown|keyup|submit|change|focus|blur))"
            r"\s*=\s*['\"]"
        ),
        "flags": re.IGNORECASE,
        "severity": "HIGH",
        "description": "XSS Attack (Event Handlers)",
    },
    {
        "key": "XSS_VECTORS",
        "pattern": r"(javascript:|vbscript:|data:text/html|base64)",
        "flags": re.IGNORECASE,
        "severity": "CRITICAL",
        "description": "XSS Attack (Protocol/Data URI)",
    },
    {
        "key": "XSS_HTML_TAGS",
        "pattern": r"<(iframe|object|embed|svg|applet|meta|link)[^>]*>",
        "flags": re.IGNORECASE,
        "severity": "HIGH",
        "description": "XSS Attack (Dangerous HTML Tags)",
    },
    # --- Object key attacks (also matched as bare keys by the deep scan) ---
    {
        "key": "PROTOTYPE_POLLUTION",
        "pattern": r"\"(__proto__|constructor|prototype)\"\s*:|__proto__",
        "flags": 0,
        "severity": "CRITICAL",
        "description": "Prototype Pollution Attempt",
    },
    # --- OS command injection ---
    {
        "key": "COMMAND_INJECTION",
        "pattern": r"(\$\(|`|\|\||&&|/bin/sh|/bin/bash|cmd\.exe|powershell)",
        "flags": re.IGNORECASE,
        "severity": "CRITICAL",
        "description": "OS Command Injection Attempt",
    },
    # --- Path traversal / LFI ---
    {
        "key": "PATH_TRAVERSAL",
        "pattern": r"(\.\./|\.\.\\|%2e%2e%2f|%2e%2e%5c|/etc/passwd|/windows/win\.ini)",
        "flags": re.IGNORECASE,
        "severity": "CRITICAL",
        "description": "Path Traversal / LFI Attempt",
    },
    # --- NoSQL operator injection ---
    {
        "key": "NOSQL_INJECTION",
        "pattern": (
            r"\"(\$where|\$ne|\$gt|\$lt|\$or|\$in|\$regex)\"\s*:"
            r"|(?<![\w$])\$(where|ne|gt|lt|or|in|regex)\b"
        ),
        "flags": 0,
        "severity": "HIGH",
        "description": "NoSQL Injection Attempt",
    },
    # --- XML external entities ---
    {
        "key": "XXE_INJECTION",
        "pattern": r"<!ENTITY\s|<!DOCTYPE[^>]*\bSYSTEM\b",
        "flags": re.IGNORECASE,
        "severity": "HIGH",
        "description": "XML External Entity (XXE) Attempt",
    },
    # --- Reconnaissance clients ---
    {
        "key": "SUSPICIOUS_UA",
        "pattern": r"(sqlmap|nikto|nmap|masscan|burp|metasploit|nessus|acunetix|havij|netsparker)",
        "flags": re.IGNORECASE,
        "severity": "HIGH",
        "description": "Security Scanning Tool Detected",
    },
    {
        "key": "BAD_BOTS",
        "pattern": r"(libwww-perl|python-requests|curl|wget|python-urllib)",
        "flags": re.IGNORECASE,
        "severity": "LOW",
        "description": "Suspicious Bot/Script Detected",
    },
]


class PatternCatalog:
    """Immutable, ordered collection of :class:`ThreatSignature`."""

    __slots__ = ("_signatures",)

    def __init__(self, signatures: Iterable[ThreatSignature]) -> None:
        sigs = tuple(signatures)
        seen: set[str] = set()
        for sig in sigs:
            if sig.key in seen:
                raise CatalogError(f"Duplicate signature key {sig.key!r}")
            seen.add(sig.key)
        self._signatures = sigs

    @classmethod
    def from_definitions(cls, definitions: Iterable[Mapping[str, Any]]) -> PatternCatalog:
        """Compile raw definitions into a catalog.

        Each definition needs ``key``, ``pattern``, ``severity`` and
        ``description``; ``flags`` is optional.

        Raises:
            CatalogError: If any definition is incomplete or does not compile.
        """
        signatures: list[ThreatSignature] = []
        for raw in definitions:
            key = raw.get("key")
            if not key or not isinstance(key, str):
                raise CatalogError(f"Signature is missing a key: {raw!r}")

            try:
                severity = Severity(str(raw.get("severity", "")).upper())
            except ValueError as exc:
                raise CatalogError(
                    f"Signature {key!r} has unknown severity {raw.get('severity')!r}"
                ) from exc

            pattern = raw.get("pattern")
            if not pattern or not isinstance(pattern, str):
                raise CatalogError(f"Signature {key!r} has no pattern")
            try:
                rule = re.compile(pattern, raw.get("flags", 0))
            except re.error as exc:
                raise CatalogError(f"Signature {key!r} does not compile: {exc}") from exc

            signatures.append(
                ThreatSignature(
                    key=key,
                    rule=rule,
                    severity=severity,
                    description=str(raw.get("description") or key),
                )
            )
        return cls(signatures)

    def __iter__(self) -> Iterator[ThreatSignature]:
        return iter(self._signatures)

    def __len__(self) -> int:
        return len(self._signatures)

    def __contains__(self, key: object) -> bool:
        return any(sig.key == key for sig in self._signatures)

    def get(self, key: str) -> ThreatSignature | None:
        for sig in self._signatures:
            if sig.key == key:
                return sig
        return None

    @property
    def keys(self) -> tuple[str, ...]:
        return tuple(sig.key for sig in self._signatures)


def build_default_catalog() -> PatternCatalog:
    """Build the catalog shipped with Bastion."""
    return PatternCatalog.from_definitions(_DEFAULT_DEFINITIONS)
