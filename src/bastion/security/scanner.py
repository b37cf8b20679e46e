"""Pattern scanner for untrusted strings and nested request payloads.

Both entry points are pure: they read the injected catalog and never raise
on malformed input.

- :meth:`Scanner.scan_string` tests one string against every signature and
  sums the score of every hit.
- :meth:`Scanner.deep_scan` walks a JSON-like value (keys, values and list
  items) with a depth cap, cycle detection and an oversized-string guard, and
  stops as soon as the accumulated risk is enough to block.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from bastion.security.catalog import PatternCatalog
from bastion.security.models import (
    SEVERITY_TABLE,
    DeepScanResult,
    ScanResult,
    Severity,
    Threat,
    ThreatAction,
)

DEFAULT_MAX_DEPTH = 5
DEFAULT_MAX_STRING_LENGTH = 10_000
DEFAULT_BLOCK_THRESHOLD = 75
DEFAULT_WARN_THRESHOLD = 50

PAYLOAD_TOO_LARGE = "PAYLOAD_TOO_LARGE"


class Scanner:
    """Stateless scanner bound to a :class:`PatternCatalog`."""

    def __init__(
        self,
        catalog: PatternCatalog,
        *,
        max_depth: int = DEFAULT_MAX_DEPTH,
        max_string_length: int = DEFAULT_MAX_STRING_LENGTH,
        block_threshold: int = DEFAULT_BLOCK_THRESHOLD,
        warn_threshold: int = DEFAULT_WARN_THRESHOLD,
    ) -> None:
        if not 0 < warn_threshold < block_threshold:
            raise ValueError("warn_threshold must be positive and below block_threshold")
        self._catalog = catalog
        self._max_depth = max_depth
        self._max_string_length = max_string_length
        self._block_threshold = block_threshold
        self._warn_threshold = warn_threshold

    @property
    def catalog(self) -> PatternCatalog:
        return self._catalog

    @property
    def max_depth(self) -> int:
        return self._max_depth

    @property
    def block_threshold(self) -> int:
        return self._block_threshold

    @property
    def warn_threshold(self) -> int:
        return self._warn_threshold

    def action_for(self, score: int) -> ThreatAction:
        """Map a risk score onto ALLOW / WARN / BLOCK."""
        if score >= self._block_threshold:
            return ThreatAction.BLOCK
        if score >= self._warn_threshold:
            return ThreatAction.WARN
        return ThreatAction.ALLOW

    # ------------------------------------------------------------------
    # Shallow scan
    # ------------------------------------------------------------------

    def scan_string(self, value: Any) -> ScanResult:
        """Scan a single string against every signature in the catalog.

        Non-string and empty input is safe. Strings over the length cap are
        reported as ``PAYLOAD_TOO_LARGE`` without running any rule.
        """
        if not value or not isinstance(value, str):
            return ScanResult(is_safe=True)

        if len(value) > self._max_string_length:
            threat = Threat(
                type=PAYLOAD_TOO_LARGE,
                severity=Severity.HIGH,
                description=f"String exceeds {self._max_string_length} characters",
            )
            score = SEVERITY_TABLE[Severity.HIGH].score
            return ScanResult(
                is_safe=False,
                threats=[threat],
                risk_score=score,
                action=self.action_for(score),
            )

        threats: list[Threat] = []
        risk_score = 0
        for signature in self._catalog:
            if signature.matches(value):
                threats.append(
                    Threat(
                        type=signature.key,
                        severity=signature.severity,
                        description=signature.description,
                    )
                )
                risk_score += signature.score

        return ScanResult(
            is_safe=not threats,
            threats=threats,
            risk_score=risk_score,
            action=self.action_for(risk_score),
        )

    # ------------------------------------------------------------------
    # Deep scan
    # ------------------------------------------------------------------

    def deep_scan(self, value: Any) -> DeepScanResult:
        """Recursively scan every string reachable from *value*.

        The root sits at depth 0; anything nested deeper than ``max_depth``
        is not inspected. A container seen earlier in the same walk is
        skipped, which guarantees termination on cyclic structures.
        """
        walk = _Walk(self)
        walk.visit(value, 0)
        return DeepScanResult(
            has_threats=bool(walk.threats),
            threats=walk.threats,
            total_risk=walk.total_risk,
            action=self.action_for(walk.total_risk),
        )


class _Walk:
    """Mutable state for one :meth:`Scanner.deep_scan` call."""

    __slots__ = ("_scanner", "_visited", "threats", "total_risk")

    def __init__(self, scanner: Scanner) -> None:
        self._scanner = scanner
        self._visited: set[int] = set()
        self.threats: list[Threat] = []
        self.total_risk = 0

    @property
    def done(self) -> bool:
        return self.total_risk >= self._scanner.block_threshold

    def visit(self, value: Any, depth: int) -> None:
        if self.done or depth > self._scanner.max_depth:
            return

        if isinstance(value, str):
            self._scan(value)
        elif isinstance(value, Mapping):
            if not self._enter(value):
                return
            for key, item in value.items():
                self.visit(key, depth + 1)
                self.visit(item, depth + 1)
                if self.done:
                    return
        elif isinstance(value, (list, tuple)):
            if not self._enter(value):
                return
            for item in value:
                self.visit(item, depth + 1)
                if self.done:
                    return
        # Numbers, booleans, None and anything else carry no text to match.

    def _enter(self, container: object) -> bool:
        marker = id(container)
        if marker in self._visited:
            return False
        self._visited.add(marker)
        return True

    def _scan(self, text: str) -> None:
        result = self._scanner.scan_string(text)
        if not result.is_safe:
            self.threats.extend(result.threats)
            self.total_risk += result.risk_score
