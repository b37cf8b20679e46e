"""Threat detection: signature catalog, scanner and decision policy.

Public API
----------
- :class:`PatternCatalog`, :func:`build_default_catalog` - signature table
- :class:`Scanner` - shallow and deep scans
- :func:`decide` - map a scan result to a response decision
- :class:`IntrusionLog` - recent intrusion attempts for the admin surface
"""

from bastion.security.catalog import CatalogError, PatternCatalog, build_default_catalog
from bastion.security.intrusions import IntrusionEvent, IntrusionLog
from bastion.security.models import (
    Decision,
    DeepScanResult,
    ScanContext,
    ScanResult,
    Severity,
    Threat,
    ThreatAction,
)
from bastion.security.policy import decide
from bastion.security.scanner import Scanner

__all__ = [
    "CatalogError",
    "Decision",
    "DeepScanResult",
    "IntrusionEvent",
    "IntrusionLog",
    "PatternCatalog",
    "ScanContext",
    "ScanResult",
    "Scanner",
    "Severity",
    "Threat",
    "ThreatAction",
    "build_default_catalog",
    "decide",
]
