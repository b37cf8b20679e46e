"""Ban identities, normalization and the persistence error type."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum

_IPV4_MAPPED_PREFIX = "::ffff:"


class BanKind(StrEnum):
    """Kind of identity a ban applies to."""

    IP = "ip"
    USER = "user"
    TOKEN = "token"


DEFAULT_REASONS: dict[BanKind, str] = {
    BanKind.IP: "Automated Ban",
    BanKind.USER: "Manual Ban",
    BanKind.TOKEN: "Security Revocation",
}


class BanPersistenceError(Exception):
    """Raised when the durable ban store cannot complete an operation."""


class BanCacheError(Exception):
    """Raised when the fast ban tier cannot be reached."""


@dataclass
class BannedIdentity:
    """One row of the durable ban store."""

    kind: BanKind
    value: str
    reason: str
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    expires_at: datetime | None = None


def normalize_identity(kind: BanKind, value: str | None) -> str:
    """Canonicalise an identity before any ban lookup or write.

    Whitespace is stripped from every kind. IP addresses additionally lose
    the IPv4-mapped IPv6 prefix and are lowercased, so ``::FFFF:1.2.3.4`` and
    ``1.2.3.4`` share one ban entry. Returns ``""`` for missing input.
    """
    if not value:
        return ""
    normalized = value.strip()
    if kind is BanKind.IP:
        normalized = normalized.lower()
        if normalized.startswith(_IPV4_MAPPED_PREFIX):
            normalized = normalized[len(_IPV4_MAPPED_PREFIX) :]
    return normalized


def token_signature(token: str | None) -> str:
    """Return the signature segment of a JWT (the part after the last dot).

    Revocations are keyed by signature so the full token is never stored.
    An opaque token without dots is its own signature.
    """
    if not token:
        return ""
    return token.strip().rsplit(".", 1)[-1]
