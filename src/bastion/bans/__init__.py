"""Two-tier ban enforcement: shared fast cache plus durable PostgreSQL store.

Public API
----------
- :class:`BanManager` - the only writer of both tiers
- :class:`RedisBanCache`, :class:`MemoryBanCache` - fast tier
- :class:`PostgresBanStore` - durable tier
- :class:`BanKind`, :func:`normalize_identity`, :func:`token_signature`
"""

from bastion.bans.cache import BanCache, MemoryBanCache, RedisBanCache
from bastion.bans.manager import BanManager
from bastion.bans.models import (
    BanCacheError,
    BanKind,
    BannedIdentity,
    BanPersistenceError,
    normalize_identity,
    token_signature,
)
from bastion.bans.store import PostgresBanStore

__all__ = [
    "BanCache",
    "BanCacheError",
    "BanKind",
    "BanManager",
    "BanPersistenceError",
    "BannedIdentity",
    "MemoryBanCache",
    "PostgresBanStore",
    "RedisBanCache",
    "normalize_identity",
    "token_signature",
]
