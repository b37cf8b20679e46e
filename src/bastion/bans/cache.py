"""Fast ban tier.

The fast tier answers every ``is_banned`` lookup on the request path, so it
must be shared by every worker that serves traffic. :class:`RedisBanCache` is
that shared tier; :class:`MemoryBanCache` keeps the same contract in process
memory and is only correct for a single-process deployment (and tests).
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Mapping
from typing import Protocol

import redis.asyncio as redis
from redis.exceptions import RedisError

from bastion.bans.models import BanCacheError, BanKind
from bastion.logging import get_logger

log = get_logger("bastion.bans.cache")

KEY_PREFIX = "bans:"

# Compare-and-delete so a lock is only released by the holder that set it.
_RELEASE_LOCK_SCRIPT = """\
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


def cache_key(kind: BanKind) -> str:
    """Return the Redis hash key holding bans of *kind*."""
    return f"{KEY_PREFIX}{kind.value}"


class BanCache(Protocol):
    """Contract shared by every fast-tier implementation."""

    async def contains(self, kind: BanKind, value: str) -> bool: ...

    async def get_all(self, kind: BanKind) -> dict[str, str]: ...

    async def add(self, kind: BanKind, value: str, reason: str) -> bool: ...

    async def remove(self, kind: BanKind, value: str) -> bool: ...

    async def replace_all(self, snapshot: Mapping[BanKind, Mapping[str, str]]) -> None: ...

    async def acquire_lock(self, name: str, ttl_ms: int) -> bool: ...

    async def release_lock(self, name: str) -> None: ...

    async def close(self) -> None: ...


class MemoryBanCache:
    """Process-local fast tier.

    Bans written here are invisible to other worker processes; run a single
    worker, or configure ``REDIS_URL``.
    """

    def __init__(self) -> None:
        self._entries: dict[BanKind, dict[str, str]] = {kind: {} for kind in BanKind}
        self._locks: dict[str, float] = {}

    async def contains(self, kind: BanKind, value: str) -> bool:
        return value in self._entries[kind]

    async def get_all(self, kind: BanKind) -> dict[str, str]:
        return dict(self._entries[kind])

    async def add(self, kind: BanKind, value: str, reason: str) -> bool:
        entries = self._entries[kind]
        if value in entries:
            return False
        entries[value] = reason
        return True

    async def remove(self, kind: BanKind, value: str) -> bool:
        return self._entries[kind].pop(value, None) is not None

    async def replace_all(self, snapshot: Mapping[BanKind, Mapping[str, str]]) -> None:
        for kind in BanKind:
            self._entries[kind] = dict(snapshot.get(kind, {}))

    async def acquire_lock(self, name: str, ttl_ms: int) -> bool:
        now = time.monotonic()
        expires = self._locks.get(name)
        if expires is not None and expires > now:
            return False
        self._locks[name] = now + ttl_ms / 1000
        return True

    async def release_lock(self, name: str) -> None:
        self._locks.pop(name, None)

    async def close(self) -> None:
        return None


class RedisBanCache:
    """Shared fast tier backed by one Redis hash per ban kind.

    Hash fields are the normalized identities and values are the ban
    reasons. Every Redis or socket failure is raised as
    :class:`BanCacheError`.
    """

    def __init__(self, client: redis.Redis) -> None:
        self._redis = client
        self._lock_tokens: dict[str, str] = {}

    @classmethod
    def from_url(cls, url: str, *, socket_timeout: float = 2.0) -> RedisBanCache:
        """Build a cache with a pooled client and short socket timeouts."""
        pool = redis.ConnectionPool.from_url(
            url,
            max_connections=50,
            decode_responses=True,
            socket_connect_timeout=socket_timeout,
            socket_timeout=socket_timeout,
            health_check_interval=30,
        )
        log.info("redis_ban_cache_created", url=url.split("@")[-1])
        return cls(redis.Redis(connection_pool=pool))

    async def contains(self, kind: BanKind, value: str) -> bool:
        try:
            return bool(await self._redis.hexists(cache_key(kind), value))
        except (RedisError, OSError) as exc:
            raise BanCacheError(f"hexists {kind.value} failed: {exc}") from exc

    async def get_all(self, kind: BanKind) -> dict[str, str]:
        try:
            return dict(await self._redis.hgetall(cache_key(kind)))
        except (RedisError, OSError) as exc:
            raise BanCacheError(f"hgetall {kind.value} failed: {exc}") from exc

    async def add(self, kind: BanKind, value: str, reason: str) -> bool:
        try:
            return bool(await self._redis.hsetnx(cache_key(kind), value, reason))
        except (RedisError, OSError) as exc:
            raise BanCacheError(f"hsetnx {kind.value} failed: {exc}") from exc

    async def remove(self, kind: BanKind, value: str) -> bool:
        try:
            return bool(await self._redis.hdel(cache_key(kind), value))
        except (RedisError, OSError) as exc:
            raise BanCacheError(f"hdel {kind.value} failed: {exc}") from exc

    async def replace_all(self, snapshot: Mapping[BanKind, Mapping[str, str]]) -> None:
        """Swap every hash for *snapshot* in a single MULTI/EXEC transaction."""
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                for kind in BanKind:
                    key = cache_key(kind)
                    pipe.delete(key)
                    entries = snapshot.get(kind)
                    if entries:
                        pipe.hset(key, mapping=dict(entries))
                await pipe.execute()
        except (RedisError, OSError) as exc:
            raise BanCacheError(f"replace_all failed: {exc}") from exc

    async def acquire_lock(self, name: str, ttl_ms: int) -> bool:
        token = uuid.uuid4().hex
        try:
            acquired = await self._redis.set(name, token, nx=True, px=ttl_ms)
        except (RedisError, OSError) as exc:
            raise BanCacheError(f"lock {name} failed: {exc}") from exc
        if acquired:
            self._lock_tokens[name] = token
            return True
        return False

    async def release_lock(self, name: str) -> None:
        token = self._lock_tokens.pop(name, None)
        if token is None:
            return
        try:
            await self._redis.eval(_RELEASE_LOCK_SCRIPT, 1, name, token)
        except (RedisError, OSError) as exc:
            # The lock still expires on its own TTL.
            log.warning("ban_lock_release_failed", lock=name, error=str(exc))

    async def close(self) -> None:
        await self._redis.aclose()
        log.info("redis_ban_cache_closed")
