"""Ban manager: the single owner of the fast and durable ban tiers.

Request-path reads (``is_banned``) touch only the fast tier. Writes go to
both tiers concurrently and fail loudly if either one fails. The durable tier
is loaded into the fast tier by :meth:`BanManager.restore` at startup and the
two are reconciled by a background :meth:`BanManager.sync` loop.
"""

from __future__ import annotations

import asyncio
import contextlib
from datetime import datetime

from bastion.bans.cache import BanCache
from bastion.bans.models import (
    DEFAULT_REASONS,
    BanCacheError,
    BanKind,
    BanPersistenceError,
    normalize_identity,
)
from bastion.bans.store import PostgresBanStore
from bastion.logging import get_logger

log = get_logger("bastion.bans.manager")

RESTORE_LOCK = "lock:restore_bans"
SYNC_LOCK = "lock:sync_bans"

DEFAULT_LOCK_TTL_MS = 10_000
DEFAULT_SYNC_INTERVAL_SECONDS = 3600


class BanManager:
    """Coordinate bans across the fast cache and the durable store."""

    def __init__(
        self,
        cache: BanCache,
        store: PostgresBanStore,
        *,
        lock_ttl_ms: int = DEFAULT_LOCK_TTL_MS,
        sync_interval_seconds: float = DEFAULT_SYNC_INTERVAL_SECONDS,
    ) -> None:
        self._cache = cache
        self._store = store
        self._lock_ttl_ms = lock_ttl_ms
        self._sync_interval = sync_interval_seconds
        self._running = False
        self._task: asyncio.Task[None] | None = None

    @property
    def cache(self) -> BanCache:
        return self._cache

    @property
    def is_syncing(self) -> bool:
        """Check if the background sync loop is running."""
        return self._running

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def ban(
        self,
        kind: BanKind,
        identity: str,
        reason: str | None = None,
        *,
        expires_at: datetime | None = None,
    ) -> bool:
        """Ban *identity*, keeping the original reason if already banned.

        Returns:
            True when the identity was newly banned, False when it was
            already present.

        Raises:
            ValueError: If the identity is empty after normalization.
            BanPersistenceError: If either tier failed to store the ban.
        """
        value = _require_identity(kind, identity)
        reason = reason or DEFAULT_REASONS[kind]

        try:
            if await self._cache.contains(kind, value):
                return False
        except BanCacheError as exc:
            log.warning("ban_cache_lookup_failed", kind=kind.value, error=str(exc))

        added, stored = await asyncio.gather(
            self._cache.add(kind, value, reason),
            self._store.insert(kind, value, reason, expires_at),
            return_exceptions=True,
        )
        _raise_on_failure("ban", kind, value, added, stored)

        log.warning("identity_banned", kind=kind.value, identity=_preview(kind, value), reason=reason)
        return bool(added)

    async def unban(self, kind: BanKind, identity: str) -> bool:
        """Remove a ban from both tiers. Unbanning an absent identity is a no-op.

        Returns:
            True if the identity was present in the fast tier.

        Raises:
            ValueError: If the identity is empty after normalization.
            BanPersistenceError: If either tier failed to remove the ban.
        """
        value = _require_identity(kind, identity)

        removed, deleted = await asyncio.gather(
            self._cache.remove(kind, value),
            self._store.delete(kind, value),
            return_exceptions=True,
        )
        _raise_on_failure("unban", kind, value, removed, deleted)

        log.info("identity_unbanned", kind=kind.value, identity=_preview(kind, value))
        return bool(removed)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def is_banned(self, kind: BanKind, identity: str | None) -> bool:
        """Check the fast tier only. A fast-tier failure counts as not banned."""
        value = normalize_identity(kind, identity)
        if not value:
            return False
        try:
            return await self._cache.contains(kind, value)
        except BanCacheError as exc:
            log.error("ban_lookup_failed_open", kind=kind.value, error=str(exc))
            return False

    async def list(self, kind: BanKind) -> dict[str, str]:
        """Return the fast-tier ``identity -> reason`` mapping for *kind*."""
        return await self._cache.get_all(kind)

    # ------------------------------------------------------------------
    # Restore / sync
    # ------------------------------------------------------------------

    async def restore(self) -> bool:
        """Replace the fast tier with the durable ban list.

        This is a replace, not a merge: a fast-tier entry absent from Postgres
        is dropped. A ban written through :meth:`ban` between the durable read
        and the swap disappears from the fast tier until the next :meth:`sync`
        pulls it back from Postgres; an entry that never reached Postgres (a
        failed durable write) is gone for good. The restore lock keeps
        instances from overlapping only while its TTL holds.

        Returns:
            False if another instance holds the restore lock, True otherwise.

        Raises:
            BanPersistenceError: If the durable tier cannot be read.
        """
        if not await self._cache.acquire_lock(RESTORE_LOCK, self._lock_ttl_ms):
            log.info("ban_restore_skipped", reason="lock held by another instance")
            return False

        try:
            snapshot: dict[BanKind, dict[str, str]] = {}
            for kind in BanKind:
                rows = await self._store.fetch_all(kind)
                snapshot[kind] = {row.value: row.reason for row in rows}
            await self._cache.replace_all(snapshot)
        finally:
            await self._cache.release_lock(RESTORE_LOCK)

        log.info(
            "ban_list_restored",
            ips=len(snapshot[BanKind.IP]),
            users=len(snapshot[BanKind.USER]),
            tokens=len(snapshot[BanKind.TOKEN]),
        )
        return True

    async def sync(self) -> None:
        """Reconcile the two tiers without touching existing reasons.

        Fast-tier entries missing from the durable tier are inserted, then
        durable rows missing from the fast tier are added back.
        """
        if not await self._cache.acquire_lock(SYNC_LOCK, self._lock_ttl_ms):
            log.debug("ban_sync_skipped", reason="lock held by another instance")
            return

        pushed = 0
        pulled = 0
        try:
            for kind in BanKind:
                cached = await self._cache.get_all(kind)
                await self._store.insert_many(kind, cached)
                pushed += len(cached)

                for row in await self._store.fetch_all(kind):
                    if await self._cache.add(kind, row.value, row.reason):
                        pulled += 1
        finally:
            await self._cache.release_lock(SYNC_LOCK)

        log.info("ban_sync_complete", pushed=pushed, pulled=pulled)

    async def start_sync_loop(self) -> None:
        """Start the periodic sync task."""
        if self._running:
            log.warning("ban_sync_already_running")
            return

        self._running = True
        self._task = asyncio.create_task(self._sync_loop())
        log.info("ban_sync_started", interval=self._sync_interval)

    async def stop_sync_loop(self) -> None:
        """Stop the periodic sync task."""
        self._running = False
        task = self._task
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            self._task = None
        log.info("ban_sync_stopped")

    async def _sync_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._sync_interval)
            try:
                await self.sync()
            except (BanPersistenceError, BanCacheError) as e:
                log.error("ban_sync_error", error=str(e))


def _require_identity(kind: BanKind, identity: str | None) -> str:
    value = normalize_identity(kind, identity)
    if not value:
        raise ValueError(f"Cannot ban an empty {kind.value} identity")
    return value


def _raise_on_failure(
    op: str,
    kind: BanKind,
    value: str,
    cache_result: object,
    store_result: object,
) -> None:
    failures = [r for r in (cache_result, store_result) if isinstance(r, BaseException)]
    if not failures:
        return
    for failure in failures:
        log.error(
            "ban_write_failed",
            op=op,
            kind=kind.value,
            identity=_preview(kind, value),
            error=str(failure),
        )
    raise BanPersistenceError(f"{op} {kind.value} failed: {failures[0]}") from failures[0]


def _preview(kind: BanKind, value: str) -> str:
    if kind is BanKind.TOKEN:
        return value[:15] + "..."
    return value
