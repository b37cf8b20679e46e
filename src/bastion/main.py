"""Main entry point for Bastion."""

import asyncio
import contextlib

from bastion.api.server import SecurityAPIServer
from bastion.bans.cache import BanCache, MemoryBanCache, RedisBanCache
from bastion.bans.manager import BanManager
from bastion.bans.models import BanCacheError, BanPersistenceError
from bastion.bans.store import PostgresBanStore
from bastion.config import Settings, get_settings
from bastion.logging import get_logger, setup_logging
from bastion.security.catalog import build_default_catalog
from bastion.security.intrusions import IntrusionLog
from bastion.security.scanner import Scanner

log = get_logger("bastion.main")


def build_cache(settings: Settings) -> BanCache:
    """Use Redis when configured, otherwise a single-process memory cache."""
    if settings.redis_url:
        return RedisBanCache.from_url(
            settings.redis_url, socket_timeout=settings.redis_socket_timeout
        )
    log.warning(
        "memory_ban_cache_in_use",
        note="bans are not shared between worker processes; set REDIS_URL",
    )
    return MemoryBanCache()


def build_scanner(settings: Settings) -> Scanner:
    """Build the scanner from the default catalog and configured limits."""
    return Scanner(
        build_default_catalog(),
        max_depth=settings.security_max_scan_depth,
        max_string_length=settings.security_max_string_length,
        block_threshold=settings.security_block_threshold,
        warn_threshold=settings.security_warn_threshold,
    )


async def restore_bans(
    manager: BanManager,
    store: PostgresBanStore,
    settings: Settings,
) -> bool:
    """Connect the durable tier and load it into the fast tier.

    Returns True when the ban list was loaded (or another instance holds
    the restore lock). On failure a strict posture aborts the process and a
    lenient one starts with an empty fast tier.
    """
    try:
        await store.initialize()
        await manager.restore()
    except (BanPersistenceError, BanCacheError) as e:
        if settings.restore_is_strict:
            log.error("ban_restore_failed", error=str(e), strict=True)
            raise SystemExit(1) from e
        log.warning("starting_without_ban_list", error=str(e))
        return False
    return True


async def main() -> None:
    """Main application entry point."""
    setup_logging()
    settings = get_settings()
    log.info(
        "starting_bastion",
        environment=settings.environment,
        redis=bool(settings.redis_url),
        strict_restore=settings.restore_is_strict,
    )

    scanner = build_scanner(settings)
    log.info("scanner_initialized", signatures=len(scanner.catalog))

    store = PostgresBanStore(
        settings.postgres_dsn, command_timeout=settings.postgres_command_timeout
    )
    cache = build_cache(settings)
    manager = BanManager(
        cache,
        store,
        lock_ttl_ms=settings.ban_lock_ttl_ms,
        sync_interval_seconds=settings.ban_sync_interval_seconds,
    )
    intrusions = IntrusionLog()

    try:
        await restore_bans(manager, store, settings)
    except SystemExit:
        await cache.close()
        await store.close()
        raise

    await manager.start_sync_loop()
    server = SecurityAPIServer(manager, scanner, intrusions, settings)

    try:
        await server.start()
        while True:
            await asyncio.sleep(3600)
    except asyncio.CancelledError:
        log.info("shutdown_requested")
    finally:
        await server.stop()
        await manager.stop_sync_loop()
        try:
            await manager.sync()
        except (BanPersistenceError, BanCacheError) as e:
            log.error("final_ban_sync_failed", error=str(e))
        await cache.close()
        await store.close()
        log.info("bastion_stopped")


def run() -> None:
    """Run the application."""
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(main())


if __name__ == "__main__":
    run()
