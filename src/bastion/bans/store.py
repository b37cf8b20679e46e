"""PostgreSQL-backed durable ban store.

The durable tier is the source of truth across restarts. It is never read
on the request path: the manager restores it into the fast tier at startup
and reconciles the two tiers periodically.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any

import asyncpg  # type: ignore[import-untyped,import-not-found]

from bastion.bans.models import BanKind, BannedIdentity, BanPersistenceError
from bastion.logging import get_logger

log = get_logger("bastion.bans.store")

# ---------------------------------------------------------------------------
# SQL schema
# ---------------------------------------------------------------------------
_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS blacklisted_ips (
    id              SERIAL       PRIMARY KEY,
    ip_address      TEXT         NOT NULL UNIQUE,
    reason          TEXT,
    created_at      TIMESTAMPTZ  NOT NULL DEFAULT now(),
    expires_at      TIMESTAMPTZ
);

CREATE TABLE IF NOT EXISTS banned_users (
    id              SERIAL       PRIMARY KEY,
    user_id         TEXT         NOT NULL UNIQUE,
    reason          TEXT,
    created_at      TIMESTAMPTZ  NOT NULL DEFAULT now(),
    expires_at      TIMESTAMPTZ
);

CREATE TABLE IF NOT EXISTS revoked_tokens (
    id              SERIAL       PRIMARY KEY,
    token_signature TEXT         NOT NULL UNIQUE,
    reason          TEXT,
    created_at      TIMESTAMPTZ  NOT NULL DEFAULT now(),
    expires_at      TIMESTAMPTZ
);
"""

# kind -> (table, identity column)
_TABLES: dict[BanKind, tuple[str, str]] = {
    BanKind.IP: ("blacklisted_ips", "ip_address"),
    BanKind.USER: ("banned_users", "user_id"),
    BanKind.TOKEN: ("revoked_tokens", "token_signature"),
}

_DB_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, TimeoutError)


class PostgresBanStore:
    """Durable ban storage with one table per identity kind.

    Every failure (driver errors, socket errors, timeouts, or use before
    :meth:`initialize`) is raised as :class:`BanPersistenceError`.
    """

    def __init__(self, dsn: str, *, command_timeout: float = 5.0) -> None:
        self._dsn = dsn
        self._command_timeout = command_timeout
        self._pool: asyncpg.Pool | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Create connection pool and ensure schema exists."""
        try:
            self._pool = await asyncpg.create_pool(
                dsn=self._dsn,
                command_timeout=self._command_timeout,
            )
            log.info("ban_store_pool_created", dsn=self._dsn.split("@")[-1])
        except _DB_ERRORS as exc:
            log.error("ban_store_pool_creation_failed", error=str(exc))
            raise BanPersistenceError(f"Could not connect to ban store: {exc}") from exc

        await self._ensure_schema()

    async def close(self) -> None:
        """Close the connection pool."""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            log.info("ban_store_pool_closed")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def fetch_all(self, kind: BanKind) -> list[BannedIdentity]:
        """Return every stored ban of *kind*."""
        table, column = _TABLES[kind]
        rows = await self._run(
            "fetch",
            f"SELECT {column} AS value, reason, created_at, expires_at FROM {table}",
        )
        return [
            BannedIdentity(
                kind=kind,
                value=row["value"],
                reason=row["reason"] or "",
                created_at=row["created_at"],
                expires_at=row["expires_at"],
            )
            for row in rows
        ]

    async def insert(
        self,
        kind: BanKind,
        value: str,
        reason: str,
        expires_at: datetime | None = None,
    ) -> None:
        """Store a ban, keeping the existing row if the identity is present."""
        table, column = _TABLES[kind]
        await self._run(
            "execute",
            f"""
            INSERT INTO {table} ({column}, reason, expires_at)
            VALUES ($1, $2, $3)
            ON CONFLICT ({column}) DO NOTHING
            """,
            value,
            reason,
            expires_at,
        )

    async def insert_many(self, kind: BanKind, entries: Mapping[str, str]) -> None:
        """Store many ``identity -> reason`` pairs, keeping existing rows."""
        if not entries:
            return
        table, column = _TABLES[kind]
        query = f"""
            INSERT INTO {table} ({column}, reason)
            VALUES ($1, $2)
            ON CONFLICT ({column}) DO NOTHING
        """
        if self._pool is None:
            raise BanPersistenceError("Ban store is not initialized")
        try:
            async with self._pool.acquire() as conn:
                await conn.executemany(query, list(entries.items()))
        except _DB_ERRORS as exc:
            log.error("ban_store_query_failed", op="insert_many", kind=kind.value, error=str(exc))
            raise BanPersistenceError(f"insert_many {kind.value} failed: {exc}") from exc

    async def delete(self, kind: BanKind, value: str) -> None:
        """Remove a ban; removing an absent identity is a no-op."""
        table, column = _TABLES[kind]
        await self._run("execute", f"DELETE FROM {table} WHERE {column} = $1", value)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _ensure_schema(self) -> None:
        """Create tables if they don't exist.

        Concurrent workers racing on ``CREATE TABLE IF NOT EXISTS`` can hit
        ``UniqueViolationError``; the table exists either way.
        """
        try:
            async with self._pool.acquire() as conn:  # type: ignore[union-attr]
                await conn.execute(_SCHEMA_SQL)
            log.info("ban_store_schema_ensured")
        except asyncpg.UniqueViolationError:
            log.info("ban_store_schema_ensured", note="concurrent creation resolved")
        except _DB_ERRORS as exc:
            log.error("ban_store_schema_creation_failed", error=str(exc))
            raise BanPersistenceError(f"Could not create ban tables: {exc}") from exc

    async def _run(self, method: str, query: str, *args: Any) -> Any:
        """Run *query* with the named connection method, wrapping failures."""
        if self._pool is None:
            raise BanPersistenceError("Ban store is not initialized")
        try:
            async with self._pool.acquire() as conn:
                return await getattr(conn, method)(query, *args)
        except _DB_ERRORS as exc:
            log.error("ban_store_query_failed", op=method, error=str(exc))
            raise BanPersistenceError(f"Ban store {method} failed: {exc}") from exc
