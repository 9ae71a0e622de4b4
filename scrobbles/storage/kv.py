"""Embedded bucket/key/value store on SQLite.

Values live in a single ``kv(bucket, key, value)`` table.  Every read goes
through ``view()`` and every mutation through ``update()``; each opens its own
connection and runs exactly one transaction, so a crash mid-write leaves the
previous committed state intact.

The database runs in WAL mode: readers never block on the single writer,
which lets the HTTP handlers read while the sync loop commits.

Usage::

    store = KeyValueStore("stat.db")
    await store.open()

    async with store.update() as tx:
        await tx.put("user.alice", "scan", '{"max_record_timestamp": 0}')

    async with store.view() as tx:
        value = await tx.get("user.alice", "scan")
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

import aiosqlite

logger = logging.getLogger("scrobbles.db")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv (
    bucket TEXT NOT NULL,
    key    TEXT NOT NULL,
    value  TEXT NOT NULL,
    PRIMARY KEY (bucket, key)
)
"""


class StorePersistenceError(RuntimeError):
    """Raised when the underlying store cannot read or commit."""


class Transaction:
    """A single read or read-write transaction over the store."""

    def __init__(self, conn: aiosqlite.Connection, writable: bool) -> None:
        self._conn = conn
        self._writable = writable

    async def get(self, bucket: str, key: str) -> str | None:
        cursor = await self._conn.execute(
            "SELECT value FROM kv WHERE bucket = ? AND key = ?", (bucket, key)
        )
        row = await cursor.fetchone()
        await cursor.close()
        return row[0] if row else None

    async def put(self, bucket: str, key: str, value: str) -> None:
        if not self._writable:
            raise StorePersistenceError("put() called inside a read-only transaction")
        await self._conn.execute(
            "INSERT OR REPLACE INTO kv (bucket, key, value) VALUES (?, ?, ?)",
            (bucket, key, value),
        )

    async def buckets(self, prefix: str = "") -> list[str]:
        """Return bucket names starting with ``prefix``, sorted."""
        cursor = await self._conn.execute(
            "SELECT DISTINCT bucket FROM kv WHERE substr(bucket, 1, ?) = ? ORDER BY bucket",
            (len(prefix), prefix),
        )
        rows = await cursor.fetchall()
        await cursor.close()
        return [r[0] for r in rows]


class KeyValueStore:
    """Transactional bucket/key/value store backed by one SQLite file."""

    def __init__(self, path: str | Path, timeout: float = 30.0) -> None:
        """Initialize the store.

        Args:
            path:    SQLite database file.  Parent directories are created.
            timeout: Seconds to wait for the write lock before failing.
        """
        self.path = Path(path)
        self._timeout = timeout
        self._initialized = False

    async def open(self) -> None:
        """Create the database file and schema.  Call once at startup."""
        if self._initialized:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            async with aiosqlite.connect(self.path, timeout=self._timeout) as conn:
                await conn.execute("PRAGMA journal_mode=WAL")
                await conn.execute(_SCHEMA)
                await conn.commit()
        except aiosqlite.Error as exc:
            raise StorePersistenceError(f"Cannot open store at {self.path}: {exc}") from exc
        self._initialized = True
        logger.info("Store opened at %s", self.path)

    @asynccontextmanager
    async def view(self) -> AsyncGenerator[Transaction, None]:
        """Read-only transaction."""
        async with self._transaction(writable=False) as tx:
            yield tx

    @asynccontextmanager
    async def update(self) -> AsyncGenerator[Transaction, None]:
        """Read-write transaction.

        Commits when the block exits normally; rolls back if it raises.
        """
        async with self._transaction(writable=True) as tx:
            yield tx

    @asynccontextmanager
    async def _transaction(self, writable: bool) -> AsyncGenerator[Transaction, None]:
        if not self._initialized:
            await self.open()
        try:
            async with aiosqlite.connect(
                self.path, timeout=self._timeout, isolation_level=None
            ) as conn:
                # IMMEDIATE takes the write lock up front so read-modify-write is atomic
                await conn.execute("BEGIN IMMEDIATE" if writable else "BEGIN")
                try:
                    yield Transaction(conn, writable)
                except Exception:
                    await conn.execute("ROLLBACK")
                    raise
                await conn.execute("COMMIT")
        except aiosqlite.Error as exc:
            logger.error("Store transaction failed on %s: %s", self.path, exc)
            raise StorePersistenceError(f"Store transaction failed: {exc}") from exc
