"""Per-user scrobble history, scan watermarks and the user registry.

Layout inside the key-value store:

    bucket ``user.<username>``
        ``scan``    — ScanWatermark JSON
        ``records`` — JSON array of Record, in ingestion order
    bucket ``system``
        ``info``    — ``{"users": [...]}``

Every public method is one store transaction.  The store performs no record
deduplication: the scanner's watermark filter is what keeps already-ingested
plays out, and ``commit_scan`` writes the batch and its watermark together so
the two can never drift apart.
"""

from __future__ import annotations

import json
import logging

from scrobbles.lastfm.base import Record, ScanWatermark
from scrobbles.storage.kv import KeyValueStore, StorePersistenceError, Transaction

logger = logging.getLogger("scrobbles.db")

USER_BUCKET_PREFIX = "user."
SYSTEM_BUCKET = "system"
INFO_KEY = "info"
WATERMARK_KEY = "scan"
RECORDS_KEY = "records"


class DuplicateRegistrationError(ValueError):
    """Raised when registering a username that is already registered."""

    def __init__(self, username: str) -> None:
        super().__init__("user exist")
        self.username = username


def user_bucket(username: str) -> str:
    return f"{USER_BUCKET_PREFIX}{username}"


def _decode(raw: str | None, what: str) -> object:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise StorePersistenceError(f"Corrupt {what} entry: {exc}") from exc


class HistoryStore:
    """Watermark store, record store and user registry over one KeyValueStore.

    Constructed once at startup and passed to the scheduler and the request
    handlers.
    """

    def __init__(self, kv: KeyValueStore) -> None:
        self._kv = kv

    async def open(self) -> None:
        await self._kv.open()

    # ------------------------------------------------------------------
    # User registry
    # ------------------------------------------------------------------

    async def get_users(self) -> list[str]:
        """Return registered usernames in registration order."""
        async with self._kv.view() as tx:
            return await self._read_users(tx)

    async def add_user(self, username: str) -> None:
        """Register a username.

        Raises:
            DuplicateRegistrationError: If the username is already registered.
        """
        async with self._kv.update() as tx:
            users = await self._read_users(tx)
            if username in users:
                raise DuplicateRegistrationError(username)
            users.append(username)
            await tx.put(SYSTEM_BUCKET, INFO_KEY, json.dumps({"users": users}))
        logger.info("Registered user %s (%d total)", username, len(users))

    async def synced_users(self) -> list[str]:
        """Return usernames that have a committed scan, found by bucket scan."""
        async with self._kv.view() as tx:
            names: list[str] = []
            for bucket in await tx.buckets(USER_BUCKET_PREFIX):
                data = _decode(await tx.get(bucket, WATERMARK_KEY), "watermark")
                if isinstance(data, dict):
                    names.append(ScanWatermark.from_json(data).username)
            return names

    # ------------------------------------------------------------------
    # Watermarks
    # ------------------------------------------------------------------

    async def get_watermark(self, username: str) -> ScanWatermark:
        """Return the stored watermark, or the zero value if none exists."""
        async with self._kv.view() as tx:
            return await self._read_watermark(tx, username)

    async def get_status(self, username: str) -> tuple[ScanWatermark, int]:
        """Return the watermark and the stored record count from one snapshot."""
        async with self._kv.view() as tx:
            watermark = await self._read_watermark(tx, username)
            records = await self._read_records(tx, username)
        return watermark, len(records)

    async def set_watermark(self, username: str, watermark: ScanWatermark) -> None:
        """Overwrite the stored watermark unconditionally.

        Only call this after the matching records are durably stored; the sync
        path uses ``commit_scan`` instead.
        """
        async with self._kv.update() as tx:
            await self._write_watermark(tx, username, watermark)

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    async def get_records(self, username: str) -> list[Record]:
        """Return the user's records in stored order."""
        async with self._kv.view() as tx:
            return await self._read_records(tx, username)

    async def append_records(self, username: str, records: list[Record]) -> None:
        """Append a batch to the user's record log (read, concatenate, rewrite)."""
        async with self._kv.update() as tx:
            await self._append(tx, username, records)

    async def commit_scan(
        self, username: str, records: list[Record], watermark: ScanWatermark
    ) -> ScanWatermark:
        """Merge a scan batch and advance the watermark in one transaction.

        The stored ``max_record_timestamp`` never decreases.

        Returns:
            The watermark actually written.
        """
        async with self._kv.update() as tx:
            previous = await self._read_watermark(tx, username)
            if watermark.max_record_timestamp < previous.max_record_timestamp:
                logger.warning(
                    "Watermark for %s would regress (%d < %d); keeping the stored maximum",
                    username, watermark.max_record_timestamp, previous.max_record_timestamp,
                )
                watermark = ScanWatermark(
                    username=watermark.username,
                    max_record_timestamp=previous.max_record_timestamp,
                    run_timestamp=watermark.run_timestamp,
                    records_found=watermark.records_found,
                )
            total = await self._append(tx, username, records)
            await self._write_watermark(tx, username, watermark)
        logger.debug(
            "Committed %d records for %s (total %d, watermark %d)",
            len(records), username, total, watermark.max_record_timestamp,
        )
        return watermark

    # ------------------------------------------------------------------
    # Transaction helpers
    # ------------------------------------------------------------------

    async def _read_users(self, tx: Transaction) -> list[str]:
        data = _decode(await tx.get(SYSTEM_BUCKET, INFO_KEY), "system info")
        if not isinstance(data, dict):
            return []
        return [str(u) for u in data.get("users", [])]

    async def _read_watermark(self, tx: Transaction, username: str) -> ScanWatermark:
        data = _decode(await tx.get(user_bucket(username), WATERMARK_KEY), "watermark")
        if not isinstance(data, dict):
            return ScanWatermark(username=username)
        return ScanWatermark.from_json(data)

    async def _write_watermark(
        self, tx: Transaction, username: str, watermark: ScanWatermark
    ) -> None:
        await tx.put(user_bucket(username), WATERMARK_KEY, json.dumps(watermark.to_json()))

    async def _read_records(self, tx: Transaction, username: str) -> list[Record]:
        data = _decode(await tx.get(user_bucket(username), RECORDS_KEY), "records")
        if not isinstance(data, list):
            return []
        try:
            return [Record.from_json(item) for item in data]
        except (AttributeError, TypeError, ValueError) as exc:
            raise StorePersistenceError(f"Corrupt records entry: {exc}") from exc

    async def _append(self, tx: Transaction, username: str, records: list[Record]) -> int:
        saved = await self._read_records(tx, username)
        merged = saved + list(records)
        await tx.put(
            user_bucket(username),
            RECORDS_KEY,
            json.dumps([r.to_json() for r in merged]),
        )
        return len(merged)
