"""Background sync loop for registered users.

Every tick:
1. Read the user registry snapshot
2. For each user, strictly one after another:
   a. Read the scan watermark
   b. Run the incremental scanner against the remote history
   c. If anything new came back, commit records + watermark in one transaction
3. Sleep ``interval_seconds`` and repeat

A failure for one user is logged and reported in its SyncResult; the rest of
the tick carries on.  Only cancellation (application shutdown) stops the
loop.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from scrobbles.lastfm.base import HistorySource, ScanWatermark
from scrobbles.storage.history import HistoryStore
from scrobbles.sync.scanner import IncrementalScanner, ScanOptions

logger = logging.getLogger("scrobbles.sync.scheduler")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SyncResult:
    """Result of syncing one user.

    Attributes:
        username:             Last.fm username.
        status:               'success', 'unchanged' or 'error'.
        records_found:        New records committed.
        max_record_timestamp: Watermark after the sync (unchanged on error/no-op).
        error:                Error message if status == 'error'.
        synced_at:            UTC timestamp of completion.
    """

    username: str
    status: str = "success"
    records_found: int = 0
    max_record_timestamp: int = 0
    error: str | None = None
    synced_at: datetime = field(default_factory=_utc_now)


class SyncScheduler:
    """Periodically sync every registered user's history into the store.

    Usage::

        scheduler = SyncScheduler(store, source, ScanOptions(), interval_seconds=60)
        task = asyncio.create_task(scheduler.run_forever())
        ...
        task.cancel()
    """

    def __init__(
        self,
        store: HistoryStore,
        source: HistorySource,
        options: ScanOptions | None = None,
        interval_seconds: float = 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the scheduler.

        Args:
            store:            History store shared with the API.
            source:           Remote history source.
            options:          Paging and retry policy for each scan.
            interval_seconds: Sleep between ticks.
            clock:            Wall-clock source for run timestamps.
        """
        self._store = store
        self._scanner = IncrementalScanner(source, options)
        self._interval = interval_seconds
        self._clock = clock

    async def run_forever(self) -> None:
        """Run ticks until cancelled."""
        logger.info("Sync loop started (interval %ss)", self._interval)
        while True:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error("Sync tick failed, retrying next tick: %s", exc)
            await asyncio.sleep(self._interval)

    async def run_once(self) -> list[SyncResult]:
        """Sync every registered user once, sequentially.

        Raises:
            StorePersistenceError: If the registry itself cannot be read.
        """
        users = await self._store.get_users()
        results: list[SyncResult] = []

        for username in users:
            logger.info("Updating %s", username)
            results.append(await self.sync_user(username))

        logger.info(
            "Sync tick complete: %d users, %d records, %d errors",
            len(results),
            sum(r.records_found for r in results),
            sum(1 for r in results if r.status == "error"),
        )
        return results

    async def sync_user(self, username: str) -> SyncResult:
        """Scan one user and commit whatever is new.

        Never raises except on cancellation; failures land in the result.
        """
        result = SyncResult(username=username)
        try:
            previous = await self._store.get_watermark(username)
            result.max_record_timestamp = previous.max_record_timestamp

            records = await self._scanner.scan(username, previous.max_record_timestamp)
            if not records:
                result.status = "unchanged"
                return result

            watermark = ScanWatermark.from_records(
                username, records, run_timestamp=int(self._clock())
            )
            committed = await self._store.commit_scan(username, records, watermark)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Sync failed for %s: %s", username, exc)
            result.status = "error"
            result.error = str(exc) or type(exc).__name__
            return result

        result.records_found = committed.records_found
        result.max_record_timestamp = committed.max_record_timestamp
        logger.info(
            "Sync complete: %s → %d new records, watermark %d",
            username, result.records_found, result.max_record_timestamp,
        )
        return result
