"""Incremental history scanner.

Fetches the fewest pages needed to cover every play newer than a watermark.
The remote API returns pages newest-first (page 1 = most recent), so once a
page contains a play older than the watermark no later page can hold
anything new.

Boundary rule: stop paging on ``timestamp < watermark``, keep records with
``timestamp > watermark``.  A play whose timestamp equals the watermark is
the newest one already committed and is always dropped.

Usage::

    scanner = IncrementalScanner(source, ScanOptions(page_size=200))
    new_records = await scanner.scan("alice", watermark=1_700_000_000)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from scrobbles.lastfm.base import (
    HistoryFetchError,
    HistoryPage,
    HistorySource,
    Record,
    TransientFetchError,
)
from scrobbles.sync.dedup import InMemoryDedupCache, record_key

if TYPE_CHECKING:
    from scrobbles.config import Settings

logger = logging.getLogger("scrobbles.sync.scanner")


@dataclass
class ScanOptions:
    """Paging and fetch policy for one scan.

    Attributes:
        page_size:             Entries requested per page (API max 200).
        max_pages:             Hard cap on page requests per scan.
        fetch_attempts:        Tries per page on TransientFetchError.
        retry_backoff_seconds: First retry delay; doubles on each retry.
        page_delay_seconds:    Pause between consecutive page requests.
    """

    page_size: int = 200
    max_pages: int = 10_000
    fetch_attempts: int = 3
    retry_backoff_seconds: float = 2.0
    page_delay_seconds: float = 0.25

    @classmethod
    def from_settings(cls, settings: "Settings") -> "ScanOptions":
        return cls(
            page_size=settings.page_size,
            max_pages=settings.max_pages,
            fetch_attempts=settings.fetch_attempts,
            retry_backoff_seconds=settings.retry_backoff_seconds,
            page_delay_seconds=settings.page_delay_ms / 1000.0,
        )


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def has_records_older_than(records: list[Record], timestamp: int) -> bool:
    return any(r.timestamp < timestamp for r in records)


def filter_newer_than(records: list[Record], timestamp: int) -> list[Record]:
    return [r for r in records if r.timestamp > timestamp]


def has_next_page(
    last_page: int,
    total_pages: int,
    page_records: list[Record],
    watermark: int,
    page_was_empty: bool = False,
) -> bool:
    """Decide whether another page must be fetched.

    Args:
        last_page:      Last loaded page number (0 = nothing loaded yet).
        total_pages:    Total pages reported by the most recent response.
        page_records:   Parsed records of the last loaded page.
        watermark:      Timestamp of the newest already-committed play.
        page_was_empty: True if the last response carried no entries at all.

    Returns:
        True if the next page should be requested.
    """
    if last_page == 0:
        return True
    if last_page >= total_pages:
        return False
    if page_was_empty:
        return False
    return not has_records_older_than(page_records, watermark)


class IncompleteScanError(HistoryFetchError):
    """The scan stopped before reaching the watermark or the last page.

    Committing such a batch would move the watermark past pages that were
    never read, so the whole scan is discarded instead.
    """


# ---------------------------------------------------------------------------
# Page cursor
# ---------------------------------------------------------------------------


class PageCursor:
    """Async iterator over the parsed records of successive history pages.

    Each iteration fetches one page and yields its parsed records (in API
    order).  Iteration ends when ``has_next_page`` says so or when
    ``options.max_pages`` requests have been made.

    Attributes:
        last_loaded_page:    Page number of the last response (0 = not started).
        total_pages:         Total pages reported by the last response.
        last_loaded_records: Parsed records of the last page.
        pages_fetched:       Number of page requests that succeeded.
        incomplete_reason:   Set when iteration ended with pages still unread.
    """

    def __init__(
        self,
        source: HistorySource,
        username: str,
        watermark: int,
        options: ScanOptions,
    ) -> None:
        self._source = source
        self._username = username
        self._watermark = watermark
        self._options = options
        self._last_entry_count = 0
        self._reported_pages = 0

        self.last_loaded_page = 0
        self.total_pages = 0
        self.last_loaded_records: list[Record] = []
        self.pages_fetched = 0
        self.incomplete_reason: str | None = None

    @property
    def complete(self) -> bool:
        return self.incomplete_reason is None

    def has_next_page(self) -> bool:
        page_was_empty = self.pages_fetched > 0 and self._last_entry_count == 0
        more = has_next_page(
            self.last_loaded_page,
            self.total_pages,
            self.last_loaded_records,
            self._watermark,
            page_was_empty=page_was_empty,
        )
        if more and self.pages_fetched >= self._options.max_pages:
            self.incomplete_reason = (
                f"page limit of {self._options.max_pages} reached "
                f"at page {self.last_loaded_page} of {self._reported_pages}"
            )
            return False
        # A blank or malformed page short of the largest reported page count
        if not more and page_was_empty and self.last_loaded_page < self._reported_pages:
            self.incomplete_reason = (
                f"page {self.last_loaded_page} of {self._reported_pages} came back empty"
            )
        return more

    async def load_next(self) -> list[Record]:
        """Fetch and parse the page after ``last_loaded_page``."""
        requested = self.last_loaded_page + 1
        if self.pages_fetched and self._options.page_delay_seconds > 0:
            await asyncio.sleep(self._options.page_delay_seconds)

        page = await self._fetch(requested)

        records: list[Record] = []
        for raw in page.entries:
            record = self._source.parse_entry(raw)
            if record is not None:
                records.append(record)

        # A response that reports an earlier page than requested must not stall the cursor
        self.last_loaded_page = max(page.page, requested)
        self.total_pages = page.total_pages
        self._reported_pages = max(self._reported_pages, page.total_pages)
        self.last_loaded_records = records
        self.pages_fetched += 1
        self._last_entry_count = len(page.entries)

        logger.debug(
            "[%s] Loaded page %d/%d for %s: %d entries, %d records",
            self._source.SOURCE_ID, self.last_loaded_page, self.total_pages,
            self._username, len(page.entries), len(records),
        )
        return records

    async def _fetch(self, page: int) -> HistoryPage:
        attempts = max(self._options.fetch_attempts, 1)
        attempt = 1
        while True:
            try:
                return await self._source.fetch_page(
                    self._username, page, self._options.page_size
                )
            except TransientFetchError as exc:
                if attempt >= attempts:
                    raise
                delay = self._options.retry_backoff_seconds * 2 ** (attempt - 1)
                logger.warning(
                    "[%s] Page %d for %s failed (attempt %d/%d): %s. Retrying in %.1fs",
                    self._source.SOURCE_ID, page, self._username, attempt, attempts,
                    exc, delay,
                )
                await asyncio.sleep(delay)
                attempt += 1

    def __aiter__(self) -> "PageCursor":
        return self

    async def __anext__(self) -> list[Record]:
        if not self.has_next_page():
            raise StopAsyncIteration
        return await self.load_next()


# ---------------------------------------------------------------------------
# Scanner
# ---------------------------------------------------------------------------


class IncrementalScanner:
    """Collect every play newer than a watermark from a HistorySource."""

    def __init__(self, source: HistorySource, options: ScanOptions | None = None) -> None:
        self._source = source
        self._options = options or ScanOptions()

    async def scan(self, username: str, watermark: int) -> list[Record]:
        """Run one scan.

        Args:
            username:  Remote account name.
            watermark: Newest committed play timestamp (0 = full backfill).

        Returns:
            Records with timestamp > watermark, newest first as served.

        Raises:
            TransientFetchError: When a page still fails after all attempts.
            LastfmApiError:      When the API rejects the request.
            IncompleteScanError: When paging stopped with unread pages left.
        """
        cursor = PageCursor(self._source, username, watermark, self._options)
        dedup = InMemoryDedupCache()
        collected: list[Record] = []
        repeats = 0

        async for page_records in cursor:
            for record in page_records:
                key = record_key(record)
                if dedup.is_seen(key):
                    repeats += 1
                    continue
                dedup.mark_seen(key)
                collected.append(record)

        if not cursor.complete:
            logger.warning(
                "[%s] Scan for %s discarded after %d pages: %s",
                self._source.SOURCE_ID, username, cursor.pages_fetched,
                cursor.incomplete_reason,
            )
            raise IncompleteScanError(
                f"Scan for {username} stopped early: {cursor.incomplete_reason}"
            )

        result = filter_newer_than(collected, watermark)
        logger.info(
            "[%s] Scan for %s: %d pages, %d records read, %d new (watermark %d, %d repeats)",
            self._source.SOURCE_ID, username, cursor.pages_fetched, len(collected),
            len(result), watermark, repeats,
        )
        return result
