"""Shared fixtures, fake history source and raw-entry builders for tests."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from scrobbles.lastfm.base import HistoryPage, HistorySource, Record, TransientFetchError
from scrobbles.lastfm.client import parse_entry
from scrobbles.storage.history import HistoryStore
from scrobbles.storage.kv import KeyValueStore
from scrobbles.sync.scanner import ScanOptions

FIXTURES_DIR = Path(__file__).parent / "fixtures"

TEST_USER = "rj"

# No sleeping between pages or retries in tests
FAST_OPTIONS = ScanOptions(
    page_size=200,
    max_pages=10_000,
    fetch_attempts=3,
    retry_backoff_seconds=0.0,
    page_delay_seconds=0.0,
)


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def make_entry(ts: int, track: str | None = None, artist: str = "Artist") -> dict:
    """A raw recent-tracks entry as the API serves it."""
    return {
        "artist": {"mbid": "", "#text": artist},
        "mbid": "",
        "album": {"mbid": "", "#text": "Album"},
        "name": track or f"Track {ts}",
        "url": "https://www.last.fm/music/x",
        "date": {"uts": str(ts), "#text": ""},
    }


def make_record(ts: int, track: str | None = None) -> Record:
    return Record(track=track or f"Track {ts}", timestamp=ts, artist="Artist", album="Album")


def paginate(timestamps: list[int], page_size: int) -> list[list[dict]]:
    """Split newest-first timestamps into pages of raw entries."""
    return [
        [make_entry(ts) for ts in timestamps[i : i + page_size]]
        for i in range(0, len(timestamps), page_size)
    ]


class FakeHistorySource(HistorySource):
    """In-memory HistorySource serving pre-built pages.

    Attributes:
        requested: Page numbers requested, in order.
        failures:  page number → number of TransientFetchErrors to raise first.
        blanks:    page number → number of times to serve it with no entries.
        malformed: page number → number of times to serve it as an unreadable
                   body (no entries, total_pages=0), as LastfmHistorySource does.
    """

    SOURCE_ID = "fake"

    def __init__(self, pages: list[list[dict]], total_pages: int | None = None) -> None:
        self.pages = pages
        self.total_pages = len(pages) if total_pages is None else total_pages
        self.requested: list[int] = []
        self.failures: dict[int, int] = {}
        self.blanks: dict[int, int] = {}
        self.malformed: dict[int, int] = {}

    async def fetch_page(self, username: str, page: int, limit: int) -> HistoryPage:
        self.requested.append(page)
        if self.failures.get(page, 0) > 0:
            self.failures[page] -= 1
            raise TransientFetchError(f"simulated timeout on page {page}")
        if self.blanks.get(page, 0) > 0:
            self.blanks[page] -= 1
            return HistoryPage(entries=[], page=page, total_pages=self.total_pages)
        if self.malformed.get(page, 0) > 0:
            self.malformed[page] -= 1
            return HistoryPage(entries=[], page=page, total_pages=0)
        entries = self.pages[page - 1] if 0 < page <= len(self.pages) else []
        return HistoryPage(entries=list(entries), page=page, total_pages=self.total_pages)

    def parse_entry(self, raw: dict) -> Record | None:
        return parse_entry(raw)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def recent_tracks_raw() -> dict:
    return json.loads((FIXTURES_DIR / "recent_tracks_page1.json").read_text())


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "stat.db"


@pytest.fixture
async def store(db_path: Path) -> HistoryStore:
    history = HistoryStore(KeyValueStore(db_path))
    await history.open()
    return history
