"""Base classes and canonical data models for listening-history sync.

Every history source must subclass HistorySource and return HistoryPage
objects holding raw entries.  Record and ScanWatermark are the types
persisted by the store and consumed by the scanner, scheduler and API layer.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

logger = logging.getLogger("scrobbles.lastfm")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class HistoryFetchError(Exception):
    """Base class for failures while fetching a history page."""


class TransientFetchError(HistoryFetchError):
    """Network, timeout or server-side failure.  Safe to retry later."""


class LastfmApiError(HistoryFetchError):
    """The API rejected the request (unknown user, bad key, ...).

    Attributes:
        code:    Last.fm error code, or the HTTP status when no body code exists.
        message: Human-readable message from the API.
    """

    def __init__(self, code: int, message: str) -> None:
        super().__init__(f"Last.fm error {code}: {message}")
        self.code = code
        self.message = message


class MalformedResponseError(ValueError):
    """The response body could not be interpreted as a recent-tracks page."""


# ---------------------------------------------------------------------------
# Canonical models
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Record:
    """One completed play event.

    Attributes:
        track:       Track title.
        track_mbid:  MusicBrainz track id ("" when unknown).
        album:       Album title.
        album_mbid:  MusicBrainz release id.
        artist:      Artist name.
        artist_mbid: MusicBrainz artist id.
        date:        Display date string as given by the API.
        timestamp:   Play time in epoch seconds (always > 0).
    """

    track: str
    timestamp: int
    track_mbid: str = ""
    album: str = ""
    album_mbid: str = ""
    artist: str = ""
    artist_mbid: str = ""
    date: str = ""

    def to_json(self) -> dict:
        return {
            "track": self.track,
            "track_mbid": self.track_mbid,
            "album": self.album,
            "album_mbid": self.album_mbid,
            "artist": self.artist,
            "artist_mbid": self.artist_mbid,
            "date": self.date,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_json(cls, data: dict) -> "Record":
        return cls(
            track=data.get("track", ""),
            track_mbid=data.get("track_mbid", ""),
            album=data.get("album", ""),
            album_mbid=data.get("album_mbid", ""),
            artist=data.get("artist", ""),
            artist_mbid=data.get("artist_mbid", ""),
            date=data.get("date", ""),
            timestamp=int(data.get("timestamp", 0)),
        )


@dataclass
class ScanWatermark:
    """Per-user resume point for incremental scans.

    The zero value (no stored watermark) means the full history must be
    fetched.

    Attributes:
        username:             Last.fm username.
        max_record_timestamp: Newest ingested record timestamp.
        run_timestamp:        Wall-clock epoch seconds of the last committed scan.
        records_found:        Records ingested by that scan.
    """

    username: str = ""
    max_record_timestamp: int = 0
    run_timestamp: int = 0
    records_found: int = 0

    def to_json(self) -> dict:
        return {
            "username": self.username,
            "max_record_timestamp": self.max_record_timestamp,
            "run_timestamp": self.run_timestamp,
            "records_found": self.records_found,
        }

    @classmethod
    def from_json(cls, data: dict) -> "ScanWatermark":
        return cls(
            username=data.get("username", ""),
            max_record_timestamp=int(data.get("max_record_timestamp", 0)),
            run_timestamp=int(data.get("run_timestamp", 0)),
            records_found=int(data.get("records_found", 0)),
        )

    @classmethod
    def from_records(
        cls, username: str, records: list[Record], run_timestamp: int
    ) -> "ScanWatermark":
        """Build the watermark describing a freshly ingested batch."""
        return cls(
            username=username,
            max_record_timestamp=max((r.timestamp for r in records), default=0),
            run_timestamp=run_timestamp,
            records_found=len(records),
        )


@dataclass
class HistoryPage:
    """One page of raw history entries plus pagination metadata.

    Attributes:
        entries:     Raw entry dicts, newest first.
        page:        Page number reported by the API (1-based).
        total_pages: Total page count reported by the API.
    """

    entries: list[dict] = field(default_factory=list)
    page: int = 0
    total_pages: int = 0


# ---------------------------------------------------------------------------
# Abstract source
# ---------------------------------------------------------------------------


class HistorySource(ABC):
    """Abstract base class for paginated play-history sources.

    Implementations fetch exactly one page per call and never retry; the
    caller owns the retry policy.
    """

    #: Unique slug for logging.
    SOURCE_ID: str = "unknown"

    @abstractmethod
    async def fetch_page(self, username: str, page: int, limit: int) -> HistoryPage:
        """Fetch one page of a user's history.

        Args:
            username: Remote account name.
            page:     1-based page number (page 1 = most recent).
            limit:    Entries per page.

        Returns:
            HistoryPage with raw entries.

        Raises:
            TransientFetchError: On network/timeout/server failures.
            LastfmApiError:      When the API rejects the request.
        """

    @abstractmethod
    def parse_entry(self, raw: dict) -> Record | None:
        """Convert one raw entry into a Record.

        Args:
            raw: One entry from HistoryPage.entries.

        Returns:
            Record, or None if the entry is not a completed play (now playing,
            missing or zero timestamp, unparsable).
        """
