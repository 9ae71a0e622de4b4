"""Last.fm listening-history source.

Modules:
    base   — HistorySource ABC, Record / ScanWatermark / HistoryPage models, fetch errors
    client — LastfmHistorySource (user.getRecentTracks over httpx) and entry parsing
"""

from scrobbles.lastfm.base import (
    HistoryFetchError,
    HistoryPage,
    HistorySource,
    LastfmApiError,
    MalformedResponseError,
    Record,
    ScanWatermark,
    TransientFetchError,
)
from scrobbles.lastfm.client import LastfmHistorySource

__all__ = [
    "HistoryFetchError",
    "HistoryPage",
    "HistorySource",
    "LastfmApiError",
    "LastfmHistorySource",
    "MalformedResponseError",
    "Record",
    "ScanWatermark",
    "TransientFetchError",
]
