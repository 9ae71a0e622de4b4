"""Deduplication within a single scan.

Pages are requested one at a time, so a scrobble landing between two
requests shifts every entry down by one and the last entry of page N shows
up again as the first entry of page N+1.  The scan session drops such
repeats with an in-memory cache keyed on the play identity.

Dedup key:
    (timestamp, artist, album, track)
"""

from __future__ import annotations

import logging

from scrobbles.lastfm.base import Record

logger = logging.getLogger("scrobbles.sync.dedup")


def record_key(record: Record) -> str:
    """Identity key for one play.

    Args:
        record: Parsed record.

    Returns:
        NUL-separated key string.
    """
    return "\x00".join(
        (str(record.timestamp), record.artist, record.album, record.track)
    )


class InMemoryDedupCache:
    """In-process dedup cache for one scan session.

    Not a replacement for the watermark filter, which is what keeps
    previously committed plays out.  This cache only covers repeats inside a
    single scan.

    Usage::

        cache = InMemoryDedupCache()
        if not cache.is_seen(key):
            cache.mark_seen(key)
            # keep the record
    """

    def __init__(self) -> None:
        self._seen: set[str] = set()

    def is_seen(self, key: str) -> bool:
        return key in self._seen

    def mark_seen(self, key: str) -> None:
        self._seen.add(key)
