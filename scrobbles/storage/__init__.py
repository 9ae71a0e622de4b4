"""Persistent storage for scrobbles.

Modules:
    kv      — Embedded transactional bucket/key/value store (SQLite, WAL)
    history — Per-user record log, scan watermark and user registry
"""

from scrobbles.storage.history import DuplicateRegistrationError, HistoryStore
from scrobbles.storage.kv import KeyValueStore, StorePersistenceError

__all__ = [
    "DuplicateRegistrationError",
    "HistoryStore",
    "KeyValueStore",
    "StorePersistenceError",
]
