"""SQLite infrastructure for the message tracking store."""

from courrier.infrastructure.sqlite.tracking_store import SQLiteTrackingStore

__all__ = [
    "SQLiteTrackingStore",
]
