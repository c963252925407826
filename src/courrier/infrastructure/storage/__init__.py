"""Local message storage."""

from courrier.infrastructure.storage.eml_store import EmlFileStore, EmlStoreConfig, eml_store_at, safe_segment

__all__ = [
    "eml_store_at",
    "EmlFileStore",
    "EmlStoreConfig",
    "safe_segment",
]
