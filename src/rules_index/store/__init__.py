"""Index store helpers backed by pluggable backends."""

from __future__ import annotations

import os
from functools import lru_cache

from .base import IndexStore
from .errors import IndexStoreError
from .memory_store import InMemoryIndexStore
from .sqlite_store import SQLiteIndexStore

DEFAULT_DB_PATH = "data/index.sqlite3"


@lru_cache()
def get_index_store() -> IndexStore:
    """Return a lazily initialised index store instance based on configuration."""

    backend = os.getenv("INDEX_STORE", "memory").strip().lower()

    if backend == "memory":
        return InMemoryIndexStore()

    if backend == "sqlite":
        return SQLiteIndexStore(os.getenv("INDEX_DB_PATH", DEFAULT_DB_PATH))

    raise ValueError(f"Unsupported INDEX_STORE backend: {backend!r}")


def reset_index_store_cache() -> None:
    """Clear the cached index store (primarily for testing)."""

    get_index_store.cache_clear()  # type: ignore[attr-defined]


__all__ = [
    "IndexStore",
    "IndexStoreError",
    "InMemoryIndexStore",
    "SQLiteIndexStore",
    "get_index_store",
    "reset_index_store_cache",
]
