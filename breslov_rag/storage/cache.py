"""TTL caches for serialised route results.

Both backends sweep expired entries every ``sweep_interval`` writes, so
keys that are never read again do not accumulate.
"""

import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

from breslov_rag.config import CacheConfig
from breslov_rag.storage.database import get_connection, initialize_database

DEFAULT_SWEEP_INTERVAL = 100


class ResultCache(Protocol):
    """Shared key-value store with per-entry expiry."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str, ttl_seconds: int) -> None: ...


class InMemoryResultCache:
    """Process-local cache; expired entries are dropped on read and on sweeps.

    Args:
        clock: Time source in seconds, injectable for tests.
        sweep_interval: Number of writes between two sweeps.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sweep_interval: int = DEFAULT_SWEEP_INTERVAL,
    ) -> None:
        self._entries: dict[str, tuple[float, str]] = {}
        self._clock = clock
        self._sweep_interval = max(sweep_interval, 1)
        self._writes = 0
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._writes += 1
            if self._writes % self._sweep_interval == 0:
                self._purge_locked()
            self._entries[key] = (self._clock() + ttl_seconds, value)

    def purge_expired(self) -> int:
        """Drop expired entries and return how many were removed."""
        with self._lock:
            return self._purge_locked()

    def _purge_locked(self) -> int:
        now = self._clock()
        expired = [key for key, (expires_at, _) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


class SqliteResultCache:
    """Cache kept in the ``route_cache`` table, shared between processes.

    Args:
        db_path: Path to the SQLite database file (created if missing).
        clock: Wall-clock time source in seconds.
        sweep_interval: Number of writes between two sweeps.
    """

    def __init__(
        self,
        db_path: str | Path,
        clock: Callable[[], float] = time.time,
        sweep_interval: int = DEFAULT_SWEEP_INTERVAL,
    ) -> None:
        initialize_database(db_path)
        self._conn = get_connection(db_path)
        self._clock = clock
        self._sweep_interval = max(sweep_interval, 1)
        self._writes = 0
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT value FROM route_cache WHERE key = ? AND expires_at > ?",
                (key, self._clock()),
            ).fetchone()
        return row["value"] if row else None

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        # Concurrent writes of the same key store the same value.
        with self._lock:
            self._writes += 1
            if self._writes % self._sweep_interval == 0:
                self._conn.execute(
                    "DELETE FROM route_cache WHERE expires_at <= ?", (self._clock(),)
                )
            self._conn.execute(
                "INSERT OR REPLACE INTO route_cache (key, value, expires_at) VALUES (?, ?, ?)",
                (key, value, self._clock() + ttl_seconds),
            )
            self._conn.commit()

    def purge_expired(self) -> int:
        """Delete expired rows and return how many were removed."""
        with self._lock:
            cursor = self._conn.execute(
                "DELETE FROM route_cache WHERE expires_at <= ?", (self._clock(),)
            )
            self._conn.commit()
        return cursor.rowcount

    def close(self) -> None:
        self._conn.close()


def build_cache(config: CacheConfig, sqlite_path: str | Path) -> ResultCache | None:
    """Create the configured cache backend, or None when caching is disabled."""
    if not config.enabled:
        return None
    if config.backend == "sqlite":
        return SqliteResultCache(sqlite_path, sweep_interval=config.sweep_interval)
    if config.backend == "memory":
        return InMemoryResultCache(sweep_interval=config.sweep_interval)
    raise ValueError(f"Unsupported cache backend: '{config.backend}'. Supported: memory, sqlite")
