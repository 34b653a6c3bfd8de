"""
Key-value store used for shared counters, caches and audit trails.

Goal:
- Give the rest of the code a small, stable interface modelled on a
  Redis-style cache:
    - get / set (with optional TTL) / delete
    - incr (atomic increment, expiry fixed on first hit)
    - lpush / ltrim / lrange
- Hide whether we use:
    - a process-local dict (tests, single worker) OR
    - a SQLite file shared by every worker on the host

Values are plain strings; callers JSON-encode what they store.
"""

import json
import sqlite3
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from mediloan.config.settings import get_settings


# ---------------------------------------------------------------------------
# 1. Abstract interface
# ---------------------------------------------------------------------------

class KVStore(ABC):
    """
    Abstract key-value store.

    Implementations:
    - MemoryKVStore: dict guarded by a lock
    - SqliteKVStore: one table, every mutation in its own write transaction
    """

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    @abstractmethod
    def set(self, key: str, value: str, ttl: Optional[float] = None) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete(self, key: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def incr(self, key: str, ttl: Optional[float] = None) -> int:
        """
        Atomically increment a counter and return the new value.

        A missing or expired counter restarts at 1 and gets `ttl` as its
        lifetime. Later increments keep the original expiry.
        """
        raise NotImplementedError

    @abstractmethod
    def lpush(self, key: str, value: str) -> int:
        """Prepend a value to a list and return the new length."""
        raise NotImplementedError

    @abstractmethod
    def ltrim(self, key: str, start: int, stop: int) -> None:
        """Keep only elements start..stop (inclusive)."""
        raise NotImplementedError

    @abstractmethod
    def lrange(self, key: str, start: int = 0, stop: int = -1) -> List[str]:
        raise NotImplementedError


def _slice(items: List[str], start: int, stop: int) -> List[str]:
    """Redis-style inclusive slice."""
    if stop == -1:
        return items[start:]
    return items[start:stop + 1]


# ---------------------------------------------------------------------------
# 2. In-memory implementation
# ---------------------------------------------------------------------------

class MemoryKVStore(KVStore):
    """Process-local store. Every operation holds the store lock."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.RLock()
        self._values: Dict[str, Tuple[str, Optional[float]]] = {}
        self._lists: Dict[str, List[str]] = {}

    def _live(self, key: str) -> Optional[str]:
        entry = self._values.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._values[key]
            return None
        return value

    def _expiry(self, ttl: Optional[float]) -> Optional[float]:
        return self._clock() + ttl if ttl is not None else None

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._live(key)

    def set(self, key: str, value: str, ttl: Optional[float] = None) -> None:
        with self._lock:
            self._values[key] = (value, self._expiry(ttl))

    def delete(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)
            self._lists.pop(key, None)

    def incr(self, key: str, ttl: Optional[float] = None) -> int:
        with self._lock:
            current = self._live(key)
            if current is None:
                self._values[key] = ("1", self._expiry(ttl))
                return 1
            count = int(current) + 1
            self._values[key] = (str(count), self._values[key][1])
            return count

    def lpush(self, key: str, value: str) -> int:
        with self._lock:
            items = self._lists.setdefault(key, [])
            items.insert(0, value)
            return len(items)

    def ltrim(self, key: str, start: int, stop: int) -> None:
        with self._lock:
            if key in self._lists:
                self._lists[key] = _slice(self._lists[key], start, stop)

    def lrange(self, key: str, start: int = 0, stop: int = -1) -> List[str]:
        with self._lock:
            return _slice(list(self._lists.get(key, [])), start, stop)


# ---------------------------------------------------------------------------
# 3. SQLite implementation
# ---------------------------------------------------------------------------

class SqliteKVStore(KVStore):
    """
    SQLite-backed store that survives restarts and is shared by every
    process opening the same file.

    Read-modify-write operations run inside BEGIN IMMEDIATE so two workers
    incrementing the same counter serialize on the database write lock.
    """

    def __init__(self, db_path: str = "data/mediloan_kv.sqlite", clock: Callable[[], float] = time.time):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._clock = clock
        self._init_db()

    @contextmanager
    def _transaction(self):
        """Open a connection and hold the write lock until commit."""
        conn = sqlite3.connect(str(self.db_path), timeout=10, isolation_level=None)
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.execute("COMMIT")
        except Exception:
            conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def _init_db(self):
        with self._transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    expires_at REAL
                )
            """)

    def _read(self, conn, key: str) -> Optional[Tuple[str, Optional[float]]]:
        row = conn.execute("SELECT value, expires_at FROM kv WHERE key = ?", (key,)).fetchone()
        if row is None:
            return None
        value, expires_at = row
        if expires_at is not None and self._clock() >= expires_at:
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            return None
        return value, expires_at

    def _write(self, conn, key: str, value: str, expires_at: Optional[float]):
        conn.execute(
            "INSERT OR REPLACE INTO kv (key, value, expires_at) VALUES (?, ?, ?)",
            (key, value, expires_at),
        )

    def get(self, key: str) -> Optional[str]:
        with self._transaction() as conn:
            entry = self._read(conn, key)
            return entry[0] if entry else None

    def set(self, key: str, value: str, ttl: Optional[float] = None) -> None:
        expires_at = self._clock() + ttl if ttl is not None else None
        with self._transaction() as conn:
            self._write(conn, key, value, expires_at)

    def delete(self, key: str) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))

    def incr(self, key: str, ttl: Optional[float] = None) -> int:
        with self._transaction() as conn:
            entry = self._read(conn, key)
            if entry is None:
                expires_at = self._clock() + ttl if ttl is not None else None
                self._write(conn, key, "1", expires_at)
                return 1
            count = int(entry[0]) + 1
            self._write(conn, key, str(count), entry[1])
            return count

    def _read_list(self, conn, key: str) -> List[str]:
        entry = self._read(conn, key)
        return json.loads(entry[0]) if entry else []

    def lpush(self, key: str, value: str) -> int:
        with self._transaction() as conn:
            items = self._read_list(conn, key)
            items.insert(0, value)
            self._write(conn, key, json.dumps(items), None)
            return len(items)

    def ltrim(self, key: str, start: int, stop: int) -> None:
        with self._transaction() as conn:
            items = self._read_list(conn, key)
            self._write(conn, key, json.dumps(_slice(items, start, stop)), None)

    def lrange(self, key: str, start: int = 0, stop: int = -1) -> List[str]:
        with self._transaction() as conn:
            return _slice(self._read_list(conn, key), start, stop)


# ---------------------------------------------------------------------------
# 4. Factory
# ---------------------------------------------------------------------------

_kv_store: Optional[KVStore] = None


def get_kv_store() -> KVStore:
    """
    Get or create the process-wide store.

    Controlled by env var (via Settings):
        MEDILOAN_KV_BACKEND = "memory" | "sqlite"
    """
    global _kv_store
    if _kv_store is None:
        settings = get_settings()
        if settings.kv_backend == "sqlite":
            _kv_store = SqliteKVStore(settings.kv_path)
        else:
            _kv_store = MemoryKVStore()
    return _kv_store


def set_kv_store(store: Optional[KVStore]) -> None:
    """Install an explicit store (or reset with None)."""
    global _kv_store
    _kv_store = store
