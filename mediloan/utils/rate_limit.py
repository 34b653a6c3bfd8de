"""
Request throttles backed by the shared key-value store.

Policies in use:
- 10 requests / minute per client IP (generic endpoints)
- 5 requests / hour per hashed Aadhaar number (risk scoring)
- 5 lifetime attempts per loan (hospital confirmation)

The per-loan approval throttle (3 / hour) is counted from the approval
audit log instead; see mediloan.emergency.approval.
"""

import hashlib
import logging
from typing import Optional

from mediloan.repository.kv_store import KVStore, get_kv_store

logger = logging.getLogger(__name__)


def hash_identity(value: str) -> str:
    """sha256 hex digest used in place of a raw identity number."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


class RateLimiter:
    """
    Fixed window counter: the window opens on the first hit for a key and
    resets once it elapses.

    The increment and the comparison use one atomic `incr`, so two
    concurrent requests can never both take the last slot.
    """

    def __init__(
        self,
        limit: int,
        window_seconds: float,
        namespace: str,
        store: Optional[KVStore] = None,
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self.namespace = namespace
        self._store = store

    @property
    def store(self) -> KVStore:
        return self._store or get_kv_store()

    def admit(self, key: str) -> bool:
        count = self.store.incr(f"ratelimit:{self.namespace}:{key}", ttl=self.window_seconds)
        if count > self.limit:
            logger.info("Rate limit hit for %s (%d > %d)", self.namespace, count, self.limit)
            return False
        return True


class AttemptCounter:
    """Lifetime cap per key. Never resets."""

    def __init__(self, limit: int, namespace: str, store: Optional[KVStore] = None):
        self.limit = limit
        self.namespace = namespace
        self._store = store

    @property
    def store(self) -> KVStore:
        return self._store or get_kv_store()

    def record_attempt(self, key: str) -> bool:
        count = self.store.incr(f"attempts:{self.namespace}:{key}")
        return count <= self.limit


def ip_rate_limiter(store: Optional[KVStore] = None, namespace: str = "ip") -> RateLimiter:
    return RateLimiter(limit=10, window_seconds=60, namespace=namespace, store=store)


def identity_rate_limiter(store: Optional[KVStore] = None) -> RateLimiter:
    return RateLimiter(limit=5, window_seconds=3600, namespace="identity", store=store)


def loan_attempt_counter(store: Optional[KVStore] = None) -> AttemptCounter:
    return AttemptCounter(limit=5, namespace="confirmation", store=store)
