"""
Append-only audit trail per loan and the idempotency cache.

Both live in the shared key-value store:
- audit:<loan_id>            list, newest first, capped at 100 entries
- confirmation:<sha256 key>  cached JSON response, 2 hour TTL
"""

import hashlib
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from mediloan.repository.kv_store import KVStore, get_kv_store

logger = logging.getLogger(__name__)

MAX_AUDIT_ENTRIES = 100
IDEMPOTENCY_TTL_SECONDS = 2 * 60 * 60


class AuditEntry(BaseModel):
    timestamp: str
    loan_id: str
    status: str
    ip: str = "unknown"
    target: Optional[str] = None
    failure_reason: Optional[str] = None

    @classmethod
    def now(cls, loan_id: str, status: str, **kwargs) -> "AuditEntry":
        return cls(
            timestamp=datetime.now(timezone.utc).isoformat(),
            loan_id=loan_id,
            status=status,
            **kwargs,
        )


class AuditTrail:
    """Per-loan audit list. Writes are best-effort."""

    def __init__(self, store: Optional[KVStore] = None):
        self._store = store

    @property
    def store(self) -> KVStore:
        return self._store or get_kv_store()

    def append(self, entry: AuditEntry) -> None:
        key = f"audit:{entry.loan_id}"
        try:
            self.store.lpush(key, entry.model_dump_json(exclude_none=True))
            self.store.ltrim(key, 0, MAX_AUDIT_ENTRIES - 1)
        except Exception as e:
            logger.error("Audit logging failed for %s: %s", entry.loan_id, e)

    def recent(self, loan_id: str, limit: int = MAX_AUDIT_ENTRIES) -> List[AuditEntry]:
        raw = self.store.lrange(f"audit:{loan_id}", 0, limit - 1)
        return [AuditEntry.model_validate_json(item) for item in raw]


def idempotency_key(loan_id: str, target: str) -> str:
    return hashlib.sha256(f"{loan_id}:{target}".encode("utf-8")).hexdigest()


class IdempotencyCache:
    """
    Remembers the response for a (loan_id, target) pair.

    Responses are stored as canonical JSON so a replay is byte-identical
    to the first answer.
    """

    def __init__(
        self,
        store: Optional[KVStore] = None,
        ttl: float = IDEMPOTENCY_TTL_SECONDS,
        namespace: str = "confirmation",
    ):
        self._store = store
        self.ttl = ttl
        self.namespace = namespace

    @property
    def store(self) -> KVStore:
        return self._store or get_kv_store()

    def _key(self, loan_id: str, target: str) -> str:
        return f"{self.namespace}:{idempotency_key(loan_id, target)}"

    def get(self, loan_id: str, target: str) -> Optional[Dict[str, Any]]:
        try:
            cached = self.store.get(self._key(loan_id, target))
        except Exception as e:
            logger.warning("Cache read failed: %s", e)
            return None
        return json.loads(cached) if cached else None

    def put(self, loan_id: str, target: str, response: Dict[str, Any]) -> None:
        try:
            self.store.set(
                self._key(loan_id, target),
                json.dumps(response, sort_keys=True, separators=(",", ":")),
                ttl=self.ttl,
            )
        except Exception as e:
            logger.warning("Cache write failed: %s", e)
