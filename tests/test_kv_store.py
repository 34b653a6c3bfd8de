"""
Tests for the key-value store backends, rate limiting, the audit trail and
the idempotency cache.
"""

import threading

import pytest

from mediloan.repository.audit_trail import (
    MAX_AUDIT_ENTRIES,
    AuditEntry,
    AuditTrail,
    IdempotencyCache,
    idempotency_key,
)
from mediloan.repository.kv_store import MemoryKVStore, SqliteKVStore
from mediloan.utils.rate_limit import (
    AttemptCounter,
    RateLimiter,
    hash_identity,
    ip_rate_limiter,
    loan_attempt_counter,
)


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path, clock):
    if request.param == "memory":
        return MemoryKVStore(clock=clock)
    return SqliteKVStore(str(tmp_path / "kv.sqlite"), clock=clock)


class TestKVStore:

    def test_get_set_delete(self, store):
        assert store.get("k") is None
        store.set("k", "v")
        assert store.get("k") == "v"
        store.delete("k")
        assert store.get("k") is None

    def test_ttl_expiry(self, store, clock):
        store.set("k", "v", ttl=10)
        clock.advance(9)
        assert store.get("k") == "v"
        clock.advance(1)
        assert store.get("k") is None

    def test_incr_keeps_first_expiry(self, store, clock):
        assert store.incr("c", ttl=60) == 1
        clock.advance(30)
        assert store.incr("c", ttl=60) == 2
        clock.advance(30)
        assert store.incr("c", ttl=60) == 1

    def test_incr_without_ttl_never_resets(self, store, clock):
        for _ in range(3):
            store.incr("c")
        clock.advance(10**9)
        assert store.incr("c") == 4

    def test_list_push_trim_range(self, store):
        for i in range(5):
            assert store.lpush("l", str(i)) == i + 1
        assert store.lrange("l") == ["4", "3", "2", "1", "0"]
        store.ltrim("l", 0, 2)
        assert store.lrange("l") == ["4", "3", "2"]
        assert store.lrange("l", 0, 0) == ["4"]

    def test_missing_list_is_empty(self, store):
        assert store.lrange("nothing") == []


def test_memory_incr_is_atomic_across_threads():
    store = MemoryKVStore()
    results = []

    def hit():
        for _ in range(100):
            results.append(store.incr("shared"))

    threads = [threading.Thread(target=hit) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert store.get("shared") == "800"
    assert sorted(results) == list(range(1, 801))


def test_sqlite_store_is_shared_between_instances(tmp_path):
    path = str(tmp_path / "shared.sqlite")
    SqliteKVStore(path).incr("c")
    assert SqliteKVStore(path).incr("c") == 2


class TestRateLimiter:

    def test_tenth_admitted_eleventh_refused(self, store):
        limiter = ip_rate_limiter(store)
        results = [limiter.admit("10.0.0.1") for _ in range(11)]
        assert results[:10] == [True] * 10
        assert results[10] is False

    def test_window_resets(self, store, clock):
        limiter = RateLimiter(limit=2, window_seconds=60, namespace="t", store=store)
        assert limiter.admit("ip") and limiter.admit("ip")
        assert limiter.admit("ip") is False
        clock.advance(61)
        assert limiter.admit("ip") is True

    def test_keys_are_independent(self, store):
        limiter = RateLimiter(limit=1, window_seconds=60, namespace="t", store=store)
        assert limiter.admit("a") is True
        assert limiter.admit("b") is True
        assert limiter.admit("a") is False

    def test_namespaces_are_independent(self, store):
        first = RateLimiter(limit=1, window_seconds=60, namespace="one", store=store)
        second = RateLimiter(limit=1, window_seconds=60, namespace="two", store=store)
        assert first.admit("ip") is True
        assert second.admit("ip") is True

    def test_attempt_counter_has_no_reset(self, store, clock):
        counter = loan_attempt_counter(store)
        assert all(counter.record_attempt("loan") for _ in range(5))
        clock.advance(10**7)
        assert counter.record_attempt("loan") is False

    def test_attempt_counter_limit(self, store):
        counter = AttemptCounter(limit=1, namespace="x", store=store)
        assert counter.record_attempt("k") is True
        assert counter.record_attempt("k") is False

    def test_hash_identity(self):
        digest = hash_identity("123456789012")
        assert len(digest) == 64
        assert "123456789012" not in digest
        assert digest == hash_identity("123456789012")


class TestAuditTrail:

    def test_newest_first(self, store):
        trail = AuditTrail(store)
        trail.append(AuditEntry.now("loan-1", "PENDING"))
        trail.append(AuditEntry.now("loan-1", "CONFIRMED", ip="1.2.3.4"))

        entries = trail.recent("loan-1")
        assert [e.status for e in entries] == ["CONFIRMED", "PENDING"]
        assert entries[0].ip == "1.2.3.4"

    def test_capped_at_one_hundred(self, store):
        trail = AuditTrail(store)
        for i in range(MAX_AUDIT_ENTRIES + 20):
            trail.append(AuditEntry.now("loan-1", "PENDING", failure_reason=str(i)))

        entries = trail.recent("loan-1")
        assert len(entries) == MAX_AUDIT_ENTRIES
        assert entries[0].failure_reason == str(MAX_AUDIT_ENTRIES + 19)

    def test_store_failure_is_swallowed(self):
        class BrokenStore(MemoryKVStore):
            def lpush(self, key, value):
                raise ConnectionError("cache down")

        AuditTrail(BrokenStore()).append(AuditEntry.now("loan-1", "PENDING"))


class TestIdempotencyCache:

    def test_round_trip_is_canonical(self, store):
        cache = IdempotencyCache(store)
        cache.put("loan-1", "place", {"b": 1, "a": "x"})

        raw = store.get(f"confirmation:{idempotency_key('loan-1', 'place')}")
        assert raw == '{"a":"x","b":1}'
        assert cache.get("loan-1", "place") == {"a": "x", "b": 1}

    def test_expires_after_ttl(self, store, clock):
        cache = IdempotencyCache(store, ttl=7200)
        cache.put("loan-1", "place", {"confirmed": True})
        clock.advance(7200)
        assert cache.get("loan-1", "place") is None

    def test_key_depends_on_both_parts(self):
        assert idempotency_key("loan-1", "a") != idempotency_key("loan-1", "b")
        assert len(idempotency_key("loan-1", "a")) == 64

    def test_read_failure_is_a_miss(self):
        class BrokenStore(MemoryKVStore):
            def get(self, key):
                raise ConnectionError("cache down")

        assert IdempotencyCache(BrokenStore()).get("loan-1", "place") is None
