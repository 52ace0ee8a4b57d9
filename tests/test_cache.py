from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from warehouse_erp.services.cache import InFlightDeduplicator, NullCache, TTLCache


def test_ttl_cache_expires_entries():
    now = [100.0]
    cache = TTLCache(default_ttl_seconds=10, clock=lambda: now[0])

    cache.set("key", {"value": 1})
    assert cache.get("key") == {"value": 1}
    assert not cache.is_expired("key")

    now[0] = 110.0
    assert cache.is_expired("key")
    assert cache.get("key") is None


def test_ttl_cache_per_entry_ttl_and_clear():
    now = [0.0]
    cache = TTLCache(default_ttl_seconds=10, clock=lambda: now[0])
    cache.set("short", "a", ttl_seconds=1)
    cache.set("long", "b")

    now[0] = 5.0
    assert cache.get("short") is None
    assert cache.get("long") == "b"

    cache.clear()
    assert cache.is_expired("long")


def test_null_cache_never_stores():
    cache = NullCache()
    cache.set("key", "value")

    assert cache.get("key") is None
    assert cache.is_expired("key")


def test_deduplicator_runs_one_factory_per_key_in_flight():
    deduplicator = InFlightDeduplicator()
    started = threading.Event()
    release = threading.Event()
    calls = []

    def slow_factory():
        calls.append(1)
        started.set()
        release.wait(timeout=5)
        return "result"

    with ThreadPoolExecutor(max_workers=2) as executor:
        owner = executor.submit(deduplicator.dedupe, "key", slow_factory)
        assert started.wait(timeout=5)
        follower = executor.submit(deduplicator.dedupe, "key", lambda: "follower ran its own factory")
        time.sleep(0.2)
        release.set()
        assert owner.result(timeout=5) == "result"
        assert follower.result(timeout=5) == "result"

    assert len(calls) == 1
    assert deduplicator.dedupe("key", lambda: "again") == "again"


def test_deduplicator_propagates_factory_errors():
    deduplicator = InFlightDeduplicator()

    def broken():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        deduplicator.dedupe("key", broken)
    assert deduplicator.dedupe("key", lambda: 1) == 1


def test_ttl_cache_purges_expired_entries_on_write():
    now = [0.0]
    cache = TTLCache(default_ttl_seconds=1, clock=lambda: now[0])
    for idx in range(50):
        cache.set(("order_number", f"PO-{idx}"), idx)
    assert len(cache) == 50

    now[0] = 2.0
    cache.set("fresh", "value")

    assert len(cache) == 1
    assert cache.get("fresh") == "value"


def test_ttl_cache_evicts_oldest_entries_past_the_cap():
    cache = TTLCache(default_ttl_seconds=60, clock=lambda: 0.0, max_entries=3)
    for key in ["a", "b", "c"]:
        cache.set(key, key)
    cache.set("a", "rewritten")
    cache.set("d", "d")

    assert len(cache) == 3
    assert cache.get("b") is None
    assert cache.get("a") == "rewritten"
    assert cache.get("d") == "d"
