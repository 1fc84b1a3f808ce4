import threading
import time

import numpy as np
import pytest

from rec_engine import PipelineCancelledError, RunContext
from rec_engine.feature_store import FeatureCache

from conftest import FakeClock


def _wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return False


def test_hit_within_ttl_skips_compute():
    cache = FeatureCache(capacity=10)
    calls = []

    def compute():
        calls.append(1)
        return np.array([1.0, 2.0])

    first = cache.fetch("u1", 60, compute)
    second = cache.fetch("u1", 60, compute)

    assert len(calls) == 1
    assert second is first
    stats = cache.get_stats()
    assert stats.cache_hits == 1
    assert stats.cache_misses == 1
    assert stats.hit_rate == 0.5


def test_expired_entry_is_recomputed():
    clock = FakeClock()
    cache = FeatureCache(capacity=10, clock=clock)
    values = iter([np.array([1.0]), np.array([2.0])])

    assert cache.fetch("k", 10, lambda: next(values))[0] == 1.0
    clock.advance(9)
    assert cache.fetch("k", 10, lambda: next(values))[0] == 1.0
    clock.advance(1)
    assert "k" not in cache
    assert cache.fetch("k", 10, lambda: next(values))[0] == 2.0


def test_concurrent_fetch_computes_once():
    cache = FeatureCache(capacity=10, poll_interval=0.01)
    started = threading.Event()
    release = threading.Event()
    calls = []
    results = [None, None]

    def compute():
        calls.append(1)
        started.set()
        release.wait(5)
        return np.array([3.0, 4.0])

    def fetch(i):
        results[i] = cache.fetch("item:7", 60, compute)

    leader = threading.Thread(target=fetch, args=(0,))
    leader.start()
    assert started.wait(5)

    follower = threading.Thread(target=fetch, args=(1,))
    follower.start()
    assert _wait_until(lambda: cache.get_stats().shared_waits == 1)

    release.set()
    leader.join(5)
    follower.join(5)

    assert len(calls) == 1
    assert results[0] is results[1]
    np.testing.assert_array_equal(results[1], [3.0, 4.0])


def test_concurrent_failure_is_shared_and_not_cached():
    cache = FeatureCache(capacity=10, poll_interval=0.01)
    started = threading.Event()
    release = threading.Event()
    calls = []
    errors = [None, None]

    def failing():
        calls.append(1)
        started.set()
        release.wait(5)
        raise ValueError("storage down")

    def fetch(i):
        try:
            cache.fetch("k", 60, failing)
        except ValueError as e:
            errors[i] = e

    leader = threading.Thread(target=fetch, args=(0,))
    leader.start()
    assert started.wait(5)
    follower = threading.Thread(target=fetch, args=(1,))
    follower.start()
    assert _wait_until(lambda: cache.get_stats().shared_waits == 1)

    release.set()
    leader.join(5)
    follower.join(5)

    assert len(calls) == 1
    assert errors[0] is not None and errors[0] is errors[1]
    assert "k" not in cache

    # Next fetch retries the computation
    assert cache.fetch("k", 60, lambda: np.array([1.0]))[0] == 1.0
    assert cache.get_stats().errors == 1


def test_overflow_prunes_least_recently_used_in_batches():
    cache = FeatureCache(capacity=10, items_to_prune=3)
    for i in range(10):
        cache.fetch(f"k{i}", 60, lambda i=i: np.array([float(i)]))

    # Touch k0 so it becomes most recently used
    cache.fetch("k0", 60, lambda: pytest.fail("should be a hit"))
    cache.fetch("k10", 60, lambda: np.array([10.0]))

    assert len(cache) == 8
    assert "k0" in cache
    for evicted in ("k1", "k2", "k3"):
        assert evicted not in cache
    assert "k4" in cache and "k10" in cache
    assert cache.get_stats().evictions == 3


def test_default_prune_batch_is_one_percent():
    assert FeatureCache(capacity=200_000).items_to_prune == 2000
    assert FeatureCache(capacity=50).items_to_prune == 1


def test_waiter_stops_when_context_cancelled():
    cache = FeatureCache(capacity=10, poll_interval=0.01)
    started = threading.Event()
    release = threading.Event()
    ctx = RunContext()
    outcome = {}

    def slow():
        started.set()
        release.wait(5)
        return np.array([1.0])

    leader = threading.Thread(target=lambda: cache.fetch("k", 60, slow))
    leader.start()
    assert started.wait(5)

    def follow():
        try:
            cache.fetch("k", 60, slow, ctx)
        except PipelineCancelledError as e:
            outcome["error"] = e

    follower = threading.Thread(target=follow)
    follower.start()
    assert _wait_until(lambda: cache.get_stats().shared_waits == 1)

    ctx.cancel()
    follower.join(5)
    assert isinstance(outcome.get("error"), PipelineCancelledError)

    release.set()
    leader.join(5)


def test_cancelled_context_fails_fast():
    ctx = RunContext()
    ctx.cancel()
    cache = FeatureCache(capacity=10)
    with pytest.raises(PipelineCancelledError):
        cache.fetch("k", 60, lambda: np.array([1.0]), ctx)


def test_clear_and_delete():
    cache = FeatureCache(capacity=10)
    cache.fetch("a", 60, lambda: np.array([1.0]))
    cache.fetch("b", 60, lambda: np.array([2.0]))

    assert cache.delete("a") is True
    assert cache.delete("a") is False
    cache.clear()
    assert len(cache) == 0


def test_invalid_capacity():
    with pytest.raises(ValueError):
        FeatureCache(capacity=0)


def test_expired_entries_are_purged_before_pruning():
    clock = FakeClock()
    cache = FeatureCache(capacity=3, items_to_prune=2, clock=clock)
    for key in ("a", "b", "c"):
        cache.fetch(key, 10, lambda: np.array([1.0]))

    clock.advance(10)
    cache.fetch("d", 10, lambda: np.array([2.0]))

    assert len(cache) == 1
    assert cache.get_stats().evictions == 0


def test_entries_keep_their_own_ttl():
    clock = FakeClock()
    cache = FeatureCache(capacity=10, clock=clock)
    cache.fetch("short", 5, lambda: np.array([1.0]))
    cache.fetch("long", 50, lambda: np.array([2.0]))

    clock.advance(6)

    assert "short" not in cache
    assert "long" in cache
