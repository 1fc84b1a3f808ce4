"""
Get-or-compute-once feature cache with TTL and bounded LRU eviction.

Backs user and item feature lookups. Two properties matter under the
concurrent assembly load:

Single-flight:
==============

When several workers miss on the same key at once, only the first one (the
leader) calls the expensive compute function. The others wait on the
leader's future and receive the same tensor, or the same exception. A failed
computation is never cached, so the next fetch retries.

    worker A ──fetch("42")──▶ miss, becomes leader ──compute()──┐
    worker B ──fetch("42")──▶ in flight, waits ─────────────────┤
    worker C ──fetch("42")──▶ in flight, waits ─────────────────┤
                                                                ▼
                                              all three get the same tensor

Storage:
========

Entries live in a cachetools.TLRUCache: recency-ordered, with a per-entry
expiry computed from the ttl passed to fetch(). cachetools is not
thread-safe, so every access goes through the cache lock.

When an insertion would exceed `capacity`, `items_to_prune`
least-recently-used entries are dropped in one pass, which amortizes
eviction cost over many inserts. Expired entries are purged first and do not
count as evictions.
"""

import logging
import threading
import time
from concurrent.futures import CancelledError, Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from cachetools import TLRUCache

from rec_engine.context import RunContext
from rec_engine.errors import PipelineCancelledError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    """A cached value and the time-to-live it was stored with."""

    value: Any
    ttl: float


def _time_to_use(_key: str, entry: CacheEntry, now: float) -> float:
    return now + entry.ttl


@dataclass
class CacheStats:
    """
    Statistics about cache operations.

    Attributes:
        total_requests: Total number of fetch() calls
        cache_hits: Fetches served from a live entry
        cache_misses: Fetches that ran the compute function (leaders)
        shared_waits: Fetches that waited on another caller's computation
        errors: Compute function failures
        evictions: Entries removed by size-based pruning
        size: Current number of live entries
    """

    total_requests: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    shared_waits: int = 0
    errors: int = 0
    evictions: int = 0
    size: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        if self.total_requests == 0:
            return 0.0
        return self.cache_hits / self.total_requests

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "total_requests": self.total_requests,
            "cache_hits": self.cache_hits,
            "cache_misses": self.cache_misses,
            "shared_waits": self.shared_waits,
            "errors": self.errors,
            "evictions": self.evictions,
            "size": self.size,
            "hit_rate": self.hit_rate,
        }


class FeatureCache:
    """
    Thread-safe keyed cache with single-flight population.

    Example:
        >>> cache = FeatureCache(capacity=1000, name="user")
        >>> tensor = cache.fetch("42", ttl=86400, compute_fn=lambda: load_user(42))
        >>> tensor is cache.fetch("42", ttl=86400, compute_fn=lambda: load_user(42))
        True
    """

    def __init__(
        self,
        capacity: int,
        items_to_prune: Optional[int] = None,
        name: str = "features",
        clock: Callable[[], float] = time.monotonic,
        poll_interval: float = 0.05,
    ):
        """
        Initialize the cache.

        Args:
            capacity: Maximum number of entries
            items_to_prune: Entries evicted per pruning pass (default: 1% of capacity)
            name: Label used in logs
            clock: Monotonic time source, injectable for tests
            poll_interval: Seconds between cancellation checks while waiting
        """
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")

        self.capacity = capacity
        self.items_to_prune = items_to_prune or max(1, capacity // 100)
        self.name = name
        self._poll_interval = poll_interval

        self._entries: TLRUCache = TLRUCache(maxsize=capacity, ttu=_time_to_use, timer=clock)
        self._inflight: Dict[str, Future] = {}
        self._lock = threading.Lock()
        self._stats = CacheStats()

        logger.info(
            f"FeatureCache[{name}] initialized: capacity={capacity}, "
            f"items_to_prune={self.items_to_prune}"
        )

    def fetch(
        self,
        key: str,
        ttl: float,
        compute_fn: Callable[[], Any],
        ctx: Optional[RunContext] = None,
    ) -> Any:
        """
        Return the cached value for key, computing it at most once.

        Args:
            key: Cache key
            ttl: Seconds the computed value stays valid
            compute_fn: Called by exactly one concurrent caller on a miss
            ctx: Optional run context; waiting callers stop when it is cancelled

        Returns:
            The cached or freshly computed value

        Raises:
            PipelineCancelledError: If ctx is cancelled before a value is available
            Exception: Whatever compute_fn raised (shared by all waiting callers)
        """
        if ctx is not None:
            ctx.raise_if_cancelled()

        with self._lock:
            self._stats.total_requests += 1

            entry = self._entries.get(key)
            if entry is not None:
                self._stats.cache_hits += 1
                return entry.value

            future = self._inflight.get(key)
            if future is not None:
                self._stats.shared_waits += 1
                leader = False
            else:
                future = Future()
                self._inflight[key] = future
                self._stats.cache_misses += 1
                leader = True

        if not leader:
            return self._wait(future, ctx)

        try:
            value = compute_fn()
        except Exception as e:
            with self._lock:
                self._stats.errors += 1
            future.set_exception(e)
            raise
        else:
            with self._lock:
                self._store(key, value, ttl)
            future.set_result(value)
            return value
        finally:
            with self._lock:
                self._inflight.pop(key, None)
            if not future.done():
                # Leader interrupted by a non-Exception; release the waiters.
                future.cancel()

    def _wait(self, future: Future, ctx: Optional[RunContext]) -> Any:
        """Wait for the leader's result, checking for cancellation."""
        while True:
            if ctx is not None:
                ctx.raise_if_cancelled()
            try:
                return future.result(timeout=self._poll_interval)
            except FutureTimeoutError:
                continue
            except CancelledError:
                raise PipelineCancelledError(
                    f"computation for cache '{self.name}' was abandoned"
                ) from None

    def _store(self, key: str, value: Any, ttl: float) -> None:
        """Insert an entry, pruning a batch of LRU entries when full. Caller holds the lock."""
        entries = self._entries
        if key not in entries:
            entries.expire()
            if len(entries) >= self.capacity:
                to_prune = min(self.items_to_prune, len(entries))
                for _ in range(to_prune):
                    entries.popitem()
                self._stats.evictions += to_prune
                logger.debug(f"FeatureCache[{self.name}] pruned {to_prune} entries")
        entries[key] = CacheEntry(value=value, ttl=ttl)

    def get(self, key: str) -> Optional[Any]:
        """Return a live value without computing anything, or None."""
        with self._lock:
            entry = self._entries.get(key)
            return entry.value if entry is not None else None

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.info(f"FeatureCache[{self.name}] cleared")

    def __len__(self) -> int:
        with self._lock:
            self._entries.expire()
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def get_stats(self) -> CacheStats:
        """Snapshot of operational statistics."""
        with self._lock:
            self._entries.expire()
            return CacheStats(
                total_requests=self._stats.total_requests,
                cache_hits=self._stats.cache_hits,
                cache_misses=self._stats.cache_misses,
                shared_waits=self._stats.shared_waits,
                errors=self._stats.errors,
                evictions=self._stats.evictions,
                size=len(self._entries),
            )
