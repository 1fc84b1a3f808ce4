"""
Layered feature provider with circuit breaker pattern.

This module combines a primary provider (the feature source) with a fallback
provider (configured default tensors). The feature cache calls the primary
through a circuit breaker; when a lookup fails, the caller resolves the
entity from the fallback instead, without caching the default.

Circuit Breaker Pattern:
========================

The circuit breaker stops hammering a failing storage backend. Instead of
sending every lookup to a primary that keeps failing, the breaker opens and
lookups fail fast, so every worker goes straight to the fallback.

States:
1. CLOSED (normal): Lookups go to primary
   - If errors exceed threshold → transition to OPEN

2. OPEN (failing): Lookups fail fast without touching primary
   - After timeout → transition to HALF_OPEN

3. HALF_OPEN (recovery): Test lookups go to primary
   - If success → transition to CLOSED
   - If failure → transition to OPEN

What counts as a failure:
=========================

Only an exception from the provider. A None result means the backend
answered "no such entity"; it is a healthy response and counts as a success.
An unknown catalog item must never take down lookups of known entities.

User and item lookups usually hit different tables (or services), so each
gets its own breaker: a broken item store does not stop user lookups.
"""

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from rec_engine.context import RunContext
from rec_engine.errors import FeatureResolutionError
from rec_engine.types import FeatureTensor

from .fallback_store import FallbackFeatureProvider
from .interface import Capabilities

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """
    Configuration for circuit breaker behavior.

    Attributes:
        failure_threshold: Failures within the window that open the circuit
        success_threshold: Successes needed in HALF_OPEN to close it again
        timeout_seconds: Time spent OPEN before a trial request is allowed
        failure_window_seconds: A gap longer than this resets the failure count
    """
    failure_threshold: int = 5
    success_threshold: int = 3
    timeout_seconds: float = 30.0
    failure_window_seconds: float = 60.0


class CircuitOpenError(FeatureResolutionError):
    """Raised instead of calling the primary while the circuit is open."""


class CircuitBreaker:
    """
    Thread-safe breaker guarding one provider.

    Example:
        >>> breaker = CircuitBreaker("item")
        >>> if breaker.allow_request():
        ...     try:
        ...         tensor = lookup(item_id)
        ...     except Exception:
        ...         breaker.record_failure()
        ...         raise
        ...     breaker.record_success()
    """

    def __init__(
        self,
        name: str = "primary",
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failures = 0
        self._recoveries = 0
        self._last_failure_at: Optional[float] = None
        self._opened_at = 0.0
        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    def allow_request(self) -> bool:
        """Whether the next lookup may go to the provider (may move OPEN → HALF_OPEN)."""
        with self._lock:
            if self._state is not CircuitState.OPEN:
                return True
            if self._clock() - self._opened_at < self.config.timeout_seconds:
                return False
            self._move(CircuitState.HALF_OPEN, "timeout elapsed, probing provider")
            self._recoveries = 0
            return True

    def record_success(self) -> None:
        with self._lock:
            if self._state is CircuitState.CLOSED:
                self._failures = 0
                return
            if self._state is CircuitState.HALF_OPEN:
                self._recoveries += 1
                if self._recoveries >= self.config.success_threshold:
                    self._move(CircuitState.CLOSED, f"{self._recoveries} successful trial requests")
                    self._failures = 0
                    self._recoveries = 0

    def record_failure(self) -> None:
        with self._lock:
            now = self._clock()
            if self._state is CircuitState.HALF_OPEN:
                self._trip(now, "trial request failed")
                return

            stale = (
                self._last_failure_at is not None
                and now - self._last_failure_at > self.config.failure_window_seconds
            )
            self._failures = 1 if stale else self._failures + 1
            self._last_failure_at = now

            if self._failures >= self.config.failure_threshold:
                if self._state is CircuitState.OPEN:
                    self._opened_at = now
                else:
                    self._trip(now, f"{self._failures} failures")

    def _trip(self, now: float, reason: str) -> None:
        self._move(CircuitState.OPEN, reason)
        self._opened_at = now

    def _move(self, state: CircuitState, reason: str) -> None:
        log = logger.warning if state is CircuitState.OPEN else logger.info
        log(f"Circuit breaker[{self.name}]: {self._state.value} → {state.value} ({reason})")
        self._state = state

    def get_status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "name": self.name,
                "state": self._state.value,
                "failure_count": self._failures,
                "success_count": self._recoveries,
                "failure_threshold": self.config.failure_threshold,
                "timeout_seconds": self.config.timeout_seconds,
            }


class LayeredFeatureProvider:
    """
    Primary provider guarded by per-entity circuit breakers, plus a fallback.

    The primary methods (get_user_feature / get_item_feature) are what the
    feature cache computes with. They return None for unknown entities and
    raise CircuitOpenError while that entity type's circuit is open. The
    fallback methods are what the caller uses when a cached lookup fails.

    Example:
        >>> layered = LayeredFeatureProvider(caps, FallbackFeatureProvider([0.0, 1.0]))
        >>> try:
        ...     tensor = cache.fetch(key, ttl, lambda: checked(layered.get_user_feature(ctx, 7)))
        ... except Exception:
        ...     tensor = layered.fallback_user_feature(ctx, 7)
    """

    def __init__(
        self,
        primary: Capabilities,
        fallback: FallbackFeatureProvider,
        circuit_config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.primary = primary
        self.fallback = fallback
        self.breakers = {
            "user": CircuitBreaker("user", circuit_config, clock),
            "item": CircuitBreaker("item", circuit_config, clock),
        }

        self._stats_lock = threading.Lock()
        self._stats = {
            "primary_requests": 0,
            "primary_successes": 0,
            "primary_not_found": 0,
            "primary_failures": 0,
            "circuit_rejections": 0,
            "fallback_requests": 0,
        }

        logger.info(f"LayeredFeatureProvider initialized: {self.breakers['user'].config}")

    def get_user_feature(self, ctx: RunContext, user_id: int) -> Optional[FeatureTensor]:
        return self._call_primary(self.primary.get_user_feature, ctx, user_id, "user")

    def get_item_feature(self, ctx: RunContext, item_id: int) -> Optional[FeatureTensor]:
        return self._call_primary(self.primary.get_item_feature, ctx, item_id, "item")

    def fallback_user_feature(self, ctx: RunContext, user_id: int) -> FeatureTensor:
        self._count("fallback_requests")
        return self.fallback.get_user_feature(ctx, user_id)

    def fallback_item_feature(self, ctx: RunContext, item_id: int) -> FeatureTensor:
        self._count("fallback_requests")
        return self.fallback.get_item_feature(ctx, item_id)

    def _call_primary(
        self,
        lookup: Callable[[RunContext, int], Optional[FeatureTensor]],
        ctx: RunContext,
        entity_id: int,
        entity_type: str,
    ) -> Optional[FeatureTensor]:
        breaker = self.breakers[entity_type]
        if not breaker.allow_request():
            self._count("circuit_rejections")
            raise CircuitOpenError(
                f"{entity_type} circuit open, primary skipped for {entity_type} {entity_id}"
            )

        self._count("primary_requests")
        try:
            result = lookup(ctx, entity_id)
        except Exception as e:
            logger.warning(f"Primary provider error for {entity_type} {entity_id}: {e}")
            self._count("primary_failures")
            breaker.record_failure()
            raise

        breaker.record_success()
        self._count("primary_successes" if result is not None else "primary_not_found")
        return result

    def _count(self, counter: str) -> None:
        with self._stats_lock:
            self._stats[counter] += 1

    def health_check(self) -> Dict[str, Any]:
        circuits = {name: b.get_status() for name, b in self.breakers.items()}
        states = {status["state"] for status in circuits.values()}
        if states == {"closed"}:
            message = "Primary provider healthy, operating normally"
        elif "open" in states:
            open_names = sorted(n for n, s in circuits.items() if s["state"] == "open")
            message = f"Primary provider unhealthy for {', '.join(open_names)}, using fallback"
        else:
            message = "Testing primary provider recovery"

        return {
            "healthy": True,
            "message": message,
            "type": "layered",
            "fallback": self.fallback.health_check(),
            "circuit_breakers": circuits,
        }

    def get_detailed_stats(self) -> Dict[str, Any]:
        with self._stats_lock:
            stats: Dict[str, Any] = dict(self._stats)
        answered = stats["primary_successes"] + stats["primary_not_found"]
        requests = stats["primary_requests"]
        stats["primary_success_rate"] = answered / requests if requests > 0 else 0.0
        stats["circuit_breakers"] = {name: b.get_status() for name, b in self.breakers.items()}
        return stats
