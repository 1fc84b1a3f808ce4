"""Test configuration and shared fixtures."""

import threading
from typing import Dict, Iterable, List, Optional, Sequence, Set

import numpy as np
import pytest

from rec_engine import EngineConfig, Event, PipelineState, RunContext
from rec_engine.feature_store import (
    EventStreamProvider,
    FeatureSource,
    ScoringFunction,
    ScoringModel,
)


class InMemorySource(FeatureSource, EventStreamProvider):
    """
    Feature source backed by dicts.

    Unknown ids return None; ids in `failing_*` raise as a broken backend would.
    """

    def __init__(
        self,
        user_features: Dict[int, Sequence[float]],
        item_features: Dict[int, Sequence[float]],
        events: Optional[List[Event]] = None,
        failing_users: Optional[Set[int]] = None,
        failing_items: Optional[Set[int]] = None,
    ):
        self.user_features = user_features
        self.item_features = item_features
        self.events = events or []
        self.failing_users = failing_users or set()
        self.failing_items = failing_items or set()
        self.user_calls = 0
        self.item_calls = 0
        self.seen_stages = []
        self._lock = threading.Lock()

    def get_user_feature(self, ctx, user_id):
        with self._lock:
            self.user_calls += 1
            self.seen_stages.append(ctx.stage)
        if user_id in self.failing_users:
            raise ConnectionError(f"user store unavailable (user {user_id})")
        if user_id not in self.user_features:
            return None
        return np.array(self.user_features[user_id], dtype=np.float64)

    def get_item_feature(self, ctx, item_id):
        with self._lock:
            self.item_calls += 1
        if item_id in self.failing_items:
            raise ConnectionError(f"item store unavailable (item {item_id})")
        if item_id not in self.item_features:
            return None
        return np.array(self.item_features[item_id], dtype=np.float64)

    def generate_samples(self, ctx) -> Iterable[Event]:
        return iter(self.events)


class RecordingScoringFunction(ScoringFunction):
    """Scores each row with its sum and records every predict() call."""

    def __init__(self):
        self.calls: List[np.ndarray] = []

    def predict(self, matrix):
        self.calls.append(np.array(matrix))
        return np.asarray(matrix).sum(axis=1)


class RecordingScoringModel(ScoringModel):
    def __init__(self):
        self.fitted_sets = []
        self.scoring_function = RecordingScoringFunction()

    def fit(self, training_set):
        self.fitted_sets.append(training_set)
        return self.scoring_function


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def engine_config():
    """Small dimensions so vectors are easy to reason about."""
    return EngineConfig(
        embedding_dim=2,
        behavior_seq_len=3,
        concurrency=4,
        result_buffer_size=8,
        user_cache_capacity=100,
        item_cache_capacity=1000,
        progress_every=10,
        poll_interval_seconds=0.01,
    )


@pytest.fixture
def state(engine_config):
    return PipelineState(engine_config)


@pytest.fixture
def ctx():
    return RunContext()


@pytest.fixture
def source():
    """Users have 2 profile features, items 1 context feature."""
    users = {u: [float(u), 1.0] for u in range(1, 6)}
    items = {i: [float(i)] for i in range(10, 60, 10)}
    events = [
        Event(user_id=u, item_id=i, label=float((u + i) % 2), timestamp=1000 + u)
        for u in users
        for i in items
    ]
    return InMemorySource(users, items, events)


@pytest.fixture
def scoring_model():
    return RecordingScoringModel()
