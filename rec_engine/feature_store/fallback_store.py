"""
Fallback feature provider serving configured default tensors.

Used when the primary provider cannot resolve a user or item (storage error,
entity missing, circuit breaker open). Defaults come from EngineConfig:

    default_user_feature: [0.0, 25.0, 0.0]
    default_item_feature: [3.5, 0.0]

Design Decisions:

1. **In-memory only**: No external dependencies, always available

2. **Per-entity opt-in**: A missing default raises instead of inventing a
   tensor, so the engine keeps its drop / zero-fill policy for that entity
   type

3. **Same width as real features**: Defaults must match the width the
   primary provider returns, otherwise layout checks will reject the batch
"""

import logging
import threading
from typing import Any, Dict, Optional, Sequence

import numpy as np

from rec_engine.config import EngineConfig
from rec_engine.context import RunContext
from rec_engine.errors import FeatureResolutionError
from rec_engine.types import FeatureTensor

from .interface import FeatureSource

logger = logging.getLogger(__name__)


class FallbackFeatureProvider(FeatureSource):
    """
    Feature provider returning the same default tensor for every entity.

    Example:
        >>> store = FallbackFeatureProvider(default_user_feature=[0.0, 1.0])
        >>> store.get_user_feature(ctx, 999999)
        array([0., 1.])
        >>> store.get_item_feature(ctx, 1)  # no item default configured
        Traceback (most recent call last):
        FeatureResolutionError: no default item feature configured (item 1)
    """

    def __init__(
        self,
        default_user_feature: Optional[Sequence[float]] = None,
        default_item_feature: Optional[Sequence[float]] = None,
    ):
        self.default_user_feature = _as_optional_tensor(default_user_feature)
        self.default_item_feature = _as_optional_tensor(default_item_feature)
        self._requests = 0
        self._lock = threading.Lock()

        logger.info(
            f"FallbackFeatureProvider initialized: "
            f"user default={'yes' if self.default_user_feature is not None else 'no'}, "
            f"item default={'yes' if self.default_item_feature is not None else 'no'}"
        )

    @classmethod
    def from_config(cls, config: EngineConfig) -> "FallbackFeatureProvider":
        return cls(
            default_user_feature=config.default_user_feature,
            default_item_feature=config.default_item_feature,
        )

    @property
    def enabled(self) -> bool:
        return self.default_user_feature is not None or self.default_item_feature is not None

    def get_user_feature(self, ctx: RunContext, user_id: int) -> FeatureTensor:
        self._count()
        if self.default_user_feature is None:
            raise FeatureResolutionError(f"no default user feature configured (user {user_id})")
        return self.default_user_feature.copy()

    def get_item_feature(self, ctx: RunContext, item_id: int) -> FeatureTensor:
        self._count()
        if self.default_item_feature is None:
            raise FeatureResolutionError(f"no default item feature configured (item {item_id})")
        return self.default_item_feature.copy()

    def _count(self) -> None:
        with self._lock:
            self._requests += 1

    @property
    def requests(self) -> int:
        with self._lock:
            return self._requests

    def health_check(self) -> Dict[str, Any]:
        return {
            "healthy": True,
            "type": "fallback",
            "requests": self.requests,
            "message": "Serving configured default features",
        }


def _as_optional_tensor(values: Optional[Sequence[float]]) -> Optional[np.ndarray]:
    if values is None:
        return None
    return np.asarray(values, dtype=np.float64).ravel()
