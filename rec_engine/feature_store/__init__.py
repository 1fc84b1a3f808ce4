"""
Feature Store Package

Capability interfaces, the feature cache, and fallback resolution.

Components:
- Capability ABCs: UserFeatureProvider, ItemFeatureProvider, EventStreamProvider,
  BehaviorSourceProvider, ItemSequenceProvider, PreTrainHook, PreRankHook,
  ScoringModel, ScoringFunction, EmbeddingTrainer
- Capabilities: Optional capabilities of a source, resolved once
- FeatureCache: Single-flight TTL cache with LRU batch pruning
- FallbackFeatureProvider: Configured default tensors
- LayeredFeatureProvider: Primary + fallback with circuit breaker pattern
"""

from .interface import (
    BehaviorSourceProvider,
    Capabilities,
    EmbeddingTrainer,
    EventStreamProvider,
    FeatureSource,
    ItemFeatureProvider,
    ItemSequenceProvider,
    PreRankHook,
    PreTrainHook,
    ScoringFunction,
    ScoringModel,
    UserFeatureProvider,
)
from .cache import CacheEntry, CacheStats, FeatureCache
from .fallback_store import FallbackFeatureProvider
from .layered_store import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitOpenError,
    CircuitState,
    LayeredFeatureProvider,
)

__all__ = [
    # Interface
    "UserFeatureProvider",
    "ItemFeatureProvider",
    "FeatureSource",
    "EventStreamProvider",
    "BehaviorSourceProvider",
    "ItemSequenceProvider",
    "PreTrainHook",
    "PreRankHook",
    "ScoringModel",
    "ScoringFunction",
    "EmbeddingTrainer",
    "Capabilities",
    # Cache
    "FeatureCache",
    "CacheEntry",
    "CacheStats",
    # Fallback
    "FallbackFeatureProvider",
    "LayeredFeatureProvider",
    # Circuit Breaker
    "CircuitBreakerConfig",
    "CircuitBreaker",
    "CircuitState",
    "CircuitOpenError",
]
