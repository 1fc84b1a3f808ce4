"""
Capability interfaces consumed by the engine.

A feature source is any object implementing some subset of the ABCs below.
User and item features are required for every operation; the event stream is
required for training; everything else is optional and switches on extra
behavior when present:

    UserFeatureProvider    -> user profile tensor
    ItemFeatureProvider    -> item context tensor
    EventStreamProvider    -> training events (required by train())
    BehaviorSourceProvider -> user behavior sequence (behavior block)
    ItemSequenceProvider   -> item sequences (embedding table training)
    PreTrainHook           -> runs before training
    PreRankHook            -> runs before batch prediction

Design Decisions:

1. **Unknown entities return None, backend failures raise**
   - None means "not in the store"; it never trips a circuit breaker
   - An exception means the store itself failed and counts against it
   - The engine resolves both at well-defined points (default tensor,
     drop event, zero row); neither result is cached

2. **Capabilities are resolved once**
   - Capabilities.from_source() inspects the source at construction time
   - Call sites hold optional bound methods, no isinstance() per request

3. **Every call receives the run context**
   - Providers can branch on ctx.stage (e.g. cache-reuse policy)
   - Long lookups can observe ctx.cancelled
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Iterable, Optional, Sequence

import numpy as np

from rec_engine.context import RunContext
from rec_engine.errors import MissingCapabilityError
from rec_engine.types import Event, FeatureTensor

if TYPE_CHECKING:
    from rec_engine.embedding.table import EmbeddingTable
    from rec_engine.types import TrainingSet

logger = logging.getLogger(__name__)


class UserFeatureProvider(ABC):
    @abstractmethod
    def get_user_feature(self, ctx: RunContext, user_id: int) -> Optional[FeatureTensor]:
        """
        Get the profile feature tensor (1-D) of one user, or None if unknown.

        Raises:
            Exception: Backend failure; the engine treats it as a resolution error
        """


class ItemFeatureProvider(ABC):
    @abstractmethod
    def get_item_feature(self, ctx: RunContext, item_id: int) -> Optional[FeatureTensor]:
        """
        Get the context feature tensor (1-D) of one item, or None if unknown.

        Raises:
            Exception: Backend failure; the engine treats it as a resolution error
        """


class FeatureSource(UserFeatureProvider, ItemFeatureProvider):
    """Convenience base for sources providing both user and item features."""


class EventStreamProvider(ABC):
    @abstractmethod
    def generate_samples(self, ctx: RunContext) -> Iterable[Event]:
        """Return the training event stream; consumed exactly once."""


class BehaviorSourceProvider(ABC):
    @abstractmethod
    def get_user_behavior(
        self,
        ctx: RunContext,
        user_id: int,
        max_len: int,
        max_pk: int,
        max_ts: int,
    ) -> Sequence[int]:
        """
        Get a user's behavior sequence (clicked/bought/liked item ids).

        During training the sequence must be bounded to avoid leaking future
        interactions into a sample:
         - max_pk is the max primary key of the behavior table
         - max_ts is the max timestamp of the behavior table
         - max_len caps the length, keeping the latest max_len items

        -1 means no limit. At serving time use the freshest sequence.
        """


class ItemSequenceProvider(ABC):
    @abstractmethod
    def generate_item_sequences(self, ctx: RunContext) -> Iterable[str]:
        """
        Return item sequences used to train item embeddings.

        Each element is one sequence of space-separated item ids, e.g. the
        items a user viewed, ordered by time.
        """


class PreTrainHook(ABC):
    @abstractmethod
    def pre_train(self, ctx: RunContext) -> None:
        """Run before training starts."""


class PreRankHook(ABC):
    @abstractmethod
    def pre_rank(self, ctx: RunContext) -> None:
        """Run before every batch prediction."""


class ScoringFunction(ABC):
    @abstractmethod
    def predict(self, matrix: np.ndarray) -> np.ndarray:
        """Score an N x width matrix; returns N scores (N or N x 1)."""


class ScoringModel(ABC):
    @abstractmethod
    def fit(self, training_set: "TrainingSet") -> ScoringFunction:
        """Train on assembled samples and return the fitted scoring function."""


class EmbeddingTrainer(ABC):
    @abstractmethod
    def train(self, sequences: Iterable[str]) -> "EmbeddingTable":
        """Train item embeddings from space-separated item id sequences."""


@dataclass(frozen=True)
class Capabilities:
    """
    Capabilities of one feature source, resolved at construction time.

    Required capabilities are bound methods; optional ones are None when the
    source does not implement them.
    """

    get_user_feature: Callable[[RunContext, int], Optional[FeatureTensor]]
    get_item_feature: Callable[[RunContext, int], Optional[FeatureTensor]]
    generate_samples: Optional[Callable[[RunContext], Iterable[Event]]] = None
    get_user_behavior: Optional[Callable[..., Sequence[int]]] = None
    generate_item_sequences: Optional[Callable[[RunContext], Iterable[str]]] = None
    pre_train: Optional[Callable[[RunContext], None]] = None
    pre_rank: Optional[Callable[[RunContext], None]] = None

    @classmethod
    def from_source(cls, source: object) -> "Capabilities":
        """
        Inspect a feature source once and record what it implements.

        Raises:
            MissingCapabilityError: If user or item features are not provided
        """
        if not isinstance(source, UserFeatureProvider):
            raise MissingCapabilityError("UserFeatureProvider")
        if not isinstance(source, ItemFeatureProvider):
            raise MissingCapabilityError("ItemFeatureProvider")

        def optional(iface: type, method: str) -> Optional[Callable]:
            return getattr(source, method) if isinstance(source, iface) else None

        caps = cls(
            get_user_feature=source.get_user_feature,
            get_item_feature=source.get_item_feature,
            generate_samples=optional(EventStreamProvider, "generate_samples"),
            get_user_behavior=optional(BehaviorSourceProvider, "get_user_behavior"),
            generate_item_sequences=optional(ItemSequenceProvider, "generate_item_sequences"),
            pre_train=optional(PreTrainHook, "pre_train"),
            pre_rank=optional(PreRankHook, "pre_rank"),
        )
        logger.info(f"Resolved capabilities of {type(source).__name__}: {caps.describe()}")
        return caps

    def describe(self) -> str:
        present = [
            name
            for name in (
                "generate_samples",
                "get_user_behavior",
                "generate_item_sequences",
                "pre_train",
                "pre_rank",
            )
            if getattr(self, name) is not None
        ]
        return ", ".join(present) if present else "features only"
