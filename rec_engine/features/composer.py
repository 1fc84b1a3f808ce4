"""
Feature vector composition.

A composed vector is the concatenation, in this fixed order, of:

    [ user profile | user behavior block | item embedding | item context ]
      user_width     dim x seq_len         dim              item_width

The behavior block embeds the user's recent items slot by slot. Both
embedding segments are all zeros when no embedding table is published, so
composition never fails because of embeddings; only the user and item
feature lookups can fail.

The same SampleVectorBuilder is used for training samples and for serving
requests, which keeps offline and online vectors identical.
"""

import logging
from typing import Callable, NamedTuple, Optional, Sequence

import numpy as np

from rec_engine.context import RunContext
from rec_engine.embedding.table import EmbeddingTable
from rec_engine.errors import FeatureResolutionError, PipelineCancelledError
from rec_engine.feature_store.cache import FeatureCache
from rec_engine.feature_store.fallback_store import FallbackFeatureProvider
from rec_engine.feature_store.interface import Capabilities
from rec_engine.feature_store.layered_store import CircuitBreakerConfig, LayeredFeatureProvider
from rec_engine.state import PipelineState
from rec_engine.types import FeatureTensor

logger = logging.getLogger(__name__)


class ComposedVector(NamedTuple):
    vector: np.ndarray
    user_width: int
    item_width: int


def compose(
    user_profile: Sequence[float],
    user_behavior: Sequence[float],
    item_embedding: Sequence[float],
    item_context: Sequence[float],
) -> ComposedVector:
    """
    Concatenate the four segments into one vector.

    Returns:
        (vector, user_width, item_width) where the widths are those of the
        user profile and the item context; callers compare them across a
        batch to detect layout drift.

    Example:
        >>> compose([1, 2], [0] * 6, [5, 6], [7]).vector
        array([1., 2., 0., 0., 0., 0., 0., 0., 5., 6., 7.])
    """
    parts = [
        np.asarray(part, dtype=np.float64).ravel()
        for part in (user_profile, user_behavior, item_embedding, item_context)
    ]
    return ComposedVector(
        vector=np.concatenate(parts),
        user_width=len(parts[0]),
        item_width=len(parts[3]),
    )


def build_behavior_block(
    item_ids: Sequence[int],
    table: EmbeddingTable,
    embedding_dim: int,
    behavior_seq_len: int,
) -> np.ndarray:
    """
    Embed a behavior sequence into a fixed-width block.

    Item i of the sequence (as supplied by the behavior source) fills slot i.
    Ids missing from the table and unfilled slots stay zero; ids beyond
    behavior_seq_len are ignored.
    """
    block = np.zeros(embedding_dim * behavior_seq_len, dtype=np.float64)
    for slot, item_id in enumerate(list(item_ids)[:behavior_seq_len]):
        emb = table.get(item_id)
        if emb is not None:
            block[slot * embedding_dim:(slot + 1) * embedding_dim] = emb
    return block


def _checked_tensor(value, entity_type: str, entity_id: int) -> FeatureTensor:
    """
    Validate a provider result before it enters the cache.

    Raises:
        FeatureResolutionError: If the entity is unknown (None) or the result
            is not a non-empty 1-D numeric vector
    """
    if value is None:
        raise FeatureResolutionError(f"{entity_type} {entity_id} not found")
    tensor = np.asarray(value, dtype=np.float64)
    if tensor.ndim != 1 or tensor.size == 0:
        raise FeatureResolutionError(
            f"{entity_type} {entity_id} feature must be a non-empty 1-D vector, "
            f"got shape {tensor.shape}"
        )
    return tensor


class SampleVectorBuilder:
    """
    Resolves features for one (user, item) pair and composes its vector.

    Resolution path:
    1. User feature through the user cache (key: str(user_id))
    2. Item feature through the item cache (key: str(item_id))
    3. Item embedding from the published table (zeros if absent)
    4. Behavior block, if the source provides behavior and embeddings exist
    5. compose()

    A lookup fails when the provider raises, returns None (unknown entity)
    or returns anything but a non-empty 1-D vector. Failures are never
    cached. If default features are configured, a failed lookup resolves to
    the default tensor instead, with each provider behind its own circuit
    breaker.

    Example:
        builder = SampleVectorBuilder(Capabilities.from_source(source), state)
        vec, user_width, item_width = builder.build(ctx, user_id=1, item_id=42)
    """

    def __init__(
        self,
        capabilities: Capabilities,
        state: PipelineState,
        circuit_config: Optional[CircuitBreakerConfig] = None,
    ):
        self.capabilities = capabilities
        self.state = state
        self.config = state.config

        fallback = FallbackFeatureProvider.from_config(self.config)
        self.layered: Optional[LayeredFeatureProvider] = None
        if fallback.enabled:
            self.layered = LayeredFeatureProvider(capabilities, fallback, circuit_config)

    def build(
        self,
        ctx: RunContext,
        user_id: int,
        item_id: int,
        timestamp: int = 0,
    ) -> ComposedVector:
        """
        Build the composed vector of one (user, item) pair.

        Raises:
            FeatureResolutionError: If a user/item feature or the behavior
                sequence cannot be resolved
            PipelineCancelledError: If ctx is cancelled meanwhile
        """
        caps = self.capabilities
        layered = self.layered

        user_feature = self._resolve(
            ctx,
            self.state.user_cache,
            user_id,
            "user",
            layered.get_user_feature if layered else caps.get_user_feature,
            layered.fallback_user_feature if layered else None,
        )
        item_feature = self._resolve(
            ctx,
            self.state.item_cache,
            item_id,
            "item",
            layered.get_item_feature if layered else caps.get_item_feature,
            layered.fallback_item_feature if layered else None,
        )

        dim = self.config.embedding_dim
        seq_len = self.config.behavior_seq_len
        table = self.state.embedding_table

        item_emb = np.zeros(dim, dtype=np.float64)
        behavior = np.zeros(dim * seq_len, dtype=np.float64)
        if len(table):
            found = table.get(item_id)
            if found is not None:
                item_emb = found
            else:
                logger.debug(f"item embedding not found: {item_id}, using zeros")

            if caps.get_user_behavior is not None:
                max_ts = timestamp if timestamp > 0 else -1
                try:
                    item_seq = caps.get_user_behavior(ctx, user_id, seq_len, -1, max_ts)
                except PipelineCancelledError:
                    raise
                except Exception as e:
                    raise FeatureResolutionError(
                        f"get user behavior error for user {user_id}: {e}"
                    ) from e
                behavior = build_behavior_block(item_seq, table, dim, seq_len)

        return compose(user_feature, behavior, item_emb, item_feature)

    def _resolve(
        self,
        ctx: RunContext,
        cache: FeatureCache,
        entity_id: int,
        entity_type: str,
        lookup: Callable[[RunContext, int], FeatureTensor],
        fallback: Optional[Callable[[RunContext, int], FeatureTensor]],
    ) -> FeatureTensor:
        try:
            return cache.fetch(
                str(entity_id),
                self.config.feature_ttl_seconds,
                lambda: _checked_tensor(lookup(ctx, entity_id), entity_type, entity_id),
                ctx,
            )
        except PipelineCancelledError:
            raise
        except Exception as e:
            if fallback is not None:
                try:
                    tensor = _checked_tensor(fallback(ctx, entity_id), entity_type, entity_id)
                except FeatureResolutionError:
                    pass
                else:
                    logger.warning(
                        f"Using default {entity_type} feature for {entity_type} {entity_id}: {e}"
                    )
                    return tensor
            raise FeatureResolutionError(
                f"get {entity_type} feature error for {entity_type} {entity_id}: {e}"
            ) from e
