"""
Batch prediction for real-time scoring.

Builds one feature row per scoring request (same composition path and caches
as training) and calls the scoring function once over the whole matrix.

Failure policy:
- Row 0 fails to resolve: the call fails. The column count is not known yet,
  so there is nothing to substitute.
- Row i > 0 fails to resolve: the row stays all zeros. One bad item must not
  blank a whole ranking batch; callers should read a zero-row score as
  "no signal", not "bad item".
- A resolved row with a different layout: the call fails, same as training.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

import numpy as np

from rec_engine.config import EngineConfig
from rec_engine.context import RunContext, Stage
from rec_engine.errors import CapabilityError, FeatureResolutionError, RecEngineError
from rec_engine.feature_store.interface import Capabilities, ScoringFunction
from rec_engine.features.composer import SampleVectorBuilder
from rec_engine.features.layout import LayoutTracker
from rec_engine.state import PipelineState
from rec_engine.types import FeatureTensor, LayoutRanges, ScoringRequest

logger = logging.getLogger(__name__)


@dataclass
class Predictor:
    """
    A trained engine: feature lookups of the source plus the fitted scorer.

    Holds the pipeline state and vector builder used during training, so
    serving reuses the warm caches, the published embeddings and the same
    circuit breaker.
    """

    source: Any
    capabilities: Capabilities
    scoring_function: ScoringFunction
    state: PipelineState
    builder: SampleVectorBuilder
    layout: Optional[LayoutRanges] = None

    @property
    def config(self) -> EngineConfig:
        return self.state.config

    def get_user_feature(self, ctx: RunContext, user_id: int) -> FeatureTensor:
        return self.capabilities.get_user_feature(ctx, user_id)

    def get_item_feature(self, ctx: RunContext, item_id: int) -> FeatureTensor:
        return self.capabilities.get_item_feature(ctx, item_id)

    def predict(self, matrix: np.ndarray) -> np.ndarray:
        return self.scoring_function.predict(matrix)


def _is_debug_row(config: EngineConfig, request: ScoringRequest) -> bool:
    return (
        config.debug_item_id != 0
        and request.item_id == config.debug_item_id
        and (config.debug_user_id == 0 or config.debug_user_id == request.user_id)
    )


def batch_predict(
    ctx: RunContext,
    predictor: Predictor,
    requests: Sequence[ScoringRequest],
) -> np.ndarray:
    """
    Score a batch of (user, item) requests.

    Args:
        ctx: Run context; tagged with Stage.PREDICT for the pre-rank hook and providers
        predictor: Trained predictor
        requests: Requests to score, in output row order

    Returns:
        len(requests) x 1 score matrix

    Raises:
        FeatureResolutionError: If the first request cannot be resolved
        LayoutMismatchError: If a resolved row's widths differ from row 0
        CapabilityError: If the pre-rank hook or the scoring function fails
        PipelineCancelledError: If ctx is cancelled
    """
    ctx = ctx.with_stage(Stage.PREDICT)
    caps = predictor.capabilities

    if caps.pre_rank is not None:
        try:
            caps.pre_rank(ctx)
        except Exception as e:
            logger.error(f"pre rank error: {e}")
            raise CapabilityError(f"pre rank error: {e}") from e

    if not requests:
        return np.zeros((0, 1), dtype=np.float64)

    config = predictor.config
    tracker = LayoutTracker(config.behavior_width, config.embedding_dim)
    x: Optional[np.ndarray] = None
    debug_rows = []
    zero_rows = 0

    for i, request in enumerate(requests):
        try:
            composed = predictor.builder.build(
                ctx, request.user_id, request.item_id, request.timestamp
            )
        except FeatureResolutionError as e:
            if i == 0:
                logger.error(f"get sample vector error: {e}")
                raise
            logger.warning(
                f"Row {i} (user {request.user_id}, item {request.item_id}) "
                f"unresolved, using zero vector: {e}"
            )
            zero_rows += 1
            continue

        if x is None:
            x = np.zeros((len(requests), len(composed.vector)), dtype=np.float64)

        tracker.accept(len(composed.vector), composed.user_width, composed.item_width)
        x[i] = composed.vector

        if _is_debug_row(config, request):
            logger.info(
                f"user {request.user_id}: item {request.item_id}: feature {composed.vector.tolist()}"
            )
            debug_rows.append(i)

    try:
        scores = predictor.scoring_function.predict(x)
    except RecEngineError:
        raise
    except Exception as e:
        raise CapabilityError(f"predict error: {e}") from e

    y = np.asarray(scores, dtype=np.float64)
    if y.size != len(requests):
        raise CapabilityError(
            f"scoring function returned {y.size} scores for {len(requests)} rows"
        )
    y = y.reshape(len(requests), 1)

    for i in debug_rows:
        logger.info(
            f"user {requests[i].user_id}: item {requests[i].item_id}: score {y[i, 0]}"
        )
    if zero_rows:
        logger.info(f"Scored {len(requests)} rows ({zero_rows} zero-filled)")

    return y
