"""
Train / Rank orchestration.

train():
    1. Tag the context with Stage.TRAIN
    2. Resolve the source's capabilities (event stream is required)
    3. Run the pre-train hook, if any
    4. Train and publish item embeddings, if the source provides item sequences
    5. Assemble samples from the event stream
    6. Fit the scoring model
    7. Return a Predictor (source lookups + fitted scorer + state)

rank():
    One ScoringRequest per candidate item, scored with batch_predict(); scores
    come back in the order of the input items.
"""

import logging
import time
from typing import Any, List, Optional, Sequence

from .context import RunContext, Stage
from .embedding.item2vec import Item2VecTrainer
from .config import Item2VecConfig
from .errors import CapabilityError, MissingCapabilityError, RecEngineError
from .feature_store.interface import Capabilities, EmbeddingTrainer, ScoringModel
from .features.assembly import SampleAssembler
from .features.composer import SampleVectorBuilder
from .serving.batch_predictor import Predictor, batch_predict
from .state import PipelineState
from .types import ItemScore, ScoringRequest

logger = logging.getLogger(__name__)


def train(
    ctx: RunContext,
    feature_source: Any,
    scoring_model: ScoringModel,
    state: Optional[PipelineState] = None,
    embedding_trainer: Optional[EmbeddingTrainer] = None,
) -> Predictor:
    """
    Train a predictor from a feature source.

    Args:
        ctx: Run context (cancellation is honored throughout)
        feature_source: Object implementing the capability interfaces
        scoring_model: Model fitted on the assembled samples
        state: Caches + embedding table; a fresh one is created if omitted
        embedding_trainer: Trainer for item embeddings (default: Item2Vec)

    Returns:
        Predictor bundling the source, the fitted scorer and the state

    Raises:
        MissingCapabilityError: If the source has no user/item features or event stream
        CapabilityError: If a hook, the embedding trainer or the fit fails
        LayoutMismatchError: If assembled vectors disagree on their layout
        PipelineCancelledError: If ctx is cancelled
    """
    ctx = ctx.with_stage(Stage.TRAIN)
    state = state or PipelineState()
    config = state.config

    caps = Capabilities.from_source(feature_source)
    if caps.generate_samples is None:
        raise MissingCapabilityError("EventStreamProvider")

    if caps.pre_train is not None:
        try:
            caps.pre_train(ctx)
        except Exception as e:
            logger.error(f"pre train error: {e}")
            raise CapabilityError(f"pre train error: {e}") from e

    if caps.generate_item_sequences is not None:
        trainer = embedding_trainer or Item2VecTrainer(
            Item2VecConfig(embedding_dim=config.embedding_dim, window=config.embedding_window)
        )
        try:
            table = trainer.train(caps.generate_item_sequences(ctx))
            state.publish_embeddings(table)
        except Exception as e:
            logger.error(f"get item embedding model error: {e}")
            raise CapabilityError(f"item embedding error: {e}") from e

    try:
        events = caps.generate_samples(ctx)
    except Exception as e:
        raise CapabilityError(f"sample generator error: {e}") from e

    builder = SampleVectorBuilder(caps, state)
    training_set = SampleAssembler(builder).assemble(ctx, events)

    logger.info(f"start training with {len(training_set)} samples")

    try:
        scoring_function = scoring_model.fit(training_set)
    except RecEngineError:
        raise
    except Exception as e:
        logger.error(f"fit error: {e}")
        raise CapabilityError(f"fit error: {e}") from e

    return Predictor(
        source=feature_source,
        capabilities=caps,
        scoring_function=scoring_function,
        state=state,
        builder=builder,
        layout=training_set.layout,
    )


def rank(
    ctx: RunContext,
    predictor: Predictor,
    user_id: int,
    item_ids: Sequence[int],
) -> List[ItemScore]:
    """
    Score candidate items for one user.

    The pre-rank hook runs even for an empty candidate list, exactly as in
    batch_predict(); only the scoring function is skipped.

    Returns:
        ItemScore per item, in the same order as item_ids (not sorted)
    """
    now = int(time.time())
    requests = [
        ScoringRequest(user_id=user_id, item_id=item_id, timestamp=now)
        for item_id in item_ids
    ]
    y = batch_predict(ctx, predictor, requests)

    return [
        ItemScore(item_id=item_id, score=float(y[i, 0]))
        for i, item_id in enumerate(item_ids)
    ]
