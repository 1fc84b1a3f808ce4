"""
Feature assembly and batch scoring core of a recommendation engine.

Training turns a stream of (user, item) interaction events into fixed-layout
feature vectors and fits a scoring model on them; serving builds the same
vectors for (user, item) scoring requests and scores them in one batch.

Usage:
    from rec_engine import RunContext, PipelineState, train, rank
    from rec_engine.training import XGBoostFitter

    state = PipelineState()
    predictor = train(RunContext(), my_source, XGBoostFitter(), state=state)
    scores = rank(RunContext(), predictor, user_id=1, item_ids=[10, 20, 30])
"""

from .config import EngineConfig, FitterConfig, Item2VecConfig
from .context import RunContext, Stage
from .errors import (
    CapabilityError,
    FeatureResolutionError,
    LayoutMismatchError,
    MissingCapabilityError,
    PipelineCancelledError,
    RecEngineError,
)
from .types import (
    Event,
    ItemScore,
    LayoutRanges,
    ScoringRequest,
    TrainingSample,
    TrainingSet,
)
from .state import PipelineState
from .serving.batch_predictor import Predictor, batch_predict
from .pipeline import rank, train

__all__ = [
    "EngineConfig",
    "FitterConfig",
    "Item2VecConfig",
    "RunContext",
    "Stage",
    "RecEngineError",
    "FeatureResolutionError",
    "LayoutMismatchError",
    "CapabilityError",
    "MissingCapabilityError",
    "PipelineCancelledError",
    "Event",
    "ItemScore",
    "LayoutRanges",
    "ScoringRequest",
    "TrainingSample",
    "TrainingSet",
    "PipelineState",
    "Predictor",
    "batch_predict",
    "rank",
    "train",
]
