import numpy as np
import pytest

from rec_engine import (
    CapabilityError,
    Event,
    ItemScore,
    MissingCapabilityError,
    PipelineState,
    Stage,
    rank,
    train,
)
from rec_engine.embedding import EmbeddingTable
from rec_engine.feature_store import (
    BehaviorSourceProvider,
    EmbeddingTrainer,
    FeatureSource,
    ItemSequenceProvider,
    PreTrainHook,
)

from conftest import InMemorySource, RecordingScoringModel


class FeaturesOnly(FeatureSource):
    def get_user_feature(self, ctx, user_id):
        return np.array([1.0])

    def get_item_feature(self, ctx, item_id):
        return np.array([1.0])


class FullSource(InMemorySource, PreTrainHook, BehaviorSourceProvider, ItemSequenceProvider):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls = []

    def pre_train(self, ctx):
        self.calls.append(("pre_train", ctx.stage))

    def generate_item_sequences(self, ctx):
        self.calls.append(("generate_item_sequences", ctx.stage))
        return ["10 20", "20 30"]

    def generate_samples(self, ctx):
        self.calls.append(("generate_samples", ctx.stage))
        return super().generate_samples(ctx)

    def get_user_behavior(self, ctx, user_id, max_len, max_pk, max_ts):
        return [20]


class FixedTrainer(EmbeddingTrainer):
    def __init__(self, table):
        self.table = table
        self.sequences = None

    def train(self, sequences):
        self.sequences = list(sequences)
        return self.table


def test_train_then_rank_in_input_order(source, scoring_model, engine_config, ctx):
    state = PipelineState(engine_config)

    predictor = train(ctx, source, scoring_model, state=state)

    assert len(scoring_model.fitted_sets) == 1
    training_set = scoring_model.fitted_sets[0]
    assert len(training_set) == len(source.events)
    assert predictor.layout == training_set.layout
    assert predictor.state is state

    scores = rank(ctx, predictor, user_id=2, item_ids=[30, 10, 50])

    assert [s.item_id for s in scores] == [30, 10, 50]
    # Row sum: user [2, 1] + item context
    assert [s.score for s in scores] == [33.0, 13.0, 53.0]
    assert all(isinstance(s, ItemScore) for s in scores)


def test_rank_empty_items(source, scoring_model, engine_config, ctx):
    predictor = train(ctx, source, scoring_model, state=PipelineState(engine_config))

    assert rank(ctx, predictor, user_id=1, item_ids=[]) == []
    assert scoring_model.scoring_function.calls == []


def test_missing_event_stream_is_rejected(scoring_model, ctx):
    with pytest.raises(MissingCapabilityError, match="EventStreamProvider"):
        train(ctx, FeaturesOnly(), scoring_model)
    assert scoring_model.fitted_sets == []


def test_missing_feature_provider_is_rejected(scoring_model, ctx):
    with pytest.raises(MissingCapabilityError):
        train(ctx, object(), scoring_model)


def test_train_runs_hook_embeddings_then_samples(engine_config, ctx):
    source = FullSource(
        {1: [1.0]},
        {10: [0.5], 30: [0.7]},
        events=[Event(1, 10, 1.0, timestamp=100), Event(1, 30, 0.0, timestamp=200)],
    )
    trainer = FixedTrainer(EmbeddingTable({"10": [1.0, 1.0], "20": [2.0, 2.0]}))
    model = RecordingScoringModel()
    state = PipelineState(engine_config)

    train(ctx, source, model, state=state, embedding_trainer=trainer)

    assert source.calls == [
        ("pre_train", Stage.TRAIN),
        ("generate_item_sequences", Stage.TRAIN),
        ("generate_samples", Stage.TRAIN),
    ]
    assert trainer.sequences == ["10 20", "20 30"]
    assert len(state.embedding_table) == 2

    rows = {
        tuple(sample.vector[-1:]): sample.vector
        for sample in model.fitted_sets[0].samples
    }
    # user | behavior [20, -, -] | item embedding | context
    np.testing.assert_array_equal(rows[(0.5,)], [1, 2, 2, 0, 0, 0, 0, 1, 1, 0.5])
    np.testing.assert_array_equal(rows[(0.7,)], [1, 2, 2, 0, 0, 0, 0, 0, 0, 0.7])


def test_embedding_width_mismatch_fails_training(engine_config, ctx):
    source = FullSource({1: [1.0]}, {10: [0.5]}, events=[Event(1, 10, 1.0)])
    trainer = FixedTrainer(EmbeddingTable({"10": [1.0, 1.0, 1.0]}))

    with pytest.raises(CapabilityError, match="item embedding error"):
        train(ctx, source, RecordingScoringModel(), PipelineState(engine_config), trainer)


def test_pre_train_failure_aborts_before_sampling(engine_config, ctx):
    class FailingHook(InMemorySource, PreTrainHook):
        def pre_train(self, ctx):
            raise RuntimeError("snapshot unavailable")

    model = RecordingScoringModel()
    with pytest.raises(CapabilityError, match="pre train error"):
        train(ctx, FailingHook({}, {}), model, PipelineState(engine_config))
    assert model.fitted_sets == []


def test_fit_failure_is_wrapped(source, engine_config, ctx):
    class FailingModel(RecordingScoringModel):
        def fit(self, training_set):
            raise RuntimeError("out of memory")

    with pytest.raises(CapabilityError, match="fit error"):
        train(ctx, source, FailingModel(), PipelineState(engine_config))


def test_empty_event_stream_fits_empty_set(engine_config, ctx):
    source = InMemorySource({1: [1.0]}, {10: [1.0]}, events=[])
    model = RecordingScoringModel()

    predictor = train(ctx, source, model, PipelineState(engine_config))

    assert len(model.fitted_sets[0]) == 0
    assert predictor.layout.width == 0
