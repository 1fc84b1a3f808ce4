import numpy as np
import pytest

from rec_engine import EngineConfig, FeatureResolutionError, LayoutRanges, PipelineState
from rec_engine.embedding import EmbeddingTable
from rec_engine.feature_store import BehaviorSourceProvider, Capabilities
from rec_engine.features import SampleVectorBuilder, build_behavior_block, compose

from conftest import InMemorySource


class BehaviorSource(InMemorySource, BehaviorSourceProvider):
    def __init__(self, *args, behavior=None, fail_behavior=False, **kwargs):
        super().__init__(*args, **kwargs)
        self.behavior = behavior or {}
        self.fail_behavior = fail_behavior
        self.behavior_calls = []

    def get_user_behavior(self, ctx, user_id, max_len, max_pk, max_ts):
        self.behavior_calls.append((user_id, max_len, max_pk, max_ts))
        if self.fail_behavior:
            raise ConnectionError("behavior store down")
        return self.behavior.get(user_id, [])


def test_compose_concatenates_segments_in_order():
    composed = compose([1, 2], [0] * 6, [5, 6], [7])

    np.testing.assert_array_equal(
        composed.vector, [1, 2, 0, 0, 0, 0, 0, 0, 5, 6, 7]
    )
    assert composed.user_width == 2
    assert composed.item_width == 1

    layout = LayoutRanges.from_widths(2, 6, 2, 1)
    assert layout.user_profile == (0, 2)
    assert layout.user_behavior == (2, 8)
    assert layout.item_embedding == (8, 10)
    assert layout.context == (10, 11)
    assert layout.width == len(composed.vector)


def test_behavior_block_fills_slots_in_order():
    table = EmbeddingTable({"10": [1.0, 1.0], "20": [2.0, 2.0]})

    block = build_behavior_block([20, 99, 10], table, embedding_dim=2, behavior_seq_len=4)

    np.testing.assert_array_equal(block, [2, 2, 0, 0, 1, 1, 0, 0])


def test_behavior_block_ignores_items_beyond_sequence_length():
    table = EmbeddingTable({"10": [1.0, 1.0], "20": [2.0, 2.0]})

    block = build_behavior_block([10, 20, 10], table, embedding_dim=2, behavior_seq_len=2)

    np.testing.assert_array_equal(block, [1, 1, 2, 2])


def test_builder_without_embeddings_zero_fills(engine_config, ctx):
    source = BehaviorSource({1: [1.0, 2.0]}, {42: [7.0]}, behavior={1: [42]})
    state = PipelineState(engine_config)
    builder = SampleVectorBuilder(Capabilities.from_source(source), state)

    composed = builder.build(ctx, 1, 42, timestamp=100)

    # 2 user + 6 behavior + 2 embedding + 1 context
    np.testing.assert_array_equal(composed.vector, [1, 2, 0, 0, 0, 0, 0, 0, 0, 0, 7])
    assert source.behavior_calls == []


def test_builder_with_embeddings_and_behavior(engine_config, ctx):
    source = BehaviorSource({1: [1.0, 2.0]}, {10: [7.0]}, behavior={1: [20, 30]})
    state = PipelineState(engine_config)
    state.publish_embeddings(EmbeddingTable({"10": [5.0, 6.0], "20": [3.0, 4.0]}))
    builder = SampleVectorBuilder(Capabilities.from_source(source), state)

    composed = builder.build(ctx, 1, 10, timestamp=100)

    np.testing.assert_array_equal(
        composed.vector, [1, 2, 3, 4, 0, 0, 0, 0, 5, 6, 7]
    )
    assert source.behavior_calls == [(1, 3, -1, 100)]


def test_builder_missing_item_embedding_uses_zeros(engine_config, ctx):
    source = InMemorySource({1: [1.0]}, {77: [9.0]})
    state = PipelineState(engine_config)
    state.publish_embeddings(EmbeddingTable({"10": [5.0, 6.0]}))
    builder = SampleVectorBuilder(Capabilities.from_source(source), state)

    composed = builder.build(ctx, 1, 77)

    np.testing.assert_array_equal(composed.vector[-3:], [0, 0, 9])


def test_builder_behavior_failure_raises(engine_config, ctx):
    source = BehaviorSource({1: [1.0]}, {10: [7.0]}, fail_behavior=True)
    state = PipelineState(engine_config)
    state.publish_embeddings(EmbeddingTable({"10": [5.0, 6.0]}))
    builder = SampleVectorBuilder(Capabilities.from_source(source), state)

    with pytest.raises(FeatureResolutionError, match="behavior"):
        builder.build(ctx, 1, 10, timestamp=100)


def test_builder_caches_features(engine_config, ctx):
    source = InMemorySource({1: [1.0]}, {10: [2.0], 20: [3.0]})
    builder = SampleVectorBuilder(Capabilities.from_source(source), PipelineState(engine_config))

    builder.build(ctx, 1, 10)
    builder.build(ctx, 1, 20)
    builder.build(ctx, 1, 10)

    assert source.user_calls == 1
    assert source.item_calls == 2


def test_builder_unresolvable_user_raises(engine_config, ctx):
    source = InMemorySource({}, {10: [2.0]})
    builder = SampleVectorBuilder(Capabilities.from_source(source), PipelineState(engine_config))

    with pytest.raises(FeatureResolutionError, match="get user feature error"):
        builder.build(ctx, 5, 10)


def test_builder_uses_uncached_defaults_when_configured(ctx):
    config = EngineConfig(
        embedding_dim=2,
        behavior_seq_len=3,
        default_user_feature=[0.5, 0.5],
        poll_interval_seconds=0.01,
    )
    source = InMemorySource({1: [1.0, 2.0]}, {10: [7.0]}, failing_users={2})
    state = PipelineState(config)
    builder = SampleVectorBuilder(Capabilities.from_source(source), state)

    composed = builder.build(ctx, 2, 10)
    np.testing.assert_array_equal(composed.vector[:2], [0.5, 0.5])
    assert "2" not in state.user_cache

    # No item default configured: item failures still surface
    source.failing_items.add(10)
    state.item_cache.clear()
    with pytest.raises(FeatureResolutionError):
        builder.build(ctx, 1, 10)
