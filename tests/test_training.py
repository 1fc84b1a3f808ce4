import numpy as np
import pytest

from rec_engine import FitterConfig, Item2VecConfig, LayoutRanges, TrainingSample, TrainingSet
from rec_engine.embedding import Item2VecTrainer
from rec_engine.training import XGBoostFitter, compute_mae, compute_rmse


@pytest.fixture
def training_set():
    rng = np.random.default_rng(0)
    layout = LayoutRanges.from_widths(2, 4, 2, 1)
    X = rng.normal(size=(60, layout.width))
    y = X[:, 0] * 2.0 + X[:, -1]
    return TrainingSet(
        samples=[TrainingSample(vector=x, label=float(label)) for x, label in zip(X, y)],
        layout=layout,
    )


def test_metrics():
    y_true = np.array([1.0, 2.0, 3.0])
    y_pred = np.array([1.0, 2.0, 5.0])

    assert compute_mae(y_true, y_pred) == pytest.approx(2.0 / 3.0)
    assert compute_rmse(y_true, y_pred) == pytest.approx(np.sqrt(4.0 / 3.0))


def test_training_set_frame(training_set):
    df = training_set.to_frame()

    assert list(df.columns[:3]) == ["user_profile_0", "user_profile_1", "user_behavior_0"]
    assert df.columns[-1] == "label"
    assert df.shape == (60, training_set.layout.width + 1)


def test_xgboost_fitter_scores_rows(training_set):
    fitter = XGBoostFitter(FitterConfig(n_estimators=20, max_depth=3))

    scoring_fn = fitter.fit(training_set)
    scores = scoring_fn.predict(training_set.features()[:5])

    assert scores.shape == (5, 1)
    assert set(fitter.val_metrics) == {"val_rmse", "val_mae"}
    importance = scoring_fn.feature_importance(top_k=3)
    assert len(importance) == 3
    assert set(importance) <= set(training_set.column_names())


def test_xgboost_scoring_rejects_wrong_width(training_set):
    scoring_fn = XGBoostFitter(FitterConfig(n_estimators=5)).fit(training_set)

    with pytest.raises(ValueError):
        scoring_fn.predict(np.zeros((2, 3)))


def test_xgboost_fitter_rejects_empty_set():
    with pytest.raises(ValueError):
        XGBoostFitter().fit(TrainingSet())


def test_item2vec_trains_table_for_every_item():
    trainer = Item2VecTrainer(
        Item2VecConfig(embedding_dim=4, window=2, num_epochs=2, batch_size=8)
    )

    table = trainer.train(["1 2 3 4", "2 3 5", "4 1"])

    assert set(table) == {"1", "2", "3", "4", "5"}
    assert table.dim == 4
    assert table.get(3).shape == (4,)
    assert len(trainer.loss_history) == 2
    assert all(np.isfinite(trainer.loss_history))


def test_item2vec_min_count_filters_rare_items():
    trainer = Item2VecTrainer(Item2VecConfig(embedding_dim=2, min_count=2, num_epochs=1))

    table = trainer.train(["1 2", "1 2", "3 1"])

    assert "3" not in table
    assert "1" in table and "2" in table


def test_item2vec_empty_corpus():
    table = Item2VecTrainer(Item2VecConfig(embedding_dim=2)).train(["", "  "])

    assert len(table) == 0
