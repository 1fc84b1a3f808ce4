"""
XGBoost scoring model.

XGBoostFitter is the default ScoringModel: it fits an XGBRegressor on an
assembled TrainingSet and returns a scoring function that predicts one score
per row of a composed-vector matrix.

Columns are named after the training layout (user_profile_0, ...,
context_k), so feature importances stay readable and the serving matrix is
checked against the training columns.
"""

import contextlib
import logging
from typing import Dict, List, Optional

import mlflow
import numpy as np
import pandas as pd
import xgboost as xgb
from sklearn.model_selection import train_test_split

from rec_engine.config import FitterConfig
from rec_engine.feature_store.interface import ScoringFunction, ScoringModel
from rec_engine.types import TrainingSet

from .metrics import evaluate_scores

logger = logging.getLogger(__name__)


class XGBoostScoringFunction(ScoringFunction):
    """Fitted XGBRegressor bound to the column names it was trained on."""

    def __init__(self, model: xgb.XGBRegressor, feature_names: List[str]):
        self.model = model
        self.feature_names = feature_names

    def predict(self, matrix: np.ndarray) -> np.ndarray:
        """
        Args:
            matrix: N x width composed vectors

        Returns:
            N x 1 scores

        Raises:
            ValueError: If the matrix width differs from the training width
        """
        matrix = np.asarray(matrix, dtype=np.float64)
        if matrix.ndim != 2 or matrix.shape[1] != len(self.feature_names):
            raise ValueError(
                f"Expected matrix with {len(self.feature_names)} columns, got shape {matrix.shape}"
            )
        features = pd.DataFrame(matrix, columns=self.feature_names)
        return np.asarray(self.model.predict(features), dtype=np.float64).reshape(-1, 1)

    def feature_importance(self, top_k: int = 10) -> Dict[str, float]:
        """Top-k columns by gain-based importance."""
        importances = self.model.feature_importances_
        order = np.argsort(importances)[::-1][:top_k]
        return {self.feature_names[i]: float(importances[i]) for i in order}


class XGBoostFitter(ScoringModel):
    """
    Fits an XGBRegressor on a TrainingSet.

    When the set is large enough, a validation split is held out to report
    RMSE/MAE (and logged to MLflow when a tracking URI is configured); the
    returned model is then refit on all samples.

    Example:
        fitter = XGBoostFitter(FitterConfig(n_estimators=100))
        scoring_fn = fitter.fit(training_set)
        scores = scoring_fn.predict(training_set.features())
    """

    def __init__(
        self,
        config: Optional[FitterConfig] = None,
        validation_fraction: float = 0.1,
        min_validation_samples: int = 20,
    ):
        self.config = config or FitterConfig()
        self.validation_fraction = validation_fraction
        self.min_validation_samples = min_validation_samples
        self.val_metrics: Dict[str, float] = {}

    def fit(self, training_set: TrainingSet) -> XGBoostScoringFunction:
        """
        Raises:
            ValueError: If the training set is empty
        """
        if len(training_set) == 0:
            raise ValueError("cannot fit a scoring model on an empty training set")

        feature_names = training_set.column_names()
        X = pd.DataFrame(training_set.features(), columns=feature_names)
        y = training_set.labels()
        params = self.config.xgb_params()

        logger.info(f"Fitting XGBoost on {X.shape[0]} samples x {X.shape[1]} features")

        with self._tracking_run():
            if self.config.mlflow_tracking_uri:
                mlflow.log_params(params)
                mlflow.log_param("num_samples", X.shape[0])
                mlflow.log_param("num_features", X.shape[1])

            self.val_metrics = {}
            if len(training_set) >= self.min_validation_samples:
                X_train, X_val, y_train, y_val = train_test_split(
                    X,
                    y,
                    test_size=self.validation_fraction,
                    random_state=self.config.random_seed,
                )
                holdout_model = xgb.XGBRegressor(**params)
                holdout_model.fit(X_train, y_train, verbose=False)
                self.val_metrics, _ = evaluate_scores(
                    XGBoostScoringFunction(holdout_model, feature_names),
                    X_val.to_numpy(),
                    y_val,
                    prefix="val_",
                )
                logger.info(f"Val RMSE: {self.val_metrics['val_rmse']:.4f}")
                logger.info(f"Val MAE:  {self.val_metrics['val_mae']:.4f}")
                if self.config.mlflow_tracking_uri:
                    mlflow.log_metrics(self.val_metrics)

            model = xgb.XGBRegressor(**params)
            model.fit(X, y, verbose=False)

        return XGBoostScoringFunction(model, feature_names)

    def _tracking_run(self):
        if not self.config.mlflow_tracking_uri:
            return contextlib.nullcontext()
        mlflow.set_tracking_uri(self.config.mlflow_tracking_uri)
        mlflow.set_experiment(self.config.mlflow_experiment)
        return mlflow.start_run(run_name="fit_scoring_model")
