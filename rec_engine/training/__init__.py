"""
Scoring model training package.

Modules:
    metrics: Evaluation metrics (RMSE, MAE)
    fitter: XGBoostFitter, the default ScoringModel
"""

from .fitter import XGBoostFitter, XGBoostScoringFunction
from .metrics import compute_mae, compute_rmse, evaluate_scores

__all__ = [
    "XGBoostFitter",
    "XGBoostScoringFunction",
    "compute_rmse",
    "compute_mae",
    "evaluate_scores",
]
