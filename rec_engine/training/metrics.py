"""
Evaluation metrics for the scoring model.

Pure functions:
- RMSE: Root Mean Squared Error (prediction accuracy)
- MAE: Mean Absolute Error (prediction accuracy)
"""

from typing import Dict, Tuple

import numpy as np
from sklearn.metrics import mean_absolute_error, mean_squared_error


def compute_rmse(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    """
    Compute Root Mean Squared Error.

    Args:
        y_true: Actual values
        y_pred: Predicted values

    Returns:
        RMSE value
    """
    return float(np.sqrt(mean_squared_error(y_true, y_pred)))


def compute_mae(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    """
    Compute Mean Absolute Error.

    Args:
        y_true: Actual values
        y_pred: Predicted values

    Returns:
        MAE value
    """
    return float(mean_absolute_error(y_true, y_pred))


def evaluate_scores(
    scoring_function,
    X: np.ndarray,
    y: np.ndarray,
    prefix: str = "",
) -> Tuple[Dict[str, float], np.ndarray]:
    """
    Evaluate a scoring function on a labeled matrix.

    Args:
        scoring_function: Object with predict(matrix) -> N or N x 1 scores
        X: Feature matrix
        y: Labels
        prefix: Prefix for metric names (e.g., "train_", "val_")

    Returns:
        Tuple of:
            - Dictionary with all metrics
            - Array of predictions
    """
    y_pred = np.asarray(scoring_function.predict(X), dtype=np.float64).ravel()

    metrics = {
        f"{prefix}rmse": compute_rmse(y, y_pred),
        f"{prefix}mae": compute_mae(y, y_pred),
    }

    return metrics, y_pred
