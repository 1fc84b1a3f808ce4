"""
Serving module for the engine.

This module provides real-time inference:
- Predictor: Trained feature source + fitted scoring function
- batch_predict: Scores a batch of (user, item) requests with per-row fault tolerance
"""

from .batch_predictor import Predictor, batch_predict

__all__ = [
    "Predictor",
    "batch_predict",
]
