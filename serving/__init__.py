"""
HTTP serving module.

Exposes a trained rec_engine Predictor over a FastAPI app (see serving.api).
"""

from serving.api import app, set_predictor

__all__ = ['app', 'set_predictor']
