"""
FastAPI REST API for ranking.

Wraps a trained Predictor and exposes it via HTTP with request validation,
error mapping and request logging.

Endpoints:
    POST /rank - Score candidate items for a user
    GET /health - Health check with cache statistics

Architecture:
    HTTP Request → FastAPI → Pydantic Validation → rank() → HTTP Response

The predictor is trained in-process (there is no model persistence format).
At startup the service calls the factory named by the
REC_ENGINE_PREDICTOR_FACTORY environment variable ("package.module:function",
returning a Predictor), or a predictor can be installed with set_predictor().

Status codes:
- 200: scores returned (unresolvable rows after the first score as zero-rows)
- 422: the batch could not be built (first row unresolvable, layout drift)
- 503: no predictor loaded
- 500: anything else
"""

import importlib
import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request, status
from pydantic import BaseModel, Field

from rec_engine import FeatureResolutionError, LayoutMismatchError, Predictor, RunContext, rank

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

PREDICTOR_FACTORY_ENV = "REC_ENGINE_PREDICTOR_FACTORY"

# Global predictor (installed at startup or via set_predictor)
predictor: Optional[Predictor] = None


# ============================================================================
# Pydantic Models (Request/Response Schemas)
# ============================================================================

class RankRequest(BaseModel):
    """
    Request schema for ranking.

    Attributes:
        user_id: The user to score items for
        item_ids: Candidate item ids, scored in this order
    """
    user_id: int = Field(..., description="User ID to score items for")
    item_ids: List[int] = Field(..., description="Candidate item IDs")


class ItemScoreResponse(BaseModel):
    item_id: int
    score: float


class RankResponse(BaseModel):
    """
    Response schema for rank requests.

    Attributes:
        user_id: The user ID from the request
        scores: One score per requested item, in request order
        count: Number of scores returned
        latency_ms: Request processing time in milliseconds
    """
    user_id: int
    scores: List[ItemScoreResponse]
    count: int
    latency_ms: float


class HealthResponse(BaseModel):
    """Health check response schema."""
    status: str
    checks: Dict[str, Any]


# ============================================================================
# Predictor loading
# ============================================================================

def set_predictor(new_predictor: Optional[Predictor]) -> None:
    """Install (or remove) the predictor served by the API."""
    global predictor
    predictor = new_predictor


def load_predictor_from_factory(spec: str) -> Predictor:
    """
    Build a predictor from a "package.module:function" factory path.

    Raises:
        ValueError: If the path is not of the form module:function
    """
    module_name, _, func_name = spec.partition(":")
    if not module_name or not func_name:
        raise ValueError(f"Invalid predictor factory '{spec}', expected 'module:function'")
    factory = getattr(importlib.import_module(module_name), func_name)
    return factory()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load the predictor at startup if a factory is configured."""
    logger.info("Starting ranking service...")

    factory_spec = os.environ.get(PREDICTOR_FACTORY_ENV)
    if predictor is None and factory_spec:
        try:
            set_predictor(load_predictor_from_factory(factory_spec))
            logger.info(f"Predictor loaded from {factory_spec}")
        except Exception as e:
            logger.error(f"Failed to load predictor from {factory_spec}: {e}")
            raise

    yield

    logger.info("Shutting down ranking service...")


# ============================================================================
# FastAPI Application
# ============================================================================

app = FastAPI(
    title="Ranking Service API",
    description="Scores candidate items for a user with the trained feature engine",
    version="1.0.0",
    lifespan=lifespan,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all requests with timing information."""
    start_time = time.time()

    logger.info(f"→ {request.method} {request.url.path}")

    response = await call_next(request)

    duration = (time.time() - start_time) * 1000
    logger.info(
        f"← {request.method} {request.url.path} "
        f"status={response.status_code} duration={duration:.1f}ms"
    )

    return response


# ============================================================================
# API Endpoints
# ============================================================================

@app.post(
    "/rank",
    response_model=RankResponse,
    status_code=status.HTTP_200_OK,
    summary="Score candidate items for a user",
)
def rank_items(request: RankRequest) -> RankResponse:
    """
    Score candidate items for a user.

    Raises:
        HTTPException: 503 if no predictor, 422 if the batch cannot be built
    """
    if predictor is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Predictor is not loaded"
        )

    start_time = time.time()

    try:
        item_scores = rank(RunContext(), predictor, request.user_id, request.item_ids)
    except (FeatureResolutionError, LayoutMismatchError) as e:
        logger.warning(f"Cannot rank for user {request.user_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e)
        )
    except Exception as e:
        logger.error(f"Error ranking items for user {request.user_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to rank items: {str(e)}"
        )

    scores = [ItemScoreResponse(item_id=s.item_id, score=s.score) for s in item_scores]
    return RankResponse(
        user_id=request.user_id,
        scores=scores,
        count=len(scores),
        latency_ms=(time.time() - start_time) * 1000,
    )


@app.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
def health_check() -> HealthResponse:
    """Report whether a predictor is loaded, plus cache statistics."""
    if predictor is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Predictor is not loaded"
        )

    checks: Dict[str, Any] = {"predictor": "loaded", **predictor.state.get_stats()}
    if predictor.builder.layered is not None:
        checks["feature_provider"] = predictor.builder.layered.health_check()

    return HealthResponse(status="healthy", checks=checks)
