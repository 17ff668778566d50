"""Main FastAPI application for the Pronunciation Mastery service."""
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from fastapi import FastAPI, Request, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from app.routers import pronunciation, mastery, learner
from app.db.init_db import init_db
from app.db.database import get_db
from app.errors import ScoringUnavailable, InvalidInput, ConcurrentUpdateConflict
from app.logging_config import setup_logging
from app.rate_limit import limiter
from app.constants import DEFAULT_RATE_LIMIT
from app.config import settings

# Set up logging on module import
log_level = settings.LOG_LEVEL if settings.LOG_LEVEL else None
setup_logging(log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize the database on startup.

    This function runs once when the application starts, performing:
    - Database table creation
    - Schema migrations (indexes added after first release)
    """
    logger.info("Application startup initiated")
    try:
        init_db()
        logger.info("Database initialization completed successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)
        raise

    if not settings.scorer_configured:
        logger.warning("SCORER_API_KEY is not set; audio submissions will return 503")

    yield

    logger.info("Application shutdown complete")


app = FastAPI(
    title="Pronunciation Mastery API",
    description="""
    Pronunciation evaluation, word mastery and learner confidence tracking.

    ## Features

    - **Attempt Evaluation**: Scorer output becomes a pass/fail result with weak letters and phonemes
    - **Progress Tracking**: Per-unit attempt counts, best score and running average
    - **Word Mastery**: Per-word level (struggling, learning, practicing, mastered) and difficulty trend
    - **Confidence Score**: Drill completion and pronunciation quality blended into one 0-100 score
    - **Challenge Detection**: Units a learner keeps failing, grouped by severity

    ## Attempt Flow

    1. **Submit Recording**: POST audio to `/api/learners/{learner_id}/units/{unit}/attempts`
    2. **Scoring**: The speech scorer is called first; if it fails nothing is recorded (503)
    3. **Recording**: Attempt, unit progress and word mastery are updated in one transaction
    4. **Confidence**: GET `/api/learners/{learner_id}/confidence` to recompute the learner's score

    ## Concurrency

    - Progress, mastery and confidence rows are versioned
    - Conflicting writes are replayed; persistent conflicts return 409
    - An optional `idempotency_key` makes a resubmission return the original attempt
    """,
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_tags=[
        {
            "name": "pronunciation",
            "description": "Attempt submission, unit progress and challenges"
        },
        {
            "name": "mastery",
            "description": "Word-level mastery tracking"
        },
        {
            "name": "learner",
            "description": "Confidence score and learner dashboard"
        },
        {
            "name": "health",
            "description": "Service health and readiness checks"
        }
    ]
)

# Add rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

logger.info(f"Rate limiting enabled: default {DEFAULT_RATE_LIMIT} per IP")


def _error_response(status_code: int, exc) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"code": exc.code, "detail": exc.message}
    )


@app.exception_handler(ScoringUnavailable)
async def scoring_unavailable_handler(request: Request, exc: ScoringUnavailable):
    logger.warning(f"Scoring unavailable on {request.url.path}: {exc.message}")
    return _error_response(503, exc)


@app.exception_handler(InvalidInput)
async def invalid_input_handler(request: Request, exc: InvalidInput):
    logger.info(f"Rejected input on {request.url.path}: {exc.message}")
    return _error_response(422, exc)


@app.exception_handler(ConcurrentUpdateConflict)
async def conflict_handler(request: Request, exc: ConcurrentUpdateConflict):
    logger.warning(f"Update conflict on {request.url.path} after {exc.attempts} attempts")
    return _error_response(409, exc)


# Include routers
app.include_router(pronunciation.router)
app.include_router(mastery.router)
app.include_router(learner.router)


@app.get("/health", tags=["health"])
async def health_check(db: Session = Depends(get_db)):
    """Health check endpoint with database verification.

    This endpoint verifies:
    - API server is responding
    - Database connection is working

    Returns:
        200 OK: Service is healthy and database is accessible
        503 Service Unavailable: Database connection failed

    Example Response (Healthy):
        {
            "status": "healthy",
            "database": "connected",
            "scorer": "configured",
            "timestamp": "2026-10-19T10:30:00.000000Z",
            "environment": "production"
        }
    """
    timestamp = datetime.utcnow().isoformat() + "Z"

    try:
        db.execute(text("SELECT 1"))
        logger.debug("Health check passed")

        return {
            "status": "healthy",
            "database": "connected",
            "scorer": "configured" if settings.scorer_configured else "not configured",
            "timestamp": timestamp,
            "environment": settings.ENVIRONMENT
        }
    except Exception as e:
        logger.error(f"Health check failed: {e}", exc_info=True)

        return JSONResponse(
            status_code=503,
            content={
                "status": "unhealthy",
                "database": "disconnected",
                "error": str(e),
                "timestamp": timestamp
            }
        )


@app.get("/readiness", tags=["health"])
async def readiness_check(db: Session = Depends(get_db)):
    """Readiness check for container orchestration.

    Returns:
        200 OK: Service is ready
        503 Service Unavailable: Service is not ready
    """
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ready", "timestamp": datetime.utcnow().isoformat() + "Z"}
    except Exception as e:
        logger.error(f"Readiness check failed: {e}")
        return JSONResponse(
            status_code=503,
            content={"status": "not ready", "error": str(e)}
        )
