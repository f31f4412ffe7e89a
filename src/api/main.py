"""
FastAPI application for the learning analytics service.

Provides REST API for:
- Outcome recording and spaced-repetition state
- Due reviews and forgetting-curve risk
- Learner profiles
- In-session flow guidance
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from config import get_settings
from src.analytics.engine import LearningAnalyticsEngine
from src.api.routers import learning_analytics_router
from src.core.logging_setup import configure_logging

SERVICE_NAME = "learning-analytics"
SERVICE_VERSION = "0.1.0"


def _check_database_health() -> tuple[str, str | None]:
    """
    Check database connectivity.

    Returns:
        Tuple of (status, error_message). Status is "ok" or "error".
    """
    from src.db.database import ping

    try:
        ping()
        return "ok", None
    except SQLAlchemyError as e:
        return "error", str(e)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    settings = get_settings()
    # Startup
    configure_logging(settings)
    logger.info(f"Starting {SERVICE_NAME} service...")
    owns_engine = getattr(app.state, "engine", None) is None
    if owns_engine:
        app.state.engine = LearningAnalyticsEngine.from_settings(settings=settings)
    app.state.engine.start()
    logger.info(f"Service started on {settings.api_host}:{settings.api_port}")

    yield

    # Shutdown
    logger.info(f"Shutting down {SERVICE_NAME} service...")
    app.state.engine.close()
    if owns_engine:
        app.state.engine = None


def create_app(engine: LearningAnalyticsEngine | None = None, check_database: bool = True) -> FastAPI:
    """
    Build the application.

    Args:
        engine: Pre-built engine (built from settings on startup if None)
        check_database: Include a database ping in /health
    """
    app = FastAPI(
        title="Learning Analytics",
        description="""
    Adaptive learning-scheduling core.

    ## Features

    - **Spaced Repetition**: SM-2 style interval/ease updates per graded attempt
    - **Forgetting Curve**: Retention estimates that surface at-risk items early
    - **Learner Profiles**: Baselines, topic strengths and time-of-day patterns
    - **Flow Guidance**: In-session difficulty recommendations with hysteresis
    """,
        version=SERVICE_VERSION,
        lifespan=lifespan,
    )
    app.state.engine = engine
    app.state.check_database = check_database

    # CORS middleware for local development
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Restrict in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ========================================
    # Health & Status Endpoints
    # ========================================

    @app.get("/", tags=["Health"])
    def root() -> dict[str, str]:
        """Root endpoint returning service info."""
        return {
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "status": "ok",
        }

    @app.get("/health", tags=["Health"])
    def health_check() -> dict[str, Any]:
        """Health check with database connectivity and engine status."""
        components: dict[str, Any] = {}
        errors: dict[str, str] = {}

        if app.state.check_database:
            db_status, db_error = _check_database_health()
            components["database"] = db_status
            if db_error:
                errors["database"] = db_error
        else:
            components["database"] = "not_checked"

        engine_state = app.state.engine
        components["engine"] = "running" if engine_state is not None else "not_started"

        result: dict[str, Any] = {
            "status": "healthy" if not errors and engine_state is not None else "unhealthy",
            "timestamp": datetime.now(UTC).isoformat(),
            "components": components,
        }
        if engine_state is not None:
            result["engine"] = engine_state.status()
        if errors:
            result["errors"] = errors
        return result

    app.include_router(
        learning_analytics_router.router,
        prefix="/learning-analytics",
        tags=["Learning Analytics"],
    )
    return app


app = create_app()
