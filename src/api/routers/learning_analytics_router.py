"""
Learning Analytics API Router.

Endpoints for the adaptive scheduling core:
- Outcome recording (spaced-repetition state updates)
- Due reviews and forgetting-curve risk
- Learner profiles (read, synchronous and background rebuild)
- Learning dashboard (profile, queues and metrics in one read)
- In-session flow guidance

Errors map to status codes: validation 400, not found 404, conflict 409,
persistence unavailable 503, persistence timeout 504.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from loguru import logger
from pydantic import BaseModel, Field

from src.analytics.engine import LearningAnalyticsEngine
from src.core.errors import (
    ConflictError,
    LearningAnalyticsError,
    NotFoundError,
    PersistenceTimeoutError,
    PersistenceUnavailableError,
    ValidationError,
)

router = APIRouter()


def get_analytics_engine(request: Request) -> LearningAnalyticsEngine:
    """FastAPI dependency returning the application's engine."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Learning analytics engine not started")
    return engine


def _http_error(exc: LearningAnalyticsError) -> HTTPException:
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ConflictError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, PersistenceTimeoutError):
        return HTTPException(status_code=504, detail=str(exc))
    if isinstance(exc, PersistenceUnavailableError):
        return HTTPException(status_code=503, detail=str(exc))
    logger.exception("Unhandled learning analytics error")
    return HTTPException(status_code=500, detail=str(exc))


# ========================================
# Request/Response Models
# ========================================


class OutcomeRequest(BaseModel):
    """Request model for recording a graded attempt."""

    learner_id: str = Field(..., description="Learner identifier")
    content_id: str = Field(..., description="Content unit identifier")
    content_type: str = Field("quiz_question", description="Catalog content type")
    correctness: bool | float = Field(..., description="Pass/fail or score in [0, 1]")
    response_time_ms: int = Field(..., description="Time to answer in milliseconds")
    timestamp: datetime | None = Field(None, description="Attempt time (server time if omitted)")
    session_id: str | None = Field(None, description="Learning session identifier")
    topic: str | None = Field(None, description="Topic tag for profile aggregation")
    timeout: float | None = Field(None, gt=0, description="Persistence timeout in seconds")


class ItemStateResponse(BaseModel):
    """Response model for an item's scheduling state."""

    learner_id: str
    content_id: str
    repetition_count: int
    ease_factor: float
    interval_days: float
    stability_days: float
    last_reviewed_at: str | None
    next_due_at: str | None
    lapse_count: int
    review_count: int
    average_response_ms: float
    version: int


class DueReviewResponse(BaseModel):
    """Response model for a due review entry."""

    content_id: str
    retention_probability: float
    next_due_at: str | None


class DueReviewsResponse(BaseModel):
    """Response model for a due-review queue."""

    learner_id: str
    generated_at: str
    reviews: list[DueReviewResponse]
    summary: dict[str, Any]


class ForgettingRiskResponse(BaseModel):
    """Response model for one item's forgetting risk."""

    content_id: str
    risk_score: float
    retention_probability: float
    next_due_at: str | None


class ForgettingCurveResponse(BaseModel):
    """Response model for the forgetting-curve view of a learner."""

    learner_id: str
    summary: dict[str, Any]
    risks: list[ForgettingRiskResponse]


class PersonalAnalysisRequest(BaseModel):
    """Request model for a profile rebuild."""

    learner_id: str = Field(..., description="Learner identifier")
    background: bool = Field(False, description="Queue the rebuild instead of waiting for it")
    timeout: float | None = Field(None, gt=0, description="Persistence timeout in seconds")


class FlowGuidanceRequest(BaseModel):
    """Request model for in-session flow guidance."""

    session_id: str = Field(..., description="Learning session identifier")
    learner_id: str = Field(..., description="Learner identifier")
    accuracy: float = Field(..., description="Correctness of the latest outcome (0-1)")
    time_elapsed_minutes: float = Field(0.0, description="Session length so far")
    recent_response_times: list[float] = Field(default_factory=list, description="Recent response times in ms")
    current_difficulty: str = Field("intermediate", description="basic, intermediate, advanced or expert")


class FlowGuidanceResponse(BaseModel):
    """Response model for flow guidance."""

    session_id: str
    zone: str
    recommended_delta: int
    window_accuracy: float
    pace_ratio: float
    evaluations: int
    status: str
    recommended_action: str
    adjustment_suggestion: str
    continue_recommendation: bool
    suggested_difficulty: str | None
    fatigue: bool
    degraded: bool


# ========================================
# Spaced Repetition Endpoints
# ========================================


@router.post(
    "/outcomes",
    response_model=ItemStateResponse,
    summary="Record a graded attempt",
)
def record_outcome(
    request: OutcomeRequest,
    engine: LearningAnalyticsEngine = Depends(get_analytics_engine),
) -> ItemStateResponse:
    """
    Record an attempt and return the item's updated scheduling state.

    Re-posting the same (learner_id, content_id, timestamp) is safe and
    returns the stored state.
    """
    try:
        state = engine.record_outcome(
            request.learner_id,
            request.content_id,
            request.content_type,
            request.correctness,
            request.response_time_ms,
            request.timestamp or datetime.now(UTC),
            session_id=request.session_id,
            topic=request.topic,
            timeout=request.timeout,
        )
    except LearningAnalyticsError as exc:
        raise _http_error(exc) from exc
    return ItemStateResponse(**state.to_dict())


@router.get(
    "/items/{learner_id}/{content_id}",
    response_model=ItemStateResponse,
    summary="Get an item's scheduling state",
)
def get_item_state(
    learner_id: str,
    content_id: str,
    engine: LearningAnalyticsEngine = Depends(get_analytics_engine),
) -> ItemStateResponse:
    try:
        state = engine.get_item_state(learner_id, content_id)
    except LearningAnalyticsError as exc:
        raise _http_error(exc) from exc
    return ItemStateResponse(**state.to_dict())


@router.get(
    "/spaced-repetition",
    response_model=DueReviewsResponse,
    summary="Get due reviews",
)
def get_due_reviews(
    learner_id: str = Query(..., description="Learner identifier"),
    limit: int = Query(10, description="Maximum number of items"),
    engine: LearningAnalyticsEngine = Depends(get_analytics_engine),
) -> DueReviewsResponse:
    """
    Items that are due or whose modeled retention fell below the risk
    threshold, most at risk first.
    """
    now = datetime.now(UTC)
    try:
        reviews = engine.get_due_reviews(learner_id, limit, now=now)
        summary = engine.get_forgetting_curve_summary(learner_id, now=now)
    except LearningAnalyticsError as exc:
        raise _http_error(exc) from exc
    return DueReviewsResponse(
        learner_id=learner_id,
        generated_at=now.isoformat(),
        reviews=[DueReviewResponse(**r.to_dict()) for r in reviews],
        summary=summary.to_dict(),
    )


@router.get(
    "/forgetting-curve",
    response_model=ForgettingCurveResponse,
    summary="Get forgetting-curve risk and summary",
)
def get_forgetting_curve(
    learner_id: str = Query(..., description="Learner identifier"),
    engine: LearningAnalyticsEngine = Depends(get_analytics_engine),
) -> ForgettingCurveResponse:
    now = datetime.now(UTC)
    try:
        summary = engine.get_forgetting_curve_summary(learner_id, now=now)
        risks = engine.get_forgetting_curve_recommendations(learner_id, now=now)
    except LearningAnalyticsError as exc:
        raise _http_error(exc) from exc
    return ForgettingCurveResponse(
        learner_id=learner_id,
        summary=summary.to_dict(),
        risks=[ForgettingRiskResponse(**r.to_dict()) for r in risks],
    )


# ========================================
# Profile Endpoints
# ========================================


@router.get("/user-profile", summary="Get the latest learner profile")
def get_user_profile(
    learner_id: str = Query(..., description="Learner identifier"),
    engine: LearningAnalyticsEngine = Depends(get_analytics_engine),
) -> dict[str, Any]:
    """Latest committed profile; version 0 means no rebuild has run yet."""
    try:
        profile = engine.get_user_learning_profile(learner_id)
    except LearningAnalyticsError as exc:
        raise _http_error(exc) from exc
    return profile.to_dict()


@router.post("/personal-analysis", summary="Rebuild a learner profile")
def analyze_personal_patterns(
    request: PersonalAnalysisRequest,
    engine: LearningAnalyticsEngine = Depends(get_analytics_engine),
) -> dict[str, Any]:
    """Rebuild synchronously, or queue a background rebuild with background=true."""
    try:
        if request.background:
            queued = engine.request_profile_refresh(request.learner_id)
            return {"learner_id": request.learner_id, "queued": queued}
        profile = engine.analyze_personal_learning_patterns(request.learner_id, timeout=request.timeout)
    except LearningAnalyticsError as exc:
        raise _http_error(exc) from exc
    logger.info(f"Profile rebuilt via API for {request.learner_id} (v{profile.version})")
    return profile.to_dict()


@router.get("/dashboard", summary="Get the learning dashboard")
def get_dashboard(
    learner_id: str = Query(..., description="Learner identifier"),
    limit: int = Query(10, description="Maximum due reviews and risk entries"),
    engine: LearningAnalyticsEngine = Depends(get_analytics_engine),
) -> dict[str, Any]:
    """
    Profile, learning stage, due reviews, forgetting-curve risks and
    headline metrics in one response. Reads the committed profile only.
    """
    now = datetime.now(UTC)
    try:
        dashboard = engine.get_learning_dashboard(learner_id, limit, now=now)
    except LearningAnalyticsError as exc:
        raise _http_error(exc) from exc
    return {"learner_id": learner_id, "generated_at": now.isoformat(), **dashboard.to_dict()}


# ========================================
# Flow Guidance Endpoints
# ========================================


@router.post(
    "/flow-guidance",
    response_model=FlowGuidanceResponse,
    summary="Get in-session flow guidance",
)
def provide_flow_guidance(
    request: FlowGuidanceRequest,
    engine: LearningAnalyticsEngine = Depends(get_analytics_engine),
) -> FlowGuidanceResponse:
    """
    Feed the latest outcome into the session's flow tracker.

    The zone stays insufficient_signal until the window fills, and changes
    only after consecutive evaluations agree.
    """
    try:
        guidance = engine.provide_flow_state_guidance(
            request.session_id,
            request.learner_id,
            request.accuracy,
            request.time_elapsed_minutes,
            request.recent_response_times,
            request.current_difficulty,
        )
    except LearningAnalyticsError as exc:
        raise _http_error(exc) from exc
    return FlowGuidanceResponse(**guidance.to_dict())


@router.delete("/flow-guidance/{session_id}", summary="End a flow session")
def end_flow_session(
    session_id: str,
    engine: LearningAnalyticsEngine = Depends(get_analytics_engine),
) -> dict[str, Any]:
    if not engine.end_flow_session(session_id):
        raise HTTPException(status_code=404, detail=f"No active flow session {session_id}")
    return {"session_id": session_id, "ended": True}
