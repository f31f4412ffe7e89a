"""API routers for the learning analytics service."""

from src.api.routers import learning_analytics_router

__all__ = [
    "learning_analytics_router",
]
