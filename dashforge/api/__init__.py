"""
Backend API package initialization.

This package contains FastAPI router modules for the DashForge API:
- dashboards: dashboard creation, history, patch simulation, commit, rollback
  and AI-proposed edits
- insights: data integrity validation and rule-based insights
"""

from fastapi import APIRouter

from dashforge.api.dashboards import router as dashboards_router
from dashforge.api.insights import router as insights_router

# Create main API router
api_router = APIRouter()

# Both routers carry their own prefix
api_router.include_router(dashboards_router)
api_router.include_router(insights_router)

__all__ = [
    "api_router",
    "dashboards_router",
    "insights_router",
]
