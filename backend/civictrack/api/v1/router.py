"""
API v1 router - aggregates all endpoint routers.
"""

from fastapi import APIRouter

from civictrack.api.v1.endpoints import (
    analytics_router,
    auth_router,
    departments_router,
    health_router,
    issues_router,
    notifications_router,
    realtime_router,
)

api_router = APIRouter()

api_router.include_router(health_router, prefix="/health", tags=["health"])
api_router.include_router(auth_router, prefix="/auth", tags=["auth"])
api_router.include_router(issues_router, prefix="/issues", tags=["issues"])
api_router.include_router(
    notifications_router, prefix="/notifications", tags=["notifications"]
)
api_router.include_router(departments_router, prefix="/departments", tags=["departments"])
api_router.include_router(analytics_router, prefix="/analytics", tags=["analytics"])
api_router.include_router(realtime_router, prefix="/realtime", tags=["realtime"])
