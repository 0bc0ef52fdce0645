"""
Convenience exports for API v1 endpoint routers.

This allows ``from civictrack.api.v1.endpoints import issues_router`` style
imports used by the aggregate router module.
"""

from .analytics import router as analytics_router
from .auth import router as auth_router
from .departments import router as departments_router
from .health import router as health_router
from .issues import router as issues_router
from .notifications import router as notifications_router
from .realtime import router as realtime_router

__all__ = [
    "analytics_router",
    "auth_router",
    "departments_router",
    "health_router",
    "issues_router",
    "notifications_router",
    "realtime_router",
]
