"""
Read-only city analytics for staff and administrators.
"""

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from civictrack.core.database import get_db
from civictrack.core.security import require_role
from civictrack.models.user import User, UserRole
from civictrack.schemas.analytics import CategoryAnalytics, CityAnalytics, DepartmentAnalytics
from civictrack.services.city_analytics import CityAnalyticsService

router = APIRouter()

analytics_reader = require_role(UserRole.ADMIN, UserRole.STAFF)


@router.get("/city", response_model=CityAnalytics)
async def city_analytics(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(analytics_reader),
):
    return await CityAnalyticsService(db).city()


@router.get("/departments", response_model=List[DepartmentAnalytics])
async def department_analytics(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(analytics_reader),
):
    return await CityAnalyticsService(db).departments()


@router.get("/categories", response_model=CategoryAnalytics)
async def category_analytics(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(analytics_reader),
):
    return await CityAnalyticsService(db).categories()
