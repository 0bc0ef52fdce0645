"""
City-wide aggregate reporting over issues and departments.

Read-only: nothing here mutates issue or department state.
"""

from __future__ import annotations

import logging
from typing import List

from sqlalchemy import extract, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from civictrack.models.department import Department
from civictrack.models.issue import Issue, IssueStatus
from civictrack.schemas.analytics import (
    CategoryAnalytics,
    CategoryCount,
    CityAnalytics,
    DepartmentAnalytics,
)

logger = logging.getLogger(__name__)


def city_totals_query():
    resolved = Issue.status == IssueStatus.RESOLVED
    resolution_seconds = extract("epoch", Issue.resolved_at - Issue.created_at)
    return select(
        func.count(Issue.id),
        func.count(Issue.id).filter(resolved),
        func.avg(resolution_seconds).filter(resolved),
    )


def department_breakdown_query():
    return (
        select(
            Department,
            func.count(Issue.id).label("live_total"),
            func.count(Issue.id).filter(Issue.status == IssueStatus.RESOLVED).label("live_resolved"),
        )
        .outerjoin(Issue, Issue.department_id == Department.id)
        .group_by(Department.id)
        .order_by(Department.name)
    )


def category_breakdown_query():
    return (
        select(Issue.category, func.count(Issue.id))
        .group_by(Issue.category)
        .order_by(Issue.category)
    )


class CityAnalyticsService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def city(self) -> CityAnalytics:
        result = await self.db.execute(city_totals_query())
        total, resolved, avg_seconds = result.one()
        hours = round(float(avg_seconds) / 3600, 2) if avg_seconds is not None else None
        return CityAnalytics(
            total_issues=total or 0,
            resolved_issues=resolved or 0,
            avg_resolution_hours=hours,
        )

    async def departments(self) -> List[DepartmentAnalytics]:
        """Per-department counts of current issues, plus the resolution KPI."""
        result = await self.db.execute(department_breakdown_query())
        rows = []
        for department, total, resolved in result.all():
            rows.append(
                DepartmentAnalytics(
                    id=department.id,
                    name=department.name,
                    description=department.description,
                    total_issues=total,
                    resolved_issues=resolved,
                    pending_issues=total - resolved,
                    avg_resolution_time=department.avg_resolution_time,
                )
            )
        return rows

    async def categories(self) -> CategoryAnalytics:
        result = await self.db.execute(category_breakdown_query())
        return CategoryAnalytics(
            categories=[CategoryCount(category=category, total=count) for category, count in result.all()]
        )
