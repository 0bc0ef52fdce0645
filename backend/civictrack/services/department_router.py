"""
Category routing and department KPI maintenance.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from civictrack.core.exceptions import NoDepartmentForCategory
from civictrack.models.department import Department
from civictrack.models.issue import Issue, IssueCategory

logger = logging.getLogger(__name__)


def running_mean(previous_mean: float, count: int, sample: float) -> float:
    """
    Fold ``sample`` into a mean that now covers ``count`` samples.

    ``count`` includes the new sample.
    """
    if count <= 0:
        raise ValueError("count must be positive")
    return (previous_mean * (count - 1) + sample) / count


def routing_query(category: IssueCategory):
    """First department (oldest, then by name) owning ``category``."""
    value = getattr(category, "value", category)
    return (
        select(Department)
        .where(Department.categories.any(value))
        .order_by(Department.created_at.asc(), Department.name.asc())
        .limit(1)
    )


def resolution_update(department_id: UUID, resolution_minutes: float):
    """
    Single-statement counter bump and running-mean recompute.

    Both right-hand sides read the row as locked by this UPDATE, so
    concurrent resolutions serialize instead of losing an update.
    """
    return (
        update(Department)
        .where(Department.id == department_id)
        .values(
            resolved_issues=Department.resolved_issues + 1,
            avg_resolution_time=(
                Department.avg_resolution_time * Department.resolved_issues + resolution_minutes
            )
            / (Department.resolved_issues + 1),
            updated_at=datetime.now(timezone.utc),
        )
        .returning(Department.resolved_issues, Department.avg_resolution_time)
    )


class DepartmentRouter:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def route_category(self, category: IssueCategory) -> Department:
        result = await self.db.execute(routing_query(category))
        department = result.scalar_one_or_none()
        if department is None:
            logger.warning("No department owns category %s", category)
            raise NoDepartmentForCategory(category)
        return department

    async def on_issue_created(self, department_id: UUID, issue_id: UUID) -> None:
        stmt = (
            update(Department)
            .where(Department.id == department_id)
            .values(
                total_issues=Department.total_issues + 1,
                updated_at=datetime.now(timezone.utc),
            )
        )
        await self.db.execute(stmt)
        logger.info("Department %s received issue %s", department_id, issue_id)

    async def on_issue_resolved(self, department_id: UUID, resolution_minutes: float) -> None:
        result = await self.db.execute(resolution_update(department_id, resolution_minutes))
        row = result.one_or_none()
        if row is None:
            logger.warning("Resolved issue references missing department %s", department_id)
            return
        logger.info(
            "Department %s resolved count=%s avg=%.2f min",
            department_id,
            row[0],
            row[1],
        )

    async def on_category_changed(
        self, issue: Issue, new_category: IssueCategory
    ) -> Optional[UUID]:
        """
        Re-route an issue after a category edit.

        Returns the new department id, or ``None`` when no department owns
        the category (the issue then keeps its department). Counters are
        event counts and are left untouched.
        """
        try:
            department = await self.route_category(new_category)
        except NoDepartmentForCategory:
            return None
        if department.id != issue.department_id:
            logger.info(
                "Issue %s re-routed from %s to %s", issue.id, issue.department_id, department.id
            )
        return department.id
