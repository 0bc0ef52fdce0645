"""
Application bootstrap helpers (runs during startup).
"""

from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from civictrack.core.database import AsyncSessionLocal
from civictrack.models.department import Department
from civictrack.models.issue import IssueCategory

logger = logging.getLogger(__name__)


DEFAULT_DEPARTMENTS = (
    {
        "name": "Public Works",
        "code": "PWD",
        "description": "Roads, potholes and other street surface repairs",
        "categories": [IssueCategory.POTHOLE],
    },
    {
        "name": "Electrical",
        "code": "ELEC",
        "description": "Streetlights and public electrical fixtures",
        "categories": [IssueCategory.STREETLIGHT],
    },
    {
        "name": "Sanitation",
        "code": "SAN",
        "description": "Garbage collection and public cleanliness",
        "categories": [IssueCategory.GARBAGE],
    },
    {
        "name": "Water Supply",
        "code": "WATER",
        "description": "Leaks, supply outages and drainage",
        "categories": [IssueCategory.WATER],
    },
    {
        "name": "General",
        "code": "GEN",
        "description": "Anything not owned by a specialised department",
        "categories": [IssueCategory.OTHER],
    },
)


async def _ensure_departments(session: AsyncSession, defaults: Iterable[dict]) -> int:
    """Insert default departments whose code is missing; returns how many were added."""
    added = 0
    for config in defaults:
        stmt = select(Department).where(Department.code == config["code"])
        result = await session.execute(stmt)
        if result.scalar_one_or_none():
            continue

        session.add(
            Department(
                name=config["name"],
                code=config["code"],
                description=config["description"],
                categories=[category.value for category in config["categories"]],
            )
        )
        added += 1
        logger.info("Seeded department %s", config["name"])
    return added


async def seed_departments(session: AsyncSession | None = None) -> int:
    """
    Ensure every issue category has an owning department.

    If a session is not provided, a temporary AsyncSession will be created.
    """
    if session is None:
        async with AsyncSessionLocal() as temp_session:
            added = await _ensure_departments(temp_session, DEFAULT_DEPARTMENTS)
            await temp_session.commit()
        return added

    added = await _ensure_departments(session, DEFAULT_DEPARTMENTS)
    await session.commit()
    return added
