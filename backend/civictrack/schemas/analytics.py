"""Pydantic schemas for read-only city analytics."""

from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel

from civictrack.models.issue import IssueCategory


class CityAnalytics(BaseModel):
    total_issues: int
    resolved_issues: int
    avg_resolution_hours: Optional[float]


class DepartmentAnalytics(BaseModel):
    id: UUID
    name: str
    description: Optional[str]
    total_issues: int
    resolved_issues: int
    pending_issues: int
    avg_resolution_time: float


class CategoryCount(BaseModel):
    category: IssueCategory
    total: int


class CategoryAnalytics(BaseModel):
    categories: List[CategoryCount]
