"""Pydantic schemas for department administration."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from civictrack.models.issue import IssueCategory


class DepartmentCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=120)
    code: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = None
    categories: List[IssueCategory] = Field(default_factory=list)
    head_id: Optional[UUID] = None


class DepartmentUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(None, min_length=1, max_length=120)
    description: Optional[str] = None
    categories: Optional[List[IssueCategory]] = None
    head_id: Optional[UUID] = None


class DepartmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    code: str
    description: Optional[str]
    categories: List[str]
    head_id: Optional[UUID]
    total_issues: int
    resolved_issues: int
    avg_resolution_time: float
    created_at: datetime


class StaffMember(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    email: str


class DepartmentDetail(DepartmentResponse):
    staff: List[StaffMember]
