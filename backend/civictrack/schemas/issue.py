"""
Pydantic schemas for issue payloads.

``IssueResponse`` is the wire format of an issue; it is produced from the
ORM row by ``IssueResponse.from_issue`` and never carries embedded users or
departments, only their identifiers.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from civictrack.models.issue import (
    Issue,
    IssueCategory,
    IssuePriority,
    IssueStatus,
    MediaType,
)


class MediaItem(BaseModel):
    """Stored media reference."""

    type: MediaType
    id: str
    url: str


class GeoPoint(BaseModel):
    latitude: float
    longitude: float


class IssueDraft(BaseModel):
    """Fields a citizen supplies when reporting an issue."""

    model_config = ConfigDict(extra="forbid")

    title: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1, max_length=1000)
    category: IssueCategory
    address: str = Field(..., min_length=1, max_length=512)
    latitude: float
    longitude: float


class IssueUpdate(BaseModel):
    """
    Partial issue update.

    Only fields present in the request are applied; ``model_fields_set``
    drives both the patch and the per-role authorization check.
    """

    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, min_length=1, max_length=1000)
    category: Optional[IssueCategory] = None
    address: Optional[str] = Field(None, min_length=1, max_length=512)
    status: Optional[IssueStatus] = None
    priority: Optional[IssuePriority] = None
    assigned_to_id: Optional[UUID] = None

    def patch(self) -> Dict[str, object]:
        return {name: getattr(self, name) for name in self.model_fields_set}


class IssueResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    description: str
    category: IssueCategory
    media: List[MediaItem]
    address: str
    location: GeoPoint
    status: IssueStatus
    priority: IssuePriority
    created_by_id: UUID
    assigned_to_id: Optional[UUID]
    department_id: Optional[UUID]
    resolved_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_issue(cls, issue: Issue) -> "IssueResponse":
        return cls(
            id=issue.id,
            title=issue.title,
            description=issue.description,
            category=issue.category,
            media=[MediaItem(**item) for item in issue.media or []],
            address=issue.address,
            location=GeoPoint(latitude=issue.latitude, longitude=issue.longitude),
            status=issue.status,
            priority=issue.priority,
            created_by_id=issue.created_by_id,
            assigned_to_id=issue.assigned_to_id,
            department_id=issue.department_id,
            resolved_at=issue.resolved_at,
            created_at=issue.created_at,
            updated_at=issue.updated_at,
        )


class StatusCounts(BaseModel):
    total: int = 0
    PENDING: int = 0
    ACKNOWLEDGED: int = 0
    IN_PROGRESS: int = 0
    RESOLVED: int = 0
    REJECTED: int = 0


class IssueListResponse(BaseModel):
    issues: List[IssueResponse]
    counts: StatusCounts
    page: int
    limit: int
