"""
Issue model and its closed vocabularies.
"""

from __future__ import annotations

import enum
import uuid

from geoalchemy2 import Geography
from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum as SQLEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID

from civictrack.core.database import Base


class IssueCategory(str, enum.Enum):
    POTHOLE = "POTHOLE"
    STREETLIGHT = "STREETLIGHT"
    GARBAGE = "GARBAGE"
    WATER = "WATER"
    OTHER = "OTHER"


class IssueStatus(str, enum.Enum):
    """Workflow states; see ``civictrack.services.issue_workflow``."""

    PENDING = "PENDING"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"
    REJECTED = "REJECTED"


class IssuePriority(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class MediaType(str, enum.Enum):
    IMAGE = "IMAGE"
    VIDEO = "VIDEO"


class Issue(Base):
    """
    Citizen-reported municipal issue.

    ``media`` is an ordered JSON list of ``{"type", "id", "url"}`` entries.
    ``version`` is bumped by every conditional update.
    """

    __tablename__ = "issues"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # Report
    title = Column(String(100), nullable=False)
    description = Column(Text, nullable=False)
    category = Column(SQLEnum(IssueCategory, name="issue_category"), nullable=False, index=True)
    media = Column(JSONB, nullable=False, default=list, server_default="[]")

    # Location
    address = Column(String(512), nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    location = Column(Geography("POINT", srid=4326), nullable=False)

    # Workflow
    status = Column(
        SQLEnum(IssueStatus, name="issue_status"),
        nullable=False,
        default=IssueStatus.PENDING,
        index=True,
    )
    priority = Column(
        SQLEnum(IssuePriority, name="issue_priority"),
        nullable=False,
        default=IssuePriority.LOW,
        index=True,
    )
    version = Column(Integer, nullable=False, default=1, server_default="1")

    # References
    created_by_id = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    assigned_to_id = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), index=True
    )
    department_id = Column(
        UUID(as_uuid=True), ForeignKey("departments.id", ondelete="SET NULL"), index=True
    )

    # Dates
    resolved_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("idx_issues_coordinates", "latitude", "longitude"),
        Index(
            "idx_issues_search",
            text("to_tsvector('english', coalesce(title, '') || ' ' || coalesce(description, ''))"),
            postgresql_using="gin",
        ),
        CheckConstraint(
            "(status = 'RESOLVED') = (resolved_at IS NOT NULL)",
            name="ck_issues_resolved_at_matches_status",
        ),
    )

    def __repr__(self) -> str:
        return f"<Issue(id={self.id}, status={self.status})>"
