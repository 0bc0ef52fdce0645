"""
Department model with category ownership and resolution KPIs.
"""

from __future__ import annotations

import uuid

from sqlalchemy import Column, DateTime, Float, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import ARRAY, UUID

from civictrack.core.database import Base


class Department(Base):
    """
    Organisational unit owning a set of issue categories.

    Counters are event counts maintained by the issue workflow only:
    ``total_issues`` grows on creation, ``resolved_issues`` and the running
    mean ``avg_resolution_time`` (minutes) on resolution.
    """

    __tablename__ = "departments"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(120), unique=True, nullable=False)
    code = Column(String(50), unique=True, nullable=False)
    description = Column(Text)
    categories = Column(ARRAY(String(32)), nullable=False, default=list, server_default="{}")
    head_id = Column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL", use_alter=True, name="fk_departments_head_id"),
    )

    # KPIs
    total_issues = Column(Integer, nullable=False, default=0, server_default="0")
    resolved_issues = Column(Integer, nullable=False, default=0, server_default="0")
    avg_resolution_time = Column(Float, nullable=False, default=0.0, server_default="0")

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        Index("idx_departments_categories", "categories", postgresql_using="gin"),
    )

    def __repr__(self) -> str:
        return f"<Department(code={self.code}, categories={self.categories})>"
