"""
Notification models.

A notification targets exactly one audience: a single user or a whole
department. Personal notifications keep a single read/archived flag pair;
department notifications keep per-user read and archive rows so every staff
member tracks their own state.
"""

from __future__ import annotations

import enum
import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from civictrack.core.database import Base


class NotificationType(str, enum.Enum):
    ISSUE = "ISSUE"
    WALLET = "WALLET"
    SYSTEM = "SYSTEM"


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # Audience
    recipient_user_id = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    recipient_department_id = Column(
        UUID(as_uuid=True), ForeignKey("departments.id", ondelete="CASCADE"), index=True
    )

    issue_id = Column(UUID(as_uuid=True), ForeignKey("issues.id", ondelete="SET NULL"))
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    type = Column(
        SQLEnum(NotificationType, name="notification_type"),
        nullable=False,
        default=NotificationType.SYSTEM,
    )

    # Personal state
    is_read = Column(Boolean, nullable=False, default=False, server_default="false")
    is_archived = Column(Boolean, nullable=False, default=False, server_default="false")

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    __table_args__ = (
        CheckConstraint(
            "(recipient_user_id IS NULL) <> (recipient_department_id IS NULL)",
            name="ck_notifications_single_audience",
        ),
    )

    @property
    def is_department(self) -> bool:
        return self.recipient_department_id is not None


class NotificationRead(Base):
    """Read marker of one staff member on a department notification."""

    __tablename__ = "notification_reads"

    notification_id = Column(
        UUID(as_uuid=True), ForeignKey("notifications.id", ondelete="CASCADE"), primary_key=True
    )
    user_id = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    read_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class NotificationArchive(Base):
    """Archive marker of one staff member on a department notification."""

    __tablename__ = "notification_archives"

    notification_id = Column(
        UUID(as_uuid=True), ForeignKey("notifications.id", ondelete="CASCADE"), primary_key=True
    )
    user_id = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    archived_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
