"""
Notification dispatcher: persistence, realtime fan-out and per-user state.

Personal notifications carry their own ``is_read``/``is_archived`` flags.
Department notifications are shared by all staff of the department; each
staff member's read and archive state lives in ``notification_reads`` and
``notification_archives``.

Realtime pushes are staged by ``notify`` and only sent by
``deliver_pending`` once the caller has committed, so a rolled back request
never pushes a notification that does not exist.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import and_, exists, literal, select, update
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from civictrack.core.config import settings
from civictrack.core.exceptions import Forbidden, NotFound, ValidationError
from civictrack.core.metrics import record_notification, record_realtime_failure
from civictrack.models.notification import (
    Notification,
    NotificationArchive,
    NotificationRead,
    NotificationType,
)
from civictrack.models.user import User, UserRole
from civictrack.schemas.notification import NotificationFeed, NotificationResponse
from civictrack.services.realtime import RealtimeChannel, department_room, user_room

logger = logging.getLogger(__name__)

NOTIFICATION_EVENT = "notification"


@dataclass(frozen=True)
class Audience:
    """Exactly one of a user or a department."""

    user_id: Optional[UUID] = None
    department_id: Optional[UUID] = None

    def __post_init__(self) -> None:
        if (self.user_id is None) == (self.department_id is None):
            raise ValueError("Audience needs exactly one of user_id or department_id")

    @classmethod
    def user(cls, user_id: UUID) -> "Audience":
        return cls(user_id=user_id)

    @classmethod
    def department(cls, department_id: UUID) -> "Audience":
        return cls(department_id=department_id)

    @property
    def kind(self) -> str:
        return "user" if self.user_id is not None else "department"

    @property
    def room(self) -> str:
        if self.user_id is not None:
            return user_room(self.user_id)
        return department_room(self.department_id)


def to_response(notification: Notification, is_read: Optional[bool] = None) -> NotificationResponse:
    return NotificationResponse(
        id=notification.id,
        recipient_user_id=notification.recipient_user_id,
        recipient_department_id=notification.recipient_department_id,
        issue_id=notification.issue_id,
        title=notification.title,
        message=notification.message,
        type=notification.type,
        is_read=notification.is_read if is_read is None else is_read,
        created_at=notification.created_at,
    )


def personal_feed_query(user_id: UUID, limit: int):
    return (
        select(Notification)
        .where(
            Notification.recipient_user_id == user_id,
            Notification.is_archived.is_(False),
        )
        .order_by(Notification.created_at.desc())
        .limit(limit)
    )


def department_feed_query(user_id: UUID, department_id: UUID, limit: int):
    """Department notifications not archived by ``user_id``, with their read flag."""
    archived = exists().where(
        NotificationArchive.notification_id == Notification.id,
        NotificationArchive.user_id == user_id,
    )
    return (
        select(Notification, NotificationRead.user_id.is_not(None).label("is_read"))
        .outerjoin(
            NotificationRead,
            and_(
                NotificationRead.notification_id == Notification.id,
                NotificationRead.user_id == user_id,
            ),
        )
        .where(Notification.recipient_department_id == department_id, ~archived)
        .order_by(Notification.created_at.desc())
        .limit(limit)
    )


def read_marker_insert(notification_id: UUID, user_id: UUID):
    return (
        insert(NotificationRead)
        .values(notification_id=notification_id, user_id=user_id)
        .on_conflict_do_nothing(index_elements=["notification_id", "user_id"])
    )


def archive_marker_insert(notification_id: UUID, user_id: UUID):
    return (
        insert(NotificationArchive)
        .values(notification_id=notification_id, user_id=user_id)
        .on_conflict_do_nothing(index_elements=["notification_id", "user_id"])
    )


def mark_personal_read_update(user_id: UUID):
    return (
        update(Notification)
        .where(Notification.recipient_user_id == user_id, Notification.is_read.is_(False))
        .values(is_read=True)
    )


def mark_department_read_insert(user_id: UUID, department_id: UUID):
    """Read markers for every department notification the user has not read yet."""
    unread = select(Notification.id, literal(user_id, PG_UUID(as_uuid=True))).where(
        Notification.recipient_department_id == department_id
    )
    return (
        insert(NotificationRead)
        .from_select(["notification_id", "user_id"], unread)
        .on_conflict_do_nothing(index_elements=["notification_id", "user_id"])
    )


class NotificationDispatcher:
    """Single fan-out point for persisted and realtime notifications."""

    def __init__(self, db: AsyncSession, realtime: RealtimeChannel):
        self.db = db
        self.realtime = realtime
        self._pending: List[Tuple[str, Dict[str, Any]]] = []

    async def notify(
        self,
        audience: Audience,
        title: str,
        message: str,
        type: NotificationType = NotificationType.SYSTEM,
        issue_id: Optional[UUID] = None,
    ) -> Notification:
        notification = Notification(
            id=uuid.uuid4(),
            recipient_user_id=audience.user_id,
            recipient_department_id=audience.department_id,
            issue_id=issue_id,
            title=title,
            message=message,
            type=type,
            is_read=False,
            is_archived=False,
            created_at=datetime.now(timezone.utc),
        )
        self.db.add(notification)
        await self.db.flush()
        record_notification(audience.kind, type)

        payload = to_response(notification).model_dump(mode="json")
        self._pending.append((audience.room, payload))
        return notification

    async def deliver_pending(self) -> int:
        """Push staged notifications; failures are logged and dropped."""
        pending, self._pending = self._pending, []
        delivered = 0
        for room_key, payload in pending:
            try:
                delivered += await self.realtime.emit_to_room(room_key, NOTIFICATION_EVENT, payload)
            except Exception:
                record_realtime_failure()
                logger.warning("Realtime push to %s failed", room_key, exc_info=True)
        return delivered

    def discard_pending(self) -> None:
        self._pending.clear()

    async def _load(self, notification_id: UUID) -> Notification:
        notification = await self.db.get(Notification, notification_id)
        if notification is None:
            raise NotFound("Notification", notification_id)
        return notification

    async def mark_read(self, notification_id: UUID, acting_user: User) -> None:
        notification = await self._load(notification_id)
        if notification.recipient_user_id is not None:
            if notification.recipient_user_id != acting_user.id:
                raise Forbidden("Not authorized to mark this notification")
            if not notification.is_read:
                notification.is_read = True
                await self.db.flush()
            return

        if (
            acting_user.department_id is None
            or acting_user.department_id != notification.recipient_department_id
        ):
            raise Forbidden("Not authorized to mark this notification")
        await self.db.execute(read_marker_insert(notification.id, acting_user.id))

    async def mark_all_read(self, acting_user: User) -> None:
        await self.db.execute(mark_personal_read_update(acting_user.id))
        if acting_user.department_id is not None:
            await self.db.execute(
                mark_department_read_insert(acting_user.id, acting_user.department_id)
            )

    async def archive(self, notification_id: UUID, acting_user: User) -> str:
        """
        Hide a notification from the actor's feed.

        Returns ``"deleted"`` when an admin removed the record for everyone,
        ``"archived"`` otherwise.
        """
        notification = await self._load(notification_id)

        if acting_user.role == UserRole.ADMIN:
            await self.db.delete(notification)
            await self.db.flush()
            logger.info("Admin %s deleted notification %s", acting_user.id, notification.id)
            return "deleted"

        if (
            acting_user.role == UserRole.CITIZEN
            and notification.recipient_user_id is not None
            and notification.recipient_user_id == acting_user.id
        ):
            notification.is_archived = True
            await self.db.flush()
            return "archived"

        if (
            acting_user.role == UserRole.STAFF
            and notification.is_department
            and acting_user.department_id == notification.recipient_department_id
        ):
            await self.db.execute(archive_marker_insert(notification.id, acting_user.id))
            return "archived"

        raise Forbidden("Not authorized to delete this notification")

    async def list_for(self, acting_user: User, limit: Optional[int] = None) -> NotificationFeed:
        limit = limit or settings.NOTIFICATION_FEED_LIMIT
        result = await self.db.execute(personal_feed_query(acting_user.id, limit))
        personal = [to_response(item) for item in result.scalars().all()]

        department: List[NotificationResponse] = []
        if acting_user.department_id is not None:
            result = await self.db.execute(
                department_feed_query(acting_user.id, acting_user.department_id, limit)
            )
            department = [to_response(item, bool(is_read)) for item, is_read in result.all()]

        return NotificationFeed(personal=personal, department=department)

    async def broadcast(
        self,
        title: str,
        message: str,
        user_id: Optional[UUID] = None,
        role: Optional[UserRole] = None,
        all_roles: bool = False,
        department_id: Optional[UUID] = None,
    ) -> int:
        """
        Administrative SYSTEM notification.

        ``user_id`` wins over every other target. A department alone yields
        one shared department notification; a role (or ``all_roles``),
        optionally narrowed to a department, yields one personal notification
        per matching user.
        """
        if user_id is not None:
            recipient = await self.db.get(User, user_id)
            if recipient is None:
                raise NotFound("User", user_id)
            await self.notify(Audience.user(recipient.id), title, message)
            return 1

        if role is None and not all_roles:
            if department_id is None:
                raise ValidationError("Provide either userId, role or departmentId", field="target")
            await self.notify(Audience.department(department_id), title, message)
            return 1

        stmt = select(User.id).where(User.is_active.is_(True))
        if role is not None:
            stmt = stmt.where(User.role == role)
        if department_id is not None:
            stmt = stmt.where(User.department_id == department_id)
        result = await self.db.execute(stmt)
        recipients = list(result.scalars().all())
        for recipient_id in recipients:
            await self.notify(Audience.user(recipient_id), title, message)
        logger.info("Broadcast %r sent to %d users", title, len(recipients))
        return len(recipients)
