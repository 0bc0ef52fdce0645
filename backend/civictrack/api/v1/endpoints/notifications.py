"""
Notification endpoints: personal and department feeds, read/archive state,
and admin broadcasts.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from civictrack.api.v1.deps import get_notification_dispatcher
from civictrack.core.database import get_db
from civictrack.core.security import get_current_user, require_role
from civictrack.models.user import User, UserRole
from civictrack.schemas.notification import BroadcastRequest, BroadcastResponse, NotificationFeed
from civictrack.services.notification_dispatcher import NotificationDispatcher

router = APIRouter()


@router.get("/my", response_model=NotificationFeed)
async def my_notifications(
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
    current_user: User = Depends(get_current_user),
):
    """Personal feed plus the department feed for staff."""
    return await dispatcher.list_for(current_user)


@router.patch("/mark-all-read")
async def mark_all_read(
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
    current_user: User = Depends(get_current_user),
):
    await dispatcher.mark_all_read(current_user)
    return {"success": True, "message": "All notifications marked as read"}


@router.patch("/{notification_id}/read")
async def mark_read(
    notification_id: UUID,
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
    current_user: User = Depends(get_current_user),
):
    await dispatcher.mark_read(notification_id, current_user)
    return {"success": True, "message": "Marked read"}


@router.delete("/{notification_id}")
async def archive_notification(
    notification_id: UUID,
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
    current_user: User = Depends(get_current_user),
):
    """Archive for the caller; admins delete the notification outright."""
    outcome = await dispatcher.archive(notification_id, current_user)
    return {"success": True, "result": outcome}


@router.post("/create", response_model=BroadcastResponse, status_code=status.HTTP_201_CREATED)
async def broadcast(
    payload: BroadcastRequest,
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
    current_user: User = Depends(require_role(UserRole.ADMIN)),
):
    count = await dispatcher.broadcast(
        payload.title,
        payload.message,
        user_id=payload.user_id,
        role=payload.target_role,
        all_roles=payload.role == "ALL",
        department_id=payload.department_id,
    )
    await db.commit()
    await dispatcher.deliver_pending()
    return BroadcastResponse(count=count)
