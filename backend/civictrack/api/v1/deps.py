"""
Service wiring for the v1 endpoints.

Each request gets its own dispatcher and workflow bound to the request's
database session. Process-wide collaborators (realtime channel, media
store) are injected here rather than looked up from the application.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from civictrack.core.database import get_db
from civictrack.services.department_router import DepartmentRouter
from civictrack.services.geo_dedup import GeoDedupChecker
from civictrack.services.issue_repository import IssueRepository
from civictrack.services.issue_workflow import IssueWorkflowService
from civictrack.services.media_store import S3MediaStore, get_media_store
from civictrack.services.notification_dispatcher import NotificationDispatcher
from civictrack.services.realtime import RealtimeChannel, get_realtime_channel
from civictrack.services.reward_ledger import RewardLedger


def get_issue_repository(db: AsyncSession = Depends(get_db)) -> IssueRepository:
    return IssueRepository(db)


def get_notification_dispatcher(
    db: AsyncSession = Depends(get_db),
    realtime: RealtimeChannel = Depends(get_realtime_channel),
) -> NotificationDispatcher:
    return NotificationDispatcher(db, realtime)


def get_issue_workflow(
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
    media_store: S3MediaStore = Depends(get_media_store),
) -> IssueWorkflowService:
    issues = IssueRepository(db)
    return IssueWorkflowService(
        db=db,
        issues=issues,
        dedup=GeoDedupChecker(issues),
        router=DepartmentRouter(db),
        ledger=RewardLedger(db, dispatcher),
        dispatcher=dispatcher,
        media_store=media_store,
    )
