"""
Issue workflow: creation pipeline and the status state machine.

Statuses advance one step at a time through PENDING -> ACKNOWLEDGED ->
IN_PROGRESS -> RESOLVED. REJECTED can be entered from any open status.
RESOLVED and REJECTED are final.

Mutations are authorized first (role, ownership, editable fields), then
checked against the state machine, then written with a conditional update
so a concurrent writer turns into ``Conflict`` instead of a stale
transition. Side effects fire only on the edges that call for them:

* PENDING -> ACKNOWLEDGED credits the reporter's wallet.
* Anything -> RESOLVED feeds the department resolution KPI.
* Every status change notifies the reporter.

Realtime pushes go out after commit.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Set
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from civictrack.core.config import settings
from civictrack.core.exceptions import (
    Forbidden,
    InvalidTransition,
    MediaStoreError,
    NotFound,
    ValidationError,
)
from civictrack.core.metrics import record_issue_created, record_issue_transition
from civictrack.models.issue import Issue, IssuePriority, IssueStatus
from civictrack.models.notification import NotificationType
from civictrack.models.user import User, UserRole
from civictrack.schemas.issue import IssueDraft, IssueUpdate
from civictrack.services.department_router import DepartmentRouter
from civictrack.services.geo_dedup import GeoDedupChecker, validate_coordinates
from civictrack.services.issue_repository import IssueRepository, point_element
from civictrack.services.media_store import S3MediaStore, StagedUpload, StoredMedia
from civictrack.services.notification_dispatcher import Audience, NotificationDispatcher
from civictrack.services.reward_ledger import RewardLedger

logger = logging.getLogger(__name__)

STATUS_ORDER = [
    IssueStatus.PENDING,
    IssueStatus.ACKNOWLEDGED,
    IssueStatus.IN_PROGRESS,
    IssueStatus.RESOLVED,
]
TERMINAL_STATUSES = frozenset({IssueStatus.RESOLVED, IssueStatus.REJECTED})
CITIZEN_EDITABLE_FIELDS = frozenset({"title", "description", "media", "category", "address"})
ASSIGNABLE_ROLES = (UserRole.STAFF, UserRole.ADMIN)


def validate_transition(current: IssueStatus, requested: IssueStatus) -> None:
    """Raise ``InvalidTransition`` unless ``current -> requested`` is a legal edge."""
    if current in TERMINAL_STATUSES:
        raise InvalidTransition(current, requested, "Issue is closed")
    if requested == current:
        raise InvalidTransition(current, requested, "Issue already has this status")
    if requested == IssueStatus.REJECTED:
        return

    old_index = STATUS_ORDER.index(current)
    new_index = STATUS_ORDER.index(requested)
    if new_index < old_index:
        raise InvalidTransition(current, requested, "Status cannot move backwards")
    if new_index > old_index + 1:
        raise InvalidTransition(current, requested, "Status must advance one step at a time")


def authorize_mutation(issue: Issue, acting_user: User, fields: Iterable[str]) -> None:
    """Role and ownership check; runs before the state machine."""
    if acting_user.role in ASSIGNABLE_ROLES:
        return
    if acting_user.role != UserRole.CITIZEN:
        raise Forbidden("You do not have permission to modify issues")

    if issue.created_by_id != acting_user.id:
        raise Forbidden("You can only update your own issues")
    if issue.status != IssueStatus.PENDING:
        raise Forbidden("Cannot edit an issue after acknowledgment")
    disallowed = set(fields) - CITIZEN_EDITABLE_FIELDS
    if disallowed:
        raise Forbidden(
            f"Citizens cannot change: {', '.join(sorted(disallowed))}",
            fields=sorted(disallowed),
        )


def resolution_minutes(created_at: datetime, resolved_at: datetime) -> float:
    return max((resolved_at - created_at).total_seconds() / 60.0, 0.0)


class IssueWorkflowService:
    """Entry point for every issue write."""

    def __init__(
        self,
        db: AsyncSession,
        issues: IssueRepository,
        dedup: GeoDedupChecker,
        router: DepartmentRouter,
        ledger: RewardLedger,
        dispatcher: NotificationDispatcher,
        media_store: S3MediaStore,
        max_media_files: Optional[int] = None,
        media_folder: Optional[str] = None,
    ):
        self.db = db
        self.issues = issues
        self.dedup = dedup
        self.router = router
        self.ledger = ledger
        self.dispatcher = dispatcher
        self.media_store = media_store
        self.max_media_files = max_media_files or settings.MAX_MEDIA_FILES
        self.media_folder = media_folder or settings.MEDIA_FOLDER

    async def create_issue(
        self,
        draft: IssueDraft,
        uploads: Sequence[StagedUpload],
        acting_user: User,
    ) -> Issue:
        if acting_user.role != UserRole.CITIZEN:
            raise Forbidden("Only citizens can report issues")
        self._check_upload_count(uploads)

        validate_coordinates(draft.latitude, draft.longitude)
        await self.dedup.ensure_unique_location(draft.latitude, draft.longitude)
        department = await self.router.route_category(draft.category)

        stored = await self._upload_all(uploads)
        try:
            now = datetime.now(timezone.utc)
            issue = Issue(
                id=uuid.uuid4(),
                title=draft.title,
                description=draft.description,
                category=draft.category,
                media=[item.as_item() for item in stored],
                address=draft.address,
                latitude=draft.latitude,
                longitude=draft.longitude,
                location=point_element(draft.latitude, draft.longitude),
                status=IssueStatus.PENDING,
                priority=IssuePriority.LOW,
                version=1,
                created_by_id=acting_user.id,
                department_id=department.id,
                created_at=now,
                updated_at=now,
            )
            await self.issues.create(issue)
            await self.router.on_issue_created(department.id, issue.id)
            await self.dispatcher.notify(
                Audience.department(department.id),
                title="New issue reported",
                message=f'"{issue.title}" ({issue.category.value}) at {issue.address}',
                type=NotificationType.ISSUE,
                issue_id=issue.id,
            )
            await self.db.commit()
        except Exception:
            self.dispatcher.discard_pending()
            await self.media_store.discard([item.as_item() for item in stored])
            raise

        record_issue_created(issue.category)
        logger.info(
            "Issue %s reported by %s, routed to department %s",
            issue.id,
            acting_user.id,
            department.id,
        )
        await self.dispatcher.deliver_pending()
        return issue

    async def update_issue(
        self,
        issue_id: UUID,
        changes: IssueUpdate,
        uploads: Sequence[StagedUpload],
        acting_user: User,
    ) -> Issue:
        patch = changes.patch()
        fields: Set[str] = set(patch)
        if uploads:
            fields.add("media")
        issue = await self.issues.get(issue_id)
        authorize_mutation(issue, acting_user, fields)
        if not fields:
            raise ValidationError("No changes supplied")
        for name, value in patch.items():
            if value is None and name != "assigned_to_id":
                raise ValidationError(f"{name} cannot be null", field=name)

        old_status = issue.status
        requested: Optional[IssueStatus] = patch.get("status")
        if requested is not None:
            validate_transition(old_status, requested)
        elif old_status in TERMINAL_STATUSES:
            raise InvalidTransition(old_status, old_status, "Closed issues cannot be modified")

        self._check_upload_count(uploads)
        values: Dict[str, object] = dict(patch)
        if patch.get("assigned_to_id") is not None:
            await self._check_assignee(patch["assigned_to_id"])
        if "category" in patch and patch["category"] != issue.category:
            department_id = await self.router.on_category_changed(issue, patch["category"])
            if department_id is not None:
                values["department_id"] = department_id

        now = datetime.now(timezone.utc)
        if requested == IssueStatus.RESOLVED:
            values["resolved_at"] = now

        previous_media = list(issue.media or [])
        stored = await self._upload_all(uploads)
        if stored:
            values["media"] = [item.as_item() for item in stored]

        try:
            updated = await self.issues.update(
                issue.id,
                values,
                expected_status=old_status,
                expected_version=issue.version,
            )
            if requested is not None:
                await self._apply_transition_effects(updated, old_status, requested, now)
            await self.db.commit()
        except Exception:
            self.dispatcher.discard_pending()
            await self.media_store.discard([item.as_item() for item in stored])
            raise

        if stored and previous_media:
            await self.media_store.discard(previous_media)
        if requested is not None:
            record_issue_transition(old_status, requested)
            logger.info(
                "Issue %s moved %s -> %s by %s",
                updated.id,
                old_status.value,
                requested.value,
                acting_user.id,
            )
        await self.dispatcher.deliver_pending()
        return updated

    async def check_access(self, issue_id: UUID, acting_user: User) -> Issue:
        """Ownership and status gate without any payload."""
        issue = await self.issues.get(issue_id)
        authorize_mutation(issue, acting_user, ())
        return issue

    async def _apply_transition_effects(
        self,
        issue: Issue,
        old_status: IssueStatus,
        new_status: IssueStatus,
        resolved_at: datetime,
    ) -> None:
        if old_status == IssueStatus.PENDING and new_status == IssueStatus.ACKNOWLEDGED:
            await self.ledger.credit_first_acknowledgment(issue.created_by_id, issue.id)

        if new_status == IssueStatus.RESOLVED and issue.department_id is not None:
            await self.router.on_issue_resolved(
                issue.department_id, resolution_minutes(issue.created_at, resolved_at)
            )

        await self.dispatcher.notify(
            Audience.user(issue.created_by_id),
            title="Issue status updated",
            message=f'Your issue "{issue.title}" is now {new_status.value}',
            type=NotificationType.ISSUE,
            issue_id=issue.id,
        )

    async def _check_assignee(self, user_id: UUID) -> None:
        assignee = await self.db.get(User, user_id)
        if assignee is None:
            raise NotFound("User", user_id)
        if assignee.role not in ASSIGNABLE_ROLES:
            raise ValidationError("Issues can only be assigned to staff", field="assigned_to_id")

    def _check_upload_count(self, uploads: Sequence[StagedUpload]) -> None:
        if len(uploads) > self.max_media_files:
            raise ValidationError(
                f"At most {self.max_media_files} media files are allowed", field="media"
            )

    async def _upload_all(self, uploads: Sequence[StagedUpload]) -> List[StoredMedia]:
        """Upload every file or none: a failure removes the ones already stored."""
        stored: List[StoredMedia] = []
        for upload in uploads:
            try:
                stored.append(
                    await self.media_store.upload(
                        upload.path,
                        self.media_folder,
                        content_type=upload.content_type,
                        filename=upload.filename,
                    )
                )
            except MediaStoreError:
                await self.media_store.discard([item.as_item() for item in stored])
                raise
        return stored
