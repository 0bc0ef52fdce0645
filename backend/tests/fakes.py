"""In-memory collaborators for service-level tests."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any, Callable, Dict, Iterable, List, Optional
from uuid import UUID
from unittest.mock import AsyncMock

from civictrack.core.exceptions import Conflict, MediaStoreError, NoDepartmentForCategory, NotFound
from civictrack.models.department import Department
from civictrack.models.issue import Issue, IssueCategory, IssuePriority, IssueStatus
from civictrack.models.notification import NotificationType
from civictrack.models.user import User, UserRole
from civictrack.services.department_router import running_mean
from civictrack.services.geo_dedup import GeoDedupChecker
from civictrack.services.issue_workflow import IssueWorkflowService
from civictrack.services.media_store import StoredMedia, guess_kind
from civictrack.services.notification_dispatcher import Audience

EPOCH = datetime(2025, 1, 1, tzinfo=timezone.utc)


def make_user(role: UserRole = UserRole.CITIZEN, department_id: Optional[UUID] = None, **fields) -> User:
    defaults = dict(
        id=uuid.uuid4(),
        name=f"{role.value.title()} User",
        email=f"{uuid.uuid4().hex[:8]}@example.com",
        hashed_password="not-a-real-hash",
        role=role,
        department_id=department_id,
        wallet_balance=0,
        is_active=True,
        created_at=EPOCH,
    )
    defaults.update(fields)
    return User(**defaults)


def make_department(name: str, categories: Iterable[IssueCategory], created_at: datetime = EPOCH) -> Department:
    return Department(
        id=uuid.uuid4(),
        name=name,
        code=name.upper().replace(" ", "_"),
        categories=[category.value for category in categories],
        total_issues=0,
        resolved_issues=0,
        avg_resolution_time=0.0,
        created_at=created_at,
    )


def make_issue(
    created_by: User,
    status: IssueStatus = IssueStatus.PENDING,
    latitude: float = 28.61,
    longitude: float = 77.21,
    department_id: Optional[UUID] = None,
    **fields,
) -> Issue:
    defaults = dict(
        id=uuid.uuid4(),
        title="Broken pipe",
        description="Water leaking onto the road",
        category=IssueCategory.WATER,
        media=[],
        address="12 Main Street",
        latitude=latitude,
        longitude=longitude,
        status=status,
        priority=IssuePriority.LOW,
        version=1,
        created_by_id=created_by.id,
        department_id=department_id,
        resolved_at=EPOCH if status == IssueStatus.RESOLVED else None,
        created_at=EPOCH,
        updated_at=EPOCH,
    )
    defaults.update(fields)
    return Issue(**defaults)


class FakeIssueRepository:
    """Dict-backed stand-in honouring the conditional update contract."""

    def __init__(self, issues: Iterable[Issue] = ()):
        self.issues: Dict[UUID, Issue] = {issue.id: issue for issue in issues}
        self.before_update: Optional[Callable[[Issue], None]] = None

    async def create(self, issue: Issue) -> Issue:
        self.issues[issue.id] = issue
        return issue

    async def get(self, issue_id: UUID) -> Issue:
        issue = self.issues.get(issue_id)
        if issue is None:
            raise NotFound("Issue", issue_id)
        return issue

    async def exists_at(self, latitude: float, longitude: float, statuses) -> bool:
        statuses = set(statuses)
        return any(
            issue.latitude == latitude and issue.longitude == longitude and issue.status in statuses
            for issue in self.issues.values()
        )

    async def update(
        self,
        issue_id: UUID,
        values: Dict[str, Any],
        expected_status: IssueStatus,
        expected_version: int,
    ) -> Issue:
        issue = await self.get(issue_id)
        if self.before_update is not None:
            self.before_update(issue)
        if issue.status != expected_status or issue.version != expected_version:
            raise Conflict()
        for key, value in values.items():
            setattr(issue, key, value)
        issue.version += 1
        issue.updated_at = datetime.now(timezone.utc)
        return issue


class FakeDepartmentRouter:
    def __init__(self, departments: Iterable[Department] = ()):
        self.departments: List[Department] = list(departments)
        self.created_events: List[UUID] = []

    def by_id(self, department_id: UUID) -> Department:
        return next(d for d in self.departments if d.id == department_id)

    async def route_category(self, category: IssueCategory) -> Department:
        owners = [d for d in self.departments if category.value in d.categories]
        if not owners:
            raise NoDepartmentForCategory(category)
        return sorted(owners, key=lambda d: (d.created_at, d.name))[0]

    async def on_issue_created(self, department_id: UUID, issue_id: UUID) -> None:
        self.by_id(department_id).total_issues += 1
        self.created_events.append(issue_id)

    async def on_issue_resolved(self, department_id: UUID, resolution_minutes: float) -> None:
        department = self.by_id(department_id)
        department.resolved_issues += 1
        department.avg_resolution_time = running_mean(
            department.avg_resolution_time, department.resolved_issues, resolution_minutes
        )

    async def on_category_changed(self, issue: Issue, new_category: IssueCategory) -> Optional[UUID]:
        try:
            return (await self.route_category(new_category)).id
        except NoDepartmentForCategory:
            return None


class FakeDispatcher:
    """Records notifications and the deliver/discard calls around them."""

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self.pending: List[Dict[str, Any]] = []
        self.delivered: List[Dict[str, Any]] = []

    async def notify(self, audience: Audience, title: str, message: str,
                     type: NotificationType = NotificationType.SYSTEM, issue_id=None):
        record = {
            "audience": audience,
            "title": title,
            "message": message,
            "type": type,
            "issue_id": issue_id,
        }
        self.sent.append(record)
        self.pending.append(record)
        return record

    async def deliver_pending(self) -> int:
        delivered, self.pending = self.pending, []
        self.delivered.extend(delivered)
        return len(delivered)

    def discard_pending(self) -> None:
        self.pending = []

    def for_user(self, user_id: UUID, type: Optional[NotificationType] = None) -> List[Dict[str, Any]]:
        return [
            record
            for record in self.sent
            if record["audience"].user_id == user_id and (type is None or record["type"] == type)
        ]


class FakeRewardLedger:
    def __init__(self, users: Iterable[User], dispatcher: FakeDispatcher, coins: int = 1):
        self.users = {user.id: user for user in users}
        self.dispatcher = dispatcher
        self.coins = coins
        self.credits: List[UUID] = []

    async def credit_first_acknowledgment(self, user_id: UUID, issue_id: Optional[UUID] = None) -> int:
        user = self.users[user_id]
        user.wallet_balance += self.coins
        self.credits.append(issue_id)
        await self.dispatcher.notify(
            Audience.user(user_id), "Wallet credited", "reward", NotificationType.WALLET, issue_id
        )
        return user.wallet_balance


class FakeMediaStore:
    def __init__(self, fail_on_upload: Optional[int] = None):
        self.fail_on_upload = fail_on_upload
        self.uploads = 0
        self.stored: Dict[str, StoredMedia] = {}
        self.deleted: List[str] = []

    async def upload(self, local_path: str, folder: str, content_type=None, filename=None) -> StoredMedia:
        self.uploads += 1
        if self.fail_on_upload is not None and self.uploads == self.fail_on_upload:
            raise MediaStoreError("Media upload failed", file=filename)
        media_id = f"{folder}/{self.uploads}"
        stored = StoredMedia(
            id=media_id,
            url=f"https://media.example.com/{media_id}",
            kind=guess_kind(filename or local_path, content_type),
        )
        self.stored[media_id] = stored
        return stored

    async def delete(self, media_id: str, kind) -> None:
        self.deleted.append(media_id)
        self.stored.pop(media_id, None)

    async def discard(self, items) -> None:
        for item in items:
            await self.delete(item["id"], item["type"])


def minutes_after(start: datetime, minutes: float) -> datetime:
    return start + timedelta(minutes=minutes)


def build_workflow(issues=(), departments=(), users=(), media_store=None, db=None) -> SimpleNamespace:
    """Real workflow service wired to in-memory collaborators."""
    repo = FakeIssueRepository(issues)
    router = FakeDepartmentRouter(departments)
    dispatcher = FakeDispatcher()
    ledger = FakeRewardLedger(users, dispatcher)
    media = media_store or FakeMediaStore()
    db = db or AsyncMock()
    service = IssueWorkflowService(
        db=db,
        issues=repo,
        dedup=GeoDedupChecker(repo),
        router=router,
        ledger=ledger,
        dispatcher=dispatcher,
        media_store=media,
        max_media_files=5,
        media_folder="issues",
    )
    return SimpleNamespace(
        service=service,
        repo=repo,
        router=router,
        dispatcher=dispatcher,
        ledger=ledger,
        media=media,
        db=db,
    )
