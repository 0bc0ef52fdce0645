"""Tests for notification persistence, per-user state and fan-out."""

import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.ext.asyncio import AsyncSession

from civictrack.core.exceptions import Forbidden, NotFound, ValidationError
from civictrack.models.notification import Notification, NotificationType
from civictrack.models.user import UserRole
from civictrack.services.notification_dispatcher import (
    NOTIFICATION_EVENT,
    Audience,
    NotificationDispatcher,
    archive_marker_insert,
    department_feed_query,
    mark_department_read_insert,
    personal_feed_query,
    read_marker_insert,
)
from civictrack.services.realtime import RealtimeChannel
from tests.fakes import EPOCH, make_user


def compile_sql(stmt) -> str:
    return str(stmt.compile(dialect=postgresql.dialect()))


class RecordingSocket:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    async def accept(self):
        return None

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)


@pytest.fixture
def mock_session() -> AsyncSession:
    session = AsyncMock(spec=AsyncSession)
    session.add = MagicMock()
    session.flush = AsyncMock()
    session.execute = AsyncMock()
    session.get = AsyncMock()
    session.delete = AsyncMock()
    return session


def personal(recipient, **fields):
    return Notification(
        id=uuid.uuid4(),
        recipient_user_id=recipient.id,
        title="Issue status updated",
        message="Your issue is now ACKNOWLEDGED",
        type=NotificationType.ISSUE,
        is_read=False,
        is_archived=False,
        created_at=EPOCH,
        **fields,
    )


def shared(department_id):
    return Notification(
        id=uuid.uuid4(),
        recipient_department_id=department_id,
        title="New issue reported",
        message="Pothole on Ring Road",
        type=NotificationType.ISSUE,
        is_read=False,
        is_archived=False,
        created_at=EPOCH,
    )


class TestAudience:
    def test_exactly_one_recipient(self):
        with pytest.raises(ValueError):
            Audience()
        with pytest.raises(ValueError):
            Audience(user_id=uuid.uuid4(), department_id=uuid.uuid4())

    def test_rooms(self):
        user_id, department_id = uuid.uuid4(), uuid.uuid4()
        assert Audience.user(user_id).room == f"user:{user_id}"
        assert Audience.department(department_id).room == f"department:{department_id}"
        assert Audience.department(department_id).kind == "department"


class TestDelivery:
    @pytest.mark.asyncio
    async def test_push_happens_only_after_deliver(self, mock_session):
        realtime = RealtimeChannel()
        socket = RecordingSocket()
        user = make_user()
        connection = await realtime.connect(socket)
        realtime.join_room(connection, f"user:{user.id}")
        dispatcher = NotificationDispatcher(mock_session, realtime)

        notification = await dispatcher.notify(Audience.user(user.id), "Hello", "World")

        mock_session.add.assert_called_once_with(notification)
        mock_session.flush.assert_awaited()
        assert socket.sent == []

        assert await dispatcher.deliver_pending() == 1
        [frame] = socket.sent
        assert frame["event"] == NOTIFICATION_EVENT
        assert frame["data"]["id"] == str(notification.id)
        assert frame["data"]["type"] == "SYSTEM"

    @pytest.mark.asyncio
    async def test_discard_drops_staged_pushes(self, mock_session):
        realtime = RealtimeChannel()
        socket = RecordingSocket()
        user = make_user()
        realtime.join_room(await realtime.connect(socket), f"user:{user.id}")
        dispatcher = NotificationDispatcher(mock_session, realtime)

        await dispatcher.notify(Audience.user(user.id), "Hello", "World")
        dispatcher.discard_pending()

        assert await dispatcher.deliver_pending() == 0
        assert socket.sent == []

    @pytest.mark.asyncio
    async def test_realtime_failure_is_swallowed(self, mock_session):
        realtime = MagicMock()
        realtime.emit_to_room = AsyncMock(side_effect=ConnectionError("redis down"))
        dispatcher = NotificationDispatcher(mock_session, realtime)

        await dispatcher.notify(Audience.department(uuid.uuid4()), "Hello", "World")

        assert await dispatcher.deliver_pending() == 0


class TestMarkRead:
    @pytest.mark.asyncio
    async def test_recipient_marks_personal_notification(self, mock_session):
        user = make_user()
        notification = personal(user)
        mock_session.get.return_value = notification

        await NotificationDispatcher(mock_session, RealtimeChannel()).mark_read(notification.id, user)

        assert notification.is_read is True

    @pytest.mark.asyncio
    async def test_other_user_cannot_mark(self, mock_session):
        notification = personal(make_user())
        mock_session.get.return_value = notification

        with pytest.raises(Forbidden):
            await NotificationDispatcher(mock_session, RealtimeChannel()).mark_read(
                notification.id, make_user()
            )
        assert notification.is_read is False

    @pytest.mark.asyncio
    async def test_department_read_state_is_per_staff_member(self, mock_session):
        department_id = uuid.uuid4()
        staff_a = make_user(UserRole.STAFF, department_id=department_id)
        notification = shared(department_id)
        mock_session.get.return_value = notification

        await NotificationDispatcher(mock_session, RealtimeChannel()).mark_read(notification.id, staff_a)

        assert notification.is_read is False
        stmt = mock_session.execute.await_args.args[0]
        params = stmt.compile(dialect=postgresql.dialect()).params
        assert params["user_id"] == staff_a.id
        assert params["notification_id"] == notification.id

    @pytest.mark.asyncio
    async def test_staff_of_other_department_cannot_mark(self, mock_session):
        notification = shared(uuid.uuid4())
        mock_session.get.return_value = notification

        with pytest.raises(Forbidden):
            await NotificationDispatcher(mock_session, RealtimeChannel()).mark_read(
                notification.id, make_user(UserRole.STAFF, department_id=uuid.uuid4())
            )

    @pytest.mark.asyncio
    async def test_missing_notification(self, mock_session):
        mock_session.get.return_value = None
        with pytest.raises(NotFound):
            await NotificationDispatcher(mock_session, RealtimeChannel()).mark_read(
                uuid.uuid4(), make_user()
            )

    @pytest.mark.asyncio
    async def test_mark_all_read_covers_department_for_staff(self, mock_session):
        staff = make_user(UserRole.STAFF, department_id=uuid.uuid4())
        await NotificationDispatcher(mock_session, RealtimeChannel()).mark_all_read(staff)
        assert mock_session.execute.await_count == 2

        mock_session.execute.reset_mock()
        await NotificationDispatcher(mock_session, RealtimeChannel()).mark_all_read(make_user())
        assert mock_session.execute.await_count == 1


class TestArchive:
    @pytest.mark.asyncio
    async def test_admin_deletes_for_everyone(self, mock_session):
        notification = shared(uuid.uuid4())
        mock_session.get.return_value = notification

        result = await NotificationDispatcher(mock_session, RealtimeChannel()).archive(
            notification.id, make_user(UserRole.ADMIN)
        )

        assert result == "deleted"
        mock_session.delete.assert_awaited_once_with(notification)

    @pytest.mark.asyncio
    async def test_citizen_archives_own(self, mock_session):
        citizen = make_user()
        notification = personal(citizen)
        mock_session.get.return_value = notification

        result = await NotificationDispatcher(mock_session, RealtimeChannel()).archive(
            notification.id, citizen
        )

        assert result == "archived"
        assert notification.is_archived is True
        mock_session.delete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_staff_archives_department_notification_for_self(self, mock_session):
        department_id = uuid.uuid4()
        staff = make_user(UserRole.STAFF, department_id=department_id)
        notification = shared(department_id)
        mock_session.get.return_value = notification

        result = await NotificationDispatcher(mock_session, RealtimeChannel()).archive(
            notification.id, staff
        )

        assert result == "archived"
        assert notification.is_archived is False
        sql = compile_sql(mock_session.execute.await_args.args[0])
        assert "INSERT INTO notification_archives" in sql

    @pytest.mark.asyncio
    async def test_staff_cannot_archive_personal(self, mock_session):
        staff = make_user(UserRole.STAFF, department_id=uuid.uuid4())
        notification = personal(staff)
        mock_session.get.return_value = notification

        with pytest.raises(Forbidden):
            await NotificationDispatcher(mock_session, RealtimeChannel()).archive(notification.id, staff)

    @pytest.mark.asyncio
    async def test_citizen_cannot_archive_someone_elses(self, mock_session):
        notification = personal(make_user())
        mock_session.get.return_value = notification

        with pytest.raises(Forbidden):
            await NotificationDispatcher(mock_session, RealtimeChannel()).archive(
                notification.id, make_user()
            )


class TestStatements:
    def test_personal_feed_hides_archived(self):
        sql = compile_sql(personal_feed_query(uuid.uuid4(), 50))
        assert "notifications.is_archived IS false" in sql
        assert "ORDER BY notifications.created_at DESC" in sql

    def test_department_feed_scopes_read_and_archive_to_user(self):
        sql = compile_sql(department_feed_query(uuid.uuid4(), uuid.uuid4(), 50))
        assert "LEFT OUTER JOIN notification_reads" in sql
        assert "notification_reads.user_id =" in sql
        assert "NOT (EXISTS (SELECT" in sql
        assert "notification_archives.user_id =" in sql

    def test_feeds_for_two_staff_members_differ_only_by_user(self):
        department_id = uuid.uuid4()
        staff_a, staff_b = uuid.uuid4(), uuid.uuid4()
        params_a = department_feed_query(staff_a, department_id, 50).compile(dialect=postgresql.dialect()).params
        params_b = department_feed_query(staff_b, department_id, 50).compile(dialect=postgresql.dialect()).params
        assert staff_a in params_a.values() and staff_b not in params_a.values()
        assert staff_b in params_b.values() and staff_a not in params_b.values()

    @pytest.mark.parametrize("builder", [read_marker_insert, archive_marker_insert])
    def test_markers_are_idempotent(self, builder):
        sql = compile_sql(builder(uuid.uuid4(), uuid.uuid4()))
        assert "ON CONFLICT (notification_id, user_id) DO NOTHING" in sql

    def test_mark_department_read_inserts_from_select(self):
        sql = compile_sql(mark_department_read_insert(uuid.uuid4(), uuid.uuid4()))
        assert sql.startswith("INSERT INTO notification_reads (notification_id, user_id) SELECT")
        assert "DO NOTHING" in sql


class TestBroadcast:
    @pytest.mark.asyncio
    async def test_user_target(self, mock_session):
        user = make_user()
        mock_session.get.return_value = user
        dispatcher = NotificationDispatcher(mock_session, RealtimeChannel())

        assert await dispatcher.broadcast("Notice", "Body", user_id=user.id, role=UserRole.STAFF) == 1
        notification = mock_session.add.call_args.args[0]
        assert notification.recipient_user_id == user.id
        assert notification.type == NotificationType.SYSTEM

    @pytest.mark.asyncio
    async def test_unknown_user_target(self, mock_session):
        mock_session.get.return_value = None
        with pytest.raises(NotFound):
            await NotificationDispatcher(mock_session, RealtimeChannel()).broadcast(
                "Notice", "Body", user_id=uuid.uuid4()
            )

    @pytest.mark.asyncio
    async def test_department_only_target_is_shared(self, mock_session):
        department_id = uuid.uuid4()
        dispatcher = NotificationDispatcher(mock_session, RealtimeChannel())

        assert await dispatcher.broadcast("Notice", "Body", department_id=department_id) == 1
        notification = mock_session.add.call_args.args[0]
        assert notification.recipient_department_id == department_id
        assert notification.recipient_user_id is None

    @pytest.mark.asyncio
    async def test_role_target_fans_out(self, mock_session):
        recipients = [uuid.uuid4(), uuid.uuid4(), uuid.uuid4()]
        result = MagicMock()
        result.scalars.return_value.all.return_value = recipients
        mock_session.execute.return_value = result
        dispatcher = NotificationDispatcher(mock_session, RealtimeChannel())

        assert await dispatcher.broadcast("Notice", "Body", role=UserRole.CITIZEN) == 3
        assert [call.args[0].recipient_user_id for call in mock_session.add.call_args_list] == recipients
        sql = compile_sql(mock_session.execute.await_args.args[0])
        assert "users.role =" in sql

    @pytest.mark.asyncio
    async def test_missing_target(self, mock_session):
        with pytest.raises(ValidationError):
            await NotificationDispatcher(mock_session, RealtimeChannel()).broadcast("Notice", "Body")
