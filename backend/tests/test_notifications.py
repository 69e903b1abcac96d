"""Tests for listing notifications and marking them read."""

from uuid import uuid4

import pytest

from taskhub.exceptions import NotFoundError
from taskhub.services.notification import NotificationService


async def _notify(db, org, title="Heads up", user=None):
    return await NotificationService(db).notify(
        tenant_id=org.tenant.id,
        user_id=(user or org.member).id,
        notification_type="task_assigned",
        title=title,
        message=f"{title} message",
        sender_id=org.owner.id,
    )


class TestNotify:

    async def test_self_notification_is_skipped(self, db, org):
        notification = await NotificationService(db).notify(
            tenant_id=org.tenant.id,
            user_id=org.owner.id,
            notification_type="task_assigned",
            title="Mine",
            message="Assigned to myself",
            sender_id=org.owner.id,
        )

        assert notification is None
        _, total, _ = await NotificationService(db).list_for_user(org.owner.id, org.tenant.id)
        assert total == 0


class TestListForUser:

    async def test_lists_only_the_users_own(self, db, org):
        await _notify(db, org, "First")
        await _notify(db, org, "Second")
        await _notify(db, org, "For someone else", user=org.outsider)

        items, total, unread = await NotificationService(db).list_for_user(
            org.member.id, org.tenant.id
        )

        assert sorted(n.title for n in items) == ["First", "Second"]
        assert total == 2
        assert unread == 2

    async def test_unread_only_and_paging(self, db, org):
        service = NotificationService(db)
        first = await _notify(db, org, "First")
        await _notify(db, org, "Second")
        await _notify(db, org, "Third")
        await service.mark_read(first.id, org.member.id, org.tenant.id)

        items, total, unread = await service.list_for_user(
            org.member.id, org.tenant.id, unread_only=True
        )
        assert sorted(n.title for n in items) == ["Second", "Third"]
        assert (total, unread) == (2, 2)

        page, total, _ = await service.list_for_user(
            org.member.id, org.tenant.id, page=2, page_size=2
        )
        assert len(page) == 1
        assert total == 3

    async def test_other_tenant_sees_nothing(self, db, org, other_org):
        await _notify(db, org)

        items, total, _ = await NotificationService(db).list_for_user(
            org.member.id, other_org.tenant.id
        )

        assert list(items) == []
        assert total == 0


class TestMarkRead:

    async def test_marks_and_emits(self, db, org, events):
        created = await _notify(db, org)

        notification = await NotificationService(db, events).mark_read(
            created.id, org.member.id, org.tenant.id
        )

        assert notification.is_read is True
        assert notification.read_at is not None
        assert events.received[-1].name == "notification:read"
        assert events.received[-1].payload["user_id"] == org.member.id

    async def test_already_read_keeps_first_timestamp(self, db, org, events):
        created = await _notify(db, org)
        service = NotificationService(db, events)
        first = await service.mark_read(created.id, org.member.id, org.tenant.id)
        read_at = first.read_at
        emitted = len(events.received)

        again = await service.mark_read(created.id, org.member.id, org.tenant.id)

        assert again.read_at == read_at
        assert len(events.received) == emitted

    async def test_someone_elses_notification_not_found(self, db, org):
        created = await _notify(db, org)

        with pytest.raises(NotFoundError, match="Notification not found"):
            await NotificationService(db).mark_read(created.id, org.owner.id, org.tenant.id)

    async def test_unknown_id_not_found(self, db, org):
        with pytest.raises(NotFoundError):
            await NotificationService(db).mark_read(uuid4(), org.member.id, org.tenant.id)


class TestMarkAllRead:

    async def test_counts_only_unread(self, db, org, events):
        service = NotificationService(db, events)
        first = await _notify(db, org, "First")
        await _notify(db, org, "Second")
        await _notify(db, org, "Third")
        await _notify(db, org, "Not mine", user=org.outsider)
        await service.mark_read(first.id, org.member.id, org.tenant.id)

        count = await service.mark_all_read(org.member.id, org.tenant.id)

        assert count == 2
        assert events.received[-1].name == "notifications:all:read"
        assert events.received[-1].payload["count"] == 2
        _, _, unread = await service.list_for_user(org.member.id, org.tenant.id)
        assert unread == 0
        _, _, outsider_unread = await service.list_for_user(org.outsider.id, org.tenant.id)
        assert outsider_unread == 1

    async def test_nothing_unread_emits_nothing(self, db, org, events):
        count = await NotificationService(db, events).mark_all_read(org.member.id, org.tenant.id)

        assert count == 0
        assert events.received == []
