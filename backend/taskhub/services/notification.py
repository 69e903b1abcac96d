"""Notification service for creating in-app notifications."""

from typing import Sequence
from uuid import UUID

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.exceptions import NotFoundError
from taskhub.models.activity import Notification
from taskhub.services.events import (
    NOTIFICATION_NEW,
    NOTIFICATION_READ,
    NOTIFICATIONS_ALL_READ,
    EventDispatcher,
)
from taskhub.utils.dates import utcnow

logger = structlog.get_logger()


class NotificationService:
    """Service for creating and reading user notifications.

    Callers treat ``notify`` and ``notify_many`` as best effort: a failure is logged by
    the caller and never undoes the mutation that triggered it.
    """

    def __init__(self, db: AsyncSession, events: EventDispatcher | None = None):
        self.db = db
        self.events = events

    async def notify(
        self,
        tenant_id: UUID,
        user_id: UUID,
        notification_type: str,
        title: str,
        message: str,
        sender_id: UUID | None = None,
        data: dict | None = None,
    ) -> Notification | None:
        """
        Create a notification for a user.

        Args:
            tenant_id: Tenant scope of the recipient
            user_id: The recipient user's ID
            notification_type: Type of notification (e.g., 'task_assigned')
            title: Notification title
            message: Notification body
            sender_id: Optional actor user ID
            data: Optional context (task/project ids)

        Returns:
            Created Notification, or None when the recipient is the actor
        """
        # Don't notify users about their own actions
        if sender_id and sender_id == user_id:
            logger.debug(
                "skipping_self_notification",
                user_id=str(user_id),
                notification_type=notification_type,
            )
            return None

        notification = Notification(
            tenant_id=tenant_id,
            user_id=user_id,
            sender_id=sender_id,
            notification_type=notification_type,
            title=title,
            message=message,
            data=data,
            is_read=False,
        )
        self.db.add(notification)
        await self.db.commit()

        logger.info(
            "notification_created",
            notification_id=str(notification.id),
            user_id=str(user_id),
            notification_type=notification_type,
        )

        if self.events is not None:
            self.events.emit(
                NOTIFICATION_NEW,
                user_id=user_id,
                notification_id=notification.id,
                notification_type=notification_type,
                title=title,
                message=message,
            )

        return notification

    async def notify_many(
        self,
        tenant_id: UUID,
        user_ids: list[UUID],
        notification_type: str,
        title: str,
        message: str,
        sender_id: UUID | None = None,
        data: dict | None = None,
    ) -> list[Notification]:
        """Create notifications for several users; the actor is skipped."""
        notifications = []
        for user_id in user_ids:
            notification = await self.notify(
                tenant_id=tenant_id,
                user_id=user_id,
                notification_type=notification_type,
                title=title,
                message=message,
                sender_id=sender_id,
                data=data,
            )
            if notification:
                notifications.append(notification)
        return notifications

    async def list_for_user(
        self,
        user_id: UUID,
        tenant_id: UUID,
        unread_only: bool = False,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[Sequence[Notification], int, int]:
        """Return one page of a user's notifications, newest first.

        Returns:
            Tuple of (notifications, total matching, unread count)
        """
        scope = [Notification.user_id == user_id, Notification.tenant_id == tenant_id]
        unread = Notification.is_read.is_(False)
        query_scope = [*scope, unread] if unread_only else scope

        total = await self.db.scalar(select(func.count(Notification.id)).where(*query_scope))
        unread_count = await self.db.scalar(
            select(func.count(Notification.id)).where(*scope, unread)
        )
        result = await self.db.execute(
            select(Notification)
            .where(*query_scope)
            .order_by(Notification.created_at.desc(), Notification.id)
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return result.scalars().all(), total or 0, unread_count or 0

    async def mark_read(
        self,
        notification_id: UUID,
        user_id: UUID,
        tenant_id: UUID,
    ) -> Notification:
        """Mark one of the user's notifications as read.

        Another user's notification is reported as not found. Marking an
        already read notification keeps its original ``read_at``.
        """
        result = await self.db.execute(
            select(Notification).where(
                Notification.id == notification_id,
                Notification.user_id == user_id,
                Notification.tenant_id == tenant_id,
            )
        )
        notification = result.scalar_one_or_none()
        if notification is None:
            raise NotFoundError("Notification not found")

        if notification.is_read:
            return notification

        notification.is_read = True
        notification.read_at = utcnow()
        await self.db.commit()

        logger.info("notification_read", notification_id=str(notification_id), user_id=str(user_id))

        if self.events is not None:
            self.events.emit(NOTIFICATION_READ, user_id=user_id, notification_id=notification_id)

        return notification

    async def mark_all_read(self, user_id: UUID, tenant_id: UUID) -> int:
        """Mark every unread notification of the user as read; returns how many changed."""
        result = await self.db.execute(
            update(Notification)
            .where(
                Notification.user_id == user_id,
                Notification.tenant_id == tenant_id,
                Notification.is_read.is_(False),
            )
            .values(is_read=True, read_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        count = result.rowcount or 0

        logger.info("notifications_marked_read", user_id=str(user_id), count=count)

        if count and self.events is not None:
            self.events.emit(NOTIFICATIONS_ALL_READ, user_id=user_id, count=count)

        return count
