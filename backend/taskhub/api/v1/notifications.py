"""Notification API endpoints for the current user."""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.api.v1.auth import CurrentUser
from taskhub.api.v1.common import Events, Pagination, envelope
from taskhub.db.session import get_db_session
from taskhub.models.activity import Notification
from taskhub.services.notification import NotificationService

router = APIRouter()


def _notification_to_response(notification: Notification) -> dict[str, Any]:
    return {
        "id": notification.id,
        "notification_type": notification.notification_type,
        "title": notification.title,
        "message": notification.message,
        "data": notification.data or {},
        "sender_id": notification.sender_id,
        "is_read": notification.is_read,
        "read_at": notification.read_at,
        "created_at": notification.created_at,
    }


@router.get("")
async def list_notifications(
    current_user: CurrentUser,
    unread_only: bool = Query(False),
    pagination: Pagination = Depends(),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Notifications of the current user, newest first."""
    notifications, total, unread_count = await NotificationService(db).list_for_user(
        current_user.id,
        current_user.tenant_id,
        unread_only=unread_only,
        page=pagination.page,
        page_size=pagination.page_size,
    )
    return envelope(
        [_notification_to_response(n) for n in notifications],
        pagination=pagination.meta(total),
        unread_count=unread_count,
    )


@router.put("/read-all")
async def mark_all_notifications_read(
    current_user: CurrentUser,
    events: Events,
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    count = await NotificationService(db, events).mark_all_read(
        current_user.id, current_user.tenant_id
    )
    return envelope({"count": count}, f"Marked {count} notifications as read")


@router.put("/{notification_id}/read")
async def mark_notification_read(
    notification_id: UUID,
    current_user: CurrentUser,
    events: Events,
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    notification = await NotificationService(db, events).mark_read(
        notification_id, current_user.id, current_user.tenant_id
    )
    return envelope(_notification_to_response(notification))
