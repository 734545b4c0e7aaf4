"""
services/notification/dispatcher.py
Creates notification rows and pushes real-time events to users.

Pushes go out as a Redis PUBLISH on the user's channel after the
database write is committed. Delivery is at-most-once: a failed or
unheard publish is logged and dropped, never raised to the caller.
"""

import logging
import uuid
from typing import Any, Iterable, Optional

from fastapi import BackgroundTasks
from sqlalchemy.ext.asyncio import AsyncSession

from config.redis_client import RedisCache
from shared.models.models import Notification, NotificationType
from shared.schemas.schemas import NotificationResponse

logger = logging.getLogger(__name__)


async def create_notification(
    db: AsyncSession,
    user_id: uuid.UUID,
    title: str,
    message: str,
    type: NotificationType,
    metadata: Optional[dict] = None,
) -> Notification:
    notification = Notification(
        user_id=user_id,
        title=title,
        message=message,
        type=type.value,
        notification_metadata=metadata,
    )
    db.add(notification)
    await db.flush()
    return notification


async def deliver(redis, user_id: Any, event: str, payload: Any) -> None:
    """Fire-and-forget publish. Errors are logged and swallowed."""
    try:
        receivers = await RedisCache(redis).publish_to_user(user_id, event, payload)
        logger.debug(f"Pushed {event} to user {user_id} ({receivers} listeners)")
    except Exception as e:
        logger.warning(f"Real-time push of {event} to user {user_id} failed: {e}")


def push_notifications(
    background_tasks: BackgroundTasks,
    redis,
    notifications: Iterable[Notification],
) -> None:
    """
    Schedule the 'notification' event for each row once the response is sent.
    Call only after the rows are committed.
    """
    for notification in notifications:
        payload = NotificationResponse.model_validate(notification).model_dump(mode="json")
        background_tasks.add_task(deliver, redis, notification.user_id, "notification", payload)


def push_event(
    background_tasks: BackgroundTasks,
    redis,
    user_id: Any,
    event: str,
    payload: Any,
) -> None:
    background_tasks.add_task(deliver, redis, user_id, event, payload)
