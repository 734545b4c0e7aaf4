"""
services/notification/router.py
In-app notification inbox plus a WebSocket that relays the caller's
real-time events from their Redis pub/sub channel.
"""

import asyncio
import logging
from typing import Optional
from uuid import UUID

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    HTTPException,
    Query,
    WebSocket,
    WebSocketDisconnect,
    status,
)
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import get_redis, user_channel
from services.notification.dispatcher import push_event
from shared.middleware.auth import decode_token, get_current_user
from shared.models.models import Notification, User
from shared.schemas.schemas import (
    ApiResponse,
    NotificationListResponse,
    NotificationResponse,
    UnreadCountResponse,
)
from shared.utils.responses import ok, paginated

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["Notifications"])


async def _get_own_notification(notification_id: UUID, user: User, db: AsyncSession) -> Notification:
    notification = await db.scalar(
        select(Notification).where(
            Notification.id == notification_id,
            Notification.user_id == user.id,
        )
    )
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found.")
    return notification


async def _unread_count(user: User, db: AsyncSession) -> int:
    count = await db.scalar(
        select(func.count(Notification.id)).where(
            Notification.user_id == user.id,
            Notification.is_read == False,  # noqa: E712
        )
    )
    return count or 0


# ── REST Endpoints ────────────────────────────────────────────

@router.get("", response_model=ApiResponse[NotificationListResponse])
async def list_notifications(
    is_read: Optional[bool] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    query = select(Notification).where(Notification.user_id == current_user.id)
    if is_read is not None:
        query = query.where(Notification.is_read == is_read)

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(Notification.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
    )
    return ok(
        paginated(
            result.scalars().all(),
            total or 0,
            page,
            page_size,
            unread_count=await _unread_count(current_user, db),
        ),
        "Notifications retrieved successfully.",
    )


@router.get("/unread-count", response_model=ApiResponse[UnreadCountResponse])
async def get_unread_count(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Badge count for the app header."""
    return ok({"unread_count": await _unread_count(current_user, db)}, "Unread count retrieved successfully.")


@router.patch("/read-all", response_model=ApiResponse[dict])
async def mark_all_read(
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    result = await db.execute(
        update(Notification)
        .where(Notification.user_id == current_user.id, Notification.is_read == False)  # noqa: E712
        .values(is_read=True)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    push_event(background_tasks, redis, current_user.id, "notifications_all_read", {})
    return ok({"updated": result.rowcount}, "All notifications marked as read.")


@router.delete("", response_model=ApiResponse[dict])
async def delete_all_notifications(
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    result = await db.execute(
        delete(Notification)
        .where(Notification.user_id == current_user.id)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    push_event(background_tasks, redis, current_user.id, "notifications_all_deleted", {})
    return ok({"deleted": result.rowcount}, "All notifications deleted successfully.")


@router.get("/{notification_id}", response_model=ApiResponse[NotificationResponse])
async def get_notification(
    notification_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    notification = await _get_own_notification(notification_id, current_user, db)
    return ok(notification, "Notification retrieved successfully.")


@router.patch("/{notification_id}/read", response_model=ApiResponse[NotificationResponse])
async def mark_as_read(
    notification_id: UUID,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    notification = await _get_own_notification(notification_id, current_user, db)
    notification.is_read = True
    await db.commit()
    push_event(
        background_tasks, redis, current_user.id, "notification_read",
        {"notificationId": str(notification.id)},
    )
    return ok(notification, "Notification marked as read.")


@router.delete("/{notification_id}", response_model=ApiResponse[None])
async def delete_notification(
    notification_id: UUID,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    notification = await _get_own_notification(notification_id, current_user, db)
    await db.delete(notification)
    await db.commit()
    push_event(
        background_tasks, redis, current_user.id, "notification_deleted",
        {"notificationId": str(notification_id)},
    )
    return ok(None, "Notification deleted successfully.")


# ── WebSocket ─────────────────────────────────────────────────

@router.websocket("/ws")
async def notification_stream(
    websocket: WebSocket,
    token: str = Query(...),
    redis=Depends(get_redis),
):
    """
    Relay the caller's events. Authenticates with ?token=<access token>.
    Messages are JSON: {"event": ..., "data": ...}.
    """
    try:
        token_data = await decode_token(token, redis)
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    channel = user_channel(token_data.user_id)
    pubsub = redis.pubsub()
    await pubsub.subscribe(channel)
    logger.debug(f"User {token_data.user_id} subscribed to {channel}")

    async def relay():
        async for message in pubsub.listen():
            if message.get("type") == "message":
                await websocket.send_text(message["data"])

    async def watch_disconnect():
        # Inbound frames are ignored; this only notices the client leaving
        while True:
            await websocket.receive_text()

    tasks = [asyncio.create_task(relay()), asyncio.create_task(watch_disconnect())]
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            exc = task.exception()
            if exc and not isinstance(exc, WebSocketDisconnect):
                logger.warning(f"Notification stream for {token_data.user_id} ended: {exc}")
    finally:
        for task in tasks:
            task.cancel()
        await pubsub.unsubscribe(channel)
        await pubsub.aclose()
