"""
services/subscription/router.py
Musician listing subscriptions: create, renew, cancel and status.
Only musicians with an ACTIVE subscription appear in search.
Expiry is applied lazily when the status is checked.
"""

import logging
import math
from datetime import datetime
from typing import Optional
from uuid import UUID

from dateutil.relativedelta import relativedelta
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import get_redis
from services.notification.dispatcher import create_notification, push_notifications
from shared.middleware.auth import require_admin, require_musician
from shared.models.models import (
    MusicianProfile,
    NotificationType,
    Payment,
    PaymentStatus,
    Subscription,
    SubscriptionStatus,
    User,
    utcnow,
)
from shared.schemas.schemas import (
    ApiResponse,
    PaginatedResponse,
    SubscriptionCreateRequest,
    SubscriptionDetailResponse,
    SubscriptionRenewRequest,
    SubscriptionResponse,
    SubscriptionStatusResponse,
)
from shared.utils.responses import ok, paginated

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/subscriptions", tags=["Subscriptions"])


# ── Helpers ───────────────────────────────────────────────────

def add_months(start: datetime, months: int) -> datetime:
    """Calendar-month addition; Jan 31 + 1 month lands on the last day of Feb."""
    return start + relativedelta(months=months)


def renewal_window(current_end: datetime, months: int, now: datetime) -> tuple[datetime, datetime]:
    """Extend from the current end if it is still ahead, else from now."""
    start = max(current_end, now)
    return start, add_months(start, months)


async def _get_profile_or_404(user: User, db: AsyncSession) -> MusicianProfile:
    profile = await db.scalar(select(MusicianProfile).where(MusicianProfile.user_id == user.id))
    if not profile:
        raise HTTPException(status_code=404, detail="Musician profile not found. Create a profile first.")
    return profile


async def _get_subscription(profile: MusicianProfile, db: AsyncSession) -> Optional[Subscription]:
    return await db.scalar(
        select(Subscription).where(Subscription.musician_profile_id == profile.id)
    )


async def _check_payment(payment_id: Optional[UUID], user: User, db: AsyncSession) -> None:
    if payment_id is None:
        return
    payment = await db.scalar(
        select(Payment).where(Payment.id == payment_id, Payment.user_id == user.id)
    )
    if not payment:
        raise HTTPException(status_code=404, detail="Payment not found.")
    if payment.status != PaymentStatus.SUCCESSFUL:
        raise HTTPException(status_code=400, detail="Payment has not been verified.")
    linked = await db.scalar(select(Subscription.id).where(Subscription.payment_id == payment_id))
    if linked:
        raise HTTPException(status_code=400, detail="Payment already used for a subscription.")


async def _expire_if_lapsed(subscription: Subscription, now: datetime, db: AsyncSession) -> None:
    if subscription.status == SubscriptionStatus.ACTIVE and subscription.end_date <= now:
        subscription.status = SubscriptionStatus.EXPIRED
        await db.flush()
        logger.info(f"Subscription {subscription.id} expired")


def _detail(subscription: Subscription, now: datetime) -> dict:
    remaining = (subscription.end_date - now).total_seconds()
    data = SubscriptionResponse.model_validate(subscription).model_dump()
    data["is_expired"] = remaining <= 0
    data["days_remaining"] = max(0, math.ceil(remaining / 86400))
    return data


# ── Lifecycle ─────────────────────────────────────────────────

@router.post("", response_model=ApiResponse[SubscriptionResponse], status_code=status.HTTP_201_CREATED)
async def create_subscription(
    data: SubscriptionCreateRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_musician),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """Activate listing time starting now. Replaces a lapsed or cancelled row."""
    profile = await _get_profile_or_404(current_user, db)
    subscription = await _get_subscription(profile, db)
    now = utcnow()
    if subscription:
        await _expire_if_lapsed(subscription, now, db)
    if subscription and subscription.status == SubscriptionStatus.ACTIVE:
        raise HTTPException(status_code=400, detail="Active subscription already exists.")
    await _check_payment(data.payment_id, current_user, db)

    end_date = add_months(now, data.duration_months)
    if subscription is None:
        subscription = Subscription(musician_profile_id=profile.id)
        db.add(subscription)
    subscription.status = SubscriptionStatus.ACTIVE
    subscription.start_date = now
    subscription.end_date = end_date
    subscription.auto_renew = True
    subscription.payment_id = data.payment_id
    await db.flush()

    notification = await create_notification(
        db,
        user_id=current_user.id,
        title="Subscription Activated",
        message=f"Your subscription is now active until {end_date:%a %b %d %Y}",
        type=NotificationType.SUBSCRIPTION_ACTIVATED,
        metadata={"subscriptionId": str(subscription.id)},
    )
    await db.commit()
    push_notifications(background_tasks, redis, [notification])

    logger.info(f"Subscription {subscription.id} active until {end_date.isoformat()}")
    return ok(subscription, "Subscription created successfully.")


@router.get("/me", response_model=ApiResponse[SubscriptionDetailResponse])
async def get_my_subscription(
    current_user: User = Depends(require_musician),
    db: AsyncSession = Depends(get_db),
):
    profile = await _get_profile_or_404(current_user, db)
    subscription = await _get_subscription(profile, db)
    if not subscription:
        raise HTTPException(status_code=404, detail="No subscription found.")
    return ok(_detail(subscription, utcnow()), "Subscription retrieved successfully.")


@router.post("/renew", response_model=ApiResponse[SubscriptionResponse])
async def renew_subscription(
    data: SubscriptionRenewRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_musician),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """Extend without losing remaining paid time."""
    profile = await _get_profile_or_404(current_user, db)
    subscription = await _get_subscription(profile, db)
    if not subscription:
        raise HTTPException(status_code=404, detail="Subscription not found.")
    await _check_payment(data.payment_id, current_user, db)

    start, end = renewal_window(subscription.end_date, data.duration_months, utcnow())
    subscription.start_date = start
    subscription.end_date = end
    subscription.status = SubscriptionStatus.ACTIVE
    if data.payment_id:
        subscription.payment_id = data.payment_id

    notification = await create_notification(
        db,
        user_id=current_user.id,
        title="Subscription Renewed",
        message=f"Your subscription has been renewed until {end:%a %b %d %Y}",
        type=NotificationType.SUBSCRIPTION_RENEWED,
        metadata={"subscriptionId": str(subscription.id)},
    )
    await db.commit()
    push_notifications(background_tasks, redis, [notification])

    return ok(subscription, "Subscription renewed successfully.")


@router.patch("/cancel", response_model=ApiResponse[SubscriptionResponse])
async def cancel_subscription(
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_musician),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """Stops auto-renewal. The paid window is left as is."""
    profile = await _get_profile_or_404(current_user, db)
    subscription = await _get_subscription(profile, db)
    if not subscription:
        raise HTTPException(status_code=404, detail="Subscription not found.")

    subscription.status = SubscriptionStatus.CANCELLED
    subscription.auto_renew = False

    notification = await create_notification(
        db,
        user_id=current_user.id,
        title="Subscription Cancelled",
        message="Your subscription has been cancelled. It will remain active until the end date.",
        type=NotificationType.SUBSCRIPTION_CANCELLED,
        metadata={"subscriptionId": str(subscription.id)},
    )
    await db.commit()
    push_notifications(background_tasks, redis, [notification])

    return ok(subscription, "Subscription cancelled successfully.")


@router.get("/status", response_model=ApiResponse[SubscriptionStatusResponse])
async def check_subscription_status(
    current_user: User = Depends(require_musician),
    db: AsyncSession = Depends(get_db),
):
    """Reports whether the listing is live, expiring a lapsed ACTIVE row on the way."""
    profile = await _get_profile_or_404(current_user, db)
    subscription = await _get_subscription(profile, db)
    if not subscription:
        return ok(
            {"has_subscription": False, "is_active": False},
            "Subscription status checked.",
        )

    await _expire_if_lapsed(subscription, utcnow(), db)
    await db.commit()

    is_active = subscription.status == SubscriptionStatus.ACTIVE
    return ok(
        {
            "has_subscription": True,
            "is_active": is_active,
            "status": subscription.status,
            "end_date": subscription.end_date,
            "subscription": subscription,
        },
        "Subscription status checked.",
    )


# ── Admin ─────────────────────────────────────────────────────

@router.get("/all", response_model=ApiResponse[PaginatedResponse[SubscriptionResponse]])
async def list_subscriptions(
    status_filter: Optional[str] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    _: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    query = select(Subscription)
    if status_filter:
        try:
            query = query.where(Subscription.status == SubscriptionStatus(status_filter.upper()))
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid status: {status_filter}")

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(Subscription.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
    )
    return ok(
        paginated(result.scalars().all(), total or 0, page, page_size),
        "Subscriptions retrieved successfully.",
    )
