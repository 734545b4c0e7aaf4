"""
services/admin/router.py
Admin-only endpoints: platform dashboard, user moderation, musician
verification, booking disputes and the revenue report.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from config.database import get_db
from config.redis_client import get_redis
from services.notification.dispatcher import create_notification, push_notifications
from shared.middleware.auth import require_admin
from shared.models.models import (
    Booking,
    BookingStatus,
    NotificationType,
    Payment,
    PaymentStatus,
    Subscription,
    SubscriptionStatus,
    User,
    UserRole,
)
from shared.schemas.schemas import (
    AdminDashboardResponse,
    ApiResponse,
    BookingResponse,
    PaginatedResponse,
    RevenueReport,
    UserResponse,
)
from shared.utils.responses import ok, paginated

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])


# ── Helpers ────────────────────────────────────────────────────────────────────

async def _count(db: AsyncSession, model, *where) -> int:
    return await db.scalar(select(func.count()).select_from(model).where(*where)) or 0


async def _get_user_or_404(user_id: UUID, db: AsyncSession, *where, detail: str = "User not found.") -> User:
    user = await db.scalar(select(User).where(User.id == user_id, *where))
    if not user:
        raise HTTPException(status_code=404, detail=detail)
    return user


async def _page(query, page: int, page_size: int, db: AsyncSession) -> tuple[list, int]:
    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(query.offset((page - 1) * page_size).limit(page_size))
    return list(result.scalars().all()), total or 0


# ── Dashboard ──────────────────────────────────────────────────────────────────

@router.get("/dashboard", response_model=ApiResponse[AdminDashboardResponse])
async def get_dashboard(
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Platform-wide counters plus the five most recent bookings."""
    total_revenue = await db.scalar(
        select(func.coalesce(func.sum(Payment.amount), 0)).where(Payment.status == PaymentStatus.SUCCESSFUL)
    )
    recent = await db.execute(
        select(Booking)
        .options(selectinload(Booking.instruments))
        .order_by(Booking.created_at.desc())
        .limit(5)
    )

    return ok(
        {
            "total_users": await _count(db, User),
            "total_clients": await _count(db, User, User.role == UserRole.CLIENT),
            "total_musicians": await _count(db, User, User.role == UserRole.MUSICIAN),
            "total_bookings": await _count(db, Booking),
            "pending_bookings": await _count(db, Booking, Booking.status == BookingStatus.PENDING),
            "completed_bookings": await _count(db, Booking, Booking.status == BookingStatus.COMPLETED),
            "active_subscriptions": await _count(
                db, Subscription, Subscription.status == SubscriptionStatus.ACTIVE
            ),
            "total_revenue": Decimal(str(total_revenue or 0)),
            "recent_bookings": list(recent.scalars().all()),
        },
        "Dashboard stats retrieved successfully.",
    )


# ── User Moderation ────────────────────────────────────────────────────────────

@router.get("/users", response_model=ApiResponse[PaginatedResponse[UserResponse]])
async def list_users(
    role: Optional[UserRole] = Query(None),
    is_active: Optional[bool] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    query = select(User).order_by(User.created_at.desc())
    if role:
        query = query.where(User.role == role)
    if is_active is not None:
        query = query.where(User.is_active == is_active)

    users, total = await _page(query, page, page_size, db)
    return ok(paginated(users, total, page, page_size), "Users retrieved successfully.")


@router.patch("/users/{user_id}/status", response_model=ApiResponse[UserResponse])
async def toggle_user_status(
    user_id: UUID,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """Flip is_active. Admin accounts cannot be deactivated this way."""
    user = await _get_user_or_404(user_id, db)
    if user.role == UserRole.ADMIN:
        raise HTTPException(status_code=403, detail="Cannot change the status of admin users.")

    user.is_active = not user.is_active
    notification = await create_notification(
        db,
        user_id=user.id,
        title="Account Activated" if user.is_active else "Account Deactivated",
        message=(
            "Your account has been activated by an administrator."
            if user.is_active
            else "Your account has been deactivated. Please contact support."
        ),
        type=NotificationType.ACCOUNT_STATUS,
    )
    await db.commit()
    push_notifications(background_tasks, redis, [notification])

    state = "activated" if user.is_active else "deactivated"
    logger.info(f"Admin {current_user.id} {state} user {user.id}")
    return ok(user, f"User {state} successfully.")


@router.delete("/users/{user_id}", response_model=ApiResponse[None])
async def delete_user(
    user_id: UUID,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Hard delete. Profile, subscription, bookings and notifications cascade."""
    user = await _get_user_or_404(user_id, db)
    if user.id == current_user.id:
        raise HTTPException(status_code=400, detail="Admins cannot delete their own account here.")

    await db.execute(delete(User).where(User.id == user.id).execution_options(synchronize_session=False))
    await db.commit()
    logger.info(f"Admin {current_user.id} deleted user {user_id}")
    return ok(None, "User deleted successfully.")


# ── Musician Verification ──────────────────────────────────────────────────────

@router.patch("/musicians/{user_id}/verify", response_model=ApiResponse[UserResponse])
async def verify_musician(
    user_id: UUID,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    user = await _get_user_or_404(user_id, db, User.role == UserRole.MUSICIAN, detail="Musician not found.")

    user.is_verified = True
    notification = await create_notification(
        db,
        user_id=user.id,
        title="Profile Verified",
        message="Congratulations! Your musician profile has been verified.",
        type=NotificationType.ACCOUNT_VERIFIED,
    )
    await db.commit()
    push_notifications(background_tasks, redis, [notification])

    return ok(user, "Musician verified successfully.")


@router.get("/musicians/unverified", response_model=ApiResponse[PaginatedResponse[UserResponse]])
async def list_unverified_musicians(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    query = (
        select(User)
        .where(User.role == UserRole.MUSICIAN, User.is_verified == False)  # noqa: E712
        .order_by(User.created_at.desc())
    )
    users, total = await _page(query, page, page_size, db)
    return ok(paginated(users, total, page, page_size), "Unverified musicians retrieved successfully.")


# ── Booking Oversight ──────────────────────────────────────────────────────────

@router.get("/bookings/disputes", response_model=ApiResponse[PaginatedResponse[BookingResponse]])
async def list_booking_disputes(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Cancelled and rejected bookings, most recently changed first."""
    query = (
        select(Booking)
        .options(selectinload(Booking.instruments))
        .where(Booking.status.in_((BookingStatus.CANCELLED, BookingStatus.REJECTED)))
        .order_by(Booking.updated_at.desc())
    )
    bookings, total = await _page(query, page, page_size, db)
    return ok(paginated(bookings, total, page, page_size), "Booking disputes retrieved successfully.")


# ── Revenue ────────────────────────────────────────────────────────────────────

@router.get("/revenue", response_model=ApiResponse[RevenueReport])
async def get_revenue_report(
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """
    Successful payments in the window, split into booking payments,
    subscription payments (metadata type "subscription") and the rest.
    """
    query = select(Payment).where(Payment.status == PaymentStatus.SUCCESSFUL)
    if start_date:
        query = query.where(Payment.created_at >= start_date)
    if end_date:
        query = query.where(Payment.created_at <= end_date)
    payments: List[Payment] = list((await db.execute(query)).scalars().all())

    booking_total = subscription_total = other_total = Decimal("0")
    for payment in payments:
        amount = Decimal(str(payment.amount))
        if payment.booking_id is not None:
            booking_total += amount
        elif (payment.payment_metadata or {}).get("type") == "subscription":
            subscription_total += amount
        else:
            other_total += amount

    return ok(
        {
            "total_revenue": booking_total + subscription_total + other_total,
            "booking_revenue": booking_total,
            "subscription_revenue": subscription_total,
            "other_revenue": other_total,
            "transaction_count": len(payments),
            "start_date": start_date,
            "end_date": end_date,
        },
        "Revenue report retrieved successfully.",
    )
