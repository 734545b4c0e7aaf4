"""
services/review/router.py
Rating and review management.
A musician's average_rating is always recomputed from the full set of
reviews on their bookings, never adjusted incrementally.
"""

import logging
from datetime import timedelta
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from config.database import get_db
from config.redis_client import get_redis
from config.settings import settings
from services.notification.dispatcher import create_notification, push_notifications
from shared.middleware.auth import get_current_user, require_client
from shared.models.models import (
    Booking,
    BookingStatus,
    MusicianProfile,
    NotificationType,
    Review,
    User,
    utcnow,
)
from shared.schemas.schemas import (
    ApiResponse,
    MusicianReviewsResponse,
    PaginatedResponse,
    ReviewCreateRequest,
    ReviewResponse,
    ReviewUpdateRequest,
)
from shared.utils.responses import ok, paginated

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reviews", tags=["Reviews"])


# ── Helpers ───────────────────────────────────────────────────

async def recompute_average_rating(musician_id: UUID, db: AsyncSession) -> float:
    """Re-derive average_rating from every review of the musician's bookings (0 when none)."""
    await db.flush()
    avg = await db.scalar(
        select(func.avg(Review.rating))
        .join(Booking, Booking.id == Review.booking_id)
        .where(Booking.musician_id == musician_id)
    )
    average = round(float(avg), 2) if avg is not None else 0.0
    await db.execute(
        update(MusicianProfile)
        .where(MusicianProfile.user_id == musician_id)
        .values(average_rating=average)
        .execution_options(synchronize_session=False)
    )
    return average


def _review_out(review: Review) -> dict:
    data = ReviewResponse.model_validate(review).model_dump()
    if review.reviewer is not None:
        data["reviewer_name"] = review.reviewer.full_name
    return data


async def _load_review(review_id: UUID, db: AsyncSession):
    result = await db.execute(
        select(Review)
        .options(selectinload(Review.reviewer), selectinload(Review.booking))
        .where(Review.id == review_id)
    )
    return result.scalar_one_or_none()


# ── Write Endpoints ───────────────────────────────────────────

@router.post("", response_model=ApiResponse[ReviewResponse], status_code=status.HTTP_201_CREATED)
async def create_review(
    data: ReviewCreateRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_client),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """
    Review a completed booking.
    - Only the booking's client can review
    - One review per booking
    """
    booking = await db.scalar(
        select(Booking).where(
            Booking.id == data.booking_id,
            Booking.client_id == current_user.id,
            Booking.status == BookingStatus.COMPLETED,
        )
    )
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found or not completed.")

    existing = await db.scalar(select(Review.id).where(Review.booking_id == booking.id))
    if existing:
        raise HTTPException(status_code=400, detail="Review already exists for this booking.")

    review = Review(
        booking_id=booking.id,
        reviewer_id=current_user.id,
        rating=data.rating,
        comment=data.comment,
    )
    db.add(review)
    await recompute_average_rating(booking.musician_id, db)

    notification = await create_notification(
        db,
        user_id=booking.musician_id,
        title="New Review",
        message=f"You received a {data.rating}-star review",
        type=NotificationType.REVIEW_RECEIVED,
        metadata={"reviewId": str(review.id), "bookingId": str(booking.id)},
    )
    await db.commit()
    push_notifications(background_tasks, redis, [notification])

    logger.info(f"Review {review.id} ({data.rating}*) created for booking {booking.id}")
    data_out = ReviewResponse.model_validate(review).model_dump()
    data_out["reviewer_name"] = current_user.full_name
    return ok(data_out, "Review created successfully.")


@router.put("/{review_id}", response_model=ApiResponse[ReviewResponse])
async def update_review(
    review_id: UUID,
    data: ReviewUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Author-only, within the edit window after creation."""
    review = await _load_review(review_id, db)
    if not review or review.reviewer_id != current_user.id:
        raise HTTPException(status_code=404, detail="Review not found or unauthorized.")

    window = timedelta(days=settings.REVIEW_EDIT_WINDOW_DAYS)
    if utcnow() - review.created_at > window:
        raise HTTPException(
            status_code=400,
            detail=f"Reviews can only be edited within {settings.REVIEW_EDIT_WINDOW_DAYS} days of creation.",
        )

    rating_changed = data.rating is not None and data.rating != review.rating
    if data.rating is not None:
        review.rating = data.rating
    if data.comment is not None:
        review.comment = data.comment

    if rating_changed:
        await recompute_average_rating(review.booking.musician_id, db)
    await db.commit()

    return ok(_review_out(review), "Review updated successfully.")


@router.delete("/{review_id}", response_model=ApiResponse[None])
async def delete_review(
    review_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    review = await _load_review(review_id, db)
    if not review or review.reviewer_id != current_user.id:
        raise HTTPException(status_code=404, detail="Review not found or unauthorized.")

    musician_id = review.booking.musician_id
    await db.delete(review)
    await recompute_average_rating(musician_id, db)
    await db.commit()

    return ok(None, "Review deleted successfully.")


# ── Read Endpoints ────────────────────────────────────────────

@router.get("/me", response_model=ApiResponse[PaginatedResponse[ReviewResponse]])
async def list_my_reviews(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Reviews the caller wrote."""
    where = Review.reviewer_id == current_user.id
    total = await db.scalar(select(func.count(Review.id)).where(where))
    result = await db.execute(
        select(Review)
        .options(selectinload(Review.reviewer))
        .where(where)
        .order_by(Review.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    items = [_review_out(r) for r in result.scalars().all()]
    return ok(paginated(items, total or 0, page, page_size), "Your reviews retrieved successfully.")


@router.get("/musician/{musician_id}", response_model=ApiResponse[MusicianReviewsResponse])
async def list_musician_reviews(
    musician_id: UUID,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """Public review feed for a musician, with a per-star breakdown."""
    base = (
        select(Review)
        .join(Booking, Booking.id == Review.booking_id)
        .where(Booking.musician_id == musician_id)
    )
    total = await db.scalar(select(func.count()).select_from(base.subquery()))
    result = await db.execute(
        base.options(selectinload(Review.reviewer))
        .order_by(Review.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    items = [_review_out(r) for r in result.scalars().all()]

    dist_rows = await db.execute(
        select(Review.rating, func.count(Review.id))
        .join(Booking, Booking.id == Review.booking_id)
        .where(Booking.musician_id == musician_id)
        .group_by(Review.rating)
    )
    distribution = {star: 0 for star in range(1, 6)}
    for rating, count in dist_rows.all():
        distribution[int(rating)] = count

    average = await db.scalar(
        select(MusicianProfile.average_rating).where(MusicianProfile.user_id == musician_id)
    )
    return ok(
        paginated(
            items,
            total or 0,
            page,
            page_size,
            average_rating=average or 0.0,
            rating_distribution=distribution,
        ),
        "Reviews retrieved successfully.",
    )


@router.get("/{review_id}", response_model=ApiResponse[ReviewResponse])
async def get_review(
    review_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    review = await _load_review(review_id, db)
    if not review:
        raise HTTPException(status_code=404, detail="Review not found.")
    return ok(_review_out(review), "Review retrieved successfully.")
