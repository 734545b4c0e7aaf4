"""
services/booking/router.py
Booking lifecycle between a client and a musician.
States: PENDING → ACCEPTED → COMPLETED
        PENDING → REJECTED
        PENDING | ACCEPTED → CANCELLED

Every transition is a single conditional UPDATE guarded by booking id,
the acting party and the allowed source states. A missing booking, the
wrong caller and the wrong state all answer with the same 404, so a
caller cannot learn which bookings exist outside their own. Of two racing
callers exactly one update matches; the other gets that 404 too.
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from config.database import get_db
from config.redis_client import get_redis
from services.notification.dispatcher import create_notification, push_notifications
from shared.middleware.auth import get_current_user, require_client, require_musician
from shared.models.models import (
    Booking,
    BookingStatus,
    Instrument,
    MusicianProfile,
    NotificationType,
    User,
    UserRole,
)
from shared.schemas.schemas import (
    ApiResponse,
    BookingAcceptRequest,
    BookingCreateRequest,
    BookingResponse,
    PaginatedResponse,
)
from shared.utils.responses import ok, paginated

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["Bookings"])


# ── Helpers ───────────────────────────────────────────────────

async def _load_booking(booking_id: UUID, db: AsyncSession) -> Optional[Booking]:
    result = await db.execute(
        select(Booking)
        .options(selectinload(Booking.instruments))
        .where(Booking.id == booking_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _transition(
    db: AsyncSession,
    booking_id: UUID,
    party_clause,
    from_statuses: tuple[BookingStatus, ...],
    not_found_detail: str,
    **values,
) -> Booking:
    """Apply a guarded status change or raise the generic 404."""
    result = await db.execute(
        update(Booking)
        .where(
            Booking.id == booking_id,
            party_clause,
            Booking.status.in_(from_statuses),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=not_found_detail)
    return await _load_booking(booking_id, db)


def _either_party(user: User):
    return or_(Booking.client_id == user.id, Booking.musician_id == user.id)


def _counterparty(booking: Booking, user: User) -> UUID:
    return booking.musician_id if booking.client_id == user.id else booking.client_id


def _status_or_400(value: Optional[str]) -> Optional[BookingStatus]:
    if value is None:
        return None
    try:
        return BookingStatus(value.upper())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid status: {value}")


async def _page(query, page: int, page_size: int, db: AsyncSession) -> dict:
    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.options(selectinload(Booking.instruments))
        .order_by(Booking.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return paginated(result.scalars().all(), total or 0, page, page_size)


# ── Create ────────────────────────────────────────────────────

@router.post("", response_model=ApiResponse[BookingResponse], status_code=status.HTTP_201_CREATED)
async def create_booking(
    data: BookingCreateRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_client),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """Client requests a musician for an event. Starts in PENDING."""
    result = await db.execute(
        select(User)
        .options(selectinload(User.musician_profile))
        .where(User.id == data.musician_id)
    )
    musician = result.scalar_one_or_none()
    if not musician or musician.role != UserRole.MUSICIAN:
        raise HTTPException(status_code=400, detail="Invalid musician ID.")
    if not musician.musician_profile or not musician.musician_profile.is_available:
        raise HTTPException(status_code=400, detail="Musician is not available.")

    instruments = []
    if data.instrument_ids:
        found = await db.execute(select(Instrument).where(Instrument.id.in_(data.instrument_ids)))
        instruments = list(found.scalars().all())
        if len(instruments) != len(set(data.instrument_ids)):
            raise HTTPException(status_code=400, detail="One or more instruments do not exist.")

    booking = Booking(
        client_id=current_user.id,
        musician_id=musician.id,
        event_name=data.event_name,
        event_date=data.event_date,
        event_time=data.event_time,
        duration=data.duration,
        venue=data.venue,
        address=data.address,
        city=data.city,
        state=data.state,
        latitude=data.latitude,
        longitude=data.longitude,
        description=data.description,
        offered_rate=data.offered_rate,
        agreed_rate=None,
        status=BookingStatus.PENDING,
        instruments=instruments,
    )
    db.add(booking)
    await db.flush()

    notification = await create_notification(
        db,
        user_id=musician.id,
        title="New Booking Request",
        message=f"You have a new booking request for {booking.event_name}",
        type=NotificationType.BOOKING_REQUEST,
        metadata={"bookingId": str(booking.id)},
    )
    await db.commit()
    push_notifications(background_tasks, redis, [notification])

    logger.info(f"Booking {booking.id} created by client {current_user.id} for musician {musician.id}")
    return ok(booking, "Booking created successfully.")


# ── Transitions ───────────────────────────────────────────────

@router.patch("/{booking_id}/accept", response_model=ApiResponse[BookingResponse])
async def accept_booking(
    booking_id: UUID,
    background_tasks: BackgroundTasks,
    data: Optional[BookingAcceptRequest] = None,
    current_user: User = Depends(require_musician),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """Musician accepts. agreed_rate defaults to the offered rate."""
    # agreed_rate falls back to offered_rate inside the UPDATE itself
    agreed_rate = data.agreed_rate if data and data.agreed_rate is not None else Booking.offered_rate
    booking = await _transition(
        db,
        booking_id,
        Booking.musician_id == current_user.id,
        (BookingStatus.PENDING,),
        "Booking not found or already processed.",
        status=BookingStatus.ACCEPTED,
        agreed_rate=agreed_rate,
    )

    notification = await create_notification(
        db,
        user_id=booking.client_id,
        title="Booking Accepted",
        message=f"Your booking for {booking.event_name} has been accepted",
        type=NotificationType.BOOKING_ACCEPTED,
        metadata={"bookingId": str(booking.id)},
    )
    await db.commit()
    push_notifications(background_tasks, redis, [notification])

    logger.info(f"Booking {booking.id} accepted at {booking.agreed_rate}")
    return ok(booking, "Booking accepted successfully.")


@router.patch("/{booking_id}/reject", response_model=ApiResponse[BookingResponse])
async def reject_booking(
    booking_id: UUID,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_musician),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    booking = await _transition(
        db,
        booking_id,
        Booking.musician_id == current_user.id,
        (BookingStatus.PENDING,),
        "Booking not found or already processed.",
        status=BookingStatus.REJECTED,
    )

    notification = await create_notification(
        db,
        user_id=booking.client_id,
        title="Booking Rejected",
        message=f"Your booking for {booking.event_name} has been rejected",
        type=NotificationType.BOOKING_REJECTED,
        metadata={"bookingId": str(booking.id)},
    )
    await db.commit()
    push_notifications(background_tasks, redis, [notification])

    return ok(booking, "Booking rejected successfully.")


@router.patch("/{booking_id}/cancel", response_model=ApiResponse[BookingResponse])
async def cancel_booking(
    booking_id: UUID,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """Either party cancels while the booking is PENDING or ACCEPTED."""
    booking = await _transition(
        db,
        booking_id,
        _either_party(current_user),
        (BookingStatus.PENDING, BookingStatus.ACCEPTED),
        "Booking not found or cannot be cancelled.",
        status=BookingStatus.CANCELLED,
    )

    notification = await create_notification(
        db,
        user_id=_counterparty(booking, current_user),
        title="Booking Cancelled",
        message=f"The booking for {booking.event_name} has been cancelled",
        type=NotificationType.BOOKING_CANCELLED,
        metadata={"bookingId": str(booking.id)},
    )
    await db.commit()
    push_notifications(background_tasks, redis, [notification])

    logger.info(f"Booking {booking.id} cancelled by user {current_user.id}")
    return ok(booking, "Booking cancelled successfully.")


@router.patch("/{booking_id}/complete", response_model=ApiResponse[BookingResponse])
async def complete_booking(
    booking_id: UUID,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """Either party marks an ACCEPTED booking as done. Counts one gig for the musician."""
    booking = await _transition(
        db,
        booking_id,
        _either_party(current_user),
        (BookingStatus.ACCEPTED,),
        "Booking not found or cannot be completed.",
        status=BookingStatus.COMPLETED,
    )

    await db.execute(
        update(MusicianProfile)
        .where(MusicianProfile.user_id == booking.musician_id)
        .values(total_gigs=MusicianProfile.total_gigs + 1)
        .execution_options(synchronize_session=False)
    )

    notification = await create_notification(
        db,
        user_id=_counterparty(booking, current_user),
        title="Booking Completed",
        message=f"The booking for {booking.event_name} has been marked as completed",
        type=NotificationType.BOOKING_COMPLETED,
        metadata={"bookingId": str(booking.id)},
    )
    await db.commit()
    push_notifications(background_tasks, redis, [notification])

    return ok(booking, "Booking completed successfully.")


# ── Read Endpoints ────────────────────────────────────────────

@router.get("", response_model=ApiResponse[PaginatedResponse[BookingResponse]])
async def list_my_bookings(
    status_filter: Optional[str] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=50),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Bookings where the caller is either the client or the musician."""
    query = select(Booking).where(_either_party(current_user))
    booking_status = _status_or_400(status_filter)
    if booking_status:
        query = query.where(Booking.status == booking_status)
    return ok(await _page(query, page, page_size, db), "Bookings retrieved successfully.")


@router.get("/client", response_model=ApiResponse[PaginatedResponse[BookingResponse]])
async def list_client_bookings(
    status_filter: Optional[str] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=50),
    current_user: User = Depends(require_client),
    db: AsyncSession = Depends(get_db),
):
    query = select(Booking).where(Booking.client_id == current_user.id)
    booking_status = _status_or_400(status_filter)
    if booking_status:
        query = query.where(Booking.status == booking_status)
    return ok(await _page(query, page, page_size, db), "Client bookings retrieved successfully.")


@router.get("/musician", response_model=ApiResponse[PaginatedResponse[BookingResponse]])
async def list_musician_bookings(
    status_filter: Optional[str] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=50),
    current_user: User = Depends(require_musician),
    db: AsyncSession = Depends(get_db),
):
    query = select(Booking).where(Booking.musician_id == current_user.id)
    booking_status = _status_or_400(status_filter)
    if booking_status:
        query = query.where(Booking.status == booking_status)
    return ok(await _page(query, page, page_size, db), "Musician bookings retrieved successfully.")


@router.get("/pending", response_model=ApiResponse[PaginatedResponse[BookingResponse]])
async def list_pending_requests(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=50),
    current_user: User = Depends(require_musician),
    db: AsyncSession = Depends(get_db),
):
    """Requests still waiting for this musician's answer."""
    query = select(Booking).where(
        Booking.musician_id == current_user.id,
        Booking.status == BookingStatus.PENDING,
    )
    return ok(await _page(query, page, page_size, db), "Pending bookings retrieved successfully.")


@router.get("/{booking_id}", response_model=ApiResponse[BookingResponse])
async def get_booking(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Visible to the two parties only."""
    booking = await _load_booking(booking_id, db)
    if not booking or current_user.id not in (booking.client_id, booking.musician_id):
        raise HTTPException(status_code=404, detail="Booking not found.")
    return ok(booking, "Booking retrieved successfully.")
