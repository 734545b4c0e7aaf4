"""
services/musician/router.py
Musician profiles: create/update own profile, availability toggle,
public profile view, search and proximity lookup, earnings stats.

Search and nearby only surface musicians who are available and hold an
ACTIVE subscription that has not run past its end date.
"""

import logging
import math
from decimal import Decimal
from typing import Iterable, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from config.database import get_db
from config.settings import settings
from shared.middleware.auth import require_musician
from shared.models.models import (
    Booking,
    BookingStatus,
    Genre,
    Instrument,
    MusicianProfile,
    Review,
    Subscription,
    SubscriptionStatus,
    User,
    musician_genres,
    musician_instruments,
    utcnow,
)
from shared.schemas.schemas import (
    ApiResponse,
    MusicianProfileCreate,
    MusicianProfileResponse,
    MusicianProfileUpdate,
    MusicianStatsResponse,
    PaginatedResponse,
)
from shared.utils.responses import ok, paginated

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/musicians", tags=["Musicians"])

EARTH_RADIUS_KM = 6371.0


# ── Helpers ───────────────────────────────────────────────────

def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two points in kilometres."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def _profile_query():
    return select(MusicianProfile).options(
        selectinload(MusicianProfile.user),
        selectinload(MusicianProfile.instruments),
        selectinload(MusicianProfile.genres),
    )


def _searchable():
    """Available musicians whose subscription is ACTIVE and still running."""
    return (
        _profile_query()
        .join(Subscription, Subscription.musician_profile_id == MusicianProfile.id)
        .where(
            MusicianProfile.is_available == True,  # noqa: E712
            Subscription.status == SubscriptionStatus.ACTIVE,
            Subscription.end_date > utcnow(),
        )
    )


def _profile_out(profile: MusicianProfile, distance_km: Optional[float] = None) -> dict:
    data = MusicianProfileResponse.model_validate(profile).model_dump()
    if profile.user is not None:
        data.update(
            first_name=profile.user.first_name,
            last_name=profile.user.last_name,
            profile_image=profile.user.profile_image,
            is_verified=profile.user.is_verified,
        )
    if distance_km is not None:
        data["distance_km"] = distance_km
    return data


async def _load_own_profile(user: User, db: AsyncSession) -> MusicianProfile:
    result = await db.execute(
        _profile_query()
        .where(MusicianProfile.user_id == user.id)
        .execution_options(populate_existing=True)
    )
    profile = result.scalar_one_or_none()
    if not profile:
        raise HTTPException(status_code=404, detail="Musician profile not found.")
    return profile


async def _fetch_all(model, ids: Iterable[UUID], label: str, db: AsyncSession) -> list:
    """Resolve catalog ids, rejecting the request if any are unknown."""
    wanted = set(ids)
    if not wanted:
        return []
    result = await db.execute(select(model).where(model.id.in_(wanted)))
    rows = list(result.scalars().all())
    if len(rows) != len(wanted):
        raise HTTPException(status_code=400, detail=f"One or more {label} do not exist.")
    return rows


# ── Own Profile ───────────────────────────────────────────────

@router.post("", response_model=ApiResponse[MusicianProfileResponse], status_code=status.HTTP_201_CREATED)
async def create_profile(
    data: MusicianProfileCreate,
    current_user: User = Depends(require_musician),
    db: AsyncSession = Depends(get_db),
):
    """One profile per musician account."""
    existing = await db.scalar(select(MusicianProfile.id).where(MusicianProfile.user_id == current_user.id))
    if existing:
        raise HTTPException(status_code=400, detail="Musician profile already exists.")

    instruments = await _fetch_all(Instrument, data.instrument_ids, "instruments", db)
    genres = await _fetch_all(Genre, data.genre_ids, "genres", db)

    profile = MusicianProfile(
        user_id=current_user.id,
        **data.model_dump(exclude={"instrument_ids", "genre_ids"}),
        instruments=instruments,
        genres=genres,
    )
    db.add(profile)
    await db.commit()

    logger.info(f"Musician profile {profile.id} created for user {current_user.id}")
    profile = await _load_own_profile(current_user, db)
    return ok(_profile_out(profile), "Musician profile created successfully.")


@router.get("/me", response_model=ApiResponse[MusicianProfileResponse])
async def get_my_profile(
    current_user: User = Depends(require_musician),
    db: AsyncSession = Depends(get_db),
):
    profile = await _load_own_profile(current_user, db)
    return ok(_profile_out(profile), "Musician profile retrieved successfully.")


@router.put("/me", response_model=ApiResponse[MusicianProfileResponse])
async def update_my_profile(
    data: MusicianProfileUpdate,
    current_user: User = Depends(require_musician),
    db: AsyncSession = Depends(get_db),
):
    """
    Partial update. instrument_ids / genre_ids, when given, replace the
    whole set; an empty list clears it.
    """
    profile = await _load_own_profile(current_user, db)

    for field, value in data.model_dump(exclude_none=True, exclude={"instrument_ids", "genre_ids"}).items():
        setattr(profile, field, value)
    if data.instrument_ids is not None:
        profile.instruments = await _fetch_all(Instrument, data.instrument_ids, "instruments", db)
    if data.genre_ids is not None:
        profile.genres = await _fetch_all(Genre, data.genre_ids, "genres", db)

    await db.commit()
    profile = await _load_own_profile(current_user, db)
    return ok(_profile_out(profile), "Musician profile updated successfully.")


@router.patch("/me/availability", response_model=ApiResponse[MusicianProfileResponse])
async def toggle_availability(
    current_user: User = Depends(require_musician),
    db: AsyncSession = Depends(get_db),
):
    """Flip is_available; unavailable musicians drop out of search."""
    profile = await _load_own_profile(current_user, db)
    profile.is_available = not profile.is_available
    await db.commit()
    return ok(_profile_out(profile), "Availability updated successfully.")


@router.get("/me/stats", response_model=ApiResponse[MusicianStatsResponse])
async def get_my_stats(
    current_user: User = Depends(require_musician),
    db: AsyncSession = Depends(get_db),
):
    profile = await db.scalar(select(MusicianProfile).where(MusicianProfile.user_id == current_user.id))
    if not profile:
        raise HTTPException(status_code=404, detail="Musician profile not found.")

    mine = Booking.musician_id == current_user.id
    earnings = await db.scalar(
        select(func.coalesce(func.sum(Booking.agreed_rate), 0))
        .where(mine, Booking.status == BookingStatus.COMPLETED)
    )
    pending = await db.scalar(
        select(func.count(Booking.id)).where(mine, Booking.status == BookingStatus.PENDING)
    )
    completed = await db.scalar(
        select(func.count(Booking.id)).where(mine, Booking.status == BookingStatus.COMPLETED)
    )
    reviews = await db.scalar(
        select(func.count(Review.id)).join(Booking, Booking.id == Review.booking_id).where(mine)
    )

    return ok(
        {
            "total_gigs": profile.total_gigs,
            "average_rating": profile.average_rating,
            "total_earnings": Decimal(str(earnings or 0)),
            "pending_bookings": pending or 0,
            "completed_bookings": completed or 0,
            "total_reviews": reviews or 0,
        },
        "Stats retrieved successfully.",
    )


# ── Discovery ─────────────────────────────────────────────────

@router.get("/search", response_model=ApiResponse[PaginatedResponse[MusicianProfileResponse]])
async def search_musicians(
    city: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    instrument_id: Optional[UUID] = Query(None),
    genre_id: Optional[UUID] = Query(None),
    min_rating: Optional[float] = Query(None, ge=0, le=5),
    max_rate: Optional[Decimal] = Query(None, ge=0),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """Filtered listing, best rated first."""
    query = _searchable()
    if city:
        query = query.where(MusicianProfile.city.ilike(f"%{city}%"))
    if state:
        query = query.where(MusicianProfile.state.ilike(f"%{state}%"))
    if instrument_id:
        query = query.where(
            MusicianProfile.id.in_(
                select(musician_instruments.c.musician_profile_id)
                .where(musician_instruments.c.instrument_id == instrument_id)
            )
        )
    if genre_id:
        query = query.where(
            MusicianProfile.id.in_(
                select(musician_genres.c.musician_profile_id)
                .where(musician_genres.c.genre_id == genre_id)
            )
        )
    if min_rating is not None:
        query = query.where(MusicianProfile.average_rating >= min_rating)
    if max_rate is not None:
        query = query.where(MusicianProfile.hourly_rate <= max_rate)

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(MusicianProfile.average_rating.desc(), MusicianProfile.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    items = [_profile_out(p) for p in result.scalars().all()]
    return ok(paginated(items, total or 0, page, page_size), "Musicians retrieved successfully.")


@router.get("/nearby", response_model=ApiResponse[List[MusicianProfileResponse]])
async def nearby_musicians(
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    radius_km: float = Query(settings.MUSICIAN_NEARBY_DEFAULT_RADIUS_KM, gt=0, le=1000),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """Musicians with a known location inside radius_km, closest first."""
    result = await db.execute(
        _searchable().where(
            MusicianProfile.latitude.is_not(None),
            MusicianProfile.longitude.is_not(None),
        )
    )
    found = []
    for profile in result.scalars().all():
        distance = round(haversine_km(lat, lng, profile.latitude, profile.longitude), 1)
        if distance <= radius_km:
            found.append((distance, profile))
    found.sort(key=lambda pair: pair[0])

    return ok(
        [_profile_out(profile, distance) for distance, profile in found[:limit]],
        "Nearby musicians retrieved successfully.",
    )


@router.get("/{profile_id}", response_model=ApiResponse[MusicianProfileResponse])
async def get_profile(profile_id: UUID, db: AsyncSession = Depends(get_db)):
    """Public profile by profile id."""
    result = await db.execute(_profile_query().where(MusicianProfile.id == profile_id))
    profile = result.scalar_one_or_none()
    if not profile:
        raise HTTPException(status_code=404, detail="Musician profile not found.")
    return ok(_profile_out(profile), "Musician profile retrieved successfully.")
