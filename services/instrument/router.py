"""
services/instrument/router.py
Instrument catalog. Reads are public; writes are ADMIN only.
"""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.middleware.auth import require_admin
from shared.models.models import (
    Instrument,
    InstrumentCategory,
    User,
    booking_instruments,
    musician_instruments,
)
from shared.schemas.schemas import (
    ApiResponse,
    InstrumentCreate,
    InstrumentResponse,
    InstrumentUpdate,
    PaginatedResponse,
)
from shared.utils.responses import ok, paginated

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/instruments", tags=["Instruments"])


async def _get_or_404(instrument_id: UUID, db: AsyncSession) -> Instrument:
    instrument = await db.get(Instrument, instrument_id)
    if not instrument:
        raise HTTPException(status_code=404, detail="Instrument not found.")
    return instrument


async def _name_taken(name: str, db: AsyncSession, exclude_id: Optional[UUID] = None) -> bool:
    query = select(Instrument.id).where(func.lower(Instrument.name) == name.lower())
    if exclude_id:
        query = query.where(Instrument.id != exclude_id)
    return await db.scalar(query) is not None


# ── Public ────────────────────────────────────────────────────

@router.get("", response_model=ApiResponse[PaginatedResponse[InstrumentResponse]])
async def list_instruments(
    category: Optional[InstrumentCategory] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
):
    query = select(Instrument)
    if category:
        query = query.where(Instrument.category == category)

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(Instrument.name.asc()).offset((page - 1) * page_size).limit(page_size)
    )
    return ok(
        paginated(result.scalars().all(), total or 0, page, page_size),
        "Instruments retrieved successfully.",
    )


@router.get("/categories", response_model=ApiResponse[List[str]])
async def list_categories():
    return ok([c.value for c in InstrumentCategory], "Instrument categories retrieved successfully.")


@router.get("/{instrument_id}", response_model=ApiResponse[InstrumentResponse])
async def get_instrument(instrument_id: UUID, db: AsyncSession = Depends(get_db)):
    return ok(await _get_or_404(instrument_id, db), "Instrument retrieved successfully.")


# ── Admin ─────────────────────────────────────────────────────

@router.post("", response_model=ApiResponse[InstrumentResponse], status_code=status.HTTP_201_CREATED)
async def create_instrument(
    data: InstrumentCreate,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    if await _name_taken(data.name, db):
        raise HTTPException(status_code=409, detail="Instrument already exists.")

    instrument = Instrument(**data.model_dump())
    db.add(instrument)
    await db.commit()
    logger.info(f"Admin {current_user.id} created instrument '{instrument.name}'")
    return ok(instrument, "Instrument created successfully.")


@router.put("/{instrument_id}", response_model=ApiResponse[InstrumentResponse])
async def update_instrument(
    instrument_id: UUID,
    data: InstrumentUpdate,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    instrument = await _get_or_404(instrument_id, db)
    updates = data.model_dump(exclude_none=True)
    if "name" in updates and await _name_taken(updates["name"], db, exclude_id=instrument.id):
        raise HTTPException(status_code=409, detail="Instrument name already exists.")

    for field, value in updates.items():
        setattr(instrument, field, value)
    await db.commit()
    return ok(instrument, "Instrument updated successfully.")


@router.delete("/{instrument_id}", response_model=ApiResponse[None])
async def delete_instrument(
    instrument_id: UUID,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Refused while any musician profile or booking references the instrument."""
    instrument = await _get_or_404(instrument_id, db)

    in_profiles = await db.scalar(
        select(func.count()).select_from(musician_instruments)
        .where(musician_instruments.c.instrument_id == instrument.id)
    )
    in_bookings = await db.scalar(
        select(func.count()).select_from(booking_instruments)
        .where(booking_instruments.c.instrument_id == instrument.id)
    )
    if in_profiles or in_bookings:
        raise HTTPException(
            status_code=400,
            detail="Cannot delete instrument that is in use by musicians or bookings.",
        )

    await db.delete(instrument)
    await db.commit()
    return ok(None, "Instrument deleted successfully.")
