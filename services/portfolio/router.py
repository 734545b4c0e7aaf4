"""
services/portfolio/router.py
Musician portfolio: images, videos and audio shown on a profile.
Items point at media already hosted elsewhere; nothing is uploaded here.
"""

import logging
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from config.database import get_db
from shared.middleware.auth import require_musician
from shared.models.models import MusicianProfile, PortfolioItem, User
from shared.schemas.schemas import (
    ApiResponse,
    PortfolioItemCreate,
    PortfolioItemResponse,
    PortfolioItemUpdate,
)
from shared.utils.responses import ok

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/portfolio", tags=["Portfolio"])


# ── Helpers ───────────────────────────────────────────────────

async def _my_profile(user: User, db: AsyncSession) -> MusicianProfile:
    profile = await db.scalar(select(MusicianProfile).where(MusicianProfile.user_id == user.id))
    if not profile:
        raise HTTPException(status_code=404, detail="Musician profile not found. Create a profile first.")
    return profile


async def _items_for(profile_id: UUID, db: AsyncSession) -> List[PortfolioItem]:
    result = await db.execute(
        select(PortfolioItem)
        .where(PortfolioItem.musician_profile_id == profile_id)
        .order_by(PortfolioItem.created_at.desc())
    )
    return list(result.scalars().all())


async def _owned_item(item_id: UUID, profile: MusicianProfile, db: AsyncSession) -> PortfolioItem:
    item = await db.scalar(
        select(PortfolioItem).where(
            PortfolioItem.id == item_id,
            PortfolioItem.musician_profile_id == profile.id,
        )
    )
    if not item:
        raise HTTPException(status_code=404, detail="Portfolio item not found or unauthorized.")
    return item


# ── Reads ─────────────────────────────────────────────────────

@router.get("/me", response_model=ApiResponse[List[PortfolioItemResponse]])
async def list_my_portfolio(
    current_user: User = Depends(require_musician),
    db: AsyncSession = Depends(get_db),
):
    profile = await _my_profile(current_user, db)
    return ok(await _items_for(profile.id, db), "Portfolio items retrieved successfully.")


@router.get("/musician/{profile_id}", response_model=ApiResponse[List[PortfolioItemResponse]])
async def list_musician_portfolio(profile_id: UUID, db: AsyncSession = Depends(get_db)):
    """Newest first. An unknown profile simply has no items."""
    return ok(await _items_for(profile_id, db), "Portfolio items retrieved successfully.")


@router.get("/{item_id}", response_model=ApiResponse[PortfolioItemResponse])
async def get_portfolio_item(item_id: UUID, db: AsyncSession = Depends(get_db)):
    item = await db.scalar(
        select(PortfolioItem)
        .options(selectinload(PortfolioItem.musician_profile).selectinload(MusicianProfile.user))
        .where(PortfolioItem.id == item_id)
    )
    if not item:
        raise HTTPException(status_code=404, detail="Portfolio item not found.")

    data = PortfolioItemResponse.model_validate(item).model_dump()
    data["musician_name"] = item.musician_profile.user.full_name
    return ok(data, "Portfolio item retrieved successfully.")


# ── Writes ────────────────────────────────────────────────────

@router.post("", response_model=ApiResponse[PortfolioItemResponse], status_code=status.HTTP_201_CREATED)
async def create_portfolio_item(
    data: PortfolioItemCreate,
    current_user: User = Depends(require_musician),
    db: AsyncSession = Depends(get_db),
):
    profile = await _my_profile(current_user, db)
    item = PortfolioItem(musician_profile_id=profile.id, **data.model_dump())
    if item.thumbnail_url is None and data.file_type == "image":
        item.thumbnail_url = item.file_url
    db.add(item)
    await db.commit()

    logger.info(f"Portfolio item {item.id} ({data.file_type}) added to profile {profile.id}")
    return ok(item, "Portfolio item created successfully.")


@router.put("/{item_id}", response_model=ApiResponse[PortfolioItemResponse])
async def update_portfolio_item(
    item_id: UUID,
    data: PortfolioItemUpdate,
    current_user: User = Depends(require_musician),
    db: AsyncSession = Depends(get_db),
):
    profile = await _my_profile(current_user, db)
    item = await _owned_item(item_id, profile, db)

    for field, value in data.model_dump(exclude_none=True).items():
        setattr(item, field, value)
    await db.commit()
    return ok(item, "Portfolio item updated successfully.")


@router.delete("/{item_id}", response_model=ApiResponse[None])
async def delete_portfolio_item(
    item_id: UUID,
    current_user: User = Depends(require_musician),
    db: AsyncSession = Depends(get_db),
):
    profile = await _my_profile(current_user, db)
    item = await _owned_item(item_id, profile, db)

    await db.delete(item)
    await db.commit()
    logger.info(f"Portfolio item {item_id} removed from profile {profile.id}")
    return ok(None, "Portfolio item deleted successfully.")
