"""
services/genre/router.py
Music genre catalog. Reads are public; writes are ADMIN only.
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from shared.middleware.auth import require_admin
from shared.models.models import Genre, User, musician_genres
from shared.schemas.schemas import ApiResponse, GenreCreate, GenreResponse, GenreUpdate
from shared.utils.responses import ok

router = APIRouter(prefix="/genres", tags=["Genres"])

GENRES_CACHE_KEY = "catalog:genres"


async def _get_or_404(genre_id: UUID, db: AsyncSession) -> Genre:
    genre = await db.get(Genre, genre_id)
    if not genre:
        raise HTTPException(status_code=404, detail="Genre not found.")
    return genre


async def _name_taken(name: str, db: AsyncSession, exclude_id: Optional[UUID] = None) -> bool:
    query = select(Genre.id).where(func.lower(Genre.name) == name.lower())
    if exclude_id:
        query = query.where(Genre.id != exclude_id)
    return await db.scalar(query) is not None


@router.get("", response_model=ApiResponse[List[GenreResponse]])
async def list_genres(db: AsyncSession = Depends(get_db), redis=Depends(get_redis)):
    """Full genre list, alphabetical. Cached until the next admin write."""
    cache = RedisCache(redis)
    cached = await cache.get(GENRES_CACHE_KEY)
    if cached is not None:
        return ok(cached, "Genres retrieved successfully.")

    result = await db.execute(select(Genre).order_by(Genre.name.asc()))
    genres = [GenreResponse.model_validate(g).model_dump(mode="json") for g in result.scalars().all()]
    await cache.set(GENRES_CACHE_KEY, genres)
    return ok(genres, "Genres retrieved successfully.")


@router.get("/{genre_id}", response_model=ApiResponse[GenreResponse])
async def get_genre(genre_id: UUID, db: AsyncSession = Depends(get_db)):
    return ok(await _get_or_404(genre_id, db), "Genre retrieved successfully.")


@router.post("", response_model=ApiResponse[GenreResponse], status_code=status.HTTP_201_CREATED)
async def create_genre(
    data: GenreCreate,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    if await _name_taken(data.name, db):
        raise HTTPException(status_code=409, detail="Genre already exists.")

    genre = Genre(**data.model_dump())
    db.add(genre)
    await db.commit()
    await RedisCache(redis).delete(GENRES_CACHE_KEY)
    return ok(genre, "Genre created successfully.")


@router.put("/{genre_id}", response_model=ApiResponse[GenreResponse])
async def update_genre(
    genre_id: UUID,
    data: GenreUpdate,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    genre = await _get_or_404(genre_id, db)
    updates = data.model_dump(exclude_none=True)
    if "name" in updates and await _name_taken(updates["name"], db, exclude_id=genre.id):
        raise HTTPException(status_code=409, detail="Genre name already exists.")

    for field, value in updates.items():
        setattr(genre, field, value)
    await db.commit()
    await RedisCache(redis).delete(GENRES_CACHE_KEY)
    return ok(genre, "Genre updated successfully.")


@router.delete("/{genre_id}", response_model=ApiResponse[None])
async def delete_genre(
    genre_id: UUID,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    genre = await _get_or_404(genre_id, db)
    in_use = await db.scalar(
        select(func.count()).select_from(musician_genres).where(musician_genres.c.genre_id == genre.id)
    )
    if in_use:
        raise HTTPException(status_code=400, detail="Cannot delete genre that is in use by musicians.")

    await db.delete(genre)
    await db.commit()
    await RedisCache(redis).delete(GENRES_CACHE_KEY)
    return ok(None, "Genre deleted successfully.")
