"""
services/user/router.py
Account profile endpoints for the signed-in user, plus the public user card.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.middleware.auth import get_current_user
from shared.models.models import User
from shared.schemas.schemas import ApiResponse, PublicUserResponse, UserResponse, UserUpdateRequest
from shared.utils.responses import ok

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["Users"])


@router.get("/me", response_model=ApiResponse[UserResponse])
async def get_me(current_user: User = Depends(get_current_user)):
    """Return the currently authenticated user's profile."""
    return ok(current_user, "User retrieved successfully.")


@router.put("/me", response_model=ApiResponse[UserResponse])
async def update_me(
    data: UserUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Update name, phone or profile image.
    Only non-None fields in the request body are updated.
    """
    updates = data.model_dump(exclude_none=True)
    if not updates:
        return ok(current_user, "User updated successfully.")

    # Phone uniqueness check
    if "phone" in updates:
        existing = await db.scalar(
            select(User.id).where(User.phone == updates["phone"], User.id != current_user.id)
        )
        if existing:
            raise HTTPException(status_code=409, detail="Phone number already in use.")

    for field, value in updates.items():
        setattr(current_user, field, value)

    await db.commit()
    await db.refresh(current_user)
    return ok(current_user, "User updated successfully.")


@router.delete("/me", response_model=ApiResponse[None])
async def delete_me(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Hard delete; the musician profile, subscription and notifications go with it."""
    await db.execute(delete(User).where(User.id == current_user.id).execution_options(synchronize_session=False))
    await db.commit()
    logger.info(f"User {current_user.id} deleted their account")
    return ok(None, "User deleted successfully.")


@router.get("/{user_id}", response_model=ApiResponse[PublicUserResponse])
async def get_user(user_id: UUID, db: AsyncSession = Depends(get_db)):
    user = await db.get(User, user_id)
    if not user or not user.is_active:
        raise HTTPException(status_code=404, detail="User not found.")
    return ok(user, "User retrieved successfully.")
