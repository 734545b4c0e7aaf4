"""
services/auth/router.py
Email/password authentication endpoints.
Implements: Register → Login → JWT issue → Refresh → Logout,
plus the forgot/reset password flow.
"""

import logging
import math
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Cookie, Depends, HTTPException, Request, Response, status
from jose import JWTError
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from config.settings import settings
from shared.middleware.auth import TokenData, get_current_user, get_token_data
from shared.models.models import RefreshToken, User, UserRole
from shared.schemas.schemas import (
    ApiResponse,
    AuthResponse,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
    TokenResponse,
    UserResponse,
)
from shared.utils.responses import ok
from shared.utils.security import (
    create_access_token,
    create_password_reset_token,
    create_refresh_token,
    get_token_remaining_ttl,
    hash_password,
    hash_token,
    password_fingerprint,
    verify_password,
    verify_password_reset_token,
)
from tasks.notification_tasks import (
    enqueue,
    send_login_alert,
    send_password_changed_email,
    send_password_reset_email,
    send_welcome_email,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])

REFRESH_COOKIE_PATH = "/auth"


# ── Helpers ───────────────────────────────────────────────────

async def _issue_tokens(
    user: User,
    db: AsyncSession,
    response: Response,
    request: Request,
) -> tuple[str, str]:
    """Issue access + refresh tokens. Store refresh token in DB and set cookie."""
    access_token, _ = create_access_token(
        user_id=str(user.id),
        role=user.role.value,
        email=user.email,
    )

    raw_refresh, hashed_refresh = create_refresh_token()
    expires_at = datetime.now(timezone.utc) + timedelta(
        days=settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS
    )
    db.add(RefreshToken(
        user_id=user.id,
        token_hash=hashed_refresh,
        expires_at=expires_at,
        user_agent=request.headers.get("user-agent"),
        ip_address=request.client.host if request.client else None,
    ))

    # httpOnly cookie for web clients; mobile clients use the body
    response.set_cookie(
        key="refresh_token",
        value=raw_refresh,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        max_age=settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS * 86400,
        path=REFRESH_COOKIE_PATH,
    )
    return access_token, raw_refresh


def _auth_payload(user: User, access_token: str, raw_refresh: str) -> dict:
    return {
        "access_token": access_token,
        "refresh_token": raw_refresh,
        "expires_in": settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        "user": user,
    }


async def _revoke_all_refresh_tokens(user: User, db: AsyncSession) -> None:
    await db.execute(
        update(RefreshToken)
        .where(RefreshToken.user_id == user.id, RefreshToken.is_revoked == False)  # noqa: E712
        .values(is_revoked=True)
        .execution_options(synchronize_session=False)
    )


# ── Register / Login ──────────────────────────────────────────

@router.post("/register", response_model=ApiResponse[AuthResponse], status_code=status.HTTP_201_CREATED)
async def register(
    data: RegisterRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    """Create a CLIENT or MUSICIAN account and sign it in."""
    email = data.email.lower()
    conditions = [User.email == email]
    if data.phone:
        conditions.append(User.phone == data.phone)
    existing = await db.scalar(select(User).where(or_(*conditions)))
    if existing:
        detail = "Email already registered." if existing.email == email else "Phone number already registered."
        raise HTTPException(status_code=400, detail=detail)

    user = User(
        email=email,
        phone=data.phone,
        password_hash=hash_password(data.password),
        first_name=data.first_name,
        last_name=data.last_name,
        role=UserRole(data.role),
    )
    db.add(user)
    await db.flush()

    access_token, raw_refresh = await _issue_tokens(user, db, response, request)
    await db.commit()

    enqueue(send_welcome_email, email=user.email, first_name=user.first_name, role=user.role.value)
    logger.info(f"Registered {user.role.value} {user.id}")
    return ok(_auth_payload(user, access_token, raw_refresh), "User registered successfully.")


@router.post("/login", response_model=ApiResponse[AuthResponse])
async def login(
    data: LoginRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """
    Password login, throttled per email: after LOGIN_MAX_ATTEMPTS failures
    the address is locked until the window expires.
    """
    email = data.email.lower()
    cache = RedisCache(redis)

    if await cache.login_attempts(email) >= settings.LOGIN_MAX_ATTEMPTS:
        remaining = await cache.login_lockout_remaining(email)
        minutes = max(1, math.ceil(remaining / 60))
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Too many login attempts. Please try again in {minutes} minutes.",
        )

    user = await db.scalar(select(User).where(User.email == email))
    if not user or not verify_password(data.password, user.password_hash):
        attempts = await cache.register_failed_login(email)
        logger.warning(f"Failed login for {email} ({attempts} attempts)")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password.")

    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is deactivated.")

    await cache.clear_login_attempts(email)
    access_token, raw_refresh = await _issue_tokens(user, db, response, request)
    await db.commit()

    enqueue(
        send_login_alert,
        email=user.email,
        first_name=user.first_name,
        ip_address=request.client.host if request.client else "unknown",
        user_agent=request.headers.get("user-agent", "unknown"),
        login_at=datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC"),
    )
    return ok(_auth_payload(user, access_token, raw_refresh), "Login successful.")


# ── Tokens ────────────────────────────────────────────────────

@router.post("/refresh", response_model=ApiResponse[TokenResponse])
async def refresh_token(
    request: Request,
    response: Response,
    data: Optional[RefreshRequest] = None,
    refresh_token_cookie: Optional[str] = Cookie(None, alias="refresh_token"),
    db: AsyncSession = Depends(get_db),
):
    """
    Issue a new access token using a valid refresh token.
    Rotation: the presented token is revoked and a new one issued.
    """
    raw_token = (data.refresh_token if data else None) or refresh_token_cookie
    if not raw_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Refresh token required")

    db_token = await db.scalar(
        select(RefreshToken).where(
            RefreshToken.token_hash == hash_token(raw_token),
            RefreshToken.is_revoked == False,  # noqa: E712
        )
    )
    if not db_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or revoked refresh token")
    if db_token.expires_at < datetime.now(timezone.utc):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Refresh token expired")

    user = await db.get(User, db_token.user_id)
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")

    db_token.is_revoked = True
    access_token, raw_refresh = await _issue_tokens(user, db, response, request)
    await db.commit()

    return ok(
        {
            "access_token": access_token,
            "refresh_token": raw_refresh,
            "expires_in": settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        },
        "Token refreshed successfully.",
    )


@router.post("/logout", response_model=ApiResponse[None])
async def logout(
    response: Response,
    data: Optional[RefreshRequest] = None,
    token_data: TokenData = Depends(get_token_data),
    refresh_token_cookie: Optional[str] = Cookie(None, alias="refresh_token"),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """Deny-list the access token in Redis and revoke the refresh token."""
    await RedisCache(redis).revoke_token(token_data.jti, get_token_remaining_ttl(token_data.payload))

    raw_token = (data.refresh_token if data else None) or refresh_token_cookie
    if raw_token:
        await db.execute(
            update(RefreshToken)
            .where(RefreshToken.token_hash == hash_token(raw_token))
            .values(is_revoked=True)
            .execution_options(synchronize_session=False)
        )
    await db.commit()

    response.delete_cookie(key="refresh_token", path=REFRESH_COOKIE_PATH)
    return ok(None, "Logged out successfully.")


# ── Password ──────────────────────────────────────────────────

@router.post("/forgot-password", response_model=ApiResponse[None])
async def forgot_password(
    data: ForgotPasswordRequest,
    db: AsyncSession = Depends(get_db),
):
    """Always answers the same way so addresses cannot be enumerated."""
    user = await db.scalar(select(User).where(User.email == data.email.lower()))
    if user and user.is_active:
        token = create_password_reset_token(str(user.id), user.password_hash)
        enqueue(
            send_password_reset_email,
            email=user.email,
            first_name=user.first_name,
            reset_url=f"{settings.FRONTEND_URL}/reset-password?token={token}",
        )
    return ok(None, "If that email is registered, a reset link has been sent.")


@router.post("/reset-password", response_model=ApiResponse[None])
async def reset_password(
    data: ResetPasswordRequest,
    db: AsyncSession = Depends(get_db),
):
    try:
        payload = verify_password_reset_token(data.token)
    except JWTError:
        raise HTTPException(status_code=400, detail="Invalid or expired reset token.")

    user = await db.get(User, _uuid_or_400(payload.get("sub")))
    # A token stops working as soon as the password it was issued for changes
    if not user or payload.get("fp") != password_fingerprint(user.password_hash):
        raise HTTPException(status_code=400, detail="Invalid or expired reset token.")

    user.password_hash = hash_password(data.password)
    await _revoke_all_refresh_tokens(user, db)
    await db.commit()

    enqueue(send_password_changed_email, email=user.email, first_name=user.first_name)
    return ok(None, "Password reset successfully.")


@router.post("/change-password", response_model=ApiResponse[None])
async def change_password(
    data: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if not verify_password(data.current_password, current_user.password_hash):
        raise HTTPException(status_code=400, detail="Current password is incorrect.")

    current_user.password_hash = hash_password(data.new_password)
    await _revoke_all_refresh_tokens(current_user, db)
    await db.commit()

    enqueue(send_password_changed_email, email=current_user.email, first_name=current_user.first_name)
    return ok(None, "Password changed successfully.")


@router.get("/me", response_model=ApiResponse[UserResponse])
async def get_me(current_user: User = Depends(get_current_user)):
    """Returns the authenticated user's account."""
    return ok(current_user, "User retrieved successfully.")


def _uuid_or_400(value: Optional[str]) -> uuid.UUID:
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid or expired reset token.")
