"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas for the platform.
Every endpoint answers with the ApiResponse envelope.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from config.settings import settings
from shared.models.models import (
    BookingStatus,
    InstrumentCategory,
    PaymentStatus,
    PortfolioFileType,
    SubscriptionStatus,
)

T = TypeVar("T")


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class ApiResponse(BaseModel, Generic[T]):
    success: bool = True
    message: str
    data: Optional[T] = None


class PaginatedResponse(BaseSchema, Generic[T]):
    items: List[T]
    total: int
    page: int
    page_size: int
    pages: int


# ── Auth ──────────────────────────────────────────────────────

class RegisterRequest(BaseSchema):
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    phone: Optional[str] = Field(None, pattern=r"^\+?[0-9]{10,15}$")
    role: str = Field(default="CLIENT", pattern="^(CLIENT|MUSICIAN)$")


class LoginRequest(BaseSchema):
    email: EmailStr
    password: str = Field(..., min_length=1)


class RefreshRequest(BaseSchema):
    refresh_token: str


class ForgotPasswordRequest(BaseSchema):
    email: EmailStr


class ResetPasswordRequest(BaseSchema):
    token: str
    password: str = Field(..., min_length=8, max_length=128)


class ChangePasswordRequest(BaseSchema):
    current_password: str
    new_password: str = Field(..., min_length=8, max_length=128)


# ── User ──────────────────────────────────────────────────────

class UserResponse(BaseSchema):
    id: uuid.UUID
    email: EmailStr
    first_name: str
    last_name: str
    phone: Optional[str]
    role: str
    is_verified: bool
    is_active: bool
    profile_image: Optional[str]
    created_at: datetime


class PublicUserResponse(BaseSchema):
    id: uuid.UUID
    first_name: str
    last_name: str
    role: str
    is_verified: bool
    profile_image: Optional[str]


class AuthResponse(BaseSchema):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds
    user: UserResponse


class TokenResponse(BaseSchema):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class UserUpdateRequest(BaseSchema):
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)
    phone: Optional[str] = Field(None, pattern=r"^\+?[0-9]{10,15}$")
    profile_image: Optional[str] = Field(None, max_length=500)


# ── Catalog ───────────────────────────────────────────────────

class InstrumentCreate(BaseSchema):
    name: str = Field(..., min_length=1, max_length=100)
    category: InstrumentCategory = InstrumentCategory.OTHER
    description: Optional[str] = Field(None, max_length=1000)


class InstrumentUpdate(BaseSchema):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    category: Optional[InstrumentCategory] = None
    description: Optional[str] = Field(None, max_length=1000)


class InstrumentResponse(BaseSchema):
    id: uuid.UUID
    name: str
    category: str
    description: Optional[str] = None


class GenreCreate(BaseSchema):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)


class GenreUpdate(BaseSchema):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)


class GenreResponse(BaseSchema):
    id: uuid.UUID
    name: str
    description: Optional[str] = None


# ── Musician ──────────────────────────────────────────────────

class MusicianProfileCreate(BaseSchema):
    bio: Optional[str] = Field(None, max_length=2000)
    years_of_experience: int = Field(default=0, ge=0, le=80)
    hourly_rate: Optional[Decimal] = Field(None, ge=0)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=100)
    country: str = Field(default="Nigeria", max_length=100)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    instrument_ids: List[uuid.UUID] = Field(default_factory=list)
    genre_ids: List[uuid.UUID] = Field(default_factory=list)


class MusicianProfileUpdate(BaseSchema):
    bio: Optional[str] = Field(None, max_length=2000)
    years_of_experience: Optional[int] = Field(None, ge=0, le=80)
    hourly_rate: Optional[Decimal] = Field(None, ge=0)
    city: Optional[str] = Field(None, min_length=1, max_length=100)
    state: Optional[str] = Field(None, min_length=1, max_length=100)
    country: Optional[str] = Field(None, max_length=100)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    instrument_ids: Optional[List[uuid.UUID]] = None
    genre_ids: Optional[List[uuid.UUID]] = None


class MusicianProfileResponse(BaseSchema):
    id: uuid.UUID
    user_id: uuid.UUID
    bio: Optional[str]
    years_of_experience: int
    hourly_rate: Optional[Decimal]
    city: str
    state: str
    country: str
    latitude: Optional[float]
    longitude: Optional[float]
    is_available: bool
    total_gigs: int
    average_rating: float
    instruments: List[InstrumentResponse] = []
    genres: List[GenreResponse] = []
    created_at: datetime
    # Injected from User join
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    profile_image: Optional[str] = None
    is_verified: Optional[bool] = None
    distance_km: Optional[float] = None  # From nearby query


class MusicianStatsResponse(BaseSchema):
    total_gigs: int
    average_rating: float
    total_earnings: Decimal
    pending_bookings: int
    completed_bookings: int
    total_reviews: int


# ── Portfolio ─────────────────────────────────────────────────

class PortfolioItemCreate(BaseSchema):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    file_url: str = Field(..., max_length=1000)
    file_type: PortfolioFileType
    thumbnail_url: Optional[str] = Field(None, max_length=1000)
    duration: Optional[int] = Field(None, ge=0)

    @field_validator("file_url", "thumbnail_url")
    @classmethod
    def validate_url(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.startswith(("http://", "https://")):
            raise ValueError("Must be an http(s) URL")
        return v


class PortfolioItemUpdate(BaseSchema):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    thumbnail_url: Optional[str] = Field(None, max_length=1000)
    duration: Optional[int] = Field(None, ge=0)

    @field_validator("thumbnail_url")
    @classmethod
    def validate_url(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.startswith(("http://", "https://")):
            raise ValueError("Must be an http(s) URL")
        return v


class PortfolioItemResponse(BaseSchema):
    id: uuid.UUID
    musician_profile_id: uuid.UUID
    title: str
    description: Optional[str] = None
    file_url: str
    file_type: PortfolioFileType
    thumbnail_url: Optional[str] = None
    duration: Optional[int] = None
    created_at: datetime
    updated_at: datetime
    musician_name: Optional[str] = None


# ── Booking ───────────────────────────────────────────────────

class BookingCreateRequest(BaseSchema):
    musician_id: uuid.UUID
    event_name: str = Field(..., min_length=1, max_length=255)
    event_date: datetime
    event_time: str = Field(..., pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    duration: int = Field(..., ge=1, le=72)
    venue: str = Field(..., min_length=1, max_length=255)
    address: str = Field(..., min_length=1, max_length=1000)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=100)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    description: Optional[str] = Field(None, max_length=2000)
    offered_rate: Decimal = Field(..., gt=0)
    instrument_ids: List[uuid.UUID] = Field(default_factory=list)

    @field_validator("event_date")
    @classmethod
    def validate_event_date(cls, v: datetime) -> datetime:
        from datetime import timezone
        if v.tzinfo is None:
            v = v.replace(tzinfo=timezone.utc)
        if v <= datetime.now(timezone.utc):
            raise ValueError("Event date must be in the future")
        return v


class BookingAcceptRequest(BaseSchema):
    agreed_rate: Optional[Decimal] = Field(None, gt=0)


class BookingResponse(BaseSchema):
    id: uuid.UUID
    client_id: uuid.UUID
    musician_id: uuid.UUID
    event_name: str
    event_date: datetime
    event_time: str
    duration: int
    venue: str
    address: str
    city: str
    state: str
    latitude: Optional[float]
    longitude: Optional[float]
    description: Optional[str]
    offered_rate: Decimal
    agreed_rate: Optional[Decimal]
    status: BookingStatus
    instruments: List[InstrumentResponse] = []
    created_at: datetime
    updated_at: datetime


# ── Payment ───────────────────────────────────────────────────

class PaymentInitiateRequest(BaseSchema):
    amount: Decimal = Field(..., gt=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    booking_id: Optional[uuid.UUID] = None
    metadata: Optional[Dict[str, Any]] = None
    callback_url: Optional[str] = None


class BookingPaymentRequest(BaseSchema):
    booking_id: uuid.UUID
    callback_url: Optional[str] = None


class SubscriptionPaymentRequest(BaseSchema):
    amount: Decimal = Field(..., gt=0)
    duration_months: int = Field(default=settings.DEFAULT_SUBSCRIPTION_MONTHS, ge=1, le=24)
    callback_url: Optional[str] = None


class PaymentResponse(BaseSchema):
    id: uuid.UUID
    user_id: uuid.UUID
    booking_id: Optional[uuid.UUID]
    amount: Decimal
    currency: str
    payment_method: str
    transaction_ref: str
    status: PaymentStatus
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="payment_metadata")
    created_at: datetime
    updated_at: datetime


class PaymentInitiateResponse(BaseSchema):
    payment: PaymentResponse
    authorization_url: str
    access_code: str
    reference: str


class RevenueReport(BaseSchema):
    total_revenue: Decimal
    booking_revenue: Decimal
    subscription_revenue: Decimal
    other_revenue: Decimal
    transaction_count: int
    start_date: Optional[datetime]
    end_date: Optional[datetime]


# ── Subscription ──────────────────────────────────────────────

class SubscriptionCreateRequest(BaseSchema):
    duration_months: int = Field(default=settings.DEFAULT_SUBSCRIPTION_MONTHS, ge=1, le=24)
    payment_id: Optional[uuid.UUID] = None


class SubscriptionRenewRequest(BaseSchema):
    duration_months: int = Field(default=settings.DEFAULT_SUBSCRIPTION_MONTHS, ge=1, le=24)
    payment_id: Optional[uuid.UUID] = None


class SubscriptionResponse(BaseSchema):
    id: uuid.UUID
    musician_profile_id: uuid.UUID
    status: SubscriptionStatus
    start_date: datetime
    end_date: datetime
    auto_renew: bool
    payment_id: Optional[uuid.UUID]
    created_at: datetime
    updated_at: datetime


class SubscriptionDetailResponse(SubscriptionResponse):
    is_expired: bool
    days_remaining: int


class SubscriptionStatusResponse(BaseSchema):
    has_subscription: bool
    is_active: bool
    status: Optional[SubscriptionStatus] = None
    end_date: Optional[datetime] = None
    subscription: Optional[SubscriptionResponse] = None


# ── Review ────────────────────────────────────────────────────

class ReviewCreateRequest(BaseSchema):
    booking_id: uuid.UUID
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=2000)


class ReviewUpdateRequest(BaseSchema):
    rating: Optional[int] = Field(None, ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=2000)


class ReviewResponse(BaseSchema):
    id: uuid.UUID
    booking_id: uuid.UUID
    reviewer_id: uuid.UUID
    rating: int
    comment: Optional[str]
    created_at: datetime
    updated_at: datetime
    reviewer_name: Optional[str] = None


class MusicianReviewsResponse(BaseSchema):
    items: List[ReviewResponse]
    total: int
    page: int
    page_size: int
    pages: int
    average_rating: float
    rating_distribution: Dict[int, int]


# ── Notification ──────────────────────────────────────────────

class NotificationResponse(BaseSchema):
    id: uuid.UUID
    user_id: uuid.UUID
    title: str
    message: str
    type: str
    is_read: bool
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="notification_metadata")
    created_at: datetime


class NotificationListResponse(PaginatedResponse[NotificationResponse]):
    unread_count: int


class UnreadCountResponse(BaseSchema):
    unread_count: int


# ── Admin ─────────────────────────────────────────────────────

class AdminDashboardResponse(BaseSchema):
    total_users: int
    total_clients: int
    total_musicians: int
    total_bookings: int
    pending_bookings: int
    completed_bookings: int
    active_subscriptions: int
    total_revenue: Decimal
    recent_bookings: List[BookingResponse] = []
