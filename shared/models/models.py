"""
shared/models/models.py
All SQLAlchemy ORM models for the SteadyGig marketplace.
UUID primary keys throughout; column types stay portable so the same
metadata runs on PostgreSQL in production and SQLite under test.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum as PyEnum
from typing import Any, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    SmallInteger,
    String,
    Table,
    Text,
    TypeDecorator,
    Uuid,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from config.database import Base


JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TZDateTime(TypeDecorator):
    """
    Timezone-aware datetime on every backend.
    Values are stored as UTC; SQLite gets naive UTC and the tz is
    re-attached on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        if value is None:
            return value
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


def _enum(enum_cls: type[PyEnum]) -> Enum:
    """Store enum values (not names) as plain strings."""
    return Enum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=32,
        validate_strings=True,
    )


# ── Enumerations ──────────────────────────────────────────────

class UserRole(str, PyEnum):
    CLIENT = "CLIENT"
    MUSICIAN = "MUSICIAN"
    ADMIN = "ADMIN"


class InstrumentCategory(str, PyEnum):
    STRINGS = "STRINGS"
    WOODWIND = "WOODWIND"
    BRASS = "BRASS"
    PERCUSSION = "PERCUSSION"
    KEYBOARD = "KEYBOARD"
    VOCAL = "VOCAL"
    ELECTRONIC = "ELECTRONIC"
    OTHER = "OTHER"


class BookingStatus(str, PyEnum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


class PaymentStatus(str, PyEnum):
    PENDING = "pending"
    SUCCESSFUL = "successful"
    FAILED = "failed"


class SubscriptionStatus(str, PyEnum):
    TRIAL = "TRIAL"
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class NotificationType(str, PyEnum):
    BOOKING_REQUEST = "booking_request"
    BOOKING_ACCEPTED = "booking_accepted"
    BOOKING_REJECTED = "booking_rejected"
    BOOKING_CANCELLED = "booking_cancelled"
    BOOKING_COMPLETED = "booking_completed"
    PAYMENT_RECEIVED = "payment_received"
    REVIEW_RECEIVED = "review_received"
    SUBSCRIPTION_ACTIVATED = "subscription_activated"
    SUBSCRIPTION_RENEWED = "subscription_renewed"
    SUBSCRIPTION_CANCELLED = "subscription_cancelled"
    ACCOUNT_VERIFIED = "account_verified"
    ACCOUNT_STATUS = "account_status"


class PortfolioFileType(str, PyEnum):
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"


# ── Mixins ────────────────────────────────────────────────────

class TimestampMixin:
    """Adds created_at and updated_at to any model."""
    created_at: Mapped[datetime] = mapped_column(
        TZDateTime(), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TZDateTime(),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )


# ── Association tables ────────────────────────────────────────

musician_instruments = Table(
    "musician_instruments",
    Base.metadata,
    Column("musician_profile_id", Uuid, ForeignKey("musician_profiles.id", ondelete="CASCADE"), primary_key=True),
    Column("instrument_id", Uuid, ForeignKey("instruments.id", ondelete="CASCADE"), primary_key=True),
)

musician_genres = Table(
    "musician_genres",
    Base.metadata,
    Column("musician_profile_id", Uuid, ForeignKey("musician_profiles.id", ondelete="CASCADE"), primary_key=True),
    Column("genre_id", Uuid, ForeignKey("genres.id", ondelete="CASCADE"), primary_key=True),
)

booking_instruments = Table(
    "booking_instruments",
    Base.metadata,
    Column("booking_id", Uuid, ForeignKey("bookings.id", ondelete="CASCADE"), primary_key=True),
    Column("instrument_id", Uuid, ForeignKey("instruments.id", ondelete="CASCADE"), primary_key=True),
)


# ── Models ────────────────────────────────────────────────────

class User(TimestampMixin, Base):
    """Account for clients, musicians and admins."""
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    role: Mapped[UserRole] = mapped_column(_enum(UserRole), nullable=False, default=UserRole.CLIENT)
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    profile_image: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    musician_profile: Mapped[Optional["MusicianProfile"]] = relationship(
        back_populates="user", uselist=False, cascade="all, delete-orphan", passive_deletes=True
    )
    notifications: Mapped[List["Notification"]] = relationship(
        back_populates="user", cascade="all, delete-orphan", passive_deletes=True
    )
    refresh_tokens: Mapped[List["RefreshToken"]] = relationship(
        back_populates="user", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (Index("ix_users_role", "role"),)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"


class RefreshToken(Base):
    """Refresh tokens stored for rotation and revocation."""
    __tablename__ = "refresh_tokens"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    token_hash: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(TZDateTime(), nullable=False)
    is_revoked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(TZDateTime(), default=utcnow, server_default=func.now())
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)

    user: Mapped["User"] = relationship(back_populates="refresh_tokens")

    __table_args__ = (Index("ix_refresh_tokens_user_id", "user_id"),)


class Instrument(TimestampMixin, Base):
    """Reference list of instruments a musician can play or a booking can request."""
    __tablename__ = "instruments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    category: Mapped[InstrumentCategory] = mapped_column(
        _enum(InstrumentCategory), nullable=False, default=InstrumentCategory.OTHER
    )
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class Genre(TimestampMixin, Base):
    __tablename__ = "genres"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class MusicianProfile(TimestampMixin, Base):
    """
    Musician's professional profile, one-to-one with a MUSICIAN user.
    total_gigs and average_rating are derived from bookings and reviews.
    """
    __tablename__ = "musician_profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    bio: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    years_of_experience: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    hourly_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    city: Mapped[str] = mapped_column(String(100), nullable=False)
    state: Mapped[str] = mapped_column(String(100), nullable=False)
    country: Mapped[str] = mapped_column(String(100), default="Nigeria", nullable=False)
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Derived, denormalized for search ordering
    total_gigs: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    average_rating: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

    user: Mapped["User"] = relationship(back_populates="musician_profile")
    instruments: Mapped[List["Instrument"]] = relationship(secondary=musician_instruments)
    genres: Mapped[List["Genre"]] = relationship(secondary=musician_genres)
    subscription: Mapped[Optional["Subscription"]] = relationship(
        back_populates="musician_profile", uselist=False, cascade="all, delete-orphan", passive_deletes=True
    )
    portfolio_items: Mapped[List["PortfolioItem"]] = relationship(
        back_populates="musician_profile", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        Index("ix_musician_profiles_city", "city"),
        Index("ix_musician_profiles_rating", "average_rating"),
    )


class Subscription(TimestampMixin, Base):
    """Musician's listing subscription. One per profile."""
    __tablename__ = "subscriptions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    musician_profile_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("musician_profiles.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    status: Mapped[SubscriptionStatus] = mapped_column(
        _enum(SubscriptionStatus), nullable=False, default=SubscriptionStatus.TRIAL
    )
    start_date: Mapped[datetime] = mapped_column(TZDateTime(), nullable=False)
    end_date: Mapped[datetime] = mapped_column(TZDateTime(), nullable=False)
    auto_renew: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    payment_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("payments.id", ondelete="SET NULL"), nullable=True
    )

    musician_profile: Mapped["MusicianProfile"] = relationship(back_populates="subscription")

    __table_args__ = (Index("ix_subscriptions_status", "status"),)


class PortfolioItem(TimestampMixin, Base):
    """A piece of media a musician shows on their profile. The file itself lives elsewhere."""
    __tablename__ = "portfolio_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    musician_profile_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("musician_profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    file_url: Mapped[str] = mapped_column(String(1000), nullable=False)
    file_type: Mapped[PortfolioFileType] = mapped_column(_enum(PortfolioFileType), nullable=False)
    thumbnail_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    duration: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # seconds, audio/video only

    musician_profile: Mapped["MusicianProfile"] = relationship(back_populates="portfolio_items")


class Booking(TimestampMixin, Base):
    """
    A client's request for a musician to play an event.
    Status transitions: PENDING → ACCEPTED → COMPLETED,
    PENDING → REJECTED, PENDING | ACCEPTED → CANCELLED.
    agreed_rate stays NULL until the musician accepts.
    """
    __tablename__ = "bookings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    client_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    musician_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )

    # Event
    event_name: Mapped[str] = mapped_column(String(255), nullable=False)
    event_date: Mapped[datetime] = mapped_column(TZDateTime(), nullable=False)
    event_time: Mapped[str] = mapped_column(String(10), nullable=False)  # "18:30"
    duration: Mapped[int] = mapped_column(Integer, nullable=False)       # hours
    venue: Mapped[str] = mapped_column(String(255), nullable=False)
    address: Mapped[str] = mapped_column(Text, nullable=False)
    city: Mapped[str] = mapped_column(String(100), nullable=False)
    state: Mapped[str] = mapped_column(String(100), nullable=False)
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Pricing
    offered_rate: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    agreed_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)

    status: Mapped[BookingStatus] = mapped_column(
        _enum(BookingStatus), nullable=False, default=BookingStatus.PENDING
    )

    client: Mapped["User"] = relationship(foreign_keys=[client_id])
    musician: Mapped["User"] = relationship(foreign_keys=[musician_id])
    instruments: Mapped[List["Instrument"]] = relationship(secondary=booking_instruments)
    review: Mapped[Optional["Review"]] = relationship(
        back_populates="booking", uselist=False, cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        Index("ix_bookings_client_id", "client_id"),
        Index("ix_bookings_musician_id", "musician_id"),
        Index("ix_bookings_status", "status"),
        Index("ix_bookings_event_date", "event_date"),
    )


_OPEN_PAYMENT = text("status IN ('pending', 'successful')")


class Payment(TimestampMixin, Base):
    """
    Gateway transaction. Optionally linked to a booking.
    A booking has at most one pending-or-successful payment; failed
    attempts do not block a retry.
    """
    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    booking_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True
    )
    # Major currency unit; converted to kobo only at the gateway boundary
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="NGN", nullable=False)
    payment_method: Mapped[str] = mapped_column(String(30), default="paystack", nullable=False)
    transaction_ref: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    status: Mapped[PaymentStatus] = mapped_column(
        _enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING
    )
    payment_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSONType, nullable=True)

    user: Mapped["User"] = relationship(foreign_keys=[user_id])
    booking: Mapped[Optional["Booking"]] = relationship(foreign_keys=[booking_id])

    __table_args__ = (
        Index("ix_payments_user_id", "user_id"),
        Index("ix_payments_status", "status"),
        Index(
            "uq_payments_open_booking",
            "booking_id",
            unique=True,
            postgresql_where=_OPEN_PAYMENT,
            sqlite_where=_OPEN_PAYMENT,
        ),
    )


class Review(TimestampMixin, Base):
    """Post-gig review. One per completed booking."""
    __tablename__ = "reviews"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    reviewer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    rating: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    reviewer: Mapped["User"] = relationship(foreign_keys=[reviewer_id])
    booking: Mapped["Booking"] = relationship(back_populates="review")

    __table_args__ = (
        CheckConstraint("rating >= 1 AND rating <= 5", name="rating_range"),
        Index("ix_reviews_reviewer_id", "reviewer_id"),
    )


class Notification(TimestampMixin, Base):
    """In-app notification log. Also pushed in real time on the user's channel."""
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    notification_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSONType, nullable=True)

    user: Mapped["User"] = relationship(back_populates="notifications")

    __table_args__ = (
        Index("ix_notifications_user_id", "user_id"),
        Index("ix_notifications_user_read", "user_id", "is_read"),
    )
