"""
services/payment/router.py
Paystack payment collection and reconciliation.

Initiation asks the gateway for a checkout first and only records a
pending Payment when the gateway accepts. Verification settles the
local record against the gateway's answer. A successful payment is
final: re-verifying it returns the stored record without asking the
gateway again.
"""

import logging
from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import get_redis
from config.settings import settings
from services.notification.dispatcher import create_notification, push_notifications
from services.payment.gateway import GatewayError, PaystackClient, get_gateway
from shared.middleware.auth import get_current_user, require_admin, require_client, require_musician
from shared.models.models import (
    Booking,
    BookingStatus,
    MusicianProfile,
    NotificationType,
    Payment,
    PaymentStatus,
    User,
)
from shared.schemas.schemas import (
    ApiResponse,
    BookingPaymentRequest,
    PaginatedResponse,
    PaymentInitiateRequest,
    PaymentInitiateResponse,
    PaymentResponse,
    SubscriptionPaymentRequest,
)
from shared.utils.responses import ok, paginated
from shared.utils.security import generate_transaction_ref

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])

_OPEN_STATUSES = (PaymentStatus.PENDING, PaymentStatus.SUCCESSFUL)


# ── Helpers ───────────────────────────────────────────────────

async def _start_payment(
    db: AsyncSession,
    gateway: PaystackClient,
    user: User,
    amount: Decimal,
    callback_url: str,
    metadata: dict,
    booking_id: Optional[UUID] = None,
    currency: Optional[str] = None,
) -> dict:
    """Open a gateway checkout, then record the pending payment."""
    reference = generate_transaction_ref()
    currency = (currency or settings.DEFAULT_CURRENCY).upper()

    try:
        checkout = await gateway.initialize(
            email=user.email,
            amount=amount,
            reference=reference,
            callback_url=callback_url,
            metadata=metadata,
            currency=currency,
        )
    except GatewayError as e:
        raise HTTPException(status_code=400, detail=e.message or "Failed to initialize payment")

    payment = Payment(
        user_id=user.id,
        booking_id=booking_id,
        amount=amount,
        currency=currency,
        payment_method="paystack",
        transaction_ref=checkout.reference,
        status=PaymentStatus.PENDING,
        payment_metadata={**metadata, "accessCode": checkout.access_code},
    )
    db.add(payment)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.warning(f"Duplicate open payment for booking {booking_id}; checkout {reference} abandoned")
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Payment already exists for this booking.",
        )

    logger.info(f"Payment {payment.transaction_ref} initiated by user {user.id} for {amount} {currency}")
    return {
        "payment": payment,
        "authorization_url": checkout.authorization_url,
        "access_code": checkout.access_code,
        "reference": checkout.reference,
    }


async def _get_payment_by_ref(reference: str, db: AsyncSession) -> Payment:
    result = await db.execute(
        select(Payment)
        .where(Payment.transaction_ref == reference)
        .execution_options(populate_existing=True)
    )
    payment = result.scalar_one_or_none()
    if not payment:
        raise HTTPException(status_code=404, detail="Payment not found.")
    return payment


async def _record_settlement_conflict(
    payment_id: UUID, reference: str, booking_id: UUID, metadata: dict, db: AsyncSession
) -> None:
    """Keep the gateway's answer on the FAILED row so the settlement can be reconciled by hand."""
    open_ref = await db.scalar(
        select(Payment.transaction_ref).where(
            Payment.booking_id == booking_id,
            Payment.id != payment_id,
            Payment.status.in_(_OPEN_STATUSES),
        )
    )
    logger.warning(
        f"Payment {reference} settled at the gateway while {open_ref} is open "
        f"for booking {booking_id}; left for reconciliation"
    )
    await db.execute(
        update(Payment)
        .where(Payment.id == payment_id)
        .values(payment_metadata={**metadata, "reconciliation": {"status": "conflict", "openPayment": open_ref}})
        .execution_options(synchronize_session=False)
    )
    await db.commit()


def _status_or_400(value: Optional[str]) -> Optional[PaymentStatus]:
    if value is None:
        return None
    try:
        return PaymentStatus(value.lower())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid status: {value}")


# ── Initiate ──────────────────────────────────────────────────

@router.post("/initiate", response_model=ApiResponse[PaymentInitiateResponse], status_code=status.HTTP_201_CREATED)
async def initiate_payment(
    data: PaymentInitiateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway: PaystackClient = Depends(get_gateway),
):
    """Ad hoc payment for an arbitrary amount."""
    metadata = {
        **(data.metadata or {}),
        "userId": str(current_user.id),
    }
    if data.booking_id:
        owned = await db.scalar(
            select(Booking.id).where(
                Booking.id == data.booking_id,
                Booking.client_id == current_user.id,
            )
        )
        if not owned:
            raise HTTPException(status_code=404, detail="Booking not found.")
        metadata["bookingId"] = str(data.booking_id)

    result = await _start_payment(
        db,
        gateway,
        current_user,
        amount=data.amount,
        callback_url=data.callback_url or f"{settings.FRONTEND_URL}/payment/verify",
        metadata=metadata,
        booking_id=data.booking_id,
        currency=data.currency,
    )
    return ok(result, "Payment initiated successfully.")


@router.post("/booking", response_model=ApiResponse[PaymentInitiateResponse], status_code=status.HTTP_201_CREATED)
async def initiate_booking_payment(
    data: BookingPaymentRequest,
    current_user: User = Depends(require_client),
    db: AsyncSession = Depends(get_db),
    gateway: PaystackClient = Depends(get_gateway),
):
    """Pay the agreed rate of an ACCEPTED booking."""
    result = await db.execute(
        select(Booking).where(
            Booking.id == data.booking_id,
            Booking.client_id == current_user.id,
            Booking.status == BookingStatus.ACCEPTED,
        )
    )
    booking = result.scalar_one_or_none()
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found or not in accepted state.")
    if booking.agreed_rate is None:
        raise HTTPException(status_code=400, detail="Booking does not have an agreed rate.")

    existing = await db.scalar(
        select(Payment.id).where(
            Payment.booking_id == booking.id,
            Payment.status.in_(_OPEN_STATUSES),
        )
    )
    if existing:
        raise HTTPException(status_code=400, detail="Payment already exists for this booking.")

    result = await _start_payment(
        db,
        gateway,
        current_user,
        amount=booking.agreed_rate,
        callback_url=data.callback_url or f"{settings.FRONTEND_URL}/bookings/{booking.id}/payment",
        metadata={
            "type": "booking",
            "bookingId": str(booking.id),
            "userId": str(current_user.id),
            "musicianId": str(booking.musician_id),
        },
        booking_id=booking.id,
    )
    return ok(result, "Booking payment initiated successfully.")


@router.post("/subscription", response_model=ApiResponse[PaymentInitiateResponse], status_code=status.HTTP_201_CREATED)
async def initiate_subscription_payment(
    data: SubscriptionPaymentRequest,
    current_user: User = Depends(require_musician),
    db: AsyncSession = Depends(get_db),
    gateway: PaystackClient = Depends(get_gateway),
):
    """Pay for listing time. Activation is a separate call to /subscriptions."""
    profile = await db.scalar(
        select(MusicianProfile).where(MusicianProfile.user_id == current_user.id)
    )
    if not profile:
        raise HTTPException(status_code=404, detail="Musician profile not found.")

    result = await _start_payment(
        db,
        gateway,
        current_user,
        amount=data.amount,
        callback_url=data.callback_url or f"{settings.FRONTEND_URL}/subscription/verify",
        metadata={
            "type": "subscription",
            "userId": str(current_user.id),
            "musicianProfileId": str(profile.id),
            "durationMonths": data.duration_months,
        },
    )
    return ok(result, "Subscription payment initiated successfully.")


# ── Verify ────────────────────────────────────────────────────

@router.get("/verify/{reference}", response_model=ApiResponse[PaymentResponse])
async def verify_payment(
    reference: str,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
    gateway: PaystackClient = Depends(get_gateway),
):
    """
    Reconcile a payment with the gateway. Public: the gateway redirect
    and client-side polling both land here, and repeating it is safe.
    """
    payment = await _get_payment_by_ref(reference, db)
    if payment.status == PaymentStatus.SUCCESSFUL:
        return ok(payment, "Payment already verified.")

    try:
        verification = await gateway.verify(reference)
    except GatewayError as e:
        logger.warning(f"Verification of {reference} failed: {e.message}")
        await db.execute(
            update(Payment)
            .where(Payment.id == payment.id, Payment.status != PaymentStatus.SUCCESSFUL)
            .values(status=PaymentStatus.FAILED)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        raise HTTPException(status_code=400, detail="Payment verification failed.")

    new_status = PaymentStatus.SUCCESSFUL if verification.succeeded else PaymentStatus.FAILED
    metadata = {**(payment.payment_metadata or {}), "gateway": verification.settlement_details()}
    payment_id, booking_id = payment.id, payment.booking_id

    # Never overwrite a row another request already settled as successful
    try:
        result = await db.execute(
            update(Payment)
            .where(Payment.id == payment_id, Payment.status != PaymentStatus.SUCCESSFUL)
            .values(status=new_status, payment_metadata=metadata)
            .execution_options(synchronize_session=False)
        )
    except IntegrityError:
        # A retry for the same booking is open; keep this row FAILED
        await db.rollback()
        await _record_settlement_conflict(payment_id, reference, booking_id, metadata, db)
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Payment settled but another payment is open for this booking.",
        )
    payment = await _get_payment_by_ref(reference, db)
    if result.rowcount != 1:
        return ok(payment, "Payment already verified.")

    notifications = []
    if new_status == PaymentStatus.SUCCESSFUL:
        notifications.append(
            await create_notification(
                db,
                user_id=payment.user_id,
                title="Payment Successful",
                message="Your payment has been processed successfully.",
                type=NotificationType.PAYMENT_RECEIVED,
                metadata={"paymentId": str(payment.id)},
            )
        )
        if payment.booking_id:
            booking = await db.get(Booking, payment.booking_id)
            if booking:
                notifications.append(
                    await create_notification(
                        db,
                        user_id=booking.musician_id,
                        title="Payment Received",
                        message=f"Payment received for {booking.event_name}",
                        type=NotificationType.PAYMENT_RECEIVED,
                        metadata={"bookingId": str(booking.id), "paymentId": str(payment.id)},
                    )
                )
    await db.commit()
    push_notifications(background_tasks, redis, notifications)

    logger.info(f"Payment {reference} verified as {new_status.value}")
    message = (
        "Payment verified successfully."
        if new_status == PaymentStatus.SUCCESSFUL
        else "Payment verification failed."
    )
    return ok(payment, message)


# ── Read Endpoints ────────────────────────────────────────────

@router.get("/history", response_model=ApiResponse[PaginatedResponse[PaymentResponse]])
async def payment_history(
    status_filter: Optional[str] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    query = select(Payment).where(Payment.user_id == current_user.id)
    payment_status = _status_or_400(status_filter)
    if payment_status:
        query = query.where(Payment.status == payment_status)

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(Payment.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
    )
    return ok(
        paginated(result.scalars().all(), total or 0, page, page_size),
        "Payment history retrieved successfully.",
    )


@router.get("/all/admin", response_model=ApiResponse[PaginatedResponse[PaymentResponse]])
async def list_all_payments(
    status_filter: Optional[str] = Query(None, alias="status"),
    user_id: Optional[UUID] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    _: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    query = select(Payment)
    payment_status = _status_or_400(status_filter)
    if payment_status:
        query = query.where(Payment.status == payment_status)
    if user_id:
        query = query.where(Payment.user_id == user_id)

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(Payment.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
    )
    return ok(
        paginated(result.scalars().all(), total or 0, page, page_size),
        "Payments retrieved successfully.",
    )


@router.get("/{payment_id}", response_model=ApiResponse[PaymentResponse])
async def get_payment(
    payment_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(Payment).where(Payment.id == payment_id, Payment.user_id == current_user.id)
    )
    payment = result.scalar_one_or_none()
    if not payment:
        raise HTTPException(status_code=404, detail="Payment not found.")
    return ok(payment, "Payment retrieved successfully.")
