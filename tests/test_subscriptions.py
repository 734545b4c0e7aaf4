"""
tests/test_subscriptions.py
Musician subscriptions: activation, renewal arithmetic, lazy expiry
and cancellation.
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from services.subscription.router import add_months, renewal_window
from shared.models.models import (
    Payment,
    PaymentStatus,
    Subscription,
    SubscriptionStatus,
    User,
)
from tests.conftest import activate_subscription, auth_headers


def _parse(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


# ── Date arithmetic ────────────────────────────────────────────────────────────

def test_add_months_clamps_to_month_end():
    start = datetime(2026, 1, 31, 12, 0, tzinfo=timezone.utc)
    assert add_months(start, 1) == datetime(2026, 2, 28, 12, 0, tzinfo=timezone.utc)


def test_renewal_extends_from_future_end():
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    current_end = datetime(2026, 1, 20, tzinfo=timezone.utc)
    start, end = renewal_window(current_end, 1, now)
    assert start == current_end
    assert end == datetime(2026, 2, 20, tzinfo=timezone.utc)


def test_renewal_restarts_from_now_after_lapse():
    now = datetime(2026, 2, 1, tzinfo=timezone.utc)
    current_end = datetime(2026, 1, 15, tzinfo=timezone.utc)
    start, end = renewal_window(current_end, 2, now)
    assert start == now
    assert end == datetime(2026, 4, 1, tzinfo=timezone.utc)


# ── Lifecycle ──────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_subscription(client: AsyncClient, musician_user: User, redis):
    response = await client.post("/subscriptions", headers=auth_headers(musician_user), json={"duration_months": 1})
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["status"] == "ACTIVE"
    assert data["auto_renew"] is True
    assert _parse(data["end_date"]) > _parse(data["start_date"]) + timedelta(days=27)

    events = redis.events_for(musician_user, "notification")
    assert [e["data"]["type"] for e in events] == ["subscription_activated"]


@pytest.mark.asyncio
async def test_create_when_active_rejected(client: AsyncClient, musician_user: User, db: AsyncSession):
    await activate_subscription(db, musician_user)
    response = await client.post("/subscriptions", headers=auth_headers(musician_user), json={})
    assert response.status_code == 400
    assert response.json()["message"] == "Active subscription already exists."


@pytest.mark.asyncio
async def test_create_replaces_lapsed_row(client: AsyncClient, musician_user: User, db: AsyncSession):
    lapsed = await activate_subscription(db, musician_user, days=-3)

    response = await client.post("/subscriptions", headers=auth_headers(musician_user), json={})
    assert response.status_code == 201
    assert response.json()["data"]["id"] == str(lapsed.id)
    assert response.json()["data"]["status"] == "ACTIVE"


@pytest.mark.asyncio
async def test_create_rejects_active_row_near_its_end(client: AsyncClient, musician_user: User, db: AsyncSession):
    subscription = await activate_subscription(db, musician_user)
    subscription.end_date = datetime.now(timezone.utc) + timedelta(minutes=5)
    await db.commit()

    response = await client.post("/subscriptions", headers=auth_headers(musician_user), json={})
    assert response.status_code == 400
    assert response.json()["message"] == "Active subscription already exists."


@pytest.mark.asyncio
async def test_create_rejects_payment_already_linked(client: AsyncClient, musician_user: User, db: AsyncSession):
    payment = Payment(
        user_id=musician_user.id,
        amount=5000,
        transaction_ref="TXN-1-USED",
        status=PaymentStatus.SUCCESSFUL,
        payment_metadata={"type": "subscription"},
    )
    db.add(payment)
    await db.commit()
    subscription = await activate_subscription(db, musician_user, days=-1)
    subscription.payment_id = payment.id
    await db.commit()

    response = await client.post(
        "/subscriptions", headers=auth_headers(musician_user), json={"payment_id": str(payment.id)}
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Payment already used for a subscription."

    response = await client.post(
        "/subscriptions/renew", headers=auth_headers(musician_user), json={"payment_id": str(payment.id)}
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Payment already used for a subscription."


@pytest.mark.asyncio
async def test_create_without_profile(client: AsyncClient, db: AsyncSession):
    from shared.models.models import UserRole
    from tests.conftest import make_user

    bare = await make_user(db, "bare@example.com", UserRole.MUSICIAN)
    response = await client.post("/subscriptions", headers=auth_headers(bare), json={})
    assert response.status_code == 404
    assert response.json()["message"] == "Musician profile not found. Create a profile first."


@pytest.mark.asyncio
async def test_create_with_unverified_payment(client: AsyncClient, musician_user: User, db: AsyncSession):
    payment = Payment(
        user_id=musician_user.id,
        amount=5000,
        transaction_ref="TXN-1-PENDING",
        status=PaymentStatus.PENDING,
        payment_metadata={"type": "subscription"},
    )
    db.add(payment)
    await db.commit()

    response = await client.post(
        "/subscriptions", headers=auth_headers(musician_user), json={"payment_id": str(payment.id)}
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Payment has not been verified."

    response = await client.post(
        "/subscriptions", headers=auth_headers(musician_user), json={"payment_id": str(uuid.uuid4())}
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_renew_keeps_remaining_time(client: AsyncClient, musician_user: User, db: AsyncSession):
    subscription = await activate_subscription(db, musician_user, days=10)
    previous_end = subscription.end_date

    response = await client.post("/subscriptions/renew", headers=auth_headers(musician_user), json={"duration_months": 1})
    assert response.status_code == 200
    data = response.json()["data"]
    assert _parse(data["start_date"]) == previous_end
    assert _parse(data["end_date"]) == add_months(previous_end, 1)


@pytest.mark.asyncio
async def test_renew_after_lapse_starts_now(client: AsyncClient, musician_user: User, db: AsyncSession):
    subscription = await activate_subscription(db, musician_user, days=-5)
    before = datetime.now(timezone.utc)

    response = await client.post("/subscriptions/renew", headers=auth_headers(musician_user), json={"duration_months": 1})
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "ACTIVE"
    assert _parse(data["start_date"]) >= before
    assert _parse(data["start_date"]) > subscription.end_date


@pytest.mark.asyncio
async def test_renew_without_subscription(client: AsyncClient, musician_user: User):
    response = await client.post("/subscriptions/renew", headers=auth_headers(musician_user), json={})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_cancel_stops_auto_renew(client: AsyncClient, musician_user: User, db: AsyncSession, redis):
    await activate_subscription(db, musician_user)

    response = await client.patch("/subscriptions/cancel", headers=auth_headers(musician_user))
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "CANCELLED"
    assert data["auto_renew"] is False
    assert redis.events_for(musician_user)[-1]["data"]["type"] == "subscription_cancelled"


# ── Status ─────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_status_without_subscription(client: AsyncClient, musician_user: User):
    response = await client.get("/subscriptions/status", headers=auth_headers(musician_user))
    assert response.status_code == 200
    assert response.json()["data"]["has_subscription"] is False
    assert response.json()["data"]["is_active"] is False


@pytest.mark.asyncio
async def test_status_expires_lapsed_subscription(client: AsyncClient, musician_user: User, db: AsyncSession):
    subscription = await activate_subscription(db, musician_user, days=-1)

    # Nothing rewrites the row until its status is read
    response = await client.get("/musicians/search")
    assert response.json()["data"]["total"] == 0
    stored = await db.get(Subscription, subscription.id, populate_existing=True)
    assert stored.status == SubscriptionStatus.ACTIVE

    response = await client.get("/subscriptions/status", headers=auth_headers(musician_user))
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["has_subscription"] is True
    assert data["is_active"] is False
    assert data["status"] == "EXPIRED"

    stored = await db.get(Subscription, subscription.id, populate_existing=True)
    assert stored.status == SubscriptionStatus.EXPIRED


@pytest.mark.asyncio
async def test_my_subscription_detail(client: AsyncClient, musician_user: User, db: AsyncSession):
    await activate_subscription(db, musician_user, days=10)

    response = await client.get("/subscriptions/me", headers=auth_headers(musician_user))
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["is_expired"] is False
    assert data["days_remaining"] == 10


@pytest.mark.asyncio
async def test_client_cannot_subscribe(client: AsyncClient, client_user: User):
    response = await client.post("/subscriptions", headers=auth_headers(client_user), json={})
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_admin_lists_subscriptions(
    client: AsyncClient, admin_user: User, musician_user: User, other_musician: User, db: AsyncSession
):
    await activate_subscription(db, musician_user)
    await activate_subscription(db, other_musician, days=-2)

    response = await client.get("/subscriptions/all", headers=auth_headers(admin_user), params={"status": "active"})
    assert response.status_code == 200
    assert response.json()["data"]["total"] == 2
