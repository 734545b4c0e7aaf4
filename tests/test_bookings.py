"""
tests/test_bookings.py
Booking lifecycle: create → accept/reject → complete/cancel.
Every transition is guarded by party and current state.
"""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import Booking, BookingStatus, Instrument, MusicianProfile, Notification, User
from tests.conftest import (
    accepted_booking,
    auth_headers,
    booking_payload,
    create_booking,
)


async def _profile(db: AsyncSession, user: User) -> MusicianProfile:
    return await db.scalar(
        select(MusicianProfile)
        .where(MusicianProfile.user_id == user.id)
        .execution_options(populate_existing=True)
    )


# ── Booking Creation ───────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_booking_success(client: AsyncClient, client_user: User, musician_user: User, redis):
    """Client can request an available musician; the booking starts PENDING."""
    response = await client.post(
        "/bookings", headers=auth_headers(client_user), json=booking_payload(musician_user)
    )
    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "Booking created successfully."
    booking = body["data"]
    assert booking["status"] == "PENDING"
    assert booking["agreed_rate"] is None
    assert Decimal(booking["offered_rate"]) == Decimal("150000.00")

    # The musician is told about the request in real time
    events = redis.events_for(musician_user, "notification")
    assert len(events) == 1
    assert events[0]["data"]["type"] == "booking_request"
    assert events[0]["data"]["metadata"]["bookingId"] == booking["id"]


@pytest.mark.asyncio
async def test_create_booking_with_instruments(
    client: AsyncClient, client_user: User, musician_user: User, db: AsyncSession
):
    guitar = Instrument(name="Bass Guitar")
    db.add(guitar)
    await db.commit()

    booking = await create_booking(client, client_user, musician_user, instrument_ids=[str(guitar.id)])
    assert [i["name"] for i in booking["instruments"]] == ["Bass Guitar"]


@pytest.mark.asyncio
async def test_create_booking_unknown_instrument(client: AsyncClient, client_user: User, musician_user: User):
    response = await client.post(
        "/bookings",
        headers=auth_headers(client_user),
        json=booking_payload(musician_user, instrument_ids=[str(uuid.uuid4())]),
    )
    assert response.status_code == 400
    assert response.json()["message"] == "One or more instruments do not exist."


@pytest.mark.asyncio
async def test_create_booking_past_date_rejected(client: AsyncClient, client_user: User, musician_user: User):
    """Event dates in the past fail request validation."""
    past = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
    response = await client.post(
        "/bookings", headers=auth_headers(client_user), json=booking_payload(musician_user, event_date=past)
    )
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "Validation failed."
    assert any(err["field"] == "event_date" for err in body["data"]["errors"])


@pytest.mark.asyncio
async def test_create_booking_for_non_musician(client: AsyncClient, client_user: User, other_client: User):
    response = await client.post(
        "/bookings", headers=auth_headers(client_user), json=booking_payload(other_client)
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Invalid musician ID."


@pytest.mark.asyncio
async def test_create_booking_unavailable_musician(
    client: AsyncClient, client_user: User, musician_user: User, db: AsyncSession
):
    profile = await _profile(db, musician_user)
    profile.is_available = False
    await db.commit()

    response = await client.post(
        "/bookings", headers=auth_headers(client_user), json=booking_payload(musician_user)
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Musician is not available."


@pytest.mark.asyncio
async def test_musician_cannot_create_booking(client: AsyncClient, musician_user: User, other_musician: User):
    response = await client.post(
        "/bookings", headers=auth_headers(musician_user), json=booking_payload(other_musician)
    )
    assert response.status_code == 403


# ── State Transitions ──────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_accept_defaults_agreed_rate_to_offered(
    client: AsyncClient, client_user: User, musician_user: User, redis
):
    booking = await create_booking(client, client_user, musician_user)

    response = await client.patch(f"/bookings/{booking['id']}/accept", headers=auth_headers(musician_user))
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "ACCEPTED"
    assert Decimal(data["agreed_rate"]) == Decimal(booking["offered_rate"])

    accepted = redis.events_for(client_user, "notification")
    assert [e["data"]["type"] for e in accepted] == ["booking_accepted"]


@pytest.mark.asyncio
async def test_accept_with_counter_rate(client: AsyncClient, client_user: User, musician_user: User):
    booking = await accepted_booking(client, client_user, musician_user, agreed_rate="175000.00")
    assert Decimal(booking["agreed_rate"]) == Decimal("175000.00")


@pytest.mark.asyncio
async def test_second_accept_is_not_found(client: AsyncClient, client_user: User, musician_user: User, db):
    """Once answered, a booking cannot be accepted again; the first decision stands."""
    booking = await accepted_booking(client, client_user, musician_user)

    response = await client.patch(f"/bookings/{booking['id']}/accept", headers=auth_headers(musician_user))
    assert response.status_code == 404
    assert response.json()["message"] == "Booking not found or already processed."

    response = await client.patch(f"/bookings/{booking['id']}/reject", headers=auth_headers(musician_user))
    assert response.status_code == 404

    stored = await db.get(Booking, uuid.UUID(booking["id"]), populate_existing=True)
    assert stored.status == BookingStatus.ACCEPTED


@pytest.mark.asyncio
async def test_other_musician_cannot_accept(
    client: AsyncClient, client_user: User, musician_user: User, other_musician: User
):
    """The wrong party gets the same 404 as a missing booking."""
    booking = await create_booking(client, client_user, musician_user)

    response = await client.patch(f"/bookings/{booking['id']}/accept", headers=auth_headers(other_musician))
    assert response.status_code == 404
    assert response.json()["message"] == "Booking not found or already processed."


@pytest.mark.asyncio
async def test_accept_missing_booking(client: AsyncClient, musician_user: User):
    response = await client.patch(f"/bookings/{uuid.uuid4()}/accept", headers=auth_headers(musician_user))
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_reject_booking(client: AsyncClient, client_user: User, musician_user: User, redis):
    booking = await create_booking(client, client_user, musician_user)

    response = await client.patch(f"/bookings/{booking['id']}/reject", headers=auth_headers(musician_user))
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "REJECTED"
    assert [e["data"]["type"] for e in redis.events_for(client_user)] == ["booking_rejected"]

    # Terminal: nothing moves a rejected booking
    response = await client.patch(f"/bookings/{booking['id']}/cancel", headers=auth_headers(client_user))
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_client_cancels_pending_booking(client: AsyncClient, client_user: User, musician_user: User, redis):
    booking = await create_booking(client, client_user, musician_user)

    response = await client.patch(f"/bookings/{booking['id']}/cancel", headers=auth_headers(client_user))
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "CANCELLED"

    # The counterparty is the one notified
    types = [e["data"]["type"] for e in redis.events_for(musician_user)]
    assert types == ["booking_request", "booking_cancelled"]


@pytest.mark.asyncio
async def test_musician_cancels_accepted_booking(client: AsyncClient, client_user: User, musician_user: User, redis):
    booking = await accepted_booking(client, client_user, musician_user)

    response = await client.patch(f"/bookings/{booking['id']}/cancel", headers=auth_headers(musician_user))
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "CANCELLED"
    assert redis.events_for(client_user)[-1]["data"]["type"] == "booking_cancelled"


@pytest.mark.asyncio
async def test_outsider_cannot_cancel(
    client: AsyncClient, client_user: User, other_client: User, musician_user: User
):
    booking = await create_booking(client, client_user, musician_user)

    response = await client.patch(f"/bookings/{booking['id']}/cancel", headers=auth_headers(other_client))
    assert response.status_code == 404
    assert response.json()["message"] == "Booking not found or cannot be cancelled."


@pytest.mark.asyncio
async def test_complete_increments_total_gigs_once(
    client: AsyncClient, client_user: User, musician_user: User, db: AsyncSession
):
    booking = await accepted_booking(client, client_user, musician_user)
    assert (await _profile(db, musician_user)).total_gigs == 0

    response = await client.patch(f"/bookings/{booking['id']}/complete", headers=auth_headers(client_user))
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "COMPLETED"
    assert (await _profile(db, musician_user)).total_gigs == 1

    # A repeat completion changes nothing
    response = await client.patch(f"/bookings/{booking['id']}/complete", headers=auth_headers(musician_user))
    assert response.status_code == 404
    assert response.json()["message"] == "Booking not found or cannot be completed."
    assert (await _profile(db, musician_user)).total_gigs == 1

    response = await client.patch(f"/bookings/{booking['id']}/cancel", headers=auth_headers(client_user))
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_pending_booking_cannot_be_completed(
    client: AsyncClient, client_user: User, musician_user: User, db: AsyncSession
):
    booking = await create_booking(client, client_user, musician_user)

    response = await client.patch(f"/bookings/{booking['id']}/complete", headers=auth_headers(client_user))
    assert response.status_code == 404
    assert (await _profile(db, musician_user)).total_gigs == 0


@pytest.mark.asyncio
async def test_cancelled_booking_gigs_unchanged(
    client: AsyncClient, client_user: User, musician_user: User, db: AsyncSession
):
    booking = await accepted_booking(client, client_user, musician_user)
    await client.patch(f"/bookings/{booking['id']}/cancel", headers=auth_headers(client_user))
    assert (await _profile(db, musician_user)).total_gigs == 0


@pytest.mark.asyncio
async def test_each_transition_writes_one_notification(
    client: AsyncClient, client_user: User, musician_user: User, db: AsyncSession
):
    booking = await accepted_booking(client, client_user, musician_user)
    await client.patch(f"/bookings/{booking['id']}/complete", headers=auth_headers(musician_user))

    rows = (await db.execute(select(Notification.user_id, Notification.type).order_by(Notification.created_at))).all()
    assert [(r.user_id, r.type) for r in rows] == [
        (musician_user.id, "booking_request"),
        (client_user.id, "booking_accepted"),
        (client_user.id, "booking_completed"),
    ]


# ── Retrieval ──────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_list_bookings_empty(client: AsyncClient, client_user: User):
    response = await client.get("/bookings", headers=auth_headers(client_user))
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["items"] == []
    assert data["total"] == 0


@pytest.mark.asyncio
async def test_list_bookings_with_status_filter(client: AsyncClient, client_user: User, musician_user: User):
    first = await create_booking(client, client_user, musician_user)
    await accepted_booking(client, client_user, musician_user)

    response = await client.get("/bookings/client", headers=auth_headers(client_user), params={"status": "pending"})
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["total"] == 1
    assert data["items"][0]["id"] == first["id"]

    response = await client.get("/bookings", headers=auth_headers(musician_user), params={"status": "BOGUS"})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_pending_requests_for_musician(
    client: AsyncClient, client_user: User, musician_user: User, other_musician: User
):
    await create_booking(client, client_user, musician_user)
    await create_booking(client, client_user, other_musician)

    response = await client.get("/bookings/pending", headers=auth_headers(musician_user))
    assert response.status_code == 200
    items = response.json()["data"]["items"]
    assert len(items) == 1
    assert items[0]["musician_id"] == str(musician_user.id)


@pytest.mark.asyncio
async def test_booking_visible_to_parties_only(
    client: AsyncClient, client_user: User, other_client: User, musician_user: User
):
    booking = await create_booking(client, client_user, musician_user)

    for party in (client_user, musician_user):
        response = await client.get(f"/bookings/{booking['id']}", headers=auth_headers(party))
        assert response.status_code == 200

    response = await client.get(f"/bookings/{booking['id']}", headers=auth_headers(other_client))
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_booking_count_matches_requests(client: AsyncClient, client_user: User, musician_user: User, db):
    for _ in range(3):
        await create_booking(client, client_user, musician_user)
    assert await db.scalar(select(func.count(Booking.id))) == 3
