"""
tests/test_reviews.py
Reviews on completed bookings and the musician's derived average rating.
"""

import uuid
from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import MusicianProfile, Review, User, utcnow
from tests.conftest import accepted_booking, auth_headers, completed_booking, create_booking


async def _average(db: AsyncSession, musician: User) -> float:
    return await db.scalar(select(MusicianProfile.average_rating).where(MusicianProfile.user_id == musician.id))


async def _review(client: AsyncClient, reviewer: User, booking: dict, rating: int, comment: str = "Great show") -> dict:
    response = await client.post(
        "/reviews",
        headers=auth_headers(reviewer),
        json={"booking_id": booking["id"], "rating": rating, "comment": comment},
    )
    assert response.status_code == 201, response.text
    return response.json()["data"]


# ── Create ─────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_review_completed_booking(
    client: AsyncClient, client_user: User, musician_user: User, db: AsyncSession, redis
):
    booking = await completed_booking(client, client_user, musician_user)

    review = await _review(client, client_user, booking, 4)
    assert review["rating"] == 4
    assert review["reviewer_name"] == "Ada Obi"
    assert await _average(db, musician_user) == 4.0

    event = redis.events_for(musician_user, "notification")[-1]["data"]
    assert event["type"] == "review_received"
    assert event["message"] == "You received a 4-star review"


@pytest.mark.asyncio
async def test_average_is_recomputed_over_all_reviews(
    client: AsyncClient, client_user: User, other_client: User, musician_user: User, db: AsyncSession
):
    first = await completed_booking(client, client_user, musician_user)
    second = await completed_booking(client, other_client, musician_user)
    third = await completed_booking(client, client_user, musician_user)

    await _review(client, client_user, first, 5)
    await _review(client, other_client, second, 4)
    await _review(client, client_user, third, 4)

    assert await _average(db, musician_user) == 4.33


@pytest.mark.asyncio
async def test_cannot_review_unfinished_booking(client: AsyncClient, client_user: User, musician_user: User):
    pending = await create_booking(client, client_user, musician_user)
    accepted = await accepted_booking(client, client_user, musician_user)

    for booking in (pending, accepted):
        response = await client.post(
            "/reviews", headers=auth_headers(client_user), json={"booking_id": booking["id"], "rating": 5}
        )
        assert response.status_code == 404
        assert response.json()["message"] == "Booking not found or not completed."


@pytest.mark.asyncio
async def test_only_the_bookings_client_reviews(
    client: AsyncClient, client_user: User, other_client: User, musician_user: User
):
    booking = await completed_booking(client, client_user, musician_user)
    response = await client.post(
        "/reviews", headers=auth_headers(other_client), json={"booking_id": booking["id"], "rating": 1}
    )
    assert response.status_code == 404

    response = await client.post(
        "/reviews", headers=auth_headers(musician_user), json={"booking_id": booking["id"], "rating": 5}
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_one_review_per_booking(client: AsyncClient, client_user: User, musician_user: User):
    booking = await completed_booking(client, client_user, musician_user)
    await _review(client, client_user, booking, 5)

    response = await client.post(
        "/reviews", headers=auth_headers(client_user), json={"booking_id": booking["id"], "rating": 3}
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Review already exists for this booking."


@pytest.mark.asyncio
async def test_rating_out_of_range(client: AsyncClient, client_user: User, musician_user: User):
    booking = await completed_booking(client, client_user, musician_user)
    response = await client.post(
        "/reviews", headers=auth_headers(client_user), json={"booking_id": booking["id"], "rating": 6}
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Validation failed."


# ── Update / Delete ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_update_rating_recomputes_average(
    client: AsyncClient, client_user: User, musician_user: User, db: AsyncSession
):
    booking = await completed_booking(client, client_user, musician_user)
    review = await _review(client, client_user, booking, 2)

    response = await client.put(
        f"/reviews/{review['id']}", headers=auth_headers(client_user), json={"rating": 5, "comment": "Even better"}
    )
    assert response.status_code == 200
    assert response.json()["data"]["rating"] == 5
    assert response.json()["data"]["comment"] == "Even better"
    assert await _average(db, musician_user) == 5.0


@pytest.mark.asyncio
async def test_update_after_edit_window(
    client: AsyncClient, client_user: User, musician_user: User, db: AsyncSession
):
    booking = await completed_booking(client, client_user, musician_user)
    review = await _review(client, client_user, booking, 3)

    await db.execute(
        update(Review)
        .where(Review.id == uuid.UUID(review["id"]))
        .values(created_at=utcnow() - timedelta(days=8))
    )
    await db.commit()

    response = await client.put(f"/reviews/{review['id']}", headers=auth_headers(client_user), json={"rating": 5})
    assert response.status_code == 400
    assert response.json()["message"] == "Reviews can only be edited within 7 days of creation."


@pytest.mark.asyncio
async def test_only_author_updates(client: AsyncClient, client_user: User, other_client: User, musician_user: User):
    booking = await completed_booking(client, client_user, musician_user)
    review = await _review(client, client_user, booking, 3)

    response = await client.put(f"/reviews/{review['id']}", headers=auth_headers(other_client), json={"rating": 1})
    assert response.status_code == 404
    assert response.json()["message"] == "Review not found or unauthorized."


@pytest.mark.asyncio
async def test_deleting_last_review_resets_average(
    client: AsyncClient, client_user: User, musician_user: User, db: AsyncSession
):
    booking = await completed_booking(client, client_user, musician_user)
    review = await _review(client, client_user, booking, 5)
    assert await _average(db, musician_user) == 5.0

    response = await client.delete(f"/reviews/{review['id']}", headers=auth_headers(client_user))
    assert response.status_code == 200
    assert await _average(db, musician_user) == 0.0

    response = await client.get(f"/reviews/{review['id']}")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_deleting_one_review_recomputes_from_the_rest(
    client: AsyncClient, client_user: User, other_client: User, musician_user: User, db: AsyncSession
):
    first = await completed_booking(client, client_user, musician_user)
    second = await completed_booking(client, other_client, musician_user)
    third = await completed_booking(client, client_user, musician_user)

    await _review(client, client_user, first, 5)
    middle = await _review(client, other_client, second, 3)
    await _review(client, client_user, third, 4)
    assert await _average(db, musician_user) == 4.0

    response = await client.delete(f"/reviews/{middle['id']}", headers=auth_headers(other_client))
    assert response.status_code == 200
    assert await _average(db, musician_user) == 4.5


# ── Read ───────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_musician_review_feed(
    client: AsyncClient, client_user: User, other_client: User, musician_user: User
):
    await _review(client, client_user, await completed_booking(client, client_user, musician_user), 5)
    await _review(client, other_client, await completed_booking(client, other_client, musician_user), 3)

    response = await client.get(f"/reviews/musician/{musician_user.id}")
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["total"] == 2
    assert data["average_rating"] == 4.0
    assert data["rating_distribution"] == {"1": 0, "2": 0, "3": 1, "4": 0, "5": 1}


@pytest.mark.asyncio
async def test_my_reviews(client: AsyncClient, client_user: User, other_client: User, musician_user: User):
    await _review(client, client_user, await completed_booking(client, client_user, musician_user), 4)

    response = await client.get("/reviews/me", headers=auth_headers(client_user))
    assert response.json()["data"]["total"] == 1

    response = await client.get("/reviews/me", headers=auth_headers(other_client))
    assert response.json()["data"]["total"] == 0
