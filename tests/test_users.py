"""
tests/test_users.py
Own-account profile management and the public user card.
"""

import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import Booking, MusicianProfile, User, UserRole
from tests.conftest import auth_headers, create_booking, make_user


@pytest.mark.asyncio
async def test_get_own_profile(client: AsyncClient, client_user: User):
    response = await client.get("/users/me", headers=auth_headers(client_user))
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["first_name"] == "Ada"
    assert data["role"] == "CLIENT"


@pytest.mark.asyncio
async def test_update_profile_partial(client: AsyncClient, client_user: User):
    response = await client.put(
        "/users/me",
        headers=auth_headers(client_user),
        json={"last_name": "Okonkwo", "profile_image": "https://cdn.example.com/ada.png"},
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["first_name"] == "Ada"
    assert data["last_name"] == "Okonkwo"
    assert data["profile_image"] == "https://cdn.example.com/ada.png"
    assert response.json()["message"] == "User updated successfully."


@pytest.mark.asyncio
async def test_update_phone_conflict(client: AsyncClient, db: AsyncSession, client_user: User):
    await make_user(db, "taken@example.com", UserRole.CLIENT, phone="+2348099999999")

    response = await client.put(
        "/users/me", headers=auth_headers(client_user), json={"phone": "+2348099999999"}
    )
    assert response.status_code == 409
    assert response.json()["message"] == "Phone number already in use."


@pytest.mark.asyncio
async def test_update_invalid_phone(client: AsyncClient, client_user: User):
    response = await client.put("/users/me", headers=auth_headers(client_user), json={"phone": "12ab"})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_delete_account_cascades(
    client: AsyncClient, db: AsyncSession, client_user: User, musician_user: User
):
    await create_booking(client, client_user, musician_user)

    response = await client.delete("/users/me", headers=auth_headers(musician_user))
    assert response.status_code == 200
    assert response.json()["message"] == "User deleted successfully."

    assert await db.get(User, musician_user.id, populate_existing=True) is None
    assert await db.scalar(select(MusicianProfile).where(MusicianProfile.user_id == musician_user.id)) is None
    assert (await db.scalars(select(Booking))).all() == []

    # The old token no longer resolves to a user
    response = await client.get("/users/me", headers=auth_headers(musician_user))
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_public_user_card(client: AsyncClient, musician_user: User):
    response = await client.get(f"/users/{musician_user.id}")
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["first_name"] == "Tunde"
    assert "email" not in data
    assert "phone" not in data


@pytest.mark.asyncio
async def test_public_user_hidden_when_inactive(client: AsyncClient, db: AsyncSession, musician_user: User):
    musician_user.is_active = False
    await db.commit()

    response = await client.get(f"/users/{musician_user.id}")
    assert response.status_code == 404

    response = await client.get(f"/users/{uuid.uuid4()}")
    assert response.status_code == 404
    assert response.json()["message"] == "User not found."
