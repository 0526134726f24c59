"""API tests for the auth callback, sign-out and health probes."""

from __future__ import annotations

import uuid

import httpx
import pytest
from sqlalchemy import func, select

from src.models.profile import Profile
from src.models.tenant import Tenant
from tests.conftest import auth_headers_for, make_token


@pytest.mark.asyncio
async def test_callback_bootstraps_profile(client: httpx.AsyncClient, session_factory) -> None:
    sub = str(uuid.uuid4())
    response = await client.post(
        "/api/v1/auth/callback",
        headers=auth_headers_for(sub, "ada@example.com", name="Ada"),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["id"] == sub
    assert body["data"]["name"] == "Ada"
    assert body["data"]["current_tenant_id"] is not None

    async with session_factory() as s:
        assert await s.get(Profile, uuid.UUID(sub)) is not None
        tenant = (await s.execute(select(Tenant))).scalar_one()
        assert tenant.name == "Ada's workspace"


@pytest.mark.asyncio
async def test_callback_twice_creates_one_workspace(client: httpx.AsyncClient, session_factory) -> None:
    headers = auth_headers_for(str(uuid.uuid4()), "twice@example.com")
    first = await client.post("/api/v1/auth/callback", headers=headers)
    second = await client.post("/api/v1/auth/callback", headers=headers)

    assert first.status_code == second.status_code == 200
    assert first.json()["data"]["current_tenant_id"] == second.json()["data"]["current_tenant_id"]
    async with session_factory() as s:
        assert (await s.execute(select(func.count()).select_from(Tenant))).scalar_one() == 1


@pytest.mark.asyncio
async def test_callback_requires_token(client: httpx.AsyncClient) -> None:
    response = await client.post("/api/v1/auth/callback")
    assert response.status_code == 401
    assert response.json()["code"] == "authentication_required"


@pytest.mark.asyncio
async def test_callback_rejects_unverified_email(client: httpx.AsyncClient, session_factory) -> None:
    response = await client.post(
        "/api/v1/auth/callback",
        headers=auth_headers_for(str(uuid.uuid4()), "new@example.com", email_verified=False),
    )
    assert response.status_code == 401
    async with session_factory() as s:
        assert (await s.execute(select(func.count()).select_from(Profile))).scalar_one() == 0


@pytest.mark.asyncio
async def test_sign_out_revokes_token(client: httpx.AsyncClient) -> None:
    token = make_token(str(uuid.uuid4()), "bye@example.com")
    headers = {"Authorization": f"Bearer {token}"}
    await client.post("/api/v1/auth/callback", headers=headers)

    response = await client.post("/api/v1/auth/sign-out", headers=headers)
    assert response.status_code == 200
    assert response.json()["data"] == {"signed_out": True}

    after = await client.post("/api/v1/auth/callback", headers=headers)
    assert after.status_code == 401

    again = await client.post("/api/v1/auth/sign-out", headers=headers)
    assert again.status_code == 401


@pytest.mark.asyncio
async def test_sign_out_without_token(client: httpx.AsyncClient) -> None:
    response = await client.post("/api/v1/auth/sign-out")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_liveness(client: httpx.AsyncClient) -> None:
    response = await client.get("/health/live")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.headers["x-request-id"].startswith("req_")


@pytest.mark.asyncio
async def test_readiness_without_database(client: httpx.AsyncClient) -> None:
    # The module-level engine is not initialized under the test transport
    response = await client.get("/health/ready")
    assert response.status_code == 503
    assert response.json()["database"] == "error"
