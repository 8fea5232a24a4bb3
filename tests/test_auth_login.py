"""Tests for auth login, me and permissions endpoints."""

import uuid

import pytest
from httpx import AsyncClient

from crmgate.core.permissions import Role
from crmgate.models.user import User


async def _register(client: AsyncClient, subdomain: str = "auth-test"):
    """Helper: register a tenant and return (headers, data)."""
    resp = await client.post("/v1/tenants/register", json={
        "tenant_name": "Auth Test Co",
        "subdomain": subdomain,
        "admin_email": f"admin@{subdomain}.com",
        "admin_password": "testpass123",
        "admin_full_name": "Auth Admin",
    })
    assert resp.status_code == 201
    data = resp.json()
    headers = {"Authorization": f"Bearer {data['access_token']}"}
    return headers, data


@pytest.mark.asyncio
async def test_login_success(client: AsyncClient):
    """Login with valid credentials returns JWT + user + tenant."""
    await _register(client, subdomain="login-ok")

    resp = await client.post("/v1/auth/login", json={
        "email": "admin@login-ok.com",
        "password": "testpass123",
    })
    assert resp.status_code == 200
    data = resp.json()
    assert data["token_type"] == "bearer"
    assert "." in data["access_token"]  # JWT has dots
    assert data["user"]["email"] == "admin@login-ok.com"
    assert data["user"]["role"] == "Admin"
    assert data["tenant"]["subdomain"] == "login-ok"


@pytest.mark.asyncio
async def test_login_wrong_password(client: AsyncClient):
    """Login with wrong password returns 401."""
    await _register(client, subdomain="login-bad-pw")

    resp = await client.post("/v1/auth/login", json={
        "email": "admin@login-bad-pw.com",
        "password": "wrongpassword",
    })
    assert resp.status_code == 401
    assert "Invalid" in resp.json()["detail"]


@pytest.mark.asyncio
async def test_login_unknown_email(client: AsyncClient):
    """Login with nonexistent email returns 401."""
    resp = await client.post("/v1/auth/login", json={
        "email": "nobody@nowhere.com",
        "password": "whatever123",
    })
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_login_disabled_user(client: AsyncClient):
    """A deactivated user cannot log in."""
    headers, _ = await _register(client, subdomain="login-disabled")
    resp = await client.post("/v1/users", json={
        "email": "gone@login-disabled.com",
        "password": "password123",
        "role": "Sales Rep",
    }, headers=headers)
    user_id = resp.json()["id"]
    resp = await client.delete(f"/v1/users/{user_id}", headers=headers)
    assert resp.status_code == 204

    resp = await client.post("/v1/auth/login", json={
        "email": "gone@login-disabled.com",
        "password": "password123",
    })
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_me_with_jwt(client: AsyncClient):
    """GET /auth/me with a JWT returns user + tenant."""
    await _register(client, subdomain="me-jwt")

    resp = await client.post("/v1/auth/login", json={
        "email": "admin@me-jwt.com",
        "password": "testpass123",
    })
    jwt = resp.json()["access_token"]

    resp = await client.get("/v1/auth/me", headers={"Authorization": f"Bearer {jwt}"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["user"]["email"] == "admin@me-jwt.com"
    assert data["tenant"]["subdomain"] == "me-jwt"


@pytest.mark.asyncio
async def test_me_without_token(client: AsyncClient):
    resp = await client.get("/v1/auth/me")
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_me_with_garbage_token(client: AsyncClient):
    resp = await client.get("/v1/auth/me", headers={"Authorization": "Bearer not.a.jwt"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_permissions_for_sales_rep(client: AsyncClient):
    """A Sales Rep sees own-record permissions only."""
    headers, _ = await _register(client, subdomain="perm-list")
    await client.post("/v1/users", json={
        "email": "rep@perm-list.com",
        "password": "password123",
        "role": "Sales Rep",
    }, headers=headers)
    resp = await client.post("/v1/auth/login", json={
        "email": "rep@perm-list.com",
        "password": "password123",
    })
    rep_headers = {"Authorization": f"Bearer {resp.json()['access_token']}"}

    resp = await client.get("/v1/auth/permissions", headers=rep_headers)
    assert resp.status_code == 200
    data = resp.json()
    assert data["role"] == "Sales Rep"
    granted = {entry["permission"] for entry in data["permissions"]}
    assert "lead:update" in granted
    assert "lead:update:all" not in granted
    assert all(entry["label"] for entry in data["permissions"])


@pytest.mark.asyncio
async def test_deactivated_user_token_is_rejected(client: AsyncClient):
    """An issued token stops working once its user is deactivated."""
    headers, _ = await _register(client, subdomain="token-revoked")
    resp = await client.post("/v1/users", json={
        "email": "rep@token-revoked.com",
        "password": "password123",
        "role": "Sales Rep",
    }, headers=headers)
    user_id = resp.json()["id"]
    resp = await client.post("/v1/auth/login", json={
        "email": "rep@token-revoked.com",
        "password": "password123",
    })
    rep_headers = {"Authorization": f"Bearer {resp.json()['access_token']}"}
    resp = await client.get("/v1/auth/me", headers=rep_headers)
    assert resp.status_code == 200

    resp = await client.delete(f"/v1/users/{user_id}", headers=headers)
    assert resp.status_code == 204

    resp = await client.post("/v1/leads", json={"name": "After hours"}, headers=rep_headers)
    assert resp.status_code == 401
    resp = await client.get("/v1/auth/me", headers=rep_headers)
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_role_change_applies_to_existing_token(client: AsyncClient, session):
    """Permissions follow the stored role, not the role baked into the token."""
    headers, _ = await _register(client, subdomain="role-change")
    resp = await client.post("/v1/users", json={
        "email": "rep@role-change.com",
        "password": "password123",
        "role": "Sales Rep",
    }, headers=headers)
    user_id = uuid.UUID(resp.json()["id"])
    resp = await client.post("/v1/auth/login", json={
        "email": "rep@role-change.com",
        "password": "password123",
    })
    rep_headers = {"Authorization": f"Bearer {resp.json()['access_token']}"}

    user = await session.get(User, user_id)
    user.role = Role.VIEWER
    session.add(user)
    await session.commit()

    resp = await client.get("/v1/auth/permissions", headers=rep_headers)
    assert resp.json()["role"] == "Viewer"
    resp = await client.post("/v1/leads", json={"name": "Nope"}, headers=rep_headers)
    assert resp.status_code == 403
