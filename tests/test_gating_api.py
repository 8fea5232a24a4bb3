"""Tenant resolution and gate denials as seen over HTTP."""

import uuid
from datetime import timedelta

import pytest
from httpx import AsyncClient

from crmgate.core.plans import Plan
from crmgate.models.base import utcnow
from crmgate.models.tenant import SubscriptionStatus, Tenant
from crmgate.services import tenants as tenant_service


async def _register(client: AsyncClient, subdomain: str, plan: str = "starter"):
    """Helper: register a tenant and return (headers, data)."""
    resp = await client.post("/v1/tenants/register", json={
        "tenant_name": f"{subdomain} Co",
        "subdomain": subdomain,
        "admin_email": f"admin@{subdomain}.com",
        "admin_password": "testpass123",
        "admin_full_name": "Admin User",
        "plan": plan,
    })
    assert resp.status_code == 201
    data = resp.json()
    headers = {"Authorization": f"Bearer {data['access_token']}"}
    return headers, data


@pytest.mark.asyncio
async def test_suspended_tenant_is_blocked(client: AsyncClient, session):
    headers, data = await _register(client, "gate-suspended")
    tenant_id = uuid.UUID(data["tenant"]["id"])
    await tenant_service.suspend_tenant(session, tenant_id, reason="fraud review")

    resp = await client.get("/v1/leads", headers=headers)
    assert resp.status_code == 403
    detail = resp.json()["detail"]
    assert detail["code"] == "tenant_inactive"
    assert detail["status"] == "suspended"


@pytest.mark.asyncio
async def test_suspended_tenant_is_not_metered(client: AsyncClient, session, meter):
    headers, data = await _register(client, "gate-suspended-meter")
    tenant_id = uuid.UUID(data["tenant"]["id"])
    await tenant_service.suspend_tenant(session, tenant_id, reason="fraud review")

    await client.get("/v1/leads", headers=headers)
    usage = await meter.get_usage(data["tenant"]["id"])
    assert all(value == 0 for value in usage.values())


@pytest.mark.asyncio
async def test_professional_plan_cannot_use_enterprise_analytics(client: AsyncClient):
    headers, _ = await _register(client, "gate-pro", plan="professional")

    resp = await client.get("/v1/analytics/advanced", headers=headers)
    assert resp.status_code == 403
    detail = resp.json()["detail"]
    assert detail["code"] == "plan_upgrade_required"
    assert detail["allowed_plans"] == ["enterprise"]
    assert detail["current_plan"] == "professional"


@pytest.mark.asyncio
async def test_enterprise_plan_uses_analytics(client: AsyncClient):
    headers, data = await _register(client, "gate-ent", plan="enterprise")
    await client.post("/v1/leads", json={"name": "Big Deal", "value": 5000}, headers=headers)
    await client.post("/v1/leads", json={"name": "Bigger Deal", "value": 7000}, headers=headers)

    resp = await client.get("/v1/analytics/advanced", headers=headers)
    assert resp.status_code == 200
    pipeline = resp.json()["pipeline"]
    assert pipeline == [{
        "owner_id": data["admin_user"]["id"],
        "status": "new",
        "lead_count": 2,
        "total_value": 12000.0,
    }]


@pytest.mark.asyncio
async def test_expired_trial_blocks_subscription_gated_routes(client: AsyncClient, session):
    headers, data = await _register(client, "gate-trial", plan="enterprise")
    tenant = await session.get(Tenant, uuid.UUID(data["tenant"]["id"]))
    tenant.trial_ends_at = utcnow() - timedelta(hours=1)
    session.add(tenant)
    await session.commit()

    resp = await client.get("/v1/analytics/advanced", headers=headers)
    assert resp.status_code == 402
    detail = resp.json()["detail"]
    assert detail["code"] == "trial_expired"
    assert detail["payment_required"] is True


@pytest.mark.asyncio
async def test_past_due_blocks_subscription_gated_routes(client: AsyncClient, session):
    headers, data = await _register(client, "gate-pastdue", plan="enterprise")
    await tenant_service.mark_past_due(session, uuid.UUID(data["tenant"]["id"]))

    resp = await client.get("/v1/analytics/advanced", headers=headers)
    assert resp.status_code == 402
    assert resp.json()["detail"]["subscription_status"] == SubscriptionStatus.PAST_DUE


@pytest.mark.asyncio
async def test_plan_upgrade_unlocks_feature(client: AsyncClient, session):
    headers, data = await _register(client, "gate-upgrade")
    resp = await client.get("/v1/analytics/advanced", headers=headers)
    assert resp.status_code == 403

    await tenant_service.change_plan(session, uuid.UUID(data["tenant"]["id"]), Plan.ENTERPRISE)
    resp = await client.get("/v1/analytics/advanced", headers=headers)
    assert resp.status_code == 200


# ── Tenant resolution ────────────────────────────────────────

@pytest.mark.asyncio
async def test_cross_tenant_header_rejected(client: AsyncClient):
    headers, _ = await _register(client, "gate-xt-a")
    _, data_b = await _register(client, "gate-xt-b")

    resp = await client.get(
        "/v1/leads", headers={**headers, "X-Tenant-ID": data_b["tenant"]["id"]}
    )
    assert resp.status_code == 403
    assert resp.json()["detail"]["message"] == "Cross-tenant access is not permitted"


@pytest.mark.asyncio
async def test_cross_tenant_subdomain_rejected(client: AsyncClient):
    headers, _ = await _register(client, "gate-sub-a")
    await _register(client, "gate-sub-b")

    resp = await client.get(
        "/v1/tenant", headers={**headers, "Host": "gate-sub-b.crm.example.com"}
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_own_subdomain_resolves(client: AsyncClient):
    headers, _ = await _register(client, "gate-own")

    resp = await client.get(
        "/v1/tenant", headers={**headers, "Host": "gate-own.crm.example.com"}
    )
    assert resp.status_code == 200
    assert resp.json()["tenant"]["subdomain"] == "gate-own"


@pytest.mark.asyncio
async def test_own_tenant_header_resolves(client: AsyncClient):
    headers, data = await _register(client, "gate-hdr")

    resp = await client.get(
        "/v1/tenant", headers={**headers, "X-Tenant-ID": data["tenant"]["id"]}
    )
    assert resp.status_code == 200
