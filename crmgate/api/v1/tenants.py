"""Tenant registration (public) and current-tenant endpoints."""

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, EmailStr, Field

from crmgate.api.deps import Meter, Session, TenantContext
from crmgate.core.permissions import Permission
from crmgate.core.plans import Plan
from crmgate.core.security import create_jwt
from crmgate.models.base import utcnow
from crmgate.models.tenant import TenantRead, TenantSettingsUpdate
from crmgate.models.user import UserRead
from crmgate.services import tenants as tenant_service
from crmgate.services.usage import UsageReport

router = APIRouter(tags=["tenants"])


# ── Request / response schemas ────────────────────────────────

class TenantRegisterRequest(BaseModel):
    """Everything needed to create a tenant and its first admin in one call."""
    tenant_name: str = Field(min_length=2, max_length=255)
    subdomain: str = Field(min_length=3, max_length=63)
    admin_email: EmailStr
    admin_password: str = Field(min_length=8, max_length=128)
    admin_full_name: str = Field(min_length=2, max_length=255)
    plan: Plan = Plan.STARTER


class TenantRegisterResponse(BaseModel):
    tenant: TenantRead
    admin_user: UserRead
    access_token: str
    token_type: str = "bearer"


class SubdomainAvailability(BaseModel):
    subdomain: str
    available: bool


class TenantOverview(BaseModel):
    tenant: TenantRead
    stats: dict[str, int]
    usage: UsageReport


# ── Public routes ─────────────────────────────────────────────

@router.post(
    "/tenants/register",
    response_model=TenantRegisterResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new tenant",
)
async def register_tenant(
    body: TenantRegisterRequest,
    session: Session,
) -> TenantRegisterResponse:
    """Create a tenant on a 14-day trial, its Admin user, and a session token.

    This is the only unauthenticated write endpoint.
    """
    try:
        tenant, admin = await tenant_service.register_tenant(
            session,
            tenant_name=body.tenant_name,
            subdomain=body.subdomain,
            admin_email=body.admin_email,
            admin_password=body.admin_password,
            admin_full_name=body.admin_full_name,
            plan=body.plan,
        )
    except tenant_service.InvalidSubdomain as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except (tenant_service.SubdomainTaken, tenant_service.EmailTaken) as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    token = create_jwt(subject=str(admin.id), tenant_id=str(tenant.id), role=admin.role)
    return TenantRegisterResponse(
        tenant=TenantRead.model_validate(tenant),
        admin_user=UserRead.model_validate(admin),
        access_token=token,
    )


@router.get(
    "/tenants/check-subdomain/{subdomain}",
    response_model=SubdomainAvailability,
    summary="Check whether a subdomain can be claimed",
)
async def check_subdomain(subdomain: str, session: Session) -> SubdomainAvailability:
    available = await tenant_service.is_subdomain_available(session, subdomain)
    return SubdomainAvailability(subdomain=subdomain, available=available)


# ── Authenticated routes ──────────────────────────────────────

@router.get("/tenant", response_model=TenantOverview, summary="Get current tenant info")
async def get_current_tenant(
    ctx: TenantContext,
    session: Session,
    meter: Meter,
) -> TenantOverview:
    stats = await tenant_service.tenant_stats(session, ctx.tenant.id)
    usage = await meter.check_limits(ctx.tenant)
    return TenantOverview(
        tenant=TenantRead.model_validate(ctx.tenant),
        stats=stats,
        usage=usage,
    )


@router.patch("/tenant/settings", response_model=TenantRead)
async def update_tenant_settings(
    body: TenantSettingsUpdate,
    ctx: TenantContext,
    session: Session,
) -> TenantRead:
    ctx.require(Permission.SETTINGS_UPDATE)

    tenant = ctx.tenant
    update_data = body.model_dump(exclude_unset=True, exclude_none=True)
    for field, value in update_data.items():
        setattr(tenant, field, value)
    tenant.updated_at = utcnow()
    session.add(tenant)
    await session.commit()
    await session.refresh(tenant)
    return TenantRead.model_validate(tenant)
