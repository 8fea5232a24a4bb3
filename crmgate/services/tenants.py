"""Tenant registration and lifecycle transitions."""

import logging
import re
import uuid
from datetime import datetime, timedelta

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from crmgate.core.config import get_settings
from crmgate.core.permissions import Role
from crmgate.core.plans import Plan, get_plan_seats
from crmgate.core.security import hash_password
from crmgate.models.base import utcnow
from crmgate.models.lead import Lead
from crmgate.models.tenant import SubscriptionStatus, Tenant, TenantStatus
from crmgate.models.user import User
from crmgate.services.tenant_context import SqlTenantStore

logger = logging.getLogger(__name__)

SUBDOMAIN_RE = re.compile(r"^[a-z0-9][a-z0-9-]{1,61}[a-z0-9]$")

RESERVED_SUBDOMAINS = frozenset({
    "www", "api", "app", "admin", "mail", "ftp",
    "localhost", "staging", "dev", "test", "demo",
})


class TenantError(Exception):
    """Registration / lifecycle request that cannot be honoured."""


class InvalidSubdomain(TenantError):
    pass


class SubdomainTaken(TenantError):
    pass


class EmailTaken(TenantError):
    pass


class TenantNotFound(TenantError):
    pass


def validate_subdomain(subdomain: str) -> str:
    """Return ``subdomain`` if it may be claimed, else raise InvalidSubdomain."""
    if not SUBDOMAIN_RE.fullmatch(subdomain):
        raise InvalidSubdomain(
            "Invalid subdomain format. Use lowercase letters, numbers, "
            "and hyphens (3-63 characters)."
        )
    if subdomain in RESERVED_SUBDOMAINS:
        raise InvalidSubdomain("This subdomain is reserved.")
    return subdomain


def is_valid_subdomain(subdomain: str) -> bool:
    try:
        validate_subdomain(subdomain)
    except InvalidSubdomain:
        return False
    return True


async def is_subdomain_available(session: AsyncSession, subdomain: str) -> bool:
    if not is_valid_subdomain(subdomain):
        return False
    return await SqlTenantStore(session).get_tenant_by_subdomain(subdomain) is None


async def register_tenant(
    session: AsyncSession,
    *,
    tenant_name: str,
    subdomain: str,
    admin_email: str,
    admin_password: str,
    admin_full_name: str = "",
    plan: Plan = Plan.STARTER,
    now: datetime | None = None,
) -> tuple[Tenant, User]:
    """Create a tenant on a trial plus its first Admin user."""
    validate_subdomain(subdomain)

    if not await is_subdomain_available(session, subdomain):
        raise SubdomainTaken("This subdomain is already taken.")

    existing = await session.execute(select(User).where(User.email == admin_email))
    if existing.scalar_one_or_none():
        raise EmailTaken("This email is already registered.")

    now = now or utcnow()
    tenant = Tenant(
        name=tenant_name,
        subdomain=subdomain,
        plan=plan,
        status=TenantStatus.ACTIVE,
        subscription_status=SubscriptionStatus.TRIAL,
        trial_ends_at=now + timedelta(days=get_settings().trial_days),
        max_users=get_plan_seats(plan),
    )
    session.add(tenant)
    await session.flush()  # populate tenant.id

    admin = User(
        tenant_id=tenant.id,
        email=admin_email,
        password_hash=hash_password(admin_password),
        full_name=admin_full_name,
        role=Role.ADMIN,
    )
    session.add(admin)
    await session.commit()
    await session.refresh(tenant)
    await session.refresh(admin)

    logger.info("Registered tenant %s (%s) on %s trial", tenant.id, subdomain, plan)
    return tenant, admin


# ── Lifecycle ────────────────────────────────────────────────

async def _update(session: AsyncSession, tenant_id: uuid.UUID, **patch: object) -> Tenant:
    tenant = await SqlTenantStore(session).update_tenant(tenant_id, **patch)
    if tenant is None:
        raise TenantNotFound(f"Tenant {tenant_id} not found")
    return tenant


async def activate_subscription(session: AsyncSession, tenant_id: uuid.UUID) -> Tenant:
    """Payment succeeded."""
    tenant = await _update(session, tenant_id, subscription_status=SubscriptionStatus.ACTIVE)
    logger.info("Tenant %s subscription active", tenant_id)
    return tenant


async def mark_past_due(session: AsyncSession, tenant_id: uuid.UUID) -> Tenant:
    """Payment failed."""
    tenant = await _update(session, tenant_id, subscription_status=SubscriptionStatus.PAST_DUE)
    logger.info("Tenant %s subscription past due", tenant_id)
    return tenant


async def change_plan(session: AsyncSession, tenant_id: uuid.UUID, plan: Plan) -> Tenant:
    tenant = await _update(session, tenant_id, plan=plan, max_users=get_plan_seats(plan))
    logger.info("Tenant %s moved to %s plan", tenant_id, plan)
    return tenant


async def suspend_tenant(session: AsyncSession, tenant_id: uuid.UUID, reason: str) -> Tenant:
    tenant = await _update(session, tenant_id, status=TenantStatus.SUSPENDED)
    logger.info("Tenant %s suspended: %s", tenant_id, reason)
    return tenant


async def reactivate_tenant(session: AsyncSession, tenant_id: uuid.UUID) -> Tenant:
    tenant = await _update(session, tenant_id, status=TenantStatus.ACTIVE)
    logger.info("Tenant %s reactivated", tenant_id)
    return tenant


async def cancel_tenant(session: AsyncSession, tenant_id: uuid.UUID) -> Tenant:
    tenant = await _update(
        session,
        tenant_id,
        status=TenantStatus.CANCELLED,
        subscription_status=SubscriptionStatus.CANCELLED,
    )
    logger.info("Tenant %s cancelled", tenant_id)
    return tenant


async def expire_trials(session: AsyncSession, now: datetime | None = None) -> int:
    """Cancel the subscription of every tenant whose trial ran out unpaid."""
    now = now or utcnow()
    stmt = select(Tenant).where(
        Tenant.subscription_status == SubscriptionStatus.TRIAL,
        Tenant.trial_ends_at.is_not(None),  # type: ignore[union-attr]
        Tenant.trial_ends_at < now,  # type: ignore[operator]
    )
    expired = list((await session.execute(stmt)).scalars().all())
    for tenant in expired:
        tenant.subscription_status = SubscriptionStatus.CANCELLED
        tenant.updated_at = now
        session.add(tenant)
        logger.info("Tenant %s trial expired", tenant.id)
    await session.commit()
    return len(expired)


async def tenant_stats(session: AsyncSession, tenant_id: uuid.UUID) -> dict[str, int]:
    users = await SqlTenantStore(session).get_tenant_user_count(tenant_id)
    leads = (await session.execute(
        select(func.count()).select_from(Lead).where(Lead.tenant_id == tenant_id)
    )).scalar_one()
    return {"users": users, "leads": leads}
