"""Tenant resolution — work out which organization a request belongs to.

Strategies are tried in order and the first one that finds a tenant wins:

1. the subdomain of the Host header (``acme.example.com``),
2. an explicit tenant-id header, for API and mobile clients,
3. the tenant recorded in the caller's authenticated session.

Resolution only reads the tenant store.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from crmgate.core.denials import TenantLookupFailed
from crmgate.models.base import utcnow
from crmgate.models.tenant import Tenant
from crmgate.models.user import User

if TYPE_CHECKING:
    from crmgate.api.deps import Principal

logger = logging.getLogger(__name__)

# First labels that never name a tenant
NON_TENANT_SUBDOMAINS = frozenset({"www", "api", "app", "admin", "localhost"})


class TenantStore(Protocol):
    async def get_tenant(self, tenant_id: uuid.UUID) -> Tenant | None: ...

    async def get_tenant_by_subdomain(self, subdomain: str) -> Tenant | None: ...

    async def get_tenant_user_count(self, tenant_id: uuid.UUID) -> int: ...

    async def update_tenant(self, tenant_id: uuid.UUID, **patch: object) -> Tenant | None: ...


class SqlTenantStore:
    """TenantStore backed by the request's database session."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_tenant(self, tenant_id: uuid.UUID) -> Tenant | None:
        return await self.session.get(Tenant, tenant_id)

    async def get_tenant_by_subdomain(self, subdomain: str) -> Tenant | None:
        result = await self.session.execute(
            select(Tenant).where(Tenant.subdomain == subdomain)
        )
        return result.scalar_one_or_none()

    async def get_tenant_user_count(self, tenant_id: uuid.UUID) -> int:
        stmt = (
            select(func.count())
            .select_from(User)
            .where(User.tenant_id == tenant_id, User.is_active == True)  # noqa: E712
        )
        return (await self.session.execute(stmt)).scalar_one()

    async def update_tenant(self, tenant_id: uuid.UUID, **patch: object) -> Tenant | None:
        tenant = await self.get_tenant(tenant_id)
        if tenant is None:
            return None
        for field, value in patch.items():
            setattr(tenant, field, value)
        tenant.updated_at = utcnow()
        self.session.add(tenant)
        await self.session.commit()
        await self.session.refresh(tenant)
        return tenant


@dataclass(frozen=True)
class TenantResolution:
    tenant: Tenant | None = None
    source: str | None = None  # "subdomain", "header" or "session"
    failure: TenantLookupFailed | None = None


def extract_subdomain(host: str | None) -> str | None:
    """Tenant subdomain candidate from a Host header, or None.

    Hosts with fewer than three labels have no subdomain; that is not an error.
    """
    if not host:
        return None
    hostname = host.strip().lower()
    if hostname.startswith("["):  # IPv6 literal
        return None
    labels = hostname.split(":", 1)[0].split(".")
    if len(labels) < 3 or not labels[0]:
        return None
    if labels[0] in NON_TENANT_SUBDOMAINS:
        return None
    return labels[0]


def _parse_tenant_id(raw: str | None) -> uuid.UUID | None:
    if not raw:
        return None
    try:
        return uuid.UUID(raw.strip())
    except ValueError:
        return None


async def _lookup(
    store: TenantStore,
    host: str | None,
    tenant_header: str | None,
    principal: Principal | None,
) -> TenantResolution:
    subdomain = extract_subdomain(host)
    if subdomain is not None:
        tenant = await store.get_tenant_by_subdomain(subdomain)
        if tenant is not None:
            return TenantResolution(tenant=tenant, source="subdomain")

    header_id = _parse_tenant_id(tenant_header)
    if header_id is not None:
        tenant = await store.get_tenant(header_id)
        if tenant is not None:
            return TenantResolution(tenant=tenant, source="header")

    if principal is not None:
        tenant = await store.get_tenant(principal.tenant_id)
        if tenant is not None:
            return TenantResolution(tenant=tenant, source="session")

    return TenantResolution()


async def resolve_tenant(
    store: TenantStore,
    *,
    host: str | None,
    tenant_header: str | None = None,
    principal: Principal | None = None,
    timeout: float | None = None,
) -> TenantResolution:
    """Resolve the request's tenant. Store errors come back as ``failure``."""
    try:
        return await asyncio.wait_for(
            _lookup(store, host, tenant_header, principal), timeout=timeout
        )
    except TimeoutError:
        logger.warning("Tenant lookup timed out after %ss (host=%s)", timeout, host)
        return TenantResolution(failure=TenantLookupFailed(reason="timeout"))
    except SQLAlchemyError as exc:
        logger.warning("Tenant lookup failed (host=%s): %s", host, exc)
        return TenantResolution(failure=TenantLookupFailed(reason="store_error"))
