"""FastAPI dependencies: session principal, tenant context and gates.

Order for every tenant-scoped route: resolve the tenant, run the route's
tenant gates, then check entity permissions inside the handler via
:class:`RequestContext`. Policy outcomes are typed denials until this module
turns them into ``HTTPException``.
"""

import logging
import uuid
from collections.abc import AsyncGenerator, Iterable
from dataclasses import dataclass, replace
from typing import Annotated, Any, NoReturn

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from crmgate.core.config import get_settings
from crmgate.core.database import get_session
from crmgate.core.denials import Denial, PermissionDenied
from crmgate.core.permissions import EntityPermissions, Permission, PermissionChecker, Role
from crmgate.core.security import decode_jwt
from crmgate.models.tenant import Tenant
from crmgate.models.user import User
from crmgate.services.tenant_context import SqlTenantStore, resolve_tenant
from crmgate.services.tenant_gates import Gate, GateContext, run_gates
from crmgate.services.usage import UsageMeter, UsageMetric, get_usage_meter

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True, slots=True)
class Principal:
    """Verified identity of the caller.

    Built only by :func:`get_principal` from a signed session token. Role,
    user id and tenant id are never taken from the request body or query.
    """

    tenant_id: uuid.UUID
    user_id: uuid.UUID
    role: Role

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> "Principal":
        """Raises KeyError / ValueError on a malformed payload."""
        return cls(
            tenant_id=uuid.UUID(claims["tid"]),
            user_id=uuid.UUID(claims["sub"]),
            role=Role(claims["role"]),
        )


def deny(denial: Denial) -> NoReturn:
    raise HTTPException(status_code=denial.status_code, detail=denial.to_detail())


async def get_principal(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    session: Annotated[AsyncSession, Depends(get_session)],
) -> Principal:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        claims = decode_jwt(credentials.credentials)
    except JWTError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired JWT",
        ) from exc

    try:
        principal = Principal.from_claims(claims)
    except (KeyError, ValueError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Malformed JWT payload",
        ) from exc

    # Tokens outlive deactivation and role changes; the user record is authoritative.
    user = await session.get(User, principal.user_id)
    if user is None or not user.is_active or user.tenant_id != principal.tenant_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Account is disabled",
        )
    if user.role != principal.role:
        principal = replace(principal, role=Role(user.role))
    return principal


# Typed shorthand for use in route signatures
Auth = Annotated[Principal, Depends(get_principal)]
Session = Annotated[AsyncSession, Depends(get_session)]
Meter = Annotated[UsageMeter, Depends(get_usage_meter)]


@dataclass
class RequestContext:
    """Everything a handler needs once the tenant gates have passed."""

    principal: Principal
    tenant: Tenant
    checker: PermissionChecker

    def require(self, *permissions: Permission) -> None:
        """403 unless the caller holds every one of ``permissions``."""
        if not self.checker.has_all_permissions(permissions):
            self._deny(permissions)

    def require_any(self, *permissions: Permission) -> None:
        if not self.checker.has_any_permission(permissions):
            self._deny(permissions)

    def ensure_can_read(self, owner_id: uuid.UUID | None, entity: EntityPermissions) -> None:
        if not self.checker.can_read_resource(owner_id, entity):
            self._deny((entity.read, entity.read_all), "You can only access your own records")

    def ensure_can_modify(self, owner_id: uuid.UUID | None, entity: EntityPermissions) -> None:
        if not self.checker.can_modify_resource(owner_id, entity.update, entity.update_all):
            self._deny((entity.update, entity.update_all), "You can only modify your own records")

    def _deny(
        self, permissions: Iterable[Permission], reason: str = "Insufficient permissions"
    ) -> NoReturn:
        denial = PermissionDenied(
            required=tuple(str(p) for p in permissions),
            role=str(self.principal.role),
            reason=reason,
        )
        logger.info(
            "Permission denied for user %s (%s): %s",
            self.principal.user_id, self.principal.role, denial.required,
        )
        deny(denial)


def tenant_guard(*gates: Gate):
    """Dependency factory: resolve the tenant, then run ``gates`` in order."""

    async def guard(request: Request, principal: Auth, session: Session) -> RequestContext:
        settings = get_settings()
        store = SqlTenantStore(session)
        resolution = await resolve_tenant(
            store,
            host=request.headers.get("host"),
            tenant_header=request.headers.get(settings.tenant_header),
            principal=principal,
            timeout=settings.tenant_lookup_timeout_seconds,
        )
        if resolution.failure is not None:
            deny(resolution.failure)

        tenant = resolution.tenant
        if tenant is not None and tenant.id != principal.tenant_id:
            logger.info(
                "Cross-tenant request by user %s for tenant %s via %s",
                principal.user_id, tenant.id, resolution.source,
            )
            deny(PermissionDenied(
                role=str(principal.role),
                reason="Cross-tenant access is not permitted",
            ))

        denial = await run_gates(GateContext(tenant=tenant, store=store), gates)
        if denial is not None:
            deny(denial)

        return RequestContext(
            principal=principal,
            tenant=tenant,
            checker=PermissionChecker.for_principal(principal),
        )

    return guard


current_tenant = tenant_guard()
TenantContext = Annotated[RequestContext, Depends(current_tenant)]


async def meter_api_call(
    ctx: TenantContext, meter: Meter
) -> AsyncGenerator[RequestContext, None]:
    """Check the API-call allowance, record the call once the handler succeeded."""
    denial = await meter.check(ctx.tenant, UsageMetric.API_CALLS)
    if denial is not None:
        deny(denial)
    yield ctx
    await meter.record_api_call(ctx.tenant.id)


MeteredContext = Annotated[RequestContext, Depends(meter_api_call)]
