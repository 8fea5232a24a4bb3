"""Tenant gates — composable guards a route declares in front of its handler.

A gate takes a :class:`GateContext` and returns ``None`` to let the request
through or a :class:`~crmgate.core.denials.Denial` to stop it. :func:`run_gates`
always checks presence first, then the route's gates in declaration order,
and stops at the first denial so later gates never run.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime

from crmgate.core.denials import (
    Denial,
    PlanUpgradeRequired,
    SeatLimitReached,
    SubscriptionInactive,
    TenantInactive,
    TenantRequired,
    TrialExpired,
)
from crmgate.core.plans import Plan
from crmgate.models.base import utcnow
from crmgate.models.tenant import SubscriptionStatus, Tenant, TenantStatus
from crmgate.services.tenant_context import TenantStore

logger = logging.getLogger(__name__)

PAYING_STATUSES = frozenset({SubscriptionStatus.TRIAL, SubscriptionStatus.ACTIVE})


@dataclass
class GateContext:
    tenant: Tenant | None
    store: TenantStore
    now: datetime = field(default_factory=utcnow)


Gate = Callable[[GateContext], Awaitable[Denial | None]]


async def require_tenant_present(ctx: GateContext) -> Denial | None:
    if ctx.tenant is None:
        return TenantRequired()
    if ctx.tenant.status != TenantStatus.ACTIVE:
        return TenantInactive(status=str(ctx.tenant.status))
    return None


async def require_active_subscription(ctx: GateContext) -> Denial | None:
    tenant = ctx.tenant
    if tenant.subscription_status not in PAYING_STATUSES:
        return SubscriptionInactive(subscription_status=tenant.subscription_status)
    if (
        tenant.subscription_status == SubscriptionStatus.TRIAL
        and tenant.trial_ends_at is not None
        and ctx.now > tenant.trial_ends_at
    ):
        return TrialExpired(trial_ends_at=tenant.trial_ends_at)
    return None


def require_plan(*plans: Plan | str) -> Gate:
    """Gate a feature to the given plan tiers."""
    allowed = tuple(str(plan) for plan in plans)

    async def plan_gate(ctx: GateContext) -> Denial | None:
        if str(ctx.tenant.plan) not in allowed:
            return PlanUpgradeRequired(allowed_plans=allowed, current_plan=str(ctx.tenant.plan))
        return None

    plan_gate.__name__ = f"require_plan({', '.join(allowed)})"
    return plan_gate


async def require_under_seat_limit(ctx: GateContext) -> Denial | None:
    # Soft cap: concurrent user creations can both read the same count.
    current = await ctx.store.get_tenant_user_count(ctx.tenant.id)
    if current >= ctx.tenant.max_users:
        return SeatLimitReached(max_seats=ctx.tenant.max_users, current_seats=current)
    return None


async def run_gates(ctx: GateContext, gates: Sequence[Gate] = ()) -> Denial | None:
    declared = [gate for gate in gates if gate is not require_tenant_present]
    for gate in (require_tenant_present, *declared):
        denial = await gate(ctx)
        if denial is not None:
            logger.info(
                "Tenant gate %s denied tenant %s: %s",
                getattr(gate, "__name__", gate),
                ctx.tenant.id if ctx.tenant else None,
                denial.code,
            )
            return denial
    return None
