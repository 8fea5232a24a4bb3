"""Usage summary and plan-gated analytics."""

from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import func
from sqlmodel import select

from crmgate.api.deps import Meter, RequestContext, Session, TenantContext, tenant_guard
from crmgate.core.permissions import Permission
from crmgate.core.plans import Plan
from crmgate.models.lead import Lead
from crmgate.services.tenant_gates import require_active_subscription, require_plan
from crmgate.services.usage import UsageSummary

router = APIRouter(tags=["usage"])

EnterpriseContext = Annotated[
    RequestContext,
    Depends(tenant_guard(require_active_subscription, require_plan(Plan.ENTERPRISE))),
]


class PipelineBreakdown(BaseModel):
    owner_id: str | None
    status: str
    lead_count: int
    total_value: float


class AdvancedAnalytics(BaseModel):
    pipeline: list[PipelineBreakdown]


@router.get("/usage", response_model=UsageSummary)
async def get_usage_summary(ctx: TenantContext, meter: Meter) -> UsageSummary:
    """Current billing period's usage against the tenant's plan."""
    ctx.require(Permission.SETTINGS_VIEW)
    return await meter.usage_summary(ctx.tenant)


@router.get("/analytics/advanced", response_model=AdvancedAnalytics)
async def get_advanced_analytics(ctx: EnterpriseContext, session: Session) -> AdvancedAnalytics:
    """Per-owner, per-status pipeline value. Enterprise plan only."""
    ctx.require(Permission.REPORT_ADVANCED)
    stmt = (
        select(
            Lead.owner_id,
            Lead.status,
            func.count(),
            func.coalesce(func.sum(Lead.value), 0.0),
        )
        .where(Lead.tenant_id == ctx.tenant.id)
        .group_by(Lead.owner_id, Lead.status)
    )
    rows = (await session.execute(stmt)).all()
    return AdvancedAnalytics(
        pipeline=[
            PipelineBreakdown(
                owner_id=str(owner_id) if owner_id else None,
                status=str(status),
                lead_count=count,
                total_value=float(total),
            )
            for owner_id, status, count, total in rows
        ]
    )
