"""Leads CRUD — every query scoped to the tenant, every mutation ownership-checked."""

import uuid

from fastapi import APIRouter, HTTPException, status
from sqlmodel import select

from crmgate.api.deps import Meter, MeteredContext, RequestContext, Session, deny
from crmgate.core.permissions import ENTITY_PERMISSIONS, Permission
from crmgate.models.base import utcnow
from crmgate.models.lead import Lead, LeadCreate, LeadRead, LeadUpdate
from crmgate.models.user import User
from crmgate.services.usage import RECORD_SIZE_BYTES, UsageMetric, calculate_storage_size

router = APIRouter(prefix="/leads", tags=["leads"])

LEAD = ENTITY_PERMISSIONS["lead"]


@router.post("", response_model=LeadRead, status_code=status.HTTP_201_CREATED)
async def create_lead(
    body: LeadCreate,
    ctx: MeteredContext,
    session: Session,
    meter: Meter,
) -> LeadRead:
    ctx.require(LEAD.create)
    denial = await meter.check(ctx.tenant, UsageMetric.STORAGE, amount=RECORD_SIZE_BYTES)
    if denial is not None:
        deny(denial)

    lead = Lead(
        tenant_id=ctx.tenant.id,
        owner_id=ctx.principal.user_id,
        **body.model_dump(),
    )
    session.add(lead)
    await session.commit()
    await session.refresh(lead)
    total_bytes = await calculate_storage_size(session, ctx.tenant.id)
    await meter.record_storage(ctx.tenant.id, total_bytes)
    return LeadRead.model_validate(lead)


@router.get("", response_model=list[LeadRead])
async def list_leads(
    ctx: MeteredContext,
    session: Session,
) -> list[LeadRead]:
    """All tenant leads with ``lead:read:all``, otherwise only the caller's own."""
    ctx.require_any(LEAD.read, LEAD.read_all)
    stmt = select(Lead).where(Lead.tenant_id == ctx.tenant.id)
    if not ctx.checker.has_permission(LEAD.read_all):
        stmt = stmt.where(Lead.owner_id == ctx.principal.user_id)
    stmt = stmt.order_by(Lead.created_at.desc())  # type: ignore[union-attr]
    result = await session.execute(stmt)
    return [LeadRead.model_validate(lead) for lead in result.scalars().all()]


@router.get("/{lead_id}", response_model=LeadRead)
async def get_lead(
    lead_id: uuid.UUID,
    ctx: MeteredContext,
    session: Session,
) -> LeadRead:
    lead = await _get_or_404(lead_id, ctx, session)
    ctx.ensure_can_read(lead.owner_id, LEAD)
    return LeadRead.model_validate(lead)


@router.patch("/{lead_id}", response_model=LeadRead)
async def update_lead(
    lead_id: uuid.UUID,
    body: LeadUpdate,
    ctx: MeteredContext,
    session: Session,
) -> LeadRead:
    lead = await _get_or_404(lead_id, ctx, session)
    ctx.ensure_can_modify(lead.owner_id, LEAD)

    # Null clears the owner; on every other field it means "leave unchanged".
    update_data = {
        field: value
        for field, value in body.model_dump(exclude_unset=True).items()
        if value is not None or field == "owner_id"
    }
    if "owner_id" in update_data:
        ctx.require(Permission.LEAD_ASSIGN)
        await _ensure_tenant_user(update_data["owner_id"], ctx, session)

    for field, value in update_data.items():
        setattr(lead, field, value)
    lead.updated_at = utcnow()
    session.add(lead)
    await session.commit()
    await session.refresh(lead)
    return LeadRead.model_validate(lead)


@router.delete("/{lead_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_lead(
    lead_id: uuid.UUID,
    ctx: MeteredContext,
    session: Session,
    meter: Meter,
) -> None:
    ctx.require(LEAD.delete)
    lead = await _get_or_404(lead_id, ctx, session)
    ctx.ensure_can_modify(lead.owner_id, LEAD)
    await session.delete(lead)
    await session.commit()
    total_bytes = await calculate_storage_size(session, ctx.tenant.id)
    await meter.record_storage(ctx.tenant.id, total_bytes)


# ── Internal helpers ──────────────────────────────────────────

async def _get_or_404(
    lead_id: uuid.UUID, ctx: RequestContext, session
) -> Lead:
    # Leads of other tenants are indistinguishable from missing ones
    stmt = select(Lead).where(
        Lead.id == lead_id,
        Lead.tenant_id == ctx.tenant.id,
    )
    result = await session.execute(stmt)
    lead = result.scalar_one_or_none()
    if lead is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Lead not found")
    return lead


async def _ensure_tenant_user(
    user_id: uuid.UUID | None, ctx: RequestContext, session
) -> None:
    if user_id is None:
        return
    user = await session.get(User, user_id)
    if user is None or user.tenant_id != ctx.tenant.id or not user.is_active:
        raise HTTPException(
            status_code=422,
            detail="Owner must be an active user of this tenant",
        )
