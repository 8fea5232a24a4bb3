"""Users — tenant-scoped, seat-limited on creation."""

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlmodel import select

from crmgate.api.deps import RequestContext, Session, TenantContext, tenant_guard
from crmgate.core.permissions import Permission
from crmgate.core.security import hash_password
from crmgate.models.base import utcnow
from crmgate.models.user import User, UserCreate, UserRead
from crmgate.services.tenant_gates import require_under_seat_limit

router = APIRouter(prefix="/users", tags=["users"])

SeatLimitedContext = Annotated[RequestContext, Depends(tenant_guard(require_under_seat_limit))]


@router.post("", response_model=UserRead, status_code=status.HTTP_201_CREATED)
async def create_user(
    body: UserCreate,
    ctx: SeatLimitedContext,
    session: Session,
) -> UserRead:
    ctx.require(Permission.USER_CREATE)

    # Emails are globally unique: login looks users up by email alone
    result = await session.execute(select(User).where(User.email == body.email))
    if result.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A user with this email already exists",
        )

    user = User(
        tenant_id=ctx.tenant.id,
        email=body.email,
        password_hash=hash_password(body.password),
        full_name=body.full_name,
        role=body.role,
    )
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return UserRead.model_validate(user)


@router.get("", response_model=list[UserRead])
async def list_users(
    ctx: TenantContext,
    session: Session,
) -> list[UserRead]:
    ctx.require(Permission.USER_READ)
    stmt = (
        select(User)
        .where(User.tenant_id == ctx.tenant.id)
        .order_by(User.email.asc())  # type: ignore[union-attr]
    )
    result = await session.execute(stmt)
    return [UserRead.model_validate(u) for u in result.scalars().all()]


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def deactivate_user(
    user_id: uuid.UUID,
    ctx: TenantContext,
    session: Session,
) -> None:
    """Soft-delete: frees the seat, keeps the user's records attributed."""
    ctx.require(Permission.USER_DELETE)
    if user_id == ctx.principal.user_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You cannot deactivate your own account",
        )
    user = await _get_or_404(user_id, ctx.tenant.id, session)
    user.is_active = False
    user.updated_at = utcnow()
    session.add(user)
    await session.commit()


# ── Internal helper ───────────────────────────────────────────

async def _get_or_404(
    user_id: uuid.UUID, tenant_id: uuid.UUID, session
) -> User:
    stmt = select(User).where(
        User.id == user_id,
        User.tenant_id == tenant_id,
    )
    result = await session.execute(stmt)
    user = result.scalar_one_or_none()
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user
