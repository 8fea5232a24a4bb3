"""Tenant model — one customer organization, the top-level isolation boundary."""

import uuid
from datetime import datetime
from enum import StrEnum

from sqlalchemy import JSON
from sqlmodel import Column, Field, SQLModel

from crmgate.core.plans import Plan
from crmgate.models.base import TimestampMixin, new_uuid


class TenantStatus(StrEnum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"


class SubscriptionStatus(StrEnum):
    TRIAL = "trial"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"


class Tenant(TimestampMixin, SQLModel, table=True):
    __tablename__ = "tenants"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    name: str = Field(max_length=255, nullable=False)
    # Claimed once at registration, never reassigned
    subdomain: str = Field(max_length=63, unique=True, nullable=False, index=True)

    plan: Plan = Field(default=Plan.STARTER)
    status: TenantStatus = Field(default=TenantStatus.ACTIVE)
    subscription_status: SubscriptionStatus = Field(default=SubscriptionStatus.TRIAL)
    max_users: int = Field(default=5)
    trial_ends_at: datetime | None = Field(default=None)

    settings: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))


# ── Pydantic schemas (read / update) ─────────────────────────

class TenantRead(SQLModel):
    id: uuid.UUID
    name: str
    subdomain: str
    plan: Plan
    status: TenantStatus
    subscription_status: SubscriptionStatus
    max_users: int
    trial_ends_at: datetime | None
    settings: dict


class TenantSettingsUpdate(SQLModel):
    name: str | None = Field(default=None, min_length=2, max_length=255)
    settings: dict | None = None
