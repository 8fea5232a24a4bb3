"""Lead model — the tenant-scoped CRM record the ownership guard protects."""

import uuid
from datetime import datetime
from enum import StrEnum

from sqlmodel import Field, SQLModel

from crmgate.models.base import TenantOwnedMixin, TimestampMixin, new_uuid


class LeadStatus(StrEnum):
    NEW = "new"
    CONTACTED = "contacted"
    QUALIFIED = "qualified"
    UNQUALIFIED = "unqualified"
    CONVERTED = "converted"


class Lead(TimestampMixin, TenantOwnedMixin, SQLModel, table=True):
    __tablename__ = "leads"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    name: str = Field(max_length=255, nullable=False)
    company: str = Field(default="", max_length=255)
    email: str = Field(default="", max_length=320)
    phone: str = Field(default="", max_length=50)
    status: LeadStatus = Field(default=LeadStatus.NEW)
    value: float = Field(default=0.0)


# ── Pydantic schemas ─────────────────────────────────────────

class LeadCreate(SQLModel):
    name: str = Field(max_length=255)
    company: str = Field(default="", max_length=255)
    email: str = Field(default="", max_length=320)
    phone: str = Field(default="", max_length=50)
    value: float = 0.0


class LeadUpdate(SQLModel):
    name: str | None = Field(default=None, max_length=255)
    company: str | None = Field(default=None, max_length=255)
    email: str | None = Field(default=None, max_length=320)
    phone: str | None = Field(default=None, max_length=50)
    status: LeadStatus | None = None
    value: float | None = None
    # Reassignment; needs lead:assign
    owner_id: uuid.UUID | None = None


class LeadRead(SQLModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    owner_id: uuid.UUID | None
    name: str
    company: str
    email: str
    phone: str
    status: LeadStatus
    value: float
    created_at: datetime
    updated_at: datetime
