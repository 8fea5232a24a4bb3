"""Shared base fields for all models."""

import uuid
from datetime import datetime, timezone

from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    """Naive UTC timestamp, the format every table stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


class TimestampMixin(SQLModel):
    """Created / updated timestamps injected into every table."""

    created_at: datetime = Field(default_factory=utcnow, nullable=False)
    updated_at: datetime = Field(default_factory=utcnow, nullable=False)


class TenantOwnedMixin(SQLModel):
    """Tenant + owner references carried by every tenant-scoped CRM record.

    ``owner_id`` is the user who created or was assigned the record and is
    what the ownership checks compare against.
    """

    tenant_id: uuid.UUID = Field(foreign_key="tenants.id", nullable=False, index=True)
    owner_id: uuid.UUID | None = Field(default=None, foreign_key="users.id", index=True)
