"""Import all models so SQLModel.metadata picks them up."""

from crmgate.models.lead import Lead, LeadCreate, LeadRead, LeadStatus, LeadUpdate
from crmgate.models.tenant import (
    SubscriptionStatus,
    Tenant,
    TenantRead,
    TenantSettingsUpdate,
    TenantStatus,
)
from crmgate.models.user import User, UserCreate, UserRead

__all__ = [
    "Lead",
    "LeadCreate",
    "LeadRead",
    "LeadStatus",
    "LeadUpdate",
    "SubscriptionStatus",
    "Tenant",
    "TenantRead",
    "TenantSettingsUpdate",
    "TenantStatus",
    "User",
    "UserCreate",
    "UserRead",
]
