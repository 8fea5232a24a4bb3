"""Structured policy outcomes.

Each denial is a normal business result, not a defect. Gates and the usage
meter return them; the HTTP layer turns them into a status code plus a detail
body rich enough for the client to render "upgrade to Professional" or "you
are over your SMS limit".
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar


@dataclass(frozen=True)
class Denial:
    code: ClassVar[str] = "denied"
    status_code: ClassVar[int] = 403

    @property
    def message(self) -> str:
        return "Request denied"

    def extra(self) -> dict[str, Any]:
        return {}

    def to_detail(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.extra()}


@dataclass(frozen=True)
class TenantRequired(Denial):
    code: ClassVar[str] = "tenant_required"
    status_code: ClassVar[int] = 400

    @property
    def message(self) -> str:
        return "Tenant context required. Please specify subdomain or X-Tenant-ID header."


@dataclass(frozen=True)
class TenantLookupFailed(Denial):
    code: ClassVar[str] = "tenant_lookup_failed"
    status_code: ClassVar[int] = 503

    reason: str = ""

    @property
    def message(self) -> str:
        return "Tenant lookup is temporarily unavailable"

    def extra(self) -> dict[str, Any]:
        return {"retryable": True}


@dataclass(frozen=True)
class TenantInactive(Denial):
    code: ClassVar[str] = "tenant_inactive"

    status: str = ""

    @property
    def message(self) -> str:
        return f"Tenant account is {self.status}. Please contact support."

    def extra(self) -> dict[str, Any]:
        return {"status": self.status}


@dataclass(frozen=True)
class SubscriptionInactive(Denial):
    code: ClassVar[str] = "subscription_inactive"
    status_code: ClassVar[int] = 402

    subscription_status: str | None = None

    @property
    def message(self) -> str:
        return "Subscription payment required. Please update your billing information."

    def extra(self) -> dict[str, Any]:
        return {"subscription_status": self.subscription_status, "payment_required": True}


@dataclass(frozen=True)
class TrialExpired(Denial):
    code: ClassVar[str] = "trial_expired"
    status_code: ClassVar[int] = 402

    trial_ends_at: datetime | None = None

    @property
    def message(self) -> str:
        return "Your trial has expired. Please subscribe to continue."

    def extra(self) -> dict[str, Any]:
        return {
            "trial_ends_at": self.trial_ends_at.isoformat() if self.trial_ends_at else None,
            "trial_expired": True,
            "payment_required": True,
        }


@dataclass(frozen=True)
class PlanUpgradeRequired(Denial):
    code: ClassVar[str] = "plan_upgrade_required"

    allowed_plans: tuple[str, ...] = ()
    current_plan: str = ""

    @property
    def message(self) -> str:
        return (
            f"This feature requires {' or '.join(self.allowed_plans)} plan. "
            f"Current plan: {self.current_plan}"
        )

    def extra(self) -> dict[str, Any]:
        return {
            "allowed_plans": list(self.allowed_plans),
            "current_plan": self.current_plan,
            "upgrade_required": True,
        }


@dataclass(frozen=True)
class SeatLimitReached(Denial):
    code: ClassVar[str] = "seat_limit_reached"

    max_seats: int = 0
    current_seats: int = 0

    @property
    def message(self) -> str:
        return f"User limit reached ({self.max_seats} users). Please upgrade your plan."

    def extra(self) -> dict[str, Any]:
        return {
            "max_seats": self.max_seats,
            "current_seats": self.current_seats,
            "limit_reached": True,
            "upgrade_required": True,
        }


@dataclass(frozen=True)
class UsageLimitExceeded(Denial):
    code: ClassVar[str] = "usage_limit_exceeded"
    status_code: ClassVar[int] = 429

    metrics: tuple[str, ...] = ()
    usage: dict[str, int] = field(default_factory=dict)
    limits: dict[str, int | None] = field(default_factory=dict)

    @property
    def message(self) -> str:
        return f"{' and '.join(self.metrics)} limit exceeded for this billing period"

    def extra(self) -> dict[str, Any]:
        return {"metrics": list(self.metrics), "usage": self.usage, "limits": self.limits}


@dataclass(frozen=True)
class PermissionDenied(Denial):
    code: ClassVar[str] = "permission_denied"

    required: tuple[str, ...] = ()
    role: str | None = None
    reason: str = "Insufficient permissions"

    @property
    def message(self) -> str:
        return self.reason

    def extra(self) -> dict[str, Any]:
        return {"required": list(self.required), "role": self.role}
