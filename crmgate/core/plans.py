"""Centralized plan configuration.

Single source of truth for what each subscription tier includes: monthly
usage allowances and the default seat count. ``None`` means unlimited: the
metric never blocks on that plan.
"""

from dataclasses import dataclass
from enum import StrEnum

GIB = 1024 * 1024 * 1024


class Plan(StrEnum):
    STARTER = "starter"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"


@dataclass(frozen=True, slots=True)
class PlanLimits:
    api_calls: int | None
    storage_bytes: int | None
    automation_runs: int | None
    emails_sent: int | None
    sms_sent: int | None


PLAN_LIMITS: dict[Plan, PlanLimits] = {
    Plan.STARTER: PlanLimits(
        api_calls=10_000,
        storage_bytes=1 * GIB,
        automation_runs=1_000,
        emails_sent=1_000,
        sms_sent=100,
    ),
    Plan.PROFESSIONAL: PlanLimits(
        api_calls=100_000,
        storage_bytes=10 * GIB,
        automation_runs=10_000,
        emails_sent=10_000,
        sms_sent=1_000,
    ),
    Plan.ENTERPRISE: PlanLimits(
        api_calls=None,
        storage_bytes=100 * GIB,
        automation_runs=None,
        emails_sent=None,
        sms_sent=5_000,
    ),
}

PLAN_SEATS: dict[Plan, int] = {
    Plan.STARTER: 5,
    Plan.PROFESSIONAL: 25,
    Plan.ENTERPRISE: 100,
}


def get_plan_limits(plan: str) -> PlanLimits:
    """Limits for ``plan``; unknown plans are treated as starter."""
    try:
        return PLAN_LIMITS[Plan(plan)]
    except ValueError:
        return PLAN_LIMITS[Plan.STARTER]


def get_plan_seats(plan: str) -> int:
    try:
        return PLAN_SEATS[Plan(plan)]
    except ValueError:
        return PLAN_SEATS[Plan.STARTER]
