"""Usage metering — per-tenant monthly counters checked against plan limits.

Checking and recording are separate steps. Routes call :meth:`UsageMeter.check`
before a metered operation and one of the ``record_*`` methods only after it
succeeded, so failed attempts are never charged.

Limits are soft caps: two requests that both see one unit of headroom can both
pass ``check``. :meth:`UsageMeter.check_and_record` is the atomic alternative
for callers that need exact enforcement.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime
from enum import StrEnum
from functools import lru_cache
from typing import Protocol

from pydantic import BaseModel
from redis.asyncio import Redis
from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from crmgate.core.config import get_settings
from crmgate.core.denials import UsageLimitExceeded
from crmgate.core.plans import PlanLimits, get_plan_limits
from crmgate.models.base import utcnow
from crmgate.models.lead import Lead
from crmgate.models.tenant import Tenant

logger = logging.getLogger(__name__)


class UsageMetric(StrEnum):
    API_CALLS = "API calls"
    STORAGE = "Storage"
    AUTOMATION_RUNS = "Automation runs"
    EMAILS = "Emails"
    SMS = "SMS messages"


_LIMIT_FIELDS: dict[UsageMetric, str] = {
    UsageMetric.API_CALLS: "api_calls",
    UsageMetric.STORAGE: "storage_bytes",
    UsageMetric.AUTOMATION_RUNS: "automation_runs",
    UsageMetric.EMAILS: "emails_sent",
    UsageMetric.SMS: "sms_sent",
}

# Gauges hold a current total and survive the monthly reset.
GAUGES: frozenset[UsageMetric] = frozenset({UsageMetric.STORAGE})


def limit_for(limits: PlanLimits, metric: UsageMetric) -> int | None:
    return getattr(limits, _LIMIT_FIELDS[metric])


def billing_period(now: datetime) -> str:
    """Calendar-month period key, e.g. ``2026-10``."""
    return now.strftime("%Y-%m")


def _would_exceed(current: int, amount: int, limit: int | None) -> bool:
    return limit is not None and current + amount > limit


# Estimated footprint of one stored CRM record.
RECORD_SIZE_BYTES = 1024


async def calculate_storage_size(session: AsyncSession, tenant_id: uuid.UUID) -> int:
    """Estimate the tenant's storage in bytes from its record count."""
    leads = (await session.execute(
        select(func.count()).select_from(Lead).where(Lead.tenant_id == tenant_id)
    )).scalar_one()
    return leads * RECORD_SIZE_BYTES


# ── Counter stores ───────────────────────────────────────────

class CounterStore(Protocol):
    async def get(self, tenant_id: str, period: str) -> dict[UsageMetric, int]: ...

    async def increment(
        self, tenant_id: str, period: str, metric: UsageMetric, amount: int = 1
    ) -> int: ...

    async def set_gauge(self, tenant_id: str, metric: UsageMetric, value: int) -> None: ...

    async def check_and_increment(
        self,
        tenant_id: str,
        period: str,
        metric: UsageMetric,
        limit: int | None,
        amount: int = 1,
    ) -> bool: ...

    async def discard_before(self, period: str) -> int: ...


class InMemoryCounterStore:
    """Process-local counters. Lost on restart, not shared across workers.

    No ``await`` sits between the read and the write in
    ``check_and_increment``, so it is atomic within one event loop.
    """

    def __init__(self) -> None:
        self._counters: dict[tuple[str, str], dict[UsageMetric, int]] = {}
        self._gauges: dict[str, dict[UsageMetric, int]] = {}

    def _bucket(self, tenant_id: str, period: str) -> dict[UsageMetric, int]:
        """Counters for one tenant and period.

        Opening a newer period drops the tenant's older ones, so memory stays
        bounded without the reset job.
        """
        key = (tenant_id, period)
        bucket = self._counters.get(key)
        if bucket is None:
            stale = [k for k in self._counters if k[0] == tenant_id and k[1] < period]
            for k in stale:
                del self._counters[k]
            bucket = self._counters[key] = {}
        return bucket

    async def get(self, tenant_id: str, period: str) -> dict[UsageMetric, int]:
        usage = {metric: 0 for metric in UsageMetric}
        usage.update(self._counters.get((tenant_id, period), {}))
        usage.update(self._gauges.get(tenant_id, {}))
        return usage

    async def increment(
        self, tenant_id: str, period: str, metric: UsageMetric, amount: int = 1
    ) -> int:
        bucket = self._bucket(tenant_id, period)
        bucket[metric] = bucket.get(metric, 0) + amount
        return bucket[metric]

    async def set_gauge(self, tenant_id: str, metric: UsageMetric, value: int) -> None:
        self._gauges.setdefault(tenant_id, {})[metric] = value

    async def check_and_increment(
        self,
        tenant_id: str,
        period: str,
        metric: UsageMetric,
        limit: int | None,
        amount: int = 1,
    ) -> bool:
        bucket = self._bucket(tenant_id, period)
        current = bucket.get(metric, 0)
        if _would_exceed(current, amount, limit):
            return False
        bucket[metric] = current + amount
        return True

    async def discard_before(self, period: str) -> int:
        stale = [key for key in self._counters if key[1] < period]
        for key in stale:
            del self._counters[key]
        return len(stale)


class RedisCounterStore:
    """Counters in Redis hashes, shared by every API process.

    Layout: ``<prefix>:period:<YYYY-MM>:<tenant_id>`` holds one field per
    metric; ``<prefix>:gauge:<tenant_id>`` holds gauges.
    """

    # Period hashes outlive their month by a margin, then Redis drops them.
    PERIOD_TTL_SECONDS = 62 * 24 * 3600

    # KEYS[1] period hash; ARGV: field, amount, limit (-1 = unlimited), ttl.
    # Returns the new value, or -1 when the amount does not fit.
    CHECK_AND_INCREMENT_LUA = """
    local current = tonumber(redis.call('HGET', KEYS[1], ARGV[1]) or '0')
    local amount = tonumber(ARGV[2])
    local limit = tonumber(ARGV[3])
    if limit >= 0 and current + amount > limit then
        return -1
    end
    local value = redis.call('HINCRBY', KEYS[1], ARGV[1], amount)
    redis.call('EXPIRE', KEYS[1], ARGV[4])
    return value
    """

    def __init__(self, redis: Redis, prefix: str = "crmgate:usage") -> None:
        self._redis = redis
        self._prefix = prefix
        self._check_and_increment = redis.register_script(self.CHECK_AND_INCREMENT_LUA)

    def _period_key(self, tenant_id: str, period: str) -> str:
        return f"{self._prefix}:period:{period}:{tenant_id}"

    def _gauge_key(self, tenant_id: str) -> str:
        return f"{self._prefix}:gauge:{tenant_id}"

    async def get(self, tenant_id: str, period: str) -> dict[UsageMetric, int]:
        counters = await self._redis.hgetall(self._period_key(tenant_id, period))
        gauges = await self._redis.hgetall(self._gauge_key(tenant_id))
        usage = {metric: 0 for metric in UsageMetric}
        for raw in (counters, gauges):
            for name, value in raw.items():
                name = name.decode() if isinstance(name, bytes) else name
                if name in UsageMetric.__members__:
                    usage[UsageMetric[name]] = int(value)
        return usage

    async def increment(
        self, tenant_id: str, period: str, metric: UsageMetric, amount: int = 1
    ) -> int:
        key = self._period_key(tenant_id, period)
        value = await self._redis.hincrby(key, metric.name, amount)
        await self._redis.expire(key, self.PERIOD_TTL_SECONDS)
        return int(value)

    async def set_gauge(self, tenant_id: str, metric: UsageMetric, value: int) -> None:
        await self._redis.hset(self._gauge_key(tenant_id), metric.name, value)

    async def check_and_increment(
        self,
        tenant_id: str,
        period: str,
        metric: UsageMetric,
        limit: int | None,
        amount: int = 1,
    ) -> bool:
        result = await self._check_and_increment(
            keys=[self._period_key(tenant_id, period)],
            args=[metric.name, amount, -1 if limit is None else limit, self.PERIOD_TTL_SECONDS],
        )
        return int(result) >= 0

    async def discard_before(self, period: str) -> int:
        removed = 0
        async for key in self._redis.scan_iter(match=f"{self._prefix}:period:*"):
            key = key.decode() if isinstance(key, bytes) else key
            key_period = key[len(f"{self._prefix}:period:"):].split(":", 1)[0]
            if key_period < period:
                removed += await self._redis.delete(key)
        return removed


# ── Reports ──────────────────────────────────────────────────

class UsageReport(BaseModel):
    within_limits: bool
    usage: dict[str, int]
    limits: dict[str, int | None]
    exceeded: list[str]


class UsageSummary(BaseModel):
    period: str
    period_start: datetime
    period_end: datetime
    usage: dict[str, int]
    limits: dict[str, int | None]
    exceeded: list[str]
    percentages: dict[str, float]


# ── Meter ────────────────────────────────────────────────────

class UsageMeter:
    def __init__(
        self,
        store: CounterStore,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self._clock = clock

    @staticmethod
    def limits_for(plan: str) -> PlanLimits:
        return get_plan_limits(plan)

    def current_period(self) -> str:
        return billing_period(self._clock())

    async def get_usage(self, tenant_id: object) -> dict[UsageMetric, int]:
        return await self.store.get(str(tenant_id), self.current_period())

    async def check(
        self, tenant: Tenant, metric: UsageMetric, amount: int = 1
    ) -> UsageLimitExceeded | None:
        """Deny if ``amount`` more units would take ``metric`` past the plan limit."""
        limit = limit_for(self.limits_for(tenant.plan), metric)
        if limit is None:
            return None
        usage = await self.get_usage(tenant.id)
        if _would_exceed(usage[metric], amount, limit):
            logger.info(
                "Tenant %s over %s limit (%d/%d)", tenant.id, metric.value, usage[metric], limit
            )
            return UsageLimitExceeded(
                metrics=(metric.value,),
                usage={metric.value: usage[metric]},
                limits={metric.value: limit},
            )
        return None

    async def check_limits(self, tenant: Tenant) -> UsageReport:
        """Every metric currently at or over its limit."""
        usage = await self.get_usage(tenant.id)
        limits = self.limits_for(tenant.plan)
        exceeded = [
            metric.value
            for metric in UsageMetric
            if (limit := limit_for(limits, metric)) is not None and usage[metric] >= limit
        ]
        return UsageReport(
            within_limits=not exceeded,
            usage={m.value: usage[m] for m in UsageMetric},
            limits={m.value: limit_for(limits, m) for m in UsageMetric},
            exceeded=exceeded,
        )

    async def check_and_record(
        self, tenant: Tenant, metric: UsageMetric, amount: int = 1
    ) -> UsageLimitExceeded | None:
        """Atomic check + increment for counters. Gauges go through ``record_storage``."""
        if metric in GAUGES:
            raise ValueError(f"{metric.value} is a gauge and cannot be incremented")
        limit = limit_for(self.limits_for(tenant.plan), metric)
        admitted = await self.store.check_and_increment(
            str(tenant.id), self.current_period(), metric, limit, amount
        )
        if admitted:
            return None
        logger.info("Tenant %s over %s limit (%s)", tenant.id, metric.value, limit)
        return UsageLimitExceeded(metrics=(metric.value,), limits={metric.value: limit})

    # ── Recording (after the operation succeeded) ────────────

    async def _record(self, tenant_id: object, metric: UsageMetric, amount: int = 1) -> None:
        await self.store.increment(str(tenant_id), self.current_period(), metric, amount)

    async def record_api_call(self, tenant_id: object) -> None:
        await self._record(tenant_id, UsageMetric.API_CALLS)

    async def record_storage(self, tenant_id: object, total_bytes: int) -> None:
        """Set the storage gauge to the tenant's current total."""
        await self.store.set_gauge(str(tenant_id), UsageMetric.STORAGE, total_bytes)

    async def record_automation_run(self, tenant_id: object) -> None:
        await self._record(tenant_id, UsageMetric.AUTOMATION_RUNS)

    async def record_email_sent(self, tenant_id: object) -> None:
        await self._record(tenant_id, UsageMetric.EMAILS)

    async def record_sms_sent(self, tenant_id: object) -> None:
        await self._record(tenant_id, UsageMetric.SMS)

    # ── Reporting ────────────────────────────────────────────

    async def usage_percentage(self, tenant: Tenant, metric: UsageMetric) -> float:
        limit = limit_for(self.limits_for(tenant.plan), metric)
        if not limit:
            return 0.0
        usage = await self.get_usage(tenant.id)
        return usage[metric] / limit * 100

    async def usage_summary(self, tenant: Tenant) -> UsageSummary:
        now = self._clock()
        start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        end = start.replace(year=start.year + 1, month=1) if start.month == 12 else (
            start.replace(month=start.month + 1)
        )
        report = await self.check_limits(tenant)
        percentages = {
            name: (report.usage[name] / limit * 100) if limit else 0.0
            for name, limit in report.limits.items()
        }
        return UsageSummary(
            period=billing_period(now),
            period_start=start,
            period_end=end,
            usage=report.usage,
            limits=report.limits,
            exceeded=report.exceeded,
            percentages=percentages,
        )

    async def reset_monthly_usage(self) -> int:
        """Drop counters from periods before the current one."""
        period = self.current_period()
        removed = await self.store.discard_before(period)
        logger.info("Usage reset: discarded %d counter sets before %s", removed, period)
        return removed


@lru_cache
def get_usage_meter() -> UsageMeter:
    """Process-wide meter built from settings (``usage_backend``)."""
    settings = get_settings()
    if settings.usage_backend == "redis":
        from redis.asyncio import from_url

        store: CounterStore = RedisCounterStore(
            from_url(settings.redis_url, decode_responses=True),
            prefix=settings.usage_key_prefix,
        )
    else:
        store = InMemoryCounterStore()
    return UsageMeter(store)
