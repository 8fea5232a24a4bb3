"""Usage metering against plan limits, over both counter stores."""

import asyncio
from datetime import datetime

import fakeredis
import pytest

from crmgate.core.denials import UsageLimitExceeded
from crmgate.core.plans import GIB, Plan
from crmgate.models.tenant import Tenant
from crmgate.services.usage import (
    InMemoryCounterStore,
    RedisCounterStore,
    UsageMeter,
    UsageMetric,
    billing_period,
)


class Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture(params=["memory", "redis"])
async def store(request):
    if request.param == "memory":
        yield InMemoryCounterStore()
        return
    redis = fakeredis.FakeAsyncRedis(decode_responses=True)
    yield RedisCounterStore(redis, prefix="test:usage")
    await redis.flushall()
    await redis.aclose()


@pytest.fixture
def clock():
    return Clock(datetime(2026, 10, 19, 12, 0))


@pytest.fixture
def usage_meter(store, clock):
    return UsageMeter(store, clock=clock)


def _tenant(plan=Plan.STARTER) -> Tenant:
    return Tenant(name="Acme", subdomain="acme", plan=plan)


async def _record_n(meter: UsageMeter, tenant: Tenant, metric: UsageMetric, n: int):
    await meter.store.increment(str(tenant.id), meter.current_period(), metric, n)


def test_billing_period():
    assert billing_period(datetime(2026, 1, 31, 23, 59)) == "2026-01"
    assert billing_period(datetime(2026, 12, 1)) == "2026-12"


# ── Check ────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_starter_sms_at_limit_is_rejected(usage_meter):
    tenant = _tenant()
    await _record_n(usage_meter, tenant, UsageMetric.SMS, 100)

    denial = await usage_meter.check(tenant, UsageMetric.SMS)
    assert isinstance(denial, UsageLimitExceeded)
    assert denial.metrics == ("SMS messages",)
    assert denial.status_code == 429
    assert denial.to_detail()["limits"] == {"SMS messages": 100}


@pytest.mark.asyncio
async def test_starter_sms_one_below_limit_is_admitted(usage_meter):
    tenant = _tenant()
    await _record_n(usage_meter, tenant, UsageMetric.SMS, 99)

    assert await usage_meter.check(tenant, UsageMetric.SMS) is None
    await usage_meter.record_sms_sent(tenant.id)
    assert (await usage_meter.get_usage(tenant.id))[UsageMetric.SMS] == 100
    assert await usage_meter.check(tenant, UsageMetric.SMS) is not None


@pytest.mark.asyncio
async def test_amount_is_part_of_the_check(usage_meter):
    tenant = _tenant()
    await _record_n(usage_meter, tenant, UsageMetric.EMAILS, 995)
    assert await usage_meter.check(tenant, UsageMetric.EMAILS, amount=5) is None
    assert await usage_meter.check(tenant, UsageMetric.EMAILS, amount=6) is not None


@pytest.mark.asyncio
async def test_enterprise_unlimited_metrics_never_block(usage_meter):
    tenant = _tenant(Plan.ENTERPRISE)
    await _record_n(usage_meter, tenant, UsageMetric.API_CALLS, 5_000_000)
    assert await usage_meter.check(tenant, UsageMetric.API_CALLS) is None
    assert await usage_meter.usage_percentage(tenant, UsageMetric.API_CALLS) == 0.0


@pytest.mark.asyncio
async def test_enterprise_sms_still_capped(usage_meter):
    tenant = _tenant(Plan.ENTERPRISE)
    await _record_n(usage_meter, tenant, UsageMetric.SMS, 5_000)
    assert await usage_meter.check(tenant, UsageMetric.SMS) is not None


@pytest.mark.asyncio
async def test_tenants_are_counted_separately(usage_meter):
    a, b = _tenant(), _tenant()
    await _record_n(usage_meter, a, UsageMetric.SMS, 100)
    assert await usage_meter.check(a, UsageMetric.SMS) is not None
    assert await usage_meter.check(b, UsageMetric.SMS) is None


# ── Storage gauge ────────────────────────────────────────────

@pytest.mark.asyncio
async def test_storage_is_a_gauge(usage_meter):
    tenant = _tenant()
    await usage_meter.record_storage(tenant.id, GIB // 2)
    await usage_meter.record_storage(tenant.id, GIB)
    assert (await usage_meter.get_usage(tenant.id))[UsageMetric.STORAGE] == GIB
    assert await usage_meter.check(tenant, UsageMetric.STORAGE) is not None

    with pytest.raises(ValueError):
        await usage_meter.check_and_record(tenant, UsageMetric.STORAGE)


# ── Reports ──────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_check_limits_reports_every_metric_at_limit(usage_meter):
    tenant = _tenant()
    await _record_n(usage_meter, tenant, UsageMetric.SMS, 100)
    await _record_n(usage_meter, tenant, UsageMetric.EMAILS, 10)

    report = await usage_meter.check_limits(tenant)
    assert not report.within_limits
    assert report.exceeded == ["SMS messages"]
    assert report.usage["Emails"] == 10
    assert report.limits["API calls"] == 10_000


@pytest.mark.asyncio
async def test_usage_summary(usage_meter):
    tenant = _tenant()
    await _record_n(usage_meter, tenant, UsageMetric.AUTOMATION_RUNS, 250)

    summary = await usage_meter.usage_summary(tenant)
    assert summary.period == "2026-10"
    assert summary.period_start == datetime(2026, 10, 1)
    assert summary.period_end == datetime(2026, 11, 1)
    assert summary.percentages["Automation runs"] == 25.0
    assert summary.exceeded == []


@pytest.mark.asyncio
async def test_usage_summary_december_rolls_into_next_year(store):
    meter = UsageMeter(store, clock=Clock(datetime(2026, 12, 15)))
    summary = await meter.usage_summary(_tenant())
    assert summary.period_end == datetime(2027, 1, 1)


# ── Periods ──────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_new_month_starts_from_zero(usage_meter, clock):
    tenant = _tenant()
    await _record_n(usage_meter, tenant, UsageMetric.SMS, 100)
    assert await usage_meter.check(tenant, UsageMetric.SMS) is not None

    clock.now = datetime(2026, 11, 1, 0, 0)
    assert await usage_meter.check(tenant, UsageMetric.SMS) is None
    assert (await usage_meter.get_usage(tenant.id))[UsageMetric.SMS] == 0


@pytest.mark.asyncio
async def test_reset_discards_old_periods_and_keeps_storage(usage_meter, clock):
    quiet, active = _tenant(), _tenant()
    await _record_n(usage_meter, quiet, UsageMetric.API_CALLS, 42)
    await usage_meter.record_storage(quiet.id, 1234)

    clock.now = datetime(2026, 11, 1, 0, 0)
    await usage_meter.record_api_call(active.id)
    assert await usage_meter.reset_monthly_usage() == 1

    usage = await usage_meter.get_usage(quiet.id)
    assert usage[UsageMetric.API_CALLS] == 0
    assert usage[UsageMetric.STORAGE] == 1234
    assert await usage_meter.store.get(str(quiet.id), "2026-10") == {
        **{m: 0 for m in UsageMetric},
        UsageMetric.STORAGE: 1234,
    }
    assert (await usage_meter.get_usage(active.id))[UsageMetric.API_CALLS] == 1


@pytest.mark.asyncio
async def test_memory_store_drops_older_period_on_rollover():
    store = InMemoryCounterStore()
    await store.increment("t1", "2026-10", UsageMetric.SMS, 7)
    await store.increment("t2", "2026-10", UsageMetric.SMS, 3)

    await store.increment("t1", "2026-11", UsageMetric.SMS, 1)
    assert (await store.get("t1", "2026-10"))[UsageMetric.SMS] == 0
    assert (await store.get("t2", "2026-10"))[UsageMetric.SMS] == 3
    assert set(store._counters) == {("t1", "2026-11"), ("t2", "2026-10")}


# ── Atomic check + record ────────────────────────────────────

@pytest.mark.asyncio
async def test_check_and_record_never_overshoots(usage_meter):
    tenant = _tenant()
    await _record_n(usage_meter, tenant, UsageMetric.SMS, 95)

    results = await asyncio.gather(
        *(usage_meter.check_and_record(tenant, UsageMetric.SMS) for _ in range(20))
    )
    admitted = [r for r in results if r is None]
    assert len(admitted) == 5
    assert (await usage_meter.get_usage(tenant.id))[UsageMetric.SMS] == 100


@pytest.mark.asyncio
async def test_rejected_large_amount_does_not_block_small_one(usage_meter):
    tenant = _tenant()
    await _record_n(usage_meter, tenant, UsageMetric.SMS, 99)

    big, small = await asyncio.gather(
        usage_meter.check_and_record(tenant, UsageMetric.SMS, amount=5),
        usage_meter.check_and_record(tenant, UsageMetric.SMS, amount=1),
    )
    assert isinstance(big, UsageLimitExceeded)
    assert small is None
    assert (await usage_meter.get_usage(tenant.id))[UsageMetric.SMS] == 100


@pytest.mark.asyncio
async def test_rejected_amount_leaves_counter_untouched(usage_meter):
    tenant = _tenant()
    await _record_n(usage_meter, tenant, UsageMetric.SMS, 99)

    assert await usage_meter.check_and_record(tenant, UsageMetric.SMS, amount=2) is not None
    assert (await usage_meter.get_usage(tenant.id))[UsageMetric.SMS] == 99


@pytest.mark.asyncio
async def test_check_and_record_unlimited(usage_meter):
    tenant = _tenant(Plan.ENTERPRISE)
    for _ in range(3):
        assert await usage_meter.check_and_record(tenant, UsageMetric.EMAILS) is None
    assert (await usage_meter.get_usage(tenant.id))[UsageMetric.EMAILS] == 3


@pytest.mark.asyncio
async def test_record_helpers(usage_meter):
    tenant = _tenant()
    await usage_meter.record_api_call(tenant.id)
    await usage_meter.record_automation_run(tenant.id)
    await usage_meter.record_email_sent(tenant.id)
    await usage_meter.record_email_sent(tenant.id)

    usage = await usage_meter.get_usage(tenant.id)
    assert usage[UsageMetric.API_CALLS] == 1
    assert usage[UsageMetric.AUTOMATION_RUNS] == 1
    assert usage[UsageMetric.EMAILS] == 2
    assert usage[UsageMetric.SMS] == 0
