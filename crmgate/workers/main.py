"""ARQ worker entrypoint — runs the billing cron jobs."""

import asyncio

from arq import cron
from arq.connections import RedisSettings

from crmgate.core.config import get_settings
from crmgate.workers.billing import expire_trial_tenants, reset_monthly_usage


def _redis_settings() -> RedisSettings:
    """Parse REDIS_URL into ARQ RedisSettings."""
    return RedisSettings.from_dsn(get_settings().redis_url)


async def startup(ctx: dict) -> None:
    """Called when the worker starts."""
    from crmgate.core.database import init_db
    await init_db()


async def shutdown(ctx: dict) -> None:
    """Called when the worker shuts down."""


class WorkerSettings:
    """ARQ worker configuration."""
    functions = [reset_monthly_usage, expire_trial_tenants]
    cron_jobs = [
        # First hour of the first day of each calendar month
        cron(reset_monthly_usage, day=1, hour=0, minute=0, run_at_startup=False),
        cron(expire_trial_tenants, minute=5),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = _redis_settings()
    max_jobs = 4
    job_timeout = 300


if __name__ == "__main__":
    from arq import run_worker
    asyncio.run(run_worker(WorkerSettings))  # type: ignore[arg-type]
