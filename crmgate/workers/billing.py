"""Periodic billing jobs — monthly usage reset and trial expiry."""

from __future__ import annotations

import logging

from crmgate.core.database import async_session_factory
from crmgate.models.base import utcnow
from crmgate.services.tenants import expire_trials
from crmgate.services.usage import get_usage_meter

logger = logging.getLogger(__name__)


async def reset_monthly_usage(ctx: dict) -> dict:
    """Cron job (00:00 on day 1): discard the previous period's usage counters.

    Only meaningful with the Redis counter store; in-memory counters live in
    the API process and start a fresh period on their own. Tests may pass a
    meter via ``ctx["meter"]``.
    """
    meter = ctx.get("meter") or get_usage_meter()
    removed = await meter.reset_monthly_usage()
    return {"discarded": removed}


async def expire_trial_tenants(ctx: dict) -> dict:
    """Hourly job: cancel subscriptions whose trial ended without payment.

    Tests may pass a session factory via ``ctx["session_factory"]``.
    """
    session_factory = ctx.get("session_factory") or async_session_factory
    async with session_factory() as session:
        expired = await expire_trials(session, now=utcnow())

    if expired:
        logger.info("Trial expiry: cancelled %d tenants", expired)
    else:
        logger.info("Trial expiry: no trials due")
    return {"expired": expired}
