"""Nightly stamp and reward expiration jobs."""

from __future__ import annotations

from typing import Any, Dict

from loguru import logger

from stampcard_api.db.session import SessionFactory
from stampcard_api.observability.tracing import get_tracer
from stampcard_api.services.loyalty import ExpirationSweeper


# meta: job: loyalty-expire-stamps
async def expire_stamps_daily(*, session_factory: SessionFactory, **options: Any) -> Dict[str, Any]:
    """Expire active stamps whose deadline has passed."""

    with get_tracer().start_as_current_span("loyalty.expire_stamps") as span:
        summary = await ExpirationSweeper(session_factory, **options).expire_stamps()
        span.set_attribute("loyalty.expired", summary["expired"])
    logger.bind(summary=summary).info("Loyalty stamp expiration run finished")
    return summary


# meta: job: loyalty-expire-rewards
async def expire_rewards_daily(*, session_factory: SessionFactory, **options: Any) -> Dict[str, Any]:
    """Expire unredeemed rewards whose deadline has passed."""

    with get_tracer().start_as_current_span("loyalty.expire_rewards") as span:
        summary = await ExpirationSweeper(session_factory, **options).expire_rewards()
        span.set_attribute("loyalty.expired", summary["expired"])
    logger.bind(summary=summary).info("Loyalty reward expiration run finished")
    return summary


__all__ = ["expire_rewards_daily", "expire_stamps_daily"]
