"""Per-member denormalized loyalty counters."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Protocol

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stampcard_api.db.atomic import run_atomic
from stampcard_api.db.session import SessionFactory
from stampcard_api.models.loyalty import (
    LoyaltyConfig,
    LoyaltyCustomerSummary,
    LoyaltyReward,
    LoyaltyStamp,
    REDEEMABLE_REWARD_STATUSES,
    RewardStatus,
    StampStatus,
)

from .program import ensure_aware


class SummaryProjector(Protocol):
    async def refresh(self, user_id: str, franchise_ids: Iterable[str]) -> None:
        ...


@dataclass(slots=True)
class SummaryCounters:
    active_stamps: int = 0
    total_stamps_earned: int = 0
    total_rewards_generated: int = 0
    total_rewards_redeemed: int = 0
    total_rewards_expired: int = 0
    active_reward_ids: tuple[str, ...] = ()
    last_stamp_at: datetime | None = None
    last_reward_at: datetime | None = None

    def progress_percentage(self, stamps_required: int) -> Decimal:
        if stamps_required <= 0:
            return Decimal("0.00")
        ratio = Decimal(min(self.active_stamps, stamps_required) * 100) / Decimal(stamps_required)
        return ratio.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def compute_counters(stamps: Iterable[LoyaltyStamp], rewards: Iterable[LoyaltyReward]) -> SummaryCounters:
    counters = SummaryCounters()
    active_reward_ids: list[str] = []

    for stamp in stamps:
        counters.total_stamps_earned += 1
        if stamp.status == StampStatus.ACTIVE:
            counters.active_stamps += 1
        earned_at = ensure_aware(stamp.earned_at)
        if counters.last_stamp_at is None or earned_at > counters.last_stamp_at:
            counters.last_stamp_at = earned_at

    for reward in rewards:
        counters.total_rewards_generated += 1
        if reward.status == RewardStatus.REDEEMED:
            counters.total_rewards_redeemed += 1
        elif reward.status == RewardStatus.EXPIRED:
            counters.total_rewards_expired += 1
        elif reward.status in REDEEMABLE_REWARD_STATUSES:
            active_reward_ids.append(reward.reward_id)
        generated_at = ensure_aware(reward.generated_at)
        if counters.last_reward_at is None or generated_at > counters.last_reward_at:
            counters.last_reward_at = generated_at

    counters.active_reward_ids = tuple(sorted(active_reward_ids))
    return counters


class LoyaltySummaryProjector:
    """Recompute ``loyalty_customer_summaries`` rows from the ledgers."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def refresh(self, user_id: str, franchise_ids: Iterable[str]) -> None:
        for franchise_id in sorted(set(franchise_ids)):
            await run_atomic(
                self._session_factory,
                lambda session, fid=franchise_id: self._project(session, user_id, fid),
                label="summary_refresh",
            )
            logger.debug("Refreshed loyalty summary", user_id=user_id, franchise_id=franchise_id)

    async def _project(self, session: AsyncSession, user_id: str, franchise_id: str) -> LoyaltyCustomerSummary:
        stamps = (
            await session.execute(
                select(LoyaltyStamp).where(
                    LoyaltyStamp.user_id == user_id,
                    LoyaltyStamp.franchise_id == franchise_id,
                )
            )
        ).scalars().all()
        rewards = (
            await session.execute(
                select(LoyaltyReward).where(
                    LoyaltyReward.user_id == user_id,
                    LoyaltyReward.franchise_id == franchise_id,
                )
            )
        ).scalars().all()
        config = await session.get(LoyaltyConfig, franchise_id)
        stamps_required = int(config.stamps_required) if config is not None else 0

        counters = compute_counters(stamps, rewards)

        summary = (
            await session.execute(
                select(LoyaltyCustomerSummary).where(
                    LoyaltyCustomerSummary.user_id == user_id,
                    LoyaltyCustomerSummary.franchise_id == franchise_id,
                )
            )
        ).scalar_one_or_none()
        if summary is None:
            summary = LoyaltyCustomerSummary(user_id=user_id, franchise_id=franchise_id)
            session.add(summary)

        summary.active_stamps = counters.active_stamps
        summary.total_stamps_earned = counters.total_stamps_earned
        summary.total_rewards_generated = counters.total_rewards_generated
        summary.total_rewards_redeemed = counters.total_rewards_redeemed
        summary.total_rewards_expired = counters.total_rewards_expired
        summary.stamps_required = stamps_required
        summary.progress_percentage = counters.progress_percentage(stamps_required)
        summary.active_reward_ids = list(counters.active_reward_ids)
        summary.last_stamp_at = counters.last_stamp_at
        summary.last_reward_at = counters.last_reward_at
        await session.flush()
        return summary


async def list_member_summaries(session: AsyncSession, user_id: str) -> list[LoyaltyCustomerSummary]:
    result = await session.execute(
        select(LoyaltyCustomerSummary)
        .where(LoyaltyCustomerSummary.user_id == user_id)
        .order_by(LoyaltyCustomerSummary.franchise_id)
    )
    return list(result.scalars().all())


async def refresh_quietly(
    projector: SummaryProjector | None, user_id: str, franchise_ids: Iterable[str]
) -> bool:
    """Run a post-commit refresh; failures are logged, never raised."""

    if projector is None:
        return False
    franchise_ids = list(franchise_ids)
    try:
        await projector.refresh(user_id, franchise_ids)
    except Exception:
        logger.exception(
            "Loyalty summary refresh failed",
            user_id=user_id,
            franchise_ids=franchise_ids,
        )
        return False
    return True


__all__ = [
    "LoyaltySummaryProjector",
    "SummaryCounters",
    "SummaryProjector",
    "compute_counters",
    "list_member_summaries",
    "refresh_quietly",
]
