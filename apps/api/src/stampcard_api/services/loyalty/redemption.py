"""Customer-facing reward redemption by code."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stampcard_api.db.atomic import run_atomic
from stampcard_api.db.session import SessionFactory
from stampcard_api.models.loyalty import LoyaltyReward, RewardStatus
from stampcard_api.observability.loyalty import get_loyalty_store

from .errors import LoyaltyError, LoyaltyErrorCode
from .program import is_past_deadline, normalize_reward_code, to_epoch_millis, utcnow
from .summary import LoyaltySummaryProjector, SummaryProjector, refresh_quietly


@dataclass(slots=True, frozen=True)
class RedeemedRewardView:
    reward_id: str
    code: str
    user_id: str
    franchise_id: str
    service_id: str | None
    value: Decimal
    expires_at: datetime | None

    def as_dict(self) -> dict[str, Any]:
        return {
            "rewardId": self.reward_id,
            "code": self.code,
            "userId": self.user_id,
            "franchiseId": self.franchise_id,
            "serviceId": self.service_id,
            "value": self.value,
            "expiresAt": to_epoch_millis(self.expires_at),
        }


@dataclass(slots=True, frozen=True)
class _Attempt:
    outcome: Literal["in_use", "expired"]
    reward: RedeemedRewardView


def validate_reward_code(raw: Any) -> str:
    if not isinstance(raw, str) or not raw.strip():
        raise LoyaltyError(
            LoyaltyErrorCode.INVALID_ARGUMENT,
            "A reward code is required",
            reason="missing_code",
        )
    return normalize_reward_code(raw)


class RewardRedemptionService:
    """Move a redeemable reward to ``in_use`` exactly once per code."""

    def __init__(self, session_factory: SessionFactory, *, projector: SummaryProjector | None = None) -> None:
        self._session_factory = session_factory
        self._projector = projector or LoyaltySummaryProjector(session_factory)
        self._store = get_loyalty_store()

    async def redeem(self, caller_id: str | None, reward_code: Any) -> RedeemedRewardView:
        if not caller_id:
            raise LoyaltyError(
                LoyaltyErrorCode.UNAUTHENTICATED,
                "Sign in to redeem a reward",
                reason="unauthenticated",
            )
        code = validate_reward_code(reward_code)

        try:
            attempt = await run_atomic(
                self._session_factory,
                lambda session: self._mark_in_use(session, code, caller_id),
                label="reward_redemption",
            )
        except LoyaltyError as error:
            self._store.record_redemption(error.reason or error.code.value)
            logger.info("Reward redemption rejected", code=code, error_code=error.code.value, reason=error.reason)
            raise

        await refresh_quietly(self._projector, attempt.reward.user_id, [attempt.reward.franchise_id])

        if attempt.outcome == "expired":
            self._store.record_redemption("expired")
            logger.info("Reward expired at redemption", reward_id=attempt.reward.reward_id)
            raise LoyaltyError(
                LoyaltyErrorCode.FAILED_PRECONDITION,
                "This reward has expired",
                reason="expired",
            )

        self._store.record_redemption("in_use")
        logger.info(
            "Reward marked in use",
            reward_id=attempt.reward.reward_id,
            user_id=attempt.reward.user_id,
            redeemed_by=caller_id,
        )
        return attempt.reward

    async def _mark_in_use(self, session: AsyncSession, code: str, caller_id: str) -> _Attempt:
        result = await session.execute(select(LoyaltyReward).where(LoyaltyReward.code == code))
        reward = result.scalar_one_or_none()
        if reward is None:
            raise LoyaltyError(LoyaltyErrorCode.NOT_FOUND, "Reward code not found", reason="not_found")

        status = RewardStatus(reward.status)
        match status:
            case RewardStatus.GENERATED | RewardStatus.ACTIVE:
                pass
            case RewardStatus.IN_USE | RewardStatus.REDEEMED | RewardStatus.EXPIRED:
                raise LoyaltyError(
                    LoyaltyErrorCode.FAILED_PRECONDITION,
                    "This reward is no longer available",
                    reason="unavailable",
                )

        now = utcnow()
        if is_past_deadline(reward.expires_at, now):
            transition_reward(reward, RewardStatus.EXPIRED)
            reward.expired_at = now
            await session.flush()
            return _Attempt(outcome="expired", reward=_view(reward))

        transition_reward(reward, RewardStatus.IN_USE)
        reward.in_use_at = now
        reward.in_use_by = caller_id
        await session.flush()
        return _Attempt(outcome="in_use", reward=_view(reward))


def transition_reward(reward: LoyaltyReward, target: RewardStatus) -> None:
    """Apply ``target`` through the reward transition table."""

    current = RewardStatus(reward.status)
    if not current.can_transition_to(target):
        raise LoyaltyError(
            LoyaltyErrorCode.FAILED_PRECONDITION,
            f"Reward cannot move from {current.value} to {target.value}",
            reason="invalid_transition",
        )
    reward.status = target


def _view(reward: LoyaltyReward) -> RedeemedRewardView:
    return RedeemedRewardView(
        reward_id=reward.reward_id,
        code=reward.code,
        user_id=reward.user_id,
        franchise_id=reward.franchise_id,
        service_id=reward.service_id,
        value=Decimal(reward.value or 0),
        expires_at=reward.expires_at,
    )


__all__ = ["RedeemedRewardView", "RewardRedemptionService", "transition_reward", "validate_reward_code"]