"""Staff-side application of an in-use reward to a queue ticket."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from stampcard_api.db.atomic import run_atomic
from stampcard_api.db.session import SessionFactory, open_session
from stampcard_api.models.loyalty import LoyaltyReward, RewardStatus
from stampcard_api.models.salon import Barber, QueueTicket
from stampcard_api.observability.loyalty import get_loyalty_store

from .errors import LoyaltyError, LoyaltyErrorCode
from .program import utcnow
from .redemption import transition_reward
from .summary import LoyaltySummaryProjector, SummaryProjector, refresh_quietly

STAFF_ROLES = frozenset({"barber", "admin", "super_admin", "franchise_owner"})


@dataclass(slots=True, frozen=True)
class CallerContext:
    uid: str | None
    role: str | None = None


def authorize_member_read(caller: CallerContext, user_id: str) -> None:
    """Members read their own loyalty data; staff may read anyone's."""

    if not caller.uid:
        raise LoyaltyError(LoyaltyErrorCode.UNAUTHENTICATED, "User must be authenticated")
    if caller.uid != user_id and caller.role not in STAFF_ROLES:
        raise LoyaltyError(
            LoyaltyErrorCode.PERMISSION_DENIED,
            "Cannot read another member's loyalty summary",
            reason="owner",
        )


@dataclass(slots=True, frozen=True)
class RewardApplication:
    reward_id: str
    queue_id: str
    user_id: str
    franchise_id: str
    discount_amount: Decimal
    final_price: Decimal = Decimal("0")


def _require(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    return value.strip() or None


class RewardFulfillmentService:
    """Consume an ``in_use`` reward against a ticket (``in_use -> redeemed``)."""

    def __init__(self, session_factory: SessionFactory, *, projector: SummaryProjector | None = None) -> None:
        self._session_factory = session_factory
        self._projector = projector or LoyaltySummaryProjector(session_factory)

    async def apply(
        self,
        caller: CallerContext,
        *,
        reward_id: Any,
        queue_id: Any,
        branch_id: Any,
    ) -> RewardApplication:
        if not caller.uid:
            raise LoyaltyError(LoyaltyErrorCode.UNAUTHENTICATED, "User must be authenticated")
        if caller.role not in STAFF_ROLES:
            raise LoyaltyError(
                LoyaltyErrorCode.PERMISSION_DENIED,
                "Only barbers and admins can apply rewards",
                reason="role",
            )

        reward_key, queue_key, branch_key = _require(reward_id), _require(queue_id), _require(branch_id)
        if not (reward_key and queue_key and branch_key):
            raise LoyaltyError(
                LoyaltyErrorCode.INVALID_ARGUMENT,
                "rewardId, queueId, and branchId are required",
            )

        if caller.role == "barber":
            await self._check_barber_branch(caller.uid, branch_key)

        try:
            application = await run_atomic(
                self._session_factory,
                lambda session: self._apply(session, caller.uid, reward_key, queue_key, branch_key),
                label="reward_fulfillment",
            )
        except LoyaltyError:
            raise
        except Exception as exc:
            logger.exception("Reward fulfillment failed", reward_id=reward_key, queue_id=queue_key)
            raise LoyaltyError(LoyaltyErrorCode.INTERNAL, "Failed to apply reward") from exc

        get_loyalty_store().record_reward_event("redeemed")
        logger.info(
            "Reward applied to ticket",
            reward_id=application.reward_id,
            queue_id=application.queue_id,
            applied_by=caller.uid,
            branch_id=branch_key,
        )
        await refresh_quietly(self._projector, application.user_id, [application.franchise_id])
        return application

    async def _check_barber_branch(self, barber_id: str, branch_id: str) -> None:
        session = await open_session(self._session_factory)
        async with session as managed_session:
            barber = await managed_session.get(Barber, barber_id)
        if barber is None:
            raise LoyaltyError(LoyaltyErrorCode.NOT_FOUND, "Barber not found")
        if barber.branch_id != branch_id:
            raise LoyaltyError(
                LoyaltyErrorCode.PERMISSION_DENIED,
                "Barber not assigned to this branch",
                reason="branch",
            )

    async def _apply(
        self,
        session: AsyncSession,
        caller_id: str,
        reward_id: str,
        queue_id: str,
        branch_id: str,
    ) -> RewardApplication:
        reward = await session.get(LoyaltyReward, reward_id)
        if reward is None:
            raise LoyaltyError(LoyaltyErrorCode.NOT_FOUND, "Reward not found")
        if RewardStatus(reward.status) is not RewardStatus.IN_USE:
            raise LoyaltyError(
                LoyaltyErrorCode.FAILED_PRECONDITION,
                "Reward must be in_use to apply",
                reason="not_in_use",
            )

        ticket = await session.get(QueueTicket, queue_id)
        if ticket is None:
            raise LoyaltyError(LoyaltyErrorCode.NOT_FOUND, "Queue ticket not found")
        if reward.user_id != ticket.user_id:
            raise LoyaltyError(
                LoyaltyErrorCode.PERMISSION_DENIED,
                "Reward does not belong to this user",
                reason="owner",
            )
        if ticket.loyalty_reward:
            raise LoyaltyError(
                LoyaltyErrorCode.FAILED_PRECONDITION,
                "Ticket already has a reward applied",
                reason="ticket_has_reward",
            )
        if reward.franchise_id != ticket.franchise_id:
            raise LoyaltyError(
                LoyaltyErrorCode.PERMISSION_DENIED,
                "Reward not valid for this franchise",
                reason="franchise",
            )

        now = utcnow()
        value = Decimal(reward.value or 0)
        transition_reward(reward, RewardStatus.REDEEMED)
        reward.redeemed_at = now
        reward.redeemed_by = caller_id
        reward.redeemed_at_branch = branch_id
        reward.queue_id = queue_id
        ticket.loyalty_reward = {
            "rewardId": reward.reward_id,
            "code": reward.code,
            "appliedAt": now.isoformat(),
            "appliedBy": caller_id,
            "discountAmount": str(value),
            "originalPrice": str(value),
            "finalPrice": "0",
        }
        await session.flush()

        return RewardApplication(
            reward_id=reward.reward_id,
            queue_id=ticket.queue_id,
            user_id=reward.user_id,
            franchise_id=reward.franchise_id,
            discount_amount=value,
        )


__all__ = [
    "CallerContext",
    "RewardApplication",
    "RewardFulfillmentService",
    "STAFF_ROLES",
    "authorize_member_read",
]
