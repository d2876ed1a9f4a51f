"""Stamp issuance and threshold reward generation for completed visits."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Literal, Mapping
from uuid import uuid4

from loguru import logger
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from stampcard_api.db.atomic import run_atomic
from stampcard_api.db.session import SessionFactory
from stampcard_api.models.loyalty import LoyaltyReward, LoyaltyStamp, RewardStatus, StampStatus
from stampcard_api.models.salon import SalonService

from .program import LoyaltyProgram, generate_reward_code, load_program, to_epoch_millis, utcnow

OutcomeStatus = Literal["skipped", "duplicate", "awarded", "error"]

# The threshold check counts active stamps it may not end up updating, so two
# awards for the same member must not both commit against the same count.
AWARD_ISOLATION_LEVEL = "SERIALIZABLE"


@dataclass(slots=True, frozen=True)
class CompletedVisit:
    """Attributes of a completed queue ticket needed to issue a stamp."""

    ticket_id: str
    user_id: str
    franchise_id: str
    branch_id: str
    service_id: str | None = None
    barber_id: str | None = None


@dataclass(slots=True, frozen=True)
class IssuedReward:
    reward_id: str
    code: str
    franchise_id: str
    service_id: str | None
    value: Decimal
    expires_at: datetime | None
    stamp_ids: tuple[str, ...]

    def as_dict(self) -> dict[str, Any]:
        return {
            "rewardId": self.reward_id,
            "code": self.code,
            "serviceId": self.service_id,
            "value": self.value,
            "expiresAt": to_epoch_millis(self.expires_at),
            "stampIds": list(self.stamp_ids),
        }


@dataclass(slots=True)
class AwardOutcome:
    status: OutcomeStatus
    ticket_id: str
    reason: str | None = None
    stamp_id: str | None = None
    reward: IssuedReward | None = None
    user_id: str | None = None
    franchise_id: str | None = None
    notify: bool = field(default=False, repr=False)

    @classmethod
    def skipped(cls, ticket_id: str, reason: str) -> "AwardOutcome":
        return cls(status="skipped", ticket_id=ticket_id, reason=reason)

    def as_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "ticketId": self.ticket_id,
            "reason": self.reason,
            "stampId": self.stamp_id,
            "reward": self.reward.as_dict() if self.reward else None,
        }


class StampAwardService:
    """Issue at most one stamp per ticket and mint rewards at the threshold."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def award(self, visit: CompletedVisit) -> AwardOutcome:
        return await run_atomic(
            self._session_factory,
            lambda session: self._award(session, visit),
            label="stamp_award",
            isolation_level=AWARD_ISOLATION_LEVEL,
        )

    async def _award(self, session: AsyncSession, visit: CompletedVisit) -> AwardOutcome:
        program = await load_program(session, visit.franchise_id)
        if program is None:
            return AwardOutcome.skipped(visit.ticket_id, "config_missing")
        if not program.enabled:
            return AwardOutcome.skipped(visit.ticket_id, "program_disabled")
        if not program.is_service_eligible(visit.service_id):
            return AwardOutcome.skipped(visit.ticket_id, "service_not_eligible")

        existing = await session.execute(
            select(LoyaltyStamp.stamp_id).where(LoyaltyStamp.source_queue_id == visit.ticket_id)
        )
        existing_stamp_id = existing.scalar_one_or_none()
        if existing_stamp_id is not None:
            return AwardOutcome(
                status="duplicate",
                ticket_id=visit.ticket_id,
                stamp_id=existing_stamp_id,
                user_id=visit.user_id,
                franchise_id=visit.franchise_id,
            )

        now = utcnow()
        stamp = LoyaltyStamp(
            stamp_id=uuid4().hex,
            user_id=visit.user_id,
            franchise_id=visit.franchise_id,
            branch_id=visit.branch_id,
            service_id=visit.service_id,
            barber_id=visit.barber_id,
            status=StampStatus.ACTIVE,
            earned_at=now,
            expires_at=program.stamp_expiration.expires_at(now),
            source_queue_id=visit.ticket_id,
            created_by="system",
            created_method="automatic",
        )
        session.add(stamp)
        # A concurrent insert for the same ticket fails here on the unique
        # constraint; the retried attempt then reports it as a duplicate.
        await session.flush()

        reward = await self._maybe_generate_reward(session, program, visit, now)
        return AwardOutcome(
            status="awarded",
            ticket_id=visit.ticket_id,
            stamp_id=stamp.stamp_id,
            reward=reward,
            user_id=visit.user_id,
            franchise_id=visit.franchise_id,
            notify=reward is not None and program.notify_on_reward_generated,
        )

    async def _maybe_generate_reward(
        self,
        session: AsyncSession,
        program: LoyaltyProgram,
        visit: CompletedVisit,
        now: datetime,
    ) -> IssuedReward | None:
        result = await session.execute(
            select(LoyaltyStamp)
            .where(
                LoyaltyStamp.user_id == visit.user_id,
                LoyaltyStamp.franchise_id == visit.franchise_id,
                LoyaltyStamp.status == StampStatus.ACTIVE,
                or_(LoyaltyStamp.expires_at.is_(None), LoyaltyStamp.expires_at > now),
            )
            .order_by(LoyaltyStamp.earned_at, LoyaltyStamp.created_at, LoyaltyStamp.stamp_id)
        )
        active_stamps = list(result.scalars().all())
        if len(active_stamps) < program.stamps_required:
            return None

        consumed = active_stamps[: program.stamps_required]
        service_id = program.reward_service_id(visit.service_id)
        reward = LoyaltyReward(
            reward_id=uuid4().hex,
            code=generate_reward_code(),
            user_id=visit.user_id,
            franchise_id=visit.franchise_id,
            service_id=service_id,
            reward_type="free_service",
            value=await _service_price(session, service_id),
            status=RewardStatus.GENERATED,
            generated_from_stamps=[item.stamp_id for item in consumed],
            generated_at=now,
            expires_at=program.reward_expiration.expires_at(now),
        )
        session.add(reward)

        for item in consumed:
            item.status = StampStatus.USED_IN_REWARD
            item.reward_id = reward.reward_id
        await session.flush()

        logger.info(
            "Generated loyalty reward",
            user_id=visit.user_id,
            franchise_id=visit.franchise_id,
            reward_id=reward.reward_id,
            stamps_consumed=len(consumed),
        )
        return IssuedReward(
            reward_id=reward.reward_id,
            code=reward.code,
            franchise_id=reward.franchise_id,
            service_id=reward.service_id,
            value=Decimal(reward.value),
            expires_at=reward.expires_at,
            stamp_ids=tuple(reward.generated_from_stamps),
        )


async def _service_price(session: AsyncSession, service_id: str | None) -> Decimal:
    if not service_id:
        return Decimal("0")
    service = await session.get(SalonService, service_id)
    if service is None or service.price is None:
        return Decimal("0")
    return Decimal(service.price)


def visit_from_snapshot(ticket_id: str, snapshot: Mapping[str, Any]) -> CompletedVisit | None:
    """Build a visit from a camelCase ticket snapshot; ``None`` when attribution is incomplete."""

    def _text(key: str) -> str | None:
        value = snapshot.get(key)
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    user_id = _text("userId")
    franchise_id = _text("franchiseId")
    branch_id = _text("branchId")
    service_id = _text("serviceId")
    barber_id = _text("barberId")
    if not (user_id and franchise_id and branch_id and service_id and barber_id):
        return None
    return CompletedVisit(
        ticket_id=ticket_id,
        user_id=user_id,
        franchise_id=franchise_id,
        branch_id=branch_id,
        service_id=service_id,
        barber_id=barber_id,
    )


__all__ = [
    "AwardOutcome",
    "CompletedVisit",
    "IssuedReward",
    "StampAwardService",
    "visit_from_snapshot",
]
