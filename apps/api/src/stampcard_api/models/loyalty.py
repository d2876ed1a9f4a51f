"""Loyalty stamp card domain models."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SqlEnum,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    UniqueConstraint,
    func,
)

from stampcard_api.db.base import Base


def _new_id() -> str:
    return uuid4().hex


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class StampStatus(str, Enum):
    """Lifecycle statuses for loyalty stamps."""

    ACTIVE = "active"
    EXPIRED = "expired"
    USED_IN_REWARD = "used_in_reward"

    @property
    def is_terminal(self) -> bool:
        return self is not StampStatus.ACTIVE


class RewardStatus(str, Enum):
    """Lifecycle statuses for loyalty rewards."""

    GENERATED = "generated"
    ACTIVE = "active"
    IN_USE = "in_use"
    REDEEMED = "redeemed"
    EXPIRED = "expired"

    @property
    def is_redeemable(self) -> bool:
        return self in REDEEMABLE_REWARD_STATUSES

    def can_transition_to(self, target: "RewardStatus") -> bool:
        return target in _REWARD_TRANSITIONS[self]


REDEEMABLE_REWARD_STATUSES = frozenset({RewardStatus.GENERATED, RewardStatus.ACTIVE})
EXPIRABLE_REWARD_STATUSES = REDEEMABLE_REWARD_STATUSES
EXPIRABLE_STAMP_STATUSES = frozenset({StampStatus.ACTIVE})

_REWARD_TRANSITIONS: dict[RewardStatus, frozenset[RewardStatus]] = {
    RewardStatus.GENERATED: frozenset({RewardStatus.IN_USE, RewardStatus.EXPIRED}),
    RewardStatus.ACTIVE: frozenset({RewardStatus.IN_USE, RewardStatus.EXPIRED}),
    RewardStatus.IN_USE: frozenset({RewardStatus.REDEEMED}),
    RewardStatus.REDEEMED: frozenset(),
    RewardStatus.EXPIRED: frozenset(),
}


class LoyaltyConfig(Base):
    """Per-franchise stamp card configuration, maintained by the admin console."""

    __tablename__ = "loyalty_configs"

    franchise_id = Column(String(64), primary_key=True)
    enabled = Column(Boolean, nullable=False, default=False, server_default="false")
    stamps_required = Column(Integer, nullable=False, default=10, server_default="10")
    eligible_services = Column(JSON, nullable=False, default=lambda: {"mode": "all", "serviceIds": []})
    stamp_expiration = Column(JSON, nullable=False, default=lambda: {"enabled": False, "days": 0})
    reward_expiration = Column(JSON, nullable=False, default=lambda: {"enabled": False, "days": 0})
    notifications = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class LoyaltyStamp(Base):
    """A stamp earned for one completed, eligible queue ticket."""

    __tablename__ = "loyalty_stamps"
    __table_args__ = (
        UniqueConstraint("source_queue_id", name="uq_loyalty_stamps_source_queue_id"),
        Index("ix_loyalty_stamps_user_franchise_status", "user_id", "franchise_id", "status"),
        Index("ix_loyalty_stamps_status_expires_at", "status", "expires_at"),
    )

    stamp_id = Column(String(64), primary_key=True, default=_new_id)
    user_id = Column(String(128), nullable=False)
    franchise_id = Column(String(64), nullable=False)
    branch_id = Column(String(64), nullable=False)
    service_id = Column(String(64), nullable=True)
    barber_id = Column(String(64), nullable=True)
    status = Column(
        SqlEnum(StampStatus, name="loyalty_stamp_status", values_callable=_enum_values),
        nullable=False,
        default=StampStatus.ACTIVE,
        server_default=StampStatus.ACTIVE.value,
    )
    earned_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    source_queue_id = Column(String(64), nullable=False)
    reward_id = Column(String(64), nullable=True)
    created_by = Column(String(64), nullable=False, default="system", server_default="system")
    created_method = Column(String(16), nullable=False, default="automatic", server_default="automatic")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    version = Column(Integer, nullable=False, default=1, server_default="1")

    __mapper_args__ = {"version_id_col": version}


class LoyaltyReward(Base):
    """A redeemable reward generated once enough stamps accumulate."""

    __tablename__ = "loyalty_rewards"
    __table_args__ = (
        UniqueConstraint("code", name="uq_loyalty_rewards_code"),
        Index("ix_loyalty_rewards_user_franchise", "user_id", "franchise_id"),
        Index("ix_loyalty_rewards_status_expires_at", "status", "expires_at"),
    )

    reward_id = Column(String(64), primary_key=True, default=_new_id)
    code = Column(String(32), nullable=False)
    user_id = Column(String(128), nullable=False)
    franchise_id = Column(String(64), nullable=False)
    service_id = Column(String(64), nullable=True)
    reward_type = Column(String(32), nullable=False, default="free_service", server_default="free_service")
    value = Column(Numeric(12, 2), nullable=False, default=0, server_default="0")
    status = Column(
        SqlEnum(RewardStatus, name="loyalty_reward_status", values_callable=_enum_values),
        nullable=False,
        default=RewardStatus.GENERATED,
        server_default=RewardStatus.GENERATED.value,
    )
    generated_from_stamps = Column(JSON, nullable=False, default=list)
    generated_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    expired_at = Column(DateTime(timezone=True), nullable=True)
    in_use_at = Column(DateTime(timezone=True), nullable=True)
    in_use_by = Column(String(128), nullable=True)
    redeemed_at = Column(DateTime(timezone=True), nullable=True)
    redeemed_by = Column(String(128), nullable=True)
    redeemed_at_branch = Column(String(64), nullable=True)
    queue_id = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    version = Column(Integer, nullable=False, default=1, server_default="1")

    __mapper_args__ = {"version_id_col": version}


class LoyaltyCustomerSummary(Base):
    """Denormalized per-user, per-franchise loyalty counters."""

    __tablename__ = "loyalty_customer_summaries"
    __table_args__ = (
        UniqueConstraint("user_id", "franchise_id", name="uq_loyalty_customer_summaries_user_franchise"),
    )

    id = Column(String(64), primary_key=True, default=_new_id)
    user_id = Column(String(128), nullable=False, index=True)
    franchise_id = Column(String(64), nullable=False)
    active_stamps = Column(Integer, nullable=False, default=0, server_default="0")
    total_stamps_earned = Column(Integer, nullable=False, default=0, server_default="0")
    total_rewards_generated = Column(Integer, nullable=False, default=0, server_default="0")
    total_rewards_redeemed = Column(Integer, nullable=False, default=0, server_default="0")
    total_rewards_expired = Column(Integer, nullable=False, default=0, server_default="0")
    stamps_required = Column(Integer, nullable=False, default=0, server_default="0")
    progress_percentage = Column(Numeric(5, 2), nullable=False, default=0, server_default="0")
    active_reward_ids = Column(JSON, nullable=False, default=list)
    last_stamp_at = Column(DateTime(timezone=True), nullable=True)
    last_reward_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


__all__ = [
    "EXPIRABLE_REWARD_STATUSES",
    "EXPIRABLE_STAMP_STATUSES",
    "LoyaltyConfig",
    "LoyaltyCustomerSummary",
    "LoyaltyReward",
    "LoyaltyStamp",
    "REDEEMABLE_REWARD_STATUSES",
    "RewardStatus",
    "StampStatus",
]
