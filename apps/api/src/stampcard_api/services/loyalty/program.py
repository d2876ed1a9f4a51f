"""Franchise loyalty program configuration and the rules derived from it."""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Literal, Mapping

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from stampcard_api.models.loyalty import LoyaltyConfig

REWARD_CODE_PREFIX = "RWD-"
REWARD_CODE_LENGTH = 12
_REWARD_CODE_ALPHABET = string.ascii_uppercase + string.digits


@dataclass(frozen=True, slots=True)
class ExpirationPolicy:
    enabled: bool = False
    days: int = 0

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any] | None) -> "ExpirationPolicy":
        if not isinstance(payload, Mapping):
            return cls()
        try:
            days = int(payload.get("days", 0) or 0)
        except (TypeError, ValueError):
            days = 0
        return cls(enabled=bool(payload.get("enabled", False)), days=max(days, 0))

    def expires_at(self, now: datetime) -> datetime | None:
        if not self.enabled:
            return None
        return now + timedelta(days=self.days)


@dataclass(frozen=True, slots=True)
class EligibleServices:
    mode: Literal["all", "specific"] = "all"
    service_ids: tuple[str, ...] = ()

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any] | None) -> "EligibleServices":
        if not isinstance(payload, Mapping):
            return cls()
        mode = "specific" if payload.get("mode") == "specific" else "all"
        raw_ids = payload.get("serviceIds") or payload.get("service_ids") or []
        service_ids = tuple(str(item) for item in raw_ids if item) if isinstance(raw_ids, (list, tuple)) else ()
        return cls(mode=mode, service_ids=service_ids)

    def allows(self, service_id: str | None) -> bool:
        if self.mode == "all":
            return True
        return service_id is not None and service_id in self.service_ids


@dataclass(frozen=True, slots=True)
class LoyaltyProgram:
    """Immutable view of a franchise's ``loyalty_configs`` row."""

    franchise_id: str
    enabled: bool
    stamps_required: int
    eligible_services: EligibleServices = field(default_factory=EligibleServices)
    stamp_expiration: ExpirationPolicy = field(default_factory=ExpirationPolicy)
    reward_expiration: ExpirationPolicy = field(default_factory=ExpirationPolicy)
    notify_on_reward_generated: bool = False

    @classmethod
    def from_record(cls, record: LoyaltyConfig) -> "LoyaltyProgram":
        notifications = record.notifications if isinstance(record.notifications, Mapping) else {}
        return cls(
            franchise_id=record.franchise_id,
            enabled=bool(record.enabled),
            stamps_required=max(int(record.stamps_required or 0), 1),
            eligible_services=EligibleServices.from_payload(record.eligible_services),
            stamp_expiration=ExpirationPolicy.from_payload(record.stamp_expiration),
            reward_expiration=ExpirationPolicy.from_payload(record.reward_expiration),
            notify_on_reward_generated=bool(notifications.get("onRewardGenerated", False)),
        )

    def is_service_eligible(self, service_id: str | None) -> bool:
        return self.eligible_services.allows(service_id)

    def reward_service_id(self, ticket_service_id: str | None) -> str | None:
        """Service granted by a reward: the first configured one, else the visit's."""

        if self.eligible_services.mode == "specific" and self.eligible_services.service_ids:
            return self.eligible_services.service_ids[0]
        return ticket_service_id


async def load_program(session: AsyncSession, franchise_id: str) -> LoyaltyProgram | None:
    record = await session.get(LoyaltyConfig, franchise_id)
    if record is None:
        logger.debug("No loyalty configuration for franchise", franchise_id=franchise_id)
        return None
    return LoyaltyProgram.from_record(record)


def generate_reward_code() -> str:
    """Return a ``RWD-`` code with 12 characters drawn from a CSPRNG."""

    suffix = "".join(secrets.choice(_REWARD_CODE_ALPHABET) for _ in range(REWARD_CODE_LENGTH))
    return f"{REWARD_CODE_PREFIX}{suffix}"


def normalize_reward_code(raw: str) -> str:
    return raw.strip().upper()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; every stored timestamp is UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_past_deadline(expires_at: datetime | None, now: datetime) -> bool:
    if expires_at is None:
        return False
    return ensure_aware(expires_at) <= ensure_aware(now)


def to_epoch_millis(value: datetime | None) -> int | None:
    if value is None:
        return None
    return int(ensure_aware(value).timestamp() * 1000)


__all__ = [
    "EligibleServices",
    "ExpirationPolicy",
    "LoyaltyProgram",
    "REWARD_CODE_PREFIX",
    "ensure_aware",
    "generate_reward_code",
    "is_past_deadline",
    "load_program",
    "normalize_reward_code",
    "to_epoch_millis",
    "utcnow",
]
