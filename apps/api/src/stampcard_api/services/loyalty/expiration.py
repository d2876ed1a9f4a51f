"""Bounded, chunked expiration of stamps and rewards past their deadline."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Sequence

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from stampcard_api.core.settings import settings
from stampcard_api.db.atomic import run_atomic
from stampcard_api.db.session import SessionFactory, open_session
from stampcard_api.models.loyalty import (
    EXPIRABLE_REWARD_STATUSES,
    EXPIRABLE_STAMP_STATUSES,
    LoyaltyReward,
    LoyaltyStamp,
    RewardStatus,
    StampStatus,
)
from stampcard_api.observability.loyalty import get_loyalty_store

from .program import utcnow
from .summary import LoyaltySummaryProjector, SummaryProjector, refresh_quietly

MAX_BATCH_SIZE = 500
MAX_DOCS_PER_RUN = 10_000


@dataclass(frozen=True)
class ExpirableLedger:
    """Describe how one ledger table is swept."""

    name: str
    model: Any
    key: Any
    expirable_statuses: frozenset
    expired_status: Any
    records_expired_at: bool = False

    def expired_values(self, now: datetime) -> dict[str, Any]:
        values: dict[str, Any] = {
            "status": self.expired_status,
            "updated_at": now,
            "version": self.model.version + 1,
        }
        if self.records_expired_at:
            values["expired_at"] = now
        return values


STAMP_LEDGER = ExpirableLedger(
    name="stamps",
    model=LoyaltyStamp,
    key=LoyaltyStamp.stamp_id,
    expirable_statuses=EXPIRABLE_STAMP_STATUSES,
    expired_status=StampStatus.EXPIRED,
)

REWARD_LEDGER = ExpirableLedger(
    name="rewards",
    model=LoyaltyReward,
    key=LoyaltyReward.reward_id,
    expirable_statuses=EXPIRABLE_REWARD_STATUSES,
    expired_status=RewardStatus.EXPIRED,
    records_expired_at=True,
)


def chunked(items: Sequence[Any], size: int) -> list[Sequence[Any]]:
    return [items[index : index + size] for index in range(0, len(items), size)]


class ExpirationSweeper:
    """Expire at most ``max_docs`` rows per run, committing every ``batch_size``.

    Rows left over when the cap is reached are picked up by the next run.
    A failure partway through leaves earlier batches committed.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        projector: SummaryProjector | None = None,
        max_docs: int | None = None,
        batch_size: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._projector = projector or LoyaltySummaryProjector(session_factory)
        self._max_docs = min(max(max_docs or settings.loyalty_expiration_max_docs_per_run, 1), MAX_DOCS_PER_RUN)
        self._batch_size = min(max(batch_size or settings.loyalty_expiration_batch_size, 1), MAX_BATCH_SIZE)

    async def expire_stamps(self, now: datetime | None = None) -> dict[str, Any]:
        return await self.sweep(STAMP_LEDGER, now=now)

    async def expire_rewards(self, now: datetime | None = None) -> dict[str, Any]:
        return await self.sweep(REWARD_LEDGER, now=now)

    async def sweep(self, ledger: ExpirableLedger, *, now: datetime | None = None) -> dict[str, Any]:
        now = now or utcnow()
        candidates = await self._select_candidates(ledger, now)
        summary: dict[str, Any] = {
            "matched": len(candidates),
            "expired": 0,
            "batches": 0,
            "users_refreshed": 0,
            "limit_reached": len(candidates) >= self._max_docs,
        }

        if not candidates:
            logger.info("No loyalty records to expire", ledger=ledger.name)
            get_loyalty_store().record_expiration(ledger.name, 0)
            return summary

        if summary["limit_reached"]:
            logger.warning(
                "Expiration cap reached, remaining records deferred to next run",
                ledger=ledger.name,
                limit=self._max_docs,
            )
        logger.info("Found loyalty records to expire", ledger=ledger.name, count=len(candidates))

        affected: dict[str, set[str]] = defaultdict(set)
        for batch in chunked(candidates, self._batch_size):
            ids = [row[0] for row in batch]
            expired = await run_atomic(
                self._session_factory,
                lambda session, ids=ids: self._expire_batch(session, ledger, ids, now),
                label=f"expire_{ledger.name}",
            )
            summary["expired"] += expired
            summary["batches"] += 1
            for _, user_id, franchise_id in batch:
                affected[user_id].add(franchise_id)

        for user_id, franchise_ids in affected.items():
            if await refresh_quietly(self._projector, user_id, franchise_ids):
                summary["users_refreshed"] += 1

        get_loyalty_store().record_expiration(
            ledger.name, summary["expired"], limit_reached=summary["limit_reached"]
        )
        logger.bind(summary=summary).info("Expired loyalty records", ledger=ledger.name)
        return summary

    async def _select_candidates(self, ledger: ExpirableLedger, now: datetime) -> list[tuple[str, str, str]]:
        model = ledger.model
        stmt = (
            select(ledger.key, model.user_id, model.franchise_id)
            .where(
                model.status.in_(list(ledger.expirable_statuses)),
                model.expires_at.is_not(None),
                model.expires_at <= now,
            )
            .order_by(model.expires_at, ledger.key)
            .limit(self._max_docs)
        )
        session = await open_session(self._session_factory)
        async with session as managed_session:
            result = await managed_session.execute(stmt)
            return [tuple(row) for row in result.all()]

    async def _expire_batch(
        self,
        session: AsyncSession,
        ledger: ExpirableLedger,
        ids: Sequence[str],
        now: datetime,
    ) -> int:
        model = ledger.model
        # Status predicate repeated so rows consumed or redeemed since the read stay untouched.
        stmt = (
            update(model)
            .where(ledger.key.in_(ids), model.status.in_(list(ledger.expirable_statuses)))
            .values(**ledger.expired_values(now))
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return int(result.rowcount or 0)


__all__ = [
    "ExpirableLedger",
    "ExpirationSweeper",
    "MAX_BATCH_SIZE",
    "MAX_DOCS_PER_RUN",
    "REWARD_LEDGER",
    "STAMP_LEDGER",
    "chunked",
]
