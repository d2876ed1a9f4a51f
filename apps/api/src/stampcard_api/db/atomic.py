"""Transactional unit of work with retry on write conflicts."""

from __future__ import annotations

import asyncio
import random
from typing import Awaitable, Callable, TypeVar

from loguru import logger
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from stampcard_api.core.settings import settings
from stampcard_api.db.session import SessionFactory, open_session

T = TypeVar("T")

# serialization_failure, deadlock_detected
_RETRYABLE_SQLSTATES = {"40001", "40P01"}
_RETRYABLE_MESSAGES = ("database is locked", "could not serialize access", "deadlock detected")


class UnitOfWorkConflict(RuntimeError):
    """Raised when a unit of work keeps losing write races."""

    def __init__(self, label: str, attempts: int) -> None:
        super().__init__(f"{label} gave up after {attempts} conflicting attempts")
        self.label = label
        self.attempts = attempts


def is_retryable_conflict(exc: BaseException) -> bool:
    """Return True for errors caused by a concurrent writer winning the race."""

    if isinstance(exc, (StaleDataError, IntegrityError)):
        return True
    if isinstance(exc, DBAPIError):
        orig = exc.orig
        sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
        if sqlstate in _RETRYABLE_SQLSTATES:
            return True
        message = str(orig or exc).lower()
        return any(fragment in message for fragment in _RETRYABLE_MESSAGES)
    return False


async def run_atomic(
    session_factory: SessionFactory,
    fn: Callable[[AsyncSession], Awaitable[T]],
    *,
    label: str = "unit_of_work",
    max_attempts: int | None = None,
    base_backoff_seconds: float | None = None,
    isolation_level: str | None = None,
) -> T:
    """Run ``fn`` inside one transaction and commit, re-running it on conflicts.

    Every attempt gets a fresh session so reads inside ``fn`` observe whatever
    the winning writer committed. Exceptions that are not write conflicts
    roll back and propagate on the first attempt.

    ``isolation_level`` pins the transaction's isolation before ``fn`` runs.
    Units of work that decide on a count of rows they do not update pass
    ``"SERIALIZABLE"`` so a concurrent insert aborts one side with 40001.
    """

    attempts_allowed = max(max_attempts or settings.loyalty_transaction_max_attempts, 1)
    backoff = max(
        settings.loyalty_transaction_backoff_seconds if base_backoff_seconds is None else base_backoff_seconds,
        0.0,
    )

    for attempt in range(1, attempts_allowed + 1):
        session = await open_session(session_factory)
        async with session as managed_session:
            try:
                if isolation_level is not None:
                    await managed_session.connection(execution_options={"isolation_level": isolation_level})
                result = await fn(managed_session)
                await managed_session.commit()
                return result
            except Exception as exc:
                await managed_session.rollback()
                if not is_retryable_conflict(exc):
                    raise
                if attempt >= attempts_allowed:
                    logger.error(
                        "Unit of work abandoned after conflicts",
                        label=label,
                        attempts=attempt,
                        error=str(exc),
                    )
                    raise UnitOfWorkConflict(label, attempt) from exc

                delay = backoff * (2 ** (attempt - 1))
                if delay:
                    delay += random.uniform(0, backoff)
                logger.warning(
                    "Unit of work conflicted, retrying",
                    label=label,
                    attempt=attempt + 1,
                    delay_seconds=delay,
                    error_type=type(exc).__name__,
                )
        if delay:
            await asyncio.sleep(delay)

    raise UnitOfWorkConflict(label, attempts_allowed)  # pragma: no cover - loop always returns or raises


__all__ = ["UnitOfWorkConflict", "is_retryable_conflict", "run_atomic"]
