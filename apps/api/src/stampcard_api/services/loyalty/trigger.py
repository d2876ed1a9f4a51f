"""Queue ticket completion handler feeding the stamp ledger."""

from __future__ import annotations

from typing import Any, Mapping, Protocol

from loguru import logger

from stampcard_api.db.session import SessionFactory
from stampcard_api.models.salon import QueueTicketStatus
from stampcard_api.observability.loyalty import get_loyalty_store
from stampcard_api.schemas.loyalty import QueueTicketChange

from .notifications import RewardNotifier
from .stamps import AwardOutcome, IssuedReward, StampAwardService, visit_from_snapshot
from .summary import LoyaltySummaryProjector, SummaryProjector, refresh_quietly

_COMPLETED = QueueTicketStatus.COMPLETED.value


class RewardNotifierProtocol(Protocol):
    async def reward_generated(self, user_id: str, reward: IssuedReward) -> Any:
        ...


def _status(snapshot: Mapping[str, Any] | None) -> str | None:
    if not snapshot:
        return None
    value = snapshot.get("status")
    return str(value) if value is not None else None


def completion_skip_reason(event: QueueTicketChange) -> str | None:
    """Return why the change is not a transition into ``completed``, if it is not."""

    if event.before is None or event.after is None:
        return "missing_snapshot"
    if _status(event.after) != _COMPLETED:
        return "not_completed"
    if _status(event.before) == _COMPLETED:
        return "already_completed"
    return None


async def handle_ticket_update(
    event: QueueTicketChange,
    *,
    session_factory: SessionFactory,
    projector: SummaryProjector | None = None,
    notifier: RewardNotifierProtocol | None = None,
) -> AwardOutcome:
    """Award a stamp when a ticket transitions into ``completed``.

    Never raises: failures inside the award are logged and reported as an
    ``error`` outcome, and post-commit summary or notification failures do
    not undo the award.
    """

    store = get_loyalty_store()
    log = logger.bind(ticket_id=event.ticket_id)

    reason = completion_skip_reason(event)
    if reason is None:
        visit = visit_from_snapshot(event.ticket_id, event.after or {})
        if visit is None:
            reason = "missing_attribution"
    if reason is not None:
        if reason == "missing_snapshot":
            log.warning("Queue ticket change without snapshots, skipping")
        else:
            log.debug("Queue ticket change ignored", reason=reason)
        store.record_trigger_outcome("skipped", reason)
        return AwardOutcome.skipped(event.ticket_id, reason)

    try:
        outcome = await StampAwardService(session_factory).award(visit)
    except Exception as exc:
        log.exception("Stamp award failed", user_id=visit.user_id, franchise_id=visit.franchise_id)
        store.record_trigger_outcome("error")
        return AwardOutcome(status="error", ticket_id=event.ticket_id, reason=type(exc).__name__)

    store.record_trigger_outcome(outcome.status, outcome.reason)
    if outcome.status == "skipped":
        log.info("Stamp not awarded", reason=outcome.reason, franchise_id=visit.franchise_id)
        return outcome
    if outcome.status == "duplicate":
        log.info("Stamp already awarded for ticket", stamp_id=outcome.stamp_id)
        return outcome

    log.info(
        "Stamp awarded",
        stamp_id=outcome.stamp_id,
        user_id=visit.user_id,
        franchise_id=visit.franchise_id,
        reward_id=outcome.reward.reward_id if outcome.reward else None,
    )
    if outcome.reward is not None:
        store.record_reward_event("generated")

    projector = projector or LoyaltySummaryProjector(session_factory)
    await refresh_quietly(projector, visit.user_id, [visit.franchise_id])

    if outcome.reward is not None and outcome.notify:
        notifier = notifier or RewardNotifier(session_factory)
        try:
            await notifier.reward_generated(visit.user_id, outcome.reward)
        except Exception:
            log.exception("Reward notification failed", reward_id=outcome.reward.reward_id)
        else:
            store.record_reward_event("notified")

    return outcome


__all__ = ["RewardNotifierProtocol", "completion_skip_reason", "handle_ticket_update"]
