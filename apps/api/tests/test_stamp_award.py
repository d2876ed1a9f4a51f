"""Tests for the queue completion trigger and stamp issuance."""

import asyncio
import datetime as dt
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from stampcard_api.models.loyalty import (
    LoyaltyCustomerSummary,
    LoyaltyReward,
    LoyaltyStamp,
    RewardStatus,
    StampStatus,
)
from stampcard_api.models.notification import Notification
from stampcard_api.observability.loyalty import get_loyalty_store
from stampcard_api.schemas.loyalty import QueueTicketChange
from stampcard_api.services.loyalty import handle_ticket_update


class RecordingProjector:
    def __init__(self, *, fail: bool = False) -> None:
        self.calls: list[tuple[str, list[str]]] = []
        self.fail = fail

    async def refresh(self, user_id, franchise_ids) -> None:
        self.calls.append((user_id, list(franchise_ids)))
        if self.fail:
            raise RuntimeError("projection down")


async def _stamps(factory, **filters) -> list[LoyaltyStamp]:
    async with factory() as session:
        stmt = select(LoyaltyStamp).filter_by(**filters).order_by(LoyaltyStamp.earned_at)
        return list((await session.execute(stmt)).scalars().all())


async def _rewards(factory) -> list[LoyaltyReward]:
    async with factory() as session:
        return list((await session.execute(select(LoyaltyReward))).scalars().all())


@pytest.mark.asyncio
async def test_completion_awards_one_active_stamp(session_factory, seed_program, completion_event) -> None:
    await seed_program(session_factory, stamp_expiration={"enabled": True, "days": 90})
    projector = RecordingProjector()

    outcome = await handle_ticket_update(
        completion_event("ticket-1"), session_factory=session_factory, projector=projector
    )

    assert outcome.status == "awarded"
    assert outcome.reward is None
    stamps = await _stamps(session_factory)
    assert len(stamps) == 1
    stamp = stamps[0]
    assert stamp.stamp_id == outcome.stamp_id
    assert stamp.status == StampStatus.ACTIVE
    assert stamp.source_queue_id == "ticket-1"
    assert (stamp.user_id, stamp.franchise_id, stamp.branch_id) == ("user-1", "fr-1", "br-1")
    assert (stamp.service_id, stamp.barber_id) == ("svc-cut", "barber-1")
    assert stamp.created_method == "automatic"
    assert stamp.expires_at is not None
    assert (stamp.expires_at - stamp.earned_at).days == 90
    assert projector.calls == [("user-1", ["fr-1"])]


@pytest.mark.asyncio
async def test_redelivered_completion_is_idempotent(session_factory, seed_program, completion_event) -> None:
    await seed_program(session_factory)
    event = completion_event("ticket-dup")

    first = await handle_ticket_update(event, session_factory=session_factory, projector=RecordingProjector())
    second = await handle_ticket_update(event, session_factory=session_factory, projector=RecordingProjector())

    assert first.status == "awarded"
    assert second.status == "duplicate"
    assert second.stamp_id == first.stamp_id
    assert len(await _stamps(session_factory)) == 1
    assert get_loyalty_store().snapshot().stamps["duplicate"] == 1


@pytest.mark.asyncio
async def test_completed_to_completed_update_does_not_award(session_factory, seed_program, completion_event) -> None:
    await seed_program(session_factory)

    outcome = await handle_ticket_update(
        completion_event("ticket-again", before_status="completed"),
        session_factory=session_factory,
    )

    assert outcome.status == "skipped"
    assert outcome.reason == "already_completed"
    assert await _stamps(session_factory) == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("event", "reason"),
    [
        (QueueTicketChange(ticketId="t-1", before=None, after={"status": "completed"}), "missing_snapshot"),
        (QueueTicketChange(ticketId="t-2", before={"status": "waiting"}, after=None), "missing_snapshot"),
        (
            QueueTicketChange(ticketId="t-3", before={"status": "waiting"}, after={"status": "in_service"}),
            "not_completed",
        ),
        (
            QueueTicketChange(
                ticketId="t-4",
                before={"status": "in_service"},
                after={"status": "completed", "franchiseId": "fr-1", "branchId": "br-1"},
            ),
            "missing_attribution",
        ),
    ],
)
async def test_non_completion_changes_are_skipped(session_factory, seed_program, event, reason) -> None:
    await seed_program(session_factory)

    outcome = await handle_ticket_update(event, session_factory=session_factory)

    assert outcome.status == "skipped"
    assert outcome.reason == reason
    assert await _stamps(session_factory) == []


@pytest.mark.asyncio
async def test_ticket_without_service_or_barber_is_skipped(session_factory, seed_program, completion_event) -> None:
    await seed_program(session_factory)

    no_service = await handle_ticket_update(
        completion_event("ticket-ns", service_id=None), session_factory=session_factory
    )
    no_barber = await handle_ticket_update(
        completion_event("ticket-nb", barber_id=None), session_factory=session_factory
    )

    assert (no_service.status, no_service.reason) == ("skipped", "missing_attribution")
    assert (no_barber.status, no_barber.reason) == ("skipped", "missing_attribution")
    assert await _stamps(session_factory) == []


@pytest.mark.asyncio
async def test_configuration_gates_award(session_factory, seed_program, completion_event) -> None:
    await seed_program(session_factory, franchise_id="fr-off", enabled=False)
    await seed_program(
        session_factory,
        franchise_id="fr-specific",
        eligible_services={"mode": "specific", "serviceIds": ["svc-beard"]},
    )

    missing = await handle_ticket_update(
        completion_event("ticket-a", franchise_id="fr-unknown"), session_factory=session_factory
    )
    disabled = await handle_ticket_update(
        completion_event("ticket-b", franchise_id="fr-off"), session_factory=session_factory
    )
    ineligible = await handle_ticket_update(
        completion_event("ticket-c", franchise_id="fr-specific", service_id="svc-cut"),
        session_factory=session_factory,
    )
    eligible = await handle_ticket_update(
        completion_event("ticket-d", franchise_id="fr-specific", service_id="svc-beard"),
        session_factory=session_factory,
        projector=RecordingProjector(),
    )

    assert (missing.status, missing.reason) == ("skipped", "config_missing")
    assert (disabled.status, disabled.reason) == ("skipped", "program_disabled")
    assert (ineligible.status, ineligible.reason) == ("skipped", "service_not_eligible")
    assert eligible.status == "awarded"
    assert [stamp.source_queue_id for stamp in await _stamps(session_factory)] == ["ticket-d"]


@pytest.mark.asyncio
async def test_tenth_stamp_generates_reward_and_consumes_stamps(
    session_factory, seed_program, completion_event
) -> None:
    await seed_program(
        session_factory,
        stamps_required=10,
        reward_expiration={"enabled": True, "days": 30},
        services={"svc-cut": "18.50"},
    )
    projector = RecordingProjector()

    outcomes = [
        await handle_ticket_update(
            completion_event(f"ticket-{index}"), session_factory=session_factory, projector=projector
        )
        for index in range(10)
    ]

    assert all(outcome.status == "awarded" for outcome in outcomes)
    assert all(outcome.reward is None for outcome in outcomes[:9])
    issued = outcomes[-1].reward
    assert issued is not None

    rewards = await _rewards(session_factory)
    assert len(rewards) == 1
    reward = rewards[0]
    assert reward.reward_id == issued.reward_id
    assert reward.status == RewardStatus.GENERATED
    assert reward.code.startswith("RWD-") and len(reward.code) == 16
    assert reward.service_id == "svc-cut"
    assert Decimal(reward.value) == Decimal("18.50")
    assert reward.expires_at is not None
    assert len(reward.generated_from_stamps) == 10

    stamps = await _stamps(session_factory)
    assert {stamp.status for stamp in stamps} == {StampStatus.USED_IN_REWARD}
    assert {stamp.reward_id for stamp in stamps} == {reward.reward_id}
    assert sorted(reward.generated_from_stamps) == sorted(stamp.stamp_id for stamp in stamps)


@pytest.mark.asyncio
async def test_threshold_ignores_expired_and_consumed_stamps(
    session_factory, seed_program, completion_event
) -> None:
    await seed_program(session_factory, stamps_required=3)
    past = dt.datetime.now(dt.timezone.utc) - dt.timedelta(days=1)
    async with session_factory() as session:
        session.add_all(
            [
                LoyaltyStamp(
                    stamp_id="stale",
                    user_id="user-1",
                    franchise_id="fr-1",
                    branch_id="br-1",
                    status=StampStatus.ACTIVE,
                    earned_at=past - dt.timedelta(days=10),
                    expires_at=past,
                    source_queue_id="old-1",
                ),
                LoyaltyStamp(
                    stamp_id="spent",
                    user_id="user-1",
                    franchise_id="fr-1",
                    branch_id="br-1",
                    status=StampStatus.USED_IN_REWARD,
                    earned_at=past,
                    source_queue_id="old-2",
                ),
            ]
        )
        await session.commit()

    first = await handle_ticket_update(
        completion_event("fresh-1"), session_factory=session_factory, projector=RecordingProjector()
    )
    second = await handle_ticket_update(
        completion_event("fresh-2"), session_factory=session_factory, projector=RecordingProjector()
    )

    assert first.reward is None
    assert second.reward is None
    assert await _rewards(session_factory) == []


@pytest.mark.asyncio
async def test_specific_mode_reward_uses_first_configured_service(
    session_factory, seed_program, completion_event
) -> None:
    await seed_program(
        session_factory,
        stamps_required=1,
        eligible_services={"mode": "specific", "serviceIds": ["svc-deluxe", "svc-cut"]},
        services={"svc-deluxe": "30.00", "svc-cut": "15.00"},
    )

    outcome = await handle_ticket_update(
        completion_event("ticket-specific", service_id="svc-cut"),
        session_factory=session_factory,
        projector=RecordingProjector(),
    )

    assert outcome.reward is not None
    assert outcome.reward.service_id == "svc-deluxe"
    assert outcome.reward.value == Decimal("30.00")


@pytest.mark.asyncio
async def test_unknown_service_price_defaults_to_zero(session_factory, seed_program, completion_event) -> None:
    await seed_program(session_factory, stamps_required=1)

    outcome = await handle_ticket_update(
        completion_event("ticket-free"), session_factory=session_factory, projector=RecordingProjector()
    )

    assert outcome.reward is not None
    assert outcome.reward.value == Decimal("0")


@pytest.mark.asyncio
async def test_reward_notification_follows_configuration(session_factory, seed_program, completion_event) -> None:
    await seed_program(session_factory, franchise_id="fr-notify", stamps_required=1, notifications={"onRewardGenerated": True})
    await seed_program(session_factory, franchise_id="fr-quiet", stamps_required=1)

    notified = await handle_ticket_update(
        completion_event("ticket-n1", franchise_id="fr-notify"),
        session_factory=session_factory,
        projector=RecordingProjector(),
    )
    await handle_ticket_update(
        completion_event("ticket-n2", franchise_id="fr-quiet"),
        session_factory=session_factory,
        projector=RecordingProjector(),
    )

    async with session_factory() as session:
        notifications = (await session.execute(select(Notification))).scalars().all()
    assert len(notifications) == 1
    assert notifications[0].user_id == "user-1"
    assert notifications[0].data["rewardId"] == notified.reward.reward_id
    assert notifications[0].data["rewardCode"] == notified.reward.code


@pytest.mark.asyncio
async def test_summary_failure_does_not_undo_award(session_factory, seed_program, completion_event) -> None:
    await seed_program(session_factory)
    projector = RecordingProjector(fail=True)

    outcome = await handle_ticket_update(
        completion_event("ticket-proj"), session_factory=session_factory, projector=projector
    )

    assert outcome.status == "awarded"
    assert projector.calls == [("user-1", ["fr-1"])]
    assert len(await _stamps(session_factory)) == 1


@pytest.mark.asyncio
async def test_default_projector_maintains_summary(session_factory, seed_program, completion_event) -> None:
    await seed_program(session_factory, stamps_required=4)

    for index in range(3):
        await handle_ticket_update(completion_event(f"ticket-s{index}"), session_factory=session_factory)

    async with session_factory() as session:
        summary = (await session.execute(select(LoyaltyCustomerSummary))).scalar_one()
        active = (
            await session.execute(
                select(func.count()).select_from(LoyaltyStamp).where(LoyaltyStamp.status == StampStatus.ACTIVE)
            )
        ).scalar_one()
    assert summary.active_stamps == active == 3
    assert summary.stamps_required == 4
    assert Decimal(summary.progress_percentage) == Decimal("75.00")


@pytest.mark.asyncio
async def test_concurrent_deliveries_award_exactly_once(
    file_session_factory, seed_program, completion_event
) -> None:
    await seed_program(file_session_factory)
    event = completion_event("ticket-race")

    outcomes = await asyncio.gather(
        *[
            handle_ticket_update(event, session_factory=file_session_factory, projector=RecordingProjector())
            for _ in range(3)
        ]
    )

    statuses = sorted(outcome.status for outcome in outcomes)
    assert statuses == ["awarded", "duplicate", "duplicate"]
    assert len(await _stamps(file_session_factory, source_queue_id="ticket-race")) == 1


@pytest.mark.asyncio
async def test_concurrent_tickets_crossing_threshold_generate_one_reward(
    file_session_factory, seed_program, completion_event
) -> None:
    await seed_program(file_session_factory, stamps_required=5)
    for index in range(3):
        await handle_ticket_update(
            completion_event(f"ticket-pre{index}"),
            session_factory=file_session_factory,
            projector=RecordingProjector(),
        )

    outcomes = await asyncio.gather(
        *[
            handle_ticket_update(
                completion_event(ticket_id), session_factory=file_session_factory, projector=RecordingProjector()
            )
            for ticket_id in ("ticket-race-a", "ticket-race-b")
        ]
    )

    assert [outcome.status for outcome in outcomes] == ["awarded", "awarded"]
    assert sum(outcome.reward is not None for outcome in outcomes) == 1
    rewards = await _rewards(file_session_factory)
    assert len(rewards) == 1
    assert len(rewards[0].generated_from_stamps) == 5
    assert await _stamps(file_session_factory, status=StampStatus.ACTIVE) == []


@pytest.mark.asyncio
async def test_award_runs_at_serializable_isolation(
    session_factory, seed_program, completion_event, monkeypatch
) -> None:
    from stampcard_api.services.loyalty import stamps as stamps_module

    await seed_program(session_factory)
    recorded: list[str | None] = []
    real_run_atomic = stamps_module.run_atomic

    async def _recording_run_atomic(factory, fn, **kwargs):
        recorded.append(kwargs.get("isolation_level"))
        return await real_run_atomic(factory, fn, **kwargs)

    monkeypatch.setattr(stamps_module, "run_atomic", _recording_run_atomic)

    outcome = await handle_ticket_update(
        completion_event("ticket-iso"), session_factory=session_factory, projector=RecordingProjector()
    )

    assert outcome.status == "awarded"
    assert recorded == ["SERIALIZABLE"]
