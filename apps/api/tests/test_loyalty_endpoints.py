import datetime as dt
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient

from stampcard_api.core.settings import settings
from stampcard_api.models.loyalty import LoyaltyReward, RewardStatus
from stampcard_api.models.salon import Barber, QueueTicket


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


def _trigger_body(ticket_id: str, *, before: str = "in_service", after: str = "completed") -> dict:
    snapshot = {
        "userId": "user-1",
        "franchiseId": "fr-1",
        "branchId": "br-1",
        "serviceId": "svc-cut",
        "barberId": "barber-1",
    }
    return {
        "ticketId": ticket_id,
        "before": {**snapshot, "status": before},
        "after": {**snapshot, "status": after},
    }


async def _seed_reward(factory, *, status=RewardStatus.GENERATED, expires_at=None) -> None:
    async with factory() as session:
        session.add(
            LoyaltyReward(
                reward_id="reward-1",
                code="RWD-HTTP00000001",
                user_id="user-1",
                franchise_id="fr-1",
                service_id="svc-cut",
                value=Decimal("18.50"),
                status=status,
                generated_from_stamps=[],
                generated_at=dt.datetime.now(dt.timezone.utc),
                expires_at=expires_at,
            )
        )
        await session.commit()


@pytest.mark.asyncio
async def test_trigger_route_awards_stamp(app_with_db, seed_program) -> None:
    app, session_factory = app_with_db
    await seed_program(session_factory, stamps_required=2)

    async with _client(app) as client:
        first = await client.post("/api/v1/loyalty/triggers/queue-updated", json=_trigger_body("ticket-1"))
        second = await client.post("/api/v1/loyalty/triggers/queue-updated", json=_trigger_body("ticket-2"))
        replay = await client.post("/api/v1/loyalty/triggers/queue-updated", json=_trigger_body("ticket-2"))
        skipped = await client.post(
            "/api/v1/loyalty/triggers/queue-updated",
            json=_trigger_body("ticket-3", before="waiting", after="in_service"),
        )

    assert first.status_code == 200
    assert first.json()["status"] == "awarded"
    assert first.json()["stampId"]
    assert first.json()["reward"] is None

    reward = second.json()["reward"]
    assert reward["code"].startswith("RWD-")
    assert len(reward["stampIds"]) == 2

    assert replay.json()["status"] == "duplicate"
    assert skipped.json() == {
        "status": "skipped",
        "ticketId": "ticket-3",
        "reason": "not_completed",
        "stampId": None,
        "reward": None,
    }


@pytest.mark.asyncio
async def test_trigger_route_requires_internal_key(app_with_db, monkeypatch) -> None:
    app, _ = app_with_db
    monkeypatch.setattr(settings, "internal_api_key", "trigger-secret")

    async with _client(app) as client:
        denied = await client.post("/api/v1/loyalty/triggers/queue-updated", json=_trigger_body("ticket-1"))
        allowed = await client.post(
            "/api/v1/loyalty/triggers/queue-updated",
            json=_trigger_body("ticket-1"),
            headers={"X-API-Key": "trigger-secret"},
        )

    assert denied.status_code == 401
    assert allowed.status_code == 200
    assert allowed.json()["reason"] == "config_missing"


@pytest.mark.asyncio
async def test_redeem_route_returns_reward(app_with_db) -> None:
    app, session_factory = app_with_db
    await _seed_reward(session_factory)

    async with _client(app) as client:
        response = await client.post(
            "/api/v1/loyalty/rewards/redeem",
            json={"rewardCode": "rwd-http00000001"},
            headers={"X-Session-User": "user-1"},
        )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["reward"]["rewardId"] == "reward-1"
    assert body["reward"]["code"] == "RWD-HTTP00000001"
    assert body["reward"]["value"] == 18.5
    assert isinstance(body["reward"]["value"], float)
    assert body["reward"]["expiresAt"] is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("headers", "body", "status_code", "code"),
    [
        ({}, {"rewardCode": "RWD-HTTP00000001"}, 401, "unauthenticated"),
        ({"X-Session-User": "user-1"}, {"rewardCode": "   "}, 400, "invalid-argument"),
        ({"X-Session-User": "user-1"}, {"rewardCode": 1234}, 400, "invalid-argument"),
        ({"X-Session-User": "user-1"}, None, 400, "invalid-argument"),
        ({"X-Session-User": "user-1"}, {"rewardCode": "RWD-UNKNOWN00000"}, 404, "not-found"),
    ],
)
async def test_redeem_route_maps_errors(app_with_db, headers, body, status_code, code) -> None:
    app, session_factory = app_with_db
    await _seed_reward(session_factory)

    async with _client(app) as client:
        response = await client.post("/api/v1/loyalty/rewards/redeem", json=body, headers=headers)

    assert response.status_code == status_code
    assert response.json()["detail"]["code"] == code


@pytest.mark.asyncio
async def test_redeem_route_reports_expired_reward(app_with_db) -> None:
    app, session_factory = app_with_db
    await _seed_reward(session_factory, expires_at=dt.datetime.now(dt.timezone.utc) - dt.timedelta(days=1))

    async with _client(app) as client:
        response = await client.post(
            "/api/v1/loyalty/rewards/redeem",
            json={"rewardCode": "RWD-HTTP00000001"},
            headers={"X-Session-User": "user-1"},
        )

    assert response.status_code == 409
    assert response.json()["detail"] == {
        "code": "failed-precondition",
        "message": "This reward has expired",
        "reason": "expired",
    }


@pytest.mark.asyncio
async def test_apply_route_and_member_summary(app_with_db, seed_program) -> None:
    app, session_factory = app_with_db
    await seed_program(session_factory, stamps_required=5)
    await _seed_reward(session_factory, status=RewardStatus.IN_USE)
    async with session_factory() as session:
        session.add(Barber(barber_id="barber-1", franchise_id="fr-1", branch_id="br-1"))
        session.add(
            QueueTicket(
                queue_id="queue-1",
                franchise_id="fr-1",
                branch_id="br-1",
                user_id="user-1",
                status="in_service",
            )
        )
        await session.commit()

    async with _client(app) as client:
        forbidden = await client.post(
            "/api/v1/loyalty/rewards/apply",
            json={"rewardId": "reward-1", "queueId": "queue-1", "branchId": "br-1"},
            headers={"X-Session-User": "user-1", "X-Session-Role": "client"},
        )
        applied = await client.post(
            "/api/v1/loyalty/rewards/apply",
            json={"rewardId": "reward-1", "queueId": "queue-1", "branchId": "br-1"},
            headers={"X-Session-User": "barber-1", "X-Session-Role": "Barber"},
        )
        summary = await client.get(
            "/api/v1/loyalty/members/user-1/summary", headers={"X-Session-User": "user-1"}
        )

    assert forbidden.status_code == 403
    assert forbidden.json()["detail"]["reason"] == "role"

    assert applied.status_code == 200
    assert applied.json()["success"] is True
    assert applied.json()["rewardId"] == "reward-1"
    assert applied.json()["queueId"] == "queue-1"
    assert applied.json()["discountAmount"] == 18.5
    assert applied.json()["finalPrice"] == 0

    assert summary.status_code == 200
    rows = summary.json()
    assert len(rows) == 1
    assert rows[0]["franchiseId"] == "fr-1"
    assert rows[0]["totalRewardsRedeemed"] == 1
    assert rows[0]["stampsRequired"] == 5


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("headers", "status_code", "code"),
    [
        ({}, 401, "unauthenticated"),
        ({"X-Session-User": "user-2", "X-Session-Role": "client"}, 403, "permission-denied"),
        ({"X-Session-User": "user-1"}, 200, None),
        ({"X-Session-User": "barber-1", "X-Session-Role": "Barber"}, 200, None),
        ({"X-Session-User": "admin-1", "X-Session-Role": "admin"}, 200, None),
    ],
)
async def test_member_summary_requires_owner_or_staff(app_with_db, headers, status_code, code) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        response = await client.get("/api/v1/loyalty/members/user-1/summary", headers=headers)

    assert response.status_code == status_code
    if code is None:
        assert response.json() == []
    else:
        assert response.json()["detail"]["code"] == code


@pytest.mark.asyncio
async def test_observability_route_reports_counters(app_with_db, seed_program) -> None:
    app, session_factory = app_with_db
    await seed_program(session_factory, stamps_required=10)

    async with _client(app) as client:
        await client.post("/api/v1/loyalty/triggers/queue-updated", json=_trigger_body("ticket-1"))
        await client.post("/api/v1/loyalty/triggers/queue-updated", json=_trigger_body("ticket-1"))
        response = await client.get("/api/v1/loyalty/observability")

    assert response.status_code == 200
    payload = response.json()
    assert payload["loyalty"]["stamps"]["awarded"] == 1
    assert payload["loyalty"]["stamps"]["duplicate"] == 1
    assert "jobs" in payload["scheduler"]
