import pytest
from httpx import ASGITransport, AsyncClient

from stampcard_api.core.settings import settings


@pytest.mark.asyncio
async def test_readyz_reports_component_statuses(app_with_db) -> None:
    app, _ = app_with_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/api/v1/readyz")

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ready"
    components = payload["components"]
    assert components["database"]["status"] == "ready"
    assert components["loyalty_scheduler"]["status"] == "disabled"


@pytest.mark.asyncio
async def test_readyz_flags_scheduler_that_never_started(app_with_db, monkeypatch) -> None:
    app, _ = app_with_db
    monkeypatch.setattr(settings, "loyalty_job_scheduler_enabled", True)

    class IdleScheduler:
        is_running = False

    app.state.loyalty_job_scheduler = IdleScheduler()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/api/v1/readyz")

    payload = response.json()
    assert payload["status"] == "degraded"
    assert payload["components"]["loyalty_scheduler"]["status"] == "starting"


@pytest.mark.asyncio
async def test_liveness_routes(app_with_db) -> None:
    app, _ = app_with_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        root = await client.get("/healthz")
        versioned = await client.get("/api/v1/healthz")

    assert root.status_code == 200
    assert root.json()["status"] == "ok"
    assert root.json()["version"] == "0.1.0"
    assert versioned.json() == {"status": "ok"}
