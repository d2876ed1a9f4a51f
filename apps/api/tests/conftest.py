import os
import sys
from decimal import Decimal
from pathlib import Path

os.environ.setdefault("TRACING_ENABLED", "false")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

from stampcard_api.app import create_app  # noqa: E402
from stampcard_api.db.base import Base  # noqa: E402
from stampcard_api.db.session import get_session, get_session_factory  # noqa: E402
from stampcard_api.models.loyalty import LoyaltyConfig  # noqa: E402
from stampcard_api.models.salon import SalonService  # noqa: E402
from stampcard_api.observability.loyalty import get_loyalty_store  # noqa: E402
from stampcard_api.observability.scheduler import get_scheduler_store  # noqa: E402
from stampcard_api.schemas.loyalty import QueueTicketChange  # noqa: E402


@pytest.fixture(autouse=True)
def reset_observability():
    get_loyalty_store().reset()
    get_scheduler_store().reset()
    yield


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def file_session_factory(tmp_path: Path):
    """File-backed database so concurrent sessions get separate connections."""

    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'stampcard.db'}",
        future=True,
        connect_args={"timeout": 15},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def app_with_db(session_factory):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def seed_program():
    async def _seed(
        factory,
        *,
        franchise_id: str = "fr-1",
        enabled: bool = True,
        stamps_required: int = 10,
        eligible_services: dict | None = None,
        stamp_expiration: dict | None = None,
        reward_expiration: dict | None = None,
        notifications: dict | None = None,
        services: dict[str, str] | None = None,
    ) -> None:
        async with factory() as session:
            session.add(
                LoyaltyConfig(
                    franchise_id=franchise_id,
                    enabled=enabled,
                    stamps_required=stamps_required,
                    eligible_services=eligible_services or {"mode": "all", "serviceIds": []},
                    stamp_expiration=stamp_expiration or {"enabled": False, "days": 0},
                    reward_expiration=reward_expiration or {"enabled": False, "days": 0},
                    notifications=notifications,
                )
            )
            for service_id, price in (services or {}).items():
                session.add(
                    SalonService(
                        service_id=service_id,
                        franchise_id=franchise_id,
                        name=f"Service {service_id}",
                        price=Decimal(price),
                    )
                )
            await session.commit()

    return _seed


@pytest.fixture
def completion_event():
    def _build(
        ticket_id: str,
        *,
        user_id: str = "user-1",
        franchise_id: str = "fr-1",
        branch_id: str = "br-1",
        service_id: str | None = "svc-cut",
        barber_id: str | None = "barber-1",
        before_status: str = "in_service",
        after_status: str = "completed",
    ) -> QueueTicketChange:
        snapshot = {
            "userId": user_id,
            "franchiseId": franchise_id,
            "branchId": branch_id,
            "serviceId": service_id,
            "barberId": barber_id,
        }
        return QueueTicketChange(
            ticketId=ticket_id,
            before={**snapshot, "status": before_status},
            after={**snapshot, "status": after_status},
        )

    return _build
