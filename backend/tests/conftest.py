"""
Haven - Test Fixtures
=====================

Shared pytest fixtures for all tests.

Every test gets its own SQLite file so sessions opened by the pipeline and
the sweep see each other's commits, exactly like a real database.
"""

import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("SERVICE_API_KEY", "test-service-key")
os.environ.setdefault("NOTIFY_ENABLED", "false")
os.environ.setdefault("CRISIS_SWEEP_ENABLED", "false")

from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from haven.api.deps import create_access_token
from haven.api.main import app
from haven.core.database import Base, configure_sqlite_engine, get_db, get_session_factory
from haven.core.models import (
    CheckIn,
    Conflict,
    Couple,
    CoupleMessage,
    CoupleStatus,
    NervousSystemZone,
)


# Fixed reference time for signal windows (noon keeps day offsets on
# distinct calendar days)
AS_OF = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


# ==========================================================================
# Database Fixtures
# ==========================================================================

@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Fresh SQLite database file with all tables."""
    test_engine = configure_sqlite_engine(
        create_async_engine(
            f"sqlite+aiosqlite:///{tmp_path / 'haven_test.db'}",
            connect_args={"check_same_thread": False},
            poolclass=NullPool,
        )
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Session for tests that drive components directly."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncClient, None]:
    """
    Provide test HTTP client bound to the test database.
    """
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ==========================================================================
# Couple Fixtures
# ==========================================================================

async def make_couple(
    session_factory: async_sessionmaker[AsyncSession],
    status: CoupleStatus = CoupleStatus.ACTIVE,
    with_partner: bool = True,
) -> Couple:
    """Create and commit a couple."""
    couple = Couple(
        id=uuid4(),
        partner_1_id=uuid4(),
        partner_2_id=uuid4() if with_partner else None,
        status=status,
    )
    async with session_factory() as session:
        session.add(couple)
        await session.commit()
    return couple


@pytest_asyncio.fixture
async def couple(session_factory: async_sessionmaker[AsyncSession]) -> Couple:
    return await make_couple(session_factory)


# ==========================================================================
# Signal Seeding
# ==========================================================================

async def seed_signals(
    session_factory: async_sessionmaker[AsyncSession],
    couple: Couple,
    as_of: datetime = AS_OF,
    red_zone_days: int = 0,
    mutual: bool = False,
    high_risk_messages: int = 0,
    gottman_violations: int = 0,
    silent_hours: Optional[float] = None,
    conflicts: int = 0,
) -> None:
    """
    Write upstream records that produce the given signals at `as_of`.

    Red check-ins go to partner 1, one per day; `mutual` also puts partner 2
    in the red today. `silent_hours` gives partner 2 a single green check-in
    that long before `as_of` (and nothing newer).
    """
    p1, p2 = couple.partner_1_id, couple.partner_2_id
    records: list = []

    for day in range(red_zone_days):
        records.append(
            check_in(p1, NervousSystemZone.RED, as_of - timedelta(days=day, hours=1))
        )
    if mutual and p2 is not None:
        records.append(check_in(p2, NervousSystemZone.RED, as_of - timedelta(hours=2)))

    if silent_hours is not None and p2 is not None:
        records.append(
            check_in(p2, NervousSystemZone.GREEN, as_of - timedelta(hours=silent_hours))
        )

    for i in range(high_risk_messages):
        records.append(
            message(couple, p1, as_of - timedelta(hours=3 + i), risk="high")
        )
    if gottman_violations:
        records.append(
            message(
                couple,
                p1,
                as_of - timedelta(hours=2),
                risk="low",
                warnings=["criticism"] * gottman_violations,
            )
        )

    for i in range(conflicts):
        records.append(
            Conflict(id=uuid4(), couple_id=couple.id, started_at=as_of - timedelta(hours=5 + i))
        )

    async with session_factory() as session:
        session.add_all(records)
        await session.commit()


def check_in(user_id: UUID, zone: NervousSystemZone, created_at: datetime) -> CheckIn:
    return CheckIn(id=uuid4(), user_id=user_id, nervous_system_zone=zone, created_at=created_at)


def message(
    couple: Couple,
    sender_id: UUID,
    created_at: datetime,
    risk: str = "low",
    warnings: Optional[list[str]] = None,
) -> CoupleMessage:
    return CoupleMessage(
        id=uuid4(),
        couple_id=couple.id,
        sender_id=sender_id,
        content="...",
        tone_analysis={"riskLevel": risk, "gottmanWarnings": warnings or []},
        created_at=created_at,
    )


# ==========================================================================
# Auth Fixtures
# ==========================================================================

def auth_headers_for(user_id: UUID) -> dict[str, str]:
    token = create_access_token(user_id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers(couple: Couple) -> dict[str, str]:
    """Authorization headers for the couple's first partner."""
    return auth_headers_for(couple.partner_1_id)


@pytest.fixture
def service_headers() -> dict[str, str]:
    return {"X-Service-Key": os.environ["SERVICE_API_KEY"]}
