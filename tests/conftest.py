"""
Pytest configuration and fixtures for CTG Trading Platform tests
"""

from datetime import datetime, timedelta, UTC
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from helpers import FakePushService, FakeStripeService
from src.api.auth import hash_password
from src.database.engine import get_session
from src.database.models import Base, Challenge, MentorshipPlan, SignalPlan, User
from src.services import plan_service
from src.services.push_service import get_push_service
from src.services.stripe_service import get_stripe_service


# Test database URL (in-memory SQLite for testing)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

DEFAULT_PASSWORD = "password123"

# bcrypt is slow on purpose; hash once per run
_PASSWORD_HASH: Optional[str] = None


def default_password_hash() -> str:
    global _PASSWORD_HASH
    if _PASSWORD_HASH is None:
        _PASSWORD_HASH = hash_password(DEFAULT_PASSWORD)
    return _PASSWORD_HASH


@pytest.fixture(scope="function")
async def test_db_engine():
    """
    Create test database engine
    """
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
def session_maker(test_db_engine) -> async_sessionmaker[AsyncSession]:
    """Same session settings as the application"""
    return async_sessionmaker(
        test_db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """
    Create test database session
    """
    async with session_maker() as session:
        yield session
        await session.rollback()


# ===========================
# FACTORIES
# ===========================


@pytest.fixture
def make_user(db_session):
    """
    Factory for users

    Usage:
        user = await make_user("alice")
        admin = await make_user("root", role="admin")
    """

    async def _make(username: str = "trader", role: str = "user", **fields) -> User:
        user = User(
            username=username,
            email=fields.pop("email", f"{username}@example.com"),
            password_hash=default_password_hash(),
            first_name=fields.pop("first_name", username.capitalize()),
            last_name=fields.pop("last_name", "Tester"),
            role=role,
            **fields,
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _make


@pytest.fixture
async def admin_user(make_user) -> User:
    return await make_user("admin", role="admin")


@pytest.fixture
def make_challenge(db_session):
    """
    Factory for challenges; bypasses creation rules so any status can be seeded
    """

    async def _make(
        name: str = "Monthly Swing Cup",
        status: str = "active",
        account_size: float = 100000.0,
        max_participants: int = 100,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        **fields,
    ) -> Challenge:
        now = datetime.now(UTC)
        challenge = Challenge(
            name=name,
            type=fields.pop("type", "swing"),
            account_size=account_size,
            price=fields.pop("price", 0.0),
            is_free=fields.pop("is_free", True),
            max_participants=max_participants,
            current_participants=fields.pop("current_participants", 0),
            start_date=start_date or now - timedelta(days=1),
            end_date=end_date or now + timedelta(days=30),
            status=status,
            description=fields.pop("description", "Trade the majors for a month"),
            prizes=fields.pop("prizes", []),
            rules=fields.pop("rules", []),
            participants=[],
            **fields,
        )
        db_session.add(challenge)
        await db_session.commit()
        return challenge

    return _make


@pytest.fixture
def make_signal_plan(db_session):
    async def _make(name: str = "Gold Signals", price: float = 49.0, **fields) -> SignalPlan:
        data = {"name": name, "price": price, "duration": "monthly", **fields}
        return await plan_service.create_plan(db_session, SignalPlan, data, created_by=None)

    return _make


@pytest.fixture
def make_mentorship_plan(db_session):
    async def _make(name: str = "1:1 Mentorship", price: float = 199.0, **fields) -> MentorshipPlan:
        data = {
            "name": name,
            "description": "Weekly sessions with a funded trader",
            "price": price,
            "duration": "monthly",
            "mentor_name": "Jane Doe",
            **fields,
        }
        return await plan_service.create_plan(db_session, MentorshipPlan, data, created_by=None)

    return _make


@pytest.fixture
def fake_stripe() -> FakeStripeService:
    return FakeStripeService()


@pytest.fixture
def fake_push() -> FakePushService:
    return FakePushService()


# ===========================
# HTTP CLIENT
# ===========================


@pytest.fixture
async def api_client(session_maker, fake_stripe, fake_push) -> AsyncGenerator[AsyncClient, None]:
    """
    HTTP client bound to the app, backed by the test database

    Lifespan is not run, so the scheduler stays stopped.
    """
    from api_server import app

    async def override_get_session():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_stripe_service] = lambda: fake_stripe
    app.dependency_overrides[get_push_service] = lambda: fake_push
    app.state.limiter.enabled = False

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
