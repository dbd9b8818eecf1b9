"""Pytest fixtures for authguard tests."""

import os

# Settings are read at import time; point them at test values first
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import authguard.models  # noqa: F401
from authguard.api.deps import get_sign_in_service
from authguard.core.security import PasswordHasher
from authguard.db.base import Base
from authguard.main import app
from authguard.models.user import User
from authguard.services.login_attempts import InMemoryAttemptStore, LoginAttemptTracker
from authguard.services.rate_limit import InMemoryRateLimiter
from authguard.services.sign_in import SignInService
from authguard.services.users import SqlAlchemyUserLookup

TEST_PASSWORD = "correct-horse-battery"
TEST_EMAIL = "alice@example.com"


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture(scope="session")
def hasher() -> PasswordHasher:
    """Minimum bcrypt cost keeps the suite fast."""
    return PasswordHasher(rounds=4)


@pytest.fixture
def attempt_store() -> InMemoryAttemptStore:
    return InMemoryAttemptStore()


@pytest.fixture
def tracker(attempt_store, clock) -> LoginAttemptTracker:
    return LoginAttemptTracker(
        store=attempt_store,
        threshold=5,
        lockout_duration=timedelta(minutes=15),
        clock=clock,
    )


@pytest.fixture
def limiter(clock) -> InMemoryRateLimiter:
    return InMemoryRateLimiter(max_requests=5, window=timedelta(seconds=60), clock=clock)


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """File-backed SQLite so every connection sees the same tables."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'authguard.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def test_user(session_factory, hasher) -> User:
    """Create a test user."""
    user = User(name="Alice", email=TEST_EMAIL, password_hash=hasher.hash(TEST_PASSWORD))
    async with session_factory() as session:
        session.add(user)
        await session.commit()
        await session.refresh(user)
    return user


@pytest.fixture
def sign_in_service(session_factory, hasher, tracker, limiter, clock) -> SignInService:
    return SignInService(
        user_lookup=SqlAlchemyUserLookup(session_factory),
        hasher=hasher,
        attempts=tracker,
        rate_limiter=limiter,
        clock=clock,
    )


@pytest_asyncio.fixture(scope="function")
async def client(sign_in_service) -> AsyncGenerator[AsyncClient, None]:
    """Test client wired to the fixture service instead of the startup one."""
    app.dependency_overrides[get_sign_in_service] = lambda: sign_in_service

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
