"""Pytest configuration and fixtures."""

import os
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta

# Set test environment before importing app
os.environ["ENVIRONMENT"] = "test"
os.environ["STORE_BACKEND"] = "memory"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from clarity.database import create_engine, create_session_factory, init_db
from clarity.main import app
from clarity.services.auth import SessionService, set_session_service
from clarity.services.challenges import DatabaseChallengeStore, InMemoryChallengeStore
from clarity.services.notifier import Notifier
from clarity.services.rate_limit import get_rate_limiter
from clarity.services.tokens import (
    DatabaseRefreshTokenStore,
    InMemoryRefreshTokenStore,
    TokenIssuer,
)
from clarity.services.users import DatabaseUserDirectory, InMemoryUserDirectory

TEST_SECRET = "test-secret-that-is-at-least-32-characters"


class FakeClock:
    """Controllable clock for expiry tests.

    Usage:
        clock.advance(seconds=601)
    """

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class RecordingNotifier(Notifier):
    """Notifier that remembers every code instead of sending it."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    async def notify(self, email: str, code: str) -> None:
        self.sent.append((email, code))

    def last_code(self, email: str) -> str:
        return next(code for to, code in reversed(self.sent) if to == email)


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    """Start each test with an empty per-client rate limiter."""
    get_rate_limiter().reset()
    yield
    get_rate_limiter().reset()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Session factory over a throwaway SQLite database with all tables created."""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'clarity.db'}", poolclass=NullPool)
    await init_db(engine)
    yield create_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def token_issuer(clock: FakeClock) -> TokenIssuer:
    return TokenIssuer(InMemoryRefreshTokenStore(), secret=TEST_SECRET, clock=clock)


@pytest.fixture
def service(clock: FakeClock, notifier: RecordingNotifier, token_issuer: TokenIssuer) -> SessionService:
    """Session service wired to in-memory stores and the fake clock."""
    return SessionService(
        InMemoryChallengeStore(clock=clock, secret=TEST_SECRET),
        InMemoryUserDirectory(),
        token_issuer,
        notifier,
    )


@pytest.fixture
def db_service(
    clock: FakeClock,
    notifier: RecordingNotifier,
    session_factory: async_sessionmaker[AsyncSession],
) -> SessionService:
    """Session service wired to the SQLite-backed stores."""
    return SessionService(
        DatabaseChallengeStore(session_factory, clock=clock, secret=TEST_SECRET),
        DatabaseUserDirectory(session_factory),
        TokenIssuer(DatabaseRefreshTokenStore(session_factory), secret=TEST_SECRET, clock=clock),
        notifier,
    )


@pytest.fixture
async def client(service: SessionService) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client bound to the in-memory session service."""
    set_session_service(service)

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    set_session_service(None)
