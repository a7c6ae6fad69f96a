"""Pytest configuration and fixtures for backend tests."""

import os

# Must be set before the application modules read settings
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("DEBUG", "true")

import re
import time
from datetime import date, timedelta
from types import SimpleNamespace
from typing import AsyncGenerator, Callable, Optional

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import StaticPool, event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from omnicalendar.core.clerk_auth import ClerkAuth, get_clerk_auth
from omnicalendar.core.database import Base, get_db
from omnicalendar.main import app as main_app
from omnicalendar.models import TaskItem, User
from omnicalendar.observability import MetricsCollector
from omnicalendar.services.holidays import CalendarificClient, get_calendarific_client


TEST_ISSUER = "https://clerk.test.omnicalendar.dev"
TEST_AUDIENCE = "omnicalendar-test"
TEST_CLERK_ID = "user_test123"

_PRIVATE_KEY = rsa.generate_private_key(public_exponent=65537, key_size=2048)


class StaticJWKSClient:
    """Stands in for PyJWKClient with a single known public key."""

    def __init__(self, public_key) -> None:
        self.public_key = public_key

    def get_signing_key_from_jwt(self, token: str):
        return SimpleNamespace(key=self.public_key)


# -------------------------------------------------------------------------
# Database Fixtures
# -------------------------------------------------------------------------


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@pytest.fixture
async def async_engine():
    """Create an async SQLite engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for testing."""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with async_session_maker() as session:
        yield session
        await session.rollback()


# -------------------------------------------------------------------------
# Auth Fixtures
# -------------------------------------------------------------------------


@pytest.fixture
def clerk_auth(metrics: MetricsCollector) -> ClerkAuth:
    """Verifier that trusts tokens signed by the test key."""
    return ClerkAuth(
        issuer=TEST_ISSUER,
        audience=TEST_AUDIENCE,
        jwks_client=StaticJWKSClient(_PRIVATE_KEY.public_key()),
        metrics=metrics,
    )


@pytest.fixture
def make_token() -> Callable[..., str]:
    """Build signed RS256 tokens; pass sub=None to omit the subject."""

    def _make_token(
        sub: Optional[str] = TEST_CLERK_ID,
        expires_in: int = 3600,
        issuer: str = TEST_ISSUER,
        audience: str = TEST_AUDIENCE,
        **claims,
    ) -> str:
        now = int(time.time())
        payload = {"iss": issuer, "aud": audience, "iat": now, "exp": now + expires_in}
        if sub is not None:
            payload["sub"] = sub
        payload.update(claims)
        return jwt.encode(payload, _PRIVATE_KEY, algorithm="RS256")

    return _make_token


# -------------------------------------------------------------------------
# App / Client Fixtures
# -------------------------------------------------------------------------


@pytest.fixture
def app(db_session: AsyncSession, clerk_auth: ClerkAuth) -> FastAPI:
    """Create a FastAPI app instance with test database and verifier."""

    async def override_get_db():
        yield db_session

    main_app.dependency_overrides[get_db] = override_get_db
    main_app.dependency_overrides[get_clerk_auth] = lambda: clerk_auth
    yield main_app
    main_app.dependency_overrides.clear()


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for testing."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
async def test_user(db_session: AsyncSession) -> User:
    """Create a test user matching TEST_CLERK_ID."""
    user = User(
        clerk_id=TEST_CLERK_ID,
        email="test@example.com",
        nickname="Test User",
        experience_points=0,
        current_rank="Junior",
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest.fixture
async def other_user(db_session: AsyncSession) -> User:
    """A second user whose data must never leak."""
    user = User(clerk_id="user_other", email="other@example.com")
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest.fixture
async def auth_client(
    app: FastAPI,
    test_user: User,
    make_token: Callable[..., str],
) -> AsyncGenerator[AsyncClient, None]:
    """Create an HTTP client authenticated as test_user."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"Authorization": f"Bearer {make_token()}"},
    ) as ac:
        yield ac


# -------------------------------------------------------------------------
# Task Fixtures
# -------------------------------------------------------------------------


@pytest.fixture
def add_task(db_session: AsyncSession):
    """Insert a task directly; returns the persisted TaskItem."""

    async def _add_task(
        user: User,
        title: str,
        due_date: Optional[date] = None,
        priority: int = 4,
        is_completed: bool = False,
    ) -> TaskItem:
        task = TaskItem(
            user_id=user.id,
            title=title,
            due_date=due_date,
            priority=priority,
            status="Pending",
            is_completed=is_completed,
        )
        db_session.add(task)
        await db_session.commit()
        return task

    return _add_task


# -------------------------------------------------------------------------
# Calendarific Fixtures
# -------------------------------------------------------------------------


def calendarific_payload(*holidays: dict) -> dict:
    """Wrap holiday entries the way Calendarific does."""
    return {"meta": {"code": 200}, "response": {"holidays": list(holidays)}}


class CalendarificStub:
    """Mock transport handler that records every upstream request."""

    def __init__(self, status_code: int = 200, payload: Optional[dict] = None) -> None:
        self.status_code = status_code
        self.payload = payload if payload is not None else calendarific_payload()
        self.requests: list[httpx.Request] = []

    @property
    def call_count(self) -> int:
        return len(self.requests)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json=self.payload)


@pytest.fixture
def calendarific_stub() -> CalendarificStub:
    return CalendarificStub()


@pytest.fixture
async def calendarific_client(
    calendarific_stub: CalendarificStub,
    metrics: MetricsCollector,
) -> AsyncGenerator[CalendarificClient, None]:
    """Calendarific client whose HTTP traffic goes to calendarific_stub."""
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(calendarific_stub))
    client = CalendarificClient(
        api_key="test-api-key",
        base_url="https://calendarific.com/api/v2",
        http_client=http_client,
        metrics=metrics,
    )
    yield client
    await http_client.aclose()


@pytest.fixture
def holiday_app(app: FastAPI, calendarific_client: CalendarificClient) -> FastAPI:
    """App whose holiday endpoint uses the stubbed Calendarific client."""
    app.dependency_overrides[get_calendarific_client] = lambda: calendarific_client
    return app


def days_from(base: date, days: int) -> date:
    return base + timedelta(days=days)


# -------------------------------------------------------------------------
# Metrics Fixtures
# -------------------------------------------------------------------------


_SAMPLE_LINE = re.compile(r"^(?P<name>[a-zA-Z_:][a-zA-Z0-9_:]*)(?:\{(?P<labels>.*)\})? (?P<value>\S+)$")
_LABEL = re.compile(r'(\w+)="([^"]*)"')


@pytest.fixture
def metrics() -> MetricsCollector:
    """Fresh collector so counts start at zero in every test."""
    return MetricsCollector()


def metric_value(rendered: str, name: str, **labels: str) -> float:
    """Read one sample from Prometheus text output; 0 when absent."""
    for line in rendered.splitlines():
        match = _SAMPLE_LINE.match(line)
        if not match or match.group("name") != name:
            continue
        if dict(_LABEL.findall(match.group("labels") or "")) == labels:
            return float(match.group("value"))
    return 0.0
