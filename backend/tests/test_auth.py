"""Tests for Clerk token verification and current-user resolution."""

from typing import Callable

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from omnicalendar.core.clerk_auth import ClerkAuth
from omnicalendar.core.exceptions import (
    ConfigurationError,
    MissingIdentity,
    Unauthenticated,
)
from omnicalendar.models.user import User
from omnicalendar.observability import MetricsCollector
from omnicalendar.services.identity import PLACEHOLDER_EMAIL, CurrentUserService, Principal

from conftest import TEST_CLERK_ID, metric_value


async def _count_users(db: AsyncSession) -> int:
    result = await db.execute(select(func.count(User.id)))
    return result.scalar_one()


def _bearer(app, token: str) -> AsyncClient:
    return AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"Authorization": f"Bearer {token}"},
    )


class TestHealth:
    """Tests for the unauthenticated liveness probe."""

    async def test_health_check(self, client: AsyncClient):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    async def test_request_id_is_echoed(self, client: AsyncClient):
        response = await client.get("/health", headers={"X-Request-ID": "req-42"})
        assert response.headers["X-Request-ID"] == "req-42"

    async def test_request_id_is_generated(self, client: AsyncClient):
        response = await client.get("/health")
        assert response.headers.get("X-Request-ID")


class TestTokenVerification:
    """Tests for bearer token checks on protected routes."""

    async def test_missing_token(self, client: AsyncClient):
        response = await client.get("/api/dashboard/summary")
        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    async def test_malformed_token(self, app):
        async with _bearer(app, "not-a-jwt") as ac:
            response = await ac.get("/api/dashboard/summary")
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid token"

    async def test_expired_token(self, app, make_token: Callable[..., str]):
        async with _bearer(app, make_token(expires_in=-60)) as ac:
            response = await ac.get("/api/dashboard/summary")
        assert response.status_code == 401
        assert response.json()["detail"] == "Token has expired"

    async def test_wrong_issuer(self, app, make_token: Callable[..., str]):
        async with _bearer(app, make_token(issuer="https://evil.example.com")) as ac:
            response = await ac.get("/api/dashboard/summary")
        assert response.status_code == 401

    async def test_wrong_audience(self, app, make_token: Callable[..., str]):
        async with _bearer(app, make_token(audience="someone-else")) as ac:
            response = await ac.get("/api/dashboard/summary")
        assert response.status_code == 401

    async def test_missing_subject(
        self, app, db_session: AsyncSession, make_token: Callable[..., str]
    ):
        async with _bearer(app, make_token(sub=None)) as ac:
            response = await ac.get("/api/dashboard/summary")
        assert response.status_code == 401
        assert "sub" in response.json()["detail"]
        assert await _count_users(db_session) == 0

    async def test_unconfigured_verifier(self):
        auth = ClerkAuth(issuer=None)
        with pytest.raises(ConfigurationError):
            auth.verify_token("anything")

    async def test_failures_are_counted(
        self, app, make_token: Callable[..., str], metrics: MetricsCollector
    ):
        async with _bearer(app, make_token(expires_in=-60)) as ac:
            await ac.get("/api/dashboard/summary")
        async with _bearer(app, "not-a-jwt") as ac:
            await ac.get("/api/dashboard/summary")
            await ac.get("/api/tasks/today")

        rendered = metrics.render_prometheus()
        assert metric_value(rendered, "auth_failures_total", reason="expired") == 1
        assert metric_value(rendered, "auth_failures_total", reason="invalid") == 2


class TestFirstLogin:
    """Tests for lazy user creation through the HTTP surface."""

    async def test_first_login_creates_user(
        self, app, db_session: AsyncSession, make_token: Callable[..., str]
    ):
        token = make_token(
            sub="user_new",
            email="new@example.com",
            name="New Person",
            picture="https://img.example.com/new.png",
        )
        async with _bearer(app, token) as ac:
            response = await ac.get("/api/dashboard/summary")

        assert response.status_code == 200
        assert response.json()["rank"] == "Junior"

        result = await db_session.execute(select(User).where(User.clerk_id == "user_new"))
        user = result.scalar_one()
        assert user.email == "new@example.com"
        assert user.nickname == "New Person"
        assert user.avatar_url == "https://img.example.com/new.png"
        assert user.experience_points == 0
        assert user.current_rank == "Junior"

    async def test_repeat_login_keeps_existing_row(
        self,
        app,
        db_session: AsyncSession,
        test_user: User,
        make_token: Callable[..., str],
    ):
        token = make_token(email="changed@example.com", name="Changed")
        async with _bearer(app, token) as ac:
            first = await ac.get("/api/dashboard/summary")
            second = await ac.get("/api/dashboard/summary")

        assert first.status_code == 200
        assert second.status_code == 200
        assert await _count_users(db_session) == 1

        await db_session.refresh(test_user)
        assert test_user.email == "test@example.com"
        assert test_user.nickname == "Test User"


class TestCurrentUserService:
    """Tests for CurrentUserService.get_or_create_user."""

    async def test_no_principal(self, db_session: AsyncSession):
        with pytest.raises(Unauthenticated):
            await CurrentUserService(db_session).get_or_create_user(None)

    async def test_unauthenticated_principal(self, db_session: AsyncSession):
        principal = Principal(subject="user_x", is_authenticated=False)
        with pytest.raises(Unauthenticated):
            await CurrentUserService(db_session).get_or_create_user(principal)

    async def test_missing_subject(self, db_session: AsyncSession, metrics: MetricsCollector):
        service = CurrentUserService(db_session, metrics=metrics)
        with pytest.raises(MissingIdentity):
            await service.get_or_create_user(Principal(subject=None))
        assert await _count_users(db_session) == 0
        rendered = metrics.render_prometheus()
        assert metric_value(rendered, "auth_failures_total", reason="missing_subject") == 1

    async def test_placeholder_email(self, db_session: AsyncSession):
        user = await CurrentUserService(db_session).get_or_create_user(
            Principal(subject="user_noemail")
        )
        assert user.email == PLACEHOLDER_EMAIL
        assert user.nickname is None
        assert user.avatar_url is None

    async def test_returns_existing_user(self, db_session: AsyncSession, test_user: User):
        user = await CurrentUserService(db_session).get_or_create_user(
            Principal(subject=TEST_CLERK_ID, email="other@example.com")
        )
        assert user.id == test_user.id
        assert user.email == "test@example.com"
        assert await _count_users(db_session) == 1

    def test_principal_from_claims(self):
        principal = Principal.from_claims(
            {"sub": "user_1", "email": "a@b.c", "name": "A", "picture": "p", "sid": "s"}
        )
        assert principal.subject == "user_1"
        assert principal.email == "a@b.c"
        assert principal.name == "A"
        assert principal.picture == "p"
        assert principal.claims["sid"] == "s"

    def test_principal_empty_subject(self):
        assert Principal.from_claims({"sub": ""}).subject is None
