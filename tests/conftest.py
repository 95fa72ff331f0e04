from __future__ import annotations

import os

os.environ.setdefault("APP_ENV", "test")

from typing import Any, Callable  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.core.config import settings  # noqa: E402
from app.db import session as db_session_module  # noqa: E402
from app.db.base_class import Base  # noqa: E402
from app.db.repository import AuthRepository  # noqa: E402
from app.db.session import SessionLocal  # noqa: E402
from app.models import models  # noqa: E402,F401
from app.services.oauth.state_store import InMemoryStateStore, reset_state_store  # noqa: E402

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")


test_engine = create_engine(
    TEST_DATABASE_URL,
    future=True,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Ensure application code uses the test engine
settings.ENV = "test"  # type: ignore[attr-defined]
db_session_module.engine = test_engine  # type: ignore[assignment]
SessionLocal.configure(bind=test_engine)


@pytest.fixture(autouse=True)
def _reset_database_state():
    """Ensure each test sees a fresh database schema."""
    Base.metadata.drop_all(bind=test_engine)
    Base.metadata.create_all(bind=test_engine)
    yield


@pytest.fixture(autouse=True)
def _reset_oauth_state():
    """OAuth state lives in a process-wide in-memory store during tests."""
    reset_state_store()
    yield
    reset_state_store()


@pytest.fixture
def db_session():
    """Provide a database session for tests."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    finally:
        session.close()


@pytest.fixture
def repo(db_session):
    return AuthRepository(db_session)


@pytest.fixture
def state_store():
    return InMemoryStateStore()


@pytest.fixture
def make_user(repo) -> Callable[..., models.User]:
    def _make(
        email: str = "a@x.com",
        *,
        verified: bool = True,
        roles: list[str] | None = None,
        link: tuple[str, str] | None = None,
    ) -> models.User:
        return repo.upsert_user(
            email=email,
            name=email.split("@")[0],
            email_verified=verified,
            roles=roles if roles is not None else ["participant"],
            link=link,
        )

    return _make


class FakeIdentityProviders:
    """httpx handler standing in for the Google, Microsoft and generic OAuth2 endpoints.

    Profiles can be edited per test; ``failures`` maps a host to either an
    HTTP status code or an exception instance to raise.
    """

    def __init__(self) -> None:
        self.profiles: dict[str, dict[str, Any]] = {
            "google": {
                "id": "g-123",
                "email": "a@x.com",
                "verified_email": True,
                "name": "Alex Example",
                "picture": "https://lh3.example.com/a.png",
            },
            "microsoft": {
                "id": "ms-456",
                "mail": "a@x.com",
                "userPrincipalName": "alex@contoso.onmicrosoft.com",
                "displayName": "Alex Example",
            },
            "oauth2": {"sub": "sso-789", "email": "a@x.com", "email_verified": True, "name": "Alex"},
        }
        self.failures: dict[str, int | Exception] = {}
        self.requests: list[httpx.Request] = []

    _TOKEN_HOSTS = {
        "oauth2.googleapis.com": "google",
        "login.microsoftonline.com": "microsoft",
        "idp.example.com": "oauth2",
    }
    _PROFILE_HOSTS = {
        "www.googleapis.com": "google",
        "graph.microsoft.com": "microsoft",
        "userinfo.example.com": "oauth2",
    }

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host
        failure = self.failures.get(host)
        if isinstance(failure, Exception):
            raise failure
        if isinstance(failure, int):
            return httpx.Response(failure, json={"error": "server_error"})
        if host in self._TOKEN_HOSTS:
            provider = self._TOKEN_HOSTS[host]
            return httpx.Response(
                200,
                json={
                    "access_token": f"{provider}-access-token",
                    "refresh_token": f"{provider}-refresh-token",
                    "token_type": "Bearer",
                    "expires_in": 3599,
                    "scope": "openid email profile",
                },
            )
        if host in self._PROFILE_HOSTS:
            return httpx.Response(200, json=self.profiles[self._PROFILE_HOSTS[host]])
        return httpx.Response(404, json={"error": "not_found"})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def idp() -> FakeIdentityProviders:
    return FakeIdentityProviders()


# FastAPI TestClient fixtures
from fastapi.testclient import TestClient  # noqa: E402

from app.api.dependencies import get_oauth_controller  # noqa: E402
from app.api.main import app  # noqa: E402
from app.services.oauth import create_oauth_controller  # noqa: E402
from app.services.session_service import SessionBridge  # noqa: E402


@pytest.fixture
def client(idp):
    """TestClient whose provider HTTP calls go to the fake identity providers."""

    def _controller():
        session = SessionLocal()
        try:
            yield create_oauth_controller(session, transport=idp.transport)
        finally:
            session.close()

    app.dependency_overrides[get_oauth_controller] = _controller
    with TestClient(app, follow_redirects=False) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def login_as(client, db_session):
    """Attach a fresh session cookie for ``user`` to the test client."""

    def _login(user: models.User, provider: str = "google") -> str:
        issue = SessionBridge(db_session).establish(user, provider)
        client.cookies.set(settings.SESSION_COOKIE_NAME, issue.token)
        return issue.token

    return _login
