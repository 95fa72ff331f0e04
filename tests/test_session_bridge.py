"""Session bridge over both transports."""
import datetime as dt

import pytest
from sqlalchemy import func, select
from starlette.requests import Request
from starlette.responses import Response

from app.core.config import settings
from app.core.security import TokenType, decode_token
from app.models.models import AuthSession, utcnow
from app.services.session_service import (
    CookieSessionTransport,
    JWTSessionTransport,
    SessionBridge,
    get_session_transport,
    hash_session_id,
)


def _request(cookies: dict[str, str] | None = None, headers: dict[str, str] | None = None) -> Request:
    raw_headers = []
    if cookies:
        cookie_header = "; ".join(f"{name}={value}" for name, value in cookies.items())
        raw_headers.append((b"cookie", cookie_header.encode()))
    for name, value in (headers or {}).items():
        raw_headers.append((name.lower().encode(), value.encode()))
    return Request({"type": "http", "method": "GET", "path": "/", "query_string": b"", "headers": raw_headers})


def _with_session(token: str) -> Request:
    return _request({settings.SESSION_COOKIE_NAME: token})


def _session_count(db) -> int:
    return db.scalar(select(func.count()).select_from(AuthSession))


def test_transport_selected_from_configuration():
    assert isinstance(get_session_transport(), CookieSessionTransport)
    assert isinstance(get_session_transport("jwt"), JWTSessionTransport)


class TestCookieTransport:
    def test_establish_and_read_back(self, db_session, make_user):
        user = make_user()
        bridge = SessionBridge(db_session)
        issue = bridge.establish(user, "google")

        # Only the hash of the browser value is stored
        assert issue.record.id == hash_session_id(issue.token)
        assert issue.record.id != issue.token
        assert issue.max_age == settings.SESSION_TTL_SECONDS
        assert bridge.current(_with_session(issue.token)).id == user.id

    def test_unknown_or_missing_cookie(self, db_session):
        bridge = SessionBridge(db_session)
        assert bridge.current(_request()) is None
        assert bridge.current(_with_session("never-issued")) is None

    def test_attach_sets_hardened_cookie(self, db_session, make_user):
        bridge = SessionBridge(db_session)
        issue = bridge.establish(make_user(), "google")
        response = Response()
        bridge.attach(response, issue)

        cookie = response.headers["set-cookie"]
        assert cookie.startswith(f"{settings.SESSION_COOKIE_NAME}={issue.token}")
        assert "HttpOnly" in cookie
        assert "samesite=lax" in cookie.lower()
        assert "Path=/" in cookie


class TestJWTTransport:
    def test_token_wraps_session_id(self, db_session, make_user):
        user = make_user()
        bridge = SessionBridge(db_session, transport=JWTSessionTransport())
        issue = bridge.establish(user, "microsoft")

        claims = decode_token(issue.token, TokenType.SESSION)
        assert claims["sub"] == user.id
        assert hash_session_id(claims["sid"]) == issue.record.id
        assert bridge.current(_with_session(issue.token)).id == user.id

    def test_bearer_header_is_accepted(self, db_session, make_user):
        user = make_user()
        bridge = SessionBridge(db_session, transport=JWTSessionTransport())
        issue = bridge.establish(user, "google")

        request = _request(headers={"Authorization": f"Bearer {issue.token}"})
        assert bridge.current(request).id == user.id

    def test_destroyed_row_revokes_still_valid_jwt(self, db_session, make_user):
        bridge = SessionBridge(db_session, transport=JWTSessionTransport())
        issue = bridge.establish(make_user(), "google")
        assert bridge.destroy(_with_session(issue.token)) is True

        assert bridge.current(_with_session(issue.token)) is None

    def test_tampered_token_is_ignored(self, db_session, make_user):
        bridge = SessionBridge(db_session, transport=JWTSessionTransport())
        issue = bridge.establish(make_user(), "google")
        assert bridge.current(_with_session(issue.token + "x")) is None


def test_expired_session_is_dropped_on_read(db_session, make_user):
    bridge = SessionBridge(db_session)
    issue = bridge.establish(make_user(), "google")
    issue.record.expires_at = utcnow() - dt.timedelta(seconds=1)
    db_session.commit()

    assert bridge.current(_with_session(issue.token)) is None
    assert _session_count(db_session) == 0


def test_destroy_is_idempotent(db_session, make_user):
    bridge = SessionBridge(db_session)
    issue = bridge.establish(make_user(), "google")
    request = _with_session(issue.token)

    assert bridge.destroy(request) is True
    assert bridge.destroy(request) is False
    assert bridge.destroy(_request()) is False


def test_establish_replaces_session_carried_by_request(db_session, make_user):
    user = make_user()
    bridge = SessionBridge(db_session)
    old = bridge.establish(user, "google")
    new = bridge.establish(user, "microsoft", _with_session(old.token))

    assert _session_count(db_session) == 1
    assert bridge.current(_with_session(old.token)) is None
    assert bridge.current_record(_with_session(new.token)).provider == "microsoft"


@pytest.mark.parametrize("live, expired", [(2, 0), (1, 3)])
def test_purge_expired(db_session, make_user, live, expired):
    user = make_user()
    bridge = SessionBridge(db_session)
    for _ in range(live):
        bridge.establish(user, "google")
    for _ in range(expired):
        issue = bridge.establish(user, "google")
        issue.record.expires_at = utcnow() - dt.timedelta(minutes=5)
    db_session.commit()

    assert bridge.purge_expired() == expired
    assert _session_count(db_session) == live
