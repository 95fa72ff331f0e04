"""Session bridge: resolved users -> server-side sessions.

One ``establish / current / destroy`` contract regardless of how the session
reaches the browser. The transport (plain cookie holding the opaque id, or a
signed JWT carrying it as ``sid``) is an adapter chosen by
``SESSION_TRANSPORT``; both persist an ``auth_session`` row so destroying the
row revokes either representation.
"""
from __future__ import annotations

import datetime as dt
import hashlib
import logging
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass

from sqlalchemy.orm import Session
from starlette.requests import Request
from starlette.responses import Response

from app import metrics
from app.core.config import settings
from app.core.security import TokenValidationError, create_session_token, decode_token
from app.db.repository import AuthRepository
from app.models.models import AuthSession, User, utcnow

logger = logging.getLogger(__name__)


def hash_session_id(session_id: str) -> str:
    return hashlib.sha256(session_id.encode("utf-8")).hexdigest()


def cookie_settings(max_age: int) -> dict[str, object]:
    secure = settings.is_production
    # OAuth callbacks arrive as cross-site top-level navigations, so strict would drop the cookie
    return {
        "httponly": True,
        "secure": secure,
        "samesite": "lax",
        "max_age": max_age,
        "path": "/",
    }


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip() or None
    return None


class SessionTransport(ABC):
    """How the opaque session id travels between server and browser."""

    name: str

    def __init__(self, cookie_name: str | None = None):
        self.cookie_name = cookie_name or settings.SESSION_COOKIE_NAME

    @abstractmethod
    def encode(self, session_id: str, record: AuthSession) -> str:
        """Value handed to the client for this session."""

    @abstractmethod
    def read(self, request: Request) -> str | None:
        """Opaque session id carried by the request, if any."""

    def attach(self, response: Response, value: str, max_age: int) -> None:
        response.set_cookie(self.cookie_name, value, **cookie_settings(max_age))

    def clear(self, response: Response) -> None:
        response.delete_cookie(self.cookie_name, path="/")


class CookieSessionTransport(SessionTransport):
    name = "cookie"

    def encode(self, session_id: str, record: AuthSession) -> str:
        return session_id

    def read(self, request: Request) -> str | None:
        return request.cookies.get(self.cookie_name) or None


class JWTSessionTransport(SessionTransport):
    name = "jwt"

    def encode(self, session_id: str, record: AuthSession) -> str:
        return create_session_token(session_id, record.user_id, record.expires_at)

    def read(self, request: Request) -> str | None:
        token = request.cookies.get(self.cookie_name) or _bearer_token(request)
        if not token:
            return None
        try:
            payload = decode_token(token)
        except TokenValidationError as exc:
            logger.debug("Ignoring unusable session token: %s", exc)
            return None
        return payload.get("sid")


_TRANSPORTS: dict[str, type[SessionTransport]] = {
    CookieSessionTransport.name: CookieSessionTransport,
    JWTSessionTransport.name: JWTSessionTransport,
}


def get_session_transport(name: str | None = None) -> SessionTransport:
    return _TRANSPORTS[(name or settings.SESSION_TRANSPORT).lower()]()


@dataclass
class SessionIssue:
    record: AuthSession
    token: str
    max_age: int


class SessionBridge:
    def __init__(
        self,
        db: Session,
        transport: SessionTransport | None = None,
        repository: AuthRepository | None = None,
        ttl_seconds: int | None = None,
    ):
        self.repo = repository or AuthRepository(db)
        self.transport = transport or get_session_transport()
        self.ttl = dt.timedelta(seconds=ttl_seconds or settings.SESSION_TTL_SECONDS)

    def establish(self, user: User, provider: str, request: Request | None = None) -> SessionIssue:
        """Create a fresh session for ``user``, replacing any session the request already carries."""
        if request is not None:
            self.destroy(request)
        session_id = secrets.token_urlsafe(32)
        record = self.repo.create_session(
            session_hash=hash_session_id(session_id),
            user_id=user.id,
            provider=provider,
            expires_at=utcnow() + self.ttl,
        )
        metrics.session_established()
        logger.info("Session established user=%s provider=%s transport=%s", user.id, provider, self.transport.name)
        return SessionIssue(
            record=record,
            token=self.transport.encode(session_id, record),
            max_age=int(self.ttl.total_seconds()),
        )

    def current_record(self, request: Request) -> AuthSession | None:
        session_id = self.transport.read(request)
        if not session_id:
            return None
        session_hash = hash_session_id(session_id)
        record = self.repo.get_session(session_hash)
        if record is None:
            return None
        if record.is_expired():
            self.repo.destroy_session(session_hash)
            logger.debug("Dropped expired session for user %s", record.user_id)
            return None
        return record

    def current(self, request: Request) -> User | None:
        record = self.current_record(request)
        return record.user if record else None

    def destroy(self, request: Request) -> bool:
        session_id = self.transport.read(request)
        if not session_id:
            return False
        removed = self.repo.destroy_session(hash_session_id(session_id))
        if removed:
            metrics.session_destroyed()
        return removed

    def purge_expired(self) -> int:
        count = self.repo.purge_expired_sessions()
        if count:
            logger.info("Purged %d expired sessions", count)
        return count

    def attach(self, response: Response, issue: SessionIssue) -> None:
        self.transport.attach(response, issue.token, issue.max_age)

    def clear(self, response: Response) -> None:
        self.transport.clear(response)
