from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

import jwt
from jwt import ExpiredSignatureError
from jwt import InvalidTokenError as PyJWTInvalidTokenError

from app.core.config import settings


class TokenType(str, Enum):
    SESSION = "session"
    SERVICE = "service"


ALGORITHM = "HS256"


class TokenValidationError(Exception):
    """Raised when a token cannot be validated."""


class TokenExpiredError(TokenValidationError):
    """Raised when a token is expired."""


def create_session_token(session_id: str, subject: str, expires_at: datetime) -> str:
    """Signed wrapper around a server-side session id (jwt session transport)."""
    return _create_token(
        {"sub": subject, "sid": session_id},
        expires_at,
        TokenType.SESSION,
    )


def create_service_token(
    subject: str,
    service_id: str,
    token_id: str,
    scopes: list[str],
    expires_at: datetime,
) -> str:
    return _create_token(
        {"sub": subject, "aud": service_id, "jti": token_id, "scope": " ".join(scopes)},
        expires_at,
        TokenType.SERVICE,
    )


def decode_token(
    token: str,
    expected_type: TokenType = TokenType.SESSION,
    audience: str | None = None,
) -> dict[str, Any]:
    options = {"verify_aud": audience is not None}
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[ALGORITHM],
            audience=audience,
            issuer=settings.JWT_ISSUER,
            options=options,
        )
    except ExpiredSignatureError as exc:
        raise TokenExpiredError("Token has expired") from exc
    except PyJWTInvalidTokenError as exc:
        raise TokenValidationError("Token is invalid") from exc
    if payload.get("type") != expected_type.value:
        raise TokenValidationError("Token type mismatch")
    return payload


def _create_token(claims: dict[str, Any], expires_at: datetime, token_type: TokenType) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        **claims,
        "iss": settings.JWT_ISSUER,
        "iat": now,
        "exp": expires_at,
        "type": token_type.value,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=ALGORITHM)
