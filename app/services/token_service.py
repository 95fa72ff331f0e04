"""Scoped tokens for registered downstream services.

Issues JWTs bound to one service (``aud``) and a subset of its allowed
scopes, records their metadata in ``issued_token`` and is the single source
of truth for revocation. Tokens can also be rotated (new token, old one
revoked) or exchanged for a token to another service. Rows are never deleted.
"""
from __future__ import annotations

import datetime as dt
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Iterable

from sqlalchemy.orm import Session

from app import metrics
from app.core.exceptions import (
    EmailVerificationRequiredError,
    InvalidServiceCredentialsError,
    InvalidTokenError,
    ScopeNotAllowedError,
    ServiceDisabledError,
    ServiceMismatchError,
    TokenInactiveError,
    TokenNotFoundError,
    UserNotFoundError,
)
from app.core.security import (
    TokenExpiredError,
    TokenType,
    TokenValidationError,
    create_service_token,
    decode_token,
)
from app.db.repository import AuthRepository
from app.models.models import IssuedToken, User, ensure_utc, utcnow
from app.services.service_registry import ServiceDescriptor, ServiceRegistry, get_service_registry

logger = logging.getLogger(__name__)


@dataclass
class IssuedTokenGrant:
    token_id: str
    access_token: str
    service_id: str
    scopes: list[str]
    expires_in: int
    expires_at: dt.datetime
    token_type: str = "bearer"


@dataclass
class RevocationResult:
    token_id: str
    already_revoked: bool

    @property
    def message(self) -> str:
        return "Token already revoked" if self.already_revoked else "Token revoked successfully"


class TokenIssuanceService:
    def __init__(
        self,
        db: Session,
        registry: ServiceRegistry | None = None,
        repository: AuthRepository | None = None,
    ):
        self.repo = repository or AuthRepository(db)
        self.registry = registry if registry is not None else get_service_registry()

    def issue_token(
        self,
        subject_user_id: str,
        service_id: str,
        requested_scopes: Iterable[str] | None = None,
        *,
        expires_in: int | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
    ) -> IssuedTokenGrant:
        """Mint a token for ``service_id``.

        An empty scope request grants the service's full allowed set.
        Credentials are checked only when the caller supplies both.
        """
        service, user, scopes = self._authorize(
            subject_user_id, service_id, requested_scopes, client_id=client_id, client_secret=client_secret
        )
        ttl = int(expires_in or service.token_ttl_seconds)
        expires_at = utcnow() + dt.timedelta(seconds=ttl)
        record = self.repo.create_token(
            token_id=str(uuid.uuid4()),
            service_id=service_id,
            subject_user_id=user.id,
            scopes=scopes,
            expires_at=expires_at,
        )
        logger.info(
            "Token issued token_id=%s user=%s service=%s scopes=%s expires_at=%s",
            record.id,
            user.id,
            service_id,
            scopes,
            expires_at.isoformat(),
        )
        return self._grant(record, ttl)

    def _authorize(
        self,
        subject_user_id: str,
        service_id: str,
        requested_scopes: Iterable[str] | None,
        *,
        client_id: str | None = None,
        client_secret: str | None = None,
    ) -> tuple[ServiceDescriptor, User, list[str]]:
        # Order matters: service, credentials, scopes, then the subject
        if not self.registry.is_enabled(service_id):
            raise ServiceDisabledError(service_id)
        service = self.registry.get(service_id)

        if client_id and client_secret:
            if not self.registry.validate_credentials(service_id, client_id, client_secret):
                raise InvalidServiceCredentialsError(service_id)

        scopes = sorted(set(requested_scopes or ()))
        if not self.registry.validate_scopes(service_id, scopes):
            raise ScopeNotAllowedError(service_id, sorted(set(scopes) - service.allowed_scopes))
        if not scopes:
            scopes = sorted(service.allowed_scopes)

        user = self.repo.get_user(subject_user_id)
        if user is None:
            raise UserNotFoundError(subject_user_id)
        if service.requires_email_verification and not user.email_verified:
            raise EmailVerificationRequiredError(service_id)
        return service, user, scopes

    def _grant(self, record: IssuedToken, ttl: int) -> IssuedTokenGrant:
        scopes = list(record.scopes or [])
        expires_at = ensure_utc(record.expires_at)
        access_token = create_service_token(
            subject=record.subject_user_id,
            service_id=record.service_id,
            token_id=record.id,
            scopes=scopes,
            expires_at=expires_at,
        )
        metrics.service_token_issued(record.service_id)
        return IssuedTokenGrant(
            token_id=record.id,
            access_token=access_token,
            service_id=record.service_id,
            scopes=scopes,
            expires_in=ttl,
            expires_at=expires_at,
        )

    def rotate_token(
        self,
        old_token_id: str,
        service_id: str,
        scopes: Iterable[str] | None = None,
        *,
        subject_user_id: str | None = None,
    ) -> IssuedTokenGrant:
        """Replace an active token with a fresh one for the same user and service.

        The old token is revoked in the same transaction that records the new
        one, so two concurrent rotations of one token cannot both succeed.
        Scopes default to the old token's and may only narrow. When
        ``subject_user_id`` is given, a token owned by someone else is
        reported as not found.

        Raises:
            TokenNotFoundError, ServiceMismatchError: wrong token or service
            TokenInactiveError: old token revoked, expired or rotated concurrently
            ScopeNotAllowedError: requested scopes exceed the old token's
            plus anything ``issue_token`` raises for the service or subject
        """
        record = self.repo.get_token(old_token_id)
        if record is None or (subject_user_id is not None and record.subject_user_id != subject_user_id):
            raise TokenNotFoundError(old_token_id)
        if record.service_id != service_id:
            raise ServiceMismatchError(old_token_id, service_id)
        if not record.is_active:
            raise TokenInactiveError(old_token_id)

        previous = set(record.scopes or [])
        requested = sorted(set(scopes or ())) or sorted(previous)
        widened = sorted(set(requested) - previous)
        if widened:
            raise ScopeNotAllowedError(service_id, widened)

        service, user, granted = self._authorize(record.subject_user_id, service_id, requested)
        ttl = service.token_ttl_seconds
        replacement = self.repo.replace_token(
            old_token_id,
            token_id=str(uuid.uuid4()),
            service_id=service_id,
            subject_user_id=user.id,
            scopes=granted,
            expires_at=utcnow() + dt.timedelta(seconds=ttl),
        )
        if replacement is None:
            raise TokenInactiveError(old_token_id)
        metrics.service_token_revoked(service_id)
        metrics.service_token_rotated(service_id)
        logger.info("Token rotated old=%s new=%s service=%s", old_token_id, replacement.id, service_id)
        return self._grant(replacement, ttl)

    def exchange_token(
        self,
        raw_token: str,
        target_service_id: str,
        scopes: Iterable[str] | None = None,
    ) -> IssuedTokenGrant:
        """Trade a live token for one service into a token for ``target_service_id``.

        The source token stays valid. The new token goes through the same
        checks as ``issue_token`` for the target service.
        """
        try:
            claims = decode_token(raw_token, expected_type=TokenType.SERVICE)
        except TokenExpiredError:
            raise InvalidTokenError("expired") from None
        except TokenValidationError:
            raise InvalidTokenError() from None
        token_id = claims.get("jti")
        source = self.repo.get_token(token_id) if token_id else None
        if source is None or source.subject_user_id != claims.get("sub"):
            raise InvalidTokenError("unknown")
        if not source.is_active:
            raise InvalidTokenError("revoked" if source.revoked else "expired")

        grant = self.issue_token(source.subject_user_id, target_service_id, scopes)
        metrics.service_token_exchanged(source.service_id, target_service_id)
        logger.info(
            "Token exchanged source=%s (%s) target=%s (%s)",
            source.id,
            source.service_id,
            grant.token_id,
            target_service_id,
        )
        return grant

    def revoke_token(self, token_id: str, service_id: str) -> RevocationResult:
        """Flip ``revoked`` for a token issued to ``service_id``. Revoking twice succeeds."""
        record = self.repo.get_token(token_id)
        if record is None:
            raise TokenNotFoundError(token_id)
        if record.service_id != service_id:
            logger.warning(
                "Cross-service revocation refused token_id=%s issued_for=%s claimed=%s",
                token_id,
                record.service_id,
                service_id,
            )
            raise ServiceMismatchError(token_id, service_id)
        if record.revoked:
            return RevocationResult(token_id=token_id, already_revoked=True)
        self.repo.mark_token_revoked(record)
        metrics.service_token_revoked(service_id)
        logger.info("Token revoked token_id=%s service=%s", token_id, service_id)
        return RevocationResult(token_id=token_id, already_revoked=False)

    def introspect(self, raw_token: str, service_id: str | None = None) -> dict[str, Any]:
        """Validity check for downstream callers; never raises for a bad token."""
        inactive: dict[str, Any] = {"active": False}
        try:
            claims = decode_token(raw_token, expected_type=TokenType.SERVICE, audience=service_id)
        except TokenValidationError as exc:
            logger.debug("Introspection rejected token: %s", exc)
            return inactive
        token_id = claims.get("jti")
        record = self.repo.get_token(token_id) if token_id else None
        if record is None or not record.is_active:
            return inactive
        return {
            "active": True,
            "token_id": record.id,
            "service_id": record.service_id,
            "sub": record.subject_user_id,
            "scopes": list(record.scopes or []),
            "exp": int(ensure_utc(record.expires_at).timestamp()),
        }

    def list_for_user(self, user_id: str) -> list[IssuedToken]:
        return self.repo.list_tokens_for_user(user_id)
