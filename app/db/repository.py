"""Persistence verbs used by the SSO core.

Services depend on ``AuthRepository`` rather than on SQLAlchemy queries so the
identity, session and token logic only sees a small set of verbs:
``upsert_user``, ``find_user_by_email``, ``create_session``,
``destroy_session``, ``create_token``, ``replace_token`` and
``mark_token_revoked`` plus a few lookups. Writes commit immediately; a
unique-constraint violation is rolled back and re-raised as ``IntegrityError``
for the caller to handle.
"""
from __future__ import annotations

import datetime as dt
import logging
import uuid
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.models import AuthSession, IdentityLink, IssuedToken, User, VerificationStatus, utcnow
from app.models.oauth_models import OAuthToken

logger = logging.getLogger(__name__)


class AuthRepository:
    def __init__(self, db: Session):
        self.db = db

    # ---------------------------------------------------------------- users
    def get_user(self, user_id: str) -> User | None:
        return self.db.get(User, user_id)

    def find_user_by_email(self, email: str) -> User | None:
        return self.db.scalar(select(User).where(func.lower(User.email) == email.lower()))

    def upsert_user(
        self,
        *,
        email: str,
        name: str | None = None,
        avatar_url: str | None = None,
        email_verified: bool = False,
        roles: list[str] | None = None,
        link: tuple[str, str] | None = None,
    ) -> User:
        """Create the user for ``email`` or refresh profile fields on the existing row.

        Profile fields only fill gaps; an existing name or avatar is never
        overwritten by a later provider. ``link`` is a ``(provider, external_id)``
        pair attached in the same transaction as the user write.
        """
        user = self.db.scalar(select(User).where(func.lower(User.email) == email.lower()))
        if user is None:
            user = User(
                email=email,
                name=name,
                avatar_url=avatar_url,
                email_verified=email_verified,
                roles=list(roles or []),
                verification_status=VerificationStatus.UNVERIFIED,
            )
            self.db.add(user)
        else:
            if name and not user.name:
                user.name = name
            if avatar_url and not user.avatar_url:
                user.avatar_url = avatar_url
            if email_verified and not user.email_verified:
                user.email_verified = True
        user.last_login = utcnow()
        try:
            if link is not None:
                provider, external_id = link
                self.db.flush()
                self.db.add(IdentityLink(user_id=user.id, provider=provider, external_id=external_id))
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise
        self.db.refresh(user)
        return user

    def touch_login(self, user: User) -> None:
        user.last_login = utcnow()
        self._commit()

    # ------------------------------------------------------- identity links
    def find_identity_link(self, provider: str, external_id: str) -> IdentityLink | None:
        return self.db.scalar(
            select(IdentityLink).where(
                IdentityLink.provider == provider,
                IdentityLink.external_id == external_id,
            )
        )

    def find_user_link(self, user_id: str, provider: str) -> IdentityLink | None:
        return self.db.scalar(
            select(IdentityLink).where(
                IdentityLink.user_id == user_id,
                IdentityLink.provider == provider,
            )
        )

    def create_identity_link(self, user: User, provider: str, external_id: str) -> IdentityLink:
        link = IdentityLink(user_id=user.id, provider=provider, external_id=external_id)
        self.db.add(link)
        self._commit()
        self.db.refresh(user)
        return link

    # ------------------------------------------------------ provider tokens
    def store_provider_tokens(
        self,
        user_id: str,
        provider: str,
        *,
        access_token_encrypted: str,
        refresh_token_encrypted: str | None,
        token_type: str = "bearer",
        expires_at: dt.datetime | None = None,
        scopes: list[str] | None = None,
    ) -> OAuthToken:
        row = self.db.scalar(
            select(OAuthToken).where(OAuthToken.user_id == user_id, OAuthToken.provider == provider)
        )
        if row is None:
            row = OAuthToken(id=uuid.uuid4().hex, user_id=user_id, provider=provider)
            self.db.add(row)
        row.access_token_encrypted = access_token_encrypted
        # Keep a previously granted refresh token when the provider omits one
        if refresh_token_encrypted:
            row.refresh_token_encrypted = refresh_token_encrypted
        row.token_type = token_type
        row.expires_at = expires_at
        row.scopes = scopes
        row.revoked_at = None
        self._commit()
        return row

    # ------------------------------------------------------------- sessions
    def create_session(
        self,
        *,
        session_hash: str,
        user_id: str,
        provider: str,
        expires_at: dt.datetime,
    ) -> AuthSession:
        record = AuthSession(
            id=session_hash,
            user_id=user_id,
            provider=provider,
            created_at=utcnow(),
            expires_at=expires_at,
        )
        self.db.add(record)
        self._commit()
        return record

    def get_session(self, session_hash: str) -> AuthSession | None:
        return self.db.get(AuthSession, session_hash)

    def destroy_session(self, session_hash: str) -> bool:
        result = self.db.execute(delete(AuthSession).where(AuthSession.id == session_hash))
        self.db.commit()
        return bool(result.rowcount)

    def purge_expired_sessions(self, now: dt.datetime | None = None) -> int:
        result = self.db.execute(delete(AuthSession).where(AuthSession.expires_at <= (now or utcnow())))
        self.db.commit()
        return int(result.rowcount or 0)

    # --------------------------------------------------------------- tokens
    def create_token(
        self,
        *,
        service_id: str,
        subject_user_id: str,
        scopes: list[str],
        expires_at: dt.datetime,
        token_id: str | None = None,
    ) -> IssuedToken:
        record = IssuedToken(
            id=token_id or str(uuid.uuid4()),
            service_id=service_id,
            subject_user_id=subject_user_id,
            scopes=list(scopes),
            issued_at=utcnow(),
            expires_at=expires_at,
            revoked=False,
        )
        self.db.add(record)
        self._commit()
        return record

    def get_token(self, token_id: str) -> IssuedToken | None:
        return self.db.get(IssuedToken, token_id)

    def list_tokens_for_user(self, user_id: str) -> list[IssuedToken]:
        return list(
            self.db.scalars(
                select(IssuedToken)
                .where(IssuedToken.subject_user_id == user_id)
                .order_by(IssuedToken.issued_at.desc())
            )
        )

    def mark_token_revoked(self, token: IssuedToken) -> IssuedToken:
        if not token.revoked:
            token.revoked = True
            token.revoked_at = utcnow()
            self._commit()
        return token

    def replace_token(
        self,
        old_token_id: str,
        *,
        service_id: str,
        subject_user_id: str,
        scopes: list[str],
        expires_at: dt.datetime,
        token_id: str | None = None,
    ) -> IssuedToken | None:
        """Revoke ``old_token_id`` and record its successor in one transaction.

        Returns ``None`` (and writes nothing) when the old token was already
        revoked, including by a concurrent rotation.
        """
        now = utcnow()
        result = self.db.execute(
            update(IssuedToken)
            .where(IssuedToken.id == old_token_id, IssuedToken.revoked.is_(False))
            .values(revoked=True, revoked_at=now)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount != 1:
            self.db.rollback()
            return None
        record = IssuedToken(
            id=token_id or str(uuid.uuid4()),
            service_id=service_id,
            subject_user_id=subject_user_id,
            scopes=list(scopes),
            issued_at=now,
            expires_at=expires_at,
            revoked=False,
        )
        self.db.add(record)
        self._commit()
        return record

    # -------------------------------------------------------------- helpers
    def rollback(self) -> None:
        self.db.rollback()

    def _commit(self) -> None:
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise

    def stats(self) -> dict[str, Any]:
        return {
            "users": self.db.scalar(select(func.count()).select_from(User)) or 0,
            "sessions": self.db.scalar(select(func.count()).select_from(AuthSession)) or 0,
            "issued_tokens": self.db.scalar(select(func.count()).select_from(IssuedToken)) or 0,
        }
