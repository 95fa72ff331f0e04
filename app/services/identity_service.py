"""Identity resolution: external provider identities -> canonical users.

Responsibilities:
- Map a ``(provider, external_id)`` pair to exactly one canonical user
- Merge providers that share a verified email onto the same user
- Keep provider tokens encrypted at rest (or drop them)

Email is the merge key. Uniqueness is enforced by the database, not by
in-process locking: a conflicting concurrent write surfaces as
``IntegrityError`` and is retried once before giving up.
"""
from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app import metrics
from app.core.config import settings
from app.core.exceptions import (
    AccountLinkConflictError,
    IdentityConflictError,
    LinkConfirmationRequiredError,
    MissingEmailError,
    UserNotFoundError,
)
from app.db.repository import AuthRepository
from app.models.models import User, utcnow
from app.utils.token_encryption import encrypt_token, is_encryption_configured

logger = logging.getLogger(__name__)

_MAX_ATTEMPTS = 2


@dataclass
class ProviderProfile:
    """Profile attributes reported by a provider for one login attempt."""

    email: str | None = None
    name: str | None = None
    avatar_url: str | None = None
    email_verified: bool = False
    access_token: str | None = field(default=None, repr=False)
    refresh_token: str | None = field(default=None, repr=False)
    token_type: str = "bearer"
    expires_in: int | None = None
    granted_scopes: list[str] | None = None


@dataclass
class ExternalIdentity:
    """Transient identity built from a provider callback; never persisted verbatim."""

    provider: str
    external_id: str
    profile: ProviderProfile

    @property
    def email(self) -> str | None:
        return self.profile.email


def normalize_email(email: str | None) -> str | None:
    if not email:
        return None
    cleaned = email.strip().lower()
    return cleaned or None


class IdentityResolver:
    def __init__(self, db: Session, repository: AuthRepository | None = None):
        self.db = db
        self.repo = repository or AuthRepository(db)

    def find_or_create(self, provider: str, external_id: str, profile: ProviderProfile) -> User:
        """Return the canonical user for this external identity, creating or linking as needed.

        Raises:
            MissingEmailError: no existing link and the provider shared no email
            LinkConfirmationRequiredError: email belongs to an account that may not be auto-linked
            AccountLinkConflictError: the account already has a different identity for this provider
            IdentityConflictError: concurrent writers kept colliding after one retry
        """
        email = normalize_email(profile.email)
        for attempt in range(1, _MAX_ATTEMPTS + 1):
            try:
                user = self._resolve(provider, external_id, email, profile)
                break
            except IntegrityError as exc:
                self.repo.rollback()
                metrics.identity_race_retry()
                if attempt == _MAX_ATTEMPTS:
                    logger.error(
                        "Identity write conflict persisted after retry provider=%s email=%s",
                        provider,
                        email,
                    )
                    raise IdentityConflictError(email) from exc
                logger.warning(
                    "Identity write conflict provider=%s email=%s; re-reading and retrying",
                    provider,
                    email,
                )
        self._store_provider_tokens(user, provider, profile)
        return user

    def link_provider(self, user_id: str, provider: str, external_id: str) -> User:
        """Attach ``(provider, external_id)`` to ``user_id``. Re-linking is a no-op."""
        user = self.repo.get_user(user_id)
        if user is None:
            raise UserNotFoundError(user_id)

        existing = self.repo.find_identity_link(provider, external_id)
        if existing is not None:
            if existing.user_id != user.id:
                raise AccountLinkConflictError(provider)
            return user
        if self.repo.find_user_link(user.id, provider) is not None:
            logger.info("Provider %s already linked to user %s; keeping existing link", provider, user.id)
            return user

        try:
            self.repo.create_identity_link(user, provider, external_id)
        except IntegrityError as exc:
            owner = self.repo.find_identity_link(provider, external_id)
            if owner is not None and owner.user_id == user.id:
                return user
            raise AccountLinkConflictError(provider) from exc
        metrics.identity_linked(provider)
        return user

    # ------------------------------------------------------------------ internals
    def _resolve(
        self,
        provider: str,
        external_id: str,
        email: str | None,
        profile: ProviderProfile,
    ) -> User:
        link = self.repo.find_identity_link(provider, external_id)
        if link is not None:
            self.repo.touch_login(link.user)
            logger.info("Returning user %s via existing %s link", link.user_id, provider)
            return link.user

        if email is None:
            raise MissingEmailError(provider)

        existing = self.repo.find_user_by_email(email)
        if existing is not None:
            if not self._may_auto_link(existing, profile):
                logger.info(
                    "Refusing to auto-link %s to user %s: email not verified on both sides",
                    provider,
                    existing.id,
                )
                raise LinkConfirmationRequiredError(email, provider)
            if self.repo.find_user_link(existing.id, provider) is not None:
                # Same email, same provider, different account id
                raise AccountLinkConflictError(provider)
            user = self.repo.upsert_user(
                email=email,
                name=profile.name,
                avatar_url=profile.avatar_url,
                email_verified=profile.email_verified,
                link=(provider, external_id),
            )
            metrics.identity_linked(provider)
            logger.info("Linked %s to existing user %s by verified email", provider, user.id)
            return user

        user = self.repo.upsert_user(
            email=email,
            name=profile.name or email.split("@")[0],
            avatar_url=profile.avatar_url,
            email_verified=profile.email_verified,
            roles=list(settings.DEFAULT_USER_ROLES),
            link=(provider, external_id),
        )
        logger.info("Created user %s via %s", user.id, provider)
        return user

    @staticmethod
    def _may_auto_link(existing: User, profile: ProviderProfile) -> bool:
        return bool(profile.email_verified and existing.email_verified)

    def _store_provider_tokens(self, user: User, provider: str, profile: ProviderProfile) -> None:
        if not profile.access_token:
            return
        if not is_encryption_configured():
            logger.warning("Token encryption not configured; discarding %s tokens for user %s", provider, user.id)
            return

        expires_at = None
        if profile.expires_in:
            expires_at = utcnow() + dt.timedelta(seconds=int(profile.expires_in))
        self.repo.store_provider_tokens(
            user.id,
            provider,
            access_token_encrypted=encrypt_token(profile.access_token),
            refresh_token_encrypted=encrypt_token(profile.refresh_token) if profile.refresh_token else None,
            token_type=profile.token_type or "bearer",
            expires_at=expires_at,
            scopes=profile.granted_scopes,
        )
        logger.info("Stored encrypted %s tokens for user %s", provider, user.id)
