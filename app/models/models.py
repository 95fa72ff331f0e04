from __future__ import annotations

import datetime as dt
import enum
import uuid
from typing import TYPE_CHECKING

from sqlalchemy import JSON, Boolean, DateTime, Enum, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from app.db.base_class import Base

if TYPE_CHECKING:
    from app.models.oauth_models import OAuthToken
else:
    # Import at runtime for SQLAlchemy relationship resolution
    from app.models import oauth_models  # noqa: F401
    OAuthToken = "OAuthToken"


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def ensure_utc(value: dt.datetime) -> dt.datetime:
    """SQLite hands back naive datetimes even for timezone-aware columns."""
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value


def _new_id() -> str:
    return uuid.uuid4().hex


class IdentityProvider(str, enum.Enum):
    """External identity providers the bridge federates."""
    GOOGLE = "google"
    MICROSOFT = "microsoft"
    FACEBOOK = "facebook"
    OAUTH2 = "oauth2"

    @property
    def display_name(self) -> str:
        names = {
            IdentityProvider.GOOGLE: "Google",
            IdentityProvider.MICROSOFT: "Microsoft",
            IdentityProvider.FACEBOOK: "Facebook",
            IdentityProvider.OAUTH2: "Single Sign-On",
        }
        return names[self]


class VerificationStatus(str, enum.Enum):
    UNVERIFIED = "unverified"
    VERIFIED = "verified"
    REJECTED = "rejected"


class User(Base):
    """Canonical user: one row per email, reachable through many external identities."""

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    roles: Mapped[list[str]] = mapped_column(JSON, default=list)
    verification_status: Mapped[VerificationStatus] = mapped_column(
        Enum(VerificationStatus, native_enum=False, length=20),
        default=VerificationStatus.UNVERIFIED,
    )
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
    )
    last_login: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    identity_links: Mapped[list[IdentityLink]] = relationship(
        "IdentityLink",
        back_populates="user",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="IdentityLink.created_at",
    )
    oauth_tokens: Mapped[list[OAuthToken]] = relationship(  # type: ignore[valid-type]
        "OAuthToken",
        back_populates="user",
        cascade="all, delete-orphan",
    )

    @property
    def linked_providers(self) -> set[str]:
        return {link.provider for link in self.identity_links}

    def has_role(self, role: str) -> bool:
        return role.lower() in {r.lower() for r in (self.roles or [])}


class IdentityLink(Base):
    """An external (provider, external_id) identity attached to a canonical user."""

    __tablename__ = "identity_link"
    __table_args__ = (
        UniqueConstraint("provider", "external_id", name="uq_identity_link_provider_external"),
        UniqueConstraint("user_id", "provider", name="uq_identity_link_user_provider"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("user.id", ondelete="CASCADE"), index=True)
    provider: Mapped[str] = mapped_column(String(32))
    external_id: Mapped[str] = mapped_column(String(255))
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
    )

    user: Mapped[User] = relationship("User", back_populates="identity_links")


class AuthSession(Base):
    """Server-side session record; the browser only ever holds the opaque id."""

    __tablename__ = "auth_session"

    # SHA-256 of the opaque session value handed to the browser
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("user.id", ondelete="CASCADE"), index=True)
    provider: Mapped[str] = mapped_column(String(32))
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    expires_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), index=True)

    user: Mapped[User] = relationship("User", lazy="joined")

    def is_expired(self, now: dt.datetime | None = None) -> bool:
        return ensure_utc(self.expires_at) <= (now or utcnow())


class IssuedToken(Base):
    """Audit record of a token minted for a downstream service. Never deleted."""

    __tablename__ = "issued_token"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    service_id: Mapped[str] = mapped_column(String(64), index=True)
    subject_user_id: Mapped[str] = mapped_column(ForeignKey("user.id"), index=True)
    scopes: Mapped[list[str]] = mapped_column(JSON, default=list)
    issued_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    expires_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True))
    revoked: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    revoked_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def is_expired(self, now: dt.datetime | None = None) -> bool:
        return ensure_utc(self.expires_at) <= (now or utcnow())

    @property
    def is_active(self) -> bool:
        return not self.revoked and not self.is_expired()
