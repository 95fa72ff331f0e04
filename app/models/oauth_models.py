"""
Provider token storage.

Access and refresh tokens returned by an identity provider during sign-in are
kept per user and provider so later integrations can call the provider on the
user's behalf. Plaintext tokens never reach the database: values are
encrypted with ``app.utils.token_encryption`` before they are assigned, and
are dropped entirely when encryption is not configured.
"""
from __future__ import annotations

import datetime as dt
from typing import TYPE_CHECKING

from sqlalchemy import JSON, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from app.db.base_class import Base

if TYPE_CHECKING:
    from app.models.models import User


class OAuthToken(Base):
    """One encrypted token set per (user, provider); a later login overwrites it."""

    __tablename__ = "oauth_tokens"
    __table_args__ = (
        Index("ix_oauth_tokens_user_provider", "user_id", "provider", unique=True),
        Index("ix_oauth_tokens_expires", "expires_at"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("user.id", ondelete="CASCADE"), index=True)
    provider: Mapped[str] = mapped_column(String(32), index=True)

    access_token_encrypted: Mapped[str] = mapped_column(Text)
    refresh_token_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    token_type: Mapped[str] = mapped_column(String(50), default="bearer")
    expires_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    scopes: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[dt.datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )
    revoked_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    user: Mapped[User] = relationship("User", back_populates="oauth_tokens")

    def __repr__(self) -> str:
        revoked = " (REVOKED)" if self.revoked_at else ""
        return f"<OAuthToken(id={self.id}, user_id={self.user_id}, provider={self.provider}{revoked})>"

    @property
    def has_refresh_token(self) -> bool:
        return bool(self.refresh_token_encrypted) and self.revoked_at is None
