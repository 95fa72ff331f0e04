"""Service token schemas."""
from __future__ import annotations

import datetime as dt

from pydantic import Field

from ._base import CamelModel


class IssueTokenRequest(CamelModel):
    service_id: str = Field(..., min_length=1)
    scopes: list[str] = Field(default_factory=list)
    expires_in: int | None = Field(default=None, gt=0, le=86400 * 30)
    client_id: str | None = None
    client_secret: str | None = None


class IssuedTokenOut(CamelModel):
    token_id: str
    access_token: str
    token_type: str = "bearer"
    service_id: str
    scopes: list[str]
    expires_in: int
    expires_at: dt.datetime


class RevokeTokenRequest(CamelModel):
    token_id: str = Field(..., min_length=1)
    service_id: str = Field(..., min_length=1)
    client_id: str | None = None
    client_secret: str | None = None


class RevokeTokenOut(CamelModel):
    success: bool
    message: str


class RotateTokenRequest(CamelModel):
    token_id: str = Field(..., min_length=1)
    service_id: str = Field(..., min_length=1)
    scopes: list[str] = Field(default_factory=list)


class ExchangeTokenRequest(CamelModel):
    token: str | None = None
    target_service_id: str = Field(..., min_length=1)
    scopes: list[str] = Field(default_factory=list)


class IntrospectRequest(CamelModel):
    token: str
    service_id: str | None = None


class IntrospectOut(CamelModel):
    active: bool
    token_id: str | None = None
    service_id: str | None = None
    sub: str | None = None
    scopes: list[str] | None = None
    exp: int | None = None


class TokenRecordOut(CamelModel):
    token_id: str
    service_id: str
    scopes: list[str]
    issued_at: dt.datetime
    expires_at: dt.datetime
    revoked: bool
    revoked_at: dt.datetime | None = None
