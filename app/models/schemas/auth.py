"""Authentication-related schemas."""
from __future__ import annotations

import datetime as dt

from pydantic import Field

from ._base import CamelModel


class UserOut(CamelModel):
    id: str
    email: str
    name: str | None = None
    avatar_url: str | None = None
    email_verified: bool = False
    roles: list[str] = Field(default_factory=list)
    verification_status: str
    linked_providers: list[str] = Field(default_factory=list)
    created_at: dt.datetime | None = None
    last_login: dt.datetime | None = None


class SessionOut(CamelModel):
    authenticated: bool
    user: UserOut | None = None
    provider: str | None = None
    expires_at: dt.datetime | None = None


class ProviderInfo(CamelModel):
    id: str
    name: str
    auth_url: str


class ProvidersOut(CamelModel):
    providers: list[ProviderInfo]


class ServiceSummary(CamelModel):
    id: str
    name: str
    domain: str


class ServiceLoginOut(CamelModel):
    """Provider menu for a service that started a login without choosing a provider."""

    service: ServiceSummary
    providers: list[ProviderInfo]
    login_url: str


class MessageOut(CamelModel):
    success: bool = True
    message: str
