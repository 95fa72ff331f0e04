"""Downstream service catalog schemas."""
from __future__ import annotations

from pydantic import AliasChoices, Field

from ._base import CamelModel


class ServiceOut(CamelModel):
    id: str
    name: str
    domain: str
    callback_url: str
    allowed_scopes: list[str]
    requires_email_verification: bool
    enabled: bool
    token_ttl_seconds: int


class ServicesOut(CamelModel):
    services: list[ServiceOut]
    count: int


class ServiceEntry(CamelModel):
    """One service as written in a registry file; snake_case or camelCase keys."""

    id: str = Field(..., min_length=1)
    name: str | None = None
    domain: str = Field(..., min_length=1)
    callback_url: str = Field(..., min_length=1)
    allowed_scopes: list[str] = Field(default_factory=list)
    requires_email_verification: bool = False
    enabled: bool = True
    token_ttl_seconds: int = Field(
        default=3600,
        gt=0,
        validation_alias=AliasChoices("tokenTtlSeconds", "token_ttl_seconds", "tokenExpiration"),
    )
    client_id: str | None = None
    client_secret: str | None = None
