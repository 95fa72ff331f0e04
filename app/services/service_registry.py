"""Catalog of downstream services allowed to request SSO tokens.

The registry is built once per process from configuration and never mutated
afterwards, so it is safe to share between concurrent requests.
"""
from __future__ import annotations

import hmac
import json
import logging
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Iterable
from urllib.parse import urlsplit

from pydantic import ValidationError

from app.core.config import BaseAppSettings, settings
from app.core.exceptions import ServiceNotFoundError
from app.models.schemas import ServiceEntry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceDescriptor:
    id: str
    name: str
    domain: str
    callback_url: str
    allowed_scopes: frozenset[str]
    requires_email_verification: bool = False
    enabled: bool = True
    token_ttl_seconds: int = 3600
    client_id: str | None = None
    client_secret: str | None = field(default=None, repr=False)

    @property
    def has_credentials(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def to_public_dict(self) -> dict[str, Any]:
        """Shape returned to API callers; credentials never leave the process."""
        return {
            "id": self.id,
            "name": self.name,
            "domain": self.domain,
            "callback_url": self.callback_url,
            "allowed_scopes": sorted(self.allowed_scopes),
            "requires_email_verification": self.requires_email_verification,
            "enabled": self.enabled,
            "token_ttl_seconds": self.token_ttl_seconds,
        }


class ServiceRegistry:
    """Read-only lookup of registered services, preserving registration order."""

    def __init__(self, services: Iterable[ServiceDescriptor]):
        self._services: dict[str, ServiceDescriptor] = {}
        for descriptor in services:
            if descriptor.id in self._services:
                raise ValueError(f"Duplicate service id '{descriptor.id}' in registry")
            self._services[descriptor.id] = descriptor

    def __contains__(self, service_id: object) -> bool:
        return service_id in self._services

    def __len__(self) -> int:
        return len(self._services)

    def get_all_enabled(self) -> list[ServiceDescriptor]:
        return [s for s in self._services.values() if s.enabled]

    def is_enabled(self, service_id: str) -> bool:
        descriptor = self._services.get(service_id)
        return bool(descriptor and descriptor.enabled)

    def get(self, service_id: str) -> ServiceDescriptor:
        try:
            return self._services[service_id]
        except KeyError:
            raise ServiceNotFoundError(service_id) from None

    def validate_scopes(self, service_id: str, scopes: Iterable[str]) -> bool:
        descriptor = self._services.get(service_id)
        if descriptor is None:
            return False
        return set(scopes) <= descriptor.allowed_scopes

    def validate_callback_url(self, service_id: str, url: str) -> bool:
        """Same scheme, host and port as the registered callback, and a path under it."""
        descriptor = self._services.get(service_id)
        if descriptor is None or not url:
            return False
        try:
            candidate, registered = urlsplit(url), urlsplit(descriptor.callback_url)
            same_origin = (candidate.scheme, candidate.hostname, candidate.port) == (
                registered.scheme,
                registered.hostname,
                registered.port,
            )
        except ValueError:
            return False
        return same_origin and candidate.path.startswith(registered.path)

    def validate_credentials(self, service_id: str, client_id: str, client_secret: str) -> bool:
        descriptor = self._services.get(service_id)
        if descriptor is None or not descriptor.has_credentials:
            return False
        id_ok = hmac.compare_digest(str(descriptor.client_id), client_id or "")
        secret_ok = hmac.compare_digest(str(descriptor.client_secret), client_secret or "")
        return id_ok and secret_ok


def _default_catalog(cfg: BaseAppSettings) -> list[dict[str, Any]]:
    ad_id = cfg.AD_ID_DOMAIN.rstrip("/")
    ad_id_host = ad_id.split("://", 1)[-1]
    return [
        {
            "id": "mapable",
            "name": "MapAble",
            "domain": "mapable.com.au",
            "callback_url": cfg.MAPABLE_CALLBACK_URL or "https://mapable.com.au/auth/callback",
            "allowed_scopes": ["read:profile", "read:email", "read:services"],
            "token_ttl_seconds": 3600,
            "requires_email_verification": True,
        },
        {
            "id": "accessibooks",
            "name": "AccessiBooks",
            "domain": "accessibooks.com.au",
            "callback_url": cfg.ACCESSIBOOKS_CALLBACK_URL or "https://accessibooks.com.au/auth/callback",
            "allowed_scopes": ["read:profile", "read:email", "read:library"],
            "token_ttl_seconds": 7200,
            "requires_email_verification": True,
        },
        {
            "id": "disapedia",
            "name": "Disapedia",
            "domain": "disapedia.au",
            "callback_url": cfg.DISAPEDIA_CALLBACK_URL or "https://disapedia.au/auth/callback",
            "allowed_scopes": ["read:profile", "read:email", "read:wiki"],
            "token_ttl_seconds": 3600,
            "requires_email_verification": True,
        },
        {
            "id": "mediawiki",
            "name": "MediaWiki",
            "domain": ad_id_host,
            "callback_url": cfg.MEDIAWIKI_CALLBACK_URL or f"{ad_id}/api/auth/callback/mediawiki",
            "allowed_scopes": ["read:profile", "read:email", "write:wiki"],
            "token_ttl_seconds": 86400,
            "requires_email_verification": False,
        },
        {
            "id": "cursor-replit",
            "name": "Cursor/Replit",
            "domain": ad_id_host,
            "callback_url": cfg.CURSOR_REPLIT_CALLBACK_URL or f"{ad_id}/api/auth/callback/cursor-replit",
            "allowed_scopes": ["read:profile", "read:email", "read:code"],
            "token_ttl_seconds": 1800,
            "requires_email_verification": False,
        },
    ]


def _load_catalog_file(path: str) -> list[dict[str, Any]]:
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    entries = raw.get("services", raw) if isinstance(raw, dict) else raw
    if not isinstance(entries, list):
        raise ValueError(f"Service registry file {path} must contain a list of services")
    return entries


def _descriptor_from_entry(entry: ServiceEntry, disabled: set[str]) -> ServiceDescriptor:
    return ServiceDescriptor(
        id=entry.id,
        name=entry.name or entry.id,
        domain=entry.domain,
        callback_url=entry.callback_url,
        allowed_scopes=frozenset(entry.allowed_scopes),
        requires_email_verification=entry.requires_email_verification,
        enabled=entry.enabled and entry.id not in disabled,
        token_ttl_seconds=entry.token_ttl_seconds,
        client_id=entry.client_id,
        client_secret=entry.client_secret,
    )


def _parse_entries(raw_entries: list[Any], source: str) -> list[ServiceEntry]:
    entries = []
    for position, raw in enumerate(raw_entries):
        try:
            entries.append(ServiceEntry.model_validate(raw))
        except ValidationError as exc:
            raise ValueError(f"Invalid service entry #{position} in {source}: {exc}") from exc
    return entries


def build_service_registry(cfg: BaseAppSettings | None = None) -> ServiceRegistry:
    """Build the registry from ``SERVICE_REGISTRY_PATH`` or the built-in catalog.

    Raises ``ValueError`` naming the offending entry when the catalog is malformed.
    """
    cfg = cfg or settings
    if cfg.SERVICE_REGISTRY_PATH:
        source = cfg.SERVICE_REGISTRY_PATH
        raw_entries = _load_catalog_file(source)
    else:
        source = "built-in catalog"
        raw_entries = _default_catalog(cfg)
    disabled = {s.strip() for s in cfg.DISABLED_SERVICES if s.strip()}
    registry = ServiceRegistry(_descriptor_from_entry(e, disabled) for e in _parse_entries(raw_entries, source))
    logger.info(
        "Service registry loaded from %s (%d services, %d enabled)",
        source,
        len(registry),
        len(registry.get_all_enabled()),
    )
    return registry


@lru_cache
def get_service_registry() -> ServiceRegistry:
    return build_service_registry()
