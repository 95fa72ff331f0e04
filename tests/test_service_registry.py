"""Tests for the downstream service catalog."""
import json

import pytest

from app.core.config import TestSettings
from app.core.exceptions import ServiceNotFoundError
from app.services.service_registry import ServiceDescriptor, ServiceRegistry, build_service_registry


def _descriptor(service_id: str = "svc", **overrides) -> ServiceDescriptor:
    values = {
        "id": service_id,
        "name": service_id.title(),
        "domain": f"{service_id}.example.com",
        "callback_url": f"https://{service_id}.example.com/auth/callback",
        "allowed_scopes": frozenset({"read:profile", "read:email"}),
    }
    values.update(overrides)
    return ServiceDescriptor(**values)


def test_default_catalog_lists_every_service():
    registry = build_service_registry(TestSettings())
    ids = [s.id for s in registry.get_all_enabled()]
    assert ids == ["mapable", "accessibooks", "disapedia", "mediawiki", "cursor-replit"]

    mapable = registry.get("mapable")
    assert mapable.requires_email_verification is True
    assert mapable.token_ttl_seconds == 3600
    assert "read:services" in mapable.allowed_scopes
    assert registry.get("mediawiki").token_ttl_seconds == 86400
    assert registry.get("cursor-replit").requires_email_verification is False


def test_disabled_services_stay_registered_but_not_enabled():
    registry = build_service_registry(TestSettings(DISABLED_SERVICES=["disapedia"]))
    assert "disapedia" in registry
    assert registry.is_enabled("disapedia") is False
    assert all(s.id != "disapedia" for s in registry.get_all_enabled())


def test_unknown_service_lookup():
    registry = ServiceRegistry([_descriptor()])
    assert registry.is_enabled("nope") is False
    with pytest.raises(ServiceNotFoundError) as exc_info:
        registry.get("nope")
    assert exc_info.value.code == "SVC202"


def test_duplicate_ids_rejected():
    with pytest.raises(ValueError, match="Duplicate service id"):
        ServiceRegistry([_descriptor("a"), _descriptor("a")])


def test_validate_scopes_requires_subset():
    registry = ServiceRegistry([_descriptor()])
    assert registry.validate_scopes("svc", ["read:profile"]) is True
    assert registry.validate_scopes("svc", []) is True
    assert registry.validate_scopes("svc", ["read:profile", "write:wiki"]) is False
    assert registry.validate_scopes("other", ["read:profile"]) is False


def test_validate_callback_url_requires_same_origin_and_path():
    registry = ServiceRegistry([_descriptor(), _descriptor("bare", callback_url="https://bare.example.com")])
    assert registry.validate_callback_url("svc", "https://svc.example.com/auth/callback?next=/home")
    assert not registry.validate_callback_url("svc", "https://evil.example.com/auth/callback")
    assert not registry.validate_callback_url("svc", "http://svc.example.com/auth/callback")
    assert not registry.validate_callback_url("svc", "https://svc.example.com:8443/auth/callback")
    assert not registry.validate_callback_url("svc", "https://svc.example.com/other")
    assert not registry.validate_callback_url("svc", "/auth/callback")
    assert not registry.validate_callback_url("svc", "")
    assert not registry.validate_callback_url("unknown", "https://svc.example.com/auth/callback")
    # Without a registered path the host still has to match exactly
    assert registry.validate_callback_url("bare", "https://bare.example.com/cb")
    assert not registry.validate_callback_url("bare", "https://bare.example.com.evil.example/cb")


def test_validate_credentials():
    registry = ServiceRegistry(
        [_descriptor(client_id="cid", client_secret="s3cret"), _descriptor("open")]
    )
    assert registry.validate_credentials("svc", "cid", "s3cret") is True
    assert registry.validate_credentials("svc", "cid", "wrong") is False
    # A service without credentials never authenticates
    assert registry.validate_credentials("open", "", "") is False


def test_public_dict_hides_credentials():
    public = _descriptor(client_id="cid", client_secret="s3cret").to_public_dict()
    assert "client_secret" not in public
    assert "client_id" not in public
    assert public["allowed_scopes"] == ["read:email", "read:profile"]


def test_catalog_file_accepts_camel_case(tmp_path):
    path = tmp_path / "services.json"
    path.write_text(
        json.dumps(
            {
                "services": [
                    {
                        "id": "library",
                        "name": "Library",
                        "domain": "library.example.org",
                        "callbackUrl": "https://library.example.org/cb",
                        "allowedScopes": ["read:profile"],
                        "requiresEmailVerification": True,
                        "tokenExpiration": 900,
                        "clientId": "lib",
                        "clientSecret": "lib-secret",
                    }
                ]
            }
        )
    )
    registry = build_service_registry(TestSettings(SERVICE_REGISTRY_PATH=str(path)))
    library = registry.get("library")
    assert library.callback_url == "https://library.example.org/cb"
    assert library.token_ttl_seconds == 900
    assert library.requires_email_verification is True
    assert library.has_credentials
    assert library.client_id == "lib"
    assert library.allowed_scopes == frozenset({"read:profile"})


def test_catalog_file_accepts_snake_case(tmp_path):
    path = tmp_path / "services.json"
    path.write_text(
        json.dumps(
            [
                {
                    "id": "atlas",
                    "domain": "atlas.example.org",
                    "callback_url": "https://atlas.example.org/cb",
                    "allowed_scopes": ["read:email"],
                    "token_ttl_seconds": 60,
                    "enabled": False,
                }
            ]
        )
    )
    registry = build_service_registry(TestSettings(SERVICE_REGISTRY_PATH=str(path)))
    atlas = registry.get("atlas")
    assert atlas.name == "atlas"
    assert atlas.token_ttl_seconds == 60
    assert registry.is_enabled("atlas") is False


@pytest.mark.parametrize(
    "entry, field",
    [
        ({"id": "broken", "domain": "broken.example.org"}, "callbackUrl"),
        ({"id": "broken", "domain": "broken.example.org", "callbackUrl": "https://b/cb", "tokenTtlSeconds": 0}, "greater than 0"),
        ({"id": "broken", "domain": "broken.example.org", "callbackUrl": "https://b/cb", "allowedScopes": "read:profile"}, "allowedScopes"),
        ("not-an-object", "#0"),
    ],
)
def test_malformed_catalog_entry_is_reported(tmp_path, entry, field):
    path = tmp_path / "services.json"
    path.write_text(json.dumps({"services": [entry]}))
    with pytest.raises(ValueError, match="Invalid service entry #0") as exc_info:
        build_service_registry(TestSettings(SERVICE_REGISTRY_PATH=str(path)))
    assert field in str(exc_info.value)
    assert str(path) in str(exc_info.value)


def test_catalog_file_must_hold_a_list(tmp_path):
    path = tmp_path / "services.json"
    path.write_text(json.dumps({"services": {"id": "x"}}))
    with pytest.raises(ValueError, match="must contain a list"):
        build_service_registry(TestSettings(SERVICE_REGISTRY_PATH=str(path)))
