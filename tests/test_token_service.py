"""Service token issuance, revocation and introspection."""
import datetime as dt

import pytest

from app.core.config import TestSettings
from app.core.exceptions import (
    EmailVerificationRequiredError,
    InvalidServiceCredentialsError,
    InvalidTokenError,
    ScopeNotAllowedError,
    ServiceDisabledError,
    ServiceMismatchError,
    ServiceNotFoundError,
    TokenInactiveError,
    TokenNotFoundError,
    UserNotFoundError,
)
from app.core.security import TokenType, create_session_token, decode_token
from app.models.models import IssuedToken, utcnow
from app.services.service_registry import ServiceDescriptor, ServiceRegistry, build_service_registry
from app.services.token_service import TokenIssuanceService


@pytest.fixture
def registry():
    return build_service_registry(TestSettings())


@pytest.fixture
def svc(db_session, registry):
    return TokenIssuanceService(db_session, registry=registry)


@pytest.fixture
def user(make_user):
    return make_user("a@x.com", verified=True)


def test_issue_token_binds_service_and_scopes(svc, user):
    grant = svc.issue_token(user.id, "accessibooks", ["read:library", "read:profile"])

    claims = decode_token(grant.access_token, TokenType.SERVICE, audience="accessibooks")
    assert claims["sub"] == user.id
    assert claims["jti"] == grant.token_id
    assert grant.scopes == ["read:library", "read:profile"]
    assert grant.expires_in == 7200

    record = svc.repo.get_token(grant.token_id)
    assert record.service_id == "accessibooks"
    assert record.revoked is False


def test_empty_scope_request_grants_all_allowed(svc, user, registry):
    grant = svc.issue_token(user.id, "disapedia", [])
    assert set(grant.scopes) == registry.get("disapedia").allowed_scopes


def test_explicit_lifetime_overrides_service_default(svc, user):
    grant = svc.issue_token(user.id, "mapable", expires_in=120)
    assert grant.expires_in == 120
    assert grant.expires_at <= utcnow() + dt.timedelta(seconds=121)


def test_scopes_never_exceed_allowed_set_for_any_service(svc, user, registry):
    foreign = {"write:admin", "read:everything"}
    for service in registry.get_all_enabled():
        for scope in foreign | {s for other in registry.get_all_enabled() for s in other.allowed_scopes}:
            if scope in service.allowed_scopes:
                grant = svc.issue_token(user.id, service.id, [scope])
                assert set(grant.scopes) <= service.allowed_scopes
            else:
                with pytest.raises(ScopeNotAllowedError):
                    svc.issue_token(user.id, service.id, [scope])


def test_scope_check_precedes_user_lookup(svc):
    with pytest.raises(ScopeNotAllowedError) as exc_info:
        svc.issue_token("missing-user", "mapable", ["write:wiki"])
    assert exc_info.value.status_code == 403


def test_unknown_user(svc):
    with pytest.raises(UserNotFoundError):
        svc.issue_token("missing-user", "mapable", ["read:profile"])


def test_disabled_and_unknown_services(db_session, user):
    svc = TokenIssuanceService(db_session, registry=build_service_registry(TestSettings(DISABLED_SERVICES=["mapable"])))
    with pytest.raises(ServiceDisabledError):
        svc.issue_token(user.id, "mapable")
    with pytest.raises(ServiceDisabledError):
        svc.issue_token(user.id, "not-registered")


def test_email_verification_required_by_service(svc, make_user):
    unverified = make_user("new@x.com", verified=False)
    with pytest.raises(EmailVerificationRequiredError):
        svc.issue_token(unverified.id, "mapable")
    # mediawiki does not require a verified address
    assert svc.issue_token(unverified.id, "mediawiki").service_id == "mediawiki"


def test_service_credentials_checked_when_supplied(db_session, user):
    registry = ServiceRegistry(
        [
            ServiceDescriptor(
                id="library",
                name="Library",
                domain="library.example.org",
                callback_url="https://library.example.org/cb",
                allowed_scopes=frozenset({"read:profile"}),
                client_id="lib",
                client_secret="lib-secret",
            )
        ]
    )
    svc = TokenIssuanceService(db_session, registry=registry)
    assert svc.issue_token(user.id, "library", client_id="lib", client_secret="lib-secret")
    with pytest.raises(InvalidServiceCredentialsError):
        svc.issue_token(user.id, "library", client_id="lib", client_secret="nope")


class TestRevocation:
    def test_revoke_then_revoke_again(self, svc, user):
        grant = svc.issue_token(user.id, "mapable")

        first = svc.revoke_token(grant.token_id, "mapable")
        second = svc.revoke_token(grant.token_id, "mapable")

        assert first.message == "Token revoked successfully"
        assert second.already_revoked is True
        assert second.message == "Token already revoked"
        assert svc.repo.get_token(grant.token_id).revoked_at is not None

    def test_other_service_cannot_revoke(self, svc, user):
        grant = svc.issue_token(user.id, "mapable")
        with pytest.raises(ServiceMismatchError):
            svc.revoke_token(grant.token_id, "disapedia")
        assert svc.repo.get_token(grant.token_id).revoked is False

    def test_unknown_token(self, svc):
        with pytest.raises(TokenNotFoundError):
            svc.revoke_token("00000000-0000-0000-0000-000000000000", "mapable")

    def test_revocation_survives_service_being_disabled(self, db_session, svc, user):
        grant = svc.issue_token(user.id, "mapable")
        disabled = TokenIssuanceService(
            db_session, registry=build_service_registry(TestSettings(DISABLED_SERVICES=["mapable"]))
        )
        assert disabled.revoke_token(grant.token_id, "mapable").already_revoked is False


class TestIntrospection:
    def test_active_token(self, svc, user):
        grant = svc.issue_token(user.id, "mapable", ["read:email"])
        info = svc.introspect(grant.access_token, "mapable")
        assert info["active"] is True
        assert info["sub"] == user.id
        assert info["scopes"] == ["read:email"]
        assert info["exp"] == int(grant.expires_at.timestamp())

    def test_revoked_token_is_inactive(self, svc, user):
        grant = svc.issue_token(user.id, "mapable")
        svc.revoke_token(grant.token_id, "mapable")
        assert svc.introspect(grant.access_token) == {"active": False}

    def test_expired_record_is_inactive(self, db_session, svc, user):
        grant = svc.issue_token(user.id, "mapable")
        record = svc.repo.get_token(grant.token_id)
        record.expires_at = utcnow() - dt.timedelta(seconds=1)
        db_session.commit()
        assert svc.introspect(grant.access_token)["active"] is False

    def test_wrong_audience_and_garbage_are_inactive(self, svc, user):
        grant = svc.issue_token(user.id, "mapable")
        assert svc.introspect(grant.access_token, "disapedia") == {"active": False}
        assert svc.introspect("garbage") == {"active": False}

    def test_list_for_user_includes_revoked(self, svc, user):
        kept = svc.issue_token(user.id, "mapable")
        revoked = svc.issue_token(user.id, "mediawiki")
        svc.revoke_token(revoked.token_id, "mediawiki")

        ids = {t.id for t in svc.list_for_user(user.id)}
        assert ids == {kept.token_id, revoked.token_id}


class TestRotation:
    def test_rotation_revokes_old_and_keeps_scopes(self, svc, user):
        old = svc.issue_token(user.id, "accessibooks", ["read:library"])
        new = svc.rotate_token(old.token_id, "accessibooks")

        assert new.token_id != old.token_id
        assert new.scopes == ["read:library"]
        assert new.expires_in == 7200
        assert svc.repo.get_token(old.token_id).revoked is True
        assert svc.repo.get_token(new.token_id).is_active is True
        assert svc.introspect(old.access_token) == {"active": False}
        assert svc.introspect(new.access_token, "accessibooks")["active"] is True

    def test_rotation_may_narrow_but_not_widen_scopes(self, svc, user):
        old = svc.issue_token(user.id, "mapable", ["read:profile", "read:email"])
        narrowed = svc.rotate_token(old.token_id, "mapable", ["read:email"])
        assert narrowed.scopes == ["read:email"]

        with pytest.raises(ScopeNotAllowedError) as exc_info:
            svc.rotate_token(narrowed.token_id, "mapable", ["read:email", "read:services"])
        assert exc_info.value.details["scopes"] == ["read:services"]
        assert svc.repo.get_token(narrowed.token_id).revoked is False

    def test_rotated_token_cannot_be_rotated_again(self, svc, user):
        old = svc.issue_token(user.id, "mapable")
        svc.rotate_token(old.token_id, "mapable")
        with pytest.raises(TokenInactiveError):
            svc.rotate_token(old.token_id, "mapable")
        assert len(svc.list_for_user(user.id)) == 2

    def test_expired_token_cannot_be_rotated(self, db_session, svc, user):
        old = svc.issue_token(user.id, "mapable")
        record = svc.repo.get_token(old.token_id)
        record.expires_at = utcnow() - dt.timedelta(seconds=1)
        db_session.commit()
        with pytest.raises(TokenInactiveError):
            svc.rotate_token(old.token_id, "mapable")

    def test_losing_a_concurrent_rotation_writes_nothing(self, db_session, svc, user):
        old = svc.issue_token(user.id, "mapable")
        replace = svc.repo.replace_token

        def revoked_by_another_worker(old_token_id, **kwargs):
            svc.repo.mark_token_revoked(svc.repo.get_token(old_token_id))
            return replace(old_token_id, **kwargs)

        svc.repo.replace_token = revoked_by_another_worker

        with pytest.raises(TokenInactiveError):
            svc.rotate_token(old.token_id, "mapable")
        assert db_session.query(IssuedToken).count() == 1

    def test_wrong_service_owner_or_id(self, svc, user, make_user):
        old = svc.issue_token(user.id, "mapable")
        with pytest.raises(ServiceMismatchError):
            svc.rotate_token(old.token_id, "disapedia")
        other = make_user("b@x.com")
        with pytest.raises(TokenNotFoundError):
            svc.rotate_token(old.token_id, "mapable", subject_user_id=other.id)
        with pytest.raises(TokenNotFoundError):
            svc.rotate_token("missing", "mapable")

    def test_rotation_needs_an_enabled_service(self, db_session, svc, user):
        old = svc.issue_token(user.id, "mapable")
        disabled = TokenIssuanceService(
            db_session, registry=build_service_registry(TestSettings(DISABLED_SERVICES=["mapable"]))
        )
        with pytest.raises(ServiceDisabledError):
            disabled.rotate_token(old.token_id, "mapable")
        assert svc.repo.get_token(old.token_id).revoked is False


class TestExchange:
    def test_exchange_issues_token_for_target_and_keeps_source(self, svc, user):
        source = svc.issue_token(user.id, "mapable", ["read:profile"])
        target = svc.exchange_token(source.access_token, "mediawiki", ["read:profile", "write:wiki"])

        claims = decode_token(target.access_token, TokenType.SERVICE, audience="mediawiki")
        assert claims["sub"] == user.id
        assert target.service_id == "mediawiki"
        assert target.scopes == ["read:profile", "write:wiki"]
        assert target.expires_in == 86400
        assert svc.introspect(source.access_token, "mapable")["active"] is True

    def test_exchange_defaults_to_all_target_scopes(self, svc, user, registry):
        source = svc.issue_token(user.id, "mapable")
        target = svc.exchange_token(source.access_token, "disapedia")
        assert set(target.scopes) == registry.get("disapedia").allowed_scopes

    def test_exchange_applies_target_rules(self, svc, user, make_user):
        source = svc.issue_token(user.id, "mapable")
        with pytest.raises(ScopeNotAllowedError):
            svc.exchange_token(source.access_token, "disapedia", ["write:wiki"])
        with pytest.raises(ServiceDisabledError):
            svc.exchange_token(source.access_token, "nope")

        unverified = make_user("u@x.com", verified=False)
        open_source = svc.issue_token(unverified.id, "cursor-replit")
        with pytest.raises(EmailVerificationRequiredError):
            svc.exchange_token(open_source.access_token, "mapable")

    def test_revoked_expired_or_forged_sources_are_refused(self, db_session, svc, user):
        revoked = svc.issue_token(user.id, "mapable")
        svc.revoke_token(revoked.token_id, "mapable")
        with pytest.raises(InvalidTokenError) as exc_info:
            svc.exchange_token(revoked.access_token, "mediawiki")
        assert exc_info.value.details["reason"] == "revoked"

        expired = svc.issue_token(user.id, "mapable")
        record = svc.repo.get_token(expired.token_id)
        record.expires_at = utcnow() - dt.timedelta(seconds=1)
        db_session.commit()
        with pytest.raises(InvalidTokenError) as exc_info:
            svc.exchange_token(expired.access_token, "mediawiki")
        assert exc_info.value.details["reason"] == "expired"

        with pytest.raises(InvalidTokenError):
            svc.exchange_token("garbage", "mediawiki")
        session_token = create_session_token("sid-1", user.id, utcnow() + dt.timedelta(hours=1))
        with pytest.raises(InvalidTokenError):
            svc.exchange_token(session_token, "mediawiki")


def test_registry_lookup_errors_are_typed(registry):
    with pytest.raises(ServiceNotFoundError):
        registry.get("nope")
