"""Browser-facing OAuth endpoints end to end against fake identity providers."""
from urllib.parse import parse_qs, urlparse

import httpx

from app.core.config import settings
from app.services.oauth.state_store import get_state_store


def _query(url: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


def _start(client, path: str = "/auth/google", **params) -> str:
    resp = client.get(path, params=params)
    assert resp.status_code == 307, resp.text
    assert resp.cookies.get(settings.OAUTH_STATE_COOKIE_NAME)
    return _query(resp.headers["location"])["state"]


def _assert_error_redirect(resp, code: str) -> None:
    assert resp.status_code == 302, resp.text
    location = resp.headers["location"]
    assert location.startswith(settings.AUTH_ERROR_URL)
    assert _query(location)["code"] == code


def test_login_redirects_to_provider_with_state_cookie(client):
    resp = client.get("/auth/google", params={"redirect_to": "/dashboard"})

    assert resp.status_code == 307
    location = resp.headers["location"]
    assert location.startswith("https://accounts.google.com/o/oauth2/v2/auth?")
    params = _query(location)
    assert params["redirect_uri"] == "https://api.example.com/auth/google/callback"
    assert resp.cookies[settings.OAUTH_STATE_COOKIE_NAME] == params["state"]
    assert "httponly" in resp.headers["set-cookie"].lower()


def test_callback_sets_session_and_lands_on_redirect_target(client):
    state = _start(client, redirect_to="/dashboard")
    resp = client.get("/auth/google/callback", params={"code": "4/abc", "state": state})

    assert resp.status_code == 302, resp.text
    assert resp.headers["location"] == "https://app.example.com/dashboard"
    assert resp.cookies.get(settings.SESSION_COOKIE_NAME)

    session = client.get("/auth/session").json()
    assert session["authenticated"] is True
    assert session["provider"] == "google"
    assert session["user"]["email"] == "a@x.com"
    assert session["user"]["linkedProviders"] == ["google"]


def test_google_then_microsoft_share_one_account(client):
    client.get("/auth/google/callback", params={"code": "c", "state": _start(client)})
    client.get("/auth/microsoft/callback", params={"code": "c", "state": _start(client, "/auth/microsoft")})

    user = client.get("/auth/session").json()["user"]
    assert user["linkedProviders"] == ["google", "microsoft"]


def test_callback_without_state_cookie_is_rejected(client):
    state = _start(client)
    client.cookies.clear()

    resp = client.get("/auth/google/callback", params={"code": "c", "state": state})
    _assert_error_redirect(resp, "AUTH003")
    assert settings.SESSION_COOKIE_NAME not in resp.cookies


def test_replayed_callback_is_rejected(client):
    state = _start(client)
    params = {"code": "c", "state": state}
    assert client.get("/auth/google/callback", params=params).status_code == 302

    # Put the consumed state back in the browser and try again
    client.cookies.set(settings.OAUTH_STATE_COOKIE_NAME, state)
    _assert_error_redirect(client.get("/auth/google/callback", params=params), "AUTH003")


def test_provider_error_redirects_to_error_page(client):
    state = _start(client)
    resp = client.get(
        "/auth/google/callback",
        params={"error": "access_denied", "error_description": "denied", "state": state},
    )
    _assert_error_redirect(resp, "AUTH004")


def test_unreachable_provider_redirects_to_error_page(client, idp):
    idp.failures["oauth2.googleapis.com"] = httpx.ConnectError("connection refused")
    state = _start(client)
    _assert_error_redirect(client.get("/auth/google/callback", params={"code": "c", "state": state}), "AUTH007")


def test_unknown_and_disabled_providers_redirect_with_codes(client):
    _assert_error_redirect(client.get("/auth/myspace"), "AUTH001")
    _assert_error_redirect(client.get("/auth/facebook"), "AUTH002")


def test_open_redirect_is_refused(client):
    resp = client.get("/auth/google", params={"redirect_to": "https://evil.example.net/steal"})
    _assert_error_redirect(resp, "AUTH008")


def test_generic_sso_without_configuration_returns_json_error(client):
    resp = client.get("/auth/sso/oauth2", params={"callback": "/"})
    assert resp.status_code == 403
    assert resp.json() == {"error": "SSO failed", "code": "AUTH002"}


class TestServiceLogin:
    def test_menu_lists_providers_for_service(self, client):
        resp = client.get("/auth/service/mapable/login", params={"callback": "https://mapable.com.au/auth/callback"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["service"]["id"] == "mapable"
        assert body["loginUrl"] == "/auth/service/mapable/login"
        ids = [p["id"] for p in body["providers"]]
        assert ids == ["google", "microsoft"]
        assert "serviceId=mapable" in body["providers"][0]["authUrl"]

    def test_disabled_service_is_refused(self, client):
        resp = client.get("/auth/service/unknown-service/login")
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "SVC201"

    def test_service_login_returns_token_to_service_callback(self, client):
        state = _start(client, "/auth/service/mapable/login", provider="google", scope="read:profile read:email")
        resp = client.get("/auth/google/callback", params={"code": "c", "state": state})

        assert resp.status_code == 302
        location = resp.headers["location"]
        assert location.startswith("https://mapable.com.au/auth/callback?")
        params = _query(location)
        assert params["token"]
        assert params["expires_in"] == "3600"

        introspection = client.post("/tokens/introspect", json={"token": params["token"], "serviceId": "mapable"})
        assert introspection.json()["active"] is True
        assert introspection.json()["tokenId"] == params["token_id"]
        assert introspection.json()["scopes"] == ["read:email", "read:profile"]

    def test_forbidden_scope_redirects_to_error(self, client):
        resp = client.get(
            "/auth/service/mapable/login", params={"provider": "google", "scope": "write:wiki"}
        )
        _assert_error_redirect(resp, "SVC203")

    def test_service_login_refuses_another_services_callback(self, client):
        resp = client.get(
            "/auth/service/mapable/login",
            params={"provider": "google", "callback": "https://accessibooks.com.au/auth/callback"},
        )
        _assert_error_redirect(resp, "AUTH008")
        assert get_state_store().pending_count() == 0

    def test_service_login_refuses_frontend_as_token_target(self, client):
        resp = client.get(
            "/auth/google",
            params={"serviceId": "mapable", "redirect_to": "https://app.example.com/collect"},
        )
        _assert_error_redirect(resp, "AUTH008")

    def test_service_login_accepts_path_under_registered_callback(self, client):
        state = _start(
            client,
            "/auth/service/mapable/login",
            provider="google",
            callback="https://mapable.com.au/auth/callback?next=/maps",
        )
        resp = client.get("/auth/google/callback", params={"code": "c", "state": state})
        assert resp.status_code == 302
        location = resp.headers["location"]
        assert urlparse(location).hostname == "mapable.com.au"
        assert _query(location)["next"] == "/maps"
