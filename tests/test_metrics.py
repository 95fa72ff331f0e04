from app import metrics


def test_metrics_endpoint_requires_staff(client, make_user, login_as):
    assert client.get("/metrics").status_code == 401
    login_as(make_user())
    assert client.get("/metrics").status_code == 403


def test_metrics_endpoint_exposes_sso_counters(client, make_user, login_as):
    login_as(make_user("ops@example.org", roles=["staff"]))
    metrics.oauth_login_initiated("google")
    metrics.service_token_issued("mapable")
    metrics.oauth_provider_latency_observe("google", 0.2)

    resp = client.get("/metrics")
    assert resp.status_code == 200
    text = resp.text
    assert 'oauth_logins_initiated_total{provider="google"}' in text
    assert 'service_tokens_issued_total{service="mapable"}' in text
    assert "sessions_established_total" in text
    assert "identity_race_retries_total" in text
    assert "oauth_provider_latency_seconds_bucket" in text
