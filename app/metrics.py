"""Metrics facade.

Service code should ONLY call the semantic helpers here so the backend can
change freely. Counters are registered on the default Prometheus registry and
exposed by ``/metrics``.

Metrics:
- oauth_logins_initiated_total{provider}     Authorization redirects issued
- oauth_logins_total{provider}               Successful OAuth login callbacks
- oauth_login_failures_total{provider,code}  Failed initiations or callbacks
- oauth_provider_latency_seconds{provider}   Token + profile round trip
- identity_links_total{provider}             New provider links on an existing user
- identity_race_retries_total                Unique-constraint retries in the resolver
- sessions_established_total / sessions_destroyed_total
- service_tokens_issued_total{service}       Tokens minted for downstream services
- service_tokens_revoked_total{service}
- service_tokens_rotated_total{service}      Tokens replaced through rotation
- service_tokens_exchanged_total{source,target}
- rate_limit_exceeded_total
"""

from __future__ import annotations

import logging

from prometheus_client import Counter, Histogram

logger = logging.getLogger("metrics")

_OAUTH_INITIATED = Counter(
    "oauth_logins_initiated_total", "Authorization redirects issued", ["provider"]
)
_OAUTH_LOGINS = Counter("oauth_logins_total", "Successful OAuth login callbacks", ["provider"])
_OAUTH_FAILURES = Counter(
    "oauth_login_failures_total", "Failed OAuth initiations or callbacks", ["provider", "code"]
)
_OAUTH_PROVIDER_LATENCY = Histogram(
    "oauth_provider_latency_seconds",
    "Latency of the token exchange and profile fetch against a provider",
    ["provider"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10),
)
_IDENTITY_LINKS = Counter(
    "identity_links_total", "Providers linked to an existing canonical user", ["provider"]
)
_IDENTITY_RACE_RETRIES = Counter(
    "identity_race_retries_total", "Identity writes retried after a unique-constraint conflict"
)
_SESSIONS_ESTABLISHED = Counter("sessions_established_total", "Sessions created")
_SESSIONS_DESTROYED = Counter("sessions_destroyed_total", "Sessions destroyed on logout or re-login")
_TOKENS_ISSUED = Counter("service_tokens_issued_total", "Service tokens issued", ["service"])
_TOKENS_REVOKED = Counter("service_tokens_revoked_total", "Service tokens revoked", ["service"])
_TOKENS_ROTATED = Counter("service_tokens_rotated_total", "Service tokens replaced by rotation", ["service"])
_TOKENS_EXCHANGED = Counter(
    "service_tokens_exchanged_total", "Service tokens exchanged for another service", ["source", "target"]
)
_RATE_LIMIT_EXCEEDED = Counter("rate_limit_exceeded_total", "Requests rejected by the rate limiter")


def oauth_login_initiated(provider: str):
    _OAUTH_INITIATED.labels(provider=provider).inc()


def oauth_login_success(provider: str):
    _OAUTH_LOGINS.labels(provider=provider).inc()


def oauth_login_failed(provider: str, code: str):
    _OAUTH_FAILURES.labels(provider=provider, code=code).inc()
    logger.debug("metric oauth_login_failures_total{provider=%s,code=%s} += 1", provider, code)


def oauth_provider_latency_observe(provider: str, seconds: float):
    _OAUTH_PROVIDER_LATENCY.labels(provider=provider).observe(seconds)


def identity_linked(provider: str):
    _IDENTITY_LINKS.labels(provider=provider).inc()


def identity_race_retry():
    _IDENTITY_RACE_RETRIES.inc()


def session_established():
    _SESSIONS_ESTABLISHED.inc()


def session_destroyed():
    _SESSIONS_DESTROYED.inc()


def service_token_issued(service_id: str):
    _TOKENS_ISSUED.labels(service=service_id).inc()


def service_token_revoked(service_id: str):
    _TOKENS_REVOKED.labels(service=service_id).inc()


def service_token_rotated(service_id: str):
    _TOKENS_ROTATED.labels(service=service_id).inc()


def service_token_exchanged(source_service_id: str, target_service_id: str):
    _TOKENS_EXCHANGED.labels(source=source_service_id, target=target_service_id).inc()


def rate_limit_exceeded():
    _RATE_LIMIT_EXCEEDED.inc()
