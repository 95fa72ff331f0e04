import logging

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration

from app.core.config import settings

logger = logging.getLogger(__name__)

_initialized = False


def _scrub_event(event, hint):
    """Drop OAuth authorization codes and state from captured request URLs."""
    request = event.get("request") or {}
    if request.get("query_string"):
        request["query_string"] = "[Filtered]"
    return event


def init_monitoring() -> None:
    global _initialized
    if _initialized:
        return
    dsn = settings.SENTRY_DSN
    if dsn:
        try:
            sentry_sdk.init(
                dsn=dsn,
                integrations=[FastApiIntegration()],
                traces_sample_rate=0.1,
                profiles_sample_rate=0.0,
                environment=settings.ENV,
                release=f"adid-sso-bridge@{settings.ENV}",
                send_default_pii=False,
                before_send=_scrub_event,
            )
            logger.info("Sentry initialized")
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to init Sentry: %s", exc)
    _initialized = True
