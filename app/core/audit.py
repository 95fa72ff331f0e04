"""Audit logging utilities.

Writes structured JSON lines to a dedicated audit log file and standard logger.
Each event describes a security-relevant action: logins, logouts, account
links and the issue/revoke lifecycle of service tokens.

Credential-bearing metadata (tokens, secrets, codes) is never written; the
value is replaced before the event is serialized.
"""
from __future__ import annotations

import json
import logging
import os
import time
from typing import Any

from app.core.config import settings

_logger = logging.getLogger("audit")

_SENSITIVE_KEYS = frozenset(
    {"access_token", "refresh_token", "token", "client_secret", "code", "state", "session_id"}
)


def _scrub(metadata: dict[str, Any]) -> dict[str, Any]:
    return {k: ("[redacted]" if k in _SENSITIVE_KEYS and v else v) for k, v in metadata.items()}


def log_audit_event(action: str, user_id: str | None = None, status: str = "success", **metadata: Any) -> None:
    """Record an audit event.

    Parameters:
        action: A machine-readable action key (e.g. 'auth.oauth.login', 'tokens.revoke').
        user_id: The acting or affected user's ID (if known).
        status: 'success' | 'failure' | 'denied'.
        **metadata: Additional context fields (provider, service_id, token_id, ...).
    """
    event = {
        "ts": int(time.time()),
        "action": action,
        "user_id": user_id,
        "status": status,
        **_scrub(metadata),
    }
    line = json.dumps(event, separators=(",", ":"), default=str)
    path = settings.AUDIT_LOG_FILE
    if path:
        try:
            directory = os.path.dirname(path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError:
            _logger.debug("Failed to write audit event to file: %s", action)
    _logger.info(line)


def log_denied(action: str, user_id: str | None = None, reason: str | None = None, **extra: Any) -> None:
    log_audit_event(action, user_id=user_id, status="denied", reason=reason, **extra)


def log_failure(action: str, user_id: str | None = None, error: str | None = None, **extra: Any) -> None:
    log_audit_event(action, user_id=user_id, status="failure", error=error, **extra)
