"""Server-side storage for OAuth ``state`` values.

Each initiated login stores a ``PendingLogin`` under ``oauth:state:{state}``
with a short TTL. The callback consumes it exactly once, so a replayed or
forged state finds nothing.
"""
from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import asdict, dataclass, field
from typing import Protocol

import redis

from app.core.config import settings

logger = logging.getLogger(__name__)

_KEY_PREFIX = "oauth:state:"


@dataclass
class PendingLogin:
    """What the initiating request bound to a ``state`` value."""

    provider: str
    redirect_to: str | None = None
    service_id: str | None = None
    scopes: list[str] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)

    def serialize(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def deserialize(cls, payload: str) -> PendingLogin:
        data = json.loads(payload)
        return cls(
            provider=data["provider"],
            redirect_to=data.get("redirect_to"),
            service_id=data.get("service_id"),
            scopes=list(data.get("scopes") or []),
            created_at=float(data.get("created_at", 0)),
        )


class StateStore(Protocol):
    def put(self, state: str, pending: PendingLogin, ttl_seconds: int) -> None:  # pragma: no cover - protocol stub
        ...

    def consume(self, state: str) -> PendingLogin | None:  # pragma: no cover - protocol stub
        ...


class RedisStateStore:
    """Redis-backed store shared by every worker process."""

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    def put(self, state: str, pending: PendingLogin, ttl_seconds: int) -> None:
        self._client.setex(f"{_KEY_PREFIX}{state}", ttl_seconds, pending.serialize())

    def consume(self, state: str) -> PendingLogin | None:
        key = f"{_KEY_PREFIX}{state}"
        # GET + DEL inside MULTI/EXEC so two callbacks cannot both redeem one state
        pipe = self._client.pipeline(transaction=True)
        pipe.get(key)
        pipe.delete(key)
        payload, _ = pipe.execute()
        if payload is None:
            return None
        return PendingLogin.deserialize(payload)


class InMemoryStateStore:
    """Process-local store for tests and single-process development."""

    def __init__(self) -> None:
        self._data: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def pending_count(self) -> int:
        with self._lock:
            return len(self._data)

    def put(self, state: str, pending: PendingLogin, ttl_seconds: int) -> None:
        now = time.time()
        with self._lock:
            # Abandoned logins are never consumed; drop them as new ones arrive
            for stale in [s for s, (_, expires_at) in self._data.items() if expires_at <= now]:
                del self._data[stale]
            self._data[state] = (pending.serialize(), now + ttl_seconds)

    def consume(self, state: str) -> PendingLogin | None:
        with self._lock:
            entry = self._data.pop(state, None)
        if not entry:
            return None
        payload, expires_at = entry
        if time.time() >= expires_at:
            return None
        return PendingLogin.deserialize(payload)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()


_SHARED_STORE: StateStore | None = None


def get_state_store() -> StateStore:
    global _SHARED_STORE
    if _SHARED_STORE is not None:
        return _SHARED_STORE
    if settings.ENV.lower() == "test":
        _SHARED_STORE = InMemoryStateStore()
        return _SHARED_STORE
    try:
        from app.db.redis_client import get_redis_client

        _SHARED_STORE = RedisStateStore(get_redis_client())
    except (redis.RedisError, RuntimeError) as exc:
        if settings.is_production:
            # Worker-local state would break callbacks landing on another dyno
            raise
        logger.warning("Falling back to in-memory OAuth state store: %s", exc)
        _SHARED_STORE = InMemoryStateStore()
    return _SHARED_STORE


def reset_state_store() -> None:
    global _SHARED_STORE
    _SHARED_STORE = None
