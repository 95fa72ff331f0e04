from __future__ import annotations

import time
from typing import Annotated

import redis
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.session import get_db
from app.services.service_registry import get_service_registry

router = APIRouter(tags=["health"])


def _check_db(db: Session) -> bool:
    db.execute(text("SELECT 1"))
    return True


def _check_redis() -> bool:
    try:
        from app.db.redis_client import get_redis_client
        r = get_redis_client()
        return bool(r.ping())
    except (redis.RedisError, RuntimeError):
        return False


@router.get("/healthz")
async def healthz(db: Annotated[Session, Depends(get_db)]) -> dict[str, str]:
    """Basic liveness check (cheap)."""
    try:
        _check_db(db)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=503, detail="Database connectivity check failed") from exc
    return {"status": "ok"}


@router.get("/live")
async def live() -> dict[str, str]:
    """Kubernetes-style liveness endpoint (no dependencies)."""
    return {"status": "alive"}


@router.get("/ready")
async def ready(db: Annotated[Session, Depends(get_db)]) -> dict[str, object]:
    """Readiness check aggregating critical dependencies.

    Redis holds OAuth state across workers, so it only gates readiness in
    production; elsewhere the in-memory fallback is acceptable.
    """
    start = time.time()
    try:
        db_ok = _check_db(db)
    except SQLAlchemyError:
        db_ok = False
    redis_ok = _check_redis() if settings.ENV.lower() != "test" else False
    services = len(get_service_registry().get_all_enabled())
    duration_ms = int((time.time() - start) * 1000)
    overall = db_ok and (redis_ok or not settings.is_production)
    body = {
        "db": db_ok,
        "redis": redis_ok,
        "services_enabled": services,
        "latency_ms": duration_ms,
    }
    if not overall:
        raise HTTPException(status_code=503, detail=body)
    return {"status": "ready", **body}
