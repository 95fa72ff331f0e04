"""
Centralized Redis client manager with connection pooling.

Used for short-lived OAuth state entries and rate-limit storage; durable
records (users, sessions, issued tokens) live in the relational database.
"""
import logging
import ssl
from typing import Any

import redis
from redis.connection import ConnectionPool

from app.core.config import settings

logger = logging.getLogger(__name__)

_pool: ConnectionPool | None = None
_client: redis.Redis | None = None

_SSL_CERT_REQS = {
    "required": ssl.CERT_REQUIRED,
    "optional": ssl.CERT_OPTIONAL,
    "none": ssl.CERT_NONE,
}


def _ssl_options(redis_url: str) -> dict[str, Any]:
    if not redis_url.startswith("rediss://"):
        return {}
    options: dict[str, Any] = {}
    chosen = _SSL_CERT_REQS.get(str(settings.REDIS_SSL_CERT_REQS or "").lower())
    if chosen is not None:
        options["ssl_cert_reqs"] = chosen
    if settings.REDIS_SSL_CA_CERTS:
        options["ssl_ca_certs"] = settings.REDIS_SSL_CA_CERTS
    return options


def get_redis_pool() -> ConnectionPool:
    """Get or create a shared Redis connection pool."""
    global _pool
    if _pool is not None:
        return _pool

    redis_url = settings.REDIS_URL
    if not redis_url:
        raise RuntimeError("REDIS_URL is not configured")

    pool_kwargs = {
        "max_connections": 10,
        "socket_timeout": 5,
        "socket_connect_timeout": 5,
        "retry_on_timeout": True,
        "health_check_interval": 30,
        "decode_responses": True,  # Return strings instead of bytes
        **_ssl_options(redis_url),
    }

    _pool = ConnectionPool.from_url(redis_url, **pool_kwargs)
    logger.info("Redis connection pool created (max_connections=%s)", pool_kwargs["max_connections"])
    return _pool


def get_redis_client() -> redis.Redis:
    """Get or create a Redis client using the shared connection pool."""
    global _client
    if _client is not None:
        return _client

    client = redis.Redis(connection_pool=get_redis_pool())
    try:
        client.ping()
        logger.info("Redis client connected successfully")
    except redis.RedisError as e:
        logger.error("Redis connection failed: %s", e)
        raise
    _client = client
    return _client


def close_redis_pool() -> None:
    """Close the Redis connection pool. Called on app shutdown."""
    global _pool, _client
    if _client is not None:
        _client.close()
        _client = None
    if _pool is not None:
        _pool.disconnect()
        _pool = None
    logger.info("Redis pool closed")
