"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

import logging

from chanboard.config import get_settings
from chanboard.db import DbClient, InMemoryDbClient, SqlDbClient
from chanboard.ratelimit import InMemoryRateLimiter, RateLimiter, RedisRateLimiter

logger = logging.getLogger(__name__)

_db_client: DbClient | None = None
_rate_limiter: RateLimiter | None = None


def get_db_client() -> DbClient:
    """
    Return a singleton DB client; the process owns exactly one store handle.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends:
        _db_client = InMemoryDbClient()
    else:
        _db_client = SqlDbClient(settings.database_url)
        logger.info(
            "Connected to database %s",
            _db_client.engine.url.render_as_string(hide_password=True),
        )
    return _db_client


def get_rate_limiter() -> RateLimiter:
    """
    Return a singleton rate limiter shared by every request in the process.
    """
    global _rate_limiter
    if _rate_limiter:
        return _rate_limiter

    settings = get_settings()
    if settings.redis_url and not settings.use_in_memory_backends:
        _rate_limiter = RedisRateLimiter(
            url=settings.redis_url,
            points=settings.rate_limit_points,
            window_seconds=settings.rate_limit_window_seconds,
            key_prefix=settings.rate_limit_key_prefix,
        )
    else:
        _rate_limiter = InMemoryRateLimiter(
            points=settings.rate_limit_points,
            window_seconds=settings.rate_limit_window_seconds,
        )
    return _rate_limiter


def reset_clients() -> None:
    """Close and forget the singletons (shutdown and tests)."""
    global _db_client, _rate_limiter
    if _db_client is not None:
        _db_client.close()
    _db_client = None
    _rate_limiter = None
