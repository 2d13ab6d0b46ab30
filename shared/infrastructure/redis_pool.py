"""
Redis Connection Pool Management.

The job queue only needs synchronous Redis: workers block on BRPOP and
publishers run inside ORM commit hooks.
"""

from __future__ import annotations

import threading
import time

import redis

from shared.config.settings import settings, REDIS_URL
from shared.config.logging import get_logger

logger = get_logger(__name__)


# Sync Redis connection POOL (not singleton) for concurrent workers
_redis_sync_pool: redis.ConnectionPool | None = None
_sync_pool_lock = threading.Lock()


def _get_redis_sync_pool() -> redis.ConnectionPool:
    """
    Get or create synchronous Redis connection POOL.

    Double-checked under a lock so concurrent worker threads share one pool.
    """
    global _redis_sync_pool
    if _redis_sync_pool is None:
        with _sync_pool_lock:
            if _redis_sync_pool is None:
                _redis_sync_pool = redis.ConnectionPool.from_url(
                    REDIS_URL,
                    max_connections=settings.redis_sync_pool_max_connections,
                    decode_responses=True,
                    socket_connect_timeout=settings.redis_socket_timeout,
                    # BRPOP blocks for reactor_fetch_timeout; reads must outlive it
                    socket_timeout=settings.redis_socket_timeout + settings.reactor_fetch_timeout,
                    health_check_interval=30,
                )
                logger.info(
                    "Redis sync pool initialized",
                    max_connections=settings.redis_sync_pool_max_connections,
                    timeout=settings.redis_socket_timeout,
                )
    return _redis_sync_pool


def get_redis_sync_client() -> redis.Redis:
    """
    Get a Redis client from the sync connection pool.

    Each call returns a client backed by the shared pool.
    """
    return redis.Redis(connection_pool=_get_redis_sync_pool())


def close_redis_sync_client() -> None:
    """
    Close sync Redis connection pool on shutdown.

    Thread-safe: uses _sync_pool_lock so a concurrent get never sees a
    half-closed pool.
    """
    global _redis_sync_pool
    with _sync_pool_lock:
        if _redis_sync_pool is not None:
            try:
                _redis_sync_pool.disconnect()
                logger.info("Redis sync pool closed")
            except redis.RedisError as e:
                logger.warning("Error closing Redis sync pool", error=str(e))
            finally:
                _redis_sync_pool = None


def check_redis_sync_health() -> dict:
    """Ping Redis and report status and latency."""
    start = time.perf_counter()
    try:
        get_redis_sync_client().ping()
    except redis.RedisError as e:
        return {"status": "unhealthy", "error": str(e)}
    return {"status": "healthy", "latency_ms": round((time.perf_counter() - start) * 1000, 2)}
