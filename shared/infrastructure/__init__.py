"""
Infrastructure module: Database, Redis and log correlation.

Provides:
- Database sessions and transactions (db.py)
- Sync Redis connection pool for the job queue (redis_pool.py)
- Correlation ids for job logging (correlation.py)
"""

from shared.infrastructure.db import (
    get_session_factory,
    get_scoped_session,
    get_db_context,
)
from shared.infrastructure.redis_pool import (
    get_redis_sync_client,
    close_redis_sync_client,
    check_redis_sync_health,
)
from shared.infrastructure.correlation import (
    bind_correlation_id,
    get_correlation_id,
    CorrelationIdFilter,
)

__all__ = [
    # db
    "get_session_factory",
    "get_scoped_session",
    "get_db_context",
    # redis
    "get_redis_sync_client",
    "close_redis_sync_client",
    "check_redis_sync_health",
    # correlation
    "bind_correlation_id",
    "get_correlation_id",
    "CorrelationIdFilter",
]
