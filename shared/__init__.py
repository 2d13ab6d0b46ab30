"""
Shared infrastructure for the event bus: configuration, logging,
database sessions and the Redis connection pool.
"""
