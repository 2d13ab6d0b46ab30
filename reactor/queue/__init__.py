"""
Job queue contract and adapters.

- base.py: JobQueue contract and ScheduledJob
- memory.py: in-process queue for tests and synchronous runs
- redis_queue.py: Redis lists + scheduled sorted set, and the Worker loop
"""

from reactor.queue.base import JobQueue, JobRunner, ScheduledJob, build_payload
from reactor.queue.memory import InMemoryJobQueue
from reactor.queue.redis_queue import RedisJobQueue, Worker

__all__ = [
    "JobQueue",
    "JobRunner",
    "ScheduledJob",
    "build_payload",
    "InMemoryJobQueue",
    "RedisJobQueue",
    "Worker",
]
