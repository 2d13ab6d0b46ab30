"""
Redis-backed job queue and worker.

Key structure (prefix defaults to ``reactor``):
- reactor:queue:{lane} (list) - ready payloads, LPUSH in / BRPOP out
- reactor:queues (set) - lanes that have ever received a job
- reactor:schedule (sorted set) - scheduled payloads scored by epoch seconds
- reactor:dead (list) - payloads that exhausted their retries
"""

from __future__ import annotations

import json
import threading
import time
from collections.abc import Iterator, Sequence
from typing import Any

import redis

from reactor import clock
from reactor.errors import ConfirmationRequired, UnconfiguredWorker, ValidationError
from reactor.queue.base import JobQueue, JobRunner, ScheduledJob, build_payload, dumps
from shared.config.logging import get_logger
from shared.config.settings import Settings, get_settings

logger = get_logger(__name__)

# Failures that retrying cannot fix
NON_RETRYABLE_ERRORS = (UnconfiguredWorker, ConfirmationRequired, ValidationError)


class RedisJobQueue(JobQueue):
    """
    Job queue on top of a synchronous Redis client.

    Scheduled jobs live in one sorted set; ``enqueue_due`` moves them to
    their lane with ZREM-then-LPUSH, so when several pollers race only the
    one whose ZREM succeeds pushes the job.
    """

    def __init__(self, client: redis.Redis, settings: Settings | None = None):
        self._redis = client
        self._settings = settings or get_settings()
        self.default_queue = self._settings.default_queue

        prefix = self._settings.reactor_key_prefix
        self.queue_prefix = f"{prefix}:queue:"
        self.queues_key = f"{prefix}:queues"
        self.schedule_key = f"{prefix}:schedule"
        self.dead_key = f"{prefix}:dead"

    def queue_key(self, lane: str) -> str:
        return f"{self.queue_prefix}{lane}"

    # =========================================================================
    # Contract
    # =========================================================================

    def enqueue_now(self, job_class: str, args: list[Any], queue: str | None = None, retry: bool = True) -> str:
        payload = build_payload(job_class, args, queue or self.default_queue, retry)
        self._push(payload)
        return payload["jid"]

    def enqueue_at(
        self,
        at: Any,
        job_class: str,
        args: list[Any],
        queue: str | None = None,
        retry: bool = True,
    ) -> str:
        payload = build_payload(job_class, args, queue or self.default_queue, retry)
        score = clock.to_timestamp(at)
        self._redis.zadd(self.schedule_key, {dumps(payload): score})
        logger.debug(
            "Job scheduled",
            job_class=job_class,
            jid=payload["jid"],
            at=clock.as_utc(at),
        )
        return payload["jid"]

    def scan_scheduled(self) -> Iterator[ScheduledJob]:
        for member, score in self._redis.zscan_iter(self.schedule_key):
            payload = json.loads(member)
            yield ScheduledJob(
                jid=payload["jid"],
                job_class=payload["class"],
                args=payload["args"],
                score=float(score),
                queue=payload.get("queue", self.default_queue),
                handle=member,
            )

    def cancel(self, job: ScheduledJob) -> bool:
        removed = self._redis.zrem(self.schedule_key, job.handle)
        logger.debug("Scheduled job cancelled", jid=job.jid, removed=bool(removed))
        return bool(removed)

    # =========================================================================
    # Worker side
    # =========================================================================

    def _push(self, payload: dict[str, Any]) -> None:
        pipe = self._redis.pipeline()
        pipe.sadd(self.queues_key, payload["queue"])
        pipe.lpush(self.queue_key(payload["queue"]), dumps(payload))
        pipe.execute()

    def enqueue_due(self, now: Any = None, batch_size: int = 100) -> int:
        """
        Move scheduled jobs that are due to their lanes.

        Returns:
            Number of jobs moved by this caller.
        """
        limit = clock.to_timestamp(now) if now is not None else time.time()
        members = self._redis.zrangebyscore(self.schedule_key, "-inf", limit, start=0, num=batch_size)

        moved = 0
        for member in members:
            # Another poller got it first
            if not self._redis.zrem(self.schedule_key, member):
                continue
            self._push(json.loads(member))
            moved += 1

        if moved:
            logger.debug("Scheduled jobs released", count=moved)
        return moved

    def fetch(self, lanes: Sequence[str], timeout: int | None = None) -> dict[str, Any] | None:
        """Block up to ``timeout`` seconds for the next job on any of ``lanes``."""
        timeout = self._settings.reactor_fetch_timeout if timeout is None else timeout
        result = self._redis.brpop([self.queue_key(lane) for lane in lanes], timeout=timeout)
        if result is None:
            return None
        _, raw = result
        return json.loads(raw)

    def work_once(self, runner: JobRunner, lanes: Sequence[str], timeout: int | None = None) -> bool:
        """
        Fetch and run one job.

        Failures are logged, then retried with exponential backoff or moved
        to the dead letter list. Returns False when no job was available.
        """
        payload = self.fetch(lanes, timeout)
        if payload is None:
            return False

        try:
            runner(payload["class"], payload["args"])
        except NON_RETRYABLE_ERRORS as e:
            logger.critical(
                "Job failed permanently",
                job_class=payload["class"],
                jid=payload["jid"],
                error=str(e),
                exc_info=True,
            )
            self.dead_letter(payload, e)
        except Exception as e:
            logger.error(
                "Job failed",
                job_class=payload["class"],
                jid=payload["jid"],
                error=str(e),
                exc_info=True,
            )
            self.retry_or_bury(payload, e)
        return True

    def retry_or_bury(self, payload: dict[str, Any], error: Exception) -> None:
        attempt = payload.get("retry_count", 0)
        if not payload.get("retry", True) or attempt >= self._settings.reactor_max_retries:
            self.dead_letter(payload, error)
            return

        delay = min(
            self._settings.reactor_retry_base_delay * (2 ** attempt),
            self._settings.reactor_retry_max_delay,
        )
        payload = {**payload, "retry_count": attempt + 1, "error_message": str(error)}
        self._redis.zadd(self.schedule_key, {dumps(payload): time.time() + delay})
        logger.info(
            "Job scheduled for retry",
            job_class=payload["class"],
            jid=payload["jid"],
            attempt=attempt + 1,
            next_retry_in=f"{delay:.1f}s",
        )

    def dead_letter(self, payload: dict[str, Any], error: Exception) -> None:
        entry = {
            **payload,
            "error_class": type(error).__name__,
            "error_message": str(error),
            "failed_at": time.time(),
        }
        pipe = self._redis.pipeline()
        pipe.lpush(self.dead_key, dumps(entry))
        # Trim dead letter list to prevent unbounded growth
        pipe.ltrim(self.dead_key, 0, self._settings.reactor_dead_letter_max - 1)
        pipe.execute()
        logger.warning("Job moved to dead letter list", job_class=payload["class"], jid=payload["jid"])

    def dead_letters(self, limit: int = 20) -> list[dict[str, Any]]:
        """Most recent dead-lettered payloads, newest first."""
        return [json.loads(raw) for raw in self._redis.lrange(self.dead_key, 0, limit - 1)]


class Worker:
    """
    Polls the scheduled set and runs jobs until stopped.

    Usage:
        worker = Worker(queue, bus.run_job, lanes=["default"])
        worker.run()  # blocks; call worker.stop() from a signal handler
    """

    def __init__(
        self,
        queue: RedisJobQueue,
        runner: JobRunner,
        lanes: Sequence[str],
        poll_interval: float | None = None,
    ):
        self._queue = queue
        self._runner = runner
        self._lanes = list(lanes)
        self._poll_interval = poll_interval if poll_interval is not None else get_settings().reactor_poll_interval
        self._stopping = threading.Event()

    def stop(self) -> None:
        self._stopping.set()

    def run(self) -> None:
        logger.info("Worker started", lanes=self._lanes)
        last_poll = 0.0
        while not self._stopping.is_set():
            if time.monotonic() - last_poll >= self._poll_interval:
                self._queue.enqueue_due()
                last_poll = time.monotonic()
            try:
                self._queue.work_once(self._runner, self._lanes)
            except redis.ConnectionError as e:
                logger.warning("Redis unavailable, backing off", error=str(e))
                self._stopping.wait(self._poll_interval)
        logger.info("Worker stopped", lanes=self._lanes)
