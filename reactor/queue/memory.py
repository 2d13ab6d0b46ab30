"""
In-process job queue.

Holds jobs in lists instead of Redis. Nothing runs until ``drain`` is
called, which makes it the queue of choice for tests and for scripts that
want to run the whole publish -> fire -> handler cascade synchronously.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any

from reactor import clock
from reactor.queue.base import JobQueue, JobRunner, ScheduledJob, build_payload
from shared.config.logging import get_logger

logger = get_logger(__name__)


class InMemoryJobQueue(JobQueue):
    """
    List-backed queue.

    Attributes:
        jobs: Ready payloads, oldest first.
        scheduled: Scheduled payloads with their ``score`` (epoch seconds).
    """

    def __init__(self, default_queue: str = "default"):
        self.default_queue = default_queue
        self.jobs: list[dict[str, Any]] = []
        self.scheduled: list[dict[str, Any]] = []

    def enqueue_now(self, job_class: str, args: list[Any], queue: str | None = None, retry: bool = True) -> str:
        payload = build_payload(job_class, args, queue or self.default_queue, retry)
        self.jobs.append(payload)
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
        payload["score"] = clock.to_timestamp(at)
        self.scheduled.append(payload)
        return payload["jid"]

    def scan_scheduled(self) -> Iterator[ScheduledJob]:
        for payload in list(self.scheduled):
            yield ScheduledJob(
                jid=payload["jid"],
                job_class=payload["class"],
                args=payload["args"],
                score=payload["score"],
                queue=payload["queue"],
                handle=payload,
            )

    def cancel(self, job: ScheduledJob) -> bool:
        for index, payload in enumerate(self.scheduled):
            if payload["jid"] == job.jid:
                del self.scheduled[index]
                return True
        return False

    # =========================================================================
    # Inspection helpers
    # =========================================================================

    def jobs_for(self, job_class: str) -> list[dict[str, Any]]:
        return [payload for payload in self.jobs if payload["class"] == job_class]

    def scheduled_for(self, job_class: str) -> list[dict[str, Any]]:
        return [payload for payload in self.scheduled if payload["class"] == job_class]

    def clear(self) -> None:
        self.jobs.clear()
        self.scheduled.clear()

    # =========================================================================
    # Execution
    # =========================================================================

    def enqueue_due(self, now: Any = None) -> int:
        """Move scheduled jobs whose time has come to the ready list."""
        limit = clock.to_timestamp(now) if now is not None else clock.utcnow().timestamp()
        due = [payload for payload in self.scheduled if payload["score"] <= limit]
        for payload in sorted(due, key=lambda p: p["score"]):
            self.scheduled.remove(payload)
            self.jobs.append(payload)
        return len(due)

    def drain(self, runner: JobRunner, now: Any = None) -> int:
        """
        Run ready jobs until none are left, including jobs they enqueue.

        Args:
            runner: Callable executing ``(job_class, args)``.
            now: When given, scheduled jobs due at or before ``now`` are
                released first (and again after every job).

        Returns:
            Number of jobs run.
        """
        ran = 0
        while True:
            if now is not None:
                self.enqueue_due(now)
            if not self.jobs:
                return ran
            payload = self.jobs.pop(0)
            logger.debug("Running job", job_class=payload["class"], jid=payload["jid"])
            runner(payload["class"], payload["args"])
            ran += 1
