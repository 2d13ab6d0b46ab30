"""
Job queue contract.

The event bus only needs five operations from a queue: enqueue now, at a
time, or after a delay; scan the scheduled set; and cancel one scheduled
job. Each is assumed atomic on its own; nothing composes them atomically.
"""

from __future__ import annotations

import json
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from reactor import clock
from reactor.data import to_plain

# Runs one job: (job_class, args) -> result
JobRunner = Callable[[str, list[Any]], Any]


@dataclass(frozen=True)
class ScheduledJob:
    """A job waiting in the scheduled set."""

    jid: str
    job_class: str
    args: list[Any]
    score: float
    queue: str
    handle: Any = field(default=None, compare=False, repr=False)


def build_payload(job_class: str, args: list[Any], queue: str, retry: bool = True) -> dict[str, Any]:
    """
    Build the JSON payload for a job.

    Args are round-tripped through JSON here so in-process queues see
    exactly what a worker on the other side of Redis would see.
    """
    return {
        "jid": uuid.uuid4().hex,
        "class": job_class,
        "args": json.loads(dumps(args)),
        "queue": queue,
        "retry": retry,
        "enqueued_at": clock.utcnow().timestamp(),
    }


def dumps(value: Any) -> str:
    return json.dumps(to_plain(value), ensure_ascii=False)


class JobQueue(ABC):
    """Abstract job queue used by events and handler units."""

    default_queue = "default"

    @abstractmethod
    def enqueue_now(self, job_class: str, args: list[Any], queue: str | None = None, retry: bool = True) -> str:
        """Make a job available to workers immediately. Returns the job id."""

    @abstractmethod
    def enqueue_at(
        self,
        at: Any,
        job_class: str,
        args: list[Any],
        queue: str | None = None,
        retry: bool = True,
    ) -> str:
        """Schedule a job for ``at`` (datetime, ISO string or epoch seconds)."""

    def enqueue_in(
        self,
        delay: float,
        job_class: str,
        args: list[Any],
        queue: str | None = None,
        retry: bool = True,
    ) -> str:
        """Schedule a job ``delay`` seconds from now."""
        return self.enqueue_at(clock.utcnow() + timedelta(seconds=delay), job_class, args, queue=queue, retry=retry)

    @abstractmethod
    def scan_scheduled(self) -> Iterator[ScheduledJob]:
        """Iterate over every job in the scheduled set."""

    @abstractmethod
    def cancel(self, job: ScheduledJob) -> bool:
        """Remove a scheduled job. Returns False when it was already gone."""
