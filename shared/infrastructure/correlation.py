"""
Job Correlation IDs.

Binds the id of the job being executed (the event uuid for event jobs,
the queue jid otherwise) and its job class to the current context so every
log record emitted while the job runs can be traced back to it.
"""

import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

# Context variables for the running job (thread/task-safe)
correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")
job_class_var: ContextVar[str] = ContextVar("job_class", default="")


def get_correlation_id() -> str:
    """Get the current correlation id."""
    return correlation_id_var.get()


def get_job_class() -> str:
    """Get the class of the job currently running, or an empty string."""
    return job_class_var.get()


@contextmanager
def bind_correlation_id(correlation_id: str | None = None, job_class: str | None = None) -> Iterator[str]:
    """
    Bind a correlation id (and optionally the job class) for the block.

    Generates a new UUID when no id is given. Previous values are restored
    on exit, so nested jobs (inline queues) keep their own ids.

    Usage:
        with bind_correlation_id(payload["jid"], job_class=payload["class"]):
            run_job(payload)
    """
    correlation_id = correlation_id or str(uuid.uuid4())
    token = correlation_id_var.set(correlation_id)
    job_token = job_class_var.set(job_class or "")
    try:
        yield correlation_id
    finally:
        job_class_var.reset(job_token)
        correlation_id_var.reset(token)


class CorrelationIdFilter:
    """
    Logging filter that adds correlation_id and job_class to log records.

    Usage:
        import logging
        handler = logging.StreamHandler()
        handler.addFilter(CorrelationIdFilter())
    """

    def filter(self, record) -> bool:
        record.correlation_id = correlation_id_var.get() or "-"
        record.job_class = job_class_var.get() or "-"
        return True
