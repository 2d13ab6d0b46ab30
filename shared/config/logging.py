"""
Structured logging for the event bus.

Every record emitted while a job runs carries the job's correlation id
(the event uuid) and its job class, so one event can be followed from
publish through every subscriber. Production writes one JSON object per
line; development writes coloured single lines.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from shared.config.settings import settings


def _job_context(record: logging.LogRecord) -> dict[str, str]:
    """Correlation id and job class stamped by CorrelationIdFilter, if any."""
    context = {}
    for field in ("correlation_id", "job_class"):
        value = getattr(record, field, None)
        if value and value != "-":
            context[field] = value
    return context


class StructuredFormatter(logging.Formatter):
    """JSON lines for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_job_context(record),
        }

        if getattr(record, "extra_data", None):
            log_data["data"] = record.extra_data

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class DevelopmentFormatter(logging.Formatter):
    """Human-readable lines: ``[time] LEVEL [uuid8 JobClass] logger: message (k=v)``."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"
    DIM = "\033[2m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        timestamp = datetime.now().strftime("%H:%M:%S")

        context = _job_context(record)
        job = " ".join(
            part
            for part in (context.get("correlation_id", "")[:8], context.get("job_class", "").rsplit(".", 1)[-1])
            if part
        )
        job_str = f"{self.DIM}[{job}]{self.RESET} " if job else ""

        message = f"{color}[{timestamp}] {record.levelname:8}{self.RESET} {job_str}{record.name}: {record.getMessage()}"

        if getattr(record, "extra_data", None):
            message += " (" + " | ".join(f"{k}={v}" for k, v in record.extra_data.items()) + ")"

        if record.exc_info:
            message += f"\n{self.formatException(record.exc_info)}"

        return message


class StructuredLogger(logging.Logger):
    """
    Logger whose keyword arguments become structured ``extra_data``.

        logger.info("Job scheduled for retry", jid=jid, attempt=2)
    """

    def _log_with_data(
        self,
        level: int,
        msg: str,
        args: tuple,
        exc_info: Any = None,
        extra: dict | None = None,
        **kwargs: Any,
    ) -> None:
        if not self.isEnabledFor(level):
            return
        extra = dict(extra or {})
        extra["extra_data"] = kwargs or None
        super()._log(level, msg, args, exc_info=exc_info, extra=extra)

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log_with_data(logging.DEBUG, msg, args, **kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log_with_data(logging.INFO, msg, args, **kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log_with_data(logging.WARNING, msg, args, **kwargs)

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log_with_data(logging.ERROR, msg, args, **kwargs)

    def critical(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log_with_data(logging.CRITICAL, msg, args, **kwargs)


logging.setLoggerClass(StructuredLogger)


def setup_logging() -> None:
    """Configure the root logger once, at worker / CLI startup."""
    # Import here to avoid circular imports
    from shared.infrastructure.correlation import CorrelationIdFilter

    log_level = logging.DEBUG if settings.debug else logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.addFilter(CorrelationIdFilter())
    handler.setFormatter(StructuredFormatter() if settings.environment == "production" else DevelopmentFormatter())

    root = logging.getLogger()
    root.setLevel(log_level)
    root.handlers.clear()
    root.addHandler(handler)

    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("redis").setLevel(logging.WARNING)


def get_logger(name: str) -> StructuredLogger:
    """
    Get a logger instance with the given name.

    Usage:
        from shared.config.logging import get_logger
        logger = get_logger(__name__)

        logger.info("Event published", event_name="shipped", uuid=uuid)
        logger.error("Job failed", job_class="reactor.Event", exc_info=True)
    """
    return logging.getLogger(name)  # type: ignore
