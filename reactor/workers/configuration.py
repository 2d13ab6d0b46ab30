"""
Handler units: the job a subscriber runs inside.

A unit is created once per ``on_event`` declaration. When its event fires
the unit enqueues itself (``perform_where_needed``); when the queue runs
that job the unit validates its configuration, applies the deprecation and
test-mode gates, and calls the subscriber.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any

from reactor.errors import UnconfiguredWorker
from reactor.event import Event
from shared.config.logging import get_logger

if TYPE_CHECKING:
    from reactor.subscribers import SubscriberRegistry

logger = get_logger(__name__)

CONFIG = ("source", "action", "delay", "deprecated")

# Returned instead of running the action
PERFORM_ABORTED = "__perform_aborted__"


class HandlerUnit:
    """
    One subscriber binding: source + event name + optional handler name.

    Attributes:
        name: Unit name, unique within the source (``PuppyDeliveredHandler``).
        job_class: Queue job class, unique process-wide.
        source: Declaring type (or module) the action runs against.
        action: Method name on ``source``, or a callable ``(source, event)``.
        delay: Seconds between the event firing and this handler running.
        deprecated: Keep draining already-enqueued jobs without running them.
        job_options: ``queue`` lane and ``retry`` flag for this unit's jobs.
    """

    def __init__(
        self,
        registry: SubscriberRegistry | None,
        name: str,
        job_class: str,
        event_name: str,
        source: Any = None,
        action: str | Callable[..., Any] | None = None,
        delay: float | None = 0,
        deprecated: bool | None = False,
        job_options: Mapping[str, Any] | None = None,
    ):
        self.registry = registry
        self.name = name
        self.job_class = job_class
        self.event_name = event_name
        self.source = source
        self.action = action
        self.delay = delay
        self.deprecated = deprecated
        self.job_options = dict(job_options or {})

    def __repr__(self) -> str:
        return f"<{type(self).__name__}({self.job_class})>"

    @property
    def bus(self):
        if self.registry is None or self.registry.bus is None:
            raise RuntimeError(f"{self.job_class} is not attached to a running event bus")
        return self.registry.bus

    # =========================================================================
    # Configuration
    # =========================================================================

    def settings(self) -> dict[str, Any]:
        return {field: getattr(self, field) for field in CONFIG}

    def configured(self) -> bool:
        return all(value is not None for value in self.settings().values())

    def raise_unconfigured(self) -> None:
        raise UnconfiguredWorker(self.job_class, self.settings())

    # =========================================================================
    # Dispatch (event side)
    # =========================================================================

    def event_queue(self) -> str:
        """
        Lane for this unit's jobs.

        ``REACTOR_QUEUE`` (read on every dispatch) replaces every unit's lane
        so a deploy's whole event cascade can be isolated.
        """
        override = self.bus.queue_override()
        if override:
            return override
        return self.job_options.get("queue") or self.bus.settings.default_queue

    def perform_where_needed(self, name: str, data: Mapping[str, Any]) -> Any:
        """Enqueue this unit's job for an event that just fired."""
        if self.deprecated:
            return None

        queue = self.bus.queue
        lane = self.event_queue()
        retry = self.job_options.get("retry", True)
        args = [name, dict(data)]

        if self.delay and self.delay > 0:
            queue.enqueue_in(self.delay, self.job_class, args, queue=lane, retry=retry)
        else:
            queue.enqueue_now(self.job_class, args, queue=lane, retry=retry)

        logger.debug("Subscriber enqueued", unit=self.job_class, event_name=name, lane=lane, delay=self.delay)
        return self.source

    # =========================================================================
    # Execution (job side)
    # =========================================================================

    def should_perform(self) -> bool:
        if self.registry is None:
            return True
        return self.registry.is_enabled(self.source)

    def perform(self, name: str, data: Mapping[str, Any]) -> Any:
        if not self.configured():
            self.raise_unconfigured()
        if self.deprecated or not self.should_perform():
            return PERFORM_ABORTED

        event = Event(data, bus=self.bus)
        return self.invoke(self.source, event)

    def invoke(self, context: Any, event: Event) -> Any:
        if isinstance(self.action, str):
            return getattr(context, self.action)(event)
        return self.action(context, event)
