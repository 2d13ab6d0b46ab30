"""
Event bus bootstrap.

``Reactor`` bundles everything an event needs at runtime: settings, the job
queue, the entity store, the subscriber registry and the validator hook.
There is no module-level bus; the application builds one and hands it to
whatever publishes.

Usage:
    bus = Reactor(store=EntityStore(get_scoped_session(), Base), registry=registry)
    bus.watch_sessions(get_session_factory())

    bus.publish("user_signed_up", actor=user)
"""

from __future__ import annotations

import os
import sys
from collections.abc import Callable, Mapping
from typing import Any

from reactor.event import EVENT_JOB, Event
from reactor.publishable import LifecycleHooks
from reactor.queue import JobQueue, RedisJobQueue
from reactor.references import EntityStore
from reactor.subscribers import SubscriberRegistry
from shared.config.logging import get_logger
from shared.config.settings import Settings, get_settings
from shared.infrastructure.correlation import bind_correlation_id
from shared.infrastructure.redis_pool import get_redis_sync_client

logger = get_logger(__name__)

Validator = Callable[[Event], Any]


def accept_all(event: Event) -> None:
    return None


class Reactor:
    """
    The event bus.

    Attributes:
        settings: Runtime settings.
        queue: Job queue adapter (Redis unless one is given).
        store: Entity store resolving references; required to read
            ``actor`` / ``target`` back from an event.
        registry: Static subscriber registry.
        validator: Called with every outbound event; raise to reject it.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        queue: JobQueue | None = None,
        store: EntityStore | None = None,
        registry: SubscriberRegistry | None = None,
        validator: Validator | None = None,
    ):
        self.settings = settings or get_settings()
        self.queue = queue if queue is not None else RedisJobQueue(get_redis_sync_client(), self.settings)
        self.store = store
        self.registry = registry if registry is not None else SubscriberRegistry(self.settings.reactor_test_mode)
        self.validator = validator or accept_all
        self.registry.attach(self)

    # =========================================================================
    # Publishing
    # =========================================================================

    def publish(self, name: Any, data: Mapping[Any, Any] | None = None, **options: Any) -> str:
        return Event.publish(self, name, {**(data or {}), **options})

    def reschedule(self, name: Any, data: Mapping[Any, Any] | None = None, **options: Any) -> str | None:
        return Event.reschedule(self, name, {**(data or {}), **options})

    def perform_event(self, name: str, data: Mapping[str, Any]) -> bool:
        return Event.perform(self, name, data)

    def queue_override(self) -> str:
        """
        Lane every event and subscriber job is forced onto, or an empty string.

        ``REACTOR_QUEUE`` is read from the process environment on each call,
        falling back to the settings value, so a deploy can move its cascade
        without rebuilding cached settings.
        """
        return os.environ.get("REACTOR_QUEUE") or self.settings.reactor_queue

    def event_queue_name(self) -> str:
        return self.queue_override() or self.settings.default_queue

    def is_interactive_production(self) -> bool:
        """True inside a REPL (``python -i``, console) on a production deploy."""
        if self.settings.environment != "production":
            return False
        return hasattr(sys, "ps1") or bool(sys.flags.interactive)

    # =========================================================================
    # Job execution
    # =========================================================================

    def job_table(self) -> dict[str, Callable[..., Any]]:
        """Job class -> callable, for every job this bus can run."""
        table: dict[str, Callable[..., Any]] = {EVENT_JOB: self.perform_event}
        for unit in self.registry.units():
            table[unit.job_class] = unit.perform
        return table

    def run_job(self, job_class: str, args: list[Any]) -> Any:
        """
        Run one dequeued job.

        The event uuid (second argument of every event and handler job) and
        the job class are bound to the job's log lines. The entity store's
        session is released afterwards, whether or not the job failed.
        """
        data = args[1] if len(args) > 1 and isinstance(args[1], Mapping) else {}
        with bind_correlation_id(data.get("uuid"), job_class=job_class):
            try:
                if job_class == EVENT_JOB:
                    return Event.perform(self, *args)
                return self.registry.get(job_class).perform(*args)
            finally:
                if self.store is not None:
                    self.store.release()

    def drain(self, now: Any = None) -> int:
        """Run everything an in-process queue holds (tests, scripts)."""
        drain = getattr(self.queue, "drain", None)
        if drain is None:
            raise TypeError(f"{type(self.queue).__name__} cannot be drained in-process")
        return drain(self.run_job, now=now)

    # =========================================================================
    # ORM integration
    # =========================================================================

    def watch_sessions(self, target: Any) -> LifecycleHooks:
        """
        Publish Publishable rules from sessions created by ``target``.

        ``target`` is anything SQLAlchemy session events accept: a
        sessionmaker, a scoped_session, a Session subclass or instance.
        """
        hooks = LifecycleHooks(self)
        hooks.install(target)
        logger.debug("Session lifecycle hooks installed", target=repr(target))
        return hooks
