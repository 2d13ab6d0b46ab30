"""
Static subscriber registry.

Maps event names to the ordered handler units declared for them. Units are
appended while the application declares its subscribers and looked up by
event name (dispatch) or by job class (execution).

Usage:
    registry = SubscriberRegistry()

    registry.on_event(Auction, "puppy_delivered", "ring_bell")

    @registry.on_event(Auction, "puppy_delivered", handler_name="notify_breeder")
    def notify(source, event):
        ...
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from reactor.data import normalize_key
from reactor.mailers import Mailer
from reactor.workers.configuration import HandlerUnit
from reactor.workers.mailer_worker import MailerHandlerUnit
from shared.config.logging import get_logger
from shared.config.settings import get_settings

if TYPE_CHECKING:
    from reactor.bus import Reactor

logger = get_logger(__name__)

WILDCARD = "*"
JOB_NAMESPACE = "reactor.StaticSubscribers"


def camelize(name: str) -> str:
    """``puppy_delivered`` -> ``PuppyDelivered``; ``*`` -> ``Wildcard``."""
    if name == WILDCARD:
        return "Wildcard"
    parts = re.split(r"[^0-9a-zA-Z]+", name)
    return "".join(part[:1].upper() + part[1:] for part in parts if part)


def source_path(source: Any) -> str:
    """Dotted namespace of a subscriber source (class or module)."""
    qualname = getattr(source, "__qualname__", None)
    if qualname is None:
        return getattr(source, "__name__", type(source).__name__)
    return f"{source.__module__}.{qualname}"


def delay_seconds(delay: float | timedelta | None) -> float | None:
    if isinstance(delay, timedelta):
        return delay.total_seconds()
    return delay


class SubscriberRegistry:
    """
    Event name -> handler units, in declaration order.

    Attributes:
        test_mode: When set, units only perform for sources enabled through
            ``allow_subscriber``.
        bus: The ``Reactor`` the units dispatch through; attached by the bus.
    """

    WILDCARD = WILDCARD

    def __init__(self, test_mode: bool | None = None):
        self.test_mode = get_settings().reactor_test_mode if test_mode is None else test_mode
        self.bus: Reactor | None = None
        self._handlers: dict[str, list[HandlerUnit]] = {}
        self._units: dict[str, HandlerUnit] = {}
        self._allowed: list[Any] = []
        self._frozen = False

    def attach(self, bus: Reactor) -> None:
        self.bus = bus

    # =========================================================================
    # Declaration
    # =========================================================================

    def on_event(
        self,
        source: Any,
        name: Any,
        action: str | Callable[..., Any] | None = None,
        *,
        handler_name: str | None = None,
        delay: float | timedelta = 0,
        deprecated: bool = False,
        job_options: Mapping[str, Any] | None = None,
    ) -> Any:
        """
        Declare a subscriber of ``source`` for event ``name``.

        Without ``action`` this returns a decorator registering the decorated
        callable as an inline action ``(source, event)``.

        Returns:
            The new HandlerUnit, or the decorator.
        """
        if action is None:

            def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
                self.on_event(
                    source,
                    name,
                    fn,
                    handler_name=handler_name,
                    delay=delay,
                    deprecated=deprecated,
                    job_options=job_options,
                )
                return fn

            return decorator

        if self._frozen:
            raise RuntimeError(f"Subscriber registry is frozen; cannot declare {name!r} on {source_path(source)}")

        name = normalize_key(name)
        unit_name = self._unit_name(source, camelize(handler_name) if handler_name else f"{camelize(name)}Handler")
        job_class = f"{JOB_NAMESPACE}.{source_path(source)}.{unit_name}"

        unit_cls = MailerHandlerUnit if isinstance(source, type) and issubclass(source, Mailer) else HandlerUnit
        unit = unit_cls(
            self,
            name=unit_name,
            job_class=job_class,
            event_name=name,
            source=source,
            action=action,
            delay=delay_seconds(delay),
            deprecated=deprecated,
            job_options={"queue": get_settings().default_queue, "retry": True, **(job_options or {})},
        )

        self._units[job_class] = unit
        self._handlers.setdefault(name, []).append(unit)
        logger.debug("Subscriber declared", unit=job_class, event_name=name)
        return unit

    def _unit_name(self, source: Any, base: str) -> str:
        prefix = f"{JOB_NAMESPACE}.{source_path(source)}."
        candidate, suffix = base, 1
        while f"{prefix}{candidate}" in self._units:
            suffix += 1
            candidate = f"{base}{suffix}"
        return candidate

    def freeze(self) -> None:
        """Stop accepting declarations (called once the application has loaded)."""
        self._frozen = True

    def clear(self) -> None:
        self._handlers.clear()
        self._units.clear()
        self._allowed.clear()
        self._frozen = False

    # =========================================================================
    # Lookup
    # =========================================================================

    def lookup(self, name: Any) -> list[HandlerUnit]:
        return list(self._handlers.get(normalize_key(name), ()))

    def units(self) -> Iterator[HandlerUnit]:
        yield from self._units.values()

    def get(self, job_class: str) -> HandlerUnit:
        try:
            return self._units[job_class]
        except KeyError:
            raise KeyError(f"No subscriber registered for job class {job_class}") from None

    def __contains__(self, job_class: object) -> bool:
        return job_class in self._units

    # =========================================================================
    # Test mode
    # =========================================================================

    def is_enabled(self, source: Any) -> bool:
        return not self.test_mode or any(allowed is source for allowed in self._allowed)

    @contextmanager
    def allow_subscriber(self, *sources: Any) -> Iterator[None]:
        """Let ``sources`` perform while the block runs, even in test mode."""
        self._allowed.extend(sources)
        try:
            yield
        finally:
            for source in sources:
                self._allowed.remove(source)
