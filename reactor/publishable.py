"""
Publisher rules for SQLAlchemy models.

A model declares which events its lifecycle publishes:

    class Order(Base, Publishable):
        ...

    Order.publishes("placed", target=True)
    Order.publishes("shipped", watch="status", if_=lambda order: order.status == "shipped")
    Order.publishes("reminder", at="remind_at", watch="remind_at")

Rules without ``watch`` publish when the row is created. Watched rules
publish (or, with ``at``, reschedule) whenever the watched attribute
changes. Nothing is enqueued before the transaction commits; a rollback
drops everything collected for it.

The session hooks are installed with ``Reactor.watch_sessions``.
"""

from __future__ import annotations

import inspect as pyinspect
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from types import FunctionType, MethodType
from typing import TYPE_CHECKING, Any

from sqlalchemy import event as sa_event
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import Session

from reactor.data import IndifferentDict, normalize_key
from reactor.event import Event
from reactor.references import attribute_change, changed_columns
from reactor.resolvers import Resolver
from shared.config.logging import get_logger

if TYPE_CHECKING:
    from reactor.bus import Reactor

logger = get_logger(__name__)

WRITES_KEY = "reactor.writes"
PENDING_KEY = "reactor.pending"


@dataclass(frozen=True)
class PublisherRule:
    """
    How one event is derived from an entity's lifecycle.

    ``if_``, ``enqueue_if`` and ``watch`` drive the decision and are never
    copied into the event data.
    """

    name: str
    actor: Resolver | None = None
    target: bool = False
    at: Resolver | None = None
    if_: Resolver | None = None
    enqueue_if: Resolver | None = None
    watch: str | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    def enqueueable(self, entity: Any) -> bool:
        return self.enqueue_if is None or bool(self.enqueue_if.evaluate(entity))

    def resolve_at(self, context: Any) -> Any:
        return self.at.evaluate(context) if self.at is not None else None

    def event_data(self, entity: Any) -> dict[str, Any]:
        data = dict(self.extra)

        actor = self.actor.evaluate(entity) if self.actor is not None else None
        data["actor"] = entity if actor is None else actor
        if self.target:
            data["target"] = entity

        at = self.resolve_at(entity)
        if at is not None:
            data["at"] = at
        return data


class PreviousState:
    """
    Read-only view of an entity as it was before the pending write.

    Changed attributes read their previous values. Methods and properties
    defined on the entity's class run against this view, so an ``at``
    resolver computed from other attributes yields the previous time.
    """

    def __init__(self, entity: Any, previous: Mapping[str, Any]):
        self._entity = entity
        self._previous = dict(previous)

    def __getattr__(self, name: str) -> Any:
        if name in self._previous:
            return self._previous[name]

        static = pyinspect.getattr_static(type(self._entity), name, None)
        if isinstance(static, property) and static.fget is not None:
            return static.fget(self)
        if isinstance(static, FunctionType):
            return MethodType(static, self)
        return getattr(self._entity, name)

    def __repr__(self) -> str:
        return f"<PreviousState({self._entity!r})>"


def _noop_set(target: Any, value: Any, oldvalue: Any, initiator: Any) -> Any:
    return value


def _track_previous_values(cls: type, rule: PublisherRule) -> None:
    """
    Make the ORM load old values before overwriting watched attributes.

    Without this, setting an expired attribute loses its previous value and
    no change can be detected. Rules with ``at`` need the old value of
    every column, since ``at`` may be computed from any of them.
    """
    tracked = cls.__dict__.get("_reactor_tracked")
    if tracked is None:
        tracked = set()
        cls._reactor_tracked = tracked

    keys = {rule.watch}
    if rule.at is not None:
        keys.update(sa_inspect(cls).columns.keys())

    for key in keys - tracked:
        sa_event.listen(getattr(cls, key), "set", _noop_set, active_history=True, retval=True, propagate=True)
        tracked.add(key)


class Publishable:
    """Mixin for mapped classes that publish events from their lifecycle."""

    @classmethod
    def publishes(
        cls,
        name: Any,
        *,
        actor: Any = None,
        target: bool = False,
        at: Any = None,
        if_: Any = None,
        enqueue_if: Any = None,
        watch: str | None = None,
        **extra: Any,
    ) -> PublisherRule:
        """
        Declare (or replace) the rule publishing ``name``.

        ``actor``, ``at``, ``if_`` and ``enqueue_if`` take an attribute or
        method name, or a callable receiving the entity.
        """
        rule = PublisherRule(
            name=normalize_key(name),
            actor=Resolver.build(actor),
            target=target,
            at=Resolver.build(at),
            if_=Resolver.build(if_),
            enqueue_if=Resolver.build(enqueue_if),
            watch=watch,
            extra=extra,
        )

        rules = cls.__dict__.get("_reactor_rules")
        if rules is None:
            rules = {}
            cls._reactor_rules = rules
        rules[rule.name] = rule

        if watch is not None:
            _track_previous_values(cls, rule)
        return rule

    @classmethod
    def reactor_events(cls) -> dict[str, PublisherRule]:
        """Rules declared on this class and its bases, subclasses winning."""
        rules: dict[str, PublisherRule] = {}
        for klass in reversed(cls.__mro__):
            rules.update(klass.__dict__.get("_reactor_rules", {}))
        return rules

    def publish(self, bus: Reactor, name: Any, **options: Any) -> str:
        """
        Publish ``name`` with this entity as the actor.

        ``target=True`` makes the entity the target too; any other option is
        sent as event data.
        """
        options.setdefault("actor", self)
        if options.get("target") is True:
            options["target"] = self
        return Event.publish(bus, name, options)


# =============================================================================
# Session hooks
# =============================================================================


@dataclass
class Write:
    """A Publishable entity written by one flush."""

    entity: Any
    created: bool
    changes: dict[str, tuple[Any, Any]]


@dataclass
class PendingPublish:
    """An event ready to go out once the transaction commits."""

    name: str
    data: IndifferentDict
    reschedule: bool = False


class LifecycleHooks:
    """
    Session listeners turning flushed writes into published events.

    after_flush: snapshot created entities and attribute changes (history
        is still populated here).
    after_flush_postexec: resolve rules against the snapshot. Entities are
        encoded into references now because lazy loads are still allowed.
    after_commit: publish / reschedule.
    after_rollback: drop everything collected.
    """

    def __init__(self, bus: Reactor):
        self.bus = bus

    def install(self, target: Any) -> None:
        sa_event.listen(target, "after_flush", self.after_flush)
        sa_event.listen(target, "after_flush_postexec", self.after_flush_postexec)
        sa_event.listen(target, "after_commit", self.after_commit)
        sa_event.listen(target, "after_rollback", self.after_rollback)

    # =========================================================================
    # Listeners
    # =========================================================================

    def after_flush(self, session: Session, flush_context: Any) -> None:
        writes = session.info.setdefault(WRITES_KEY, [])
        for entity in session.new:
            if isinstance(entity, Publishable):
                writes.append(Write(entity, True, self.snapshot(entity)))
        for entity in session.dirty:
            if isinstance(entity, Publishable) and session.is_modified(entity):
                changes = self.snapshot(entity)
                if changes:
                    writes.append(Write(entity, False, changes))

    def after_flush_postexec(self, session: Session, flush_context: Any) -> None:
        writes = session.info.pop(WRITES_KEY, [])
        pending = session.info.setdefault(PENDING_KEY, [])
        for write in writes:
            pending.extend(self.resolve(write))

    def after_commit(self, session: Session) -> None:
        pending = session.info.pop(PENDING_KEY, [])
        for item in pending:
            if item.reschedule:
                Event.reschedule(self.bus, item.name, item.data)
            else:
                Event.publish(self.bus, item.name, item.data)

    def after_rollback(self, session: Session) -> None:
        dropped = len(session.info.pop(PENDING_KEY, []))
        session.info.pop(WRITES_KEY, None)
        if dropped:
            logger.info("Pending events discarded on rollback", count=dropped)

    # =========================================================================
    # Rule evaluation
    # =========================================================================

    @staticmethod
    def snapshot(entity: Any) -> dict[str, tuple[Any, Any]]:
        """Changes the entity's watched rules care about, as ``{key: (previous, current)}``."""
        rules = [rule for rule in type(entity).reactor_events().values() if rule.watch is not None]
        if not rules:
            return {}
        if any(rule.at is not None for rule in rules):
            changes = changed_columns(entity)
        else:
            changes = {}
        for rule in rules:
            if rule.watch not in changes:
                change = attribute_change(entity, rule.watch)
                if change is not None:
                    changes[rule.watch] = change
        return changes

    def resolve(self, write: Write) -> Iterator[PendingPublish]:
        entity = write.entity
        rules = type(entity).reactor_events().values()

        if write.created:
            for rule in rules:
                if rule.watch is None and rule.enqueueable(entity):
                    yield PendingPublish(rule.name, self.encode(rule.event_data(entity)))

        for rule in rules:
            if rule.watch is None or rule.watch not in write.changes:
                continue
            if not rule.enqueueable(entity):
                continue

            data = rule.event_data(entity)
            if rule.at is None:
                yield PendingPublish(rule.name, self.encode(data))
                continue

            if write.created:
                data["was"] = None
            else:
                previous = PreviousState(entity, {key: change[0] for key, change in write.changes.items()})
                data["was"] = rule.resolve_at(previous)
            yield PendingPublish(rule.name, self.encode(data), reschedule=True)

    @staticmethod
    def encode(data: Mapping[str, Any]) -> IndifferentDict:
        return Event(data).data
