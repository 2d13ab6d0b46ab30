"""
Event envelope and the publish / fire / reschedule protocol.

An event is built twice: once when it is published (outbound) and once
when the queue hands it to a worker (inbound). The two instances share
nothing but the serialized data bag, so the fire decision is always
recomputed on the inbound one.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from datetime import datetime
from typing import TYPE_CHECKING, Any

from reactor import clock
from reactor.data import IndifferentDict, normalize_key, sanitize
from reactor.errors import ConfirmationRequired
from reactor.references import encode_reference, has_reference, is_entity, reference_matches
from shared.config.logging import get_logger

if TYPE_CHECKING:
    from reactor.bus import Reactor

logger = get_logger(__name__)

EVENT_JOB = "reactor.Event"

# Scheduling provenance that is never redelivered with a republished event
RESCHEDULE_ONLY_KEYS = ("was", "if", "if_")

# Operator override for the production console guard
CONFIRMATION_KEY = "confirmed"


class Event:
    """
    A named message with an indifferent data bag.

    Reference-shaped fields (``actor``, ``target`` or any ``<field>`` with
    a ``<field>_type`` entry) are looked up in the entity store on every
    read.
    """

    def __init__(self, data: Mapping[Any, Any] | None = None, bus: Reactor | None = None):
        self.bus = bus
        self.data = IndifferentDict()
        for key, value in (data or {}).items():
            self.set(key, value)

    # =========================================================================
    # Field access
    # =========================================================================

    def set(self, key: Any, value: Any) -> None:
        """Store a value; entities are stored as a ``(type, id)`` reference, text is sanitized."""
        key = normalize_key(key)
        if is_entity(value):
            encode_reference(self.data, key, value)
        else:
            self.data[key] = sanitize(value)

    def get(self, key: Any, default: Any = None) -> Any:
        """Read a value; reference fields resolve to the live entity."""
        key = normalize_key(key)
        if has_reference(self.data, key):
            if self.bus is None or self.bus.store is None:
                raise RuntimeError(f"Cannot resolve reference '{key}' without an entity store")
            return self.bus.store.find_reference(self.data, key)
        return self.data.get(key, default)

    def __contains__(self, key: object) -> bool:
        key = normalize_key(key)
        return key in self.data or has_reference(self.data, key)

    @property
    def name(self) -> str | None:
        return self.data.get("name") or self.data.get("event")

    @property
    def uuid(self) -> str | None:
        return self.data.get("uuid")

    @property
    def at(self) -> datetime | None:
        return clock.as_utc(self.data.get("at"))

    @property
    def fired_at(self) -> datetime | None:
        return clock.as_utc(self.data.get("fired_at"))

    @property
    def actor(self) -> Any:
        return self.get("actor")

    @property
    def target(self) -> Any:
        return self.get("target")

    def to_dict(self) -> dict[str, Any]:
        return self.data.to_dict()

    def __str__(self) -> str:
        return str(self.name)

    def __repr__(self) -> str:
        return f"<Event(name={self.name!r}, uuid={self.uuid!r})>"

    # =========================================================================
    # Fire decision (inbound side)
    # =========================================================================

    def need_to_fire(self, name: str) -> bool:
        """
        Re-evaluate the publishing rule's fire-time condition.

        The actor is loaded fresh from the entity store, so a condition that
        changed between scheduling and firing is honoured. Errors raised by
        the lookup or the condition propagate and fail the job.
        """
        if not self.data.get("actor_type"):
            return True

        actor = self.actor
        rules = getattr(type(actor), "reactor_events", None)
        rule = rules().get(name) if rules is not None else None
        if rule is None or rule.if_ is None:
            return True
        return bool(rule.if_.evaluate(actor))

    def fire(self, name: str) -> bool:
        """Stamp the event and hand it to every subscriber, if it still needs to fire."""
        if not self.need_to_fire(name):
            logger.info("Event dropped by fire-time condition", event_name=name, uuid=self.uuid)
            return False

        self.data["fired_at"] = clock.utcnow()
        self.data["name"] = name
        self.fire_subscribers(name)
        return True

    def fire_subscribers(self, name: str) -> list[Any]:
        """
        Dispatch to exact-name handlers, then wildcard handlers.

        A unit registered under both lists is dispatched once, at its first
        position.
        """
        registry = self.bus.registry
        units = []
        for unit in [*registry.lookup(name), *registry.lookup(registry.WILDCARD)]:
            if unit not in units:
                units.append(unit)

        payload = self.data.to_dict()
        for unit in units:
            unit.perform_where_needed(name, payload)

        logger.debug("Event dispatched", event_name=name, uuid=self.uuid, subscribers=len(units))
        return units

    # =========================================================================
    # Queue entry points
    # =========================================================================

    @classmethod
    def publish(cls, bus: Reactor, name: Any, data: Mapping[Any, Any] | None = None) -> str:
        """
        Validate and enqueue an event.

        Raises:
            ConfirmationRequired: Interactive production shell without
                ``confirmed=True`` in the data.
            ValidationError: Rejected by the bus validator.

        Returns:
            The queue job id.
        """
        name = normalize_key(name)
        data = dict(data or {})
        confirmed = data.pop(CONFIRMATION_KEY, False)

        if bus.is_interactive_production() and not confirmed:
            raise ConfirmationRequired(name)

        message = cls({**data, "event": name, "uuid": str(uuid.uuid4())}, bus=bus)
        bus.validator(message)

        at = message.at
        args = [name, message.to_dict()]
        if at is not None and clock.is_future(at):
            jid = bus.queue.enqueue_at(at, EVENT_JOB, args, queue=bus.event_queue_name())
        else:
            jid = bus.queue.enqueue_now(EVENT_JOB, args, queue=bus.event_queue_name())

        logger.info("Event published", event_name=name, uuid=message.uuid, jid=jid, at=at)
        return jid

    @classmethod
    def perform(cls, bus: Reactor, name: str, data: Mapping[str, Any]) -> bool:
        """Queue entry point: rebuild the inbound event and fire it."""
        return cls(data, bus=bus).fire(name)

    @classmethod
    def reschedule(cls, bus: Reactor, name: Any, data: Mapping[Any, Any] | None = None) -> str | None:
        """
        Replace a scheduled event with one at a new time.

        Finds the pending event job for ``name`` scheduled at ``was`` (and
        for the same actor, when one is given), cancels it, and publishes
        again when the new ``at`` is in the future.

        Not atomic: two concurrent reschedules of the same entity may each
        leave a replacement behind.

        Returns:
            Job id of the replacement, or None when nothing was scheduled.
        """
        name = normalize_key(name)
        options = IndifferentDict(data or {})
        was_score = int(clock.to_timestamp(options.get("was")))

        probe = cls(options.without(*RESCHEDULE_ONLY_KEYS), bus=bus)
        actor_type = probe.data.get("actor_type")
        actor_id = probe.data.get("actor_id")

        for job in bus.queue.scan_scheduled():
            if job.job_class != EVENT_JOB or not job.args or job.args[0] != name:
                continue
            if int(job.score) != was_score:
                continue
            if actor_type and not reference_matches(job.args[1], "actor", actor_type, actor_id):
                continue
            bus.queue.cancel(job)
            logger.info("Scheduled event cancelled", event_name=name, jid=job.jid, was=options.get("was"))
            break

        if not clock.is_future(options.get("at")):
            return None
        return cls.publish(bus, name, probe.data)
