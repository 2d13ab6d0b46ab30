"""
Polymorphic references and the entity store.

An entity never crosses the queue boundary. It is replaced by two scalar
fields, ``<field>_type`` and ``<field>_id``, and looked up again by
``EntityStore.find`` every time the field is read on the other side.
"""

from __future__ import annotations

from collections.abc import Callable, MutableMapping
from typing import Any

from sqlalchemy import inspect, select
from sqlalchemy.orm import DeclarativeBase, Session

from reactor.errors import EntityNotFound
from shared.config.logging import get_logger

logger = get_logger(__name__)


def reference_fields(field: str) -> tuple[str, str]:
    """Names of the two bag entries a reference field materializes as."""
    return f"{field}_type", f"{field}_id"


def is_entity(value: Any) -> bool:
    """True for instances of SQLAlchemy mapped classes."""
    if value is None or isinstance(value, type):
        return False
    state = inspect(value, raiseerr=False)
    return state is not None and hasattr(state, "mapper") and hasattr(state, "identity")


def entity_type_name(entity: Any) -> str:
    return type(entity).__name__


def entity_id(entity: Any) -> Any:
    """
    Primary key of a mapped instance.

    Single-column keys are returned as the scalar value, composite keys as
    a list so they serialize to JSON.
    """
    state = inspect(entity)
    identity = state.identity
    if identity is None:
        identity = state.mapper.primary_key_from_instance(entity)
    identity = list(identity)
    return identity[0] if len(identity) == 1 else identity


def encode_reference(bag: MutableMapping[str, Any], field: str, entity: Any) -> None:
    """Write ``entity`` into ``bag`` as a ``(type, id)`` pair under ``field``."""
    type_key, id_key = reference_fields(field)
    bag[type_key] = entity_type_name(entity)
    bag[id_key] = entity_id(entity)


def has_reference(bag: MutableMapping[str, Any], field: str) -> bool:
    type_key, _ = reference_fields(field)
    return bag.get(type_key) is not None


def reference_matches(bag: MutableMapping[str, Any], field: str, entity_type: str, identity: Any) -> bool:
    """Whether ``bag`` references the entity ``(entity_type, identity)`` under ``field``."""
    type_key, id_key = reference_fields(field)
    return bag.get(type_key) == entity_type and _same_id(bag.get(id_key), identity)


def _same_id(left: Any, right: Any) -> bool:
    if isinstance(left, (list, tuple)) and isinstance(right, (list, tuple)):
        return [str(v) for v in left] == [str(v) for v in right]
    return str(left) == str(right)


class EntityStore:
    """
    Read-only access to live entities by ``(type name, id)``.

    Args:
        session_provider: Zero-argument callable returning the Session to
            read with (a ``scoped_session`` works as-is).
        base: Declarative base whose registry maps type names to classes.
    """

    def __init__(self, session_provider: Callable[[], Session], base: type[DeclarativeBase]):
        self._session_provider = session_provider
        self._base = base

    def resolve_type(self, type_name: str) -> type:
        for mapper in self._base.registry.mappers:
            if mapper.class_.__name__ == type_name:
                return mapper.class_
        raise EntityNotFound(type_name)

    def find(self, type_name: str, identity: Any) -> Any:
        """
        Load the current state of an entity.

        Always reloads from the database (``populate_existing``) so a
        predicate evaluated at fire time sees the latest committed values.

        Raises:
            EntityNotFound: Unknown type or missing row.
        """
        cls = self.resolve_type(type_name)
        key = tuple(identity) if isinstance(identity, list) else identity
        entity = self._session_provider().get(cls, key, populate_existing=True)
        if entity is None:
            raise EntityNotFound(type_name, identity)
        return entity

    def release(self) -> None:
        """
        End the job's unit of work.

        Rolls back whatever the job left open, including a transaction
        poisoned by a failed flush, so the next job on this thread starts
        clean. Committed work is unaffected.
        """
        self._session_provider().rollback()

    def find_reference(self, bag: MutableMapping[str, Any], field: str) -> Any:
        type_key, id_key = reference_fields(field)
        return self.find(bag[type_key], bag.get(id_key))


# =============================================================================
# Change detection
# =============================================================================


def attribute_change(entity: Any, attribute: str) -> tuple[Any, Any] | None:
    """
    Pending change of ``attribute`` as ``(previous, current)``.

    Must be called while the attribute history is still populated (before
    or during ``after_flush``). Returns None when the attribute did not
    change, including writes of an equal value.

    A persistent column written while expired has no recorded old value
    unless a ``set`` listener loaded it; outside a flush the committed value
    is read back from the database instead.
    """
    state = inspect(entity)
    history = state.attrs[attribute].history
    if not history.has_changes():
        return None
    if history.deleted:
        previous = history.deleted[0]
    else:
        previous = _committed_value(state, attribute)
    current = history.added[0] if history.added else None
    if previous == current:
        return None
    return previous, current


def _committed_value(state: Any, attribute: str) -> Any:
    session = state.session
    if (
        session is None
        or not state.has_identity
        or state.obj() in session.new
        or attribute not in state.mapper.column_attrs
    ):
        return None

    mapper = state.mapper
    stmt = select(getattr(mapper.class_, attribute)).where(
        *[column == value for column, value in zip(mapper.primary_key, state.identity)]
    )
    with session.no_autoflush:
        return session.scalar(stmt)


def previous_value(entity: Any, attribute: str) -> Any:
    change = attribute_change(entity, attribute)
    return getattr(entity, attribute) if change is None else change[0]


def current_value(entity: Any, attribute: str) -> Any:
    return getattr(entity, attribute)


def changed_columns(entity: Any) -> dict[str, tuple[Any, Any]]:
    """Every column attribute changed in the pending write, as ``{key: (previous, current)}``."""
    changes = {}
    for attr in inspect(entity).mapper.column_attrs:
        change = attribute_change(entity, attr.key)
        if change is not None:
            changes[attr.key] = change
    return changes
