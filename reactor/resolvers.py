"""
Dynamic rule fields.

A publisher rule's ``actor``, ``at``, ``if_`` and ``enqueue_if`` are either
the name of something on the entity or a function of the entity. Both
forms evaluate the same way through ``Resolver.evaluate``.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any


class Resolver:
    """Base for the two resolver forms."""

    def evaluate(self, context: Any) -> Any:
        raise NotImplementedError

    @staticmethod
    def build(value: Any) -> Resolver | None:
        """
        Build a resolver from a declaration value.

        Args:
            value: None, an attribute/method name, a callable of the entity,
                or an existing Resolver.

        Raises:
            TypeError: For any other value, at declaration time.
        """
        if value is None or isinstance(value, Resolver):
            return value
        if isinstance(value, str):
            return MethodResolver(value)
        if callable(value):
            return CallableResolver(value)
        raise TypeError(f"Cannot resolve {value!r}: expected an attribute name or a callable")


@dataclass(frozen=True)
class MethodResolver(Resolver):
    """Named attribute, property or zero-argument method on the entity."""

    name: str

    def evaluate(self, context: Any) -> Any:
        value = getattr(context, self.name)
        if callable(value):
            return value()
        return value


@dataclass(frozen=True)
class CallableResolver(Resolver):
    """Inline function called with the entity as its only argument."""

    fn: Callable[[Any], Any]

    def evaluate(self, context: Any) -> Any:
        return self.fn(context)
