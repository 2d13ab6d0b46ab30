"""
Mailer context for message-producing subscribers.

A mailer subscriber builds a message with ``mail()``; the mailer handler
unit delivers it afterwards. Delivery itself is pluggable: anything with a
``deliver(message)`` method can be assigned to ``Mailer.delivery_method``.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from email.message import EmailMessage
from typing import Any, Protocol

from reactor.errors import UndeliverableMessage
from shared.config.logging import get_logger

logger = get_logger(__name__)


class DeliveryMethod(Protocol):
    def deliver(self, message: "MailMessage") -> Any: ...


class MemoryDelivery:
    """Keeps delivered messages in memory (test transport)."""

    def __init__(self):
        self.deliveries: list[MailMessage] = []

    def deliver(self, message: "MailMessage") -> "MailMessage":
        self.deliveries.append(message)
        return message

    def clear(self) -> None:
        self.deliveries.clear()


class MailMessage(EmailMessage):
    """An email that knows how it is delivered."""

    delivery_method: DeliveryMethod | None = None

    def deliver(self) -> "MailMessage":
        if self.delivery_method is None:
            raise UndeliverableMessage("No delivery method configured", subject=self["Subject"])
        self.delivery_method.deliver(self)
        logger.info("Mail delivered", subject=self["Subject"], to=self["To"])
        return self


class Mailer:
    """
    Base class for mailer subscribers.

    Usage:
        class KittenMailer(Mailer):
            default_from = "kittens@example.com"

            def kitten_livestream(self, event):
                self.mail(to="admin@example.com", subject="Live!", body="Kittens are live")

        registry.on_event(KittenMailer, "kitten_streaming", "kitten_livestream")
    """

    delivery_method: DeliveryMethod = MemoryDelivery()
    default_from: str | None = None

    def __init__(self):
        self.action_name: str | None = None
        self.message = MailMessage()
        self.mail_was_called = False

    @contextmanager
    def process_action(self) -> Iterator["Mailer"]:
        """Run ``before_action`` / ``after_action`` around a mailer action."""
        self.before_action()
        yield self
        self.after_action()

    def before_action(self) -> None:
        pass

    def after_action(self) -> None:
        pass

    def mail(
        self,
        *,
        to: str | list[str],
        subject: str,
        from_: str | None = None,
        body: str = "",
        **headers: Any,
    ) -> MailMessage:
        """Build the message for this action."""
        message = MailMessage()
        message["To"] = ", ".join(to) if isinstance(to, list) else to
        message["From"] = from_ or self.default_from or ""
        message["Subject"] = subject
        for header, value in headers.items():
            message[header.replace("_", "-").title()] = value
        message.set_content(body)
        message.delivery_method = type(self).delivery_method

        self.message = message
        self.mail_was_called = True
        return message
