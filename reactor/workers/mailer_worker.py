"""Handler unit for mailer subscribers."""

from __future__ import annotations

from typing import Any

from reactor.event import Event
from reactor.mailers import MailMessage
from reactor.workers.configuration import PERFORM_ABORTED, HandlerUnit
from shared.config.logging import get_logger

logger = get_logger(__name__)


class MailerHandlerUnit(HandlerUnit):
    """
    Runs the action on a fresh mailer instance and delivers the result.

    The action name seen by the mailer is ``<event>_email``. When the
    action never called ``mail()``, or the mailer has no delivery method,
    the message is returned undelivered.
    """

    def perform(self, name: str, data: Any) -> Any:
        if not self.configured():
            self.raise_unconfigured()
        if self.deprecated or not self.should_perform():
            return PERFORM_ABORTED

        event = Event(data, bus=self.bus)
        mailer = self.source()
        mailer.action_name = f"{name}_email"

        with mailer.process_action():
            self.invoke(mailer, event)

        message = mailer.message
        if not mailer.mail_was_called:
            logger.debug("Mailer action sent nothing", unit=self.job_class, action=mailer.action_name)
            return message
        return self.deliver(message)

    @staticmethod
    def deliver(message: Any) -> Any:
        if isinstance(message, MailMessage) and message.delivery_method is None:
            logger.warning("Mail message has no delivery method", subject=message["Subject"])
            return message
        if hasattr(message, "deliver_now"):
            return message.deliver_now()
        if hasattr(message, "deliver"):
            return message.deliver()
        return message
