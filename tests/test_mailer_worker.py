"""
Tests for mailer handler units.
"""

import pytest

from reactor.errors import UndeliverableMessage
from reactor.mailers import Mailer, MailMessage, MemoryDelivery
from reactor.workers import PERFORM_ABORTED
from tests.models import KittenMailer


class TestMailerHandler:
    """Message built, then delivered."""

    def test_delivers_built_message(self, bus, registry):
        unit = registry.on_event(KittenMailer, "kitten_streaming", "kitten_livestream")

        message = unit.perform("kitten_streaming", {})

        [delivered] = Mailer.delivery_method.deliveries
        assert delivered is message
        assert message["Subject"] == "Livestreaming kitten videos"
        assert message["From"] == "test@kittens.com"
        assert message["To"] == "admin@kittens.com"
        assert "Your favorite kittens are now live!" in message.get_content()

    def test_action_name_follows_event(self, bus, registry):
        seen = []

        def capture(mailer, event):
            seen.append(mailer.action_name)

        unit = registry.on_event(KittenMailer, "auction", capture, handler_name="auction")
        unit.perform("auction", {})

        assert seen == ["auction_email"]
        assert unit.name == "Auction"

    def test_message_returned_when_mail_not_called(self, bus, registry):
        unit = registry.on_event(KittenMailer, "quiet", "stay_quiet")

        message = unit.perform("quiet", {})

        assert isinstance(message, MailMessage)
        assert Mailer.delivery_method.deliveries == []

    def test_inline_action_can_call_mail(self, bus, registry):
        unit = registry.on_event(
            KittenMailer,
            "auction",
            lambda mailer, event: mailer.mail(to=["a@x.com", "b@x.com"], subject="Sold", body="gone"),
        )

        message = unit.perform("auction", {})

        assert message["To"] == "a@x.com, b@x.com"
        assert len(Mailer.delivery_method.deliveries) == 1

    def test_test_mode_aborts_mailer(self, bus, registry):
        registry.test_mode = True
        unit = registry.on_event(KittenMailer, "kitten_streaming", "kitten_livestream")

        assert unit.perform("kitten_streaming", {}) == PERFORM_ABORTED
        assert Mailer.delivery_method.deliveries == []


class TestMailerHooks:
    """process_action wraps the action."""

    def test_before_and_after_action(self, bus, registry):
        calls = []

        class HookedMailer(Mailer):
            def before_action(self):
                calls.append("before")

            def after_action(self):
                calls.append("after")

            def notify(self, event):
                calls.append("action")

        unit = registry.on_event(HookedMailer, "notify", "notify")
        unit.perform("notify", {})

        assert calls == ["before", "action", "after"]

    def test_custom_delivery_method(self, bus, registry):
        transport = MemoryDelivery()

        class TransportMailer(Mailer):
            delivery_method = transport

            def ping(self, event):
                self.mail(to="ops@x.com", subject="ping", from_="bot@x.com")

        unit = registry.on_event(TransportMailer, "ping", "ping")
        unit.perform("ping", {})

        assert len(transport.deliveries) == 1
        assert Mailer.delivery_method.deliveries == []

    def test_mailer_without_delivery_method_returns_message(self, bus, registry):
        class SilentMailer(Mailer):
            delivery_method = None

            def ping(self, event):
                self.mail(to="ops@x.com", subject="ping", from_="bot@x.com")

        unit = registry.on_event(SilentMailer, "ping", "ping")
        message = unit.perform("ping", {})

        assert isinstance(message, MailMessage)
        assert message["Subject"] == "ping"
        assert Mailer.delivery_method.deliveries == []

    def test_message_without_transport_is_undeliverable(self):
        message = MailMessage()
        message["Subject"] = "lost"

        with pytest.raises(UndeliverableMessage):
            message.deliver()
