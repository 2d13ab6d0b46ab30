"""
Tests for the static subscriber registry.
"""

from datetime import timedelta
from unittest.mock import patch

import pytest

from reactor import MailerHandlerUnit, SubscriberRegistry
from reactor.clock import utcnow
from reactor.subscribers import camelize
from reactor.workers import PERFORM_ABORTED
from tests.models import Auction, KittenMailer, Order


JOB_PREFIX = "reactor.StaticSubscribers.tests.models"


class TestDeclaration:
    """Uniquely named handler units."""

    def test_unit_names(self, registry):
        bell = registry.on_event(Auction, "puppy_delivered", "ring_bell")
        nothing = registry.on_event(Auction, "puppy_delivered", lambda source, event: None, handler_name="do_nothing_handler")

        assert registry.lookup("puppy_delivered") == [bell, nothing]
        assert bell.name == "PuppyDeliveredHandler"
        assert bell.job_class == f"{JOB_PREFIX}.Auction.PuppyDeliveredHandler"
        assert nothing.job_class == f"{JOB_PREFIX}.Auction.DoNothingHandler"

    def test_wildcard_unit_name(self, registry):
        unit = registry.on_event(Auction, "*", lambda source, event: None)

        assert unit.name == "WildcardHandler"
        assert registry.lookup(SubscriberRegistry.WILDCARD) == [unit]

    def test_same_event_twice_gets_suffix(self, registry):
        first = registry.on_event(Auction, "bid_made", "ring_bell")
        second = registry.on_event(Auction, "bid_made", "pick_up_poop")

        assert first.name == "BidMadeHandler"
        assert second.name == "BidMadeHandler2"
        assert registry.get(second.job_class) is second

    def test_names_are_scoped_per_source(self, registry):
        auction = registry.on_event(Auction, "shipped", "ring_bell")
        order = registry.on_event(Order, "shipped", "ring_bell")

        assert auction.name == order.name == "ShippedHandler"
        assert auction.job_class != order.job_class

    def test_decorator_form(self, registry):
        @registry.on_event(Auction, "bid_made", delay=timedelta(minutes=5))
        def first_bid(source, event):
            return "first bid"

        [unit] = registry.lookup("bid_made")
        assert unit.action is first_bid
        assert unit.delay == 300

    def test_mailer_sources_get_mailer_units(self, registry):
        unit = registry.on_event(KittenMailer, "kitten_streaming", "kitten_livestream")
        assert isinstance(unit, MailerHandlerUnit)

    def test_default_job_options(self, registry):
        unit = registry.on_event(Auction, "bid_made", "ring_bell", job_options={"retry": False})
        assert unit.job_options == {"queue": "default", "retry": False}

    def test_freeze(self, registry):
        registry.freeze()

        with pytest.raises(RuntimeError, match="frozen"):
            registry.on_event(Auction, "late", "ring_bell")

    def test_unknown_job_class(self, registry):
        with pytest.raises(KeyError):
            registry.get("reactor.StaticSubscribers.nope")

    def test_camelize(self):
        assert camelize("puppy_delivered") == "PuppyDelivered"
        assert camelize("kitten-streaming") == "KittenStreaming"
        assert camelize("*") == "Wildcard"


class TestDispatch:
    """Enqueue behaviour when an event fires."""

    def test_named_method_fires(self, bus, registry):
        registry.on_event(Auction, "puppy_delivered", "ring_bell")

        with patch.object(Auction, "ring_bell", return_value="rang") as ring_bell:
            bus.publish("puppy_delivered")
            bus.drain()

        ring_bell.assert_called_once()
        assert ring_bell.call_args[0][0].name == "puppy_delivered"

    def test_delayed_handler_is_scheduled(self, bus, registry, job_queue):
        unit = registry.on_event(Auction, "pooped", "pick_up_poop", delay=300)
        before = utcnow().timestamp()

        bus.perform_event("pooped", {})

        [job] = job_queue.scheduled_for(unit.job_class)
        assert before + 299 <= job["score"] <= utcnow().timestamp() + 301
        assert job_queue.jobs_for(unit.job_class) == []

    def test_delayed_handler_runs_when_due(self, bus, registry):
        calls = []
        registry.on_event(Auction, "pooped", lambda source, event: calls.append(event), delay=300)

        bus.perform_event("pooped", {})
        bus.drain()
        assert calls == []

        bus.drain(now=utcnow() + timedelta(seconds=301))
        assert len(calls) == 1

    def test_deprecated_handler_is_not_enqueued(self, bus, registry, job_queue):
        unit = registry.on_event(Auction, "a_high_frequency_event", lambda source, event: None, deprecated=True)

        bus.perform_event("a_high_frequency_event", {})

        assert job_queue.jobs_for(unit.job_class) == []

    def test_job_options_queue(self, bus, registry, job_queue):
        unit = registry.on_event(
            Auction,
            "event_with_ui_bound",
            lambda source, event: None,
            job_options={"queue": "highest_priority", "retry": False},
        )

        bus.perform_event("event_with_ui_bound", {})

        [job] = job_queue.jobs_for(unit.job_class)
        assert job["queue"] == "highest_priority"
        assert job["retry"] is False

    def test_queue_override_beats_job_options(self, bus, registry, job_queue):
        """REACTOR_QUEUE is read on each dispatch."""
        unit = registry.on_event(Auction, "bid_made", "ring_bell", job_options={"queue": "highest_priority"})

        bus.settings.reactor_queue = "deploy_42"
        bus.perform_event("bid_made", {})

        [job] = job_queue.jobs_for(unit.job_class)
        assert job["queue"] == "deploy_42"

    def test_environment_override_needs_no_settings_reload(self, bus, registry, job_queue, monkeypatch):
        unit = registry.on_event(Auction, "bid_made", "ring_bell")

        bus.perform_event("bid_made", {})
        monkeypatch.setenv("REACTOR_QUEUE", "deploy_7")
        bus.perform_event("bid_made", {})

        assert [job["queue"] for job in job_queue.jobs_for(unit.job_class)] == ["default", "deploy_7"]
        assert bus.event_queue_name() == "deploy_7"


class TestTestMode:
    """Subscribers stay quiet in test mode unless allowed."""

    @pytest.fixture
    def quiet_registry(self, bus):
        bus.registry.test_mode = True
        return bus.registry

    def test_disabled_by_default(self, bus, quiet_registry):
        unit = quiet_registry.on_event(Auction, "test_puppy_delivered", lambda source, event: "success")

        assert unit.perform("test_puppy_delivered", {}) == PERFORM_ABORTED

    def test_allow_subscriber(self, bus, quiet_registry):
        unit = quiet_registry.on_event(Auction, "test_puppy_delivered", lambda source, event: "success")

        with quiet_registry.allow_subscriber(Auction):
            assert unit.perform("test_puppy_delivered", {}) == "success"

        assert unit.perform("test_puppy_delivered", {}) == PERFORM_ABORTED

    def test_allow_subscriber_is_per_source(self, bus, quiet_registry):
        unit = quiet_registry.on_event(Order, "test_puppy_delivered", lambda source, event: "success")

        with quiet_registry.allow_subscriber(Auction):
            assert unit.perform("test_puppy_delivered", {}) == PERFORM_ABORTED
