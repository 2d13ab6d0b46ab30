"""
Tests for the Redis job queue and worker, against a mocked client.
"""

import json
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
import redis

from reactor.errors import UnconfiguredWorker
from reactor.queue import RedisJobQueue, Worker
from reactor.queue.base import build_payload, dumps
from shared.config.settings import Settings


@pytest.fixture
def queue_settings():
    return Settings(
        environment="test",
        reactor_key_prefix="reactor",
        reactor_max_retries=2,
        reactor_retry_base_delay=10,
        reactor_dead_letter_max=100,
    )


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def queue(client, queue_settings):
    return RedisJobQueue(client, queue_settings)


class TestEnqueue:
    """Ready lanes and the scheduled set."""

    def test_enqueue_now_pushes_to_lane(self, queue, client):
        jid = queue.enqueue_now("reactor.Event", ["bid_made", {"a": 1}], queue="critical")

        pipe = client.pipeline.return_value
        pipe.sadd.assert_called_once_with("reactor:queues", "critical")
        key, raw = pipe.lpush.call_args[0]
        assert key == "reactor:queue:critical"
        payload = json.loads(raw)
        assert payload["jid"] == jid
        assert payload["class"] == "reactor.Event"
        assert payload["args"] == ["bid_made", {"a": 1}]
        assert payload["retry"] is True
        pipe.execute.assert_called_once()

    def test_enqueue_now_default_lane(self, queue, client):
        queue.enqueue_now("reactor.Event", [])
        key, _ = client.pipeline.return_value.lpush.call_args[0]
        assert key == "reactor:queue:default"

    def test_enqueue_at_scores_by_epoch(self, queue, client):
        at = datetime(2031, 5, 1, 12, 0, tzinfo=timezone.utc)

        queue.enqueue_at(at, "reactor.Event", ["closes", {}])

        key, mapping = client.zadd.call_args[0]
        assert key == "reactor:schedule"
        [(member, score)] = mapping.items()
        assert score == at.timestamp()
        assert json.loads(member)["args"] == ["closes", {}]

    def test_enqueue_in_schedules_relative(self, queue, client):
        queue.enqueue_in(300, "Handler", [])
        [(_, score)] = client.zadd.call_args[0][1].items()
        assert score > datetime.now(timezone.utc).timestamp() + 290


class TestScheduledSet:
    """Scan and cancel."""

    def test_scan_and_cancel(self, queue, client):
        member = dumps(build_payload("reactor.Event", ["closes", {"x": 1}], "default"))
        client.zscan_iter.return_value = iter([(member, 1700000000.0)])
        client.zrem.return_value = 1

        [job] = list(queue.scan_scheduled())

        assert job.job_class == "reactor.Event"
        assert job.args == ["closes", {"x": 1}]
        assert job.score == 1700000000.0
        assert queue.cancel(job) is True
        client.zrem.assert_called_once_with("reactor:schedule", member)

    def test_cancel_already_gone(self, queue, client):
        member = dumps(build_payload("reactor.Event", ["closes", {}], "default"))
        client.zscan_iter.return_value = iter([(member, 1.0)])
        client.zrem.return_value = 0

        [job] = list(queue.scan_scheduled())

        assert queue.cancel(job) is False

    def test_enqueue_due_only_moves_what_it_removed(self, queue, client):
        won = dumps(build_payload("A", [], "default"))
        lost = dumps(build_payload("B", [], "default"))
        client.zrangebyscore.return_value = [won, lost]
        client.zrem.side_effect = [1, 0]

        assert queue.enqueue_due() == 1
        client.pipeline.return_value.lpush.assert_called_once_with("reactor:queue:default", won)


class TestWorkOnce:
    """Running jobs and handling failures."""

    def _fetch(self, client, payload):
        client.brpop.return_value = ("reactor:queue:default", dumps(payload))

    def test_no_job(self, queue, client):
        client.brpop.return_value = None
        runner = MagicMock()

        assert queue.work_once(runner, ["default"], timeout=1) is False
        runner.assert_not_called()

    def test_runs_job(self, queue, client):
        self._fetch(client, build_payload("reactor.Event", ["bid_made", {}], "default"))
        runner = MagicMock()

        assert queue.work_once(runner, ["default"], timeout=1) is True
        runner.assert_called_once_with("reactor.Event", ["bid_made", {}])
        client.brpop.assert_called_once_with(["reactor:queue:default"], timeout=1)

    def test_failure_is_retried_with_backoff(self, queue, client):
        self._fetch(client, build_payload("Handler", [], "default"))
        runner = MagicMock(side_effect=ValueError("boom"))

        queue.work_once(runner, ["default"], timeout=1)

        key, mapping = client.zadd.call_args[0]
        assert key == "reactor:schedule"
        [(member, score)] = mapping.items()
        retried = json.loads(member)
        assert retried["retry_count"] == 1
        assert retried["error_message"] == "boom"
        assert score > datetime.now(timezone.utc).timestamp() + 5

    def test_exhausted_retries_are_dead_lettered(self, queue, client):
        payload = {**build_payload("Handler", [], "default"), "retry_count": 2}
        self._fetch(client, payload)

        queue.work_once(MagicMock(side_effect=ValueError("boom")), ["default"], timeout=1)

        client.zadd.assert_not_called()
        pipe = client.pipeline.return_value
        key, raw = pipe.lpush.call_args[0]
        assert key == "reactor:dead"
        assert json.loads(raw)["error_class"] == "ValueError"
        pipe.ltrim.assert_called_once_with("reactor:dead", 0, 99)

    def test_retry_disabled(self, queue, client):
        self._fetch(client, build_payload("Handler", [], "default", retry=False))

        queue.work_once(MagicMock(side_effect=ValueError("boom")), ["default"], timeout=1)

        client.zadd.assert_not_called()
        assert client.pipeline.return_value.lpush.call_args[0][0] == "reactor:dead"

    def test_unconfigured_worker_is_never_retried(self, queue, client):
        self._fetch(client, build_payload("Handler", [], "default"))
        runner = MagicMock(side_effect=UnconfiguredWorker("Handler", {"action": None}))

        queue.work_once(runner, ["default"], timeout=1)

        client.zadd.assert_not_called()
        assert client.pipeline.return_value.lpush.call_args[0][0] == "reactor:dead"

    def test_dead_letters_listing(self, queue, client):
        client.lrange.return_value = [json.dumps({"class": "Handler", "error_class": "ValueError"})]

        assert queue.dead_letters(5) == [{"class": "Handler", "error_class": "ValueError"}]
        client.lrange.assert_called_once_with("reactor:dead", 0, 4)


class TestWorker:
    """Polling loop."""

    def test_stops_and_backs_off_on_connection_error(self):
        job_queue = MagicMock()
        worker = Worker(job_queue, MagicMock(), ["default"], poll_interval=0)

        def fail_then_stop(*args, **kwargs):
            worker.stop()
            raise redis.ConnectionError("down")

        job_queue.work_once.side_effect = fail_then_stop

        worker.run()

        job_queue.enqueue_due.assert_called_once()
        job_queue.work_once.assert_called_once()
