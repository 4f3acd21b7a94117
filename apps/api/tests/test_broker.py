"""
Tests for the Celery-backed broker

Delivery is exercised eagerly with task.apply(): Celery re-applies a
retried task in-process, so a whole retry chain runs synchronously.
"""
from unittest.mock import MagicMock

import pytest
from celery import Celery
from celery.exceptions import SoftTimeLimitExceeded

from core.broker import Broker, BrokerConfig, RedeliveryPolicy
from core.exceptions import (
    AIGatewayError,
    MessageFormatError,
    ProcessingLockHeldError,
    PublishError,
    ResponseParseError,
)

CONFIG = BrokerConfig(exchange="fitness.exchange", queue="activity.queue", routing_key="activity.tracking")
TOPIC = "recommendations.generate"


@pytest.fixture
def app():
    return Celery("broker-test", broker="memory://", backend="cache+memory://")


class TestRedeliveryPolicy:

    policy = RedeliveryPolicy(max_retries=3, parse_max_retries=1, backoff_base_s=10, backoff_max_s=600)

    def test_malformed_message_never_retried(self):
        decision = self.policy.decide(MessageFormatError("bad"), 0)
        assert decision.retry is False
        assert decision.reason == "malformed_message"

    def test_fatal_gateway_error_never_retried(self):
        decision = self.policy.decide(AIGatewayError("401", transient=False), 0)
        assert decision.retry is False
        assert decision.reason == "ai_gateway_fatal"

    def test_transient_gateway_error_retried_until_bound(self):
        exc = AIGatewayError("503", transient=True)
        assert self.policy.decide(exc, 0).retry is True
        assert self.policy.decide(exc, 2).retry is True

        exhausted = self.policy.decide(exc, 3)
        assert exhausted.retry is False
        assert exhausted.reason == "ai_gateway_transient_retries_exhausted"

    def test_parse_error_has_small_budget(self):
        first = self.policy.decide(ResponseParseError("truncated"), 0)
        assert first.retry is True
        assert first.reason == "response_parse"

        assert self.policy.decide(ResponseParseError("truncated"), 1).retry is False

    def test_parse_budget_capped_by_max_retries(self):
        policy = RedeliveryPolicy(max_retries=0, parse_max_retries=3)
        assert policy.decide(ResponseParseError("x"), 0).retry is False

    def test_timeout_and_unexpected(self):
        assert self.policy.decide(SoftTimeLimitExceeded(), 0).reason == "processing_timeout"
        assert self.policy.decide(RuntimeError("boom"), 0).reason == "unexpected_error"
        assert self.policy.decide(RuntimeError("boom"), 3).reason == "unexpected_error_retries_exhausted"

    def test_held_lock_waits_out_its_ttl(self):
        policy = RedeliveryPolicy(max_retries=3, backoff_base_s=10, backoff_max_s=600, lock_ttl_s=180)

        first = policy.decide(ProcessingLockHeldError("a1"), 0)
        assert first.retry is True
        assert first.reason == "lock_held"
        assert first.countdown == 180

        assert policy.decide(ProcessingLockHeldError("a1"), 2).countdown == 180
        # Backoff wins once it outgrows the TTL
        assert RedeliveryPolicy(backoff_base_s=100, lock_ttl_s=180).decide(ProcessingLockHeldError("a1"), 2).countdown == 400

        exhausted = policy.decide(ProcessingLockHeldError("a1"), 3)
        assert exhausted.retry is False
        assert exhausted.reason == "lock_held_retries_exhausted"

    def test_exponential_backoff(self):
        assert self.policy.backoff(0) == 10
        assert self.policy.backoff(1) == 20
        assert self.policy.backoff(2) == 40
        assert self.policy.decide(RuntimeError("boom"), 1).countdown == 20

    def test_backoff_capped(self):
        assert self.policy.backoff(20) == 600


class TestBrokerConfig:

    def test_declares_durable_direct_queue(self, app):
        Broker(app, CONFIG)

        (queue,) = app.conf.task_queues
        assert queue.name == "activity.queue"
        assert queue.routing_key == "activity.tracking"
        assert queue.exchange.name == "fitness.exchange"
        assert queue.exchange.type == "direct"
        assert queue.durable is True
        assert app.conf.task_default_queue == "activity.queue"

    def test_from_settings(self):
        settings = MagicMock(ACTIVITY_EXCHANGE="x", ACTIVITY_QUEUE="q", ACTIVITY_ROUTING_KEY="k")
        assert BrokerConfig.from_settings(settings) == BrokerConfig("x", "q", "k")


class TestPublish:

    def test_sends_to_configured_route(self, app):
        broker = Broker(app, CONFIG)
        app.send_task = MagicMock()

        broker.publish(TOPIC, {"id": "a1"})

        app.send_task.assert_called_once_with(
            TOPIC,
            args=[{"id": "a1"}],
            exchange="fitness.exchange",
            routing_key="activity.tracking",
        )

    def test_broker_failure_wrapped(self, app):
        broker = Broker(app, CONFIG)
        app.send_task = MagicMock(side_effect=ConnectionError("refused"))

        with pytest.raises(PublishError):
            broker.publish(TOPIC, {"id": "a1"})


class TestSubscribe:

    def _subscribe(self, app, handler, policy=None):
        dead_letter = MagicMock()
        task = Broker(app, CONFIG).subscribe(
            TOPIC,
            handler,
            policy or RedeliveryPolicy(max_retries=2, parse_max_retries=1),
            dead_letter,
        )
        return task, dead_letter

    def test_task_options(self, app):
        task, _ = self._subscribe(app, MagicMock(), RedeliveryPolicy(max_retries=4, soft_timeout_s=90, hard_timeout_s=120))

        assert task.name == TOPIC
        assert task.acks_late is True
        assert task.reject_on_worker_lost is True
        assert task.acks_on_failure_or_timeout is False
        assert task.max_retries == 4
        assert task.soft_time_limit == 90
        assert task.time_limit == 120

    def test_success(self, app):
        handler = MagicMock(return_value={"status": "persisted"})
        task, dead_letter = self._subscribe(app, handler)

        result = task.apply(args=[{"id": "a1"}]).get()

        assert result == {"status": "processed", "result": {"status": "persisted"}}
        handler.assert_called_once_with({"id": "a1"})
        dead_letter.assert_not_called()

    def test_transient_failure_then_success(self, app):
        handler = MagicMock(side_effect=[AIGatewayError("503", transient=True), {"status": "persisted"}])
        task, dead_letter = self._subscribe(app, handler)

        result = task.apply(args=[{"id": "a1"}]).get()

        assert result["status"] == "processed"
        assert handler.call_count == 2
        dead_letter.assert_not_called()

    def test_retries_exhausted_dead_letters_once(self, app):
        handler = MagicMock(side_effect=AIGatewayError("503", transient=True))
        task, dead_letter = self._subscribe(app, handler)

        result = task.apply(args=[{"id": "a1"}]).get()

        # 1 delivery + 2 redeliveries
        assert handler.call_count == 3
        assert result == {
            "status": "dead_lettered",
            "reason": "ai_gateway_transient_retries_exhausted",
            "attempts": 3,
        }
        dead_letter.assert_called_once()
        topic, message, exc, attempts = dead_letter.call_args.args
        assert topic == TOPIC
        assert message == {"id": "a1"}
        assert isinstance(exc, AIGatewayError)
        assert attempts == 3

    def test_malformed_dead_letters_immediately(self, app):
        handler = MagicMock(side_effect=MessageFormatError("bad"))
        task, dead_letter = self._subscribe(app, handler)

        result = task.apply(args=[["not", "an", "activity"]]).get()

        assert handler.call_count == 1
        assert result["status"] == "dead_lettered"
        assert result["reason"] == "malformed_message"
        dead_letter.assert_called_once()

    def test_parse_error_retried_once(self, app):
        handler = MagicMock(side_effect=ResponseParseError("truncated"))
        task, dead_letter = self._subscribe(app, handler)

        result = task.apply(args=[{"id": "a1"}]).get()

        assert handler.call_count == 2
        assert result["reason"] == "response_parse"
        assert dead_letter.call_args.args[3] == 2

    def test_held_lock_redelivered_not_acked(self, app):
        handler = MagicMock(side_effect=[ProcessingLockHeldError("a1"), {"status": "persisted"}])
        task, dead_letter = self._subscribe(app, handler)

        result = task.apply(args=[{"id": "a1"}]).get()

        assert handler.call_count == 2
        assert result == {"status": "processed", "result": {"status": "persisted"}}
        dead_letter.assert_not_called()

    def test_failed_dead_letter_write_redelivers(self, app):
        handler = MagicMock(side_effect=MessageFormatError("bad"))
        task, dead_letter = self._subscribe(app, handler)
        dead_letter.side_effect = [RuntimeError("db down"), None]

        result = task.apply(args=[{"id": "a1"}]).get()

        assert handler.call_count == 2
        assert dead_letter.call_count == 2
        assert result == {"status": "dead_lettered", "reason": "malformed_message", "attempts": 2}

    def test_failed_dead_letter_write_past_retry_bound(self, app):
        handler = MagicMock(side_effect=AIGatewayError("503", transient=True))
        task, dead_letter = self._subscribe(app, handler)
        dead_letter.side_effect = [RuntimeError("db down"), None]

        result = task.apply(args=[{"id": "a1"}]).get()

        # 3 deliveries exhaust max_retries=2; the unrecorded dead letter earns a 4th
        assert handler.call_count == 4
        assert result["reason"] == "ai_gateway_transient_retries_exhausted"
        assert dead_letter.call_args.args[3] == 4
