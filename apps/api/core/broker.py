"""
Broker abstraction over Celery.

publish(topic, message) hands a JSON message to the activity queue;
subscribe(topic, handler, ...) registers a Celery task that runs the handler
with at-least-once delivery and a bounded-retry-then-dead-letter policy.

Delivery contract:
- acks_late + reject_on_worker_lost: a message is acknowledged only after the
  handler returns (or after it has been dead-lettered).
- acks_on_failure_or_timeout=False: a hard time limit leaves the message
  unacknowledged, so the broker redelivers it once its visibility timeout
  lapses. Any other exception escaping the task is rejected without requeue;
  consume() only lets Celery's own retry errors escape.
- Retries use exponential backoff and stop at the policy bound.
- Dead-lettered messages are handed to an on_dead_letter callback and then
  acknowledged. If the callback raises, the message is redelivered instead,
  one delivery at a time, until the dead letter is recorded.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from celery import Celery, Task
from celery.exceptions import SoftTimeLimitExceeded
from celery.utils.time import get_exponential_backoff_interval
from kombu import Exchange, Queue

from core.exceptions import (
    AIGatewayError,
    MessageFormatError,
    ProcessingLockHeldError,
    PublishError,
    ResponseParseError,
)
from core.logging import log_context

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BrokerConfig:
    """Routing for activity events. Passed in explicitly, never read ambiently."""
    exchange: str
    queue: str
    routing_key: str

    @classmethod
    def from_settings(cls, settings) -> "BrokerConfig":
        return cls(
            exchange=settings.ACTIVITY_EXCHANGE,
            queue=settings.ACTIVITY_QUEUE,
            routing_key=settings.ACTIVITY_ROUTING_KEY,
        )


@dataclass(frozen=True)
class DeliveryDecision:
    retry: bool
    countdown: int = 0
    reason: str = ""


@dataclass(frozen=True)
class RedeliveryPolicy:
    """
    Decides what happens to a message whose handler raised.

    Retries count previous redeliveries (Celery's request.retries, 0 on the
    first attempt).
    """
    max_retries: int = 5
    parse_max_retries: int = 1
    backoff_base_s: int = 10
    backoff_max_s: int = 600
    soft_timeout_s: Optional[int] = None
    hard_timeout_s: Optional[int] = None
    lock_ttl_s: int = 0

    @classmethod
    def from_settings(cls, settings) -> "RedeliveryPolicy":
        return cls(
            max_retries=settings.RECOMMENDATION_MAX_RETRIES,
            parse_max_retries=settings.RECOMMENDATION_PARSE_MAX_RETRIES,
            backoff_base_s=settings.RECOMMENDATION_RETRY_BACKOFF_S,
            backoff_max_s=settings.RECOMMENDATION_RETRY_BACKOFF_MAX_S,
            soft_timeout_s=settings.RECOMMENDATION_TASK_SOFT_TIMEOUT_S,
            hard_timeout_s=settings.RECOMMENDATION_TASK_HARD_TIMEOUT_S,
            lock_ttl_s=settings.RECOMMENDATION_LOCK_TTL_S,
        )

    def backoff(self, retries: int) -> int:
        return get_exponential_backoff_interval(
            factor=self.backoff_base_s,
            retries=retries,
            maximum=self.backoff_max_s,
            full_jitter=False,
        )

    def decide(self, exc: BaseException, retries: int) -> DeliveryDecision:
        if isinstance(exc, MessageFormatError):
            return DeliveryDecision(retry=False, reason="malformed_message")

        if isinstance(exc, AIGatewayError) and not exc.transient:
            return DeliveryDecision(retry=False, reason="ai_gateway_fatal")

        if isinstance(exc, ResponseParseError):
            if retries < min(self.parse_max_retries, self.max_retries):
                return DeliveryDecision(retry=True, countdown=self.backoff(retries), reason="response_parse")
            return DeliveryDecision(retry=False, reason="response_parse")

        if isinstance(exc, ProcessingLockHeldError):
            # Not before the lock can have expired (holder died mid-message)
            if retries < self.max_retries:
                countdown = max(self.backoff(retries), self.lock_ttl_s)
                return DeliveryDecision(retry=True, countdown=countdown, reason="lock_held")
            return DeliveryDecision(retry=False, reason="lock_held_retries_exhausted")

        if isinstance(exc, SoftTimeLimitExceeded):
            reason = "processing_timeout"
        elif isinstance(exc, AIGatewayError):
            reason = "ai_gateway_transient"
        else:
            reason = "unexpected_error"

        if retries < self.max_retries:
            return DeliveryDecision(retry=True, countdown=self.backoff(retries), reason=reason)
        return DeliveryDecision(retry=False, reason=f"{reason}_retries_exhausted")


DeadLetterCallback = Callable[[str, Any, BaseException, int], None]


class Broker:
    """Named-queue transport for activity events, backed by a Celery app."""

    def __init__(self, app: Celery, config: BrokerConfig):
        self.app = app
        self.config = config

        exchange = Exchange(config.exchange, type="direct", durable=True)
        app.conf.task_queues = (
            Queue(config.queue, exchange, routing_key=config.routing_key, durable=True),
        )
        app.conf.task_default_queue = config.queue
        app.conf.task_default_exchange = config.exchange
        app.conf.task_default_routing_key = config.routing_key

    def publish(self, topic: str, message: Dict[str, Any]) -> None:
        """
        Send a message to the subscribers of `topic`.

        Raises:
            PublishError: broker unreachable or message not serializable
        """
        try:
            self.app.send_task(
                topic,
                args=[message],
                exchange=self.config.exchange,
                routing_key=self.config.routing_key,
            )
        except Exception as e:
            raise PublishError(f"Failed to publish to {topic}: {e}") from e

    def subscribe(
        self,
        topic: str,
        handler: Callable[[Dict[str, Any]], Any],
        policy: RedeliveryPolicy,
        on_dead_letter: DeadLetterCallback,
    ) -> Task:
        """
        Register `handler` as the consumer of `topic`.

        The handler's return value is the task result. Exceptions go through
        `policy`: retried with backoff, or dead-lettered and acknowledged.
        """

        def consume(task: Task, message: Dict[str, Any]) -> Dict[str, Any]:
            retries = task.request.retries or 0
            try:
                with log_context(topic=topic, task_id=task.request.id, attempt=retries + 1):
                    result = handler(message)
            except Exception as exc:
                decision = policy.decide(exc, retries)
                if decision.retry:
                    logger.warning(
                        f"{topic}: attempt {retries + 1} failed ({type(exc).__name__}: {exc}); "
                        f"redelivering in {decision.countdown}s"
                    )
                    raise task.retry(exc=exc, countdown=decision.countdown)

                logger.error(
                    f"{topic}: dead-lettering after {retries + 1} attempt(s) "
                    f"({decision.reason}): {type(exc).__name__}: {exc}"
                )
                try:
                    on_dead_letter(topic, message, exc, retries + 1)
                except Exception as dl_exc:
                    # Unrecorded: one more delivery, past the policy bound
                    countdown = policy.backoff(retries)
                    logger.error(
                        f"{topic}: dead letter not recorded ({type(dl_exc).__name__}: {dl_exc}); "
                        f"redelivering in {countdown}s"
                    )
                    raise task.retry(exc=dl_exc, countdown=countdown, max_retries=retries + 1)
                return {"status": "dead_lettered", "reason": decision.reason, "attempts": retries + 1}

            return {"status": "processed", "result": result}

        consume.__name__ = f"consume_{topic.replace('.', '_')}"

        # shared=False: bound to this app only, never to other Celery apps
        return self.app.task(
            name=topic,
            shared=False,
            bind=True,
            acks_late=True,
            reject_on_worker_lost=True,
            acks_on_failure_or_timeout=False,
            max_retries=policy.max_retries,
            soft_time_limit=policy.soft_timeout_s,
            time_limit=policy.hard_timeout_s,
        )(consume)
