"""
Recommendation Celery task.

Subscribes the recommendation consumer to activity events published by
activity ingestion.

Task contract:
- Idempotent by activity id (upsert + Redis processing lock); a held lock
  defers the message for at least RECOMMENDATION_LOCK_TTL_S
- Provider timeout: EXTERNAL_API_TIMEOUT per attempt
- Task soft/hard timeout: RECOMMENDATION_TASK_SOFT_TIMEOUT_S / _HARD_TIMEOUT_S
- Retry: up to RECOMMENDATION_MAX_RETRIES with exponential backoff
  (malformed AI output: RECOMMENDATION_PARSE_MAX_RETRIES)
- Exhausted or non-retryable messages land in recommendation_dead_letter
"""
from typing import Any, Dict, Optional

from core.broker import RedeliveryPolicy
from core.config import settings
from core.database import session_scope
from services.recommendation_consumer import RecommendationConsumer
from services.recommendation_store import RecommendationStore
from tasks import broker

_consumer: Optional[RecommendationConsumer] = None


def get_consumer() -> RecommendationConsumer:
    """Lazy consumer so importing the task module never builds HTTP sessions."""
    global _consumer
    if _consumer is None:
        _consumer = RecommendationConsumer()
    return _consumer


def handle_activity_event(message: Dict[str, Any]) -> Dict[str, Any]:
    return get_consumer().process(message)


def dead_letter_activity_event(topic: str, message: Any, error: BaseException, attempts: int) -> None:
    """Raises on a failed write; the broker then redelivers the message."""
    with session_scope() as db:
        RecommendationStore(db).record_dead_letter(topic, message, error, attempts)


generate_recommendation_task = broker.subscribe(
    settings.RECOMMENDATION_TOPIC,
    handle_activity_event,
    RedeliveryPolicy.from_settings(settings),
    dead_letter_activity_event,
)
