"""
Celery app and broker for background recommendation generation.

Tasks are defined here and imported by both the API (to publish) and
the worker (to execute).
"""
from celery import Celery
from core.config import settings
from core.broker import Broker, BrokerConfig

# Create Celery app instance
celery_app = Celery(
    "fitness_recommendations",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    # At-least-once: ack after the handler finishes, one message per worker slot
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    # Fixed-size pool caps concurrent calls to the AI provider
    worker_concurrency=settings.RECOMMENDATION_WORKER_CONCURRENCY,
    task_time_limit=settings.RECOMMENDATION_TASK_HARD_TIMEOUT_S,
    task_soft_time_limit=settings.RECOMMENDATION_TASK_SOFT_TIMEOUT_S,
    result_expires=24 * 3600,
)

broker = Broker(celery_app, BrokerConfig.from_settings(settings))

# Import tasks to register them
from . import recommendation_tasks  # noqa: E402

__all__ = ["celery_app", "broker"]
