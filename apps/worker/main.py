"""
Celery worker entry point for recommendation generation.

    celery -A main worker --loglevel=info

Imports the Celery app (and with it the recommendation task) from the API
package. Pool size comes from RECOMMENDATION_WORKER_CONCURRENCY.
"""
import os
import sys

# API package lives beside the worker in the repo, at /api in the image
sys.path.insert(0, os.environ.get("API_PATH", os.path.join(os.path.dirname(os.path.abspath(__file__)), "..", "api")))

from celery.signals import setup_logging as celery_setup_logging  # noqa: E402

from core.config import settings  # noqa: E402
from core.logging import setup_logging  # noqa: E402
from tasks import celery_app  # noqa: E402


@celery_setup_logging.connect
def configure_worker_logging(**kwargs):
    # Connected receiver stops Celery from replacing our root handler
    setup_logging(service="worker")


if settings.SENTRY_DSN:
    import sentry_sdk
    from sentry_sdk.integrations.celery import CeleryIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        integrations=[CeleryIntegration(), SqlalchemyIntegration()],
        send_default_pii=False,
    )

__all__ = ["celery_app"]
