"""
Pytest configuration and fixtures

All tests run against an in-memory SQLite database whose schema is created
fresh for every test and dropped afterwards. Nothing persists between tests.
Redis is disabled (processing locks degrade to always-acquired) unless a
test installs its own fake client.
"""
import os
import sys
from datetime import datetime, timezone
from uuid import uuid4

# Must be set before core.config is imported anywhere
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["CELERY_BROKER_URL"] = "memory://"
os.environ["CELERY_RESULT_BACKEND"] = "cache+memory://"
os.environ["LOG_FORMAT"] = "text"
os.environ["GEMINI_API_KEY"] = "test-key"
os.environ.pop("SENTRY_DSN", None)

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest  # noqa: E402

from core import cache  # noqa: E402
from core.database import Base, SessionLocal, engine  # noqa: E402
import models  # noqa: E402,F401  (register tables on Base.metadata)
from models import Activity  # noqa: E402
from schemas import ActivityResponse  # noqa: E402


class FakeRedis:
    """Just enough of redis.Redis for SET NX EX locks."""

    def __init__(self):
        self.store = {}
        self.ttls = {}

    def set(self, key, value, nx=False, ex=None):
        if nx and key in self.store:
            return None
        self.store[key] = value
        self.ttls[key] = ex
        return True

    def delete(self, key):
        self.ttls.pop(key, None)
        return 1 if self.store.pop(key, None) is not None else 0

    def ping(self):
        return True


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def _no_redis(monkeypatch):
    monkeypatch.setattr(cache, "get_redis_client", lambda: None)


@pytest.fixture
def fake_redis(monkeypatch):
    client = FakeRedis()
    monkeypatch.setattr(cache, "get_redis_client", lambda: client)
    return client


@pytest.fixture(scope="function")
def db_session():
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def test_activity(db_session):
    activity = Activity(
        user_id="u1",
        activity_type="RUNNING",
        duration=30,
        calories_burned=300,
        start_time=datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc),
        additional_metrics={"heartRate": 150, "distance": 5.0},
    )
    db_session.add(activity)
    db_session.commit()
    db_session.refresh(activity)
    return activity


@pytest.fixture
def activity_message():
    """Broker payload for an activity that was tracked elsewhere."""
    return ActivityResponse(
        id=uuid4(),
        user_id="u1",
        activity_type="RUNNING",
        duration=30,
        calories_burned=300,
        start_time=datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc),
        additional_metrics={"heartRate": 150},
    ).model_dump(mode="json", by_alias=True)


@pytest.fixture
def make_envelope():
    """Wrap inner text the way the Gemini REST API does."""
    def _make(text: str) -> dict:
        return {
            "candidates": [
                {
                    "content": {"parts": [{"text": text}], "role": "model"},
                    "finishReason": "STOP",
                }
            ]
        }
    return _make


@pytest.fixture
def full_document_text():
    return (
        '{"analysis": {"overall": "Solid run", "pace": "Even splits", '
        '"heartRate": "Zone 2", "caloriesBurned": "On target"}, '
        '"improvements": [{"area": "Cadence", "recommendation": "Shorten stride"}], '
        '"suggestions": [{"workout": "Tempo run", "nutrition": "Carbs before"}], '
        '"safetyTips": ["Hydrate"]}'
    )
