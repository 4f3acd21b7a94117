"""
Tests for settings validation
"""
import pytest
from pydantic import ValidationError

from core.config import Settings
from core.database import build_database_url


def _settings(**overrides):
    return Settings(_env_file=None, **overrides)


class TestSettings:

    def test_defaults(self):
        s = _settings(DATABASE_URL=None)

        assert s.ACTIVITY_EXCHANGE == "fitness.exchange"
        assert s.ACTIVITY_QUEUE == "activity.queue"
        assert s.ACTIVITY_ROUTING_KEY == "activity.tracking"
        assert s.RECOMMENDATION_MAX_RETRIES == 5
        assert s.RECOMMENDATION_PARSE_MAX_RETRIES == 1
        assert s.is_production is False

    def test_log_format_normalized(self):
        assert _settings(LOG_FORMAT=" JSON ").LOG_FORMAT == "json"
        assert _settings(LOG_LEVEL="debug").LOG_LEVEL == "DEBUG"

    def test_log_format_rejected(self):
        with pytest.raises(ValidationError):
            _settings(LOG_FORMAT="xml")

    def test_soft_timeout_below_hard(self):
        with pytest.raises(ValidationError):
            _settings(RECOMMENDATION_TASK_SOFT_TIMEOUT_S=120, RECOMMENDATION_TASK_HARD_TIMEOUT_S=120)

    def test_lock_ttl_covers_hard_timeout(self):
        with pytest.raises(ValidationError):
            _settings(RECOMMENDATION_LOCK_TTL_S=60)

    def test_worker_concurrency_positive(self):
        with pytest.raises(ValidationError):
            _settings(RECOMMENDATION_WORKER_CONCURRENCY=0)


class TestDatabaseUrl:

    def test_override_wins(self):
        assert build_database_url(_settings(DATABASE_URL="sqlite://")) == "sqlite://"

    def test_postgres_from_parts(self):
        s = _settings(
            DATABASE_URL=None,
            POSTGRES_USER="app",
            POSTGRES_PASSWORD="pw",
            POSTGRES_HOST="db",
            POSTGRES_PORT=5433,
            POSTGRES_DB="fitness",
        )
        assert build_database_url(s) == "postgresql://app:pw@db:5433/fitness"
