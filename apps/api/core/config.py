"""
Centralized configuration management with validation.

All environment variables are loaded and validated here.
This ensures consistent configuration across the API and the worker.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator, model_validator
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    """Application settings with validation."""

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    # Database Configuration
    POSTGRES_USER: str = Field(default="postgres")
    POSTGRES_PASSWORD: str = Field(default="postgres")
    POSTGRES_DB: str = Field(default="fitness_app")
    POSTGRES_HOST: str = Field(default="postgres")
    POSTGRES_PORT: int = Field(default=5432)
    # Full URL override (e.g. "sqlite://" for tests). Wins over POSTGRES_*.
    DATABASE_URL: Optional[str] = Field(default=None)

    # Database Pool Configuration
    DB_POOL_SIZE: int = Field(default=20)
    DB_MAX_OVERFLOW: int = Field(default=10)
    DB_POOL_TIMEOUT: int = Field(default=30)
    DB_POOL_RECYCLE: int = Field(default=3600)  # 1 hour

    # Redis Configuration (processing locks)
    REDIS_URL: str = Field(default="redis://redis:6379/0")

    # Celery Configuration
    CELERY_BROKER_URL: str = Field(default="redis://redis:6379/0")
    CELERY_RESULT_BACKEND: str = Field(default="redis://redis:6379/0")

    # Activity event routing. Passed explicitly into the Broker at construction.
    ACTIVITY_EXCHANGE: str = Field(default="fitness.exchange")
    ACTIVITY_QUEUE: str = Field(default="activity.queue")
    ACTIVITY_ROUTING_KEY: str = Field(default="activity.tracking")
    RECOMMENDATION_TOPIC: str = Field(default="recommendations.generate")

    # Recommendation worker
    # Caps concurrent outstanding calls to the AI provider per worker node.
    RECOMMENDATION_WORKER_CONCURRENCY: int = Field(default=4, ge=1)
    RECOMMENDATION_MAX_RETRIES: int = Field(default=5, ge=0)
    # Malformed AI output rarely fixes itself; keep this budget small.
    RECOMMENDATION_PARSE_MAX_RETRIES: int = Field(default=1, ge=0)
    RECOMMENDATION_RETRY_BACKOFF_S: int = Field(default=10, ge=1)
    RECOMMENDATION_RETRY_BACKOFF_MAX_S: int = Field(default=600, ge=1)
    RECOMMENDATION_TASK_SOFT_TIMEOUT_S: int = Field(default=90, ge=1)
    RECOMMENDATION_TASK_HARD_TIMEOUT_S: int = Field(default=120, ge=1)
    RECOMMENDATION_LOCK_TTL_S: int = Field(default=180, ge=1)

    # Gemini API Configuration
    GEMINI_API_URL: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta/models/gemini-2.0-flash:generateContent"
    )
    GEMINI_API_KEY: Optional[str] = Field(default=None)

    # External API Configuration
    EXTERNAL_API_TIMEOUT: int = Field(default=30)
    EXTERNAL_API_RETRY_ATTEMPTS: int = Field(default=3, ge=1)
    EXTERNAL_API_RETRY_BACKOFF_S: float = Field(default=1.0)

    # User service (validation collaborator)
    USER_SERVICE_URL: str = Field(default="http://user-service:8081")

    # API Configuration
    API_HOST: str = Field(default="0.0.0.0")
    API_PORT: int = Field(default=8000)

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")  # json or text

    # Environment
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)

    # CORS - comma-separated list of allowed origins for production
    CORS_ORIGINS: Optional[str] = Field(default=None)

    # Sentry Error Tracking
    SENTRY_DSN: Optional[str] = Field(default=None)
    SENTRY_TRACES_SAMPLE_RATE: float = Field(default=0.1, ge=0.0, le=1.0)

    @field_validator("LOG_FORMAT")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("json", "text"):
            raise ValueError("LOG_FORMAT must be 'json' or 'text'")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        return v.strip().upper()

    @model_validator(mode="after")
    def validate_worker_timeouts(self) -> "Settings":
        if self.RECOMMENDATION_TASK_SOFT_TIMEOUT_S >= self.RECOMMENDATION_TASK_HARD_TIMEOUT_S:
            raise ValueError("RECOMMENDATION_TASK_SOFT_TIMEOUT_S must be below the hard timeout")
        # A lock that expires mid-task lets a second worker start the same activity
        if self.RECOMMENDATION_LOCK_TTL_S < self.RECOMMENDATION_TASK_HARD_TIMEOUT_S:
            raise ValueError("RECOMMENDATION_LOCK_TTL_S must cover the hard task timeout")
        return self

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"


# Global settings instance
settings = Settings()
