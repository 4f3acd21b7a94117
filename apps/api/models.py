from sqlalchemy import Column, Integer, DateTime, Text, JSON, Uuid, Index
from sqlalchemy.dialects.postgresql import JSONB
from core.database import Base
import uuid
from datetime import datetime, timezone


# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Activity(Base):
    """
    A recorded fitness session.

    Created by activity ingestion and immutable afterwards; the recommendation
    pipeline only ever reads the published copy of it.
    """
    __tablename__ = "activity"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False, index=True)
    activity_type = Column(Text, nullable=False)  # ActivityType value, e.g. 'RUNNING'
    duration = Column(Integer, nullable=False)  # minutes
    calories_burned = Column(Integer, nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=False)
    additional_metrics = Column(JSONType, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        Index("ix_activity_user_created", "user_id", "created_at"),
    )


class Recommendation(Base):
    """
    AI-derived coaching feedback for one activity.

    activity_id is a reference, not ownership (no FK: the recommendation
    service may live on a different database). Unique so that redelivered
    activity events overwrite instead of duplicating.
    """
    __tablename__ = "recommendation"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    activity_id = Column(Uuid(as_uuid=True), nullable=False, unique=True)
    user_id = Column(Text, nullable=False, index=True)
    activity_type = Column(Text, nullable=False)  # Copied from the activity at generation time
    recommendation_text = Column(Text, nullable=False, default="")
    improvements = Column(JSONType, nullable=False, default=list)
    suggestions = Column(JSONType, nullable=False, default=list)
    safety = Column(JSONType, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)


class RecommendationDeadLetter(Base):
    """
    Activity event the recommendation worker gave up on.

    Written once retries are exhausted or the failure is not retryable; the
    broker message is acknowledged afterwards. Kept for inspection and manual
    replay.
    """
    __tablename__ = "recommendation_dead_letter"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    topic = Column(Text, nullable=False)
    activity_id = Column(Uuid(as_uuid=True), nullable=True, index=True)  # None if payload undecodable
    payload = Column(JSONType, nullable=True)
    error_type = Column(Text, nullable=False)
    error_message = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
