"""
Recommendation persistence and lookup.

upsert() is keyed on activity_id: a redelivered activity event overwrites
the existing recommendation instead of adding a second one. The unique
constraint on recommendation.activity_id backs this up when two workers
race on the same activity.
"""
import logging
from typing import Any, List, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.exceptions import NotFoundError
from models import Recommendation, RecommendationDeadLetter

logger = logging.getLogger(__name__)

_CONTENT_FIELDS = (
    "user_id",
    "activity_type",
    "recommendation_text",
    "improvements",
    "suggestions",
    "safety",
)


def _as_uuid(value: Any) -> Optional[UUID]:
    if value is None or isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


class RecommendationStore:
    def __init__(self, db: Session):
        self.db = db

    def _find(self, activity_id: UUID) -> Optional[Recommendation]:
        return (
            self.db.query(Recommendation)
            .filter(Recommendation.activity_id == activity_id)
            .first()
        )

    def _overwrite(self, existing: Recommendation, incoming: Recommendation) -> Recommendation:
        for field in _CONTENT_FIELDS:
            setattr(existing, field, getattr(incoming, field))
        self.db.commit()
        logger.info(f"Recommendation for activity {existing.activity_id} overwritten (id={existing.id})")
        return existing

    def upsert(self, recommendation: Recommendation) -> Recommendation:
        """Insert, or overwrite the recommendation already stored for this activity."""
        existing = self._find(recommendation.activity_id)
        if existing is not None:
            return self._overwrite(existing, recommendation)

        self.db.add(recommendation)
        try:
            self.db.commit()
        except IntegrityError:
            # Another worker inserted the same activity first
            self.db.rollback()
            existing = self._find(recommendation.activity_id)
            if existing is None:
                raise
            return self._overwrite(existing, recommendation)

        self.db.refresh(recommendation)
        logger.info(f"Recommendation {recommendation.id} stored for activity {recommendation.activity_id}")
        return recommendation

    def by_user(self, user_id: str) -> List[Recommendation]:
        return (
            self.db.query(Recommendation)
            .filter(Recommendation.user_id == user_id)
            .order_by(Recommendation.created_at.asc(), Recommendation.id.asc())
            .all()
        )

    def by_activity(self, activity_id: UUID) -> Recommendation:
        """
        Raises:
            NotFoundError: no recommendation generated (yet) for this activity
        """
        recommendation = self._find(activity_id)
        if recommendation is None:
            raise NotFoundError("Recommendation", str(activity_id))
        return recommendation

    def record_dead_letter(
        self,
        topic: str,
        payload: Any,
        error: BaseException,
        attempts: int,
    ) -> RecommendationDeadLetter:
        activity_id = _as_uuid(payload.get("id")) if isinstance(payload, dict) else None
        entry = RecommendationDeadLetter(
            topic=topic,
            activity_id=activity_id,
            payload=payload if isinstance(payload, (dict, list)) else {"raw": repr(payload)},
            error_type=type(error).__name__,
            error_message=str(error)[:2000],
            attempts=attempts,
        )
        self.db.add(entry)
        self.db.commit()
        logger.warning(
            f"Dead-lettered {topic} message for activity {activity_id} "
            f"after {attempts} attempt(s): {type(error).__name__}"
        )
        return entry
