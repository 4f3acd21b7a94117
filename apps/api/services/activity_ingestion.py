"""
Activity ingestion.

track_activity() validates the user, persists the activity and publishes it
for recommendation generation. The publish is best-effort: a broker failure
is logged and the activity is still returned, so tracking never degrades
with the AI pipeline.
"""
import logging
from typing import List, Optional, Protocol
from uuid import UUID

from sqlalchemy.orm import Session

from core.exceptions import NotFoundError, PublishError, ValidationError
from models import Activity
from schemas import ActivityCreate, ActivityResponse

logger = logging.getLogger(__name__)


class UserValidator(Protocol):
    def validate_user(self, user_id: str) -> bool: ...


class EventPublisher(Protocol):
    def publish(self, topic: str, message: dict) -> None: ...


def to_message(activity: Activity) -> dict:
    """Broker payload: the REST representation of the activity."""
    return ActivityResponse.model_validate(activity).model_dump(mode="json", by_alias=True)


class ActivityIngestionService:
    def __init__(
        self,
        db: Session,
        user_validator: UserValidator,
        publisher: Optional[EventPublisher],
        topic: str,
    ):
        self.db = db
        self.user_validator = user_validator
        self.publisher = publisher
        self.topic = topic

    def track_activity(self, request: ActivityCreate) -> Activity:
        """
        Raises:
            ValidationError: user service says the user does not exist
            NotFoundError / ServiceUnavailableError: from the user service client
        """
        if not self.user_validator.validate_user(request.user_id):
            raise ValidationError(f"Invalid user ID: {request.user_id}", field="userId")

        activity = Activity(
            user_id=request.user_id,
            activity_type=request.activity_type.value,
            duration=request.duration,
            calories_burned=request.calories_burned,
            start_time=request.start_time,
            additional_metrics=dict(request.additional_metrics),
        )
        self.db.add(activity)
        self.db.commit()
        self.db.refresh(activity)
        logger.info(f"Activity {activity.id} tracked for user {activity.user_id} ({activity.activity_type})")

        self._publish(activity)
        return activity

    def _publish(self, activity: Activity) -> None:
        if self.publisher is None:
            logger.warning(f"No broker configured; activity {activity.id} will not get a recommendation")
            return
        try:
            message = to_message(activity)
        except ValueError as e:
            logger.error(f"Failed to serialize activity {activity.id} for publish: {e}")
            return
        try:
            self.publisher.publish(self.topic, message)
            logger.info(f"Activity {activity.id} published to {self.topic}")
        except PublishError as e:
            logger.error(f"Failed to publish activity {activity.id}: {e}")

    def get_user_activities(self, user_id: str) -> List[Activity]:
        return (
            self.db.query(Activity)
            .filter(Activity.user_id == user_id)
            .order_by(Activity.created_at.asc(), Activity.id.asc())
            .all()
        )

    def get_activity(self, activity_id: UUID) -> Activity:
        activity = self.db.get(Activity, activity_id)
        if activity is None:
            raise NotFoundError("Activity", str(activity_id))
        return activity
