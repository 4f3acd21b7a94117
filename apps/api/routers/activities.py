"""
Activities API Router

Tracks activities (validate user, persist, publish for recommendation
generation) and lists/gets them back.
"""
from fastapi import APIRouter, Depends, Header, Query, status
from sqlalchemy.orm import Session
from typing import Optional, List
from uuid import UUID
from core.config import settings
from core.database import get_db
from core.exceptions import ValidationError
from schemas import ActivityCreate, ActivityResponse
from services.activity_ingestion import ActivityIngestionService
from services.user_validation import UserValidationClient

router = APIRouter(prefix="/activities", tags=["activities"])


def get_user_validator() -> UserValidationClient:
    return UserValidationClient()


def get_event_publisher():
    from tasks import broker
    return broker


def get_ingestion_service(
    db: Session = Depends(get_db),
    user_validator: UserValidationClient = Depends(get_user_validator),
    publisher=Depends(get_event_publisher),
) -> ActivityIngestionService:
    return ActivityIngestionService(
        db=db,
        user_validator=user_validator,
        publisher=publisher,
        topic=settings.RECOMMENDATION_TOPIC,
    )


@router.post("", response_model=ActivityResponse, status_code=status.HTTP_201_CREATED)
def track_activity(
    request: ActivityCreate,
    service: ActivityIngestionService = Depends(get_ingestion_service),
):
    """
    Track a new activity.

    Returns the stored activity immediately; the recommendation is generated
    asynchronously and may never appear if the broker is unavailable.
    """
    return service.track_activity(request)


@router.get("", response_model=List[ActivityResponse])
def list_activities(
    user_id: Optional[str] = Query(None, alias="userId", description="Owner of the activities"),
    x_user_id: Optional[str] = Header(None, alias="X-User-ID"),
    service: ActivityIngestionService = Depends(get_ingestion_service),
):
    """List a user's activities. userId query parameter, or X-User-ID header."""
    owner = user_id or x_user_id
    if not owner:
        raise ValidationError("userId query parameter or X-User-ID header is required", field="userId")
    return service.get_user_activities(owner)


@router.get("/{activity_id}", response_model=ActivityResponse)
def get_activity(
    activity_id: UUID,
    service: ActivityIngestionService = Depends(get_ingestion_service),
):
    return service.get_activity(activity_id)
