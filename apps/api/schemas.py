from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from datetime import datetime
from enum import Enum
from uuid import UUID
from typing import Optional, List, Dict, Union


# Additional metrics are flat: string keys, scalar values
MetricValue = Union[bool, int, float, str, None]


class ActivityType(str, Enum):
    WALKING = "WALKING"
    RUNNING = "RUNNING"
    CYCLING = "CYCLING"
    SWIMMING = "SWIMMING"
    YOGA = "YOGA"
    STRENGTH_TRAINING = "STRENGTH_TRAINING"
    HIIT = "HIIT"
    DANCE = "DANCE"
    PILATES = "PILATES"
    MEDITATION = "MEDITATION"
    CARDIO = "CARDIO"
    WEIGHT_TRAINING = "WEIGHT_TRAINING"
    OTHER = "OTHER"

    @classmethod
    def _missing_(cls, value):
        # Accept 'running', 'Running', ...
        if isinstance(value, str):
            return cls.__members__.get(value.upper())
        return None


class CamelModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class ActivityCreate(CamelModel):
    user_id: str = Field(min_length=1)
    activity_type: ActivityType
    duration: int = Field(ge=0, description="Duration in minutes")
    calories_burned: int = Field(ge=0)
    start_time: datetime
    additional_metrics: Dict[str, MetricValue] = Field(default_factory=dict)


class ActivityResponse(CamelModel):
    """
    Activity representation returned over REST.

    Also the broker message payload for activity events, so REST clients
    and the recommendation worker see the identical field set.
    """
    id: UUID
    user_id: str
    activity_type: ActivityType
    duration: int
    calories_burned: int
    start_time: datetime
    additional_metrics: Dict[str, MetricValue] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class RecommendationResponse(CamelModel):
    id: UUID
    activity_id: UUID
    user_id: str
    activity_type: ActivityType
    recommendation_text: str
    improvements: List[str]
    suggestions: List[str]
    safety: List[str]
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
