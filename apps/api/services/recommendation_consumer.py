"""
Recommendation consumer.

Per activity event:

    RECEIVED -> PROMPT_BUILT -> AI_INVOKED -> PARSED -> PERSISTED
    RECEIVED -> ... -> FAILED     (exception re-raised to the broker policy)
    RECEIVED -> DEFERRED          (another worker holds this activity's lock;
                                   ProcessingLockHeldError sends it back for redelivery)

The AI call blocks this worker until it returns or its timeout fires; the
worker pool size is what bounds concurrent provider calls.
"""
import logging
from enum import Enum
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from core.cache import acquire_processing_lock, release_processing_lock
from core.database import SessionLocal
from core.exceptions import MessageFormatError, ProcessingLockHeldError
from core.logging import log_context
from schemas import ActivityResponse
from services.ai_gateway import AIGateway
from services.prompt_builder import build_prompt
from services.recommendation_store import RecommendationStore
from services import response_parser

logger = logging.getLogger(__name__)


class ProcessingState(str, Enum):
    RECEIVED = "received"
    PROMPT_BUILT = "prompt_built"
    AI_INVOKED = "ai_invoked"
    PARSED = "parsed"
    PERSISTED = "persisted"
    FAILED = "failed"
    DEFERRED = "deferred"


def decode_activity_message(message: Any) -> ActivityResponse:
    """
    Raises:
        MessageFormatError: payload is not a serialized activity
    """
    if not isinstance(message, dict):
        raise MessageFormatError(f"Expected activity object, got {type(message).__name__}")
    try:
        return ActivityResponse.model_validate(message)
    except PydanticValidationError as e:
        raise MessageFormatError(f"Invalid activity payload: {e.error_count()} error(s)") from e


class RecommendationConsumer:
    def __init__(
        self,
        gateway: Optional[AIGateway] = None,
        session_factory: Callable[[], Session] = SessionLocal,
    ):
        self.gateway = gateway or AIGateway()
        self.session_factory = session_factory

    def _transition(self, state: ProcessingState) -> ProcessingState:
        logger.info(f"Recommendation {state.value}")
        return state

    def process(self, message: Dict[str, Any]) -> Dict[str, Any]:
        """
        Generate and store the recommendation for one activity event.

        Returns a small status dict (the task result). Raises on any failure
        so the broker can retry or dead-letter the message.
        """
        activity = decode_activity_message(message)
        activity_id = str(activity.id)

        with log_context(activity_id=activity_id, user_id=activity.user_id):
            state = self._transition(ProcessingState.RECEIVED)

            if not acquire_processing_lock(activity_id):
                self._transition(ProcessingState.DEFERRED)
                raise ProcessingLockHeldError(activity_id)

            db = self.session_factory()
            try:
                prompt = build_prompt(activity)
                state = self._transition(ProcessingState.PROMPT_BUILT)

                envelope = self.gateway.get_answer(prompt)
                state = self._transition(ProcessingState.AI_INVOKED)

                recommendation = response_parser.parse(activity, envelope)
                state = self._transition(ProcessingState.PARSED)

                stored = RecommendationStore(db).upsert(recommendation)
                state = self._transition(ProcessingState.PERSISTED)

                return {
                    "status": state.value,
                    "activity_id": activity_id,
                    "recommendation_id": str(stored.id),
                }
            except Exception as e:
                db.rollback()
                logger.error(
                    f"Recommendation {ProcessingState.FAILED.value} after {state.value} "
                    f"({type(e).__name__}: {e})"
                )
                raise
            finally:
                db.close()
                release_processing_lock(activity_id)
