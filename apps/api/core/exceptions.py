"""
Custom exception classes and error handling.

Two families:
- APIException subclasses are surfaced to HTTP callers with a consistent body.
- PipelineError subclasses stay inside the recommendation pipeline; they are
  logged, retried or dead-lettered and never reach the original caller.
"""
from fastapi import HTTPException, status
from typing import Optional, Dict, Any


class APIException(HTTPException):
    """Base API exception with consistent structure."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"detail": self.detail, "errorCode": self.error_code}
        field = getattr(self, "field", None)
        if field:
            body["field"] = field
        return body


class NotFoundError(APIException):
    """Resource not found."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource} not found: {identifier}",
            error_code="NOT_FOUND"
        )
        self.resource = resource
        self.identifier = identifier


class ValidationError(APIException):
    """Validation error."""

    def __init__(self, detail: str, field: Optional[str] = None):
        error_code = f"VALIDATION_ERROR_{field.upper()}" if field else "VALIDATION_ERROR"
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=detail,
            error_code=error_code
        )
        self.field = field


class ServiceUnavailableError(APIException):
    """A collaborator needed to serve the request could not be reached."""

    def __init__(self, detail: str = "Service temporarily unavailable"):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail,
            error_code="SERVICE_UNAVAILABLE"
        )


# ---------------------------------------------------------------------------
# Pipeline errors
# ---------------------------------------------------------------------------

class PipelineError(Exception):
    """Base class for operational errors in the recommendation pipeline."""


class PublishError(PipelineError):
    """Activity event could not be handed to the broker."""


class MessageFormatError(PipelineError):
    """Broker message payload does not decode into an Activity."""


class AIGatewayError(PipelineError):
    """
    AI provider call failed.

    `transient` marks failures worth redelivering (network, 429, 5xx);
    auth failures and other 4xx responses are not.
    """

    def __init__(self, message: str, *, transient: bool, status_code: Optional[int] = None):
        super().__init__(message)
        self.transient = transient
        self.status_code = status_code


class ResponseParseError(PipelineError):
    """AI envelope or its inner JSON document is structurally malformed."""


class ProcessingLockHeldError(PipelineError):
    """Another worker holds this activity's processing lock."""

    def __init__(self, activity_id: str):
        super().__init__(f"Processing lock held for activity {activity_id}")
        self.activity_id = activity_id
