"""
Client for the user service's validation endpoint.

GET {USER_SERVICE_URL}/api/users/{user_id}/validateUser -> true | false

Error mapping:
- 404                              -> NotFoundError
- connection error / timeout       -> ServiceUnavailableError
- 401/403, other non-2xx, bad body -> ServiceUnavailableError
"""
import logging
from typing import Optional

import requests

from core.config import settings
from core.exceptions import NotFoundError, ServiceUnavailableError

logger = logging.getLogger(__name__)


class UserValidationClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout_s: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = (base_url or settings.USER_SERVICE_URL).rstrip("/")
        self.timeout_s = timeout_s or settings.EXTERNAL_API_TIMEOUT
        self.session = session or requests.Session()

    def validate_user(self, user_id: str) -> bool:
        url = f"{self.base_url}/api/users/{user_id}/validateUser"
        try:
            r = self.session.get(url, timeout=self.timeout_s)
        except (requests.ConnectionError, requests.Timeout) as e:
            logger.error(f"User service unreachable while validating {user_id}: {e}")
            raise ServiceUnavailableError("User service unavailable") from e

        if r.status_code == 404:
            raise NotFoundError("User", user_id)
        if r.status_code in (401, 403):
            logger.error(f"User service rejected our credentials (HTTP {r.status_code})")
            raise ServiceUnavailableError("User service authentication failed")
        if r.status_code >= 400:
            logger.error(f"User service returned HTTP {r.status_code} for {user_id}")
            raise ServiceUnavailableError("User service unavailable")

        try:
            payload = r.json()
        except ValueError as e:
            raise ServiceUnavailableError("User service returned an invalid response") from e

        if not isinstance(payload, bool):
            raise ServiceUnavailableError("User service returned an invalid response")
        return payload
