"""
Gemini REST gateway.

Single entry point: AIGateway.get_answer(prompt) -> raw response envelope.

Call contract:
- POST {GEMINI_API_URL}, header x-goog-api-key, body {contents: [{parts: [{text}]}]}
- Bounded timeout per attempt (EXTERNAL_API_TIMEOUT)
- Network failures (connection errors, timeouts) retried in-process with
  exponential backoff, up to EXTERNAL_API_RETRY_ATTEMPTS attempts
- HTTP errors are never retried here:
    401/403, other 4xx -> AIGatewayError(transient=False)
    429, 5xx           -> AIGatewayError(transient=True), left to broker redelivery
"""
import logging
import time
from typing import Any, Dict, Optional

import requests

from core.config import settings
from core.exceptions import AIGatewayError, ResponseParseError

logger = logging.getLogger(__name__)

API_KEY_HEADER = "x-goog-api-key"


def _is_transient_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


class AIGateway:
    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout_s: Optional[float] = None,
        max_attempts: Optional[int] = None,
        backoff_s: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.api_url = api_url or settings.GEMINI_API_URL
        self.api_key = api_key if api_key is not None else settings.GEMINI_API_KEY
        self.timeout_s = timeout_s or settings.EXTERNAL_API_TIMEOUT
        self.max_attempts = max(1, max_attempts or settings.EXTERNAL_API_RETRY_ATTEMPTS)
        self.backoff_s = backoff_s if backoff_s is not None else settings.EXTERNAL_API_RETRY_BACKOFF_S
        self.session = session or requests.Session()

    @staticmethod
    def build_request_body(prompt: str) -> Dict[str, Any]:
        return {"contents": [{"parts": [{"text": prompt}]}]}

    def get_answer(self, prompt: str) -> Dict[str, Any]:
        """
        Send the prompt and return the decoded response envelope.

        Raises:
            AIGatewayError: missing credentials, network failure after all
                attempts, or a non-2xx response
            ResponseParseError: a 2xx response whose body is not JSON
        """
        if not self.api_key:
            raise AIGatewayError("GEMINI_API_KEY not configured", transient=False)

        headers = {
            "Content-Type": "application/json",
            API_KEY_HEADER: self.api_key,
        }
        body = self.build_request_body(prompt)

        response = None
        for attempt in range(self.max_attempts):
            try:
                response = self.session.post(
                    self.api_url,
                    json=body,
                    headers=headers,
                    timeout=self.timeout_s,
                )
                break
            except (requests.ConnectionError, requests.Timeout) as e:
                if attempt == self.max_attempts - 1:
                    logger.error(f"Gemini request failed after {self.max_attempts} attempts: {e}")
                    raise AIGatewayError(
                        f"Gemini unreachable after {self.max_attempts} attempts: {e}",
                        transient=True,
                    ) from e
                wait_time = self.backoff_s * (2 ** attempt)  # Exponential backoff: 1s, 2s, 4s
                logger.warning(
                    f"Gemini request attempt {attempt + 1}/{self.max_attempts} failed ({type(e).__name__}), "
                    f"retrying in {wait_time}s"
                )
                time.sleep(wait_time)

        status_code = response.status_code
        if status_code in (401, 403):
            logger.error(f"Gemini rejected credentials (HTTP {status_code})")
            raise AIGatewayError(
                f"Gemini authentication failed (HTTP {status_code})",
                transient=False,
                status_code=status_code,
            )
        if status_code < 200 or status_code >= 300:
            transient = _is_transient_status(status_code)
            logger.warning(f"Gemini returned HTTP {status_code} (transient={transient})")
            raise AIGatewayError(
                f"Gemini returned HTTP {status_code}: {response.text[:200]}",
                transient=transient,
                status_code=status_code,
            )

        try:
            envelope = response.json()
        except ValueError as e:
            raise ResponseParseError(f"Gemini response body is not JSON: {e}") from e

        logger.info("Gemini response received")
        return envelope
