"""Authenticated client for the remote `/check-phishing` endpoint.

Each attempt has its own timeout. Transport errors and non-2xx responses are
retried with pure exponential backoff (1s, 2s, 4s by default); a response
that arrives but cannot be understood is a protocol error and is not retried.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import aiohttp

from ..utils.result import Err, ErrorKind, Ok, Result

logger = logging.getLogger(__name__)

CHECK_PATH = "/check-phishing"
DEFAULT_TIMEOUT = 10.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 1.0


def _describe(exc: Optional[BaseException]) -> str:
    if exc is None:
        return "unknown error"
    return str(exc) or type(exc).__name__


class ClassifierHTTPError(Exception):
    """Non-2xx answer from the classification endpoint."""

    def __init__(self, status: int):
        super().__init__(f"HTTP {status}")
        self.status = status


class InvalidResponseError(ValueError):
    """Payload does not match the expected response shape."""


@dataclass
class ClassificationResult:
    """Parsed answer from the remote classifier."""

    is_phishing: bool
    confidence: float = 0.0
    explanation: Optional[str] = None
    remediation_code: Optional[str] = None
    visited_before: bool = False

    @classmethod
    def from_payload(cls, payload: Any) -> "ClassificationResult":
        if not isinstance(payload, dict):
            raise InvalidResponseError("Invalid API response format")
        is_phishing = payload.get("isPhishing")
        if not isinstance(is_phishing, bool):
            raise InvalidResponseError("Invalid API response format: isPhishing is not a boolean")

        try:
            confidence = float(payload.get("confidence") or 0)
        except (TypeError, ValueError):
            confidence = 0.0

        explanation = payload.get("explanation")
        code = payload.get("code")
        return cls(
            is_phishing=is_phishing,
            confidence=confidence,
            explanation=str(explanation) if explanation else None,
            remediation_code=str(code) if code else None,
            visited_before=bool(payload.get("visitedBefore")),
        )


class RemoteClassifier:
    """POSTs stripped URLs to the classification service."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._sleep = sleep

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}{CHECK_PATH}"

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number `attempt + 1` (attempt is zero-based)."""
        return self.retry_delay * (2 ** attempt)

    async def _post(self, session: aiohttp.ClientSession, stripped_url: str, token: str) -> Any:
        headers = {"Authorization": f"Bearer {token}"}
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with session.post(
            self.endpoint,
            headers=headers,
            json={"url": stripped_url},
            timeout=timeout,
        ) as resp:
            if not 200 <= resp.status < 300:
                raise ClassifierHTTPError(resp.status)
            try:
                return await resp.json(content_type=None)
            except ValueError as exc:
                raise InvalidResponseError(f"Response is not JSON: {exc}") from exc

    async def classify(self, stripped_url: str, token: str) -> Result[ClassificationResult]:
        """Classify a stripped URL, retrying transport failures.

        Returns Ok(ClassificationResult), Err(NETWORK) once retries are
        exhausted, or Err(PROTOCOL) for an unusable response.
        """
        last_error: Optional[BaseException] = None

        async with aiohttp.ClientSession() as session:
            for attempt in range(self.max_retries + 1):
                try:
                    payload = await self._post(session, stripped_url, token)
                    return Ok(ClassificationResult.from_payload(payload))
                except InvalidResponseError as exc:
                    logger.error("Classifier returned an invalid response for %s: %s", stripped_url, exc)
                    return Err(ErrorKind.PROTOCOL, str(exc))
                except (aiohttp.ClientError, asyncio.TimeoutError, ClassifierHTTPError) as exc:
                    last_error = exc

                if attempt < self.max_retries:
                    delay = self.backoff_delay(attempt)
                    logger.warning(
                        "Classifier request for %s failed (%s), retrying (%s/%s) in %.1fs",
                        stripped_url,
                        _describe(last_error),
                        attempt + 1,
                        self.max_retries,
                        delay,
                    )
                    await self._sleep(delay)

        logger.error(
            "Classifier request for %s failed after %s retries: %s",
            stripped_url,
            self.max_retries,
            _describe(last_error),
        )
        return Err(ErrorKind.NETWORK, _describe(last_error))
