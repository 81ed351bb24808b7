"""
Retrying GET client for observation providers.

Providers only ever issue idempotent GETs, so every transport failure
(timeouts, refused or dropped connections, protocol errors) and every 429
or gateway 5xx is retried with jittered exponential backoff. Any httpx
error that survives the last attempt leaves as HTTPClientError. A
``Retry-After`` header on 429/503 replaces the computed delay when it is
shorter than ``max_backoff_seconds``.

The engine wraps each fetch in its own timeout, so retries here must stay
small: the defaults allow one retry.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any

import httpx

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})
RETRYABLE_ERRORS = (httpx.TransportError,)


@dataclass
class RetryConfig:
    """
    Backoff schedule: ``min(max_backoff, base_delay * 2**attempt)`` plus up to
    ``jitter_factor`` of that value.
    """

    max_retries: int = 1
    max_backoff_seconds: float = 4.0
    base_delay: float = 0.5
    jitter_factor: float = 0.1

    def calculate_backoff(self, attempt: int) -> float:
        delay = min(self.base_delay * (2 ** attempt), self.max_backoff_seconds)
        return delay + delay * self.jitter_factor * random.random()

    def is_retryable_status(self, status_code: int) -> bool:
        return status_code in RETRYABLE_STATUSES


class HTTPClientError(Exception):
    """Request failed for good. Carries the last status and body when known."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class RateLimitError(HTTPClientError):
    """Upstream kept answering 429."""


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


class HTTPClient:
    """
    Pooled ``httpx.AsyncClient`` with retries.

    Example:
        async with HTTPClient(RetryConfig(max_retries=2), timeout=4.0) as http:
            response = await http.get(url, params={"latitude": -33.87})
    """

    def __init__(
        self,
        retry_config: RetryConfig | None = None,
        timeout: float = 5.0,
    ):
        self.retry_config = retry_config or RetryConfig()
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "HTTPClient":
        self._ensure_client()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _delay(self, attempt: int, response: httpx.Response | None = None) -> float:
        computed = self.retry_config.calculate_backoff(attempt)
        if response is not None:
            hinted = _retry_after(response)
            if hinted is not None and hinted <= self.retry_config.max_backoff_seconds:
                return hinted
        return computed

    async def get(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """
        GET ``url``, retrying transient failures.

        Returns:
            The first non-retryable successful response.

        Raises:
            RateLimitError: Still 429 after the last attempt.
            HTTPClientError: Any other 4xx/5xx, a non-transport httpx
                error, or transport errors after the last attempt.
        """
        client = self._ensure_client()
        attempts = self.retry_config.max_retries + 1

        for attempt in range(attempts):
            last_attempt = attempt == attempts - 1
            try:
                response = await client.get(url, params=params, headers=headers)
            except RETRYABLE_ERRORS as e:
                if last_attempt:
                    raise HTTPClientError(
                        f"Request failed after {attempt + 1} attempts: {e}",
                    ) from e
                delay = self._delay(attempt)
                logger.warning(
                    "%s for %s (attempt %d/%d), retrying in %.2fs",
                    type(e).__name__, url, attempt + 1, attempts, delay,
                )
                await asyncio.sleep(delay)
                continue
            except httpx.HTTPError as e:
                # Redirect loops, undecodable bodies: retrying will not help.
                raise HTTPClientError(f"Request to {url} failed: {e}") from e

            status = response.status_code
            if self.retry_config.is_retryable_status(status):
                if last_attempt:
                    error_cls = RateLimitError if status == 429 else HTTPClientError
                    raise error_cls(
                        f"Request failed with status {status} after {attempt + 1} attempts",
                        status_code=status,
                        response_body=response.text,
                    )
                delay = self._delay(attempt, response)
                logger.warning(
                    "Status %d from %s (attempt %d/%d), retrying in %.2fs",
                    status, url, attempt + 1, attempts, delay,
                )
                await asyncio.sleep(delay)
                continue

            if status >= 400:
                raise HTTPClientError(
                    f"Request failed with status {status}",
                    status_code=status,
                    response_body=response.text,
                )
            return response

        # range() is never empty since max_retries >= 0
        raise HTTPClientError(f"Request to {url} was not attempted")
