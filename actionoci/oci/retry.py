"""Retry policy for registry requests.

Every request the registry client issues goes through
:meth:`RetryPolicy.execute`. The policy uses a fixed delay between attempts,
a registry push is a short lived job and does not need exponential backoff.

Retried:
    - ``httpx.TransportError`` (connection reset, timeouts, ...)
    - responses with a status in :data:`RETRYABLE_STATUS_CODES`

A retryable response carrying a ``retry-after`` header delays the next
attempt by that many seconds instead of the configured backoff. The result
of the final attempt, response or exception, is handed back unchanged.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Final

import httpx
from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES: Final = frozenset({408, 429, 500, 502, 503, 504})


class RetryConfig(BaseModel):
    """Retry settings, ``retries`` excludes the initial attempt."""

    model_config = ConfigDict(frozen=True)

    retries: int = Field(default=5, ge=0)
    backoff: float = Field(default=1.0, ge=0, description="Delay in seconds")

    @property
    def attempts(self) -> int:
        return self.retries + 1


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return float(int(value))
    except ValueError:
        # HTTP-date values are not supported, use the configured backoff
        return None


class RetryPolicy:
    """Execute a request, retrying transient failures with a fixed delay."""

    def __init__(self, config: RetryConfig | None = None) -> None:
        self._config = config or RetryConfig()

    @property
    def config(self) -> RetryConfig:
        return self._config

    def should_retry(self, response: httpx.Response) -> bool:
        return response.status_code in RETRYABLE_STATUS_CODES

    async def execute(
        self, send: Callable[[], Awaitable[httpx.Response]]
    ) -> httpx.Response:
        """Call ``send`` until it returns a final response.

        :param send: issues the request once per call.
        :return: the first non-retryable response, or the response of the
            last allowed attempt.
        :raises httpx.TransportError: if the last allowed attempt failed
            at the transport level.
        """
        attempts = self._config.attempts
        for attempt in range(1, attempts + 1):
            delay = self._config.backoff
            try:
                response = await send()
            except httpx.TransportError as exc:
                if attempt == attempts:
                    raise
                logger.warning(
                    "Encountered error: %s. Retrying after %ss (attempt %d/%d)...",
                    exc,
                    delay,
                    attempt,
                    attempts,
                )
            else:
                if attempt == attempts or not self.should_retry(response):
                    return response
                retry_after = _retry_after(response)
                if retry_after is not None:
                    delay = retry_after
                logger.warning(
                    "Received %d response. Retrying after %ss (attempt %d/%d)...",
                    response.status_code,
                    delay,
                    attempt,
                    attempts,
                )
            await asyncio.sleep(delay)

        raise RuntimeError("Exhausted retries without a response")
