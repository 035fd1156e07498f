"""
Retry wrapper for generation backends with exponential backoff.

Retried (transient):
- 429: Rate limited
- 5xx: Server errors
- 0:   Transport failure or timeout

Returned immediately (permanent):
- 400, 401, 403, 404
"""

from __future__ import annotations

import asyncio
import logging

from mindgarden.dialogue.backends.base import (
    GenerationBackend,
    GenerationParams,
    GenerationResponse,
)

logger = logging.getLogger(__name__)

_RETRYABLE = frozenset((0, 429, 500, 502, 503, 504))


class RetryingBackend(GenerationBackend):
    """Wraps a backend with bounded retries on transient failures."""

    def __init__(
        self,
        backend: GenerationBackend,
        max_retries: int = 2,
        backoff_base: float = 1.5,
        backoff_max: float = 10.0,
    ):
        super().__init__(backend.name, backend.url, backend.timeout)
        self.backend = backend
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max

    def _is_retryable(self, status_code: int) -> bool:
        return status_code in _RETRYABLE

    def _backoff_seconds(self, attempt: int) -> float:
        return min(self.backoff_base ** attempt, self.backoff_max)

    async def generate(self, prompt: str, params: GenerationParams) -> GenerationResponse:
        response = await self.backend.generate(prompt, params)
        attempt = 0
        while not response.ok and attempt < self.max_retries:
            if not self._is_retryable(response.status_code):
                logger.debug(
                    "Backend '%s' returned non-retryable %d: %s",
                    self.name, response.status_code, response.error,
                )
                return response

            attempt += 1
            backoff = self._backoff_seconds(attempt)
            logger.warning(
                "Backend '%s' transient %d, retry in %.1fs (%d/%d)",
                self.name, response.status_code, backoff, attempt, self.max_retries,
            )
            await asyncio.sleep(backoff)
            response = await self.backend.generate(prompt, params)

        if not response.ok and attempt == self.max_retries and self.max_retries:
            logger.error("Backend '%s' exhausted retries (last: %s)", self.name, response.error)
        return response
