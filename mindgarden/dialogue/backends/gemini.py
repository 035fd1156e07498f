"""
Gemini generateContent backend.

POSTs {contents, generationConfig, safetySettings} to
{url}/v1/models/{model}:generateContent?key=... and wraps the result.
Non-streaming. The httpx timeout is the request deadline; expiry comes back
as a failed response like any other transport error.
"""

from __future__ import annotations

import logging
import time

import httpx

from mindgarden.dialogue.backends.base import (
    GenerationBackend,
    GenerationParams,
    GenerationResponse,
)

logger = logging.getLogger(__name__)

DEFAULT_URL = "https://generativelanguage.googleapis.com"
DEFAULT_MODEL = "gemini-1.5-flash"


class GeminiBackend(GenerationBackend):
    """Google Generative Language API backend."""

    def __init__(
        self,
        name: str = "gemini",
        url: str = DEFAULT_URL,
        model: str = DEFAULT_MODEL,
        api_key: str = "",
        timeout: float = 30.0,
    ):
        super().__init__(name, url, timeout)
        self.model = model
        self.api_key = api_key

    def _endpoint(self) -> str:
        return f"{self.url}/v1/models/{self.model}:generateContent"

    @staticmethod
    def build_body(prompt: str, params: GenerationParams) -> dict:
        return {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": params.generation_config(),
            "safetySettings": params.safety_settings(),
        }

    async def generate(self, prompt: str, params: GenerationParams) -> GenerationResponse:
        t0 = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(
                    self._endpoint(),
                    params={"key": self.api_key} if self.api_key else None,
                    json=self.build_body(prompt, params),
                    headers={"Content-Type": "application/json"},
                )
                latency = (time.monotonic() - t0) * 1000

                if resp.status_code >= 400:
                    return GenerationResponse(
                        ok=False,
                        status_code=resp.status_code,
                        backend_name=self.name,
                        latency_ms=latency,
                        error=f"HTTP {resp.status_code}: {resp.text[:200]}",
                    )

                return GenerationResponse(
                    ok=True,
                    status_code=resp.status_code,
                    data=resp.json(),
                    backend_name=self.name,
                    latency_ms=latency,
                )
        except httpx.TimeoutException:
            latency = (time.monotonic() - t0) * 1000
            logger.warning("Generation backend '%s' timed out after %.0fms", self.name, latency)
            return GenerationResponse(
                ok=False,
                backend_name=self.name,
                latency_ms=latency,
                error=f"Timeout after {self.timeout}s",
            )
        except (httpx.HTTPError, ValueError) as e:
            latency = (time.monotonic() - t0) * 1000
            logger.warning("Generation backend '%s' failed: %s", self.name, e)
            return GenerationResponse(
                ok=False,
                backend_name=self.name,
                latency_ms=latency,
                error=str(e),
            )
