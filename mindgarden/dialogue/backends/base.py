"""
Base generation backend abstraction.
Backends take one prompt and return one GenerationResponse. They never
raise on transport problems; failures come back with ok=False.
"""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

HARM_CATEGORIES = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
)


@dataclass
class GenerationParams:
    """Fixed sampling and safety settings applied to every request."""
    temperature: float = 0.7
    top_k: int = 40
    top_p: float = 0.95
    max_output_tokens: int = 1024
    safety_threshold: str = "BLOCK_MEDIUM_AND_ABOVE"

    @classmethod
    def from_config(cls, gen_cfg: dict) -> "GenerationParams":
        defaults = cls()
        return cls(
            temperature=float(gen_cfg.get("temperature", defaults.temperature)),
            top_k=int(gen_cfg.get("top_k", defaults.top_k)),
            top_p=float(gen_cfg.get("top_p", defaults.top_p)),
            max_output_tokens=int(gen_cfg.get("max_output_tokens", defaults.max_output_tokens)),
            safety_threshold=gen_cfg.get("safety_threshold", defaults.safety_threshold),
        )

    def generation_config(self) -> dict:
        return {
            "temperature": self.temperature,
            "topK": self.top_k,
            "topP": self.top_p,
            "maxOutputTokens": self.max_output_tokens,
        }

    def safety_settings(self) -> list[dict]:
        return [
            {"category": category, "threshold": self.safety_threshold}
            for category in HARM_CATEGORIES
        ]


@dataclass
class GenerationResponse:
    """Standardized response from any generation backend."""
    ok: bool
    status_code: int = 200
    data: dict = field(default_factory=dict)
    backend_name: str = ""
    latency_ms: float = 0.0
    error: str = ""

    @property
    def text(self) -> str:
        """Text of the first candidate, or "" if the response is malformed."""
        if not isinstance(self.data, dict):
            return ""
        candidates = self.data.get("candidates")
        if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
            return ""
        content = candidates[0].get("content")
        if not isinstance(content, dict):
            return ""
        parts = content.get("parts")
        if not isinstance(parts, list) or not parts or not isinstance(parts[0], dict):
            return ""
        text = parts[0].get("text")
        return text if isinstance(text, str) else ""

    @property
    def block_reason(self) -> str:
        if not isinstance(self.data, dict):
            return ""
        feedback = self.data.get("promptFeedback")
        if not isinstance(feedback, dict):
            return ""
        reason = feedback.get("blockReason")
        return reason if isinstance(reason, str) else ""

    @property
    def well_formed(self) -> bool:
        return self.ok and bool(self.text.strip())


class GenerationBackend(abc.ABC):
    """Abstract base for text-generation endpoints."""

    def __init__(self, name: str, url: str, timeout: float = 30.0):
        self.name = name
        self.url = url.rstrip("/")
        self.timeout = timeout

    @abc.abstractmethod
    async def generate(self, prompt: str, params: GenerationParams) -> GenerationResponse:
        """Submit one prompt and return the raw response (never raises)."""
        ...

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r} url={self.url!r}>"
