"""
Text-generation backends for the dialogue client.
"""
from mindgarden.dialogue.backends.base import (
    GenerationBackend,
    GenerationParams,
    GenerationResponse,
)
from mindgarden.dialogue.backends.gemini import GeminiBackend
from mindgarden.dialogue.backends.retry import RetryingBackend


def backend_from_config(gen_cfg: dict) -> GenerationBackend:
    """Build the configured backend, wrapped in retries when retries > 0."""
    backend = GeminiBackend(
        url=gen_cfg.get("url", "https://generativelanguage.googleapis.com"),
        model=gen_cfg.get("model", "gemini-1.5-flash"),
        api_key=gen_cfg.get("api_key", ""),
        timeout=float(gen_cfg.get("timeout", 30)),
    )
    retries = int(gen_cfg.get("retries", 0))
    if retries > 0:
        return RetryingBackend(backend, max_retries=retries)
    return backend


__all__ = [
    "GenerationBackend",
    "GenerationParams",
    "GenerationResponse",
    "GeminiBackend",
    "RetryingBackend",
    "backend_from_config",
]
