"""
Tests for the Gemini backend and the retry wrapper.
Run with: pytest tests/test_generation_backends.py
"""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from mindgarden.dialogue.backends import (
    GeminiBackend,
    GenerationParams,
    GenerationResponse,
    RetryingBackend,
    backend_from_config,
)
from mindgarden.dialogue.backends.base import HARM_CATEGORIES


def _mock_client(mock_client_cls, post_result=None, post_side_effect=None):
    mock_client = AsyncMock()
    if post_side_effect is not None:
        mock_client.post.side_effect = post_side_effect
    else:
        mock_client.post.return_value = post_result
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    mock_client_cls.return_value = mock_client
    return mock_client


# ---------------------------------------------------------------------------
# GenerationParams / GenerationResponse
# ---------------------------------------------------------------------------

def test_default_generation_config():
    params = GenerationParams()
    assert params.generation_config() == {
        "temperature": 0.7,
        "topK": 40,
        "topP": 0.95,
        "maxOutputTokens": 1024,
    }


def test_safety_settings_cover_all_categories():
    settings = GenerationParams().safety_settings()
    assert [s["category"] for s in settings] == list(HARM_CATEGORIES)
    assert {s["threshold"] for s in settings} == {"BLOCK_MEDIUM_AND_ABOVE"}


def test_params_from_config_overrides():
    params = GenerationParams.from_config({"temperature": "0.2", "top_k": 10})
    assert params.temperature == 0.2
    assert params.top_k == 10
    assert params.top_p == 0.95


def test_response_text_handles_malformed_data():
    assert GenerationResponse(ok=True, data={}).text == ""
    assert GenerationResponse(ok=True, data={"candidates": ["x"]}).text == ""
    assert GenerationResponse(ok=True, data={"candidates": [{"content": {"parts": [{"text": 5}]}}]}).text == ""
    assert not GenerationResponse(ok=True, data={}).well_formed


# ---------------------------------------------------------------------------
# GeminiBackend
# ---------------------------------------------------------------------------

def test_build_body():
    body = GeminiBackend.build_body("hello", GenerationParams())
    assert body["contents"] == [{"parts": [{"text": "hello"}]}]
    assert body["generationConfig"]["maxOutputTokens"] == 1024
    assert len(body["safetySettings"]) == 4


@pytest.mark.asyncio
async def test_gemini_generate_success():
    b = GeminiBackend(url="http://fake", model="gemini-test", api_key="k")

    mock_resp = MagicMock()
    mock_resp.status_code = 200
    mock_resp.json.return_value = {"candidates": [{"content": {"parts": [{"text": "hello"}]}}]}

    with patch("mindgarden.dialogue.backends.gemini.httpx.AsyncClient") as mock_client_cls:
        mock_client = _mock_client(mock_client_cls, post_result=mock_resp)
        result = await b.generate("hi", GenerationParams())

    assert result.ok
    assert result.text == "hello"
    assert result.backend_name == "gemini"
    args, kwargs = mock_client.post.call_args
    assert args[0] == "http://fake/v1/models/gemini-test:generateContent"
    assert kwargs["params"] == {"key": "k"}


@pytest.mark.asyncio
async def test_gemini_generate_http_error():
    b = GeminiBackend(url="http://fake")

    mock_resp = MagicMock()
    mock_resp.status_code = 429
    mock_resp.text = "quota exceeded"

    with patch("mindgarden.dialogue.backends.gemini.httpx.AsyncClient") as mock_client_cls:
        _mock_client(mock_client_cls, post_result=mock_resp)
        result = await b.generate("hi", GenerationParams())

    assert not result.ok
    assert result.status_code == 429
    assert "quota exceeded" in result.error


@pytest.mark.asyncio
async def test_gemini_generate_timeout():
    b = GeminiBackend(url="http://fake", timeout=1)

    with patch("mindgarden.dialogue.backends.gemini.httpx.AsyncClient") as mock_client_cls:
        _mock_client(mock_client_cls, post_side_effect=httpx.TimeoutException("timed out"))
        result = await b.generate("hi", GenerationParams())

    assert not result.ok
    assert result.status_code == 0
    assert "Timeout" in result.error


@pytest.mark.asyncio
async def test_gemini_generate_bad_json():
    b = GeminiBackend(url="http://fake")

    mock_resp = MagicMock()
    mock_resp.status_code = 200
    mock_resp.json.side_effect = ValueError("not json")

    with patch("mindgarden.dialogue.backends.gemini.httpx.AsyncClient") as mock_client_cls:
        _mock_client(mock_client_cls, post_result=mock_resp)
        result = await b.generate("hi", GenerationParams())

    assert not result.ok
    assert "not json" in result.error


# ---------------------------------------------------------------------------
# RetryingBackend
# ---------------------------------------------------------------------------

def _scripted(*responses):
    inner = MagicMock()
    inner.name = "inner"
    inner.url = "http://fake"
    inner.timeout = 30.0
    inner.generate = AsyncMock(side_effect=list(responses))
    return inner


@pytest.mark.asyncio
async def test_retry_recovers_from_transient_failure():
    inner = _scripted(
        GenerationResponse(ok=False, status_code=503, error="busy"),
        GenerationResponse(ok=True, data={"candidates": []}),
    )
    backend = RetryingBackend(inner, max_retries=2)
    with patch("mindgarden.dialogue.backends.retry.asyncio.sleep", new=AsyncMock()) as mock_sleep:
        result = await backend.generate("p", GenerationParams())
    assert result.ok
    assert inner.generate.await_count == 2
    mock_sleep.assert_awaited_once()


@pytest.mark.asyncio
async def test_retry_does_not_retry_permanent_errors():
    inner = _scripted(GenerationResponse(ok=False, status_code=401, error="bad key"))
    backend = RetryingBackend(inner, max_retries=3)
    with patch("mindgarden.dialogue.backends.retry.asyncio.sleep", new=AsyncMock()) as mock_sleep:
        result = await backend.generate("p", GenerationParams())
    assert result.status_code == 401
    assert inner.generate.await_count == 1
    mock_sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_retry_gives_up_after_max_retries():
    inner = _scripted(*[GenerationResponse(ok=False, status_code=0, error="Timeout")] * 3)
    backend = RetryingBackend(inner, max_retries=2)
    with patch("mindgarden.dialogue.backends.retry.asyncio.sleep", new=AsyncMock()):
        result = await backend.generate("p", GenerationParams())
    assert not result.ok
    assert inner.generate.await_count == 3


def test_backoff_is_capped():
    backend = RetryingBackend(_scripted(), backoff_base=2.0, backoff_max=5.0)
    assert backend._backoff_seconds(1) == 2.0
    assert backend._backoff_seconds(5) == 5.0


def test_backend_from_config_wraps_when_retries_set():
    assert isinstance(backend_from_config({"retries": 2}), RetryingBackend)
    assert isinstance(backend_from_config({"retries": 0}), GeminiBackend)
