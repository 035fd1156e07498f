"""
Shared fixtures: an in-memory document store, a signed-in identity, and a
scriptable generation backend.
"""

import pytest

from mindgarden.conversations import ConversationStore
from mindgarden.dialogue.backends import GenerationBackend, GenerationResponse
from mindgarden.identity import StaticIdentity
from mindgarden.storage.backends.memory import MemoryDocumentStore


def reply_data(text: str) -> dict:
    """Minimal generateContent payload with one candidate."""
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


class FakeBackend(GenerationBackend):
    """Returns queued responses in order, then a canned reply."""

    def __init__(self, responses=None, default_text="I'm here for you."):
        super().__init__("fake", "http://fake")
        self.responses = list(responses or [])
        self.default_text = default_text
        self.prompts: list[str] = []

    async def generate(self, prompt, params):
        self.prompts.append(prompt)
        if self.responses:
            return self.responses.pop(0)
        return GenerationResponse(ok=True, data=reply_data(self.default_text), backend_name=self.name)


@pytest.fixture
def documents():
    return MemoryDocumentStore()


@pytest.fixture
def identity():
    return StaticIdentity("alice")


@pytest.fixture
def store(documents, identity):
    return ConversationStore(documents, identity)


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def make_response():
    """Factory for GenerationResponse objects."""
    def _make(text=None, ok=True, status_code=200, data=None, error=""):
        if data is None:
            data = reply_data(text) if text is not None else {}
        return GenerationResponse(ok=ok, status_code=status_code, data=data, error=error)
    return _make
