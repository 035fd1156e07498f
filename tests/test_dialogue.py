"""
Tests for the dialogue client and prompt builders.
Uses the scripted FakeBackend from conftest; no network.
"""

import pytest

from mindgarden.dialogue.client import (
    CHAT_FALLBACK,
    THERAPY_FALLBACK,
    VOICE_FALLBACK,
    DialogueClient,
    fallback_text,
)
from mindgarden.dialogue.prompts import (
    RoleContext,
    build_prompt,
    history_window,
    parse_session_marker,
    session_marker,
    session_opening_prompt,
    session_title,
)
from mindgarden.errors import GenerationFailure, StoreFailure
from mindgarden.storage.models import Message, MessageType


@pytest.fixture
def client(fake_backend, store):
    return DialogueClient(fake_backend, store)


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

def test_general_prompt_wraps_utterance():
    prompt = build_prompt(RoleContext.GENERAL, "I can't sleep")
    assert "compassionate mental health support assistant" in prompt
    assert prompt.endswith("Question: I can't sleep")


@pytest.mark.parametrize("role, marker", [
    (RoleContext.CBT, "Cognitive Behavioral Therapy"),
    (RoleContext.MINDFULNESS, "Mindfulness-Based Therapy"),
    (RoleContext.ACT, "Acceptance and Commitment Therapy"),
])
def test_session_turn_prompt_names_approach(role, marker):
    prompt = build_prompt(role, "work is hard")
    assert marker in prompt
    assert 'most recent message is: "work is hard"' in prompt


def test_voice_prompt_asks_for_short_replies():
    prompt = build_prompt(RoleContext.CBT, "hi", voice=True)
    assert "under 3-4 paragraphs" in prompt


def test_general_voice_uses_session_template():
    prompt = build_prompt(RoleContext.GENERAL, "hi", voice=True)
    assert "continuing an AI therapy session" in prompt


def test_opening_prompt_asks_to_begin():
    prompt = session_opening_prompt(RoleContext.MINDFULNESS)
    assert "centering exercise" in prompt
    assert prompt.endswith("Begin the session now with your introduction and first question.")


def test_session_titles():
    assert session_title(RoleContext.CBT) == "Cognitive Behavioral Therapy Session"
    assert session_title(RoleContext.ACT, voice=True) == "Voice Acceptance & Commitment Therapy Session"
    assert session_title(RoleContext.GENERAL, voice=True) == "Voice Therapy Session"


def test_session_marker_round_trip():
    marker = session_marker(RoleContext.ACT, "2024-05-01T10:00:00+00:00")
    assert marker.startswith("AI Therapy Session\napproach: act\n")
    assert parse_session_marker(marker) is RoleContext.ACT
    assert parse_session_marker("just a note") is None
    assert parse_session_marker("approach: hypnosis") is None


def test_history_window_limits_turns():
    msgs = [
        Message(id=str(i), conversation_id="c", owner_id="u", content=f"m{i}",
                type=MessageType.QUESTION if i % 2 == 0 else MessageType.ANSWER)
        for i in range(6)
    ]
    msgs.insert(0, Message(id="s", conversation_id="c", owner_id="u",
                           content="AI Therapy Session", type=MessageType.SYSTEM))
    window = history_window(msgs, 2)
    assert window == "Conversation so far:\nUSER: m4\nASSISTANT: m5\n"
    assert history_window(msgs, 0) == ""


def test_fallback_text_selection():
    assert fallback_text(RoleContext.GENERAL) == CHAT_FALLBACK
    assert fallback_text(RoleContext.CBT) == THERAPY_FALLBACK
    assert fallback_text(RoleContext.CBT, voice=True) == VOICE_FALLBACK


# ---------------------------------------------------------------------------
# generate()
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_generate_returns_first_candidate(client, fake_backend, make_response):
    fake_backend.responses.append(make_response("Take a deep breath."))
    assert await client.generate("p") == "Take a deep breath."


@pytest.mark.asyncio
@pytest.mark.parametrize("kwargs", [
    {"ok": False, "status_code": 500, "error": "HTTP 500"},
    {"data": {"candidates": []}},
    {"data": {"candidates": [{"content": {"parts": []}}]}},
    {"data": {"promptFeedback": {"blockReason": "SAFETY"}}},
    {"text": "   "},
])
async def test_generate_raises_on_unusable_response(client, fake_backend, make_response, kwargs):
    fake_backend.responses.append(make_response(**kwargs))
    with pytest.raises(GenerationFailure):
        await client.generate("p")


# ---------------------------------------------------------------------------
# reply()
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_reply_persists_answer(client, store, fake_backend, make_response):
    conv_id = store.create_conversation("c")
    store.save_message(conv_id, "I feel low", MessageType.QUESTION)
    fake_backend.responses.append(make_response("I'm sorry you're feeling low."))

    turn = await client.reply(conv_id, "I feel low")

    assert turn.text == "I'm sorry you're feeling low."
    assert turn.fallback is False
    messages = store.get_conversation_messages(conv_id)
    assert messages[-1].type is MessageType.ANSWER
    assert messages[-1].content == turn.text
    assert store.get_conversation(conv_id).message_count == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("data", [
    {"unexpected": True},
    [{"candidates": []}],
    {"candidates": [{"content": [{"parts": [{"text": "hi"}]}]}]},
    {"promptFeedback": "blocked"},
    {"candidates": "none"},
])
async def test_reply_falls_back_on_malformed_response(client, store, fake_backend, make_response, data):
    conv_id = store.create_conversation("c")
    fake_backend.responses.append(make_response(data=data))

    turn = await client.reply(conv_id, "hello")

    assert turn.fallback is True
    assert turn.text == CHAT_FALLBACK
    assert "Invalid response format" in turn.error
    messages = store.get_conversation_messages(conv_id)
    assert messages[-1].content == CHAT_FALLBACK
    assert messages[-1].type is MessageType.ANSWER


@pytest.mark.asyncio
async def test_reply_therapy_fallback(client, store, fake_backend, make_response):
    conv_id = store.create_conversation("c")
    fake_backend.responses.append(make_response(ok=False, status_code=0, error="Timeout after 30s"))
    turn = await client.reply(conv_id, "hello", RoleContext.CBT)
    assert turn.text == THERAPY_FALLBACK


@pytest.mark.asyncio
async def test_reply_sends_only_latest_utterance_by_default(client, store, fake_backend):
    conv_id = store.create_conversation("c")
    store.save_message(conv_id, "earlier secret", MessageType.QUESTION)
    await client.reply(conv_id, "latest")
    assert "earlier secret" not in fake_backend.prompts[-1]
    assert "latest" in fake_backend.prompts[-1]


@pytest.mark.asyncio
async def test_reply_with_history_window(store, fake_backend):
    backend = fake_backend
    client = DialogueClient(backend, store, history_turns=4)
    conv_id = store.create_conversation("c")
    store.save_message(conv_id, "earlier question", MessageType.QUESTION)
    store.save_message(conv_id, "earlier answer", MessageType.ANSWER)
    await client.reply(conv_id, "now")
    assert "USER: earlier question" in backend.prompts[-1]
    assert "ASSISTANT: earlier answer" in backend.prompts[-1]


@pytest.mark.asyncio
async def test_history_window_skips_the_saved_current_question(store, fake_backend):
    client = DialogueClient(fake_backend, store, history_turns=4)
    conv_id = store.create_conversation("c")
    store.save_message(conv_id, "earlier question", MessageType.QUESTION)
    store.save_message(conv_id, "earlier answer", MessageType.ANSWER)
    store.save_message(conv_id, "I can't sleep", MessageType.QUESTION)

    await client.reply(conv_id, "I can't sleep")

    prompt = fake_backend.prompts[-1]
    assert "USER: I can't sleep" not in prompt
    assert prompt.count("I can't sleep") == 1
    assert "USER: earlier question" in prompt


@pytest.mark.asyncio
async def test_reply_store_errors_propagate(client, store):
    def broken(*args, **kwargs):
        raise StoreFailure("unavailable")

    store.save_message = broken
    with pytest.raises(StoreFailure):
        await client.reply("c1", "hello")


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_start_session_writes_marker_and_opening(client, store, fake_backend, make_response):
    fake_backend.responses.append(make_response("Hello, I'm your CBT therapist."))

    session = await client.start_session(RoleContext.CBT)

    conv = store.get_conversation(session.conversation_id)
    assert conv.title == "Cognitive Behavioral Therapy Session"
    messages = store.get_conversation_messages(session.conversation_id)
    assert [m.type for m in messages] == [MessageType.SYSTEM, MessageType.ANSWER]
    assert "approach: cbt" in messages[0].content
    assert messages[1].content == "Hello, I'm your CBT therapist."
    assert "Begin the session now" in fake_backend.prompts[0]


@pytest.mark.asyncio
async def test_start_session_falls_back_but_still_opens(client, store, fake_backend, make_response):
    fake_backend.responses.append(make_response(ok=False, status_code=503, error="HTTP 503"))
    session = await client.start_session(RoleContext.ACT)
    assert session.opening.fallback is True
    assert session.opening.text == THERAPY_FALLBACK
    assert len(store.get_conversation_messages(session.conversation_id)) == 2


@pytest.mark.asyncio
async def test_resume_role(client, store):
    session = await client.start_session(RoleContext.MINDFULNESS)
    assert client.resume_role(session.conversation_id) is RoleContext.MINDFULNESS

    plain = store.create_conversation("chat")
    assert client.resume_role(plain) is RoleContext.GENERAL
