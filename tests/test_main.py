"""
Tests for the HTTP surface.
The app runs its real lifespan against an in-memory store with the
generation backend swapped for the scripted fake.
"""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from mindgarden import config as cfg_mod

ALICE = {"X-User-Id": "alice"}
BOB = {"X-User-Id": "bob"}


@pytest.fixture
def client(tmp_path, fake_backend):
    cfg_data = {
        "server": {"host": "127.0.0.1", "port": 8000},
        "storage": {"backend": "memory"},
        "identity": {"header": "X-User-Id"},
        "generation": {"retries": 0},
        "speech": {},
        "assessment": {"garden_prompt_delay": 0},
        "logging": {"level": "WARNING"},
    }

    orig_config = cfg_mod._config
    orig_rt_path = cfg_mod._RUNTIME_CONFIG_PATH
    orig_rt_config = cfg_mod._runtime_config
    cfg_mod._config = cfg_data
    cfg_mod._RUNTIME_CONFIG_PATH = tmp_path / "runtime_config.yaml"
    cfg_mod._runtime_mtime = 0.0
    cfg_mod._runtime_config = {}

    import mindgarden.main  # ensure module is imported before patching

    with patch("mindgarden.services.backend_from_config", return_value=fake_backend):
        with TestClient(mindgarden.main.app) as c:
            yield c

    cfg_mod._config = orig_config
    cfg_mod._RUNTIME_CONFIG_PATH = orig_rt_path
    cfg_mod._runtime_config = orig_rt_config
    cfg_mod._runtime_mtime = 0.0


def _subscribe(client, level, headers=ALICE):
    resp = client.post("/api/v1/subscription", json={"level": level}, headers=headers)
    assert resp.status_code == 201


# ---------------------------------------------------------------------------
# Basics
# ---------------------------------------------------------------------------

def test_health(client):
    data = client.get("/health").json()
    assert data["status"] == "ok"
    assert data["speech"] is False


def test_missing_identity_is_401(client):
    resp = client.get("/api/v1/conversations")
    assert resp.status_code == 401
    assert resp.json()["error"] == "User not authenticated"


def test_invalid_json_is_400(client):
    resp = client.post(
        "/api/v1/conversations",
        content=b"{not json",
        headers={**ALICE, "Content-Type": "application/json"},
    )
    assert resp.status_code == 400


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------

def test_conversation_lifecycle(client):
    conv_id = client.post("/api/v1/conversations", json={"title": "Evening"}, headers=ALICE).json()["id"]

    resp = client.post(
        f"/api/v1/conversations/{conv_id}/messages",
        json={"content": "hello", "type": "question"},
        headers=ALICE,
    )
    assert resp.status_code == 201

    listing = client.get("/api/v1/conversations", headers=ALICE).json()
    assert listing["count"] == 1
    assert listing["conversations"][0]["message_count"] == 1

    assert client.patch(f"/api/v1/conversations/{conv_id}", json={"title": "Night"}, headers=ALICE).status_code == 200
    assert client.get("/api/v1/conversations", headers=ALICE).json()["conversations"][0]["title"] == "Night"

    assert client.delete(f"/api/v1/conversations/{conv_id}", headers=ALICE).status_code == 200
    assert client.get("/api/v1/conversations", headers=ALICE).json()["count"] == 0


def test_add_message_validation(client):
    conv_id = client.post("/api/v1/conversations", json={}, headers=ALICE).json()["id"]
    resp = client.post(f"/api/v1/conversations/{conv_id}/messages", json={"type": "question"}, headers=ALICE)
    assert resp.status_code == 400


def test_foreign_conversation_is_404(client):
    conv_id = client.post("/api/v1/conversations", json={"title": "mine"}, headers=ALICE).json()["id"]
    assert client.get(f"/api/v1/conversations/{conv_id}/messages", headers=BOB).status_code == 404
    assert client.delete(f"/api/v1/conversations/{conv_id}", headers=BOB).status_code == 404
    resp = client.post(
        f"/api/v1/conversations/{conv_id}/messages",
        json={"content": "intrude", "type": "question"},
        headers=BOB,
    )
    assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Chat and therapy
# ---------------------------------------------------------------------------

def test_chat_starts_conversation(client, fake_backend):
    fake_backend.default_text = "That sounds hard. Want to talk about it?"
    resp = client.post("/api/v1/chat", json={"utterance": "I had a rough day at work today honestly"}, headers=ALICE)
    assert resp.status_code == 200
    data = resp.json()
    assert data["reply"] == "That sounds hard. Want to talk about it?"
    assert data["fallback"] is False

    conv = client.get("/api/v1/conversations", headers=ALICE).json()["conversations"][0]
    assert conv["title"] == "I had a rough day at work toda..."
    messages = client.get(f"/api/v1/conversations/{data['conversation_id']}/messages", headers=ALICE).json()["messages"]
    assert [m["type"] for m in messages] == ["question", "answer"]


def test_chat_fallback_on_bad_model_response(client, fake_backend, make_response):
    fake_backend.responses.append(make_response(data={"candidates": []}))
    data = client.post("/api/v1/chat", json={"utterance": "hello"}, headers=ALICE).json()
    assert data["fallback"] is True
    assert data["reply"].startswith("I'm having trouble connecting right now.")


def test_chat_requires_utterance(client):
    assert client.post("/api/v1/chat", json={"utterance": "  "}, headers=ALICE).status_code == 400


def test_therapy_role_in_chat_is_paywalled(client):
    resp = client.post("/api/v1/chat", json={"utterance": "hi", "role": "cbt"}, headers=ALICE)
    assert resp.status_code == 403
    assert resp.json()["feature"] == "ai_therapy"


def test_therapy_session_requires_premium(client):
    resp = client.post("/api/v1/therapy/sessions", json={"approach": "cbt"}, headers=ALICE)
    assert resp.status_code == 403

    _subscribe(client, "premium")
    resp = client.post("/api/v1/therapy/sessions", json={"approach": "cbt"}, headers=ALICE)
    assert resp.status_code == 201
    data = resp.json()
    assert data["approach"] == "cbt"
    assert data["audio"] is None


def test_session_role_is_resumed_in_chat(client, fake_backend):
    _subscribe(client, "premium")
    conv_id = client.post(
        "/api/v1/therapy/sessions", json={"approach": "mindfulness"}, headers=ALICE
    ).json()["conversation_id"]

    data = client.post("/api/v1/chat", json={"utterance": "I'm restless", "conversation_id": conv_id}, headers=ALICE).json()
    assert data["role"] == "mindfulness"
    assert "Mindfulness-Based Therapy techniques" in fake_backend.prompts[-1]


def test_voice_session_needs_premium_plus(client):
    _subscribe(client, "premium")
    resp = client.post("/api/v1/therapy/sessions", json={"approach": "act", "voice": True}, headers=ALICE)
    assert resp.status_code == 403
    assert resp.json()["feature"] == "ai_therapy_plus"

    _subscribe(client, "premium_plus")
    resp = client.post("/api/v1/therapy/sessions", json={"approach": "act", "voice": True}, headers=ALICE)
    assert resp.status_code == 201


def test_unknown_approach_is_400(client):
    _subscribe(client, "premium")
    resp = client.post("/api/v1/therapy/sessions", json={"approach": "hypnosis"}, headers=ALICE)
    assert resp.status_code == 400


def test_voice_turn_without_speech_config_is_503(client):
    conv_id = client.post("/api/v1/conversations", json={}, headers=ALICE).json()["id"]
    resp = client.post(f"/api/v1/conversations/{conv_id}/voice", content=b"audio", headers=ALICE)
    assert resp.status_code == 503


# ---------------------------------------------------------------------------
# Assessment, garden, subscription
# ---------------------------------------------------------------------------

def test_assessment_then_garden(client):
    resp = client.post("/api/v1/assessments", json={"answers": [4, 3, 3, 3, 3]}, headers=ALICE)
    assert resp.status_code == 201
    data = resp.json()
    assert data["score"] == 3.2
    assert data["mood"] == "CALM"

    garden = client.get("/api/v1/garden", headers=ALICE).json()
    assert len(garden["entries"]) == 1
    assert garden["entries"][0]["mood"] == "CALM"
    assert garden["premium"] is False
    assert garden["affirmation"] is None


def test_premium_garden_has_affirmation(client):
    _subscribe(client, "premium")
    client.post("/api/v1/assessments", json={"answers": [5, 5, 5, 5, 5]}, headers=ALICE)
    garden = client.get("/api/v1/garden", headers=ALICE).json()
    assert garden["premium"] is True
    assert garden["entries"][0]["weather"] == "sunbeam"
    assert garden["affirmation"]


@pytest.mark.parametrize("answers", [[1, 2, 3], [1, 2, 3, 4, 9], None])
def test_bad_assessment_is_400(client, answers):
    resp = client.post("/api/v1/assessments", json={"answers": answers}, headers=ALICE)
    assert resp.status_code == 400


def test_subscription_endpoints(client):
    assert client.get("/api/v1/subscription", headers=ALICE).json()["level"] == "free"
    assert client.delete("/api/v1/subscription", headers=ALICE).status_code == 400

    _subscribe(client, "premium_plus")
    details = client.get("/api/v1/subscription", headers=ALICE).json()
    assert details["name"] == "Premium+ Plan"
    assert details["is_active"] is True

    assert client.delete("/api/v1/subscription", headers=ALICE).status_code == 200


def test_bad_subscription_level_is_400(client):
    resp = client.post("/api/v1/subscription", json={"level": "gold"}, headers=ALICE)
    assert resp.status_code == 400
