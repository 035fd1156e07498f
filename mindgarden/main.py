"""
FastAPI application — the MindGarden HTTP entry point.

The lifespan builds every collaborator from config (see services.py) and
keeps them in the module-level `services`. Each request resolves its
caller from the identity header and gets per-user stores built on top.

Errors from the core map onto status codes in one place
(_handle_mindgarden_error); endpoints never catch them themselves.
"""

import base64
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from mindgarden import __version__
from mindgarden.assessment import MoodAssessment, score_answers
from mindgarden.config import get_config
from mindgarden.conversations import title_from_utterance
from mindgarden.dialogue.prompts import RoleContext
from mindgarden.dialogue.voice import Recording
from mindgarden.errors import (
    AssessmentError,
    InvalidArgument,
    MindGardenError,
    NotFoundOrForbidden,
    StoreFailure,
    Unauthenticated,
)
from mindgarden.identity import IdentityProvider
from mindgarden.services import Services, build_services, setup_logging
from mindgarden.storage.models import MessageType
from mindgarden.subscription import Feature, SubscriptionLevel

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Globals, initialized at startup
# ---------------------------------------------------------------------------
services: Services | None = None

_STATUS_CODES = (
    (Unauthenticated, 401),
    (InvalidArgument, 400),
    (NotFoundOrForbidden, 404),
    (StoreFailure, 503),
    (AssessmentError, 500),
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    global services

    cfg = get_config()
    setup_logging(cfg)
    services = build_services(cfg)

    server_cfg = cfg.get("server", {})
    logger.info(
        "MindGarden started — listening on %s:%s, store %s",
        server_cfg.get("host", "0.0.0.0"),
        server_cfg.get("port", 8000),
        cfg.get("storage", {}).get("backend", "sqlite"),
    )

    yield

    services.documents.close()
    logger.info("MindGarden shutting down")


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
app = FastAPI(
    title="MindGarden",
    description="Mood check-ins, supportive dialogue and a garden that grows with you.",
    version=__version__,
    lifespan=lifespan,
)


@app.exception_handler(MindGardenError)
async def _handle_mindgarden_error(request: Request, exc: MindGardenError):
    status = 500
    for exc_type, code in _STATUS_CODES:
        if isinstance(exc, exc_type):
            status = code
            break
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    body = {"error": str(exc)}
    summary_id = getattr(exc, "summary_message_id", None)
    if summary_id:
        body["summary_message_id"] = summary_id
    return JSONResponse(body, status_code=status)


def _services() -> Services:
    if services is None:
        raise StoreFailure("Services not initialized")
    return services


def _identity(request: Request) -> IdentityProvider:
    svc = _services()
    return svc.identity(request.headers.get(svc.identity_header))


async def _json_body(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError:
        raise InvalidArgument("invalid JSON") from None
    if not isinstance(body, dict):
        raise InvalidArgument("JSON body must be an object")
    return body


def _role(value) -> RoleContext:
    try:
        return RoleContext(value or RoleContext.GENERAL.value)
    except ValueError:
        raise InvalidArgument(f"Unknown approach: {value!r}") from None


def _paywall(feature: Feature) -> JSONResponse:
    return JSONResponse(
        {"error": "This feature requires a premium subscription", "feature": feature.value},
        status_code=403,
    )


def _therapy_feature(voice: bool) -> Feature:
    return Feature.AI_THERAPY_PLUS if voice else Feature.AI_THERAPY


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------

@app.post("/api/v1/conversations")
async def create_conversation(request: Request):
    body = await _json_body(request)
    store = _services().conversations(_identity(request))
    conv_id = store.create_conversation(body.get("title") or "New Conversation")
    return JSONResponse({"id": conv_id}, status_code=201)


@app.get("/api/v1/conversations")
async def list_conversations(request: Request):
    store = _services().conversations(_identity(request))
    conversations = store.get_user_conversations()
    return JSONResponse({
        "conversations": [c.to_dict() for c in conversations],
        "count": len(conversations),
    })


@app.patch("/api/v1/conversations/{conv_id}")
async def rename_conversation(conv_id: str, request: Request):
    body = await _json_body(request)
    store = _services().conversations(_identity(request))
    store.update_conversation_title(conv_id, body.get("title", ""))
    return JSONResponse({"ok": True})


@app.delete("/api/v1/conversations/{conv_id}")
async def delete_conversation(conv_id: str, request: Request):
    store = _services().conversations(_identity(request))
    store.delete_conversation(conv_id)
    return JSONResponse({"ok": True})


@app.get("/api/v1/conversations/{conv_id}/messages")
async def list_messages(conv_id: str, request: Request):
    store = _services().conversations(_identity(request))
    messages = store.get_conversation_messages(conv_id)
    return JSONResponse({
        "conversation_id": conv_id,
        "messages": [m.to_dict() for m in messages],
    })


@app.post("/api/v1/conversations/{conv_id}/messages")
async def add_message(conv_id: str, request: Request):
    body = await _json_body(request)
    store = _services().conversations(_identity(request))
    msg_id = store.save_message(
        conv_id,
        body.get("content", ""),
        body.get("type", ""),
        audio_url=body.get("audio_url"),
    )
    return JSONResponse({"id": msg_id}, status_code=201)


# ---------------------------------------------------------------------------
# Dialogue
# ---------------------------------------------------------------------------

@app.post("/api/v1/chat")
async def chat(request: Request):
    """
    One chat turn. Without conversation_id a new conversation is started,
    titled from the utterance. Without role an existing session keeps the
    approach recorded in its marker.
    """
    body = await _json_body(request)
    utterance = (body.get("utterance") or "").strip()
    if not utterance:
        raise InvalidArgument("Utterance is required")

    svc = _services()
    identity = _identity(request)
    dialogue = svc.dialogue(identity)
    conv_id = body.get("conversation_id")
    if conv_id:
        dialogue.conversations.get_conversation(conv_id)

    if body.get("role"):
        role = _role(body["role"])
    elif conv_id:
        role = dialogue.resume_role(conv_id)
    else:
        role = RoleContext.GENERAL

    if role is not RoleContext.GENERAL and not svc.gate(identity).has_feature_access(Feature.AI_THERAPY):
        return _paywall(Feature.AI_THERAPY)

    if not conv_id:
        conv_id = dialogue.conversations.create_conversation(title_from_utterance(utterance))
    question_id = dialogue.conversations.save_message(conv_id, utterance, MessageType.QUESTION)
    turn = await dialogue.reply(conv_id, utterance, role)
    return JSONResponse({
        "conversation_id": conv_id,
        "question_id": question_id,
        "message_id": turn.message_id,
        "reply": turn.text,
        "fallback": turn.fallback,
        "role": role.value,
    })


@app.post("/api/v1/therapy/sessions")
async def start_therapy_session(request: Request):
    body = await _json_body(request)
    role = _role(body.get("approach", RoleContext.CBT.value))
    voice = bool(body.get("voice", False))

    svc = _services()
    identity = _identity(request)
    feature = _therapy_feature(voice)
    if not svc.gate(identity).has_feature_access(feature):
        return _paywall(feature)

    audio = None
    if voice and svc.transcriber is not None and svc.synthesizer is not None:
        session, audio = await svc.voice_dialogue(identity).start_session(role)
    else:
        session = await svc.dialogue(identity).start_session(role, voice=voice)

    return JSONResponse({
        "conversation_id": session.conversation_id,
        "approach": session.role.value,
        "message_id": session.opening.message_id,
        "opening": session.opening.text,
        "fallback": session.opening.fallback,
        "audio": base64.b64encode(audio).decode() if audio else None,
    }, status_code=201)


@app.post("/api/v1/conversations/{conv_id}/voice")
async def voice_turn(
    conv_id: str,
    request: Request,
    role: str | None = None,
    audio_url: str | None = None,
    text: str | None = None,
):
    """
    One spoken turn. The request body is the raw recording; `text` is used
    as the typed fallback when transcription fails.
    """
    svc = _services()
    if svc.transcriber is None or svc.synthesizer is None:
        return JSONResponse({"error": "Speech services are not configured"}, status_code=503)

    identity = _identity(request)
    if not svc.gate(identity).has_feature_access(Feature.AI_THERAPY_PLUS):
        return _paywall(Feature.AI_THERAPY_PLUS)

    async def typed_fallback(_reason: str) -> str | None:
        return text

    client = svc.voice_dialogue(identity, manual_entry=typed_fallback)
    client.dialogue.conversations.get_conversation(conv_id)
    session_role = _role(role) if role else client.dialogue.resume_role(conv_id)
    recording = Recording(
        audio=await request.body(),
        url=audio_url,
        content_type=request.headers.get("content-type", "audio/m4a"),
    )
    turn = await client.take_turn(conv_id, session_role, recording)
    return JSONResponse({
        "conversation_id": conv_id,
        "transcript": turn.transcript,
        "transcribed": turn.transcribed,
        "question_id": turn.question_id,
        "message_id": turn.reply.message_id,
        "reply": turn.reply.text,
        "fallback": turn.reply.fallback,
        "audio": base64.b64encode(turn.audio).decode() if turn.audio else None,
        "speech_error": turn.speech_error or None,
    })


# ---------------------------------------------------------------------------
# Assessment and garden
# ---------------------------------------------------------------------------

@app.post("/api/v1/assessments")
async def submit_assessment(request: Request):
    body = await _json_body(request)
    answers = body.get("answers")
    if not isinstance(answers, list):
        raise InvalidArgument("answers must be a list of five integers")
    score_answers(answers)

    assessment = MoodAssessment()
    for value in answers:
        assessment.answer(value)

    recorder = _services().recorder(_identity(request))
    conv_id = body.get("conversation_id")
    if conv_id:
        recorder.conversations.get_conversation(conv_id)
    outcome = await recorder.record(assessment, conv_id)
    return JSONResponse({
        "conversation_id": outcome.conversation_id,
        "score": round(outcome.score, 1),
        "mood": outcome.mood.value,
        "summary": outcome.summary,
        "summary_message_id": outcome.summary_message_id,
        "prompt_message_id": outcome.prompt_message_id,
    }, status_code=201)


@app.get("/api/v1/garden")
async def garden(request: Request):
    svc = _services()
    identity = _identity(request)
    uid = identity.require_user()
    subscription = svc.gate(identity).check_subscription_level()
    view = svc.projector().project_garden(uid, subscription)
    return JSONResponse(view.to_dict())


# ---------------------------------------------------------------------------
# Subscription
# ---------------------------------------------------------------------------

@app.get("/api/v1/subscription")
async def subscription_details(request: Request):
    return JSONResponse(_services().gate(_identity(request)).details())


@app.post("/api/v1/subscription")
async def purchase_subscription(request: Request):
    body = await _json_body(request)
    try:
        level = SubscriptionLevel(body.get("level"))
        months = int(body.get("months", 1))
    except (ValueError, TypeError):
        raise InvalidArgument("level must be one of free, premium, premium_plus") from None
    state = _services().gate(_identity(request)).purchase(level, months)
    return JSONResponse(state.to_dict(), status_code=201)


@app.delete("/api/v1/subscription")
async def cancel_subscription(request: Request):
    _services().gate(_identity(request)).cancel()
    return JSONResponse({"ok": True})


@app.get("/health")
async def health():
    svc = services
    return JSONResponse({
        "status": "ok" if svc is not None else "starting",
        "version": __version__,
        "generation": repr(svc.backend) if svc else None,
        "speech": bool(svc and svc.transcriber and svc.synthesizer),
    })
