"""
AI Dialogue Client.

Turns a user utterance plus a role context into an assistant reply:

    utterance + role -> prompt -> backend.generate() -> first candidate text

Any unusable result (transport error, non-2xx, timeout, blocked prompt, no
candidates, empty text) is a GenerationFailure. reply() never lets that
reach the user: it swaps in a fixed supportive fallback and persists the
fallback as an `answer` message so the stored history matches what the
user saw. Store errors are not swallowed.

The client is stateless. Continuity comes only from what goes into the
prompt; history_turns > 0 prepends a bounded transcript window.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from mindgarden.conversations import ConversationStore
from mindgarden.dialogue.backends import GenerationBackend, GenerationParams
from mindgarden.dialogue.prompts import (
    RoleContext,
    build_prompt,
    history_window,
    parse_session_marker,
    session_marker,
    session_opening_prompt,
    session_title,
)
from mindgarden.errors import GenerationFailure
from mindgarden.storage.models import Message, MessageType

logger = logging.getLogger(__name__)

CHAT_FALLBACK = (
    "I'm having trouble connecting right now. Please try again later or check "
    "your internet connection. In the meantime, remember to practice self-care "
    "and reach out to supportive people in your life."
)
THERAPY_FALLBACK = (
    "I apologize, but I'm having trouble connecting right now. Let's take a brief "
    "pause in our session. You can try again in a moment."
)
VOICE_FALLBACK = (
    "I'm having trouble processing your message right now. "
    "Could you try again in a moment?"
)


def fallback_text(role: RoleContext, voice: bool = False) -> str:
    if voice:
        return VOICE_FALLBACK
    if role is RoleContext.GENERAL:
        return CHAT_FALLBACK
    return THERAPY_FALLBACK


@dataclass
class DialogueTurn:
    """Result of one reply: the text shown to the user and where it was stored."""
    text: str
    message_id: str
    fallback: bool = False
    error: str = ""


@dataclass
class SessionStart:
    conversation_id: str
    role: RoleContext
    opening: DialogueTurn


class DialogueClient:
    """Builds prompts, calls the generation backend, persists replies."""

    def __init__(
        self,
        backend: GenerationBackend,
        conversations: ConversationStore,
        params: GenerationParams | None = None,
        history_turns: int = 0,
    ):
        self.backend = backend
        self.conversations = conversations
        self.params = params or GenerationParams()
        self.history_turns = history_turns

    async def generate(self, prompt: str) -> str:
        """One prompt in, one text out. Raises GenerationFailure."""
        response = await self.backend.generate(prompt, self.params)
        if not response.ok:
            raise GenerationFailure(response.error or "generation failed", response.status_code)
        if response.block_reason:
            raise GenerationFailure(f"prompt blocked: {response.block_reason}", response.status_code)
        if not response.well_formed:
            raise GenerationFailure("Invalid response format from API", response.status_code)
        logger.debug("Generated %d chars in %.0fms", len(response.text), response.latency_ms)
        return response.text

    async def _generate_or_fallback(self, prompt: str, role: RoleContext, voice: bool):
        try:
            return await self.generate(prompt), False, ""
        except GenerationFailure as e:
            logger.warning("Generation failed (%s), using fallback reply", e)
            return fallback_text(role, voice), True, str(e)

    def _history(self, conversation_id: str, utterance: str, history: list[Message] | None) -> str:
        if self.history_turns <= 0:
            return ""
        if history is None:
            history = self.conversations.get_conversation_messages(conversation_id)
        # The current utterance is quoted separately in the prompt
        if history and history[-1].type is MessageType.QUESTION and history[-1].content == utterance:
            history = history[:-1]
        return history_window(history, self.history_turns)

    async def reply(
        self,
        conversation_id: str,
        utterance: str,
        role: RoleContext = RoleContext.GENERAL,
        history: list[Message] | None = None,
        voice: bool = False,
    ) -> DialogueTurn:
        """
        Produce and persist the assistant reply to `utterance`.

        The user's utterance is expected to be saved by the caller already.
        `history` is only read when history_turns > 0; if omitted it is
        loaded from the store.
        """
        prompt = build_prompt(
            role,
            utterance,
            voice=voice,
            history=self._history(conversation_id, utterance, history),
        )
        text, used_fallback, error = await self._generate_or_fallback(prompt, role, voice)
        message_id = self.conversations.save_message(conversation_id, text, MessageType.ANSWER)
        if used_fallback:
            logger.info("Saved fallback reply %s in %s", message_id, conversation_id)
        return DialogueTurn(text=text, message_id=message_id, fallback=used_fallback, error=error)

    async def start_session(self, role: RoleContext, voice: bool = False) -> SessionStart:
        """
        Open a therapy session: new conversation, approach marker, opening message.
        """
        conversation_id = self.conversations.create_conversation(session_title(role, voice))
        started = datetime.now(timezone.utc).isoformat()
        self.conversations.save_message(
            conversation_id, session_marker(role, started, voice), MessageType.SYSTEM
        )
        text, used_fallback, error = await self._generate_or_fallback(
            session_opening_prompt(role, voice), role, voice
        )
        message_id = self.conversations.save_message(conversation_id, text, MessageType.ANSWER)
        logger.info("Started %s session %s (voice=%s)", role.value, conversation_id, voice)
        return SessionStart(
            conversation_id=conversation_id,
            role=role,
            opening=DialogueTurn(text=text, message_id=message_id, fallback=used_fallback, error=error),
        )

    def resume_role(self, conversation_id: str) -> RoleContext:
        """Recover a session's approach from its marker; GENERAL if there is none."""
        for msg in self.conversations.get_conversation_messages(conversation_id):
            if msg.type is MessageType.SYSTEM and "approach:" in msg.content:
                role = parse_session_marker(msg.content)
                if role is not None:
                    return role
        return RoleContext.GENERAL
