"""
Voice variant of the dialogue client.

One turn:
  recording -> transcribe -> save question (with audio url) -> reply -> speak

Degradation:
  - transcription fails  -> ask the manual-entry callback for typed text;
                            if that is cancelled too, use the approach's
                            default utterance
  - generation fails     -> handled inside DialogueClient.reply (fallback)
  - synthesis fails      -> the text reply is returned without audio
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from mindgarden.dialogue.client import DialogueClient, DialogueTurn, SessionStart
from mindgarden.dialogue.prompts import RoleContext
from mindgarden.dialogue.speech import (
    SpeechPlayer,
    Synthesizer,
    Transcriber,
    VoiceParams,
)
from mindgarden.errors import InvalidArgument, SynthesisFailure, TranscriptionFailure
from mindgarden.storage.models import MessageType

logger = logging.getLogger(__name__)

DEFAULT_UTTERANCES = {
    RoleContext.CBT: "I notice I tend to catastrophize situations and assume the worst.",
    RoleContext.MINDFULNESS: "I'm finding it hard to stay present with my thoughts and feelings.",
    RoleContext.ACT: "I struggle with accepting difficult emotions without trying to avoid them.",
    RoleContext.GENERAL: "I've been feeling stressed and anxious lately.",
}

# Called with the failure reason; returns typed text, or None if cancelled.
ManualEntry = Callable[[str], Awaitable["str | None"]]


@dataclass(frozen=True)
class Recording:
    audio: bytes
    url: str | None = None
    content_type: str = "audio/m4a"


class RecordingSlot:
    """Holds at most one pending local recording; a new one replaces the old."""

    def __init__(self):
        self._current: Recording | None = None

    def replace(self, recording: Recording) -> Recording | None:
        previous, self._current = self._current, recording
        if previous is not None:
            logger.debug("Discarded previous recording %s", previous.url)
        return previous

    def take(self) -> Recording | None:
        current, self._current = self._current, None
        return current

    @property
    def pending(self) -> bool:
        return self._current is not None


@dataclass
class VoiceTurn:
    transcript: str
    transcribed: bool
    question_id: str
    reply: DialogueTurn
    audio: bytes | None = None
    speech_error: str = ""


class VoiceDialogueClient:
    """Voice turns on top of a DialogueClient."""

    def __init__(
        self,
        dialogue: DialogueClient,
        transcriber: Transcriber,
        synthesizer: Synthesizer,
        player: SpeechPlayer | None = None,
        voice: VoiceParams | None = None,
        manual_entry: ManualEntry | None = None,
    ):
        self.dialogue = dialogue
        self.transcriber = transcriber
        self.synthesizer = synthesizer
        self.player = player or SpeechPlayer()
        self.voice = voice or VoiceParams()
        self.manual_entry = manual_entry
        self.slot = RecordingSlot()

    def begin_recording(self, recording: Recording) -> None:
        self.slot.replace(recording)

    async def _transcribe(self, recording: Recording, role: RoleContext) -> tuple[str, bool]:
        try:
            return await self.transcriber.transcribe(recording.audio, recording.content_type), True
        except TranscriptionFailure as e:
            logger.info("Speech recognition failed (%s), falling back to typed input", e)

        text = None
        if self.manual_entry is not None:
            text = await self.manual_entry("Speech recognition failed. Please type your message.")
        if text and text.strip():
            return text.strip(), False
        return DEFAULT_UTTERANCES.get(role, DEFAULT_UTTERANCES[RoleContext.GENERAL]), False

    async def speak(self, text: str) -> tuple[bytes | None, str]:
        """Synthesize and start playback. Returns (audio, error); audio is None on failure."""
        try:
            audio = await self.synthesizer.synthesize(text, self.voice)
        except SynthesisFailure as e:
            logger.warning("Speech synthesis failed, returning text only: %s", e)
            return None, str(e)
        await self.player.play(text, audio)
        return audio, ""

    async def take_turn(
        self,
        conversation_id: str,
        role: RoleContext = RoleContext.GENERAL,
        recording: Recording | None = None,
    ) -> VoiceTurn:
        recording = recording or self.slot.take()
        if recording is None:
            raise InvalidArgument("No recording to process")

        await self.player.stop()
        transcript, transcribed = await self._transcribe(recording, role)
        question_id = self.dialogue.conversations.save_message(
            conversation_id, transcript, MessageType.QUESTION, audio_url=recording.url
        )
        reply = await self.dialogue.reply(conversation_id, transcript, role, voice=True)
        audio, speech_error = await self.speak(reply.text)
        return VoiceTurn(
            transcript=transcript,
            transcribed=transcribed,
            question_id=question_id,
            reply=reply,
            audio=audio,
            speech_error=speech_error,
        )

    async def start_session(self, role: RoleContext) -> tuple[SessionStart, bytes | None]:
        session = await self.dialogue.start_session(role, voice=True)
        audio, _ = await self.speak(session.opening.text)
        return session, audio
