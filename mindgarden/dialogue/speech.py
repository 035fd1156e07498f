"""
Speech adapters for voice sessions.

  Transcriber  — audio bytes -> transcript        (Deepgram /v1/listen)
  Synthesizer  — text + voice params -> audio      (Google text:synthesize)
  SpeechPlayer — playback of synthesized audio with a real Idle/Playing/
                 Stopped state and task cancellation

Both network adapters raise their typed failure (TranscriptionFailure,
SynthesisFailure) on any problem; the voice client decides how to degrade.
"""

from __future__ import annotations

import abc
import asyncio
import base64
import logging
import math
from contextlib import suppress
from dataclasses import dataclass
from typing import Awaitable, Callable

import httpx

from mindgarden.errors import SynthesisFailure, TranscriptionFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VoiceParams:
    language: str = "en-US"
    pitch: float = 1.0      # multiplier, 1.0 = natural
    rate: float = 0.9       # multiplier, 1.0 = natural


# ---------------------------------------------------------------------------
# Speech to text
# ---------------------------------------------------------------------------

class Transcriber(abc.ABC):

    @abc.abstractmethod
    async def transcribe(self, audio: bytes, content_type: str = "audio/m4a") -> str:
        """Return the transcript or raise TranscriptionFailure."""
        ...


class DeepgramTranscriber(Transcriber):
    """Deepgram prerecorded transcription (nova-2, punctuated)."""

    def __init__(
        self,
        api_key: str,
        url: str = "https://api.deepgram.com",
        model: str = "nova-2",
        language: str = "en-US",
        timeout: float = 30.0,
    ):
        self.api_key = api_key
        self.url = url.rstrip("/")
        self.model = model
        self.language = language
        self.timeout = timeout

    async def transcribe(self, audio: bytes, content_type: str = "audio/m4a") -> str:
        if not audio:
            raise TranscriptionFailure("Recording is invalid or empty")

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(
                    f"{self.url}/v1/listen",
                    params={"model": self.model, "language": self.language, "punctuate": "true"},
                    content=audio,
                    headers={
                        "Authorization": f"Token {self.api_key}",
                        "Content-Type": content_type,
                    },
                )
        except httpx.HTTPError as e:
            logger.warning("Deepgram request failed: %s", e)
            raise TranscriptionFailure(str(e)) from e

        if resp.status_code == 401:
            raise TranscriptionFailure("Deepgram authentication failed. Check the API key.")
        if resp.status_code != 200:
            raise TranscriptionFailure(f"Deepgram API error: {resp.status_code}")

        try:
            data = resp.json()
            transcript = data["results"]["channels"][0]["alternatives"][0]["transcript"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise TranscriptionFailure("No transcript found in response") from e

        transcript = (transcript or "").strip()
        if not transcript:
            raise TranscriptionFailure("No transcript found in response")
        return transcript


# ---------------------------------------------------------------------------
# Text to speech
# ---------------------------------------------------------------------------

class Synthesizer(abc.ABC):

    @abc.abstractmethod
    async def synthesize(self, text: str, voice: VoiceParams) -> bytes:
        """Return encoded audio or raise SynthesisFailure."""
        ...


class GoogleSynthesizer(Synthesizer):
    """Google Cloud text:synthesize, MP3 output."""

    def __init__(
        self,
        api_key: str,
        url: str = "https://texttospeech.googleapis.com",
        timeout: float = 30.0,
    ):
        self.api_key = api_key
        self.url = url.rstrip("/")
        self.timeout = timeout

    @staticmethod
    def build_body(text: str, voice: VoiceParams) -> dict:
        # The API takes pitch in semitones; VoiceParams.pitch is a multiplier.
        semitones = 12 * math.log2(voice.pitch) if voice.pitch > 0 else 0.0
        return {
            "input": {"text": text},
            "voice": {"languageCode": voice.language},
            "audioConfig": {
                "audioEncoding": "MP3",
                "speakingRate": voice.rate,
                "pitch": round(semitones, 2),
            },
        }

    async def synthesize(self, text: str, voice: VoiceParams) -> bytes:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(
                    f"{self.url}/v1/text:synthesize",
                    params={"key": self.api_key},
                    json=self.build_body(text, voice),
                )
        except httpx.HTTPError as e:
            logger.warning("Speech synthesis request failed: %s", e)
            raise SynthesisFailure(str(e)) from e

        if resp.status_code != 200:
            raise SynthesisFailure(f"Synthesis API error: {resp.status_code}")
        try:
            return base64.b64decode(resp.json()["audioContent"])
        except (ValueError, KeyError, TypeError) as e:
            raise SynthesisFailure("No audio content in response") from e


# ---------------------------------------------------------------------------
# Playback
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Playing:
    text: str
    task: asyncio.Task


@dataclass(frozen=True)
class Stopped:
    text: str


PlaybackState = Idle | Playing | Stopped

AudioSink = Callable[[bytes], Awaitable[None]]


async def _discard(_audio: bytes) -> None:
    return None


class SpeechPlayer:
    """
    Plays synthesized audio through an async sink.

    Starting new playback stops the current one. stop() cancels the
    playback task and leaves the player in Stopped.
    """

    def __init__(self, sink: AudioSink | None = None):
        self.sink = sink or _discard
        self.state: PlaybackState = Idle()

    @property
    def playing(self) -> bool:
        return isinstance(self.state, Playing)

    async def play(self, text: str, audio: bytes) -> None:
        await self.stop()
        task = asyncio.create_task(self._run(audio))
        self.state = Playing(text=text, task=task)

    async def _run(self, audio: bytes) -> None:
        try:
            await self.sink(audio)
        finally:
            current = self.state
            if isinstance(current, Playing) and current.task is asyncio.current_task():
                self.state = Idle()

    async def wait(self) -> None:
        """Block until the current playback finishes on its own."""
        current = self.state
        if isinstance(current, Playing):
            with suppress(asyncio.CancelledError):
                await current.task

    async def stop(self) -> None:
        current = self.state
        if not isinstance(current, Playing):
            return
        current.task.cancel()
        with suppress(asyncio.CancelledError):
            await current.task
        self.state = Stopped(text=current.text)
        logger.debug("Playback stopped")
