"""
Error taxonomy for the mindgarden core.

Store-layer errors propagate to callers. GenerationFailure is caught inside
the dialogue client and replaced with a fallback message. Transcription
failures degrade to manual text entry. Assessment failures always surface.
"""

from __future__ import annotations


class MindGardenError(Exception):
    """Base class for all mindgarden errors."""


class Unauthenticated(MindGardenError):
    """No identity is available for an operation that requires one."""

    def __init__(self, message: str = "User not authenticated"):
        super().__init__(message)


class InvalidArgument(MindGardenError):
    """A required field is missing or malformed."""


class NotFoundOrForbidden(MindGardenError):
    """
    The entity does not exist, or the caller does not own it.

    The two cases share one error so callers cannot discover ids they
    do not own.
    """

    def __init__(self, message: str = "Conversation not found or user not authorized"):
        super().__init__(message)


class StoreFailure(MindGardenError):
    """The underlying document store rejected a call."""


class GenerationFailure(MindGardenError):
    """The text-generation endpoint failed or returned an unusable response."""

    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        self.status_code = status_code


class TranscriptionFailure(MindGardenError):
    """Speech-to-text failed or returned no transcript."""


class SynthesisFailure(MindGardenError):
    """Text-to-speech failed."""


class AssessmentError(MindGardenError):
    """
    A completed assessment could not be recorded.

    summary_message_id is set when the summary was persisted but the
    follow-up garden prompt was not.
    """

    def __init__(self, message: str, summary_message_id: str | None = None):
        super().__init__(message)
        self.summary_message_id = summary_message_id
