"""
Mood Assessment Engine.

A fixed five-question Likert survey. Each answer is an integer 1-5; the
score is their mean and the mood category is a pure function of the score:

    score >= 4          -> HAPPY
    floor(score) == 3   -> CALM
    otherwise           -> SAD

So every score in [3.0, 4.0) is CALM (3.8 included) and everything below
3.0 is SAD, including 2.8. The bands are uneven; they are kept as-is because
stored gardens were classified this way.

Completed assessments are persisted as two `answer` messages: the summary
("... your mental health score is 3.2/5. ...") which the mood garden later
parses, and a follow-up prompt to visit the garden.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from enum import Enum

from mindgarden.conversations import ConversationStore
from mindgarden.errors import AssessmentError, InvalidArgument, MindGardenError
from mindgarden.storage.models import MessageType

logger = logging.getLogger(__name__)

ASSESSMENT_TITLE = "Mood Assessment"
MIN_ANSWER = 1
MAX_ANSWER = 5


@dataclass(frozen=True)
class MoodQuestion:
    question: str
    description: str


MOOD_QUESTIONS: tuple[MoodQuestion, ...] = (
    MoodQuestion(
        "How would you rate your overall mood today?",
        "1 = Very low mood, 5 = Very good mood",
    ),
    MoodQuestion(
        "How well have you been sleeping recently?",
        "1 = Poor sleep, 5 = Excellent sleep",
    ),
    MoodQuestion(
        "How would you rate your stress levels?",
        "1 = Extremely stressed, 5 = Very relaxed",
    ),
    MoodQuestion(
        "How connected do you feel to others?",
        "1 = Very isolated, 5 = Very connected",
    ),
    MoodQuestion(
        "How would you rate your energy levels?",
        "1 = Very low energy, 5 = Very high energy",
    ),
)

GARDEN_PROMPT = (
    "Your mood has been added to your Mood Garden! \U0001F331 Would you like to "
    "see how your garden is growing with this new entry?"
)


class MoodType(str, Enum):
    HAPPY = "HAPPY"
    CALM = "CALM"
    SAD = "SAD"


def classify_score(score: float) -> MoodType:
    """Map a score in [1, 5] to its mood category."""
    if score >= 4:
        return MoodType.HAPPY
    if math.floor(score) == 3:
        return MoodType.CALM
    return MoodType.SAD


def _check_answer(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidArgument(f"Answer must be an integer, got {value!r}")
    if not MIN_ANSWER <= value <= MAX_ANSWER:
        raise InvalidArgument(f"Answer must be between {MIN_ANSWER} and {MAX_ANSWER}, got {value}")
    return value


def score_answers(answers) -> float:
    """Mean of exactly five answers, each an integer in [1, 5]."""
    answers = list(answers)
    if len(answers) != len(MOOD_QUESTIONS):
        raise InvalidArgument(
            f"Expected {len(MOOD_QUESTIONS)} answers, got {len(answers)}"
        )
    return sum(_check_answer(a) for a in answers) / len(MOOD_QUESTIONS)


def tier_message(score: float) -> str:
    if score <= 2:
        return (
            "Your responses suggest you might be experiencing significant distress. "
            "Please consider reaching out to a mental health professional for support. "
            "Remember, it's okay to ask for help."
        )
    if score <= 3:
        return (
            "Your responses indicate some areas of concern. Consider practicing "
            "self-care and reaching out to supportive people in your life."
        )
    if score <= 4:
        return (
            "Your responses suggest you're doing okay, but there might be some areas "
            "to focus on. Keep up with your self-care practices."
        )
    return (
        "Your responses indicate you're doing well! Keep up the good work and "
        "continue with your positive habits."
    )


def summary_message(score: float) -> str:
    return f"Based on your responses, your mental health score is {score:.1f}/5. {tier_message(score)}"


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AwaitingAnswer:
    index: int


@dataclass(frozen=True)
class Completed:
    score: float
    mood: MoodType


AssessmentState = AwaitingAnswer | Completed


@dataclass
class MoodAssessment:
    """
    Walks the fixed question list one answer at a time.

    Nothing is persisted here; cancel() at any point simply resets.
    """
    questions: tuple[MoodQuestion, ...] = MOOD_QUESTIONS
    answers: list[int] = field(default_factory=list)
    state: AssessmentState = field(default_factory=lambda: AwaitingAnswer(0))

    @property
    def completed(self) -> bool:
        return isinstance(self.state, Completed)

    @property
    def current_question(self) -> MoodQuestion | None:
        if isinstance(self.state, AwaitingAnswer):
            return self.questions[self.state.index]
        return None

    def answer(self, value: int) -> AssessmentState:
        """Record an answer for the current question and advance."""
        if not isinstance(self.state, AwaitingAnswer):
            raise AssessmentError("Assessment already completed")
        value = _check_answer(value)
        self.answers.append(value)

        next_index = self.state.index + 1
        if next_index < len(self.questions):
            self.state = AwaitingAnswer(next_index)
        else:
            score = sum(self.answers) / len(self.questions)
            self.state = Completed(score=score, mood=classify_score(score))
            logger.debug("Assessment completed: score=%.2f mood=%s", score, self.state.mood.value)
        return self.state

    def cancel(self) -> None:
        self.answers = []
        self.state = AwaitingAnswer(0)


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

@dataclass
class AssessmentOutcome:
    conversation_id: str
    score: float
    mood: MoodType
    summary: str
    summary_message_id: str
    prompt_message_id: str


class AssessmentRecorder:
    """Persists a completed assessment into a conversation."""

    def __init__(self, conversations: ConversationStore, garden_prompt_delay: float = 1.0):
        self.conversations = conversations
        self.garden_prompt_delay = garden_prompt_delay

    async def record(
        self,
        assessment: MoodAssessment,
        conversation_id: str | None = None,
    ) -> AssessmentOutcome:
        """
        Save the summary and, after the configured delay, the garden prompt.

        Raises AssessmentError (chained to the cause) if the conversation
        cannot be created or either message cannot be saved. The assessment
        itself is left completed so the caller can retry.
        """
        state = assessment.state
        if not isinstance(state, Completed):
            raise AssessmentError("Assessment is not complete")

        summary = summary_message(state.score)
        try:
            if not conversation_id:
                conversation_id = self.conversations.create_conversation(ASSESSMENT_TITLE)
            summary_id = self.conversations.save_message(
                conversation_id, summary, MessageType.ANSWER
            )
        except MindGardenError as e:
            logger.error("Error saving mood assessment: %s", e)
            raise AssessmentError(
                "There was a problem saving your mood assessment. Please try again."
            ) from e

        if self.garden_prompt_delay > 0:
            await asyncio.sleep(self.garden_prompt_delay)

        try:
            prompt_id = self.conversations.save_message(
                conversation_id, GARDEN_PROMPT, MessageType.ANSWER
            )
        except MindGardenError as e:
            logger.error("Error saving garden prompt for %s: %s", conversation_id, e)
            raise AssessmentError(
                "Your assessment was saved, but the garden update could not be recorded.",
                summary_message_id=summary_id,
            ) from e

        logger.info(
            "Recorded assessment in %s: score=%.1f mood=%s",
            conversation_id, state.score, state.mood.value,
        )
        return AssessmentOutcome(
            conversation_id=conversation_id,
            score=state.score,
            mood=state.mood,
            summary=summary,
            summary_message_id=summary_id,
            prompt_message_id=prompt_id,
        )
