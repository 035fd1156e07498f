"""
Prompt templates for the dialogue client.

Every request is a single-shot prompt: a role-specific instruction block
wrapped around the user's latest utterance. The model keeps no memory
between calls. history_window() can prepend a bounded transcript when a
caller opts in; by default only the latest utterance is sent.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum


class RoleContext(str, Enum):
    GENERAL = "general"
    CBT = "cbt"
    MINDFULNESS = "mindfulness"
    ACT = "act"


@dataclass(frozen=True)
class Approach:
    role: RoleContext
    name: str
    description: str


THERAPY_APPROACHES: dict[RoleContext, Approach] = {
    RoleContext.CBT: Approach(
        RoleContext.CBT,
        "Cognitive Behavioral Therapy",
        "Focuses on changing negative thought patterns and behaviors",
    ),
    RoleContext.MINDFULNESS: Approach(
        RoleContext.MINDFULNESS,
        "Mindfulness-Based Therapy",
        "Develops awareness and acceptance of present moment experiences",
    ),
    RoleContext.ACT: Approach(
        RoleContext.ACT,
        "Acceptance & Commitment Therapy",
        "Emphasizes psychological flexibility and value-based actions",
    ),
}


def session_title(role: RoleContext, voice: bool = False) -> str:
    approach = THERAPY_APPROACHES.get(role)
    name = approach.name if approach else ("Voice Therapy" if voice else "Therapy")
    title = f"{name} Session"
    return f"Voice {title}" if voice and approach else title


# ---------------------------------------------------------------------------
# General wellness assistant
# ---------------------------------------------------------------------------

GENERAL_TEMPLATE = """You are a compassionate mental health support assistant. Your role is to provide empathetic, supportive, and helpful responses to mental health related queries.
Please respond to the following question with care and understanding, focusing on mental well-being and emotional support.
If the question is not directly related to mental health, gently guide the conversation back to mental wellness topics.
Always maintain a supportive and non-judgmental tone.
{history}Question: {utterance}"""


def general_prompt(utterance: str, history: str = "") -> str:
    return GENERAL_TEMPLATE.format(utterance=utterance, history=history)


# ---------------------------------------------------------------------------
# Therapy sessions
# ---------------------------------------------------------------------------

_OPENING = {
    RoleContext.CBT: """Cognitive Behavioral Therapy (CBT). Conduct a therapy session using CBT techniques.
Start by introducing yourself as a CBT-focused AI therapist and explain briefly how CBT works.
Ask open-ended questions to understand what brings the user to therapy today.
Help identify negative thought patterns and guide the user to challenge them.
Use techniques like cognitive restructuring, behavioral activation, and structured problem-solving.
Be empathetic, non-judgmental, and supportive throughout the session.""",
    RoleContext.MINDFULNESS: """Mindfulness-Based Therapy. Conduct a mindfulness-oriented therapy session.
Start by introducing yourself as a mindfulness-focused AI therapist and explain briefly how mindfulness can help.
Begin with a brief centering exercise to help the user connect with the present moment.
Ask about their current experience and encourage non-judgmental awareness.
Offer mindfulness techniques applicable to their situation.
Be gentle, present, and create a space of acceptance.""",
    RoleContext.ACT: """Acceptance and Commitment Therapy (ACT). Conduct a therapy session using ACT principles.
Start by introducing yourself as an ACT-focused AI therapist and explain briefly how ACT works.
Help the user identify their values and committed actions that align with those values.
Teach psychological flexibility skills and facilitate acceptance of difficult thoughts and feelings.
Use metaphors and experiential exercises to illustrate ACT concepts.
Be compassionate, present, and focused on workability rather than "feeling better".""",
}

_OPENING_DEFAULT = """various evidence-based therapy approaches. Conduct a supportive therapy session.
Start by introducing yourself and asking what brings the user to therapy today.
Use active listening, empathy, and open-ended questions to explore their concerns.
Offer appropriate therapeutic techniques based on what you learn.
Be supportive, non-judgmental, and focused on the user's wellbeing."""

_CONTINUE = {
    RoleContext.CBT: """Cognitive Behavioral Therapy (CBT) techniques.
Remember to identify negative thought patterns, help challenge distorted thinking,
and suggest practical cognitive and behavioral strategies.
Stay empathetic and supportive throughout.""",
    RoleContext.MINDFULNESS: """Mindfulness-Based Therapy techniques.
Focus on present-moment awareness, non-judgmental acceptance,
and mindfulness practices relevant to the user's situation.
Maintain a gentle, present, and accepting tone.""",
    RoleContext.ACT: """Acceptance and Commitment Therapy (ACT) principles.
Help the user develop psychological flexibility, clarify their values,
and commit to actions aligned with those values.
Use ACT-consistent language about acceptance and committed action.""",
}

_CONTINUE_DEFAULT = """evidence-based therapy techniques appropriate to the user's needs.
Maintain therapeutic presence, empathy, and focus on their wellbeing."""

_PREMIUM_TEXT = """This is a premium AI therapy feature, so provide a high-quality, in-depth therapeutic response."""
_PREMIUM_VOICE = """This is a premium AI voice therapy feature, so provide concise but impactful therapeutic responses.
Keep responses under 3-4 paragraphs for better speech synthesis."""


def session_opening_prompt(role: RoleContext, voice: bool = False) -> str:
    """Prompt for the therapist's first message: introduction plus first question."""
    body = _OPENING.get(role, _OPENING_DEFAULT)
    closing = _PREMIUM_VOICE if voice else (
        _PREMIUM_TEXT
        + "\nFocus on being helpful and supportive while providing deeper insights than a regular chatbot."
    )
    return (
        "You are an AI-powered mental health assistant with expertise in "
        f"{body}\n\n{closing}\n"
        "Begin the session now with your introduction and first question."
    )


def session_turn_prompt(
    role: RoleContext,
    utterance: str,
    voice: bool = False,
    history: str = "",
) -> str:
    """Prompt for one turn of an ongoing therapy session."""
    body = _CONTINUE.get(role, _CONTINUE_DEFAULT)
    closing = _PREMIUM_VOICE if voice else _PREMIUM_TEXT
    return (
        f"You are continuing an AI therapy session using {body}\n\n"
        f"{closing}\n"
        f"{history}"
        f'The user\'s most recent message is: "{utterance}"\n\n'
        "Remember previous context from the conversation and respond as a skilled therapist would."
    )


def build_prompt(
    role: RoleContext,
    utterance: str,
    voice: bool = False,
    history: str = "",
) -> str:
    if role is RoleContext.GENERAL and not voice:
        return general_prompt(utterance, history)
    return session_turn_prompt(role, utterance, voice=voice, history=history)


# ---------------------------------------------------------------------------
# Session markers and transcript windows
# ---------------------------------------------------------------------------

_APPROACH_RE = re.compile(r"approach: (\w+)", re.IGNORECASE)


def session_marker(role: RoleContext, started_at: str, voice: bool = False) -> str:
    """Content of the system message that opens a therapy session."""
    kind = "AI Voice Therapy Session" if voice else "AI Therapy Session"
    return f"{kind}\napproach: {role.value}\nstarted: {started_at}"


def parse_session_marker(content: str) -> RoleContext | None:
    m = _APPROACH_RE.search(content or "")
    if not m:
        return None
    try:
        return RoleContext(m.group(1).lower())
    except ValueError:
        return None


_SPEAKERS = {"question": "USER", "answer": "ASSISTANT"}


def history_window(messages, limit: int, max_chars: int = 500) -> str:
    """
    Render the last `limit` question/answer turns as a transcript block.
    Returns "" when limit <= 0 or there is nothing to show.
    """
    if limit <= 0:
        return ""
    turns = [m for m in messages if getattr(m.type, "value", m.type) in _SPEAKERS]
    turns = turns[-limit:]
    if not turns:
        return ""
    lines = [
        f"{_SPEAKERS[getattr(m.type, 'value', m.type)]}: {m.content[:max_chars]}"
        for m in turns
    ]
    return "Conversation so far:\n" + "\n".join(lines) + "\n"
