"""
Mood Garden Projector.

Derives a user's garden from stored assessments without writing anything:

  1. the user's conversations, most recently updated first, whose title
     mentions "Mood" or "Assessment"
  2. in each, the first `answer` message containing "mental health score"
     whose text matches "score is X.X/5"
  3. one plant per such conversation, classified with classify_score() and
     scattered at a random position (regenerated on every projection)

Subscription only changes presentation. Free users get the same plants with
the basic variant, no weather and no affirmation.
"""

from __future__ import annotations

import logging
import random
import re
from collections import Counter
from dataclasses import dataclass, field

from mindgarden.assessment import MoodType, classify_score
from mindgarden.storage.backends import DocumentStore
from mindgarden.storage.models import CONVERSATIONS, MESSAGES, MessageType
from mindgarden.subscription import FREE, SubscriptionState

logger = logging.getLogger(__name__)

SCORE_RE = re.compile(r"score is (\d+\.\d+)/5")
TITLE_TAGS = ("Mood", "Assessment")
SUMMARY_MARKER = "mental health score"

WEATHER = {
    MoodType.HAPPY: "sunbeam",
    MoodType.SAD: "raindrop",
    MoodType.CALM: "leaf",
}

AFFIRMATIONS = {
    MoodType.HAPPY: (
        "Your joy is like sunshine to your garden of thoughts.",
        "Every moment of happiness waters the roots of your well-being.",
        "Your positive energy is blooming beautifully today.",
    ),
    MoodType.SAD: (
        "Even in cloudy weather, your garden continues to grow.",
        "Sadness is just rain nourishing deeper roots of understanding.",
        "It's okay to rest while your garden of emotions heals.",
    ),
    MoodType.CALM: (
        "Your tranquility creates space for new growth and possibilities.",
        "In stillness, your mind garden finds its perfect balance.",
        "The quiet strength of your calm nurtures every part of you.",
    ),
}

PLANT_MESSAGES = {
    MoodType.HAPPY: "This plant represents a happy day in your journey!",
    MoodType.SAD: "During difficult times, your garden still grows...",
    MoodType.CALM: "A moment of tranquility in your emotional garden.",
}


@dataclass(frozen=True)
class GardenLayout:
    width: float = 390.0
    plant_size: float = 120.0
    min_y: float = 50.0
    height_range: float = 300.0

    @classmethod
    def from_config(cls, garden_cfg: dict) -> "GardenLayout":
        d = cls()
        return cls(
            width=float(garden_cfg.get("width", d.width)),
            plant_size=float(garden_cfg.get("plant_size", d.plant_size)),
            min_y=float(garden_cfg.get("min_y", d.min_y)),
            height_range=float(garden_cfg.get("height_range", d.height_range)),
        )


@dataclass
class PlantEntry:
    message_id: str
    conversation_id: str
    score: float
    mood: MoodType
    timestamp: str
    x: float
    y: float
    variant: str = "basic"
    weather: str | None = None

    def to_dict(self) -> dict:
        return {
            "message_id": self.message_id,
            "conversation_id": self.conversation_id,
            "score": self.score,
            "mood": self.mood.value,
            "timestamp": self.timestamp,
            "position": {"x": round(self.x, 1), "y": round(self.y, 1)},
            "variant": self.variant,
            "weather": self.weather,
        }


@dataclass
class GardenView:
    entries: list[PlantEntry] = field(default_factory=list)
    dominant_mood: MoodType = MoodType.CALM
    premium: bool = False
    affirmation: str | None = None

    def to_dict(self) -> dict:
        return {
            "entries": [e.to_dict() for e in self.entries],
            "dominant_mood": self.dominant_mood.value,
            "premium": self.premium,
            "affirmation": self.affirmation,
        }


def extract_score(content: str) -> float | None:
    """Score from an assessment summary, or None if this is not one."""
    if SUMMARY_MARKER not in (content or ""):
        return None
    m = SCORE_RE.search(content)
    return float(m.group(1)) if m else None


def dominant_mood(entries: list[PlantEntry]) -> MoodType:
    """Most frequent mood; ties go to whichever appeared first. Empty -> CALM."""
    if not entries:
        return MoodType.CALM
    # Counter preserves first-insertion order and most_common() is stable
    counts = Counter(e.mood for e in entries)
    return counts.most_common(1)[0][0]


def plant_message(entry: PlantEntry, premium: bool) -> str:
    message = PLANT_MESSAGES[entry.mood]
    if premium:
        message += f"\nMood score: {entry.score:.1f}/5"
    return message


class GardenProjector:
    """Projects stored assessment summaries into garden plants."""

    def __init__(
        self,
        documents: DocumentStore,
        layout: GardenLayout | None = None,
        rng: random.Random | None = None,
    ):
        self.documents = documents
        self.layout = layout or GardenLayout()
        self.rng = rng or random.Random()

    def _position(self) -> tuple[float, float]:
        max_x = max(self.layout.width - self.layout.plant_size, 0.0)
        x = self.rng.random() * max_x
        y = self.layout.min_y + self.rng.random() * self.layout.height_range
        return x, y

    def _find_summary(self, conversation_id: str) -> tuple[dict, float] | None:
        answers = self.documents.query(
            MESSAGES,
            where={"conversation_id": conversation_id, "type": MessageType.ANSWER.value},
            order_by="timestamp",
        )
        for doc in answers:
            score = extract_score(doc.get("content", ""))
            if score is not None:
                return doc, score
        return None

    def project_garden(
        self,
        user_id: str,
        subscription: SubscriptionState | None = None,
    ) -> GardenView:
        subscription = subscription or FREE
        premium = subscription.premium

        conversations = self.documents.query(
            CONVERSATIONS,
            where={"owner_id": user_id},
            order_by="updated_at",
            descending=True,
        )

        entries: list[PlantEntry] = []
        for conv in conversations:
            title = conv.get("title") or ""
            if not any(tag in title for tag in TITLE_TAGS):
                continue
            found = self._find_summary(conv["id"])
            if found is None:
                continue
            doc, score = found
            mood = classify_score(score)
            x, y = self._position()
            entries.append(PlantEntry(
                message_id=doc["id"],
                conversation_id=conv["id"],
                score=score,
                mood=mood,
                timestamp=doc.get("timestamp", ""),
                x=x,
                y=y,
                variant="exotic" if premium else "basic",
                weather=WEATHER[mood] if premium else None,
            ))

        affirmation = None
        if premium and entries:
            affirmation = self.rng.choice(AFFIRMATIONS[entries[0].mood])

        logger.debug("Projected %d plants for %s (premium=%s)", len(entries), user_id, premium)
        return GardenView(
            entries=entries,
            dominant_mood=dominant_mood(entries),
            premium=premium,
            affirmation=affirmation,
        )
