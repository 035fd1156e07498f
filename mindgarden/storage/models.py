"""
Data models for conversation storage.
These define the shape of records flowing between the document store
and the conversation, assessment and garden layers.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


CONVERSATIONS = "conversations"
MESSAGES = "messages"
USERS = "users"


class MessageType(str, Enum):
    QUESTION = "question"   # user utterance
    ANSWER = "answer"       # assistant reply, assessment summary, fallback
    SYSTEM = "system"       # session markers


@dataclass
class Conversation:
    """A titled, ordered thread of messages owned by one identity."""
    id: str
    owner_id: str
    title: str
    created_at: str = ""
    updated_at: str = ""
    message_count: int = 0
    has_voice: bool = False

    @classmethod
    def from_doc(cls, doc: dict) -> "Conversation":
        return cls(
            id=doc["id"],
            owner_id=doc.get("owner_id", ""),
            title=doc.get("title", ""),
            created_at=doc.get("created_at", ""),
            updated_at=doc.get("updated_at", ""),
            message_count=int(doc.get("message_count") or 0),
            has_voice=bool(doc.get("has_voice", False)),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "title": self.title,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "message_count": self.message_count,
            "has_voice": self.has_voice,
        }


@dataclass
class Message:
    """A single immutable message in a conversation."""
    id: str
    conversation_id: str
    owner_id: str
    content: str
    type: MessageType
    timestamp: str = ""
    audio_url: str | None = None
    has_audio: bool = False

    @classmethod
    def from_doc(cls, doc: dict) -> "Message":
        return cls(
            id=doc["id"],
            conversation_id=doc.get("conversation_id", ""),
            owner_id=doc.get("owner_id", ""),
            content=doc.get("content", ""),
            type=MessageType(doc.get("type", MessageType.ANSWER.value)),
            timestamp=doc.get("timestamp", ""),
            audio_url=doc.get("audio_url"),
            has_audio=bool(doc.get("has_audio", False)),
        )

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "owner_id": self.owner_id,
            "content": self.content,
            "type": self.type.value,
            "timestamp": self.timestamp,
        }
        if self.audio_url:
            data["audio_url"] = self.audio_url
            data["has_audio"] = True
        return data
