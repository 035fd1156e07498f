"""
Conversation Store — conversation CRUD and message append/read.

Owns the `conversations` and `messages` collections of the injected
document store and enforces ownership against the injected identity
provider. Messages are immutable once written; the only way to remove one
is deleting its conversation.
"""

from __future__ import annotations

import logging

from mindgarden.errors import InvalidArgument, NotFoundOrForbidden, StoreFailure
from mindgarden.identity import IdentityProvider
from mindgarden.storage.backends import SERVER_TIMESTAMP, DocumentStore, Increment
from mindgarden.storage.models import (
    CONVERSATIONS,
    MESSAGES,
    Conversation,
    Message,
    MessageType,
)

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "New Conversation"
TITLE_PREVIEW_CHARS = 30


def title_from_utterance(text: str) -> str:
    """Title for a chat started by its first message: first 30 chars, '...' if cut."""
    text = text.strip()
    if len(text) > TITLE_PREVIEW_CHARS:
        return text[:TITLE_PREVIEW_CHARS] + "..."
    return text or DEFAULT_TITLE


def _coerce_type(value) -> MessageType:
    if isinstance(value, MessageType):
        return value
    try:
        return MessageType(value)
    except ValueError:
        raise InvalidArgument(f"Unknown message type: {value!r}") from None


class ConversationStore:
    """Conversation and message persistence scoped to the current identity."""

    def __init__(self, documents: DocumentStore, identity: IdentityProvider):
        self.documents = documents
        self.identity = identity

    def _owned(self, conversation_id: str, uid: str) -> dict:
        doc = self.documents.get(CONVERSATIONS, conversation_id) if conversation_id else None
        if doc is None or doc.get("owner_id") != uid:
            raise NotFoundOrForbidden()
        return doc

    def create_conversation(self, title: str = DEFAULT_TITLE) -> str:
        """Create an empty conversation for the current user and return its id."""
        uid = self.identity.require_user()
        try:
            conv_id = self.documents.add(CONVERSATIONS, {
                "owner_id": uid,
                "title": title or DEFAULT_TITLE,
                "created_at": SERVER_TIMESTAMP,
                "updated_at": SERVER_TIMESTAMP,
                "message_count": 0,
                "has_voice": False,
            })
        except StoreFailure:
            logger.error("Error creating conversation for %s", uid)
            raise
        logger.info("Created conversation %s (%r)", conv_id, title)
        return conv_id

    def save_message(
        self,
        conversation_id: str,
        content: str,
        type: MessageType | str,
        audio_url: str | None = None,
    ) -> str:
        """
        Append a message and bump the parent's updated_at and message_count.

        The parent must exist and belong to the current user. Its update
        uses an atomic increment so concurrent writers do not lose counts.
        """
        if not conversation_id:
            raise InvalidArgument("Conversation ID is required")
        if not content:
            raise InvalidArgument("Message content is required")
        if not type:
            raise InvalidArgument("Message type is required")
        msg_type = _coerce_type(type)
        uid = self.identity.require_user()
        self._owned(conversation_id, uid)

        data = {
            "conversation_id": conversation_id,
            "owner_id": uid,
            "content": content,
            "type": msg_type.value,
            "timestamp": SERVER_TIMESTAMP,
        }
        if audio_url:
            data["audio_url"] = audio_url
            data["has_audio"] = True

        try:
            msg_id = self.documents.add(MESSAGES, data)
            changes = {
                "updated_at": SERVER_TIMESTAMP,
                "message_count": Increment(1),
            }
            if audio_url:
                changes["has_voice"] = True
            if not self.documents.update(CONVERSATIONS, conversation_id, changes):
                logger.warning(
                    "Message %s saved but conversation %s was deleted meanwhile",
                    msg_id, conversation_id,
                )
        except StoreFailure:
            logger.error("Error saving message to %s", conversation_id)
            raise

        logger.debug("Stored message %s (type=%s, conv=%s)", msg_id, msg_type.value, conversation_id)
        return msg_id

    def get_conversation(self, conversation_id: str) -> Conversation:
        """Fetch one owned conversation."""
        uid = self.identity.require_user()
        return Conversation.from_doc(self._owned(conversation_id, uid))

    def get_user_conversations(self) -> list[Conversation]:
        """All conversations owned by the caller, most recently updated first."""
        uid = self.identity.require_user()
        try:
            docs = self.documents.query(
                CONVERSATIONS,
                where={"owner_id": uid},
                order_by="updated_at",
                descending=True,
            )
        except StoreFailure:
            logger.error("Error getting conversations for %s", uid)
            raise
        return [Conversation.from_doc(d) for d in docs]

    def get_conversation_messages(self, conversation_id: str) -> list[Message]:
        """Messages of an owned conversation, oldest first."""
        uid = self.identity.require_user()
        self._owned(conversation_id, uid)
        try:
            docs = self.documents.query(
                MESSAGES,
                where={"conversation_id": conversation_id},
                order_by="timestamp",
            )
        except StoreFailure:
            logger.error("Error getting messages for %s", conversation_id)
            raise
        return [Message.from_doc(d) for d in docs]

    def update_conversation_title(self, conversation_id: str, new_title: str) -> None:
        if not new_title or not new_title.strip():
            raise InvalidArgument("Title is required")
        uid = self.identity.require_user()
        self._owned(conversation_id, uid)
        try:
            self.documents.update(CONVERSATIONS, conversation_id, {
                "title": new_title.strip(),
                "updated_at": SERVER_TIMESTAMP,
            })
        except StoreFailure:
            logger.error("Error updating title of %s", conversation_id)
            raise

    def delete_conversation(self, conversation_id: str) -> None:
        """
        Delete a conversation and every message in it.

        Every message delete is attempted even if some fail. If any did fail
        the conversation record is kept and StoreFailure is raised, so a
        retry can finish the cascade instead of leaving orphans.
        """
        uid = self.identity.require_user()
        self._owned(conversation_id, uid)

        messages = self.documents.query(MESSAGES, where={"conversation_id": conversation_id})
        failed: list[str] = []
        for doc in messages:
            try:
                self.documents.delete(MESSAGES, doc["id"])
            except StoreFailure as e:
                logger.warning("Failed to delete message %s: %s", doc["id"], e)
                failed.append(doc["id"])

        if failed:
            raise StoreFailure(
                f"{len(failed)} of {len(messages)} messages in {conversation_id} could not be deleted"
            )

        self.documents.delete(CONVERSATIONS, conversation_id)
        logger.info("Deleted conversation %s (%d messages)", conversation_id, len(messages))
