"""Data models for conversations and the session registry."""

from __future__ import annotations

import enum
import uuid
from collections.abc import Callable

from pydantic import BaseModel, ConfigDict

from .config import DEFAULT_TITLE, TITLE_ELLIPSIS, TITLE_MAX_CHARS


class Role(str, enum.Enum):
    USER = "user"
    MODEL = "model"


class Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Role
    text: str

    def extended(self, fragment: str) -> Message:
        return self.model_copy(update={"text": self.text + fragment})


def derive_title(text: str) -> str:
    """Title for a conversation opened with ``text``."""
    if len(text) > TITLE_MAX_CHARS:
        return text[:TITLE_MAX_CHARS] + TITLE_ELLIPSIS
    return text


def new_conversation_id() -> str:
    return f"chat-{uuid.uuid4().hex}"


class Conversation(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str = DEFAULT_TITLE
    messages: tuple[Message, ...] = ()

    def append(self, message: Message) -> Conversation:
        """Return a copy with ``message`` appended.

        The first user message also names the conversation.
        """
        title = self.title
        if not self.messages and message.role is Role.USER:
            title = derive_title(message.text)
        return self.model_copy(update={"title": title, "messages": (*self.messages, message)})

    def extend_reply(self, fragment: str) -> Conversation | None:
        """Concatenate ``fragment`` onto the trailing model message.

        Returns None when the conversation does not end with a model message.
        """
        if not self.messages or self.messages[-1].role is not Role.MODEL:
            return None
        last = self.messages[-1].extended(fragment)
        return self.model_copy(update={"messages": (*self.messages[:-1], last)})

    def renamed(self, title: str) -> Conversation:
        return self.model_copy(update={"title": title})


class Registry(BaseModel):
    """Immutable snapshot of every conversation plus the active pointer."""

    model_config = ConfigDict(frozen=True)

    conversations: tuple[Conversation, ...] = ()
    active_id: str | None = None

    def find(self, conversation_id: str | None) -> Conversation | None:
        if conversation_id is None:
            return None
        for conv in self.conversations:
            if conv.id == conversation_id:
                return conv
        return None

    @property
    def active(self) -> Conversation | None:
        # A pointer to a removed conversation reads as "nothing active"
        return self.find(self.active_id)

    def with_conversation(
        self, conversation_id: str, change: Callable[[Conversation], Conversation | None]
    ) -> Registry:
        """Apply ``change`` to one conversation; other entries keep their position.

        Unknown ids, or a change returning None, leave the snapshot untouched.
        """
        target = self.find(conversation_id)
        if target is None:
            return self
        updated = change(target)
        if updated is None:
            return self
        conversations = tuple(
            updated if conv.id == conversation_id else conv for conv in self.conversations
        )
        return self.model_copy(update={"conversations": conversations})
