# chatstream/core/models.py
"""
Conversation data model: messages, conversations and stream deltas.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

USER = "user"
ASSISTANT = "assistant"
ROLES = (USER, ASSISTANT)

DEFAULT_TITLE_PREFIX = "New Chat"


def new_id(prefix: str) -> str:
    """Fresh unique identifier, e.g. ``msg_3f2a...``."""
    return f"{prefix}_{uuid.uuid4().hex}"


def _parse_time(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            pass
    return datetime.now()


# ----------------------------------------------------------------------
# Messages
# ----------------------------------------------------------------------

@dataclass
class Message:
    """
    One entry in a conversation.

    ``content`` is the only field mutated after creation (streaming
    accumulation or an edit). Ordering is by position in the owning
    conversation, never by ``created_at``.
    """
    id: str
    conversation_id: str
    role: str
    content: str
    created_at: datetime = field(default_factory=datetime.now)
    model_id: Optional[str] = None
    image_refs: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "role": self.role,
            "content": self.content,
            "created_at": self.created_at.isoformat(),
        }
        if self.model_id:
            data["model_id"] = self.model_id
        if self.image_refs:
            data["image_refs"] = list(self.image_refs)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        return cls(
            id=data["id"],
            conversation_id=data.get("conversation_id", ""),
            role=data.get("role", USER),
            content=data.get("content") or "",
            created_at=_parse_time(data.get("created_at")),
            model_id=data.get("model_id"),
            image_refs=list(data.get("image_refs") or []),
        )


# ----------------------------------------------------------------------
# Conversations
# ----------------------------------------------------------------------

@dataclass
class Conversation:
    """
    An ordered message log plus its metadata.

    ``auto_titled`` stays True until the title has been derived from the
    first user message or set by the operator; after that the title is
    only changed through an explicit rename.
    """
    id: str
    title: str
    provider_id: str
    model_id: str
    messages: List[Message] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)
    auto_titled: bool = True

    def touch(self) -> None:
        self.updated_at = datetime.now()

    def index_of(self, message_id: str) -> int:
        for i, msg in enumerate(self.messages):
            if msg.id == message_id:
                return i
        return -1

    def find(self, message_id: str) -> Optional[Message]:
        idx = self.index_of(message_id)
        return self.messages[idx] if idx != -1 else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "provider_id": self.provider_id,
            "model_id": self.model_id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "auto_titled": self.auto_titled,
            "messages": [m.to_dict() for m in self.messages],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Conversation":
        conv_id = data["id"]
        messages = []
        for raw in data.get("messages") or []:
            msg = Message.from_dict(raw)
            msg.conversation_id = conv_id
            messages.append(msg)
        return cls(
            id=conv_id,
            title=data.get("title") or DEFAULT_TITLE_PREFIX,
            provider_id=data.get("provider_id", ""),
            model_id=data.get("model_id", ""),
            messages=messages,
            created_at=_parse_time(data.get("created_at")),
            updated_at=_parse_time(data.get("updated_at")),
            auto_titled=bool(data.get("auto_titled", False)),
        )


# ----------------------------------------------------------------------
# Streaming
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class Delta:
    """
    Normalized unit of streamed output.

    ``text`` may be empty, in particular on the final delta. A delta
    carrying ``error_message`` is always final.
    """
    text: str = ""
    final: bool = False
    error_message: Optional[str] = None


@dataclass(frozen=True)
class Target:
    """Provider/model pair a generation is sent to."""
    provider_id: str
    model_id: str


@dataclass(frozen=True)
class GenerationParams:
    temperature: float = 0.7
    max_tokens: int = 4000
