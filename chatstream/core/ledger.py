# chatstream/core/ledger.py
"""
Conversation ledger: the ordered, mutable message log of every
conversation.

Mutations of one conversation are serialized by that conversation's
lock; different conversations never contend. Readers get snapshots, so a
streaming accumulate is never observed half-applied.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from chatstream.core.errors import (
    ConversationNotFoundError,
    MessageNotFoundError,
    ValidationError,
)
from chatstream.core.models import (
    DEFAULT_TITLE_PREFIX,
    ROLES,
    USER,
    ASSISTANT,
    Conversation,
    Message,
    new_id,
)
from chatstream.core.storage import LedgerStore

logger = logging.getLogger(__name__)

TITLE_MAX_CHARS = 30
TITLE_ELLIPSIS = "..."


class LedgerEventKind(Enum):
    MESSAGES_REMOVED = "messages_removed"
    CONVERSATION_DELETED = "conversation_deleted"


@dataclass(frozen=True)
class LedgerEvent:
    kind: LedgerEventKind
    conversation_id: str
    message_ids: Tuple[str, ...] = ()


LedgerListener = Callable[[LedgerEvent], None]


def derive_title_text(content: str, limit: int = TITLE_MAX_CHARS) -> str:
    """First ``limit`` characters of ``content``, ellipsis-suffixed when cut."""
    text = " ".join((content or "").split())
    if len(text) > limit:
        return text[:limit] + TITLE_ELLIPSIS
    return text


def _snapshot(conv: Conversation) -> Conversation:
    return replace(
        conv,
        messages=[replace(m, image_refs=list(m.image_refs)) for m in conv.messages],
    )


class ConversationLedger:
    """
    In-memory ledger with optional persistence.

    Listeners registered with ``subscribe`` are called while the
    conversation lock is held, so a removal and the reaction to it (for
    example aborting a generation) happen as one step.
    """

    def __init__(self, store: Optional[LedgerStore] = None):
        self.store = store
        self._conversations: Dict[str, Conversation] = {}
        self._order: List[str] = []  # newest first
        self._locks: Dict[str, threading.RLock] = {}
        self._registry_lock = threading.RLock()
        self._listeners: List[LedgerListener] = []
        self._dirty = False
        self._created_count = 0

    @classmethod
    def from_store(cls, store: LedgerStore) -> "ConversationLedger":
        ledger = cls(store=store)
        for conv in store.load():
            ledger._conversations[conv.id] = conv
            ledger._order.append(conv.id)
            ledger._locks[conv.id] = threading.RLock()
        ledger._created_count = len(ledger._order)
        return ledger

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _lock_for(self, conversation_id: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(conversation_id)
        if lock is None:
            raise ConversationNotFoundError(f"Conversation not found: {conversation_id}")
        return lock

    @contextmanager
    def holding(self, conversation_id: str) -> Iterator[None]:
        """
        Hold the conversation lock so no write to it can be in progress.
        Does nothing for a conversation that no longer exists.
        """
        try:
            lock = self._lock_for(conversation_id)
        except ConversationNotFoundError:
            yield
            return
        with lock:
            yield

    def _get(self, conversation_id: str) -> Conversation:
        conv = self._conversations.get(conversation_id)
        if conv is None:
            raise ConversationNotFoundError(f"Conversation not found: {conversation_id}")
        return conv

    def _emit(self, event: LedgerEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Ledger listener failed for {event.kind.value}: {e}", exc_info=True)

    def _changed(self, conv: Conversation) -> None:
        conv.touch()
        self._dirty = True

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------
    def subscribe(self, listener: LedgerListener) -> Callable[[], None]:
        """Register a listener; returns a function that removes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------
    def create_conversation(
        self,
        title: Optional[str] = None,
        provider_id: str = "",
        model_id: str = "",
    ) -> str:
        with self._registry_lock:
            self._created_count += 1
            conv_id = new_id("chat")
            conv = Conversation(
                id=conv_id,
                title=title or f"{DEFAULT_TITLE_PREFIX} {self._created_count}",
                provider_id=provider_id,
                model_id=model_id,
                auto_titled=not title,
            )
            self._conversations[conv_id] = conv
            self._order.insert(0, conv_id)
            self._locks[conv_id] = threading.RLock()
            self._dirty = True
        logger.debug(f"Created conversation {conv_id}")
        return conv_id

    def delete_conversation(self, conversation_id: str) -> bool:
        try:
            lock = self._lock_for(conversation_id)
        except ConversationNotFoundError:
            return False
        with lock:
            with self._registry_lock:
                self._conversations.pop(conversation_id, None)
                self._locks.pop(conversation_id, None)
                if conversation_id in self._order:
                    self._order.remove(conversation_id)
                self._dirty = True
            self._emit(LedgerEvent(LedgerEventKind.CONVERSATION_DELETED, conversation_id))
        logger.debug(f"Deleted conversation {conversation_id}")
        return True

    def has_conversation(self, conversation_id: str) -> bool:
        return conversation_id in self._conversations

    def get_conversation(self, conversation_id: str) -> Conversation:
        """Snapshot of a conversation."""
        with self._lock_for(conversation_id):
            return _snapshot(self._get(conversation_id))

    def messages(self, conversation_id: str) -> List[Message]:
        return self.get_conversation(conversation_id).messages

    def list_conversations(self) -> List[Conversation]:
        """Snapshots of every conversation, newest first."""
        with self._registry_lock:
            ids = list(self._order)
        result = []
        for conv_id in ids:
            try:
                result.append(self.get_conversation(conv_id))
            except ConversationNotFoundError:
                continue
        return result

    def search_conversations(self, query: str) -> List[Conversation]:
        conversations = self.list_conversations()
        needle = (query or "").strip().lower()
        if not needle:
            return conversations
        return [
            c for c in conversations
            if needle in c.title.lower()
            or any(needle in m.content.lower() for m in c.messages)
        ]

    def rename(self, conversation_id: str, title: str) -> None:
        """Operator-set title; disables automatic titling."""
        with self._lock_for(conversation_id):
            conv = self._get(conversation_id)
            conv.title = title
            conv.auto_titled = False
            self._changed(conv)

    def set_target(self, conversation_id: str, provider_id: str, model_id: str) -> None:
        with self._lock_for(conversation_id):
            conv = self._get(conversation_id)
            conv.provider_id = provider_id
            conv.model_id = model_id
            self._changed(conv)

    def derive_title(self, conversation_id: str, content: str) -> bool:
        """
        Set the title from the first user message, once. Returns True if
        the title changed.
        """
        title = derive_title_text(content)
        if not title:
            return False
        with self._lock_for(conversation_id):
            conv = self._get(conversation_id)
            if not conv.auto_titled:
                return False
            conv.title = title
            conv.auto_titled = False
            self._changed(conv)
        logger.debug(f"Conversation {conversation_id} titled {title!r}")
        return True

    def touch(self, conversation_id: str) -> None:
        try:
            lock = self._lock_for(conversation_id)
        except ConversationNotFoundError:
            return
        with lock:
            conv = self._conversations.get(conversation_id)
            if conv is not None:
                self._changed(conv)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------
    def append(
        self,
        conversation_id: str,
        role: str,
        content: str,
        model_id: Optional[str] = None,
        image_refs: Optional[Sequence[str]] = None,
    ) -> str:
        """Append a message at the end and return its fresh id."""
        if role not in ROLES:
            raise ValidationError(f"Unknown message role: {role!r}")
        with self._lock_for(conversation_id):
            conv = self._get(conversation_id)
            msg = Message(
                id=new_id("msg"),
                conversation_id=conversation_id,
                role=role,
                content=content or "",
                model_id=model_id,
                image_refs=list(image_refs or []),
            )
            conv.messages.append(msg)
            self._changed(conv)
        return msg.id

    def append_reply(
        self,
        conversation_id: str,
        anchor_message_id: str,
        content: str,
        model_id: Optional[str] = None,
        guard: Optional[Callable[[], bool]] = None,
    ) -> Optional[str]:
        """
        Append an assistant message only if ``anchor_message_id`` is still
        in the conversation. Returns None when the anchor (or the whole
        conversation) is gone, or when ``guard`` returns False.

        ``guard`` is evaluated while the conversation lock is held.
        """
        try:
            lock = self._lock_for(conversation_id)
        except ConversationNotFoundError:
            return None
        with lock:
            if guard is not None and not guard():
                return None
            conv = self._conversations.get(conversation_id)
            if conv is None or conv.index_of(anchor_message_id) == -1:
                return None
            return self.append(conversation_id, ASSISTANT, content, model_id=model_id)

    def accumulate(
        self,
        conversation_id: str,
        message_id: str,
        chunk: str,
        guard: Optional[Callable[[], bool]] = None,
    ) -> bool:
        """
        Concatenate ``chunk`` onto a message. No-op returning False when the
        message (or conversation) no longer exists, or when ``guard``
        returns False under the conversation lock.
        """
        try:
            lock = self._lock_for(conversation_id)
        except ConversationNotFoundError:
            return False
        with lock:
            if guard is not None and not guard():
                return False
            conv = self._conversations.get(conversation_id)
            msg = conv.find(message_id) if conv is not None else None
            if msg is None:
                return False
            if chunk:
                msg.content += chunk
                self._changed(conv)
            return True

    def edit(self, conversation_id: str, message_id: str, new_content: str) -> None:
        with self._lock_for(conversation_id):
            conv = self._get(conversation_id)
            msg = conv.find(message_id)
            if msg is None:
                raise MessageNotFoundError(f"Message not found: {message_id}")
            msg.content = new_content
            self._changed(conv)

    def set_message_model(self, conversation_id: str, message_id: str, model_id: str) -> None:
        with self._lock_for(conversation_id):
            conv = self._get(conversation_id)
            msg = conv.find(message_id)
            if msg is None:
                raise MessageNotFoundError(f"Message not found: {message_id}")
            msg.model_id = model_id
            self._changed(conv)

    def delete(self, conversation_id: str, message_id: str) -> bool:
        """Remove exactly one message. Returns False if it was not there."""
        with self._lock_for(conversation_id):
            conv = self._get(conversation_id)
            idx = conv.index_of(message_id)
            if idx == -1:
                return False
            del conv.messages[idx]
            self._changed(conv)
            self._emit(LedgerEvent(LedgerEventKind.MESSAGES_REMOVED, conversation_id, (message_id,)))
        return True

    def delete_from(self, conversation_id: str, message_id: str) -> List[str]:
        """
        Truncate the conversation to the messages before ``message_id``.

        Returns the removed ids (empty if ``message_id`` is unknown).
        """
        with self._lock_for(conversation_id):
            conv = self._get(conversation_id)
            idx = conv.index_of(message_id)
            if idx == -1:
                return []
            removed = [m.id for m in conv.messages[idx:]]
            del conv.messages[idx:]
            self._changed(conv)
            self._emit(LedgerEvent(LedgerEventKind.MESSAGES_REMOVED, conversation_id, tuple(removed)))
        logger.debug(f"Truncated {conversation_id}: removed {len(removed)} messages")
        return removed

    def last_user_message(self, conversation_id: str) -> Optional[Message]:
        for msg in reversed(self.messages(conversation_id)):
            if msg.role == USER:
                return msg
        return None

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    @property
    def dirty(self) -> bool:
        return self._dirty

    def flush(self) -> bool:
        """Write to the store if anything changed. Returns True if written."""
        with self._registry_lock:
            if self.store is None or not self._dirty:
                return False
            # Cleared before the snapshot: a write racing the save marks it again.
            self._dirty = False
        conversations = self.list_conversations()
        try:
            self.store.save(conversations)
        except OSError as e:
            self._dirty = True
            logger.error(f"Failed to persist conversations: {e}")
            return False
        return True
