# chatstream/core/chat_engine.py
"""
ChatStream Chat Engine

Responsibilities:
  - Keep the current conversation and the current "provider:model" selection
  - Route user actions (send, edit, delete, edit-and-resend, stop) to the
    ledger and the generation controller
  - Wire configuration, transport, availability and persistence together
"""

import logging
from typing import List, Optional, Sequence

from chatstream.core.activity_log import (
    ActivityRecorder,
    LoggingActivityRecorder,
    MemoryActivityLog,
)
from chatstream.core.ai.factory import ProviderRegistry
from chatstream.core.errors import ConversationNotFoundError
from chatstream.core.generation import GenerationController, GenerationSession, GenerationState
from chatstream.core.ledger import ConversationLedger
from chatstream.core.models import Conversation, GenerationParams, Message, Target
from chatstream.core.request_builder import RequestBuilder
from chatstream.core.storage import JsonLedgerStore
from chatstream.core.transport import AiohttpTransport, Transport
from chatstream.services.availability_service import (
    AvailabilityResolver,
    ConfigAvailabilityResolver,
)
from chatstream.services.config_service import ConfigService

logger = logging.getLogger(__name__)

DEFAULT_SELECTION = "openai:gpt-4o"


class ChatEngine:
    """
    Application-level facade over the chat pipeline:
      - ConversationLedger (ordered message logs, persistence)
      - GenerationController (single-flight streaming per conversation)
      - RequestBuilder / Transport (provider requests)
      - AvailabilityResolver (pre-send gate)
    """

    def __init__(
        self,
        config: Optional[ConfigService] = None,
        ledger: Optional[ConversationLedger] = None,
        transport: Optional[Transport] = None,
        resolver: Optional[AvailabilityResolver] = None,
        registry: Optional[ProviderRegistry] = None,
        recorder: Optional[ActivityRecorder] = None,
        selection: Optional[str] = None,
    ):
        self.config = config or ConfigService(data={})
        self.registry = registry or ProviderRegistry()
        self.ledger = ledger or ConversationLedger()
        self.builder = RequestBuilder(self.registry, self.config)
        self.transport = transport or AiohttpTransport(
            timeout=float(self.config.get("transport.timeout", 60)),
        )
        self.resolver = resolver or ConfigAvailabilityResolver(self.config, self.registry)
        self.activity = recorder or MemoryActivityLog(forward=LoggingActivityRecorder())
        self.controller = GenerationController(
            self.ledger,
            self.builder,
            self.transport,
            self.resolver,
            recorder=self.activity,
        )
        self.current_chat_id: Optional[str] = None
        self.selection = ""
        self.set_model(selection or self.config.get("defaults.model", DEFAULT_SELECTION))

    @classmethod
    def from_config(cls, config: ConfigService, **kwargs) -> "ChatEngine":
        """Engine whose ledger is loaded from (and saved to) the configured store."""
        store = JsonLedgerStore(config.get_storage_path())
        ledger = ConversationLedger.from_store(store)
        return cls(config=config, ledger=ledger, **kwargs)

    # --------------------------------------------------------------------------------------
    # MODEL SELECTION
    # --------------------------------------------------------------------------------------

    def set_model(self, selection: str) -> Target:
        """
        Switch the "provider:model" used for new sends.

        Raises:
            ConfigurationError: malformed selection or unknown provider
        """
        provider_id, model_id = self.registry.parse_selection(selection)
        self.selection = self.registry.format_selection(provider_id, model_id)
        logger.info(f"Model selection: {self.selection}")
        return Target(provider_id, model_id)

    def target(self) -> Target:
        provider_id, model_id = self.registry.parse_selection(self.selection)
        return Target(provider_id, model_id)

    @property
    def params(self) -> GenerationParams:
        return GenerationParams(
            temperature=float(self.config.get("defaults.temperature", 0.7)),
            max_tokens=int(self.config.get("defaults.max_tokens", 4000)),
        )

    # --------------------------------------------------------------------------------------
    # CONVERSATIONS
    # --------------------------------------------------------------------------------------

    def create_conversation(self, title: Optional[str] = None) -> str:
        target = self.target()
        conv_id = self.ledger.create_conversation(title, target.provider_id, target.model_id)
        self.current_chat_id = conv_id
        return conv_id

    def select_conversation(self, conversation_id: str) -> bool:
        if not self.ledger.has_conversation(conversation_id):
            return False
        self.current_chat_id = conversation_id
        return True

    def current_conversation(self) -> Optional[Conversation]:
        if self.current_chat_id is None:
            return None
        try:
            return self.ledger.get_conversation(self.current_chat_id)
        except ConversationNotFoundError:
            self.current_chat_id = None
            return None

    def delete_conversation(self, conversation_id: str) -> bool:
        # The ledger event cancels any session; cancel first anyway so the
        # typing state is cleared even for unknown ids.
        self.controller.cancel(conversation_id, "conversation deleted")
        deleted = self.ledger.delete_conversation(conversation_id)
        if self.current_chat_id == conversation_id:
            self.current_chat_id = None
        self.ledger.flush()
        return deleted

    def rename_conversation(self, conversation_id: str, title: str) -> None:
        self.ledger.rename(conversation_id, title)

    def list_conversations(self) -> List[Conversation]:
        return self.ledger.list_conversations()

    def search_conversations(self, query: str) -> List[Conversation]:
        return self.ledger.search_conversations(query)

    def _require_current(self) -> str:
        if self.current_chat_id is None:
            raise ConversationNotFoundError("No conversation selected.")
        return self.current_chat_id

    # --------------------------------------------------------------------------------------
    # MESSAGES
    # --------------------------------------------------------------------------------------

    async def send_message(
        self,
        content: str,
        images: Optional[Sequence[str]] = None,
        wait: bool = False,
    ) -> GenerationSession:
        """
        Send ``content`` to the current conversation (creating one if
        needed) with the current model selection.
        """
        if self.current_conversation() is None:
            self.create_conversation()
        conv_id = self._require_current()
        target = self.target()

        session = await self.controller.send(
            conv_id,
            content,
            target=target,
            params=self.params,
            image_refs=images,
        )
        self.ledger.set_target(conv_id, session.provider_id, session.model_id)
        if wait:
            await session.wait()
        return session

    def edit_message(self, message_id: str, new_content: str) -> None:
        self.ledger.edit(self._require_current(), message_id, new_content)
        self.ledger.flush()

    def delete_message(self, message_id: str) -> bool:
        deleted = self.ledger.delete(self._require_current(), message_id)
        self.ledger.flush()
        return deleted

    async def resend_message(
        self,
        message_id: str,
        content: str,
        images: Optional[Sequence[str]] = None,
        wait: bool = False,
    ) -> GenerationSession:
        """
        Edit-and-resend: drop ``message_id`` and everything after it, then
        send ``content`` as a fresh user message.
        """
        conv_id = self._require_current()
        self.ledger.delete_from(conv_id, message_id)
        return await self.send_message(content, images=images, wait=wait)

    def stop_generation(self, conversation_id: Optional[str] = None) -> bool:
        conv_id = conversation_id or self.current_chat_id
        if conv_id is None:
            return False
        return self.controller.cancel(conv_id, "stopped by user")

    # --------------------------------------------------------------------------------------
    # OBSERVATION
    # --------------------------------------------------------------------------------------

    def state(self, conversation_id: Optional[str] = None) -> GenerationState:
        conv_id = conversation_id or self.current_chat_id
        if conv_id is None:
            return GenerationState.IDLE
        return self.controller.state(conv_id)

    def is_typing(self, conversation_id: Optional[str] = None) -> bool:
        conv_id = conversation_id or self.current_chat_id
        return conv_id is not None and self.controller.typing.is_typing(conv_id)

    def replies_to(self, conversation_id: str, user_message_id: str) -> List[Message]:
        """Messages that follow ``user_message_id`` (the generated reply)."""
        messages = self.ledger.messages(conversation_id)
        for i, msg in enumerate(messages):
            if msg.id == user_message_id:
                return messages[i + 1:]
        return []

    def flush(self) -> bool:
        return self.ledger.flush()

    def close(self) -> None:
        self.controller.close()
        self.ledger.flush()
