"""
Error taxonomy for the chat pipeline.

Configuration and availability problems are raised before anything is
dispatched. Transport and decode problems happen inside a generation and
are turned into assistant messages by the GenerationController.
"""

from typing import Optional


class ChatStreamError(Exception):
    """Base class for every error raised by chatstream."""

    pass


class ConfigurationError(ChatStreamError):
    """
    Raised when a provider/model pair cannot be resolved or a request
    cannot be built from the current configuration. Never retried.
    """

    pass


class ValidationError(ConfigurationError, ValueError):
    """Raised when generation parameters are out of range."""

    pass


class AvailabilityError(ChatStreamError):
    """
    Raised when the availability resolver reports that the selected
    provider/model cannot be used right now.
    """

    def __init__(self, message: str, provider_id: str = "", model_id: str = ""):
        super().__init__(message)
        self.provider_id = provider_id
        self.model_id = model_id


class TransportError(ChatStreamError):
    """Network or HTTP failure while talking to a provider."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class DecodeError(ChatStreamError):
    """Fatal stream framing problem (e.g. stream closed mid-frame)."""

    pass


class BusyError(ChatStreamError):
    """Raised when a conversation already has a generation in flight."""

    def __init__(self, conversation_id: str):
        super().__init__(
            f"Conversation {conversation_id} already has a generation in progress."
        )
        self.conversation_id = conversation_id


class LedgerError(ChatStreamError, KeyError):
    """Base class for conversation ledger lookups that fail."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message.
        return str(self.args[0]) if self.args else ""


class ConversationNotFoundError(LedgerError):
    pass


class MessageNotFoundError(LedgerError):
    pass
