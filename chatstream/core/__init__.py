# Core modules
from .errors import (
    AvailabilityError,
    BusyError,
    ChatStreamError,
    ConfigurationError,
    DecodeError,
    TransportError,
    ValidationError,
)
from .models import Conversation, Delta, GenerationParams, Message, Target
from .ledger import ConversationLedger

__all__ = [
    "AvailabilityError",
    "BusyError",
    "ChatStreamError",
    "ConfigurationError",
    "DecodeError",
    "TransportError",
    "ValidationError",
    "Conversation",
    "Delta",
    "GenerationParams",
    "Message",
    "Target",
    "ConversationLedger",
]
