"""
Provider Abstraction Layer

Describes every provider (local runtime and OpenAI-compatible remotes)
as a dialect plus a configuration record.
"""

from chatstream.core.ai.base import (
    BUILTIN_PROVIDERS,
    LOCAL_PROVIDER_ID,
    Dialect,
    ModelItem,
    ProviderConfig,
)
from chatstream.core.ai.factory import ProviderRegistry

__all__ = [
    "BUILTIN_PROVIDERS",
    "LOCAL_PROVIDER_ID",
    "Dialect",
    "ModelItem",
    "ProviderConfig",
    "ProviderRegistry",
]
