"""
Provider Registry

Resolves provider ids (and aliases) to ProviderConfig records.
Supports dynamic provider registration.
"""

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from chatstream.core.ai.base import BUILTIN_PROVIDERS, ModelItem, ProviderConfig
from chatstream.core.errors import ConfigurationError

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """
    Lookup table of known providers.

    Supports:
    - Alias resolution ("local" -> "ollama", "claude" -> "anthropic")
    - Runtime registration of extra OpenAI-compatible providers
    - "provider:model" selection values
    """

    def __init__(self, providers: Optional[Iterable[ProviderConfig]] = None):
        self._providers: Dict[str, ProviderConfig] = {}
        self._aliases: Dict[str, str] = {}
        for config in BUILTIN_PROVIDERS if providers is None else providers:
            self.register(config)

    def register(self, config: ProviderConfig) -> None:
        """
        Register (or replace) a provider.

        Args:
            config: Provider description
        """
        key = config.provider_id.lower()
        self._providers[key] = config
        for alias in config.aliases:
            self._aliases[alias.lower()] = key
        logger.debug(f"Registered provider: {key} ({config.dialect.value})")

    def canonical_id(self, provider_id: str) -> str:
        key = (provider_id or "").strip().lower()
        return self._aliases.get(key, key)

    def resolve(self, provider_id: str) -> ProviderConfig:
        """
        Resolve a provider id or alias.

        Raises:
            ConfigurationError: If the provider is unknown
        """
        config = self._providers.get(self.canonical_id(provider_id))
        if config is None:
            raise ConfigurationError(f"Unsupported AI provider: {provider_id!r}")
        return config

    def is_known(self, provider_id: str) -> bool:
        return self.canonical_id(provider_id) in self._providers

    def provider_ids(self) -> List[str]:
        return list(self._providers.keys())

    def models_for(self, provider_id: str) -> List[ModelItem]:
        return list(self.resolve(provider_id).models)

    # ------------------------------------------------------------------
    # Selection values ("provider:model")
    # ------------------------------------------------------------------
    def parse_selection(self, value: str) -> Tuple[str, str]:
        """
        Split a "provider:model" selection on the first colon, so local
        tags survive: "ollama:llama3:8b" -> ("ollama", "llama3:8b").
        """
        text = (value or "").strip()
        provider, sep, model = text.partition(":")
        if not sep or not provider or not model:
            raise ConfigurationError(
                f"Invalid model selection {value!r}; expected 'provider:model'."
            )
        config = self.resolve(provider)
        return config.provider_id, model

    @staticmethod
    def format_selection(provider_id: str, model_id: str) -> str:
        return f"{provider_id}:{model_id}"
