"""
Availability Service

Answers "can provider P / model M be used right now" before a generation
is allowed to start. Remote providers need an API key; local models must
be installed in the local runtime.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Set, Tuple

import requests

from chatstream.core.ai.factory import ProviderRegistry
from chatstream.core.errors import ConfigurationError
from chatstream.services.config_service import ConfigService

logger = logging.getLogger("ChatStream.AvailabilityService")


class AvailabilityResolver(ABC):
    """Interface consumed by the GenerationController."""

    @abstractmethod
    async def is_available(self, provider_id: str, model_id: str) -> bool:
        """Return True when the provider/model pair can be used now."""
        pass


class StaticAvailabilityResolver(AvailabilityResolver):
    """
    Resolver with a fixed answer.

    With no pairs given every target is available; otherwise only the
    listed (provider_id, model_id) pairs are. A model id of "*" matches
    any model of that provider.
    """

    def __init__(self, pairs: Optional[Iterable[Tuple[str, str]]] = None, default: bool = True):
        self._pairs: Optional[Set[Tuple[str, str]]] = set(pairs) if pairs is not None else None
        self._default = default

    async def is_available(self, provider_id: str, model_id: str) -> bool:
        if self._pairs is None:
            return self._default
        return (provider_id, model_id) in self._pairs or (provider_id, "*") in self._pairs


class ConfigAvailabilityResolver(AvailabilityResolver):
    """
    Resolver backed by the configuration file and the local runtime.

    - Remote: available iff a non-blank API key is configured.
    - Local: available iff the model is listed by ``GET /api/tags``.
    """

    def __init__(
        self,
        config: ConfigService,
        registry: Optional[ProviderRegistry] = None,
        timeout: float = 5.0,
    ):
        self.config = config
        self.registry = registry or ProviderRegistry()
        self.timeout = timeout

    def _local_base_url(self, provider_id: str) -> str:
        provider = self.registry.resolve(provider_id)
        base = self.config.get_base_url(provider.provider_id) or provider.base_url
        return base.rstrip("/")

    def list_local_models(self, provider_id: str = "ollama") -> List[str]:
        """
        Names of installed local models. Raises requests exceptions on
        connection failure.
        """
        url = self._local_base_url(provider_id) + "/api/tags"
        resp = requests.get(url, timeout=self.timeout)
        resp.raise_for_status()
        data = resp.json()
        names = []
        for item in data.get("models") or []:
            if isinstance(item, dict) and item.get("name"):
                names.append(item["name"])
        return names

    def is_local_runtime_running(self, provider_id: str = "ollama") -> bool:
        try:
            self.list_local_models(provider_id)
            return True
        except requests.RequestException:
            return False

    async def is_available(self, provider_id: str, model_id: str) -> bool:
        try:
            provider = self.registry.resolve(provider_id)
        except ConfigurationError:
            return False

        if not provider.is_local:
            if not provider.requires_api_key:
                return True
            return self.config.get_api_key(provider.provider_id) is not None

        try:
            models = await asyncio.to_thread(self.list_local_models, provider.provider_id)
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Local model listing failed: {e}")
            return False
        return model_id in models
