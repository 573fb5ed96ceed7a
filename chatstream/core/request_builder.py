# chatstream/core/request_builder.py
"""
Builds transport-ready chat requests for the provider's dialect.

Local runtime  -> POST {base}/api/chat         (newline-delimited JSON stream)
Compatible API -> POST {base}/chat/completions (SSE "data:" frames)
"""

import base64
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from chatstream.core.ai.base import Dialect, ProviderConfig
from chatstream.core.ai.factory import ProviderRegistry
from chatstream.core.errors import ConfigurationError, ValidationError
from chatstream.core.models import ASSISTANT, USER, GenerationParams, Message, Target
from chatstream.services.config_service import ConfigService

logger = logging.getLogger(__name__)

MIN_TEMPERATURE = 0.0
MAX_TEMPERATURE = 2.0
IMAGE_DATA_URL_PREFIX = "data:image/jpeg;base64,"


@dataclass
class ChatRequest:
    """A fully-resolved HTTP request plus the dialect needed to read it back."""
    url: str
    dialect: Dialect
    body: Dict[str, Any]
    headers: Dict[str, str] = field(default_factory=dict)
    method: str = "POST"
    provider_id: str = ""
    model_id: str = ""

    @property
    def stream(self) -> bool:
        return bool(self.body.get("stream"))


def encode_image_file(path: Union[str, Path]) -> str:
    """Read an image file and return its base64 payload (no data: prefix)."""
    data = Path(path).expanduser().read_bytes()
    return base64.b64encode(data).decode("ascii")


class RequestBuilder:
    """
    Turns message history + target + parameters into a ChatRequest.

    Credentials and base URL overrides come from ConfigService; the
    header that carries the credential comes from the provider record.
    """

    def __init__(
        self,
        registry: Optional[ProviderRegistry] = None,
        config: Optional[ConfigService] = None,
    ):
        self.registry = registry or ProviderRegistry()
        self.config = config or ConfigService(data={})

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------
    def validate(self, target: Target, params: GenerationParams) -> ProviderConfig:
        """
        Check the target and parameters without building anything.

        Raises:
            ConfigurationError: unknown provider or empty model id
            ValidationError: temperature outside [0, 2] or bad max_tokens
        """
        provider = self.registry.resolve(target.provider_id)
        if not (target.model_id or "").strip():
            raise ConfigurationError(
                f"No model selected for provider {provider.provider_id!r}."
            )

        temperature = params.temperature
        if (
            isinstance(temperature, bool)
            or not isinstance(temperature, (int, float))
            or math.isnan(temperature)
            or not MIN_TEMPERATURE <= temperature <= MAX_TEMPERATURE
        ):
            raise ValidationError(
                f"Temperature must be between {MIN_TEMPERATURE:g} and "
                f"{MAX_TEMPERATURE:g}, got {temperature!r}."
            )

        max_tokens = params.max_tokens
        if isinstance(max_tokens, bool) or not isinstance(max_tokens, int) or max_tokens <= 0:
            raise ValidationError(f"max_tokens must be a positive integer, got {max_tokens!r}.")
        return provider

    # ------------------------------------------------------------------
    # Building
    # ------------------------------------------------------------------
    def base_url(self, provider: ProviderConfig) -> str:
        url = self.config.get_base_url(provider.provider_id) or provider.base_url
        return url.rstrip("/")

    def build(
        self,
        history: Sequence[Message],
        target: Target,
        params: Optional[GenerationParams] = None,
        stream: bool = True,
    ) -> ChatRequest:
        """
        Build the request for ``target``.

        Args:
            history: Ordered conversation messages, oldest first
            target: Provider/model pair
            params: Temperature / max tokens
            stream: Request a streamed response (the normal path)

        Returns:
            ChatRequest ready for a Transport
        """
        params = params or GenerationParams()
        provider = self.validate(target, params)

        if provider.dialect is Dialect.LOCAL:
            body = self._local_body(history, target.model_id, params, stream)
        else:
            body = self._compatible_body(history, target.model_id, params, stream)

        headers = {"Content-Type": "application/json"}
        api_key = self.config.get_api_key(provider.provider_id)
        headers.update(provider.auth_headers(api_key))
        if provider.requires_api_key and not api_key:
            logger.warning(f"No API key configured for {provider.provider_id}")

        url = self.base_url(provider) + provider.chat_path
        logger.debug(
            f"Built {provider.dialect.value} request: {url} model={target.model_id} "
            f"messages={len(body['messages'])} stream={stream}"
        )
        return ChatRequest(
            url=url,
            dialect=provider.dialect,
            body=body,
            headers=headers,
            provider_id=provider.provider_id,
            model_id=target.model_id,
        )

    @staticmethod
    def _role(msg: Message) -> str:
        return USER if msg.role == USER else ASSISTANT

    def _local_body(
        self,
        history: Sequence[Message],
        model: str,
        params: GenerationParams,
        stream: bool,
    ) -> Dict[str, Any]:
        messages: List[Dict[str, Any]] = []
        for msg in history:
            m: Dict[str, Any] = {"role": self._role(msg), "content": msg.content}
            if msg.image_refs:
                m["images"] = list(msg.image_refs)
            messages.append(m)
        return {
            "model": model,
            "messages": messages,
            "stream": stream,
            "options": {
                "temperature": params.temperature,
                # The local runtime calls max tokens `num_predict`.
                "num_predict": params.max_tokens,
            },
        }

    def _compatible_body(
        self,
        history: Sequence[Message],
        model: str,
        params: GenerationParams,
        stream: bool,
    ) -> Dict[str, Any]:
        messages: List[Dict[str, Any]] = []
        for msg in history:
            content: Any = msg.content
            if msg.image_refs:
                parts: List[Dict[str, Any]] = [{"type": "text", "text": msg.content}]
                for ref in msg.image_refs:
                    url = ref if ref.startswith("data:") else IMAGE_DATA_URL_PREFIX + ref
                    parts.append({"type": "image_url", "image_url": {"url": url}})
                content = parts
            messages.append({"role": self._role(msg), "content": content})
        return {
            "model": model,
            "messages": messages,
            "stream": stream,
            "temperature": params.temperature,
            "max_tokens": params.max_tokens,
        }
