"""
Provider Descriptions

Pure data describing how to talk to each provider: which wire dialect it
speaks, where it lives and how its credential is attached.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple


class Dialect(Enum):
    """Wire-format families for requests and streamed responses."""
    LOCAL = "local"            # newline-delimited JSON (local runtime)
    COMPATIBLE = "compatible"  # SSE "data: ..." frames, OpenAI-style


@dataclass(frozen=True)
class ModelItem:
    """A catalog entry: display name plus the id used in requests."""
    id: str
    name: str


@dataclass(frozen=True)
class ProviderConfig:
    """
    Configuration record for one provider.

    ``auth_header`` names the header that carries the API key. When
    ``auth_scheme`` is set the value is sent as ``"<scheme> <key>"``.
    """
    provider_id: str
    name: str
    dialect: Dialect
    base_url: str
    chat_path: str = "/chat/completions"
    auth_header: Optional[str] = "Authorization"
    auth_scheme: Optional[str] = "Bearer"
    requires_api_key: bool = True
    models: Tuple[ModelItem, ...] = ()
    aliases: Tuple[str, ...] = ()
    website: Optional[str] = None

    @property
    def is_local(self) -> bool:
        return self.dialect is Dialect.LOCAL

    def auth_headers(self, api_key: Optional[str]) -> Dict[str, str]:
        """Headers that authenticate a request, empty without a key."""
        if not api_key or not self.auth_header:
            return {}
        value = f"{self.auth_scheme} {api_key}" if self.auth_scheme else api_key
        return {self.auth_header: value}


LOCAL_PROVIDER_ID = "ollama"


def _models(*pairs: Tuple[str, str]) -> Tuple[ModelItem, ...]:
    return tuple(ModelItem(id=mid, name=name) for mid, name in pairs)


BUILTIN_PROVIDERS: Tuple[ProviderConfig, ...] = (
    ProviderConfig(
        provider_id=LOCAL_PROVIDER_ID,
        name="Ollama",
        dialect=Dialect.LOCAL,
        base_url="http://localhost:11434",
        chat_path="/api/chat",
        auth_header=None,
        auth_scheme=None,
        requires_api_key=False,
        aliases=("local",),
        website="https://ollama.ai/",
    ),
    ProviderConfig(
        provider_id="openai",
        name="OpenAI",
        dialect=Dialect.COMPATIBLE,
        base_url="https://api.openai.com/v1",
        models=_models(
            ("gpt-4o", "GPT-4o"),
            ("gpt-4.1", "GPT-4.1"),
            ("gpt-4.1-mini", "GPT-4.1 mini"),
            ("gpt-4.1-nano", "GPT-4.1 nano"),
            ("gpt-4o-mini", "GPT-4o mini"),
            ("o3", "o3"),
            ("o4-mini", "o4-mini"),
        ),
        website="https://chatgpt.com/",
    ),
    ProviderConfig(
        provider_id="anthropic",
        name="Anthropic",
        dialect=Dialect.COMPATIBLE,
        base_url="https://api.anthropic.com/v1",
        auth_header="x-api-key",
        auth_scheme=None,
        models=_models(
            ("claude-4-sonnet", "Claude 4 Sonnet"),
            ("claude-4-opus", "Claude 4 Opus"),
            ("claude-3.7-sonnet", "Claude 3.7 Sonnet"),
            ("claude-3.5-haiku", "Claude 3.5 Haiku"),
        ),
        aliases=("claude",),
        website="https://claude.ai/",
    ),
    ProviderConfig(
        provider_id="deepseek",
        name="DeepSeek",
        dialect=Dialect.COMPATIBLE,
        base_url="https://api.deepseek.com/v1",
        models=_models(
            ("deepseek-reasoner", "DeepSeek R1"),
            ("deepseek-chat", "DeepSeek V3"),
        ),
        website="https://chat.deepseek.com/",
    ),
    ProviderConfig(
        provider_id="google",
        name="Google",
        dialect=Dialect.COMPATIBLE,
        base_url="https://generativelanguage.googleapis.com/v1beta/openai",
        auth_header="x-goog-api-key",
        auth_scheme=None,
        models=_models(
            ("gemini-2.5-pro", "Gemini 2.5 Pro"),
            ("gemini-2.5-flash", "Gemini 2.5 Flash"),
            ("gemini-1.5-flash-8b", "Gemini 1.5 Flash-8B"),
        ),
        aliases=("gemini",),
        website="https://gemini.google.com/",
    ),
    ProviderConfig(
        provider_id="meta",
        name="Meta",
        dialect=Dialect.COMPATIBLE,
        base_url="https://api.llama.com/v1",
        models=_models(
            ("llama-3.1-405b", "Llama 3.1 405B"),
            ("llama-3.3-70b", "Llama 3.3 70B"),
        ),
        website="https://llama.meta.com/",
    ),
    ProviderConfig(
        provider_id="xai",
        name="xAI",
        dialect=Dialect.COMPATIBLE,
        base_url="https://api.x.ai/v1",
        models=_models(("grok-3", "Grok 3")),
        website="https://x.ai/",
    ),
    ProviderConfig(
        provider_id="alibaba",
        name="Alibaba",
        dialect=Dialect.COMPATIBLE,
        base_url="https://dashscope.aliyuncs.com/compatible-mode/v1",
        models=_models(
            ("qwen3-235b", "Qwen3 235B"),
            ("qwen2.5-72b", "Qwen2.5 72B"),
        ),
        website="https://tongyi.aliyun.com/",
    ),
)
