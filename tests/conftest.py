"""
Shared fakes for the chat pipeline tests.

Nothing here touches the network: the transport plays back scripted
byte chunks and the availability resolver answers from a fixed table.
"""

import asyncio
import json
from typing import Any, Dict, List, Optional

import pytest

from chatstream.core.activity_log import MemoryActivityLog
from chatstream.core.ai.factory import ProviderRegistry
from chatstream.core.generation import GenerationController
from chatstream.core.ledger import ConversationLedger
from chatstream.core.models import Target
from chatstream.core.request_builder import ChatRequest, RequestBuilder
from chatstream.core.transport import Transport
from chatstream.services.availability_service import StaticAvailabilityResolver
from chatstream.services.config_service import ConfigService

LOCAL = Target("ollama", "llama3")
REMOTE = Target("openai", "gpt-4o")


def local_line(text: str, done: bool = False) -> bytes:
    return (json.dumps({"message": {"role": "assistant", "content": text}, "done": done}, ensure_ascii=False) + "\n").encode("utf-8")


def sse_frame(text: Optional[str]) -> bytes:
    delta = {} if text is None else {"content": text}
    return ("data: " + json.dumps({"choices": [{"delta": delta}]}, ensure_ascii=False) + "\n\n").encode("utf-8")


SSE_DONE = b"data: [DONE]\n\n"


class FakeTransport(Transport):
    """
    Scripted transport.

    A script is a list of items played in order: bytes are yielded,
    an asyncio.Event is awaited (a gate the test opens), an exception
    is raised. ``scripts`` maps model ids to their own script.
    """

    def __init__(
        self,
        script: Optional[List[Any]] = None,
        scripts: Optional[Dict[str, List[Any]]] = None,
        payload: Any = None,
    ):
        self.script = list(script or [])
        self.scripts = scripts or {}
        self.payload = payload
        self.requests: List[ChatRequest] = []
        self.pulled: List[bytes] = []
        self.closed = 0

    def stream(self, request: ChatRequest):
        self.requests.append(request)
        script = self.scripts.get(request.model_id, self.script)
        return self._play(list(script))

    async def _play(self, script: List[Any]):
        try:
            for item in script:
                if isinstance(item, asyncio.Event):
                    await item.wait()
                elif isinstance(item, BaseException):
                    raise item
                else:
                    self.pulled.append(item)
                    yield item
        finally:
            self.closed += 1

    async def fetch(self, request: ChatRequest) -> Dict[str, Any]:
        self.requests.append(request)
        if isinstance(self.payload, BaseException):
            raise self.payload
        return self.payload


def run_async(coro):
    """Helper to run async coroutines inside plain pytest tests."""
    return asyncio.run(coro)


async def settle(rounds: int = 20) -> None:
    """Let scheduled tasks run until they block."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def make_config(**providers: Dict[str, Any]) -> ConfigService:
    data: Dict[str, Any] = {"providers": {"openai": {"api_key": "sk-test"}}}
    data["providers"].update(providers)
    return ConfigService(data=data)


@pytest.fixture
def ledger() -> ConversationLedger:
    return ConversationLedger()


@pytest.fixture
def activity() -> MemoryActivityLog:
    return MemoryActivityLog()


@pytest.fixture
def make_controller(ledger, activity):
    """Factory: controller over the shared ledger with the given transport."""

    def _make(transport: Transport, resolver=None, config: Optional[ConfigService] = None):
        builder = RequestBuilder(ProviderRegistry(), config or make_config())
        return GenerationController(
            ledger,
            builder,
            transport,
            resolver or StaticAvailabilityResolver(),
            recorder=activity,
        )

    return _make
