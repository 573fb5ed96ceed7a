# chatstream/core/stream_decoder.py
"""
Stream decoders: turn a provider's byte stream into Delta events.

Two framings are supported:

  Local      one JSON object per line, ``{"message": {"content": ...}, "done": bool}``
             or ``{"response": ..., "done": bool}``
  Compatible SSE lines ``data: {"choices": [{"delta": {"content": ...}}]}``
             terminated by ``data: [DONE]``

Both decoders buffer bytes across reads and only look at complete lines.
Malformed lines are skipped: providers emit the occasional keep-alive or
junk line. Every decoded stream ends with exactly one final Delta.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, List, Optional

from chatstream.core.ai.base import Dialect
from chatstream.core.errors import DecodeError
from chatstream.core.models import Delta

logger = logging.getLogger(__name__)

SSE_DATA_PREFIX = "data: "
SSE_DONE_SENTINEL = "[DONE]"


def _error_text(value: Any) -> Optional[str]:
    """Extract a provider error message from ``error`` payload shapes."""
    if not value:
        return None
    if isinstance(value, dict):
        msg = value.get("message") or value.get("error")
        return str(msg) if msg else json.dumps(value)
    return str(value)


class StreamDecoder(ABC):
    """
    Incremental decoder for one stream.

    Use ``feed`` / ``finish`` directly, or ``decode`` to consume an async
    byte iterator. A decoder instance is single-use.
    """

    dialect: Dialect

    def __init__(self):
        self._buffer = b""
        self.finished = False

    @abstractmethod
    def parse_line(self, line: str, strict: bool = False) -> Optional[Delta]:
        """
        Decode one complete line.

        Returns None for lines that carry nothing (blank, comments,
        malformed JSON). With ``strict`` a malformed payload raises
        DecodeError instead of being skipped.
        """
        pass

    def _decode_line(self, raw: bytes, strict: bool = False) -> Optional[Delta]:
        raw = raw.rstrip(b"\r")
        try:
            line = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            if strict:
                raise DecodeError(f"Invalid UTF-8 in stream: {e}") from e
            logger.debug(f"Skipping undecodable line: {raw[:100]!r}")
            return None
        return self.parse_line(line, strict=strict)

    def feed(self, chunk: bytes) -> List[Delta]:
        """
        Append bytes and return the deltas for every completed line.
        Processing stops at the first final delta; later bytes are ignored.
        """
        if self.finished or not chunk:
            return []
        self._buffer += chunk
        deltas: List[Delta] = []
        while not self.finished and b"\n" in self._buffer:
            raw, self._buffer = self._buffer.split(b"\n", 1)
            delta = self._decode_line(raw)
            if delta is None:
                continue
            deltas.append(delta)
            if delta.final:
                self.finished = True
                self._buffer = b""
        return deltas

    def finish(self) -> List[Delta]:
        """
        Signal end of stream.

        An unterminated remainder is decoded as a last line; if it does not
        parse the stream was cut mid-frame and DecodeError is raised. When
        no final marker was seen a final empty delta is synthesized.
        """
        if self.finished:
            return []
        deltas: List[Delta] = []
        rest, self._buffer = self._buffer, b""
        if rest.strip():
            delta = self._decode_line(rest, strict=True)
            if delta is not None:
                deltas.append(delta)
        if not any(d.final for d in deltas):
            logger.debug(f"{self.dialect.value} stream ended without a final marker")
            deltas.append(Delta(text="", final=True))
        self.finished = True
        return deltas

    async def decode(self, byte_stream: AsyncIterator[bytes]) -> AsyncIterator[Delta]:
        """Lazily decode ``byte_stream``; stops after the first final delta."""
        try:
            async for chunk in byte_stream:
                for delta in self.feed(chunk):
                    yield delta
                if self.finished:
                    return
            for delta in self.finish():
                yield delta
        finally:
            aclose = getattr(byte_stream, "aclose", None)
            if aclose is not None:
                await aclose()


class LocalStreamDecoder(StreamDecoder):
    """Newline-delimited JSON from the local runtime."""

    dialect = Dialect.LOCAL

    def parse_line(self, line: str, strict: bool = False) -> Optional[Delta]:
        text = line.strip()
        if not text:
            return None
        try:
            data = json.loads(text)
        except ValueError as e:
            if strict:
                raise DecodeError(f"Stream closed mid-frame: {text[:100]!r}") from e
            logger.debug(f"Skipping malformed line: {text[:100]!r}")
            return None
        if not isinstance(data, dict):
            return None
        return local_payload_delta(data)


class CompatibleStreamDecoder(StreamDecoder):
    """SSE ``data:`` frames from OpenAI-compatible APIs."""

    dialect = Dialect.COMPATIBLE

    def parse_line(self, line: str, strict: bool = False) -> Optional[Delta]:
        if not line.startswith(SSE_DATA_PREFIX):
            # event:, id:, retry:, ": keep-alive" comments and blank separators
            return None
        payload = line[len(SSE_DATA_PREFIX):].strip()
        if payload == SSE_DONE_SENTINEL:
            return Delta(text="", final=True)
        try:
            data = json.loads(payload)
        except ValueError as e:
            if strict:
                raise DecodeError(f"Stream closed mid-frame: {payload[:100]!r}") from e
            logger.debug(f"Skipping malformed data frame: {payload[:100]!r}")
            return None
        if not isinstance(data, dict):
            return None

        error = _error_text(data.get("error"))
        if error:
            return Delta(text="", final=True, error_message=error)

        content = ""
        choices = data.get("choices")
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            delta = choices[0].get("delta")
            if isinstance(delta, dict) and isinstance(delta.get("content"), str):
                content = delta["content"]
        return Delta(text=content, final=False)


def local_payload_delta(data: Dict[str, Any]) -> Delta:
    """Delta for one local-runtime JSON object (chat or completion shape)."""
    error = _error_text(data.get("error"))
    if error:
        return Delta(text="", final=True, error_message=error)

    content = ""
    message = data.get("message")
    if isinstance(message, dict) and isinstance(message.get("content"), str):
        content = message["content"]
    elif isinstance(data.get("response"), str):
        content = data["response"]
    return Delta(text=content, final=bool(data.get("done", False)))


def decoder_for(dialect: Dialect) -> StreamDecoder:
    """Fresh decoder for ``dialect``."""
    if dialect is Dialect.LOCAL:
        return LocalStreamDecoder()
    if dialect is Dialect.COMPATIBLE:
        return CompatibleStreamDecoder()
    raise ValueError(f"Unknown dialect: {dialect!r}")


def decode_complete(dialect: Dialect, payload: Any) -> Delta:
    """
    Wrap a non-streaming response body as a single final Delta.
    """
    if not isinstance(payload, dict):
        raise DecodeError(f"Unexpected response body: {str(payload)[:100]!r}")

    if dialect is Dialect.LOCAL:
        delta = local_payload_delta(payload)
        return Delta(text=delta.text, final=True, error_message=delta.error_message)

    error = _error_text(payload.get("error"))
    if error:
        return Delta(text="", final=True, error_message=error)
    content = ""
    choices = payload.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        message = choices[0].get("message")
        if isinstance(message, dict) and isinstance(message.get("content"), str):
            content = message["content"]
    return Delta(text=content, final=True)
