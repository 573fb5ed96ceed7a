# chatstream/core/transport.py
"""
HTTP transport for chat requests.

The transport only moves bytes: framing and JSON parsing live in
stream_decoder. Every network or HTTP failure surfaces as TransportError.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, Optional

import aiohttp

from chatstream.core.errors import TransportError
from chatstream.core.request_builder import ChatRequest

logger = logging.getLogger(__name__)

ERROR_BODY_LIMIT = 500


class Transport(ABC):
    """Sends a ChatRequest and returns its response."""

    @abstractmethod
    def stream(self, request: ChatRequest) -> AsyncIterator[bytes]:
        """Yield raw response body chunks in arrival order."""
        pass

    @abstractmethod
    async def fetch(self, request: ChatRequest) -> Dict[str, Any]:
        """Return the complete JSON body of a non-streaming response."""
        pass


def describe_http_error(status: int, body: str, request: ChatRequest) -> str:
    """Human-readable text for a failed HTTP response."""
    excerpt = (body or "").strip()[:ERROR_BODY_LIMIT]
    if status == 401 or status == 403:
        hint = f"authentication rejected by {request.provider_id or 'provider'}"
    elif status == 404:
        hint = f"model '{request.model_id}' or endpoint not found"
    elif status == 429:
        hint = "rate limited by provider"
    else:
        hint = "request failed"
    text = f"API request failed: {status} ({hint})"
    return f"{text} {excerpt}" if excerpt else text


def describe_network_error(exc: BaseException, request: ChatRequest) -> str:
    """Human-readable text for a connection-level failure."""
    if isinstance(exc, asyncio.TimeoutError):
        return "Request timed out. The model might be too slow or the service is overloaded."
    message = str(exc) or exc.__class__.__name__
    lower = message.lower()
    if isinstance(exc, aiohttp.ClientConnectorError) or "refused" in lower or "connect" in lower:
        return f"Cannot connect to {request.url}. Is the service running? ({message})"
    return f"Network error: {message}"


class AiohttpTransport(Transport):
    """
    aiohttp-based transport.

    A session is created per request unless one is injected; injected
    sessions are left open.
    """

    def __init__(
        self,
        timeout: float = 60.0,
        read_timeout: Optional[float] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.timeout = timeout
        # Streams may run for a long time; only bound the gap between reads.
        self.read_timeout = read_timeout if read_timeout is not None else timeout
        self._session = session

    def _stream_timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(total=None, sock_connect=self.timeout, sock_read=self.read_timeout)

    async def _raise_for_status(self, resp: aiohttp.ClientResponse, request: ChatRequest) -> None:
        if resp.status < 400:
            return
        try:
            body = await resp.text()
        except (aiohttp.ClientError, UnicodeDecodeError):
            body = ""
        message = describe_http_error(resp.status, body, request)
        logger.error(message)
        raise TransportError(message, status=resp.status)

    async def stream(self, request: ChatRequest) -> AsyncIterator[bytes]:
        owns_session = self._session is None
        session = self._session or aiohttp.ClientSession()
        try:
            async with session.request(
                request.method,
                request.url,
                json=request.body,
                headers=request.headers,
                timeout=self._stream_timeout(),
            ) as resp:
                await self._raise_for_status(resp, request)
                # resp.content yields arbitrary byte chunks, not lines.
                async for chunk in resp.content.iter_any():
                    if chunk:
                        yield chunk
        except TransportError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            message = describe_network_error(e, request)
            logger.error(f"Streaming request failed: {message}")
            raise TransportError(message) from e
        finally:
            if owns_session:
                await session.close()

    async def fetch(self, request: ChatRequest) -> Dict[str, Any]:
        owns_session = self._session is None
        session = self._session or aiohttp.ClientSession()
        try:
            async with session.request(
                request.method,
                request.url,
                json=request.body,
                headers=request.headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as resp:
                await self._raise_for_status(resp, request)
                return await resp.json(content_type=None)
        except TransportError:
            raise
        except ValueError as e:
            raise TransportError(f"Invalid JSON response: {e}") from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            message = describe_network_error(e, request)
            logger.error(f"Request failed: {message}")
            raise TransportError(message) from e
        finally:
            if owns_session:
                await session.close()
