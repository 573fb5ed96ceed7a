# chatstream/core/generation.py
"""
Generation controller: one streaming request per conversation at a time.

Lifecycle of a session::

    Idle -> Dispatching -> Streaming -> Completing -> Idle
                 |              |
                 +--> Errored <-+
                         |
                         +--> Idle

The user message is written before anything is sent. The assistant
message is only created when the first non-empty delta arrives, so a
provider that fails straight away leaves a single error message instead
of an empty bubble.
"""

import asyncio
import logging
import threading
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Dict, List, Optional, Sequence

from chatstream.core.activity_log import (
    ActivityEvent,
    ActivityKind,
    ActivityRecorder,
    LoggingActivityRecorder,
)
from chatstream.core.ai.base import ProviderConfig
from chatstream.core.errors import AvailabilityError, BusyError, ChatStreamError, TransportError
from chatstream.core.ledger import ConversationLedger, LedgerEvent, LedgerEventKind
from chatstream.core.models import USER, Delta, GenerationParams, Message, Target
from chatstream.core.request_builder import ChatRequest, RequestBuilder
from chatstream.core.stream_decoder import decode_complete, decoder_for
from chatstream.core.transport import Transport
from chatstream.services.availability_service import AvailabilityResolver

logger = logging.getLogger(__name__)

ERROR_TEMPLATE = "Error: {error}"
ERROR_ANNOTATION_SEPARATOR = "\n\n"


class GenerationState(Enum):
    IDLE = "idle"
    DISPATCHING = "dispatching"
    STREAMING = "streaming"
    COMPLETING = "completing"
    ERRORED = "errored"


class SessionOutcome(Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class GenerationSession:
    """Ephemeral state of one in-flight request. Never persisted."""
    conversation_id: str
    provider_id: str
    model_id: str
    user_message_id: str
    state: GenerationState = GenerationState.DISPATCHING
    pending_assistant_message_id: Optional[str] = None
    accumulated_length: int = 0
    cancelled: bool = False
    error: Optional[str] = None
    outcome: Optional[SessionOutcome] = None
    task: Optional["asyncio.Task[None]"] = field(default=None, repr=False)
    loop: Optional[asyncio.AbstractEventLoop] = field(default=None, repr=False)

    @property
    def done(self) -> bool:
        return self.outcome is not None

    async def wait(self) -> None:
        """Wait for the background task without propagating its cancellation."""
        if self.task is not None:
            await asyncio.wait({self.task})


class TypingIndicator:
    """Which conversations are waiting for a first token, and from which model."""

    def __init__(self):
        self._models: Dict[str, Optional[str]] = {}
        self._lock = threading.Lock()

    def set(self, conversation_id: str, model_id: Optional[str] = None) -> None:
        with self._lock:
            self._models[conversation_id] = model_id

    def clear(self, conversation_id: str) -> None:
        with self._lock:
            self._models.pop(conversation_id, None)

    def is_typing(self, conversation_id: str) -> bool:
        with self._lock:
            return conversation_id in self._models

    def model_for(self, conversation_id: str) -> Optional[str]:
        with self._lock:
            return self._models.get(conversation_id)


def availability_message(provider: ProviderConfig, model_id: str) -> str:
    if provider.is_local:
        return (
            f"{provider.name} service is not running or model '{model_id}' is not installed; "
            f"please start {provider.name} and pull the model."
        )
    return f"Please configure an API key for {provider.name} to use this model."


class GenerationController:
    """
    Drives generations and applies their deltas to the ledger.

    Different conversations stream concurrently; within one conversation
    a second ``send`` while a session is active raises BusyError without
    touching the ledger.
    """

    def __init__(
        self,
        ledger: ConversationLedger,
        builder: RequestBuilder,
        transport: Transport,
        resolver: AvailabilityResolver,
        recorder: Optional[ActivityRecorder] = None,
        typing: Optional[TypingIndicator] = None,
        error_template: str = ERROR_TEMPLATE,
    ):
        self.ledger = ledger
        self.builder = builder
        self.transport = transport
        self.resolver = resolver
        self.recorder = recorder or LoggingActivityRecorder()
        self.typing = typing or TypingIndicator()
        self.error_template = error_template
        self._sessions: Dict[str, GenerationSession] = {}
        self._lock = threading.RLock()
        self._unsubscribe = ledger.subscribe(self._on_ledger_event)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    def session(self, conversation_id: str) -> Optional[GenerationSession]:
        with self._lock:
            return self._sessions.get(conversation_id)

    def state(self, conversation_id: str) -> GenerationState:
        session = self.session(conversation_id)
        return session.state if session is not None else GenerationState.IDLE

    def is_busy(self, conversation_id: str) -> bool:
        return self.session(conversation_id) is not None

    def active_sessions(self) -> List[GenerationSession]:
        with self._lock:
            return list(self._sessions.values())

    def _is_current(self, session: GenerationSession) -> bool:
        with self._lock:
            return self._sessions.get(session.conversation_id) is session and not session.cancelled

    def _record(self, kind: ActivityKind, conversation_id: str, message: str = "",
                provider_id: Optional[str] = None, model_id: Optional[str] = None, **details) -> None:
        self.recorder.record(ActivityEvent(
            kind=kind,
            conversation_id=conversation_id,
            message=message,
            provider_id=provider_id,
            model_id=model_id,
            details=details,
        ))

    def _ensure_idle(self, conversation_id: str) -> None:
        if self.is_busy(conversation_id):
            self._record(ActivityKind.SEND_REJECTED, conversation_id, "generation already in progress")
            raise BusyError(conversation_id)

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------
    async def send(
        self,
        conversation_id: str,
        content: str,
        target: Optional[Target] = None,
        params: Optional[GenerationParams] = None,
        image_refs: Optional[Sequence[str]] = None,
        stream: bool = True,
    ) -> GenerationSession:
        """
        Accept a user message and start generating the reply.

        Returns once the user message is in the ledger and the streaming
        task is scheduled; use ``session.wait()`` (or ``send_and_wait``)
        for the outcome.

        Raises:
            BusyError: the conversation already has an active session
            ConfigurationError: unknown provider, bad parameters
            AvailabilityError: the resolver refused the target
            ConversationNotFoundError: no such conversation
        """
        params = params or GenerationParams()
        if target is None:
            conv = self.ledger.get_conversation(conversation_id)
            target = Target(conv.provider_id, conv.model_id)

        self._ensure_idle(conversation_id)
        provider = self.builder.validate(target, params)
        target = Target(provider.provider_id, target.model_id)

        if not await self.resolver.is_available(target.provider_id, target.model_id):
            message = availability_message(provider, target.model_id)
            self._record(ActivityKind.AVAILABILITY_DENIED, conversation_id, message,
                         target.provider_id, target.model_id)
            raise AvailabilityError(message, target.provider_id, target.model_id)

        session = GenerationSession(
            conversation_id=conversation_id,
            provider_id=target.provider_id,
            model_id=target.model_id,
            user_message_id="",
        )
        with self._lock:
            # Another send may have been accepted while we awaited the resolver.
            self._ensure_idle(conversation_id)
            self._sessions[conversation_id] = session

        # The ledger lock is taken outside the controller lock; ledger
        # listeners call back into cancel().
        try:
            session.user_message_id = self.ledger.append(
                conversation_id, USER, content,
                model_id=target.model_id, image_refs=image_refs,
            )
        except ChatStreamError:
            with self._lock:
                if self._sessions.get(conversation_id) is session:
                    del self._sessions[conversation_id]
            raise

        self.ledger.derive_title(conversation_id, content)
        self.typing.set(conversation_id, target.model_id)
        history = self.ledger.messages(conversation_id)
        self._record(ActivityKind.GENERATION_STARTED, conversation_id, "",
                     target.provider_id, target.model_id, messages=len(history))

        session.loop = asyncio.get_running_loop()
        session.task = asyncio.create_task(self._run(session, history, target, params, stream))
        return session

    async def send_and_wait(self, conversation_id: str, content: str, **kwargs) -> GenerationSession:
        session = await self.send(conversation_id, content, **kwargs)
        await session.wait()
        return session

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------
    def cancel(self, conversation_id: str, reason: str = "cancelled") -> bool:
        """
        Stop the conversation's session. Content already accumulated is
        kept. Returns False when nothing was running.
        """
        # Waits out any ledger write in progress for this session.
        with self.ledger.holding(conversation_id):
            with self._lock:
                session = self._sessions.pop(conversation_id, None)
                if session is None:
                    return False
                session.cancelled = True
                session.state = GenerationState.IDLE
                session.outcome = SessionOutcome.CANCELLED
        self.typing.clear(conversation_id)
        self._record(ActivityKind.GENERATION_CANCELLED, conversation_id, reason,
                     session.provider_id, session.model_id,
                     accumulated_length=session.accumulated_length)
        self._cancel_task(session)
        return True

    def cancel_all(self) -> None:
        for session in self.active_sessions():
            self.cancel(session.conversation_id, "shutdown")

    def close(self) -> None:
        """Stop every session and detach from the ledger."""
        self.cancel_all()
        self._unsubscribe()

    @staticmethod
    def _cancel_task(session: GenerationSession) -> None:
        task = session.task
        if task is None or task.done():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is session.loop:
            if task is not asyncio.current_task():
                task.cancel()
        elif session.loop is not None and not session.loop.is_closed():
            session.loop.call_soon_threadsafe(task.cancel)

    def _on_ledger_event(self, event: LedgerEvent) -> None:
        session = self.session(event.conversation_id)
        if session is None:
            return
        if event.kind is LedgerEventKind.CONVERSATION_DELETED:
            self.cancel(event.conversation_id, "conversation deleted")
        elif event.kind is LedgerEventKind.MESSAGES_REMOVED:
            targets = {session.user_message_id, session.pending_assistant_message_id}
            if targets.intersection(event.message_ids):
                self.cancel(event.conversation_id, "target message removed")

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------
    async def _deltas(self, request: ChatRequest) -> AsyncIterator[Delta]:
        if request.stream:
            decoder = decoder_for(request.dialect)
            async with aclosing(decoder.decode(self.transport.stream(request))) as deltas:
                async for delta in deltas:
                    yield delta
        else:
            payload = await self.transport.fetch(request)
            yield decode_complete(request.dialect, payload)

    async def _run(
        self,
        session: GenerationSession,
        history: List[Message],
        target: Target,
        params: GenerationParams,
        stream: bool,
    ) -> None:
        try:
            request = self.builder.build(history, target, params, stream=stream)
            async with aclosing(self._deltas(request)) as deltas:
                async for delta in deltas:
                    if not self._is_current(session):
                        return
                    if delta.error_message:
                        raise TransportError(delta.error_message)
                    self._apply(session, delta)
                    if delta.final or not self._is_current(session):
                        return
        except asyncio.CancelledError:
            logger.debug(f"Generation task for {session.conversation_id} cancelled")
            raise
        except ChatStreamError as e:
            self._fail(session, e)
        except Exception as e:
            logger.error(f"Unexpected generation failure: {e}", exc_info=True)
            self._fail(session, e)
        finally:
            self._release(session, SessionOutcome.CANCELLED)
            self.ledger.flush()

    def _apply(self, session: GenerationSession, delta: Delta) -> None:
        conversation_id = session.conversation_id

        def live() -> bool:
            return self._is_current(session)

        text = delta.text
        if text:
            if session.pending_assistant_message_id is None:
                self.typing.clear(conversation_id)
                message_id = self.ledger.append_reply(
                    conversation_id, session.user_message_id, text, model_id=session.model_id,
                    guard=live,
                )
                if message_id is None:
                    self.cancel(conversation_id, "user message removed")
                    return
                session.pending_assistant_message_id = message_id
                session.state = GenerationState.STREAMING
            elif not self.ledger.accumulate(
                conversation_id, session.pending_assistant_message_id, text, guard=live,
            ):
                self.cancel(conversation_id, "assistant message removed")
                return
            session.accumulated_length += len(text)

        if delta.final:
            session.state = GenerationState.COMPLETING
            self.ledger.touch(conversation_id)
            self._record(ActivityKind.GENERATION_COMPLETED, conversation_id, "",
                         session.provider_id, session.model_id,
                         accumulated_length=session.accumulated_length)
            self._release(session, SessionOutcome.COMPLETED)

    def _fail(self, session: GenerationSession, exc: BaseException) -> None:
        if not self._is_current(session):
            return
        conversation_id = session.conversation_id
        session.state = GenerationState.ERRORED
        session.error = str(exc) or exc.__class__.__name__
        self.typing.clear(conversation_id)

        text = self.error_template.format(error=session.error)
        if session.pending_assistant_message_id is None:
            self.ledger.append_reply(
                conversation_id, session.user_message_id, text, model_id=session.model_id,
                guard=lambda: self._is_current(session),
            )
        else:
            # Keep the partial answer; the error goes after it.
            self.ledger.accumulate(
                conversation_id,
                session.pending_assistant_message_id,
                ERROR_ANNOTATION_SEPARATOR + text,
                guard=lambda: self._is_current(session),
            )
        self._record(ActivityKind.GENERATION_FAILED, conversation_id, session.error,
                     session.provider_id, session.model_id,
                     accumulated_length=session.accumulated_length)
        self._release(session, SessionOutcome.FAILED)

    def _release(self, session: GenerationSession, outcome: SessionOutcome) -> None:
        with self._lock:
            if self._sessions.get(session.conversation_id) is not session:
                return
            del self._sessions[session.conversation_id]
            session.state = GenerationState.IDLE
            if session.outcome is None:
                session.outcome = outcome
        self.typing.clear(session.conversation_id)
