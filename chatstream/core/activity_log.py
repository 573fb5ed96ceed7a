# chatstream/core/activity_log.py
"""
Activity recording for generations.

The controller is handed a recorder instead of reaching for a global
logger object, so tests can inspect exactly what was recorded.
"""

import logging
import threading
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Deque, Dict, List, Optional

logger = logging.getLogger(__name__)


class ActivityKind(Enum):
    GENERATION_STARTED = "generation_started"
    GENERATION_COMPLETED = "generation_completed"
    GENERATION_FAILED = "generation_failed"
    GENERATION_CANCELLED = "generation_cancelled"
    AVAILABILITY_DENIED = "availability_denied"
    SEND_REJECTED = "send_rejected"


@dataclass
class ActivityEvent:
    kind: ActivityKind
    conversation_id: str
    message: str = ""
    provider_id: Optional[str] = None
    model_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def is_error(self) -> bool:
        return self.kind in (ActivityKind.GENERATION_FAILED, ActivityKind.AVAILABILITY_DENIED)


class ActivityRecorder(ABC):
    @abstractmethod
    def record(self, event: ActivityEvent) -> None:
        pass


class LoggingActivityRecorder(ActivityRecorder):
    """Writes every event to a stdlib logger."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logger

    def record(self, event: ActivityEvent) -> None:
        level = logging.WARNING if event.is_error else logging.INFO
        target = f"{event.provider_id}:{event.model_id}" if event.provider_id else "-"
        self.log.log(
            level,
            f"[{event.kind.value}] conversation={event.conversation_id} target={target} {event.message}".rstrip(),
        )


class MemoryActivityLog(ActivityRecorder):
    """
    Bounded in-memory log, oldest entries dropped first.
    Optionally forwards to another recorder.
    """

    def __init__(self, max_entries: int = 500, forward: Optional[ActivityRecorder] = None):
        self._events: Deque[ActivityEvent] = deque(maxlen=max_entries)
        self._lock = threading.Lock()
        self.forward = forward

    def record(self, event: ActivityEvent) -> None:
        with self._lock:
            self._events.append(event)
        if self.forward is not None:
            self.forward.record(event)

    def events(self, kind: Optional[ActivityKind] = None) -> List[ActivityEvent]:
        with self._lock:
            items = list(self._events)
        if kind is None:
            return items
        return [e for e in items if e.kind is kind]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()

    def __len__(self) -> int:
        return len(self._events)
