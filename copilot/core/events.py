"""Typed events exchanged between collaborators, the orchestrator and the UI.

Inbound events (audio + transcription) are funnelled into
MeetingCopilot.dispatch on the event loop thread, one at a time, in the
order each source emitted them. Outbound events go through EventHub.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Any, Callable, ClassVar, Union

from copilot.core.config import TranscriptFragment

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AudioLevel:
    level: float
    type: ClassVar[str] = "audio:level"


@dataclass(frozen=True)
class AudioChunk:
    samples: Any  # float32 mono block
    type: ClassVar[str] = "audio:data"


@dataclass(frozen=True)
class TranscriptReceived:
    fragment: TranscriptFragment
    type: ClassVar[str] = "transcription:update"


@dataclass(frozen=True)
class TranscriptionFailed:
    message: str
    detail: str = ""
    type: ClassVar[str] = "transcription:error"


@dataclass(frozen=True)
class TranscriptionEnded:
    type: ClassVar[str] = "transcription:ended"


@dataclass(frozen=True)
class StateUpdate:
    state: dict[str, Any]
    type: ClassVar[str] = "meeting:stateUpdate"


@dataclass(frozen=True)
class ErrorEvent:
    message: str
    detail: str | None = None
    type: ClassVar[str] = "error"


InboundEvent = Union[AudioLevel, AudioChunk, TranscriptReceived, TranscriptionFailed, TranscriptionEnded]
OutboundEvent = Union[AudioLevel, TranscriptReceived, TranscriptionEnded, StateUpdate, ErrorEvent]


def event_payload(event: OutboundEvent) -> dict[str, Any]:
    """JSON-ready body of an outbound event."""
    if isinstance(event, StateUpdate):
        return event.state
    return asdict(event)


class EventHub:
    """Fan-out hub for presentation subscribers.

    publish() is synchronous and must be called from the event loop thread.
    SSE clients read from per-subscriber queues; in-process listeners are
    called inline.
    """

    def __init__(self, queue_size: int = 100):
        self._queue_size = queue_size
        self._subscribers: set[asyncio.Queue] = set()
        self._listeners: list[Callable[[OutboundEvent], None]] = []

    def subscribe(self) -> asyncio.Queue:
        q: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers.add(q)
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        self._subscribers.discard(q)

    def is_subscribed(self, q: asyncio.Queue) -> bool:
        return q in self._subscribers

    def add_listener(self, listener: Callable[[OutboundEvent], None]) -> None:
        self._listeners.append(listener)

    def publish(self, event: OutboundEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Event listener failed on {event.type}: {e}", exc_info=True)

        stale: list[asyncio.Queue] = []
        for q in self._subscribers:
            try:
                q.put_nowait(event)
            except asyncio.QueueFull:
                stale.append(q)
        for q in stale:
            logger.warning("Dropping slow subscriber (queue full)")
            self._subscribers.discard(q)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
