"""Transcript Accumulator — final fragments buffered between analysis cycles."""

import logging
import threading

logger = logging.getLogger(__name__)


class TranscriptAccumulator:
    """Holds the pending delta for the next cycle and the full meeting transcript.

    capture() swaps the delta out under a lock, so text added while a model
    call is outstanding lands in the next delta and is never counted twice.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._pending = ""
        self._segments: list[str] = []

    def add(self, text: str) -> None:
        text = text.strip()
        if not text:
            return
        with self._lock:
            self._pending += " " + text
            self._segments.append(text)

    def pending_length(self) -> int:
        with self._lock:
            return len(self._pending.strip())

    def peek(self) -> str:
        with self._lock:
            return self._pending.strip()

    def capture(self) -> str:
        """Return the pending delta and start a fresh one."""
        with self._lock:
            delta = self._pending.strip()
            self._pending = ""
        return delta

    def restore(self, delta: str) -> None:
        """Put an unanalyzed delta back in front of anything added since."""
        delta = delta.strip()
        if not delta:
            return
        with self._lock:
            self._pending = " " + delta + self._pending
        logger.info(f"Restored {len(delta)} chars to the pending transcript")

    @property
    def full_text(self) -> str:
        with self._lock:
            return " ".join(self._segments)

    def clear(self) -> None:
        with self._lock:
            self._pending = ""
            self._segments = []
