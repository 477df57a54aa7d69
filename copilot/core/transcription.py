"""Speech-to-text sessions.

Backends:
  - Deepgram: live WebSocket streaming (interim + final fragments),
    keep-alive every few seconds, bounded connect timeout.
  - Whisper: local faster-whisper on fixed-size chunks (final fragments only).
  - Stdin: typed lines become final fragments (testing without a mic).

Every session emits TranscriptReceived / TranscriptionFailed /
TranscriptionEnded to the sink it is bound to.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
import threading
from typing import Any
from urllib.parse import urlencode

import numpy as np
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, WebSocketException

from copilot.agents.language import detect_language
from copilot.core.config import (
    CopilotConfig,
    EventSink,
    TranscriptFragment,
    TranscriptionSession,
    now_ms,
)
from copilot.core.events import TranscriptionEnded, TranscriptionFailed, TranscriptReceived

logger = logging.getLogger(__name__)

DEEPGRAM_URL = "wss://api.deepgram.com/v1/listen"


def float_to_pcm16(samples: np.ndarray) -> bytes:
    """Clip float32 [-1, 1] samples and convert to little-endian int16 PCM."""
    clipped = np.clip(np.asarray(samples, dtype=np.float32), -1.0, 1.0)
    scaled = np.where(clipped < 0, clipped * 0x8000, clipped * 0x7FFF)
    return scaled.astype("<i2").tobytes()


def fragment_from_deepgram(data: dict[str, Any], timestamp_ms: int | None = None) -> TranscriptFragment | None:
    """Convert a Deepgram "Results" message into a fragment (None if empty)."""
    if data.get("type", "Results") != "Results":
        return None
    channel = data.get("channel") or {}
    alternatives = channel.get("alternatives") or []
    if not alternatives:
        return None
    best = alternatives[0] or {}
    text = str(best.get("transcript") or "").strip()
    if not text:
        return None

    words = best.get("words") or []
    speaker = words[0].get("speaker") if words and isinstance(words[0], dict) else None
    return TranscriptFragment(
        text=text,
        timestamp_ms=timestamp_ms if timestamp_ms is not None else now_ms(),
        duration_ms=int(float(data.get("duration") or 0) * 1000),
        confidence=float(best.get("confidence") or 0.0),
        language=detect_language(text),
        is_final=bool(data.get("is_final", False)),
        speaker_id=speaker if isinstance(speaker, int) else None,
    )


class _SinkMixin:
    _sink: EventSink | None = None

    def bind(self, sink: EventSink) -> None:
        self._sink = sink

    def _emit(self, event: Any) -> None:
        if self._sink is not None:
            self._sink(event)


# ══════════════════════════════════════════════════════════════════════
# Deepgram live streaming
# ══════════════════════════════════════════════════════════════════════

class DeepgramSession(_SinkMixin):
    """Deepgram real-time transcription over one WebSocket connection."""

    def __init__(
        self,
        model: str = "nova-2",
        language: str = "fr",
        sample_rate: int = 16000,
        utterance_end_ms: int = 1500,
        keepalive_s: float = 5.0,
        connect_timeout_s: float = 10.0,
        url: str = DEEPGRAM_URL,
    ):
        self.model = model
        self.language = language
        self.sample_rate = sample_rate
        self.utterance_end_ms = utterance_end_ms
        self.keepalive_s = keepalive_s
        self.connect_timeout_s = connect_timeout_s
        self._url = url
        self._api_key: str | None = None
        self._ws: ClientConnection | None = None
        self._audio_q: asyncio.Queue[bytes] | None = None
        self._tasks: list[asyncio.Task] = []
        self._closing = False
        self._chunks_sent = 0

    def initialize(self, api_key: str | None = None) -> bool:
        if not api_key:
            logger.warning("DEEPGRAM_API_KEY not set - transcription will be disabled")
            return False
        self._api_key = api_key
        return True

    def listen_url(self) -> str:
        params = {
            "model": self.model,
            "language": self.language,
            "punctuate": "true",
            "interim_results": "true",
            "utterance_end_ms": self.utterance_end_ms,
            "vad_events": "true",
            "smart_format": "true",
            "encoding": "linear16",
            "sample_rate": self.sample_rate,
            "channels": 1,
        }
        return f"{self._url}?{urlencode(params)}"

    @property
    def has_active_session(self) -> bool:
        return self._ws is not None

    async def _open(self) -> ClientConnection:
        return await connect(
            self.listen_url(),
            additional_headers={"Authorization": f"Token {self._api_key}"},
            open_timeout=None,
        )

    async def start_session(self) -> bool:
        if not self._api_key:
            logger.error("Deepgram client not initialized")
            return False
        if self._ws is not None:
            return True

        try:
            ws = await asyncio.wait_for(self._open(), timeout=self.connect_timeout_s)
        except asyncio.TimeoutError:
            logger.error(f"Deepgram connection timeout after {self.connect_timeout_s:.0f}s")
            self._emit(TranscriptionFailed("Failed to start transcription session", "Connection timeout"))
            return False
        except (OSError, WebSocketException) as exc:
            logger.error(f"Failed to start Deepgram session: {exc}")
            self._emit(TranscriptionFailed("Failed to start transcription session", str(exc)))
            return False

        self._ws = ws
        self._closing = False
        self._chunks_sent = 0
        self._audio_q = asyncio.Queue()
        loop = asyncio.get_running_loop()
        self._tasks = [
            loop.create_task(self._receive(ws)),
            loop.create_task(self._send(ws, self._audio_q)),
            loop.create_task(self._keepalive(ws)),
        ]
        logger.info(f"Deepgram connection opened (model={self.model}, language={self.language})")
        return True

    def send_audio(self, samples: Any) -> None:
        if self._audio_q is None:
            return
        self._audio_q.put_nowait(float_to_pcm16(samples))

    async def _send(self, ws: ClientConnection, audio_q: asyncio.Queue[bytes]) -> None:
        try:
            while True:
                block = await audio_q.get()
                await ws.send(block)
                self._chunks_sent += 1
                if self._chunks_sent <= 3:
                    logger.debug(f"Deepgram: sent chunk {self._chunks_sent} ({len(block)} bytes)")
        except ConnectionClosed:
            return

    async def _keepalive(self, ws: ClientConnection) -> None:
        while True:
            await asyncio.sleep(self.keepalive_s)
            try:
                await ws.send(json.dumps({"type": "KeepAlive"}))
            except ConnectionClosed as exc:
                logger.warning(f"Keepalive failed: {exc}")
                return

    async def _receive(self, ws: ClientConnection) -> None:
        try:
            async for raw in ws:
                try:
                    data = json.loads(raw)
                except (TypeError, ValueError):
                    logger.warning("Deepgram sent a non-JSON message")
                    continue
                fragment = fragment_from_deepgram(data)
                if fragment is None:
                    continue
                logger.debug(f"Deepgram: {fragment.summary()} {fragment.text[:80]!r}")
                self._emit(TranscriptReceived(fragment))
        except ConnectionClosedOK:
            pass
        except ConnectionClosed as exc:
            if not self._closing:
                logger.error(f"Deepgram connection lost: {exc}")
                self._emit(TranscriptionFailed("Transcription failed", str(exc)))
        logger.info("Deepgram connection closed")
        if not self._closing:
            self._ws = None
            self._audio_q = None
            self._emit(TranscriptionEnded())

    async def end_session(self) -> None:
        ws = self._ws
        tasks = self._tasks
        self._closing = True
        self._ws = None
        self._audio_q = None
        self._tasks = []

        for task in tasks[1:]:
            task.cancel()
        if ws is not None:
            try:
                await ws.send(json.dumps({"type": "CloseStream"}))
                await ws.close()
            except (ConnectionClosed, OSError) as exc:
                logger.warning(f"Error closing Deepgram connection: {exc}")
        for task in tasks[:1]:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._chunks_sent = 0


# ══════════════════════════════════════════════════════════════════════
# Local faster-whisper
# ══════════════════════════════════════════════════════════════════════

class WhisperSession(_SinkMixin):
    """Chunked local transcription. Every chunk becomes one final fragment."""

    def __init__(
        self,
        model_size: str = "base",
        language: str = "fr",
        sample_rate: int = 16000,
        chunk_seconds: float = 3.0,
        load_timeout_s: float = 60.0,
    ):
        self.model_size = model_size
        self.language = language
        self.sample_rate = sample_rate
        self.chunk_seconds = chunk_seconds
        self.load_timeout_s = load_timeout_s
        self._model = None
        self._active = False
        self._buffer = np.array([], dtype=np.float32)
        self._chunks: asyncio.Queue[np.ndarray] | None = None
        self._worker: asyncio.Task | None = None

    def initialize(self, api_key: str | None = None) -> bool:
        return True

    @property
    def has_active_session(self) -> bool:
        return self._active

    def _load_model(self):
        from faster_whisper import WhisperModel

        return WhisperModel(self.model_size, device="cpu", compute_type="int8")

    async def start_session(self) -> bool:
        if self._active:
            return True
        loop = asyncio.get_running_loop()
        if self._model is None:
            try:
                self._model = await asyncio.wait_for(
                    loop.run_in_executor(None, self._load_model), timeout=self.load_timeout_s
                )
            except asyncio.TimeoutError:
                self._emit(TranscriptionFailed("Failed to start transcription session", "STT model load timeout"))
                return False
            except Exception as exc:
                logger.error(f"Failed to load STT model: {exc}")
                self._emit(TranscriptionFailed("Failed to start transcription session", str(exc)))
                return False

        self._buffer = np.array([], dtype=np.float32)
        self._chunks = asyncio.Queue()
        self._worker = loop.create_task(self._run(self._chunks))
        self._active = True
        logger.info(f"Whisper session started (model={self.model_size}, chunk={self.chunk_seconds:.1f}s)")
        return True

    def send_audio(self, samples: Any) -> None:
        if not self._active or self._chunks is None:
            return
        self._buffer = np.concatenate((self._buffer, np.asarray(samples, dtype=np.float32)))
        target = int(self.sample_rate * self.chunk_seconds)
        while self._buffer.size >= target:
            self._chunks.put_nowait(self._buffer[:target])
            self._buffer = self._buffer[target:]

    def _transcribe(self, audio: np.ndarray) -> tuple[str, float]:
        segments, _ = self._model.transcribe(
            audio,
            language=self.language,
            vad_filter=True,
            beam_size=1,
            condition_on_previous_text=False,
        )
        texts: list[str] = []
        confidences: list[float] = []
        for seg in segments:
            if seg.text.strip():
                texts.append(seg.text.strip())
                confidences.append(math.exp(min(0.0, seg.avg_logprob)))
        confidence = sum(confidences) / len(confidences) if confidences else 0.0
        return " ".join(texts).strip(), confidence

    async def _run(self, chunks: asyncio.Queue[np.ndarray]) -> None:
        loop = asyncio.get_running_loop()
        while True:
            audio = await chunks.get()
            started = now_ms()
            try:
                text, confidence = await loop.run_in_executor(None, self._transcribe, audio)
            except Exception as exc:
                logger.warning(f"STT decode error: {exc}")
                self._emit(TranscriptionFailed("Transcription failed", str(exc)))
                continue
            if not text:
                continue
            self._emit(TranscriptReceived(TranscriptFragment(
                text=text,
                timestamp_ms=started,
                duration_ms=int(self.chunk_seconds * 1000),
                confidence=confidence,
                language=detect_language(text),
                is_final=True,
            )))

    async def end_session(self) -> None:
        was_active = self._active
        self._active = False
        self._chunks = None
        self._buffer = np.array([], dtype=np.float32)
        if self._worker is not None:
            self._worker.cancel()
            await asyncio.gather(self._worker, return_exceptions=True)
            self._worker = None
        if was_active:
            self._emit(TranscriptionEnded())


# ══════════════════════════════════════════════════════════════════════
# Stdin (manual testing)
# ══════════════════════════════════════════════════════════════════════

class StdinSession(_SinkMixin):
    """Typed lines → final fragments. Audio is ignored."""

    def __init__(self, prompt: str = "  you> "):
        self.prompt = prompt
        self._active = threading.Event()
        self._thread: threading.Thread | None = None

    def initialize(self, api_key: str | None = None) -> bool:
        return True

    @property
    def has_active_session(self) -> bool:
        return self._active.is_set()

    async def start_session(self) -> bool:
        self._active.set()
        if self._thread is None:
            self._thread = threading.Thread(target=self._run, daemon=True)
            self._thread.start()
        return True

    def send_audio(self, samples: Any) -> None:
        pass

    def _run(self) -> None:
        while True:
            try:
                line = input(self.prompt).strip()
            except EOFError:
                self._active.clear()
                self._emit(TranscriptionEnded())
                return
            if not line or not self._active.is_set():
                continue
            self._emit(TranscriptReceived(TranscriptFragment(
                text=line,
                timestamp_ms=now_ms(),
                confidence=1.0,
                language=detect_language(line),
                is_final=True,
            )))

    async def end_session(self) -> None:
        self._active.clear()


def build_transcriber(config: CopilotConfig) -> TranscriptionSession:
    """Factory — returns the configured speech-to-text session (not yet initialized)."""
    if config.stt_backend == "stdin":
        return StdinSession()
    if config.stt_backend == "whisper":
        return WhisperSession(
            model_size=config.whisper_model,
            language=config.stt_language,
            sample_rate=config.sample_rate,
            chunk_seconds=config.whisper_chunk_s,
        )
    return DeepgramSession(
        model=config.deepgram_model,
        language=config.stt_language,
        sample_rate=config.sample_rate,
        utterance_end_ms=config.utterance_end_ms,
        keepalive_s=config.keepalive_s,
        connect_timeout_s=config.stt_connect_timeout_s,
    )
