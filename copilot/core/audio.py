"""Microphone capture — sounddevice input stream → AudioLevel / AudioChunk events.

The sounddevice callback runs on PortAudio's thread; the bound sink must be
thread-safe (MeetingCopilot.post is).
"""

from __future__ import annotations

import logging

import numpy as np

from copilot.core.config import (
    EventSink,
    PERMISSION_DENIED,
    PERMISSION_GRANTED,
)
from copilot.core.events import AudioChunk, AudioLevel

logger = logging.getLogger(__name__)


def rms_level(samples: np.ndarray) -> float:
    """Coarse 0..1 loudness of a float32 block."""
    if samples.size == 0:
        return 0.0
    rms = float(np.sqrt(np.mean(np.square(samples, dtype=np.float64))))
    return min(1.0, rms)


class MicrophoneCapture:
    """Mono float32 capture from the default input device."""

    def __init__(self, sample_rate: int = 16000, block_seconds: float = 0.1):
        self.sample_rate = sample_rate
        self.blocksize = max(1, int(sample_rate * block_seconds))
        self._sink: EventSink | None = None
        self._stream = None
        self._paused = False

    def bind(self, sink: EventSink) -> None:
        self._sink = sink

    def check_microphone_permission(self) -> str:
        """There is no OS prompt to consult here: an input device we can query means granted."""
        import sounddevice as sd

        try:
            sd.query_devices(kind="input")
        except (sd.PortAudioError, ValueError) as exc:
            logger.warning(f"No usable input device: {exc}")
            return PERMISSION_DENIED
        return PERMISSION_GRANTED

    def request_microphone_permission(self) -> bool:
        import sounddevice as sd

        try:
            sd.check_input_settings(samplerate=self.sample_rate, channels=1, dtype="float32")
        except (sd.PortAudioError, ValueError) as exc:
            logger.warning(f"Microphone rejected input settings: {exc}")
            return False
        return True

    def _on_audio(self, indata, _frames, _time_info, status) -> None:
        if status:
            logger.debug(f"Mic status: {status}")
        if self._sink is None or self._paused:
            return
        mono = np.array(indata[:, 0], dtype=np.float32, copy=True)
        self._sink(AudioLevel(rms_level(mono)))
        self._sink(AudioChunk(mono))

    def start(self) -> None:
        import sounddevice as sd

        if self._stream is not None:
            return
        self._paused = False
        self._stream = sd.InputStream(
            samplerate=self.sample_rate,
            channels=1,
            dtype="float32",
            blocksize=self.blocksize,
            callback=self._on_audio,
        )
        self._stream.start()
        logger.info(f"Microphone capture started ({self.sample_rate} Hz)")

    def pause(self) -> None:
        self._paused = True
        if self._stream is not None:
            self._stream.stop()
        logger.info("Microphone capture paused")

    def resume(self) -> None:
        self._paused = False
        if self._stream is not None:
            self._stream.start()
        logger.info("Microphone capture resumed")

    def stop(self) -> None:
        self._paused = False
        if self._stream is None:
            return
        try:
            self._stream.stop()
            self._stream.close()
        finally:
            self._stream = None
        logger.info("Microphone capture stopped")


class SilentAudioSource:
    """No-op capture for stdin sessions (text typed instead of spoken)."""

    def bind(self, sink: EventSink) -> None:
        self._sink = sink

    def check_microphone_permission(self) -> str:
        return PERMISSION_GRANTED

    def request_microphone_permission(self) -> bool:
        return True

    def start(self) -> None:
        pass

    def pause(self) -> None:
        pass

    def resume(self) -> None:
        pass

    def stop(self) -> None:
        pass
