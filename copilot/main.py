"""Meeting Copilot orchestrator — session state machine and event dispatch.

Owns every collaborator (audio, speech-to-text, language model, store) and
the single MeetingState. Collaborators post events from their own threads;
all reactions run one at a time on the event loop, so merges need no locking.

Edge cases handled:
- start() while another start() is still opening the session (rejected)
- Permission denied / session open failure (back to idle, error published)
- pause() or reset() while a cycle is talking to the model (user action wins)
- Provider failures (state kept, error published, next cycle retries)
- Results that arrive after a reset (discarded)
- Store failures while saving (session keeps running, error published)
"""

import argparse
import asyncio
import copy
import logging
import sqlite3
from dataclasses import asdict
from pathlib import Path
from typing import Any

from copilot.agents.accumulator import TranscriptAccumulator
from copilot.agents.analyst import AnalysisOutcome, Analyst
from copilot.agents.language import LanguageTracker
from copilot.agents.merger import merge_analysis
from copilot.core.audio import MicrophoneCapture, SilentAudioSource
from copilot.core.config import (
    AudioSource,
    CopilotConfig,
    CopilotError,
    InvalidTransition,
    LLMProvider,
    LLMProviderError,
    MeetingSaveFailed,
    MeetingState,
    PERMISSION_GRANTED,
    PERMISSION_NOT_DETERMINED,
    PermissionDenied,
    STATUS_IDLE,
    STATUS_PAUSED,
    STATUS_PROCESSING,
    STATUS_RECORDING,
    TranscriptFragment,
    TranscriptionSession,
    TranscriptionUnavailable,
    now_ms,
)
from copilot.core.database import MeetingStore, SavedMeeting
from copilot.core.events import (
    AudioChunk,
    AudioLevel,
    ErrorEvent,
    EventHub,
    StateUpdate,
    TranscriptionEnded,
    TranscriptionFailed,
    TranscriptReceived,
)
from copilot.core.llm import get_provider
from copilot.core.scheduler import AnalysisScheduler
from copilot.core.transcription import build_transcriber

logger = logging.getLogger(__name__)


JsonDict = dict[str, Any]


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class MeetingCopilot:
    """Main orchestrator.

    Pipeline: audio → speech-to-text → accumulator → (every interval)
    Analyst → merge → StateUpdate broadcast.
    Lifecycle: start() / pause() / resume() / reset() / save_meeting().
    """

    def __init__(
        self,
        config: CopilotConfig | None = None,
        *,
        audio: AudioSource | None = None,
        transcriber: TranscriptionSession | None = None,
        llm: LLMProvider | None = None,
        store: MeetingStore | None = None,
        hub: EventHub | None = None,
    ):
        cfg = config or CopilotConfig.from_env()
        cfg.validate()
        self._config = cfg

        if audio is None:
            audio = SilentAudioSource() if cfg.stt_backend == "stdin" else MicrophoneCapture(cfg.sample_rate)
        self._audio = audio
        self._transcriber = transcriber or build_transcriber(cfg)
        self._llm = llm or get_provider(cfg)
        self._store = store or MeetingStore(Path(cfg.data_dir) / "meetings.db")
        self._hub = hub or EventHub()

        self._accumulator = TranscriptAccumulator()
        self._analyst = Analyst(
            self._llm,
            self._accumulator,
            min_chars=cfg.min_transcript_chars,
            max_history_exchanges=cfg.max_history_exchanges,
            max_tokens=cfg.max_tokens,
        )
        self._language = LanguageTracker()
        self._scheduler = AnalysisScheduler(cfg.analysis_interval_s, self.run_cycle)
        self._state = MeetingState()

        self._loop: asyncio.AbstractEventLoop | None = None
        self._stt_ready = False
        self._starting = False
        self._open_error = ""
        self._generation = 0
        self._cycle_count = 0
        self._failed_cycles = 0

        self._audio.bind(self.post)
        self._transcriber.bind(self.post)

        logger.info(f"Meeting copilot initialized (stt={cfg.stt_backend}, llm={cfg.llm_backend})")

    def initialize(self) -> bool:
        """Prepare the speech-to-text client. Safe to call more than once."""
        if not self._stt_ready:
            self._stt_ready = self._transcriber.initialize(self._config.deepgram_api_key)
        return self._stt_ready

    # ── Event intake ──

    def post(self, event: Any) -> None:
        """Thread-safe entry for collaborator events; keeps per-source order.

        Events raised on the loop itself are handled inline, other threads hop
        onto the loop.
        """
        loop = self._loop
        if loop is None or loop.is_closed() or _running_loop() is loop:
            self.dispatch(event)
            return
        loop.call_soon_threadsafe(self.dispatch, event)

    def dispatch(self, event: Any) -> None:
        if isinstance(event, AudioChunk):
            if self._state.status in (STATUS_RECORDING, STATUS_PROCESSING):
                self._transcriber.send_audio(event.samples)
        elif isinstance(event, AudioLevel):
            self._hub.publish(event)
        elif isinstance(event, TranscriptReceived):
            self._handle_transcription(event.fragment)
        elif isinstance(event, TranscriptionFailed):
            logger.error(f"Transcription error: {event.message} {event.detail}")
            if self._starting:
                # start() reports open failures itself
                self._open_error = event.detail
            else:
                self._hub.publish(ErrorEvent(event.message, event.detail or None))
        elif isinstance(event, TranscriptionEnded):
            logger.info("Transcription session ended")
            self._hub.publish(event)
        else:
            logger.warning(f"Unknown event ignored: {type(event).__name__}")

    def _handle_transcription(self, fragment: TranscriptFragment) -> None:
        if self._state.status == STATUS_IDLE or not fragment.has_content():
            return

        detected = self._language.observe(fragment.language)
        self._hub.publish(TranscriptReceived(fragment))

        if fragment.is_final:
            self._accumulator.add(fragment.text)
            logger.debug(f"Final fragment buffered: {fragment.summary()}")

        if detected != self._state.detected_language:
            logger.info(f"Detected language: {self._state.detected_language} → {detected}")
            self._state.detected_language = detected
            self._broadcast()

    # ── Lifecycle ──

    async def start(self) -> None:
        status = self._state.status
        if self._starting or status != STATUS_IDLE:
            raise self._reject(InvalidTransition(f"Cannot start while {'starting' if self._starting else status}"))

        self._loop = asyncio.get_running_loop()
        self._starting = True
        generation = self._generation
        try:
            permission = self._audio.check_microphone_permission()
            if permission == PERMISSION_NOT_DETERMINED:
                granted = self._audio.request_microphone_permission()
            else:
                granted = permission == PERMISSION_GRANTED
            if not granted:
                raise PermissionDenied(f"Microphone permission is {permission}")

            if not self.initialize():
                raise TranscriptionUnavailable("Speech-to-text client is not initialized")

            self._clear_session()
            self._open_error = ""
            opened = await self._transcriber.start_session()
            if generation != self._generation:
                if opened:
                    await self._transcriber.end_session()
                raise InvalidTransition("Meeting was reset while starting")
            if not opened:
                raise TranscriptionUnavailable(self._open_error)

            try:
                self._audio.start()
            except Exception as e:
                logger.error(f"Audio capture failed to start: {e}")
                await self._transcriber.end_session()
                raise CopilotError(f"Audio capture failed to start: {e}") from e

            self._state.status = STATUS_RECORDING
            self._state.start_time = now_ms()
            self._scheduler.arm()
        except CopilotError as e:
            self._reject(e)
            raise
        finally:
            self._starting = False

        logger.info("Meeting started")
        self._broadcast()

    def pause(self) -> None:
        status = self._state.status
        if status not in (STATUS_RECORDING, STATUS_PROCESSING):
            raise self._reject(InvalidTransition(f"Cannot pause while {status}"))
        self._scheduler.disarm()
        self._audio.pause()
        self._state.status = STATUS_PAUSED
        logger.info(f"Meeting paused (was {status})")
        self._broadcast()

    def resume(self) -> None:
        status = self._state.status
        if status != STATUS_PAUSED:
            raise self._reject(InvalidTransition(f"Cannot resume while {status}"))
        self._audio.resume()
        self._state.status = STATUS_RECORDING
        self._scheduler.arm()
        logger.info("Meeting resumed")
        self._broadcast()

    async def reset(self) -> None:
        """Back to a fresh idle session from any state."""
        self._generation += 1
        self._scheduler.disarm()
        self._audio.stop()
        self._clear_session()
        self._state.status = STATUS_IDLE
        logger.info("Meeting reset")
        self._broadcast()
        await self._transcriber.end_session()

    def _clear_session(self) -> None:
        self._analyst.reset()
        self._language.reset()
        self._state = MeetingState(status=self._state.status)
        self._cycle_count = 0
        self._failed_cycles = 0

    async def save_meeting(self, title: str | None = None) -> SavedMeeting:
        """Persist the final state and full transcript, then reset to idle."""
        if self._state.status == STATUS_IDLE:
            raise self._reject(InvalidTransition("No meeting in progress"))

        # Nothing is torn down until the row is written; a failed save leaves the session running.
        try:
            saved = self._store.save_meeting(self.snapshot(), self._accumulator.full_text, title=title)
        except (sqlite3.Error, OSError) as e:
            raise self._reject(MeetingSaveFailed(str(e))) from e
        await self.reset()
        return saved

    # ── Analysis cycle ──

    async def run_cycle(self) -> AnalysisOutcome | None:
        """One scheduler tick: analyze the buffered delta and merge the result."""
        if self._state.status != STATUS_RECORDING:
            logger.debug(f"Cycle skipped (status={self._state.status})")
            return None

        generation = self._generation
        self._state.status = STATUS_PROCESSING
        self._broadcast()
        try:
            outcome = await self._analyst.analyze()
            if generation != self._generation:
                return outcome
            if outcome.completed and outcome.result is not None:
                merge_analysis(self._state, outcome.result)
                self._cycle_count += 1
            elif outcome.failed:
                self._failed_cycles += 1
                self._hub.publish(ErrorEvent(LLMProviderError.message, outcome.error or None))
            logger.info(f"Cycle {self._cycle_count} → {outcome.status} ({outcome.transcript_chars} chars)")
            return outcome
        finally:
            if generation == self._generation:
                if self._state.status == STATUS_PROCESSING:
                    self._state.status = STATUS_RECORDING
                self._broadcast()

    # ── Outbound ──

    def _broadcast(self) -> None:
        self._hub.publish(StateUpdate(self.snapshot()))

    def _reject(self, error: CopilotError) -> CopilotError:
        logger.warning(f"{type(error).__name__}: {error}")
        self._hub.publish(ErrorEvent(error.message, error.detail or None))
        return error

    def snapshot(self) -> JsonDict:
        """JSON-ready copy of the cumulative state."""
        return asdict(self._state)

    @property
    def state(self) -> MeetingState:
        return copy.deepcopy(self._state)

    @property
    def status(self) -> str:
        return self._state.status

    @property
    def hub(self) -> EventHub:
        return self._hub

    @property
    def store(self) -> MeetingStore:
        return self._store

    @property
    def scheduler(self) -> AnalysisScheduler:
        return self._scheduler

    @property
    def transcript(self) -> str:
        return self._accumulator.full_text

    @property
    def health(self) -> JsonDict:
        """System health check."""
        return {
            "status": self._state.status,
            "stt_backend": self._config.stt_backend,
            "stt_ready": self._stt_ready,
            "stt_session_active": self._transcriber.has_active_session,
            "llm_backend": self._config.llm_backend,
            "analyst_healthy": self._analyst.is_healthy,
            "analysis_in_flight": self._analyst.in_flight,
            "cycles": self._cycle_count,
            "failed_cycles": self._failed_cycles,
            "scheduler_armed": self._scheduler.armed,
            "subscribers": self._hub.subscriber_count,
        }


def _build_runtime_config(args: argparse.Namespace) -> CopilotConfig:
    cfg = CopilotConfig.from_env(
        dashboard_host=args.host,
        dashboard_port=args.port,
        stt_backend=args.stt,
        llm_backend=args.llm,
        analysis_interval_s=args.interval,
    )
    cfg.validate()
    return cfg


def main():
    parser = argparse.ArgumentParser(description="Meeting copilot local runtime")
    parser.add_argument("--host", default="127.0.0.1", help="Dashboard bind host (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=8765, help="Dashboard bind port (default: 8765)")
    parser.add_argument("--stt", choices=["deepgram", "whisper", "stdin"], default=None, help="Speech-to-text backend")
    parser.add_argument("--llm", choices=["anthropic", "lmstudio"], default=None, help="Analysis model backend")
    parser.add_argument("--interval", type=float, default=None, help="Seconds between analysis cycles")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s"
    )
    for name in ("urllib3", "httpx", "websockets", "faster_whisper"):
        logging.getLogger(name).setLevel(logging.WARNING)

    cfg = _build_runtime_config(args)

    from copilot.dashboard_server import run_dashboard_server

    run_dashboard_server(cfg)


if __name__ == "__main__":
    main()
