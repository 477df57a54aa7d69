"""Meeting Copilot configuration — single source of truth for all settings."""

import os
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Literal, Protocol


def now_ms() -> int:
    return int(time.time() * 1000)


# ── Session status ──

STATUS_IDLE = "idle"
STATUS_RECORDING = "recording"
STATUS_PAUSED = "paused"
STATUS_PROCESSING = "processing"

MeetingStatus = Literal["idle", "recording", "paused", "processing"]

# ── Languages ──

LANG_EN = "en"
LANG_FR = "fr"
LANG_MIXED = "mixed"

# ── Microphone permission ──

PERMISSION_GRANTED = "granted"
PERMISSION_DENIED = "denied"
PERMISSION_NOT_DETERMINED = "not-determined"


# ── Errors ──

class CopilotError(RuntimeError):
    """Base class for errors surfaced to the presentation layer."""

    message = "Meeting copilot error"

    def __init__(self, detail: str = ""):
        super().__init__(detail or self.message)
        self.detail = detail


class PermissionDenied(CopilotError):
    message = "Microphone permission denied"


class TranscriptionUnavailable(CopilotError):
    message = "Failed to start transcription session"


class InvalidTransition(CopilotError):
    message = "Operation not allowed in the current meeting state"


class LLMProviderError(CopilotError):
    message = "Analysis failed"


class MeetingSaveFailed(CopilotError):
    message = "Failed to save meeting"


# ── Data Contracts ──

@dataclass(frozen=True)
class TranscriptFragment:
    """One unit of transcribed speech emitted by the speech-to-text session."""
    text: str
    timestamp_ms: int
    duration_ms: int = 0
    confidence: float = 0.0
    language: str = LANG_EN
    is_final: bool = False
    speaker_id: int | None = None

    def has_content(self) -> bool:
        return bool(self.text.strip())

    def summary(self) -> str:
        """Short summary for logging."""
        kind = "final" if self.is_final else "interim"
        return f"{kind}/{self.language}({len(self.text)} chars, conf={self.confidence:.2f})"


@dataclass
class Decision:
    id: str
    text: str
    owner: str | None = None
    priority: int = 2  # 1 critical | 2 important | 3 nice-to-have
    timestamp: int = 0

    def key(self) -> str:
        """Key for deduplication."""
        return self.text.lower()


@dataclass
class Action:
    id: str
    text: str
    owner: str | None = None
    deadline: str | None = None
    status: str = "identified"  # identified | needs-clarification
    priority: int = 2
    timestamp: int = 0

    def key(self) -> str:
        return self.text.lower()


@dataclass
class Question:
    id: str
    text: str
    priority: int = 2


@dataclass
class Loop:
    id: str
    topic: str
    occurrences: int = 1
    suggestion: str = ""
    first_detected: int = 0


@dataclass
class Contradiction:
    id: str
    earlier: str
    later: str
    topic: str
    suggestion: str = ""


@dataclass
class Ambiguity:
    id: str
    point: str
    clarifying_question: str = ""


@dataclass
class AnalysisResult:
    """One completed model call, fully defaulted."""
    live_summary: list[str] = field(default_factory=list)
    decisions: list[Decision] = field(default_factory=list)
    actions: list[Action] = field(default_factory=list)
    open_questions: list[Question] = field(default_factory=list)
    loops: list[Loop] = field(default_factory=list)
    contradictions: list[Contradiction] = field(default_factory=list)
    implicit_assumptions: list[str] = field(default_factory=list)
    ambiguities: list[Ambiguity] = field(default_factory=list)
    direct_response: str | None = None

    def counts(self) -> dict[str, int]:
        return {
            "live_summary": len(self.live_summary),
            "decisions": len(self.decisions),
            "actions": len(self.actions),
            "open_questions": len(self.open_questions),
            "loops": len(self.loops),
            "contradictions": len(self.contradictions),
            "implicit_assumptions": len(self.implicit_assumptions),
            "ambiguities": len(self.ambiguities),
        }


@dataclass
class MeetingState:
    """Cumulative meeting record surfaced to the presentation layer.

    decisions and actions only grow during a session; the other extracted
    fields hold the latest cycle's values.
    """
    status: str = STATUS_IDLE
    start_time: int | None = None
    detected_language: str = LANG_EN
    live_summary: list[str] = field(default_factory=list)
    decisions: list[Decision] = field(default_factory=list)
    actions: list[Action] = field(default_factory=list)
    open_questions: list[Question] = field(default_factory=list)
    loops: list[Loop] = field(default_factory=list)
    contradictions: list[Contradiction] = field(default_factory=list)
    implicit_assumptions: list[str] = field(default_factory=list)
    ambiguities: list[Ambiguity] = field(default_factory=list)
    last_direct_response: str | None = None
    last_update_time: int = 0

    def has_duplicate_decision(self, decision: Decision) -> bool:
        return any(d.key() == decision.key() for d in self.decisions)

    def has_duplicate_action(self, action: Action) -> bool:
        return any(a.key() == action.key() for a in self.actions)


# ── Runtime Configuration ──

STT_BACKENDS = ("deepgram", "whisper", "stdin")
LLM_BACKENDS = ("anthropic", "lmstudio")


@dataclass
class CopilotConfig:
    """Which collaborators to use and how the orchestrator paces itself."""
    # Analysis cadence
    analysis_interval_s: float = 8.0
    min_transcript_chars: int = 10
    max_history_exchanges: int = 10
    # Speech-to-text
    stt_backend: str = "deepgram"
    deepgram_api_key: str | None = None
    deepgram_model: str = "nova-2"
    stt_language: str = "fr"
    utterance_end_ms: int = 1500
    sample_rate: int = 16000
    keepalive_s: float = 5.0
    stt_connect_timeout_s: float = 10.0
    whisper_model: str = "base"
    whisper_chunk_s: float = 3.0
    # Language model
    llm_backend: str = "anthropic"
    anthropic_api_key: str | None = None
    anthropic_model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 2000
    lm_studio_url: str = "http://localhost:1234/v1/chat/completions"
    # Presentation / storage
    dashboard_host: str = "127.0.0.1"
    dashboard_port: int = 8765
    sse_heartbeat_s: float = 2.0
    data_dir: str = "data"

    @staticmethod
    def is_loopback_host(host: str) -> bool:
        return host in {"127.0.0.1", "localhost"}

    @classmethod
    def from_env(cls, **overrides: Any) -> "CopilotConfig":
        """Build a config from the environment; explicit overrides win."""
        env = os.environ
        values: dict[str, Any] = {
            "anthropic_api_key": env.get("ANTHROPIC_API_KEY") or None,
            "deepgram_api_key": env.get("DEEPGRAM_API_KEY") or None,
            "lm_studio_url": env.get("LM_STUDIO_URL", cls.lm_studio_url),
            "stt_backend": env.get("COPILOT_STT", cls.stt_backend),
            "llm_backend": env.get("COPILOT_LLM", cls.llm_backend),
            "stt_language": env.get("COPILOT_LANGUAGE", cls.stt_language),
            "data_dir": env.get("COPILOT_DATA_DIR", cls.data_dir),
        }
        if env.get("COPILOT_ANALYSIS_INTERVAL"):
            values["analysis_interval_s"] = float(env["COPILOT_ANALYSIS_INTERVAL"])
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def validate(self):
        if self.analysis_interval_s <= 0:
            raise ValueError("analysis_interval_s must be > 0")
        if self.min_transcript_chars < 0:
            raise ValueError("min_transcript_chars must be >= 0")
        if self.max_history_exchanges < 0:
            raise ValueError("max_history_exchanges must be >= 0")
        if self.stt_backend not in STT_BACKENDS:
            raise ValueError(f"stt_backend must be one of {', '.join(STT_BACKENDS)}")
        if self.llm_backend not in LLM_BACKENDS:
            raise ValueError(f"llm_backend must be one of {', '.join(LLM_BACKENDS)}")
        if self.keepalive_s <= 0 or self.stt_connect_timeout_s <= 0:
            raise ValueError("keepalive_s and stt_connect_timeout_s must be > 0")
        if self.sample_rate < 8000:
            raise ValueError("sample_rate must be >= 8000")
        if not self.is_loopback_host(self.dashboard_host):
            raise ValueError("dashboard_host must be localhost/127.0.0.1")
        if self.dashboard_port <= 0 or self.dashboard_port > 65535:
            raise ValueError("dashboard_port must be between 1 and 65535")
        if self.sse_heartbeat_s <= 0:
            raise ValueError("sse_heartbeat_s must be > 0")


# ── Collaborator Interfaces (Dependency Inversion) ──

EventSink = Callable[[Any], None]


class LLMProvider(Protocol):
    """Structured-extraction backend. Any API can implement this."""

    def generate_structured(
        self,
        messages: list[dict[str, str]],
        system_prompt: str,
        tool: dict[str, Any],
        max_tokens: int = 2000,
    ) -> dict[str, Any]:
        ...


class AudioSource(Protocol):
    """Microphone capture. Emits AudioLevel / AudioChunk events to its sink."""

    def bind(self, sink: EventSink) -> None:
        ...

    def check_microphone_permission(self) -> str:
        ...

    def request_microphone_permission(self) -> bool:
        ...

    def start(self) -> None:
        ...

    def pause(self) -> None:
        ...

    def resume(self) -> None:
        ...

    def stop(self) -> None:
        ...


class TranscriptionSession(Protocol):
    """Streaming speech-to-text session. Emits transcript events to its sink."""

    def bind(self, sink: EventSink) -> None:
        ...

    def initialize(self, api_key: str | None = None) -> bool:
        ...

    async def start_session(self) -> bool:
        ...

    def send_audio(self, samples: Any) -> None:
        ...

    async def end_session(self) -> None:
        ...

    @property
    def has_active_session(self) -> bool:
        ...
