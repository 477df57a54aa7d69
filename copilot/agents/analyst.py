"""Analyst — sends the transcript delta to the language model and parses the reply.

Single Responsibility: one guarded model call per cycle. Merging the result
into meeting state belongs to the orchestrator.

Edge cases handled:
- Trigger while a call is outstanding (coalesced, returns the last result)
- Too little buffered text (skipped, buffer untouched)
- Provider failures (delta put back for the next cycle, history untouched)
- Reset while a call is outstanding (late result discarded)
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from functools import partial

from copilot.agents.accumulator import TranscriptAccumulator
from copilot.agents.parsing import parse_analysis
from copilot.agents.prompts import ANALYSIS_TOOL, SYSTEM_PROMPT, build_user_message
from copilot.core.config import AnalysisResult, LLMProvider

logger = logging.getLogger(__name__)

OUTCOME_COMPLETED = "completed"
OUTCOME_SKIPPED = "skipped"
OUTCOME_BUSY = "busy"
OUTCOME_FAILED = "failed"
OUTCOME_DISCARDED = "discarded"


@dataclass
class AnalysisOutcome:
    """How one trigger settled. `result` is fresh only when completed."""
    status: str
    result: AnalysisResult | None = None
    error: str = ""
    transcript_chars: int = 0

    @property
    def completed(self) -> bool:
        return self.status == OUTCOME_COMPLETED

    @property
    def failed(self) -> bool:
        return self.status == OUTCOME_FAILED


class Analyst:
    """Runs the extraction call with conversation context carried across cycles."""

    def __init__(
        self,
        llm: LLMProvider,
        accumulator: TranscriptAccumulator,
        min_chars: int = 10,
        max_history_exchanges: int = 10,
        max_tokens: int = 2000,
    ):
        self._llm = llm
        self._accumulator = accumulator
        self._min_chars = min_chars
        self._max_history_exchanges = max_history_exchanges
        self._max_tokens = max_tokens
        self._history: list[dict[str, str]] = []
        self._last_result: AnalysisResult | None = None
        self._in_flight = False
        self._generation = 0
        self._calls = 0
        self._consecutive_failures = 0

    async def analyze(self) -> AnalysisOutcome:
        if self._in_flight:
            logger.info("Analysis already in progress, skipping")
            return AnalysisOutcome(OUTCOME_BUSY, self._last_result)

        pending = self._accumulator.pending_length()
        if pending < self._min_chars:
            logger.info(f"Not enough transcription to analyze ({pending} chars)")
            return AnalysisOutcome(OUTCOME_SKIPPED, self._last_result)

        self._in_flight = True
        generation = self._generation
        transcript = self._accumulator.capture()
        message = build_user_message(self._last_result, transcript)
        messages = [*self._history, {"role": "user", "content": message}]
        logger.info(f"Analyzing {len(transcript)} chars (history: {len(self._history) // 2} exchanges)")
        logger.debug(f"Analysis message: {message[:300]}")

        try:
            self._calls += 1
            loop = asyncio.get_running_loop()
            raw = await loop.run_in_executor(
                None,
                partial(self._llm.generate_structured, messages, SYSTEM_PROMPT, ANALYSIS_TOOL, self._max_tokens),
            )
        except Exception as e:
            logger.error(f"Analysis LLM call failed: {e}")
            if generation == self._generation:
                self._accumulator.restore(transcript)
                self._consecutive_failures += 1
            return AnalysisOutcome(OUTCOME_FAILED, self._last_result, error=str(e), transcript_chars=len(transcript))
        finally:
            self._in_flight = False

        if generation != self._generation:
            logger.info("Discarding analysis result from before reset")
            return AnalysisOutcome(OUTCOME_DISCARDED, self._last_result, transcript_chars=len(transcript))

        result = parse_analysis(raw)
        logger.info(f"Parsed analysis: {json.dumps(result.counts())} direct_response={bool(result.direct_response)}")

        self._history.append({"role": "user", "content": message})
        self._history.append({"role": "assistant", "content": json.dumps(raw, ensure_ascii=False, default=str)})
        max_messages = self._max_history_exchanges * 2
        if len(self._history) > max_messages:
            self._history = self._history[-max_messages:] if max_messages else []

        self._last_result = result
        self._consecutive_failures = 0
        return AnalysisOutcome(OUTCOME_COMPLETED, result, transcript_chars=len(transcript))

    def reset(self) -> None:
        """Forget conversation context and buffered text for a new meeting."""
        self._generation += 1
        self._history = []
        self._last_result = None
        self._consecutive_failures = 0
        self._accumulator.clear()

    @property
    def last_result(self) -> AnalysisResult | None:
        return self._last_result

    @property
    def history(self) -> list[dict[str, str]]:
        return list(self._history)

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def calls(self) -> int:
        return self._calls

    @property
    def is_healthy(self) -> bool:
        """Returns False if the provider has failed too many times in a row."""
        return self._consecutive_failures < 5
