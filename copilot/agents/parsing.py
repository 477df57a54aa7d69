"""Total parser: untyped model payload → fully defaulted AnalysisResult.

Never raises. Missing or wrongly typed fields become empty lists / None,
wrongly typed items are skipped, and items without text are dropped.
Ids are `<prefix>_<timestampMs>_<index>`, unique within one result only.
"""

import logging
from typing import Any

from copilot.core.config import (
    Action,
    AnalysisResult,
    Ambiguity,
    Contradiction,
    Decision,
    Loop,
    Question,
    now_ms,
)

logger = logging.getLogger(__name__)

DEFAULT_PRIORITY = 2
VALID_PRIORITIES = {1, 2, 3}


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _as_str(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return ""


def _as_optional_str(value: Any) -> str | None:
    return _as_str(value) or None


def _as_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return default


def _as_priority(value: Any) -> int:
    priority = _as_int(value, DEFAULT_PRIORITY)
    return priority if priority in VALID_PRIORITIES else DEFAULT_PRIORITY


def _items(payload: dict, key: str) -> list[tuple[int, dict]]:
    """(position, item) pairs; bare strings are read as {"text": ...}."""
    out = []
    for i, item in enumerate(_as_list(payload.get(key))):
        if isinstance(item, str):
            item = {"text": item}
        if isinstance(item, dict):
            out.append((i, item))
    return out


def _strings(payload: dict, key: str) -> list[str]:
    return [s for s in (_as_str(v) for v in _as_list(payload.get(key))) if s]


def _direct_response(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text or text.lower() == "null":
        return None
    return text


def parse_analysis(payload: Any, timestamp: int | None = None) -> AnalysisResult:
    if not isinstance(payload, dict):
        if payload:
            logger.warning(f"Analysis payload is {type(payload).__name__}, expected object")
        return AnalysisResult()

    ts = timestamp if timestamp is not None else now_ms()

    decisions = [
        Decision(
            id=f"dec_{ts}_{i}",
            text=_as_str(d.get("text")),
            owner=_as_optional_str(d.get("owner")),
            priority=_as_priority(d.get("priority")),
            timestamp=ts,
        )
        for i, d in _items(payload, "decisions")
    ]
    actions = [
        Action(
            id=f"act_{ts}_{i}",
            text=_as_str(a.get("text")),
            owner=_as_optional_str(a.get("owner")),
            deadline=_as_optional_str(a.get("deadline")),
            status="needs-clarification" if a.get("status") == "needs-clarification" else "identified",
            priority=_as_priority(a.get("priority")),
            timestamp=ts,
        )
        for i, a in _items(payload, "actions")
    ]
    questions = [
        Question(id=f"q_{ts}_{i}", text=_as_str(q.get("text")), priority=_as_priority(q.get("priority")))
        for i, q in _items(payload, "openQuestions")
    ]
    loops = [
        Loop(
            id=f"loop_{ts}_{i}",
            topic=_as_str(lp.get("topic") or lp.get("text")),
            occurrences=max(1, _as_int(lp.get("occurrences"), 1)),
            suggestion=_as_str(lp.get("suggestion")),
            first_detected=ts,
        )
        for i, lp in _items(payload, "loops")
    ]
    contradictions = [
        Contradiction(
            id=f"contra_{ts}_{i}",
            earlier=_as_str(c.get("earlier")),
            later=_as_str(c.get("later")),
            topic=_as_str(c.get("topic")),
            suggestion=_as_str(c.get("suggestion")),
        )
        for i, c in _items(payload, "contradictions")
    ]
    ambiguities = [
        Ambiguity(
            id=f"amb_{ts}_{i}",
            point=_as_str(a.get("point") or a.get("text")),
            clarifying_question=_as_str(a.get("clarifyingQuestion")),
        )
        for i, a in _items(payload, "ambiguities")
    ]

    return AnalysisResult(
        live_summary=_strings(payload, "liveSummary"),
        decisions=[d for d in decisions if d.text],
        actions=[a for a in actions if a.text],
        open_questions=[q for q in questions if q.text],
        loops=[lp for lp in loops if lp.topic],
        contradictions=[c for c in contradictions if c.earlier or c.later or c.topic],
        implicit_assumptions=_strings(payload, "implicitAssumptions"),
        ambiguities=[a for a in ambiguities if a.point],
        direct_response=_direct_response(payload.get("directResponse")),
    )
