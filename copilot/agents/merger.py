"""Analysis Merge Engine — folds one AnalysisResult into the cumulative state.

| Field                                  | Policy                               |
|----------------------------------------|--------------------------------------|
| live_summary, open_questions, loops,   | replaced by this cycle's values      |
| contradictions, implicit_assumptions,  |                                      |
| ambiguities                            |                                      |
| decisions, actions                     | appended unless the text already     |
|                                        | exists (case-insensitive)            |
| last_direct_response                   | overwritten only by a non-blank str  |
"""

import logging

from copilot.core.config import AnalysisResult, MeetingState, now_ms

logger = logging.getLogger(__name__)


def merge_analysis(state: MeetingState, result: AnalysisResult, timestamp: int | None = None) -> MeetingState:
    """Apply a result to the state in place and return it. Never fails on partial results."""
    state.live_summary = list(result.live_summary)

    added_decisions = 0
    for decision in result.decisions:
        if state.has_duplicate_decision(decision):
            logger.debug(f"Duplicate decision skipped: {decision.text}")
            continue
        state.decisions.append(decision)
        added_decisions += 1

    added_actions = 0
    for action in result.actions:
        if state.has_duplicate_action(action):
            logger.debug(f"Duplicate action skipped: {action.text}")
            continue
        state.actions.append(action)
        added_actions += 1

    state.open_questions = list(result.open_questions)
    state.loops = list(result.loops)
    state.contradictions = list(result.contradictions)
    state.implicit_assumptions = list(result.implicit_assumptions)
    state.ambiguities = list(result.ambiguities)

    if isinstance(result.direct_response, str) and result.direct_response.strip():
        state.last_direct_response = result.direct_response

    state.last_update_time = timestamp if timestamp is not None else now_ms()

    logger.info(
        f"Merged analysis: +{added_decisions}/{len(result.decisions)} decisions, "
        f"+{added_actions}/{len(result.actions)} actions "
        f"| totals decs:{len(state.decisions)} acts:{len(state.actions)} "
        f"| qs:{len(state.open_questions)} loops:{len(state.loops)} "
        f"contras:{len(state.contradictions)}"
    )
    return state
