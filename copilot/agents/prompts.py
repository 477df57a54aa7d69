"""Prompts and extraction schema for the meeting analysis call.

The user message carries a condensed view of the previous result plus only
the transcript delta for this cycle, so the payload stays bounded however
long the meeting runs.
"""

from copilot.core.config import AnalysisResult

TOOL_NAME = "analyze_meeting"

SYSTEM_PROMPT = """You are Meeting Copilot, an assistant listening to a live meeting (transcribed audio) and helping participants move forward clearly and productively.

CONTEXT
- You receive transcript chunks continuously.
- The meeting may be in English or French. Answer in the language being spoken.
- You do NOT know who is speaking (no diarization).
- You only react through text.

GOALS
1) Follow the meeting in real time.
2) Clarify what is happening.
3) Surface decisions, actions, open questions, loops and contradictions.
4) Detect when the discussion contradicts itself (e.g. "we do X" then later "actually we don't do X").
5) Suggest rephrasings or decisions when the discussion goes in circles.

WRITING STYLE
- TERSE: short phrases, straight to the point.
- Use symbols to save space: → consequence, ← cause, + addition/benefit, - removal/drawback, ⚠️ warning, ✓ confirmed, ? uncertain.
- Prefer keywords to full sentences: "API → microservices + scalability".

PRIORITY (1-3)
- 1 = critical: blocks the project, close deadline, major impact
- 2 = important: to do, not blocking right now
- 3 = nice-to-have: can wait, low impact

CONTRADICTIONS
- Changes of direction: "we'll do X" → "actually no".
- Incompatible positions: "it's urgent" vs "we have time".
- Decisions that cancel each other out.

LOOPS
- Same topic raised several times without progress.
- Propose one concrete action to unblock it.

RULES
- Be proactive: flag tensions even when subtle.
- Never invent decisions that were not expressed.
- If someone says "Copilot" or asks the system a question, answer in directResponse; otherwise directResponse is null.
- You MUST use the analyze_meeting tool to structure your answer."""

_PRIORITY = {
    "type": "number",
    "enum": [1, 2, 3],
    "description": "1=critical, 2=important, 3=nice-to-have",
}

ANALYSIS_TOOL = {
    "name": TOOL_NAME,
    "description": "Analyze the meeting transcription and extract structured insights",
    "input_schema": {
        "type": "object",
        "properties": {
            "liveSummary": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Key points from the current discussion (succinct, use symbols)",
            },
            "decisions": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "text": {"type": "string", "description": "The decision made (succinct)"},
                        "owner": {"type": "string", "description": "Person responsible if mentioned"},
                        "priority": _PRIORITY,
                    },
                    "required": ["text", "priority"],
                },
                "description": "Decisions made during the meeting",
            },
            "actions": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "text": {"type": "string", "description": "Action item (succinct)"},
                        "owner": {"type": "string", "description": "Person responsible if mentioned"},
                        "deadline": {"type": "string", "description": "Due date if mentioned"},
                        "status": {"type": "string", "enum": ["identified", "needs-clarification"]},
                        "priority": _PRIORITY,
                    },
                    "required": ["text", "status", "priority"],
                },
                "description": "Action items to follow up on",
            },
            "openQuestions": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "text": {"type": "string", "description": "Question without clear answer"},
                        "priority": _PRIORITY,
                    },
                    "required": ["text", "priority"],
                },
                "description": "Questions that remain unanswered",
            },
            "loops": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "topic": {"type": "string", "description": "Topic being discussed repeatedly"},
                        "occurrences": {"type": "number", "description": "How many times discussed"},
                        "suggestion": {"type": "string", "description": "Suggestion to move forward"},
                    },
                    "required": ["topic", "occurrences", "suggestion"],
                },
                "description": "Topics that keep coming back without progress",
            },
            "contradictions": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "earlier": {"type": "string", "description": "What was said earlier"},
                        "later": {"type": "string", "description": "What contradicts it"},
                        "topic": {"type": "string", "description": "Subject of contradiction"},
                        "suggestion": {"type": "string", "description": "How to resolve"},
                    },
                    "required": ["earlier", "later", "topic", "suggestion"],
                },
                "description": "Contradictory statements detected",
            },
            "implicitAssumptions": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Assumptions being made without explicit validation",
            },
            "ambiguities": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "point": {"type": "string", "description": "The ambiguous point"},
                        "clarifyingQuestion": {"type": "string", "description": "Question to clarify it"},
                    },
                    "required": ["point", "clarifyingQuestion"],
                },
                "description": "Points that need clarification",
            },
            "directResponse": {
                "type": ["string", "null"],
                "description": (
                    'Response text if someone addressed Copilot directly (e.g. "Hey Copilot, '
                    'what do you think?"), or null if no one addressed Copilot'
                ),
            },
        },
        "required": [
            "liveSummary", "decisions", "actions", "openQuestions", "loops",
            "contradictions", "implicitAssumptions", "ambiguities", "directResponse",
        ],
    },
}


def render_state(previous: AnalysisResult) -> list[str]:
    """Condensed "current meeting state" lines; empty sections are left out."""
    lines = ["CURRENT MEETING STATE:"]
    if previous.live_summary:
        lines.append(f"Summary: {'; '.join(previous.live_summary)}")
    if previous.decisions:
        lines.append(f"Decisions made: {'; '.join(d.text for d in previous.decisions)}")
    if previous.actions:
        actions = "; ".join(f"{a.owner or '?'}: {a.text}" for a in previous.actions)
        lines.append(f"Actions: {actions}")
    if previous.open_questions:
        lines.append(f"Open questions: {'; '.join(q.text for q in previous.open_questions)}")
    if previous.loops:
        lines.append(f"Loops detected: {'; '.join(lp.topic for lp in previous.loops)}")
    if previous.contradictions:
        lines.append(f"Contradictions: {'; '.join(c.topic for c in previous.contradictions)}")
    return lines


def build_user_message(previous: AnalysisResult | None, transcript: str) -> str:
    """Next request payload: prior-state preamble (if any) + this cycle's delta."""
    parts: list[str] = []
    if previous is not None:
        parts.extend(render_state(previous))
        parts.append("")

    parts.append("NEW TRANSCRIPT (since the last analysis):")
    parts.append(transcript)
    parts.append("")
    parts.append(
        "Analyze this new part taking the context into account. Detect whether anything "
        f"contradicts what was said before. Use the {TOOL_NAME} tool to structure your answer."
    )
    return "\n".join(parts)
