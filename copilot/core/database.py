"""SQLite storage for finished meetings: save, browse, search, retitle."""

import json
import logging
import secrets
import sqlite3
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from copilot.core.config import LANG_EN, now_ms

logger = logging.getLogger(__name__)

DB_PATH = Path("data/meetings.db")
TITLE_MAX_CHARS = 50
PREVIEW_MAX_CHARS = 100
CONTEXT_CHARS = 30


@dataclass
class SavedMeeting:
    id: str
    title: str
    start_time: int
    end_time: int
    duration: int  # minutes
    live_summary: list[str] = field(default_factory=list)
    decisions: list[dict[str, Any]] = field(default_factory=list)
    actions: list[dict[str, Any]] = field(default_factory=list)
    open_questions: list[dict[str, Any]] = field(default_factory=list)
    loops: list[dict[str, Any]] = field(default_factory=list)
    contradictions: list[dict[str, Any]] = field(default_factory=list)
    implicit_assumptions: list[str] = field(default_factory=list)
    ambiguities: list[dict[str, Any]] = field(default_factory=list)
    detected_language: str = LANG_EN
    transcript: str = ""


@dataclass
class MeetingListItem:
    id: str
    title: str
    start_time: int
    duration: int
    summary_preview: str
    decisions_count: int
    actions_count: int


@dataclass
class SearchResult:
    meeting: MeetingListItem
    match_type: str  # title | summary | decision | action | transcript
    match_text: str


def generate_title(live_summary: list[str], start_time: int) -> str:
    """First summary point (truncated), else a date-based title."""
    if live_summary:
        first = live_summary[0]
        return first[:TITLE_MAX_CHARS] + "..." if len(first) > TITLE_MAX_CHARS else first
    started = datetime.fromtimestamp(start_time / 1000)
    return f"Meeting {started:%Y-%m-%d %H:%M}"


def _context_snippet(text: str, query: str) -> str:
    idx = text.lower().find(query.lower())
    start = max(0, idx - CONTEXT_CHARS)
    end = min(len(text), idx + len(query) + CONTEXT_CHARS)
    prefix = "..." if start > 0 else ""
    suffix = "..." if end < len(text) else ""
    return f"{prefix}{text[start:end]}{suffix}"


class MeetingStore:
    """Local SQLite storage — single file, no server, survives restarts.

    Single Responsibility: persistence only.
    """

    def __init__(self, db_path: Path = DB_PATH):
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._path = db_path
        self._init_schema()

    @contextmanager
    def _connect(self):
        conn = sqlite3.connect(self._path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def _init_schema(self):
        with self._connect() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS meetings (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    start_time INTEGER NOT NULL,
                    end_time INTEGER NOT NULL,
                    duration INTEGER NOT NULL,
                    summary_preview TEXT NOT NULL,
                    decisions_count INTEGER NOT NULL,
                    actions_count INTEGER NOT NULL,
                    data TEXT NOT NULL,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                );
                CREATE INDEX IF NOT EXISTS idx_meetings_start ON meetings(start_time);
            """)

    @staticmethod
    def _generate_id(now: int) -> str:
        return f"meeting_{now}_{secrets.token_hex(5)}"

    def save_meeting(self, state: dict[str, Any], transcript: str, title: str | None = None) -> SavedMeeting:
        """Persist a final meeting snapshot plus its full transcript."""
        end_time = now_ms()
        start_time = state.get("start_time") or end_time
        meeting = SavedMeeting(
            id=self._generate_id(end_time),
            title="",
            start_time=start_time,
            end_time=end_time,
            duration=round((end_time - start_time) / 1000 / 60),
            live_summary=list(state.get("live_summary", [])),
            decisions=list(state.get("decisions", [])),
            actions=list(state.get("actions", [])),
            open_questions=list(state.get("open_questions", [])),
            loops=list(state.get("loops", [])),
            contradictions=list(state.get("contradictions", [])),
            implicit_assumptions=list(state.get("implicit_assumptions", [])),
            ambiguities=list(state.get("ambiguities", [])),
            detected_language=state.get("detected_language", LANG_EN),
            transcript=transcript,
        )
        meeting.title = (title or "").strip() or generate_title(meeting.live_summary, start_time)
        preview = " ".join(meeting.live_summary[:2])[:PREVIEW_MAX_CHARS] or "No summary available"

        with self._connect() as conn:
            conn.execute(
                """INSERT INTO meetings
                   (id, title, start_time, end_time, duration, summary_preview,
                    decisions_count, actions_count, data)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    meeting.id, meeting.title, meeting.start_time, meeting.end_time,
                    meeting.duration, preview, len(meeting.decisions), len(meeting.actions),
                    json.dumps(asdict(meeting), ensure_ascii=False),
                ),
            )
        logger.info(f"Meeting saved: {meeting.id} ({meeting.title!r})")
        return meeting

    @staticmethod
    def _list_item(row: sqlite3.Row) -> MeetingListItem:
        return MeetingListItem(
            id=row["id"],
            title=row["title"],
            start_time=row["start_time"],
            duration=row["duration"],
            summary_preview=row["summary_preview"],
            decisions_count=row["decisions_count"],
            actions_count=row["actions_count"],
        )

    def list_meetings(self) -> list[MeetingListItem]:
        """All meetings, newest first (metadata only)."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM meetings ORDER BY start_time DESC, created_at DESC"
            ).fetchall()
        return [self._list_item(r) for r in rows]

    def get_meeting(self, meeting_id: str) -> SavedMeeting | None:
        with self._connect() as conn:
            row = conn.execute("SELECT data, title FROM meetings WHERE id=?", (meeting_id,)).fetchone()
        if row is None:
            return None
        try:
            data = json.loads(row["data"])
        except json.JSONDecodeError:
            logger.warning(f"Corrupt meeting record: {meeting_id}")
            return None
        data["title"] = row["title"]
        return SavedMeeting(**data)

    def delete_meeting(self, meeting_id: str) -> bool:
        with self._connect() as conn:
            deleted = conn.execute("DELETE FROM meetings WHERE id=?", (meeting_id,)).rowcount
        if deleted:
            logger.info(f"Meeting deleted: {meeting_id}")
        return bool(deleted)

    def update_meeting_title(self, meeting_id: str, title: str) -> bool:
        with self._connect() as conn:
            updated = conn.execute(
                "UPDATE meetings SET title=? WHERE id=?", (title, meeting_id)
            ).rowcount
        return bool(updated)

    def search_meetings(self, query: str) -> list[SearchResult]:
        """Case-insensitive search; one hit per meeting, first matching field wins."""
        needle = query.lower().strip()
        if not needle:
            return []

        results: list[SearchResult] = []
        for item in self.list_meetings():
            if needle in item.title.lower():
                results.append(SearchResult(item, "title", item.title))
                continue
            if needle in item.summary_preview.lower():
                results.append(SearchResult(item, "summary", item.summary_preview))
                continue

            meeting = self.get_meeting(item.id)
            if meeting is None:
                continue

            decision = next(
                (d for d in meeting.decisions if needle in str(d.get("text", "")).lower()), None
            )
            if decision is not None:
                results.append(SearchResult(item, "decision", decision["text"]))
                continue

            action = next(
                (a for a in meeting.actions if needle in str(a.get("text", "")).lower()), None
            )
            if action is not None:
                results.append(SearchResult(item, "action", action["text"]))
                continue

            if needle in meeting.transcript.lower():
                results.append(SearchResult(item, "transcript", _context_snippet(meeting.transcript, needle)))

        return results

    def clear(self):
        """Delete every stored meeting."""
        with self._connect() as conn:
            conn.execute("DELETE FROM meetings")
        logger.info("Meeting store cleared.")
