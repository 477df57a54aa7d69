import tempfile
import unittest
from datetime import datetime
from pathlib import Path

from copilot.core.database import MeetingStore, _context_snippet, generate_title


def state(start_time: int, summary=None, decisions=None, actions=None) -> dict:
    return {
        "status": "recording",
        "start_time": start_time,
        "detected_language": "en",
        "live_summary": summary or [],
        "decisions": decisions or [],
        "actions": actions or [],
        "open_questions": [],
        "loops": [],
        "contradictions": [],
        "implicit_assumptions": [],
        "ambiguities": [],
    }


class GenerateTitleTests(unittest.TestCase):
    def test_first_summary_point(self) -> None:
        self.assertEqual(generate_title(["Roadmap review", "Budget"], 0), "Roadmap review")

    def test_long_point_truncated(self) -> None:
        title = generate_title(["x" * 80], 0)
        self.assertEqual(title, "x" * 50 + "...")

    def test_date_fallback(self) -> None:
        start = int(datetime(2024, 3, 5, 14, 30).timestamp() * 1000)
        self.assertEqual(generate_title([], start), "Meeting 2024-03-05 14:30")

    def test_context_snippet(self) -> None:
        text = "a" * 50 + "needle" + "b" * 50
        snippet = _context_snippet(text, "needle")
        self.assertEqual(snippet, "..." + "a" * 30 + "needle" + "b" * 30 + "...")
        self.assertEqual(_context_snippet("short needle", "needle"), "short needle")


class MeetingStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.store = MeetingStore(Path(self._tmp.name) / "sub" / "meetings.db")

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_save_and_get(self) -> None:
        saved = self.store.save_meeting(
            state(1_000, ["Launch plan"], decisions=[{"id": "d", "text": "ship on Friday", "priority": 1}]),
            "we decided to ship on Friday",
        )

        loaded = self.store.get_meeting(saved.id)

        self.assertEqual(loaded.title, "Launch plan")
        self.assertEqual(loaded.decisions[0]["text"], "ship on Friday")
        self.assertEqual(loaded.transcript, "we decided to ship on Friday")
        self.assertTrue(saved.id.startswith("meeting_"))
        self.assertIsNone(self.store.get_meeting("missing"))

    def test_list_newest_first_with_preview(self) -> None:
        self.store.save_meeting(state(1_000, ["old"]), "")
        self.store.save_meeting(state(2_000, ["new", "second point"], actions=[{"text": "a"}]), "")
        self.store.save_meeting(state(1_500), "")

        items = self.store.list_meetings()

        self.assertEqual([m.start_time for m in items], [2_000, 1_500, 1_000])
        self.assertEqual(items[0].summary_preview, "new second point")
        self.assertEqual(items[0].actions_count, 1)
        self.assertEqual(items[1].summary_preview, "No summary available")

    def test_delete_and_retitle(self) -> None:
        saved = self.store.save_meeting(state(1_000, ["Sync"]), "")

        self.assertTrue(self.store.update_meeting_title(saved.id, "Renamed"))
        self.assertEqual(self.store.get_meeting(saved.id).title, "Renamed")
        self.assertFalse(self.store.update_meeting_title("missing", "x"))

        self.assertTrue(self.store.delete_meeting(saved.id))
        self.assertFalse(self.store.delete_meeting(saved.id))
        self.assertEqual(self.store.list_meetings(), [])

    def test_search_priority(self) -> None:
        self.store.save_meeting(state(1, ["Budget review"]), "nothing here")
        self.store.save_meeting(state(2, ["Weekly", "budget is tight"]), "")
        self.store.save_meeting(state(3, ["Planning"], decisions=[{"text": "cut the budget"}]), "")
        self.store.save_meeting(state(4, ["Ops"], actions=[{"text": "send budget sheet"}]), "")
        self.store.save_meeting(state(5, ["Retro"]), "we spoke about the budget at length today")
        self.store.save_meeting(state(6, ["Unrelated"]), "nothing")

        results = self.store.search_meetings("BUDGET")

        self.assertEqual(
            [(r.meeting.start_time, r.match_type) for r in results],
            [(5, "transcript"), (4, "action"), (3, "decision"), (2, "summary"), (1, "title")],
        )
        self.assertIn("budget", results[0].match_text)
        self.assertEqual(self.store.search_meetings("   "), [])

    def test_clear(self) -> None:
        self.store.save_meeting(state(1), "")
        self.store.clear()
        self.assertEqual(self.store.list_meetings(), [])


if __name__ == "__main__":
    unittest.main()
