import unittest

from copilot.agents.merger import merge_analysis
from copilot.agents.parsing import parse_analysis
from copilot.core.config import MeetingState


class MergeAnalysisTests(unittest.TestCase):
    def test_case_insensitive_dedup_of_decisions(self) -> None:
        state = MeetingState()
        merge_analysis(state, parse_analysis({"decisions": [{"text": "ship on Friday", "priority": 1}]}))
        merge_analysis(state, parse_analysis({"decisions": [{"text": "Ship On Friday", "priority": 1}]}))

        self.assertEqual(len(state.decisions), 1)
        self.assertEqual(state.decisions[0].text, "ship on Friday")

    def test_repeated_identical_extraction_is_idempotent(self) -> None:
        state = MeetingState()
        payload = {
            "decisions": [{"text": "use Postgres"}],
            "actions": [{"text": "Draft the RFC", "owner": "Li"}],
        }
        for _ in range(3):
            merge_analysis(state, parse_analysis(payload))

        self.assertEqual(len(state.decisions), 1)
        self.assertEqual(len(state.actions), 1)

    def test_duplicates_within_one_result_collapse(self) -> None:
        state = MeetingState()
        merge_analysis(state, parse_analysis({"actions": [{"text": "call Bob"}, {"text": "CALL BOB"}]}))
        self.assertEqual(len(state.actions), 1)

    def test_new_items_are_appended(self) -> None:
        state = MeetingState()
        merge_analysis(state, parse_analysis({"decisions": [{"text": "a"}]}))
        merge_analysis(state, parse_analysis({"decisions": [{"text": "b"}, {"text": "A"}]}))
        self.assertEqual([d.text for d in state.decisions], ["a", "b"])

    def test_transient_fields_are_replaced(self) -> None:
        state = MeetingState()
        merge_analysis(state, parse_analysis({
            "liveSummary": ["old point"],
            "openQuestions": [{"text": "old?"}],
            "loops": [{"topic": "naming"}],
            "implicitAssumptions": ["old assumption"],
        }))
        merge_analysis(state, parse_analysis({
            "liveSummary": ["new point"],
            "openQuestions": [{"text": "new?"}],
        }))

        self.assertEqual(state.live_summary, ["new point"])
        self.assertEqual([q.text for q in state.open_questions], ["new?"])
        self.assertEqual(state.loops, [])
        self.assertEqual(state.implicit_assumptions, [])

    def test_empty_result_clears_transients_keeps_cumulative(self) -> None:
        state = MeetingState()
        merge_analysis(state, parse_analysis({
            "liveSummary": ["x"],
            "decisions": [{"text": "keep"}],
            "actions": [{"text": "keep too"}],
            "contradictions": [{"earlier": "a", "later": "b", "topic": "t"}],
            "ambiguities": [{"point": "p"}],
        }))
        merge_analysis(state, parse_analysis({}))

        self.assertEqual(len(state.decisions), 1)
        self.assertEqual(len(state.actions), 1)
        self.assertEqual(state.live_summary, [])
        self.assertEqual(state.contradictions, [])
        self.assertEqual(state.ambiguities, [])

    def test_null_direct_response_keeps_previous(self) -> None:
        state = MeetingState()
        merge_analysis(state, parse_analysis({"directResponse": "Friday is fine."}))
        merge_analysis(state, parse_analysis({"directResponse": None}))
        merge_analysis(state, parse_analysis({"directResponse": "   "}))

        self.assertEqual(state.last_direct_response, "Friday is fine.")

    def test_direct_response_is_overwritten_by_new_text(self) -> None:
        state = MeetingState(last_direct_response="old")
        merge_analysis(state, parse_analysis({"directResponse": "new"}))
        self.assertEqual(state.last_direct_response, "new")

    def test_last_update_time_set(self) -> None:
        state = MeetingState()
        merge_analysis(state, parse_analysis({}), timestamp=123)
        self.assertEqual(state.last_update_time, 123)

    def test_status_and_language_untouched(self) -> None:
        state = MeetingState(status="processing", detected_language="mixed", start_time=5)
        merge_analysis(state, parse_analysis({"liveSummary": ["x"]}))

        self.assertEqual(state.status, "processing")
        self.assertEqual(state.detected_language, "mixed")
        self.assertEqual(state.start_time, 5)


if __name__ == "__main__":
    unittest.main()
