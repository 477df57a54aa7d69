import unittest

from copilot.agents.prompts import ANALYSIS_TOOL, TOOL_NAME, build_user_message
from copilot.core.config import Action, AnalysisResult, Contradiction, Decision, Loop, Question


class BuildUserMessageTests(unittest.TestCase):
    def test_first_cycle_has_no_state_preamble(self) -> None:
        message = build_user_message(None, "we decided to ship on Friday")

        self.assertNotIn("CURRENT MEETING STATE", message)
        self.assertIn("NEW TRANSCRIPT", message)
        self.assertIn("we decided to ship on Friday", message)
        self.assertIn(TOOL_NAME, message)

    def test_previous_state_is_condensed_into_preamble(self) -> None:
        previous = AnalysisResult(
            live_summary=["launch plan", "budget"],
            decisions=[Decision(id="d", text="ship on Friday")],
            actions=[Action(id="a", text="write notes", owner="Ana"), Action(id="b", text="book room")],
            open_questions=[Question(id="q", text="who pays?")],
            loops=[Loop(id="l", topic="naming")],
            contradictions=[Contradiction(id="c", earlier="x", later="y", topic="deadline")],
        )

        message = build_user_message(previous, "new words")
        preamble, _, delta = message.partition("NEW TRANSCRIPT")

        self.assertTrue(preamble.startswith("CURRENT MEETING STATE:"))
        self.assertIn("Summary: launch plan; budget", preamble)
        self.assertIn("Decisions made: ship on Friday", preamble)
        self.assertIn("Actions: Ana: write notes; ?: book room", preamble)
        self.assertIn("Open questions: who pays?", preamble)
        self.assertIn("Loops detected: naming", preamble)
        self.assertIn("Contradictions: deadline", preamble)
        self.assertIn("new words", delta)

    def test_empty_sections_are_left_out(self) -> None:
        message = build_user_message(AnalysisResult(), "hello world")

        self.assertIn("CURRENT MEETING STATE:", message)
        self.assertNotIn("Decisions made", message)
        self.assertNotIn("Summary:", message)

    def test_only_delta_is_sent(self) -> None:
        message = build_user_message(AnalysisResult(live_summary=["s"]), "delta only")
        self.assertEqual(message.count("delta only"), 1)


class AnalysisToolTests(unittest.TestCase):
    def test_schema_requires_every_field(self) -> None:
        schema = ANALYSIS_TOOL["input_schema"]
        self.assertEqual(ANALYSIS_TOOL["name"], TOOL_NAME)
        self.assertEqual(set(schema["required"]), set(schema["properties"]))


if __name__ == "__main__":
    unittest.main()
