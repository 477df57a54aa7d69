import unittest

from copilot.agents.accumulator import TranscriptAccumulator


class TranscriptAccumulatorTests(unittest.TestCase):
    def test_capture_returns_delta_and_clears(self) -> None:
        acc = TranscriptAccumulator()
        acc.add("hello there")
        acc.add("  general kenobi ")

        self.assertEqual(acc.capture(), "hello there general kenobi")
        self.assertEqual(acc.pending_length(), 0)
        self.assertEqual(acc.capture(), "")

    def test_text_added_after_capture_lands_in_next_delta(self) -> None:
        acc = TranscriptAccumulator()
        acc.add("first")
        first = acc.capture()
        acc.add("second")
        acc.add("third")

        self.assertEqual(first, "first")
        self.assertEqual(acc.capture(), "second third")

    def test_interleaved_cycles_lose_and_duplicate_nothing(self) -> None:
        acc = TranscriptAccumulator()
        deltas = []
        words = [f"w{i}" for i in range(20)]
        for i, word in enumerate(words):
            acc.add(word)
            if i % 3 == 2:
                deltas.append(acc.capture())
        deltas.append(acc.capture())

        captured = " ".join(d for d in deltas if d).split()
        self.assertEqual(captured, words)

    def test_restore_goes_in_front_of_newer_text(self) -> None:
        acc = TranscriptAccumulator()
        acc.add("old words")
        delta = acc.capture()
        acc.add("new words")
        acc.restore(delta)

        self.assertEqual(acc.peek(), "old words new words")

    def test_blank_text_ignored(self) -> None:
        acc = TranscriptAccumulator()
        acc.add("   ")
        acc.restore("")
        self.assertEqual(acc.pending_length(), 0)
        self.assertEqual(acc.full_text, "")

    def test_full_text_survives_capture_until_clear(self) -> None:
        acc = TranscriptAccumulator()
        acc.add("one")
        acc.capture()
        acc.add("two")

        self.assertEqual(acc.full_text, "one two")
        acc.clear()
        self.assertEqual(acc.full_text, "")
        self.assertEqual(acc.peek(), "")


if __name__ == "__main__":
    unittest.main()
