import unittest

from copilot.agents.language import FRENCH_RATIO, LanguageTracker, detect_language


class DetectLanguageTests(unittest.TestCase):
    def test_french_sentence(self) -> None:
        self.assertEqual(detect_language("je pense que nous avons un problème avec la base"), "fr")

    def test_english_sentence(self) -> None:
        self.assertEqual(detect_language("we decided to ship the release on Friday"), "en")

    def test_empty_text_is_english(self) -> None:
        self.assertEqual(detect_language("   "), "en")

    def test_ratio_must_be_exceeded(self) -> None:
        # 1 indicator out of 5 tokens is exactly the ratio, not above it
        self.assertEqual(FRENCH_RATIO, 0.2)
        self.assertEqual(detect_language("oui alpha beta gamma delta"), "en")
        self.assertEqual(detect_language("oui merci beta gamma delta"), "fr")

    def test_case_insensitive(self) -> None:
        self.assertEqual(detect_language("Oui Merci"), "fr")


class LanguageTrackerTests(unittest.TestCase):
    def test_defaults_to_english(self) -> None:
        self.assertEqual(LanguageTracker().detected, "en")

    def test_english_only_stays_english(self) -> None:
        tracker = LanguageTracker()
        tracker.observe("en")
        self.assertEqual(tracker.observe("en"), "en")

    def test_first_french_fragment_is_mixed(self) -> None:
        tracker = LanguageTracker()
        self.assertEqual(tracker.observe("fr"), "mixed")
        self.assertEqual(tracker.observe("fr"), "mixed")

    def test_mixed_is_permanent(self) -> None:
        tracker = LanguageTracker()
        tracker.observe("en")
        self.assertEqual(tracker.observe("fr"), "mixed")
        for _ in range(10):
            tracker.observe("en")
        self.assertEqual(tracker.detected, "mixed")

    def test_reset_forgets(self) -> None:
        tracker = LanguageTracker()
        tracker.observe("en")
        tracker.observe("fr")
        tracker.reset()
        self.assertEqual(tracker.detected, "en")


if __name__ == "__main__":
    unittest.main()
