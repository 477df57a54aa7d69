"""Heuristic English/French classification of transcript fragments.

Counts French function words; short fragments will be misclassified now
and then, only the session-level aggregate is shown to users.
"""

from copilot.core.config import LANG_EN, LANG_FR, LANG_MIXED

FRENCH_RATIO = 0.2

FRENCH_INDICATORS = frozenset({
    "je", "tu", "il", "elle", "nous", "vous", "ils", "elles",
    "le", "la", "les", "un", "une", "des",
    "est", "sont", "être", "avoir", "fait", "faire",
    "que", "qui", "quoi", "comment", "pourquoi", "quand",
    "avec", "pour", "dans", "sur", "mais", "donc", "car",
    "c'est", "n'est", "d'accord", "oui", "non", "merci",
})


def detect_language(text: str, ratio: float = FRENCH_RATIO) -> str:
    """French if more than `ratio` of the whitespace tokens are French indicators."""
    words = text.lower().split()
    if not words:
        return LANG_EN
    french = sum(1 for w in words if w in FRENCH_INDICATORS)
    return LANG_FR if french / len(words) > ratio else LANG_EN


class LanguageTracker:
    """Session-level language: starts English, mixed for good once the other one is heard."""

    def __init__(self):
        self._detected = LANG_EN

    def observe(self, language: str) -> str:
        if self._detected != LANG_MIXED and language in (LANG_EN, LANG_FR) and language != self._detected:
            self._detected = LANG_MIXED
        return self._detected

    @property
    def detected(self) -> str:
        return self._detected

    def reset(self) -> None:
        self._detected = LANG_EN
