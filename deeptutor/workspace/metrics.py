"""
Derived coverage metrics for a workspace.
"""

import math
from typing import Sequence

from deeptutor.workspace.models import CoverageStats, MasteryStatus, Section


def _percent(count: int, total: int) -> int:
    """Percentage rounded half-up, with the denominator floored at 1."""
    return int(math.floor(100 * count / max(1, total) + 0.5))


def compute_coverage(sections: Sequence[Section]) -> CoverageStats:
    """
    Recompute coverage from the section list.

    ingested: sections with non-empty theory content
    retained: flashcards marked mastered, across all sections
    validated: practice questions answered correctly, across all sections
    """
    ingested = sum(1 for s in sections if s.content)

    flashcards = [card for s in sections for card in s.flashcards]
    mastered = sum(1 for card in flashcards if card.mastery_status == MasteryStatus.MASTERED)

    questions = [q for s in sections for q in s.practice_questions]
    answered_correct = sum(1 for q in questions if q.has_been_answered and q.was_correct)

    return CoverageStats(
        ingested=_percent(ingested, len(sections)),
        retained=_percent(mastered, len(flashcards)),
        validated=_percent(answered_correct, len(questions)),
    )
