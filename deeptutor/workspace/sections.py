"""
Copy-on-write editing operations on a single section.

Every function returns a new Section and leaves its argument untouched.
"""

import uuid
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from deeptutor.shared.exceptions import ItemNotFoundError, SectionNotFoundError
from deeptutor.workspace.models import (
    CardDifficulty,
    Flashcard,
    MasteryStatus,
    Message,
    PracticeQuestion,
    Section,
    SectionStatus,
    Workspace,
)

COMPLETION_MASTERY = 80


def new_id() -> str:
    return str(uuid.uuid4())


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def find_section(workspace: Workspace, section_id: str) -> Section:
    for section in workspace.sections:
        if section.id == section_id:
            return section
    raise SectionNotFoundError(f"Unknown section {section_id} in workspace {workspace.id}")


def _card_index(section: Section, card_id: str) -> int:
    for idx, card in enumerate(section.flashcards):
        if card.id == card_id:
            return idx
    raise ItemNotFoundError(f"Unknown flashcard {card_id} in section {section.id}")


def _replace_card(section: Section, idx: int, card: Flashcard) -> Section:
    cards = list(section.flashcards)
    cards[idx] = card
    return section.model_copy(update={"flashcards": cards})


def add_flashcard(section: Section, question: str, answer: str) -> Section:
    """Append a manually authored card."""
    card = Flashcard(
        id=new_id(),
        question=question,
        answer=answer,
        mastery_status=MasteryStatus.LEARNING,
        failure_count=0,
        difficulty=CardDifficulty.MEDIUM,
    )
    return section.model_copy(update={"flashcards": [*section.flashcards, card]})


def edit_flashcard(section: Section, card_id: str, question: str, answer: str) -> Section:
    idx = _card_index(section, card_id)
    card = section.flashcards[idx].model_copy(update={"question": question, "answer": answer})
    return _replace_card(section, idx, card)


def delete_flashcard(section: Section, card_id: str) -> Section:
    _card_index(section, card_id)
    return section.model_copy(
        update={"flashcards": [c for c in section.flashcards if c.id != card_id]}
    )


def set_flashcard_status(section: Section, card_id: str, status: MasteryStatus) -> Section:
    """Mark a card learning or mastered. Sending a card back to learning counts as a failed recall."""
    idx = _card_index(section, card_id)
    card = section.flashcards[idx]
    status = MasteryStatus(status)
    failures = card.failure_count + 1 if status == MasteryStatus.LEARNING else card.failure_count
    return _replace_card(
        section, idx, card.model_copy(update={"mastery_status": status, "failure_count": failures})
    )


def approve_flashcard(section: Section, card_id: str) -> Section:
    idx = _card_index(section, card_id)
    return _replace_card(
        section, idx, section.flashcards[idx].model_copy(update={"is_ai_suggested": False})
    )


def find_question(section: Section, question_id: str) -> PracticeQuestion:
    for question in section.practice_questions:
        if question.id == question_id:
            return question
    raise ItemNotFoundError(f"Unknown question {question_id} in section {section.id}")


def record_answer(
    section: Section, question_id: str, selected_index: int
) -> Tuple[Section, Optional[bool]]:
    """
    Record the first answer to a question.

    Returns the updated section and whether the answer was correct. A question that
    has already been answered is left as is and the correctness is None.
    """
    question = find_question(section, question_id)
    if question.has_been_answered:
        return section, None

    is_correct = question.correct_index == selected_index
    answered = question.model_copy(update={"has_been_answered": True, "was_correct": is_correct})
    questions = [answered if q.id == question_id else q for q in section.practice_questions]
    return section.model_copy(update={"practice_questions": questions}), is_correct


def add_questions(section: Section, questions: List[PracticeQuestion]) -> Section:
    return section.model_copy(
        update={"practice_questions": [*section.practice_questions, *questions]}
    )


def review_queue(section: Section) -> List[PracticeQuestion]:
    """Questions answered incorrectly; reviewing them needs freshly generated instances."""
    return [q for q in section.practice_questions if q.has_been_answered and not q.was_correct]


def append_message(section: Section, message: Message) -> Section:
    return section.model_copy(update={"chat_history": [*section.chat_history, message]})


def raise_mastery(section: Section, amount: int) -> Section:
    """Add mastery (clamped to 0-100); reaching COMPLETION_MASTERY completes the unit."""
    mastery = max(0, min(100, section.mastery + amount))
    status = section.status
    if mastery >= COMPLETION_MASTERY:
        status = SectionStatus.COMPLETED
    elif status == SectionStatus.LOCKED:
        status = SectionStatus.IN_PROGRESS
    return section.model_copy(update={"mastery": mastery, "status": status})


def unlock(section: Section) -> Section:
    """A locked section becomes in-progress once it is opened."""
    if section.status != SectionStatus.LOCKED:
        return section
    return section.model_copy(update={"status": SectionStatus.IN_PROGRESS})
