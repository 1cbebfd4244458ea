"""
Study actions on an enriched section: chat, practice questions, flashcard
editing and schedule generation.
"""

from contextlib import contextmanager
from typing import List, Optional, Set

from deeptutor.core.synthesizer import CurriculumSynthesizer
from deeptutor.shared.exceptions import user_facing_message
from deeptutor.shared.logging import get_logger
from deeptutor.workspace import sections as ops
from deeptutor.workspace.models import (
    MasteryStatus,
    McqReview,
    Message,
    PracticeQuestion,
    ScheduleItem,
    Section,
    Workspace,
)
from deeptutor.workspace.store import WorkspaceStore

logger = get_logger(__name__)

CHAT_MASTERY_GAIN = 2
CORRECT_ANSWER_MASTERY_GAIN = 5


class StudyActions:
    """
    User-triggered study flows over one store.

    Like the orchestrator, these actions never raise generation errors. Each
    action holds its name in `loading` while it runs.
    """

    def __init__(self, store: WorkspaceStore, synthesizer: Optional[CurriculumSynthesizer] = None):
        self.store = store
        self.synthesizer = synthesizer or CurriculumSynthesizer()
        self.loading: Set[str] = set()
        self.last_error: Optional[str] = None

    @contextmanager
    def _loading(self, action: str):
        self.loading.add(action)
        try:
            yield
        finally:
            self.loading.discard(action)

    def _section(self, workspace_id: str, section_id: str) -> Section:
        return ops.find_section(self.store.get_workspace(workspace_id), section_id)

    # ------------------------------------------------------------------
    # Chat

    async def send_message(self, workspace_id: str, section_id: str, text: str) -> Workspace:
        """
        One chat turn: the user message, then the model's reply.

        A successful reply raises mastery; a failed one is shown as a model turn
        carrying the error message.
        """
        text = text.strip()
        if not text:
            return self.store.get_workspace(workspace_id)

        section = self._section(workspace_id, section_id)
        history = list(section.chat_history)
        user_message = Message(role="user", text=text, timestamp=ops.now_iso())
        self.store.apply_to_section(workspace_id, section_id, lambda s: ops.append_message(s, user_message))

        with self._loading("chat"):
            try:
                reply = await self.synthesizer.chat(history, section, text)
            except Exception as e:
                self.last_error = user_facing_message(e)
                logger.error(f"Chat turn failed: {type(e).__name__}: {e}",
                             extra={"workspace_id": workspace_id, "section_id": section_id, "action": "chat"})
                error_message = Message(role="model", text=self.last_error, timestamp=ops.now_iso())
                return self.store.apply_to_section(
                    workspace_id, section_id, lambda s: ops.append_message(s, error_message)
                )

        model_message = Message(
            role="model",
            text=reply.text,
            timestamp=ops.now_iso(),
            grounding_score=reply.grounding_score,
            is_external=reply.is_external,
            citations=reply.citations or None,
        )
        return self.store.apply_to_section(
            workspace_id,
            section_id,
            lambda s: ops.raise_mastery(ops.append_message(s, model_message), CHAT_MASTERY_GAIN),
        )

    # ------------------------------------------------------------------
    # Practice questions

    async def answer_question(
        self, workspace_id: str, section_id: str, question_id: str, selected_index: int
    ) -> Optional[McqReview]:
        """
        Record the first answer to a question and review it.

        Returns:
            The review, or None if the question had already been answered
        """
        workspace = self.store.get_workspace(workspace_id)
        section = self._section(workspace_id, section_id)
        question = ops.find_question(section, question_id)
        if question.has_been_answered:
            return None

        # The store state at write time decides which answer was first
        recorded = {}

        def record(current: Section) -> Section:
            updated, is_correct = ops.record_answer(current, question_id, selected_index)
            recorded["is_correct"] = is_correct
            if is_correct:
                return ops.raise_mastery(updated, CORRECT_ANSWER_MASTERY_GAIN)
            return updated

        self.store.apply_to_section(workspace_id, section_id, record)
        if recorded["is_correct"] is None:
            return None

        with self._loading("review"):
            return await self.synthesizer.evaluate_answer(
                question, selected_index, section, workspace.attachment
            )

    async def request_more_questions(
        self, workspace_id: str, section_id: str, difficulty_level: int
    ) -> List[PracticeQuestion]:
        """Append freshly generated questions; an empty list when none came back."""
        section = self._section(workspace_id, section_id)
        with self._loading("questions"):
            questions = await self.synthesizer.generate_followup_questions(section, difficulty_level)
        if questions:
            self.store.apply_to_section(workspace_id, section_id, lambda s: ops.add_questions(s, questions))
        return questions

    async def build_schedule(self, workspace_id: str) -> List[ScheduleItem]:
        workspace = self.store.get_workspace(workspace_id)
        with self._loading("schedule"):
            return await self.synthesizer.generate_schedule(workspace.subject, workspace.sections)

    # ------------------------------------------------------------------
    # Flashcards

    def add_flashcard(self, workspace_id: str, section_id: str, question: str, answer: str) -> Workspace:
        return self.store.apply_to_section(
            workspace_id, section_id, lambda s: ops.add_flashcard(s, question, answer)
        )

    def edit_flashcard(
        self, workspace_id: str, section_id: str, card_id: str, question: str, answer: str
    ) -> Workspace:
        return self.store.apply_to_section(
            workspace_id, section_id, lambda s: ops.edit_flashcard(s, card_id, question, answer)
        )

    def delete_flashcard(self, workspace_id: str, section_id: str, card_id: str) -> Workspace:
        return self.store.apply_to_section(
            workspace_id, section_id, lambda s: ops.delete_flashcard(s, card_id)
        )

    def set_flashcard_status(
        self, workspace_id: str, section_id: str, card_id: str, status: MasteryStatus
    ) -> Workspace:
        return self.store.apply_to_section(
            workspace_id, section_id, lambda s: ops.set_flashcard_status(s, card_id, status)
        )

    def approve_flashcard(self, workspace_id: str, section_id: str, card_id: str) -> Workspace:
        return self.store.apply_to_section(
            workspace_id, section_id, lambda s: ops.approve_flashcard(s, card_id)
        )
