"""
CurriculumSynthesizer: the named generation operations behind a study workspace.

Each operation sends one request through the GenerationGateway and coerces the
result into the section data model. Structure discovery, full-unit synthesis and
chat propagate errors; follow-up questions, answer review and schedule generation
fall back to a safe default instead.
"""

from typing import List, Optional

from deeptutor.core.coercion import (
    ChatReply,
    UnitBundle,
    UnitOutline,
    as_dict,
    as_str,
    coerce_chat_reply,
    coerce_flashcards,
    coerce_formulas,
    coerce_key_terms,
    coerce_lexicon,
    coerce_outline,
    coerce_questions,
    coerce_resources,
    coerce_schedule,
    derived_flashcards,
    derived_questions,
    first_of,
    fit_to_count,
)
from deeptutor.core.diagram import sanitize_mindmap
from deeptutor.core.prompt.builder import PromptBuilder
from deeptutor.gateway.client import GenerationGateway
from deeptutor.gateway.request import GenerationRequest, ModelTier
from deeptutor.shared.config import SynthesisConfig, settings
from deeptutor.shared.exceptions import DeepTutorError, MalformedResponse, SynthesisError
from deeptutor.shared.logging import get_logger
from deeptutor.workspace.models import (
    Attachment,
    McqReview,
    Message,
    PracticeQuestion,
    ScheduleItem,
    Section,
)

logger = get_logger(__name__)

# Unit difficulty label -> practice question level
_DIFFICULTY_LEVELS = {
    "introductory": 2,
    "beginner": 2,
    "intermediate": 3,
    "advanced": 4,
    "expert": 5,
}


class CurriculumSynthesizer:
    """Prompt contracts plus normalization for every generation operation."""

    def __init__(
        self,
        gateway: Optional[GenerationGateway] = None,
        config: Optional[SynthesisConfig] = None,
        prompts: Optional[PromptBuilder] = None,
    ):
        self.gateway = gateway or GenerationGateway()
        self.config = config or settings.synthesis
        self.prompts = prompts or PromptBuilder()

    def _request(self, prompt: str, **kwargs) -> GenerationRequest:
        kwargs.setdefault("system_instruction", self.prompts.system_instruction())
        return GenerationRequest(prompt=prompt, **kwargs)

    async def discover_structure(self, attachment: Optional[Attachment]) -> List[UnitOutline]:
        """
        Ask for a short curriculum outline of the document.

        Any unit count is accepted; the prompt only targets min_units-max_units.

        Raises:
            GatewayError subclasses from the gateway
            SynthesisError if no usable unit came back
        """
        raw = await self.gateway.generate(self._request(
            self.prompts.structure(self.config.min_units, self.config.max_units),
            attachment=attachment,
            model_tier=ModelTier.LIGHT,
            max_output_tokens=self.config.structure_max_tokens,
        ))
        units = coerce_outline(raw)
        if not units:
            raise SynthesisError("No curriculum units were found in the document")
        logger.info(f"Discovered {len(units)} units", extra={"action": "discover_structure"})
        return units

    async def synthesize_unit(self, section: Section, attachment: Optional[Attachment]) -> UnitBundle:
        """
        Full enrichment of one unit in a single round trip.

        Flashcards and practice questions are fitted to the configured counts,
        topping up from the unit's own terms when the model returned too few.

        Raises:
            GatewayError subclasses from the gateway
            MalformedResponse if the response is not a JSON object
        """
        raw = await self.gateway.generate(self._request(
            self.prompts.unit(
                section,
                flashcards=self.config.flashcards_per_unit,
                questions=self.config.questions_per_unit,
                resources=self.config.resources_per_unit,
            ),
            attachment=attachment,
            model_tier=ModelTier.CAPABLE,
            use_search=self.config.search_resources,
            max_output_tokens=self.config.unit_max_tokens,
        ))
        if isinstance(raw, list) and raw and isinstance(raw[0], dict):
            raw = raw[0]
        if not isinstance(raw, dict):
            raise MalformedResponse(f"Unit synthesis returned {type(raw).__name__}, expected an object")

        summary = as_str(raw.get("summary")) or section.summary
        key_terms = coerce_key_terms(first_of(raw, "definitions", "keyTerms", "key_terms"))
        lexicon = coerce_lexicon(raw.get("lexicon"))
        formulas = coerce_formulas(first_of(raw, "axioms", "formulas"))
        difficulty = as_str(raw.get("difficulty")).lower() or None
        level = _DIFFICULTY_LEVELS.get(difficulty or "", 3)

        flashcards = fit_to_count(
            coerce_flashcards(raw.get("flashcards")),
            self.config.flashcards_per_unit,
            derived_flashcards(key_terms, lexicon, formulas, section.title, summary),
        )
        questions = fit_to_count(
            coerce_questions(first_of(raw, "questions", "practiceQuestions"), level),
            self.config.questions_per_unit,
            derived_questions(key_terms, level),
        )
        resources = coerce_resources(raw.get("resources"))[:self.config.resources_per_unit]

        if len(flashcards) < self.config.flashcards_per_unit:
            logger.warning(
                f"Unit '{section.title}' has only {len(flashcards)} flashcards",
                extra={"section_id": section.id, "action": "synthesize_unit"},
            )

        mindmap = as_str(raw.get("mindmap"))
        return UnitBundle(
            summary=summary,
            detailed_summary=as_str(first_of(raw, "detailedSummary", "detailed_summary")),
            content=as_str(first_of(raw, "content", "theory")),
            key_terms=key_terms,
            lexicon=lexicon,
            formulas=formulas,
            mindmap=sanitize_mindmap(mindmap) if mindmap else "",
            flashcards=flashcards,
            practice_questions=questions,
            resources=resources,
            difficulty=difficulty,
        )

    async def generate_followup_questions(self, section: Section, difficulty_level: int) -> List[PracticeQuestion]:
        """More questions at difficulty 1-5; an empty list when generation fails."""
        level = max(1, min(5, difficulty_level))
        try:
            raw = await self.gateway.generate(self._request(
                self.prompts.followups(section, level, self.config.followup_questions),
                model_tier=ModelTier.LIGHT,
                max_output_tokens=self.config.followup_max_tokens,
            ))
        except DeepTutorError as e:
            logger.warning(
                f"Follow-up question generation failed: {e}",
                extra={"section_id": section.id, "action": "followup_questions"},
            )
            return []
        # coerce_questions assigns fresh ids and an unanswered state to every item
        return coerce_questions(raw, level)

    async def evaluate_answer(
        self,
        question: PracticeQuestion,
        selected_index: int,
        section: Section,
        attachment: Optional[Attachment] = None,
    ) -> McqReview:
        """Explain a chosen option; always returns a complete review."""
        fallback = self.fallback_review(question, selected_index)
        try:
            raw = await self.gateway.generate(self._request(
                self.prompts.review(question, selected_index, section),
                attachment=attachment,
                model_tier=ModelTier.LIGHT,
                max_output_tokens=self.config.review_max_tokens,
            ))
        except DeepTutorError as e:
            logger.warning(
                f"Answer review failed, using local review: {e}",
                extra={"section_id": section.id, "action": "evaluate_answer"},
            )
            return fallback

        item = as_dict(raw)
        explanation = as_str(first_of(item, "explanation", "reasoning"))
        if not explanation:
            return fallback
        return fallback.model_copy(update={
            "verdict": as_str(item.get("verdict")) or fallback.verdict,
            "explanation": explanation,
            "misconception": as_str(item.get("misconception")) or None,
            "is_fallback": False,
        })

    @staticmethod
    def fallback_review(question: PracticeQuestion, selected_index: int) -> McqReview:
        """Review built only from the stored question."""
        is_correct = selected_index == question.correct_index
        options = question.options
        correct_answer = options[question.correct_index] if 0 <= question.correct_index < len(options) else ""
        explanation = question.explanation or f"The correct answer is: {correct_answer}"
        return McqReview(
            question_id=question.id,
            selected_index=selected_index,
            correct_index=question.correct_index,
            is_correct=is_correct,
            verdict="Correct." if is_correct else "Incorrect.",
            explanation=explanation,
            correct_answer=correct_answer,
            misconception=None,
            is_fallback=True,
        )

    async def chat(self, history: List[Message], section: Section, user_input: str) -> ChatReply:
        """
        One conversational turn grounded in the unit's content.

        Raises:
            GatewayError subclasses from the gateway
        """
        raw = await self.gateway.generate(self._request(
            self.prompts.chat(section, user_input, self.config.chat_context_chars),
            history=history,
            model_tier=ModelTier.LIGHT,
            max_output_tokens=self.config.chat_max_tokens,
        ))
        reply = coerce_chat_reply(raw)
        if not reply.text:
            raise MalformedResponse("Chat response carried no text")
        return reply

    async def generate_schedule(self, subject: str, sections: List[Section]) -> List[ScheduleItem]:
        """Study plan; an empty list when generation fails."""
        try:
            raw = await self.gateway.generate(self._request(
                self.prompts.schedule(subject, sections, self.config.schedule_sessions),
                model_tier=ModelTier.LIGHT,
                max_output_tokens=self.config.schedule_max_tokens,
            ))
        except DeepTutorError as e:
            logger.warning(f"Schedule generation failed: {e}", extra={"action": "generate_schedule"})
            return []
        return coerce_schedule(raw)
