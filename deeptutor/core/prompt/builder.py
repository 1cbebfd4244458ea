"""
Prompt contracts for every generation operation.

Each prompt pins the JSON shape the model must return; the synthesizer still
coerces whatever comes back.
"""

from typing import List, Dict, Any, Optional
from pathlib import Path

from deeptutor.gateway.request import DEFAULT_SYSTEM_INSTRUCTION
from deeptutor.shared.logging import get_logger
from deeptutor.workspace.models import PracticeQuestion, Section

logger = get_logger(__name__)


def _option(question: PracticeQuestion, index: int) -> str:
    if 0 <= index < len(question.options):
        return question.options[index]
    return "(no valid option)"


class PromptBuilder:
    """Build operation prompts and the system instruction."""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self.system_prompt_path = Path(self.config.get("system_prompt_path", "config/prompts/system.md"))
        self.max_system_chars = self.config.get("max_system_chars", 8000)
        self._system_instruction: Optional[str] = None

    def system_instruction(self) -> str:
        """System instruction from config/prompts/system.md, falling back to the built-in one."""
        if self._system_instruction is not None:
            return self._system_instruction

        if self.system_prompt_path.exists():
            content = self.system_prompt_path.read_text(encoding="utf-8").strip()
            if len(content) > self.max_system_chars:
                # Preserve head and tail
                head_chars = self.max_system_chars // 2
                tail_chars = self.max_system_chars - head_chars - 50
                content = (
                    content[:head_chars] +
                    "\n\n[... content truncated ...]\n\n" +
                    content[-tail_chars:]
                )
            self._system_instruction = content or DEFAULT_SYSTEM_INSTRUCTION
            logger.debug(f"Loaded system instruction from {self.system_prompt_path}")
        else:
            self._system_instruction = DEFAULT_SYSTEM_INSTRUCTION
        return self._system_instruction

    def structure(self, min_units: int, max_units: int) -> str:
        return f"""CURRICULUM STRUCTURE. Identify {min_units}-{max_units} logical units in the attached document, in teaching order.
Return a JSON array only:
[{{"title": "...", "summary": "brief description", "sourceRange": "pages/slides", "dependencies": ["titles of earlier units this builds on"]}}]"""

    def unit(
        self,
        section: Section,
        flashcards: int,
        questions: int,
        resources: int,
    ) -> str:
        return f"""FULL UNIT SYNTHESIS for section: "{section.title}".
Section summary: {section.summary or "n/a"}
Source location: {section.source_reference or "n/a"}

Return one JSON object:
{{
  "summary": "Academic summary (2-3 sentences)",
  "detailedSummary": "Longer overview (1-2 paragraphs)",
  "content": "Comprehensive theory in Markdown",
  "definitions": [{{"term": "...", "definition": "..."}}],
  "lexicon": [{{"word": "domain-specific word", "meaning": "..."}}],
  "axioms": [{{"label": "...", "expression": "LaTeX without $$ wrappers"}}],
  "mindmap": "Mermaid mindmap syntax starting with 'mindmap', one root, indented children",
  "flashcards": [exactly {flashcards} items: {{"question": "...", "answer": "...", "difficulty": "easy|medium|hard"}}],
  "questions": [exactly {questions} items: {{"question": "...", "options": ["...", "...", "...", "..."], "correctIndex": 0, "explanation": "..."}}],
  "difficulty": "introductory|intermediate|advanced",
  "resources": [exactly {resources} items: {{"title": "...", "type": "video|article|course|documentation", "platform": "...", "url": "https://...", "reason": "..."}}]
}}
Keep definitions to at most 8 entries and axioms to at most 5."""

    def followups(self, section: Section, difficulty_level: int, count: int) -> str:
        return f"""Generate {count} challenging multiple-choice questions for: {section.title}.
Difficulty {difficulty_level}/5. Ground them in this material:
{section.summary}

JSON array only: [{{"question": "...", "options": ["...", "...", "...", "..."], "correctIndex": 0, "explanation": "..."}}]"""

    def review(self, question: PracticeQuestion, selected_index: int, section: Section) -> str:
        options = "\n".join(f"{idx}. {option}" for idx, option in enumerate(question.options))
        selected = _option(question, selected_index)
        return f"""Review a student's answer for the unit "{section.title}".
Question: {question.question}
Options:
{options}
Student chose: {selected_index}. {selected}
Correct option: {question.correct_index}. {_option(question, question.correct_index)}

Explain why the chosen option is right or wrong compared to the correct one.
JSON: {{"verdict": "one sentence", "explanation": "...", "misconception": "the likely misunderstanding, or empty"}}"""

    def chat(self, section: Section, user_input: str, context_chars: int) -> str:
        return f"""Answer based on: {section.title}.
Context: {section.content[:context_chars]}
Question: {user_input}
JSON: {{"text": "...", "isExternal": boolean, "groundingScore": number between 0 and 1, "citations": [{{"unit": "...", "source": "..."}}]}}"""

    def schedule(self, subject: str, sections: List[Section], sessions: int) -> str:
        units = "\n".join(
            f"- {s.title} (mastery {s.mastery}%, {s.status.value})" for s in sections
        )
        return f"""STUDY PLAN for: {subject}. {sessions} sessions, weakest units first.
Units:
{units}
JSON array only: [{{"title": "...", "durationMinutes": 45, "focus": "...", "activity": "..."}}]"""
