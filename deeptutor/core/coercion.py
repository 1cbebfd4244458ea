"""
Schema coercion for untrusted model output.

Every field a model returns is coerced to its expected shape: missing values become
empty collections or defaults, wrong types are stringified or dropped. Nothing in
here raises on bad input.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from deeptutor.shared.logging import get_logger
from deeptutor.workspace.models import (
    CardDifficulty,
    Citation,
    Flashcard,
    Formula,
    KeyTerm,
    LearningResource,
    LexiconEntry,
    MasteryStatus,
    PracticeQuestion,
    ResourceType,
    ScheduleItem,
)
from deeptutor.workspace.sections import new_id

logger = get_logger(__name__)


@dataclass
class UnitOutline:
    """One unit proposed by structure discovery."""
    title: str
    summary: str = ""
    source_reference: str = ""
    dependencies: List[str] = field(default_factory=list)


@dataclass
class UnitBundle:
    """Everything full-unit synthesis produces for one section."""
    summary: str
    detailed_summary: str
    content: str
    key_terms: List[KeyTerm]
    lexicon: List[LexiconEntry]
    formulas: List[Formula]
    mindmap: str
    flashcards: List[Flashcard]
    practice_questions: List[PracticeQuestion]
    resources: List[LearningResource]
    difficulty: Optional[str] = None

    def section_updates(self) -> Dict[str, Any]:
        return {
            "summary": self.summary,
            "detailed_summary": self.detailed_summary,
            "content": self.content,
            "key_terms": self.key_terms,
            "lexicon": self.lexicon,
            "formulas": self.formulas,
            "mindmap": self.mindmap,
            "flashcards": self.flashcards,
            "practice_questions": self.practice_questions,
            "resources": self.resources,
            "difficulty": self.difficulty,
        }


@dataclass
class ChatReply:
    text: str
    grounding_score: Optional[float] = None
    is_external: Optional[bool] = None
    citations: List[Citation] = field(default_factory=list)


# ----------------------------------------------------------------------
# Primitive coercions


def as_str(value: Any, default: str = "") -> str:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float, bool)):
        return str(value)
    try:
        return json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError):
        return default


def as_list(value: Any) -> List[Any]:
    if isinstance(value, list):
        return value
    if isinstance(value, tuple):
        return list(value)
    return []


def as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def as_int(value: Any, default: int, lo: Optional[int] = None, hi: Optional[int] = None) -> int:
    if isinstance(value, bool):
        result = default
    else:
        try:
            result = int(float(value))
        except (TypeError, ValueError, OverflowError):
            result = default
    if lo is not None:
        result = max(lo, result)
    if hi is not None:
        result = min(hi, result)
    return result


def as_score(value: Any) -> Optional[float]:
    """A 0-1 score; values above 1 are read as percentages."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number > 1:
        number = number / 100
    return max(0.0, min(1.0, number))


def _enum_or(enum_cls, value: str, default):
    try:
        return enum_cls(value)
    except ValueError:
        return default


def first_of(item: Dict[str, Any], *keys: str) -> Any:
    """Value of the first key present; models drift between camelCase and snake_case."""
    for key in keys:
        if key in item and item[key] is not None:
            return item[key]
    return None


def unwrap_list(raw: Any, *keys: str) -> List[Any]:
    """Accept a bare array or an object wrapping it under one of keys."""
    if isinstance(raw, list):
        return raw
    wrapper = as_dict(raw)
    for key in keys:
        if isinstance(wrapper.get(key), list):
            return wrapper[key]
    return []


# ----------------------------------------------------------------------
# Domain coercions


def coerce_outline(raw: Any) -> List[UnitOutline]:
    units = []
    for item in unwrap_list(raw, "units", "sections", "chapters"):
        if isinstance(item, str):
            item = {"title": item}
        item = as_dict(item)
        title = as_str(first_of(item, "title", "name"))
        if not title:
            logger.debug("Dropping outline unit without a title")
            continue
        units.append(UnitOutline(
            title=title,
            summary=as_str(first_of(item, "summary", "description")),
            source_reference=as_str(first_of(item, "sourceRange", "sourceReference", "source_reference")),
            dependencies=[as_str(d) for d in as_list(item.get("dependencies")) if as_str(d)],
        ))
    return units


def coerce_key_terms(raw: Any) -> List[KeyTerm]:
    terms = []
    for item in as_list(raw):
        item = as_dict(item)
        term = as_str(first_of(item, "term", "name", "word"))
        definition = as_str(first_of(item, "definition", "meaning", "description"))
        if term and definition:
            terms.append(KeyTerm(term=term, definition=definition))
    return terms


def coerce_lexicon(raw: Any) -> List[LexiconEntry]:
    entries = []
    for item in as_list(raw):
        item = as_dict(item)
        word = as_str(first_of(item, "word", "term"))
        meaning = as_str(first_of(item, "meaning", "definition"))
        if word and meaning:
            entries.append(LexiconEntry(word=word, meaning=meaning))
    return entries


def _strip_math_wrappers(expression: str) -> str:
    expression = expression.strip()
    for wrapper in ("$$", "$"):
        if expression.startswith(wrapper) and expression.endswith(wrapper) and len(expression) > 2 * len(wrapper):
            return expression[len(wrapper):-len(wrapper)].strip()
    return expression


def coerce_formulas(raw: Any) -> List[Formula]:
    formulas = []
    for item in as_list(raw):
        item = as_dict(item)
        expression = _strip_math_wrappers(as_str(first_of(item, "expression", "latex", "formula")))
        if not expression:
            continue
        formulas.append(Formula(label=as_str(first_of(item, "label", "name")) or "Formula", expression=expression))
    return formulas


def coerce_flashcards(raw: Any) -> List[Flashcard]:
    cards = []
    for item in as_list(raw):
        item = as_dict(item)
        question = as_str(first_of(item, "question", "front"))
        answer = as_str(first_of(item, "answer", "back"))
        if not question or not answer:
            continue
        difficulty = as_str(item.get("difficulty")).lower()
        cards.append(Flashcard(
            id=new_id(),
            question=question,
            answer=answer,
            mastery_status=MasteryStatus.LEARNING,
            failure_count=0,
            difficulty=_enum_or(CardDifficulty, difficulty, CardDifficulty.MEDIUM),
            is_ai_suggested=True,
        ))
    return cards


def coerce_question(item: Any, difficulty_level: int) -> Optional[PracticeQuestion]:
    """A question needs text, at least two options and a correct index that points at one."""
    item = as_dict(item)
    question = as_str(first_of(item, "question", "prompt"))
    options = [as_str(o) for o in as_list(item.get("options")) if as_str(o)]
    if not question or len(options) < 2:
        return None

    correct_index = as_int(first_of(item, "correctIndex", "correct_index", "answerIndex"), -1)
    if not 0 <= correct_index < len(options):
        return None

    return PracticeQuestion(
        id=new_id(),
        question=question,
        options=options,
        correct_index=correct_index,
        explanation=as_str(item.get("explanation")),
        has_been_answered=False,
        was_correct=None,
        difficulty_level=as_int(difficulty_level, 3, 1, 5),
    )


def coerce_questions(raw: Any, difficulty_level: int) -> List[PracticeQuestion]:
    questions = []
    for item in unwrap_list(raw, "questions"):
        question = coerce_question(item, difficulty_level)
        if question is None:
            logger.debug("Dropping malformed practice question")
            continue
        questions.append(question)
    return questions


def coerce_resources(raw: Any) -> List[LearningResource]:
    """Resources without an http(s) URL are dropped; they are rendered as links."""
    resources = []
    for item in unwrap_list(raw, "resources"):
        item = as_dict(item)
        url = as_str(item.get("url"))
        title = as_str(item.get("title"))
        if not title or not url.lower().startswith(("http://", "https://")):
            continue
        kind = as_str(item.get("type")).lower()
        resources.append(LearningResource(
            title=title,
            type=_enum_or(ResourceType, kind, ResourceType.ARTICLE),
            platform=as_str(item.get("platform")),
            url=url,
            reason=as_str(first_of(item, "reason", "rationale")),
            score=as_score(item.get("score")),
        ))
    return resources


def coerce_schedule(raw: Any) -> List[ScheduleItem]:
    items = []
    for item in unwrap_list(raw, "sessions", "schedule", "items"):
        item = as_dict(item)
        title = as_str(item.get("title"))
        if not title:
            continue
        items.append(ScheduleItem(
            id=new_id(),
            title=title,
            duration_minutes=as_int(first_of(item, "durationMinutes", "duration_minutes", "duration"), 30, 5, 480),
            focus=as_str(item.get("focus")),
            activity=as_str(item.get("activity")),
        ))
    return items


def coerce_chat_reply(raw: Any) -> ChatReply:
    """Structured reply, or plain text when the model ignored the JSON shape."""
    if isinstance(raw, str):
        return ChatReply(text=raw.strip())
    item = as_dict(raw)
    citations = []
    for citation in as_list(item.get("citations")):
        citation = as_dict(citation)
        unit = as_str(first_of(citation, "unit", "title"))
        source = as_str(first_of(citation, "source", "reference"))
        if unit or source:
            citations.append(Citation(unit=unit, source=source))
    is_external = item.get("isExternal", item.get("is_external"))
    return ChatReply(
        text=as_str(first_of(item, "text", "answer", "response")),
        grounding_score=as_score(first_of(item, "groundingScore", "grounding_score")),
        is_external=is_external if isinstance(is_external, bool) else None,
        citations=citations,
    )


# ----------------------------------------------------------------------
# Padding from local material


def derived_flashcards(
    key_terms: List[KeyTerm],
    lexicon: List[LexiconEntry],
    formulas: List[Formula],
    title: str,
    summary: str,
) -> List[Flashcard]:
    """Cards built from the unit's own material, used to top up a short model response."""
    pairs = [(f"Define: {t.term}", t.definition) for t in key_terms]
    pairs += [(f"What does \"{e.word}\" mean in this unit?", e.meaning) for e in lexicon]
    pairs += [(f"State the formula: {f.label}", f.expression) for f in formulas]
    if summary:
        pairs.append((f"Summarize the key idea of \"{title}\".", summary))
    return [
        Flashcard(id=new_id(), question=q, answer=a, mastery_status=MasteryStatus.LEARNING)
        for q, a in pairs
    ]


def derived_questions(key_terms: List[KeyTerm], difficulty_level: int) -> List[PracticeQuestion]:
    """Definition-matching questions over the unit's key terms (needs at least two terms)."""
    if len(key_terms) < 2:
        return []
    questions = []
    for idx, term in enumerate(key_terms):
        distractors = [t.definition for t in key_terms if t.term != term.term and t.definition != term.definition][:3]
        if not distractors:
            continue
        correct_index = idx % (len(distractors) + 1)
        options = list(distractors)
        options.insert(correct_index, term.definition)
        questions.append(PracticeQuestion(
            id=new_id(),
            question=f"Which statement best defines \"{term.term}\"?",
            options=options,
            correct_index=correct_index,
            explanation=f"{term.term}: {term.definition}",
            difficulty_level=as_int(difficulty_level, 3, 1, 5),
        ))
    return questions


def fit_to_count(items: List[Any], count: int, padding: List[Any]) -> List[Any]:
    """Truncate to count, or top up from padding while it lasts."""
    fitted = list(items[:count])
    for extra in padding:
        if len(fitted) >= count:
            break
        fitted.append(extra)
    return fitted
