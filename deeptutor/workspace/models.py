"""
Pydantic models for the study workspace.
"""

from enum import Enum
from typing import Optional, List

from pydantic import BaseModel, Field, field_validator, model_validator


class SectionStatus(str, Enum):
    """Lifecycle of a curriculum unit."""
    LOCKED = "locked"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


class MasteryStatus(str, Enum):
    """Flashcard learning state."""
    LEARNING = "learning"
    MASTERED = "mastered"


class CardDifficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class ResourceType(str, Enum):
    VIDEO = "video"
    ARTICLE = "article"
    COURSE = "course"
    DOCUMENTATION = "documentation"


class DocumentType(str, Enum):
    PDF = "pdf"
    PPT = "ppt"
    TXT = "txt"


class Attachment(BaseModel):
    """Uploaded document, base64 encoded without a data-URL header."""
    data: str
    mime_type: str = "application/octet-stream"
    name: str

    model_config = {"frozen": True}


class KeyTerm(BaseModel):
    term: str
    definition: str


class LexiconEntry(BaseModel):
    word: str
    meaning: str


class Formula(BaseModel):
    label: str
    expression: str


class Citation(BaseModel):
    unit: str
    source: str


class Message(BaseModel):
    """A single chat turn."""
    role: str  # "user" or "model"
    text: str
    timestamp: str
    grounding_score: Optional[float] = None
    is_external: Optional[bool] = None
    citations: Optional[List[Citation]] = None

    @field_validator("role")
    @classmethod
    def _known_role(cls, value: str) -> str:
        if value not in ("user", "model"):
            raise ValueError(f"Unknown message role: {value}")
        return value


class Flashcard(BaseModel):
    id: str
    question: str
    answer: str
    mastery_status: MasteryStatus = MasteryStatus.LEARNING
    failure_count: int = 0
    difficulty: CardDifficulty = CardDifficulty.MEDIUM
    is_ai_suggested: Optional[bool] = None


class PracticeQuestion(BaseModel):
    id: str
    question: str
    options: List[str]
    correct_index: int
    explanation: str = ""
    has_been_answered: bool = False
    was_correct: Optional[bool] = None
    difficulty_level: int = Field(default=3, ge=1, le=5)


class LearningResource(BaseModel):
    title: str
    type: ResourceType = ResourceType.ARTICLE
    platform: str = ""
    url: str
    reason: str = ""
    score: Optional[float] = None


class ScheduleItem(BaseModel):
    id: str
    title: str
    duration_minutes: int
    focus: str
    activity: str = ""


class McqReview(BaseModel):
    """Explanation of a chosen answer against the correct one."""
    question_id: str
    selected_index: int
    correct_index: int
    is_correct: bool
    verdict: str
    explanation: str
    correct_answer: str
    misconception: Optional[str] = None
    is_fallback: bool = False


class Section(BaseModel):
    """One curriculum unit of a workspace."""
    id: str
    title: str
    summary: str = ""
    detailed_summary: str = ""
    content: str = ""
    key_terms: List[KeyTerm] = Field(default_factory=list)
    lexicon: List[LexiconEntry] = Field(default_factory=list)
    formulas: List[Formula] = Field(default_factory=list)
    mindmap: str = ""
    source_reference: str = ""
    status: SectionStatus = SectionStatus.LOCKED
    mastery: int = 0
    difficulty: Optional[str] = None
    chat_history: List[Message] = Field(default_factory=list)
    flashcards: List[Flashcard] = Field(default_factory=list)
    practice_questions: List[PracticeQuestion] = Field(default_factory=list)
    resources: Optional[List[LearningResource]] = None
    dependencies: List[str] = Field(default_factory=list)
    is_synthesized: Optional[bool] = None

    @field_validator("mastery", mode="before")
    @classmethod
    def _clamp_mastery(cls, value) -> int:
        try:
            value = int(round(float(value)))
        except (TypeError, ValueError):
            return 0
        return max(0, min(100, value))


class FileMetadata(BaseModel):
    id: str
    name: str
    type: DocumentType = DocumentType.TXT
    upload_date: str


class CoverageStats(BaseModel):
    """Derived percentages; recomputed from sections on every store update."""
    ingested: int = 0
    retained: int = 0
    validated: int = 0


class Workspace(BaseModel):
    """One document-derived study session."""
    file_info: FileMetadata
    subject: str
    sections: List[Section] = Field(default_factory=list)
    active_section_index: int = 0
    attachment: Optional[Attachment] = None
    coverage_stats: CoverageStats = Field(default_factory=CoverageStats)

    @property
    def id(self) -> str:
        return self.file_info.id

    @property
    def active_section(self) -> Optional[Section]:
        if not self.sections:
            return None
        return self.sections[self.active_section_index]

    @model_validator(mode="after")
    def _active_index_in_range(self) -> "Workspace":
        if not self.sections:
            self.active_section_index = 0
        elif not 0 <= self.active_section_index < len(self.sections):
            self.active_section_index = max(0, min(self.active_section_index, len(self.sections) - 1))
        return self
