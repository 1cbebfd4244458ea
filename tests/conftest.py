"""
Pytest fixtures for DeepTutor tests.
"""

import pytest
from typing import Any, Dict, List
from unittest.mock import AsyncMock

from deeptutor.core.attachments import encode_bytes
from deeptutor.core.prompt.builder import PromptBuilder
from deeptutor.core.synthesizer import CurriculumSynthesizer
from deeptutor.shared.config import SynthesisConfig
from deeptutor.workspace.models import (
    Flashcard,
    FileMetadata,
    PracticeQuestion,
    Section,
    SectionStatus,
    Workspace,
)
from deeptutor.workspace.store import WorkspaceStore


@pytest.fixture
def store(tmp_path):
    """Workspace store backed by a temporary SQLite file."""
    return WorkspaceStore(db_path=tmp_path / "state.sqlite", blob_name="test-state")


@pytest.fixture
def text_attachment():
    """Small plain-text document."""
    return encode_bytes(
        b"Lecture 1: Consensus\nRaft elects a leader using randomized timeouts.\n",
        "consensus-notes.txt",
        "text/plain",
    )


@pytest.fixture
def pdf_attachment():
    """Attachment that is sent to the backend as a binary part."""
    return encode_bytes(b"%PDF-1.4 minimal", "Distributed Systems.pdf", "application/pdf")


@pytest.fixture
def mock_gateway():
    """Mock GenerationGateway; tests set generate.return_value or side_effect."""
    mock = AsyncMock()
    mock.generate.return_value = {}
    return mock


@pytest.fixture
def prompts(tmp_path):
    """Prompt builder that never picks up a local system prompt file."""
    return PromptBuilder(config={"system_prompt_path": str(tmp_path / "no-system-prompt.md")})


@pytest.fixture
def synthesizer(mock_gateway, prompts):
    return CurriculumSynthesizer(gateway=mock_gateway, config=SynthesisConfig(), prompts=prompts)


@pytest.fixture
def outline_payload() -> List[Dict[str, Any]]:
    """Structure discovery response with six units."""
    titles = ["Foundations", "Replication", "Consensus", "Raft", "Paxos", "Byzantine Faults"]
    return [
        {
            "title": title,
            "summary": f"Overview of {title.lower()}",
            "sourceRange": f"pages {idx * 5 + 1}-{idx * 5 + 5}",
            "dependencies": [titles[idx - 1]] if idx else [],
        }
        for idx, title in enumerate(titles)
    ]


@pytest.fixture
def unit_payload() -> Dict[str, Any]:
    """Full-unit synthesis response as a well-behaved model returns it."""
    return {
        "summary": "Raft is a consensus algorithm designed for understandability.",
        "detailedSummary": "Raft separates leader election, log replication and safety.",
        "content": "## Raft\nA leader is elected for each term.",
        "definitions": [
            {"term": "Term", "definition": "A logical clock period with at most one leader"},
            {"term": "Leader", "definition": "The node that accepts client requests"},
            {"term": "Quorum", "definition": "A majority of the cluster"},
        ],
        "lexicon": [{"word": "heartbeat", "meaning": "Empty AppendEntries message from the leader"}],
        "axioms": [{"label": "Majority", "expression": "$$q > n/2$$"}],
        "mindmap": "mindmap\nRaft\n  Election\n  Replication",
        "flashcards": [
            {"id": f"model-{i}", "question": f"Q{i}", "answer": f"A{i}", "difficulty": "easy"}
            for i in range(5)
        ],
        "questions": [
            {
                "question": f"Question {i}?",
                "options": ["a", "b", "c", "d"],
                "correctIndex": i % 4,
                "explanation": f"Because {i}",
            }
            for i in range(5)
        ],
        "difficulty": "intermediate",
        "resources": [
            {
                "title": "The Raft paper",
                "type": "article",
                "platform": "USENIX",
                "url": "https://raft.github.io/raft.pdf",
                "reason": "Primary source",
            }
        ],
    }


@pytest.fixture
def make_workspace():
    """Factory for workspaces with n sections, the first one in progress."""

    def _make(n_sections: int = 3, workspace_id: str = "ws-1", **section_fields) -> Workspace:
        sections = [
            Section(
                id=f"sec-{i}",
                title=f"Unit {i}",
                summary=f"Summary {i}",
                status=SectionStatus.IN_PROGRESS if i == 0 else SectionStatus.LOCKED,
                **section_fields,
            )
            for i in range(n_sections)
        ]
        return Workspace(
            file_info=FileMetadata(
                id=workspace_id,
                name="notes.pdf",
                upload_date="2024-01-15T10:00:00+00:00",
            ),
            subject="notes",
            sections=sections,
        )

    return _make


@pytest.fixture
def flashcards() -> List[Flashcard]:
    return [Flashcard(id=f"card-{i}", question=f"Q{i}", answer=f"A{i}") for i in range(5)]


@pytest.fixture
def question() -> PracticeQuestion:
    return PracticeQuestion(
        id="q-1",
        question="How many nodes form a quorum in a cluster of five?",
        options=["2", "3", "4", "5"],
        correct_index=1,
        explanation="A quorum is a majority: 3 of 5.",
    )
