"""
End-to-end test: upload document -> discover units -> enrich -> study.

Runs the real gateway, response sanitizer, synthesizer and SQLite store; only the
transport is scripted.
"""

import json
import pytest

from deeptutor.core.orchestrator import EnrichmentOrchestrator
from deeptutor.core.study import StudyActions
from deeptutor.core.synthesizer import CurriculumSynthesizer
from deeptutor.gateway.client import GenerationGateway, TransportStrategy
from deeptutor.shared.config import SynthesisConfig
from deeptutor.workspace.models import MasteryStatus, SectionStatus
from deeptutor.workspace.store import WorkspaceStore


class ScriptedStrategy(TransportStrategy):
    """Answers dispatches from a queue of raw response texts."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.payloads = []

    async def dispatch(self, payload):
        self.payloads.append(payload)
        return self.responses.pop(0)


@pytest.mark.asyncio
async def test_document_to_mastered_unit(tmp_path, text_attachment, prompts, outline_payload, unit_payload):
    # Model output as it arrives: fenced, prefixed with prose, and cut short
    truncated_unit = json.dumps(unit_payload)[:-1]
    strategy = ScriptedStrategy([
        "```json\n" + json.dumps(outline_payload) + "\n```",
        "Here is the unit:\n" + truncated_unit,
        json.dumps({
            "text": "Raft needs a majority of votes.",
            "isExternal": False,
            "groundingScore": 0.8,
            "citations": [{"unit": "Foundations", "source": "pages 1-5"}],
        }),
        json.dumps({"verdict": "Right.", "explanation": "Option b is the quorum rule."}),
    ])
    gateway = GenerationGateway(strategy=strategy, provider="gemini")
    synthesizer = CurriculumSynthesizer(gateway=gateway, config=SynthesisConfig(), prompts=prompts)
    store = WorkspaceStore(db_path=tmp_path / "state.sqlite", blob_name="flow", persist_attachments=True)
    orchestrator = EnrichmentOrchestrator(store, synthesizer)
    actions = StudyActions(store, synthesizer)

    workspace = await orchestrator.ingest_document(text_attachment)

    assert orchestrator.last_error is None
    assert workspace.subject == "consensus-notes"
    assert [s.title for s in workspace.sections][:2] == ["Foundations", "Replication"]
    assert workspace.sections[0].status == SectionStatus.IN_PROGRESS
    assert all(s.status == SectionStatus.LOCKED for s in workspace.sections[1:])

    first = workspace.sections[0]
    assert first.is_synthesized is True
    assert first.content.startswith("## Raft")
    assert [t.term for t in first.key_terms] == ["Term", "Leader", "Quorum"]
    assert len(first.practice_questions) == synthesizer.config.questions_per_unit
    assert len(first.flashcards) == synthesizer.config.flashcards_per_unit
    assert workspace.coverage_stats.ingested == 17

    # The text document travels inline as a text part, not as binary data
    first_parts = strategy.payloads[0]["contents"][-1]["parts"]
    assert all("inlineData" not in part for part in first_parts)
    assert "Raft elects a leader" in json.dumps(first_parts)

    workspace = await actions.send_message(workspace.id, first.id, "Why a majority?")
    reply = workspace.sections[0].chat_history[-1]
    assert reply.role == "model"
    assert reply.grounding_score == 0.8
    assert workspace.sections[0].mastery == 2

    question = workspace.sections[0].practice_questions[1]
    review = await actions.answer_question(workspace.id, first.id, question.id, question.correct_index)
    assert review.is_correct is True
    assert review.is_fallback is False
    assert review.explanation == "Option b is the quorum rule."

    card = workspace.sections[0].flashcards[0]
    workspace = actions.set_flashcard_status(workspace.id, first.id, card.id, MasteryStatus.MASTERED)
    assert workspace.sections[0].mastery == 7
    assert workspace.coverage_stats.retained == 20
    assert strategy.responses == []

    # A fresh store over the same file sees the same state
    reloaded = WorkspaceStore(db_path=tmp_path / "state.sqlite", blob_name="flow", persist_attachments=True)
    assert reloaded.get_workspace(workspace.id) == workspace
    assert reloaded.active_workspace_id == workspace.id
