"""
Tests for curriculum synthesis operations.
"""

import pytest

from deeptutor.core.synthesizer import CurriculumSynthesizer
from deeptutor.gateway.request import ModelTier
from deeptutor.shared.config import SynthesisConfig
from deeptutor.shared.exceptions import (
    BackendRejected,
    GatewayTimeout,
    MalformedResponse,
    SynthesisError,
)
from deeptutor.workspace.models import (
    CardDifficulty,
    MasteryStatus,
    Message,
    ResourceType,
    Section,
)


@pytest.fixture
def section():
    return Section(id="sec-raft", title="Raft", summary="Leader-based consensus", content="Raft elects a leader.")


# ----------------------------------------------------------------------
# Structure discovery


@pytest.mark.asyncio
async def test_discover_structure_returns_units(synthesizer, mock_gateway, outline_payload, pdf_attachment):
    mock_gateway.generate.return_value = outline_payload

    units = await synthesizer.discover_structure(pdf_attachment)

    assert [u.title for u in units] == [u["title"] for u in outline_payload]
    assert units[3].source_reference == "pages 16-20"
    assert units[3].dependencies == ["Consensus"]

    request = mock_gateway.generate.call_args.args[0]
    assert request.model_tier == ModelTier.LIGHT
    assert request.attachment == pdf_attachment
    assert request.max_output_tokens == 2048


@pytest.mark.asyncio
async def test_discover_structure_accepts_non_default_counts(synthesizer, mock_gateway):
    mock_gateway.generate.return_value = {"units": [{"title": "Only unit"}, {"summary": "no title"}, "Bare title"]}

    units = await synthesizer.discover_structure(None)

    assert [u.title for u in units] == ["Only unit", "Bare title"]


@pytest.mark.asyncio
async def test_discover_structure_with_no_units_fails(synthesizer, mock_gateway):
    mock_gateway.generate.return_value = []

    with pytest.raises(SynthesisError):
        await synthesizer.discover_structure(None)


@pytest.mark.asyncio
async def test_discover_structure_propagates_gateway_errors(synthesizer, mock_gateway):
    mock_gateway.generate.side_effect = BackendRejected("quota", status_code=429)

    with pytest.raises(BackendRejected):
        await synthesizer.discover_structure(None)


# ----------------------------------------------------------------------
# Full-unit synthesis


@pytest.mark.asyncio
async def test_extra_flashcards_are_truncated_with_fresh_ids(synthesizer, mock_gateway, unit_payload, section):
    unit_payload["flashcards"] = [
        {"id": f"model-{i}", "question": f"Q{i}", "answer": f"A{i}"} for i in range(7)
    ]
    mock_gateway.generate.return_value = unit_payload

    bundle = await synthesizer.synthesize_unit(section, None)

    assert len(bundle.flashcards) == 5
    ids = [card.id for card in bundle.flashcards]
    assert len(set(ids)) == 5
    assert not any(card_id.startswith("model-") for card_id in ids)
    assert all(card.mastery_status == MasteryStatus.LEARNING for card in bundle.flashcards)
    assert [card.question for card in bundle.flashcards] == ["Q0", "Q1", "Q2", "Q3", "Q4"]


@pytest.mark.asyncio
async def test_unit_synthesis_uses_capable_tier(synthesizer, mock_gateway, unit_payload, section, pdf_attachment):
    mock_gateway.generate.return_value = unit_payload

    await synthesizer.synthesize_unit(section, pdf_attachment)

    request = mock_gateway.generate.call_args.args[0]
    assert request.model_tier == ModelTier.CAPABLE
    assert request.attachment == pdf_attachment
    assert "Raft" in request.prompt
    assert request.use_search is False


@pytest.mark.asyncio
async def test_unit_resources_can_use_search(mock_gateway, prompts, unit_payload, section):
    mock_gateway.generate.return_value = unit_payload
    synthesizer = CurriculumSynthesizer(
        gateway=mock_gateway, config=SynthesisConfig(search_resources=True), prompts=prompts
    )

    bundle = await synthesizer.synthesize_unit(section, None)

    request = mock_gateway.generate.call_args.args[0]
    assert request.use_search is True
    assert request.wants_json is True
    assert bundle.resources[0].url == "https://raft.github.io/raft.pdf"


@pytest.mark.asyncio
async def test_unit_fields_are_coerced(synthesizer, mock_gateway, unit_payload, section):
    mock_gateway.generate.return_value = unit_payload

    bundle = await synthesizer.synthesize_unit(section, None)

    assert bundle.summary.startswith("Raft is a consensus algorithm")
    assert bundle.content.startswith("## Raft")
    assert [t.term for t in bundle.key_terms] == ["Term", "Leader", "Quorum"]
    assert bundle.formulas[0].expression == "q > n/2"
    assert bundle.lexicon[0].word == "heartbeat"
    assert bundle.difficulty == "intermediate"
    assert bundle.flashcards[0].difficulty == CardDifficulty.EASY
    assert bundle.flashcards[0].is_ai_suggested is True
    assert len(bundle.practice_questions) == 5
    assert all(q.has_been_answered is False for q in bundle.practice_questions)
    assert bundle.resources[0].type == ResourceType.ARTICLE
    assert bundle.mindmap.splitlines()[0] == "mindmap"


@pytest.mark.asyncio
async def test_short_response_is_padded_from_unit_material(synthesizer, mock_gateway, unit_payload, section):
    unit_payload["flashcards"] = unit_payload["flashcards"][:2]
    unit_payload["questions"] = unit_payload["questions"][:1]
    mock_gateway.generate.return_value = unit_payload

    bundle = await synthesizer.synthesize_unit(section, None)

    assert len(bundle.flashcards) == 5
    assert bundle.flashcards[2].question == "Define: Term"
    assert len(bundle.practice_questions) == 4
    padded = bundle.practice_questions[1]
    assert padded.options[padded.correct_index] == "A logical clock period with at most one leader"


@pytest.mark.asyncio
async def test_missing_and_wrong_typed_fields_default(synthesizer, mock_gateway, section):
    mock_gateway.generate.return_value = {
        "content": {"sections": ["a", "b"]},
        "definitions": "not a list",
        "flashcards": None,
        "questions": [{"question": "Broken", "options": ["only one"], "correctIndex": 0}],
        "resources": [{"title": "Bad link", "url": "javascript:alert(1)"}],
    }

    bundle = await synthesizer.synthesize_unit(section, None)

    assert bundle.content == '{"sections": ["a", "b"]}'
    assert bundle.summary == "Leader-based consensus"
    assert bundle.key_terms == []
    assert len(bundle.flashcards) == 1  # derived from the summary only
    assert bundle.practice_questions == []
    assert bundle.resources == []
    assert bundle.mindmap == ""
    assert bundle.difficulty is None


@pytest.mark.asyncio
async def test_resources_are_truncated_not_padded(synthesizer, mock_gateway, unit_payload, section):
    unit_payload["resources"] = [
        {"title": f"R{i}", "type": "video", "url": f"https://example.com/{i}"} for i in range(6)
    ]
    mock_gateway.generate.return_value = unit_payload

    bundle = await synthesizer.synthesize_unit(section, None)

    assert [r.title for r in bundle.resources] == ["R0", "R1", "R2"]


@pytest.mark.asyncio
async def test_non_object_unit_response_is_malformed(synthesizer, mock_gateway, section):
    mock_gateway.generate.return_value = "just some text"

    with pytest.raises(MalformedResponse):
        await synthesizer.synthesize_unit(section, None)


@pytest.mark.asyncio
async def test_unit_synthesis_propagates_timeout(synthesizer, mock_gateway, section):
    mock_gateway.generate.side_effect = GatewayTimeout("timed out")

    with pytest.raises(GatewayTimeout):
        await synthesizer.synthesize_unit(section, None)


# ----------------------------------------------------------------------
# Follow-up questions


@pytest.mark.asyncio
async def test_followup_questions_get_fresh_unanswered_state(synthesizer, mock_gateway, section):
    mock_gateway.generate.return_value = [
        {"id": "dup", "question": "Q?", "options": ["a", "b"], "correctIndex": 1,
         "hasBeenAnswered": True, "wasCorrect": True},
        {"id": "dup", "question": "R?", "options": ["a", "b", "c"], "correctIndex": 0},
    ]

    questions = await synthesizer.generate_followup_questions(section, 4)

    assert len(questions) == 2
    assert questions[0].id != questions[1].id
    assert "dup" not in {q.id for q in questions}
    assert all(q.has_been_answered is False and q.was_correct is None for q in questions)
    assert all(q.difficulty_level == 4 for q in questions)


@pytest.mark.asyncio
async def test_followup_failure_returns_empty_list(synthesizer, mock_gateway, section):
    mock_gateway.generate.side_effect = MalformedResponse("unrecoverable JSON")

    assert await synthesizer.generate_followup_questions(section, 3) == []


# ----------------------------------------------------------------------
# Answer review


@pytest.mark.asyncio
async def test_review_uses_model_explanation(synthesizer, mock_gateway, section, question):
    mock_gateway.generate.return_value = {
        "verdict": "Not quite.",
        "explanation": "Two nodes are a minority of five.",
        "misconception": "Confusing quorum with any subset",
    }

    review = await synthesizer.evaluate_answer(question, 0, section, None)

    assert review.is_fallback is False
    assert review.is_correct is False
    assert review.verdict == "Not quite."
    assert review.explanation == "Two nodes are a minority of five."
    assert review.correct_answer == "3"


@pytest.mark.asyncio
@pytest.mark.parametrize("outcome", [GatewayTimeout("slow"), None, "", {"verdict": "ok"}])
async def test_review_always_fully_populated(synthesizer, mock_gateway, section, question, outcome):
    if isinstance(outcome, Exception):
        mock_gateway.generate.side_effect = outcome
    else:
        mock_gateway.generate.return_value = outcome

    review = await synthesizer.evaluate_answer(question, 1, section, None)

    assert review.is_fallback is True
    assert review.is_correct is True
    assert review.question_id == "q-1"
    assert review.selected_index == 1
    assert review.correct_index == 1
    assert review.correct_answer == "3"
    assert review.verdict == "Correct."
    assert review.explanation == "A quorum is a majority: 3 of 5."


# ----------------------------------------------------------------------
# Chat and schedule


@pytest.mark.asyncio
async def test_chat_returns_grounded_reply(synthesizer, mock_gateway, section):
    mock_gateway.generate.return_value = {
        "text": "A term is a logical clock period.",
        "isExternal": False,
        "groundingScore": 92,
        "citations": [{"unit": "Raft", "source": "page 3"}],
    }
    history = [Message(role="user", text="Hi", timestamp="t0")]

    reply = await synthesizer.chat(history, section, "What is a term?")

    assert reply.text == "A term is a logical clock period."
    assert reply.grounding_score == pytest.approx(0.92)
    assert reply.is_external is False
    assert reply.citations[0].source == "page 3"
    request = mock_gateway.generate.call_args.args[0]
    assert request.history == history
    assert "What is a term?" in request.prompt


@pytest.mark.asyncio
async def test_chat_without_text_is_malformed(synthesizer, mock_gateway, section):
    mock_gateway.generate.return_value = {"groundingScore": 0.5}

    with pytest.raises(MalformedResponse):
        await synthesizer.chat([], section, "Hello?")


@pytest.mark.asyncio
async def test_schedule_items_are_coerced(synthesizer, mock_gateway, section):
    mock_gateway.generate.return_value = [
        {"title": "Day 1", "durationMinutes": "45", "focus": "Raft", "activity": "Flashcards"},
        {"title": "Day 2", "durationMinutes": 10000, "focus": "Paxos"},
        {"focus": "no title"},
    ]

    schedule = await synthesizer.generate_schedule("Distributed Systems", [section])

    assert [item.title for item in schedule] == ["Day 1", "Day 2"]
    assert schedule[0].duration_minutes == 45
    assert schedule[1].duration_minutes == 480


@pytest.mark.asyncio
async def test_schedule_failure_returns_empty_list(synthesizer, mock_gateway, section):
    mock_gateway.generate.side_effect = GatewayTimeout("slow")

    assert await synthesizer.generate_schedule("Distributed Systems", [section]) == []
