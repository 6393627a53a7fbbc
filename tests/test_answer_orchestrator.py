"""Tests for the answer orchestrator."""

from unittest.mock import AsyncMock

import pytest

from edusense.answers.orchestrator import (
    DEFAULT_FRAME_QUESTION,
    FAILED_ANSWER_MESSAGE,
    AnswerOrchestrator,
    AskOptions,
)
from edusense.core.exceptions import GenerationError, InvalidInputError, NotFoundError
from edusense.db.models import DoubtStatus, FrameSourceType, FrameStatus
from edusense.llm.parsing import AnswerMeta, CodeBlock, StructuredAnswer
from edusense.rag.retriever import RetrievedChunk
from tests.fakes.fake_repos import OTHER_USER_ID, USER_ID

QUESTION = "What is the acceleration of a 2 kg mass under a 4 N force?"


@pytest.fixture
def activity():
    tracker = AsyncMock()
    tracker.record_question = AsyncMock()
    return tracker


@pytest.fixture
def orchestrator(doubt_repo, frame_repo, retriever, generation_client, activity):
    return AnswerOrchestrator(
        doubts=doubt_repo,
        retriever=retriever,
        client=generation_client,
        frames=frame_repo,
        activity=activity,
    )


def _chunk(text="F = ma relates force, mass and acceleration.", score=0.8):
    return RetrievedChunk(
        id="chunk-1",
        text=text,
        score=score,
        metadata={"subject": "physics", "topic": "Newton's laws", "source": "Reference"},
    )


class TestAsk:
    @pytest.mark.asyncio
    async def test_answer_without_context(self, orchestrator, doubt_repo):
        """With nothing retrieved the answer is still generated and stored."""
        doubt = await orchestrator.ask(USER_ID, QUESTION)

        assert doubt.status == DoubtStatus.ANSWERED
        assert doubt.retrieved_context == []
        assert doubt.final_answer
        assert doubt.user_id == USER_ID
        assert doubt.model_used == "llama-3.3-70b-versatile"
        assert doubt_repo.commits == 1
        assert doubt_repo.doubts[doubt.id] is doubt

    @pytest.mark.asyncio
    async def test_retrieved_context_is_recorded(self, orchestrator, retriever, generation_client):
        retriever.chunks = [_chunk()]

        doubt = await orchestrator.ask(USER_ID, QUESTION, AskOptions(subject="physics", top_k=3))

        assert doubt.retrieved_context == [
            {
                "text": "F = ma relates force, mass and acceleration.",
                "score": 0.8,
                "metadata": {
                    "subject": "physics",
                    "topic": "Newton's laws",
                    "source": "Reference",
                },
            }
        ]
        assert retriever.calls == [(QUESTION, 3, {"subject": "physics"})]
        assert generation_client.contexts[0] == retriever.chunks

    @pytest.mark.asyncio
    async def test_retrieval_failure_is_not_fatal(self, orchestrator, retriever):
        retriever.error = ConnectionError("qdrant down")

        doubt = await orchestrator.ask(USER_ID, QUESTION)

        assert doubt.status == DoubtStatus.ANSWERED
        assert doubt.retrieved_context == []

    @pytest.mark.asyncio
    async def test_fields_are_normalized(self, orchestrator, generation_client):
        generation_client.answer = StructuredAnswer(
            steps=["Step 1"],
            final_answer="Done",
            confidence=85,
            meta=AnswerMeta(subject=""),
            mermaid_code="graph TD; A-->B",
            code=CodeBlock(language="python", snippet="   "),
        )

        doubt = await orchestrator.ask(USER_ID, QUESTION)

        assert doubt.confidence == pytest.approx(0.85)
        assert doubt.mermaid_code.splitlines()[0] == "graph TD"
        assert "A --> B" in doubt.mermaid_code
        assert doubt.code is None
        # No subject from the model or the caller: keyword detection decides
        assert doubt.subject == "physics"

    @pytest.mark.asyncio
    async def test_code_and_empty_diagram(self, orchestrator, generation_client):
        generation_client.answer = StructuredAnswer(
            final_answer="Use a loop",
            mermaid_code="   ",
            code=CodeBlock(language="python", snippet="for i in range(3):\n    print(i)"),
        )

        doubt = await orchestrator.ask(USER_ID, "How do I write a loop in code?")

        assert doubt.mermaid_code is None
        assert doubt.code == {"language": "python", "snippet": "for i in range(3):\n    print(i)"}

    @pytest.mark.asyncio
    async def test_persist_failure_records_failed_answer(self, orchestrator, doubt_repo):
        """A persistence error leaves a failed record and is re-raised."""
        doubt_repo.fail_next_create = RuntimeError("database unavailable")

        with pytest.raises(RuntimeError, match="database unavailable"):
            await orchestrator.ask(USER_ID, QUESTION)

        assert doubt_repo.rollbacks == 1
        [failed] = doubt_repo.doubts.values()
        assert failed.status == DoubtStatus.FAILED
        assert failed.final_answer == FAILED_ANSWER_MESSAGE
        assert failed.confidence == 0.0
        assert failed.question == QUESTION

    @pytest.mark.asyncio
    async def test_question_validation(self, orchestrator, doubt_repo, retriever):
        with pytest.raises(InvalidInputError):
            await orchestrator.ask(USER_ID, "   ")
        with pytest.raises(InvalidInputError, match="too long"):
            await orchestrator.ask(USER_ID, "x" * 1001)

        assert doubt_repo.doubts == {}
        assert retriever.calls == []

    @pytest.mark.asyncio
    async def test_question_at_limit_is_accepted(self, orchestrator):
        doubt = await orchestrator.ask(USER_ID, "x" * 1000)
        assert doubt.status == DoubtStatus.ANSWERED

    @pytest.mark.asyncio
    async def test_activity_is_tracked(self, orchestrator, activity):
        await orchestrator.ask(USER_ID, QUESTION)
        activity.record_question.assert_awaited_once_with(USER_ID)

    @pytest.mark.asyncio
    async def test_activity_failure_is_ignored(self, orchestrator, activity):
        activity.record_question.side_effect = RuntimeError("streak service down")

        doubt = await orchestrator.ask(USER_ID, QUESTION)

        assert doubt.status == DoubtStatus.ANSWERED


class TestAskAboutFrame:
    async def _frame(self, frame_repo, text="Velocity is the rate of change of position."):
        return await frame_repo.create(
            user_id=USER_ID,
            source_type=FrameSourceType.IMAGE,
            source_url="https://cdn.test/a.png",
            filename="board.png",
            ocr_text=text,
            concept_tags=["velocity"],
            status=FrameStatus.COMPLETED,
        )

    @pytest.mark.asyncio
    async def test_frame_text_leads_context(self, orchestrator, frame_repo, generation_client):
        frame = await self._frame(frame_repo)

        doubt = await orchestrator.ask_about_frame(USER_ID, frame.id, "What is velocity?")

        leading = generation_client.contexts[0][0]
        assert leading.text == frame.ocr_text
        assert leading.score == 1.0
        assert leading.metadata["frame_id"] == frame.id
        assert doubt.frame_id == frame.id
        assert doubt.tags == ["velocity"]
        assert doubt.retrieved_context == []

    @pytest.mark.asyncio
    async def test_default_question(self, orchestrator, frame_repo):
        frame = await self._frame(frame_repo)

        doubt = await orchestrator.ask_about_frame(USER_ID, frame.id)

        assert doubt.question == DEFAULT_FRAME_QUESTION

    @pytest.mark.asyncio
    async def test_frame_without_text(self, orchestrator, frame_repo):
        frame = await self._frame(frame_repo, text="")

        with pytest.raises(InvalidInputError):
            await orchestrator.ask_about_frame(USER_ID, frame.id, "Explain")

    @pytest.mark.asyncio
    async def test_other_users_frame(self, orchestrator, frame_repo):
        frame = await self._frame(frame_repo)

        with pytest.raises(NotFoundError):
            await orchestrator.ask_about_frame(OTHER_USER_ID, frame.id, "Explain")


class TestDiagramsAndStudyMaterial:
    @pytest.mark.asyncio
    async def test_regenerate_diagram_repairs_markup(self, orchestrator, generation_client):
        doubt = await orchestrator.ask(USER_ID, QUESTION)
        generation_client.raw = "```mermaid\ngraph TD\nA-->B\n```"

        markup = await orchestrator.regenerate_diagram(USER_ID, doubt.id, "flowchart")

        assert markup == "graph TD\nA --> B"
        assert doubt.mermaid_code == markup
        assert "flowchart diagram" in generation_client.raw_calls[0]["prompt"]

    @pytest.mark.asyncio
    async def test_regenerate_diagram_rejects_unknown_kind(self, orchestrator, generation_client):
        doubt = await orchestrator.ask(USER_ID, QUESTION)

        with pytest.raises(InvalidInputError):
            await orchestrator.regenerate_diagram(USER_ID, doubt.id, "pie")
        assert generation_client.raw_calls == []

    @pytest.mark.asyncio
    async def test_regenerate_diagram_empty_output(self, orchestrator, generation_client):
        doubt = await orchestrator.ask(USER_ID, QUESTION)
        generation_client.raw = "```mermaid\n```"

        with pytest.raises(GenerationError):
            await orchestrator.regenerate_diagram(USER_ID, doubt.id, "mindmap")

    @pytest.mark.asyncio
    async def test_flashcards_are_parsed(self, orchestrator, generation_client):
        generation_client.raw = '```json\n[{"front": "F?", "back": "ma"}]\n```'

        result = await orchestrator.study_material("Newton's laws", "flashcards")

        assert result["data"] == [{"front": "F?", "back": "ma"}]
        assert result["kind"] == "flashcards"
        assert generation_client.raw_calls[0]["temperature"] == 0.5

    @pytest.mark.asyncio
    async def test_notes_are_returned_as_text(self, orchestrator, generation_client):
        generation_client.raw = "# Newton's laws\n- **F = ma**"

        result = await orchestrator.study_material("Newton's laws", "notes")

        assert result["content"] == "# Newton's laws\n- **F = ma**"
        assert result["data"] is None

    @pytest.mark.asyncio
    async def test_scalar_json_is_not_kept_as_data(self, orchestrator, generation_client):
        generation_client.raw = '"Just some text"'

        result = await orchestrator.study_material("Optics", "quiz")

        assert result["data"] is None
        assert result["content"] == '"Just some text"'

    @pytest.mark.asyncio
    async def test_quiz_is_parsed(self, orchestrator, generation_client):
        generation_client.raw = '[{"question": "Unit?", "options": ["N", "J"], "answer": "N"}]'

        result = await orchestrator.study_material("Optics", "quiz")

        assert result["data"][0]["answer"] == "N"
        assert "as JSON" in generation_client.raw_calls[0]["prompt"]

    @pytest.mark.asyncio
    async def test_study_material_validation(self, orchestrator):
        with pytest.raises(InvalidInputError):
            await orchestrator.study_material("", "notes")
        with pytest.raises(InvalidInputError):
            await orchestrator.study_material("Optics", "essay")


class TestRecordManagement:
    @pytest.mark.asyncio
    async def test_bookmark_toggles(self, orchestrator):
        doubt = await orchestrator.ask(USER_ID, QUESTION)

        assert (await orchestrator.toggle_bookmark(USER_ID, doubt.id)).is_bookmarked is True
        assert (await orchestrator.toggle_bookmark(USER_ID, doubt.id)).is_bookmarked is False

    @pytest.mark.asyncio
    async def test_rating(self, orchestrator):
        doubt = await orchestrator.ask(USER_ID, QUESTION)

        rated = await orchestrator.rate(USER_ID, doubt.id, 4, "clear")

        assert rated.rating == 4
        assert rated.feedback == "clear"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("rating", [0, 6, True, 3.5])
    async def test_invalid_rating_rejected_before_lookup(self, orchestrator, rating):
        with pytest.raises(InvalidInputError):
            await orchestrator.rate(USER_ID, "no-such-record", rating)

    @pytest.mark.asyncio
    async def test_records_are_scoped_to_owner(self, orchestrator):
        doubt = await orchestrator.ask(USER_ID, QUESTION)

        with pytest.raises(NotFoundError):
            await orchestrator.get_doubt(OTHER_USER_ID, doubt.id)
        with pytest.raises(NotFoundError):
            await orchestrator.delete_doubt(OTHER_USER_ID, doubt.id)

    @pytest.mark.asyncio
    async def test_list_and_stats(self, orchestrator):
        first = await orchestrator.ask(USER_ID, QUESTION)
        second = await orchestrator.ask(USER_ID, "What is a molecule in chemistry?")
        await orchestrator.toggle_bookmark(USER_ID, first.id)

        doubts, total = await orchestrator.list_doubts(USER_ID, limit=10)
        assert total == 2
        assert [d.id for d in doubts] == [second.id, first.id]

        bookmarked, _ = await orchestrator.list_doubts(USER_ID, bookmarked=True)
        assert [d.id for d in bookmarked] == [first.id]

        stats = await orchestrator.stats(USER_ID)
        assert stats == {"total": 2, "bookmarked": 1, "avg_confidence": 0.9}

    @pytest.mark.asyncio
    async def test_list_validates_paging(self, orchestrator):
        with pytest.raises(InvalidInputError):
            await orchestrator.list_doubts(USER_ID, limit=0)
        with pytest.raises(InvalidInputError):
            await orchestrator.list_doubts(USER_ID, offset=-1)

    @pytest.mark.asyncio
    async def test_delete(self, orchestrator, doubt_repo):
        doubt = await orchestrator.ask(USER_ID, QUESTION)

        await orchestrator.delete_doubt(USER_ID, doubt.id)

        assert doubt_repo.doubts == {}
