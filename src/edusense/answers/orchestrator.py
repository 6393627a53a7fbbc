"""Answer orchestrator.

Pipeline: retrieve context -> generate -> normalize -> repair -> persist.

Retrieval is best-effort and generation absorbs model failures, so most
questions end as an ``answered`` record. When persisting fails, a
``failed`` record is written best-effort and the original error is
re-raised.
"""

import logging
import time
from dataclasses import asdict, dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from edusense.answers.activity import ActivityTracker, get_activity_tracker
from edusense.answers.diagrams import DIAGRAM_KINDS, build_diagram_prompt, repair_diagram
from edusense.core.exceptions import GenerationError, InvalidInputError, NotFoundError
from edusense.core.subjects import KeywordSubjectDetector, SubjectDetector
from edusense.db.models import Doubt, DoubtStatus
from edusense.db.repository import DoubtRepository, FrameRepository
from edusense.llm.client import GenerationClient, get_generation_client
from edusense.llm.parsing import StructuredAnswer, load_json_payload, normalize_confidence
from edusense.observability.metrics import ANSWERS_TOTAL, record_retrieval
from edusense.rag.prompt_builder import (
    STUDY_MATERIAL_PROMPTS,
    STUDY_MATERIAL_SYSTEM_PROMPT,
    build_study_material_prompt,
)
from edusense.rag.retriever import RetrievedChunk, Retriever, get_retriever, get_stats

logger = logging.getLogger(__name__)

MAX_QUESTION_LENGTH = 1000
MAX_FRAME_CONTEXT_CHARS = 4000
MAX_PAGE_SIZE = 100
FAILED_ANSWER_MESSAGE = "Failed to generate answer. Please try again."
DEFAULT_FRAME_QUESTION = "Explain the content of this uploaded material step by step."
STUDY_MATERIAL_TEMPERATURE = 0.5
JSON_STUDY_MATERIALS = ("flashcards", "quiz")


@dataclass
class AskOptions:
    subject: str | None = None
    top_k: int = 5
    tags: list[str] = field(default_factory=list)
    frame_id: str | None = None


def validate_question(question: str | None) -> str:
    """Return the stripped question or raise InvalidInputError."""
    question = (question or "").strip()
    if not question:
        raise InvalidInputError("Question text is required")
    if len(question) > MAX_QUESTION_LENGTH:
        raise InvalidInputError(
            f"Question is too long (max {MAX_QUESTION_LENGTH} characters)"
        )
    return question


def _code_to_save(answer: StructuredAnswer) -> dict | None:
    code = answer.code
    if code is None or not isinstance(code.snippet, str) or not code.snippet.strip():
        return None
    return {"language": code.language or "", "snippet": code.snippet}


class AnswerOrchestrator:
    """Question answering and answer-record management."""

    def __init__(
        self,
        doubts: DoubtRepository,
        retriever: Retriever,
        client: GenerationClient,
        frames: FrameRepository | None = None,
        activity: ActivityTracker | None = None,
        subject_detector: SubjectDetector | None = None,
    ):
        self.doubts = doubts
        self.retriever = retriever
        self.client = client
        self.frames = frames
        self.activity = activity
        self.subject_detector = subject_detector or KeywordSubjectDetector()

    # ============================================
    # Asking
    # ============================================

    async def _retrieve(self, question: str, options: AskOptions) -> list[RetrievedChunk]:
        filters = {"subject": options.subject} if options.subject else None
        try:
            context = await self.retriever.retrieve(question, top_k=options.top_k, filters=filters)
        except Exception as e:
            logger.warning(f"[Ask] Retrieval failed, continuing without context: {e}")
            return []
        record_retrieval(get_stats(context))
        return context

    def _record_fields(
        self,
        question: str,
        answer: StructuredAnswer,
        context: list[RetrievedChunk],
        options: AskOptions,
    ) -> dict:
        meta = asdict(answer.meta)
        return {
            "question": question,
            "frame_id": options.frame_id,
            "explanation": answer.explanation,
            "steps": answer.steps,
            "final_answer": answer.final_answer,
            "confidence": normalize_confidence(answer.confidence),
            "meta": meta,
            "follow_up_questions": asdict(answer.follow_up_questions),
            "mermaid_code": repair_diagram(answer.mermaid_code) or None,
            "code": _code_to_save(answer),
            "retrieved_context": [chunk.to_dict() for chunk in context],
            "subject": meta["subject"] or options.subject or self.subject_detector.detect(question),
            "tags": list(options.tags),
            "status": DoubtStatus.ANSWERED,
            "model_used": answer.model,
        }

    async def _persist_failure(
        self, user_id: str, question: str, options: AskOptions, started: float
    ) -> None:
        try:
            await self.doubts.rollback()
            await self.doubts.create(
                user_id=user_id,
                question=question,
                frame_id=options.frame_id,
                final_answer=FAILED_ANSWER_MESSAGE,
                confidence=0.0,
                status=DoubtStatus.FAILED,
                subject=options.subject or self.subject_detector.detect(question),
                processing_time_ms=int((time.perf_counter() - started) * 1000),
            )
            await self.doubts.commit()
            ANSWERS_TOTAL.labels(DoubtStatus.FAILED.value).inc()
        except Exception:
            logger.exception("[Ask] Could not persist failed answer record")

    async def _track_activity(self, user_id: str) -> None:
        if self.activity is None:
            return
        try:
            await self.activity.record_question(user_id)
        except Exception as e:
            logger.warning(f"[Ask] Activity tracking failed for {user_id}: {e}")

    async def _answer(
        self,
        user_id: str,
        question: str,
        options: AskOptions,
        extra_context: list[RetrievedChunk] | None = None,
    ) -> Doubt:
        started = time.perf_counter()
        logger.info(f"[Ask] Question from user {user_id}: {question[:80]!r}")

        context = await self._retrieve(question, options)
        logger.info(f"[Ask] Retrieved {len(context)} context chunks")

        try:
            answer = await self.client.ask_with_context(
                question, (extra_context or []) + context
            )
            fields = self._record_fields(question, answer, context, options)
            fields["processing_time_ms"] = int((time.perf_counter() - started) * 1000)
            doubt = await self.doubts.create(user_id=user_id, **fields)
            await self.doubts.commit()
        except Exception as e:
            logger.error(f"[Ask] Answering failed: {e}")
            await self._persist_failure(user_id, question, options, started)
            raise

        ANSWERS_TOTAL.labels(DoubtStatus.ANSWERED.value).inc()
        await self._track_activity(user_id)

        logger.info(
            f"[Ask] Saved answer {doubt.id} (confidence {doubt.confidence:.2f}, "
            f"{doubt.processing_time_ms}ms)"
        )
        return doubt

    async def ask(self, user_id: str, question: str, options: AskOptions | None = None) -> Doubt:
        """Answer a text question and persist the record.

        Raises:
            InvalidInputError: Empty question or longer than 1000 characters
        """
        question = validate_question(question)
        return await self._answer(user_id, question, options or AskOptions())

    async def ask_about_frame(
        self,
        user_id: str,
        frame_id: str,
        question: str | None = None,
        options: AskOptions | None = None,
    ) -> Doubt:
        """Answer a question about an uploaded frame's extracted text.

        The frame text goes in as the leading context block. Without a
        question, a generic "explain this" question is used.
        """
        if self.frames is None:
            raise RuntimeError("Frame repository not configured")

        question = validate_question(question) if question else DEFAULT_FRAME_QUESTION
        frame = await self.frames.get(frame_id, user_id=user_id)
        if frame is None:
            raise NotFoundError("Frame", frame_id)
        if not (frame.ocr_text or "").strip():
            raise InvalidInputError("Frame has no extracted text yet")

        frame_chunk = RetrievedChunk(
            id=frame.id,
            text=frame.ocr_text[:MAX_FRAME_CONTEXT_CHARS],
            score=1.0,
            metadata={
                "source": frame.filename or "Uploaded image",
                "subject": self.subject_detector.detect(frame.ocr_text),
                "topic": frame.topics[0] if frame.topics else "Uploaded material",
                "frame_id": frame.id,
            },
        )

        options = options or AskOptions()
        options.frame_id = frame.id
        if not options.tags and frame.concept_tags:
            options.tags = list(frame.concept_tags)

        return await self._answer(user_id, question, options, extra_context=[frame_chunk])

    async def regenerate_diagram(self, user_id: str, doubt_id: str, kind: str) -> str:
        """Ask for a new diagram of ``kind`` and store the repaired markup.

        Raises:
            InvalidInputError: Unknown diagram kind
            NotFoundError: No such record for this user
            GenerationError: Every model failed or returned nothing usable
        """
        if kind not in DIAGRAM_KINDS:
            raise InvalidInputError(
                "Invalid diagram type", detail=f"Expected one of: {', '.join(DIAGRAM_KINDS)}"
            )

        doubt = await self.get_doubt(user_id, doubt_id)
        raw = await self.client.ask_raw(
            build_diagram_prompt(kind, doubt.question, doubt.final_answer)
        )

        markup = repair_diagram(raw)
        if not markup:
            raise GenerationError("Model returned an empty diagram")

        doubt.mermaid_code = markup
        await self.doubts.save(doubt)
        logger.info(f"[Ask] Regenerated {kind} diagram for {doubt.id}")
        return markup

    async def study_material(self, topic: str, kind: str) -> dict:
        """Notes, flashcards, an analogy or a quiz for a topic."""
        topic = (topic or "").strip()
        if not topic:
            raise InvalidInputError("Topic is required")
        if kind not in STUDY_MATERIAL_PROMPTS:
            raise InvalidInputError(
                "Invalid study material type",
                detail=f"Expected one of: {', '.join(STUDY_MATERIAL_PROMPTS)}",
            )

        content = await self.client.ask_raw(
            build_study_material_prompt(topic, kind),
            system_prompt=STUDY_MATERIAL_SYSTEM_PROMPT,
            temperature=STUDY_MATERIAL_TEMPERATURE,
        )
        data = load_json_payload(content) if kind in JSON_STUDY_MATERIALS else None
        if not isinstance(data, (dict, list)):
            data = None
        return {"topic": topic, "kind": kind, "content": content, "data": data}

    # ============================================
    # Record management
    # ============================================

    async def get_doubt(self, user_id: str, doubt_id: str) -> Doubt:
        doubt = await self.doubts.get(doubt_id, user_id=user_id)
        if doubt is None:
            raise NotFoundError("Doubt", doubt_id)
        return doubt

    async def list_doubts(
        self,
        user_id: str,
        limit: int = 20,
        offset: int = 0,
        subject: str | None = None,
        bookmarked: bool | None = None,
    ) -> tuple[list[Doubt], int]:
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise InvalidInputError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        if offset < 0:
            raise InvalidInputError("offset must be >= 0")
        return await self.doubts.list_for_user(
            user_id, limit=limit, offset=offset, subject=subject, bookmarked=bookmarked
        )

    async def toggle_bookmark(self, user_id: str, doubt_id: str) -> Doubt:
        doubt = await self.get_doubt(user_id, doubt_id)
        doubt.is_bookmarked = not doubt.is_bookmarked
        return await self.doubts.save(doubt)

    async def rate(
        self, user_id: str, doubt_id: str, rating: int, feedback: str | None = None
    ) -> Doubt:
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise InvalidInputError("Rating must be between 1 and 5")

        doubt = await self.get_doubt(user_id, doubt_id)
        doubt.rating = rating
        if feedback is not None:
            doubt.feedback = feedback
        return await self.doubts.save(doubt)

    async def stats(self, user_id: str) -> dict:
        """{total, bookmarked, avg_confidence} over a user's records."""
        return await self.doubts.stats(user_id)

    async def delete_doubt(self, user_id: str, doubt_id: str) -> None:
        doubt = await self.get_doubt(user_id, doubt_id)
        await self.doubts.delete(doubt)


async def get_answer_orchestrator(db: AsyncSession) -> AnswerOrchestrator:
    """Build an orchestrator bound to a request-scoped session."""
    return AnswerOrchestrator(
        doubts=DoubtRepository(db),
        retriever=await get_retriever(),
        client=await get_generation_client(),
        frames=FrameRepository(db),
        activity=get_activity_tracker(),
    )
