"""Answer record endpoints: history, bookmarks, ratings, diagrams."""

import logging

from fastapi import APIRouter, Query, status
from pydantic import BaseModel

from edusense.api.deps import Answers, CurrentUser, QuestionLimit, to_http_exception
from edusense.core.exceptions import EduSenseError
from edusense.db.models import Doubt

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/doubts")


# ============================================
# Request/Response Models
# ============================================


class DoubtResponse(BaseModel):
    """A persisted answer record."""

    id: str
    question: str
    frame_id: str | None = None
    status: str
    explanation: str | None = None
    steps: list[str] = []
    final_answer: str | None = None
    confidence: float
    meta: dict = {}
    follow_up_questions: dict = {}
    mermaid_code: str | None = None
    code: dict | None = None
    retrieved_context: list[dict] = []
    subject: str
    tags: list[str] = []
    is_bookmarked: bool = False
    rating: int | None = None
    feedback: str | None = None
    processing_time_ms: int | None = None
    model_used: str | None = None
    created_at: str | None = None


class DoubtSummary(BaseModel):
    """History list entry."""

    id: str
    question: str
    final_answer: str | None = None
    subject: str
    status: str
    confidence: float
    is_bookmarked: bool = False
    created_at: str | None = None


class DoubtListResponse(BaseModel):
    doubts: list[DoubtSummary]
    count: int
    total: int


class DoubtStatsResponse(BaseModel):
    total: int
    bookmarked: int
    avg_confidence: float


class BookmarkResponse(BaseModel):
    id: str
    is_bookmarked: bool


class RatingRequest(BaseModel):
    rating: int
    feedback: str | None = None


class DiagramRequest(BaseModel):
    kind: str = "flowchart"


class DiagramResponse(BaseModel):
    id: str
    kind: str
    mermaid_code: str


def _created_at(doubt: Doubt) -> str | None:
    return doubt.created_at.isoformat() if doubt.created_at else None


def doubt_response(doubt: Doubt) -> DoubtResponse:
    """Convert a Doubt row to its API shape."""
    return DoubtResponse(
        id=doubt.id,
        question=doubt.question,
        frame_id=doubt.frame_id,
        status=doubt.status.value,
        explanation=doubt.explanation,
        steps=doubt.steps or [],
        final_answer=doubt.final_answer,
        confidence=doubt.confidence or 0.0,
        meta=doubt.meta or {},
        follow_up_questions=doubt.follow_up_questions or {},
        mermaid_code=doubt.mermaid_code,
        code=doubt.code,
        retrieved_context=doubt.retrieved_context or [],
        subject=doubt.subject,
        tags=doubt.tags or [],
        is_bookmarked=bool(doubt.is_bookmarked),
        rating=doubt.rating,
        feedback=doubt.feedback,
        processing_time_ms=doubt.processing_time_ms,
        model_used=doubt.model_used,
        created_at=_created_at(doubt),
    )


# ============================================
# Endpoints
# ============================================


@router.get("", response_model=DoubtListResponse)
async def list_doubts(
    user: CurrentUser,
    answers: Answers,
    limit: int = Query(20),
    offset: int = Query(0),
    subject: str | None = Query(None),
    bookmarked: bool | None = Query(None),
):
    """List the user's answer records, newest first."""
    try:
        doubts, total = await answers.list_doubts(
            user.sub, limit=limit, offset=offset, subject=subject, bookmarked=bookmarked
        )
    except EduSenseError as e:
        raise to_http_exception(e) from None

    return DoubtListResponse(
        doubts=[
            DoubtSummary(
                id=d.id,
                question=d.question,
                final_answer=d.final_answer,
                subject=d.subject,
                status=d.status.value,
                confidence=d.confidence or 0.0,
                is_bookmarked=bool(d.is_bookmarked),
                created_at=_created_at(d),
            )
            for d in doubts
        ],
        count=len(doubts),
        total=total,
    )


@router.get("/stats", response_model=DoubtStatsResponse)
async def doubt_stats(user: CurrentUser, answers: Answers):
    stats = await answers.stats(user.sub)
    return DoubtStatsResponse(**stats)


@router.get("/{doubt_id}", response_model=DoubtResponse)
async def get_doubt(doubt_id: str, user: CurrentUser, answers: Answers):
    try:
        doubt = await answers.get_doubt(user.sub, doubt_id)
    except EduSenseError as e:
        raise to_http_exception(e) from None
    return doubt_response(doubt)


@router.post("/{doubt_id}/bookmark", response_model=BookmarkResponse)
async def toggle_bookmark(doubt_id: str, user: CurrentUser, answers: Answers):
    try:
        doubt = await answers.toggle_bookmark(user.sub, doubt_id)
    except EduSenseError as e:
        raise to_http_exception(e) from None
    return BookmarkResponse(id=doubt.id, is_bookmarked=doubt.is_bookmarked)


@router.post("/{doubt_id}/rating", response_model=DoubtResponse)
async def rate_doubt(
    doubt_id: str,
    body: RatingRequest,
    user: CurrentUser,
    answers: Answers,
):
    """Rate an answer 1-5 with optional free-text feedback."""
    try:
        doubt = await answers.rate(user.sub, doubt_id, body.rating, body.feedback)
    except EduSenseError as e:
        raise to_http_exception(e) from None
    return doubt_response(doubt)


@router.post(
    "/{doubt_id}/diagram",
    response_model=DiagramResponse,
    dependencies=[QuestionLimit],
)
async def regenerate_diagram(
    doubt_id: str,
    body: DiagramRequest,
    user: CurrentUser,
    answers: Answers,
):
    """Generate a fresh diagram of the requested kind for an answer."""
    try:
        markup = await answers.regenerate_diagram(user.sub, doubt_id, body.kind)
    except EduSenseError as e:
        raise to_http_exception(e) from None
    return DiagramResponse(id=doubt_id, kind=body.kind, mermaid_code=markup)


@router.delete("/{doubt_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_doubt(doubt_id: str, user: CurrentUser, answers: Answers):
    try:
        await answers.delete_doubt(user.sub, doubt_id)
    except EduSenseError as e:
        raise to_http_exception(e) from None
