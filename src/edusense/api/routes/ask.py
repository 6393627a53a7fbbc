"""Question answering endpoints."""

import logging

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from edusense.answers.orchestrator import AskOptions
from edusense.api.deps import Answers, CurrentUser, QuestionLimit, to_http_exception
from edusense.api.routes.doubts import DoubtResponse, doubt_response
from edusense.core.exceptions import EduSenseError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ask", dependencies=[QuestionLimit])


class AskRequest(BaseModel):
    """Text question."""

    question: str
    subject: str | None = None
    tags: list[str] = Field(default_factory=list)
    top_k: int = Field(default=5, ge=1, le=20)


class FrameQuestionRequest(BaseModel):
    """Question about an uploaded frame. Without a question the frame is explained."""

    frame_id: str
    question: str | None = None
    subject: str | None = None
    top_k: int = Field(default=5, ge=1, le=20)


class StudyMaterialRequest(BaseModel):
    topic: str
    kind: str = "notes"


class StudyMaterialResponse(BaseModel):
    topic: str
    kind: str
    content: str
    data: dict | list | None = None


def _internal_error(e: Exception) -> HTTPException:
    logger.exception("[Ask] Unexpected failure")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to process question: {e!s}",
    )


@router.post("", response_model=DoubtResponse, status_code=status.HTTP_201_CREATED)
async def ask(body: AskRequest, user: CurrentUser, answers: Answers):
    """Answer a question with retrieved context and store the record."""
    options = AskOptions(subject=body.subject, top_k=body.top_k, tags=body.tags)
    try:
        doubt = await answers.ask(user.sub, body.question, options)
    except EduSenseError as e:
        raise to_http_exception(e) from None
    except Exception as e:
        raise _internal_error(e) from None
    return doubt_response(doubt)


@router.post("/frame", response_model=DoubtResponse, status_code=status.HTTP_201_CREATED)
async def ask_about_frame(body: FrameQuestionRequest, user: CurrentUser, answers: Answers):
    """Answer a question about the text extracted from an uploaded frame."""
    options = AskOptions(subject=body.subject, top_k=body.top_k)
    try:
        doubt = await answers.ask_about_frame(user.sub, body.frame_id, body.question, options)
    except EduSenseError as e:
        raise to_http_exception(e) from None
    except Exception as e:
        raise _internal_error(e) from None
    return doubt_response(doubt)


@router.post("/study-material", response_model=StudyMaterialResponse)
async def study_material(body: StudyMaterialRequest, user: CurrentUser, answers: Answers):
    """Notes, flashcards, an analogy or a quiz for a topic."""
    try:
        result = await answers.study_material(body.topic, body.kind)
    except EduSenseError as e:
        raise to_http_exception(e) from None
    return StudyMaterialResponse(**result)
