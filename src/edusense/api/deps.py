"""FastAPI dependency injection.

Provides common dependencies for API routes.
"""

from typing import Annotated

from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from edusense.answers.orchestrator import AnswerOrchestrator, get_answer_orchestrator
from edusense.auth.middleware import UserClaims, get_current_user
from edusense.core.config import Settings, get_settings
from edusense.core.exceptions import (
    CollaboratorError,
    EduSenseError,
    GenerationError,
    InvalidInputError,
    NotFoundError,
)
from edusense.core.rate_limiting import QuestionRateLimiter, RateLimitExceeded, get_rate_limiter
from edusense.db.database import get_db
from edusense.ingestion.orchestrator import IngestionOrchestrator, get_ingestion_orchestrator

# Type aliases for cleaner signatures
CurrentUser = Annotated[UserClaims, Depends(get_current_user)]
DB = Annotated[AsyncSession, Depends(get_db)]
RateLimiter = Annotated[QuestionRateLimiter, Depends(get_rate_limiter)]
AppSettings = Annotated[Settings, Depends(get_settings)]


# Orchestrator dependencies
async def get_ingestion(db: DB) -> IngestionOrchestrator:
    """Get an ingestion orchestrator for this request."""
    return await get_ingestion_orchestrator(db)


async def get_answers(db: DB) -> AnswerOrchestrator:
    """Get an answer orchestrator for this request."""
    return await get_answer_orchestrator(db)


Ingestion = Annotated[IngestionOrchestrator, Depends(get_ingestion)]
Answers = Annotated[AnswerOrchestrator, Depends(get_answers)]


async def enforce_question_limit(user: CurrentUser, rate_limiter: RateLimiter) -> None:
    """Per-user RPM guard for generation endpoints."""
    try:
        await rate_limiter.check(user.sub)
    except RateLimitExceeded as e:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=str(e),
            headers={
                "Retry-After": str(e.retry_after),
                "X-RateLimit-Limit": str(e.limit),
                "X-RateLimit-Remaining": str(e.remaining),
            },
        ) from None


QuestionLimit = Depends(enforce_question_limit)


_STATUS_BY_ERROR = (
    (InvalidInputError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (GenerationError, status.HTTP_502_BAD_GATEWAY),
    (CollaboratorError, status.HTTP_502_BAD_GATEWAY),
)


def to_http_exception(error: EduSenseError) -> HTTPException:
    """Translate a domain error into the HTTP error the client sees."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            break
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    if isinstance(error, NotFoundError):
        detail = error.message
    elif error.detail:
        detail = f"{error.message}: {error.detail}"
    else:
        detail = error.message
    return HTTPException(status_code=status_code, detail=detail)
