"""Health check endpoints for Kubernetes."""

import asyncio
from datetime import UTC, datetime

import pytesseract
import redis.asyncio as redis
from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel
from sqlalchemy import text

from edusense.core.config import get_settings
from edusense.db.database import async_session_maker
from edusense.rag.vector_store import get_vector_store

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: str
    version: str
    checks: dict | None = None


# Startup state
_startup_complete = False


def set_startup_complete():
    """Mark startup as complete."""
    global _startup_complete
    _startup_complete = True


def _now() -> str:
    return datetime.now(UTC).isoformat()


async def check_database() -> tuple[bool, str]:
    """Check Postgres connectivity."""
    try:
        async with async_session_maker() as session:
            await session.execute(text("SELECT 1"))
        return True, "healthy"
    except Exception as e:
        return False, f"unhealthy: {e!s}"


async def check_qdrant() -> tuple[bool, str]:
    """Check that the retrieval collection is reachable."""
    info = await get_vector_store().get_collection_info()
    if info is None:
        return False, "unhealthy: collection unavailable"
    return True, f"healthy: {info['points_count'] or 0} points ({info['status']})"


async def check_redis() -> tuple[bool, str]:
    """Check Redis connectivity."""
    settings = get_settings()
    try:
        client = redis.from_url(settings.redis_url, decode_responses=True)
        await client.ping()
        await client.aclose()
        return True, "healthy"
    except Exception as e:
        return False, f"unhealthy: {e!s}"


async def check_tesseract() -> tuple[bool, str]:
    """Check that the OCR binary is installed."""
    settings = get_settings()
    if settings.tesseract_cmd:
        pytesseract.pytesseract.tesseract_cmd = settings.tesseract_cmd
    try:
        version = await asyncio.to_thread(pytesseract.get_tesseract_version)
        return True, f"healthy: {version}"
    except Exception as e:
        return False, f"unhealthy: {e!s}"


@router.get("/health/live", response_model=HealthResponse)
async def liveness():
    """Kubernetes liveness check.

    Returns 200 if the process is alive.
    """
    settings = get_settings()
    return HealthResponse(status="alive", timestamp=_now(), version=settings.app_version)


@router.get("/health/ready", response_model=HealthResponse)
async def readiness():
    """Kubernetes readiness check.

    Database, Qdrant and the OCR binary are required. Redis only backs
    rate limiting, which fails open, so it is reported but not required.
    """
    settings = get_settings()

    db_result, qdrant_result, ocr_result, redis_result = await asyncio.gather(
        check_database(), check_qdrant(), check_tesseract(), check_redis()
    )
    checks = {
        "database": db_result[1],
        "qdrant": qdrant_result[1],
        "tesseract": ocr_result[1],
        "redis": redis_result[1],
    }
    all_healthy = db_result[0] and qdrant_result[0] and ocr_result[0]

    if not all_healthy:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"status": "unhealthy", "checks": checks},
        )

    return HealthResponse(
        status="ready",
        timestamp=_now(),
        version=settings.app_version,
        checks=checks,
    )


@router.get("/health/startup", response_model=HealthResponse)
async def startup():
    """Kubernetes startup check.

    Returns 200 once initialization is complete.
    """
    settings = get_settings()

    if not _startup_complete:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"status": "starting", "message": "Initialization in progress"},
        )

    return HealthResponse(status="started", timestamp=_now(), version=settings.app_version)
