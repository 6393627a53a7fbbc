"""Tests for the readiness checks."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from edusense.api.main import app
from edusense.api.routes import health


def _store(info):
    store = MagicMock()
    store.get_collection_info = AsyncMock(return_value=info)
    return store


class TestQdrantCheck:
    @pytest.mark.asyncio
    async def test_healthy_collection(self):
        info = {"name": "academic_chunks", "points_count": 12, "status": "green"}
        with patch.object(health, "get_vector_store", return_value=_store(info)):
            ok, message = await health.check_qdrant()

        assert ok
        assert message == "healthy: 12 points (green)"

    @pytest.mark.asyncio
    async def test_unavailable_collection(self):
        with patch.object(health, "get_vector_store", return_value=_store(None)):
            ok, message = await health.check_qdrant()

        assert not ok
        assert "collection unavailable" in message


def _patch_checks(qdrant_ok: bool, redis_ok: bool = True):
    return (
        patch.object(health, "check_database", AsyncMock(return_value=(True, "healthy"))),
        patch.object(
            health,
            "check_qdrant",
            AsyncMock(return_value=(qdrant_ok, "healthy" if qdrant_ok else "unhealthy")),
        ),
        patch.object(health, "check_tesseract", AsyncMock(return_value=(True, "healthy"))),
        patch.object(
            health,
            "check_redis",
            AsyncMock(return_value=(redis_ok, "healthy" if redis_ok else "unhealthy")),
        ),
    )


def test_ready_without_redis():
    db, qdrant, ocr, cache = _patch_checks(qdrant_ok=True, redis_ok=False)
    with db, qdrant, ocr, cache:
        response = TestClient(app).get("/health/ready")

    assert response.status_code == 200
    assert response.json()["checks"]["redis"] == "unhealthy"


def test_not_ready_without_qdrant():
    db, qdrant, ocr, cache = _patch_checks(qdrant_ok=False)
    with db, qdrant, ocr, cache:
        response = TestClient(app).get("/health/ready")

    assert response.status_code == 503
    assert response.json()["detail"]["checks"]["qdrant"] == "unhealthy"
