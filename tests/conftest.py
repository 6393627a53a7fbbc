"""Pytest configuration and fixtures."""

import os

import pytest

# Settings are cached on first use, so the environment is set at import time
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("OPENAI_API_KEY", "")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("CONCEPT_EXTRACTION", "keyword")

from tests.fakes.fake_repos import InMemoryDoubtRepository, InMemoryFrameRepository  # noqa: E402
from tests.fakes.fake_services import (  # noqa: E402
    FakeConceptExtractor,
    FakeGenerationClient,
    FakeIndexer,
    FakeOcrEngine,
    FakeRasterizer,
    FakeRetriever,
    FakeStorage,
)

@pytest.fixture(scope="session", autouse=True)
def setup_test_env():
    """Set up test environment variables."""
    os.environ["ENVIRONMENT"] = "test"
    os.environ["JWT_SECRET"] = "test-secret"


@pytest.fixture
def frame_repo():
    return InMemoryFrameRepository()


@pytest.fixture
def doubt_repo():
    return InMemoryDoubtRepository()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def ocr():
    return FakeOcrEngine()


@pytest.fixture
def rasterizer():
    return FakeRasterizer()


@pytest.fixture
def concepts():
    return FakeConceptExtractor()


@pytest.fixture
def indexer():
    return FakeIndexer()


@pytest.fixture
def retriever():
    return FakeRetriever()


@pytest.fixture
def generation_client():
    return FakeGenerationClient()
