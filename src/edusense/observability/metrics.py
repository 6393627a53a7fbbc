"""Prometheus metrics for the ingestion and answer pipelines.

Exposed at /metrics through ``prometheus_client.make_asgi_app``.
"""

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from prometheus_client import Counter, Gauge, Histogram

# Generation
GENERATION_ATTEMPTS = Counter(
    "edusense_generation_attempts_total",
    "Generation calls per model target",
    ["provider", "model", "outcome"],  # outcome: success, error
)

GENERATION_LATENCY = Histogram(
    "edusense_generation_duration_seconds",
    "Generation latency in seconds",
    ["provider", "model"],
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0],
)

TOKENS_TOTAL = Counter(
    "edusense_tokens_total",
    "Tokens consumed",
    ["provider", "model", "token_type"],  # token_type: input, output
)

FALLBACK_ANSWERS = Counter(
    "edusense_fallback_answers_total",
    "Answers degraded to the fixed fallback after every model failed",
)

ACTIVE_GENERATIONS = Gauge(
    "edusense_active_generations",
    "Currently running generation calls",
    ["provider"],
)

# Ingestion
FRAMES_PROCESSED = Counter(
    "edusense_frames_processed_total",
    "Frames that reached a terminal status",
    ["source_type", "status"],
)

INGESTION_DURATION = Histogram(
    "edusense_ingestion_duration_seconds",
    "Time from processing start to terminal status",
    ["source_type"],
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0],
)

# Answers
ANSWERS_TOTAL = Counter(
    "edusense_answers_total",
    "Answer records persisted",
    ["status"],
)

RETRIEVED_CHUNKS = Histogram(
    "edusense_retrieved_chunks",
    "Context chunks retrieved per question",
    buckets=[0, 1, 2, 3, 4, 5, 10],
)

RETRIEVAL_SCORE = Histogram(
    "edusense_retrieval_avg_score",
    "Average similarity of retrieved context per question",
    buckets=[0.5, 0.6, 0.7, 0.8, 0.9, 1.0],
)


def record_completion(provider: str, model: str, prompt_tokens: int, completion_tokens: int) -> None:
    """Count a successful generation and its token usage."""
    GENERATION_ATTEMPTS.labels(provider, model, "success").inc()
    TOKENS_TOTAL.labels(provider, model, "input").inc(prompt_tokens)
    TOKENS_TOTAL.labels(provider, model, "output").inc(completion_tokens)


def record_generation_error(provider: str, model: str) -> None:
    GENERATION_ATTEMPTS.labels(provider, model, "error").inc()


@asynccontextmanager
async def track_generation(provider: str, model: str) -> AsyncGenerator[None, None]:
    """Context manager to track generation duration.

    Usage:
        async with track_generation("openai", "llama-3.3-70b-versatile"):
            completion = await backend.complete(...)
    """
    ACTIVE_GENERATIONS.labels(provider).inc()
    start_time = time.perf_counter()

    try:
        yield
    finally:
        ACTIVE_GENERATIONS.labels(provider).dec()
        GENERATION_LATENCY.labels(provider, model).observe(time.perf_counter() - start_time)


def record_frame_terminal(source_type: str, status: str, duration_seconds: float) -> None:
    """Count a frame reaching completed/failed."""
    FRAMES_PROCESSED.labels(source_type, status).inc()
    INGESTION_DURATION.labels(source_type).observe(duration_seconds)


def record_retrieval(stats: dict) -> None:
    """Observe retrieval statistics (see ``retriever.get_stats``)."""
    RETRIEVED_CHUNKS.observe(stats.get("count", 0))
    if stats.get("count"):
        RETRIEVAL_SCORE.observe(stats.get("avg_score", 0.0))
