"""Tests for the generation client fallback chain."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from edusense.core.exceptions import GenerationError
from edusense.llm.backends import AnthropicBackend, Completion, GenerationBackend
from edusense.llm.client import GenerationClient, ModelTarget, build_targets
from edusense.llm.parsing import FALLBACK_CONFIDENCE

ANSWER_JSON = json.dumps(
    {
        "explanation": "Photosynthesis turns light into chemical energy.",
        "steps": ["Step 1: Light is absorbed", "Step 2: Glucose is made"],
        "finalAnswer": "Plants make glucose from light, water and CO2.",
        "confidence": 0.88,
        "meta": {"subject": "Biology", "topic": "Photosynthesis"},
    }
)


class ScriptedBackend(GenerationBackend):
    """Backend that replays a list of outcomes, one per call."""

    def __init__(self, provider: str, outcomes: list):
        self.provider = provider
        self.outcomes = list(outcomes)
        self.calls: list[dict] = []
        self.closed = False

    async def complete(self, prompt, *, model, **kwargs) -> Completion:
        self.calls.append({"prompt": prompt, "model": model, **kwargs})
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return Completion(content=outcome, model=model, prompt_tokens=10, completion_tokens=5)

    async def close(self) -> None:
        self.closed = True


def _client(*targets: tuple[ScriptedBackend, str], langfuse=None) -> GenerationClient:
    return GenerationClient(
        targets=[ModelTarget(backend=b, model=m) for b, m in targets],
        langfuse=langfuse,
        embedding_dimensions=8,
    )


class TestAskWithContext:
    """Structured answers over the fallback chain."""

    @pytest.mark.asyncio
    async def test_first_target_succeeds(self):
        primary = ScriptedBackend("openai", [ANSWER_JSON])
        secondary = ScriptedBackend("anthropic", [ANSWER_JSON])
        client = _client((primary, "llama-3.3-70b"), (secondary, "claude-sonnet"))

        answer = await client.ask_with_context("How do plants make food?")

        assert answer.final_answer.startswith("Plants make glucose")
        assert answer.confidence == 0.88
        assert answer.model == "llama-3.3-70b"
        assert len(primary.calls) == 1
        assert primary.calls[0]["json_mode"] is True
        assert secondary.calls == []

    @pytest.mark.asyncio
    async def test_falls_through_to_next_target(self):
        primary = ScriptedBackend("openai", [RuntimeError("rate limited")])
        secondary = ScriptedBackend("anthropic", [ANSWER_JSON])
        client = _client((primary, "llama-3.3-70b"), (secondary, "claude-sonnet"))

        answer = await client.ask_with_context("How do plants make food?")

        assert answer.model == "claude-sonnet"
        assert not answer.is_fallback
        assert len(secondary.calls) == 1

    @pytest.mark.asyncio
    async def test_all_targets_fail_returns_fallback(self):
        client = _client(
            (ScriptedBackend("openai", [RuntimeError("down")]), "a"),
            (ScriptedBackend("anthropic", [GenerationError("empty")]), "b"),
        )

        answer = await client.ask_with_context("What is entropy?")

        assert answer.is_fallback
        assert answer.confidence == FALLBACK_CONFIDENCE
        assert "What is entropy?" in answer.final_answer

    @pytest.mark.asyncio
    async def test_no_targets_returns_fallback(self):
        answer = await _client().ask_with_context("Anything?")
        assert answer.is_fallback

    @pytest.mark.asyncio
    async def test_context_is_rendered_into_prompt(self):
        backend = ScriptedBackend("openai", [ANSWER_JSON])
        client = _client((backend, "m"))

        await client.ask_with_context(
            "Why?", [{"text": "Chlorophyll absorbs red and blue light.", "score": 0.8}]
        )

        assert "[1] Chlorophyll absorbs red and blue light." in backend.calls[0]["prompt"]

    @pytest.mark.asyncio
    async def test_plain_text_output_is_structured(self):
        backend = ScriptedBackend("openai", ["1. Absorb light\n2. Make sugar"])
        answer = await _client((backend, "m")).ask_with_context("How?")

        assert answer.steps == ["Absorb light", "Make sugar"]
        assert answer.model == "m"


class TestAskRaw:
    @pytest.mark.asyncio
    async def test_returns_text_with_raw_parameters(self):
        backend = ScriptedBackend("openai", ["# Notes"])
        client = _client((backend, "m"))

        content = await client.ask_raw("Write notes", system_prompt="sys")

        assert content == "# Notes"
        call = backend.calls[0]
        assert call["json_mode"] is False
        assert call["temperature"] == 0.7
        assert call["max_tokens"] == 2000
        assert call["system_prompt"] == "sys"

    @pytest.mark.asyncio
    async def test_raises_when_all_fail(self):
        client = _client(
            (ScriptedBackend("openai", [RuntimeError("a down")]), "a"),
            (ScriptedBackend("azure", [RuntimeError("b down")]), "b"),
        )

        with pytest.raises(GenerationError) as exc_info:
            await client.ask_raw("prompt")

        assert "openai:a: a down" in exc_info.value.detail
        assert "azure:b: b down" in exc_info.value.detail


class TestObservability:
    @pytest.mark.asyncio
    async def test_langfuse_generation_ended_on_success_and_error(self):
        langfuse = MagicMock()
        generation = langfuse.start_generation.return_value
        client = _client(
            (ScriptedBackend("openai", [RuntimeError("boom")]), "a"),
            (ScriptedBackend("anthropic", ["text"]), "b"),
            langfuse=langfuse,
        )

        await client.ask_raw("prompt")

        assert langfuse.start_generation.call_count == 2
        assert generation.end.call_count == 2
        generation.update.assert_any_call(level="ERROR", status_message="boom")

    @pytest.mark.asyncio
    async def test_langfuse_failure_does_not_break_generation(self):
        langfuse = MagicMock()
        langfuse.start_generation.side_effect = RuntimeError("tracing down")
        client = _client((ScriptedBackend("openai", ["ok"]), "m"), langfuse=langfuse)

        assert await client.ask_raw("prompt") == "ok"


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_shutdown_closes_each_backend_once(self):
        shared = ScriptedBackend("openai", [])
        client = _client((shared, "a"), (shared, "b"))
        langfuse = MagicMock()
        client._langfuse = langfuse

        await client.shutdown()

        assert shared.closed
        langfuse.flush.assert_called_once()

    @pytest.mark.asyncio
    async def test_generate_embedding_without_embedder(self):
        vector = await _client().generate_embedding("hello")
        assert len(vector) == 8

    @pytest.mark.asyncio
    async def test_generate_embedding_with_embedder(self):
        embedder = MagicMock()
        embedder.embed_text = AsyncMock(return_value=[0.1, 0.2])
        client = GenerationClient(targets=[], embedder=embedder)

        assert await client.generate_embedding("hello") == [0.1, 0.2]


def test_build_targets():
    openai = ScriptedBackend("openai", [])
    anthropic = ScriptedBackend("anthropic", [])

    targets = build_targets(
        ["openai:llama-3.3-70b", "gpt-4o-mini", "gemini:flash", "anthropic:claude-sonnet"],
        {"openai": openai, "anthropic": anthropic},
    )

    assert [t.label for t in targets] == [
        "openai:llama-3.3-70b",
        "openai:gpt-4o-mini",
        "anthropic:claude-sonnet",
    ]


@pytest.mark.asyncio
async def test_anthropic_backend_json_mode_sets_system():
    sdk = MagicMock()
    block = MagicMock(type="text", text='{"finalAnswer": "x"}')
    sdk.messages.create = AsyncMock(
        return_value=MagicMock(
            content=[block],
            model="claude-sonnet",
            usage=MagicMock(input_tokens=3, output_tokens=4),
            stop_reason="end_turn",
        )
    )

    completion = await AnthropicBackend(sdk).complete(
        "prompt", model="claude-sonnet", system_prompt="Be brief.", json_mode=True
    )

    assert completion.content == '{"finalAnswer": "x"}'
    assert completion.total_tokens == 7
    params = sdk.messages.create.await_args.kwargs
    assert params["system"].startswith("Be brief.")
    assert "JSON object only" in params["system"]


@pytest.mark.asyncio
async def test_anthropic_backend_empty_response_raises():
    sdk = MagicMock()
    sdk.messages.create = AsyncMock(
        return_value=MagicMock(
            content=[], model="m", usage=MagicMock(input_tokens=1, output_tokens=0)
        )
    )

    with pytest.raises(GenerationError):
        await AnthropicBackend(sdk).complete("prompt", model="m")
