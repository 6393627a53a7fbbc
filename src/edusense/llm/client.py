"""Generation client with ordered model fallback.

Handles answer generation across backends, including:
- An ordered strategy list of (backend, model) targets
- Shared structured-output parsing
- Langfuse observability
- A fixed-shape degraded answer when every target fails
"""

import logging
from dataclasses import dataclass

import httpx
from anthropic import AsyncAnthropic
from langfuse import Langfuse
from openai import AsyncAzureOpenAI, AsyncOpenAI

from edusense.core.config import Settings, get_settings
from edusense.core.exceptions import GenerationError
from edusense.llm.backends import (
    AnthropicBackend,
    AzureOpenAIBackend,
    Completion,
    GenerationBackend,
    OpenAICompatibleBackend,
)
from edusense.llm.parsing import StructuredAnswer, fallback_answer, parse_structured_answer
from edusense.observability.metrics import (
    FALLBACK_ANSWERS,
    record_completion,
    record_generation_error,
    track_generation,
)
from edusense.rag.embedder import Embedder, get_embedder, pseudo_embedding
from edusense.rag.prompt_builder import SYSTEM_PROMPT, build_structured_prompt
from edusense.rag.retriever import RetrievedChunk

logger = logging.getLogger(__name__)

RAW_TEMPERATURE = 0.7
RAW_MAX_TOKENS = 2000


@dataclass
class ModelTarget:
    """One entry of the fallback chain."""

    backend: GenerationBackend
    model: str

    @property
    def label(self) -> str:
        return f"{self.backend.provider}:{self.model}"


class GenerationClient:
    """Generation over an ordered list of model targets.

    Each call walks ``targets`` in order; a failing target is logged and
    the next one tried.
    """

    def __init__(
        self,
        targets: list[ModelTarget],
        embedder: Embedder | None = None,
        langfuse: Langfuse | None = None,
        temperature: float = 0.4,
        max_tokens: int = 2048,
        embedding_dimensions: int = 1536,
    ):
        self.targets = targets
        self.embedder = embedder
        self._langfuse = langfuse
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.embedding_dimensions = embedding_dimensions

    async def _complete_with_target(
        self,
        target: ModelTarget,
        prompt: str,
        *,
        system_prompt: str | None,
        json_mode: bool,
        temperature: float,
        max_tokens: int,
        trace_name: str,
    ) -> Completion:
        """Single backend call wrapped in metrics and a Langfuse generation."""
        generation = None
        if self._langfuse:
            try:
                generation = self._langfuse.start_generation(
                    name=trace_name,
                    model=target.model,
                    input=[
                        {"role": "system", "content": system_prompt or ""},
                        {"role": "user", "content": prompt},
                    ],
                    metadata={"provider": target.backend.provider, "json_mode": json_mode},
                )
            except Exception as e:
                # Tracing must never break generation
                logger.debug(f"Langfuse generation start failed: {e}")

        try:
            async with track_generation(target.backend.provider, target.model):
                completion = await target.backend.complete(
                    prompt,
                    model=target.model,
                    system_prompt=system_prompt,
                    json_mode=json_mode,
                    temperature=temperature,
                    max_tokens=max_tokens,
                )
        except Exception as e:
            record_generation_error(target.backend.provider, target.model)
            if generation:
                generation.update(level="ERROR", status_message=str(e))
                generation.end()
            raise

        record_completion(
            target.backend.provider,
            target.model,
            completion.prompt_tokens,
            completion.completion_tokens,
        )
        if generation:
            generation.update(
                output=completion.content,
                usage_details={
                    "input": completion.prompt_tokens,
                    "output": completion.completion_tokens,
                    "total": completion.total_tokens,
                },
                metadata={
                    "finish_reason": completion.finish_reason,
                    "latency_ms": completion.latency_ms,
                },
            )
            generation.end()

        return completion

    async def _complete(
        self,
        prompt: str,
        *,
        system_prompt: str | None = None,
        json_mode: bool = False,
        temperature: float | None = None,
        max_tokens: int | None = None,
        trace_name: str = "llm-call",
    ) -> Completion:
        """Walk the fallback chain. Raises GenerationError when all targets fail."""
        errors = []
        for target in self.targets:
            try:
                logger.info(f"[Generation] Trying {target.label}")
                return await self._complete_with_target(
                    target,
                    prompt,
                    system_prompt=system_prompt,
                    json_mode=json_mode,
                    temperature=self.temperature if temperature is None else temperature,
                    max_tokens=max_tokens or self.max_tokens,
                    trace_name=trace_name,
                )
            except Exception as e:
                logger.warning(f"[Generation] {target.label} failed: {e}")
                errors.append(f"{target.label}: {e}")

        raise GenerationError(
            "All generation models failed",
            detail="; ".join(errors) or "No generation models configured",
        )

    async def ask_with_context(
        self,
        question: str,
        context: list[RetrievedChunk] | None = None,
    ) -> StructuredAnswer:
        """Generate a structured answer. Never raises.

        Args:
            question: User's question
            context: Retrieved chunks (may be empty)

        Returns:
            Parsed StructuredAnswer, or the fixed fallback answer when every
            model failed
        """
        prompt = build_structured_prompt(question, context or [])

        try:
            completion = await self._complete(
                prompt,
                system_prompt=SYSTEM_PROMPT,
                json_mode=True,
                trace_name="answer-question",
            )
        except GenerationError as e:
            logger.error(f"[Generation] Falling back to degraded answer: {e.detail}")
            FALLBACK_ANSWERS.inc()
            return fallback_answer(question)

        answer = parse_structured_answer(completion.content)
        answer.model = completion.model
        return answer

    async def ask_raw(
        self,
        prompt: str,
        system_prompt: str | None = None,
        temperature: float = RAW_TEMPERATURE,
        max_tokens: int = RAW_MAX_TOKENS,
    ) -> str:
        """Free-form completion text.

        Raises:
            GenerationError: If every model failed
        """
        completion = await self._complete(
            prompt,
            system_prompt=system_prompt,
            temperature=temperature,
            max_tokens=max_tokens,
            trace_name="raw-completion",
        )
        return completion.content

    async def generate_embedding(self, text: str) -> list[float]:
        """Embed text, degrading to the pseudo-embedding without a provider."""
        if self.embedder is None:
            return pseudo_embedding(text, self.embedding_dimensions)
        return await self.embedder.embed_text(text)

    async def shutdown(self) -> None:
        """Cleanup resources."""
        if self._langfuse:
            self._langfuse.flush()

        closed = set()
        for target in self.targets:
            if id(target.backend) not in closed:
                closed.add(id(target.backend))
                await target.backend.close()


def build_backends(settings: Settings) -> dict[str, GenerationBackend]:
    """Create one backend per configured provider."""
    timeout = httpx.Timeout(settings.generation_timeout, connect=10.0)
    backends: dict[str, GenerationBackend] = {}

    if settings.openai_api_key:
        backends["openai"] = OpenAICompatibleBackend(
            AsyncOpenAI(
                api_key=settings.openai_api_key,
                base_url=settings.openai_base_url,
                timeout=timeout,
            )
        )

    if settings.azure_openai_endpoint and settings.azure_openai_api_key:
        backends["azure"] = AzureOpenAIBackend(
            AsyncAzureOpenAI(
                azure_endpoint=settings.azure_openai_endpoint,
                api_key=settings.azure_openai_api_key,
                api_version=settings.azure_openai_api_version,
                timeout=timeout,
            )
        )

    if settings.anthropic_api_key:
        backends["anthropic"] = AnthropicBackend(
            AsyncAnthropic(api_key=settings.anthropic_api_key, timeout=timeout)
        )

    return backends


def build_targets(
    model_specs: list[str], backends: dict[str, GenerationBackend]
) -> list[ModelTarget]:
    """Resolve "provider:model" specs against the available backends.

    Specs whose provider has no configured backend are skipped with a
    warning. An entry without a provider prefix defaults to "openai".
    """
    targets = []
    for spec in model_specs:
        provider, sep, model = spec.partition(":")
        if not sep:
            provider, model = "openai", spec

        backend = backends.get(provider)
        if backend is None:
            logger.warning(f"[Generation] No backend configured for '{spec}', skipping")
            continue
        targets.append(ModelTarget(backend=backend, model=model))

    return targets


# Global client instance
_client: GenerationClient | None = None


async def get_generation_client() -> GenerationClient:
    """Get or create the global generation client."""
    global _client
    if _client is None:
        settings = get_settings()

        langfuse = None
        if settings.langfuse_public_key and settings.langfuse_secret_key:
            langfuse = Langfuse(
                public_key=settings.langfuse_public_key,
                secret_key=settings.langfuse_secret_key,
                host=settings.langfuse_host,
            )

        targets = build_targets(settings.generation_models, build_backends(settings))
        if not targets:
            logger.warning("No generation models available; answers will use the fallback")

        _client = GenerationClient(
            targets=targets,
            embedder=await get_embedder(),
            langfuse=langfuse,
            temperature=settings.generation_temperature,
            max_tokens=settings.generation_max_tokens,
            embedding_dimensions=settings.embedding_dimensions,
        )
    return _client


async def shutdown_generation_client() -> None:
    """Shutdown the global client."""
    global _client
    if _client:
        await _client.shutdown()
        _client = None
