"""Generation backends.

One ``GenerationBackend`` interface with a variant per transport. Backends
only move text: prompt in, completion text out. Parsing and model fallback
live in the client.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass

from anthropic import AsyncAnthropic
from openai import AsyncAzureOpenAI, AsyncOpenAI

from edusense.core.exceptions import GenerationError


@dataclass
class Completion:
    """Raw completion returned by a backend."""

    content: str
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    latency_ms: float = 0.0
    finish_reason: str | None = None


class GenerationBackend(ABC):
    """Base class for text generation transports."""

    provider: str = "unknown"

    @abstractmethod
    async def complete(
        self,
        prompt: str,
        *,
        model: str,
        system_prompt: str | None = None,
        json_mode: bool = False,
        temperature: float = 0.4,
        max_tokens: int = 2048,
    ) -> Completion:
        """Send one prompt and return the completion text."""

    async def close(self) -> None:
        """Release network resources."""


def _uses_completion_tokens(model: str) -> bool:
    # Reasoning models reject temperature/max_tokens
    return any(x in model.lower() for x in ["gpt-5", "o1", "o3", "o4"])


class OpenAICompatibleBackend(GenerationBackend):
    """Chat completions over the OpenAI API shape.

    Covers OpenAI itself and OpenAI-compatible providers (Groq, local
    gateways) through ``base_url``.
    """

    provider = "openai"

    def __init__(self, client: AsyncOpenAI):
        self.client = client

    async def complete(
        self,
        prompt: str,
        *,
        model: str,
        system_prompt: str | None = None,
        json_mode: bool = False,
        temperature: float = 0.4,
        max_tokens: int = 2048,
    ) -> Completion:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        create_params = {
            "model": model,
            "messages": messages,
        }
        if not _uses_completion_tokens(model):
            create_params["temperature"] = temperature
            create_params["max_tokens"] = max_tokens
        else:
            create_params["max_completion_tokens"] = max_tokens
        if json_mode:
            create_params["response_format"] = {"type": "json_object"}

        start_time = time.perf_counter()
        response = await self.client.chat.completions.create(**create_params)
        latency_ms = (time.perf_counter() - start_time) * 1000

        if not response.choices:
            raise GenerationError(f"Empty response from {self.provider}:{model}")

        choice = response.choices[0]
        content = choice.message.content or ""
        if not content.strip():
            raise GenerationError(f"Empty response from {self.provider}:{model}")

        usage = response.usage
        return Completion(
            content=content,
            model=response.model or model,
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
            total_tokens=usage.total_tokens if usage else 0,
            latency_ms=latency_ms,
            finish_reason=choice.finish_reason,
        )

    async def close(self) -> None:
        await self.client.close()


class AzureOpenAIBackend(OpenAICompatibleBackend):
    """Azure OpenAI deployments; ``model`` is the deployment name."""

    provider = "azure"

    def __init__(self, client: AsyncAzureOpenAI):
        super().__init__(client)


class AnthropicBackend(GenerationBackend):
    """Anthropic Messages API."""

    provider = "anthropic"

    def __init__(self, client: AsyncAnthropic):
        self.client = client

    async def complete(
        self,
        prompt: str,
        *,
        model: str,
        system_prompt: str | None = None,
        json_mode: bool = False,
        temperature: float = 0.4,
        max_tokens: int = 2048,
    ) -> Completion:
        create_params = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        system = system_prompt or ""
        if json_mode:
            # No native JSON mode
            system = f"{system}\n\nRespond with a single JSON object only.".strip()
        if system:
            create_params["system"] = system

        start_time = time.perf_counter()
        response = await self.client.messages.create(**create_params)
        latency_ms = (time.perf_counter() - start_time) * 1000

        content = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        if not content.strip():
            raise GenerationError(f"Empty response from anthropic:{model}")

        usage = response.usage
        return Completion(
            content=content,
            model=response.model or model,
            prompt_tokens=usage.input_tokens,
            completion_tokens=usage.output_tokens,
            total_tokens=usage.input_tokens + usage.output_tokens,
            latency_ms=latency_ms,
            finish_reason=response.stop_reason,
        )

    async def close(self) -> None:
        await self.client.close()
