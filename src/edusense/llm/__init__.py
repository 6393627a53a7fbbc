"""Generation package.

Components:
- GenerationBackend: transport interface (OpenAI-compatible, Azure OpenAI, Anthropic)
- GenerationClient: ordered model fallback over backends
- parse_structured_answer: shared JSON-with-fallback parser
"""

from edusense.llm.backends import (
    AnthropicBackend,
    AzureOpenAIBackend,
    Completion,
    GenerationBackend,
    OpenAICompatibleBackend,
)
from edusense.llm.client import (
    GenerationClient,
    ModelTarget,
    get_generation_client,
    shutdown_generation_client,
)
from edusense.llm.parsing import (
    StructuredAnswer,
    fallback_answer,
    normalize_confidence,
    parse_structured_answer,
)

__all__ = [
    "AnthropicBackend",
    "AzureOpenAIBackend",
    "Completion",
    "GenerationBackend",
    "GenerationClient",
    "ModelTarget",
    "OpenAICompatibleBackend",
    "StructuredAnswer",
    "fallback_answer",
    "get_generation_client",
    "normalize_confidence",
    "parse_structured_answer",
    "shutdown_generation_client",
]
