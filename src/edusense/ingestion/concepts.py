"""Concept extraction strategies for OCR text.

Extraction is best-effort: callers substitute ``ConceptResult.unknown()``
when a strategy raises.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from edusense.core.config import get_settings
from edusense.core.subjects import KeywordSubjectDetector
from edusense.llm.client import GenerationClient, get_generation_client
from edusense.llm.parsing import load_json_payload
from edusense.rag.prompt_builder import build_concept_prompt

logger = logging.getLogger(__name__)

DIFFICULTIES = ("easy", "medium", "hard")
MAX_TAGS = 5
TAGS_PER_SUBJECT = 2
EASY_WORD_LIMIT = 50
HARD_WORD_LIMIT = 200


@dataclass
class ConceptResult:
    tags: list[str] = field(default_factory=list)
    difficulty: str = "unknown"
    summary: str = ""
    topics: list[str] = field(default_factory=list)

    @classmethod
    def unknown(cls) -> "ConceptResult":
        return cls()


class ConceptExtractor(ABC):
    """Derives tags and a difficulty from extracted text."""

    @abstractmethod
    async def extract(self, text: str) -> ConceptResult:
        """Extract concepts from text."""


def _dedupe(items: list[str]) -> list[str]:
    seen = []
    for item in items:
        if item and item not in seen:
            seen.append(item)
    return seen


class KeywordConceptExtractor(ConceptExtractor):
    """Keyword-list heuristic. Approximate; word count decides difficulty."""

    def __init__(self, detector: KeywordSubjectDetector | None = None):
        self.detector = detector or KeywordSubjectDetector()

    def extract_sync(self, text: str) -> ConceptResult:
        text = text or ""
        matches = self.detector.matches(text)

        tags = []
        for hits in matches.values():
            tags.extend(hits[:TAGS_PER_SUBJECT])

        word_count = len(text.split())
        if word_count < EASY_WORD_LIMIT:
            difficulty = "easy"
        elif word_count > HARD_WORD_LIMIT:
            difficulty = "hard"
        else:
            difficulty = "medium"

        return ConceptResult(
            tags=_dedupe(tags)[:MAX_TAGS],
            difficulty=difficulty,
            summary=text[:100] + "..." if text else "",
            topics=list(matches),
        )

    async def extract(self, text: str) -> ConceptResult:
        return self.extract_sync(text)


class LLMConceptExtractor(ConceptExtractor):
    """Asks the generation chain for concepts; falls back to keywords."""

    def __init__(
        self,
        client: GenerationClient,
        fallback: KeywordConceptExtractor | None = None,
    ):
        self.client = client
        self.fallback = fallback or KeywordConceptExtractor()

    async def extract(self, text: str) -> ConceptResult:
        if not text or not text.strip():
            return self.fallback.extract_sync(text)

        try:
            response = await self.client.ask_raw(build_concept_prompt(text))
        except Exception as e:
            logger.warning(f"[Concepts] LLM extraction failed, using keywords: {e}")
            return self.fallback.extract_sync(text)

        data = load_json_payload(response)
        if not isinstance(data, dict):
            logger.warning("[Concepts] No JSON in response, using keywords")
            return self.fallback.extract_sync(text)

        tags = data.get("conceptTags") or data.get("concept_tags") or []
        topics = data.get("topics") or []
        difficulty = str(data.get("difficulty") or "unknown").lower()

        return ConceptResult(
            tags=_dedupe([str(t) for t in tags if t])[:MAX_TAGS] if isinstance(tags, list) else [],
            difficulty=difficulty if difficulty in DIFFICULTIES else "unknown",
            summary=str(data.get("summary") or ""),
            topics=[str(t) for t in topics if t] if isinstance(topics, list) else [],
        )


async def get_concept_extractor() -> ConceptExtractor:
    """Build the configured extractor ("llm" or "keyword")."""
    if get_settings().concept_extraction == "keyword":
        return KeywordConceptExtractor()
    return LLMConceptExtractor(await get_generation_client())
