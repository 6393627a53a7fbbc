"""Tests for prompt construction."""

from edusense.rag.prompt_builder import (
    NO_CONTEXT_MESSAGE,
    TONE_MESSAGES,
    PromptOptions,
    build_concept_prompt,
    build_educational_prompt,
    build_follow_up_prompt,
    build_simple_prompt,
    build_structured_prompt,
    build_study_material_prompt,
    format_context,
)
from edusense.rag.retriever import RetrievedChunk

CHUNKS = [
    RetrievedChunk(
        id="c1",
        text="Ohm's law states V = IR.",
        score=0.8,
        metadata={"subject": "physics", "topic": "circuits", "source": "notes.pdf"},
    ),
    RetrievedChunk(id="c2", text="Resistance opposes current.", score=0.7, metadata={}),
    RetrievedChunk(id="c3", text="Power is VI.", score=0.6, metadata={}),
]


class TestFormatContext:
    def test_empty_context(self):
        assert NO_CONTEXT_MESSAGE in format_context([])

    def test_headers_source_and_score(self):
        rendered = format_context(CHUNKS[:2])

        assert "[Context 1] Subject: physics | Topic: circuits" in rendered
        assert "Source: notes.pdf" in rendered
        assert "Relevance Score: 80.0%" in rendered
        assert "[Context 2]\nResistance opposes current." in rendered
        assert "Source: Unknown" in rendered

    def test_block_layout(self):
        rendered = format_context(CHUNKS[:1])

        assert (
            "[Context 1] Subject: physics | Topic: circuits\n"
            "Ohm's law states V = IR.\n"
            "Source: notes.pdf\n"
            "Relevance Score: 80.0%"
        ) in rendered

    def test_accepts_plain_dicts(self):
        rendered = format_context([{"text": "A dict chunk", "score": 0.5}])
        assert "A dict chunk" in rendered
        assert "Relevance Score: 50.0%" in rendered


class TestEducationalPrompt:
    def test_is_deterministic(self):
        assert build_educational_prompt("What is V?", CHUNKS) == build_educational_prompt(
            "What is V?", CHUNKS
        )

    def test_truncates_context(self):
        prompt = build_educational_prompt(
            "What is V?", CHUNKS, PromptOptions(max_context_chunks=2)
        )

        assert "[Context 2]" in prompt
        assert "[Context 3]" not in prompt

    def test_tone_and_toggles(self):
        prompt = build_educational_prompt(
            "What is V?",
            [],
            PromptOptions(tone="concise", include_steps=False, include_confidence=False),
        )

        assert prompt.startswith(TONE_MESSAGES["concise"])
        assert '"confidence"' not in prompt
        assert "logical steps" not in prompt
        assert NO_CONTEXT_MESSAGE in prompt

    def test_simple_prompt_has_no_context(self):
        prompt = build_simple_prompt("Define work")

        assert "**QUESTION:**\nDefine work" in prompt
        assert NO_CONTEXT_MESSAGE in prompt

    def test_follow_up_prompt(self):
        prompt = build_follow_up_prompt("And power?", "V = IR", CHUNKS[:1])

        assert "**PREVIOUS ANSWER:**\nV = IR" in prompt
        assert "**FOLLOW-UP QUESTION:**\nAnd power?" in prompt
        assert "Ohm's law" in prompt


def test_structured_prompt_numbers_context():
    prompt = build_structured_prompt("Explain Ohm's law", CHUNKS, max_context_chunks=2)

    assert '**USER QUESTION:** "Explain Ohm\'s law"' in prompt
    assert "[1] Ohm's law states V = IR." in prompt
    assert "[2] Resistance opposes current." in prompt
    assert "[3]" not in prompt
    assert '"followUpQuestions"' in prompt


def test_structured_prompt_without_context():
    assert NO_CONTEXT_MESSAGE in build_structured_prompt("Explain", [])


def test_study_material_prompts():
    assert '"Photosynthesis"' in build_study_material_prompt("Photosynthesis", "analogy")
    assert '[{"front": "Question", "back": "Answer"}]' in build_study_material_prompt(
        "Cells", "flashcards"
    )
    assert build_study_material_prompt("Cells", "unknown") == build_study_material_prompt(
        "Cells", "notes"
    )


def test_concept_prompt_truncates_text():
    prompt = build_concept_prompt("x" * 5000)
    assert "x" * 4000 in prompt
    assert "x" * 4001 not in prompt
