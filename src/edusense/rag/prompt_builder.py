"""Prompt construction for academic Q&A.

Every builder here is a pure function of its inputs: the same question,
context and options always render the same prompt.
"""

from dataclasses import dataclass
from typing import Literal

from edusense.rag.retriever import RetrievedChunk

Tone = Literal["educational", "concise", "detailed", "encouraging"]

TONE_MESSAGES: dict[str, str] = {
    "educational": (
        "You are an expert educational mentor who breaks complex topics down into clear, "
        "understandable explanations. Help the student understand, not just get an answer."
    ),
    "concise": "You are a knowledgeable tutor giving clear, concise explanations to academic questions.",
    "detailed": (
        "You are a thorough educational assistant giving in-depth explanations "
        "with examples and analogies."
    ),
    "encouraging": (
        "You are a supportive tutor who builds the student's confidence while they learn. "
        "Welcome their curiosity and guide them step by step."
    ),
}

NO_CONTEXT_MESSAGE = (
    "No specific context available. Please use your general knowledge to provide a helpful "
    "answer, and do not cite or invent sources."
)

SYSTEM_PROMPT = """You are "EduSense AI", an expert educational mentor.
Explain topics simply, clearly and conversationally.

Rules:
1. Never add disclaimers about being an AI. Just answer.
2. Be friendly and encouraging, like a teacher with a smart student.
3. Start with a direct answer, then break it into clear steps. Use analogies where they help.
4. Provide a Mermaid diagram whenever the concept has a flow, structure or hierarchy.
5. For any programming or algorithm question, include complete, runnable, commented code.
6. Return valid JSON only."""

STUDY_MATERIAL_SYSTEM_PROMPT = (
    "You are an expert educational content generator. Return clean Markdown for notes and "
    "analogies, or JSON for flashcards and quizzes."
)

STUDY_MATERIAL_PROMPTS: dict[str, str] = {
    "notes": 'Write concise revision notes for "{topic}" using headers, bullet points and bold key terms.',
    "flashcards": 'Write 5 flashcards for "{topic}" as JSON: [{{"front": "Question", "back": "Answer"}}]',
    "analogy": 'Explain "{topic}" with a simple real-life analogy a 10-year-old would understand.',
    "quiz": (
        'Write 3 multiple-choice questions about "{topic}" as JSON: '
        '[{{"question": "Question", "options": ["A", "B", "C", "D"], "answer": "A"}}]'
    ),
}


@dataclass
class PromptOptions:
    """Rendering options for ``build_educational_prompt``."""

    include_steps: bool = True
    include_confidence: bool = True
    max_context_chunks: int = 5
    tone: Tone = "educational"


def _chunk_fields(chunk: RetrievedChunk | dict) -> tuple[str, float, dict]:
    if isinstance(chunk, RetrievedChunk):
        return chunk.text, chunk.score, chunk.metadata
    return chunk.get("text", ""), float(chunk.get("score", 0.0)), chunk.get("metadata") or {}


def format_context(context: list[RetrievedChunk] | list[dict]) -> str:
    """Render retrieved chunks as the prompt's context section."""
    if not context:
        return f"**RELEVANT CONTEXT:**\n{NO_CONTEXT_MESSAGE}"

    blocks = []
    for i, chunk in enumerate(context, 1):
        text, score, metadata = _chunk_fields(chunk)
        header = f"[Context {i}]"
        if metadata.get("subject"):
            header += f" Subject: {metadata['subject']}"
        if metadata.get("topic"):
            header += f" | Topic: {metadata['topic']}"

        blocks.append(
            f"{header}\n{text}\n"
            f"Source: {metadata.get('source') or 'Unknown'}\n"
            f"Relevance Score: {score * 100:.1f}%"
        )

    return "**RELEVANT CONTEXT:**\n" + "\n\n---\n\n".join(blocks)


def response_instructions(include_steps: bool = True, include_confidence: bool = True) -> str:
    """Instructions block describing the required JSON output."""
    lines = [
        "**INSTRUCTIONS:**",
        "1. Analyze the question carefully",
        "2. Use the provided context when it is relevant",
        "3. Give a clear, accurate explanation in simple language",
        "4. Keep an encouraging, educational tone",
    ]
    if include_steps:
        lines.append("5. Break the explanation down into logical steps")

    schema = [
        "{",
        '  "steps": [',
        '    "Step 1: [first concept or action]",',
        '    "Step 2: [next logical step]"',
        "  ],",
        '  "final_answer": "A concise summary that directly answers the question"'
        + ("," if include_confidence else ""),
    ]
    if include_confidence:
        schema.append('  "confidence": 0.95')
    schema.append("}")

    rules = [
        "**IMPORTANT:**",
        "- Respond ONLY with valid JSON in the format above",
        '- "steps" must be an array of strings',
        '- "final_answer" must be a clear, complete answer',
    ]
    if include_confidence:
        rules.append('- "confidence" must be a number between 0 and 1')
    rules.append("- Do not write any text outside the JSON object")

    return (
        "\n".join(lines)
        + "\n\n**RESPONSE FORMAT (JSON):**\n"
        + "\n".join(schema)
        + "\n\n"
        + "\n".join(rules)
    )


def build_educational_prompt(
    question: str,
    context: list[RetrievedChunk] | list[dict] | None = None,
    options: PromptOptions | None = None,
) -> str:
    """Build the question prompt with optional retrieved context.

    Args:
        question: User's question
        context: Retrieved chunks, truncated to ``options.max_context_chunks``
        options: Tone and output-shape toggles

    Returns:
        Prompt string
    """
    options = options or PromptOptions()
    limited = list(context or [])[: options.max_context_chunks]
    system_message = TONE_MESSAGES.get(options.tone, TONE_MESSAGES["educational"])

    return (
        f"{system_message}\n\n"
        f"**QUESTION:**\n{question}\n\n"
        f"{format_context(limited)}\n\n"
        f"{response_instructions(options.include_steps, options.include_confidence)}"
    )


def build_simple_prompt(question: str) -> str:
    """Question prompt without any retrieved context."""
    return build_educational_prompt(question, [], PromptOptions())


def build_follow_up_prompt(
    question: str,
    previous_answer: str,
    context: list[RetrievedChunk] | list[dict] | None = None,
) -> str:
    """Follow-up prompt that keeps continuity with a previous answer."""
    return (
        "You are an expert educational mentor helping a student with a follow-up question.\n\n"
        f"**PREVIOUS ANSWER:**\n{previous_answer}\n\n"
        f"**FOLLOW-UP QUESTION:**\n{question}\n\n"
        f"{format_context(list(context or []))}\n\n"
        "Build on what was already explained and stay consistent with it.\n\n"
        f"{response_instructions(True, True)}"
    )


def build_structured_prompt(
    question: str,
    context: list[RetrievedChunk] | list[dict] | None = None,
    max_context_chunks: int = 5,
) -> str:
    """Prompt for the extended answer schema used by the generation client."""
    limited = list(context or [])[:max_context_chunks]
    context_text = "\n\n".join(
        f"[{i}] {_chunk_fields(chunk)[0]}" for i, chunk in enumerate(limited, 1)
    )

    return f"""**USER QUESTION:** "{question}"

**CONTEXT (RAG):**
{context_text or NO_CONTEXT_MESSAGE}

**INSTRUCTIONS:**
1. Work out the subject, topic and difficulty of the question.
2. Give a clear, step-by-step explanation.
3. If the concept involves a process, system, hierarchy or logic flow, include a Mermaid diagram:
   - use only valid Mermaid syntax ('graph TD', 'sequenceDiagram', 'classDiagram', 'mindmap', 'stateDiagram-v2')
   - keep node IDs simple (A, B, C or plain words) and quote labels with special characters
   - connect nodes with --> or ---
4. For programming questions, include complete runnable code with comments.
5. Suggest 3 follow-up questions of increasing difficulty.

**REQUIRED JSON RESPONSE FORMAT:**
{{
  "explanation": "A friendly, conversational overview.",
  "steps": ["Step 1: ...", "Step 2: ..."],
  "finalAnswer": "A concise summary statement.",
  "confidence": 0.95,
  "meta": {{
    "subject": "Math/Physics/CS/etc",
    "topic": "Specific topic",
    "subtopic": "Specific subtopic",
    "difficulty": "school/easy/medium/hard/competitive/college",
    "questionType": "concept/numerical/programming/debugging/theory/practice/proof/diagram"
  }},
  "followUpQuestions": {{"easy": "...", "medium": "...", "challenge": "..."}},
  "mermaidCode": "graph TD\\n    A[Start] --> B[End] (valid Mermaid or empty string)",
  "code": {{"language": "python/javascript/...", "snippet": "code, or empty for non-programming questions"}}
}}
"""


def build_study_material_prompt(topic: str, kind: str) -> str:
    """Prompt for notes, flashcards, an analogy or a quiz on a topic."""
    template = STUDY_MATERIAL_PROMPTS.get(kind, STUDY_MATERIAL_PROMPTS["notes"])
    return template.format(topic=topic)


def build_concept_prompt(text: str) -> str:
    """Prompt asking for concept tags and difficulty of extracted text."""
    return f"""Analyze this educational content and return JSON only:
{{
  "conceptTags": ["up to 5 key concepts"],
  "difficulty": "easy | medium | hard",
  "summary": "one-sentence summary",
  "topics": ["broader topics"]
}}

Content:
{text[:4000]}"""
