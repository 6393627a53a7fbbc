"""Structured answer types and the shared response parser.

Every generation backend returns free text. ``parse_structured_answer``
turns that text into a ``StructuredAnswer`` and never raises: valid JSON is
used as-is, an embedded JSON object is extracted when the model wraps it in
prose, and anything else is structured line by line.
"""

import json
import logging
import math
import re
from dataclasses import asdict, dataclass, field

logger = logging.getLogger(__name__)

DEFAULT_JSON_CONFIDENCE = 0.85
HEURISTIC_CONFIDENCE = 0.75
FALLBACK_CONFIDENCE = 0.3
FALLBACK_MARKER = "Fallback response"

_FENCE_RE = re.compile(r"^\s*```[a-zA-Z]*\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)
_STEP_PREFIX_RE = re.compile(r"^(Step \d+|\d+\.|\*)")
_STEP_STRIP_RE = re.compile(r"^(Step \d+:?|\d+\.|\*)\s*")


@dataclass
class AnswerMeta:
    subject: str = ""
    topic: str = ""
    subtopic: str = ""
    difficulty: str = ""
    question_type: str = ""


@dataclass
class FollowUpQuestions:
    easy: str = ""
    medium: str = ""
    challenge: str = ""


@dataclass
class CodeBlock:
    language: str = ""
    snippet: str = ""


@dataclass
class StructuredAnswer:
    """Normalized answer produced by any generation backend."""

    steps: list[str] = field(default_factory=list)
    final_answer: str = ""
    explanation: str = ""
    confidence: float = DEFAULT_JSON_CONFIDENCE
    meta: AnswerMeta = field(default_factory=AnswerMeta)
    follow_up_questions: FollowUpQuestions = field(default_factory=FollowUpQuestions)
    mermaid_code: str = ""
    code: CodeBlock | None = None
    raw_response: str = ""
    model: str | None = None

    @property
    def is_fallback(self) -> bool:
        return self.raw_response == FALLBACK_MARKER

    def to_dict(self) -> dict:
        return asdict(self)


def normalize_confidence(value) -> float:
    """Map a raw confidence onto [0, 1].

    Values above 1 are treated as percentages. Anything non-numeric is 0.
    """
    if isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number):
        return 0.0
    if number > 1:
        number = number / 100
    return min(1.0, max(0.0, number))


def strip_code_fence(text: str) -> str:
    """Remove a surrounding ``` or ```json fence, if any."""
    match = _FENCE_RE.match(text)
    return match.group(1).strip() if match else text.strip()


def extract_json_object(text: str) -> str | None:
    """Return the first balanced ``{...}`` substring, honoring JSON strings."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            char = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start : i + 1]
        # Unbalanced from this brace; try the next one
        start = text.find("{", start + 1)
    return None


def load_json_payload(text: str):
    """Parse model output as JSON, falling back to the first embedded object.

    Returns None when neither attempt yields JSON.
    """
    cleaned = strip_code_fence(text)
    try:
        return json.loads(cleaned)
    except (json.JSONDecodeError, ValueError):
        pass

    candidate = extract_json_object(cleaned)
    if candidate is None:
        return None
    try:
        return json.loads(candidate)
    except (json.JSONDecodeError, ValueError):
        return None


def _first(data: dict, *keys, default=None):
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _as_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    return str(value).strip()


def _as_steps(value) -> list[str]:
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if isinstance(value, list):
        return [_as_text(item) for item in value if _as_text(item)]
    return []


def answer_from_payload(data: dict, raw: str) -> StructuredAnswer:
    """Build a StructuredAnswer from a decoded JSON object.

    Accepts both the camelCase schema models are prompted with and
    snake_case keys.
    """
    meta_raw = data.get("meta") if isinstance(data.get("meta"), dict) else {}
    follow_raw = _first(data, "followUpQuestions", "follow_up_questions", default={})
    code_raw = data.get("code")

    steps = _as_steps(data.get("steps"))
    explanation = _as_text(data.get("explanation"))
    final_answer = _as_text(_first(data, "finalAnswer", "final_answer", "answer"))
    if not final_answer:
        final_answer = explanation[:200] or (steps[-1] if steps else "")

    code = None
    if isinstance(code_raw, dict):
        code = CodeBlock(
            language=_as_text(code_raw.get("language")),
            snippet=code_raw.get("snippet") if isinstance(code_raw.get("snippet"), str) else "",
        )

    follow_up = FollowUpQuestions()
    if isinstance(follow_raw, dict):
        follow_up = FollowUpQuestions(
            easy=_as_text(follow_raw.get("easy")),
            medium=_as_text(follow_raw.get("medium")),
            challenge=_as_text(follow_raw.get("challenge")),
        )
    elif isinstance(follow_raw, list):
        padded = [_as_text(q) for q in follow_raw[:3]] + ["", "", ""]
        follow_up = FollowUpQuestions(easy=padded[0], medium=padded[1], challenge=padded[2])

    confidence = data.get("confidence", DEFAULT_JSON_CONFIDENCE)

    return StructuredAnswer(
        steps=steps,
        final_answer=final_answer,
        explanation=explanation,
        confidence=confidence if confidence is not None else DEFAULT_JSON_CONFIDENCE,
        meta=AnswerMeta(
            subject=_as_text(meta_raw.get("subject")),
            topic=_as_text(meta_raw.get("topic")),
            subtopic=_as_text(meta_raw.get("subtopic")),
            difficulty=_as_text(meta_raw.get("difficulty")),
            question_type=_as_text(_first(meta_raw, "questionType", "question_type")),
        ),
        follow_up_questions=follow_up,
        mermaid_code=_as_text(_first(data, "mermaidCode", "mermaid_code", "diagram")),
        code=code,
        raw_response=raw,
    )


def structure_plain_text(content: str) -> StructuredAnswer:
    """Heuristic structuring for output that is not JSON at all.

    Numbered, "Step N" and bulleted lines become steps; other long lines
    are joined into the final answer.
    """
    steps = []
    long_lines = []
    for line in content.split("\n"):
        line = line.strip()
        if not line:
            continue
        if _STEP_PREFIX_RE.match(line):
            steps.append(_STEP_STRIP_RE.sub("", line, count=1))
        elif len(line) > 50:
            long_lines.append(line)

    final_answer = " ".join(long_lines).strip()
    return StructuredAnswer(
        steps=steps or [content.strip()],
        final_answer=final_answer or content.strip()[:200],
        confidence=HEURISTIC_CONFIDENCE,
        raw_response=content,
    )


def parse_structured_answer(content: str) -> StructuredAnswer:
    """Parse raw model output into a StructuredAnswer. Never raises."""
    payload = load_json_payload(content or "")
    if isinstance(payload, dict):
        return answer_from_payload(payload, content)

    logger.warning("[Parser] Model output was not JSON, structuring heuristically")
    return structure_plain_text(content or "")


def fallback_answer(question: str) -> StructuredAnswer:
    """Fixed-shape answer used when every generation model failed."""
    return StructuredAnswer(
        steps=[
            "I apologize, but I'm having trouble generating a response right now.",
            "Please try rephrasing your question or try again in a moment.",
        ],
        final_answer=f'I\'m having trouble answering "{question}" right now.',
        confidence=FALLBACK_CONFIDENCE,
        raw_response=FALLBACK_MARKER,
    )
