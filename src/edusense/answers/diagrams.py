"""Mermaid diagram repair and diagram-regeneration prompts.

``repair_diagram`` is a best-effort syntax sanitizer, not a grammar
validator: markup that survives it can still fail to render.
"""

import re

DIAGRAM_DECLARATIONS = (
    "graph",
    "flowchart",
    "sequenceDiagram",
    "classDiagram",
    "stateDiagram",
    "mindmap",
)
DEFAULT_DECLARATION = "graph TD"

_DECLARATION_RE = re.compile(r"^(" + "|".join(DIAGRAM_DECLARATIONS) + r")")
_FENCE_OPEN_RE = re.compile(r"^```(?:mermaid)?[ \t]*\n?")
_FENCE_CLOSE_RE = re.compile(r"\n?```$")
_ARROW_RE = re.compile(r"[ \t]*-->[ \t]*")
_LINE_RE = re.compile(r"[ \t]*---[ \t]*")
_DISALLOWED_RE = re.compile(r"[^\w\s\[\]\(\)\{\}\-><:\"'|]")


def _normalize_arrows(text: str) -> str:
    text = _ARROW_RE.sub(" --> ", text)
    return _LINE_RE.sub(" --- ", text)


def _is_declaration(line: str) -> bool:
    return line.strip().startswith(DIAGRAM_DECLARATIONS)


def repair_diagram(raw: str | None) -> str:
    """Normalize model-generated Mermaid markup.

    Steps: strip a code fence, turn ``;`` into newlines, space arrows,
    drop characters outside the allow-list (declaration lines excepted),
    prepend ``graph TD`` when no declaration leads, drop blank lines.

    Never raises. Empty or whitespace-only input returns "" and
    ``repair_diagram(repair_diagram(x)) == repair_diagram(x)``.
    """
    if not raw or not isinstance(raw, str) or not raw.strip():
        return ""

    text = raw.strip()
    if text.startswith("```"):
        text = _FENCE_CLOSE_RE.sub("", _FENCE_OPEN_RE.sub("", text, count=1)).strip()
    if not text:
        return ""

    text = text.replace(";", "\n")
    text = _normalize_arrows(text)

    lines = [
        line if _is_declaration(line) or not line.strip() else _DISALLOWED_RE.sub("", line)
        for line in text.split("\n")
    ]
    # Removing characters can join arrow fragments (e.g. "-.->")
    text = _normalize_arrows("\n".join(lines))

    lines = [line.rstrip() for line in text.split("\n")]
    text = "\n".join(line for line in lines if line.strip())
    if not text:
        return ""

    if not _DECLARATION_RE.match(text.lstrip()):
        text = f"{DEFAULT_DECLARATION}\n{text}"

    return text.strip()


DIAGRAM_KINDS: dict[str, dict[str, str]] = {
    "flowchart": {
        "instructions": (
            "- Use 'graph TD' (top-down) or 'graph LR' (left-right)\n"
            "- Use simple node IDs: A, B, C\n"
            "- Connect nodes with -->\n"
            "- Put labels in square brackets: A[Label]\n"
            "- Show decisions with braces: D{Decision?}"
        ),
        "example": "graph TD\n    A[Start] --> B{Condition?}\n    B -->|Yes| C[Do this]\n    B -->|No| D[Do that]",
    },
    "sequence": {
        "instructions": (
            "- Start with 'sequenceDiagram'\n"
            "- Declare participants first\n"
            "- Use ->> for messages and -->> for replies"
        ),
        "example": "sequenceDiagram\n    participant Client\n    participant Server\n    Client->>Server: Request\n    Server-->>Client: Response",
    },
    "class": {
        "instructions": (
            "- Start with 'classDiagram'\n"
            "- Give classes their attributes and methods\n"
            "- Relationships: <|-- inheritance, *-- composition, o-- aggregation"
        ),
        "example": "classDiagram\n    Animal <|-- Dog\n    Animal : +String name\n    Dog : +bark()",
    },
    "mindmap": {
        "instructions": (
            "- Start with 'mindmap'\n"
            "- Show hierarchy with indentation\n"
            "- One root node at the top level"
        ),
        "example": "mindmap\n  root((Topic))\n    Branch A\n      Detail 1\n    Branch B",
    },
    "state": {
        "instructions": (
            "- Start with 'stateDiagram-v2'\n"
            "- Use [*] for start and end states\n"
            "- Use --> for transitions, labelled with : description"
        ),
        "example": "stateDiagram-v2\n    [*] --> Idle\n    Idle --> Running : start\n    Running --> [*] : finish",
    },
}


def build_diagram_prompt(kind: str, question: str, answer: str) -> str:
    """Prompt asking for one diagram kind for an answered question.

    Raises:
        KeyError: If ``kind`` is not in DIAGRAM_KINDS
    """
    spec = DIAGRAM_KINDS[kind]
    return f"""Generate a {kind} diagram in Mermaid syntax for this educational content.

**Question:** {question}
**Answer:** {answer}

**Requirements:**
{spec["instructions"]}
- Cover the key concepts of the answer, clearly and simply
- Return ONLY the Mermaid code, without explanations or markdown fences

Example {kind}:
{spec["example"]}"""
