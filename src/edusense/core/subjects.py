"""Keyword heuristics for subject detection.

These are approximate by nature: first matching subject wins and the
keyword lists are short. Swap in another ``SubjectDetector`` rather than
growing the lists.
"""

from abc import ABC, abstractmethod

GENERAL_SUBJECT = "general"

SUBJECT_KEYWORDS: dict[str, list[str]] = {
    "mathematics": ["math", "equation", "algebra", "calculus", "geometry", "trigonometry"],
    "physics": ["physics", "force", "energy", "motion", "velocity", "acceleration"],
    "chemistry": ["chemistry", "molecule", "atom", "reaction", "element", "compound"],
    "biology": ["biology", "cell", "organism", "dna", "evolution", "ecosystem"],
    "computer_science": [
        "programming",
        "algorithm",
        "code",
        "software",
        "computer",
        "data structure",
    ],
    "history": ["history", "war", "civilization", "ancient", "revolution"],
    "literature": ["literature", "novel", "poem", "author", "story", "character"],
}


class SubjectDetector(ABC):
    """Strategy for guessing the subject of a question or text."""

    @abstractmethod
    def detect(self, text: str) -> str:
        """Return a subject name, or "general" when nothing matches."""


class KeywordSubjectDetector(SubjectDetector):
    """First subject with any keyword contained in the text."""

    def __init__(self, keywords: dict[str, list[str]] | None = None):
        self.keywords = keywords or SUBJECT_KEYWORDS

    def detect(self, text: str) -> str:
        lower_text = (text or "").lower()
        for subject, keywords in self.keywords.items():
            if any(keyword in lower_text for keyword in keywords):
                return subject
        return GENERAL_SUBJECT

    def matches(self, text: str) -> dict[str, list[str]]:
        """All subjects with the keywords that matched, in list order."""
        lower_text = (text or "").lower()
        found = {}
        for subject, keywords in self.keywords.items():
            hits = [keyword for keyword in keywords if keyword in lower_text]
            if hits:
                found[subject] = hits
        return found
