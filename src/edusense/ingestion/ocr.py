"""OCR through Tesseract.

Tesseract reports confidences on a 0-100 scale with -1 for non-word
boxes; everything leaving this module is normalized to [0, 1].
"""

import asyncio
import io
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

import pytesseract
from PIL import Image, UnidentifiedImageError
from pytesseract import Output

from edusense.core.config import get_settings
from edusense.core.exceptions import CollaboratorError

logger = logging.getLogger(__name__)

HANDWRITING_CONFIDENCE_THRESHOLD = 0.6


@dataclass
class OcrWord:
    text: str
    confidence: float
    bbox: dict

    def to_dict(self) -> dict:
        return {"text": self.text, "confidence": self.confidence, "bbox": self.bbox}


@dataclass
class OcrLine:
    text: str
    confidence: float
    bbox: dict

    def to_dict(self) -> dict:
        return {"text": self.text, "confidence": self.confidence, "bbox": self.bbox}


@dataclass
class OcrResult:
    """Text plus word/line detail for one image."""

    text: str
    confidence: float
    words: list[OcrWord] = field(default_factory=list)
    lines: list[OcrLine] = field(default_factory=list)


def _clean_text(text: str) -> str:
    return text.replace("\x0c", "").strip()


def _bbox(left: int, top: int, width: int, height: int) -> dict:
    return {"x0": left, "y0": top, "x1": left + width, "y1": top + height}


def _merge_bboxes(boxes: list[dict]) -> dict:
    return {
        "x0": min(b["x0"] for b in boxes),
        "y0": min(b["y0"] for b in boxes),
        "x1": max(b["x1"] for b in boxes),
        "y1": max(b["y1"] for b in boxes),
    }


def _average(values: list[float]) -> float:
    return round(sum(values) / len(values), 4) if values else 0.0


def words_from_tesseract(data: dict) -> tuple[list[OcrWord], list[OcrLine]]:
    """Build words and lines from an ``image_to_data`` DICT result."""
    words: list[OcrWord] = []
    grouped: dict[tuple, list[OcrWord]] = {}

    for i, raw_text in enumerate(data.get("text", [])):
        text = (raw_text or "").strip()
        try:
            conf = float(data["conf"][i])
        except (KeyError, IndexError, TypeError, ValueError):
            continue
        if not text or conf < 0:
            continue

        word = OcrWord(
            text=text,
            confidence=round(min(conf / 100.0, 1.0), 4),
            bbox=_bbox(
                int(data["left"][i]),
                int(data["top"][i]),
                int(data["width"][i]),
                int(data["height"][i]),
            ),
        )
        words.append(word)

        line_key = (
            data.get("block_num", [0] * (i + 1))[i],
            data.get("par_num", [0] * (i + 1))[i],
            data.get("line_num", [0] * (i + 1))[i],
        )
        grouped.setdefault(line_key, []).append(word)

    lines = [
        OcrLine(
            text=" ".join(w.text for w in line_words),
            confidence=_average([w.confidence for w in line_words]),
            bbox=_merge_bboxes([w.bbox for w in line_words]),
        )
        for line_words in grouped.values()
    ]
    return words, lines


def detect_handwriting(words: list[OcrWord]) -> bool:
    """Approximate: low average word confidence suggests handwriting."""
    if not words:
        return False
    return _average([w.confidence for w in words]) < HANDWRITING_CONFIDENCE_THRESHOLD


class OcrEngine(ABC):
    """Text extraction from image bytes."""

    @abstractmethod
    async def extract_text(self, image_bytes: bytes) -> OcrResult:
        """Extract text with word-level detail."""


class TesseractOcrEngine(OcrEngine):
    """OcrEngine backed by the local tesseract binary."""

    def __init__(self, language: str = "eng", tesseract_cmd: str | None = None):
        self.language = language
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

    def _extract(self, image_bytes: bytes) -> OcrResult:
        try:
            with Image.open(io.BytesIO(image_bytes)) as image:
                image.load()
                data = pytesseract.image_to_data(
                    image, lang=self.language, output_type=Output.DICT
                )
                raw_text = pytesseract.image_to_string(image, lang=self.language)
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError) as e:
            raise CollaboratorError("OCR failed", detail=str(e)) from e
        except (UnidentifiedImageError, OSError) as e:
            raise CollaboratorError("Unreadable image", detail=str(e)) from e

        words, lines = words_from_tesseract(data)
        return OcrResult(
            text=_clean_text(raw_text),
            confidence=_average([w.confidence for w in words]),
            words=words,
            lines=lines,
        )

    async def extract_text(self, image_bytes: bytes) -> OcrResult:
        result = await asyncio.to_thread(self._extract, image_bytes)
        logger.info(
            f"[OCR] Extracted {len(result.words)} words "
            f"(confidence {result.confidence:.2f})"
        )
        return result


_engine: OcrEngine | None = None


def get_ocr_engine() -> OcrEngine:
    """Get or create the global OCR engine."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = TesseractOcrEngine(
            language=settings.ocr_language,
            tesseract_cmd=settings.tesseract_cmd,
        )
    return _engine
