"""Fake collaborators for the ingestion and answer pipelines."""

import io

from PIL import Image

from edusense.core.exceptions import CollaboratorError
from edusense.ingestion.concepts import ConceptResult
from edusense.ingestion.ocr import OcrLine, OcrResult, OcrWord
from edusense.ingestion.pdf import RenderedPage
from edusense.ingestion.storage import StoredObject, image_dimensions
from edusense.llm.parsing import AnswerMeta, StructuredAnswer
from edusense.rag.processor import IndexingResult


def make_png(width: int = 200, height: int = 100, color: str = "white") -> bytes:
    """Real PNG bytes of the given size."""
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


def make_ocr_result(
    text: str = "Newton's second law relates force and acceleration",
    confidence: float = 0.92,
) -> OcrResult:
    """OCR result with one word per token laid out left to right on one line."""
    words = []
    x = 10
    for token in text.split():
        width = 10 * len(token)
        words.append(
            OcrWord(
                text=token,
                confidence=confidence,
                bbox={"x0": x, "y0": 10, "x1": x + width, "y1": 30},
            )
        )
        x += width + 10

    lines = []
    if words:
        lines.append(
            OcrLine(
                text=text,
                confidence=confidence,
                bbox={"x0": 10, "y0": 10, "x1": words[-1].bbox["x1"], "y1": 30},
            )
        )
    return OcrResult(text=text, confidence=confidence, words=words, lines=lines)


class FakeStorage:
    """MediaStorage keeping objects in memory."""

    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.uploads: list[tuple[str, str]] = []
        self.deleted: list[str] = []
        self.fail_folders: set[str] = set()
        self.fail_after: int | None = None
        self._counter = 0

    async def upload(
        self,
        data: bytes,
        folder: str,
        resource_type: str = "image",
        filename: str | None = None,
        content_type: str | None = None,
    ) -> StoredObject:
        if folder in self.fail_folders:
            raise CollaboratorError("Storage upload failed", detail=f"folder {folder}")
        if self.fail_after is not None and len(self.uploads) >= self.fail_after:
            raise CollaboratorError("Storage upload failed", detail="quota")

        self._counter += 1
        public_id = f"edusense/{folder}/object-{self._counter}"
        self.objects[public_id] = data
        self.uploads.append((folder, public_id))

        width = height = fmt = None
        if resource_type == "image":
            width, height, fmt = image_dimensions(data)
        return StoredObject(
            url=f"https://cdn.test/{public_id}",
            public_id=public_id,
            bytes=len(data),
            width=width,
            height=height,
            format=fmt,
        )

    async def download(self, public_id: str) -> bytes:
        if public_id not in self.objects:
            raise CollaboratorError("Storage download failed", detail=public_id)
        return self.objects[public_id]

    async def delete(self, public_id: str, resource_type: str = "image") -> None:
        self.objects.pop(public_id, None)
        self.deleted.append(public_id)


class FakeOcrEngine:
    """OcrEngine returning canned results.

    ``by_bytes`` maps exact image bytes to a result or an exception to raise.
    """

    def __init__(self, default: OcrResult | None = None):
        self.default = default or make_ocr_result()
        self.by_bytes: dict[bytes, OcrResult | Exception] = {}
        self.calls = 0

    async def extract_text(self, image_bytes: bytes) -> OcrResult:
        self.calls += 1
        result = self.by_bytes.get(image_bytes, self.default)
        if isinstance(result, Exception):
            raise result
        return result


class FakeRasterizer:
    """PdfRasterizer with preset pages."""

    def __init__(self, page_count: int = 2):
        self.pages = [
            RenderedPage(
                page_number=n,
                image_bytes=make_png(100 + n, 100),
                width=100 + n,
                height=100,
            )
            for n in range(1, page_count + 1)
        ]
        self.error: Exception | None = None

    async def convert_to_images(self, data: bytes, dpi: int = 200) -> list[RenderedPage]:
        if self.error is not None:
            raise self.error
        return list(self.pages)

    async def get_metadata(self, data: bytes) -> dict:
        if self.error is not None:
            raise self.error
        return {
            "page_count": len(self.pages),
            "title": "Lecture notes",
            "author": "Unknown",
            "creation_date": None,
        }


class FakeConceptExtractor:
    def __init__(self, result: ConceptResult | None = None):
        self.result = result or ConceptResult(
            tags=["force", "acceleration"],
            difficulty="easy",
            summary="Newton's second law",
            topics=["physics"],
        )
        self.error: Exception | None = None

    async def extract(self, text: str) -> ConceptResult:
        if self.error is not None:
            raise self.error
        return self.result


class FakeIndexer:
    """TextIndexer recording what was indexed and deleted."""

    def __init__(self):
        self.indexed: list[tuple[str, str, dict]] = []
        self.deleted: list[str] = []

    async def index_text(
        self, text: str, source_id: str, metadata: dict | None = None
    ) -> IndexingResult:
        self.indexed.append((text, source_id, metadata or {}))
        return IndexingResult(
            success=True, source_id=source_id, chunk_ids=[f"{source_id}-chunk-0"]
        )

    async def delete_chunks(self, chunk_ids: list[str]) -> int:
        self.deleted.extend(chunk_ids)
        return len(chunk_ids)


class FakeRetriever:
    def __init__(self, chunks=None):
        self.chunks = list(chunks or [])
        self.error: Exception | None = None
        self.calls: list[tuple[str, int | None, dict | None]] = []

    async def retrieve(self, question: str, top_k: int | None = None, filters: dict | None = None):
        self.calls.append((question, top_k, filters))
        if self.error is not None:
            raise self.error
        return list(self.chunks)


class FakeGenerationClient:
    """GenerationClient with a canned structured answer and raw output."""

    def __init__(self, answer: StructuredAnswer | None = None, raw: str = ""):
        self.answer = answer or StructuredAnswer(
            steps=["Step 1: Identify the forces", "Step 2: Apply F = ma"],
            final_answer="The acceleration is 2 m/s^2.",
            explanation="Force equals mass times acceleration.",
            confidence=0.9,
            meta=AnswerMeta(subject="physics", topic="Newton's laws"),
            model="llama-3.3-70b-versatile",
        )
        self.raw = raw
        self.raw_error: Exception | None = None
        self.contexts: list[list] = []
        self.raw_calls: list[dict] = []

    async def ask_with_context(self, question: str, context=None) -> StructuredAnswer:
        self.contexts.append(list(context or []))
        return self.answer

    async def ask_raw(
        self,
        prompt: str,
        system_prompt: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> str:
        self.raw_calls.append(
            {"prompt": prompt, "system_prompt": system_prompt, "temperature": temperature}
        )
        if self.raw_error is not None:
            raise self.raw_error
        return self.raw

