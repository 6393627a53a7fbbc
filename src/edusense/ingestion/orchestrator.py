"""Ingestion orchestrator.

Drives uploaded images, PDFs and crops through
upload -> (rasterization) -> OCR -> concept extraction -> persistence.

Each frame follows ``queued -> processing -> completed | failed``. All
work happens inside the calling request; there is no background queue and
no automatic retry.
"""

import logging
import time
from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncSession

from edusense.core.config import get_settings
from edusense.core.exceptions import EduSenseError, InvalidInputError, NotFoundError
from edusense.core.subjects import KeywordSubjectDetector, SubjectDetector
from edusense.db.models import Difficulty, Frame, FrameSourceType, FrameStatus
from edusense.db.repository import FrameRepository
from edusense.ingestion.concepts import ConceptExtractor, ConceptResult, get_concept_extractor
from edusense.ingestion.crop import CropRect, crop_image, validate_crop
from edusense.ingestion.ocr import OcrEngine, OcrResult, detect_handwriting, get_ocr_engine
from edusense.ingestion.pdf import PdfRasterizer, RenderedPage, get_rasterizer
from edusense.ingestion.storage import MediaStorage, get_storage
from edusense.observability.metrics import record_frame_terminal
from edusense.rag.processor import TextIndexer, get_indexer

logger = logging.getLogger(__name__)

IMAGE_FOLDER = "images"
PDF_FOLDER = "pdfs"
PAGE_FOLDER = "pdf-pages"
CROP_FOLDER = "crops"

MAX_PAGE_SIZE = 100

_TRANSITIONS = {
    FrameStatus.QUEUED: {FrameStatus.PROCESSING},
    FrameStatus.PROCESSING: {FrameStatus.COMPLETED, FrameStatus.FAILED},
}


def _error_message(error: Exception) -> str:
    if isinstance(error, EduSenseError):
        return f"{error.message}: {error.detail}" if error.detail else error.message
    return str(error) or error.__class__.__name__


def _to_difficulty(value: str) -> Difficulty:
    try:
        return Difficulty(value)
    except ValueError:
        return Difficulty.UNKNOWN


def _word_in_region(word: dict, rect: CropRect) -> bool:
    bbox = word.get("bbox")
    if not bbox:
        return False
    center_x = (bbox["x0"] + bbox["x1"]) / 2
    center_y = (bbox["y0"] + bbox["y1"]) / 2
    return (
        rect.x <= center_x <= rect.x + rect.width
        and rect.y <= center_y <= rect.y + rect.height
    )


class IngestionOrchestrator:
    """Runs uploads through the frame state machine."""

    def __init__(
        self,
        frames: FrameRepository,
        storage: MediaStorage,
        ocr: OcrEngine,
        rasterizer: PdfRasterizer,
        concepts: ConceptExtractor,
        indexer: TextIndexer | None = None,
        subject_detector: SubjectDetector | None = None,
        dpi: int = 200,
        max_upload_bytes: int = 20 * 1024 * 1024,
    ):
        self.frames = frames
        self.storage = storage
        self.ocr = ocr
        self.rasterizer = rasterizer
        self.concepts = concepts
        self.indexer = indexer
        self.subject_detector = subject_detector or KeywordSubjectDetector()
        self.dpi = dpi
        self.max_upload_bytes = max_upload_bytes

    # ============================================
    # State machine
    # ============================================

    @staticmethod
    def _transition(frame: Frame, status: FrameStatus) -> None:
        allowed = _TRANSITIONS.get(frame.status, set())
        if status not in allowed:
            raise ValueError(
                f"Illegal frame transition {frame.status.value} -> {status.value}"
            )
        frame.status = status

    async def _start(self, frame: Frame) -> None:
        self._transition(frame, FrameStatus.PROCESSING)
        await self.frames.save(frame)
        await self.frames.commit()

    async def _fail(self, frame: Frame, error: Exception, started: float) -> Frame:
        logger.error(f"[Ingestion] Frame {frame.id} failed: {error}")
        self._transition(frame, FrameStatus.FAILED)
        frame.error_message = _error_message(error)
        await self.frames.save(frame)
        await self.frames.commit()
        record_frame_terminal(
            frame.source_type.value, frame.status.value, time.perf_counter() - started
        )
        return frame

    async def _complete(self, frame: Frame, started: float) -> Frame:
        self._transition(frame, FrameStatus.COMPLETED)
        frame.processed_at = datetime.now(UTC)
        await self.frames.save(frame)
        await self.frames.commit()
        record_frame_terminal(
            frame.source_type.value, frame.status.value, time.perf_counter() - started
        )
        return frame

    # ============================================
    # Processing steps
    # ============================================

    @staticmethod
    def _apply_ocr(frame: Frame, result: OcrResult) -> None:
        frame.ocr_text = result.text
        frame.ocr_raw = {
            "words": [w.to_dict() for w in result.words],
            "lines": [line.to_dict() for line in result.lines],
        }
        frame.ocr_confidence = result.confidence
        frame.has_handwriting = detect_handwriting(result.words)

    async def _extract_concepts(self, text: str) -> ConceptResult:
        if not text or not text.strip():
            return ConceptResult.unknown()
        try:
            return await self.concepts.extract(text)
        except Exception as e:
            logger.warning(f"[Ingestion] Concept extraction failed: {e}")
            return ConceptResult.unknown()

    async def _index_frame(self, frame: Frame) -> None:
        """Best-effort: make the frame's text retrievable for later questions."""
        if self.indexer is None or not (frame.ocr_text or "").strip():
            return

        metadata = {
            "subject": self.subject_detector.detect(frame.ocr_text),
            "topic": frame.topics[0] if frame.topics else "N/A",
            "source": frame.filename or frame.source_url,
            "frame_id": frame.id,
            "difficulty": frame.difficulty.value,
        }
        try:
            result = await self.indexer.index_text(frame.ocr_text, frame.id, metadata)
        except Exception as e:
            logger.warning(f"[Ingestion] Indexing frame {frame.id} failed: {e}")
            return

        if result.success:
            frame.chunk_ids = result.chunk_ids
            await self.frames.save(frame)
            await self.frames.commit()
        else:
            logger.warning(f"[Ingestion] Frame {frame.id} not indexed: {result.error}")

    async def _process(self, frame: Frame, image_bytes: bytes) -> Frame:
        """Run one queued frame to a terminal status. Never raises for OCR errors."""
        started = time.perf_counter()
        logger.info(f"[Ingestion] Processing frame {frame.id} ({frame.source_type.value})")
        await self._start(frame)

        try:
            result = await self.ocr.extract_text(image_bytes)
        except Exception as e:
            return await self._fail(frame, e, started)

        self._apply_ocr(frame, result)

        concepts = await self._extract_concepts(result.text)
        frame.concept_tags = concepts.tags
        frame.difficulty = _to_difficulty(concepts.difficulty)
        frame.summary = concepts.summary or None
        frame.topics = concepts.topics

        await self._complete(frame, started)
        await self._index_frame(frame)

        logger.info(
            f"[Ingestion] Frame {frame.id} completed "
            f"({len(result.words)} words, confidence {result.confidence:.2f})"
        )
        return frame

    def _check_upload(self, data: bytes) -> None:
        if not data:
            raise InvalidInputError("No file provided")
        if len(data) > self.max_upload_bytes:
            raise InvalidInputError(
                "File too large", detail=f"{len(data)} > {self.max_upload_bytes} bytes"
            )

    # ============================================
    # Operations
    # ============================================

    async def ingest_image(
        self,
        user_id: str,
        data: bytes,
        filename: str | None = None,
        content_type: str | None = None,
    ) -> Frame:
        """Upload an image and OCR it within the request.

        Raises:
            InvalidInputError: Empty, oversized or non-image upload
            CollaboratorError: Storage upload failed (no frame is created)
        """
        self._check_upload(data)
        if content_type and not content_type.startswith("image/"):
            raise InvalidInputError("Only image uploads are supported", detail=content_type)

        stored = await self.storage.upload(
            data, IMAGE_FOLDER, resource_type="image", filename=filename, content_type=content_type
        )

        frame = await self.frames.create(
            user_id=user_id,
            source_type=FrameSourceType.IMAGE,
            source_url=stored.url,
            public_id=stored.public_id,
            filename=filename,
            file_size=stored.bytes,
            mime_type=content_type,
            width=stored.width,
            height=stored.height,
        )
        await self.frames.commit()

        return await self._process(frame, data)

    async def _ingest_page(self, parent: Frame, page: RenderedPage) -> Frame:
        frame = await self.frames.create(
            user_id=parent.user_id,
            source_type=FrameSourceType.DOCUMENT_PAGE,
            source_url="",
            filename=f"{parent.filename or 'document'} (page {page.page_number})",
            parent_id=parent.id,
            page_number=page.page_number,
            file_size=len(page.image_bytes),
            mime_type="image/png",
            width=page.width,
            height=page.height,
        )
        await self.frames.commit()

        try:
            stored = await self.storage.upload(
                page.image_bytes,
                PAGE_FOLDER,
                resource_type="image",
                filename=f"page-{page.page_number}.png",
                content_type="image/png",
            )
        except Exception as e:
            started = time.perf_counter()
            await self._start(frame)
            return await self._fail(frame, e, started)

        frame.source_url = stored.url
        frame.public_id = stored.public_id
        return await self._process(frame, page.image_bytes)

    async def ingest_document(
        self,
        user_id: str,
        data: bytes,
        filename: str | None = None,
    ) -> tuple[Frame, list[Frame]]:
        """Upload a PDF, rasterize it and OCR every page in page order.

        A page failure is recorded on that page only. The parent completes
        once every page was attempted.

        Returns:
            (parent frame, page frames)
        """
        self._check_upload(data)
        if not data.startswith(b"%PDF"):
            raise InvalidInputError("File is not a PDF")

        stored = await self.storage.upload(
            data, PDF_FOLDER, resource_type="raw", filename=filename, content_type="application/pdf"
        )

        parent = await self.frames.create(
            user_id=user_id,
            source_type=FrameSourceType.DOCUMENT,
            source_url=stored.url,
            public_id=stored.public_id,
            filename=filename,
            file_size=stored.bytes,
            mime_type="application/pdf",
        )
        await self.frames.commit()

        started = time.perf_counter()
        await self._start(parent)

        try:
            metadata = await self.rasterizer.get_metadata(data)
            pages = await self.rasterizer.convert_to_images(data, dpi=self.dpi)
        except Exception as e:
            await self._fail(parent, e, started)
            return parent, []

        parent.document_metadata = metadata
        parent.page_count = metadata.get("page_count") or len(pages)
        logger.info(f"[Ingestion] Document {parent.id}: {len(pages)} pages")

        page_frames = []
        for page in sorted(pages, key=lambda p: p.page_number):
            page_frames.append(await self._ingest_page(parent, page))

        parent.ocr_text = "\n\n".join(
            p.ocr_text for p in page_frames if p.status == FrameStatus.COMPLETED and p.ocr_text
        )
        await self._complete(parent, started)
        return parent, page_frames

    async def extract_crop(self, user_id: str, frame_id: str, rect: CropRect) -> Frame:
        """Crop a region of an existing frame into a new ``crop`` frame.

        Raises:
            InvalidInputError: Bad rectangle, or one outside the image
            NotFoundError: Source frame missing or owned by someone else
        """
        validate_crop(rect)

        source = await self.get_frame(user_id, frame_id)
        if source.source_type == FrameSourceType.DOCUMENT:
            raise InvalidInputError("Crop a document page, not the document")

        source_bytes = await self.storage.download(source.crop_public_id or source.public_id)
        cropped = await crop_image(source_bytes, rect)

        stored = await self.storage.upload(
            cropped,
            CROP_FOLDER,
            resource_type="image",
            filename=source.filename,
            content_type=source.mime_type,
        )

        frame = await self.frames.create(
            user_id=user_id,
            source_type=FrameSourceType.CROP,
            source_url=source.source_url,
            crop_url=stored.url,
            crop_public_id=stored.public_id,
            crop_rect=rect.to_dict(),
            parent_id=source.id,
            filename=source.filename,
            file_size=stored.bytes,
            mime_type=source.mime_type,
            width=stored.width,
            height=stored.height,
        )
        await self.frames.commit()

        return await self._process(frame, cropped)

    async def extract_region(self, user_id: str, frame_id: str, rect: CropRect) -> dict:
        """Text of the words whose box center falls inside ``rect``.

        Runs OCR first when the frame has no word detail yet.
        """
        validate_crop(rect)
        frame = await self.get_frame(user_id, frame_id)

        words = (frame.ocr_raw or {}).get("words") or []
        if not words:
            logger.info(f"[Ingestion] Frame {frame.id} has no OCR data, running OCR first")
            image_bytes = await self.storage.download(frame.crop_public_id or frame.public_id)
            result = await self.ocr.extract_text(image_bytes)
            self._apply_ocr(frame, result)

            if frame.status == FrameStatus.QUEUED:
                started = time.perf_counter()
                await self._start(frame)
                await self._complete(frame, started)
            else:
                await self.frames.save(frame)
                await self.frames.commit()
            words = frame.ocr_raw["words"]

        selected = [w for w in words if _word_in_region(w, rect)]
        return {
            "text": " ".join(w["text"] for w in selected),
            "word_count": len(selected),
            "region": {"x": rect.x, "y": rect.y, "width": rect.width, "height": rect.height},
        }

    async def _collect_tree(self, root: Frame) -> list[Frame]:
        """``root`` followed by all descendants, breadth first."""
        collected = [root]
        i = 0
        while i < len(collected):
            collected.extend(await self.frames.list_children(collected[i].id))
            i += 1
        return collected

    async def _release(self, frame: Frame) -> None:
        """Best-effort removal of stored objects and indexed chunks."""
        resource_type = "raw" if frame.source_type == FrameSourceType.DOCUMENT else "image"
        for public_id in (frame.public_id, frame.crop_public_id):
            if not public_id:
                continue
            try:
                await self.storage.delete(public_id, resource_type=resource_type)
            except Exception as e:
                logger.warning(f"[Ingestion] Could not delete stored object {public_id}: {e}")

        if frame.chunk_ids and self.indexer is not None:
            try:
                await self.indexer.delete_chunks(frame.chunk_ids)
            except Exception as e:
                logger.warning(f"[Ingestion] Could not delete chunks of frame {frame.id}: {e}")

    async def delete_frame(self, user_id: str, frame_id: str) -> int:
        """Delete a frame and everything derived from it.

        Returns:
            Number of frame records removed
        """
        frame = await self.get_frame(user_id, frame_id)
        tree = await self._collect_tree(frame)

        # Children first so the parent row goes last
        for item in reversed(tree):
            await self._release(item)
            await self.frames.delete(item)

        logger.info(f"[Ingestion] Deleted frame {frame_id} ({len(tree)} records)")
        return len(tree)

    async def get_frame(self, user_id: str, frame_id: str) -> Frame:
        frame = await self.frames.get(frame_id, user_id=user_id)
        if frame is None:
            raise NotFoundError("Frame", frame_id)
        return frame

    async def list_pages(self, user_id: str, frame_id: str) -> list[Frame]:
        """Page frames of a document, sorted by page number."""
        parent = await self.get_frame(user_id, frame_id)
        return await self.frames.list_pages(parent.id, user_id)

    async def list_uploads(self, user_id: str, page: int = 1, limit: int = 20) -> dict:
        """Past uploads with pagination info. Pages and failed frames are excluded."""
        if page < 1:
            raise InvalidInputError("page must be >= 1")
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise InvalidInputError(f"limit must be between 1 and {MAX_PAGE_SIZE}")

        frames, total = await self.frames.list_uploads(
            user_id, limit=limit, offset=(page - 1) * limit
        )
        return {
            "uploads": frames,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": -(-total // limit),
            },
        }


async def get_ingestion_orchestrator(db: AsyncSession) -> IngestionOrchestrator:
    """Build an orchestrator bound to a request-scoped session."""
    settings = get_settings()
    indexer = await get_indexer() if settings.index_frame_text else None
    return IngestionOrchestrator(
        frames=FrameRepository(db),
        storage=get_storage(),
        ocr=get_ocr_engine(),
        rasterizer=get_rasterizer(),
        concepts=await get_concept_extractor(),
        indexer=indexer,
        dpi=settings.pdf_dpi,
        max_upload_bytes=settings.max_upload_bytes,
    )
