"""Media endpoints: image/PDF uploads, crops, region text and frame reads."""

import logging

from fastapi import APIRouter, File, HTTPException, Query, UploadFile, status
from pydantic import BaseModel

from edusense.api.deps import CurrentUser, Ingestion, to_http_exception
from edusense.core.exceptions import EduSenseError
from edusense.db.models import Frame
from edusense.ingestion.crop import CropRect

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/media")


# ============================================
# Request/Response Models
# ============================================


class FrameResponse(BaseModel):
    """Frame state and OCR results."""

    id: str
    source_type: str
    status: str
    source_url: str
    preview_url: str
    crop_url: str | None = None
    parent_id: str | None = None
    page_number: int | None = None
    crop_rect: dict | None = None
    filename: str | None = None
    ocr_text: str | None = None
    ocr_confidence: float | None = None
    ocr_raw: dict | None = None
    has_handwriting: bool = False
    concept_tags: list[str] = []
    difficulty: str
    summary: str | None = None
    topics: list[str] = []
    error_message: str | None = None
    file_size: int | None = None
    mime_type: str | None = None
    width: int | None = None
    height: int | None = None
    page_count: int | None = None
    document_metadata: dict | None = None
    created_at: str | None = None
    processed_at: str | None = None


class DocumentUploadResponse(BaseModel):
    """Parent document frame plus its page frames."""

    document: FrameResponse
    page_count: int
    pages: list[FrameResponse]


class CropRequest(BaseModel):
    """Crop rectangle in client coordinates."""

    x: float
    y: float
    width: float
    height: float
    scale: float = 1.0


class RegionRequest(BaseModel):
    """Region to read text from, in image pixels."""

    x: float
    y: float
    width: float
    height: float


class RegionTextResponse(BaseModel):
    text: str
    word_count: int
    region: dict


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class UploadsResponse(BaseModel):
    uploads: list[FrameResponse]
    pagination: Pagination


class DeleteFrameResponse(BaseModel):
    frame_id: str
    deleted_count: int


def frame_response(frame: Frame, include_raw: bool = True) -> FrameResponse:
    """Convert a Frame row to its API shape."""
    return FrameResponse(
        id=frame.id,
        source_type=frame.source_type.value,
        status=frame.status.value,
        source_url=frame.source_url,
        preview_url=frame.crop_url or frame.source_url,
        crop_url=frame.crop_url,
        parent_id=frame.parent_id,
        page_number=frame.page_number,
        crop_rect=frame.crop_rect,
        filename=frame.filename,
        ocr_text=frame.ocr_text,
        ocr_confidence=frame.ocr_confidence,
        ocr_raw=frame.ocr_raw if include_raw else None,
        has_handwriting=bool(frame.has_handwriting),
        concept_tags=frame.concept_tags or [],
        difficulty=frame.difficulty.value,
        summary=frame.summary,
        topics=frame.topics or [],
        error_message=frame.error_message,
        file_size=frame.file_size,
        mime_type=frame.mime_type,
        width=frame.width,
        height=frame.height,
        page_count=frame.page_count,
        document_metadata=frame.document_metadata,
        created_at=frame.created_at.isoformat() if frame.created_at else None,
        processed_at=frame.processed_at.isoformat() if frame.processed_at else None,
    )


# ============================================
# Uploads
# ============================================


@router.post("/images", response_model=FrameResponse, status_code=status.HTTP_201_CREATED)
async def upload_image(
    user: CurrentUser,
    ingestion: Ingestion,
    file: UploadFile = File(...),
):
    """Upload an image and run OCR on it.

    Processing happens within the request: the response carries the
    frame in its terminal status (completed or failed).
    """
    content = await file.read()
    try:
        frame = await ingestion.ingest_image(
            user.sub, content, filename=file.filename, content_type=file.content_type
        )
    except EduSenseError as e:
        raise to_http_exception(e) from None
    return frame_response(frame)


@router.post("/pdfs", response_model=DocumentUploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_pdf(
    user: CurrentUser,
    ingestion: Ingestion,
    file: UploadFile = File(...),
):
    """Upload a PDF; every page is rasterized and OCR'd in page order."""
    content = await file.read()
    try:
        document, pages = await ingestion.ingest_document(user.sub, content, filename=file.filename)
    except EduSenseError as e:
        raise to_http_exception(e) from None

    return DocumentUploadResponse(
        document=frame_response(document, include_raw=False),
        page_count=document.page_count or len(pages),
        pages=[frame_response(page) for page in pages],
    )


@router.get("/uploads", response_model=UploadsResponse)
async def list_uploads(
    user: CurrentUser,
    ingestion: Ingestion,
    page: int = Query(1),
    limit: int = Query(20),
):
    """List past uploads, newest first. PDF pages and failed uploads are excluded."""
    try:
        result = await ingestion.list_uploads(user.sub, page=page, limit=limit)
    except EduSenseError as e:
        raise to_http_exception(e) from None

    return UploadsResponse(
        uploads=[frame_response(f, include_raw=False) for f in result["uploads"]],
        pagination=Pagination(**result["pagination"]),
    )


# ============================================
# Frames
# ============================================


@router.get("/frames/{frame_id}", response_model=FrameResponse)
async def get_frame(frame_id: str, user: CurrentUser, ingestion: Ingestion):
    try:
        frame = await ingestion.get_frame(user.sub, frame_id)
    except EduSenseError as e:
        raise to_http_exception(e) from None
    return frame_response(frame)


@router.get("/frames/{frame_id}/pages", response_model=list[FrameResponse])
async def get_pages(frame_id: str, user: CurrentUser, ingestion: Ingestion):
    """Page frames of an uploaded PDF, sorted by page number."""
    try:
        pages = await ingestion.list_pages(user.sub, frame_id)
    except EduSenseError as e:
        raise to_http_exception(e) from None
    return [frame_response(page) for page in pages]


@router.post(
    "/frames/{frame_id}/crop",
    response_model=FrameResponse,
    status_code=status.HTTP_201_CREATED,
)
async def extract_crop(
    frame_id: str,
    body: CropRequest,
    user: CurrentUser,
    ingestion: Ingestion,
):
    """Crop part of a frame into a new frame and OCR it."""
    rect = CropRect(x=body.x, y=body.y, width=body.width, height=body.height, scale=body.scale)
    try:
        frame = await ingestion.extract_crop(user.sub, frame_id, rect)
    except EduSenseError as e:
        raise to_http_exception(e) from None
    return frame_response(frame)


@router.post("/frames/{frame_id}/region-text", response_model=RegionTextResponse)
async def extract_region_text(
    frame_id: str,
    body: RegionRequest,
    user: CurrentUser,
    ingestion: Ingestion,
):
    """Text of the words inside a region. Runs OCR first if the frame has none."""
    rect = CropRect(x=body.x, y=body.y, width=body.width, height=body.height)
    try:
        result = await ingestion.extract_region(user.sub, frame_id, rect)
    except EduSenseError as e:
        raise to_http_exception(e) from None
    return RegionTextResponse(**result)


@router.delete("/frames/{frame_id}", response_model=DeleteFrameResponse)
async def delete_frame(frame_id: str, user: CurrentUser, ingestion: Ingestion):
    """Delete a frame, its pages and crops, stored files and indexed chunks."""
    try:
        deleted = await ingestion.delete_frame(user.sub, frame_id)
    except EduSenseError as e:
        raise to_http_exception(e) from None
    except Exception as e:
        logger.exception(f"[Media] Deleting frame {frame_id} failed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to delete frame: {e!s}",
        ) from None
    return DeleteFrameResponse(frame_id=frame_id, deleted_count=deleted)
