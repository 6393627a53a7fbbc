"""PDF page rasterization and metadata."""

import asyncio
import io
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

from pdf2image import convert_from_bytes
from pdf2image.exceptions import PDFInfoNotInstalledError, PDFPageCountError, PDFSyntaxError
from pypdf import PdfReader
from pypdf.errors import PdfReadError

from edusense.core.config import get_settings
from edusense.core.exceptions import CollaboratorError

logger = logging.getLogger(__name__)

DEFAULT_DPI = 200


@dataclass
class RenderedPage:
    page_number: int
    image_bytes: bytes
    width: int
    height: int


class PdfRasterizer(ABC):
    """Turns PDF bytes into page images."""

    @abstractmethod
    async def convert_to_images(self, data: bytes, dpi: int = DEFAULT_DPI) -> list[RenderedPage]:
        """Render every page, in page order."""

    @abstractmethod
    async def get_metadata(self, data: bytes) -> dict:
        """Return {page_count, title, author, creation_date}."""


class Pdf2ImageRasterizer(PdfRasterizer):
    """Poppler rendering through pdf2image, metadata through pypdf."""

    def __init__(self, dpi: int = DEFAULT_DPI):
        self.dpi = dpi

    def _render(self, data: bytes, dpi: int) -> list[RenderedPage]:
        try:
            images = convert_from_bytes(data, dpi=dpi, fmt="png")
        except (PDFInfoNotInstalledError, PDFPageCountError, PDFSyntaxError) as e:
            raise CollaboratorError("PDF rasterization failed", detail=str(e)) from e

        pages = []
        for number, image in enumerate(images, start=1):
            buffer = io.BytesIO()
            image.save(buffer, format="PNG")
            pages.append(
                RenderedPage(
                    page_number=number,
                    image_bytes=buffer.getvalue(),
                    width=image.width,
                    height=image.height,
                )
            )
            image.close()
        return pages

    def _read_metadata(self, data: bytes) -> dict:
        try:
            reader = PdfReader(io.BytesIO(data))
            info = reader.metadata
            page_count = len(reader.pages)
        except (PdfReadError, ValueError) as e:
            raise CollaboratorError("Unreadable PDF", detail=str(e)) from e

        creation_date = None
        if info is not None:
            try:
                created = info.creation_date
                creation_date = created.isoformat() if created else None
            except ValueError:
                creation_date = None

        return {
            "page_count": page_count,
            "title": (info.title if info and info.title else None) or "Untitled",
            "author": (info.author if info and info.author else None) or "Unknown",
            "creation_date": creation_date,
        }

    async def convert_to_images(self, data: bytes, dpi: int | None = None) -> list[RenderedPage]:
        pages = await asyncio.to_thread(self._render, data, dpi or self.dpi)
        logger.info(f"[PDF] Rendered {len(pages)} pages at {dpi or self.dpi} dpi")
        return pages

    async def get_metadata(self, data: bytes) -> dict:
        return await asyncio.to_thread(self._read_metadata, data)


_rasterizer: PdfRasterizer | None = None


def get_rasterizer() -> PdfRasterizer:
    """Get or create the global rasterizer."""
    global _rasterizer
    if _rasterizer is None:
        _rasterizer = Pdf2ImageRasterizer(dpi=get_settings().pdf_dpi)
    return _rasterizer
