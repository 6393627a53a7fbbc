"""Server-side image cropping with Pillow."""

import asyncio
import io
from dataclasses import asdict, dataclass

from PIL import Image, UnidentifiedImageError

from edusense.core.exceptions import CollaboratorError, InvalidInputError


@dataclass
class CropRect:
    """Crop rectangle in client coordinates; ``scale`` maps to image pixels."""

    x: float
    y: float
    width: float
    height: float
    scale: float = 1.0

    def scaled(self) -> tuple[int, int, int, int]:
        """(left, top, width, height) in image pixels."""
        return (
            round(self.x * self.scale),
            round(self.y * self.scale),
            round(self.width * self.scale),
            round(self.height * self.scale),
        )

    def to_dict(self) -> dict:
        return asdict(self)


def validate_crop(rect: CropRect) -> None:
    """Reject rectangles that can never be valid, before any I/O."""
    if rect.x < 0 or rect.y < 0 or rect.width <= 0 or rect.height <= 0:
        raise InvalidInputError("Invalid crop coordinates")
    if rect.scale <= 0:
        raise InvalidInputError("Crop scale must be positive")


def _crop(image_bytes: bytes, rect: CropRect) -> bytes:
    left, top, width, height = rect.scaled()

    try:
        with Image.open(io.BytesIO(image_bytes)) as image:
            if left + width > image.width or top + height > image.height:
                raise InvalidInputError("Crop coordinates exceed image bounds")

            cropped = image.crop((left, top, left + width, top + height))
            fmt = image.format or "PNG"
            if fmt.upper() == "JPEG" and cropped.mode not in ("RGB", "L"):
                cropped = cropped.convert("RGB")

            buffer = io.BytesIO()
            cropped.save(buffer, format=fmt)
            return buffer.getvalue()
    except (UnidentifiedImageError, OSError) as e:
        raise CollaboratorError("Failed to crop image", detail=str(e)) from e


async def crop_image(image_bytes: bytes, rect: CropRect) -> bytes:
    """Crop image bytes to ``rect`` (after scaling), keeping the source format.

    Raises:
        InvalidInputError: Invalid rectangle, or one outside the image
        CollaboratorError: Unreadable image
    """
    validate_crop(rect)
    return await asyncio.to_thread(_crop, image_bytes, rect)
