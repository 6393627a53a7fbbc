"""Media storage on S3-compatible object stores (MinIO, Supabase, AWS).

boto3 is synchronous; calls run in a worker thread so the event loop
stays free while large uploads are in flight.
"""

import asyncio
import io
import logging
import mimetypes
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import PurePosixPath
from uuid import uuid4

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError
from PIL import Image, UnidentifiedImageError

from edusense.core.config import get_settings
from edusense.core.exceptions import CollaboratorError

logger = logging.getLogger(__name__)


@dataclass
class StoredObject:
    """Result of an upload."""

    url: str
    public_id: str
    bytes: int
    width: int | None = None
    height: int | None = None
    format: str | None = None


def image_dimensions(data: bytes) -> tuple[int | None, int | None, str | None]:
    """Width, height and format of image bytes; Nones if not an image."""
    try:
        with Image.open(io.BytesIO(data)) as image:
            return image.width, image.height, (image.format or "").lower() or None
    except (UnidentifiedImageError, OSError):
        return None, None, None


class MediaStorage(ABC):
    """Binary media hosting."""

    @abstractmethod
    async def upload(
        self,
        data: bytes,
        folder: str,
        resource_type: str = "image",
        filename: str | None = None,
        content_type: str | None = None,
    ) -> StoredObject:
        """Store bytes and return a stable URL."""

    @abstractmethod
    async def download(self, public_id: str) -> bytes:
        """Fetch stored bytes."""

    @abstractmethod
    async def delete(self, public_id: str, resource_type: str = "image") -> None:
        """Remove a stored object."""


class S3MediaStorage(MediaStorage):
    """MediaStorage backed by an S3 bucket."""

    def __init__(
        self,
        client,
        bucket: str,
        public_base_url: str,
        root_folder: str = "edusense",
    ):
        self.client = client
        self.bucket = bucket
        self.public_base_url = public_base_url.rstrip("/")
        self.root_folder = root_folder.strip("/")

    def _key(self, folder: str, filename: str | None, content_type: str | None) -> str:
        suffix = PurePosixPath(filename).suffix.lower() if filename else ""
        if not suffix and content_type:
            suffix = mimetypes.guess_extension(content_type) or ""
        return f"{self.root_folder}/{folder.strip('/')}/{uuid4().hex}{suffix}"

    def url_for(self, public_id: str) -> str:
        return f"{self.public_base_url}/{public_id}"

    async def upload(
        self,
        data: bytes,
        folder: str,
        resource_type: str = "image",
        filename: str | None = None,
        content_type: str | None = None,
    ) -> StoredObject:
        key = self._key(folder, filename, content_type)
        extra = {"ContentType": content_type} if content_type else {}

        try:
            await asyncio.to_thread(
                self.client.put_object, Bucket=self.bucket, Key=key, Body=data, **extra
            )
        except (ClientError, BotoCoreError) as e:
            logger.exception("Failed to upload '%s' to bucket '%s'", key, self.bucket)
            raise CollaboratorError("Storage upload failed", detail=str(e)) from e

        width = height = fmt = None
        if resource_type == "image":
            width, height, fmt = image_dimensions(data)

        logger.info(f"[Storage] Uploaded {len(data)} bytes to {key}")
        return StoredObject(
            url=self.url_for(key),
            public_id=key,
            bytes=len(data),
            width=width,
            height=height,
            format=fmt or (PurePosixPath(key).suffix.lstrip(".") or None),
        )

    async def download(self, public_id: str) -> bytes:
        try:
            response = await asyncio.to_thread(
                self.client.get_object, Bucket=self.bucket, Key=public_id
            )
            return await asyncio.to_thread(response["Body"].read)
        except (ClientError, BotoCoreError) as e:
            logger.exception("Failed to download '%s' from bucket '%s'", public_id, self.bucket)
            raise CollaboratorError("Storage download failed", detail=str(e)) from e

    async def delete(self, public_id: str, resource_type: str = "image") -> None:
        try:
            await asyncio.to_thread(self.client.delete_object, Bucket=self.bucket, Key=public_id)
        except (ClientError, BotoCoreError) as e:
            raise CollaboratorError("Storage delete failed", detail=str(e)) from e


_storage: MediaStorage | None = None


def get_storage() -> MediaStorage:
    """Get or create the global MediaStorage."""
    global _storage
    if _storage is not None:
        return _storage

    settings = get_settings()
    client = boto3.client(
        "s3",
        endpoint_url=settings.storage_endpoint_url,
        region_name=settings.storage_region,
        aws_access_key_id=settings.storage_access_key or None,
        aws_secret_access_key=settings.storage_secret_key or None,
        config=Config(signature_version="s3v4"),
    )
    public_base_url = (
        settings.storage_public_base_url
        or f"{settings.storage_endpoint_url.rstrip('/')}/{settings.storage_bucket}"
    )
    _storage = S3MediaStorage(
        client,
        bucket=settings.storage_bucket,
        public_base_url=public_base_url,
        root_folder=settings.storage_root_folder,
    )
    return _storage
