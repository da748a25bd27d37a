"""
Blob storage for cover images.

`BlobStore.upload` returns a `BlobRef` (backend reference + download URL).
Two backends:
- DatabaseBlobStore: bytes stored in the `images` table, served by /images/serve/{id}
- ImageKitBlobStore: see core.imagekit_client
"""

import logging
import os
import uuid
from dataclasses import dataclass

from fastapi import Depends
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.config import settings
from core.errors import StorageUploadError
from db.database import get_session_maker
from db.image import Image

logger = logging.getLogger(__name__)

EXT_TO_CONTENT_TYPE = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "heic": "image/heic",
    "heif": "image/heif",
    "svg": "image/svg+xml",
}

MAX_BLOB_BYTES = 25 * 1024 * 1024


def content_type_for(filename: str, declared: str = None) -> str:
    declared = (declared or "").strip().lower()
    if declared and declared != "application/octet-stream":
        return declared
    ext = os.path.splitext(filename or "")[1].lower().lstrip(".")
    return EXT_TO_CONTENT_TYPE.get(ext, "application/octet-stream")


@dataclass(frozen=True)
class BlobRef:
    ref: str
    url: str


class BlobStore:
    async def upload(self, path: str, data: bytes, content_type: str) -> BlobRef:
        raise NotImplementedError

    async def get_download_url(self, ref: str) -> str:
        raise NotImplementedError

    async def delete(self, ref: str) -> bool:
        """Remove a blob by reference. Returns False when there was nothing to remove."""
        raise NotImplementedError


class DatabaseBlobStore(BlobStore):
    """
    Keeps blobs as rows. Every upload is a new row, even for a path that is
    already stored; callers delete the superseded ref once nothing points at it.
    """

    def __init__(self, session_maker: async_sessionmaker, serve_prefix: str = "/images/serve"):
        self.session_maker = session_maker
        self.serve_prefix = serve_prefix.rstrip("/")

    async def upload(self, path: str, data: bytes, content_type: str) -> BlobRef:
        if not data:
            raise StorageUploadError(path, "empty file")
        if len(data) > MAX_BLOB_BYTES:
            raise StorageUploadError(path, "file exceeds 25MB")
        try:
            async with self.session_maker() as session:
                async with session.begin():
                    img = Image(path=path, data=data, content_type=content_type)
                    session.add(img)
                    await session.flush()
                    image_id = img.id
        except Exception as e:
            logger.exception("Blob upload failed for path=%s", path)
            raise StorageUploadError(path, str(e)) from e
        ref = str(image_id)
        return BlobRef(ref=ref, url=await self.get_download_url(ref))

    async def get_download_url(self, ref: str) -> str:
        return f"{self.serve_prefix}/{ref}"

    async def delete(self, ref: str) -> bool:
        try:
            image_id = uuid.UUID(str(ref))
        except ValueError:
            return False
        async with self.session_maker() as session:
            async with session.begin():
                res = await session.execute(delete(Image).where(Image.id == image_id))
        return bool(res.rowcount)


def get_blob_store(session_maker: async_sessionmaker = Depends(get_session_maker)) -> BlobStore:
    if settings.blob_backend == "imagekit":
        from core.imagekit_client import ImageKitBlobStore

        return ImageKitBlobStore.from_settings()
    return DatabaseBlobStore(session_maker)
