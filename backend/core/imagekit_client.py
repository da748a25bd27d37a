import logging
import os
import posixpath
import tempfile

from fastapi.concurrency import run_in_threadpool
from imagekitio import ImageKit
from imagekitio.models.UploadFileRequestOptions import UploadFileRequestOptions

from core.blob_store import BlobRef, BlobStore
from core.config import settings
from core.errors import StorageUploadError

logger = logging.getLogger(__name__)


class ImageKitBlobStore(BlobStore):
    """Cover storage on ImageKit. The blob reference is the ImageKit file_id."""

    def __init__(self, client: ImageKit):
        self.client = client

    @classmethod
    def from_settings(cls) -> "ImageKitBlobStore":
        return cls(
            ImageKit(
                public_key=settings.imagekit_public_key,
                private_key=settings.imagekit_private_key,
                url_endpoint=settings.imagekit_url_endpoint,
            )
        )

    def _upload_sync(self, path: str, data: bytes):
        folder, file_name = posixpath.split(path)
        file_ext = os.path.splitext(file_name)[1] or ".jpg"
        temp_file_path = None

        try:
            # ImageKit SDK requires a file object opened in binary mode
            with tempfile.NamedTemporaryFile(delete=False, suffix=file_ext, mode="wb") as temp_file:
                temp_file.write(data)
                temp_file_path = temp_file.name
                temp_file.flush()
                os.fsync(temp_file.fileno())

            upload_options = UploadFileRequestOptions(
                folder=folder or "/",
                use_unique_file_name=False,
                overwrite_file=True,
                is_private_file=False,
            )

            with open(temp_file_path, "rb") as file_obj:
                file_obj.seek(0, os.SEEK_END)
                file_size = file_obj.tell()
                file_obj.seek(0)

                if file_size != len(data):
                    raise ValueError(f"Temporary file size mismatch: expected {len(data)} bytes, got {file_size} bytes")

                return self.client.upload_file(
                    file=file_obj,
                    file_name=file_name,
                    options=upload_options,
                )
        finally:
            if temp_file_path and os.path.exists(temp_file_path):
                try:
                    os.unlink(temp_file_path)
                except OSError as cleanup_error:
                    logger.warning("Failed to delete temporary file %s: %s", temp_file_path, cleanup_error)

    async def upload(self, path: str, data: bytes, content_type: str) -> BlobRef:
        if len(data) < 100:
            raise StorageUploadError(path, f"file data too small: {len(data)} bytes")
        try:
            upload = await run_in_threadpool(self._upload_sync, path, data)
        except Exception as e:
            logger.exception("ImageKit upload failed for path=%s", path)
            raise StorageUploadError(path, str(e)) from e

        if not upload or not upload.url:
            raise StorageUploadError(path, "upload returned no URL")

        logger.info("ImageKit upload ok: path=%s file_id=%s size=%d", path, upload.file_id, len(data))
        return BlobRef(ref=upload.file_id, url=upload.url)

    async def get_download_url(self, ref: str) -> str:
        details = await run_in_threadpool(self.client.get_file_details, ref)
        return details.url

    async def delete(self, ref: str) -> bool:
        if not ref:
            return False
        await run_in_threadpool(self.client.delete_file, ref)
        logger.info("ImageKit file deleted: file_id=%s", ref)
        return True
