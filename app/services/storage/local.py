"""
Local filesystem storage.

Files are written to ``<media_directory>/<bucket>/<path>`` and served by
the API under ``<media_base_url>/<bucket>/<path>``.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

from app.core.config import get_settings
from app.services.storage.base import (
    ALLOWED_EXTENSIONS,
    MAX_UPLOAD_BYTES,
    BaseStorageService,
    UploadResult,
    file_extension,
    object_path,
)

logger = logging.getLogger(__name__)


class LocalStorageService(BaseStorageService):

    def __init__(self, root: Optional[str] = None, base_url: Optional[str] = None):
        settings = get_settings()
        self.root = Path(root or settings.media_directory)
        self.base_url = (base_url or settings.media_base_url).rstrip("/")
        self.default_bucket = settings.media_bucket

        logger.info(f"LocalStorageService initialized (root={self.root})")

    @property
    def provider_name(self) -> str:
        return "local"

    def public_url(self, path: str, bucket: Optional[str] = None) -> str:
        return f"{self.base_url}/{bucket or self.default_bucket}/{path}"

    def _write(self, target: Path, content: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)

    async def upload(
        self,
        filename: str,
        content: bytes,
        bucket: Optional[str] = None,
        prefix: str = "menu",
    ) -> UploadResult:
        bucket = bucket or self.default_bucket

        if not content:
            return UploadResult(success=False, error_message="Uploaded file is empty")
        if len(content) > MAX_UPLOAD_BYTES:
            return UploadResult(success=False, error_message="File is larger than 5 MB")
        if file_extension(filename) not in ALLOWED_EXTENSIONS:
            return UploadResult(success=False, error_message="Only image files can be uploaded")

        path = object_path(filename, prefix=prefix)
        target = self.root / bucket / path
        try:
            await asyncio.to_thread(self._write, target, content)
        except OSError as e:
            logger.error(f"Failed to store upload {path}: {e}")
            return UploadResult(
                success=False,
                error_message=f"Failed to upload image. Check bucket \"{bucket}\" permissions.",
            )

        logger.info(f"Stored {len(content)} bytes at {bucket}/{path}")
        return UploadResult(
            success=True,
            url=self.public_url(path, bucket),
            path=path,
            bucket=bucket,
        )

    async def health_check(self) -> bool:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            return True
        except OSError:
            return False
