"""
Object Storage Abstract Base Class

Binary uploads (menu images, workspace logos) go to a named bucket and
come back as a public URL. Implementations decide where bytes live.
"""

import random
import string
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

ALLOWED_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "webp", "svg"}
MAX_UPLOAD_BYTES = 5 * 1024 * 1024


@dataclass
class UploadResult:
    success: bool
    url: Optional[str] = None
    path: Optional[str] = None
    bucket: Optional[str] = None
    error_message: Optional[str] = None


def file_extension(filename: Optional[str]) -> str:
    """Lower-cased extension of ``filename``; "jpg" when it has none."""
    name = str(filename or "")
    if "." not in name:
        return "jpg"
    return name.rsplit(".", 1)[-1].lower() or "jpg"


def object_path(filename: Optional[str], prefix: str = "menu") -> str:
    """``<prefix>/<millis>-<random>.<ext>``"""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=10))
    return f"{prefix}/{int(time.time() * 1000)}-{suffix}.{file_extension(filename)}"


class BaseStorageService(ABC):

    @property
    @abstractmethod
    def provider_name(self) -> str:
        pass

    @abstractmethod
    async def upload(
        self,
        filename: str,
        content: bytes,
        bucket: Optional[str] = None,
        prefix: str = "menu",
    ) -> UploadResult:
        """Store ``content`` and return where it can be fetched from."""
        pass

    @abstractmethod
    def public_url(self, path: str, bucket: Optional[str] = None) -> str:
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        pass
