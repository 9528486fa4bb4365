"""
Storage Service Factory

Usage:
    from app.services.storage import get_storage_service

    result = await get_storage_service().upload("dish.png", data)
"""

import logging
from functools import lru_cache

from app.services.storage.base import BaseStorageService, UploadResult
from app.services.storage.local import LocalStorageService

logger = logging.getLogger(__name__)


@lru_cache()
def get_storage_service() -> BaseStorageService:
    """Get the configured storage service (cached singleton)."""
    logger.info("Storage Service: Using LocalStorageService")
    return LocalStorageService()


def reset_storage_service() -> None:
    get_storage_service.cache_clear()


__all__ = [
    "get_storage_service",
    "reset_storage_service",
    "BaseStorageService",
    "LocalStorageService",
    "UploadResult",
]
