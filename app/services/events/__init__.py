"""
Change Feed Factory

Returns the in-memory or Redis change feed based on CHANGE_FEED_BACKEND.

Usage:
    from app.services.events import publish_change, ChangeEvent

    await publish_change(event)
"""

import logging
from functools import lru_cache

from app.core.config import get_settings
from app.core.errors import ChangeFeedError
from app.services.events.base import BaseChangeFeed, ChangeEvent, ChangeType
from app.services.events.memory import MemoryChangeFeed

logger = logging.getLogger(__name__)


@lru_cache()
def get_change_feed() -> BaseChangeFeed:
    """Get the configured change feed (cached singleton)."""
    settings = get_settings()

    if settings.use_redis_feed:
        from app.services.events.redis import RedisChangeFeed

        logger.info("Change Feed: Using RedisChangeFeed")
        return RedisChangeFeed()

    logger.info("Change Feed: Using MemoryChangeFeed")
    return MemoryChangeFeed()


def reset_change_feed() -> None:
    """Clear the cached change feed instance."""
    get_change_feed.cache_clear()


async def publish_change(event: ChangeEvent) -> bool:
    """
    Publish a change that is already committed.

    Transport failures are logged and swallowed so the caller still
    returns the committed result; clients catch up on their next poll.
    """
    try:
        await get_change_feed().publish(event)
    except ChangeFeedError as e:
        logger.warning(
            f"Change feed publish failed for {event.table} #{event.row_id}: {e.detail or e.message}"
        )
        return False
    return True


__all__ = [
    "get_change_feed",
    "reset_change_feed",
    "publish_change",
    "BaseChangeFeed",
    "ChangeEvent",
    "ChangeType",
    "MemoryChangeFeed",
]
