"""
Redis pub/sub change feed.

One channel per workspace ("<prefix>:<workspace_id>"), so every API
worker sees changes made by any other worker. Table filtering happens
on the subscriber side.
"""

import logging
from typing import AsyncIterator, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from app.core.config import get_settings
from app.core.errors import ChangeFeedError
from app.services.events.base import BaseChangeFeed, ChangeEvent

logger = logging.getLogger(__name__)


class RedisChangeFeed(BaseChangeFeed):
    """Change feed backed by Redis pub/sub."""

    def __init__(self, redis_url: Optional[str] = None, channel_prefix: Optional[str] = None):
        settings = get_settings()
        self.redis_url = redis_url or settings.redis_url
        self.channel_prefix = channel_prefix or settings.change_feed_channel_prefix
        self._client = redis.from_url(self.redis_url, decode_responses=True)

        logger.info(f"RedisChangeFeed initialized (prefix={self.channel_prefix})")

    @property
    def provider_name(self) -> str:
        return "redis"

    def channel_for(self, workspace_id: str) -> str:
        return f"{self.channel_prefix}:{workspace_id}"

    async def publish(self, event: ChangeEvent) -> None:
        try:
            receivers = await self._client.publish(
                self.channel_for(event.workspace_id),
                event.to_json(),
            )
        except RedisError as e:
            raise ChangeFeedError(detail=str(e)) from e
        logger.debug(
            f"Published {event.table}/{event.change_type.value} #{event.row_id} "
            f"to {receivers} Redis subscriber(s)"
        )

    async def subscribe(
        self,
        workspace_id: str,
        table_number: Optional[int] = None,
    ) -> AsyncIterator[ChangeEvent]:
        pubsub = self._client.pubsub()
        await pubsub.subscribe(self.channel_for(workspace_id))
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                event = ChangeEvent.from_json(message["data"])
                if event.matches(workspace_id, table_number):
                    yield event
        finally:
            await pubsub.unsubscribe(self.channel_for(workspace_id))
            await pubsub.aclose()

    async def health_check(self) -> bool:
        try:
            return bool(await self._client.ping())
        except redis.RedisError as e:
            logger.error(f"Redis change feed health check failed: {e}")
            return False

    async def close(self) -> None:
        await self._client.aclose()
