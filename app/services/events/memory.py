"""
In-process change feed.

Each subscriber owns an asyncio.Queue; publish() pushes the event onto
every queue whose filter matches. Only reaches subscribers in the same
process, which is all a single development server needs.
"""

import asyncio
import logging
from typing import AsyncIterator, Optional

from app.services.events.base import BaseChangeFeed, ChangeEvent

logger = logging.getLogger(__name__)


class _Subscription:
    def __init__(self, workspace_id: str, table_number: Optional[int], maxsize: int):
        self.workspace_id = workspace_id
        self.table_number = table_number
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)


class MemoryChangeFeed(BaseChangeFeed):
    """
    Fan-out over asyncio queues.

    A subscriber that stops draining its queue loses the oldest events
    once ``queue_size`` is reached; clients re-sync by polling.
    """

    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        self._subscriptions: set[_Subscription] = set()

    @property
    def provider_name(self) -> str:
        return "memory"

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    async def publish(self, event: ChangeEvent) -> None:
        delivered = 0
        for sub in list(self._subscriptions):
            if not event.matches(sub.workspace_id, sub.table_number):
                continue
            if sub.queue.full():
                sub.queue.get_nowait()
            sub.queue.put_nowait(event)
            delivered += 1
        logger.debug(
            f"Published {event.table}/{event.change_type.value} #{event.row_id} "
            f"to {delivered} subscriber(s)"
        )

    async def subscribe(
        self,
        workspace_id: str,
        table_number: Optional[int] = None,
    ) -> AsyncIterator[ChangeEvent]:
        sub = _Subscription(workspace_id, table_number, self.queue_size)
        self._subscriptions.add(sub)
        try:
            while True:
                yield await sub.queue.get()
        finally:
            self._subscriptions.discard(sub)

    async def health_check(self) -> bool:
        return True
