"""
Tests for the change feed and service requests.
"""

import asyncio
import logging

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

import app.services.events
from app.core.errors import ChangeFeedError, NotFoundError
from app.models import ServiceRequestType
from app.services import orders, service_requests
from app.services.events import BaseChangeFeed, ChangeEvent, ChangeType, MemoryChangeFeed, publish_change
from app.services.events.redis import RedisChangeFeed


def order_event(workspace_id="ws-1", table_number=3, row_id=1):
    return ChangeEvent(
        workspace_id=workspace_id,
        table="orders",
        change_type=ChangeType.UPDATE,
        row_id=row_id,
        table_number=table_number,
        payload={"status": "READY"},
    )


class UnreachableFeed(BaseChangeFeed):
    """A transport that is down: every publish fails."""

    
    def provider_name(self) -> str:
        return "unreachable"

    async def publish(self, event: ChangeEvent) -> None:
        raise ChangeFeedError(detail="connection refused")

    async def subscribe(self, workspace_id, table_number=None):
        raise ChangeFeedError(detail="connection refused")
        yield

    async def health_check(self) -> bool:
        return False


class RefusingRedisClient:
    async def publish(self, channel, message):
        raise RedisConnectionError("Error 111 connecting to localhost:6379")


async def start_listening(feed, workspace_id, table_number=None):
    """Subscribe and wait until the subscription is registered."""
    stream = feed.subscribe(workspace_id, table_number)
    pending = asyncio.ensure_future(stream.__anext__())
    await asyncio.sleep(0)
    return stream, pending


class TestChangeEvent:

    def test_matches_workspace_and_table(self):
        event = order_event()
        assert event.matches("ws-1")
        assert event.matches("ws-1", 3)
        assert not event.matches("ws-1", 4)
        assert not event.matches("ws-2")

    def test_json_round_trip(self):
        event = order_event()
        restored = ChangeEvent.from_json(event.to_json())
        assert restored == event


class TestMemoryChangeFeed:

    async def test_subscriber_receives_matching_event(self):
        feed = MemoryChangeFeed()
        stream, pending = await start_listening(feed, "ws-1", 3)
        assert feed.subscriber_count == 1

        await feed.publish(order_event(row_id=42))

        received = await asyncio.wait_for(pending, timeout=1)
        assert received.row_id == 42
        await stream.aclose()
        assert feed.subscriber_count == 0

    async def test_other_workspace_is_filtered(self):
        feed = MemoryChangeFeed()
        stream, pending = await start_listening(feed, "ws-1")

        await feed.publish(order_event(workspace_id="ws-2", row_id=1))
        await feed.publish(order_event(workspace_id="ws-1", row_id=2))

        received = await asyncio.wait_for(pending, timeout=1)
        assert received.row_id == 2
        await stream.aclose()

    async def test_full_queue_drops_oldest(self):
        feed = MemoryChangeFeed(queue_size=2)
        stream, pending = await start_listening(feed, "ws-1")

        for row_id in (1, 2, 3):
            await feed.publish(order_event(row_id=row_id))

        assert (await asyncio.wait_for(pending, timeout=1)).row_id == 2
        assert (await asyncio.wait_for(stream.__anext__(), timeout=1)).row_id == 3
        await stream.aclose()

    async def test_health_check(self):
        assert await MemoryChangeFeed().health_check()


class TestServiceNotifications:

    async def test_new_order_is_published_to_its_table(self, change_feed, workspace, place):
        stream, pending = await start_listening(change_feed, workspace.id, 3)

        order = await place(3, "9876543210", ("Latte", 1))

        event = await asyncio.wait_for(pending, timeout=1)
        assert event.table == "orders"
        assert event.change_type == ChangeType.INSERT
        assert event.row_id == order.id
        assert event.payload["items"][0]["name"] == "Latte"
        await stream.aclose()

    async def test_service_request_lifecycle(self, db, workspace, menu, change_feed):
        stream, pending = await start_listening(change_feed, workspace.id)

        request = await service_requests.create_request(
            db, workspace.id, 2, ServiceRequestType.WATER, message="  Two glasses ", customer_phone="9876543210"
        )
        event = await asyncio.wait_for(pending, timeout=1)
        assert event.table == "service_requests"
        assert event.payload["request_type"] == "WATER"
        assert request.message == "Two glasses"

        assert [r.id for r in await service_requests.list_open_requests(db, workspace.id)] == [request.id]

        resolved = await service_requests.resolve_request(db, workspace.id, request.id)
        assert resolved.is_resolved
        assert resolved.resolved_at is not None
        assert await service_requests.list_open_requests(db, workspace.id) == []

        again = await service_requests.resolve_request(db, workspace.id, request.id)
        assert again.resolved_at == resolved.resolved_at
        await stream.aclose()

    async def test_service_request_needs_a_known_table(self, db, workspace, menu):
        with pytest.raises(NotFoundError):
            await service_requests.create_request(db, workspace.id, 42)

    async def test_resolve_unknown_request(self, db, workspace):
        with pytest.raises(NotFoundError):
            await service_requests.resolve_request(db, workspace.id, 1)


class TestFeedOutage:

    @pytest.fixture
    def unreachable_feed(self, monkeypatch):
        feed = UnreachableFeed()
        monkeypatch.setattr(app.services.events, "get_change_feed", lambda: feed)
        return feed

    async def test_publish_change_reports_failure(self, unreachable_feed, caplog):
        with caplog.at_level(logging.WARNING, logger="app.services.events"):
            delivered = await publish_change(order_event(row_id=7))

        assert delivered is False
        assert "publish failed for orders #7" in caplog.text

    async def test_order_is_committed_when_the_feed_is_down(self, db, workspace, place, unreachable_feed):
        order = await place(3, "9876543210", ("Latte", 1))

        stored = await orders.get_order(db, workspace.id, order.id)
        assert stored.total_amount == order.total_amount

        advanced = await orders.advance_status(db, workspace.id, order.id)
        assert advanced.status.value == "PREPARING"

    async def test_service_request_is_committed_when_the_feed_is_down(self, db, workspace, menu, unreachable_feed):
        request = await service_requests.create_request(db, workspace.id, 2, ServiceRequestType.WAITER)
        assert [r.id for r in await service_requests.list_open_requests(db, workspace.id)] == [request.id]

    async def test_redis_errors_become_change_feed_errors(self):
        feed = RedisChangeFeed(redis_url="redis://localhost:6379/0", channel_prefix="orders")
        feed._client = RefusingRedisClient()

        with pytest.raises(ChangeFeedError) as exc_info:
            await feed.publish(order_event())
        assert "connecting to localhost" in exc_info.value.detail
        assert exc_info.value.status_code == 503
