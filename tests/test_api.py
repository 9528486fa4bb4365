"""
End-to-end tests through the HTTP API.

The application runs against its own in-memory database; startup
creates the tables and verifies the schema contract exactly as it does
in production.
"""

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

import app.database
import app.main
from app.database import get_db
from app.main import app as api
from app.services.events import BaseChangeFeed

from tests.conftest import memory_engine


PHONE = "9876543210"


class BrokenSubscriptionFeed(BaseChangeFeed):
    """Publishing works but every subscription fails immediately."""

    
    def provider_name(self) -> str:
        return "broken"

    async def publish(self, event) -> None:
        return None

    async def subscribe(self, workspace_id, table_number=None):
        raise ConnectionError("pub/sub connection lost")
        yield

    async def health_check(self) -> bool:
        return False

REGISTRATION = {
    "restaurant_name": "Bella Cucina",
    "outlet_name": "Downtown",
    "owner_email": "owner@bellacucina.com",
    "owner_password": "owner-secret",
    "admin_username": "admin",
    "admin_password": "admin-secret",
    "kitchen_username": "kitchen",
    "kitchen_password": "kitchen-secret",
}


@pytest.fixture
def client(monkeypatch):
    engine = memory_engine()
    monkeypatch.setattr(app.database, "engine", engine)
    monkeypatch.setattr(app.main, "engine", engine)
    session_maker = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with session_maker() as session:
            yield session

    api.dependency_overrides[get_db] = override_get_db
    with TestClient(api) as test_client:
        yield test_client
    api.dependency_overrides.clear()


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def owner(client):
    """Registered and seeded workspace: (workspace_id, owner headers)."""
    response = client.post("/api/auth/register", json=REGISTRATION)
    assert response.status_code == 201, response.text
    body = response.json()
    headers = bearer(body["token"])

    seeded = client.post("/api/workspace/seed", headers=headers)
    assert seeded.status_code == 200, seeded.text
    return body["workspace_id"], headers


@pytest.fixture
def kitchen(client, owner):
    workspace_id, _ = owner
    response = client.post(
        f"/api/w/{workspace_id}/auth/kitchen",
        json={"username": "kitchen", "password": "kitchen-secret"},
    )
    assert response.status_code == 200, response.text
    return bearer(response.json()["token"])


def menu_items(client, workspace_id, table_number=1) -> dict:
    response = client.get(f"/api/w/{workspace_id}/tables/{table_number}/menu")
    assert response.status_code == 200, response.text
    return {item["name"]: item for item in response.json()["items"]}


def order_payload(items: dict, *lines, phone=PHONE) -> dict:
    return {
        "customer_name": "Maya",
        "customer_phone": phone,
        "items": [
            {
                "menu_item_id": items[name]["id"],
                "name": name,
                "unit_price": str(items[name]["price"]),
                "quantity": quantity,
            }
            for name, quantity in lines
        ],
    }


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "operational"
        assert body["change_feed"] == "healthy (memory)"

    def test_client_config(self, client):
        body = client.get("/api/config/client").json()
        assert body["default_payment_method"] == "COUNTER"
        assert body["payment_methods"] == ["COUNTER", "CASH", "CARD", "UPI"]


class TestAuthRoutes:

    def test_duplicate_registration_conflicts(self, client, owner):
        response = client.post("/api/auth/register", json=REGISTRATION)
        assert response.status_code == 409
        assert response.json()["success"] is False

    def test_owner_login(self, client, owner):
        response = client.post(
            "/api/auth/login",
            json={"email": "owner@bellacucina.com", "password": "owner-secret"},
        )
        assert response.status_code == 200
        assert response.json()["role"] == "owner"

    def test_missing_token_is_unauthorized(self, client, owner):
        response = client.get("/api/orders")
        assert response.status_code == 401
        assert response.json() == {
            "success": False,
            "error": "Please sign in to continue",
            "detail": None,
        }

    def test_kitchen_cannot_use_admin_routes(self, client, kitchen):
        response = client.post("/api/orders/pay", json={"order_ids": []}, headers=kitchen)
        assert response.status_code == 403

    def test_session_endpoint(self, client, kitchen):
        body = client.get("/api/session", headers=kitchen).json()
        assert body["role"] == "kitchen"

    def test_validation_errors_use_the_error_envelope(self, client, owner):
        workspace_id, _ = owner
        response = client.post(f"/api/w/{workspace_id}/tables/1/orders", json={"items": []})
        assert response.status_code == 422
        body = response.json()
        assert body["success"] is False
        assert body["error"].startswith("items")


class TestOrderFlow:

    def test_order_to_payment(self, client, owner, kitchen):
        workspace_id, admin = owner
        items = menu_items(client, workspace_id)

        placed = client.post(
            f"/api/w/{workspace_id}/tables/3/orders",
            json=order_payload(items, ("Latte", 2), ("Tiramisu", 1)),
        )
        assert placed.status_code == 201, placed.text
        order = placed.json()
        assert order["status"] == "PENDING"
        assert order["total_amount"] == 16.99

        board = client.get("/api/kitchen/board", headers=kitchen).json()
        assert [o["id"] for o in board[0]["orders"]] == [order["id"]]

        for expected in ("PREPARING", "READY", "COMPLETED"):
            response = client.post(f"/api/orders/{order['id']}/advance", headers=kitchen)
            assert response.status_code == 200, response.text
            assert response.json()["status"] == expected

        again = client.post(f"/api/orders/{order['id']}/advance", headers=kitchen)
        assert again.status_code == 409

        bill = client.get(
            "/api/bills/unpaid",
            params={"table_number": 3, "customer_phone": PHONE},
            headers=admin,
        ).json()
        assert bill["total"] == 16.99
        assert bill["order_ids"] == [order["id"]]

        final = client.post(
            "/api/final-bills",
            json={"table_number": 3, "customer_phone": PHONE},
            headers=admin,
        )
        assert final.status_code == 201, final.text

        paid = client.post(
            f"/api/final-bills/{final.json()['id']}/pay",
            json={"payment_method": "gift voucher"},
            headers=admin,
        )
        assert paid.status_code == 200, paid.text
        body = paid.json()
        assert body["bill"]["is_paid"] is True
        assert body["payment"]["downgraded"] is True
        assert body["payment"]["applied_method"] == "COUNTER"

        twice = client.post(f"/api/final-bills/{final.json()['id']}/pay", json={}, headers=admin)
        assert twice.status_code == 409

        stats = client.get("/api/dashboard/stats", headers=admin).json()
        assert stats["paid"] == 1
        assert stats["revenue"] == 16.99

    def test_customer_cancel_and_bill(self, client, owner):
        workspace_id, _ = owner
        items = menu_items(client, workspace_id)
        order = client.post(
            f"/api/w/{workspace_id}/tables/2/orders",
            json=order_payload(items, ("Iced Tea", 1)),
        ).json()

        cancelled = client.post(
            f"/api/w/{workspace_id}/orders/{order['id']}/cancel",
            json={"customer_phone": PHONE},
        )
        assert cancelled.status_code == 200
        assert cancelled.json()["status"] == "CANCELLED"

        bill = client.get(
            f"/api/w/{workspace_id}/tables/2/bill",
            params={"customer_phone": PHONE},
        ).json()
        assert bill["order_ids"] == []
        assert bill["total"] == 0.0

    def test_reconcile_after_item_runs_out(self, client, owner, kitchen):
        workspace_id, admin = owner
        items = menu_items(client, workspace_id)
        order = client.post(
            f"/api/w/{workspace_id}/tables/5/orders",
            json=order_payload(items, ("Latte", 1), ("Bruschetta", 1)),
        ).json()

        toggled = client.put(
            f"/api/menu-items/{items['Latte']['id']}/availability",
            json={"is_available": False},
            headers=kitchen,
        )
        assert toggled.status_code == 200
        assert toggled.json()["is_available"] is False

        response = client.post(f"/api/orders/{order['id']}/reconcile", headers=admin)
        assert response.status_code == 200, response.text
        body = response.json()
        assert body["unavailable_items"] == ["Latte"]
        assert body["order"]["total_amount"] == 8.99

    def test_bulk_payment(self, client, owner):
        workspace_id, admin = owner
        items = menu_items(client, workspace_id)
        ids = [
            client.post(
                f"/api/w/{workspace_id}/tables/{table}/orders",
                json=order_payload(items, ("Latte", 1)),
            ).json()["id"]
            for table in (1, 2)
        ]

        response = client.post(
            "/api/orders/pay",
            json={"order_ids": ids, "payment_method": "upi"},
            headers=admin,
        )
        assert response.status_code == 200
        assert response.json()["order_ids"] == sorted(ids)
        assert response.json()["applied_method"] == "UPI"

        paid = client.get("/api/orders", params={"payment_status": "PAID"}, headers=admin).json()
        assert paid["total"] == 2

    def test_menu_prices_override_client_prices(self, client, owner):
        workspace_id, _ = owner
        items = menu_items(client, workspace_id)
        payload = order_payload(items, ("Latte", 2))
        payload["items"][0]["unit_price"] = "0.01"

        placed = client.post(f"/api/w/{workspace_id}/tables/1/orders", json=payload)

        assert placed.status_code == 201, placed.text
        assert placed.json()["total_amount"] == 9.0

    def test_unavailable_item_cannot_be_ordered(self, client, owner, kitchen):
        workspace_id, _ = owner
        items = menu_items(client, workspace_id)
        client.put(
            f"/api/menu-items/{items['Tiramisu']['id']}/availability",
            json={"is_available": False},
            headers=kitchen,
        )

        response = client.post(
            f"/api/w/{workspace_id}/tables/1/orders",
            json=order_payload(items, ("Tiramisu", 1)),
        )

        assert response.status_code == 409
        assert response.json()["error"] == "Tiramisu is currently unavailable"

    def test_stale_final_bill_is_a_conflict(self, client, owner):
        workspace_id, admin = owner
        items = menu_items(client, workspace_id)
        order = client.post(
            f"/api/w/{workspace_id}/tables/6/orders",
            json=order_payload(items, ("Latte", 1)),
        ).json()
        bill = client.post(
            "/api/final-bills",
            json={"table_number": 6, "customer_phone": PHONE},
            headers=admin,
        ).json()
        client.post(f"/api/w/{workspace_id}/orders/{order['id']}/cancel", json={"customer_phone": PHONE})

        response = client.post(f"/api/final-bills/{bill['id']}/pay", json={}, headers=admin)

        assert response.status_code == 409
        assert response.json()["success"] is False

    def test_unknown_table_is_not_found(self, client, owner):
        workspace_id, _ = owner
        response = client.get(f"/api/w/{workspace_id}/tables/77/menu")
        assert response.status_code == 404
        assert response.json()["error"] == "Table 77 does not exist"


class TestUploads:

    def test_menu_image_upload(self, client, owner, isolated_settings):
        _, admin = owner
        response = client.post(
            "/api/uploads/menu-image",
            files={"file": ("Pizza.PNG", b"\x89PNG fake image bytes", "image/png")},
            headers=admin,
        )
        assert response.status_code == 200, response.text
        body = response.json()
        assert body["bucket"] == "menu-images"
        assert body["path"].startswith("menu/")
        assert body["path"].endswith(".png")
        assert body["url"].endswith(f"/menu-images/{body['path']}")

    def test_non_image_upload_is_rejected(self, client, owner):
        _, admin = owner
        response = client.post(
            "/api/uploads/menu-image",
            files={"file": ("notes.txt", b"hello", "text/plain")},
            headers=admin,
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Only image files can be uploaded"


class TestChangeFeedSocket:

    def test_connect_and_disconnect(self, client, owner):
        workspace_id, _ = owner
        with client.websocket_connect(f"/ws/{workspace_id}/orders?table=1") as websocket:
            websocket.close()

    def test_feed_failure_closes_the_socket(self, client, owner, monkeypatch):
        workspace_id, _ = owner
        monkeypatch.setattr(app.main, "get_change_feed", lambda: BrokenSubscriptionFeed())

        with client.websocket_connect(f"/ws/{workspace_id}/orders") as websocket:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                websocket.receive_text()

        assert exc_info.value.code == 1011
