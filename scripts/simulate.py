"""
Dinner Rush Simulation Script

Fires concurrent table orders at a running API, then plays the kitchen
and the cashier: advances every order, generates final bills and marks
them paid.
Run from project root: python scripts/simulate.py
"""

import argparse
import asyncio
import random
import sys
import time
import uuid
from datetime import datetime
from typing import Any

import httpx

# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Configuration
API_BASE_URL = "http://localhost:8001"
TOTAL_ORDERS = 50
TABLE_COUNT = 10

FIRST_NAMES = ["John", "Jane", "Mike", "Sarah", "Tom", "Emma", "David", "Lisa", "Chris", "Amy"]
NOTES = [None, None, None, "no onions", "extra spicy", "less ice"]
PAYMENT_METHODS = ["cash", "card", "cash at counter", "upi", "gift voucher"]


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


async def create_workspace(client: httpx.AsyncClient) -> tuple[str, str]:
    """Register a throwaway workspace, seed its demo menu and return (id, token)."""
    suffix = uuid.uuid4().hex[:8]
    response = await client.post(
        f"{API_BASE_URL}/api/auth/register",
        json={
            "restaurant_name": "Simulation Bistro",
            "outlet_name": f"Load Test {suffix}",
            "owner_email": f"owner-{suffix}@example.com",
            "owner_password": "simulate123",
            "admin_username": "admin",
            "admin_password": "simulate123",
            "kitchen_username": "kitchen",
            "kitchen_password": "simulate123",
        },
    )
    response.raise_for_status()
    data = response.json()
    token = data["token"]

    seeded = await client.post(f"{API_BASE_URL}/api/workspace/seed", headers=auth_headers(token))
    seeded.raise_for_status()
    return data["workspace_id"], token


def random_cart(menu: list[dict]) -> list[dict]:
    cart = []
    for item in random.sample(menu, k=random.randint(1, 4)):
        cart.append({
            "menu_item_id": item["id"],
            "name": item["name"],
            "unit_price": item["price"],
            "quantity": random.randint(1, 3),
            "note": random.choice(NOTES),
        })
    return cart


async def place_order(
    client: httpx.AsyncClient,
    workspace_id: str,
    menu: list[dict],
    order_num: int,
) -> dict[str, Any]:
    """Send one order from a random table."""
    table = random.randint(1, TABLE_COUNT)
    phone = f"98{table:02d}{random.randint(100000, 100003)}"
    start_time = time.time()

    try:
        response = await client.post(
            f"{API_BASE_URL}/api/w/{workspace_id}/tables/{table}/orders",
            json={
                "customer_name": random.choice(FIRST_NAMES),
                "customer_phone": phone,
                "items": random_cart(menu),
            },
            timeout=30.0,
        )
        elapsed = round(time.time() - start_time, 3)

        if response.status_code == 201:
            data = response.json()
            return {
                "order_num": order_num,
                "success": True,
                "order_id": data["id"],
                "table": table,
                "phone": phone,
                "total": data["total_amount"],
                "time": elapsed,
            }
        return {
            "order_num": order_num,
            "success": False,
            "error": response.text[:100],
            "time": elapsed,
        }
    except httpx.HTTPError as e:
        return {
            "order_num": order_num,
            "success": False,
            "error": str(e)[:100],
            "time": round(time.time() - start_time, 3),
        }


async def run_kitchen(client: httpx.AsyncClient, token: str, order_ids: list[int]) -> int:
    """Advance every order to COMPLETED; returns how many made it."""
    served = 0
    for order_id in order_ids:
        for _ in range(3):
            response = await client.post(
                f"{API_BASE_URL}/api/orders/{order_id}/advance",
                headers=auth_headers(token),
            )
            if response.status_code != 200:
                break
        else:
            served += 1
    return served


async def run_cashier(client: httpx.AsyncClient, token: str, pairs: set[tuple[int, str]]) -> dict[str, Any]:
    """Generate and pay a final bill for every table + phone."""
    paid = 0
    downgraded = 0
    revenue = 0.0
    for table, phone in sorted(pairs):
        bill = await client.post(
            f"{API_BASE_URL}/api/final-bills",
            json={"table_number": table, "customer_phone": phone},
            headers=auth_headers(token),
        )
        if bill.status_code != 201:
            continue
        bill_data = bill.json()

        payment = await client.post(
            f"{API_BASE_URL}/api/final-bills/{bill_data['id']}/pay",
            json={"payment_method": random.choice(PAYMENT_METHODS)},
            headers=auth_headers(token),
        )
        if payment.status_code == 200:
            paid += 1
            revenue += bill_data["total_amount"]
            if payment.json()["payment"]["downgraded"]:
                downgraded += 1
    return {"paid": paid, "downgraded": downgraded, "revenue": round(revenue, 2)}


async def run_simulation(num_orders: int = TOTAL_ORDERS) -> dict[str, Any]:
    print("=" * 70)
    print("🔥 DINNER RUSH SIMULATION")
    print("=" * 70)
    print(f"📋 Total Orders: {num_orders}")
    print(f"🎯 Target: {API_BASE_URL}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    async with httpx.AsyncClient() as client:
        workspace_id, token = await create_workspace(client)
        print(f"\n🏠 Workspace: {workspace_id}")

        menu_response = await client.get(f"{API_BASE_URL}/api/w/{workspace_id}/tables/1/menu")
        menu_response.raise_for_status()
        menu = menu_response.json()["items"]

        print("\n🚀 Firing orders...\n")
        start_time = time.time()
        results = await asyncio.gather(
            *[place_order(client, workspace_id, menu, i + 1) for i in range(num_orders)]
        )
        order_time = round(time.time() - start_time, 2)

        successful = [r for r in results if r["success"]]
        failed = [r for r in results if not r["success"]]

        print("👨‍🍳 Kitchen working through the board...")
        served = await run_kitchen(client, token, [r["order_id"] for r in successful])

        print("💳 Cashier settling bills...")
        cashier = await run_cashier(client, token, {(r["table"], r["phone"]) for r in successful})

        stats = await client.get(f"{API_BASE_URL}/api/dashboard/stats", headers=auth_headers(token))
        stats_data = stats.json() if stats.status_code == 200 else {}

    print("\n" + "=" * 70)
    print("📊 SIMULATION RESULTS")
    print("=" * 70)
    print(f"\n✅ Orders placed: {len(successful)}/{num_orders} in {order_time}s")
    print(f"❌ Failed orders: {len(failed)}")
    print(f"🍽️  Served: {served}")
    print(f"💰 Bills paid: {cashier['paid']} (revenue {cashier['revenue']:.2f})")
    print(f"↘️  Payment methods downgraded: {cashier['downgraded']}")
    if stats_data:
        print(f"📈 Dashboard: {stats_data.get('paid')} paid, "
              f"{stats_data.get('billing_sessions')} billing sessions")

    if failed:
        print("\n⚠️  Failed Order Details (showing first 5):")
        for f in failed[:5]:
            print(f"   Order #{f['order_num']}: {f.get('error', 'Unknown error')}")

    print("=" * 70)
    return {
        "workspace_id": workspace_id,
        "total": num_orders,
        "successful": len(successful),
        "failed": len(failed),
        "served": served,
        **cashier,
    }


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Dinner Rush Simulation")
    parser.add_argument("--orders", type=int, default=TOTAL_ORDERS, help="Number of orders")
    parser.add_argument("--url", default=API_BASE_URL, help="API base URL")
    args = parser.parse_args()

    API_BASE_URL = args.url
    asyncio.run(run_simulation(args.orders))
