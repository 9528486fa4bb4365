"""
Dashboard statistics and workspace data export.
"""

import logging
from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.ext.asyncio import AsyncSession

from app.models import FinalBill, Order, OrderStatus, PaymentStatus, Workspace
from app.services import billing, catalog, orders
from app.services.orders import to_money

logger = logging.getLogger(__name__)


@dataclass
class DashboardStats:
    day: str
    total: int = 0
    unpaid: int = 0
    paid: int = 0
    served: int = 0
    preparing: int = 0
    ready: int = 0
    cancelled: int = 0
    active_tables: int = 0
    revenue: Decimal = Decimal("0.00")
    avg_ticket: Decimal = Decimal("0.00")
    paid_rate: float = 0.0
    completion_rate: float = 0.0
    billing_sessions: int = 0
    status_distribution: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["revenue"] = float(self.revenue)
        data["avg_ticket"] = float(self.avg_ticket)
        return data


def compute_stats(day: date, day_orders: Sequence[Order], bills: Sequence[FinalBill]) -> DashboardStats:
    """Headline numbers for one day of orders."""
    paid = [o for o in day_orders if o.payment_status == PaymentStatus.PAID]
    revenue = to_money(sum((to_money(o.total_amount) for o in paid), Decimal("0.00")))
    by_status = Counter(o.status for o in day_orders)
    total = len(day_orders)

    return DashboardStats(
        day=day.isoformat(),
        total=total,
        unpaid=sum(
            1 for o in day_orders
            if o.payment_status == PaymentStatus.UNPAID and o.status != OrderStatus.CANCELLED
        ),
        paid=len(paid),
        served=by_status[OrderStatus.COMPLETED],
        preparing=by_status[OrderStatus.PREPARING],
        ready=by_status[OrderStatus.READY],
        cancelled=by_status[OrderStatus.CANCELLED],
        active_tables=len({
            o.table_number for o in day_orders
            if o.status != OrderStatus.CANCELLED and o.table_number
        }),
        revenue=revenue,
        avg_ticket=to_money(revenue / len(paid)) if paid else Decimal("0.00"),
        paid_rate=round(len(paid) / total, 4) if total else 0.0,
        completion_rate=round(by_status[OrderStatus.COMPLETED] / total, 4) if total else 0.0,
        billing_sessions=billing.count_billing_sessions(day_orders, bills),
        status_distribution={s.value: by_status[s] for s in OrderStatus},
    )


def workspace_today(workspace: Workspace) -> date:
    try:
        tz = ZoneInfo(workspace.timezone or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        tz = ZoneInfo("UTC")
    return datetime.now(tz).date()


async def dashboard_stats(
    db: AsyncSession,
    workspace: Workspace,
    day: Optional[date] = None,
) -> DashboardStats:
    day = day or workspace_today(workspace)
    day_orders = await orders.list_orders(db, workspace.id, day=day, tz_name=workspace.timezone)
    bills = await billing.list_final_bills(db, workspace.id, is_paid=True)
    return compute_stats(day, day_orders, bills)


async def build_workspace_export(db: AsyncSession, workspace: Workspace) -> dict:
    """JSON-ready backup of categories, items, tables, orders and final bills."""
    categories = await catalog.list_categories(db, workspace.id)
    items = await catalog.list_menu_items(db, workspace.id)
    tables = await catalog.list_tables(db, workspace.id)
    all_orders = await orders.list_orders(db, workspace.id)
    bills = await billing.list_final_bills(db, workspace.id)

    export = {
        "exported_at": datetime.now(ZoneInfo("UTC")).isoformat(),
        "workspace": {
            "id": workspace.id,
            "restaurant_name": workspace.restaurant_name,
            "outlet_name": workspace.outlet_name,
            "currency_code": workspace.currency_code,
            "timezone": workspace.timezone,
        },
        "categories": [
            {"id": c.id, "name": c.name, "sort_order": c.sort_order} for c in categories
        ],
        "menu_items": [
            {
                "id": i.id,
                "category_id": i.category_id,
                "name": i.name,
                "price": str(to_money(i.price)),
                "description": i.description,
                "image_url": i.image_url,
                "is_available": i.is_available,
            }
            for i in items
        ],
        "tables": [{"id": t.id, "table_number": t.table_number} for t in tables],
        "orders": [orders.order_snapshot(o) for o in all_orders],
        "final_bills": [billing.final_bill_snapshot(b) for b in bills],
    }
    logger.info(
        f"Built export for workspace {workspace.id}: "
        f"{len(all_orders)} orders, {len(bills)} final bills"
    )
    return export
