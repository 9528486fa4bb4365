"""
Bill aggregation rules (no database access).

Lines from several orders are merged by (item name, unit price).
Cancelled lines never reach a bill, and neither do names an order's
status_reason lists as removed for unavailability.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from app.models import FinalBill, Order
from app.services.orders import to_money
from app.services.reconciliation import normalize_item_name, parse_removed_items


@dataclass
class BillLine:
    name: str
    unit_price: Decimal
    quantity: int
    line_total: Decimal

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "unit_price": str(self.unit_price),
            "quantity": self.quantity,
            "line_total": str(self.line_total),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "BillLine":
        return cls(
            name=data["name"],
            unit_price=to_money(data["unit_price"]),
            quantity=int(data["quantity"]),
            line_total=to_money(data["line_total"]),
        )


def removed_item_names(orders: Iterable[Order]) -> set[str]:
    """Normalized names any of the orders reports as removed."""
    names: set[str] = set()
    for order in orders:
        names.update(normalize_item_name(n) for n in parse_removed_items(order.status_reason))
    return names


def aggregate_lines(orders: Sequence[Order]) -> list[BillLine]:
    """
    Merge the billable lines of ``orders`` by (name, unit price).

    Lines keep the order in which their key first appears.
    """
    removed = removed_item_names(orders)
    lines: dict[tuple[str, Decimal], BillLine] = {}

    for order in orders:
        for item in order.items:
            if item.is_cancelled:
                continue
            if normalize_item_name(item.item_name) in removed:
                continue
            unit_price = to_money(item.unit_price)
            key = (item.item_name, unit_price)
            line = lines.get(key)
            if line is None:
                line = BillLine(
                    name=item.item_name,
                    unit_price=unit_price,
                    quantity=0,
                    line_total=Decimal("0.00"),
                )
                lines[key] = line
            line.quantity += item.quantity
            line.line_total = to_money(line.line_total + to_money(item.line_total))

    return list(lines.values())


def bill_total(lines: Iterable[BillLine]) -> Decimal:
    return to_money(sum((line.line_total for line in lines), Decimal("0.00")))


def after_boundary(order: Order, boundary: Optional[tuple[datetime, int]]) -> bool:
    """True when ``order`` was placed after the (created_at, id) session boundary."""
    if boundary is None:
        return True
    created_at, order_id = boundary
    return (order.created_at, order.id) > (created_at, order_id)


def count_billing_sessions(orders: Sequence[Order], bills: Sequence[FinalBill]) -> int:
    """
    Number of billing sessions among ``orders``.

    Orders are grouped by (table, phone). Within a group, a new session
    starts with the first order and after every order that was the last
    order of a paid final bill.
    """
    groups: dict[tuple[int, str], list[Order]] = {}
    for order in orders:
        groups.setdefault((order.table_number, order.customer_phone or ""), []).append(order)

    count = 0
    for (table_number, phone), group in groups.items():
        ordered = sorted(group, key=lambda o: (o.created_at, o.id))
        by_id = {o.id: o for o in ordered}

        boundary_ids: set[int] = set()
        for bill in bills:
            if not bill.is_paid or bill.table_number != table_number or (bill.customer_phone or "") != phone:
                continue
            bill_orders = sorted(
                (by_id[i] for i in bill.order_ids or [] if i in by_id),
                key=lambda o: (o.created_at, o.id),
            )
            if bill_orders:
                boundary_ids.add(bill_orders[-1].id)

        for i, order in enumerate(ordered):
            if i == 0 or ordered[i - 1].id in boundary_ids:
                count += 1

    return count
