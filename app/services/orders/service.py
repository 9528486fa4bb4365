"""
Order Service

Creates orders from a table, moves them through the status state
machine and answers the listing queries used by the customer, kitchen
and admin screens. Every function takes the workspace explicitly; every
committed change is published on the change feed.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Iterable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.errors import ConflictError, NotFoundError, ValidationFailedError
from app.models import Order, OrderItem, OrderStatus, PaymentStatus
from app.services import catalog
from app.services.events import ChangeEvent, ChangeType, publish_change
from app.services.orders.lifecycle import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    Actor,
    ensure_transition,
    next_status,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENT)


@dataclass
class NewOrderItem:
    """A line a customer adds to the cart."""
    name: str
    unit_price: Decimal
    quantity: int
    menu_item_id: Optional[int] = None
    note: Optional[str] = None

    @property
    def display_name(self) -> str:
        note = (self.note or "").strip()
        return f"{self.name} (Note: {note})" if note else self.name


@dataclass
class OrderGroup:
    """Orders shown together on the kitchen or history board."""
    key: str
    table_number: Optional[int]
    customer_phone: str
    customer_name: str
    orders: list[Order] = field(default_factory=list)

    @property
    def first_at(self) -> Optional[datetime]:
        return self.orders[0].created_at if self.orders else None


# =============================================================================
# HELPERS
# =============================================================================

def recompute_total(order: Order) -> Decimal:
    """Set total_amount to the sum of the non-cancelled line totals."""
    total = sum(
        (to_money(item.line_total) for item in order.items if not item.is_cancelled),
        Decimal("0.00"),
    )
    order.total_amount = total.quantize(CENT)
    return order.total_amount


def order_snapshot(order: Order) -> dict:
    """Plain-dict view of an order for change notifications and exports."""
    return {
        "id": order.id,
        "table_number": order.table_number,
        "customer_name": order.customer_name,
        "customer_phone": order.customer_phone,
        "total_amount": str(to_money(order.total_amount)),
        "status": order.status.value,
        "payment_status": order.payment_status.value,
        "payment_method": order.payment_method,
        "status_reason": order.status_reason,
        "created_at": order.created_at.isoformat() if order.created_at else None,
        "items": [
            {
                "menu_item_id": item.menu_item_id,
                "name": item.item_name,
                "unit_price": str(to_money(item.unit_price)),
                "quantity": item.quantity,
                "line_total": str(to_money(item.line_total)),
                "is_cancelled": item.is_cancelled,
                "cancel_reason": item.cancel_reason,
            }
            for item in order.items
        ],
    }


async def publish_order_change(order: Order, change_type: ChangeType = ChangeType.UPDATE) -> None:
    await publish_change(
        ChangeEvent(
            workspace_id=order.workspace_id,
            table="orders",
            change_type=change_type,
            row_id=order.id,
            table_number=order.table_number,
            payload=order_snapshot(order),
        )
    )


def normalize_phone(phone: Optional[str]) -> Optional[str]:
    cleaned = (phone or "").strip()
    return cleaned or None


def day_bounds(day: date, tz_name: Optional[str]) -> tuple[datetime, datetime]:
    """UTC [start, end) of a calendar day in the workspace timezone."""
    try:
        tz = ZoneInfo(tz_name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone {tz_name!r}, using UTC")
        tz = ZoneInfo("UTC")
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = start + timedelta(days=1)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


# =============================================================================
# QUERIES
# =============================================================================

async def get_order(db: AsyncSession, workspace_id: str, order_id: int) -> Order:
    result = await db.execute(
        select(Order).where(Order.id == order_id, Order.workspace_id == workspace_id)
    )
    order = result.scalar_one_or_none()
    if order is None:
        raise NotFoundError(f"Order #{order_id} not found")
    return order


async def list_orders(
    db: AsyncSession,
    workspace_id: str,
    status: Optional[OrderStatus] = None,
    payment_status: Optional[PaymentStatus] = None,
    day: Optional[date] = None,
    tz_name: Optional[str] = None,
    skip: int = 0,
    limit: Optional[int] = None,
) -> list[Order]:
    """Orders newest first, optionally filtered by status, payment and day."""
    query = select(Order).where(Order.workspace_id == workspace_id)
    if status is not None:
        query = query.where(Order.status == status)
    if payment_status is not None:
        query = query.where(Order.payment_status == payment_status)
    if day is not None:
        start, end = day_bounds(day, tz_name)
        query = query.where(Order.created_at >= start, Order.created_at < end)

    query = query.order_by(Order.created_at.desc(), Order.id.desc()).offset(skip)
    if limit is not None:
        query = query.limit(limit)

    result = await db.execute(query)
    return list(result.scalars().all())


async def active_orders_for_customer(
    db: AsyncSession,
    workspace_id: str,
    table_number: int,
    customer_phone: str,
) -> list[Order]:
    """A customer's PENDING/PREPARING/READY orders at a table, newest first."""
    phone = normalize_phone(customer_phone)
    if phone is None:
        raise ValidationFailedError("Phone number is required")
    result = await db.execute(
        select(Order)
        .where(
            Order.workspace_id == workspace_id,
            Order.table_number == table_number,
            Order.customer_phone == phone,
            Order.status.in_(ACTIVE_STATUSES),
        )
        .order_by(Order.created_at.desc(), Order.id.desc())
    )
    return list(result.scalars().all())


def _group_orders(orders: Iterable[Order], key_fn, table_fn) -> list[OrderGroup]:
    groups: dict[str, OrderGroup] = {}
    for order in orders:
        key = key_fn(order)
        group = groups.get(key)
        if group is None:
            group = OrderGroup(
                key=key,
                table_number=table_fn(order),
                customer_phone=order.customer_phone or "",
                customer_name="Guest",
            )
            groups[key] = group
        group.orders.append(order)

    for group in groups.values():
        group.orders.sort(key=lambda o: (o.created_at, o.id))
        group.customer_name = next(
            (o.customer_name for o in group.orders if o.customer_name),
            "Guest",
        )
    return list(groups.values())


async def kitchen_board(db: AsyncSession, workspace_id: str) -> list[OrderGroup]:
    """
    Active orders grouped by customer phone.

    Orders without a phone each get their own group. Groups are ordered by
    their first order, oldest first.
    """
    result = await db.execute(
        select(Order)
        .where(Order.workspace_id == workspace_id, Order.status.in_(ACTIVE_STATUSES))
        .order_by(Order.created_at, Order.id)
    )
    groups = _group_orders(
        result.scalars().all(),
        key_fn=lambda o: o.customer_phone or f"NO_PHONE_{o.id}",
        table_fn=lambda o: o.table_number,
    )
    groups.sort(key=lambda g: (g.first_at, g.orders[0].id))
    return groups


async def history_board(
    db: AsyncSession,
    workspace_id: str,
    day: date,
    tz_name: Optional[str] = None,
) -> list[OrderGroup]:
    """COMPLETED and CANCELLED orders of a day grouped by (table, phone)."""
    start, end = day_bounds(day, tz_name)
    result = await db.execute(
        select(Order)
        .where(
            Order.workspace_id == workspace_id,
            Order.status.in_(TERMINAL_STATUSES),
            Order.created_at >= start,
            Order.created_at < end,
        )
        .order_by(Order.created_at.desc(), Order.id.desc())
    )
    return _group_orders(
        result.scalars().all(),
        key_fn=lambda o: f"{o.table_number}__{o.customer_phone or 'NO_PHONE'}",
        table_fn=lambda o: o.table_number,
    )


# =============================================================================
# COMMANDS
# =============================================================================

async def _price_from_menu(db: AsyncSession, workspace_id: str, item: NewOrderItem) -> NewOrderItem:
    if item.menu_item_id is None:
        return item
    menu_item = await catalog.get_menu_item(db, workspace_id, item.menu_item_id)
    if not menu_item.is_available:
        raise ConflictError(f"{menu_item.name} is currently unavailable")
    return replace(item, name=menu_item.name, unit_price=to_money(menu_item.price))


async def create_order(
    db: AsyncSession,
    workspace_id: str,
    table_number: int,
    items: list[NewOrderItem],
    customer_name: Optional[str] = None,
    customer_phone: Optional[str] = None,
) -> Order:
    """
    Place a PENDING, UNPAID order for a table.

    Lines that reference a menu item take its current name and price;
    an unavailable item refuses the whole order.
    """
    await catalog.require_table(db, workspace_id, table_number)

    if not items:
        raise ValidationFailedError("An order needs at least one item")
    items = [await _price_from_menu(db, workspace_id, item) for item in items]

    order = Order(
        workspace_id=workspace_id,
        table_number=table_number,
        customer_name=(customer_name or "").strip() or "Guest",
        customer_phone=normalize_phone(customer_phone),
        status=OrderStatus.PENDING,
        payment_status=PaymentStatus.UNPAID,
        payment_method=get_settings().default_payment_method,
        total_amount=Decimal("0.00"),
    )

    for item in items:
        if item.quantity < 1:
            raise ValidationFailedError(f"Quantity for {item.name} must be at least 1")
        unit_price = to_money(item.unit_price)
        if unit_price < 0:
            raise ValidationFailedError(f"Price for {item.name} cannot be negative")
        order.items.append(
            OrderItem(
                menu_item_id=item.menu_item_id,
                item_name=item.display_name,
                unit_price=unit_price,
                quantity=item.quantity,
                line_total=(unit_price * item.quantity).quantize(CENT),
                is_cancelled=False,
            )
        )

    recompute_total(order)
    db.add(order)
    await db.commit()
    order = await get_order(db, workspace_id, order.id)

    logger.info(
        f"Order #{order.id} placed at table {table_number} "
        f"({len(order.items)} items, total {order.total_amount})"
    )
    await publish_order_change(order, ChangeType.INSERT)
    return order


async def _apply_status(
    db: AsyncSession,
    order: Order,
    target: OrderStatus,
    actor: Actor,
    reason: Optional[str] = None,
) -> Order:
    previous = order.status
    ensure_transition(previous, target, actor)

    order.status = target
    if reason is not None:
        order.status_reason = reason
    await db.commit()

    logger.info(f"Order #{order.id}: {previous.value} -> {target.value} by {actor.value}")
    await publish_order_change(order)
    return order


async def advance_status(db: AsyncSession, workspace_id: str, order_id: int) -> Order:
    """Move an order one step along PENDING → PREPARING → READY → COMPLETED."""
    order = await get_order(db, workspace_id, order_id)
    return await _apply_status(db, order, next_status(order.status), Actor.KITCHEN)


async def set_status(
    db: AsyncSession,
    workspace_id: str,
    order_id: int,
    target: OrderStatus,
    actor: Actor = Actor.KITCHEN,
    reason: Optional[str] = None,
) -> Order:
    order = await get_order(db, workspace_id, order_id)
    return await _apply_status(db, order, target, actor, reason)


async def cancel_by_customer(
    db: AsyncSession,
    workspace_id: str,
    order_id: int,
    customer_phone: Optional[str] = None,
) -> Order:
    """
    Customer cancellation; allowed only while the order is PENDING.

    When a phone is given it must match the order's phone.
    """
    order = await get_order(db, workspace_id, order_id)
    phone = normalize_phone(customer_phone)
    if phone is not None and order.customer_phone != phone:
        raise NotFoundError(f"Order #{order_id} not found")
    return await _apply_status(
        db, order, OrderStatus.CANCELLED, Actor.CUSTOMER, reason="Cancelled by customer"
    )


async def reject_out_of_stock(
    db: AsyncSession,
    workspace_id: str,
    order_id: int,
    reason: Optional[str] = None,
) -> Order:
    """Admin rejection of a not-yet-terminal order."""
    order = await get_order(db, workspace_id, order_id)
    return await _apply_status(
        db,
        order,
        OrderStatus.CANCELLED,
        Actor.ADMIN,
        reason=(reason or "").strip() or "Rejected: out of stock",
    )
