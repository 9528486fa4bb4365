"""
Availability Reconciliation

When a menu item runs out after customers already ordered it, the
matching lines of an open order are cancelled, the total is recomputed
over what is left, and an order with nothing left is cancelled.

A line matches an unavailable menu item by menu_item_id; lines without
an id (or whose id no longer exists) fall back to the normalized item
name. The order's status_reason records the removed names as
"Unavailable items removed: X, Y" - billing reads it back to keep those
names off the bill.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import InvalidTransitionError
from app.models import MenuItem, Order, OrderStatus
from app.services.orders import (
    Actor,
    TERMINAL_STATUSES,
    ensure_transition,
    get_order,
    publish_order_change,
    recompute_total,
)

logger = logging.getLogger(__name__)

REMOVED_PREFIX = "Unavailable items removed:"
UNAVAILABLE_CANCEL_REASON = "Item unavailable"

_NOTE_SUFFIX = re.compile(r"\s*\(Note:.*\)\s*$", re.IGNORECASE | re.DOTALL)
_WHITESPACE = re.compile(r"\s+")


def base_item_name(name: Optional[str]) -> str:
    """Item name without a trailing " (Note: ...)" suffix."""
    return _NOTE_SUFFIX.sub("", str(name or "")).strip()


def normalize_item_name(name: Optional[str]) -> str:
    """Comparison key for item names: no note, single spaces, lower case."""
    return _WHITESPACE.sub(" ", base_item_name(name)).strip().lower()


def format_removed_reason(names: list[str]) -> str:
    return f"{REMOVED_PREFIX} {', '.join(names)}"


def parse_removed_items(reason: Optional[str]) -> list[str]:
    """
    Read item names back out of a status_reason.

    >>> parse_removed_items("Unavailable items removed: Latte, Iced Tea")
    ['Latte', 'Iced Tea']
    """
    text = str(reason or "")
    idx = text.lower().find(REMOVED_PREFIX.lower())
    if idx < 0:
        return []
    tail = text[idx + len(REMOVED_PREFIX):]
    return [part.strip() for part in tail.split(",") if part.strip()]


@dataclass
class ReconciliationResult:
    """
    Outcome of applying menu availability to one order.

    Attributes:
        order: The order after reconciliation
        unavailable_items: Names removed by this run (empty when nothing changed)
        all_items_unavailable: True when the run left no items and cancelled the order
    """
    order: Order
    unavailable_items: list[str] = field(default_factory=list)
    all_items_unavailable: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.unavailable_items)


async def _unavailable_lookup(db: AsyncSession, workspace_id: str) -> tuple[set[int], set[int], set[str]]:
    result = await db.execute(
        select(MenuItem.id, MenuItem.name, MenuItem.is_available).where(
            MenuItem.workspace_id == workspace_id
        )
    )
    known_ids: set[int] = set()
    unavailable_ids: set[int] = set()
    unavailable_names: set[str] = set()
    for item_id, name, is_available in result.all():
        known_ids.add(item_id)
        if not is_available:
            unavailable_ids.add(item_id)
            unavailable_names.add(normalize_item_name(name))
    return known_ids, unavailable_ids, unavailable_names


async def apply_unavailable_items(
    db: AsyncSession,
    workspace_id: str,
    order_id: int,
) -> ReconciliationResult:
    """
    Cancel the lines of an order whose menu item is now unavailable.

    Raises:
        NotFoundError: order does not exist in the workspace
        InvalidTransitionError: order is already COMPLETED or CANCELLED
    """
    order = await get_order(db, workspace_id, order_id)
    if order.status in TERMINAL_STATUSES:
        raise InvalidTransitionError(
            f"Order #{order.id} is already {order.status.value}; nothing to reconcile"
        )

    known_ids, unavailable_ids, unavailable_names = await _unavailable_lookup(db, workspace_id)

    removed: list[str] = []
    for item in order.items:
        if item.is_cancelled:
            continue
        if item.menu_item_id is not None and item.menu_item_id in known_ids:
            matches = item.menu_item_id in unavailable_ids
        else:
            matches = normalize_item_name(item.item_name) in unavailable_names
        if not matches:
            continue

        item.is_cancelled = True
        item.cancel_reason = UNAVAILABLE_CANCEL_REASON
        name = base_item_name(item.item_name)
        if name not in removed:
            removed.append(name)

    if not removed:
        logger.info(f"Order #{order.id}: no unavailable items found")
        return ReconciliationResult(order=order)

    previous = parse_removed_items(order.status_reason)
    merged = previous + [n for n in removed if n not in previous]
    recompute_total(order)

    remaining = [item for item in order.items if not item.is_cancelled]
    all_gone = not remaining
    if all_gone:
        ensure_transition(order.status, OrderStatus.CANCELLED, Actor.ADMIN)
        order.status = OrderStatus.CANCELLED
    order.status_reason = format_removed_reason(merged)

    await db.commit()

    if all_gone:
        logger.warning(f"Order #{order.id}: all items unavailable, order cancelled ({', '.join(removed)})")
    else:
        logger.info(
            f"Order #{order.id}: removed unavailable item(s) {', '.join(removed)}; "
            f"new total {order.total_amount}"
        )

    await publish_order_change(order)
    return ReconciliationResult(order=order, unavailable_items=removed, all_items_unavailable=all_gone)


async def reconcile_open_orders(db: AsyncSession, workspace_id: str) -> list[ReconciliationResult]:
    """Apply menu availability to every PENDING/PREPARING/READY order of a workspace."""
    result = await db.execute(
        select(Order.id)
        .where(
            Order.workspace_id == workspace_id,
            Order.status.not_in(TERMINAL_STATUSES),
        )
        .order_by(Order.created_at, Order.id)
    )
    outcomes = []
    for order_id in result.scalars().all():
        outcome = await apply_unavailable_items(db, workspace_id, order_id)
        if outcome.changed:
            outcomes.append(outcome)
    return outcomes
