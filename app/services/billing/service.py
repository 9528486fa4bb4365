"""
Billing Service

Consolidates the unpaid orders of one table + phone into a single bill,
persists final-bill snapshots and marks orders paid.

A billing session for a table + phone starts after its most recent PAID
order: orders placed before the last payment never appear on the next
bill.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ConflictError, NotFoundError, ValidationFailedError
from app.models import FinalBill, Order, OrderStatus, PaymentStatus
from app.services.billing.aggregation import (
    BillLine,
    after_boundary,
    aggregate_lines,
    bill_total,
)
from app.services.billing.payments import BulkPaymentResult, resolve_payment_method
from app.services.events import ChangeEvent, ChangeType, publish_change
from app.services.orders import get_order, publish_order_change, to_money

logger = logging.getLogger(__name__)


@dataclass
class UnpaidBill:
    """Live (not persisted) view of what a table + phone currently owes."""
    table_number: int
    customer_phone: str
    customer_name: str = "Guest"
    orders: list[Order] = field(default_factory=list)
    lines: list[BillLine] = field(default_factory=list)
    total: Decimal = Decimal("0.00")
    session_started_after: Optional[datetime] = None

    @property
    def order_ids(self) -> list[int]:
        return [o.id for o in self.orders]

    @property
    def is_empty(self) -> bool:
        return not self.orders


def _require_phone(phone: Optional[str]) -> str:
    cleaned = (phone or "").strip()
    if not cleaned:
        raise ValidationFailedError("Customer mobile number missing for this order.")
    return cleaned


def final_bill_snapshot(bill: FinalBill) -> dict:
    return {
        "id": bill.id,
        "table_number": bill.table_number,
        "customer_phone": bill.customer_phone,
        "customer_name": bill.customer_name,
        "order_ids": list(bill.order_ids or []),
        "line_items": list(bill.line_items or []),
        "total_amount": str(bill.total_amount),
        "is_paid": bill.is_paid,
        "payment_method": bill.payment_method,
        "paid_at": bill.paid_at.isoformat() if bill.paid_at else None,
        "created_at": bill.created_at.isoformat() if bill.created_at else None,
    }


async def _publish_bill(bill: FinalBill, change_type: ChangeType) -> None:
    await publish_change(
        ChangeEvent(
            workspace_id=bill.workspace_id,
            table="final_bills",
            change_type=change_type,
            row_id=bill.id,
            table_number=bill.table_number,
            payload=final_bill_snapshot(bill),
        )
    )


# =============================================================================
# UNPAID BILL
# =============================================================================

async def session_boundary(
    db: AsyncSession,
    workspace_id: str,
    table_number: int,
    customer_phone: str,
) -> Optional[tuple[datetime, int]]:
    """(created_at, id) of the most recent PAID, non-cancelled order for the pair."""
    result = await db.execute(
        select(Order.created_at, Order.id)
        .where(
            Order.workspace_id == workspace_id,
            Order.table_number == table_number,
            Order.customer_phone == customer_phone,
            Order.payment_status == PaymentStatus.PAID,
            Order.status != OrderStatus.CANCELLED,
        )
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(1)
    )
    row = result.first()
    return (row[0], row[1]) if row else None


async def compute_unpaid_bill(
    db: AsyncSession,
    workspace_id: str,
    table_number: int,
    customer_phone: str,
) -> UnpaidBill:
    """
    Everything a table + phone owes in the current billing session.

    Orders are UNPAID, not CANCELLED and placed after the last PAID order
    of the same pair, oldest first.
    """
    phone = _require_phone(customer_phone)
    boundary = await session_boundary(db, workspace_id, table_number, phone)

    query = select(Order).where(
        Order.workspace_id == workspace_id,
        Order.table_number == table_number,
        Order.customer_phone == phone,
        Order.payment_status == PaymentStatus.UNPAID,
        Order.status != OrderStatus.CANCELLED,
    )
    if boundary is not None:
        query = query.where(Order.created_at >= boundary[0])
    result = await db.execute(query.order_by(Order.created_at, Order.id))
    orders = [o for o in result.scalars().all() if after_boundary(o, boundary)]

    lines = aggregate_lines(orders)
    return UnpaidBill(
        table_number=table_number,
        customer_phone=phone,
        customer_name=next((o.customer_name for o in orders if o.customer_name), "Guest"),
        orders=orders,
        lines=lines,
        total=bill_total(lines),
        session_started_after=boundary[0] if boundary else None,
    )


# =============================================================================
# FINAL BILLS
# =============================================================================

async def get_final_bill(db: AsyncSession, workspace_id: str, bill_id: int) -> FinalBill:
    result = await db.execute(
        select(FinalBill).where(FinalBill.id == bill_id, FinalBill.workspace_id == workspace_id)
    )
    bill = result.scalar_one_or_none()
    if bill is None:
        raise NotFoundError(f"Final bill #{bill_id} not found")
    return bill


async def list_final_bills(
    db: AsyncSession,
    workspace_id: str,
    is_paid: Optional[bool] = None,
    table_number: Optional[int] = None,
) -> list[FinalBill]:
    query = select(FinalBill).where(FinalBill.workspace_id == workspace_id)
    if is_paid is not None:
        query = query.where(FinalBill.is_paid.is_(is_paid))
    if table_number is not None:
        query = query.where(FinalBill.table_number == table_number)
    result = await db.execute(query.order_by(FinalBill.created_at.desc(), FinalBill.id.desc()))
    return list(result.scalars().all())


async def generate_final_bill(
    db: AsyncSession,
    workspace_id: str,
    table_number: int,
    customer_phone: str,
) -> FinalBill:
    """
    Persist a snapshot of the current unpaid bill.

    Older unpaid snapshots for the same table + phone are replaced.

    Raises:
        NotFoundError: nothing is owed
    """
    unpaid = await compute_unpaid_bill(db, workspace_id, table_number, customer_phone)
    if unpaid.is_empty:
        raise NotFoundError("No unpaid orders found for this customer at this table.")

    stale = await db.execute(
        select(FinalBill).where(
            FinalBill.workspace_id == workspace_id,
            FinalBill.table_number == table_number,
            FinalBill.customer_phone == unpaid.customer_phone,
            FinalBill.is_paid.is_(False),
        )
    )
    replaced = []
    for old in stale.scalars().all():
        replaced.append(old.id)
        await db.delete(old)

    bill = FinalBill(
        workspace_id=workspace_id,
        table_number=table_number,
        customer_phone=unpaid.customer_phone,
        customer_name=unpaid.customer_name,
        order_ids=unpaid.order_ids,
        line_items=[line.to_dict() for line in unpaid.lines],
        total_amount=unpaid.total,
        is_paid=False,
    )
    db.add(bill)
    await db.commit()

    logger.info(
        f"Final bill #{bill.id} for table {table_number}: "
        f"{len(unpaid.orders)} orders, total {unpaid.total}"
        + (f" (replaced {replaced})" if replaced else "")
    )
    await _publish_bill(bill, ChangeType.INSERT)
    return bill


async def mark_final_bill_paid(
    db: AsyncSession,
    workspace_id: str,
    bill_id: int,
    payment_method: Optional[str] = None,
) -> tuple[FinalBill, BulkPaymentResult]:
    """
    Mark a final bill and all of its orders PAID in one transaction.

    The snapshot must still match what the table + phone owes; any
    change to its orders since generation makes the bill stale.

    Raises:
        ConflictError: the bill is already paid or out of date
    """
    bill = await get_final_bill(db, workspace_id, bill_id)
    if bill.is_paid:
        raise ConflictError(f"Final bill #{bill.id} is already paid")

    live = await compute_unpaid_bill(db, workspace_id, bill.table_number, bill.customer_phone)
    snapshot_ids = sorted(bill.order_ids or [])
    if sorted(live.order_ids) != snapshot_ids or live.total != to_money(bill.total_amount):
        logger.warning(
            f"Final bill #{bill.id} is stale: orders {snapshot_ids} total {to_money(bill.total_amount)}, "
            f"now owed {sorted(live.order_ids)} total {live.total}"
        )
        raise ConflictError(
            f"Final bill #{bill.id} is out of date. Generate the bill again.",
            detail=f"now owed: {live.total}",
        )

    orders, payment = await _mark_paid(db, workspace_id, list(bill.order_ids or []), payment_method)

    bill.is_paid = True
    bill.paid_at = datetime.now(timezone.utc)
    bill.payment_method = payment.applied_method
    await db.commit()

    logger.info(f"Final bill #{bill.id} paid via {payment.applied_method}")
    for order in orders:
        await publish_order_change(order)
    await _publish_bill(bill, ChangeType.UPDATE)
    return bill, payment


# =============================================================================
# PAYMENT MARKING
# =============================================================================

async def _mark_paid(
    db: AsyncSession,
    workspace_id: str,
    order_ids: list[int],
    payment_method: Optional[str],
) -> tuple[list[Order], BulkPaymentResult]:
    """Stage the PAID update; the caller commits."""
    resolution = resolve_payment_method(payment_method)
    ids = list(dict.fromkeys(int(i) for i in order_ids))

    orders: list[Order] = []
    if ids:
        result = await db.execute(
            select(Order).where(Order.workspace_id == workspace_id, Order.id.in_(ids))
        )
        orders = list(result.scalars().all())
        missing = sorted(set(ids) - {o.id for o in orders})
        if missing:
            raise NotFoundError(f"Orders not found: {', '.join(f'#{i}' for i in missing)}")
        cancelled = sorted(o.id for o in orders if o.status == OrderStatus.CANCELLED)
        if cancelled:
            raise ConflictError(
                f"Cancelled orders cannot be paid: {', '.join(f'#{i}' for i in cancelled)}"
            )

    for order in orders:
        order.payment_status = PaymentStatus.PAID
        order.payment_method = resolution.applied

    return orders, BulkPaymentResult(
        order_ids=[o.id for o in sorted(orders, key=lambda o: o.id)],
        requested_method=resolution.requested,
        applied_method=resolution.applied,
        downgraded=resolution.downgraded,
    )


async def mark_orders_paid(
    db: AsyncSession,
    workspace_id: str,
    order_ids: list[int],
    payment_method: Optional[str] = None,
) -> BulkPaymentResult:
    """
    Mark several orders PAID with one normalized payment method.

    An empty id list is a successful no-op. An unsupported method is
    downgraded to the default and reported in the result.
    """
    orders, payment = await _mark_paid(db, workspace_id, order_ids, payment_method)
    if not orders:
        return payment

    await db.commit()
    logger.info(payment.message)
    for order in orders:
        await publish_order_change(order)
    return payment


async def mark_order_paid(
    db: AsyncSession,
    workspace_id: str,
    order_id: int,
    payment_method: Optional[str] = None,
) -> tuple[Order, BulkPaymentResult]:
    order = await get_order(db, workspace_id, order_id)
    payment = await mark_orders_paid(db, workspace_id, [order.id], payment_method)
    return order, payment
