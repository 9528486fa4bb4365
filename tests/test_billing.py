"""
Tests for unpaid-bill aggregation, billing sessions and final bills.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from app.core.errors import ConflictError, NotFoundError, ValidationFailedError
from app.models import FinalBill, Order, OrderItem, OrderStatus, PaymentStatus
from app.services import billing, catalog, orders, reconciliation
from app.services.billing import aggregate_lines, bill_total, count_billing_sessions


PHONE = "9876543210"
T0 = datetime(2024, 5, 1, 18, 0, tzinfo=timezone.utc)


def make_order(order_id, minutes, *lines, table=1, phone=PHONE, reason=None):
    order = Order(
        id=order_id,
        workspace_id="ws",
        table_number=table,
        customer_phone=phone,
        status=OrderStatus.PENDING,
        payment_status=PaymentStatus.UNPAID,
        status_reason=reason,
        created_at=T0 + timedelta(minutes=minutes),
    )
    for name, price, quantity, *rest in lines:
        unit_price = Decimal(price)
        order.items.append(
            OrderItem(
                item_name=name,
                unit_price=unit_price,
                quantity=quantity,
                line_total=unit_price * quantity,
                is_cancelled=bool(rest and rest[0]),
            )
        )
    return order


def paid_bill(order_ids, table=1, phone=PHONE):
    return FinalBill(table_number=table, customer_phone=phone, order_ids=order_ids, is_paid=True)


class TestAggregation:

    def test_merges_lines_by_name_and_price(self):
        lines = aggregate_lines([
            make_order(1, 0, ("Latte", "4.50", 2), ("Tiramisu", "7.99", 1)),
            make_order(2, 5, ("Latte", "4.50", 1)),
        ])

        assert [(l.name, l.quantity, l.line_total) for l in lines] == [
            ("Latte", 3, Decimal("13.50")),
            ("Tiramisu", 1, Decimal("7.99")),
        ]
        assert bill_total(lines) == Decimal("21.49")

    def test_same_name_different_price_stays_separate(self):
        lines = aggregate_lines([
            make_order(1, 0, ("Latte", "4.50", 1)),
            make_order(2, 5, ("Latte", "5.00", 1)),
        ])
        assert len(lines) == 2

    def test_cancelled_lines_are_excluded(self):
        lines = aggregate_lines([make_order(1, 0, ("Latte", "4.50", 1, True), ("Iced Tea", "3.50", 1))])
        assert [l.name for l in lines] == ["Iced Tea"]

    def test_names_removed_on_any_order_are_excluded(self):
        lines = aggregate_lines([
            make_order(1, 0, ("Latte", "4.50", 1), reason="Unavailable items removed: Latte"),
            make_order(2, 5, ("Latte (Note: oat)", "4.50", 1), ("Iced Tea", "3.50", 1)),
        ])
        assert [l.name for l in lines] == ["Iced Tea"]

    def test_total_equals_sum_of_lines(self):
        lines = aggregate_lines([
            make_order(1, 0, ("Bruschetta", "8.99", 3)),
            make_order(2, 1, ("Iced Tea", "3.50", 2)),
        ])
        assert bill_total(lines) == sum(l.line_total for l in lines)


class TestCountBillingSessions:

    def test_single_unpaid_group_is_one_session(self):
        assert count_billing_sessions([make_order(1, 0), make_order(2, 5)], []) == 1

    def test_paid_bill_starts_a_new_session(self):
        ordered = [make_order(1, 0), make_order(2, 5), make_order(3, 10)]
        assert count_billing_sessions(ordered, [paid_bill([1, 2])]) == 2

    def test_unpaid_bills_do_not_split_sessions(self):
        bill = paid_bill([1])
        bill.is_paid = False
        assert count_billing_sessions([make_order(1, 0), make_order(2, 5)], [bill]) == 1

    def test_groups_are_per_table_and_phone(self):
        ordered = [
            make_order(1, 0, table=1),
            make_order(2, 1, table=2),
            make_order(3, 2, table=1, phone="5550000000"),
        ]
        assert count_billing_sessions(ordered, []) == 3


class TestUnpaidBill:

    async def test_requires_a_phone(self, db, workspace, menu):
        with pytest.raises(ValidationFailedError) as exc_info:
            await billing.compute_unpaid_bill(db, workspace.id, 1, "  ")
        assert exc_info.value.message == "Customer mobile number missing for this order."

    async def test_aggregates_orders_of_the_pair(self, db, workspace, place):
        first = await place(1, PHONE, ("Latte", 2))
        second = await place(1, PHONE, ("Latte", 1), ("Tiramisu", 1))
        await place(1, "5550000000", ("Latte", 1))
        await place(2, PHONE, ("Latte", 1))

        bill = await billing.compute_unpaid_bill(db, workspace.id, 1, PHONE)

        assert bill.order_ids == [first.id, second.id]
        assert [(l.name, l.quantity) for l in bill.lines] == [("Latte", 3), ("Tiramisu", 1)]
        assert bill.total == Decimal("21.49")
        assert bill.session_started_after is None

    async def test_cancelled_orders_are_excluded(self, db, workspace, place):
        await place(1, PHONE, ("Latte", 1))
        cancelled = await place(1, PHONE, ("Tiramisu", 1))
        await orders.cancel_by_customer(db, workspace.id, cancelled.id)

        bill = await billing.compute_unpaid_bill(db, workspace.id, 1, PHONE)
        assert cancelled.id not in bill.order_ids
        assert bill.total == Decimal("4.50")

    async def test_orders_before_last_payment_are_not_billed(self, db, workspace, place):
        old = await place(1, PHONE, ("Latte", 1))
        await billing.mark_orders_paid(db, workspace.id, [old.id], "cash")
        new = await place(1, PHONE, ("Iced Tea", 1))

        bill = await billing.compute_unpaid_bill(db, workspace.id, 1, PHONE)

        assert bill.order_ids == [new.id]
        assert bill.total == Decimal("3.50")
        assert bill.session_started_after == old.created_at

    async def test_unpaid_order_older_than_a_payment_starts_a_fresh_session(self, db, workspace, place):
        stale = await place(1, PHONE, ("Latte", 1))
        paid = await place(1, PHONE, ("Tiramisu", 1))
        await billing.mark_orders_paid(db, workspace.id, [paid.id])

        bill = await billing.compute_unpaid_bill(db, workspace.id, 1, PHONE)
        assert stale.id not in bill.order_ids
        assert bill.is_empty

    async def test_removed_items_stay_off_the_bill(self, db, workspace, menu, place):
        await place(1, PHONE, ("Latte", 1), ("Tiramisu", 1))
        order = await place(1, PHONE, ("Latte", 1), ("Iced Tea", 1))
        await catalog.set_availability(db, workspace.id, menu["Latte"].id, False)
        await reconciliation.apply_unavailable_items(db, workspace.id, order.id)

        bill = await billing.compute_unpaid_bill(db, workspace.id, 1, PHONE)

        assert [l.name for l in bill.lines] == ["Tiramisu", "Iced Tea"], \
            "a name removed from one order is dropped from every order on the bill"
        assert bill.total == Decimal("11.49")


class TestFinalBills:

    async def test_generate_snapshots_the_unpaid_bill(self, db, workspace, place):
        a = await place(4, PHONE, ("Latte", 2))
        b = await place(4, PHONE, ("Tiramisu", 1))

        bill = await billing.generate_final_bill(db, workspace.id, 4, PHONE)

        assert bill.order_ids == [a.id, b.id]
        assert bill.total_amount == Decimal("16.99")
        assert not bill.is_paid
        assert bill.line_items[0] == {
            "name": "Latte",
            "unit_price": "4.50",
            "quantity": 2,
            "line_total": "9.00",
        }

    async def test_nothing_owed_is_not_found(self, db, workspace, menu):
        with pytest.raises(NotFoundError):
            await billing.generate_final_bill(db, workspace.id, 4, PHONE)

    async def test_regenerating_replaces_the_unpaid_snapshot(self, db, workspace, place):
        await place(4, PHONE, ("Latte", 1))
        first = await billing.generate_final_bill(db, workspace.id, 4, PHONE)
        await place(4, PHONE, ("Iced Tea", 1))
        second = await billing.generate_final_bill(db, workspace.id, 4, PHONE)

        unpaid = await billing.list_final_bills(db, workspace.id, is_paid=False)
        assert [b.id for b in unpaid] == [second.id]
        assert second.total_amount == Decimal("8.00")
        assert first.id != second.id
        with pytest.raises(NotFoundError):
            await billing.get_final_bill(db, workspace.id, first.id)

    async def test_replaced_bill_id_cannot_pay_the_new_snapshot(self, db, workspace, place):
        await place(4, PHONE, ("Latte", 1))
        first = await billing.generate_final_bill(db, workspace.id, 4, PHONE)
        first_id = first.id
        await billing.generate_final_bill(db, workspace.id, 4, PHONE)

        with pytest.raises(NotFoundError):
            await billing.mark_final_bill_paid(db, workspace.id, first_id)

    async def test_paying_the_bill_pays_its_orders(self, db, workspace, place):
        a = await place(4, PHONE, ("Latte", 1))
        b = await place(4, PHONE, ("Iced Tea", 1))
        bill = await billing.generate_final_bill(db, workspace.id, 4, PHONE)

        bill, payment = await billing.mark_final_bill_paid(db, workspace.id, bill.id, "card")

        assert bill.is_paid
        assert bill.paid_at is not None
        assert bill.payment_method == "CARD"
        assert payment.order_ids == [a.id, b.id]
        for order_id in (a.id, b.id):
            order = await orders.get_order(db, workspace.id, order_id)
            assert order.payment_status == PaymentStatus.PAID
            assert order.payment_method == "CARD"

        after = await billing.compute_unpaid_bill(db, workspace.id, 4, PHONE)
        assert after.is_empty, "a paid bill closes the billing session"

    async def test_paying_twice_conflicts(self, db, workspace, place):
        await place(4, PHONE, ("Latte", 1))
        bill = await billing.generate_final_bill(db, workspace.id, 4, PHONE)
        await billing.mark_final_bill_paid(db, workspace.id, bill.id)

        with pytest.raises(ConflictError):
            await billing.mark_final_bill_paid(db, workspace.id, bill.id)

    async def test_bills_are_scoped_to_their_workspace(self, db, workspace, other_workspace, place):
        await place(4, PHONE, ("Latte", 1))
        bill = await billing.generate_final_bill(db, workspace.id, 4, PHONE)
        with pytest.raises(NotFoundError):
            await billing.get_final_bill(db, other_workspace.id, bill.id)


class TestStaleFinalBills:

    async def test_bill_with_a_cancelled_order_cannot_be_paid(self, db, workspace, place):
        a = await place(4, PHONE, ("Latte", 1), ("Tiramisu", 1))
        b = await place(4, PHONE, ("Iced Tea", 1))
        bill = await billing.generate_final_bill(db, workspace.id, 4, PHONE)
        await orders.cancel_by_customer(db, workspace.id, a.id)

        with pytest.raises(ConflictError) as exc_info:
            await billing.mark_final_bill_paid(db, workspace.id, bill.id, "cash")
        assert "out of date" in exc_info.value.message

        cancelled = await orders.get_order(db, workspace.id, a.id)
        assert cancelled.payment_status == PaymentStatus.UNPAID, "cancelled orders are never paid"
        stale = await billing.get_final_bill(db, workspace.id, bill.id)
        assert not stale.is_paid

        fresh = await billing.generate_final_bill(db, workspace.id, 4, PHONE)
        assert fresh.order_ids == [b.id]
        assert fresh.total_amount == Decimal("3.50")
        paid, payment = await billing.mark_final_bill_paid(db, workspace.id, fresh.id, "cash")
        assert paid.is_paid
        assert payment.order_ids == [b.id]

    async def test_bill_trimmed_by_reconciliation_cannot_be_paid(self, db, workspace, menu, place):
        order = await place(4, PHONE, ("Latte", 1), ("Tiramisu", 1))
        bill = await billing.generate_final_bill(db, workspace.id, 4, PHONE)
        assert bill.total_amount == Decimal("12.49")
        await catalog.set_availability(db, workspace.id, menu["Tiramisu"].id, False)
        await reconciliation.apply_unavailable_items(db, workspace.id, order.id)

        with pytest.raises(ConflictError):
            await billing.mark_final_bill_paid(db, workspace.id, bill.id)

        fresh = await billing.generate_final_bill(db, workspace.id, 4, PHONE)
        assert fresh.total_amount == Decimal("4.50")
        paid, _ = await billing.mark_final_bill_paid(db, workspace.id, fresh.id)
        assert paid.total_amount == (await orders.get_order(db, workspace.id, order.id)).total_amount

    async def test_bill_missing_a_later_order_cannot_be_paid(self, db, workspace, place):
        await place(4, PHONE, ("Latte", 1))
        bill = await billing.generate_final_bill(db, workspace.id, 4, PHONE)
        await place(4, PHONE, ("Iced Tea", 1))

        with pytest.raises(ConflictError):
            await billing.mark_final_bill_paid(db, workspace.id, bill.id)


class TestSessionBoundaryIgnoresCancelled:

    async def test_cancelled_paid_order_does_not_close_the_session(self, db, workspace, place):
        owed = await place(1, PHONE, ("Latte", 1))
        refunded = await place(1, PHONE, ("Tiramisu", 1))
        await billing.mark_orders_paid(db, workspace.id, [refunded.id], "cash")
        await orders.cancel_by_customer(db, workspace.id, refunded.id)

        assert await billing.session_boundary(db, workspace.id, 1, PHONE) is None

        bill = await billing.compute_unpaid_bill(db, workspace.id, 1, PHONE)
        assert bill.order_ids == [owed.id]
        assert bill.total == Decimal("4.50")
