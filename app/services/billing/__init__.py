"""
Billing: unpaid-bill aggregation, final bills and payment marking.
"""

from app.services.billing.aggregation import (
    BillLine,
    aggregate_lines,
    bill_total,
    count_billing_sessions,
)
from app.services.billing.payments import (
    BulkPaymentResult,
    normalize_payment_method,
    resolve_payment_method,
)
from app.services.billing.service import (
    UnpaidBill,
    compute_unpaid_bill,
    final_bill_snapshot,
    generate_final_bill,
    get_final_bill,
    list_final_bills,
    mark_final_bill_paid,
    mark_order_paid,
    mark_orders_paid,
    session_boundary,
)

__all__ = [
    "BillLine",
    "aggregate_lines",
    "bill_total",
    "count_billing_sessions",
    "BulkPaymentResult",
    "normalize_payment_method",
    "resolve_payment_method",
    "UnpaidBill",
    "compute_unpaid_bill",
    "final_bill_snapshot",
    "generate_final_bill",
    "get_final_bill",
    "list_final_bills",
    "mark_final_bill_paid",
    "mark_order_paid",
    "mark_orders_paid",
    "session_boundary",
]
