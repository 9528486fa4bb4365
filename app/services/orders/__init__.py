"""
Order lifecycle: status state machine and order commands/queries.
"""

from app.services.orders.lifecycle import (
    ACTIVE_STATUSES,
    STATUS_FLOW,
    TERMINAL_STATUSES,
    Actor,
    can_transition,
    ensure_transition,
    next_status,
    status_label,
)
from app.services.orders.service import (
    NewOrderItem,
    OrderGroup,
    active_orders_for_customer,
    advance_status,
    cancel_by_customer,
    create_order,
    day_bounds,
    get_order,
    history_board,
    kitchen_board,
    list_orders,
    order_snapshot,
    publish_order_change,
    recompute_total,
    reject_out_of_stock,
    set_status,
    to_money,
)

__all__ = [
    "ACTIVE_STATUSES",
    "STATUS_FLOW",
    "TERMINAL_STATUSES",
    "Actor",
    "can_transition",
    "ensure_transition",
    "next_status",
    "status_label",
    "NewOrderItem",
    "OrderGroup",
    "active_orders_for_customer",
    "advance_status",
    "cancel_by_customer",
    "create_order",
    "day_bounds",
    "get_order",
    "history_board",
    "kitchen_board",
    "list_orders",
    "order_snapshot",
    "publish_order_change",
    "recompute_total",
    "reject_out_of_stock",
    "set_status",
    "to_money",
]
