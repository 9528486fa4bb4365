"""
Order Status State Machine

    PENDING ──► PREPARING ──► READY ──► COMPLETED
       │            │           │
       └────────────┴───────────┴──► CANCELLED

Kitchen moves orders forward one step at a time. Customers may cancel
only while PENDING; admins may reject (out of stock) anything not yet
terminal. COMPLETED and CANCELLED are terminal.
"""

import enum

from app.core.errors import InvalidTransitionError
from app.models import OrderStatus


class Actor(str, enum.Enum):
    """Who is asking for a status change."""
    KITCHEN = "kitchen"
    CUSTOMER = "customer"
    ADMIN = "admin"


STATUS_FLOW: tuple[OrderStatus, ...] = (
    OrderStatus.PENDING,
    OrderStatus.PREPARING,
    OrderStatus.READY,
    OrderStatus.COMPLETED,
)

ACTIVE_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.PREPARING, OrderStatus.READY})
TERMINAL_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED})

CUSTOMER_CANCELLABLE = frozenset({OrderStatus.PENDING})
ADMIN_REJECTABLE = ACTIVE_STATUSES


def next_status(current: OrderStatus) -> OrderStatus:
    """Return the status after ``current`` in the kitchen flow."""
    if current in TERMINAL_STATUSES:
        raise InvalidTransitionError(f"Order is already {current.value} and cannot move forward")
    return STATUS_FLOW[STATUS_FLOW.index(current) + 1]


def can_transition(current: OrderStatus, target: OrderStatus, actor: Actor) -> bool:
    if target == OrderStatus.CANCELLED:
        if actor == Actor.CUSTOMER:
            return current in CUSTOMER_CANCELLABLE
        if actor == Actor.ADMIN:
            return current in ADMIN_REJECTABLE
        return False

    if current in TERMINAL_STATUSES or target not in STATUS_FLOW:
        return False
    return STATUS_FLOW.index(target) == STATUS_FLOW.index(current) + 1


def ensure_transition(current: OrderStatus, target: OrderStatus, actor: Actor) -> None:
    """
    Raise InvalidTransitionError unless ``actor`` may move an order
    from ``current`` to ``target``.
    """
    if can_transition(current, target, actor):
        return

    if target == OrderStatus.CANCELLED and actor == Actor.CUSTOMER:
        raise InvalidTransitionError(
            "Order can only be cancelled while it is pending",
            detail=f"current status is {current.value}",
        )
    raise InvalidTransitionError(
        f"Cannot change order from {current.value} to {target.value}",
    )


def status_label(status: OrderStatus) -> str:
    """Label shown to staff; COMPLETED orders have been served."""
    return "SERVED" if status == OrderStatus.COMPLETED else status.value
