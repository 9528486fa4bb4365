"""
SQLAlchemy Database Models

Multi-tenant table ordering:
- Every row is scoped by workspace_id
- Orders carry their line items, status and payment state
- Final bills snapshot the unpaid orders of one table + phone
- REQUIRED_COLUMNS is the schema contract checked at startup
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.types import TypeDecorator

from app.database import Base


SCHEMA_VERSION = 4


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_workspace_id() -> str:
    return str(uuid.uuid4())


class UTCDateTime(TypeDecorator):
    """
    Timestamp stored in UTC and always returned timezone-aware.

    SQLite drops the offset on the way in and hands back naive values;
    this type converts to UTC before binding and re-attaches UTC on load.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class OrderStatus(str, enum.Enum):
    """Order status workflow."""
    PENDING = "PENDING"
    PREPARING = "PREPARING"
    READY = "READY"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, enum.Enum):
    UNPAID = "UNPAID"
    PAID = "PAID"


class ServiceRequestType(str, enum.Enum):
    """What a customer is calling staff over for."""
    WAITER = "WAITER"
    WATER = "WATER"
    BILL = "BILL"
    OTHER = "OTHER"


class SchemaMeta(Base):
    """Single-row table holding the applied schema version."""
    __tablename__ = "schema_meta"

    id = Column(Integer, primary_key=True)
    version = Column(Integer, nullable=False)


class Workspace(Base):
    """
    A restaurant account. Owns all other rows.

    Owner, admin and kitchen credentials are stored as werkzeug password hashes.
    """
    __tablename__ = "workspaces"

    id = Column(String(36), primary_key=True, default=new_workspace_id)

    restaurant_name = Column(String(120), nullable=False)
    outlet_name = Column(String(120), nullable=False)
    owner_email = Column(String(255), nullable=False, unique=True, index=True)
    admin_username = Column(String(60), nullable=False)
    kitchen_username = Column(String(60), nullable=False)

    owner_password_hash = Column(String(255), nullable=False)
    admin_password_hash = Column(String(255), nullable=False)
    kitchen_password_hash = Column(String(255), nullable=False)

    currency_code = Column(String(3), nullable=False, default="USD")
    timezone = Column(String(64), nullable=False, default="UTC")
    logo_url = Column(String(500), nullable=True)

    created_at = Column(UTCDateTime(), nullable=False, default=utc_now)
    updated_at = Column(UTCDateTime(), nullable=False, default=utc_now, onupdate=utc_now)

    def __repr__(self):
        return f"<Workspace {self.id} - {self.restaurant_name}>"


class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    workspace_id = Column(String(36), ForeignKey("workspaces.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    sort_order = Column(Integer, nullable=False, default=0)
    created_at = Column(UTCDateTime(), nullable=False, default=utc_now)


class MenuItem(Base):
    __tablename__ = "menu_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    workspace_id = Column(String(36), ForeignKey("workspaces.id"), nullable=False, index=True)
    category_id = Column(Integer, ForeignKey("categories.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(120), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    description = Column(Text, nullable=False, default="")
    image_url = Column(String(500), nullable=True)
    is_available = Column(Boolean, nullable=False, default=True)
    created_at = Column(UTCDateTime(), nullable=False, default=utc_now)

    def __repr__(self):
        return f"<MenuItem #{self.id} - {self.name} - {'available' if self.is_available else 'unavailable'}>"


class RestaurantTable(Base):
    __tablename__ = "restaurant_tables"
    __table_args__ = (
        UniqueConstraint("workspace_id", "table_number", name="uq_table_number_per_workspace"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    workspace_id = Column(String(36), ForeignKey("workspaces.id"), nullable=False, index=True)
    table_number = Column(Integer, nullable=False)
    created_at = Column(UTCDateTime(), nullable=False, default=utc_now)


class Order(Base):
    """
    A customer order placed from a table.

    Invariant: total_amount equals the sum of line_total over the
    non-cancelled items.
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    workspace_id = Column(String(36), ForeignKey("workspaces.id"), nullable=False, index=True)

    # =========================================================================
    # CUSTOMER
    # =========================================================================
    table_number = Column(Integer, nullable=False, index=True)
    customer_name = Column(String(100), nullable=False, default="Guest")
    customer_phone = Column(String(20), nullable=True, index=True)

    # =========================================================================
    # STATE
    # =========================================================================
    total_amount = Column(Numeric(10, 2), nullable=False, default=0)
    status = Column(
        Enum(OrderStatus, native_enum=False, length=20),
        default=OrderStatus.PENDING,
        nullable=False,
        index=True,
    )
    payment_status = Column(
        Enum(PaymentStatus, native_enum=False, length=10),
        default=PaymentStatus.UNPAID,
        nullable=False,
        index=True,
    )
    payment_method = Column(String(20), nullable=False, default="COUNTER")
    status_reason = Column(Text, nullable=True)

    # =========================================================================
    # TIMESTAMPS
    # =========================================================================
    created_at = Column(UTCDateTime(), nullable=False, default=utc_now, index=True)
    updated_at = Column(UTCDateTime(), nullable=True, onupdate=utc_now)

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
        lazy="selectin",
    )

    def __repr__(self):
        return f"<Order #{self.id} - table {self.table_number} - {self.status.value}>"


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    menu_item_id = Column(Integer, nullable=True)
    item_name = Column(String(255), nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    quantity = Column(Integer, nullable=False)
    line_total = Column(Numeric(10, 2), nullable=False)
    is_cancelled = Column(Boolean, nullable=False, default=False)
    cancel_reason = Column(String(255), nullable=True)

    order = relationship("Order", back_populates="items")


class FinalBill(Base):
    """Snapshot of the unpaid orders of one table + phone at generation time."""
    __tablename__ = "final_bills"
    # Deleted snapshots must never hand their id to a new bill
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    workspace_id = Column(String(36), ForeignKey("workspaces.id"), nullable=False, index=True)
    table_number = Column(Integer, nullable=False, index=True)
    customer_phone = Column(String(20), nullable=False, index=True)
    customer_name = Column(String(100), nullable=False, default="Guest")
    order_ids = Column(JSON, nullable=False)  # list[int]
    line_items = Column(JSON, nullable=False)  # aggregated lines, money as strings
    total_amount = Column(Numeric(10, 2), nullable=False)
    is_paid = Column(Boolean, nullable=False, default=False)
    payment_method = Column(String(20), nullable=True)
    paid_at = Column(UTCDateTime(), nullable=True)
    created_at = Column(UTCDateTime(), nullable=False, default=utc_now)

    def __repr__(self):
        return f"<FinalBill #{self.id} - table {self.table_number} - {'paid' if self.is_paid else 'unpaid'}>"


class ServiceRequest(Base):
    """Customer call for assistance; open until staff resolve it."""
    __tablename__ = "service_requests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    workspace_id = Column(String(36), ForeignKey("workspaces.id"), nullable=False, index=True)
    table_number = Column(Integer, nullable=False)
    customer_phone = Column(String(20), nullable=True)
    request_type = Column(
        Enum(ServiceRequestType, native_enum=False, length=10),
        nullable=False,
        default=ServiceRequestType.WAITER,
    )
    message = Column(String(255), nullable=True)
    is_resolved = Column(Boolean, nullable=False, default=False, index=True)
    created_at = Column(UTCDateTime(), nullable=False, default=utc_now)
    resolved_at = Column(UTCDateTime(), nullable=True)


# =============================================================================
# SCHEMA CONTRACT
# =============================================================================

REQUIRED_COLUMNS: dict[str, set[str]] = {
    table.name: {column.name for column in table.columns}
    for table in Base.metadata.sorted_tables
}
