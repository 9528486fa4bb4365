"""
Pydantic Schemas for Request/Response Validation

Request bodies for staff and customer screens, and the response shapes
the API returns. Money leaves the API as floats rounded to cents.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator

from app.models import OrderStatus, PaymentStatus, ServiceRequestType


# =============================================================================
# AUTH & WORKSPACE SCHEMAS
# =============================================================================

class WorkspaceRegisterRequest(BaseModel):
    """New restaurant account with its three staff credentials."""
    restaurant_name: str = Field(..., max_length=120, examples=["Bella Cucina"])
    outlet_name: str = Field(..., max_length=120, examples=["Downtown"])
    owner_email: str = Field(..., max_length=255, examples=["owner@bellacucina.com"])
    owner_password: str
    admin_username: str = Field(..., max_length=60, examples=["admin"])
    admin_password: str
    kitchen_username: str = Field(..., max_length=60, examples=["kitchen"])
    kitchen_password: str


class OwnerLoginRequest(BaseModel):
    email: str = Field(..., examples=["owner@bellacucina.com"])
    password: str


class StaffLoginRequest(BaseModel):
    username: str = Field(..., examples=["kitchen"])
    password: str


class KitchenCredentialsUpdate(BaseModel):
    current_username: str
    current_password: str
    next_username: Optional[str] = None
    next_password: Optional[str] = None


class WorkspaceSettingsUpdate(BaseModel):
    restaurant_name: Optional[str] = Field(None, max_length=120)
    outlet_name: Optional[str] = Field(None, max_length=120)
    currency_code: Optional[str] = Field(None, min_length=3, max_length=3, examples=["USD"])
    timezone: Optional[str] = Field(None, max_length=64, examples=["Europe/Paris"])
    logo_url: Optional[str] = Field(None, max_length=500)


class WorkspaceResponse(BaseModel):
    id: str
    restaurant_name: str
    outlet_name: str
    owner_email: str
    admin_username: str
    kitchen_username: str
    currency_code: str
    timezone: str
    logo_url: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class PublicWorkspaceResponse(BaseModel):
    """What customers at a table may see about the restaurant."""
    id: str
    restaurant_name: str
    outlet_name: str
    currency_code: str
    logo_url: Optional[str]

    class Config:
        from_attributes = True


class SessionResponse(BaseModel):
    """Response after a successful sign-in or registration."""
    success: bool = True
    token: str
    role: str
    username: str
    workspace_id: str
    expires_at: datetime
    workspace: WorkspaceResponse


# =============================================================================
# CATALOG SCHEMAS
# =============================================================================

class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, examples=["Starters"])
    sort_order: int = Field(default=0, ge=0)


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    sort_order: Optional[int] = Field(None, ge=0)


class CategoryResponse(BaseModel):
    id: int
    name: str
    sort_order: int
    created_at: datetime

    class Config:
        from_attributes = True


class MenuItemCreate(BaseModel):
    category_id: int
    name: str = Field(..., min_length=1, max_length=120, examples=["Margherita Pizza"])
    price: Decimal = Field(..., ge=0, examples=["14.99"])
    description: str = Field(default="", max_length=1000)
    image_url: Optional[str] = Field(None, max_length=500)
    is_available: bool = True


class MenuItemUpdate(BaseModel):
    """Partial update; omitted fields are left unchanged."""
    category_id: Optional[int] = None
    name: Optional[str] = Field(None, min_length=1, max_length=120)
    price: Optional[Decimal] = Field(None, ge=0)
    description: Optional[str] = Field(None, max_length=1000)
    image_url: Optional[str] = Field(None, max_length=500)
    is_available: Optional[bool] = None


class AvailabilityUpdate(BaseModel):
    is_available: bool


class MenuItemResponse(BaseModel):
    id: int
    category_id: int
    name: str
    price: float
    description: str
    image_url: Optional[str]
    is_available: bool
    created_at: datetime

    class Config:
        from_attributes = True


class TableCreate(BaseModel):
    table_number: int = Field(..., ge=1, examples=[12])


class TableResponse(BaseModel):
    id: int
    table_number: int
    path: str
    created_at: datetime


class PublicMenuResponse(BaseModel):
    workspace: PublicWorkspaceResponse
    table_number: int
    categories: List[CategoryResponse]
    items: List[MenuItemResponse]


class SeedResponse(BaseModel):
    success: bool = True
    categories: int
    items: int
    tables: int


# =============================================================================
# ORDER SCHEMAS
# =============================================================================

class OrderItemCreate(BaseModel):
    """Single cart line."""
    menu_item_id: Optional[int] = None
    name: str = Field(..., min_length=1, max_length=120, examples=["Margherita Pizza"])
    unit_price: Decimal = Field(..., ge=0, examples=["14.99"])
    quantity: int = Field(..., ge=1, le=99, examples=[2])
    note: Optional[str] = Field(None, max_length=200, examples=["no onions"])


class OrderCreate(BaseModel):
    """Request schema for placing an order from a table."""
    customer_name: Optional[str] = Field(None, max_length=100, examples=["Maya"])
    customer_phone: Optional[str] = Field(None, max_length=20, examples=["9876543210"])
    items: List[OrderItemCreate] = Field(..., min_length=1)

    @field_validator("customer_phone")
    @classmethod
    def strip_phone(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return v.strip() or None


class OrderItemResponse(BaseModel):
    id: int
    menu_item_id: Optional[int]
    item_name: str
    unit_price: float
    quantity: int
    line_total: float
    is_cancelled: bool
    cancel_reason: Optional[str]

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    """Response schema for a single order."""
    id: int
    table_number: int
    customer_name: str
    customer_phone: Optional[str]
    total_amount: float
    status: OrderStatus
    payment_status: PaymentStatus
    payment_method: str
    status_reason: Optional[str]
    created_at: datetime
    updated_at: Optional[datetime]
    items: List[OrderItemResponse]

    class Config:
        from_attributes = True


class OrderListResponse(BaseModel):
    """Response for listing multiple orders."""
    total: int
    orders: List[OrderResponse]


class StatusUpdateRequest(BaseModel):
    status: OrderStatus
    reason: Optional[str] = Field(None, max_length=500)


class RejectOrderRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500, examples=["Rejected: out of stock"])


class CustomerCancelRequest(BaseModel):
    customer_phone: Optional[str] = Field(None, max_length=20)


class OrderGroupResponse(BaseModel):
    """Orders shown together on the kitchen or history board."""
    key: str
    table_number: Optional[int]
    customer_phone: str
    customer_name: str
    first_at: Optional[datetime]
    orders: List[OrderResponse]


class ReconciliationResponse(BaseModel):
    success: bool = True
    message: str
    unavailable_items: List[str]
    all_items_unavailable: bool
    order: OrderResponse


# =============================================================================
# BILLING SCHEMAS
# =============================================================================

class BillLineResponse(BaseModel):
    name: str
    unit_price: float
    quantity: int
    line_total: float

    class Config:
        from_attributes = True


class UnpaidBillResponse(BaseModel):
    table_number: int
    customer_phone: str
    customer_name: str
    order_ids: List[int]
    lines: List[BillLineResponse]
    total: float
    session_started_after: Optional[datetime]


class FinalBillCreate(BaseModel):
    table_number: int = Field(..., ge=1)
    customer_phone: str = Field(..., max_length=20)


class FinalBillResponse(BaseModel):
    id: int
    table_number: int
    customer_phone: str
    customer_name: str
    order_ids: List[int]
    line_items: List[BillLineResponse]
    total_amount: float
    is_paid: bool
    payment_method: Optional[str]
    paid_at: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True


class PaymentRequest(BaseModel):
    payment_method: Optional[str] = Field(None, max_length=40, examples=["cash at counter"])


class BulkPaymentRequest(BaseModel):
    order_ids: List[int] = Field(default_factory=list)
    payment_method: Optional[str] = Field(None, max_length=40, examples=["card"])


class BulkPaymentResponse(BaseModel):
    """Result of marking orders paid, including any method downgrade."""
    success: bool = True
    message: str
    order_ids: List[int]
    requested_method: Optional[str]
    applied_method: Optional[str]
    downgraded: bool


class FinalBillPaymentResponse(BaseModel):
    success: bool = True
    bill: FinalBillResponse
    payment: BulkPaymentResponse


# =============================================================================
# SERVICE REQUEST SCHEMAS
# =============================================================================

class ServiceRequestCreate(BaseModel):
    request_type: ServiceRequestType = ServiceRequestType.WAITER
    message: Optional[str] = Field(None, max_length=255)
    customer_phone: Optional[str] = Field(None, max_length=20)


class ServiceRequestResponse(BaseModel):
    id: int
    table_number: int
    customer_phone: Optional[str]
    request_type: ServiceRequestType
    message: Optional[str]
    is_resolved: bool
    created_at: datetime
    resolved_at: Optional[datetime]

    class Config:
        from_attributes = True


# =============================================================================
# DASHBOARD, EXPORT & SYSTEM SCHEMAS
# =============================================================================

class DashboardStatsResponse(BaseModel):
    day: str
    total: int
    unpaid: int
    paid: int
    served: int
    preparing: int
    ready: int
    cancelled: int
    active_tables: int
    revenue: float
    avg_ticket: float
    paid_rate: float
    completion_rate: float
    billing_sessions: int
    status_distribution: dict[str, int]


class ExportTaskResponse(BaseModel):
    success: bool
    message: str
    task_id: Optional[str] = None


class UploadResponse(BaseModel):
    success: bool = True
    url: str
    path: str
    bucket: str


class ClientConfigResponse(BaseModel):
    """Settings browser clients need before they start polling."""
    poll_interval_seconds: int
    default_payment_method: str
    payment_methods: List[str]
    currency_code: str
    websocket_path: str


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    change_feed: str
    storage: str
    timestamp: datetime


class MessageResponse(BaseModel):
    success: bool = True
    message: str
    data: Optional[dict[str, Any]] = None
