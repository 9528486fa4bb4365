"""
FastAPI Application Entry Point

QR Table Ordering Platform - multi-tenant restaurant ordering.
Customers order from a table's QR link; kitchen staff move orders
through their statuses; admins manage the menu, settle bills and mark
payments.

Endpoints:
    - /api/auth/*: Workspace registration and owner login
    - /api/w/{workspace_id}/...: Public customer routes and staff login
    - /api/orders, /api/kitchen/board: Kitchen and admin order handling
    - /api/bills, /api/final-bills: Billing and payment marking
    - /api/categories, /api/menu-items, /api/tables: Catalog
    - /api/dashboard/stats, /api/workspace/export: Reporting
    - /ws/{workspace_id}/orders: Live change feed
    - /health: System health check
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Any, Optional

from fastapi import (
    Depends,
    FastAPI,
    File,
    Query,
    Request,
    UploadFile,
    WebSocket,
    WebSocketDisconnect,
    status,
)
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from fastapi.staticfiles import StaticFiles
from starlette.websockets import WebSocketState
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

# Windows-specific event loop policy
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Internal imports
from app.core.config import get_settings, setup_logging
from app.core.errors import OrderingError, SchemaContractError, ValidationFailedError
from app.database import engine, get_db, init_db, verify_schema_contract
from app.models import OrderStatus, PaymentStatus
from app.schemas import (
    AvailabilityUpdate,
    BulkPaymentRequest,
    BulkPaymentResponse,
    CategoryCreate,
    CategoryResponse,
    CategoryUpdate,
    ClientConfigResponse,
    CustomerCancelRequest,
    DashboardStatsResponse,
    ErrorResponse,
    ExportTaskResponse,
    FinalBillCreate,
    FinalBillPaymentResponse,
    FinalBillResponse,
    HealthResponse,
    KitchenCredentialsUpdate,
    MenuItemCreate,
    MenuItemResponse,
    MenuItemUpdate,
    MessageResponse,
    OrderCreate,
    OrderGroupResponse,
    OrderListResponse,
    OrderResponse,
    OwnerLoginRequest,
    PaymentRequest,
    PublicMenuResponse,
    PublicWorkspaceResponse,
    ReconciliationResponse,
    RejectOrderRequest,
    SeedResponse,
    ServiceRequestCreate,
    ServiceRequestResponse,
    SessionResponse,
    StaffLoginRequest,
    StatusUpdateRequest,
    TableCreate,
    TableResponse,
    UnpaidBillResponse,
    UploadResponse,
    WorkspaceRegisterRequest,
    WorkspaceResponse,
    WorkspaceSettingsUpdate,
)
from app.services import (
    auth,
    billing,
    catalog,
    orders,
    reconciliation,
    reporting,
    service_requests,
)
from app.services.auth import ADMIN_ROLES, KITCHEN_ROLES, AuthResult, SessionContext
from app.services.events import get_change_feed
from app.services.orders import Actor
from app.services.storage import get_storage_service

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    # Startup
    logger.info("=" * 60)
    logger.info(f"🚀 Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    if settings.create_tables_on_startup:
        await init_db()
        logger.info("✅ Database initialized")

    # Refuse to serve against a database that does not match the models
    await verify_schema_contract()
    logger.info("✅ Schema contract verified")

    feed = get_change_feed()
    storage = get_storage_service()
    logger.info(f"✅ Change Feed: {feed.provider_name}")
    logger.info(f"✅ Storage: {storage.provider_name}")

    if not settings.is_development:
        missing = settings.validate_production_config()
        if missing:
            logger.warning(f"⚠️ Missing production config: {missing}")

    logger.info("=" * 60)
    logger.info("✅ Application ready!")
    logger.info("=" * 60)

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    await feed.close()
    await engine.dispose()
    logger.info("✅ Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Multi-tenant QR table ordering: customer ordering, kitchen status "
        "flow, availability reconciliation, billing and payment marking."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Uploaded images and logos
app.mount(
    "/media",
    StaticFiles(directory=settings.media_directory, check_dir=False),
    name="media",
)


# =============================================================================
# SESSION DEPENDENCIES
# =============================================================================

bearer_scheme = HTTPBearer(auto_error=False)


async def get_session(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> SessionContext:
    """Decode the bearer token and attach the session to the request."""
    session = auth.decode_session(credentials.credentials if credentials else None)
    request.state.session = session
    return session


def require_roles(roles: frozenset):
    async def dependency(session: SessionContext = Depends(get_session)) -> SessionContext:
        return session.require(roles)
    return dependency


require_admin = require_roles(ADMIN_ROLES)
require_kitchen = require_roles(KITCHEN_ROLES)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def session_response(result: AuthResult) -> SessionResponse:
    return SessionResponse(
        token=result.token,
        role=result.session.role.value,
        username=result.session.username,
        workspace_id=result.session.workspace_id,
        expires_at=result.session.expires_at,
        workspace=WorkspaceResponse.model_validate(result.workspace),
    )


def table_response(table) -> TableResponse:
    return TableResponse(
        id=table.id,
        table_number=table.table_number,
        path=catalog.table_path(table.workspace_id, table.table_number),
        created_at=table.created_at,
    )


def group_response(group: orders.OrderGroup) -> OrderGroupResponse:
    return OrderGroupResponse(
        key=group.key,
        table_number=group.table_number,
        customer_phone=group.customer_phone,
        customer_name=group.customer_name,
        first_at=group.first_at,
        orders=[OrderResponse.model_validate(o) for o in group.orders],
    )


def unpaid_bill_response(bill: billing.UnpaidBill) -> UnpaidBillResponse:
    return UnpaidBillResponse(
        table_number=bill.table_number,
        customer_phone=bill.customer_phone,
        customer_name=bill.customer_name,
        order_ids=bill.order_ids,
        lines=[line.to_dict() for line in bill.lines],
        total=bill.total,
        session_started_after=bill.session_started_after,
    )


def payment_response(result: billing.BulkPaymentResult) -> BulkPaymentResponse:
    return BulkPaymentResponse(
        message=result.message,
        order_ids=result.order_ids,
        requested_method=result.requested_method,
        applied_method=result.applied_method,
        downgraded=result.downgraded,
    )


def reconciliation_response(result: reconciliation.ReconciliationResult) -> ReconciliationResponse:
    if result.all_items_unavailable:
        message = "All items were unavailable; order cancelled"
    elif result.changed:
        message = f"Removed unavailable item(s): {', '.join(result.unavailable_items)}"
    else:
        message = "No unavailable items found"
    return ReconciliationResponse(
        message=message,
        unavailable_items=result.unavailable_items,
        all_items_unavailable=result.all_items_unavailable,
        order=OrderResponse.model_validate(result.order),
    )


def staff_actor(session: SessionContext) -> Actor:
    return Actor.ADMIN if session.is_admin else Actor.KITCHEN


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"🍽️ Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(
    db: AsyncSession = Depends(get_db)
) -> HealthResponse:
    """Verify all system components are operational."""

    # Check database
    db_status = "healthy"
    try:
        await db.execute(select(1))
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"
        logger.error(f"Database health check failed: {e}")

    feed = get_change_feed()
    feed_status = "healthy" if await feed.health_check() else "unhealthy"

    storage = get_storage_service()
    storage_status = "healthy" if await storage.health_check() else "unhealthy"

    overall = "operational" if all(
        s == "healthy" for s in [db_status, feed_status, storage_status]
    ) else "degraded"

    return HealthResponse(
        status=overall,
        database=db_status,
        change_feed=f"{feed_status} ({feed.provider_name})",
        storage=storage_status,
        timestamp=datetime.now(),
    )


@app.get(
    "/api/config/client",
    response_model=ClientConfigResponse,
    tags=["Health"],
)
async def client_config() -> ClientConfigResponse:
    """Polling interval and payment options for browser clients."""
    return ClientConfigResponse(
        poll_interval_seconds=settings.poll_interval_seconds,
        default_payment_method=settings.default_payment_method,
        payment_methods=settings.backend_payment_methods_list,
        currency_code=settings.currency_code,
        websocket_path="/ws/{workspace_id}/orders",
    )


# =============================================================================
# AUTH & WORKSPACE ENDPOINTS
# =============================================================================

@app.post(
    "/api/auth/register",
    response_model=SessionResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    tags=["Auth"],
)
async def register(
    data: WorkspaceRegisterRequest,
    db: AsyncSession = Depends(get_db),
) -> SessionResponse:
    """Create a restaurant workspace and sign its owner in."""
    result = await auth.register_workspace(db, auth.WorkspaceRegistration(**data.model_dump()))
    return session_response(result)


@app.post(
    "/api/auth/login",
    response_model=SessionResponse,
    responses={401: {"model": ErrorResponse}},
    tags=["Auth"],
)
async def owner_login(
    data: OwnerLoginRequest,
    db: AsyncSession = Depends(get_db),
) -> SessionResponse:
    result = await auth.login_workspace(db, data.email, data.password)
    return session_response(result)


@app.post(
    "/api/w/{workspace_id}/auth/admin",
    response_model=SessionResponse,
    responses={401: {"model": ErrorResponse}},
    tags=["Auth"],
)
async def admin_login(
    workspace_id: str,
    data: StaffLoginRequest,
    db: AsyncSession = Depends(get_db),
) -> SessionResponse:
    result = await auth.login_admin(db, workspace_id, data.username, data.password)
    return session_response(result)


@app.post(
    "/api/w/{workspace_id}/auth/kitchen",
    response_model=SessionResponse,
    responses={401: {"model": ErrorResponse}},
    tags=["Auth"],
)
async def kitchen_login(
    workspace_id: str,
    data: StaffLoginRequest,
    db: AsyncSession = Depends(get_db),
) -> SessionResponse:
    result = await auth.login_kitchen(db, workspace_id, data.username, data.password)
    return session_response(result)


@app.get("/api/session", tags=["Auth"])
async def current_session(
    session: SessionContext = Depends(get_session),
) -> dict[str, Any]:
    """Who the bearer token belongs to."""
    return {
        "workspace_id": session.workspace_id,
        "role": session.role.value,
        "username": session.username,
        "expires_at": session.expires_at.isoformat(),
    }


@app.get("/api/workspace", response_model=WorkspaceResponse, tags=["Workspace"])
async def read_workspace(
    session: SessionContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> WorkspaceResponse:
    workspace = await auth.get_workspace(db, session.workspace_id)
    return WorkspaceResponse.model_validate(workspace)


@app.patch("/api/workspace", response_model=WorkspaceResponse, tags=["Workspace"])
async def update_workspace(
    data: WorkspaceSettingsUpdate,
    session: SessionContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> WorkspaceResponse:
    workspace = await auth.update_workspace_settings(db, session, data.model_dump(exclude_unset=True))
    return WorkspaceResponse.model_validate(workspace)


@app.put(
    "/api/workspace/kitchen-credentials",
    response_model=MessageResponse,
    responses={401: {"model": ErrorResponse}},
    tags=["Workspace"],
)
async def change_kitchen_credentials(
    data: KitchenCredentialsUpdate,
    session: SessionContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    workspace = await auth.update_kitchen_credentials(
        db,
        session,
        current_username=data.current_username,
        current_password=data.current_password,
        next_username=data.next_username,
        next_password=data.next_password,
    )
    return MessageResponse(
        message="Kitchen credentials updated",
        data={"kitchen_username": workspace.kitchen_username},
    )


@app.post("/api/workspace/seed", response_model=SeedResponse, tags=["Workspace"])
async def seed_workspace(
    session: SessionContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> SeedResponse:
    """Load the demo menu and tables 1-10."""
    counts = await catalog.seed_demo_data(db, session.workspace_id)
    return SeedResponse(**counts)


# =============================================================================
# UPLOAD ENDPOINTS
# =============================================================================

async def store_upload(file: UploadFile, prefix: str) -> UploadResponse:
    content = await file.read()
    result = await get_storage_service().upload(file.filename or "", content, prefix=prefix)
    if not result.success:
        raise ValidationFailedError(result.error_message)
    return UploadResponse(url=result.url, path=result.path, bucket=result.bucket)


@app.post("/api/uploads/menu-image", response_model=UploadResponse, tags=["Uploads"])
async def upload_menu_image(
    file: UploadFile = File(...),
    session: SessionContext = Depends(require_admin),
) -> UploadResponse:
    return await store_upload(file, prefix="menu")


@app.post("/api/workspace/logo", response_model=WorkspaceResponse, tags=["Uploads"])
async def upload_logo(
    file: UploadFile = File(...),
    session: SessionContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> WorkspaceResponse:
    uploaded = await store_upload(file, prefix="logos")
    workspace = await auth.update_workspace_settings(db, session, {"logo_url": uploaded.url})
    return WorkspaceResponse.model_validate(workspace)


# =============================================================================
# CATALOG ENDPOINTS
# =============================================================================

@app.get("/api/categories", response_model=list[CategoryResponse], tags=["Catalog"])
async def list_categories(
    session: SessionContext = Depends(require_kitchen),
    db: AsyncSession = Depends(get_db),
) -> list[CategoryResponse]:
    categories = await catalog.list_categories(db, session.workspace_id)
    return [CategoryResponse.model_validate(c) for c in categories]


@app.post(
    "/api/categories",
    response_model=CategoryResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Catalog"],
)
async def create_category(
    data: CategoryCreate,
    session: SessionContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> CategoryResponse:
    category = await catalog.create_category(db, session.workspace_id, data.name, data.sort_order)
    return CategoryResponse.model_validate(category)


@app.patch("/api/categories/{category_id}", response_model=CategoryResponse, tags=["Catalog"])
async def update_category(
    category_id: int,
    data: CategoryUpdate,
    session: SessionContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> CategoryResponse:
    category = await catalog.update_category(
        db, session.workspace_id, category_id, name=data.name, sort_order=data.sort_order
    )
    return CategoryResponse.model_validate(category)


@app.delete("/api/categories/{category_id}", response_model=MessageResponse, tags=["Catalog"])
async def delete_category(
    category_id: int,
    session: SessionContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await catalog.delete_category(db, session.workspace_id, category_id)
    return MessageResponse(message=f"Category #{category_id} deleted")


@app.get("/api/menu-items", response_model=list[MenuItemResponse], tags=["Catalog"])
async def list_menu_items(
    available_only: bool = Query(False),
    session: SessionContext = Depends(require_kitchen),
    db: AsyncSession = Depends(get_db),
) -> list[MenuItemResponse]:
    items = await catalog.list_menu_items(db, session.workspace_id, available_only=available_only)
    return [MenuItemResponse.model_validate(i) for i in items]


@app.post(
    "/api/menu-items",
    response_model=MenuItemResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Catalog"],
)
async def create_menu_item(
    data: MenuItemCreate,
    session: SessionContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> MenuItemResponse:
    item = await catalog.create_menu_item(db, session.workspace_id, **data.model_dump())
    return MenuItemResponse.model_validate(item)


@app.patch("/api/menu-items/{item_id}", response_model=MenuItemResponse, tags=["Catalog"])
async def update_menu_item(
    item_id: int,
    data: MenuItemUpdate,
    session: SessionContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> MenuItemResponse:
    item = await catalog.update_menu_item(
        db, session.workspace_id, item_id, data.model_dump(exclude_unset=True)
    )
    return MenuItemResponse.model_validate(item)


@app.put(
    "/api/menu-items/{item_id}/availability",
    response_model=MenuItemResponse,
    tags=["Catalog"],
)
async def set_menu_item_availability(
    item_id: int,
    data: AvailabilityUpdate,
    session: SessionContext = Depends(require_kitchen),
    db: AsyncSession = Depends(get_db),
) -> MenuItemResponse:
    """Kitchen and admin can mark an item sold out or back in stock."""
    item = await catalog.set_availability(db, session.workspace_id, item_id, data.is_available)
    return MenuItemResponse.model_validate(item)


@app.delete("/api/menu-items/{item_id}", response_model=MessageResponse, tags=["Catalog"])
async def delete_menu_item(
    item_id: int,
    session: SessionContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await catalog.delete_menu_item(db, session.workspace_id, item_id)
    return MessageResponse(message=f"Menu item #{item_id} deleted")


@app.get("/api/tables", response_model=list[TableResponse], tags=["Catalog"])
async def list_tables(
    session: SessionContext = Depends(require_kitchen),
    db: AsyncSession = Depends(get_db),
) -> list[TableResponse]:
    tables = await catalog.list_tables(db, session.workspace_id)
    return [table_response(t) for t in tables]


@app.post(
    "/api/tables",
    response_model=TableResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorResponse}},
    tags=["Catalog"],
)
async def create_table(
    data: TableCreate,
    session: SessionContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> TableResponse:
    table = await catalog.create_table(db, session.workspace_id, data.table_number)
    return table_response(table)


@app.delete("/api/tables/{table_id}", response_model=MessageResponse, tags=["Catalog"])
async def delete_table(
    table_id: int,
    session: SessionContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await catalog.delete_table(db, session.workspace_id, table_id)
    return MessageResponse(message=f"Table #{table_id} deleted")


# =============================================================================
# CUSTOMER ENDPOINTS (public, scoped by workspace path)
# =============================================================================

@app.get(
    "/api/w/{workspace_id}/tables/{table_number}/menu",
    response_model=PublicMenuResponse,
    responses={404: {"model": ErrorResponse}},
    tags=["Customer"],
)
async def public_menu(
    workspace_id: str,
    table_number: int,
    db: AsyncSession = Depends(get_db),
) -> PublicMenuResponse:
    """Menu for the table a customer scanned."""
    workspace = await auth.get_workspace(db, workspace_id)
    await catalog.require_table(db, workspace_id, table_number)
    categories = await catalog.list_categories(db, workspace_id)
    items = await catalog.list_menu_items(db, workspace_id)
    return PublicMenuResponse(
        workspace=PublicWorkspaceResponse.model_validate(workspace),
        table_number=table_number,
        categories=[CategoryResponse.model_validate(c) for c in categories],
        items=[MenuItemResponse.model_validate(i) for i in items],
    )


@app.post(
    "/api/w/{workspace_id}/tables/{table_number}/orders",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    tags=["Customer"],
)
async def place_order(
    workspace_id: str,
    table_number: int,
    data: OrderCreate,
    db: AsyncSession = Depends(get_db),
) -> OrderResponse:
    logger.info(f"Order from table {table_number} in workspace {workspace_id}")
    order = await orders.create_order(
        db,
        workspace_id,
        table_number,
        items=[
            orders.NewOrderItem(
                name=item.name,
                unit_price=item.unit_price,
                quantity=item.quantity,
                menu_item_id=item.menu_item_id,
                note=item.note,
            )
            for item in data.items
        ],
        customer_name=data.customer_name,
        customer_phone=data.customer_phone,
    )
    return OrderResponse.model_validate(order)


@app.get(
    "/api/w/{workspace_id}/tables/{table_number}/orders",
    response_model=list[OrderResponse],
    tags=["Customer"],
)
async def customer_active_orders(
    workspace_id: str,
    table_number: int,
    customer_phone: str = Query(..., min_length=1),
    db: AsyncSession = Depends(get_db),
) -> list[OrderResponse]:
    """A customer's orders still in the kitchen."""
    active = await orders.active_orders_for_customer(db, workspace_id, table_number, customer_phone)
    return [OrderResponse.model_validate(o) for o in active]


@app.post(
    "/api/w/{workspace_id}/orders/{order_id}/cancel",
    response_model=OrderResponse,
    responses={409: {"model": ErrorResponse}},
    tags=["Customer"],
)
async def customer_cancel(
    workspace_id: str,
    order_id: int,
    data: CustomerCancelRequest,
    db: AsyncSession = Depends(get_db),
) -> OrderResponse:
    order = await orders.cancel_by_customer(db, workspace_id, order_id, data.customer_phone)
    return OrderResponse.model_validate(order)


@app.get(
    "/api/w/{workspace_id}/tables/{table_number}/bill",
    response_model=UnpaidBillResponse,
    tags=["Customer"],
)
async def customer_bill(
    workspace_id: str,
    table_number: int,
    customer_phone: str = Query(...),
    db: AsyncSession = Depends(get_db),
) -> UnpaidBillResponse:
    bill = await billing.compute_unpaid_bill(db, workspace_id, table_number, customer_phone)
    return unpaid_bill_response(bill)


@app.post(
    "/api/w/{workspace_id}/tables/{table_number}/service-requests",
    response_model=ServiceRequestResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Customer"],
)
async def call_staff(
    workspace_id: str,
    table_number: int,
    data: ServiceRequestCreate,
    db: AsyncSession = Depends(get_db),
) -> ServiceRequestResponse:
    request = await service_requests.create_request(
        db,
        workspace_id,
        table_number,
        request_type=data.request_type,
        message=data.message,
        customer_phone=data.customer_phone,
    )
    return ServiceRequestResponse.model_validate(request)


# =============================================================================
# ORDER ENDPOINTS (kitchen & admin)
# =============================================================================

@app.get(
    "/api/orders",
    response_model=OrderListResponse,
    tags=["Orders"],
    summary="List Orders",
)
async def list_orders(
    order_status: Optional[OrderStatus] = Query(None, alias="status"),
    payment_status: Optional[PaymentStatus] = Query(None),
    today: bool = Query(False),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    session: SessionContext = Depends(require_kitchen),
    db: AsyncSession = Depends(get_db),
) -> OrderListResponse:
    """Orders newest first; ``today`` uses the workspace timezone."""
    day = None
    tz_name = None
    if today:
        workspace = await auth.get_workspace(db, session.workspace_id)
        day = reporting.workspace_today(workspace)
        tz_name = workspace.timezone

    results = await orders.list_orders(
        db,
        session.workspace_id,
        status=order_status,
        payment_status=payment_status,
        day=day,
        tz_name=tz_name,
        skip=skip,
        limit=limit,
    )
    return OrderListResponse(
        total=len(results),
        orders=[OrderResponse.model_validate(o) for o in results],
    )


@app.get("/api/kitchen/board", response_model=list[OrderGroupResponse], tags=["Orders"])
async def kitchen_board(
    session: SessionContext = Depends(require_kitchen),
    db: AsyncSession = Depends(get_db),
) -> list[OrderGroupResponse]:
    """Active orders grouped by customer."""
    groups = await orders.kitchen_board(db, session.workspace_id)
    return [group_response(g) for g in groups]


@app.get("/api/orders/history", response_model=list[OrderGroupResponse], tags=["Orders"])
async def order_history(
    day: Optional[date] = Query(None),
    session: SessionContext = Depends(require_kitchen),
    db: AsyncSession = Depends(get_db),
) -> list[OrderGroupResponse]:
    """Served and cancelled orders of a day grouped by table and customer."""
    workspace = await auth.get_workspace(db, session.workspace_id)
    groups = await orders.history_board(
        db,
        session.workspace_id,
        day or reporting.workspace_today(workspace),
        tz_name=workspace.timezone,
    )
    return [group_response(g) for g in groups]


@app.post(
    "/api/orders/reconcile",
    response_model=list[ReconciliationResponse],
    tags=["Orders"],
)
async def reconcile_all(
    session: SessionContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> list[ReconciliationResponse]:
    """Apply menu availability to every open order."""
    results = await reconciliation.reconcile_open_orders(db, session.workspace_id)
    return [reconciliation_response(r) for r in results]


@app.post("/api/orders/pay", response_model=BulkPaymentResponse, tags=["Billing"])
async def pay_orders(
    data: BulkPaymentRequest,
    session: SessionContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> BulkPaymentResponse:
    result = await billing.mark_orders_paid(db, session.workspace_id, data.order_ids, data.payment_method)
    return payment_response(result)


@app.get(
    "/api/orders/{order_id}",
    response_model=OrderResponse,
    responses={404: {"model": ErrorResponse}},
    tags=["Orders"],
)
async def get_order(
    order_id: int,
    session: SessionContext = Depends(require_kitchen),
    db: AsyncSession = Depends(get_db),
) -> OrderResponse:
    """Get a specific order by ID."""
    order = await orders.get_order(db, session.workspace_id, order_id)
    return OrderResponse.model_validate(order)


@app.post(
    "/api/orders/{order_id}/advance",
    response_model=OrderResponse,
    responses={409: {"model": ErrorResponse}},
    tags=["Orders"],
)
async def advance_order(
    order_id: int,
    session: SessionContext = Depends(require_kitchen),
    db: AsyncSession = Depends(get_db),
) -> OrderResponse:
    """Move an order to its next kitchen status."""
    order = await orders.advance_status(db, session.workspace_id, order_id)
    return OrderResponse.model_validate(order)


@app.put(
    "/api/orders/{order_id}/status",
    response_model=OrderResponse,
    responses={409: {"model": ErrorResponse}},
    tags=["Orders"],
)
async def set_order_status(
    order_id: int,
    data: StatusUpdateRequest,
    session: SessionContext = Depends(require_kitchen),
    db: AsyncSession = Depends(get_db),
) -> OrderResponse:
    order = await orders.set_status(
        db,
        session.workspace_id,
        order_id,
        data.status,
        actor=staff_actor(session),
        reason=data.reason,
    )
    return OrderResponse.model_validate(order)


@app.post(
    "/api/orders/{order_id}/reject",
    response_model=OrderResponse,
    responses={409: {"model": ErrorResponse}},
    tags=["Orders"],
)
async def reject_order(
    order_id: int,
    data: RejectOrderRequest,
    session: SessionContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> OrderResponse:
    order = await orders.reject_out_of_stock(db, session.workspace_id, order_id, data.reason)
    return OrderResponse.model_validate(order)


@app.post(
    "/api/orders/{order_id}/reconcile",
    response_model=ReconciliationResponse,
    responses={409: {"model": ErrorResponse}},
    tags=["Orders"],
)
async def reconcile_order(
    order_id: int,
    session: SessionContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> ReconciliationResponse:
    result = await reconciliation.apply_unavailable_items(db, session.workspace_id, order_id)
    return reconciliation_response(result)


@app.post("/api/orders/{order_id}/pay", response_model=BulkPaymentResponse, tags=["Billing"])
async def pay_order(
    order_id: int,
    data: PaymentRequest,
    session: SessionContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> BulkPaymentResponse:
    _, result = await billing.mark_order_paid(db, session.workspace_id, order_id, data.payment_method)
    return payment_response(result)


# =============================================================================
# BILLING ENDPOINTS
# =============================================================================

@app.get(
    "/api/bills/unpaid",
    response_model=UnpaidBillResponse,
    responses={400: {"model": ErrorResponse}},
    tags=["Billing"],
)
async def unpaid_bill(
    table_number: int = Query(..., ge=1),
    customer_phone: str = Query(...),
    session: SessionContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> UnpaidBillResponse:
    bill = await billing.compute_unpaid_bill(db, session.workspace_id, table_number, customer_phone)
    return unpaid_bill_response(bill)


@app.post(
    "/api/final-bills",
    response_model=FinalBillResponse,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse}},
    tags=["Billing"],
)
async def create_final_bill(
    data: FinalBillCreate,
    session: SessionContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> FinalBillResponse:
    bill = await billing.generate_final_bill(
        db, session.workspace_id, data.table_number, data.customer_phone
    )
    return FinalBillResponse.model_validate(bill)


@app.get("/api/final-bills", response_model=list[FinalBillResponse], tags=["Billing"])
async def list_final_bills(
    is_paid: Optional[bool] = Query(None),
    table_number: Optional[int] = Query(None),
    session: SessionContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> list[FinalBillResponse]:
    bills = await billing.list_final_bills(
        db, session.workspace_id, is_paid=is_paid, table_number=table_number
    )
    return [FinalBillResponse.model_validate(b) for b in bills]


@app.get("/api/final-bills/{bill_id}", response_model=FinalBillResponse, tags=["Billing"])
async def get_final_bill(
    bill_id: int,
    session: SessionContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> FinalBillResponse:
    bill = await billing.get_final_bill(db, session.workspace_id, bill_id)
    return FinalBillResponse.model_validate(bill)


@app.post(
    "/api/final-bills/{bill_id}/pay",
    response_model=FinalBillPaymentResponse,
    responses={409: {"model": ErrorResponse}},
    tags=["Billing"],
)
async def pay_final_bill(
    bill_id: int,
    data: PaymentRequest,
    session: SessionContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> FinalBillPaymentResponse:
    bill, payment = await billing.mark_final_bill_paid(
        db, session.workspace_id, bill_id, data.payment_method
    )
    return FinalBillPaymentResponse(
        bill=FinalBillResponse.model_validate(bill),
        payment=payment_response(payment),
    )


# =============================================================================
# SERVICE REQUEST ENDPOINTS
# =============================================================================

@app.get(
    "/api/service-requests",
    response_model=list[ServiceRequestResponse],
    tags=["Service Requests"],
)
async def open_service_requests(
    session: SessionContext = Depends(require_kitchen),
    db: AsyncSession = Depends(get_db),
) -> list[ServiceRequestResponse]:
    requests = await service_requests.list_open_requests(db, session.workspace_id)
    return [ServiceRequestResponse.model_validate(r) for r in requests]


@app.post(
    "/api/service-requests/{request_id}/resolve",
    response_model=ServiceRequestResponse,
    tags=["Service Requests"],
)
async def resolve_service_request(
    request_id: int,
    session: SessionContext = Depends(require_kitchen),
    db: AsyncSession = Depends(get_db),
) -> ServiceRequestResponse:
    request = await service_requests.resolve_request(db, session.workspace_id, request_id)
    return ServiceRequestResponse.model_validate(request)


# =============================================================================
# DASHBOARD & EXPORT ENDPOINTS
# =============================================================================

@app.get(
    "/api/dashboard/stats",
    response_model=DashboardStatsResponse,
    tags=["Dashboard"],
)
async def dashboard_stats(
    day: Optional[date] = Query(None),
    session: SessionContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> DashboardStatsResponse:
    """Today's headline numbers (or another day's)."""
    workspace = await auth.get_workspace(db, session.workspace_id)
    stats = await reporting.dashboard_stats(db, workspace, day)
    return DashboardStatsResponse(**stats.to_dict())


@app.get("/api/workspace/export", tags=["Dashboard"])
async def export_workspace(
    session: SessionContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """JSON backup of the workspace."""
    workspace = await auth.get_workspace(db, session.workspace_id)
    return await reporting.build_workspace_export(db, workspace)


@app.post(
    "/api/workspace/export/excel",
    response_model=ExportTaskResponse,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["Dashboard"],
)
async def export_workspace_excel(
    session: SessionContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> ExportTaskResponse:
    """Queue an Excel export of orders and final bills."""
    from app.tasks import export_workspace_to_excel

    workspace = await auth.get_workspace(db, session.workspace_id)
    export = await reporting.build_workspace_export(db, workspace)
    task = export_workspace_to_excel.delay(export)
    logger.info(f"Queued Excel export for workspace {workspace.id} (task {task.id})")
    return ExportTaskResponse(
        success=True,
        message="Excel export queued",
        task_id=task.id,
    )


# =============================================================================
# CHANGE FEED
# =============================================================================

@app.websocket("/ws/{workspace_id}/orders")
async def order_feed(
    websocket: WebSocket,
    workspace_id: str,
    table: Optional[int] = None,
) -> None:
    """Stream order, bill and service-request changes as JSON."""
    await websocket.accept()
    feed = get_change_feed()
    scope = f"table {table}" if table is not None else "all tables"
    logger.info(f"Change feed subscriber joined workspace {workspace_id} ({scope})")

    async def forward() -> None:
        async for event in feed.subscribe(workspace_id, table):
            await websocket.send_json(event.to_dict())

    async def watch_disconnect() -> None:
        # Clients never send data; receive only to notice the disconnect
        while True:
            await websocket.receive_text()

    forward_task = asyncio.create_task(forward())
    watch_task = asyncio.create_task(watch_disconnect())
    try:
        await asyncio.wait({forward_task, watch_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (forward_task, watch_task):
            task.cancel()
        forwarded, watched = await asyncio.gather(forward_task, watch_task, return_exceptions=True)

    if isinstance(forwarded, Exception):
        logger.warning(f"Change feed for workspace {workspace_id} stopped: {forwarded}")
        if not isinstance(watched, WebSocketDisconnect) and websocket.client_state == WebSocketState.CONNECTED:
            await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
    logger.info(f"Change feed subscriber left workspace {workspace_id} ({scope})")


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(OrderingError)
async def ordering_error_handler(request: Request, exc: OrderingError) -> JSONResponse:
    """Domain errors carry their own message and status code."""
    if isinstance(exc, SchemaContractError):
        logger.error(f"Schema contract error: {exc.detail}")
    else:
        logger.warning(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")

    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ())[1:])
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "error": f"{field}: {message}" if field else message,
            "detail": None,
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )
