"""
Service Requests

Customers call staff to their table (waiter, water, bill). Requests stay
open until kitchen or admin staff resolve them.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFoundError
from app.models import ServiceRequest, ServiceRequestType
from app.services import catalog
from app.services.events import ChangeEvent, ChangeType, publish_change

logger = logging.getLogger(__name__)


def request_snapshot(request: ServiceRequest) -> dict:
    return {
        "id": request.id,
        "table_number": request.table_number,
        "customer_phone": request.customer_phone,
        "request_type": request.request_type.value,
        "message": request.message,
        "is_resolved": request.is_resolved,
        "created_at": request.created_at.isoformat() if request.created_at else None,
        "resolved_at": request.resolved_at.isoformat() if request.resolved_at else None,
    }


async def _publish(request: ServiceRequest, change_type: ChangeType) -> None:
    await publish_change(
        ChangeEvent(
            workspace_id=request.workspace_id,
            table="service_requests",
            change_type=change_type,
            row_id=request.id,
            table_number=request.table_number,
            payload=request_snapshot(request),
        )
    )


async def create_request(
    db: AsyncSession,
    workspace_id: str,
    table_number: int,
    request_type: ServiceRequestType = ServiceRequestType.WAITER,
    message: Optional[str] = None,
    customer_phone: Optional[str] = None,
) -> ServiceRequest:
    await catalog.require_table(db, workspace_id, table_number)

    request = ServiceRequest(
        workspace_id=workspace_id,
        table_number=table_number,
        request_type=request_type,
        message=(message or "").strip() or None,
        customer_phone=(customer_phone or "").strip() or None,
        is_resolved=False,
    )
    db.add(request)
    await db.commit()

    logger.info(f"Service request #{request.id} ({request_type.value}) from table {table_number}")
    await _publish(request, ChangeType.INSERT)
    return request


async def list_open_requests(db: AsyncSession, workspace_id: str) -> list[ServiceRequest]:
    result = await db.execute(
        select(ServiceRequest)
        .where(
            ServiceRequest.workspace_id == workspace_id,
            ServiceRequest.is_resolved.is_(False),
        )
        .order_by(ServiceRequest.created_at, ServiceRequest.id)
    )
    return list(result.scalars().all())


async def resolve_request(db: AsyncSession, workspace_id: str, request_id: int) -> ServiceRequest:
    """Close a request. Resolving an already resolved request changes nothing."""
    result = await db.execute(
        select(ServiceRequest).where(
            ServiceRequest.id == request_id,
            ServiceRequest.workspace_id == workspace_id,
        )
    )
    request = result.scalar_one_or_none()
    if request is None:
        raise NotFoundError(f"Service request #{request_id} not found")
    if request.is_resolved:
        return request

    request.is_resolved = True
    request.resolved_at = datetime.now(timezone.utc)
    await db.commit()

    await _publish(request, ChangeType.UPDATE)
    return request
