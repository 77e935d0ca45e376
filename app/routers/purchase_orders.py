"""
NairaPay Core - Purchase Order Router

Inter-tenant purchase orders. The caller's tenant acts as buyer or as
supplier depending on the transition.
"""

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_async_session
from app.dependencies import RequestContext, get_request_context, require_role
from app.models.employee import StaffRole
from app.models.purchase_order import PurchaseOrderStatus
from app.schemas.purchase_order import (
    CancelOrderRequest,
    PaymentCreate,
    PurchaseOrderCreate,
    PurchaseOrderLine,
    PurchaseOrderResponse,
    ReceiveRequest,
)
from app.services.purchase_order_service import OrderLine, PurchaseOrderService


router = APIRouter()

manager_only = require_role(StaffRole.ASSISTANT_MANAGER)


def _line(data: PurchaseOrderLine) -> OrderLine:
    return OrderLine(
        supplier_stock_item_id=data.supplier_stock_item_id,
        quantity=data.quantity,
        unit_price=data.unit_price,
    )


@router.post(
    "",
    response_model=PurchaseOrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a draft purchase order",
)
async def create_purchase_order(
    data: PurchaseOrderCreate,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(manager_only),
):
    return await PurchaseOrderService(db).create_order(
        buyer_tenant_id=ctx.tenant_id,
        supplier_tenant_id=data.supplier_tenant_id,
        shop_id=data.shop_id,
        lines=[_line(line) for line in data.items],
        tax_amount=data.tax_amount,
        shipping_cost=data.shipping_cost,
        discount_amount=data.discount_amount,
        payment_terms=data.payment_terms,
        expected_delivery_date=data.expected_delivery_date,
        notes=data.notes,
        created_by_id=ctx.user_id,
    )


@router.get("", response_model=List[PurchaseOrderResponse])
async def list_purchase_orders(
    role: Optional[str] = Query(None, pattern="^(buyer|supplier)$"),
    order_status: Optional[PurchaseOrderStatus] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(get_request_context),
):
    return await PurchaseOrderService(db).list_orders(ctx.tenant_id, role, order_status)


@router.get("/{order_id}", response_model=PurchaseOrderResponse)
async def get_purchase_order(
    order_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(get_request_context),
):
    return await PurchaseOrderService(db).get_order(ctx.tenant_id, order_id)


@router.post("/{order_id}/items", response_model=PurchaseOrderResponse)
async def add_item(
    order_id: uuid.UUID,
    data: PurchaseOrderLine,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(manager_only),
):
    return await PurchaseOrderService(db).add_item(ctx.tenant_id, order_id, _line(data))


@router.delete("/{order_id}/items/{item_id}", response_model=PurchaseOrderResponse)
async def remove_item(
    order_id: uuid.UUID,
    item_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(manager_only),
):
    return await PurchaseOrderService(db).remove_item(ctx.tenant_id, order_id, item_id)


@router.post("/{order_id}/submit", response_model=PurchaseOrderResponse)
async def submit_purchase_order(
    order_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(manager_only),
):
    return await PurchaseOrderService(db).submit_order(ctx.tenant_id, order_id)


@router.post("/{order_id}/approve", response_model=PurchaseOrderResponse)
async def approve_purchase_order(
    order_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(manager_only),
):
    """Supplier accepts the order; the payment due date is set from the terms."""
    return await PurchaseOrderService(db).approve_order(ctx.tenant_id, order_id)


@router.post("/{order_id}/process", response_model=PurchaseOrderResponse)
async def start_processing(
    order_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(manager_only),
):
    return await PurchaseOrderService(db).start_processing(ctx.tenant_id, order_id)


@router.post("/{order_id}/ship", response_model=PurchaseOrderResponse)
async def ship_purchase_order(
    order_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(manager_only),
):
    return await PurchaseOrderService(db).ship_order(ctx.tenant_id, order_id, shipped_by_id=ctx.user_id)


@router.post("/{order_id}/receive", response_model=PurchaseOrderResponse)
async def receive_purchase_order(
    order_id: uuid.UUID,
    data: ReceiveRequest,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(manager_only),
):
    return await PurchaseOrderService(db).receive_order(
        ctx.tenant_id,
        order_id,
        received_quantities=data.received_quantities or None,
        received_by_id=ctx.user_id,
    )


@router.post("/{order_id}/complete", response_model=PurchaseOrderResponse)
async def complete_purchase_order(
    order_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(manager_only),
):
    return await PurchaseOrderService(db).complete_order(ctx.tenant_id, order_id)


@router.post("/{order_id}/cancel", response_model=PurchaseOrderResponse)
async def cancel_purchase_order(
    order_id: uuid.UUID,
    data: CancelOrderRequest,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(manager_only),
):
    return await PurchaseOrderService(db).cancel_order(ctx.tenant_id, order_id, data.reason)


@router.post(
    "/{order_id}/payments",
    response_model=PurchaseOrderResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_payment(
    order_id: uuid.UUID,
    data: PaymentCreate,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(require_role(StaffRole.GENERAL_MANAGER)),
):
    """Payments above the outstanding balance are rejected with 422."""
    return await PurchaseOrderService(db).record_payment(
        ctx.tenant_id,
        order_id,
        data.amount,
        payment_date=data.payment_date,
        payment_method=data.payment_method,
        reference=data.reference,
        notes=data.notes,
        recorded_by_id=ctx.user_id,
    )
