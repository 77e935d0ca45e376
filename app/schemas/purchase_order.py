"""
NairaPay Core - Purchase Order Schemas
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.models.purchase_order import PaymentMethod, PurchaseOrderPaymentStatus, PurchaseOrderStatus


class PurchaseOrderLine(BaseModel):
    supplier_stock_item_id: UUID
    quantity: Decimal = Field(..., gt=0)
    unit_price: Decimal = Field(..., ge=0)


class PurchaseOrderCreate(BaseModel):
    supplier_tenant_id: UUID
    shop_id: UUID
    items: List[PurchaseOrderLine] = []
    tax_amount: Decimal = Field(Decimal("0"), ge=0)
    shipping_cost: Decimal = Field(Decimal("0"), ge=0)
    discount_amount: Decimal = Field(Decimal("0"), ge=0)
    payment_terms: Optional[str] = Field(None, max_length=50, examples=["Net 30"])
    expected_delivery_date: Optional[date] = None
    notes: Optional[str] = None


class ReceiveRequest(BaseModel):
    """Item id to quantity received; omitted items are received in full."""
    received_quantities: Dict[UUID, Decimal] = {}


class CancelOrderRequest(BaseModel):
    reason: Optional[str] = None


class PaymentCreate(BaseModel):
    amount: Decimal = Field(..., gt=0)
    payment_date: Optional[date] = None
    payment_method: PaymentMethod = PaymentMethod.BANK_TRANSFER
    reference: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None


class PurchaseOrderItemResponse(BaseModel):
    id: UUID
    supplier_stock_item_id: UUID
    sku: str
    name: str
    quantity: Decimal
    unit_price: Decimal
    line_total: Decimal
    received_quantity: Decimal

    class Config:
        from_attributes = True


class PaymentResponse(BaseModel):
    id: UUID
    amount: Decimal
    payment_date: date
    payment_method: PaymentMethod
    reference: Optional[str] = None

    class Config:
        from_attributes = True


class PurchaseOrderResponse(BaseModel):
    id: UUID
    po_number: str
    buyer_tenant_id: UUID
    supplier_tenant_id: UUID
    shop_id: UUID
    status: PurchaseOrderStatus
    payment_status: PurchaseOrderPaymentStatus
    subtotal: Decimal
    tax_amount: Decimal
    shipping_cost: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    paid_amount: Decimal
    outstanding_amount: Decimal
    payment_terms: Optional[str] = None
    payment_due_date: Optional[date] = None
    expected_delivery_date: Optional[date] = None
    notes: Optional[str] = None
    submitted_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    received_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    items: List[PurchaseOrderItemResponse] = []
    payments: List[PaymentResponse] = []
    created_at: datetime

    class Config:
        from_attributes = True
