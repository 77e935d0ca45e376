"""
NairaPay Core - Inventory Models

Stock levels per tenant/shop and the append-only movements that change them.
Purchase orders move stock out of the supplier tenant on shipment and into
the buyer's shop on receipt.
"""

import uuid
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import Boolean, Date, ForeignKey, Numeric, String, Text, Enum as SQLEnum, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import BaseModel, AuditMixin


class StockMovementType(str, Enum):
    """Type of stock movement."""
    PURCHASE_RECEIPT = "purchase_receipt"    # Buyer receives a purchase order
    SUPPLIER_SHIPMENT = "supplier_shipment"  # Supplier ships a purchase order
    ADJUSTMENT = "adjustment"                # Manual adjustment


class StockItem(BaseModel):
    """
    Stock item held by a tenant, optionally at a specific shop.
    """

    __tablename__ = "stock_items"
    __table_args__ = (
        UniqueConstraint("tenant_id", "shop_id", "sku", name="uq_stock_item_location_sku"),
    )

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    shop_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("shops.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )

    sku: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        index=True,
        comment="Stock Keeping Unit",
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity_on_hand: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=3),
        nullable=False,
        default=Decimal("0"),
    )
    unit_of_measure: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="pcs",
        comment="e.g., pcs, kg, liters",
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    stock_movements: Mapped[List["StockMovement"]] = relationship(
        "StockMovement",
        back_populates="item",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<StockItem(id={self.id}, sku={self.sku}, qty={self.quantity_on_hand})>"


class StockMovement(BaseModel, AuditMixin):
    """
    Stock movement model for tracking inventory changes.
    """

    __tablename__ = "stock_movements"

    item_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("stock_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    movement_type: Mapped[StockMovementType] = mapped_column(
        SQLEnum(StockMovementType),
        nullable=False,
    )
    quantity: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=3),
        nullable=False,
        comment="Positive for inbound, negative for outbound",
    )
    quantity_after: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=3), nullable=False)
    reference: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        comment="PO number",
    )
    purchase_order_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    movement_date: Mapped[date] = mapped_column(Date, nullable=False)

    item: Mapped["StockItem"] = relationship(
        "StockItem",
        back_populates="stock_movements",
    )

    def __repr__(self) -> str:
        return f"<StockMovement(id={self.id}, type={self.movement_type}, qty={self.quantity})>"
