"""
NairaPay Core - Inventory Service

Stock items per tenant/shop and the movements that change them. Purchase
orders use `issue_stock` on shipment and `receive_stock` on receipt; both
only flush so the caller commits them with the order.
"""

import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.inventory import StockItem, StockMovement, StockMovementType
from app.utils.error_handling import (
    ConflictException,
    InsufficientInventoryException,
    InvalidAmountException,
    NotFoundException,
)

logger = logging.getLogger(__name__)


class InventoryService:
    """Service for stock levels and movements."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ===========================================
    # STOCK ITEM OPERATIONS
    # ===========================================

    async def create_item(
        self,
        tenant_id: uuid.UUID,
        sku: str,
        name: str,
        shop_id: Optional[uuid.UUID] = None,
        quantity_on_hand: Decimal = Decimal("0"),
        unit_of_measure: str = "pcs",
        created_by_id: Optional[uuid.UUID] = None,
    ) -> StockItem:
        """Create a new stock item."""
        existing = await self.get_item_by_sku(tenant_id, sku, shop_id)
        if existing:
            raise ConflictException(f"Item with SKU '{sku}' already exists", resource_type="StockItem")

        item = StockItem(
            tenant_id=tenant_id,
            shop_id=shop_id,
            sku=sku,
            name=name,
            quantity_on_hand=Decimal("0"),
            unit_of_measure=unit_of_measure,
            is_active=True,
        )
        self.db.add(item)
        await self.db.flush()

        if quantity_on_hand > 0:
            await self._create_movement(
                item,
                StockMovementType.ADJUSTMENT,
                Decimal(str(quantity_on_hand)),
                reference="Initial stock",
                created_by_id=created_by_id,
            )
        await self.db.commit()
        await self.db.refresh(item)
        return item

    async def get_item(self, tenant_id: uuid.UUID, item_id: uuid.UUID, for_update: bool = False) -> StockItem:
        query = select(StockItem).where(and_(StockItem.id == item_id, StockItem.tenant_id == tenant_id))
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        item = result.scalar_one_or_none()
        if item is None:
            raise NotFoundException("StockItem", item_id)
        return item

    async def get_item_by_sku(
        self,
        tenant_id: uuid.UUID,
        sku: str,
        shop_id: Optional[uuid.UUID] = None,
    ) -> Optional[StockItem]:
        query = select(StockItem).where(and_(StockItem.tenant_id == tenant_id, StockItem.sku == sku))
        if shop_id is None:
            query = query.where(StockItem.shop_id.is_(None))
        else:
            query = query.where(StockItem.shop_id == shop_id)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    # ===========================================
    # STOCK MOVEMENT OPERATIONS
    # ===========================================

    async def _create_movement(
        self,
        item: StockItem,
        movement_type: StockMovementType,
        quantity: Decimal,
        reference: Optional[str] = None,
        purchase_order_id: Optional[uuid.UUID] = None,
        notes: Optional[str] = None,
        created_by_id: Optional[uuid.UUID] = None,
    ) -> StockMovement:
        item.quantity_on_hand = (item.quantity_on_hand or Decimal("0")) + quantity
        movement = StockMovement(
            item_id=item.id,
            movement_type=movement_type,
            quantity=quantity,
            quantity_after=item.quantity_on_hand,
            reference=reference,
            purchase_order_id=purchase_order_id,
            notes=notes,
            movement_date=date.today(),
            created_by_id=created_by_id,
        )
        self.db.add(movement)
        await self.db.flush()
        return movement

    async def issue_stock(
        self,
        tenant_id: uuid.UUID,
        item_id: uuid.UUID,
        quantity: Decimal,
        reference: Optional[str] = None,
        purchase_order_id: Optional[uuid.UUID] = None,
        created_by_id: Optional[uuid.UUID] = None,
    ) -> StockItem:
        """
        Take stock out for a supplier shipment.

        Raises:
            InsufficientInventoryException: not enough on hand
        """
        if quantity <= 0:
            raise InvalidAmountException(quantity, field="quantity", message="Quantity must be positive")
        item = await self.get_item(tenant_id, item_id, for_update=True)
        if item.quantity_on_hand < quantity:
            raise InsufficientInventoryException(item.name, quantity, item.quantity_on_hand, item.unit_of_measure)
        await self._create_movement(
            item, StockMovementType.SUPPLIER_SHIPMENT, -quantity,
            reference=reference, purchase_order_id=purchase_order_id, created_by_id=created_by_id,
        )
        return item

    async def receive_stock(
        self,
        tenant_id: uuid.UUID,
        shop_id: uuid.UUID,
        sku: str,
        name: str,
        quantity: Decimal,
        unit_of_measure: str = "pcs",
        reference: Optional[str] = None,
        purchase_order_id: Optional[uuid.UUID] = None,
        created_by_id: Optional[uuid.UUID] = None,
    ) -> StockItem:
        """Put received stock into a shop, creating the item on first receipt."""
        if quantity <= 0:
            raise InvalidAmountException(quantity, field="quantity", message="Quantity must be positive")
        item = await self.get_item_by_sku(tenant_id, sku, shop_id)
        if item is None:
            item = StockItem(
                tenant_id=tenant_id,
                shop_id=shop_id,
                sku=sku,
                name=name,
                quantity_on_hand=Decimal("0"),
                unit_of_measure=unit_of_measure,
                is_active=True,
            )
            self.db.add(item)
            await self.db.flush()
            logger.info("Created stock item %s for shop %s on receipt", sku, shop_id)
        await self._create_movement(
            item, StockMovementType.PURCHASE_RECEIPT, quantity,
            reference=reference, purchase_order_id=purchase_order_id, created_by_id=created_by_id,
        )
        return item

