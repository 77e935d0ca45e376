"""
NairaPay Core - Purchase Order Service

Cross-tenant procurement workflow:

    draft -> submitted -> approved -> processing -> shipped -> received -> completed
    cancelled from draft, submitted, approved or processing

The buyer tenant drafts, submits, receives, completes and pays. The supplier
tenant approves, processes and ships. Either party may cancel.

Payment status is never written directly; it is recomputed from
(paid_amount, total_amount, due date) whenever one of them changes.
"""

import logging
import re
import secrets
import uuid
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import and_, inspect, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from app.config import settings
from app.models.audit_log import AuditAction, AuditEntityType
from app.models.base import utcnow
from app.models.inventory import StockItem
from app.models.purchase_order import (
    PaymentMethod,
    PurchaseOrder,
    PurchaseOrderItem,
    PurchaseOrderPayment,
    PurchaseOrderPaymentStatus,
    PurchaseOrderStatus,
)
from app.models.tenant import Shop
from app.services.inventory_service import InventoryService
from app.services.payroll_audit_service import PayrollAuditService
from app.utils.error_handling import (
    AuthorizationException,
    BusinessRuleException,
    ConcurrentModificationException,
    InvalidAmountException,
    NotFoundException,
    OverpaymentException,
    StateTransitionError,
    ValidationException,
    validate_amount,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")

CANCELLABLE_STATUSES = (
    PurchaseOrderStatus.DRAFT,
    PurchaseOrderStatus.SUBMITTED,
    PurchaseOrderStatus.APPROVED,
    PurchaseOrderStatus.PROCESSING,
)

PAYABLE_STATUSES = (
    PurchaseOrderStatus.SUBMITTED,
    PurchaseOrderStatus.APPROVED,
    PurchaseOrderStatus.PROCESSING,
    PurchaseOrderStatus.SHIPPED,
    PurchaseOrderStatus.RECEIVED,
    PurchaseOrderStatus.COMPLETED,
)

PAYMENT_TERMS_PATTERN = re.compile(r"^\s*net\s*(\d+)\s*$", re.IGNORECASE)


def derive_payment_status(
    paid_amount: Decimal,
    total_amount: Decimal,
    due_date: Optional[date],
    today: date,
    cancelled: bool = False,
) -> PurchaseOrderPaymentStatus:
    """Priority: cancelled > paid > overdue > partial > pending."""
    if cancelled:
        return PurchaseOrderPaymentStatus.CANCELLED
    if total_amount > 0 and paid_amount >= total_amount:
        return PurchaseOrderPaymentStatus.PAID
    if due_date is not None and today > due_date:
        return PurchaseOrderPaymentStatus.OVERDUE
    if paid_amount > 0:
        return PurchaseOrderPaymentStatus.PARTIAL
    return PurchaseOrderPaymentStatus.PENDING


def payment_terms_days(payment_terms: Optional[str]) -> int:
    """Days from a "Net N" term; anything else uses the configured default."""
    if payment_terms:
        match = PAYMENT_TERMS_PATTERN.match(payment_terms)
        if match:
            return int(match.group(1))
    return settings.purchase_order_default_payment_terms_days


def generate_po_number(on_date: Optional[date] = None) -> str:
    on_date = on_date or date.today()
    return f"PO-{on_date:%Y%m%d}-{secrets.token_hex(3).upper()}"


@dataclass(frozen=True)
class OrderLine:
    supplier_stock_item_id: uuid.UUID
    quantity: Decimal
    unit_price: Decimal


class PurchaseOrderService:
    """Service for purchase orders between tenants."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.inventory = InventoryService(db)
        self.audit = PayrollAuditService(db)

    # ===========================================
    # QUERIES
    # ===========================================

    async def get_order(
        self,
        tenant_id: uuid.UUID,
        order_id: uuid.UUID,
        for_update: bool = False,
    ) -> PurchaseOrder:
        """Order visible to either party."""
        query = (
            select(PurchaseOrder)
            .options(selectinload(PurchaseOrder.items), selectinload(PurchaseOrder.payments))
            .where(
                and_(
                    PurchaseOrder.id == order_id,
                    or_(
                        PurchaseOrder.buyer_tenant_id == tenant_id,
                        PurchaseOrder.supplier_tenant_id == tenant_id,
                    ),
                )
            )
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        order = result.scalar_one_or_none()
        if order is None:
            raise NotFoundException("PurchaseOrder", order_id)
        return order

    async def list_orders(
        self,
        tenant_id: uuid.UUID,
        role: Optional[str] = None,
        status: Optional[PurchaseOrderStatus] = None,
    ) -> List[PurchaseOrder]:
        """role: "buyer", "supplier" or None for both."""
        if role == "buyer":
            party = PurchaseOrder.buyer_tenant_id == tenant_id
        elif role == "supplier":
            party = PurchaseOrder.supplier_tenant_id == tenant_id
        else:
            party = or_(
                PurchaseOrder.buyer_tenant_id == tenant_id,
                PurchaseOrder.supplier_tenant_id == tenant_id,
            )
        query = (
            select(PurchaseOrder)
            .options(selectinload(PurchaseOrder.items), selectinload(PurchaseOrder.payments))
            .where(party)
        )
        if status:
            query = query.where(PurchaseOrder.status == status)
        result = await self.db.execute(query.order_by(PurchaseOrder.created_at.desc()))
        return list(result.scalars().all())

    # ===========================================
    # DRAFTING
    # ===========================================

    async def create_order(
        self,
        buyer_tenant_id: uuid.UUID,
        supplier_tenant_id: uuid.UUID,
        shop_id: uuid.UUID,
        lines: Sequence[OrderLine] = (),
        tax_amount: Decimal = ZERO,
        shipping_cost: Decimal = ZERO,
        discount_amount: Decimal = ZERO,
        payment_terms: Optional[str] = None,
        expected_delivery_date: Optional[date] = None,
        notes: Optional[str] = None,
        created_by_id: Optional[uuid.UUID] = None,
    ) -> PurchaseOrder:
        if buyer_tenant_id == supplier_tenant_id:
            raise ValidationException("Buyer and supplier must be different tenants", field="supplier_tenant_id")

        shop = await self.db.execute(
            select(Shop).where(and_(Shop.id == shop_id, Shop.tenant_id == buyer_tenant_id))
        )
        if shop.scalar_one_or_none() is None:
            raise NotFoundException("Shop", shop_id)

        order = PurchaseOrder(
            po_number=generate_po_number(),
            buyer_tenant_id=buyer_tenant_id,
            supplier_tenant_id=supplier_tenant_id,
            shop_id=shop_id,
            status=PurchaseOrderStatus.DRAFT,
            payment_status=PurchaseOrderPaymentStatus.PENDING,
            tax_amount=validate_amount(tax_amount, "tax_amount", allow_zero=True),
            shipping_cost=validate_amount(shipping_cost, "shipping_cost", allow_zero=True),
            discount_amount=validate_amount(discount_amount, "discount_amount", allow_zero=True),
            paid_amount=ZERO,
            payment_terms=payment_terms or f"Net {settings.purchase_order_default_payment_terms_days}",
            expected_delivery_date=expected_delivery_date,
            notes=notes,
            created_by_id=created_by_id,
        )
        order.items = []
        for line in lines:
            order.items.append(await self._build_item(supplier_tenant_id, line))
        self._recalculate_totals(order)
        self.db.add(order)
        await self._commit(order)
        logger.info("Purchase order %s drafted by tenant %s", order.po_number, buyer_tenant_id)
        return await self.get_order(buyer_tenant_id, order.id)

    async def _build_item(self, supplier_tenant_id: uuid.UUID, line: OrderLine) -> PurchaseOrderItem:
        if line.quantity <= 0:
            raise InvalidAmountException(line.quantity, field="quantity", message="Quantity must be positive")
        unit_price = validate_amount(line.unit_price, "unit_price", allow_zero=True)
        stock: StockItem = await self.inventory.get_item(supplier_tenant_id, line.supplier_stock_item_id)
        return PurchaseOrderItem(
            supplier_stock_item_id=stock.id,
            sku=stock.sku,
            name=stock.name,
            quantity=line.quantity,
            unit_price=unit_price,
            line_total=(line.quantity * unit_price).quantize(Decimal("0.01")),
            received_quantity=Decimal("0"),
        )

    async def add_item(self, tenant_id: uuid.UUID, order_id: uuid.UUID, line: OrderLine) -> PurchaseOrder:
        order = await self.get_order(tenant_id, order_id, for_update=True)
        self._require_buyer(order, tenant_id)
        self._require_status(order, "add items to", PurchaseOrderStatus.DRAFT)
        order.items.append(await self._build_item(order.supplier_tenant_id, line))
        self._recalculate_totals(order)
        await self._commit(order)
        return await self.get_order(tenant_id, order_id)

    async def remove_item(self, tenant_id: uuid.UUID, order_id: uuid.UUID, item_id: uuid.UUID) -> PurchaseOrder:
        order = await self.get_order(tenant_id, order_id, for_update=True)
        self._require_buyer(order, tenant_id)
        self._require_status(order, "remove items from", PurchaseOrderStatus.DRAFT)
        item = next((i for i in order.items if i.id == item_id), None)
        if item is None:
            raise NotFoundException("PurchaseOrderItem", item_id)
        order.items.remove(item)
        self._recalculate_totals(order)
        await self._commit(order)
        return await self.get_order(tenant_id, order_id)

    # ===========================================
    # TRANSITIONS
    # ===========================================

    async def submit_order(self, tenant_id: uuid.UUID, order_id: uuid.UUID) -> PurchaseOrder:
        order = await self.get_order(tenant_id, order_id, for_update=True)
        self._require_buyer(order, tenant_id)
        self._require_status(order, "submit", PurchaseOrderStatus.DRAFT)
        if not order.items:
            raise BusinessRuleException("Cannot submit a purchase order without items", rule="ITEMS_REQUIRED")
        order.status = PurchaseOrderStatus.SUBMITTED
        order.submitted_at = utcnow()
        return await self._transitioned(order, tenant_id)

    async def approve_order(self, tenant_id: uuid.UUID, order_id: uuid.UUID) -> PurchaseOrder:
        """Supplier accepts the order; the payment due date starts from today."""
        order = await self.get_order(tenant_id, order_id, for_update=True)
        self._require_supplier(order, tenant_id)
        self._require_status(order, "approve", PurchaseOrderStatus.SUBMITTED)
        order.status = PurchaseOrderStatus.APPROVED
        order.approved_at = utcnow()
        order.payment_due_date = date.today() + timedelta(days=payment_terms_days(order.payment_terms))
        self._refresh_payment_status(order)
        return await self._transitioned(order, tenant_id)

    async def start_processing(self, tenant_id: uuid.UUID, order_id: uuid.UUID) -> PurchaseOrder:
        order = await self.get_order(tenant_id, order_id, for_update=True)
        self._require_supplier(order, tenant_id)
        self._require_status(order, "process", PurchaseOrderStatus.APPROVED)
        order.status = PurchaseOrderStatus.PROCESSING
        order.processing_at = utcnow()
        return await self._transitioned(order, tenant_id)

    async def ship_order(
        self,
        tenant_id: uuid.UUID,
        order_id: uuid.UUID,
        shipped_by_id: Optional[uuid.UUID] = None,
    ) -> PurchaseOrder:
        """
        Raises:
            InsufficientInventoryException: supplier stock too low for a line;
                nothing is shipped
        """
        order = await self.get_order(tenant_id, order_id, for_update=True)
        self._require_supplier(order, tenant_id)
        self._require_status(order, "ship", PurchaseOrderStatus.APPROVED, PurchaseOrderStatus.PROCESSING)
        try:
            for item in order.items:
                await self.inventory.issue_stock(
                    order.supplier_tenant_id,
                    item.supplier_stock_item_id,
                    item.quantity,
                    reference=order.po_number,
                    purchase_order_id=order.id,
                    created_by_id=shipped_by_id,
                )
        except Exception:
            await self.db.rollback()
            raise
        order.status = PurchaseOrderStatus.SHIPPED
        order.shipped_at = utcnow()
        return await self._transitioned(order, tenant_id, actor_id=shipped_by_id)

    async def receive_order(
        self,
        tenant_id: uuid.UUID,
        order_id: uuid.UUID,
        received_quantities: Optional[Dict[uuid.UUID, Decimal]] = None,
        received_by_id: Optional[uuid.UUID] = None,
    ) -> PurchaseOrder:
        """
        Buyer receives goods into the order's shop. `received_quantities`
        maps item id to quantity received; omitted items are received in full.
        """
        order = await self.get_order(tenant_id, order_id, for_update=True)
        self._require_buyer(order, tenant_id)
        self._require_status(order, "receive", PurchaseOrderStatus.SHIPPED)
        received_quantities = received_quantities or {}
        unknown = set(received_quantities) - {item.id for item in order.items}
        if unknown:
            raise ValidationException(
                "Received quantities reference items not on this order",
                field="received_quantities",
                details={"item_ids": sorted(str(i) for i in unknown)},
            )

        try:
            for item in order.items:
                quantity = Decimal(str(received_quantities.get(item.id, item.quantity)))
                if quantity < 0 or quantity > item.quantity:
                    raise InvalidAmountException(
                        quantity, field="received_quantity",
                        message=f"Received quantity for {item.sku} must be between 0 and {item.quantity}",
                    )
                item.received_quantity = quantity
                if quantity == 0:
                    continue
                await self.inventory.receive_stock(
                    order.buyer_tenant_id,
                    order.shop_id,
                    item.sku,
                    item.name,
                    quantity,
                    reference=order.po_number,
                    purchase_order_id=order.id,
                    created_by_id=received_by_id,
                )
        except Exception:
            await self.db.rollback()
            raise
        order.status = PurchaseOrderStatus.RECEIVED
        order.received_at = utcnow()
        return await self._transitioned(order, tenant_id, actor_id=received_by_id)

    async def complete_order(self, tenant_id: uuid.UUID, order_id: uuid.UUID) -> PurchaseOrder:
        order = await self.get_order(tenant_id, order_id, for_update=True)
        self._require_buyer(order, tenant_id)
        self._require_status(order, "complete", PurchaseOrderStatus.RECEIVED)
        order.status = PurchaseOrderStatus.COMPLETED
        order.completed_at = utcnow()
        return await self._transitioned(order, tenant_id)

    async def cancel_order(
        self,
        tenant_id: uuid.UUID,
        order_id: uuid.UUID,
        reason: Optional[str] = None,
    ) -> PurchaseOrder:
        order = await self.get_order(tenant_id, order_id, for_update=True)
        self._require_status(order, "cancel", *CANCELLABLE_STATUSES)
        order.status = PurchaseOrderStatus.CANCELLED
        order.cancelled_at = utcnow()
        order.cancelled_by_tenant_id = tenant_id
        order.cancellation_reason = reason
        self._refresh_payment_status(order)
        return await self._transitioned(order, tenant_id)

    # ===========================================
    # PAYMENTS
    # ===========================================

    async def record_payment(
        self,
        tenant_id: uuid.UUID,
        order_id: uuid.UUID,
        amount: Decimal,
        payment_date: Optional[date] = None,
        payment_method: PaymentMethod = PaymentMethod.BANK_TRANSFER,
        reference: Optional[str] = None,
        notes: Optional[str] = None,
        recorded_by_id: Optional[uuid.UUID] = None,
    ) -> PurchaseOrder:
        """
        Append a payment from the buyer.

        Raises:
            StateTransitionError: order is draft or cancelled
            OverpaymentException: amount exceeds the outstanding balance
        """
        order = await self.get_order(tenant_id, order_id, for_update=True)
        self._require_buyer(order, tenant_id)
        self._require_status(order, "record a payment on", *PAYABLE_STATUSES)
        amount = validate_amount(amount)
        outstanding = order.total_amount - order.paid_amount
        if amount > outstanding:
            raise OverpaymentException(amount, outstanding)

        order.payments.append(PurchaseOrderPayment(
            amount=amount,
            payment_date=payment_date or date.today(),
            payment_method=payment_method,
            reference=reference,
            notes=notes,
            recorded_by_id=recorded_by_id,
        ))
        order.paid_amount = sum((p.amount for p in order.payments), ZERO)
        self._refresh_payment_status(order)
        self._audit(
            order, tenant_id, AuditAction.ORDER_PAYMENT, recorded_by_id,
            details={"amount": amount, "paid_amount": order.paid_amount, "payment_status": order.payment_status},
        )
        await self._commit(order)
        logger.info(
            "Payment of %s recorded on %s (paid %s of %s, %s)",
            amount, order.po_number, order.paid_amount, order.total_amount, order.payment_status.value,
        )
        return await self.get_order(tenant_id, order_id)

    async def mark_overdue(self, today: Optional[date] = None) -> int:
        """Sweep: recompute payment status of unpaid orders past their due date."""
        today = today or date.today()
        result = await self.db.execute(
            select(PurchaseOrder).where(
                and_(
                    PurchaseOrder.payment_due_date < today,
                    PurchaseOrder.status != PurchaseOrderStatus.CANCELLED,
                    PurchaseOrder.payment_status.in_((
                        PurchaseOrderPaymentStatus.PENDING,
                        PurchaseOrderPaymentStatus.PARTIAL,
                    )),
                )
            )
        )
        orders = list(result.scalars().all())
        for order in orders:
            self._refresh_payment_status(order, today)
        await self.db.commit()
        if orders:
            logger.warning("Marked %d purchase order(s) overdue", len(orders))
        return len(orders)

    async def mark_approved_by_chain(self, tenant_id: uuid.UUID, order_id: uuid.UUID) -> PurchaseOrder:
        """Buyer-side sign-off through an approval chain; no commit."""
        order = await self.get_order(tenant_id, order_id, for_update=True)
        self._require_buyer(order, tenant_id)
        self._require_status(order, "sign off", PurchaseOrderStatus.DRAFT, PurchaseOrderStatus.SUBMITTED)
        if order.status == PurchaseOrderStatus.DRAFT:
            if not order.items:
                raise BusinessRuleException("Cannot submit a purchase order without items", rule="ITEMS_REQUIRED")
            order.status = PurchaseOrderStatus.SUBMITTED
            order.submitted_at = utcnow()
            self._audit(order, tenant_id, AuditAction.ORDER_STATUS_CHANGED, details={"approval_chain": True})
        await self.db.flush()
        return order

    # ===========================================
    # HELPERS
    # ===========================================

    @staticmethod
    def _recalculate_totals(order: PurchaseOrder) -> None:
        order.subtotal = sum((item.line_total for item in order.items), ZERO)
        total = order.subtotal + order.tax_amount + order.shipping_cost - order.discount_amount
        if total < 0:
            raise ValidationException("Discount exceeds the order value", field="discount_amount")
        order.total_amount = total

    @staticmethod
    def _refresh_payment_status(order: PurchaseOrder, today: Optional[date] = None) -> None:
        order.payment_status = derive_payment_status(
            order.paid_amount or ZERO,
            order.total_amount or ZERO,
            order.payment_due_date,
            today or date.today(),
            cancelled=order.status == PurchaseOrderStatus.CANCELLED,
        )

    @staticmethod
    def _require_buyer(order: PurchaseOrder, tenant_id: uuid.UUID) -> None:
        if order.buyer_tenant_id != tenant_id:
            raise AuthorizationException("Only the buyer can perform this action")

    @staticmethod
    def _require_supplier(order: PurchaseOrder, tenant_id: uuid.UUID) -> None:
        if order.supplier_tenant_id != tenant_id:
            raise AuthorizationException("Only the supplier can perform this action")

    @staticmethod
    def _require_status(order: PurchaseOrder, action: str, *allowed: PurchaseOrderStatus) -> None:
        if order.status not in allowed:
            raise StateTransitionError("PurchaseOrder", order.status, action)

    async def _transitioned(
        self,
        order: PurchaseOrder,
        tenant_id: uuid.UUID,
        actor_id: Optional[uuid.UUID] = None,
    ) -> PurchaseOrder:
        self._audit(order, tenant_id, AuditAction.ORDER_STATUS_CHANGED, actor_id)
        await self._commit(order)
        logger.info("Purchase order %s -> %s", order.po_number, order.status.value)
        return await self.get_order(tenant_id, order.id)

    def _audit(
        self,
        order: PurchaseOrder,
        tenant_id: uuid.UUID,
        action: AuditAction,
        actor_id: Optional[uuid.UUID] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Logged on the buyer's trail whichever party acted."""
        previous = inspect(order).attrs.status.history.deleted
        self.audit.record(
            order.buyer_tenant_id, AuditEntityType.PURCHASE_ORDER, order.id, action, actor_id,
            from_status=previous[0] if previous else None,
            to_status=order.status,
            details={"po_number": order.po_number, "acting_tenant_id": tenant_id, **(details or {})},
        )

    async def _commit(self, order: PurchaseOrder) -> None:
        order_id = order.id
        try:
            await self.db.commit()
        except StaleDataError:
            await self.db.rollback()
            raise ConcurrentModificationException("PurchaseOrder", order_id)

