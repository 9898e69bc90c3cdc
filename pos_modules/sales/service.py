"""
Retail Sales Service (``pos_modules.sales.service``).

Responsibility
--------------
Handles the "sale completed" event: FEFO-allocates every line, deducts
the stock, writes a ``sale`` document whose lines name the batch each
unit came from, computes totals and records the payment taken at the
till.

Architecture
------------
Layer: **Modules** -- thin orchestration over BatchAllocator,
StockLedgerService and DocumentReconciler.

Invariants
----------
- Each public method owns its transaction boundary: commit on success,
  rollback and re-raise on any failure.  A sale is all-or-nothing.
- With ``stock.reject_oversell`` (default) a line that cannot be supplied
  in full raises InsufficientStockError before anything is written.
- Lines are processed in order; a product listed twice is planned the
  second time against what the first line left.

Failure Modes
-------------
- InsufficientStockError, ProductNotFoundError, StockContentionError.
- ValueError for empty carts or non-positive quantities.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from pos_config import PosPolicy, get_active_config
from pos_kernel.db.types import to_decimal
from pos_kernel.domain.clock import Clock, SystemClock
from pos_kernel.domain.values import DocumentKind, LineItemType
from pos_kernel.logging_config import get_logger
from pos_kernel.models.product import Product
from pos_kernel.services.sequence_service import SequenceService
from pos_modules._document_helpers import check_plan, open_document
from pos_modules.sales.models import SaleLine, SaleLinePreview, SalePreview, SaleResult
from pos_services.batch_allocator import BatchAllocator
from pos_services.document_reconciler import DocumentReconciler
from pos_services.stock_ledger import StockConsumption, StockLedgerService

logger = get_logger("modules.sales.service")


class SalesService:
    """
    Retail point-of-sale event handler.

    Non-goals
    ---------
    - Does not price by customer or promotion; unit price is the line's
      override, else the batch selling price, else the product price.
    """

    def __init__(
        self,
        session: Session,
        policy: PosPolicy | None = None,
        clock: Clock | None = None,
        actor_id: UUID | None = None,
    ):
        self._session = session
        self._policy = policy or get_active_config()
        self._clock = clock or SystemClock()
        self._actor_id = actor_id
        self._allocator = BatchAllocator(session)
        self._ledger = StockLedgerService(session, self._clock, actor_id)
        self._reconciler = DocumentReconciler(session, self._clock, actor_id)

    def preview_sale(self, lines: list[SaleLine]) -> SalePreview:
        """Read-only allocation preview of a cart.  Writes nothing."""
        return SalePreview(
            lines=tuple(
                SaleLinePreview(
                    product_id=line.product_id,
                    quantity=line.quantity,
                    plan=self._allocator.allocate(line.product_id, line.quantity),
                )
                for line in lines
            )
        )

    def complete_sale(
        self,
        lines: list[SaleLine],
        *,
        discount_percent: Decimal | str | None = None,
        payment_method: str = "cash",
        customer_name: str | None = None,
        paid: bool = True,
    ) -> SaleResult:
        """
        Complete a retail sale.

        Postconditions:
            - One ``out`` movement per batch consumed (one per product for
              aggregate-only products), all referencing the sale document.
            - Document totals equal its lines; the sale is marked paid
              when ``paid``.
            - Session committed on success, rolled back on failure.
        """
        if not lines:
            raise ValueError("A sale needs at least one line")

        numbering = self._policy.numbering
        try:
            sale = open_document(
                self._session,
                self._clock,
                kind=DocumentKind.SALE,
                sequence_name=SequenceService.SALE,
                prefix=numbering.sale_prefix,
                width=numbering.width,
                tax_rate=self._policy.tax.retail_rate,
                customer_name=customer_name,
                discount_percent=(
                    None if discount_percent is None else to_decimal(discount_percent)
                ),
                payment_method=payment_method,
                actor_id=self._actor_id,
            )

            movement_ids: list[UUID] = []
            for line in lines:
                plan = self._allocator.allocate(line.product_id, line.quantity, lock=True)
                check_plan(plan, self._policy.stock.reject_oversell)
                consumption = self._ledger.consume(
                    line.product_id,
                    line.quantity,
                    f"Sale {sale.document_number}",
                    sale.id,
                    plan=plan,
                )
                movement_ids.extend(m.id for m in consumption.movements)
                self._write_sale_lines(sale.id, line, consumption)

            sale = self._reconciler.recalculate_invoice(sale.id)
            if paid and sale.total_amount > 0:
                sale = self._reconciler.record_invoice_payment(
                    sale.id, sale.total_amount, payment_method
                )

            result = SaleResult(
                invoice_id=sale.id,
                document_number=sale.document_number,
                subtotal=sale.subtotal,
                discount_amount=sale.discount_amount,
                tax_amount=sale.tax_amount,
                total_amount=sale.total_amount,
                payment_status=sale.payment_status,
                movement_ids=tuple(movement_ids),
            )
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info("sale_completed", extra={
            "document_id": str(result.invoice_id),
            "document_number": result.document_number,
            "lines": len(lines),
            "movements": len(result.movement_ids),
            "total_amount": result.total_amount,
        })
        return result

    def _write_sale_lines(
        self,
        invoice_id: UUID,
        line: SaleLine,
        consumption: StockConsumption,
    ) -> None:
        product = self._session.get(Product, line.product_id)
        plan = consumption.plan

        if not plan.is_batched:
            self._reconciler.add_line_item(
                invoice_id,
                product.name,
                LineItemType.PRODUCT,
                line.quantity,
                line.unit_price if line.unit_price is not None else product.selling_price,
                product_id=product.id,
                unit_cost=product.purchase_price,
                recalculate=False,
            )
            return

        for allocation in plan.allocations:
            price = line.unit_price
            if price is None:
                price = allocation.selling_price or product.selling_price
            self._reconciler.add_line_item(
                invoice_id,
                f"{product.name} ({allocation.batch_number})",
                LineItemType.PRODUCT,
                allocation.quantity,
                price,
                product_id=product.id,
                batch_id=allocation.batch_id,
                unit_cost=allocation.purchase_price,
                recalculate=False,
            )

        # Units sold beyond stock (oversell allowed) are billed without a batch.
        if plan.allocated < line.quantity:
            self._reconciler.add_line_item(
                invoice_id,
                product.name,
                LineItemType.PRODUCT,
                line.quantity - plan.allocated,
                line.unit_price if line.unit_price is not None else product.selling_price,
                product_id=product.id,
                recalculate=False,
            )
