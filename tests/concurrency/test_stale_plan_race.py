"""
Two tills working the same batches.

Each test interleaves two independent sessions on a file-backed SQLite
store so that every step sees what the other till committed.  The
interleaving is driven step by step rather than with threads, which
keeps the outcome deterministic on SQLite's single-writer lock.
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from pos_kernel.domain.clock import DeterministicClock
from pos_kernel.exceptions import InsufficientStockError, StockContentionError
from pos_kernel.models.product import Batch, Product
from pos_kernel.models.stock_movement import StockMovement
from pos_modules.sales import SaleLine, SalesService
from pos_services.batch_allocator import BatchAllocator
from pos_services.stock_ledger import StockLedgerService

CLOCK = DeterministicClock(datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def seeded(file_db):
    """One product with a single five-unit batch."""
    with file_db() as s:
        product = Product(
            name="Yoghurt",
            stock_quantity=0,
            selling_price=Decimal("2.00"),
            purchase_price=Decimal("1.00"),
        )
        s.add(product)
        s.flush()
        batch = Batch(
            product_id=product.id,
            batch_number="Y-1",
            quantity=5,
            received_date=date(2023, 12, 1),
            expiry_date=date(2024, 2, 1),
            purchase_price=Decimal("1.00"),
        )
        s.add(batch)
        s.flush()
        StockLedgerService(s, CLOCK).sync_product_aggregate(product.id)
        s.commit()
        return file_db, product.id, batch.id


def _levels(factory, product_id, batch_id):
    with factory() as s:
        batch_qty = s.execute(select(Batch.quantity).where(Batch.id == batch_id)).scalar_one()
        product_qty = s.execute(
            select(Product.stock_quantity).where(Product.id == product_id)
        ).scalar_one()
        return batch_qty, product_qty


class TestStalePlan:
    def test_stale_plan_raises_contention(self, seeded, policy):
        factory, product_id, batch_id = seeded
        till_a = factory()
        till_b = factory()
        try:
            plan = BatchAllocator(till_a).allocate(product_id, 4)
            till_a.commit()

            SalesService(till_b, policy, CLOCK).complete_sale([SaleLine(product_id, 3)])

            with pytest.raises(StockContentionError):
                StockLedgerService(till_a, CLOCK).consume(product_id, 4, "Sale", "A-1", plan=plan)
            till_a.rollback()
        finally:
            till_a.close()
            till_b.close()

        assert _levels(factory, product_id, batch_id) == (2, 2)

    def test_second_sale_sees_first_sales_deduction(self, seeded, policy):
        factory, product_id, batch_id = seeded
        till_a = factory()
        till_b = factory()
        try:
            SalesService(till_a, policy, CLOCK).complete_sale([SaleLine(product_id, 3)])

            with pytest.raises(InsufficientStockError) as exc_info:
                SalesService(till_b, policy, CLOCK).complete_sale([SaleLine(product_id, 3)])
            assert exc_info.value.available == 2

            SalesService(till_b, policy, CLOCK).complete_sale([SaleLine(product_id, 2)])
        finally:
            till_a.close()
            till_b.close()

        assert _levels(factory, product_id, batch_id) == (0, 0)
        with factory() as s:
            movements = s.execute(
                select(StockMovement).order_by(StockMovement.seq)
            ).scalars().all()
        assert [(m.previous_quantity, m.resulting_quantity) for m in movements] == [(5, 2), (2, 0)]
        assert [m.seq for m in movements] == [1, 2]
