"""
Tests for StockLedgerService.

Covers:
- in / out / adjustment on aggregate products, batches and service items
- Clamping and its audit trail
- FEFO consumption and aggregate resync
- Plan contention
- Receiving batches (including the opening batch)
- Compensation
"""

from datetime import date
from uuid import uuid4

import pytest
from sqlalchemy import select

from pos_kernel.domain.values import EntityKind, MovementType
from pos_kernel.exceptions import (
    BatchNotFoundError,
    InventoryModeError,
    MovementNotFoundError,
    NonCompensableMovementError,
    ProductNotFoundError,
    ServiceItemNotFoundError,
    StockContentionError,
)
from pos_kernel.models.product import Batch
from pos_kernel.models.stock_movement import StockMovement


class TestAggregateMovements:
    def test_in_movement(self, session, ledger, make_product):
        product = make_product(stock_quantity=2)

        movement = ledger.apply_movement(
            EntityKind.PRODUCT, product.id, 3, MovementType.IN, "Restock", "PO-1"
        )
        session.refresh(product)

        assert product.stock_quantity == 5
        assert movement.previous_quantity == 2
        assert movement.resulting_quantity == 5
        assert movement.quantity == 3
        assert movement.reference_id == "PO-1"
        assert movement.movement_type == "in"

    def test_out_clamps_at_zero(self, session, ledger, make_product, captured_logs):
        product = make_product(stock_quantity=2)

        movement = ledger.apply_movement(
            EntityKind.PRODUCT, product.id, 5, MovementType.OUT, "Breakage"
        )
        session.refresh(product)

        assert product.stock_quantity == 0
        assert movement.quantity == 5
        assert movement.previous_quantity == 2
        assert movement.resulting_quantity == 0
        assert movement.was_clamped
        assert any(r["message"] == "stock_deduction_clamped" for r in captured_logs())

    def test_adjustment_sets_level(self, session, ledger, make_product):
        product = make_product(stock_quantity=40)

        movement = ledger.apply_movement(
            EntityKind.PRODUCT, product.id, 7, MovementType.ADJUSTMENT, "Stock count"
        )
        session.refresh(product)

        assert product.stock_quantity == 7
        assert movement.previous_quantity == 40
        assert movement.resulting_quantity == 7

    def test_every_call_appends_one_movement(self, session, ledger, make_product):
        product = make_product(stock_quantity=0)

        for _ in range(3):
            ledger.apply_movement(EntityKind.PRODUCT, product.id, 1, MovementType.IN, "Restock")

        seqs = session.execute(
            select(StockMovement.seq).order_by(StockMovement.seq)
        ).scalars().all()
        assert len(seqs) == 3
        assert seqs == sorted(set(seqs))

    def test_unknown_product(self, ledger):
        with pytest.raises(ProductNotFoundError):
            ledger.apply_movement(EntityKind.PRODUCT, uuid4(), 1, MovementType.IN, "x")

    def test_zero_delta_rejected(self, ledger, make_product):
        product = make_product()
        with pytest.raises(ValueError):
            ledger.apply_movement(EntityKind.PRODUCT, product.id, 0, MovementType.OUT, "x")


class TestServiceItemMovements:
    def test_out_on_service_item(self, session, ledger, make_service_item):
        item = make_service_item(track_stock=True, stock_quantity=4)

        movement = ledger.apply_movement(
            EntityKind.SERVICE_ITEM, item.id, 1, MovementType.OUT, "Minibar"
        )
        session.refresh(item)

        assert item.stock_quantity == 3
        assert movement.service_item_id == item.id
        assert movement.product_id is None

    def test_unknown_service_item(self, ledger):
        with pytest.raises(ServiceItemNotFoundError):
            ledger.apply_movement(EntityKind.SERVICE_ITEM, uuid4(), 1, MovementType.IN, "x")


class TestBatchMovements:
    def test_batch_write_resyncs_aggregate(self, session, ledger, make_product, make_batch):
        product = make_product()
        batch = make_batch(product, 10, date(2024, 5, 1))
        make_batch(product, 5, date(2024, 6, 1))

        ledger.apply_movement(
            EntityKind.PRODUCT, product.id, 4, MovementType.OUT, "Damaged", batch_id=batch.id
        )
        session.refresh(product)
        session.refresh(batch)

        assert batch.quantity == 6
        assert product.stock_quantity == 11

    def test_aggregate_write_on_batched_product_rejected(self, ledger, make_product, make_batch):
        product = make_product()
        make_batch(product, 10)

        with pytest.raises(InventoryModeError):
            ledger.apply_movement(EntityKind.PRODUCT, product.id, 1, MovementType.OUT, "x")

    def test_batch_of_another_product_rejected(self, ledger, make_product, make_batch):
        first = make_product(name="First")
        second = make_product(name="Second")
        batch = make_batch(first, 10)

        with pytest.raises(BatchNotFoundError):
            ledger.apply_movement(
                EntityKind.PRODUCT, second.id, 1, MovementType.OUT, "x", batch_id=batch.id
            )


class TestConsume:
    def test_fefo_consumption(self, session, ledger, make_product, make_batch):
        product = make_product()
        late = make_batch(product, 10, date(2024, 4, 1), batch_number="LATE")
        soon = make_batch(product, 3, date(2024, 2, 1), batch_number="SOON")

        consumption = ledger.consume(product.id, 5, "Sale", "SAL-1")
        session.refresh(product)
        session.refresh(late)
        session.refresh(soon)

        assert [m.batch_id for m in consumption.movements] == [soon.id, late.id]
        assert [m.quantity for m in consumption.movements] == [3, 2]
        assert all(m.reference_id == "SAL-1" for m in consumption.movements)
        assert soon.quantity == 0
        assert late.quantity == 8
        assert product.stock_quantity == 8
        assert consumption.deducted == 5
        assert consumption.shortfall == 0

    def test_aggregate_consumption(self, session, ledger, make_product):
        product = make_product(stock_quantity=6)

        consumption = ledger.consume(product.id, 4, "Sale")
        session.refresh(product)

        assert len(consumption.movements) == 1
        assert consumption.movements[0].batch_id is None
        assert product.stock_quantity == 2

    def test_short_consumption_takes_what_exists(self, session, ledger, make_product, make_batch):
        product = make_product()
        make_batch(product, 2, date(2024, 2, 1))

        consumption = ledger.consume(product.id, 5, "Sale")
        session.refresh(product)

        assert consumption.deducted == 2
        assert consumption.shortfall == 3
        assert product.stock_quantity == 0

    def test_short_consumption_records_full_request(self, session, ledger, make_product, make_batch):
        product = make_product()
        batch = make_batch(product, 15, date(2024, 2, 1))

        consumption = ledger.consume(product.id, 20, "Sale", "SAL-9")

        assert sum(m.quantity for m in consumption.movements) == 20
        assert [(m.batch_id, m.quantity) for m in consumption.movements] == [
            (batch.id, 15),
            (None, 5),
        ]
        unmet = consumption.movements[1]
        assert unmet.was_clamped
        assert unmet.previous_quantity == unmet.resulting_quantity == 0
        assert ledger.compensate_reference("SAL-9", "Voided")[0].batch_id == batch.id

    def test_stale_plan_raises_contention(self, session, ledger, make_product, make_batch):
        product = make_product()
        batch = make_batch(product, 5, date(2024, 2, 1))
        plan = ledger.allocator.allocate(product.id, 4)

        ledger.apply_movement(
            EntityKind.PRODUCT, product.id, 3, MovementType.OUT, "Other till", batch_id=batch.id
        )

        with pytest.raises(StockContentionError) as exc_info:
            ledger.consume(product.id, 4, "Sale", plan=plan)
        assert exc_info.value.batch_id == str(batch.id)

    def test_plan_quantity_must_match(self, ledger, make_product, make_batch):
        product = make_product()
        make_batch(product, 5)
        plan = ledger.allocator.allocate(product.id, 2)

        with pytest.raises(ValueError):
            ledger.consume(product.id, 3, "Sale", plan=plan)


class TestReceiveBatch:
    def test_receive_creates_batch_and_in_movement(self, session, ledger, make_product, make_batch):
        product = make_product()
        make_batch(product, 2)

        batch = ledger.receive_batch(
            product.id, 12, batch_number="LOT-9", expiry_date=date(2024, 9, 1),
            purchase_price="4.00", selling_price="7.50",
        )
        session.refresh(product)

        assert batch.quantity == 12
        assert product.stock_quantity == 14
        movement = session.execute(
            select(StockMovement).where(StockMovement.batch_id == batch.id)
        ).scalar_one()
        assert movement.movement_type == "in"
        assert movement.resulting_quantity == 12

    def test_first_batch_carries_aggregate_into_opening_batch(self, session, ledger, make_product):
        product = make_product(stock_quantity=4)

        ledger.receive_batch(product.id, 10, batch_number="LOT-1")
        session.refresh(product)

        batches = session.execute(
            select(Batch).where(Batch.product_id == product.id).order_by(Batch.batch_number)
        ).scalars().all()
        assert [(b.batch_number, b.quantity) for b in batches] == [("LOT-1", 10), ("OPENING", 4)]
        assert product.stock_quantity == 14


class TestCompensation:
    def test_compensate_out_movement(self, session, ledger, make_product, make_batch):
        product = make_product()
        batch = make_batch(product, 5)
        consumption = ledger.consume(product.id, 2, "Sale", "REF-1")

        inverse = ledger.compensate(consumption.movements[0].id, "Sale voided")
        session.refresh(batch)
        session.refresh(product)

        assert inverse.movement_type == "in"
        assert inverse.quantity == 2
        assert inverse.compensates_id == consumption.movements[0].id
        assert inverse.batch_id == batch.id
        assert batch.quantity == 5
        assert product.stock_quantity == 5

    def test_clamped_movement_restores_only_what_was_removed(self, session, ledger, make_product):
        product = make_product(stock_quantity=2)
        movement = ledger.apply_movement(
            EntityKind.PRODUCT, product.id, 5, MovementType.OUT, "Breakage"
        )

        inverse = ledger.compensate(movement.id, "Recount")
        session.refresh(product)

        assert inverse.quantity == 2
        assert product.stock_quantity == 2

    def test_cannot_compensate_twice(self, ledger, make_product):
        product = make_product(stock_quantity=3)
        movement = ledger.apply_movement(EntityKind.PRODUCT, product.id, 1, MovementType.OUT, "x")
        ledger.compensate(movement.id, "undo")

        with pytest.raises(NonCompensableMovementError):
            ledger.compensate(movement.id, "undo again")

    def test_adjustment_not_compensable(self, ledger, make_product):
        product = make_product(stock_quantity=3)
        movement = ledger.apply_movement(
            EntityKind.PRODUCT, product.id, 9, MovementType.ADJUSTMENT, "Count"
        )

        with pytest.raises(NonCompensableMovementError):
            ledger.compensate(movement.id, "undo")

    def test_unknown_movement(self, ledger):
        with pytest.raises(MovementNotFoundError):
            ledger.compensate(uuid4(), "undo")

    def test_compensate_reference(self, session, ledger, make_product, make_batch):
        product = make_product()
        a = make_batch(product, 2, date(2024, 2, 1))
        b = make_batch(product, 5, date(2024, 3, 1))
        ledger.consume(product.id, 4, "Order", "ORD-REF")

        restored = ledger.compensate_reference("ORD-REF", "Order cancelled")
        session.refresh(a)
        session.refresh(b)
        session.refresh(product)

        assert len(restored) == 2
        assert (a.quantity, b.quantity, product.stock_quantity) == (2, 5, 7)
        assert ledger.compensate_reference("ORD-REF", "again") == []
