"""
Tests for BatchAllocator against the ledger store.
"""

from datetime import date
from uuid import uuid4

import pytest

from pos_engines.allocation import Aggregate, Batched, ModeName
from pos_kernel.exceptions import ProductNotFoundError
from pos_services.batch_allocator import BatchAllocator


@pytest.fixture
def allocator(session):
    return BatchAllocator(session)


class TestResolveMode:
    def test_product_without_batches_is_aggregate(self, allocator, make_product):
        product = make_product(stock_quantity=7)

        mode = allocator.resolve_mode(product.id)

        assert isinstance(mode, Aggregate)
        assert mode.available == 7

    def test_exhausted_batches_still_mean_batched(self, allocator, make_product, make_batch):
        product = make_product()
        make_batch(product, 0, date(2024, 2, 1))

        mode = allocator.resolve_mode(product.id)

        assert isinstance(mode, Batched)
        assert mode.available == 0

    def test_unknown_product(self, allocator):
        with pytest.raises(ProductNotFoundError):
            allocator.resolve_mode(uuid4())


class TestAllocate:
    def test_plan_follows_expiry(self, allocator, make_product, make_batch):
        product = make_product()
        undated = make_batch(product, 10, None, batch_number="U")
        late = make_batch(product, 4, date(2024, 5, 1), batch_number="L")
        soon = make_batch(product, 2, date(2024, 2, 1), batch_number="S")

        plan = allocator.allocate(product.id, 9)

        assert plan.mode is ModeName.BATCHED
        assert plan.fulfilled
        assert [(a.batch_id, a.quantity) for a in plan.allocations] == [
            (soon.id, 2),
            (late.id, 4),
            (undated.id, 3),
        ]

    def test_short_plan_is_partial(self, allocator, make_product, make_batch, captured_logs):
        product = make_product()
        make_batch(product, 3, date(2024, 2, 1))

        plan = allocator.allocate(product.id, 5)

        assert not plan.fulfilled
        assert plan.allocated == 3
        assert plan.shortfall == 2
        assert any(r["message"] == "fefo_allocation_short" for r in captured_logs())

    def test_allocation_has_no_side_effects(self, session, allocator, make_product, make_batch):
        product = make_product()
        batch = make_batch(product, 3, date(2024, 2, 1))

        allocator.allocate(product.id, 2)
        session.refresh(batch)
        session.refresh(product)

        assert batch.quantity == 3
        assert product.stock_quantity == 3

    def test_aggregate_plan(self, allocator, make_product):
        product = make_product(stock_quantity=4)

        plan = allocator.allocate(product.id, 4)

        assert plan.mode is ModeName.AGGREGATE
        assert plan.allocations == ()
        assert plan.fulfilled

    def test_quantity_must_be_positive(self, allocator, make_product):
        product = make_product(stock_quantity=4)
        with pytest.raises(ValueError):
            allocator.allocate(product.id, 0)

    def test_planning_is_logged(self, allocator, make_product, captured_logs):
        product = make_product(stock_quantity=4)

        allocator.allocate(product.id, 1)

        records = [r for r in captured_logs() if r["message"] == "fefo_allocation_planned"]
        assert len(records) == 1
        assert records[0]["mode"] == "aggregate"
        assert records[0]["product_id"] == str(product.id)
