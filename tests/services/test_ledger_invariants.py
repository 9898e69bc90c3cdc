"""
Property tests: random sequences of receipts, consumptions, batch write-offs
and compensations never leave a negative level, and a batch-tracked
product's aggregate always equals the sum of its batches.
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from hypothesis import given, settings
from hypothesis import strategies as st
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from pos_kernel.db.base import Base
from pos_kernel.db.engine import configure_sqlite
from pos_kernel.domain.clock import DeterministicClock
from pos_kernel.domain.values import EntityKind, MovementType
from pos_kernel.exceptions import NonCompensableMovementError
from pos_kernel.models.product import Batch, Product
from pos_kernel.models.stock_movement import StockMovement
from pos_services.stock_ledger import StockLedgerService

CLOCK = DeterministicClock(datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc))

operations = st.lists(
    st.one_of(
        st.tuples(st.just("receive"), st.integers(1, 20), st.integers(0, 90)),
        st.tuples(st.just("consume"), st.integers(1, 30), st.just(0)),
        st.tuples(st.just("write_off"), st.integers(1, 10), st.integers(0, 5)),
        st.tuples(st.just("undo_last"), st.just(0), st.just(0)),
    ),
    min_size=1,
    max_size=15,
)


def _fresh_session() -> Session:
    engine = create_engine(
        "sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False}
    )
    configure_sqlite(engine)
    Base.metadata.create_all(engine)
    return Session(engine, expire_on_commit=False)


class TestBatchAggregateInvariant:
    @settings(max_examples=40, deadline=None)
    @given(ops=operations)
    def test_aggregate_equals_batch_sum(self, ops):
        session = _fresh_session()
        try:
            product = Product(
                name="Flour",
                stock_quantity=0,
                selling_price=Decimal("3.00"),
                purchase_price=Decimal("2.00"),
            )
            session.add(product)
            session.flush()
            ledger = StockLedgerService(session, CLOCK)

            for i, (op, quantity, extra) in enumerate(ops):
                if op == "receive":
                    ledger.receive_batch(
                        product.id,
                        quantity,
                        batch_number=f"B{i}",
                        expiry_date=date(2024, 1, 1) + timedelta(days=extra),
                    )
                elif op == "consume":
                    ledger.consume(product.id, quantity, "Sale", f"S{i}")
                elif op == "write_off":
                    batches = session.execute(
                        select(Batch.id).where(Batch.product_id == product.id).order_by(Batch.batch_number)
                    ).scalars().all()
                    if not batches:
                        continue
                    ledger.apply_movement(
                        EntityKind.PRODUCT, product.id, quantity, MovementType.OUT,
                        "Write-off", batch_id=batches[extra % len(batches)],
                    )
                else:
                    last = session.execute(
                        select(StockMovement.id).order_by(StockMovement.seq.desc()).limit(1)
                    ).scalar_one_or_none()
                    if last is None:
                        continue
                    try:
                        ledger.compensate(last, "Undo")
                    except NonCompensableMovementError:
                        pass

                batch_sum = session.execute(
                    select(func.coalesce(func.sum(Batch.quantity), 0))
                    .where(Batch.product_id == product.id)
                ).scalar_one()
                negatives = session.execute(
                    select(func.count(Batch.id)).where(Batch.quantity < 0)
                ).scalar_one()
                session.refresh(product)

                assert negatives == 0
                assert product.stock_quantity >= 0
                if ledger.has_batches(product.id):
                    assert product.stock_quantity == batch_sum
        finally:
            session.close()
            session.get_bind().dispose()
