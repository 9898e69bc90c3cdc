"""
Pytest fixtures for the POS kernel test suite.

Provides:
- A fresh SQLite ledger store per test (in-memory, or file-backed for
  tests that interleave two sessions)
- Deterministic clock and default policy
- Data builders for products, batches, service items, rooms and bookings
- Structured log capture

Environment Variables:
- DATABASE_URL: run the store on another database (e.g. PostgreSQL).
  If not set, an in-memory SQLite database is used.
"""

import json
import logging
import os
from datetime import date, datetime, timezone
from decimal import Decimal
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from pos_config import PosPolicy, get_active_config
from pos_kernel.db.base import Base
from pos_kernel.db.engine import configure_sqlite
from pos_kernel.db.immutability import register_immutability_listeners
from pos_kernel.domain.clock import DeterministicClock
from pos_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
import pos_kernel.models  # noqa: F401  (registers tables)
from pos_kernel.models.hotel import Booking, Room, ServiceMenuItem
from pos_kernel.models.product import Batch, Product
from pos_services.stock_ledger import StockLedgerService

TEST_ACTOR_ID = uuid4()


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture pos_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, ledger):
            ledger.apply_movement(...)
            logs = captured_logs()
            assert any(r["message"] == "stock_movement_applied" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("pos_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Ledger store
# =============================================================================


def _make_engine(url: str):
    if url == "sqlite://":
        eng = create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        eng = create_engine(url)
    if eng.dialect.name == "sqlite":
        configure_sqlite(eng)
    return eng


@pytest.fixture(scope="session", autouse=True)
def _immutability_listeners():
    register_immutability_listeners()
    yield


@pytest.fixture
def engine():
    """A fresh, fully migrated ledger store for one test."""
    eng = _make_engine(os.environ.get("DATABASE_URL", "sqlite://"))
    Base.metadata.create_all(eng)
    yield eng
    Base.metadata.drop_all(eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory) -> Generator[Session, None, None]:
    """
    Session for one test.  Module services commit for real; isolation
    comes from the per-test database.
    """
    sess = session_factory()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture
def file_db(tmp_path):
    """
    File-backed SQLite store for tests that interleave two sessions.

    Returns a sessionmaker; each call gives an independent connection.
    """
    eng = _make_engine(f"sqlite:///{tmp_path / 'pos.db'}")
    Base.metadata.create_all(eng)
    yield sessionmaker(bind=eng, expire_on_commit=False)
    eng.dispose()


@pytest.fixture
def test_actor_id() -> UUID:
    """Provide a consistent test actor ID."""
    return TEST_ACTOR_ID


# Clock and policy fixtures


@pytest.fixture
def deterministic_clock():
    """Provide a deterministic clock for testing (2024-01-01 12:00 UTC)."""
    return DeterministicClock(datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def policy() -> PosPolicy:
    """The shipped default policy set."""
    return get_active_config()


# Service fixtures


@pytest.fixture
def ledger(session, deterministic_clock, test_actor_id) -> StockLedgerService:
    return StockLedgerService(session, deterministic_clock, test_actor_id)


# =============================================================================
# Data builders
# =============================================================================
#
# Builders commit, so seeded rows survive the rollback a module service
# performs when an event fails.


@pytest.fixture
def make_product(session):
    """Factory fixture for aggregate-only products (no batches)."""

    def _create(
        name: str = "Bottled Water",
        stock_quantity: int = 0,
        selling_price: str = "10.00",
        purchase_price: str = "6.00",
        min_stock_threshold: int | None = None,
    ) -> Product:
        product = Product(
            name=name,
            stock_quantity=stock_quantity,
            selling_price=Decimal(selling_price),
            purchase_price=Decimal(purchase_price),
            min_stock_threshold=min_stock_threshold,
        )
        session.add(product)
        session.commit()
        return product

    return _create


@pytest.fixture
def make_batch(session, deterministic_clock):
    """
    Factory fixture for batches.  Keeps the product aggregate equal to the
    sum of its batches.
    """

    def _create(
        product: Product,
        quantity: int,
        expiry_date: date | None = None,
        batch_number: str | None = None,
        received_date: date = date(2023, 12, 1),
        purchase_price: str = "6.00",
        selling_price: str | None = None,
    ) -> Batch:
        batch = Batch(
            product_id=product.id,
            batch_number=batch_number or f"B-{uuid4().hex[:6]}",
            quantity=quantity,
            expiry_date=expiry_date,
            received_date=received_date,
            purchase_price=Decimal(purchase_price),
            selling_price=None if selling_price is None else Decimal(selling_price),
        )
        session.add(batch)
        session.flush()
        StockLedgerService(session, deterministic_clock).sync_product_aggregate(product.id)
        session.commit()
        return batch

    return _create


@pytest.fixture
def make_service_item(session):
    def _create(
        name: str = "Minibar Soda",
        price: str = "5.00",
        track_stock: bool = False,
        stock_quantity: int = 0,
        product: Product | None = None,
    ) -> ServiceMenuItem:
        item = ServiceMenuItem(
            name=name,
            price=Decimal(price),
            track_stock=track_stock,
            stock_quantity=stock_quantity,
            product_id=product.id if product else None,
        )
        session.add(item)
        session.commit()
        return item

    return _create


@pytest.fixture
def make_booking(session):
    def _create(
        guest_name: str = "A. Guest",
        check_in: date = date(2024, 1, 1),
        check_out: date = date(2024, 1, 3),
        price_per_night: str = "80.00",
    ) -> Booking:
        room = Room(
            room_number=f"R{uuid4().hex[:4]}",
            room_type="double",
            price_per_night=Decimal(price_per_night),
        )
        session.add(room)
        session.flush()
        booking = Booking(
            booking_reference=f"BK-{uuid4().hex[:8]}",
            room_id=room.id,
            guest_name=guest_name,
            check_in_date=check_in,
            check_out_date=check_out,
        )
        session.add(booking)
        session.commit()
        return booking

    return _create
