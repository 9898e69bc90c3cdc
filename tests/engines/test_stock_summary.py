"""
Tests for batch summaries, expiry windows, margins and low-stock checks.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from pos_engines.allocation import BatchSnapshot
from pos_engines.stock_summary import expiring_within, is_low_stock, line_margin, summarize_batches

TODAY = date(2024, 3, 1)


def snap(quantity, expiry, selling=None):
    return BatchSnapshot(
        batch_id=uuid4(),
        quantity=quantity,
        expiry_date=expiry,
        received_date=date(2024, 1, 1),
        selling_price=selling,
    )


class TestSummarizeBatches:
    def test_summary_follows_fefo(self):
        batches = [
            snap(5, date(2024, 6, 1), Decimal("11.00")),
            snap(3, date(2024, 2, 1), Decimal("9.00")),
            snap(0, date(2024, 1, 1), Decimal("1.00")),
            snap(4, None, Decimal("12.00")),
        ]

        summary = summarize_batches(batches, TODAY)

        assert summary.total_quantity == 12
        assert summary.batch_count == 3
        assert summary.next_expiry == date(2024, 2, 1)
        assert summary.current_selling_price == Decimal("9.00")
        assert summary.expired_quantity == 3

    def test_no_stock(self):
        summary = summarize_batches([snap(0, date(2024, 6, 1))], TODAY)

        assert summary.total_quantity == 0
        assert summary.next_expiry is None
        assert summary.current_selling_price is None


class TestExpiringWithin:
    def test_window_is_inclusive(self):
        edge = snap(1, date(2024, 3, 31))
        outside = snap(1, date(2024, 4, 1))
        undated = snap(1, None)

        result = expiring_within([outside, edge, undated], TODAY, 30)

        assert result == [edge]

    def test_negative_window_rejected(self):
        with pytest.raises(ValueError):
            expiring_within([], TODAY, -1)


class TestMargins:
    def test_margin(self):
        assert line_margin(3, Decimal("10.00"), Decimal("6.50")) == Decimal("10.50")

    def test_unknown_cost(self):
        assert line_margin(3, Decimal("10.00"), None) is None


class TestLowStock:
    def test_explicit_threshold(self):
        assert is_low_stock(5, 5, 10)
        assert not is_low_stock(6, 5, 10)

    def test_default_threshold(self):
        assert is_low_stock(10, None, 10)
        assert not is_low_stock(11, None, 10)
