"""
Structured logging: JSON formatting, context propagation, engine traces.
"""

import json
import logging
import sys
from dataclasses import dataclass
from decimal import Decimal
from uuid import uuid4

import pytest

from pos_engines.tracer import compute_input_fingerprint, traced_engine
from pos_kernel.exceptions import InsufficientStockError
from pos_kernel.logging_config import LogContext, StructuredFormatter, get_logger


def _format(record_kwargs: dict, msg: str = "event", exc_info=None) -> dict:
    record = logging.LogRecord("pos_kernel.test", logging.INFO, __file__, 1, msg, (), exc_info)
    for key, value in record_kwargs.items():
        setattr(record, key, value)
    return json.loads(StructuredFormatter().format(record))


class TestStructuredFormatter:
    def test_extra_fields_and_types(self):
        batch_id = uuid4()
        payload = _format({"batch_id": batch_id, "amount": Decimal("1.50")})

        assert payload["message"] == "event"
        assert payload["level"] == "INFO"
        assert payload["batch_id"] == str(batch_id)
        assert payload["amount"] == "1.50"

    def test_context_fields_included(self):
        with LogContext.bind(reference_id="SAL-000001"):
            payload = _format({})
        assert payload["reference_id"] == "SAL-000001"
        assert "reference_id" not in _format({})

    def test_kernel_error_fields_exposed(self):
        try:
            raise InsufficientStockError("p-1", 5, 2)
        except InsufficientStockError:
            payload = _format({}, exc_info=sys.exc_info())

        assert payload["exc_code"] == "INSUFFICIENT_STOCK"
        assert payload["exc_requested"] == 5
        assert payload["exc_available"] == 2

    def test_unknown_context_field_rejected(self):
        with pytest.raises(TypeError):
            LogContext.bind(till="7")


class TestLoggerNamespace:
    def test_loggers_live_under_kernel_prefix(self):
        assert get_logger("services.x").name == "pos_kernel.services.x"


@dataclass(frozen=True)
class _Input:
    quantity: int


class TestEngineTrace:
    def test_trace_emitted(self, captured_logs):
        @traced_engine("demo", "2.1", fingerprint_fields=("value",))
        def double(*, value):
            return value * 2

        assert double(value=4) == 8

        traces = [r for r in captured_logs() if r["message"] == "POS_ENGINE_TRACE"]
        assert len(traces) == 1
        assert traces[0]["engine_name"] == "demo"
        assert traces[0]["engine_version"] == "2.1"
        assert len(traces[0]["input_fingerprint"]) == 16

    def test_fingerprint_is_deterministic(self):
        first = compute_input_fingerprint(("a", "b"), {"a": {"y": 1, "x": 2}, "b": _Input(3)})
        second = compute_input_fingerprint(("a", "b"), {"b": _Input(3), "a": {"x": 2, "y": 1}})
        other = compute_input_fingerprint(("a", "b"), {"a": {"x": 2, "y": 1}, "b": _Input(4)})

        assert first == second
        assert first != other
