"""Tests for the structured logging system (payables_kernel/logging_config.py)."""

import json
import logging
import threading
from datetime import datetime, timezone
from decimal import Decimal
from io import StringIO

import pytest

from payables_kernel.domain.budget import MonthStatus
from payables_kernel.exceptions import PaymentNotFoundError
from payables_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state around each test, then restore the suite config."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


def _parse_log(stream: StringIO) -> dict:
    return _parse_all_logs(stream)[0]


# ---------------------------------------------------------------------------
# StructuredFormatter tests
# ---------------------------------------------------------------------------


class TestStructuredFormatter:

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "payables.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("payment_applied", extra={"attempts": 2, "duplicate": False})

        record = _parse_log(stream)
        assert record["attempts"] == 2
        assert record["duplicate"] is False

    def test_domain_values_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("values", extra={
            "amount": Decimal("12.50"),
            "status": MonthStatus.OVERSPENT,
            "at": datetime(2025, 1, 15, 9, 0, tzinfo=timezone.utc),
        })

        record = _parse_log(stream)
        assert record["amount"] == "12.50"
        assert record["status"] == "overspent"
        assert record["at"] == "2025-01-15T09:00:00+00:00"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(budget_line_id="BL-1", payment_id="PAY-1")
        get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["budget_line_id"] == "BL-1"
        assert record["payment_id"] == "PAY-1"

    def test_payables_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise PaymentNotFoundError("BL-1", "PAY-9")
        except PaymentNotFoundError:
            get_logger("test").error("reversal_failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "PaymentNotFoundError"
        assert record["exc_code"] == "PAYMENT_NOT_FOUND"
        assert record["exc_budget_line_id"] == "BL-1"
        assert record["exc_payment_id"] == "PAY-9"
        assert "traceback" in record

    def test_level_filtering(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        assert [r["message"] for r in _parse_all_logs(stream)] == ["first", "second"]


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:

    def test_set_and_get(self):
        LogContext.set(correlation_id="x", actor_id="y")
        assert LogContext.get_all() == {"correlation_id": "x", "actor_id": "y"}

    def test_clear(self):
        LogContext.set(month_key="2025-01")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_restores(self):
        LogContext.set(budget_line_id="outer")
        with LogContext.bind(budget_line_id="inner", payment_id="P"):
            assert LogContext.get_all() == {"budget_line_id": "inner", "payment_id": "P"}
        assert LogContext.get_all() == {"budget_line_id": "outer"}

    def test_bind_ignores_none(self):
        LogContext.set(actor_id="a")
        with LogContext.bind(actor_id=None):
            assert LogContext.get_all()["actor_id"] == "a"

    def test_unknown_field_rejected(self):
        with pytest.raises(TypeError, match="vendor"):
            LogContext.set(vendor="ACME")

    def test_threads_start_without_context(self):
        LogContext.set(budget_line_id="main")
        seen = []
        worker = threading.Thread(target=lambda: seen.append(LogContext.get_all()))
        worker.start()
        worker.join()

        assert seen == [{}]
        assert LogContext.get_all() == {"budget_line_id": "main"}


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:

    def test_idempotent(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)

        assert logging.getLogger("payables").handlers == [h1]

    def test_logger_hierarchy(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        get_logger("services.balance_coordinator").debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["logger"] == "payables.services.balance_coordinator"
