"""
Pytest fixtures for the payables test suite.

Provides:
- Structured logging configured once per session, plus log capture
- A deterministic clock
- The packaged settings and a standard RateSet
- Engines, an in-memory store and the services wired to it
- An in-memory SQLite engine with the schema created
"""

import json
import logging
from decimal import Decimal
from io import StringIO

import pytest

from payables_config import get_active_config
from payables_engines.monthly_ledger import MonthlyBalanceLedger
from payables_engines.rates import RateSet
from payables_engines.tax_cascade import PartialPaymentProrator, TaxCascadeCalculator
from payables_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from payables_kernel.domain.clock import DeterministicClock
from payables_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from payables_services.balance_coordinator import BalanceUpdateCoordinator
from payables_services.budget_setup import BudgetLineSetup
from payables_services.budget_store import InMemoryBudgetLineStore
from payables_services.rollover_service import RolloverService
from payables_services.sql_store import SqlBudgetLineStore

TEST_ACTOR = "tester"
MONTHLY_ALLOCATION = Decimal("1000")


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
    Capture payables logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, coordinator):
            coordinator.apply_finalized_payment(...)
            logs = captured_logs()
            assert any(r["message"] == "payment_applied" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("payables")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Time, settings, rates
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock()


@pytest.fixture
def settings():
    return get_active_config()


@pytest.fixture
def standard_rates():
    """WHT 7.5%, levy 6%, VAT 15%, mobile money 1%."""
    return RateSet(
        withholding_rate=Decimal("0.075"),
        levy_rate=Decimal("0.06"),
        vat_rate=Decimal("0.15"),
        mobile_money_rate=Decimal("0.01"),
    )


# =============================================================================
# Engines
# =============================================================================


@pytest.fixture
def calculator():
    return TaxCascadeCalculator()


@pytest.fixture
def prorator(calculator):
    return PartialPaymentProrator(calculator)


@pytest.fixture
def ledger():
    return MonthlyBalanceLedger()


# =============================================================================
# Stores and services
# =============================================================================


@pytest.fixture
def memory_store():
    return InMemoryBudgetLineStore()


@pytest.fixture
def budget_setup(memory_store, ledger, clock):
    return BudgetLineSetup(memory_store, ledger, clock)


@pytest.fixture
def coordinator(memory_store, ledger, clock):
    return BalanceUpdateCoordinator(memory_store, ledger, clock, max_attempts=5)


@pytest.fixture
def rollover_service(memory_store):
    return RolloverService(memory_store)


@pytest.fixture
def budget_line(budget_setup):
    """A configured 2025 line with 1000 allocated to every month."""
    return budget_setup.configure(
        "BL-001",
        2025,
        [MONTHLY_ALLOCATION] * 12,
        name="Office supplies",
        account_no="6100",
    )


# =============================================================================
# SQL
# =============================================================================


@pytest.fixture
def sql_session_factory():
    """In-memory SQLite with all tables created."""
    init_engine_from_url("sqlite:///:memory:")
    create_tables()
    yield get_session_factory()
    drop_tables()
    reset_engine()


@pytest.fixture
def sql_store(sql_session_factory):
    return SqlBudgetLineStore(sql_session_factory, actor=TEST_ACTOR)
