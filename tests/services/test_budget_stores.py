"""
Tests for the budget line stores.

The in-memory and SQL stores implement the same protocol; the shared
behaviour is exercised against both through the ``any_store`` fixture.
"""

from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from payables_kernel.domain.budget import BalanceHistoryRecord, HistoryEntryType
from payables_kernel.exceptions import (
    BudgetLineExistsError,
    BudgetLineNotFoundError,
    TransientStoreError,
)
from payables_services.balance_coordinator import BalanceUpdateCoordinator
from payables_services.budget_setup import BudgetLineSetup
from payables_services.budget_store import WriteOutcome, new_history_records

AT = datetime(2025, 1, 15, 9, 0, tzinfo=timezone.utc)


@pytest.fixture(params=["memory", "sql"])
def any_store(request):
    if request.param == "memory":
        return request.getfixturevalue("memory_store")
    return request.getfixturevalue("sql_store")


def _configure(store, ledger, clock):
    return BudgetLineSetup(store, ledger, clock).configure(
        "BL-S", 2025, ["500"] * 12, name="Stationery", account_no="6110",
        declared_total="6000",
    )


@pytest.fixture
def stored_line(any_store, ledger, clock):
    return _configure(any_store, ledger, clock)


@pytest.fixture
def memory_line(memory_store, ledger, clock):
    return _configure(memory_store, ledger, clock)


@pytest.fixture
def sql_line(sql_store, ledger, clock):
    return _configure(sql_store, ledger, clock)


def _record(line, sequence, payment_id):
    return BalanceHistoryRecord(
        sequence=sequence,
        budget_line_id=line.id,
        entry_type=HistoryEntryType.PAYMENT_FINALIZED,
        payment_id=payment_id,
        month_key="2025-01",
        previous_balance=Decimal("6000"),
        payment_amount=Decimal("1.10"),
        delta=Decimal("-1.10"),
        new_balance=Decimal("5998.90"),
        actor="system",
        timestamp=AT,
    )


class TestStoreProtocol:

    def test_insert_then_read(self, any_store, stored_line):
        snapshot = any_store.read("BL-S")

        assert snapshot.version == 1
        assert snapshot.line == stored_line
        assert snapshot.line.declared_total == Decimal("6000")
        assert len(snapshot.line.monthly_balances) == 12

    def test_insert_twice(self, any_store, stored_line):
        with pytest.raises(BudgetLineExistsError):
            any_store.insert(stored_line)

    def test_read_unknown(self, any_store):
        with pytest.raises(BudgetLineNotFoundError):
            any_store.read("missing")

    def test_write_bumps_version(self, any_store, stored_line):
        updated = stored_line.with_synced_balance(Decimal("42.42"))

        assert any_store.write(updated, 1) is WriteOutcome.OK
        snapshot = any_store.read("BL-S")
        assert snapshot.version == 2
        assert snapshot.line.current_balance_usd == Decimal("42.42")

    def test_stale_version_conflicts(self, any_store, stored_line):
        any_store.write(stored_line.with_synced_balance(Decimal("1")), 1)

        outcome = any_store.write(stored_line.with_synced_balance(Decimal("2")), 1)

        assert outcome is WriteOutcome.CONFLICT
        assert any_store.read("BL-S").line.current_balance_usd == Decimal("1")

    def test_write_unknown(self, any_store, stored_line):
        with pytest.raises(BudgetLineNotFoundError):
            any_store.write(replace(stored_line, id="other"), 1)

    def test_history_appended(self, any_store, stored_line):
        line = stored_line.with_history(_record(stored_line, 1, "P1"))
        any_store.write(line, 1)
        line = any_store.read("BL-S").line.with_history(_record(stored_line, 2, "P2"))
        any_store.write(line, 2)

        history = any_store.read("BL-S").line.balance_history
        assert [r.payment_id for r in history] == ["P1", "P2"]
        assert history[0] == _record(stored_line, 1, "P1")

    def test_history_cannot_be_rewritten(self, any_store, stored_line):
        any_store.write(stored_line.with_history(_record(stored_line, 1, "P1")), 1)

        with pytest.raises(ValueError):
            any_store.write(stored_line.with_history(_record(stored_line, 1, "P9")), 2)

    def test_list_ids(self, any_store, stored_line, ledger, clock):
        BudgetLineSetup(any_store, ledger, clock).configure("BL-A", 2025, [1])
        assert any_store.list_ids() == ["BL-A", "BL-S"]

    def test_coordinator_round_trip(self, any_store, stored_line, ledger, clock):
        coordinator = BalanceUpdateCoordinator(any_store, ledger, clock)
        applied = coordinator.apply_finalized_payment("BL-S", "99.99", "PAY-1", month_key="2025-06")
        reversed_ = coordinator.reverse("BL-S", "PAY-1")

        assert applied.validation.is_consistent
        assert reversed_.restored_balance == Decimal("6000")
        line = any_store.read("BL-S").line
        assert len(line.balance_history) == 2
        assert line.month("2025-06").spent == Decimal("0")


class TestNewHistoryRecords:

    def test_prefix_required(self, memory_line):
        a, b = _record(memory_line, 1, "A"), _record(memory_line, 2, "B")

        assert new_history_records((a,), (a, b), "BL-S") == (b,)
        assert new_history_records((), (a,), "BL-S") == (a,)
        with pytest.raises(ValueError):
            new_history_records((a, b), (a,), "BL-S")


class TestInMemoryStore:

    def test_document_shape(self, memory_store, memory_line, coordinator):
        coordinator.apply_finalized_payment("BL-S", "100", "PAY-1", month_key="2025-01")
        document = memory_store.raw_document("BL-S")

        assert document["currentBalanceUSD"] == Decimal("5900")
        assert document["balCD"] == Decimal("5900")
        assert document["totalSpendToDate"] == Decimal("100")
        assert document["monthlyBalances"]["2025-01"]["balance"] == Decimal("400")
        assert "balanceHistory" not in document
        assert memory_store.history_documents("BL-S")[0]["paymentId"] == "PAY-1"

    def test_put_document_moves_history_to_log(self, memory_store):
        memory_store.put_document({
            "id": "BL-D",
            "monthlyValues": [10],
            "balanceHistory": [{"paymentId": "OLD", "previousBalance": 10, "newBalance": 5}],
        })

        assert "balanceHistory" not in memory_store.raw_document("BL-D")
        assert memory_store.read("BL-D").line.balance_history[0].payment_id == "OLD"

    def test_injected_failure(self, memory_store, memory_line):
        memory_store.fail_next_writes(1)

        with pytest.raises(TransientStoreError):
            memory_store.write(memory_line, 1)
        assert memory_store.write(memory_line, 1) is WriteOutcome.OK


class TestSqlStore:

    def test_decimals_are_lossless(self, sql_store, sql_line):
        value = Decimal("1234567890.123456789")
        sql_store.write(sql_line.with_synced_balance(value), 1)

        assert sql_store.read("BL-S").line.bal_cd == value

    def test_timestamps_come_back_utc(self, sql_store, sql_line, clock):
        line = sql_store.read("BL-S").line
        assert line.updated_at == clock.now()
        assert line.updated_at.tzinfo is not None
