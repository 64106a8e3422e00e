"""
Tests for BalanceUpdateCoordinator: applying and reversing finalized payments.

Covers:
- Balance arithmetic and legacy field synchronization
- Month entry update and history append
- Duplicate payment ids
- Reversal round-trip and its failure modes
- Retry on conflicts and transient failures
- Post-write consistency validation
"""

from decimal import Decimal

import pytest

from payables_kernel.domain.budget import HistoryEntryType, MonthStatus
from payables_kernel.exceptions import (
    BudgetLineNotFoundError,
    ConcurrentModificationConflict,
    InvalidInputError,
    MonthNotFoundError,
    PaymentAlreadyReversedError,
    PaymentNotFoundError,
    RetryExhaustedError,
    TransientStoreError,
)
from payables_services.balance_coordinator import BalanceUpdateCoordinator

TEST_ACTOR = "tester"


class TestApplyFinalizedPayment:

    def test_balance_from_derived_fallback(self, coordinator, budget_line):
        result = coordinator.apply_finalized_payment(
            budget_line.id, Decimal("250"), "PAY-1", TEST_ACTOR, "2025-03"
        )

        assert result.previous_balance == Decimal("12000")
        assert result.new_balance == Decimal("11750")
        assert not result.duplicate
        assert result.attempts == 1

    def test_stored_line_updated(self, coordinator, memory_store, budget_line):
        coordinator.apply_finalized_payment(
            budget_line.id, Decimal("250"), "PAY-1", TEST_ACTOR, "2025-03"
        )
        line = memory_store.read(budget_line.id).line

        assert set(line.legacy_balances().values()) == {Decimal("11750")}
        assert len(line.legacy_balances()) == 4
        assert line.total_spent == Decimal("250")
        assert line.current_month == "2025-03"
        assert line.month("2025-03").spent == Decimal("250")
        assert line.month("2025-03").last_transaction_ref == "PAY-1"
        assert line.month("2025-02").spent == Decimal("0")

    def test_history_record_appended(self, coordinator, memory_store, budget_line):
        result = coordinator.apply_finalized_payment(
            budget_line.id, "250", "PAY-1", TEST_ACTOR, "2025-03"
        )
        history = memory_store.read(budget_line.id).line.balance_history

        assert len(history) == 1
        record = history[0]
        assert record == result.history_record
        assert record.entry_type == HistoryEntryType.PAYMENT_FINALIZED
        assert record.previous_balance == Decimal("12000")
        assert record.payment_amount == Decimal("250")
        assert record.delta == Decimal("-250")
        assert record.new_balance == Decimal("11750")
        assert record.actor == TEST_ACTOR

    def test_month_defaults_to_clock_month(self, coordinator, budget_line):
        result = coordinator.apply_finalized_payment(budget_line.id, "10", "PAY-1")

        assert result.month_entry.month_key == "2025-01"
        assert result.history_record.actor == "system"

    def test_existing_legacy_balance_is_used(self, coordinator, memory_store):
        memory_store.put_document({
            "id": "BL-LEGACY",
            "name": "Legacy",
            "accountNo": "7000",
            "fiscalYear": 2025,
            "monthlyValues": [100] * 12,
            "currentBalance": "800",
            "balance": "950",
            "monthlyBalances": {"2025-01": {"allocated": 100, "spent": 0}},
        })
        result = coordinator.apply_finalized_payment("BL-LEGACY", "100", "PAY-1", month_key="2025-01")

        assert result.previous_balance == Decimal("800")
        assert result.new_balance == Decimal("700")
        assert result.validation.is_consistent

    def test_overspend_sets_status(self, coordinator, budget_line):
        result = coordinator.apply_finalized_payment(
            budget_line.id, "1200", "PAY-1", month_key="2025-04"
        )
        assert result.month_entry.status == MonthStatus.OVERSPENT

    def test_zero_amount_still_recorded(self, coordinator, memory_store, budget_line):
        result = coordinator.apply_finalized_payment(budget_line.id, 0, "PAY-0", month_key="2025-01")

        assert result.new_balance == result.previous_balance
        assert len(memory_store.read(budget_line.id).line.balance_history) == 1

    def test_negative_amount_rejected(self, coordinator, memory_store, budget_line):
        with pytest.raises(InvalidInputError):
            coordinator.apply_finalized_payment(budget_line.id, "-1", "PAY-1")
        assert memory_store.write_count == 0

    def test_blank_payment_id_rejected(self, coordinator, budget_line):
        with pytest.raises(InvalidInputError):
            coordinator.apply_finalized_payment(budget_line.id, "1", "")

    def test_unknown_month(self, coordinator, memory_store, budget_line):
        with pytest.raises(MonthNotFoundError):
            coordinator.apply_finalized_payment(budget_line.id, "1", "PAY-1", month_key="2030-01")
        assert memory_store.write_count == 0

    def test_unknown_line(self, coordinator):
        with pytest.raises(BudgetLineNotFoundError):
            coordinator.apply_finalized_payment("NOPE", "1", "PAY-1")

    def test_duplicate_payment_not_applied_twice(self, coordinator, memory_store, budget_line):
        first = coordinator.apply_finalized_payment(budget_line.id, "250", "PAY-1", month_key="2025-03")
        second = coordinator.apply_finalized_payment(budget_line.id, "250", "PAY-1", month_key="2025-03")

        assert second.duplicate
        assert second.new_balance == first.new_balance
        assert second.history_record == first.history_record
        line = memory_store.read(budget_line.id).line
        assert len(line.balance_history) == 1
        assert line.total_spent == Decimal("250")

    def test_sequential_payments_chain(self, coordinator, budget_line):
        coordinator.apply_finalized_payment(budget_line.id, "100", "PAY-1", month_key="2025-01")
        result = coordinator.apply_finalized_payment(budget_line.id, "50", "PAY-2", month_key="2025-01")

        assert result.previous_balance == Decimal("11900")
        assert result.new_balance == Decimal("11850")
        assert result.history_record.sequence == 2
        assert result.month_entry.spent == Decimal("150")

    def test_logs_with_context(self, coordinator, budget_line, captured_logs):
        coordinator.apply_finalized_payment(budget_line.id, "10", "PAY-LOG", TEST_ACTOR, "2025-01")

        applied = [r for r in captured_logs() if r["message"] == "payment_applied"]
        assert len(applied) == 1
        assert applied[0]["payment_id"] == "PAY-LOG"
        assert applied[0]["actor_id"] == TEST_ACTOR
        assert applied[0]["new_balance"] == "11990"


class TestReverse:

    def test_round_trip_restores_balance(self, coordinator, memory_store, budget_line):
        applied = coordinator.apply_finalized_payment(
            budget_line.id, "321.45", "PAY-1", TEST_ACTOR, "2025-02"
        )
        outcome = coordinator.reverse(budget_line.id, "PAY-1", TEST_ACTOR)

        assert outcome.restored_balance == applied.previous_balance
        assert outcome.reversed_amount == Decimal("321.45")
        line = memory_store.read(budget_line.id).line
        assert len(line.balance_history) == 2
        assert line.total_spent == Decimal("0")
        assert line.month("2025-02").spent == Decimal("0")
        assert set(line.legacy_balances().values()) == {Decimal("12000")}

    def test_original_record_untouched(self, coordinator, memory_store, budget_line):
        applied = coordinator.apply_finalized_payment(budget_line.id, "10", "PAY-1", month_key="2025-01")
        coordinator.reverse(budget_line.id, "PAY-1")
        history = memory_store.read(budget_line.id).line.balance_history

        assert history[0] == applied.history_record
        assert history[1].entry_type == HistoryEntryType.PAYMENT_REVERSED
        assert history[1].delta == Decimal("10")
        assert history[1].sequence == 2

    def test_reverse_after_later_payments(self, coordinator, budget_line):
        coordinator.apply_finalized_payment(budget_line.id, "100", "PAY-1", month_key="2025-01")
        coordinator.apply_finalized_payment(budget_line.id, "40", "PAY-2", month_key="2025-01")
        outcome = coordinator.reverse(budget_line.id, "PAY-1")

        assert outcome.previous_balance == Decimal("11860")
        assert outcome.restored_balance == Decimal("11960")
        assert outcome.month_entry.spent == Decimal("40")

    def test_unknown_payment(self, coordinator, budget_line):
        with pytest.raises(PaymentNotFoundError) as exc_info:
            coordinator.reverse(budget_line.id, "PAY-X")
        assert exc_info.value.code == "PAYMENT_NOT_FOUND"

    def test_reverse_twice(self, coordinator, memory_store, budget_line):
        coordinator.apply_finalized_payment(budget_line.id, "10", "PAY-1", month_key="2025-01")
        coordinator.reverse(budget_line.id, "PAY-1")

        with pytest.raises(PaymentAlreadyReversedError):
            coordinator.reverse(budget_line.id, "PAY-1")
        assert len(memory_store.read(budget_line.id).line.balance_history) == 2

    def test_reversed_payment_stays_finalized(self, coordinator, budget_line):
        coordinator.apply_finalized_payment(budget_line.id, "10", "PAY-1", month_key="2025-01")
        coordinator.reverse(budget_line.id, "PAY-1")
        again = coordinator.apply_finalized_payment(budget_line.id, "10", "PAY-1", month_key="2025-01")

        assert again.duplicate


class TestRetries:

    def test_transient_failure_retried(self, coordinator, memory_store, budget_line):
        memory_store.fail_next_writes(2)
        result = coordinator.apply_finalized_payment(budget_line.id, "10", "PAY-1", month_key="2025-01")

        assert result.attempts == 3
        assert len(memory_store.read(budget_line.id).line.balance_history) == 1

    def test_exhaustion_leaves_line_untouched(self, memory_store, ledger, clock, budget_line):
        coordinator = BalanceUpdateCoordinator(memory_store, ledger, clock, max_attempts=2)
        memory_store.fail_next_writes(5)

        with pytest.raises(RetryExhaustedError) as exc_info:
            coordinator.apply_finalized_payment(budget_line.id, "10", "PAY-1", month_key="2025-01")

        assert exc_info.value.attempts == 2
        assert isinstance(exc_info.value.__cause__, TransientStoreError)
        snapshot = memory_store.read(budget_line.id)
        assert snapshot.version == 1
        assert snapshot.line.balance_history == ()
        assert snapshot.line.total_spent == Decimal("0")

    def test_conflict_rereads_latest_state(self, coordinator, memory_store, budget_line):
        other = BalanceUpdateCoordinator(memory_store, max_attempts=1)
        memory_store.before_next_write(
            lambda: other.apply_finalized_payment(budget_line.id, "100", "PAY-OTHER", month_key="2025-01")
        )

        result = coordinator.apply_finalized_payment(budget_line.id, "10", "PAY-1", month_key="2025-01")

        assert result.attempts == 2
        assert result.previous_balance == Decimal("11900")
        assert result.new_balance == Decimal("11890")
        assert memory_store.conflict_count == 1
        line = memory_store.read(budget_line.id).line
        assert [r.payment_id for r in line.balance_history] == ["PAY-OTHER", "PAY-1"]
        assert line.month("2025-01").spent == Decimal("110")

    def test_conflict_exhaustion_chains_conflict(self, memory_store, ledger, clock, budget_line):
        coordinator = BalanceUpdateCoordinator(memory_store, ledger, clock, max_attempts=1)
        other = BalanceUpdateCoordinator(memory_store, ledger, clock, max_attempts=1)
        memory_store.before_next_write(
            lambda: other.apply_finalized_payment(budget_line.id, "5", "PAY-OTHER", month_key="2025-01")
        )

        with pytest.raises(RetryExhaustedError) as exc_info:
            coordinator.apply_finalized_payment(budget_line.id, "10", "PAY-1", month_key="2025-01")

        assert isinstance(exc_info.value.__cause__, ConcurrentModificationConflict)
        history = memory_store.read(budget_line.id).line.balance_history
        assert [r.payment_id for r in history] == ["PAY-OTHER"]

    def test_invalid_max_attempts(self, memory_store):
        with pytest.raises(ValueError):
            BalanceUpdateCoordinator(memory_store, max_attempts=0)


class TestPostWriteValidation:

    def test_consistent_after_write(self, coordinator, budget_line):
        result = coordinator.apply_finalized_payment(budget_line.id, "10", "PAY-1", month_key="2025-01")

        assert result.validation.is_consistent
        assert result.validation.warning is None
        assert result.validation.expected_balance == Decimal("11990")
