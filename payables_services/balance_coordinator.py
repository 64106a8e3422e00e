"""
BalanceUpdateCoordinator -- Apply and reverse finalized payments on a budget line.

Responsibility:
    Owns the only write path that moves a budget line's balance.  For a
    finalized payment it resolves the current balance, subtracts the
    payment, updates the month entry through the ledger engine, brings every
    legacy balance field into agreement and appends a history record, all in
    one versioned write.  Reversal undoes a payment the same way and logs
    its own history record.

Architecture position:
    Services -- imperative shell.  Calls ``MonthlyBalanceLedger`` (pure) and
    a ``BudgetLineStore`` (I/O); time comes from the injected Clock.

Invariants enforced:
    - new_balance == previous_balance - payment_amount.
    - After a write every legacy balance field holds new_balance.
    - History is append-only; a payment id is finalized at most once and
      reversed at most once.
    - Conflicts and transient store failures are retried with a fresh read
      up to ``max_attempts``; exhaustion leaves the stored line untouched.

Failure modes:
    - InvalidInputError: negative amount or empty payment id.
    - BudgetLineNotFoundError / MonthNotFoundError: unknown line or month.
    - PaymentNotFoundError / PaymentAlreadyReversedError: on reversal.
    - RetryExhaustedError: every attempt was refused by the store.

Audit relevance:
    Every applied or reversed payment is logged with the budget line,
    payment, actor and month bound into the log context.  A post-write
    disagreement between balance fields is logged and returned as a
    ``BalanceConsistencyWarning`` payload.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any

from payables_engines.monthly_ledger import MonthlyBalanceLedger
from payables_kernel.domain.budget import (
    BalanceHistoryRecord,
    BudgetLine,
    HistoryEntryType,
    MonthlyBalanceEntry,
    resolve_current_balance,
)
from payables_kernel.domain.clock import Clock, SystemClock
from payables_kernel.domain.values import ZERO, to_decimal
from payables_kernel.exceptions import (
    InvalidInputError,
    PaymentAlreadyReversedError,
    PaymentNotFoundError,
)
from payables_kernel.logging_config import LogContext, get_logger
from payables_services._versioned import Mutation, run_versioned_update
from payables_services.budget_store import BudgetLineSnapshot, BudgetLineStore
from payables_services.consistency import BalanceValidation, check_balance_fields

logger = get_logger("services.balance_coordinator")

DEFAULT_ACTOR = "system"


def _expected_balance(stored: BudgetLine, record: BalanceHistoryRecord) -> Decimal:
    """Balance the stored line should carry after ``record``.

    When later writes have landed since, the line's own resolved balance is
    the reference.
    """
    if stored.balance_history:
        last = stored.balance_history[-1]
        if (last.sequence, last.payment_id, last.entry_type) == (
            record.sequence, record.payment_id, record.entry_type
        ):
            return record.new_balance
    return resolve_current_balance(stored)[0]


@dataclass(frozen=True)
class BalanceUpdateResult:
    """Outcome of ``apply_finalized_payment``."""

    budget_line_id: str
    payment_id: str
    previous_balance: Decimal
    new_balance: Decimal
    month_entry: MonthlyBalanceEntry | None
    validation: BalanceValidation
    history_record: BalanceHistoryRecord
    duplicate: bool = False
    attempts: int = 1


@dataclass(frozen=True)
class ReversalOutcome:
    """Outcome of ``reverse``."""

    budget_line_id: str
    payment_id: str
    reversed_amount: Decimal
    previous_balance: Decimal
    restored_balance: Decimal
    month_entry: MonthlyBalanceEntry | None
    validation: BalanceValidation
    history_record: BalanceHistoryRecord
    attempts: int = 1


class BalanceUpdateCoordinator:
    """
    Versioned read-modify-write of budget line balances.

    Contract:
        Stateless apart from its collaborators; safe to share between
        threads.  Each call works from a fresh read of the store.

    Non-goals:
        Computes no taxes; callers pass the budget impact already expressed
        in the reporting currency.
    """

    def __init__(
        self,
        store: BudgetLineStore,
        ledger: MonthlyBalanceLedger | None = None,
        clock: Clock | None = None,
        max_attempts: int = 5,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._store = store
        self._ledger = ledger or MonthlyBalanceLedger()
        self._clock = clock or SystemClock()
        self._max_attempts = max_attempts

    # ------------------------------------------------------------------
    # Apply
    # ------------------------------------------------------------------

    def apply_finalized_payment(
        self,
        budget_line_id: str,
        payment_amount: Any,
        payment_id: str,
        actor: str | None = None,
        month_key: str | None = None,
    ) -> BalanceUpdateResult:
        """
        Deduct a finalized payment from a budget line.

        Preconditions:
            payment_amount >= 0, in the reporting currency.

        Postconditions:
            - Stored legacy balance fields all equal ``new_balance``.
            - The month entry (``month_key``, or the clock's month) carries
              the payment in its spend with a re-classified status.
            - ``total_spent`` grew by the amount.
            - Exactly one PAYMENT_FINALIZED record was appended.
            - A payment id already finalized on the line is not applied
              again; its recorded outcome is returned with duplicate=True.

        Raises:
            InvalidInputError, MonthNotFoundError, BudgetLineNotFoundError,
            RetryExhaustedError.
        """
        amount = to_decimal(payment_amount, "payment_amount")
        if amount < 0:
            raise InvalidInputError("payment_amount", payment_amount, "must not be negative")
        if not payment_id:
            raise InvalidInputError("payment_id", payment_id, "must not be empty")
        actor = actor or DEFAULT_ACTOR

        with LogContext.bind(
            budget_line_id=budget_line_id,
            payment_id=payment_id,
            actor_id=actor,
            month_key=month_key,
        ):
            def mutate(snapshot: BudgetLineSnapshot) -> Mutation[tuple[BalanceHistoryRecord, bool]]:
                line = snapshot.line
                existing = line.history_for(payment_id, HistoryEntryType.PAYMENT_FINALIZED)
                if existing is not None:
                    return Mutation(None, (existing, True))
                record, updated = self._apply(line, amount, payment_id, actor, month_key)
                return Mutation(updated, (record, False))

            (record, duplicate), attempts = run_versioned_update(
                self._store,
                budget_line_id,
                "apply_finalized_payment",
                mutate,
                self._max_attempts,
            )

            stored = self._store.read(budget_line_id).line
            validation = check_balance_fields(stored, _expected_balance(stored, record))
            entry = stored.monthly_balances.get(record.month_key) if record.month_key else None

            if duplicate:
                logger.info("payment_already_applied", extra={
                    "budget_line_id": budget_line_id,
                    "payment_id": payment_id,
                    "sequence": record.sequence,
                })
            else:
                logger.info("payment_applied", extra={
                    "budget_line_id": budget_line_id,
                    "payment_id": payment_id,
                    "payment_amount": str(amount),
                    "previous_balance": str(record.previous_balance),
                    "new_balance": str(record.new_balance),
                    "month_key": record.month_key,
                    "attempts": attempts,
                    "consistent": validation.is_consistent,
                })

        return BalanceUpdateResult(
            budget_line_id=budget_line_id,
            payment_id=payment_id,
            previous_balance=record.previous_balance,
            new_balance=record.new_balance,
            month_entry=entry,
            validation=validation,
            history_record=record,
            duplicate=duplicate,
            attempts=attempts,
        )

    def _month_for(self, requested: str | None) -> str:
        if requested:
            return requested
        return self._clock.month_key()

    def _apply(
        self,
        line: BudgetLine,
        amount: Decimal,
        payment_id: str,
        actor: str,
        month_key: str | None,
    ) -> tuple[BalanceHistoryRecord, BudgetLine]:
        now = self._clock.now()
        key = self._month_for(month_key)
        entry = self._ledger.apply_transaction(line.month(key), amount, payment_id, now)

        previous, source = resolve_current_balance(line)
        new_balance = previous - amount
        record = BalanceHistoryRecord(
            sequence=line.next_sequence(),
            budget_line_id=line.id,
            entry_type=HistoryEntryType.PAYMENT_FINALIZED,
            payment_id=payment_id,
            month_key=key,
            previous_balance=previous,
            payment_amount=amount,
            delta=-amount,
            new_balance=new_balance,
            actor=actor,
            timestamp=now,
        )
        updated = replace(
            line.with_months(entry).with_synced_balance(new_balance).with_history(record),
            total_spent=line.total_spent + amount,
            current_month=key,
            updated_at=now,
        )
        logger.debug("balance_resolved", extra={
            "budget_line_id": line.id,
            "balance_source": source,
            "previous_balance": str(previous),
        })
        return record, updated

    # ------------------------------------------------------------------
    # Reverse
    # ------------------------------------------------------------------

    def reverse(
        self,
        budget_line_id: str,
        payment_id: str,
        actor: str | None = None,
    ) -> ReversalOutcome:
        """
        Undo a finalized payment.

        Postconditions:
            - The payment amount is added back to the balance; every legacy
              field holds the restored balance.
            - Month spend and ``total_spent`` drop by the amount (floor 0).
            - Exactly one PAYMENT_REVERSED record was appended; the original
              record is unchanged.

        Raises:
            PaymentNotFoundError: No PAYMENT_FINALIZED record for the id.
            PaymentAlreadyReversedError: A PAYMENT_REVERSED record exists.
            RetryExhaustedError: Every attempt was refused by the store.
        """
        actor = actor or DEFAULT_ACTOR

        with LogContext.bind(
            budget_line_id=budget_line_id,
            payment_id=payment_id,
            actor_id=actor,
        ):
            def mutate(snapshot: BudgetLineSnapshot) -> Mutation[BalanceHistoryRecord]:
                line = snapshot.line
                original = line.history_for(payment_id, HistoryEntryType.PAYMENT_FINALIZED)
                if original is None:
                    raise PaymentNotFoundError(budget_line_id, payment_id)
                if line.history_for(payment_id, HistoryEntryType.PAYMENT_REVERSED) is not None:
                    raise PaymentAlreadyReversedError(budget_line_id, payment_id)
                record, updated = self._reverse(line, original, actor)
                return Mutation(updated, record)

            record, attempts = run_versioned_update(
                self._store,
                budget_line_id,
                "reverse_payment",
                mutate,
                self._max_attempts,
            )

            stored = self._store.read(budget_line_id).line
            validation = check_balance_fields(stored, _expected_balance(stored, record))
            entry = stored.monthly_balances.get(record.month_key) if record.month_key else None

            logger.info("payment_reversed", extra={
                "budget_line_id": budget_line_id,
                "payment_id": payment_id,
                "reversed_amount": str(record.payment_amount),
                "restored_balance": str(record.new_balance),
                "attempts": attempts,
            })

        return ReversalOutcome(
            budget_line_id=budget_line_id,
            payment_id=payment_id,
            reversed_amount=record.payment_amount,
            previous_balance=record.previous_balance,
            restored_balance=record.new_balance,
            month_entry=entry,
            validation=validation,
            history_record=record,
            attempts=attempts,
        )

    def _reverse(
        self,
        line: BudgetLine,
        original: BalanceHistoryRecord,
        actor: str,
    ) -> tuple[BalanceHistoryRecord, BudgetLine]:
        now = self._clock.now()
        amount = original.payment_amount

        updated = line
        if original.month_key and original.month_key in line.monthly_balances:
            entry = self._ledger.revert_transaction(
                line.monthly_balances[original.month_key],
                amount,
                original.payment_id,
                now,
            )
            updated = updated.with_months(entry)

        previous, _ = resolve_current_balance(line)
        restored = previous + amount
        record = BalanceHistoryRecord(
            sequence=line.next_sequence(),
            budget_line_id=line.id,
            entry_type=HistoryEntryType.PAYMENT_REVERSED,
            payment_id=original.payment_id,
            month_key=original.month_key,
            previous_balance=previous,
            payment_amount=amount,
            delta=amount,
            new_balance=restored,
            actor=actor,
            timestamp=now,
        )
        updated = replace(
            updated.with_synced_balance(restored).with_history(record),
            total_spent=max(ZERO, line.total_spent - amount),
            updated_at=now,
        )
        return record, updated
