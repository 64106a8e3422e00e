"""
Monthly Balance Ledger Engine -- Per-month allocation, spend, and status.

Responsibility:
    Builds the twelve monthly balance entries of a budget line and applies
    or reverts a transaction's spend on one entry, re-classifying its
    status each time.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Timestamps are passed in
    by services; this module never reads a clock.

Invariants enforced:
    - Status priority: overspent (balance < 0), completed (balance == 0),
      underspent (balance > allocated x threshold), else active.  An entry
      can never be both overspent and underspent.
    - ``spent`` never drops below 0 on revert.
    - A non-positive amount changes nothing but ``last_transaction_at``.

Failure modes:
    - InvalidInputError for non-numeric amounts.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Any

from payables_engines.tracer import traced_engine
from payables_kernel.domain.budget import (
    BudgetLine,
    MonthlyBalanceEntry,
    MonthStatus,
)
from payables_kernel.domain.values import ZERO, months_for_year, to_decimal
from payables_kernel.logging_config import get_logger

logger = get_logger("engines.monthly_ledger")


@dataclass(frozen=True)
class LedgerPolicy:
    """Classification threshold and ledger length."""

    underspent_threshold: Decimal = Decimal("0.8")
    months_per_year: int = 12


def classify_status(
    balance: Decimal,
    allocated: Decimal,
    underspent_threshold: Decimal = Decimal("0.8"),
) -> MonthStatus:
    """Four-way status, evaluated in priority order."""
    if balance < 0:
        return MonthStatus.OVERSPENT
    if balance == 0:
        return MonthStatus.COMPLETED
    if balance > allocated * underspent_threshold:
        return MonthStatus.UNDERSPENT
    return MonthStatus.ACTIVE


class MonthlyBalanceLedger:
    """
    Transform monthly balance entries.

    Contract:
        Every method returns new records; inputs are never modified.
    """

    def __init__(self, policy: LedgerPolicy | None = None):
        self._policy = policy or LedgerPolicy()

    @property
    def policy(self) -> LedgerPolicy:
        return self._policy

    def classify(self, entry: MonthlyBalanceEntry) -> MonthStatus:
        return classify_status(
            entry.balance, entry.allocated, self._policy.underspent_threshold
        )

    @traced_engine("monthly_ledger.initialize", "1.0")
    def initialize(self, budget_line: BudgetLine) -> BudgetLine:
        """
        Populate ``monthly_balances`` from ``monthly_allocations``.

        Postconditions:
            - One entry per month of the fiscal year, keyed
              ``{fiscal_year}-MM``.
            - allocated = |allocation|, spent = 0, status active.  Missing
              allocations count as 0.
            - ``current_month`` is the first month.
        """
        keys = months_for_year(budget_line.fiscal_year, self._policy.months_per_year)
        allocations = budget_line.monthly_allocations
        balances: dict[str, MonthlyBalanceEntry] = {}
        for index, key in enumerate(keys):
            allocated = abs(allocations[index]) if index < len(allocations) else ZERO
            balances[key] = MonthlyBalanceEntry(month_key=key, allocated=allocated)

        logger.info("monthly_ledger_initialized", extra={
            "budget_line_id": budget_line.id,
            "fiscal_year": budget_line.fiscal_year,
            "month_count": len(balances),
            "allocation_total": str(budget_line.allocation_total),
        })
        return replace(budget_line, monthly_balances=balances, current_month=keys[0])

    @traced_engine("monthly_ledger.apply", "1.0", fingerprint_fields=("amount", "transaction_ref"))
    def apply_transaction(
        self,
        entry: MonthlyBalanceEntry,
        amount: Any,
        transaction_ref: str | None,
        at: datetime,
    ) -> MonthlyBalanceEntry:
        """
        Add ``amount`` to the entry's spend.

        Postconditions:
            - amount > 0: spent grows by amount, status re-classified,
              last transaction ref and timestamp set.
            - amount <= 0: only ``last_transaction_at`` changes.
        """
        value = to_decimal(amount, "amount")
        if value <= 0:
            logger.debug("monthly_ledger_noop_amount", extra={
                "month_key": entry.month_key,
                "amount": str(value),
            })
            return replace(entry, last_transaction_at=at)

        spent = entry.spent + value
        updated = replace(
            entry,
            spent=spent,
            last_transaction_ref=transaction_ref,
            last_transaction_at=at,
        )
        updated = replace(updated, status=self.classify(updated))

        logger.info("monthly_ledger_applied", extra={
            "month_key": entry.month_key,
            "amount": str(value),
            "spent": str(updated.spent),
            "balance": str(updated.balance),
            "status": updated.status.value,
        })
        return updated

    @traced_engine("monthly_ledger.revert", "1.0", fingerprint_fields=("amount", "transaction_ref"))
    def revert_transaction(
        self,
        entry: MonthlyBalanceEntry,
        amount: Any,
        transaction_ref: str | None,
        at: datetime,
    ) -> MonthlyBalanceEntry:
        """
        Take ``amount`` back out of the entry's spend (floor 0).

        Postconditions:
            Status re-classified; non-positive amounts only stamp the time.
        """
        value = to_decimal(amount, "amount")
        if value <= 0:
            return replace(entry, last_transaction_at=at)

        spent = max(ZERO, entry.spent - value)
        updated = replace(
            entry,
            spent=spent,
            last_transaction_ref=transaction_ref,
            last_transaction_at=at,
        )
        updated = replace(updated, status=self.classify(updated))

        logger.info("monthly_ledger_reverted", extra={
            "month_key": entry.month_key,
            "amount": str(value),
            "spent": str(updated.spent),
            "balance": str(updated.balance),
            "status": updated.status.value,
        })
        return updated
