"""
BudgetLineSetup -- Create and deactivate budget lines.

Responsibility:
    Builds a new ``BudgetLine`` from its annual allocation array, lays out
    the monthly ledger through ``MonthlyBalanceLedger.initialize`` and
    inserts it.  Lines are never deleted; ``deactivate`` clears
    ``is_active``.

Architecture position:
    Services -- imperative shell over the ledger engine and a store.

Failure modes:
    - InvalidInputError for a non-numeric allocation or a blank id.
    - BudgetLineExistsError when the id is taken.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace
from typing import Any

from payables_engines.monthly_ledger import MonthlyBalanceLedger
from payables_kernel.domain.budget import BudgetLine
from payables_kernel.domain.clock import Clock, SystemClock
from payables_kernel.domain.values import to_decimal, to_optional_decimal
from payables_kernel.exceptions import InvalidInputError
from payables_kernel.logging_config import get_logger
from payables_services._versioned import Mutation, run_versioned_update
from payables_services.budget_store import BudgetLineSnapshot, BudgetLineStore

logger = get_logger("services.budget_setup")


class BudgetLineSetup:
    """Lifecycle of budget lines outside of payments."""

    def __init__(
        self,
        store: BudgetLineStore,
        ledger: MonthlyBalanceLedger | None = None,
        clock: Clock | None = None,
        max_attempts: int = 5,
    ):
        self._store = store
        self._ledger = ledger or MonthlyBalanceLedger()
        self._clock = clock or SystemClock()
        self._max_attempts = max_attempts

    def configure(
        self,
        budget_line_id: str,
        fiscal_year: int,
        monthly_allocations: Iterable[Any],
        name: str = "",
        account_no: str = "",
        declared_total: Any = None,
    ) -> BudgetLine:
        """
        Create a budget line with one initialized entry per month.

        Postconditions:
            - Every month entry is active with allocated = |allocation|.
            - ``current_month`` is the first month of the fiscal year.
            - Legacy balance fields are left empty; the balance resolves
              from the allocations until the first payment.
        """
        if not budget_line_id or not str(budget_line_id).strip():
            raise InvalidInputError("budget_line_id", budget_line_id, "must not be blank")

        allocations = tuple(
            to_decimal(value, "monthly_allocations") for value in monthly_allocations
        )
        line = BudgetLine(
            id=str(budget_line_id),
            fiscal_year=int(fiscal_year),
            monthly_allocations=allocations,
            name=name,
            account_no=account_no,
            declared_total=to_optional_decimal(declared_total, "declared_total"),
            updated_at=self._clock.now(),
        )
        line = self._ledger.initialize(line)
        stored = self._store.insert(line).line

        logger.info("budget_line_configured", extra={
            "budget_line_id": stored.id,
            "fiscal_year": stored.fiscal_year,
            "allocation_total": str(stored.allocation_total),
            "month_count": len(stored.monthly_balances),
        })
        return stored

    def deactivate(self, budget_line_id: str) -> BudgetLine:
        """Soft-deactivate a line.  Deactivating twice is a no-op."""

        def mutate(snapshot: BudgetLineSnapshot) -> Mutation[BudgetLine]:
            line = snapshot.line
            if not line.is_active:
                return Mutation(None, line)
            updated = replace(line, is_active=False, updated_at=self._clock.now())
            return Mutation(updated, updated)

        line, _ = run_versioned_update(
            self._store, budget_line_id, "deactivate", mutate, self._max_attempts
        )
        logger.info("budget_line_deactivated", extra={"budget_line_id": budget_line_id})
        return line
