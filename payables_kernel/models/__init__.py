"""ORM rows for the payables kernel."""

from payables_kernel.models.budget_line import (
    BalanceHistoryRow,
    BudgetLineRow,
    MonthlyBalanceRow,
)

__all__ = [
    "BalanceHistoryRow",
    "BudgetLineRow",
    "MonthlyBalanceRow",
]
