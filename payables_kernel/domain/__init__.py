"""
Pure domain layer.

Budget records, value helpers, the legacy document codec, and the clock.
Nothing here touches SQLAlchemy, the database, or I/O (SystemClock aside).
All records are immutable.
"""

from payables_kernel.domain.budget import (
    BALANCE_FIELD_PRIORITY,
    BalanceHistoryRecord,
    BudgetLine,
    HistoryEntryType,
    MonthlyBalanceEntry,
    MonthStatus,
    RolloverType,
    resolve_current_balance,
)
from payables_kernel.domain.clock import Clock, DeterministicClock, SystemClock

__all__ = [
    "BALANCE_FIELD_PRIORITY",
    "BalanceHistoryRecord",
    "BudgetLine",
    "Clock",
    "DeterministicClock",
    "HistoryEntryType",
    "MonthStatus",
    "MonthlyBalanceEntry",
    "RolloverType",
    "SystemClock",
    "resolve_current_balance",
]
