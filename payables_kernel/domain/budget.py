"""
Budget -- Immutable budget line, monthly balance entry, and history records.

Responsibility:
    Defines the typed records the ledger engines transform and the stores
    persist: ``BudgetLine``, ``MonthlyBalanceEntry`` and
    ``BalanceHistoryRecord``, plus the single ordered lookup that decides a
    line's "current balance" when several legacy fields carry one.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Engines produce new instances with ``dataclasses.replace``; nothing in
    this module mutates in place.

Invariants enforced:
    - ``MonthlyBalanceEntry.balance`` is derived
      (``allocated + rollover_amount - spent``) and never stored.
    - ``BudgetLine.balance_history`` is append-only: helpers only ever return
      a longer tuple.
    - ``resolve_current_balance`` is the ONLY place the legacy field priority
      is encoded (``BALANCE_FIELD_PRIORITY``).

Failure modes:
    - MonthNotFoundError from ``BudgetLine.month`` for untracked month keys.

Audit relevance:
    Balance history records carry previous/new balance, delta, actor and
    timestamp, which is sufficient to replay a line's balance from its
    opening value.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum

from payables_kernel.domain.values import ONE_HUNDRED, ZERO
from payables_kernel.exceptions import MonthNotFoundError


class MonthStatus(str, Enum):
    """Classification of a monthly balance entry."""

    ACTIVE = "active"
    OVERSPENT = "overspent"
    UNDERSPENT = "underspent"
    COMPLETED = "completed"


class RolloverType(str, Enum):
    """Sign of a carried balance."""

    POSITIVE = "positive"
    NEGATIVE = "negative"
    NONE = "none"


class HistoryEntryType(str, Enum):
    """Kind of balance history record."""

    PAYMENT_FINALIZED = "PAYMENT_FINALIZED"
    PAYMENT_REVERSED = "PAYMENT_REVERSED"


@dataclass(frozen=True)
class MonthlyBalanceEntry:
    """
    One ledger record per budget line per calendar month.

    Contract:
        ``rollover_amount`` is what was carried *into* this month;
        ``rollover_out_amount`` is what this month carried *out*.  The two
        markers ``rollover_from`` / ``rollover_to`` make rollover idempotent.

    Guarantees:
        - ``balance`` is recomputed on every access.
        - ``utilization_rate`` is 0 when nothing is allocated.
    """

    month_key: str
    allocated: Decimal
    spent: Decimal = ZERO
    status: MonthStatus = MonthStatus.ACTIVE
    rollover_amount: Decimal = ZERO
    rollover_type: RolloverType = RolloverType.NONE
    rollover_from: str | None = None
    rollover_out_amount: Decimal = ZERO
    rollover_to: str | None = None
    last_transaction_ref: str | None = None
    last_transaction_at: datetime | None = None

    @property
    def balance(self) -> Decimal:
        return self.allocated + self.rollover_amount - self.spent

    @property
    def utilization_rate(self) -> Decimal:
        """Spent as a percentage of allocated."""
        if self.allocated == 0:
            return ZERO
        return self.spent / self.allocated * ONE_HUNDRED

    @property
    def is_overspent(self) -> bool:
        return self.balance < 0

    @property
    def overspend_amount(self) -> Decimal:
        balance = self.balance
        return -balance if balance < 0 else ZERO

    @property
    def rollover_out_type(self) -> RolloverType:
        if self.rollover_out_amount > 0:
            return RolloverType.POSITIVE
        if self.rollover_out_amount < 0:
            return RolloverType.NEGATIVE
        return RolloverType.NONE


@dataclass(frozen=True)
class BalanceHistoryRecord:
    """One append-only entry in a budget line's balance log."""

    sequence: int
    budget_line_id: str
    entry_type: HistoryEntryType
    payment_id: str
    month_key: str | None
    previous_balance: Decimal
    payment_amount: Decimal
    delta: Decimal
    new_balance: Decimal
    actor: str
    timestamp: datetime


# Legacy balance fields, highest priority first.
BALANCE_FIELD_PRIORITY: tuple[str, ...] = (
    "current_balance_usd",
    "current_balance",
    "bal_cd",
    "balance",
)

DERIVED_BALANCE_SOURCE = "derived"


@dataclass(frozen=True)
class BudgetLine:
    """
    A budget line with its monthly ledger and balance history.

    Contract:
        Mutated only by the balance coordinator and the rollover service,
        which build new instances and hand them to a store.  Lines are never
        deleted; ``is_active`` is cleared instead.

    Non-goals:
        Does not compute statuses or balances beyond the derived accessors;
        that is the ledger engines' job.
    """

    id: str
    fiscal_year: int
    monthly_allocations: tuple[Decimal, ...]
    name: str = ""
    account_no: str = ""
    monthly_balances: dict[str, MonthlyBalanceEntry] = field(default_factory=dict)
    balance_history: tuple[BalanceHistoryRecord, ...] = ()
    current_balance_usd: Decimal | None = None
    current_balance: Decimal | None = None
    bal_cd: Decimal | None = None
    balance: Decimal | None = None
    total_spent: Decimal = ZERO
    declared_total: Decimal | None = None
    current_month: str | None = None
    is_active: bool = True
    updated_at: datetime | None = None

    @property
    def allocation_total(self) -> Decimal:
        """Sum of absolute monthly allocations."""
        return sum((abs(v) for v in self.monthly_allocations), ZERO)

    def month(self, month_key: str) -> MonthlyBalanceEntry:
        """
        Return the entry for ``month_key``.

        Raises:
            MonthNotFoundError: If the month is not tracked on this line.
        """
        try:
            return self.monthly_balances[month_key]
        except KeyError:
            raise MonthNotFoundError(self.id, month_key) from None

    def with_months(self, *entries: MonthlyBalanceEntry) -> BudgetLine:
        """Copy of this line with the given month entries replaced."""
        balances = dict(self.monthly_balances)
        for entry in entries:
            balances[entry.month_key] = entry
        return replace(self, monthly_balances=balances)

    def with_history(self, record: BalanceHistoryRecord) -> BudgetLine:
        return replace(self, balance_history=self.balance_history + (record,))

    def with_synced_balance(self, value: Decimal) -> BudgetLine:
        """Copy with every legacy balance field set to ``value``."""
        return replace(
            self,
            current_balance_usd=value,
            current_balance=value,
            bal_cd=value,
            balance=value,
        )

    def next_sequence(self) -> int:
        if not self.balance_history:
            return 1
        return self.balance_history[-1].sequence + 1

    def history_for(
        self, payment_id: str, entry_type: HistoryEntryType
    ) -> BalanceHistoryRecord | None:
        """Most recent history record for ``payment_id`` of ``entry_type``."""
        for record in reversed(self.balance_history):
            if record.payment_id == payment_id and record.entry_type == entry_type:
                return record
        return None

    def legacy_balances(self) -> dict[str, Decimal]:
        """Populated legacy balance fields, in priority order."""
        values: dict[str, Decimal] = {}
        for name in BALANCE_FIELD_PRIORITY:
            value = getattr(self, name)
            if value is not None:
                values[name] = value
        return values


def resolve_current_balance(line: BudgetLine) -> tuple[Decimal, str]:
    """
    Resolve a budget line's current balance through the legacy field chain.

    Postconditions:
        Returns ``(balance, source)`` where source is the field name that
        supplied the value, or ``"derived"`` when no field is populated and
        the balance is ``sum(|allocations|) - |total_spent|``.
    """
    for name in BALANCE_FIELD_PRIORITY:
        value = getattr(line, name)
        if value is not None:
            return value, name
    return line.allocation_total - abs(line.total_spent), DERIVED_BALANCE_SOURCE
