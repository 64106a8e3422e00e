"""
Module: payables_kernel.models.budget_line
Responsibility: ORM persistence for budget lines, their monthly balance
    entries, and the append-only balance history log.
Architecture position: Kernel > Models.  May import from db/ and utils/ only.

Invariants enforced:
    - One monthly_balances row per (budget_line_id, month_key)
      (uq_monthly_balance_month).
    - balance_history is a separate ordered log keyed by budget_line_id;
      (budget_line_id, sequence) and idempotency_key are unique, so a
      history record can never be written twice.
    - budget_lines.version is the optimistic concurrency token; it only
      ever increases.
    - No balance column on monthly_balances: the balance is derived.

Audit relevance:
    balance_history rows are never updated or deleted by application code.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from payables_kernel.db.base import AuditedBase, Base
from payables_kernel.db.types import DecimalString


class BudgetLineRow(AuditedBase):
    """
    Persisted budget line header.

    Contract:
        Carries every legacy balance field so that reads reproduce the
        ``BudgetLine`` exactly; ``version`` guards read-modify-write cycles.
    """

    __tablename__ = "budget_lines"

    __table_args__ = (
        UniqueConstraint("budget_line_id", name="uq_budget_line_id"),
    )

    budget_line_id: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    account_no: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    fiscal_year: Mapped[int] = mapped_column(Integer, nullable=False)

    # Stored as a JSON list of decimal strings
    monthly_allocations: Mapped[list] = mapped_column(JSON, nullable=False)

    current_balance_usd: Mapped[Decimal | None] = mapped_column(DecimalString(), nullable=True)
    current_balance: Mapped[Decimal | None] = mapped_column(DecimalString(), nullable=True)
    bal_cd: Mapped[Decimal | None] = mapped_column(DecimalString(), nullable=True)
    balance: Mapped[Decimal | None] = mapped_column(DecimalString(), nullable=True)
    total_spent: Mapped[Decimal] = mapped_column(DecimalString(), nullable=False)
    declared_total: Mapped[Decimal | None] = mapped_column(DecimalString(), nullable=True)

    current_month: Mapped[str | None] = mapped_column(String(7), nullable=True)
    is_active: Mapped[bool] = mapped_column(nullable=False, default=True)
    last_balance_update: Mapped[datetime | None] = mapped_column(nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)


class MonthlyBalanceRow(Base):
    """One month of a budget line's ledger."""

    __tablename__ = "monthly_balances"

    __table_args__ = (
        UniqueConstraint("budget_line_id", "month_key", name="uq_monthly_balance_month"),
    )

    budget_line_id: Mapped[str] = mapped_column(
        String(100),
        ForeignKey("budget_lines.budget_line_id"),
        nullable=False,
    )
    month_key: Mapped[str] = mapped_column(String(7), nullable=False)
    allocated: Mapped[Decimal] = mapped_column(nullable=False)
    spent: Mapped[Decimal] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    rollover_amount: Mapped[Decimal] = mapped_column(nullable=False)
    rollover_type: Mapped[str] = mapped_column(String(20), nullable=False)
    rollover_from: Mapped[str | None] = mapped_column(String(7), nullable=True)
    rollover_out_amount: Mapped[Decimal] = mapped_column(nullable=False)
    rollover_to: Mapped[str | None] = mapped_column(String(7), nullable=True)
    last_transaction_ref: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_transaction_at: Mapped[datetime | None] = mapped_column(nullable=True)


class BalanceHistoryRow(Base):
    """Append-only balance history record."""

    __tablename__ = "balance_history"

    __table_args__ = (
        UniqueConstraint("budget_line_id", "sequence", name="uq_balance_history_seq"),
        UniqueConstraint("idempotency_key", name="uq_balance_history_idem"),
        Index("idx_balance_history_payment", "budget_line_id", "payment_id"),
    )

    budget_line_id: Mapped[str] = mapped_column(
        String(100),
        ForeignKey("budget_lines.budget_line_id"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(300), nullable=False)
    entry_type: Mapped[str] = mapped_column(String(30), nullable=False)
    payment_id: Mapped[str] = mapped_column(String(100), nullable=False)
    month_key: Mapped[str | None] = mapped_column(String(7), nullable=True)
    previous_balance: Mapped[Decimal] = mapped_column(nullable=False)
    payment_amount: Mapped[Decimal] = mapped_column(nullable=False)
    delta: Mapped[Decimal] = mapped_column(nullable=False)
    new_balance: Mapped[Decimal] = mapped_column(nullable=False)
    actor: Mapped[str] = mapped_column(String(100), nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(nullable=False)
