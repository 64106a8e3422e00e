"""
SqlBudgetLineStore -- Relational implementation of the BudgetLineStore protocol.

Responsibility:
    Persists budget lines in ``budget_lines``, their months in
    ``monthly_balances`` and their balance history in ``balance_history``
    through SQLAlchemy 2.0 ORM sessions.

Architecture position:
    Services -- imperative shell over ``payables_kernel.db`` and
    ``payables_kernel.models``.

Invariants enforced:
    - Optimistic versioning by conditional
      ``UPDATE budget_lines ... WHERE version = :expected``; zero affected
      rows means CONFLICT and nothing else is written.
    - Header, months and new history rows share one ``session_scope`` and
      therefore commit or roll back together.
    - History rows are insert-only and carry a unique idempotency key.

Failure modes:
    - BudgetLineNotFoundError / BudgetLineExistsError as in the protocol.
    - TransientStoreError wrapping ``OperationalError`` (locked database,
      dropped connection).  ``IntegrityError`` on the history key is
      reported as CONFLICT.
    - ValueError when a write would rewrite stored history.
"""

from __future__ import annotations

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from payables_kernel.db.engine import get_session_factory, session_scope
from payables_kernel.domain.budget import (
    BalanceHistoryRecord,
    BudgetLine,
    HistoryEntryType,
    MonthlyBalanceEntry,
    MonthStatus,
    RolloverType,
)
from payables_kernel.exceptions import (
    BudgetLineExistsError,
    BudgetLineNotFoundError,
    TransientStoreError,
)
from payables_kernel.domain.values import to_decimal
from payables_kernel.logging_config import get_logger
from payables_kernel.models.budget_line import (
    BalanceHistoryRow,
    BudgetLineRow,
    MonthlyBalanceRow,
)
from payables_kernel.utils.idempotency import generate_history_key
from payables_services.budget_store import (
    BudgetLineSnapshot,
    WriteOutcome,
    new_history_records,
)

logger = get_logger("services.sql_store")


# ---------------------------------------------------------------------------
# Row <-> domain mapping
# ---------------------------------------------------------------------------


def _entry_from_row(row: MonthlyBalanceRow) -> MonthlyBalanceEntry:
    return MonthlyBalanceEntry(
        month_key=row.month_key,
        allocated=row.allocated,
        spent=row.spent,
        status=MonthStatus(row.status),
        rollover_amount=row.rollover_amount,
        rollover_type=RolloverType(row.rollover_type),
        rollover_from=row.rollover_from,
        rollover_out_amount=row.rollover_out_amount,
        rollover_to=row.rollover_to,
        last_transaction_ref=row.last_transaction_ref,
        last_transaction_at=row.last_transaction_at,
    )


def _copy_entry_to_row(entry: MonthlyBalanceEntry, row: MonthlyBalanceRow) -> None:
    row.allocated = entry.allocated
    row.spent = entry.spent
    row.status = entry.status.value
    row.rollover_amount = entry.rollover_amount
    row.rollover_type = entry.rollover_type.value
    row.rollover_from = entry.rollover_from
    row.rollover_out_amount = entry.rollover_out_amount
    row.rollover_to = entry.rollover_to
    row.last_transaction_ref = entry.last_transaction_ref
    row.last_transaction_at = entry.last_transaction_at


def _record_from_row(row: BalanceHistoryRow) -> BalanceHistoryRecord:
    return BalanceHistoryRecord(
        sequence=row.sequence,
        budget_line_id=row.budget_line_id,
        entry_type=HistoryEntryType(row.entry_type),
        payment_id=row.payment_id,
        month_key=row.month_key,
        previous_balance=row.previous_balance,
        payment_amount=row.payment_amount,
        delta=row.delta,
        new_balance=row.new_balance,
        actor=row.actor,
        timestamp=row.recorded_at,
    )


def _row_from_record(record: BalanceHistoryRecord) -> BalanceHistoryRow:
    return BalanceHistoryRow(
        budget_line_id=record.budget_line_id,
        sequence=record.sequence,
        idempotency_key=generate_history_key(
            record.budget_line_id, record.entry_type, record.payment_id
        ),
        entry_type=record.entry_type.value,
        payment_id=record.payment_id,
        month_key=record.month_key,
        previous_balance=record.previous_balance,
        payment_amount=record.payment_amount,
        delta=record.delta,
        new_balance=record.new_balance,
        actor=record.actor,
        recorded_at=record.timestamp,
    )


def _header_values(line: BudgetLine) -> dict:
    return {
        "name": line.name,
        "account_no": line.account_no,
        "fiscal_year": line.fiscal_year,
        "monthly_allocations": [str(v) for v in line.monthly_allocations],
        "current_balance_usd": line.current_balance_usd,
        "current_balance": line.current_balance,
        "bal_cd": line.bal_cd,
        "balance": line.balance,
        "total_spent": line.total_spent,
        "declared_total": line.declared_total,
        "current_month": line.current_month,
        "is_active": line.is_active,
        "last_balance_update": line.updated_at,
    }


class SqlBudgetLineStore:
    """
    BudgetLineStore backed by SQLAlchemy.

    Contract:
        Each call opens its own ``session_scope``; the store holds no
        session between calls and is safe to share.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        actor: str = "system",
    ):
        self._factory = session_factory
        self._actor = actor

    def _sessions(self) -> sessionmaker[Session]:
        return self._factory or get_session_factory()

    # -- reads ------------------------------------------------------------

    def _load(self, session: Session, budget_line_id: str) -> BudgetLineSnapshot:
        header = session.scalars(
            select(BudgetLineRow).where(BudgetLineRow.budget_line_id == budget_line_id)
        ).one_or_none()
        if header is None:
            raise BudgetLineNotFoundError(budget_line_id)

        months = session.scalars(
            select(MonthlyBalanceRow)
            .where(MonthlyBalanceRow.budget_line_id == budget_line_id)
            .order_by(MonthlyBalanceRow.month_key)
        ).all()
        history = session.scalars(
            select(BalanceHistoryRow)
            .where(BalanceHistoryRow.budget_line_id == budget_line_id)
            .order_by(BalanceHistoryRow.sequence)
        ).all()

        line = BudgetLine(
            id=header.budget_line_id,
            fiscal_year=header.fiscal_year,
            monthly_allocations=tuple(
                to_decimal(v, "monthly_allocations") for v in header.monthly_allocations
            ),
            name=header.name,
            account_no=header.account_no,
            monthly_balances={row.month_key: _entry_from_row(row) for row in months},
            balance_history=tuple(_record_from_row(row) for row in history),
            current_balance_usd=header.current_balance_usd,
            current_balance=header.current_balance,
            bal_cd=header.bal_cd,
            balance=header.balance,
            total_spent=header.total_spent,
            declared_total=header.declared_total,
            current_month=header.current_month,
            is_active=header.is_active,
            updated_at=header.last_balance_update,
        )
        return BudgetLineSnapshot(line=line, version=header.version)

    def read(self, budget_line_id: str) -> BudgetLineSnapshot:
        with session_scope(self._sessions()) as session:
            return self._load(session, budget_line_id)

    def list_ids(self) -> list[str]:
        with session_scope(self._sessions()) as session:
            return list(
                session.scalars(
                    select(BudgetLineRow.budget_line_id).order_by(BudgetLineRow.budget_line_id)
                )
            )

    # -- writes -----------------------------------------------------------

    def insert(self, line: BudgetLine) -> BudgetLineSnapshot:
        try:
            with session_scope(self._sessions()) as session:
                exists = session.scalar(
                    select(func.count())
                    .select_from(BudgetLineRow)
                    .where(BudgetLineRow.budget_line_id == line.id)
                )
                if exists:
                    raise BudgetLineExistsError(line.id)
                session.add(
                    BudgetLineRow(
                        budget_line_id=line.id,
                        version=1,
                        created_by=self._actor,
                        **_header_values(line),
                    )
                )
                session.flush()
                for entry in line.monthly_balances.values():
                    row = MonthlyBalanceRow(budget_line_id=line.id, month_key=entry.month_key)
                    _copy_entry_to_row(entry, row)
                    session.add(row)
                for record in line.balance_history:
                    session.add(_row_from_record(record))
        except OperationalError as exc:
            raise TransientStoreError(line.id, str(exc.orig)) from exc

        logger.info("budget_line_inserted", extra={"budget_line_id": line.id})
        return self.read(line.id)

    def write(self, line: BudgetLine, expected_version: int) -> WriteOutcome:
        try:
            with session_scope(self._sessions()) as session:
                outcome = self._write_in_session(session, line, expected_version)
        except OperationalError as exc:
            logger.warning("sql_store_transient_failure", extra={"budget_line_id": line.id})
            raise TransientStoreError(line.id, str(exc.orig)) from exc
        except IntegrityError:
            logger.info("sql_store_history_conflict", extra={"budget_line_id": line.id})
            return WriteOutcome.CONFLICT
        return outcome

    def _write_in_session(
        self, session: Session, line: BudgetLine, expected_version: int
    ) -> WriteOutcome:
        result = session.execute(
            update(BudgetLineRow)
            .where(
                BudgetLineRow.budget_line_id == line.id,
                BudgetLineRow.version == expected_version,
            )
            .values(
                version=expected_version + 1,
                updated_by=self._actor,
                **_header_values(line),
            )
        )
        if result.rowcount == 0:
            actual = session.scalar(
                select(BudgetLineRow.version).where(BudgetLineRow.budget_line_id == line.id)
            )
            if actual is None:
                raise BudgetLineNotFoundError(line.id)
            logger.info("budget_store_version_conflict", extra={
                "budget_line_id": line.id,
                "expected_version": expected_version,
                "actual_version": actual,
            })
            return WriteOutcome.CONFLICT

        rows = {
            row.month_key: row
            for row in session.scalars(
                select(MonthlyBalanceRow).where(MonthlyBalanceRow.budget_line_id == line.id)
            )
        }
        for key, entry in line.monthly_balances.items():
            row = rows.get(key)
            if row is None:
                row = MonthlyBalanceRow(budget_line_id=line.id, month_key=key)
                session.add(row)
            _copy_entry_to_row(entry, row)

        stored = tuple(
            _record_from_row(row)
            for row in session.scalars(
                select(BalanceHistoryRow)
                .where(BalanceHistoryRow.budget_line_id == line.id)
                .order_by(BalanceHistoryRow.sequence)
            )
        )
        added = new_history_records(stored, line.balance_history, line.id)
        for record in added:
            session.add(_row_from_record(record))
        session.flush()

        logger.debug("budget_store_written", extra={
            "budget_line_id": line.id,
            "version": expected_version + 1,
            "history_added": len(added),
        })
        return WriteOutcome.OK
