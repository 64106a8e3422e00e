"""
Documents -- Codec between legacy budget-line documents and ``BudgetLine``.

Responsibility:
    Budget lines were historically stored as loosely-shaped key/value
    documents whose balance lived under several names (``currentBalanceUSD``,
    ``currentBalance``, ``balCD``, ``balance``) and whose spend lived under
    two (``totalSpent``, ``totalSpendToDate``).  This module maps those
    documents onto the typed ``BudgetLine`` and back.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Used by the in-memory store and by document validation.

Invariants enforced:
    - A month document's stored ``balance`` is never trusted on decode; the
      entry's balance is always derived.  ``month_balance_divergences``
      reports the months where the stored figure disagrees.
    - On encode, every legacy balance field and both spend fields are
      written, so a document never exposes disagreeing values that the
      typed line did not carry.

Failure modes:
    - InvalidInputError for non-numeric amounts or malformed month keys.
    - KeyError when the document has no ``id``.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from payables_kernel.domain.budget import (
    BalanceHistoryRecord,
    BudgetLine,
    HistoryEntryType,
    MonthlyBalanceEntry,
    MonthStatus,
    RolloverType,
)
from payables_kernel.domain.values import (
    ZERO,
    parse_month_key,
    to_decimal,
    to_optional_decimal,
)

DEFAULT_FISCAL_YEAR = 2025

# Typed attribute -> legacy document key
_LEGACY_BALANCE_KEYS: dict[str, str] = {
    "current_balance_usd": "currentBalanceUSD",
    "current_balance": "currentBalance",
    "bal_cd": "balCD",
    "balance": "balance",
}


_UNDATED = datetime.min.replace(tzinfo=timezone.utc)


def _parse_timestamp(value: Any) -> datetime | None:
    """Read a stored timestamp as an aware UTC datetime. Naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _last_transaction(data: dict[str, Any]) -> tuple[str | None, datetime | None]:
    """
    Split ``lastTransaction`` into (ref, at).

    Older month documents hold the time of the last payment there rather
    than a reference; such values only feed ``last_transaction_at``.
    """
    marker = data.get("lastTransaction")
    at = _parse_timestamp(data.get("lastTransactionAt"))
    if isinstance(marker, (datetime, date)):
        return None, at or _parse_timestamp(marker)
    return (str(marker) if marker not in (None, "") else None), at


def _format_timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _infer_fiscal_year(document: dict[str, Any]) -> int:
    if document.get("fiscalYear") is not None:
        return int(document["fiscalYear"])
    balances = document.get("monthlyBalances") or {}
    if balances:
        return parse_month_key(sorted(balances)[0])[0]
    if document.get("currentMonth"):
        return parse_month_key(document["currentMonth"])[0]
    return DEFAULT_FISCAL_YEAR


# ---------------------------------------------------------------------------
# Month entries
# ---------------------------------------------------------------------------


def month_entry_from_document(key: str, data: dict[str, Any]) -> MonthlyBalanceEntry:
    """Decode one ``monthlyBalances`` value.  ``balance`` is ignored."""
    parse_month_key(key)
    last_ref, last_at = _last_transaction(data)
    return MonthlyBalanceEntry(
        month_key=key,
        allocated=abs(to_decimal(data.get("allocated", 0), "allocated")),
        spent=to_decimal(data.get("spent", 0), "spent"),
        status=MonthStatus(data.get("status") or MonthStatus.ACTIVE.value),
        rollover_amount=to_decimal(data.get("rolloverAmount", 0), "rolloverAmount"),
        rollover_type=RolloverType(data.get("rolloverType") or RolloverType.NONE.value),
        rollover_from=data.get("rolloverFrom"),
        rollover_out_amount=to_decimal(
            data.get("rolloverOutAmount", 0), "rolloverOutAmount"
        ),
        rollover_to=data.get("rolloverTo"),
        last_transaction_ref=last_ref,
        last_transaction_at=last_at,
    )


def month_entry_to_document(entry: MonthlyBalanceEntry) -> dict[str, Any]:
    """Encode a month entry, writing the derived figures alongside."""
    return {
        "allocated": entry.allocated,
        "spent": entry.spent,
        "balance": entry.balance,
        "status": entry.status.value,
        "rolloverAmount": entry.rollover_amount,
        "rolloverType": entry.rollover_type.value,
        "rolloverFrom": entry.rollover_from,
        "rolloverOutAmount": entry.rollover_out_amount,
        "rolloverTo": entry.rollover_to,
        "lastTransaction": entry.last_transaction_ref,
        "lastTransactionAt": _format_timestamp(entry.last_transaction_at),
        "isOverspent": entry.is_overspent,
        "overspendAmount": entry.overspend_amount,
        "utilizationRate": entry.utilization_rate,
    }


def month_balance_divergences(
    document: dict[str, Any],
) -> dict[str, tuple[Decimal, Decimal]]:
    """
    Months whose stored ``balance`` disagrees with the derived balance.

    Returns:
        ``{month_key: (stored, derived)}``; months without a stored balance
        are skipped.
    """
    divergences: dict[str, tuple[Decimal, Decimal]] = {}
    for key, data in (document.get("monthlyBalances") or {}).items():
        if data.get("balance") is None:
            continue
        stored = to_decimal(data["balance"], "balance")
        derived = month_entry_from_document(key, data).balance
        if stored != derived:
            divergences[key] = (stored, derived)
    return divergences


# ---------------------------------------------------------------------------
# History records
# ---------------------------------------------------------------------------


def history_record_from_document(
    budget_line_id: str, sequence: int, data: dict[str, Any]
) -> BalanceHistoryRecord:
    """Decode one balance history document."""
    previous = to_decimal(data.get("previousBalance", 0), "previousBalance")
    new = to_decimal(data.get("newBalance", 0), "newBalance")
    return BalanceHistoryRecord(
        sequence=int(data.get("sequence", sequence)),
        budget_line_id=budget_line_id,
        entry_type=HistoryEntryType(data.get("type", HistoryEntryType.PAYMENT_FINALIZED.value)),
        payment_id=str(data["paymentId"]),
        month_key=data.get("month"),
        previous_balance=previous,
        payment_amount=to_decimal(data.get("paymentAmount", 0), "paymentAmount"),
        delta=to_decimal(data["delta"], "delta") if data.get("delta") is not None else new - previous,
        new_balance=new,
        actor=str(data.get("userId") or "system"),
        timestamp=_parse_timestamp(data.get("date")) or _UNDATED,
    )


def history_record_to_document(record: BalanceHistoryRecord) -> dict[str, Any]:
    return {
        "sequence": record.sequence,
        "type": record.entry_type.value,
        "paymentId": record.payment_id,
        "month": record.month_key,
        "previousBalance": record.previous_balance,
        "paymentAmount": record.payment_amount,
        "delta": record.delta,
        "newBalance": record.new_balance,
        "userId": record.actor,
        "date": _format_timestamp(record.timestamp),
    }


# ---------------------------------------------------------------------------
# Budget lines
# ---------------------------------------------------------------------------


def budget_line_from_document(document: dict[str, Any]) -> BudgetLine:
    """
    Decode a legacy budget-line document.

    Preconditions:
        ``document["id"]`` is present.

    Postconditions:
        - Legacy balance fields that are absent or empty decode to None, so
          ``resolve_current_balance`` can fall through to the next one.
        - ``total_spent`` prefers ``totalSpent`` over ``totalSpendToDate``.
        - An embedded ``balanceHistory`` array, if present, is decoded in
          order.
    """
    line_id = str(document["id"])
    monthly_values = document.get("monthlyValues") or []
    if not isinstance(monthly_values, (list, tuple)):
        monthly_values = []
    allocations = tuple(
        to_decimal(v if v is not None else 0, "monthlyValues") for v in monthly_values
    )

    balances = {
        key: month_entry_from_document(key, data)
        for key, data in (document.get("monthlyBalances") or {}).items()
    }

    legacy = {
        attr: to_optional_decimal(document.get(key), key)
        for attr, key in _LEGACY_BALANCE_KEYS.items()
    }

    spent = to_optional_decimal(document.get("totalSpent"), "totalSpent")
    if spent is None:
        spent = to_optional_decimal(document.get("totalSpendToDate"), "totalSpendToDate")

    declared = to_optional_decimal(document.get("allocatedAmount"), "allocatedAmount")
    if declared is None:
        declared = to_optional_decimal(document.get("totalBudget"), "totalBudget")

    history = tuple(
        history_record_from_document(line_id, index, data)
        for index, data in enumerate(document.get("balanceHistory") or [], start=1)
    )

    return BudgetLine(
        id=line_id,
        fiscal_year=_infer_fiscal_year(document),
        monthly_allocations=allocations,
        name=document.get("name") or "",
        account_no=document.get("accountNo") or "",
        monthly_balances=balances,
        balance_history=history,
        total_spent=spent if spent is not None else ZERO,
        declared_total=declared,
        current_month=document.get("currentMonth"),
        is_active=bool(document.get("isActive", True)),
        updated_at=_parse_timestamp(document.get("lastBalanceUpdate")),
        **legacy,
    )


def budget_line_to_document(line: BudgetLine, include_history: bool = False) -> dict[str, Any]:
    """Encode a budget line into the legacy document shape."""
    document: dict[str, Any] = {
        "id": line.id,
        "name": line.name,
        "accountNo": line.account_no,
        "fiscalYear": line.fiscal_year,
        "monthlyValues": list(line.monthly_allocations),
        "monthlyBalances": {
            key: month_entry_to_document(entry)
            for key, entry in sorted(line.monthly_balances.items())
        },
        "totalSpent": line.total_spent,
        "totalSpendToDate": line.total_spent,
        "allocatedAmount": line.declared_total,
        "currentMonth": line.current_month,
        "isActive": line.is_active,
        "lastBalanceUpdate": _format_timestamp(line.updated_at),
    }
    for attr, key in _LEGACY_BALANCE_KEYS.items():
        document[key] = getattr(line, attr)
    if include_history:
        document["balanceHistory"] = [
            history_record_to_document(r) for r in line.balance_history
        ]
    return document
