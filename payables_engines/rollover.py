"""
Rollover Engine -- Carry a month's closing balance into a later month.

Responsibility:
    Moves the full (positive or negative) balance of one monthly entry into
    another and records markers on both sides so that a repeated request
    for the same pair is recognised instead of re-applied.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The rollover service owns
    the read-modify-write cycle around it.

Invariants enforced:
    - Idempotence per (from_month, to_month): when ``from.rollover_to`` and
      ``to.rollover_from`` already name each other, the recorded outcome is
      returned with ``applied=False`` and nothing changes.
    - A month receives at most one rollover and sends at most one.
    - Positive carry forces the source to completed; negative carry forces
      it to overspent; the target is re-classified with the ledger rule.
    - The source entry keeps its own balance; ``rollover_out_amount`` records
      what left it so aggregates do not count it twice.

Failure modes:
    - InvalidInputError if to_month is not later than from_month.
    - RolloverConflictError if either side is already linked to a
      different month.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal

from payables_engines.monthly_ledger import LedgerPolicy, classify_status
from payables_engines.tracer import traced_engine
from payables_kernel.domain.budget import (
    MonthlyBalanceEntry,
    MonthStatus,
    RolloverType,
)
from payables_kernel.domain.values import ZERO, month_ordinal
from payables_kernel.exceptions import InvalidInputError, RolloverConflictError
from payables_kernel.logging_config import get_logger

logger = get_logger("engines.rollover")


@dataclass(frozen=True)
class RolloverResult:
    """Outcome of one rollover request."""

    from_entry: MonthlyBalanceEntry
    to_entry: MonthlyBalanceEntry
    rollover_amount: Decimal
    rollover_type: RolloverType
    applied: bool


def rollover_type_for(amount: Decimal) -> RolloverType:
    if amount > 0:
        return RolloverType.POSITIVE
    if amount < 0:
        return RolloverType.NEGATIVE
    return RolloverType.NONE


class RolloverProcessor:
    """
    Apply month-to-month rollover.

    Contract:
        Pure and deterministic; returns new entries.
    """

    def __init__(self, policy: LedgerPolicy | None = None):
        self._policy = policy or LedgerPolicy()

    @traced_engine("rollover", "1.0", fingerprint_fields=("from_entry", "to_entry"))
    def rollover(
        self,
        from_entry: MonthlyBalanceEntry,
        to_entry: MonthlyBalanceEntry,
    ) -> RolloverResult:
        """
        Carry ``from_entry``'s balance into ``to_entry``.

        Preconditions:
            to_entry's month is later than from_entry's month.

        Postconditions:
            - applied=True: markers written on both entries; for a non-zero
              balance the amount moved and statuses were adjusted.
            - applied=False: the pair was already linked; entries returned
              unchanged with the recorded amount and type.

        Raises:
            InvalidInputError: Month order is wrong.
            RolloverConflictError: A side is linked to another month.
        """
        from_month, to_month = from_entry.month_key, to_entry.month_key
        if month_ordinal(to_month) <= month_ordinal(from_month):
            raise InvalidInputError(
                "to_month", to_month, f"must be later than {from_month}"
            )

        if from_entry.rollover_to == to_month and to_entry.rollover_from == from_month:
            logger.info("rollover_already_applied", extra={
                "from_month": from_month,
                "to_month": to_month,
                "rollover_amount": str(to_entry.rollover_amount),
            })
            return RolloverResult(
                from_entry=from_entry,
                to_entry=to_entry,
                rollover_amount=to_entry.rollover_amount,
                rollover_type=to_entry.rollover_type,
                applied=False,
            )

        if to_entry.rollover_from is not None and to_entry.rollover_from != from_month:
            raise RolloverConflictError(to_month, to_entry.rollover_from, from_month)
        if from_entry.rollover_to is not None and from_entry.rollover_to != to_month:
            raise RolloverConflictError(from_entry.rollover_to, from_month, from_month)

        amount = from_entry.balance
        kind = rollover_type_for(amount)

        if kind is RolloverType.NONE:
            new_from = replace(from_entry, rollover_to=to_month, rollover_out_amount=ZERO)
            new_to = replace(
                to_entry,
                rollover_from=from_month,
                rollover_amount=ZERO,
                rollover_type=RolloverType.NONE,
            )
        else:
            forced = (
                MonthStatus.COMPLETED if kind is RolloverType.POSITIVE
                else MonthStatus.OVERSPENT
            )
            new_from = replace(
                from_entry,
                rollover_to=to_month,
                rollover_out_amount=amount,
                status=forced,
            )
            new_to = replace(
                to_entry,
                rollover_from=from_month,
                rollover_amount=amount,
                rollover_type=kind,
            )
            new_to = replace(
                new_to,
                status=classify_status(
                    new_to.balance, new_to.allocated, self._policy.underspent_threshold
                ),
            )

        logger.info("rollover_applied", extra={
            "from_month": from_month,
            "to_month": to_month,
            "rollover_amount": str(amount),
            "rollover_type": kind.value,
            "to_balance": str(new_to.balance),
            "to_status": new_to.status.value,
        })
        return RolloverResult(
            from_entry=new_from,
            to_entry=new_to,
            rollover_amount=amount,
            rollover_type=kind,
            applied=True,
        )
