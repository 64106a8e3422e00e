"""
Budget Performance Engine -- Summary metrics and risk level for a budget line.

Responsibility:
    Reduces a budget line's monthly balance entries to totals, status
    counts, averages, rollover totals and a coarse risk level.

Architecture position:
    Engines -- pure calculation layer, zero I/O, read-only over entries.

Invariants enforced:
    - Risk thresholds compare the overspent ratio exactly (``Fraction``):
      HIGH > 1/2, MEDIUM > 1/4, LOW > 0, NONE otherwise.  3 of 12 is LOW.
    - Empty input gives an all-zero summary with NONE; never an error.
    - ``total_remaining`` subtracts what each month carried out, so a rolled
      balance is counted once, in the month that received it.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from fractions import Fraction

from payables_engines.tracer import traced_engine
from payables_kernel.domain.budget import MonthlyBalanceEntry, MonthStatus, RolloverType
from payables_kernel.domain.values import DEFAULT_AMOUNT_PLACES, ZERO, quantize_amount
from payables_kernel.logging_config import get_logger

logger = get_logger("engines.performance")


class RiskLevel(str, Enum):
    """Overspend frequency classification."""

    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    NONE = "NONE"


def calculate_risk_level(months_overspent: int, month_count: int) -> RiskLevel:
    """Classify the overspent-month ratio; boundaries are exclusive."""
    if month_count <= 0 or months_overspent <= 0:
        return RiskLevel.NONE
    ratio = Fraction(months_overspent, month_count)
    if ratio > Fraction(1, 2):
        return RiskLevel.HIGH
    if ratio > Fraction(1, 4):
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


@dataclass(frozen=True)
class PerformanceSummary:
    """Aggregate view of a budget line's months."""

    month_count: int
    total_allocated: Decimal
    total_spent: Decimal
    total_remaining: Decimal
    months_overspent: int
    months_underspent: int
    months_on_target: int
    months_completed: int
    average_monthly_spending: Decimal
    average_utilization: Decimal
    total_positive_rollover: Decimal
    total_negative_rollover: Decimal
    is_over_budget: bool
    over_budget_amount: Decimal
    risk_level: RiskLevel

    @property
    def overspent_ratio(self) -> Fraction:
        if self.month_count == 0:
            return Fraction(0)
        return Fraction(self.months_overspent, self.month_count)


class BudgetPerformanceAggregator:
    """Summarize monthly entries."""

    def __init__(self, amount_places: int = DEFAULT_AMOUNT_PLACES):
        self._places = amount_places

    @traced_engine("performance", "1.0")
    def summarize(self, entries: Iterable[MonthlyBalanceEntry]) -> PerformanceSummary:
        """
        Reduce ``entries`` to a ``PerformanceSummary``.

        Postconditions:
            Totals are exact sums; averages are quantized to the configured
            places.  ``months_on_target`` counts active months.
        """
        items = list(entries)
        count = len(items)

        total_allocated = sum((e.allocated for e in items), ZERO)
        total_spent = sum((e.spent for e in items), ZERO)
        total_remaining = sum((e.balance - e.rollover_out_amount for e in items), ZERO)

        by_status = {status: 0 for status in MonthStatus}
        for e in items:
            by_status[e.status] += 1

        positive = sum(
            (e.rollover_amount for e in items if e.rollover_type is RolloverType.POSITIVE),
            ZERO,
        )
        negative = sum(
            (-e.rollover_amount for e in items if e.rollover_type is RolloverType.NEGATIVE),
            ZERO,
        )

        if count:
            average_spending = quantize_amount(total_spent / count, self._places)
            average_utilization = quantize_amount(
                sum((e.utilization_rate for e in items), ZERO) / count, self._places
            )
        else:
            average_spending = quantize_amount(ZERO, self._places)
            average_utilization = quantize_amount(ZERO, self._places)

        over_budget = total_spent > total_allocated
        summary = PerformanceSummary(
            month_count=count,
            total_allocated=total_allocated,
            total_spent=total_spent,
            total_remaining=total_remaining,
            months_overspent=by_status[MonthStatus.OVERSPENT],
            months_underspent=by_status[MonthStatus.UNDERSPENT],
            months_on_target=by_status[MonthStatus.ACTIVE],
            months_completed=by_status[MonthStatus.COMPLETED],
            average_monthly_spending=average_spending,
            average_utilization=average_utilization,
            total_positive_rollover=positive,
            total_negative_rollover=negative,
            is_over_budget=over_budget,
            over_budget_amount=total_spent - total_allocated if over_budget else ZERO,
            risk_level=calculate_risk_level(by_status[MonthStatus.OVERSPENT], count),
        )

        logger.info("budget_performance_summarized", extra={
            "month_count": count,
            "total_spent": str(total_spent),
            "months_overspent": summary.months_overspent,
            "risk_level": summary.risk_level.value,
        })
        return summary
