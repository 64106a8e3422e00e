"""
Consistency -- Balance-field, budget-line, update and data-quality validation.

Responsibility:
    Detects the ways a budget line's stored figures can disagree with each
    other: legacy balance fields carrying different values, month entries
    whose allocation no longer matches the line's allocation array, stored
    month balances that diverge from the derived balance, and suspicious
    updates.  Aggregates the findings into a data-quality score.

Architecture position:
    Services -- read-only validation over domain records.  The balance
    coordinator calls ``check_balance_fields`` after every write.

Invariants enforced:
    - Validation never raises for bad data; every finding is returned as a
      typed issue (blocks validity) or warning (advisory).
    - ``BalanceConsistencyWarning`` is constructed and returned, never
      raised.

Audit relevance:
    Post-write balance validation is the manual-reconciliation signal:
    a line whose legacy fields disagree after a write is logged at WARNING
    with the disagreeing fields.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from payables_kernel.domain.budget import (
    BALANCE_FIELD_PRIORITY,
    BudgetLine,
    MonthStatus,
    resolve_current_balance,
)
from payables_kernel.domain.documents import (
    budget_line_from_document,
    month_balance_divergences,
)
from payables_kernel.domain.values import ZERO, months_for_year, parse_month_key
from payables_kernel.exceptions import BalanceConsistencyWarning, PayablesError
from payables_kernel.logging_config import get_logger

logger = get_logger("services.consistency")

DEFAULT_TOLERANCE = Decimal("0.01")
EXTREME_NEGATIVE_BALANCE = Decimal("-1000000")
LARGE_CHANGE_THRESHOLD = Decimal("1000000")

# Issue codes
MISSING_FIELD = "missing_field"
BALANCE_INCONSISTENCY = "balance_inconsistency"
INVALID_DATA_TYPE = "invalid_data_type"
MONTH_ALLOCATION_MISMATCH = "month_allocation_mismatch"
MONTH_BALANCE_DIVERGENCE = "month_balance_divergence"
MONTH_NOT_TRACKED = "month_not_tracked"
NEGATIVE_SPENDING = "negative_spending"

# Warning codes
NEGATIVE_BALANCE_STATUS = "negative_balance_status"
MONTHLY_VALUES_INCONSISTENCY = "monthly_values_inconsistency"
MONTHLY_VALUES_INCOMPLETE = "monthly_values_incomplete"
EXTREME_NEGATIVE = "extreme_negative_balance"
LARGE_CHANGE = "large_balance_change"

_DATA_ISSUE_CODES = frozenset({
    INVALID_DATA_TYPE,
    MONTH_ALLOCATION_MISMATCH,
    MONTH_BALANCE_DIVERGENCE,
    MONTH_NOT_TRACKED,
})


@dataclass(frozen=True)
class BalanceDiscrepancy:
    """One legacy balance field that does not hold the expected value."""

    field: str
    value: Decimal | None
    expected: Decimal


@dataclass(frozen=True)
class BalanceValidation:
    """Post-write comparison of every balance-representing field."""

    budget_line_id: str
    expected_balance: Decimal
    discrepancies: tuple[BalanceDiscrepancy, ...] = ()

    @property
    def is_consistent(self) -> bool:
        return not self.discrepancies

    @property
    def warning(self) -> BalanceConsistencyWarning | None:
        if not self.discrepancies:
            return None
        return BalanceConsistencyWarning(self.budget_line_id, self.discrepancies)


@dataclass(frozen=True)
class ValidationFinding:
    """An issue or warning raised by validation."""

    code: str
    message: str
    field: str | None = None
    details: dict[str, Any] = dataclasses.field(default_factory=dict)


@dataclass(frozen=True)
class ValidationReport:
    """Findings for one budget line."""

    budget_line_id: str
    issues: tuple[ValidationFinding, ...] = ()
    warnings: tuple[ValidationFinding, ...] = ()

    @property
    def is_valid(self) -> bool:
        return not self.issues

    def codes(self) -> set[str]:
        return {f.code for f in self.issues} | {f.code for f in self.warnings}


@dataclass(frozen=True)
class UpdateImpact:
    balance_change: Decimal
    spend_change: Decimal
    status_changes: dict[str, tuple[MonthStatus, MonthStatus]]


@dataclass(frozen=True)
class UpdateValidation:
    """Findings for a before/after pair of the same budget line."""

    budget_line_id: str
    impact: UpdateImpact
    issues: tuple[ValidationFinding, ...] = ()
    warnings: tuple[ValidationFinding, ...] = ()

    @property
    def is_valid(self) -> bool:
        return not self.issues


@dataclass(frozen=True)
class Recommendation:
    kind: str
    message: str
    priority: str


@dataclass(frozen=True)
class DataQualityReport:
    """Portfolio-level data quality."""

    total_lines: int
    valid_lines: int
    overall_score: int
    completeness: int
    consistency: int
    accuracy: int
    integrity: int
    missing_fields: int
    balance_issues: int
    data_issues: int
    critical_issues: int
    total_warnings: int
    recommendations: tuple[Recommendation, ...] = ()
    reports: tuple[ValidationReport, ...] = ()


# ---------------------------------------------------------------------------
# Post-write balance check
# ---------------------------------------------------------------------------


def check_balance_fields(
    line: BudgetLine,
    expected: Decimal,
    tolerance: Decimal = DEFAULT_TOLERANCE,
) -> BalanceValidation:
    """
    Compare every legacy balance field against ``expected``.

    Postconditions:
        A field that is missing, or differs from ``expected`` by more than
        ``tolerance``, is reported.  When any is reported the finding is
        logged at WARNING.
    """
    discrepancies: list[BalanceDiscrepancy] = []
    for name in BALANCE_FIELD_PRIORITY:
        value = getattr(line, name)
        if value is None or abs(value - expected) > tolerance:
            discrepancies.append(BalanceDiscrepancy(field=name, value=value, expected=expected))

    validation = BalanceValidation(
        budget_line_id=line.id,
        expected_balance=expected,
        discrepancies=tuple(discrepancies),
    )
    if discrepancies:
        logger.warning("balance_fields_inconsistent", extra={
            "budget_line_id": line.id,
            "expected_balance": str(expected),
            "fields": [d.field for d in discrepancies],
            "error_code": BalanceConsistencyWarning.code,
        })
    return validation


# ---------------------------------------------------------------------------
# Budget-line validation
# ---------------------------------------------------------------------------


def validate_budget_line(
    line: BudgetLine,
    month_key: str | None = None,
    tolerance: Decimal = DEFAULT_TOLERANCE,
    months_per_year: int = 12,
) -> ValidationReport:
    """
    Validate one budget line.

    Issues (make the line invalid):
        missing name / account number; legacy balance fields disagreeing;
        the month entry's allocation not matching the allocation array;
        a requested month that is not tracked.

    Warnings:
        negative balance while the month is not overspent; allocation sum
        differing from the declared total; fewer or more allocations than
        months; balance below -1,000,000.
    """
    issues: list[ValidationFinding] = []
    warnings: list[ValidationFinding] = []

    for attr, label in (("name", "name"), ("account_no", "accountNo")):
        if not getattr(line, attr):
            issues.append(ValidationFinding(
                MISSING_FIELD, f"Required field {label} is missing", field=label
            ))

    populated = line.legacy_balances()
    if populated and max(populated.values()) - min(populated.values()) > tolerance:
        issues.append(ValidationFinding(
            BALANCE_INCONSISTENCY,
            "Multiple balance fields have different values",
            details={k: str(v) for k, v in populated.items()},
        ))

    key = month_key or line.current_month
    entry = line.monthly_balances.get(key) if key else None
    if month_key is not None and entry is None:
        issues.append(ValidationFinding(
            MONTH_NOT_TRACKED, f"Month {month_key} is not tracked", field="monthlyBalances"
        ))
    if entry is not None:
        year, month = parse_month_key(entry.month_key)
        keys = months_for_year(line.fiscal_year, months_per_year)
        if entry.month_key in keys:
            index = keys.index(entry.month_key)
            expected_allocated = (
                abs(line.monthly_allocations[index])
                if index < len(line.monthly_allocations) else ZERO
            )
            if entry.allocated != expected_allocated:
                issues.append(ValidationFinding(
                    MONTH_ALLOCATION_MISMATCH,
                    f"Month {entry.month_key} allocation does not match monthly values",
                    field="monthlyBalances",
                    details={
                        "allocated": str(entry.allocated),
                        "expected": str(expected_allocated),
                    },
                ))

    balance, source = resolve_current_balance(line)
    if balance < 0 and entry is not None and entry.status is not MonthStatus.OVERSPENT:
        warnings.append(ValidationFinding(
            NEGATIVE_BALANCE_STATUS,
            "Negative balance detected but status is not overspent",
            details={"balance": str(balance), "status": entry.status.value},
        ))

    if line.declared_total is not None:
        difference = abs(line.allocation_total - line.declared_total)
        if difference > tolerance:
            warnings.append(ValidationFinding(
                MONTHLY_VALUES_INCONSISTENCY,
                "Monthly values sum does not match allocated amount",
                field="monthlyValues",
                details={
                    "monthly_sum": str(line.allocation_total),
                    "allocated_amount": str(line.declared_total),
                    "difference": str(difference),
                },
            ))

    if len(line.monthly_allocations) != months_per_year:
        warnings.append(ValidationFinding(
            MONTHLY_VALUES_INCOMPLETE,
            f"Expected {months_per_year} monthly values, found {len(line.monthly_allocations)}",
            field="monthlyValues",
        ))

    if balance < EXTREME_NEGATIVE_BALANCE:
        warnings.append(ValidationFinding(
            EXTREME_NEGATIVE,
            "Extremely negative balance detected",
            details={"balance": str(balance), "source": source},
        ))

    return ValidationReport(
        budget_line_id=line.id, issues=tuple(issues), warnings=tuple(warnings)
    )


def validate_document(
    document: dict[str, Any],
    month_key: str | None = None,
    tolerance: Decimal = DEFAULT_TOLERANCE,
) -> ValidationReport:
    """
    Validate a legacy document, including what decoding would hide.

    Adds ``invalid_data_type`` when ``monthlyValues`` is not a list or a
    field cannot be decoded, and ``month_balance_divergence`` for months
    whose stored balance disagrees with the derived one.
    """
    line_id = str(document.get("id", ""))
    extra: list[ValidationFinding] = []

    monthly_values = document.get("monthlyValues")
    if monthly_values is not None and not isinstance(monthly_values, (list, tuple)):
        extra.append(ValidationFinding(
            INVALID_DATA_TYPE,
            "monthlyValues should be an array",
            field="monthlyValues",
            details={"actual_type": type(monthly_values).__name__},
        ))

    try:
        line = budget_line_from_document(document)
        divergences = month_balance_divergences(document)
    except (PayablesError, ValueError, KeyError) as exc:
        extra.append(ValidationFinding(INVALID_DATA_TYPE, f"Document cannot be decoded: {exc}"))
        return ValidationReport(budget_line_id=line_id, issues=tuple(extra))

    for key, (stored, derived) in sorted(divergences.items()):
        extra.append(ValidationFinding(
            MONTH_BALANCE_DIVERGENCE,
            f"Stored balance for {key} differs from allocated + rollover - spent",
            field="monthlyBalances",
            details={"month": key, "stored": str(stored), "derived": str(derived)},
        ))

    report = validate_budget_line(line, month_key, tolerance)
    return ValidationReport(
        budget_line_id=report.budget_line_id,
        issues=tuple(extra) + report.issues,
        warnings=report.warnings,
    )


# ---------------------------------------------------------------------------
# Update validation
# ---------------------------------------------------------------------------


def validate_update(
    before: BudgetLine,
    after: BudgetLine,
    large_change: Decimal = LARGE_CHANGE_THRESHOLD,
) -> UpdateValidation:
    """Describe and sanity-check the change from ``before`` to ``after``."""
    old_balance, _ = resolve_current_balance(before)
    new_balance, _ = resolve_current_balance(after)
    status_changes = {
        key: (before.monthly_balances[key].status, entry.status)
        for key, entry in after.monthly_balances.items()
        if key in before.monthly_balances
        and before.monthly_balances[key].status is not entry.status
    }
    impact = UpdateImpact(
        balance_change=new_balance - old_balance,
        spend_change=after.total_spent - before.total_spent,
        status_changes=status_changes,
    )

    issues: list[ValidationFinding] = []
    warnings: list[ValidationFinding] = []
    if after.total_spent < 0:
        issues.append(ValidationFinding(
            NEGATIVE_SPENDING, "Total spent cannot be negative", field="totalSpent",
            details={"total_spent": str(after.total_spent)},
        ))
    for key, entry in after.monthly_balances.items():
        if entry.spent < 0:
            issues.append(ValidationFinding(
                NEGATIVE_SPENDING, f"Spent for {key} cannot be negative",
                field="monthlyBalances", details={"month": key},
            ))
    if abs(impact.balance_change) > large_change:
        warnings.append(ValidationFinding(
            LARGE_CHANGE, "Large balance change detected",
            details={"change": str(impact.balance_change)},
        ))

    return UpdateValidation(
        budget_line_id=after.id,
        impact=impact,
        issues=tuple(issues),
        warnings=tuple(warnings),
    )


# ---------------------------------------------------------------------------
# Data quality
# ---------------------------------------------------------------------------


def _category_score(count: int, weight: int) -> int:
    return max(0, 100 - count * weight)


def data_quality_report(
    lines: Iterable[BudgetLine | ValidationReport],
) -> DataQualityReport:
    """
    Score a set of budget lines (or reports already produced for them).

    Scores:
        overall = valid / total x 100 (rounded half-up; 100 for no lines),
        completeness = 100 - 10 per missing field,
        consistency = 100 - 20 per balance inconsistency,
        accuracy = 100 - 25 per data issue,
        integrity = 100 - 30 per issue of any kind,
        each floored at 0.
    """
    reports = tuple(
        item if isinstance(item, ValidationReport) else validate_budget_line(item)
        for item in lines
    )
    total = len(reports)
    valid = sum(1 for r in reports if r.is_valid)

    all_issues = [issue for r in reports for issue in r.issues]
    missing = sum(1 for i in all_issues if i.code == MISSING_FIELD)
    balance = sum(1 for i in all_issues if i.code == BALANCE_INCONSISTENCY)
    data = sum(1 for i in all_issues if i.code in _DATA_ISSUE_CODES)
    critical = len(all_issues)
    total_warnings = sum(len(r.warnings) for r in reports)

    if total:
        overall = int(
            (Decimal(valid) / Decimal(total) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        )
    else:
        overall = 100

    recommendations: list[Recommendation] = []
    if overall < 80:
        recommendations.append(Recommendation(
            "improvement",
            "Data quality needs improvement. Review and fix validation issues.",
            "high",
        ))
    if missing:
        recommendations.append(Recommendation(
            "completeness",
            f"Fix {missing} missing field(s) to improve data completeness.",
            "medium",
        ))
    if balance:
        recommendations.append(Recommendation(
            "consistency",
            f"Resolve {balance} balance inconsistency(ies) to improve data consistency.",
            "high",
        ))
    if critical:
        recommendations.append(Recommendation(
            "integrity",
            f"Address {critical} critical issue(s) to improve data integrity.",
            "critical",
        ))

    report = DataQualityReport(
        total_lines=total,
        valid_lines=valid,
        overall_score=overall,
        completeness=_category_score(missing, 10),
        consistency=_category_score(balance, 20),
        accuracy=_category_score(data, 25),
        integrity=_category_score(critical, 30),
        missing_fields=missing,
        balance_issues=balance,
        data_issues=data,
        critical_issues=critical,
        total_warnings=total_warnings,
        recommendations=tuple(recommendations),
        reports=reports,
    )
    logger.info("data_quality_report_generated", extra={
        "total_lines": total,
        "valid_lines": valid,
        "overall_score": overall,
        "critical_issues": critical,
    })
    return report
