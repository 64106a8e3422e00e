"""
Typed Exception Hierarchy for the Payables Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers catch by type, never by message text.  Every exception class has a
``code`` class attribute (machine-readable, API-safe) and carries the data
that caused it as attributes.

Example:
    try:
        coordinator.reverse(line_id, payment_id, actor="ops")
    except PaymentNotFoundError as e:
        api_response(code=e.code, payment_id=e.payment_id)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from PayablesError:

    PayablesError (base)
    |
    +-- InvalidInputError
    |   +-- InvalidPercentageError
    |   +-- InvalidRateError
    |
    +-- BudgetLineError
    |   +-- BudgetLineNotFoundError
    |   +-- BudgetLineExistsError
    |   +-- MonthNotFoundError
    |   +-- RolloverConflictError
    |
    +-- ReversalError
    |   +-- PaymentNotFoundError
    |   +-- PaymentAlreadyReversedError
    |
    +-- ConcurrencyError
    |   +-- ConcurrentModificationConflict
    |   +-- TransientStoreError
    |   +-- RetryExhaustedError
    |
    +-- BalanceConsistencyWarning  (returned as a payload, never raised)

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                         | When Raised
-------------|------------------------------|------------------------------------
Input        | INVALID_INPUT                | Non-numeric / negative where not allowed
             | INVALID_PERCENTAGE           | Partial percentage outside (0, 100]
             | INVALID_RATE                 | Rate negative or > 100% under reject policy
-------------|------------------------------|------------------------------------
Budget line  | BUDGET_LINE_NOT_FOUND        | No stored line for the id
             | BUDGET_LINE_EXISTS           | Insert of an id already stored
             | MONTH_NOT_FOUND              | Month key not tracked on the line
             | ROLLOVER_CONFLICT            | Target month already received a rollover
-------------|------------------------------|------------------------------------
Reversal     | PAYMENT_NOT_FOUND            | No finalized history record for payment
             | PAYMENT_ALREADY_REVERSED     | Reversal record already present
-------------|------------------------------|------------------------------------
Concurrency  | CONCURRENT_MODIFICATION      | Optimistic version moved under a write
             | TRANSIENT_STORE_FAILURE      | Store write failed, safe to retry
             | RETRY_EXHAUSTED              | Bounded retries used up (fatal)
-------------|------------------------------|------------------------------------
Validation   | BALANCE_CONSISTENCY          | Balance fields disagree after a write

Retry policy: only ConcurrencyError subclasses other than RetryExhaustedError
are retried, and only by the services that own the read-modify-write cycle.
Calculation errors are never retried (same input, same result).
===============================================================================
"""

from __future__ import annotations

from typing import Any


class PayablesError(Exception):
    """
    Base exception for all payables kernel errors.

    All subclasses must have a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "PAYABLES_ERROR"


# Input-related exceptions


class InvalidInputError(PayablesError):
    """An input value is non-numeric, negative, or otherwise not permitted."""

    code: str = "INVALID_INPUT"

    def __init__(self, field: str, value: Any, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field}={value!r}: {reason}")


class InvalidPercentageError(InvalidInputError):
    """Partial-payment percentage outside (0, 100]."""

    code: str = "INVALID_PERCENTAGE"

    def __init__(self, percentage: Any):
        self.percentage = percentage
        super().__init__(
            "percentage", percentage, "must be greater than 0 and at most 100"
        )


class InvalidRateError(InvalidInputError):
    """A tax rate cannot be normalized into [0, 1] under the reject policy."""

    code: str = "INVALID_RATE"

    def __init__(self, rate_name: str, value: Any, reason: str):
        self.rate_name = rate_name
        super().__init__(rate_name, value, reason)


# Budget-line exceptions


class BudgetLineError(PayablesError):
    """Base exception for budget-line errors."""

    code: str = "BUDGET_LINE_ERROR"


class BudgetLineNotFoundError(BudgetLineError):
    """No budget line stored under the given id."""

    code: str = "BUDGET_LINE_NOT_FOUND"

    def __init__(self, budget_line_id: str):
        self.budget_line_id = budget_line_id
        super().__init__(f"Budget line not found: {budget_line_id}")


class BudgetLineExistsError(BudgetLineError):
    """A budget line with the given id is already stored."""

    code: str = "BUDGET_LINE_EXISTS"

    def __init__(self, budget_line_id: str):
        self.budget_line_id = budget_line_id
        super().__init__(f"Budget line already exists: {budget_line_id}")


class MonthNotFoundError(BudgetLineError):
    """The budget line has no monthly balance entry for the month key."""

    code: str = "MONTH_NOT_FOUND"

    def __init__(self, budget_line_id: str, month_key: str):
        self.budget_line_id = budget_line_id
        self.month_key = month_key
        super().__init__(
            f"Month {month_key} not tracked on budget line {budget_line_id}"
        )


class RolloverConflictError(BudgetLineError):
    """Target month already received a rollover from a different month."""

    code: str = "ROLLOVER_CONFLICT"

    def __init__(self, to_month: str, existing_from: str, requested_from: str):
        self.to_month = to_month
        self.existing_from = existing_from
        self.requested_from = requested_from
        super().__init__(
            f"Month {to_month} already received a rollover from {existing_from}; "
            f"refusing rollover from {requested_from}"
        )


# Reversal-related exceptions


class ReversalError(PayablesError):
    """Base exception for reversal-related errors."""

    code: str = "REVERSAL_ERROR"


class PaymentNotFoundError(ReversalError):
    """No finalized balance history record matches the payment id."""

    code: str = "PAYMENT_NOT_FOUND"

    def __init__(self, budget_line_id: str, payment_id: str):
        self.budget_line_id = budget_line_id
        self.payment_id = payment_id
        super().__init__(
            f"Payment {payment_id} not found in balance history of {budget_line_id}"
        )


class PaymentAlreadyReversedError(ReversalError):
    """A reversal record already exists for the payment id."""

    code: str = "PAYMENT_ALREADY_REVERSED"

    def __init__(self, budget_line_id: str, payment_id: str):
        self.budget_line_id = budget_line_id
        self.payment_id = payment_id
        super().__init__(
            f"Payment {payment_id} on {budget_line_id} has already been reversed"
        )


# Concurrency-related exceptions


class ConcurrencyError(PayablesError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrentModificationConflict(ConcurrencyError):
    """Optimistic version check failed during a ledger write."""

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(self, budget_line_id: str, expected_version: int, actual_version: int | None):
        self.budget_line_id = budget_line_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Budget line {budget_line_id} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )


class TransientStoreError(ConcurrencyError):
    """The store failed a write in a way that is safe to retry."""

    code: str = "TRANSIENT_STORE_FAILURE"

    def __init__(self, budget_line_id: str, detail: str):
        self.budget_line_id = budget_line_id
        self.detail = detail
        super().__init__(f"Transient write failure on {budget_line_id}: {detail}")


class RetryExhaustedError(ConcurrencyError):
    """Bounded retries were used up; the budget line was left unmodified."""

    code: str = "RETRY_EXHAUSTED"

    def __init__(self, budget_line_id: str, operation: str, attempts: int):
        self.budget_line_id = budget_line_id
        self.operation = operation
        self.attempts = attempts
        super().__init__(
            f"{operation} on budget line {budget_line_id} failed after "
            f"{attempts} attempts"
        )


# Validation payloads


class BalanceConsistencyWarning(PayablesError, Warning):
    """Balance-representing fields disagree after a write.

    Returned inside a validation payload and logged; the write has already
    happened, so this is never raised by the coordinator.
    """

    code: str = "BALANCE_CONSISTENCY"

    def __init__(self, budget_line_id: str, discrepancies: tuple[Any, ...]):
        self.budget_line_id = budget_line_id
        self.discrepancies = discrepancies
        fields = ", ".join(d.field for d in discrepancies)
        super().__init__(
            f"Balance fields disagree on budget line {budget_line_id}: {fields}"
        )
