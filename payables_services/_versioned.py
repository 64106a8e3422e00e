"""Read-modify-write loop over a versioned BudgetLineStore."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from payables_kernel.domain.budget import BudgetLine
from payables_kernel.exceptions import (
    ConcurrencyError,
    ConcurrentModificationConflict,
    RetryExhaustedError,
    TransientStoreError,
)
from payables_kernel.logging_config import get_logger
from payables_services.budget_store import BudgetLineSnapshot, BudgetLineStore, WriteOutcome

logger = get_logger("services.versioned")

T = TypeVar("T")


@dataclass(frozen=True)
class Mutation(Generic[T]):
    """What a mutate callback wants written (``line``) and reported (``payload``).

    ``line`` of None means nothing needs writing.
    """

    line: BudgetLine | None
    payload: T


def run_versioned_update(
    store: BudgetLineStore,
    budget_line_id: str,
    operation: str,
    mutate: Callable[[BudgetLineSnapshot], Mutation[T]],
    max_attempts: int,
) -> tuple[T, int]:
    """
    Apply ``mutate`` to a fresh read until the write lands.

    Returns ``(payload, attempts)``.  Every attempt re-reads the line, so
    ``mutate`` always sees the latest stored state.  Exceptions raised by
    ``mutate`` propagate without retry.

    Raises:
        RetryExhaustedError: ``max_attempts`` writes were refused (version
            conflict or transient store failure).  Nothing was written.
            Its ``__cause__`` is the last refusal.
    """
    last_refusal: ConcurrencyError | None = None
    for attempt in range(1, max_attempts + 1):
        snapshot = store.read(budget_line_id)
        mutation = mutate(snapshot)
        if mutation.line is None:
            return mutation.payload, attempt

        try:
            outcome = store.write(mutation.line, snapshot.version)
        except TransientStoreError as exc:
            logger.warning("balance_update_transient_retry", extra={
                "budget_line_id": budget_line_id,
                "operation": operation,
                "attempt": attempt,
                "detail": exc.detail,
            })
            last_refusal = exc
            continue

        if outcome is WriteOutcome.OK:
            return mutation.payload, attempt

        logger.info("balance_update_conflict_retry", extra={
            "budget_line_id": budget_line_id,
            "operation": operation,
            "attempt": attempt,
            "expected_version": snapshot.version,
        })
        last_refusal = ConcurrentModificationConflict(
            budget_line_id, snapshot.version, None
        )

    logger.error("balance_update_retry_exhausted", extra={
        "budget_line_id": budget_line_id,
        "operation": operation,
        "attempts": max_attempts,
    })
    raise RetryExhaustedError(budget_line_id, operation, max_attempts) from last_refusal
