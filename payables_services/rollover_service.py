"""
RolloverService -- Carry month-end balances forward on stored budget lines.

Responsibility:
    Reads a budget line, runs ``RolloverProcessor`` on the source and target
    month entries and writes both back in one versioned write.  Batch
    rollover walks a list of lines and collects per-line outcomes.

Architecture position:
    Services -- imperative shell over ``RolloverProcessor`` (pure) and a
    ``BudgetLineStore``.

Invariants enforced:
    - Idempotent: a pair already linked is reported with applied=False and
      not written again.
    - Same retry discipline as the balance coordinator.

Failure modes:
    - MonthNotFoundError when either month is not tracked.
    - RolloverConflictError when a month is already linked elsewhere.
    - InvalidInputError when the target month is not later.
    - RetryExhaustedError.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from payables_engines.rollover import RolloverProcessor, RolloverResult
from payables_kernel.domain.values import next_month
from payables_kernel.exceptions import PayablesError
from payables_kernel.logging_config import LogContext, get_logger
from payables_services._versioned import Mutation, run_versioned_update
from payables_services.budget_store import BudgetLineSnapshot, BudgetLineStore

logger = get_logger("services.rollover_service")


@dataclass(frozen=True)
class BatchRolloverReport:
    """Per-line outcomes of ``roll_over_all``."""

    from_month: str
    results: dict[str, RolloverResult] = field(default_factory=dict)
    failures: dict[str, PayablesError] = field(default_factory=dict)

    @property
    def applied_count(self) -> int:
        return sum(1 for r in self.results.values() if r.applied)


class RolloverService:
    """Month-to-month rollover against a store."""

    def __init__(
        self,
        store: BudgetLineStore,
        processor: RolloverProcessor | None = None,
        max_attempts: int = 5,
    ):
        self._store = store
        self._processor = processor or RolloverProcessor()
        self._max_attempts = max_attempts

    def roll_over(
        self,
        budget_line_id: str,
        from_month: str,
        to_month: str | None = None,
    ) -> RolloverResult:
        """
        Roll ``from_month``'s balance into ``to_month`` (default: the next
        calendar month).
        """
        target = to_month or next_month(from_month)

        with LogContext.bind(budget_line_id=budget_line_id, month_key=from_month):
            def mutate(snapshot: BudgetLineSnapshot) -> Mutation[RolloverResult]:
                line = snapshot.line
                result = self._processor.rollover(line.month(from_month), line.month(target))
                if not result.applied:
                    return Mutation(None, result)
                return Mutation(line.with_months(result.from_entry, result.to_entry), result)

            result, attempts = run_versioned_update(
                self._store, budget_line_id, "rollover", mutate, self._max_attempts
            )

            logger.info("rollover_stored", extra={
                "budget_line_id": budget_line_id,
                "from_month": from_month,
                "to_month": target,
                "applied": result.applied,
                "rollover_amount": str(result.rollover_amount),
                "attempts": attempts,
            })
        return result

    def roll_over_all(
        self,
        budget_line_ids: Iterable[str] | None,
        from_month: str,
        to_month: str | None = None,
    ) -> BatchRolloverReport:
        """
        Roll every listed line (or every stored line when None).

        A failure on one line is recorded and does not stop the batch.
        """
        ids = list(budget_line_ids) if budget_line_ids is not None else self._store.list_ids()
        report = BatchRolloverReport(from_month=from_month)
        for line_id in ids:
            try:
                report.results[line_id] = self.roll_over(line_id, from_month, to_month)
            except PayablesError as exc:
                report.failures[line_id] = exc
                logger.warning("rollover_failed", extra={
                    "budget_line_id": line_id,
                    "from_month": from_month,
                    "error_code": exc.code,
                    "error": str(exc),
                })

        logger.info("rollover_batch_completed", extra={
            "from_month": from_month,
            "line_count": len(ids),
            "applied": report.applied_count,
            "failed": len(report.failures),
        })
        return report
