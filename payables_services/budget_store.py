"""
BudgetLineStore -- Versioned read/write capability for budget lines.

Responsibility:
    Defines the persistence boundary the coordinator and rollover service
    depend on (``read`` / ``write`` / ``insert``) and ships the in-memory
    implementation, which keeps each line as a legacy-shaped document and
    its balance history as a separate ordered log.

Architecture position:
    Services -- imperative shell.  ``SqlBudgetLineStore`` in
    ``payables_services.sql_store`` is the relational implementation of the
    same protocol.

Invariants enforced:
    - Optimistic concurrency: ``write(line, expected_version)`` returns
      CONFLICT without touching anything when the stored version moved.
    - Atomicity: the document and the new history records are stored under
      one lock acquisition; a failed write stores neither.
    - History is append-only: a write whose history does not extend the
      stored history is refused.

Failure modes:
    - BudgetLineNotFoundError on read/write of an unknown id.
    - BudgetLineExistsError on insert of a known id.
    - TransientStoreError when a fault was injected with
      ``fail_next_writes``.
    - ValueError when a write would rewrite stored history.
"""

from __future__ import annotations

import copy
import threading
from collections.abc import Callable
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Protocol

from payables_kernel.domain.budget import BalanceHistoryRecord, BudgetLine
from payables_kernel.domain.documents import (
    budget_line_from_document,
    budget_line_to_document,
    history_record_from_document,
    history_record_to_document,
)
from payables_kernel.exceptions import (
    BudgetLineExistsError,
    BudgetLineNotFoundError,
    TransientStoreError,
)
from payables_kernel.logging_config import get_logger

logger = get_logger("services.budget_store")


class WriteOutcome(str, Enum):
    """Result of a versioned write."""

    OK = "ok"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class BudgetLineSnapshot:
    """A budget line as read, with the version to write against."""

    line: BudgetLine
    version: int


class BudgetLineStore(Protocol):
    """Persistence capability for budget lines."""

    def read(self, budget_line_id: str) -> BudgetLineSnapshot:
        ...

    def write(self, line: BudgetLine, expected_version: int) -> WriteOutcome:
        ...

    def insert(self, line: BudgetLine) -> BudgetLineSnapshot:
        ...

    def list_ids(self) -> list[str]:
        ...


def new_history_records(
    stored: tuple[BalanceHistoryRecord, ...] | list[BalanceHistoryRecord],
    proposed: tuple[BalanceHistoryRecord, ...],
    budget_line_id: str,
) -> tuple[BalanceHistoryRecord, ...]:
    """
    The records ``proposed`` adds on top of ``stored``.

    Raises:
        ValueError: If ``proposed`` does not start with ``stored``.
    """
    count = len(stored)
    if tuple(proposed[:count]) != tuple(stored):
        raise ValueError(
            f"Balance history of {budget_line_id} is append-only; "
            "stored records may not be changed or removed"
        )
    return tuple(proposed[count:])


class InMemoryBudgetLineStore:
    """
    Thread-safe in-memory store.

    Contract:
        Lines are kept as legacy documents (``budget_line_to_document``) and
        history as a per-line list of history documents, mirroring how the
        surrounding system stored them.

    Non-goals:
        No durability; intended for tests and embedding.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._documents: dict[str, dict[str, Any]] = {}
        self._versions: dict[str, int] = {}
        self._history: dict[str, list[dict[str, Any]]] = {}
        self._failures_remaining = 0
        self._before_next_write: Callable[[], None] | None = None
        self.write_count = 0
        self.conflict_count = 0

    # -- fault injection ------------------------------------------------

    def fail_next_writes(self, count: int = 1) -> None:
        """Make the next ``count`` writes raise TransientStoreError."""
        with self._lock:
            self._failures_remaining = count

    def before_next_write(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` once, at the start of the next write call."""
        with self._lock:
            self._before_next_write = callback

    # -- protocol -------------------------------------------------------

    def read(self, budget_line_id: str) -> BudgetLineSnapshot:
        with self._lock:
            document = self._documents.get(budget_line_id)
            if document is None:
                raise BudgetLineNotFoundError(budget_line_id)
            document = copy.deepcopy(document)
            history_docs = list(self._history.get(budget_line_id, []))
            version = self._versions[budget_line_id]

        line = budget_line_from_document(document)
        history = tuple(
            history_record_from_document(budget_line_id, index, data)
            for index, data in enumerate(history_docs, start=1)
        )
        return BudgetLineSnapshot(line=replace(line, balance_history=history), version=version)

    def write(self, line: BudgetLine, expected_version: int) -> WriteOutcome:
        with self._lock:
            callback, self._before_next_write = self._before_next_write, None
        if callback is not None:
            callback()

        with self._lock:
            if self._failures_remaining > 0:
                self._failures_remaining -= 1
                logger.warning("budget_store_injected_failure", extra={
                    "budget_line_id": line.id,
                })
                raise TransientStoreError(line.id, "injected write failure")

            if line.id not in self._documents:
                raise BudgetLineNotFoundError(line.id)

            current = self._versions[line.id]
            if current != expected_version:
                self.conflict_count += 1
                logger.info("budget_store_version_conflict", extra={
                    "budget_line_id": line.id,
                    "expected_version": expected_version,
                    "actual_version": current,
                })
                return WriteOutcome.CONFLICT

            stored = tuple(
                history_record_from_document(line.id, index, data)
                for index, data in enumerate(self._history.get(line.id, []), start=1)
            )
            added = new_history_records(stored, line.balance_history, line.id)

            self._documents[line.id] = budget_line_to_document(line)
            self._history.setdefault(line.id, []).extend(
                history_record_to_document(r) for r in added
            )
            self._versions[line.id] = current + 1
            self.write_count += 1

        logger.debug("budget_store_written", extra={
            "budget_line_id": line.id,
            "version": current + 1,
            "history_added": len(added),
        })
        return WriteOutcome.OK

    def insert(self, line: BudgetLine) -> BudgetLineSnapshot:
        with self._lock:
            if line.id in self._documents:
                raise BudgetLineExistsError(line.id)
            self._documents[line.id] = budget_line_to_document(line)
            self._history[line.id] = [
                history_record_to_document(r) for r in line.balance_history
            ]
            self._versions[line.id] = 1
        logger.info("budget_line_inserted", extra={"budget_line_id": line.id})
        return self.read(line.id)

    def list_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._documents)

    # -- legacy documents -----------------------------------------------

    def put_document(self, document: dict[str, Any]) -> BudgetLineSnapshot:
        """
        Seed a legacy document as-is (any embedded history moves to the log).

        Raises:
            BudgetLineExistsError: If the id is already stored.
        """
        document = copy.deepcopy(document)
        history_docs = document.pop("balanceHistory", None) or []
        line_id = str(document["id"])
        with self._lock:
            if line_id in self._documents:
                raise BudgetLineExistsError(line_id)
            self._documents[line_id] = document
            self._history[line_id] = list(history_docs)
            self._versions[line_id] = 1
        return self.read(line_id)

    def raw_document(self, budget_line_id: str) -> dict[str, Any]:
        """Deep copy of the stored document."""
        with self._lock:
            if budget_line_id not in self._documents:
                raise BudgetLineNotFoundError(budget_line_id)
            return copy.deepcopy(self._documents[budget_line_id])

    def history_documents(self, budget_line_id: str) -> list[dict[str, Any]]:
        with self._lock:
            return copy.deepcopy(self._history.get(budget_line_id, []))
