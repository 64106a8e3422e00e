"""
Module: payables_services
Responsibility:
    Imperative shell around the payables engines: rate resolution, budget
    line persistence, balance updates, rollover, setup and validation.

Architecture position:
    Services -- may import payables_kernel and payables_engines.  Clocks,
    stores and rate sources are injected; nothing here holds global state.

Usage:
    from payables_services import (
        BalanceUpdateCoordinator,
        InMemoryBudgetLineStore,
        PaymentFinalizer,
    )
"""

from payables_services.balance_coordinator import (
    BalanceUpdateCoordinator,
    BalanceUpdateResult,
    ReversalOutcome,
)
from payables_services.budget_setup import BudgetLineSetup
from payables_services.budget_store import (
    BudgetLineSnapshot,
    BudgetLineStore,
    InMemoryBudgetLineStore,
    WriteOutcome,
)
from payables_services.consistency import (
    BalanceDiscrepancy,
    BalanceValidation,
    DataQualityReport,
    ValidationFinding,
    ValidationReport,
    check_balance_fields,
    data_quality_report,
    validate_budget_line,
    validate_document,
    validate_update,
)
from payables_services.finalizer import FinalizedPayment, PaymentFinalizer
from payables_services.rate_resolver import (
    ConfiguredRateSource,
    RateCache,
    RateResolver,
    RateSource,
    RateTable,
)
from payables_services.rollover_service import BatchRolloverReport, RolloverService
from payables_services.sql_store import SqlBudgetLineStore

__all__ = [
    "BalanceDiscrepancy",
    "BalanceUpdateCoordinator",
    "BalanceUpdateResult",
    "BalanceValidation",
    "BatchRolloverReport",
    "BudgetLineSetup",
    "BudgetLineSnapshot",
    "BudgetLineStore",
    "ConfiguredRateSource",
    "DataQualityReport",
    "FinalizedPayment",
    "InMemoryBudgetLineStore",
    "PaymentFinalizer",
    "RateCache",
    "RateResolver",
    "RateSource",
    "RateTable",
    "ReversalOutcome",
    "RolloverService",
    "SqlBudgetLineStore",
    "ValidationFinding",
    "ValidationReport",
    "WriteOutcome",
    "check_balance_fields",
    "data_quality_report",
    "validate_budget_line",
    "validate_document",
    "validate_update",
]
