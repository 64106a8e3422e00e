"""
Module: payables_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    calculation engines.  This is the canonical import surface for
    ``payables_services``.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import payables_kernel (domain, exceptions, logging) and
    sibling engine modules.  MUST NOT import payables_services or
    payables_config.

Invariants enforced:
    - Purity: engines never read a clock; timestamps are parameters.
    - Decimal-only arithmetic.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Engine invocations are traced via ``@traced_engine``
    (see ``payables_engines.tracer``), emitting PAYABLES_ENGINE_TRACE.

Usage:
    from payables_engines.tax_cascade import TaxCascadeCalculator
    from payables_engines.monthly_ledger import MonthlyBalanceLedger
    from payables_engines.rollover import RolloverProcessor
    from payables_engines.performance import BudgetPerformanceAggregator
"""

from payables_engines.monthly_ledger import (
    LedgerPolicy,
    MonthlyBalanceLedger,
    classify_status,
)
from payables_engines.performance import (
    BudgetPerformanceAggregator,
    PerformanceSummary,
    RiskLevel,
    calculate_risk_level,
)
from payables_engines.rates import (
    PAYMENT_CHANNELS,
    ProcurementCategory,
    RatePolicy,
    RateSet,
    TaxRegime,
    VatDecision,
    is_mobile_money,
    normalize_rate,
    parse_vat_decision,
    resolve_category,
    resolve_regime,
)
from payables_engines.rollover import RolloverProcessor, RolloverResult
from payables_engines.tax_cascade import (
    PartialPaymentProrator,
    TaxCascadeCalculator,
    TaxCascadePolicy,
    TaxCascadeResult,
    TransactionInput,
)
from payables_engines.tracer import compute_input_fingerprint, traced_engine

__all__ = [
    "BudgetPerformanceAggregator",
    "LedgerPolicy",
    "MonthlyBalanceLedger",
    "PAYMENT_CHANNELS",
    "PartialPaymentProrator",
    "PerformanceSummary",
    "ProcurementCategory",
    "RatePolicy",
    "RateSet",
    "RiskLevel",
    "RolloverProcessor",
    "RolloverResult",
    "TaxCascadeCalculator",
    "TaxCascadePolicy",
    "TaxCascadeResult",
    "TaxRegime",
    "TransactionInput",
    "VatDecision",
    "calculate_risk_level",
    "classify_status",
    "compute_input_fingerprint",
    "is_mobile_money",
    "normalize_rate",
    "parse_vat_decision",
    "resolve_category",
    "resolve_regime",
    "traced_engine",
]
