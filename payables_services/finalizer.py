"""
PaymentFinalizer -- Price a payment and charge it to its budget line.

Responsibility:
    Runs the tax cascade (or the partial-payment prorator when a percentage
    is given) and hands the budget impact in the reporting currency to the
    balance coordinator.

Architecture position:
    Services -- orchestration over ``TaxCascadeCalculator`` /
    ``PartialPaymentProrator`` (pure) and ``BalanceUpdateCoordinator``.

Failure modes:
    - Calculation errors (InvalidInputError and subclasses) are raised
      before anything is written and are never retried.
    - Everything ``apply_finalized_payment`` raises.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from payables_engines.rates import RateSet
from payables_engines.tax_cascade import (
    PartialPaymentProrator,
    TaxCascadeCalculator,
    TaxCascadeResult,
    TransactionInput,
)
from payables_kernel.logging_config import LogContext, get_logger
from payables_services.balance_coordinator import (
    BalanceUpdateCoordinator,
    BalanceUpdateResult,
)
from payables_services.rate_resolver import RateResolver

logger = get_logger("services.finalizer")


@dataclass(frozen=True)
class FinalizedPayment:
    cascade: TaxCascadeResult
    balance_update: BalanceUpdateResult


class PaymentFinalizer:
    """Cascade, then balance update."""

    def __init__(
        self,
        coordinator: BalanceUpdateCoordinator,
        calculator: TaxCascadeCalculator | None = None,
        rate_resolver: RateResolver | None = None,
    ):
        self._coordinator = coordinator
        self._calculator = calculator or TaxCascadeCalculator()
        self._prorator = PartialPaymentProrator(self._calculator)
        self._resolver = rate_resolver

    def finalize(
        self,
        budget_line_id: str,
        transaction: TransactionInput,
        rates: RateSet | None,
        payment_id: str,
        actor: str | None = None,
        month_key: str | None = None,
        percentage: Any = None,
    ) -> FinalizedPayment:
        """
        Finalize one payment.

        Preconditions:
            ``rates`` is given, or the finalizer was built with a
            ``RateResolver``.

        Postconditions:
            The budget line was charged exactly
            ``cascade.budget_impact_in_reporting_currency``.
        """
        if rates is None:
            if self._resolver is None:
                raise ValueError("rates are required when no RateResolver is configured")
            rates = self._resolver.resolve_for(transaction)

        with LogContext.bind(budget_line_id=budget_line_id, payment_id=payment_id):
            if percentage is None:
                cascade = self._calculator.compute_cascade(transaction, rates)
            else:
                cascade = self._prorator.compute_partial(transaction, percentage, rates)

            update = self._coordinator.apply_finalized_payment(
                budget_line_id,
                cascade.budget_impact_in_reporting_currency,
                payment_id,
                actor=actor,
                month_key=month_key,
            )

            logger.info("payment_finalized", extra={
                "budget_line_id": budget_line_id,
                "payment_id": payment_id,
                "final_net_payable": str(cascade.final_net_payable),
                "budget_impact": str(cascade.budget_impact_in_reporting_currency),
                "currency_code": cascade.currency_code,
                "duplicate": update.duplicate,
            })
        return FinalizedPayment(cascade=cascade, balance_update=update)
