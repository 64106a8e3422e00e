"""
Tax Cascade Engine -- Turn an invoice amount into a net payable figure.

Responsibility:
    Evaluates the fixed levy -> VAT -> withholding -> mobile-money cascade
    for one transaction and converts the result into the reporting
    currency.  ``PartialPaymentProrator`` re-runs the full cascade on a
    prorated pre-tax base.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Rates and policy are
    supplied by the caller.

Invariants enforced:
    - Evaluation order is fixed: levy, VAT on (pre-tax + levy), gross,
      withholding, net-to-supplier, mobile-money fee, final, budget impact.
    - Every step is quantized (ROUND_HALF_UP, ``amount_places``) before it
      feeds the next one, so
      ``gross == pre_tax + levy + vat``,
      ``net_to_supplier == gross - withholding`` and
      ``final == net_to_supplier + mobile_money_fee`` hold exactly.
    - Withholding is 0 unless the currency is withholding-eligible.
    - Proration scales the input, never the outputs.

Failure modes:
    - InvalidInputError for non-numeric amounts, a non-positive FX rate, or
      a negative service-charge override.
    - InvalidPercentageError for a partial percentage outside (0, 100].

Usage:
    calculator = TaxCascadeCalculator()
    result = calculator.compute_cascade(
        TransactionInput(
            pre_tax_amount=Decimal("1000"),
            tax_regime=TaxRegime.STANDARD,
            vat_applicable=True,
            currency_code="GHS",
            fx_rate_to_reporting_currency=Decimal("12.5"),
        ),
        RateSet.of(withholding_rate=7.5, levy_rate=6, vat_rate=0.15),
    )
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any

from payables_engines.rates import (
    DEFAULT_MOBILE_MONEY_MARKERS,
    ProcurementCategory,
    RateSet,
    TaxRegime,
    is_mobile_money,
    parse_vat_decision,
    resolve_category,
    resolve_regime,
)
from payables_engines.tracer import traced_engine
from payables_kernel.domain.values import (
    DEFAULT_AMOUNT_PLACES,
    ONE_HUNDRED,
    ZERO,
    quantize_amount,
    to_decimal,
    to_optional_decimal,
)
from payables_kernel.exceptions import (
    InvalidInputError,
    InvalidPercentageError,
)
from payables_kernel.logging_config import get_logger

logger = get_logger("engines.tax_cascade")


@dataclass(frozen=True)
class TaxCascadePolicy:
    """Currency and rounding rules for a cascade evaluation."""

    reporting_currency: str = "USD"
    withholding_currencies: frozenset[str] = frozenset({"GHS", "GHC"})
    mobile_money_markers: tuple[str, ...] = DEFAULT_MOBILE_MONEY_MARKERS
    amount_places: int = DEFAULT_AMOUNT_PLACES

    def withholding_applies(self, currency_code: str) -> bool:
        return currency_code.upper() in {c.upper() for c in self.withholding_currencies}

    def is_reporting_currency(self, currency_code: str) -> bool:
        return currency_code.upper() == self.reporting_currency.upper()


@dataclass(frozen=True)
class TransactionInput:
    """
    One payment line as captured by the form layer.

    Contract:
        Amounts are coerced to Decimal on construction; the VAT flag accepts
        a bool or a YES/NO/VATABLE/NON_VATABLE decision.  Unknown category
        or regime strings are kept as given (they resolve to no rate).

    Guarantees:
        - ``fx_rate_to_reporting_currency`` > 0.
        - ``service_charge_override_amount`` is None or >= 0.
        - ``currency_code`` is upper-case.
    """

    pre_tax_amount: Decimal
    procurement_category: ProcurementCategory | str | None = None
    tax_regime: TaxRegime | str | None = None
    vat_applicable: bool = False
    payment_channel: str = ""
    currency_code: str = "USD"
    fx_rate_to_reporting_currency: Decimal = Decimal("1")
    service_charge_override_amount: Decimal | None = None

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "pre_tax_amount", to_decimal(self.pre_tax_amount, "pre_tax_amount")
        )
        object.__setattr__(self, "vat_applicable", parse_vat_decision(self.vat_applicable))
        object.__setattr__(self, "currency_code", (self.currency_code or "").strip().upper())
        object.__setattr__(self, "payment_channel", self.payment_channel or "")

        category = resolve_category(self.procurement_category)
        if category is not None:
            object.__setattr__(self, "procurement_category", category)
        regime = resolve_regime(self.tax_regime)
        if regime is not None:
            object.__setattr__(self, "tax_regime", regime)

        fx_rate = to_decimal(
            self.fx_rate_to_reporting_currency, "fx_rate_to_reporting_currency"
        )
        if fx_rate <= 0:
            raise InvalidInputError(
                "fx_rate_to_reporting_currency", fx_rate, "must be greater than 0"
            )
        object.__setattr__(self, "fx_rate_to_reporting_currency", fx_rate)

        override = to_optional_decimal(
            self.service_charge_override_amount, "service_charge_override_amount"
        )
        if override is not None and override < 0:
            raise InvalidInputError(
                "service_charge_override_amount", override, "cannot be negative"
            )
        object.__setattr__(self, "service_charge_override_amount", override)


@dataclass(frozen=True)
class TaxCascadeResult:
    """
    Every intermediate figure of one cascade evaluation.

    Consumed read-only by document generation.
    """

    pre_tax_amount: Decimal
    levy_amount: Decimal
    vat_amount: Decimal
    gross_amount: Decimal
    withholding_base: Decimal
    withholding_amount: Decimal
    net_payable_to_supplier: Decimal
    mobile_money_fee: Decimal
    final_net_payable: Decimal
    budget_impact_in_reporting_currency: Decimal
    currency_code: str
    rates_applied: RateSet = field(default_factory=RateSet)

    @property
    def total_taxes(self) -> Decimal:
        """Levy + VAT + withholding + mobile-money fee."""
        return (
            self.levy_amount
            + self.vat_amount
            + self.withholding_amount
            + self.mobile_money_fee
        )

    @classmethod
    def zero(cls, currency_code: str, rates: RateSet, places: int) -> TaxCascadeResult:
        z = quantize_amount(ZERO, places)
        return cls(
            pre_tax_amount=z,
            levy_amount=z,
            vat_amount=z,
            gross_amount=z,
            withholding_base=z,
            withholding_amount=z,
            net_payable_to_supplier=z,
            mobile_money_fee=z,
            final_net_payable=z,
            budget_impact_in_reporting_currency=z,
            currency_code=currency_code,
            rates_applied=rates,
        )

    def as_dict(self) -> dict[str, Any]:
        """Flat mapping of the figures (rates as strings)."""
        return {
            "pre_tax_amount": self.pre_tax_amount,
            "levy_amount": self.levy_amount,
            "vat_amount": self.vat_amount,
            "gross_amount": self.gross_amount,
            "withholding_base": self.withholding_base,
            "withholding_amount": self.withholding_amount,
            "net_payable_to_supplier": self.net_payable_to_supplier,
            "mobile_money_fee": self.mobile_money_fee,
            "final_net_payable": self.final_net_payable,
            "budget_impact_in_reporting_currency": self.budget_impact_in_reporting_currency,
            "total_taxes": self.total_taxes,
            "currency_code": self.currency_code,
            "withholding_rate": str(self.rates_applied.withholding_rate),
            "levy_rate": str(self.rates_applied.levy_rate),
            "vat_rate": str(self.rates_applied.vat_rate),
            "mobile_money_rate": str(self.rates_applied.mobile_money_rate),
        }


class TaxCascadeCalculator:
    """
    Evaluate the tax cascade for one transaction.

    Contract:
        Pure: same input and rates always give the same result.  Safe to
        share across threads.

    Non-goals:
        Does not look rates up; the caller resolves a ``RateSet`` first.
    """

    def __init__(self, policy: TaxCascadePolicy | None = None):
        self._policy = policy or TaxCascadePolicy()

    @property
    def policy(self) -> TaxCascadePolicy:
        return self._policy

    @traced_engine("tax_cascade", "1.0", fingerprint_fields=("transaction", "rates"))
    def compute_cascade(
        self,
        transaction: TransactionInput,
        rates: RateSet,
    ) -> TaxCascadeResult:
        """
        Evaluate the cascade.

        Preconditions:
            ``transaction`` and ``rates`` are constructed (hence validated).

        Postconditions:
            - pre_tax <= 0 gives an all-zero result.
            - The three cascade identities hold exactly.

        Args:
            transaction: The payment line.
            rates: Normalized rates in effect for the line.

        Returns:
            TaxCascadeResult with every intermediate figure.
        """
        policy = self._policy
        places = policy.amount_places
        currency = transaction.currency_code

        def q(value: Decimal) -> Decimal:
            return quantize_amount(value, places)

        pre_tax = q(transaction.pre_tax_amount)
        if pre_tax <= 0:
            logger.info("tax_cascade_zero_amount", extra={
                "pre_tax_amount": str(transaction.pre_tax_amount),
                "currency_code": currency,
            })
            return TaxCascadeResult.zero(currency, rates, places)

        levy = q(pre_tax * rates.levy_rate)
        if transaction.vat_applicable:
            vat = q((pre_tax + levy) * rates.vat_rate)
        else:
            vat = q(ZERO)
        gross = pre_tax + levy + vat

        # Override narrows the withholding base only.
        override = transaction.service_charge_override_amount
        if override is not None and override > 0:
            withholding_base = q(override)
        else:
            withholding_base = pre_tax
        if policy.withholding_applies(currency):
            withholding = q(withholding_base * rates.withholding_rate)
        else:
            withholding = q(ZERO)
        net_to_supplier = gross - withholding

        if is_mobile_money(transaction.payment_channel, policy.mobile_money_markers):
            mobile_money_fee = q(net_to_supplier * rates.mobile_money_rate)
        else:
            mobile_money_fee = q(ZERO)
        final = net_to_supplier + mobile_money_fee

        if policy.is_reporting_currency(currency):
            budget_impact = final
        else:
            budget_impact = q(final / transaction.fx_rate_to_reporting_currency)

        result = TaxCascadeResult(
            pre_tax_amount=pre_tax,
            levy_amount=levy,
            vat_amount=vat,
            gross_amount=gross,
            withholding_base=withholding_base,
            withholding_amount=withholding,
            net_payable_to_supplier=net_to_supplier,
            mobile_money_fee=mobile_money_fee,
            final_net_payable=final,
            budget_impact_in_reporting_currency=budget_impact,
            currency_code=currency,
            rates_applied=rates,
        )

        logger.info("tax_cascade_completed", extra={
            "pre_tax_amount": str(pre_tax),
            "gross_amount": str(gross),
            "withholding_amount": str(withholding),
            "final_net_payable": str(final),
            "budget_impact": str(budget_impact),
            "currency_code": currency,
            "total_taxes": str(result.total_taxes),
        })
        return result


class PartialPaymentProrator:
    """
    Compute a partial payment by re-running the cascade on a prorated base.

    Contract:
        ``compute_partial(x, 100, r) == compute_cascade(x, r)``.  Every
        field other than the pre-tax amount, the service-charge override
        included, is carried over unchanged.
    """

    def __init__(self, calculator: TaxCascadeCalculator | None = None):
        self._calculator = calculator or TaxCascadeCalculator()

    @traced_engine("partial_payment", "1.0", fingerprint_fields=("transaction", "percentage", "rates"))
    def compute_partial(
        self,
        transaction: TransactionInput,
        percentage: Any,
        rates: RateSet,
    ) -> TaxCascadeResult:
        """
        Evaluate the cascade for ``percentage`` percent of the invoice.

        Raises:
            InvalidPercentageError: If percentage is non-numeric, <= 0 or > 100.
        """
        try:
            pct = to_decimal(percentage, "percentage")
        except InvalidInputError:
            raise InvalidPercentageError(percentage) from None
        if pct <= 0 or pct > ONE_HUNDRED:
            raise InvalidPercentageError(percentage)

        if pct == ONE_HUNDRED:
            prorated = transaction
        else:
            prorated = replace(
                transaction,
                pre_tax_amount=transaction.pre_tax_amount * pct / ONE_HUNDRED,
            )

        logger.info("partial_payment_prorated", extra={
            "percentage": str(pct),
            "original_pre_tax_amount": str(transaction.pre_tax_amount),
            "prorated_pre_tax_amount": str(prorated.pre_tax_amount),
        })
        return self._calculator.compute_cascade(prorated, rates)
