"""
Property-based tests for the tax cascade and monthly ledger.

Verifies, over generated amounts and rates:
- The cascade identities hold exactly after rounding
- Withholding only applies to cedi-denominated payments
- Every cascade figure is non-negative for a positive invoice
- Proration at 100% is the full cascade
- Applying then reverting a transaction restores the month entry
"""

from decimal import Decimal

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from payables_engines.monthly_ledger import MonthlyBalanceLedger
from payables_engines.rates import RateSet
from payables_engines.tax_cascade import (
    PartialPaymentProrator,
    TaxCascadeCalculator,
    TransactionInput,
)
from payables_kernel.domain.budget import MonthlyBalanceEntry
from payables_kernel.domain.values import quantize_amount

CALCULATOR = TaxCascadeCalculator()
PRORATOR = PartialPaymentProrator(CALCULATOR)
LEDGER = MonthlyBalanceLedger()

amounts = st.decimals(
    min_value=Decimal("0.01"),
    max_value=Decimal("10000000"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)
rates_ = st.decimals(
    min_value=Decimal("0"),
    max_value=Decimal("1"),
    places=4,
    allow_nan=False,
    allow_infinity=False,
)
fx_rates = st.decimals(
    min_value=Decimal("0.0001"),
    max_value=Decimal("10000"),
    places=4,
    allow_nan=False,
    allow_infinity=False,
)
currencies = st.sampled_from(["USD", "GHS", "GHC", "EUR", "ngn"])
channels = st.sampled_from(["BNK TRNSF", "MOMO TRANSFER", "CASH", "CHEQUE", "momo", ""])


@st.composite
def rate_sets(draw):
    return RateSet(
        withholding_rate=draw(rates_),
        levy_rate=draw(rates_),
        vat_rate=draw(rates_),
        mobile_money_rate=draw(rates_),
    )


@st.composite
def transactions(draw):
    return TransactionInput(
        pre_tax_amount=draw(amounts),
        vat_applicable=draw(st.booleans()),
        payment_channel=draw(channels),
        currency_code=draw(currencies),
        fx_rate_to_reporting_currency=draw(fx_rates),
    )


class TestCascadeProperties:

    @given(transaction=transactions(), rates=rate_sets())
    @settings(max_examples=300, suppress_health_check=[HealthCheck.too_slow])
    def test_identities(self, transaction, rates):
        result = CALCULATOR.compute_cascade(transaction, rates)

        assert result.gross_amount == (
            result.pre_tax_amount + result.levy_amount + result.vat_amount
        )
        assert result.net_payable_to_supplier == (
            result.gross_amount - result.withholding_amount
        )
        assert result.final_net_payable == (
            result.net_payable_to_supplier + result.mobile_money_fee
        )

    @given(transaction=transactions(), rates=rate_sets())
    @settings(max_examples=300, suppress_health_check=[HealthCheck.too_slow])
    def test_withholding_only_for_cedi(self, transaction, rates):
        result = CALCULATOR.compute_cascade(transaction, rates)

        if transaction.currency_code not in ("GHS", "GHC"):
            assert result.withholding_amount == 0

    @given(transaction=transactions(), rates=rate_sets())
    @settings(max_examples=300, suppress_health_check=[HealthCheck.too_slow])
    def test_figures_non_negative(self, transaction, rates):
        result = CALCULATOR.compute_cascade(transaction, rates)

        for name in (
            "levy_amount",
            "vat_amount",
            "gross_amount",
            "withholding_amount",
            "net_payable_to_supplier",
            "mobile_money_fee",
            "final_net_payable",
            "budget_impact_in_reporting_currency",
        ):
            assert getattr(result, name) >= 0, name

    @given(transaction=transactions(), rates=rate_sets())
    @settings(max_examples=200, suppress_health_check=[HealthCheck.too_slow])
    def test_reporting_currency_impact_is_final(self, transaction, rates):
        result = CALCULATOR.compute_cascade(transaction, rates)

        if transaction.currency_code == "USD":
            assert result.budget_impact_in_reporting_currency == result.final_net_payable
        else:
            assert result.budget_impact_in_reporting_currency == quantize_amount(
                result.final_net_payable / transaction.fx_rate_to_reporting_currency
            )

    @given(transaction=transactions(), rates=rate_sets())
    @settings(max_examples=200, suppress_health_check=[HealthCheck.too_slow])
    def test_full_percentage_is_full_cascade(self, transaction, rates):
        assert PRORATOR.compute_partial(transaction, 100, rates) == (
            CALCULATOR.compute_cascade(transaction, rates)
        )

    @given(
        transaction=transactions(),
        rates=rate_sets(),
        percentage=st.decimals(
            min_value=Decimal("0.01"), max_value=Decimal("100"), places=2,
            allow_nan=False, allow_infinity=False,
        ),
    )
    @settings(max_examples=200, suppress_health_check=[HealthCheck.too_slow])
    def test_partial_base_is_prorated(self, transaction, rates, percentage):
        result = PRORATOR.compute_partial(transaction, percentage, rates)
        expected = quantize_amount(transaction.pre_tax_amount * percentage / 100)

        if expected > 0:
            assert result.pre_tax_amount == expected
        else:
            assert result.final_net_payable == 0


class TestLedgerProperties:

    @given(
        allocated=amounts,
        spent=st.decimals(
            min_value=Decimal("0"), max_value=Decimal("10000000"), places=2,
            allow_nan=False, allow_infinity=False,
        ),
        amount=amounts,
    )
    @settings(max_examples=300, suppress_health_check=[HealthCheck.too_slow])
    def test_apply_then_revert_restores_spend(self, allocated, spent, amount):
        entry = MonthlyBalanceEntry(month_key="2025-01", allocated=allocated, spent=spent)

        applied = LEDGER.apply_transaction(entry, amount, "P", None)
        reverted = LEDGER.revert_transaction(applied, amount, "P", None)

        assert applied.balance == entry.balance - amount
        assert reverted.spent == entry.spent
        assert reverted.balance == entry.balance
        assert reverted.status == LEDGER.classify(reverted)
