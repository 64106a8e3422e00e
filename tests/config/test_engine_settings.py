"""
Tests for payables settings loading and the config-to-engine bridges.

Covers:
- Packaged defaults (get_active_config) and the config trace log
- Loader validation: missing file, bad YAML, unknown keys, bad values
- Bridges: cascade policy, ledger policy, rate table, rate resolver
"""

from __future__ import annotations

import dataclasses
from decimal import Decimal

import pytest
import yaml

from payables_config import DEFAULT_CONFIG_PATH, get_active_config
from payables_config.bridges import (
    build_cascade_policy,
    build_ledger_policy,
    build_rate_policy,
    build_rate_table,
)
from payables_config.loader import compute_checksum, load_yaml_file, parse_settings
from payables_engines.monthly_ledger import MonthlyBalanceLedger
from payables_engines.rates import ProcurementCategory, RatePolicy, TaxRegime
from payables_engines.tax_cascade import TaxCascadeCalculator, TransactionInput
from payables_kernel.domain.budget import MonthlyBalanceEntry, MonthStatus


def _write(tmp_path, data, name="settings.yaml"):
    path = tmp_path / name
    path.write_text(yaml.safe_dump(data))
    return path


# =========================================================================
# 1. Packaged defaults
# =========================================================================


class TestDefaults:

    def test_tax_section(self, settings):
        assert settings.tax.reporting_currency == "USD"
        assert settings.tax.withholding_currencies == ("GHS", "GHC")
        assert settings.tax.mobile_money_markers == ("MOMO",)
        assert settings.tax.amount_places == 2
        assert settings.tax.rate_policy == "reject"

    def test_rates_section(self, settings):
        withholding = dict(settings.rates.withholding_by_category)

        assert withholding["SERVICES"] == "7.5"
        assert withholding["FLAT RATE"] == "4"
        assert dict(settings.rates.levy_by_regime)["ST+CST"] == "11"
        assert settings.rates.vat_rate == "0.15"
        assert settings.rates.allow_fuzzy_categories is True

    def test_other_sections(self, settings):
        assert settings.ledger.underspent_threshold == "0.8"
        assert settings.ledger.months_per_year == 12
        assert settings.coordinator.max_attempts == 5
        assert settings.rate_cache.ttl_seconds == 600
        assert settings.rate_cache.enabled is True

    def test_settings_are_frozen(self, settings):
        with pytest.raises(dataclasses.FrozenInstanceError):
            settings.tax = None  # type: ignore[misc]

    def test_source_and_checksum(self, settings):
        assert settings.source == str(DEFAULT_CONFIG_PATH)
        assert settings.checksum == compute_checksum(load_yaml_file(DEFAULT_CONFIG_PATH))
        assert len(settings.checksum) == 64

    def test_trace_logged(self, captured_logs):
        settings = get_active_config()

        traces = [r for r in captured_logs() if r["message"] == "PAYABLES_CONFIG_TRACE"]
        assert len(traces) == 1
        assert traces[0]["trace_type"] == "PAYABLES_CONFIG_TRACE"
        assert traces[0]["checksum"] == settings.checksum
        assert traces[0]["category_count"] == 7
        assert traces[0]["regime_count"] == 6


# =========================================================================
# 2. Loader validation
# =========================================================================


class TestLoader:

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        settings = get_active_config(path)

        assert settings.tax.reporting_currency == "USD"
        assert settings.rates.withholding_by_category == ()

    def test_override_file(self, tmp_path):
        path = _write(tmp_path, {
            "tax": {"reporting_currency": "eur", "rate_policy": "CLAMP"},
            "coordinator": {"max_attempts": 9},
        })
        settings = get_active_config(path)

        assert settings.tax.reporting_currency == "EUR"
        assert settings.tax.rate_policy == "clamp"
        assert settings.coordinator.max_attempts == 9

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("tax: [unclosed\n")

        with pytest.raises(yaml.YAMLError):
            get_active_config(path)

    def test_top_level_must_be_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ValueError, match="top level"):
            get_active_config(path)

    @pytest.mark.parametrize("data,message", [
        ({"tax": {"currency": "USD"}}, "Unknown keys"),
        ({"tax": {"rate_policy": "ignore"}}, "rate_policy"),
        ({"tax": {"amount_places": -1}}, "amount_places"),
        ({"tax": "USD"}, "must be a mapping"),
        ({"rates": {"vat_rate": "fifteen"}}, "vat_rate"),
        ({"rates": {"withholding_by_category": {"GOODS": True}}}, "GOODS"),
        ({"ledger": {"underspent_threshold": 1.5}}, "underspent_threshold"),
        ({"ledger": {"months_per_year": 0}}, "months_per_year"),
        ({"coordinator": {"max_attempts": "5"}}, "max_attempts"),
        ({"rate_cache": {"ttl_seconds": -1}}, "ttl_seconds"),
    ])
    def test_invalid_values(self, data, message):
        with pytest.raises(ValueError, match=message):
            parse_settings(data)

    def test_checksum_stable_across_key_order(self):
        assert compute_checksum({"a": 1, "b": {"c": 2}}) == compute_checksum({"b": {"c": 2}, "a": 1})
        assert compute_checksum({"a": 1}) != compute_checksum({"a": 2})


# =========================================================================
# 3. Bridges
# =========================================================================


class TestBridges:

    def test_cascade_policy_drives_calculator(self, tmp_path, standard_rates):
        path = _write(tmp_path, {"tax": {"withholding_currencies": ["NGN"]}})
        calculator = TaxCascadeCalculator(build_cascade_policy(get_active_config(path)))
        transaction = TransactionInput(
            pre_tax_amount="1000",
            vat_applicable=False,
            currency_code="NGN",
            fx_rate_to_reporting_currency="1500",
        )

        assert calculator.compute_cascade(transaction, standard_rates).withholding_amount == Decimal("75.00")

    def test_ledger_policy(self, tmp_path):
        path = _write(tmp_path, {"ledger": {"underspent_threshold": 0.5}})
        ledger = MonthlyBalanceLedger(build_ledger_policy(get_active_config(path)))
        entry = MonthlyBalanceEntry(month_key="2025-01", allocated=Decimal("100"), spent=Decimal("40"))

        assert ledger.classify(entry) is MonthStatus.UNDERSPENT

    def test_rate_policy(self, settings):
        assert build_rate_policy(settings) is RatePolicy.REJECT

    def test_rate_table_keys(self, settings):
        table = build_rate_table(settings)

        assert table.withholding_by_category[ProcurementCategory.FLAT_RATE] == "4"
        assert table.levy_by_regime[TaxRegime.ST_TOURISM] == "7"
        assert table.category_aliases["LEASE"] is ProcurementCategory.RENT

    @pytest.mark.parametrize("rates", [
        {"withholding_by_category": {"GADGETS": 3}},
        {"levy_by_regime": {"LUXURY": 3}},
        {"category_aliases": {"KIT": "GADGETS"}},
    ])
    def test_unknown_vocabulary_rejected(self, rates):
        with pytest.raises(ValueError):
            build_rate_table(parse_settings({"rates": rates}))
