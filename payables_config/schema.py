"""
Engine settings schema.

Frozen dataclasses the YAML configuration is parsed into.  Rates are kept
as the strings written in the file; normalization into ``RateSet`` happens
in the bridges, so the settings stay a faithful image of the source.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class TaxSettings:
    """Currency and rounding rules of the tax cascade."""

    reporting_currency: str = "USD"
    withholding_currencies: tuple[str, ...] = ("GHS", "GHC")
    mobile_money_markers: tuple[str, ...] = ("MOMO",)
    amount_places: int = 2
    rate_policy: str = "reject"  # reject | clamp


@dataclass(frozen=True)
class RateTableSettings:
    """Rates as configured: percentages or fractions."""

    vat_rate: str = "0"
    mobile_money_rate: str = "0"
    withholding_by_category: tuple[tuple[str, str], ...] = ()
    levy_by_regime: tuple[tuple[str, str], ...] = ()
    category_aliases: tuple[tuple[str, str], ...] = ()
    allow_fuzzy_categories: bool = True


@dataclass(frozen=True)
class LedgerSettings:
    underspent_threshold: str = "0.8"
    months_per_year: int = 12


@dataclass(frozen=True)
class CoordinatorSettings:
    max_attempts: int = 5


@dataclass(frozen=True)
class RateCacheSettings:
    ttl_seconds: float = 600
    enabled: bool = True


@dataclass(frozen=True)
class EngineSettings:
    """
    Everything the payables engines and services are configured with.

    ``checksum`` identifies the source document (SHA-256 of its canonical
    JSON form).
    """

    tax: TaxSettings = field(default_factory=TaxSettings)
    rates: RateTableSettings = field(default_factory=RateTableSettings)
    ledger: LedgerSettings = field(default_factory=LedgerSettings)
    coordinator: CoordinatorSettings = field(default_factory=CoordinatorSettings)
    rate_cache: RateCacheSettings = field(default_factory=RateCacheSettings)
    source: str = ""
    checksum: str = ""
