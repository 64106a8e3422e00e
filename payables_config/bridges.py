"""
Config -> Engine Bridges.

Functions that turn ``EngineSettings`` into the policy objects and rate
sources the engines and services are constructed with.  They live in
payables_config (the producer) because engines must never import
configuration.

Usage:
    from payables_config import get_active_config
    from payables_config.bridges import build_cascade_policy, build_rate_resolver

    settings = get_active_config()
    calculator = TaxCascadeCalculator(build_cascade_policy(settings))
    resolver = build_rate_resolver(settings, clock)
"""

from __future__ import annotations

from decimal import Decimal

from payables_config.schema import EngineSettings
from payables_engines.monthly_ledger import LedgerPolicy
from payables_engines.rates import RatePolicy, resolve_category, resolve_regime
from payables_engines.tax_cascade import TaxCascadePolicy
from payables_kernel.domain.clock import Clock
from payables_services.rate_resolver import (
    ConfiguredRateSource,
    RateCache,
    RateResolver,
    RateTable,
)


def build_cascade_policy(settings: EngineSettings) -> TaxCascadePolicy:
    tax = settings.tax
    return TaxCascadePolicy(
        reporting_currency=tax.reporting_currency,
        withholding_currencies=frozenset(tax.withholding_currencies),
        mobile_money_markers=tax.mobile_money_markers,
        amount_places=tax.amount_places,
    )


def build_ledger_policy(settings: EngineSettings) -> LedgerPolicy:
    return LedgerPolicy(
        underspent_threshold=Decimal(settings.ledger.underspent_threshold),
        months_per_year=settings.ledger.months_per_year,
    )


def build_rate_policy(settings: EngineSettings) -> RatePolicy:
    return RatePolicy(settings.tax.rate_policy)


def build_rate_table(settings: EngineSettings) -> RateTable:
    """
    Key the configured rates by category and regime.

    Raises:
        ValueError: A configured category, regime or alias target is not
            part of the vocabulary.
    """
    rates = settings.rates

    withholding = {}
    for name, value in rates.withholding_by_category:
        category = resolve_category(name)
        if category is None:
            raise ValueError(f"Unknown procurement category in withholding_by_category: {name!r}")
        withholding[category] = value

    levy = {}
    for name, value in rates.levy_by_regime:
        regime = resolve_regime(name)
        if regime is None:
            raise ValueError(f"Unknown tax regime in levy_by_regime: {name!r}")
        levy[regime] = value

    aliases = {}
    for alias, target in rates.category_aliases:
        category = resolve_category(target)
        if category is None:
            raise ValueError(f"Alias {alias!r} points at unknown category {target!r}")
        aliases[alias] = category

    return RateTable(
        withholding_by_category=withholding,
        levy_by_regime=levy,
        vat_rate=rates.vat_rate,
        mobile_money_rate=rates.mobile_money_rate,
        category_aliases=aliases,
    )


def build_rate_source(settings: EngineSettings) -> ConfiguredRateSource:
    return ConfiguredRateSource(build_rate_table(settings))


def build_rate_resolver(settings: EngineSettings, clock: Clock | None = None) -> RateResolver:
    """Resolver over the configured rate table with its own cache."""
    cache = RateCache(
        ttl_seconds=settings.rate_cache.ttl_seconds,
        clock=clock,
        enabled=settings.rate_cache.enabled,
    )
    return RateResolver(
        build_rate_source(settings),
        cache=cache,
        policy=build_rate_policy(settings),
        allow_fuzzy=settings.rates.allow_fuzzy_categories,
    )
