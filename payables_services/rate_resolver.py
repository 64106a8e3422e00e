"""
RateResolver -- Supply the RateSet in effect for a procurement category and tax regime.

Responsibility:
    Looks up withholding (by procurement category), levy (by tax regime),
    VAT and mobile-money rates from an injected ``RateSource``, normalizes
    them, and returns a ``RateSet``.  Unknown categories or regimes resolve
    to a zero rate of that kind.

Architecture position:
    Services -- imperative shell.  The rate table may come from config or
    from an external store; fetches are memoized by an explicitly
    constructed ``RateCache`` whose expiry is driven by the injected Clock.

Invariants enforced:
    - Returned rates are always in [0, 1] (``RateSet`` construction).
    - No module-level cache: each resolver owns the cache it was given.
    - Category matching goes enum value -> alias table -> (optional)
      singular/plural toggle.

Failure modes:
    - InvalidRateError when the source holds an out-of-range rate under the
      reject policy.
    - Source errors propagate; a failed fetch is not cached.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Protocol

from payables_engines.rates import (
    ProcurementCategory,
    RatePolicy,
    RateSet,
    TaxRegime,
    resolve_category,
    resolve_regime,
)
from payables_engines.tax_cascade import TransactionInput
from payables_kernel.domain.clock import Clock, SystemClock
from payables_kernel.logging_config import get_logger

logger = get_logger("services.rate_resolver")


@dataclass(frozen=True)
class RateTable:
    """Raw rates as a source holds them (percentages or fractions)."""

    withholding_by_category: Mapping[ProcurementCategory, Any] = field(default_factory=dict)
    levy_by_regime: Mapping[TaxRegime, Any] = field(default_factory=dict)
    vat_rate: Any = None
    mobile_money_rate: Any = None
    category_aliases: Mapping[str, ProcurementCategory] = field(default_factory=dict)


class RateSource(Protocol):
    """Anything that can produce the current rate table."""

    def fetch_rates(self) -> RateTable:
        ...


class ConfiguredRateSource:
    """A fixed rate table, typically built from configuration."""

    def __init__(self, table: RateTable):
        self._table = table

    def fetch_rates(self) -> RateTable:
        return self._table


class RateCache:
    """
    Time-bounded memo for rate lookups.

    Contract:
        Owned by whoever constructs it and passed in explicitly.  Entries
        expire ``ttl_seconds`` after they were loaded, measured on the
        injected clock.

    Guarantees:
        - A disabled cache always calls the loader.
        - A loader exception leaves the cache unchanged.
    """

    def __init__(
        self,
        ttl_seconds: float = 600,
        clock: Clock | None = None,
        enabled: bool = True,
    ):
        self._ttl = ttl_seconds
        self._clock = clock or SystemClock()
        self._enabled = enabled
        self._entries: dict[str, tuple[float, Any]] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str, loader: Callable[[], Any]) -> Any:
        if not self._enabled:
            self.misses += 1
            return loader()

        now = self._clock.monotonic()
        with self._lock:
            cached = self._entries.get(key)
            if cached is not None and cached[0] > now:
                self.hits += 1
                return cached[1]

        value = loader()
        with self._lock:
            self._entries[key] = (now + self._ttl, value)
            self.misses += 1
        logger.debug("rate_cache_loaded", extra={"cache_key": key, "ttl_seconds": self._ttl})
        return value

    def invalidate(self, key: str | None = None) -> None:
        """Drop one key, or everything."""
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)


class RateResolver:
    """
    Resolve a ``RateSet`` for a category and regime.

    Contract:
        Never raises for unknown names; they contribute a zero rate.
    """

    _CACHE_KEY = "rate_table"

    def __init__(
        self,
        source: RateSource,
        cache: RateCache | None = None,
        policy: RatePolicy = RatePolicy.REJECT,
        allow_fuzzy: bool = True,
    ):
        self._source = source
        self._cache = cache
        self._policy = policy
        self._allow_fuzzy = allow_fuzzy

    def _table(self) -> RateTable:
        if self._cache is None:
            return self._source.fetch_rates()
        return self._cache.get(self._CACHE_KEY, self._source.fetch_rates)

    def resolve(
        self,
        category: ProcurementCategory | str | None,
        regime: TaxRegime | str | None,
    ) -> RateSet:
        """
        Rates for one transaction.

        Postconditions:
            Unknown category -> withholding 0; unknown regime -> levy 0.
        """
        table = self._table()
        resolved_category = resolve_category(
            category, table.category_aliases, allow_fuzzy=self._allow_fuzzy
        )
        resolved_regime = resolve_regime(regime)

        if category and resolved_category is None:
            logger.warning("rate_category_unknown", extra={"category": str(category)})
        if regime and resolved_regime is None:
            logger.warning("rate_regime_unknown", extra={"regime": str(regime)})

        withholding = (
            table.withholding_by_category.get(resolved_category)
            if resolved_category is not None else None
        )
        levy = (
            table.levy_by_regime.get(resolved_regime)
            if resolved_regime is not None else None
        )

        rates = RateSet.of(
            withholding_rate=withholding,
            levy_rate=levy,
            vat_rate=table.vat_rate,
            mobile_money_rate=table.mobile_money_rate,
            policy=self._policy,
        )
        logger.debug("rates_resolved", extra={
            "category": resolved_category.value if resolved_category else None,
            "regime": resolved_regime.value if resolved_regime else None,
            "withholding_rate": str(rates.withholding_rate),
            "levy_rate": str(rates.levy_rate),
        })
        return rates

    def resolve_for(self, transaction: TransactionInput) -> RateSet:
        """Rates for a ``TransactionInput``'s category and regime."""
        return self.resolve(transaction.procurement_category, transaction.tax_regime)

    def withholding_rate(self, category: ProcurementCategory | str | None) -> Decimal:
        """Normalized withholding rate for a category alone (0 when unknown)."""
        return self.resolve(category, None).withholding_rate
