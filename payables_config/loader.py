"""
Configuration Loader (``payables_config.loader``).

Responsibility
--------------
Loads the YAML settings file and parses it into the frozen dataclasses of
``payables_config.schema``.  Callers go through
``payables_config.get_active_config()``; the parse functions are public for
tests.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* Unknown keys inside a section are rejected.
* ``compute_checksum`` is deterministic.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid values  -> ``ValueError`` with the offending key.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from payables_config.schema import (
    CoordinatorSettings,
    EngineSettings,
    LedgerSettings,
    RateCacheSettings,
    RateTableSettings,
    TaxSettings,
)

_RATE_POLICIES = frozenset({"reject", "clamp"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def _section(data: dict[str, Any], name: str, allowed: set[str]) -> dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ValueError(f"Section {name!r} must be a mapping")
    unknown = set(section) - allowed
    if unknown:
        raise ValueError(f"Unknown keys in {name!r}: {sorted(unknown)}")
    return section


def _decimal_text(value: Any, key: str) -> str:
    if isinstance(value, bool):
        raise ValueError(f"{key} must be numeric, got {value!r}")
    try:
        parsed = Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"{key} must be numeric, got {value!r}") from None
    if not parsed.is_finite():
        raise ValueError(f"{key} must be finite, got {value!r}")
    return str(value)


def _positive_int(value: Any, key: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError(f"{key} must be a positive integer, got {value!r}")
    return value


def _codes(value: Any, key: str) -> tuple[str, ...]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
        raise ValueError(f"{key} must be a list of strings")
    return tuple(v.strip().upper() for v in value)


def _pairs(value: Any, key: str, numeric: bool) -> tuple[tuple[str, str], ...]:
    if not isinstance(value, dict):
        raise ValueError(f"{key} must be a mapping")
    pairs = []
    for name, raw in value.items():
        text = _decimal_text(raw, f"{key}.{name}") if numeric else str(raw)
        pairs.append((str(name), text))
    return tuple(pairs)


def parse_tax(data: dict[str, Any]) -> TaxSettings:
    section = _section(data, "tax", {
        "reporting_currency", "withholding_currencies", "mobile_money_markers",
        "amount_places", "rate_policy",
    })
    defaults = TaxSettings()
    places = section.get("amount_places", defaults.amount_places)
    if isinstance(places, bool) or not isinstance(places, int) or places < 0:
        raise ValueError(f"tax.amount_places must be a non-negative integer, got {places!r}")
    policy = str(section.get("rate_policy", defaults.rate_policy)).lower()
    if policy not in _RATE_POLICIES:
        raise ValueError(f"tax.rate_policy must be one of {sorted(_RATE_POLICIES)}, got {policy!r}")
    return TaxSettings(
        reporting_currency=str(section.get("reporting_currency", defaults.reporting_currency)).upper(),
        withholding_currencies=_codes(
            section.get("withholding_currencies", defaults.withholding_currencies),
            "tax.withholding_currencies",
        ),
        mobile_money_markers=_codes(
            section.get("mobile_money_markers", defaults.mobile_money_markers),
            "tax.mobile_money_markers",
        ),
        amount_places=places,
        rate_policy=policy,
    )


def parse_rates(data: dict[str, Any]) -> RateTableSettings:
    section = _section(data, "rates", {
        "vat_rate", "mobile_money_rate", "withholding_by_category",
        "levy_by_regime", "category_aliases", "allow_fuzzy_categories",
    })
    return RateTableSettings(
        vat_rate=_decimal_text(section.get("vat_rate", "0"), "rates.vat_rate"),
        mobile_money_rate=_decimal_text(
            section.get("mobile_money_rate", "0"), "rates.mobile_money_rate"
        ),
        withholding_by_category=_pairs(
            section.get("withholding_by_category", {}), "rates.withholding_by_category", True
        ),
        levy_by_regime=_pairs(section.get("levy_by_regime", {}), "rates.levy_by_regime", True),
        category_aliases=_pairs(
            section.get("category_aliases", {}), "rates.category_aliases", False
        ),
        allow_fuzzy_categories=bool(section.get("allow_fuzzy_categories", True)),
    )


def parse_ledger(data: dict[str, Any]) -> LedgerSettings:
    section = _section(data, "ledger", {"underspent_threshold", "months_per_year"})
    threshold = _decimal_text(
        section.get("underspent_threshold", "0.8"), "ledger.underspent_threshold"
    )
    if not Decimal("0") <= Decimal(threshold) <= Decimal("1"):
        raise ValueError(f"ledger.underspent_threshold must be in [0, 1], got {threshold}")
    return LedgerSettings(
        underspent_threshold=threshold,
        months_per_year=_positive_int(section.get("months_per_year", 12), "ledger.months_per_year"),
    )


def parse_coordinator(data: dict[str, Any]) -> CoordinatorSettings:
    section = _section(data, "coordinator", {"max_attempts"})
    return CoordinatorSettings(
        max_attempts=_positive_int(section.get("max_attempts", 5), "coordinator.max_attempts"),
    )


def parse_rate_cache(data: dict[str, Any]) -> RateCacheSettings:
    section = _section(data, "rate_cache", {"ttl_seconds", "enabled"})
    ttl = section.get("ttl_seconds", 600)
    if isinstance(ttl, bool) or not isinstance(ttl, (int, float)) or ttl < 0:
        raise ValueError(f"rate_cache.ttl_seconds must be a non-negative number, got {ttl!r}")
    return RateCacheSettings(ttl_seconds=ttl, enabled=bool(section.get("enabled", True)))


def parse_settings(data: dict[str, Any], source: str = "") -> EngineSettings:
    """Parse a whole settings document."""
    return EngineSettings(
        tax=parse_tax(data),
        rates=parse_rates(data),
        ledger=parse_ledger(data),
        coordinator=parse_coordinator(data),
        rate_cache=parse_rate_cache(data),
        source=source,
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Postconditions:
        - Returns a hex-encoded SHA-256 hash string.
        - Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
