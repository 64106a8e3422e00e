"""
Rates -- Rate sets, rate normalization, and tax-category vocabulary.

Responsibility:
    Defines the ``RateSet`` every cascade evaluation consumes, the rule that
    turns percentage-style rates (``6``) into fractions (``0.06``), and the
    closed vocabularies for procurement categories, tax regimes, VAT
    decisions and payment channels.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Consumed by ``tax_cascade`` and by ``payables_services.rate_resolver``.

Invariants enforced:
    - Every rate in a constructed ``RateSet`` lies in [0, 1].
    - Normalization is idempotent: a value already <= 1 is never divided
      again, so ``normalize_rate(normalize_rate(x)) == normalize_rate(x)``.
    - Missing rates are 0, never an error.

Failure modes:
    - InvalidRateError for negative rates, or rates still above 1 after the
      percentage conversion, under ``RatePolicy.REJECT``.
    - InvalidInputError for non-numeric rates and unknown VAT decisions.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, fields
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping

from payables_kernel.domain.values import ONE_HUNDRED, ZERO, to_decimal
from payables_kernel.exceptions import InvalidInputError, InvalidRateError

ONE = Decimal("1")


class RatePolicy(str, Enum):
    """What to do with a rate that cannot be normalized into [0, 1]."""

    REJECT = "reject"
    CLAMP = "clamp"


class ProcurementCategory(str, Enum):
    """Procurement types that carry a withholding rate."""

    GOODS = "GOODS"
    SERVICES = "SERVICES"
    FLAT_RATE = "FLAT RATE"
    WORKS = "WORKS"
    DIRECTORS = "DIRECTORS"
    CONSULTANCY = "CONSULTANCY"
    RENT = "RENT"


class TaxRegime(str, Enum):
    """Tax types that determine the levy rate."""

    STANDARD = "STANDARD"
    FLAT_RATE = "FLAT RATE"
    ST_TOURISM = "ST+TOURISM"
    ST_CST = "ST+CST"
    EXEMPTED = "EXEMPTED"
    WHT = "WHT"


class VatDecision(str, Enum):
    """VAT choices offered by the payment form."""

    YES = "YES"
    NO = "NO"
    VATABLE = "VATABLE"
    NON_VATABLE = "NON_VATABLE"


PAYMENT_CHANNELS: tuple[str, ...] = (
    "BNK TRNSF",
    "MOMO TRANSFER",
    "CASH",
    "CHEQUE",
)

DEFAULT_MOBILE_MONEY_MARKERS: tuple[str, ...] = ("MOMO",)

_TRUE_DECISIONS = frozenset({"YES", "Y", "TRUE", "VATABLE"})
_FALSE_DECISIONS = frozenset({"NO", "N", "FALSE", "NON_VATABLE", "NON-VATABLE", "NON VATABLE", ""})


def normalize_rate(
    value: Any,
    name: str = "rate",
    policy: RatePolicy = RatePolicy.REJECT,
) -> Decimal:
    """
    Normalize a rate into a fraction in [0, 1].

    Preconditions:
        value is None, a number, or a numeric string.

    Postconditions:
        - None / "" -> 0.
        - A value above 1 is read as a percentage and divided by 100 once.
        - Under CLAMP, the result is clamped into [0, 1].

    Raises:
        InvalidRateError: Under REJECT, when the value is negative or still
            above 1 after the percentage conversion.
        InvalidInputError: When the value is not numeric.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return ZERO
    rate = to_decimal(value, name)
    if rate > ONE:
        rate = rate / ONE_HUNDRED

    if rate < ZERO:
        if policy is RatePolicy.CLAMP:
            return ZERO
        raise InvalidRateError(name, value, "rate cannot be negative")
    if rate > ONE:
        if policy is RatePolicy.CLAMP:
            return ONE
        raise InvalidRateError(name, value, "rate exceeds 100%")
    return rate


@dataclass(frozen=True)
class RateSet:
    """
    The four rates a cascade evaluation uses.

    Contract:
        Construction normalizes every field under ``RatePolicy.REJECT``;
        use ``RateSet.of(..., policy=RatePolicy.CLAMP)`` to clamp instead.

    Guarantees:
        - Every field is a Decimal in [0, 1].
        - Re-constructing from an existing RateSet's values is a no-op.
    """

    withholding_rate: Decimal = ZERO
    levy_rate: Decimal = ZERO
    vat_rate: Decimal = ZERO
    mobile_money_rate: Decimal = ZERO

    def __post_init__(self) -> None:
        for f in fields(self):
            object.__setattr__(
                self, f.name, normalize_rate(getattr(self, f.name), f.name)
            )

    @classmethod
    def of(
        cls,
        withholding_rate: Any = None,
        levy_rate: Any = None,
        vat_rate: Any = None,
        mobile_money_rate: Any = None,
        policy: RatePolicy = RatePolicy.REJECT,
    ) -> RateSet:
        """Build a RateSet from loosely-typed values under ``policy``."""
        return cls(
            withholding_rate=normalize_rate(withholding_rate, "withholding_rate", policy),
            levy_rate=normalize_rate(levy_rate, "levy_rate", policy),
            vat_rate=normalize_rate(vat_rate, "vat_rate", policy),
            mobile_money_rate=normalize_rate(mobile_money_rate, "mobile_money_rate", policy),
        )

    @property
    def is_zero(self) -> bool:
        return not any(getattr(self, f.name) for f in fields(self))


# ---------------------------------------------------------------------------
# Category resolution
# ---------------------------------------------------------------------------


def _canonical_name(name: str) -> str:
    return re.sub(r"\s+", " ", name.strip().upper())


def resolve_category(
    name: str | ProcurementCategory | None,
    aliases: Mapping[str, ProcurementCategory | str] | None = None,
    allow_fuzzy: bool = False,
) -> ProcurementCategory | None:
    """
    Map a free-form procurement type onto ``ProcurementCategory``.

    Lookup order: exact enum value, then the alias table, then (only when
    ``allow_fuzzy``) the singular/plural toggle: a trailing "S" is dropped,
    or one is appended, and both lookups are retried.

    The fuzzy toggle exists for historical data entered as "SERVICE" or
    "GOOD"; new callers should extend the alias table instead.

    Returns:
        The category, or None when nothing matches.
    """
    if name is None:
        return None
    if isinstance(name, ProcurementCategory):
        return name

    table = {_canonical_name(k): ProcurementCategory(v) for k, v in (aliases or {}).items()}

    def lookup(candidate: str) -> ProcurementCategory | None:
        try:
            return ProcurementCategory(candidate)
        except ValueError:
            return table.get(candidate)

    canonical = _canonical_name(name)
    if not canonical:
        return None
    found = lookup(canonical)
    if found is not None or not allow_fuzzy:
        return found

    if canonical.endswith("S"):
        return lookup(canonical[:-1])
    return lookup(canonical + "S")


def resolve_regime(name: str | TaxRegime | None) -> TaxRegime | None:
    """Map a tax type string onto ``TaxRegime``; None when unknown."""
    if name is None or isinstance(name, TaxRegime):
        return name
    try:
        return TaxRegime(_canonical_name(name))
    except ValueError:
        return None


def parse_vat_decision(value: Any) -> bool:
    """
    Read a VAT decision as a bool.

    Accepts bools and the form-layer choices YES / NO / VATABLE /
    NON_VATABLE (case-insensitive).  None means no VAT.

    Raises:
        InvalidInputError: For any other value.
    """
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, VatDecision):
        value = value.value
    if isinstance(value, str):
        decision = value.strip().upper()
        if decision in _TRUE_DECISIONS:
            return True
        if decision in _FALSE_DECISIONS:
            return False
    raise InvalidInputError("vat_applicable", value, "unknown VAT decision")


def is_mobile_money(
    channel: str | None,
    markers: tuple[str, ...] = DEFAULT_MOBILE_MONEY_MARKERS,
) -> bool:
    """True when the payment channel contains a mobile-money marker."""
    if not channel:
        return False
    upper = channel.upper()
    return any(marker.upper() in upper for marker in markers)
