"""
Values -- Decimal coercion, amount rounding, and month-key arithmetic.

Responsibility:
    Provides the primitive helpers every other payables module uses to turn
    form-layer numbers into ``Decimal`` and to move between "YYYY-MM" month
    keys.  Monetary arithmetic is never performed on floats.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Imported by domain records, engines, and services.

Invariants enforced:
    - ``to_decimal`` never returns a float-derived binary artefact: floats are
      converted through ``str`` so ``0.1`` becomes ``Decimal("0.1")``.
    - ``quantize_amount`` is the ONLY sanctioned rounding function for
      amounts (ROUND_HALF_UP).
    - Month keys are always zero-padded "YYYY-MM" with month in 1..12.

Failure modes:
    - InvalidInputError on non-numeric, boolean, NaN or infinite amounts.
    - InvalidInputError on malformed month keys.
"""

from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from payables_kernel.exceptions import InvalidInputError

ZERO = Decimal("0")
ONE_HUNDRED = Decimal("100")

DEFAULT_AMOUNT_PLACES = 2

_MONTH_KEY_RE = re.compile(r"^(\d{4})-(\d{2})$")


def to_decimal(value: Any, field: str = "amount") -> Decimal:
    """
    Coerce a form-layer number into a finite ``Decimal``.

    Preconditions:
        value is a Decimal, int, float, or numeric string.

    Postconditions:
        Returns a finite Decimal.  Strings are stripped before parsing and
        may carry thousands separators (``"1,250.50"``).

    Raises:
        InvalidInputError: bool, None, non-numeric string, NaN or infinity.
    """
    if isinstance(value, bool) or value is None:
        raise InvalidInputError(field, value, "must be numeric")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(str(value))
    elif isinstance(value, str):
        text = value.strip().replace(",", "")
        if not text:
            raise InvalidInputError(field, value, "must be numeric")
        try:
            result = Decimal(text)
        except InvalidOperation:
            raise InvalidInputError(field, value, "must be numeric") from None
    else:
        raise InvalidInputError(field, value, "must be numeric")

    if not result.is_finite():
        raise InvalidInputError(field, value, "must be finite")
    return result


def to_optional_decimal(value: Any, field: str = "amount") -> Decimal | None:
    """Like ``to_decimal`` but maps None and "" to None."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return to_decimal(value, field)


def quantize_amount(value: Decimal, places: int = DEFAULT_AMOUNT_PLACES) -> Decimal:
    """Round an amount to ``places`` decimal places using ROUND_HALF_UP."""
    exponent = Decimal(1).scaleb(-places)
    return value.quantize(exponent, rounding=ROUND_HALF_UP)


# ---------------------------------------------------------------------------
# Month keys
# ---------------------------------------------------------------------------


def month_key(year: int, month: int) -> str:
    """Build a "YYYY-MM" key."""
    if not 1 <= month <= 12:
        raise InvalidInputError("month", month, "must be between 1 and 12")
    return f"{year:04d}-{month:02d}"


def parse_month_key(key: str) -> tuple[int, int]:
    """
    Split a "YYYY-MM" key into ``(year, month)``.

    Raises:
        InvalidInputError: If the key is not a well-formed month key.
    """
    match = _MONTH_KEY_RE.match(key) if isinstance(key, str) else None
    if match is None:
        raise InvalidInputError("month_key", key, "must look like YYYY-MM")
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        raise InvalidInputError("month_key", key, "month must be between 01 and 12")
    return year, month


def next_month(key: str) -> str:
    """The calendar month after ``key`` (December rolls into January)."""
    year, month = parse_month_key(key)
    if month == 12:
        return month_key(year + 1, 1)
    return month_key(year, month + 1)


def previous_month(key: str) -> str:
    """The calendar month before ``key`` (January rolls back to December)."""
    year, month = parse_month_key(key)
    if month == 1:
        return month_key(year - 1, 12)
    return month_key(year, month - 1)


def months_for_year(fiscal_year: int, count: int = 12) -> tuple[str, ...]:
    """Month keys ``{fiscal_year}-01`` onward, ``count`` of them."""
    keys: list[str] = []
    key = month_key(fiscal_year, 1)
    for _ in range(count):
        keys.append(key)
        key = next_month(key)
    return tuple(keys)


def month_ordinal(key: str) -> int:
    """Monotonic integer for ordering month keys."""
    year, month = parse_month_key(key)
    return year * 12 + (month - 1)
