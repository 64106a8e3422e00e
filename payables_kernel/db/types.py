"""
Module: payables_kernel.db.types
Responsibility: Column types that keep Decimal amounts and timezone-aware
    timestamps lossless on every supported backend.
Architecture position: Kernel > DB.  Imported by db/base.py and models/.
    MUST NOT import from models/, services/, or outer layers.

Invariants enforced:
    - No floats anywhere in persistence.  ``DecimalString`` stores the exact
      ``str(Decimal)`` so ``Decimal("0.10")`` reads back as ``Decimal("0.10")``
      on SQLite as well as PostgreSQL.
    - ``UTCDateTime`` always returns aware datetimes in UTC, even on
      backends (SQLite) that drop tzinfo.

Failure modes:
    - ValueError on binding a naive datetime to ``UTCDateTime``.
    - decimal.InvalidOperation if a stored string is not a number (only
      possible through out-of-band writes).
"""

from datetime import timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy import DateTime, String
from sqlalchemy.types import TypeDecorator


class DecimalString(TypeDecorator):
    """
    Decimal stored as its canonical string form.

    Guarantees:
        - process_bind_param: Decimal -> str on INSERT/UPDATE.
        - process_result_value: str -> Decimal on SELECT.
    """

    impl = String(64)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(Decimal(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value)


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime normalized to UTC."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"Naive datetime not allowed: {value!r}")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class UUIDString(TypeDecorator):
    """UUID kept as its 36-character text form."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)
