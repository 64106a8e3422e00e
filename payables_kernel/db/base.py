"""
Module: payables_kernel.db.base
Responsibility: Declarative base shared by the budget-line tables.
Architecture position: Kernel > DB.  Imported by models/ only.

Invariants enforced:
    - Every table has a surrogate uuid4 ``id``.  Budget line identifiers are
      ordinary unique columns, never primary keys.
    - ``Mapped[Decimal]`` columns are ``DecimalString`` and ``Mapped[datetime]``
      columns are ``UTCDateTime`` unless a model says otherwise.
    - Audited tables record who created and who last wrote the row.
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from payables_kernel.db.types import DecimalString, UTCDateTime, UUIDString


class Base(DeclarativeBase):
    """Root of the payables ORM metadata."""

    type_annotation_map: ClassVar[dict] = {
        Decimal: DecimalString(),
        datetime: UTCDateTime(),
        UUID: UUIDString(),
    }

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)


class AuditedBase(Base):
    """
    Base for tables whose rows are rewritten in place.

    ``created_at``/``updated_at`` come from the database clock;
    ``created_by``/``updated_by`` are the store's actor name.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        onupdate=func.now(),
    )
    created_by: Mapped[str] = mapped_column(String(100))
    updated_by: Mapped[str | None] = mapped_column(String(100))
