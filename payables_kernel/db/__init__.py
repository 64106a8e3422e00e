"""Persistence plumbing for the SQL budget-line store."""

from payables_kernel.db.base import AuditedBase, Base
from payables_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from payables_kernel.db.types import DecimalString, UTCDateTime, UUIDString

__all__ = [
    "AuditedBase",
    "Base",
    "DecimalString",
    "UTCDateTime",
    "UUIDString",
    "create_tables",
    "drop_tables",
    "get_session_factory",
    "init_engine_from_url",
    "reset_engine",
    "session_scope",
]
