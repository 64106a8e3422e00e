"""Utility modules for the payables kernel."""

from payables_kernel.utils.idempotency import generate_history_key, parse_history_key

__all__ = [
    "generate_history_key",
    "parse_history_key",
]
