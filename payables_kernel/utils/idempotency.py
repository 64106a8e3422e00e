"""
Idempotency key generation utilities.

Idempotency keys ensure that the same payment finalization or reversal is
recorded at most once in a budget line's balance history, even under
at-least-once delivery and retries.
"""

from payables_kernel.domain.budget import HistoryEntryType


def generate_history_key(
    budget_line_id: str,
    entry_type: HistoryEntryType | str,
    payment_id: str,
) -> str:
    """
    Generate an idempotency key for a balance history record.

    Format: budget_line_id:entry_type:payment_id

    The key is stored on balance_history rows under a unique constraint.

    Example:
        >>> generate_history_key("BL-7", HistoryEntryType.PAYMENT_FINALIZED, "PAY-1")
        "BL-7:PAYMENT_FINALIZED:PAY-1"
    """
    kind = entry_type.value if isinstance(entry_type, HistoryEntryType) else entry_type
    return f"{budget_line_id}:{kind}:{payment_id}"


def parse_history_key(key: str) -> tuple[str, str, str]:
    """
    Parse a history key into ``(budget_line_id, entry_type, payment_id)``.

    Raises:
        ValueError: If key format is invalid.
    """
    parts = key.split(":", 2)
    if len(parts) != 3:
        raise ValueError(f"Invalid history key format: {key}")
    return parts[0], parts[1], parts[2]
