"""
Concurrent balance updates on one budget line.

Many threads finalize distinct payments against the same line at once.
Optimistic versioning must serialize them: every payment lands exactly
once, the chained balances form an unbroken sequence and no update is lost.

Expected Behavior:
- Final balance == starting balance - sum of payments
- One history record per payment, sequences 1..N with no gaps
- Each record's previous_balance equals the prior record's new_balance
"""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from threading import Barrier

import pytest

from payables_kernel.domain.budget import resolve_current_balance
from payables_services.balance_coordinator import BalanceUpdateCoordinator
from payables_services.rollover_service import RolloverService

THREADS = 8
PAYMENTS_PER_THREAD = 5


@pytest.fixture
def racing_coordinator(memory_store, ledger, clock):
    return BalanceUpdateCoordinator(
        memory_store, ledger, clock, max_attempts=THREADS * PAYMENTS_PER_THREAD * 4
    )


def _run_concurrently(worker, count):
    barrier = Barrier(count)

    def start(index):
        barrier.wait()
        return worker(index)

    with ThreadPoolExecutor(max_workers=count) as pool:
        return list(pool.map(start, range(count)))


class TestConcurrentPayments:

    def test_no_lost_updates(self, racing_coordinator, memory_store, budget_line):
        def worker(index):
            results = []
            for n in range(PAYMENTS_PER_THREAD):
                results.append(racing_coordinator.apply_finalized_payment(
                    budget_line.id,
                    Decimal(f"{index + 1}.{n:02d}"),
                    f"PAY-{index}-{n}",
                    month_key="2025-01",
                ))
            return results

        outcomes = [r for batch in _run_concurrently(worker, THREADS) for r in batch]

        expected_total = sum(
            Decimal(f"{i + 1}.{n:02d}")
            for i in range(THREADS) for n in range(PAYMENTS_PER_THREAD)
        )
        line = memory_store.read(budget_line.id).line
        balance, _ = resolve_current_balance(line)

        assert not any(o.duplicate for o in outcomes)
        assert balance == Decimal("12000") - expected_total
        assert line.total_spent == expected_total
        assert line.month("2025-01").spent == expected_total

        history = line.balance_history
        assert len(history) == THREADS * PAYMENTS_PER_THREAD
        assert [r.sequence for r in history] == list(range(1, len(history) + 1))
        for before, after in zip(history, history[1:]):
            assert after.previous_balance == before.new_balance

    def test_same_payment_id_applied_once(self, racing_coordinator, memory_store, budget_line):
        outcomes = _run_concurrently(
            lambda _: racing_coordinator.apply_finalized_payment(
                budget_line.id, "75", "PAY-SHARED", month_key="2025-01"
            ),
            THREADS,
        )

        assert sum(1 for o in outcomes if not o.duplicate) == 1
        line = memory_store.read(budget_line.id).line
        assert len(line.balance_history) == 1
        assert line.total_spent == Decimal("75")

    def test_rollover_races_with_payments(
        self, racing_coordinator, memory_store, budget_line
    ):
        rollover = RolloverService(memory_store, max_attempts=THREADS * 4)

        def worker(index):
            if index == 0:
                return rollover.roll_over(budget_line.id, "2025-06")
            return racing_coordinator.apply_finalized_payment(
                budget_line.id, "10", f"PAY-{index}", month_key="2025-03"
            )

        _run_concurrently(worker, THREADS)

        line = memory_store.read(budget_line.id).line
        assert line.month("2025-07").rollover_amount == Decimal("1000")
        assert line.month("2025-03").spent == Decimal("10") * (THREADS - 1)
        assert len(line.balance_history) == THREADS - 1
