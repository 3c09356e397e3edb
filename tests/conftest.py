# tests/conftest.py
"""Pytest configuration and fixtures"""
import pytest
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from brewqueue.core.dispatch.dispatcher import Dispatcher  # noqa: E402
from brewqueue.core.dispatch.domain import OrderStatus  # noqa: E402


class FakeClock:
    """Manually advanced clock for deterministic dispatcher tests"""

    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, minutes: float = 0.0, seconds: float = 0.0) -> None:
        self.current += timedelta(minutes=minutes, seconds=seconds)


def _assert_dispatch_invariants(dispatcher: Dispatcher) -> None:
    """Placement and per-barista invariants that must hold after every operation"""
    pending_ids = {o.id for o in dispatcher.get_queue()}
    seen: set[int] = set()

    for worker in dispatcher.get_workers():
        ids = set(worker.order_ids)
        assert not ids & pending_ids, "order is both pending and assigned"
        assert not ids & seen, "order is assigned to two baristas"
        seen |= ids

        statuses = [dispatcher.get_order(i).status for i in worker.order_ids]
        in_progress = statuses.count(OrderStatus.IN_PROGRESS)
        assert in_progress <= 1
        assert worker.available == (in_progress == 0)

    for order_id in pending_ids:
        assert dispatcher.get_order(order_id).status == OrderStatus.QUEUED


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def dispatcher(clock):
    """Default three-barista pool on a fake clock"""
    return Dispatcher(["Alice", "Bob", "Charlie"], clock=clock)


@pytest.fixture
def solo_dispatcher(clock):
    """Single-barista pool; makes queueing behaviour easy to force"""
    return Dispatcher(["Solo"], clock=clock)


@pytest.fixture
def check_invariants():
    """Call after any dispatcher operation to verify placement invariants"""
    return _assert_dispatch_invariants
