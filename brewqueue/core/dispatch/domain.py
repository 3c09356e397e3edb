from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


MIN_PREP_TIME_MINUTES = 2
MAX_PREP_TIME_MINUTES = 8
MIN_LOYALTY_TIER = 1
MAX_LOYALTY_TIER = 5


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def clamp_prep_time(minutes: int) -> int:
    return max(MIN_PREP_TIME_MINUTES, min(MAX_PREP_TIME_MINUTES, minutes))


def clamp_loyalty_tier(tier: int) -> int:
    return max(MIN_LOYALTY_TIER, min(MAX_LOYALTY_TIER, tier))


def minutes_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 60.0


class OrderStateError(Exception):
    """Raised when an order is moved anywhere but one step forward."""


# ============================================================================
# ORDER
# ============================================================================

class OrderStatus(str, Enum):
    """Forward-only order lifecycle."""
    QUEUED = "queued"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


_NEXT_STATUS = {
    OrderStatus.QUEUED: OrderStatus.ASSIGNED,
    OrderStatus.ASSIGNED: OrderStatus.IN_PROGRESS,
    OrderStatus.IN_PROGRESS: OrderStatus.COMPLETED,
}


@dataclass
class Order:
    """
    A drink order owned by the dispatcher's arena.

    ``id`` doubles as the insertion sequence: it is handed out by a
    monotonically increasing counter, so it breaks priority ties in
    arrival order.
    """
    id: int
    drink_name: str
    prep_time_minutes: int
    loyalty_tier: int
    is_regular_customer: bool
    arrival_time: datetime
    owner: Optional[str] = None

    priority: float = 0.0
    priority_explanation: str = ""
    skip_count: int = 0
    assigned_worker_id: Optional[int] = None
    status: OrderStatus = OrderStatus.QUEUED
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    timeout_notified: bool = False

    def transition_to(self, status: OrderStatus) -> None:
        if _NEXT_STATUS.get(self.status) != status:
            raise OrderStateError(
                f"Order #{self.id}: illegal transition {self.status.value} -> {status.value}"
            )
        self.status = status

    def wait_minutes(self, now: datetime) -> float:
        """Time spent waiting for a barista; frozen once work starts."""
        end = self.started_at if self.started_at is not None else now
        return minutes_between(self.arrival_time, end)

    def is_prep_elapsed(self, now: datetime) -> bool:
        if self.status != OrderStatus.IN_PROGRESS or self.started_at is None:
            return False
        return minutes_between(self.started_at, now) >= self.prep_time_minutes


# ============================================================================
# WORKER
# ============================================================================

@dataclass
class Worker:
    """
    A barista. Holds only order ids; the dispatcher owns the orders.
    """
    id: int
    name: str
    order_ids: list[int] = field(default_factory=list)
    available: bool = True
    busy_until: Optional[datetime] = None
    orders_completed: int = 0
    total_work_minutes: int = 0
    late_completions: int = 0  # completed after waiting more than 10 min


# ============================================================================
# COMPLAINTS & STATS
# ============================================================================

@dataclass
class Complaint:
    """Record handed to the complaint sink."""
    worker_label: str
    owner_label: str
    message: str
    order_id: Optional[int] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class WorkerLoadStat:
    name: str
    pending_minutes: int
    ratio: float


@dataclass(frozen=True)
class DispatchStats:
    queue_size: int
    completed_count: int
    average_wait_minutes: float
    timeout_count: int
    worker_workloads: dict[str, WorkerLoadStat]


@dataclass(frozen=True)
class WorkerStats:
    id: int
    name: str
    orders_completed: int
    pending_minutes: int
    avg_minutes_per_order: float
    workload_ratio: float
    timeouts: int
    available: bool
