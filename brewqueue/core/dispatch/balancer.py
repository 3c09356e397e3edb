"""
Workload-aware barista selection.

Rules, applied to available baristas from least to most loaded:
- overloaded (> 1.2 × pool average pending minutes): short orders only (≤ 3 min)
- underutilized (< 0.8 × average): any order
- normal load: any order

If nobody qualifies, the least-loaded available barista still gets the order.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from brewqueue.core.dispatch.domain import Order


OVERLOADED_THRESHOLD = 1.2
UNDERUTILIZED_THRESHOLD = 0.8
SHORT_ORDER_MAX_MINUTES = 3


@dataclass(frozen=True)
class WorkerLoad:
    worker_id: int
    available: bool
    pending_minutes: int


def average_pending_minutes(loads: Sequence[WorkerLoad]) -> float:
    if not loads:
        return 0.0
    return sum(load.pending_minutes for load in loads) / len(loads)


def workload_ratio(pending_minutes: int, average: float) -> float:
    return pending_minutes / average if average > 0 else 1.0


def select_worker(order: Order, loads: Sequence[WorkerLoad]) -> Optional[int]:
    """Pick a barista id for ``order``, or None when nobody is available."""
    average = average_pending_minutes(loads)

    # sorted() is stable, so equal loads keep pool order
    candidates = sorted(
        (load for load in loads if load.available),
        key=lambda load: load.pending_minutes,
    )
    if not candidates:
        return None

    for load in candidates:
        ratio = workload_ratio(load.pending_minutes, average)

        if ratio > OVERLOADED_THRESHOLD:
            if order.prep_time_minutes <= SHORT_ORDER_MAX_MINUTES:
                return load.worker_id
        elif ratio < UNDERUTILIZED_THRESHOLD:
            return load.worker_id
        else:
            return load.worker_id

    return candidates[0].worker_id
