"""
Priority scoring for queued orders.

    Priority = (0.40 × WaitScore) + (0.25 × ComplexityScore)
             + (0.10 × LoyaltyScore) + (0.25 × UrgencyScore)
             + FairnessBoost, capped at 100

Every sub-score is normalized to 0-100.  The explanation string is part of
the API response and lists the terms in a fixed order so operators can audit
why an order jumped the queue.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from brewqueue.core.dispatch.domain import MAX_PREP_TIME_MINUTES, MIN_PREP_TIME_MINUTES

if TYPE_CHECKING:
    from brewqueue.core.dispatch.domain import Order


WEIGHT_WAIT_TIME = 0.40
WEIGHT_COMPLEXITY = 0.25
WEIGHT_LOYALTY = 0.10
WEIGHT_URGENCY = 0.25

# Thresholds (minutes)
MAX_WAIT_TIME_MINUTES = 10.0
MODERATE_THRESHOLD_MINUTES = 6.0
EMERGENCY_THRESHOLD_MINUTES = 8.0
CRITICAL_THRESHOLD_MINUTES = 9.0

FAIRNESS_SKIP_THRESHOLD = 3
FAIRNESS_PENALTY_BOOST = 15.0

MAX_PRIORITY = 100.0


@dataclass(frozen=True)
class PriorityBreakdown:
    wait_score: float
    complexity_score: float
    loyalty_score: float
    urgency_score: float
    fairness_boost: float  # boost actually applied after the cap
    priority: float

    @property
    def weighted_wait(self) -> float:
        return self.wait_score * WEIGHT_WAIT_TIME

    @property
    def weighted_complexity(self) -> float:
        return self.complexity_score * WEIGHT_COMPLEXITY

    @property
    def weighted_loyalty(self) -> float:
        return self.loyalty_score * WEIGHT_LOYALTY

    @property
    def weighted_urgency(self) -> float:
        return self.urgency_score * WEIGHT_URGENCY

    @property
    def base_priority(self) -> float:
        return self.weighted_wait + self.weighted_complexity + self.weighted_loyalty + self.weighted_urgency

    @property
    def explanation(self) -> str:
        text = (
            f"Wait: {self.wait_score:.1f} (×0.40={self.weighted_wait:.1f}) + "
            f"Complexity: {self.complexity_score:.1f} (×0.25={self.weighted_complexity:.1f}) + "
            f"Loyalty: {self.loyalty_score:.1f} (×0.10={self.weighted_loyalty:.1f}) + "
            f"Urgency: {self.urgency_score:.1f} (×0.25={self.weighted_urgency:.1f})"
        )
        if self.fairness_boost > 0:
            text += f" + Fairness: +{self.fairness_boost:.1f}"
        return f"{text} = {self.priority:.1f}"


def wait_score(wait_minutes: float) -> float:
    return min(100.0, (wait_minutes / MAX_WAIT_TIME_MINUTES) * 100)


def complexity_score(prep_time_minutes: int) -> float:
    # Shorter drinks score higher
    span = MAX_PREP_TIME_MINUTES - MIN_PREP_TIME_MINUTES
    return ((MAX_PREP_TIME_MINUTES - prep_time_minutes) / span) * 100


def loyalty_score(loyalty_tier: int, is_regular_customer: bool) -> float:
    if is_regular_customer:
        return min(100.0, 50 + loyalty_tier * 10)
    return min(100.0, loyalty_tier * 10)


def urgency_score(wait_minutes: float) -> float:
    # Branch boundaries use >=; at exactly 8 the emergency branch gives 75,
    # which is where the moderate branch ends.
    if wait_minutes >= CRITICAL_THRESHOLD_MINUTES:
        return 100.0
    if wait_minutes >= EMERGENCY_THRESHOLD_MINUTES:
        return 75 + (wait_minutes - EMERGENCY_THRESHOLD_MINUTES) * 25
    if wait_minutes >= MODERATE_THRESHOLD_MINUTES:
        return 25 + ((wait_minutes - MODERATE_THRESHOLD_MINUTES) / 2) * 50
    return (wait_minutes / MODERATE_THRESHOLD_MINUTES) * 25


def fairness_boost(skip_count: int) -> float:
    if skip_count > FAIRNESS_SKIP_THRESHOLD:
        return (skip_count - FAIRNESS_SKIP_THRESHOLD) * FAIRNESS_PENALTY_BOOST
    return 0.0


def compute_priority(
    wait_minutes: float,
    prep_time_minutes: int,
    loyalty_tier: int,
    is_regular_customer: bool,
    skip_count: int = 0,
) -> PriorityBreakdown:
    """Score raw order attributes. Shared by the live dispatcher and the simulator."""
    wait_minutes = max(0.0, wait_minutes)

    wait = wait_score(wait_minutes)
    complexity = complexity_score(prep_time_minutes)
    loyalty = loyalty_score(loyalty_tier, is_regular_customer)
    urgency = urgency_score(wait_minutes)

    base = (
        WEIGHT_WAIT_TIME * wait
        + WEIGHT_COMPLEXITY * complexity
        + WEIGHT_LOYALTY * loyalty
        + WEIGHT_URGENCY * urgency
    )
    final = min(MAX_PRIORITY, base + fairness_boost(skip_count))

    return PriorityBreakdown(
        wait_score=wait,
        complexity_score=complexity,
        loyalty_score=loyalty,
        urgency_score=urgency,
        fairness_boost=max(0.0, final - base),
        priority=final,
    )


def score(order: "Order", now: datetime) -> PriorityBreakdown:
    return compute_priority(
        wait_minutes=order.wait_minutes(now),
        prep_time_minutes=order.prep_time_minutes,
        loyalty_tier=order.loyalty_tier,
        is_regular_customer=order.is_regular_customer,
        skip_count=order.skip_count,
    )
