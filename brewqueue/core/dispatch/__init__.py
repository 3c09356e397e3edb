"""
Dispatch core: priority scoring, workload balancing and the live dispatcher.

This package contains:
- ``domain`` — Order / Worker entities, lifecycle and stats records
- ``priority`` — priority score + auditable explanation
- ``balancer`` — workload-aware barista selection
- ``dispatcher`` — queue, assignment, fairness bookkeeping, alerts, queries
- ``timers`` — recalculation loop and completion timer (asyncio tasks)

Nothing in this package talks to HTTP; the transport layer adapts it.
"""
