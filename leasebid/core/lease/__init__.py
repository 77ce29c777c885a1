"""
Lease Module.

Provides the per-vertical lease slot and the lifecycle manager that
drives grace, renewal, pause and expiry.
"""

from leasebid.core.lease.slot import LeaseEvent, LeaseSlot, LeaseStatus
from leasebid.core.lease.manager import LeaseLifecycleManager, SweepResult

__all__ = [
    "LeaseEvent",
    "LeaseSlot",
    "LeaseStatus",
    "LeaseLifecycleManager",
    "SweepResult",
]
