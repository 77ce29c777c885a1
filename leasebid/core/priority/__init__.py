"""
Priority Module.

Resolves lease-holder priority (multiplier, early-bidding window) and
provides the auditable window computation.
"""

from leasebid.core.priority.resolver import (
    NON_PRIORITY,
    NonceVerification,
    PriorityResolver,
    PriorityStatus,
    WindowStatus,
    compute_priority_window,
    priority_window_status,
    verify_window_nonce,
)

__all__ = [
    "NON_PRIORITY",
    "NonceVerification",
    "PriorityResolver",
    "PriorityStatus",
    "WindowStatus",
    "compute_priority_window",
    "priority_window_status",
    "verify_window_nonce",
]
