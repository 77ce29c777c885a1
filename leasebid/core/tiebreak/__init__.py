"""
Tie-Break Module.

Provides the randomness oracle strategies and the coordinator that
requests, awaits and watches verifiable tie resolutions.
"""

from leasebid.core.tiebreak.coordinator import (
    TieBreakCoordinator,
    TieBreakRequest,
    find_tied,
)
from leasebid.core.tiebreak.oracle import (
    MockRandomnessOracle,
    NullRandomnessOracle,
    RandomnessOracle,
    Resolution,
    ResolutionStatus,
    TieBreakPurpose,
)

__all__ = [
    "TieBreakCoordinator",
    "TieBreakRequest",
    "find_tied",
    "MockRandomnessOracle",
    "NullRandomnessOracle",
    "RandomnessOracle",
    "Resolution",
    "ResolutionStatus",
    "TieBreakPurpose",
]
