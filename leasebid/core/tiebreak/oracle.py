"""
Randomness Oracle - Strategy interface for verifiable tie resolution.

The oracle is optional. NullRandomnessOracle reports `configured = False`
and is selected once at construction when no oracle is available, so
business logic never branches on configuration.

Status codes follow the request lifecycle:
    NONE (0) -> PENDING (1) -> FULFILLED (2) | FAILED (3)
"""

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Dict, List, Optional

from leasebid.core.errors import ExternalUnavailable
from leasebid.crypto import stable_hash_int


class ResolutionStatus(IntEnum):
    NONE = 0
    PENDING = 1
    FULFILLED = 2
    FAILED = 3


class TieBreakPurpose(str, Enum):
    AUCTION_TIE = "AUCTION_TIE"
    BOUNTY_ALLOCATION = "BOUNTY_ALLOCATION"


@dataclass
class Resolution:
    status: ResolutionStatus
    winner: Optional[str] = None
    random_word: Optional[int] = None


class RandomnessOracle:
    """Interface for external randomness oracles."""

    configured = True

    async def request(self, subject_hash: str, candidates: List[str], purpose: TieBreakPurpose) -> str:
        """Submit a request; returns an opaque request reference."""
        raise NotImplementedError

    async def poll(self, subject_hash: str) -> Resolution:
        raise NotImplementedError


class NullRandomnessOracle(RandomnessOracle):
    """No oracle configured; callers fall back to deterministic ordering."""

    configured = False

    async def request(self, subject_hash, candidates, purpose) -> str:
        raise ExternalUnavailable("randomness oracle not configured")

    async def poll(self, subject_hash) -> Resolution:
        return Resolution(status=ResolutionStatus.NONE)


class MockRandomnessOracle(RandomnessOracle):
    """
    Deterministic in-process oracle for tests and local runs.
    
    A request is fulfilled after `fulfill_after_polls` polls. The random
    word is SHA-256("{seed}:{subject_hash}") so results are reproducible.
    
    Failure knobs:
        fail_requests: request() raises ExternalUnavailable
        fail_resolution: the request ends FAILED instead of FULFILLED
        poll_error: poll() raises ExternalUnavailable
    """

    def __init__(
        self,
        seed: int = 0,
        fulfill_after_polls: int = 1,
        fail_requests: bool = False,
        fail_resolution: bool = False,
        poll_error: bool = False,
    ):
        self.seed = seed
        self.fulfill_after_polls = fulfill_after_polls
        self.fail_requests = fail_requests
        self.fail_resolution = fail_resolution
        self.poll_error = poll_error
        self._requests: Dict[str, List[str]] = {}
        self._polls: Dict[str, int] = {}
        self.request_count = 0

    async def request(self, subject_hash, candidates, purpose) -> str:
        if self.fail_requests:
            raise ExternalUnavailable("oracle request rejected")
        self.request_count += 1
        self._requests[subject_hash] = list(candidates)
        self._polls[subject_hash] = 0
        return f"req-{self.request_count}"

    def random_word(self, subject_hash: str) -> int:
        return stable_hash_int(f"{self.seed}:{subject_hash}")

    async def poll(self, subject_hash) -> Resolution:
        if self.poll_error:
            raise ExternalUnavailable("oracle poll failed")
        candidates = self._requests.get(subject_hash)
        if candidates is None:
            return Resolution(status=ResolutionStatus.NONE)

        self._polls[subject_hash] += 1
        if self._polls[subject_hash] < self.fulfill_after_polls:
            return Resolution(status=ResolutionStatus.PENDING)
        if self.fail_resolution:
            return Resolution(status=ResolutionStatus.FAILED)

        word = self.random_word(subject_hash)
        return Resolution(
            status=ResolutionStatus.FULFILLED,
            winner=candidates[word % len(candidates)],
            random_word=word,
        )


__all__ = [
    "ResolutionStatus",
    "TieBreakPurpose",
    "Resolution",
    "RandomnessOracle",
    "NullRandomnessOracle",
    "MockRandomnessOracle",
]
