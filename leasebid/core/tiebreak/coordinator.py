"""
Tie-Break Coordinator - Verifiable resolution of tied candidates.

This module provides:
- find_tied(): candidates sharing the maximum amount
- request_tie_break(): fire a request to the randomness oracle
- await_resolution(): bounded polling wait (bounty allocation path)
- start_watcher(): detached background watcher for an existing request
- request_detached(): request and watcher in one detached task (auction path)

Design Notes:
-------------
None of these raise. A None result means "apply the deterministic
fallback now": earliest bid for auctions, pool list order for bounties.
Watchers run after the fallback has already been applied; they only
record the verified winner for audit/display and emit an event.
"""

import asyncio
import inspect
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set, TypeVar

from leasebid.core.cache import Clock
from leasebid.core.config import EngineConfig
from leasebid.core.events import TIEBREAK_RESOLVED, EventBus
from leasebid.core.tiebreak.oracle import (
    NullRandomnessOracle,
    RandomnessOracle,
    ResolutionStatus,
    TieBreakPurpose,
)
from leasebid.crypto import hash_subject
from leasebid.utils.logger import get_logger
from leasebid.utils.validation import validate_array

logger = get_logger("tiebreak")

T = TypeVar("T")


# =============================================================================
# Tie Detection
# =============================================================================


def find_tied(items: List[T], amount_of: Callable[[T], Any]) -> List[T]:
    """
    Items whose amount equals the maximum present amount.
    
    Items with an unknown (None) amount never participate. Fewer than two
    tied items returns an empty list.
    """
    present = [(item, amount_of(item)) for item in items]
    present = [(item, amount) for item, amount in present if amount is not None]
    if not present:
        return []
    top = max(amount for _, amount in present)
    tied = [item for item, amount in present if amount == top]
    return tied if len(tied) >= 2 else []


# =============================================================================
# Requests
# =============================================================================


@dataclass
class TieBreakRequest:
    """Ephemeral record of one tie event."""
    subject_id: str
    subject_hash: str
    candidates: List[str]
    purpose: TieBreakPurpose
    status: ResolutionStatus = ResolutionStatus.PENDING
    winner: Optional[str] = None
    random_word: Optional[int] = None
    request_ref: str = ""
    requested_at: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subject_id": self.subject_id,
            "subject_hash": self.subject_hash,
            "candidates": list(self.candidates),
            "purpose": self.purpose.value,
            "status": self.status.name,
            "winner": self.winner,
            "random_word": None if self.random_word is None else str(self.random_word),
            "request_ref": self.request_ref,
        }


OnResolved = Callable[[TieBreakRequest, str], Any]


# =============================================================================
# Coordinator
# =============================================================================


class TieBreakCoordinator:
    """
    Coordinates requests to an optional randomness oracle.
    
    Tracks detached watchers so shutdown() can cancel them; dropping a
    watcher never leaks state into the operation that started it.
    """

    def __init__(
        self,
        oracle: Optional[RandomnessOracle] = None,
        config: Optional[EngineConfig] = None,
        events: Optional[EventBus] = None,
        registry=None,
        clock: Clock = time.time,
    ):
        self.oracle = oracle or NullRandomnessOracle()
        self.config = config or EngineConfig()
        self.events = events or EventBus()
        self.registry = registry
        self.clock = clock
        self.requests: Dict[str, TieBreakRequest] = {}
        self._watchers: Set[asyncio.Task] = set()

    @property
    def configured(self) -> bool:
        return self.oracle.configured

    @property
    def active_watchers(self) -> int:
        return len(self._watchers)

    def watchers(self) -> List[asyncio.Task]:
        """Outstanding watcher tasks (for shutdown and tests)."""
        return list(self._watchers)

    async def request_tie_break(
        self,
        subject_id: str,
        candidates: List[str],
        purpose: TieBreakPurpose,
    ) -> Optional[TieBreakRequest]:
        """
        Request verifiable resolution of a tie.
        
        Returns:
            The request handle, or None when no oracle is configured, fewer
            than two distinct candidates are given, or the request fails
        """
        if not self.configured:
            logger.debug(f"No randomness oracle configured; deterministic fallback for {subject_id}")
            return None

        distinct = self._distinct_candidates(subject_id, candidates)
        if distinct is None:
            return None

        subject_hash = hash_subject(subject_id)
        try:
            request_ref = await asyncio.wait_for(
                self.oracle.request(subject_hash, distinct, purpose),
                timeout=self.config.tiebreak_await_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Tie-break request for {subject_id} timed out; using fallback")
            return None
        except Exception as e:
            logger.warning(f"Tie-break request for {subject_id} failed: {e}; using fallback")
            return None

        request = TieBreakRequest(
            subject_id=subject_id,
            subject_hash=subject_hash,
            candidates=distinct,
            purpose=purpose,
            request_ref=str(request_ref),
            requested_at=self.clock(),
        )
        self.requests[subject_id] = request
        logger.info(
            f"Tie-break requested: {subject_id} ({purpose.value}, {len(distinct)} candidates, ref={request.request_ref})"
        )
        return request

    @staticmethod
    def _distinct_candidates(subject_id: str, candidates: List[str]) -> Optional[List[str]]:
        """Case-insensitive de-duplication; None unless two or more remain."""
        ok, err = validate_array(candidates, "candidates")
        if not ok:
            logger.warning(f"Tie-break for {subject_id} skipped: {err}")
            return None
        seen = set()
        distinct = []
        for candidate in candidates:
            key = (candidate or "").lower()
            if key and key not in seen:
                seen.add(key)
                distinct.append(candidate)
        return distinct if len(distinct) >= 2 else None

    async def await_resolution(
        self,
        subject_id: str,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
    ) -> Optional[str]:
        """
        Poll until the request resolves or the deadline passes.
        
        Returns:
            Winner address, or None on FAILED, timeout or any error
        """
        request = self.requests.get(subject_id)
        if request is None:
            return None
        if request.status == ResolutionStatus.FULFILLED:
            return request.winner

        timeout = self.config.tiebreak_await_timeout_seconds if timeout is None else timeout
        poll_interval = self.config.tiebreak_poll_interval_seconds if poll_interval is None else poll_interval

        try:
            return await asyncio.wait_for(self._poll_until_done(request, poll_interval), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Tie-break {subject_id} not resolved within {timeout:g}s")
            return None
        except Exception as e:
            logger.warning(f"Tie-break {subject_id} polling failed: {e}")
            return None

    async def _poll_until_done(self, request: TieBreakRequest, poll_interval: float) -> Optional[str]:
        while True:
            resolution = await self.oracle.poll(request.subject_hash)

            if resolution.status == ResolutionStatus.FULFILLED:
                winner = self._match_candidate(request, resolution.winner)
                if winner is None:
                    request.status = ResolutionStatus.FAILED
                    logger.warning(
                        f"Tie-break {request.subject_id} resolved to non-candidate {resolution.winner}"
                    )
                    return None
                request.status = ResolutionStatus.FULFILLED
                request.winner = winner
                request.random_word = resolution.random_word
                return winner

            if resolution.status == ResolutionStatus.FAILED:
                request.status = ResolutionStatus.FAILED
                logger.warning(f"Tie-break {request.subject_id} failed at the oracle")
                return None

            await asyncio.sleep(poll_interval)

    @staticmethod
    def _match_candidate(request: TieBreakRequest, winner: Optional[str]) -> Optional[str]:
        if not winner:
            return None
        for candidate in request.candidates:
            if candidate.lower() == winner.lower():
                return candidate
        return None

    # =========================================================================
    # Background Watchers
    # =========================================================================

    def start_watcher(
        self,
        subject_id: str,
        on_resolved: Optional[OnResolved] = None,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
    ) -> Optional[asyncio.Task]:
        """
        Start a detached watcher for a pending request.
        
        The returned task is a handle for cancellation only; callers must
        not await it on their main path.
        """
        request = self.requests.get(subject_id)
        if request is None:
            return None

        timeout = self.config.watcher_timeout_seconds if timeout is None else timeout
        task = asyncio.get_running_loop().create_task(
            self._watch(request, on_resolved, timeout, poll_interval),
            name=f"tiebreak-watcher:{subject_id}",
        )
        self._watchers.add(task)
        task.add_done_callback(self._watchers.discard)
        logger.debug(f"Watcher started for {subject_id} (timeout {timeout:g}s)")
        return task

    def request_detached(
        self,
        subject_id: str,
        candidates: List[str],
        purpose: TieBreakPurpose,
        on_resolved: Optional[OnResolved] = None,
        on_unresolved: Optional[Callable[[str], Any]] = None,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
    ) -> Optional[asyncio.Task]:
        """
        Fire a tie-break request and watch it from one detached task.
        
        Nothing here waits on the oracle. Returns None when no tie-break
        will be attempted (no oracle, or fewer than two distinct
        candidates); otherwise the task handle, for cancellation only.
        on_unresolved runs if the request or the watch ends without a
        winner.
        """
        if not self.configured:
            logger.debug(f"No randomness oracle configured; deterministic fallback for {subject_id}")
            return None
        if self._distinct_candidates(subject_id, candidates) is None:
            return None

        timeout = self.config.watcher_timeout_seconds if timeout is None else timeout
        task = asyncio.get_running_loop().create_task(
            self._request_and_watch(subject_id, candidates, purpose, on_resolved, on_unresolved, timeout, poll_interval),
            name=f"tiebreak-watcher:{subject_id}",
        )
        self._watchers.add(task)
        task.add_done_callback(self._watchers.discard)
        logger.debug(f"Detached tie-break started for {subject_id}")
        return task

    async def _request_and_watch(
        self,
        subject_id: str,
        candidates: List[str],
        purpose: TieBreakPurpose,
        on_resolved: Optional[OnResolved],
        on_unresolved: Optional[Callable[[str], Any]],
        timeout: float,
        poll_interval: Optional[float],
    ) -> Optional[str]:
        winner = None
        request = await self.request_tie_break(subject_id, candidates, purpose)
        if request is not None:
            winner = await self._watch(request, on_resolved, timeout, poll_interval)
        if winner is None and on_unresolved is not None:
            try:
                on_unresolved(subject_id)
            except Exception as e:
                logger.warning(f"Tie-break fallback callback for {subject_id} failed: {e}")
        return winner

    async def _watch(
        self,
        request: TieBreakRequest,
        on_resolved: Optional[OnResolved],
        timeout: float,
        poll_interval: Optional[float],
    ) -> Optional[str]:
        try:
            winner = await self.await_resolution(request.subject_id, timeout, poll_interval)
            if winner is None:
                return None

            if on_resolved is not None:
                result = on_resolved(request, winner)
                if inspect.isawaitable(result):
                    await result

            payload = request.to_dict()
            if self.registry is not None:
                self.registry.record_audit(self.clock(), TIEBREAK_RESOLVED, request.subject_id, payload)
            self.events.emit(TIEBREAK_RESOLVED, payload)
            logger.info(f"Tie-break {request.subject_id} verified winner: {winner}")
            return winner
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Tie-break watcher for {request.subject_id} failed: {e}")
            return None
        finally:
            self.discard(request.subject_id)

    def discard(self, subject_id: str) -> None:
        self.requests.pop(subject_id, None)

    async def shutdown(self) -> None:
        """Cancel outstanding watchers."""
        watchers = list(self._watchers)
        for task in watchers:
            task.cancel()
        if watchers:
            await asyncio.gather(*watchers, return_exceptions=True)
            logger.info(f"Cancelled {len(watchers)} tie-break watcher(s)")


__all__ = [
    "find_tied",
    "TieBreakRequest",
    "TieBreakCoordinator",
]
