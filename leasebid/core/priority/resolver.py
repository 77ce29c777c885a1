"""
Priority Resolver - Who holds lease priority on a vertical, and with what perks.

This module provides:
- resolve_priority(): holder check, compliance gate, multiplier + window
- compute_priority_window(): stable hash of (vertical, nonce) into [min, max]
- priority_window_status() / verify_window_nonce(): audit helpers

Design Notes:
-------------
Holder lookups are cached (short TTL) because they are read on every bid
during bursts. Every lease mutation calls invalidate() before returning.
The multiplier itself is never cached; it is resolved fresh per bid.
"""

import asyncio
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from leasebid.core.cache import Clock, TTLCache
from leasebid.core.compliance import AllowAllComplianceGate, ComplianceGate
from leasebid.core.config import EngineConfig
from leasebid.core.money import ONE
from leasebid.crypto import hash_to_range
from leasebid.utils.logger import get_logger
from leasebid.utils.validation import normalize_address

logger = get_logger("priority")

# Stored-vs-recomputed window end tolerance for audits
NONCE_DRIFT_TOLERANCE_MS = 1000


# =============================================================================
# Data Structures
# =============================================================================


@dataclass(frozen=True)
class PriorityStatus:
    is_priority_holder: bool = False
    multiplier: Decimal = ONE
    window_seconds: int = 0


NON_PRIORITY = PriorityStatus()


@dataclass
class WindowStatus:
    in_window: bool
    remaining_ms: int


@dataclass
class NonceVerification:
    valid: bool
    expected_window_end: float
    drift_ms: int


# =============================================================================
# Window Computation
# =============================================================================


def compute_priority_window(
    vertical: str,
    nonce: str = "",
    min_seconds: int = 5,
    max_seconds: int = 10,
) -> int:
    """
    Deterministic window length for a round.
    
    window = min + SHA-256("{vertical}:{nonce}") mod (max - min + 1)
    
    Unpredictable before the nonce is known, reproducible afterwards.
    An omitted nonce is the empty nonce.
    """
    return hash_to_range(f"{vertical}:{nonce or ''}", min_seconds, max_seconds)


def priority_window_status(window_end: float, now: float, grace_ms: int = 1500) -> WindowStatus:
    """
    Whether `now` is inside [.., window_end + grace].
    
    The grace absorbs client/server clock skew and is added on top of the
    computed window.
    """
    in_window = now <= window_end + grace_ms / 1000.0
    remaining_ms = max(0, int(round((window_end - now) * 1000)))
    return WindowStatus(in_window=in_window, remaining_ms=remaining_ms)


def verify_window_nonce(
    vertical: str,
    nonce: str,
    start_time: float,
    stored_window_end: float,
    min_seconds: int = 5,
    max_seconds: int = 10,
) -> NonceVerification:
    """Recompute a round's window from its stored nonce and compare."""
    window = compute_priority_window(vertical, nonce, min_seconds, max_seconds)
    expected = start_time + window
    drift_ms = int(round(abs(expected - stored_window_end) * 1000))
    return NonceVerification(
        valid=drift_ms < NONCE_DRIFT_TOLERANCE_MS,
        expected_window_end=expected,
        drift_ms=drift_ms,
    )


# =============================================================================
# Resolver
# =============================================================================


class PriorityResolver:
    """
    Resolves priority status for (vertical, actor).
    
    Non-priority default (1.0, 0) when the actor is empty, the slot is
    missing or not ACTIVE, or the holder does not match case-insensitively.
    """

    def __init__(
        self,
        registry,
        config: Optional[EngineConfig] = None,
        compliance_gate: Optional[ComplianceGate] = None,
        cache: Optional[TTLCache] = None,
        clock: Clock = time.time,
    ):
        self.registry = registry
        self.config = config or EngineConfig()
        self.compliance_gate = compliance_gate or AllowAllComplianceGate()
        self.clock = clock
        self.cache = cache or TTLCache(
            max_size=self.config.cache_max_size,
            ttl_seconds=self.config.ownership_cache_ttl_seconds,
            clock=clock,
        )

    @staticmethod
    def _cache_key(vertical: str) -> str:
        return f"holder:{vertical}"

    def current_holder(self, vertical: str) -> str:
        """Holder of an ACTIVE slot (lowercase), or '' (cached)."""
        key = self._cache_key(vertical)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        holder = normalize_address(self.registry.active_holder(vertical))
        self.cache.set(key, holder)
        return holder

    def invalidate(self, vertical: str) -> None:
        """Drop the cached holder; called synchronously on lease writes."""
        self.cache.delete(self._cache_key(vertical))

    def window_for(self, vertical: str, nonce: str = "") -> int:
        return compute_priority_window(
            vertical,
            nonce,
            self.config.priority_window_min,
            self.config.priority_window_max,
        )

    async def resolve_priority(
        self,
        vertical: str,
        actor: Optional[str],
        nonce: str = "",
    ) -> PriorityStatus:
        """
        Resolve perks for an actor on a vertical.
        
        Args:
            vertical: Vertical slug
            actor: Actor address (may be None/empty)
            nonce: Round nonce used for the window length
            
        Returns:
            PriorityStatus
        """
        actor_key = normalize_address(actor)
        if not actor_key:
            return NON_PRIORITY

        holder = self.current_holder(vertical)
        if not holder or holder != actor_key:
            return NON_PRIORITY

        if not await self._compliance_allows(actor_key, vertical):
            return NON_PRIORITY

        return PriorityStatus(
            is_priority_holder=True,
            multiplier=self.config.holder_multiplier,
            window_seconds=self.window_for(vertical, nonce),
        )

    async def _compliance_allows(self, actor: str, vertical: str) -> bool:
        try:
            decision = await asyncio.wait_for(
                self.compliance_gate.can_transact(actor, vertical, {"action": "priority_bid"}),
                timeout=self.config.compliance_timeout_seconds,
            )
        except asyncio.TimeoutError:
            return self._on_gate_failure(actor, vertical, "timed out")
        except Exception as e:
            return self._on_gate_failure(actor, vertical, str(e) or e.__class__.__name__)

        if not decision.allowed:
            logger.info(f"Compliance denied perks for {actor[:10]} on {vertical}: {decision.reason}")
            return False
        return True

    def _on_gate_failure(self, actor: str, vertical: str, detail: str) -> bool:
        if self.config.compliance_fail_open:
            logger.warning(
                f"Compliance gate {detail} for {actor[:10]} on {vertical}; failing open, perks granted"
            )
            return True
        logger.warning(
            f"Compliance gate {detail} for {actor[:10]} on {vertical}; failing closed, perks withheld"
        )
        return False


__all__ = [
    "PriorityStatus",
    "NON_PRIORITY",
    "WindowStatus",
    "NonceVerification",
    "PriorityResolver",
    "compute_priority_window",
    "priority_window_status",
    "verify_window_nonce",
    "NONCE_DRIFT_TOLERANCE_MS",
]
