"""
Compliance Gate - Advisory allow/deny check consulted before granting perks.

The gate is an external collaborator. The Priority Resolver calls it with
an explicit timeout; a deny strips perks, a failure is handled by the
resolver's fail-open/fail-closed policy.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Set, Tuple

from leasebid.core.errors import ExternalUnavailable


@dataclass
class ComplianceDecision:
    allowed: bool
    reason: str = ""


class ComplianceGate:
    """Interface for compliance checks."""

    async def can_transact(
        self,
        actor: str,
        vertical: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> ComplianceDecision:
        raise NotImplementedError


class AllowAllComplianceGate(ComplianceGate):
    """Null gate: every actor is allowed."""

    async def can_transact(self, actor, vertical, context=None) -> ComplianceDecision:
        return ComplianceDecision(allowed=True)


class StaticComplianceGate(ComplianceGate):
    """
    In-memory gate backed by a denylist.
    
    Entries are either an address (denied everywhere) or an
    (address, vertical) pair. Can simulate outages via `fail` and slow
    responses via `delay`.
    """

    def __init__(
        self,
        denied: Optional[Iterable[Any]] = None,
        fail: bool = False,
        delay: float = 0.0,
    ):
        self.denied_actors: Set[str] = set()
        self.denied_pairs: Set[Tuple[str, str]] = set()
        for entry in denied or ():
            if isinstance(entry, tuple):
                self.deny(*entry)
            else:
                self.deny(entry)
        self.fail = fail
        self.delay = delay
        self.calls = 0

    def deny(self, actor: str, vertical: Optional[str] = None) -> None:
        if vertical is None:
            self.denied_actors.add(actor.lower())
        else:
            self.denied_pairs.add((actor.lower(), vertical))

    def allow(self, actor: str) -> None:
        key = actor.lower()
        self.denied_actors.discard(key)
        self.denied_pairs = {p for p in self.denied_pairs if p[0] != key}

    async def can_transact(self, actor, vertical, context=None) -> ComplianceDecision:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ExternalUnavailable("compliance service unavailable")
        key = actor.lower()
        if key in self.denied_actors or (key, vertical) in self.denied_pairs:
            return ComplianceDecision(allowed=False, reason="Actor blocked by compliance policy")
        return ComplianceDecision(allowed=True)


__all__ = [
    "ComplianceDecision",
    "ComplianceGate",
    "AllowAllComplianceGate",
    "StaticComplianceGate",
]
