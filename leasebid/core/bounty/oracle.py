"""
Criteria Oracle - Optional batch attestation of bounty criteria.

Invoked at most once per matching pass with every candidate pool. A
returned list of pool ids is authoritative; None, an error or a timeout
makes the engine fall back to local matching.
"""

import asyncio
import time
from typing import Any, Dict, Iterable, List, Optional

from leasebid.core.bounty.pool import BountyCriteria, TransactionAttributes
from leasebid.core.errors import ExternalUnavailable


class CriteriaOracle:
    """Interface for external criteria evaluation."""

    enabled = True

    async def evaluate(
        self,
        tx: TransactionAttributes,
        candidates: List[Dict[str, Any]],
    ) -> Optional[List[str]]:
        """
        Args:
            tx: Transaction attributes
            candidates: [{"pool_id": ..., "criteria": {...}}, ...]
            
        Returns:
            Matched pool ids, or None if no attested result is available
        """
        raise NotImplementedError


class NullCriteriaOracle(CriteriaOracle):
    enabled = False

    async def evaluate(self, tx, candidates) -> Optional[List[str]]:
        return None


class MockCriteriaOracle(CriteriaOracle):
    """
    In-process oracle.
    
    Attests `matched` when given, otherwise evaluates the criteria itself.
    `fail` raises, `delay` sleeps before answering, `return_none` yields no
    attested result.
    """

    def __init__(
        self,
        matched: Optional[Iterable[str]] = None,
        fail: bool = False,
        delay: float = 0.0,
        return_none: bool = False,
    ):
        self.matched = None if matched is None else list(matched)
        self.fail = fail
        self.delay = delay
        self.return_none = return_none
        self.calls = 0
        self.last_candidates: List[Dict[str, Any]] = []

    async def evaluate(self, tx, candidates) -> Optional[List[str]]:
        self.calls += 1
        self.last_candidates = list(candidates)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ExternalUnavailable("criteria oracle unavailable")
        if self.return_none:
            return None
        if self.matched is not None:
            return list(self.matched)

        now = time.time()
        result = []
        for candidate in candidates:
            criteria = candidate.get("criteria")
            if not criteria or BountyCriteria.model_validate(criteria).matches(tx, now):
                result.append(candidate["pool_id"])
        return result


__all__ = [
    "CriteriaOracle",
    "NullCriteriaOracle",
    "MockCriteriaOracle",
]
