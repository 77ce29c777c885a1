"""
Errors - Exception taxonomy and structured operation results.

Internal components raise typed exceptions; the engine facade converts
them into OperationResult values so remote callers never see a bare
exception.

Taxonomy:
- ValidationError: malformed input, never retried
- NotFoundError: unknown vertical/auction/pool/lease
- StateConflictError: operation not valid in the current state
- ConcurrencyLost: another bid won the compare-and-update race
- ExternalUnavailable: optional collaborator timed out or failed
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class LeaseBidError(Exception):
    """Base class for engine errors."""
    kind = "internal"


class ValidationError(LeaseBidError):
    """Malformed criteria, out-of-range amount, bad address."""
    kind = "validation"


class NotFoundError(LeaseBidError):
    """Unknown vertical, auction, pool or lease."""
    kind = "not_found"


class StateConflictError(LeaseBidError):
    """Auction already settled, lease already expired, bid too low."""
    kind = "state_conflict"


class ConcurrencyLost(StateConflictError):
    """Another bid committed first; reported like a normal low bid."""
    kind = "state_conflict"


class ExternalUnavailable(LeaseBidError):
    """An external collaborator timed out or errored."""
    kind = "external_unavailable"


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    STATE_CONFLICT = "state_conflict"
    EXTERNAL_UNAVAILABLE = "external_unavailable"
    INTERNAL = "internal"


@dataclass
class OperationResult:
    """
    Structured result of an exposed engine operation.
    
    On success carries the identifiers needed to correlate events
    (auction_id, pool_id, lease_id, vertical) plus operation data.
    """
    success: bool
    error: str = ""
    error_kind: Optional[ErrorKind] = None
    auction_id: Optional[str] = None
    pool_id: Optional[str] = None
    lease_id: Optional[str] = None
    vertical: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, **kwargs) -> "OperationResult":
        return cls(success=True, **kwargs)

    @classmethod
    def fail(cls, error: str, kind: ErrorKind, **kwargs) -> "OperationResult":
        return cls(success=False, error=error, error_kind=kind, **kwargs)

    @classmethod
    def from_exception(cls, exc: Exception, **kwargs) -> "OperationResult":
        """Map an exception onto a typed failure."""
        kind = ErrorKind(getattr(exc, "kind", "internal"))
        return cls.fail(str(exc) or exc.__class__.__name__, kind, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "error": self.error,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "auction_id": self.auction_id,
            "pool_id": self.pool_id,
            "lease_id": self.lease_id,
            "vertical": self.vertical,
            "data": self.data,
        }


__all__ = [
    "LeaseBidError",
    "ValidationError",
    "NotFoundError",
    "StateConflictError",
    "ConcurrencyLost",
    "ExternalUnavailable",
    "ErrorKind",
    "OperationResult",
]
