"""
Bounty Pool - Standing vertical-scoped incentive escrow and match criteria.

Criteria and transaction attributes are pydantic schemas so malformed
input is rejected at the boundary; pools themselves are plain dataclasses
mutated only by the BountyEngine.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Optional
import uuid

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as SchemaError

from leasebid.core.errors import ValidationError
from leasebid.core.money import ZERO

SECONDS_PER_HOUR = 3600


# =============================================================================
# Schemas
# =============================================================================


def _normalize_codes(value: Optional[List[str]]) -> Optional[List[str]]:
    if value is None:
        return None
    codes = []
    for code in value:
        if not isinstance(code, str) or len(code) != 2 or not code.isalpha():
            raise ValueError(f"expected 2-letter code, got {code!r}")
        codes.append(code.upper())
    return codes


class BountyCriteria(BaseModel):
    """
    Match criteria for a pool. Every present criterion must pass (AND);
    absent criteria are vacuously satisfied.
    """
    model_config = ConfigDict(extra="forbid", frozen=True)

    min_quality_score: Optional[int] = Field(default=None, ge=0, le=10000)
    geo_states: Optional[Annotated[List[str], Field(max_length=50)]] = None
    geo_countries: Optional[Annotated[List[str], Field(max_length=10)]] = None
    min_credit_score: Optional[int] = Field(default=None, ge=300, le=850)
    max_age_hours: Optional[int] = Field(default=None, ge=1, le=168)

    @field_validator("geo_states", "geo_countries")
    @classmethod
    def _codes(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        return _normalize_codes(value)

    @property
    def is_empty(self) -> bool:
        return not any(
            v is not None and v != []
            for v in (
                self.min_quality_score,
                self.geo_states,
                self.geo_countries,
                self.min_credit_score,
                self.max_age_hours,
            )
        )

    def matches(self, tx: "TransactionAttributes", now: float) -> bool:
        """Local AND-matching; missing transaction fields fail present criteria."""
        if self.min_quality_score is not None and (tx.quality_score or 0) < self.min_quality_score:
            return False
        if self.geo_states and (tx.state or "").upper() not in self.geo_states:
            return False
        if self.geo_countries and (tx.country or "").upper() not in self.geo_countries:
            return False
        if self.min_credit_score is not None and (tx.credit_score or 0) < self.min_credit_score:
            return False
        if self.max_age_hours is not None and tx.created_at is not None:
            age_hours = (now - tx.created_at) / SECONDS_PER_HOUR
            if age_hours > self.max_age_hours:
                return False
        return True


class TransactionAttributes(BaseModel):
    """Attributes of a completed transaction evaluated against pools."""
    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    vertical: str = Field(min_length=1)
    quality_score: Optional[int] = Field(default=None, ge=0)
    state: Optional[str] = None
    country: Optional[str] = None
    credit_score: Optional[int] = None
    created_at: Optional[float] = None
    reserve_price: Optional[Decimal] = Field(default=None, ge=0)


def parse_criteria(data: Any) -> Optional[BountyCriteria]:
    """
    Parse criteria from a mapping (or pass through an instance).
    
    Raises:
        ValidationError: on malformed criteria
    """
    if data is None or isinstance(data, BountyCriteria):
        return data
    try:
        return BountyCriteria.model_validate(data)
    except SchemaError as e:
        raise ValidationError(f"Invalid bounty criteria: {e.errors()[0]['msg']}")


def parse_transaction(data: Any) -> TransactionAttributes:
    """Parse transaction attributes, raising ValidationError on bad input."""
    if isinstance(data, TransactionAttributes):
        return data
    try:
        return TransactionAttributes.model_validate(data)
    except SchemaError as e:
        raise ValidationError(f"Invalid transaction attributes: {e.errors()[0]['msg']}")


# =============================================================================
# Pool
# =============================================================================


@dataclass
class BountyPool:
    """
    A standing bounty commitment.
    
    Invariants:
    - total_released <= total_deposited
    - available = total_deposited - total_released
    - the pool deactivates once available reaches zero
    """
    vertical: str
    owner_id: str
    payout_address: str
    total_deposited: Decimal
    criteria: Optional[BountyCriteria] = None
    total_released: Decimal = ZERO
    active: bool = True
    created_at: float = 0.0
    pool_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def available(self) -> Decimal:
        return self.total_deposited - self.total_released

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pool_id": self.pool_id,
            "vertical": self.vertical,
            "owner_id": self.owner_id,
            "payout_address": self.payout_address,
            "total_deposited": str(self.total_deposited),
            "total_released": str(self.total_released),
            "available": str(self.available),
            "criteria": self.criteria.model_dump(exclude_none=True) if self.criteria else None,
            "active": self.active,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BountyPool":
        return cls(
            pool_id=data["pool_id"],
            vertical=data["vertical"],
            owner_id=data["owner_id"],
            payout_address=data.get("payout_address", ""),
            total_deposited=Decimal(data["total_deposited"]),
            total_released=Decimal(data.get("total_released", "0")),
            criteria=parse_criteria(data.get("criteria")),
            active=bool(data.get("active", True)),
            created_at=float(data.get("created_at") or 0.0),
        )


@dataclass
class MatchedBounty:
    """One allocation produced by a matching pass."""
    pool_id: str
    owner_id: str
    payout_address: str
    amount: Decimal
    vertical: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pool_id": self.pool_id,
            "owner_id": self.owner_id,
            "payout_address": self.payout_address,
            "amount": str(self.amount),
            "vertical": self.vertical,
        }


__all__ = [
    "BountyCriteria",
    "TransactionAttributes",
    "BountyPool",
    "MatchedBounty",
    "parse_criteria",
    "parse_transaction",
]
