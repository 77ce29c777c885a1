"""
Vertical - Minimal registry record (existence, status, current owner).
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class VerticalStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PROPOSED = "PROPOSED"
    DEPRECATED = "DEPRECATED"


@dataclass
class Vertical:
    """Registry record for a marketplace vertical."""
    slug: str
    status: VerticalStatus = VerticalStatus.ACTIVE
    owner_address: Optional[str] = None
    created_at: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "slug": self.slug,
            "status": self.status.value,
            "owner_address": self.owner_address,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Vertical":
        return cls(
            slug=data["slug"],
            status=VerticalStatus(data.get("status", VerticalStatus.ACTIVE.value)),
            owner_address=data.get("owner_address"),
            created_at=float(data.get("created_at") or 0.0),
        )


__all__ = ["VerticalStatus", "Vertical"]
