"""
Bounty Module.

Provides standing bounty pools, their match criteria, the optional
criteria oracle and the matching/allocation engine.
"""

from leasebid.core.bounty.pool import (
    BountyCriteria,
    BountyPool,
    MatchedBounty,
    TransactionAttributes,
    parse_criteria,
    parse_transaction,
)
from leasebid.core.bounty.oracle import CriteriaOracle, MockCriteriaOracle, NullCriteriaOracle
from leasebid.core.bounty.engine import BountyEngine

__all__ = [
    "BountyCriteria",
    "BountyPool",
    "MatchedBounty",
    "TransactionAttributes",
    "parse_criteria",
    "parse_transaction",
    "CriteriaOracle",
    "MockCriteriaOracle",
    "NullCriteriaOracle",
    "BountyEngine",
]
