"""
Engine configuration parameters for LeaseBid.

Defines holder perks, spam limits, cache TTLs, oracle deadlines, bounty
economics and lease lifecycle timing. Every value can be overridden from
the environment (LEASEBID_<FIELD_NAME>), optionally loaded from a .env file.
"""

import os
from dataclasses import dataclass, fields
from decimal import Decimal
from pathlib import Path
from typing import Optional

from dotenv import find_dotenv, load_dotenv

from leasebid.core.errors import ValidationError

ENV_PREFIX = "LEASEBID_"
SECONDS_PER_DAY = 86_400


@dataclass
class EngineConfig:
    """Engine-wide configuration parameters"""

    # Holder perks
    holder_multiplier: Decimal = Decimal("1.2")  # 20% effective-bid boost
    priority_window_min: int = 5  # Seconds
    priority_window_max: int = 10
    priority_window_grace_ms: int = 1500  # Client/server clock skew tolerance
    nonce_bytes: int = 16

    # Spam prevention
    bid_rate_limit: int = 5  # Accepted bids per window per wallet
    bid_rate_window_seconds: float = 60.0

    # Caches
    ownership_cache_ttl_seconds: float = 120.0
    cache_max_size: int = 2000
    bounty_total_cache_ttl_seconds: float = 60.0

    # Compliance gate
    compliance_timeout_seconds: float = 2.0
    compliance_fail_open: bool = True

    # Tie-break oracle
    tiebreak_poll_interval_seconds: float = 2.0
    tiebreak_await_timeout_seconds: float = 30.0
    bounty_tiebreak_timeout_seconds: float = 15.0
    watcher_timeout_seconds: float = 90.0  # ~3 confirmation cycles

    # Criteria oracle
    criteria_oracle_enabled: bool = False
    criteria_oracle_timeout_seconds: float = 30.0

    # Bounty economics
    bounty_stacking_cap_multiplier: Decimal = Decimal("2")
    bounty_min_deposit: Decimal = Decimal("10")
    bounty_max_deposit: Decimal = Decimal("10000")

    # Lease lifecycle
    lease_duration_days: int = 90
    grace_period_days: int = 7
    min_bids_for_reauction: int = 5
    max_reauctions_per_sweep: int = 10
    sweep_interval_seconds: float = 300.0
    reauction_reserve_price: Decimal = Decimal("100")
    reauction_duration_seconds: int = 3600
    default_auction_duration_seconds: int = 60

    # Notifications
    digest_interval_seconds: float = 300.0
    daily_notification_cap: int = 50

    # Paths
    data_dir: Path = Path("data")
    db_name: str = "leasebid.db"

    def __post_init__(self):
        """Validate cross-field constraints"""
        if self.holder_multiplier < 1:
            raise ValidationError("holder_multiplier must be >= 1.0")
        if self.priority_window_min < 0 or self.priority_window_max < self.priority_window_min:
            raise ValidationError(
                f"invalid priority window range [{self.priority_window_min}, {self.priority_window_max}]"
            )
        if self.bid_rate_limit < 1:
            raise ValidationError("bid_rate_limit must be >= 1")

    @property
    def lease_duration_seconds(self) -> float:
        return self.lease_duration_days * SECONDS_PER_DAY

    @property
    def grace_period_seconds(self) -> float:
        return self.grace_period_days * SECONDS_PER_DAY

    @property
    def db_path(self) -> Path:
        return self.data_dir / self.db_name


def _coerce(raw: str, target_type, name: str):
    """Convert an environment string to the field's type."""
    try:
        if target_type is bool:
            lowered = raw.strip().lower()
            if lowered in ("1", "true", "yes", "on"):
                return True
            if lowered in ("0", "false", "no", "off"):
                return False
            raise ValueError(raw)
        if target_type is Decimal:
            value = Decimal(raw.strip())
            if not value.is_finite():
                raise ValueError(raw)
            return value
        if issubclass(target_type, Path):
            return Path(raw).expanduser()
        return target_type(raw.strip())
    except (ValueError, ArithmeticError):
        raise ValidationError(f"{ENV_PREFIX}{name.upper()}: cannot parse {raw!r}")


def load_config(env_file: Optional[str] = None, **overrides) -> EngineConfig:
    """
    Load configuration from the environment.
    
    Reads a .env file (explicit path, or the nearest one found from the
    working directory), then applies LEASEBID_* variables and finally
    keyword overrides.
    
    Args:
        env_file: Optional path to a .env file
        overrides: Field values taking precedence over the environment
        
    Returns:
        EngineConfig instance
    """
    if env_file:
        load_dotenv(env_file)
    else:
        found = find_dotenv(usecwd=True)
        if found:
            load_dotenv(found)

    values = {}
    defaults = EngineConfig.__dataclass_fields__
    for f in fields(EngineConfig):
        raw = os.getenv(f"{ENV_PREFIX}{f.name.upper()}")
        if raw is None or raw == "":
            continue
        target_type = type(defaults[f.name].default)
        values[f.name] = _coerce(raw, target_type, f.name)

    values.update(overrides)
    return EngineConfig(**values)


__all__ = [
    "EngineConfig",
    "load_config",
    "ENV_PREFIX",
    "SECONDS_PER_DAY",
]
