"""
Input Validation - Sanitization of externally supplied values.

Provides validation for engine inputs to prevent:
- Malformed wallet addresses and vertical slugs
- Out-of-range or non-finite monetary amounts
- Oversized candidate lists and strings
"""

import re
from decimal import Decimal
from typing import Any, Optional, Tuple

# =============================================================================
# Constants
# =============================================================================

MAX_STRING_LENGTH = 1024
MAX_ARRAY_LENGTH = 256
ADDRESS_HEX_CHARS = 40

MIN_AMOUNT = Decimal("0")
MAX_AMOUNT = Decimal("1000000000")

SLUG_PATTERN = r"^[a-z0-9][a-z0-9._-]{0,63}$"


# =============================================================================
# Validation Functions
# =============================================================================


def validate_string(
    value: Any,
    name: str,
    max_length: int = MAX_STRING_LENGTH,
    pattern: Optional[str] = None,
) -> Tuple[bool, str]:
    """
    Validate string input.
    
    Args:
        value: Value to validate
        name: Field name for errors
        max_length: Maximum string length
        pattern: Optional regex pattern
        
    Returns:
        (is_valid, error_message)
    """
    if not isinstance(value, str):
        return False, f"{name} must be str, got {type(value).__name__}"
    
    if not value:
        return False, f"{name} must not be empty"
    
    if len(value) > max_length:
        return False, f"{name} exceeds max length {max_length}"
    
    if pattern and not re.match(pattern, value):
        return False, f"{name} does not match required pattern"
    
    return True, ""


def validate_hex_string(value: Any, name: str, expected_bytes: Optional[int] = None) -> Tuple[bool, str]:
    """
    Validate a hex string (with or without 0x prefix).
    
    Args:
        value: Value to validate
        name: Field name
        expected_bytes: Expected byte length when decoded
        
    Returns:
        (is_valid, error_message)
    """
    if not isinstance(value, str):
        return False, f"{name} must be str, got {type(value).__name__}"
    
    hex_str = value[2:] if value.lower().startswith("0x") else value
    
    if len(hex_str) % 2 != 0:
        return False, f"{name} has odd length, invalid hex"
    
    try:
        bytes.fromhex(hex_str)
    except ValueError:
        return False, f"{name} contains invalid hex characters"
    
    if expected_bytes is not None:
        actual_bytes = len(hex_str) // 2
        if actual_bytes != expected_bytes:
            return False, f"{name} must be {expected_bytes} bytes, got {actual_bytes}"
    
    return True, ""


def validate_address(value: Any, name: str = "address") -> Tuple[bool, str]:
    """Validate a 0x-prefixed 20-byte wallet address."""
    if not isinstance(value, str) or not value.lower().startswith("0x"):
        return False, f"{name} must be a 0x-prefixed hex address"
    return validate_hex_string(value, name, expected_bytes=ADDRESS_HEX_CHARS // 2)


def validate_vertical_slug(value: Any) -> Tuple[bool, str]:
    """Validate a vertical slug (lowercase, digits, '.', '_', '-')."""
    return validate_string(value, "vertical", max_length=64, pattern=SLUG_PATTERN)


def validate_amount(
    amount: Any,
    name: str = "amount",
    min_val: Decimal = MIN_AMOUNT,
    max_val: Decimal = MAX_AMOUNT,
) -> Tuple[bool, str]:
    """
    Validate a Decimal amount within bounds.
    
    Returns:
        (is_valid, error_message)
    """
    if not isinstance(amount, Decimal):
        return False, f"{name} must be Decimal, got {type(amount).__name__}"
    
    if not amount.is_finite():
        return False, f"{name} must be finite"
    
    if amount < min_val:
        return False, f"{name} must be >= {min_val}, got {amount}"
    
    if amount > max_val:
        return False, f"{name} must be <= {max_val}, got {amount}"
    
    return True, ""


def validate_array(
    data: Any,
    name: str,
    max_length: int = MAX_ARRAY_LENGTH,
) -> Tuple[bool, str]:
    """
    Validate array/list input.
    
    Returns:
        (is_valid, error_message)
    """
    if not isinstance(data, (list, tuple)):
        return False, f"{name} must be list/tuple, got {type(data).__name__}"
    
    if len(data) > max_length:
        return False, f"{name} exceeds max length {max_length}, got {len(data)}"
    
    return True, ""


def normalize_address(value: Optional[str]) -> str:
    """Lowercase an address for case-insensitive comparison ('' for None)."""
    return (value or "").strip().lower()


# =============================================================================
# Module Exports
# =============================================================================

__all__ = [
    "validate_string",
    "validate_hex_string",
    "validate_address",
    "validate_vertical_slug",
    "validate_amount",
    "validate_array",
    "normalize_address",
    "MAX_STRING_LENGTH",
    "MAX_ARRAY_LENGTH",
    "MIN_AMOUNT",
    "MAX_AMOUNT",
]
