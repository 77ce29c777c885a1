"""
Hashing and randomness primitives for LeaseBid.

This module provides:
- Hashing functions (SHA-256, Keccak-256)
- Per-round nonce generation
- Stable hash-to-range mapping for auditable priority windows

Design Notes:
-------------
SHA-256 is used for anything that must be recomputed later by an auditor
(priority windows, mock oracle randomness). Keccak-256 is used for subject
identifiers sent to the randomness oracle, matching EVM conventions so the
same subject hash can be looked up on-chain.
"""

import hashlib
import secrets

from Crypto.Hash import keccak


# =============================================================================
# Hashing
# =============================================================================


def sha256(data: bytes) -> bytes:
    """Compute SHA-256 hash."""
    return hashlib.sha256(data).digest()


def keccak256(data: bytes) -> bytes:
    """
    Compute Keccak-256 hash (Ethereum-style).
    
    Used for: oracle subject identifiers.
    """
    k = keccak.new(digest_bits=256)
    k.update(data)
    return k.digest()


def hash_subject(subject_id: str) -> str:
    """
    Hash a platform subject id (auction id, bounty subject) for the oracle.
    
    Returns:
        0x-prefixed hex Keccak-256 digest of the UTF-8 subject id
    """
    return "0x" + keccak256(subject_id.encode("utf-8")).hex()


def stable_hash_int(text: str) -> int:
    """Deterministic non-negative integer from a string (SHA-256, big endian)."""
    return int.from_bytes(sha256(text.encode("utf-8")), "big")


def hash_to_range(text: str, low: int, high: int) -> int:
    """
    Map a string onto the closed integer range [low, high].
    
    Args:
        text: Input to hash
        low: Inclusive lower bound
        high: Inclusive upper bound
        
    Returns:
        Integer in [low, high]
    """
    if high < low:
        raise ValueError(f"Invalid range: [{low}, {high}]")
    return low + stable_hash_int(text) % (high - low + 1)


# =============================================================================
# Randomness
# =============================================================================


def generate_nonce(nbytes: int = 16) -> str:
    """Generate a hex nonce used as a per-round salt."""
    return secrets.token_hex(nbytes)


def bytes_to_hex(data: bytes, prefix: bool = True) -> str:
    """Convert bytes to hex string."""
    h = data.hex()
    return f"0x{h}" if prefix else h


__all__ = [
    "sha256",
    "keccak256",
    "hash_subject",
    "stable_hash_int",
    "hash_to_range",
    "generate_nonce",
    "bytes_to_hex",
]
