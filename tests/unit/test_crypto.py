"""
Tests for hashing helpers.

Tests cover:
1. Keccak-256 / SHA-256 primitives
2. Oracle subject hashing
3. Deterministic range mapping
4. Nonce generation
"""

import pytest

from leasebid.crypto import (
    bytes_to_hex,
    generate_nonce,
    hash_subject,
    hash_to_range,
    keccak256,
    sha256,
    stable_hash_int,
)


class TestHashing:
    """Tests for hash primitives."""

    def test_keccak256_known_vector(self):
        """Keccak-256 of empty input (Ethereum variant, not SHA3-256)."""
        assert keccak256(b"").hex() == (
            "c5d2460186f7233c927e7db2dcc703c0e500b653ca82273b7bfad8045d85a470"
        )

    def test_sha256_known_vector(self):
        assert sha256(b"abc").hex() == (
            "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
        )

    def test_hash_subject_format(self):
        """Subject hashes are 0x-prefixed 32-byte hex."""
        h = hash_subject("auction-123")
        assert h.startswith("0x")
        assert len(h) == 66
        assert h == hash_subject("auction-123")
        assert h != hash_subject("auction-124")

    def test_stable_hash_int(self):
        assert stable_hash_int("solar:") == stable_hash_int("solar:")
        assert stable_hash_int("solar:") >= 0


class TestHashToRange:
    """Tests for deterministic range mapping."""

    def test_within_bounds(self):
        for i in range(200):
            value = hash_to_range(f"vertical-{i}:nonce", 5, 10)
            assert 5 <= value <= 10

    def test_covers_range(self):
        """All values in a small range are reachable."""
        seen = {hash_to_range(f"v{i}", 5, 10) for i in range(500)}
        assert seen == {5, 6, 7, 8, 9, 10}

    def test_single_value_range(self):
        assert hash_to_range("anything", 7, 7) == 7

    def test_invalid_range(self):
        with pytest.raises(ValueError):
            hash_to_range("x", 10, 5)


class TestNonce:
    """Tests for nonce generation."""

    def test_nonce_length_and_uniqueness(self):
        a = generate_nonce()
        b = generate_nonce()
        assert len(a) == 32
        assert a != b
        assert len(generate_nonce(8)) == 16

    def test_bytes_to_hex(self):
        assert bytes_to_hex(b"\x01\x02") == "0x0102"
        assert bytes_to_hex(b"\x01\x02", prefix=False) == "0102"
