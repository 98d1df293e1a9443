"""
Identity Hashing
================
SHA-256 helpers used to key storage records without keeping PII in keys.
"""

import hashlib


def sha256_hex(value: str) -> str:
    """Full SHA-256 hex digest of a string."""
    return hashlib.sha256(value.encode()).hexdigest()


def short_hash(value: str, length: int = 16) -> str:
    """
    Truncated SHA-256 digest for counter keys and log fields.

    Args:
        value: Raw value (IP address, identifier hash, etc.)
        length: Number of hex characters to keep

    Returns:
        Truncated hex digest
    """
    return sha256_hex(value)[:length]
