"""
Code Hashing Utilities
======================
Secure generation and hashing of one-time codes.
"""

import hashlib
import hmac
import secrets


def generate_code(length: int = 6) -> str:
    """
    Generate a numeric one-time code from the OS CSPRNG.

    Args:
        length: Number of digits

    Returns:
        Zero-padded digit string
    """
    if length < 1:
        raise ValueError("Code length must be positive")
    return str(secrets.randbelow(10 ** length)).zfill(length)


def hash_code(code: str) -> str:
    """
    Hash a code with SHA-256.

    The hash is unsalted so that stores can evaluate ``code_hash == hash(code)``
    inside a single conditional update.
    """
    return hashlib.sha256(code.encode()).hexdigest()


def verify_code_hash(code: str, stored_hash: str) -> bool:
    """
    Verify a code against its hash.

    Uses constant-time comparison to prevent timing attacks.
    """
    return hmac.compare_digest(hash_code(code), stored_hash)


def generate_nonce() -> str:
    """Random single-use token id for magic links."""
    return secrets.token_urlsafe(24)
