"""
Identity Value Objects
======================
Identifier normalization and device fingerprinting.
"""

from .identifier import Identifier, IdentifierType
from .fingerprint import DeviceFingerprint
from .device import TrustedDevice
from .hashing import sha256_hex, short_hash

__all__ = [
    "Identifier",
    "IdentifierType",
    "DeviceFingerprint",
    "TrustedDevice",
    "sha256_hex",
    "short_hash",
]
