"""
Device Fingerprint
==================
Stable hash of client attributes used for device binding and recognition.
"""

import secrets
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .hashing import sha256_hex


@dataclass(frozen=True)
class DeviceFingerprint:
    """Immutable device fingerprint."""
    id: str
    user_agent: str
    platform: str
    timezone: str
    language: Optional[str] = None
    screen_resolution: Optional[str] = None
    entropy: Optional[str] = None
    hash: str = field(init=False, default="")

    def __post_init__(self):
        components = [
            self.user_agent,
            self.platform,
            self.timezone,
            self.language or "",
            self.screen_resolution or "",
            self.entropy or "",
        ]
        object.__setattr__(self, "hash", sha256_hex("|".join(components)))

    @classmethod
    def create(
        cls,
        user_agent: str,
        platform: str,
        timezone: str,
        language: Optional[str] = None,
        screen_resolution: Optional[str] = None,
        entropy: Optional[str] = None,
    ) -> "DeviceFingerprint":
        """Create a fingerprint with a fresh opaque id."""
        return cls(
            id=secrets.token_urlsafe(16),
            user_agent=user_agent,
            platform=platform,
            timezone=timezone,
            language=language,
            screen_resolution=screen_resolution,
            entropy=entropy,
        )

    @classmethod
    def from_existing(cls, id: str, **attributes) -> "DeviceFingerprint":
        """Rebuild a fingerprint for a known device id."""
        return cls(id=id, **attributes)

    def matches(self, other: "DeviceFingerprint", strict: bool = False) -> bool:
        """
        Compare two fingerprints.

        Strict matching compares the full hash. Fuzzy matching only requires
        user agent, platform and timezone to agree, tolerating drift in the
        optional attributes.
        """
        if strict:
            return self.hash == other.hash
        return (
            self.user_agent == other.user_agent
            and self.platform == other.platform
            and self.timezone == other.timezone
        )

    def equals(self, other: "DeviceFingerprint") -> bool:
        return self.id == other.id and self.hash == other.hash

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "hash": self.hash,
            "userAgent": self.user_agent,
            "platform": self.platform,
            "timezone": self.timezone,
            "language": self.language,
            "screenResolution": self.screen_resolution,
            "entropy": self.entropy,
        }
