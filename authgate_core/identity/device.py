"""
Trusted Device
==============
A device fingerprint bound to an owner, with trust and revocation state.

The owner is an opaque id chosen by the caller (an account id, or the
identifier hash when there is no account model).
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from ..otp.models import parse_iso, to_iso, utcnow
from .fingerprint import DeviceFingerprint

DEFAULT_STALE_AFTER_DAYS = 90


@dataclass
class TrustedDevice:
    """Device binding for one owner. The device id is the fingerprint id."""
    owner_id: str
    fingerprint: DeviceFingerprint
    trusted: bool
    created_at: datetime
    last_seen_at: datetime
    push_token: Optional[str] = None
    revoked_at: Optional[datetime] = None

    @classmethod
    def create(
        cls,
        owner_id: str,
        fingerprint: DeviceFingerprint,
        push_token: Optional[str] = None,
        trusted: bool = True,
        now: Optional[datetime] = None,
    ) -> "TrustedDevice":
        now = now or utcnow()
        return cls(
            owner_id=owner_id,
            fingerprint=fingerprint,
            trusted=trusted,
            created_at=now,
            last_seen_at=now,
            push_token=push_token,
        )

    @property
    def id(self) -> str:
        return self.fingerprint.id

    def mark_seen(self, now: Optional[datetime] = None) -> None:
        self.last_seen_at = now or utcnow()

    def revoke(self, now: Optional[datetime] = None) -> None:
        self.trusted = False
        self.revoked_at = now or utcnow()

    def trust(self) -> None:
        self.trusted = True
        self.revoked_at = None

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None

    @property
    def is_trusted(self) -> bool:
        return self.trusted and not self.is_revoked

    def is_stale(self, max_days_inactive: int = DEFAULT_STALE_AFTER_DAYS, now: Optional[datetime] = None) -> bool:
        """True when the device has not been seen for more than ``max_days_inactive`` days."""
        return (now or utcnow()) - self.last_seen_at > timedelta(days=max_days_inactive)

    def to_persistence(self) -> Dict[str, Any]:
        fingerprint = self.fingerprint
        return {
            "deviceId": self.id,
            "ownerId": self.owner_id,
            "fingerprintHash": fingerprint.hash,
            "fingerprint": {
                "userAgent": fingerprint.user_agent,
                "platform": fingerprint.platform,
                "timezone": fingerprint.timezone,
                "language": fingerprint.language,
                "screenResolution": fingerprint.screen_resolution,
                "entropy": fingerprint.entropy,
            },
            "trusted": self.trusted,
            "pushToken": self.push_token,
            "createdAt": to_iso(self.created_at),
            "lastSeenAt": to_iso(self.last_seen_at),
            "revokedAt": to_iso(self.revoked_at),
        }

    @classmethod
    def from_persistence(cls, record: Dict[str, Any]) -> "TrustedDevice":
        data = record["fingerprint"]
        fingerprint = DeviceFingerprint.from_existing(
            record["deviceId"],
            user_agent=data["userAgent"],
            platform=data["platform"],
            timezone=data["timezone"],
            language=data.get("language"),
            screen_resolution=data.get("screenResolution"),
            entropy=data.get("entropy"),
        )
        return cls(
            owner_id=record["ownerId"],
            fingerprint=fingerprint,
            trusted=record["trusted"],
            created_at=parse_iso(record["createdAt"]),
            last_seen_at=parse_iso(record["lastSeenAt"]),
            push_token=record.get("pushToken"),
            revoked_at=parse_iso(record.get("revokedAt")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "ownerId": self.owner_id,
            "fingerprint": self.fingerprint.to_dict(),
            "trusted": self.trusted,
            "pushToken": self.push_token,
            "createdAt": to_iso(self.created_at),
            "lastSeenAt": to_iso(self.last_seen_at),
            "revokedAt": to_iso(self.revoked_at),
            "isRevoked": self.is_revoked,
            "isTrusted": self.is_trusted,
        }
