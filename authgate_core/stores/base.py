"""
Store Contracts
===============
Abstract persistence interfaces and the records they exchange.

Every mutating operation is an atomic conditional read-modify-write in the
backend's native primitive. Reads may be eventually consistent.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from ..identity.device import TrustedDevice
from ..otp.challenge import OTPChallenge
from ..otp.models import to_iso, utcnow


@dataclass
class CounterValue:
    """Snapshot of a fixed-window counter after an increment."""
    key: str
    count: int
    window_start: datetime
    expires_at: datetime


@dataclass
class BlockStatus:
    """Result of a denylist lookup."""
    blocked: bool
    reason: Optional[str] = None
    expires_at: Optional[datetime] = None


@dataclass
class DenylistEntry:
    """A denylisted identifier hash. Permanent unless ``expires_at`` is set."""
    identifier_hash: str
    reason: str
    created_at: datetime
    expires_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utcnow()) >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identifierHash": self.identifier_hash,
            "reason": self.reason,
            "createdAt": to_iso(self.created_at),
            "expiresAt": to_iso(self.expires_at),
        }


class BounceType(str, Enum):
    """Bounce classification as reported by the mail provider."""
    PERMANENT = "Permanent"
    TRANSIENT = "Transient"
    UNDETERMINED = "Undetermined"


@dataclass
class BounceRecord:
    identifier_hash: str
    identifier: str
    bounce_type: BounceType
    message_id: str
    timestamp: datetime
    bounce_sub_type: Optional[str] = None


@dataclass
class ComplaintRecord:
    identifier_hash: str
    identifier: str
    message_id: str
    timestamp: datetime
    complaint_type: Optional[str] = None


class CounterStore(ABC):
    """Fixed-window counters keyed by opaque strings."""

    @abstractmethod
    async def increment(self, key: str, window_ttl_seconds: int) -> CounterValue:
        """
        Atomically add one to the counter, opening a new window if the old one ended.

        Args:
            key: Counter key
            window_ttl_seconds: Window length for a newly opened window

        Returns:
            CounterValue after the increment
        """

    @abstractmethod
    async def get(self, key: str) -> Optional[CounterValue]:
        """Current counter, or None when absent or its window ended."""

    @abstractmethod
    async def reset(self, key: str) -> None:
        """Drop the counter."""


class ChallengeStore(ABC):
    """Persistence for OTP and magic-link challenges."""

    @abstractmethod
    async def create(self, challenge: OTPChallenge) -> None:
        """
        Persist a new challenge.

        Raises:
            ChallengeConflictError: If a challenge with the same id exists
        """

    @abstractmethod
    async def get_by_id(self, challenge_id: str) -> Optional[OTPChallenge]:
        """Load a challenge by id."""

    @abstractmethod
    async def get_active_by_identifier(
        self,
        identifier_hash: str,
        now: Optional[datetime] = None,
    ) -> Optional[OTPChallenge]:
        """Most recently created pending, unexpired challenge for an identifier."""

    @abstractmethod
    async def verify_and_consume(
        self,
        challenge_id: str,
        code: str,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Atomically verify a code and consume the challenge.

        At most one caller ever observes True for a given challenge. A miss
        still counts as an attempt and may move the challenge to a terminal
        state in the same operation.
        """

    @abstractmethod
    async def increment_send_count(
        self,
        challenge_id: str,
        new_code_hash: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[int]:
        """
        Atomically record a resend.

        Applies only while the challenge is pending, unexpired and under its
        resend cap. When ``new_code_hash`` is given the hash is replaced and
        attempts reset.

        Returns:
            New resend count, or None when the condition did not hold
        """

    @abstractmethod
    async def delete_by_id(self, challenge_id: str) -> bool:
        """Delete a challenge. Returns True if it existed."""

    @abstractmethod
    async def mark_expired(self, challenge_id: str) -> bool:
        """Move a pending challenge to expired. Returns True if it changed."""


class DenylistStore(ABC):
    """Blocked identifier hashes."""

    @abstractmethod
    async def add(
        self,
        identifier_hash: str,
        reason: str,
        expires_at: Optional[datetime] = None,
    ) -> None:
        """Block an identifier hash, replacing any existing entry."""

    @abstractmethod
    async def remove(self, identifier_hash: str) -> bool:
        """Unblock an identifier hash. Returns True if an entry existed."""

    @abstractmethod
    async def is_blocked(self, identifier_hash: str) -> BlockStatus:
        """Look up an identifier hash. Expired entries count as not blocked."""

    @abstractmethod
    async def list(self, limit: int = 100) -> List[DenylistEntry]:
        """Active entries, newest first."""


class BounceStore(ABC):
    """Append-only bounce and complaint history."""

    @abstractmethod
    async def record_bounce(self, record: BounceRecord) -> None:
        pass

    @abstractmethod
    async def record_complaint(self, record: ComplaintRecord) -> None:
        pass

    @abstractmethod
    async def get_bounce_count(
        self,
        identifier_hash: str,
        bounce_type: Optional[BounceType] = None,
    ) -> int:
        """Number of bounces, optionally restricted to one type."""

    @abstractmethod
    async def get_complaint_count(self, identifier_hash: str) -> int:
        pass

    @abstractmethod
    async def get_last_bounce(self, identifier_hash: str) -> Optional[BounceRecord]:
        pass

    @abstractmethod
    async def get_last_complaint(self, identifier_hash: str) -> Optional[ComplaintRecord]:
        pass


class DeviceStore(ABC):
    """Trusted device bindings keyed by owner and device id."""

    @abstractmethod
    async def upsert(self, device: TrustedDevice) -> None:
        """Insert or replace a device binding."""

    @abstractmethod
    async def get(self, owner_id: str, device_id: str) -> Optional[TrustedDevice]:
        pass

    @abstractmethod
    async def get_by_fingerprint(self, owner_id: str, fingerprint_hash: str) -> Optional[TrustedDevice]:
        """Device of this owner whose full fingerprint hash matches."""

    @abstractmethod
    async def list_by_owner(self, owner_id: str) -> List[TrustedDevice]:
        pass

    @abstractmethod
    async def revoke(self, owner_id: str, device_id: str, now: Optional[datetime] = None) -> bool:
        """Revoke trust. Returns True if the device exists."""

    @abstractmethod
    async def delete(self, owner_id: str, device_id: str) -> bool:
        """Delete a binding. Returns True if it existed."""
