"""
OTP Challenge
=============
The challenge entity and its forward-only state machine.

    pending ──verify ok──────────────▶ verified
       │────attempts exhausted───────▶ failed
       └────validity window passed───▶ expired

Terminal states never revert.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import structlog

from ..identity import Identifier, IdentifierType
from .hashing import generate_code, hash_code, verify_code_hash
from .models import (
    ChallengeChannel,
    ChallengeIntent,
    ChallengeStatus,
    parse_enum,
    parse_iso,
    to_iso,
    utcnow,
)

logger = structlog.get_logger(__name__)

DEFAULT_VALIDITY_MINUTES = 5
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_MAX_RESENDS = 5


@dataclass
class OTPChallenge:
    """A single OTP or magic-link verification window for one identifier."""
    id: str
    identifier: Identifier
    channel: ChallengeChannel
    intent: ChallengeIntent
    code_hash: str
    expires_at: datetime
    created_at: datetime
    attempts: int = 0
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    resend_count: int = 0
    max_resends: int = DEFAULT_MAX_RESENDS
    status: ChallengeStatus = ChallengeStatus.PENDING
    ip_hash: Optional[str] = None
    device_id: Optional[str] = None
    last_attempt_at: Optional[datetime] = None

    @classmethod
    def create(
        cls,
        identifier: Identifier,
        channel,
        intent,
        code: str,
        ip_hash: Optional[str] = None,
        device_id: Optional[str] = None,
        validity_minutes: int = DEFAULT_VALIDITY_MINUTES,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        max_resends: int = DEFAULT_MAX_RESENDS,
        now: Optional[datetime] = None,
    ) -> "OTPChallenge":
        """
        Create a new pending challenge.

        Args:
            identifier: Normalized identifier
            channel: Delivery channel (enum or raw string)
            intent: Challenge intent (enum or raw string)
            code: Plain code; only its hash is kept
            ip_hash: Hashed client IP
            device_id: Device fingerprint id
            validity_minutes: Validity window
            max_attempts: Verification attempts allowed
            max_resends: Resends allowed
            now: Creation time (defaults to current UTC time)

        Returns:
            Pending OTPChallenge
        """
        now = now or utcnow()
        return cls(
            id=str(uuid.uuid4()),
            identifier=identifier,
            channel=parse_enum(ChallengeChannel, channel),
            intent=parse_enum(ChallengeIntent, intent),
            code_hash=hash_code(code),
            expires_at=now + timedelta(minutes=validity_minutes),
            created_at=now,
            max_attempts=max_attempts,
            max_resends=max_resends,
            ip_hash=ip_hash,
            device_id=device_id,
        )

    @staticmethod
    def generate_code(length: int = 6) -> str:
        """Generate a random numeric code."""
        return generate_code(length)

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def verify(self, code: str, now: Optional[datetime] = None) -> bool:
        """
        Verify a code and advance the state machine.

        Args:
            code: User-provided code
            now: Evaluation time

        Returns:
            True only on the transition to VERIFIED
        """
        now = now or utcnow()
        self.last_attempt_at = now

        if self.status != ChallengeStatus.PENDING:
            return False

        if self.is_expired(now):
            self.status = ChallengeStatus.EXPIRED
            logger.info("Challenge expired", challenge_id=self.id)
            return False

        if self.attempts >= self.max_attempts:
            self.status = ChallengeStatus.FAILED
            return False

        self.attempts += 1

        if verify_code_hash(code, self.code_hash):
            self.status = ChallengeStatus.VERIFIED
            logger.info("Challenge verified", challenge_id=self.id, attempts=self.attempts)
            return True

        if self.attempts >= self.max_attempts:
            self.status = ChallengeStatus.FAILED
            logger.warning("Challenge attempts exhausted", challenge_id=self.id)
        else:
            logger.warning(
                "Invalid code attempt",
                challenge_id=self.id,
                remaining=self.attempts_remaining,
            )
        return False

    def resend(self, new_code: str, now: Optional[datetime] = None) -> bool:
        """
        Replace the code for a resend.

        Resets attempts and bumps the resend counter. No-op when resends are
        used up, the challenge expired, or it is no longer pending.
        """
        if not self.can_resend(now):
            return False

        self.resend_count += 1
        self.code_hash = hash_code(new_code)
        self.attempts = 0
        return True

    def mark_expired(self) -> bool:
        """Force PENDING to EXPIRED. Terminal states are left untouched."""
        if self.status != ChallengeStatus.PENDING:
            return False
        self.status = ChallengeStatus.EXPIRED
        return True

    # ------------------------------------------------------------------
    # Predicates
    # ------------------------------------------------------------------

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    @property
    def is_pending(self) -> bool:
        return self.status == ChallengeStatus.PENDING

    @property
    def attempts_remaining(self) -> int:
        return max(0, self.max_attempts - self.attempts)

    def can_attempt(self, now: Optional[datetime] = None) -> bool:
        return (
            self.status == ChallengeStatus.PENDING
            and self.attempts < self.max_attempts
            and not self.is_expired(now)
        )

    def can_resend(self, now: Optional[datetime] = None) -> bool:
        return (
            self.status == ChallengeStatus.PENDING
            and self.resend_count < self.max_resends
            and not self.is_expired(now)
        )

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_persistence(self) -> Dict[str, Any]:
        """Storage record. Field names are shared with other implementations."""
        return {
            "id": self.id,
            "identifierHash": self.identifier.hash,
            "identifierValue": self.identifier.value,
            "identifierType": self.identifier.type.value,
            "channel": self.channel.value,
            "intent": self.intent.value,
            "codeHash": self.code_hash,
            "expiresAt": to_iso(self.expires_at),
            "attempts": self.attempts,
            "maxAttempts": self.max_attempts,
            "resendCount": self.resend_count,
            "maxResends": self.max_resends,
            "ipHash": self.ip_hash,
            "deviceId": self.device_id,
            "status": self.status.value,
            "createdAt": to_iso(self.created_at),
            "lastAttemptAt": to_iso(self.last_attempt_at),
            "ttl": int(self.expires_at.timestamp()),
        }

    @classmethod
    def from_persistence(cls, record: Dict[str, Any]) -> "OTPChallenge":
        """Rebuild a challenge from a storage record."""
        identifier = Identifier(
            value=record["identifierValue"],
            type=IdentifierType(record["identifierType"]),
        )
        return cls(
            id=record["id"],
            identifier=identifier,
            channel=ChallengeChannel(record["channel"]),
            intent=ChallengeIntent(record["intent"]),
            code_hash=record["codeHash"],
            expires_at=parse_iso(record["expiresAt"]),
            created_at=parse_iso(record["createdAt"]),
            attempts=record.get("attempts", 0),
            max_attempts=record.get("maxAttempts", DEFAULT_MAX_ATTEMPTS),
            resend_count=record.get("resendCount", 0),
            max_resends=record.get("maxResends", DEFAULT_MAX_RESENDS),
            status=ChallengeStatus(record["status"]),
            ip_hash=record.get("ipHash"),
            device_id=record.get("deviceId"),
            last_attempt_at=parse_iso(record.get("lastAttemptAt")),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Public view without the code hash."""
        return {
            "id": self.id,
            "identifier": self.identifier.to_dict(),
            "channel": self.channel.value,
            "intent": self.intent.value,
            "status": self.status.value,
            "attempts": self.attempts,
            "maxAttempts": self.max_attempts,
            "resendCount": self.resend_count,
            "maxResends": self.max_resends,
            "canAttempt": self.can_attempt(),
            "canResend": self.can_resend(),
            "expiresAt": to_iso(self.expires_at),
            "createdAt": to_iso(self.created_at),
        }
