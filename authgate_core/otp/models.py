"""
Challenge Models
================
Enums, configuration and timestamp helpers for OTP and magic-link challenges.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Type, TypeVar

from ..errors import ValidationError

E = TypeVar("E", bound=Enum)


class ChallengeChannel(str, Enum):
    """Delivery channels."""
    SMS = "sms"
    EMAIL = "email"
    WHATSAPP = "whatsapp"


class ChallengeIntent(str, Enum):
    """Why the challenge was issued."""
    LOGIN = "login"
    BIND = "bind"
    VERIFY_CONTACT = "verifyContact"


class ChallengeStatus(str, Enum):
    """Challenge lifecycle states. Only PENDING is non-terminal."""
    PENDING = "pending"
    VERIFIED = "verified"
    FAILED = "failed"
    EXPIRED = "expired"


class ChallengeMethod(str, Enum):
    """How the secret reaches the user."""
    OTP = "otp"
    MAGIC_LINK = "magic-link"


@dataclass
class ChallengeConfig:
    """Configuration for OTP and magic-link challenges."""
    code_length: int = 6
    otp_validity_minutes: int = 5
    magic_link_validity_minutes: int = 15
    max_attempts: int = 3
    max_resends: int = 5


def parse_enum(enum_cls: Type[E], value) -> E:
    """
    Coerce a raw value into an enum member.

    Raises:
        ValidationError: If the value is not a member of the enum
    """
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(f"Invalid {enum_cls.__name__}: {value!r}") from None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """ISO-8601 UTC with microsecond precision and a Z suffix."""
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp, treating naive values as UTC."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
