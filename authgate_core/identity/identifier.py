"""
Identifier
==========
Normalized email address or E.164 phone number, the subject of authentication.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

import phonenumbers

from ..errors import ValidationError
from .hashing import sha256_hex

# Starts with an optional +, then up to three digit groups with common separators
PHONE_SHAPE = re.compile(r"^\+?\(?[0-9]{1,4}\)?[-\s.]?\(?[0-9]{1,4}\)?[-\s.]?[0-9]{1,9}")
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class IdentifierType(str, Enum):
    """Kinds of identifiers."""
    PHONE = "phone"
    EMAIL = "email"


@dataclass(frozen=True)
class Identifier:
    """
    Immutable normalized identifier.

    ``hash`` is the SHA-256 of the normalized value and is the only form
    used as a storage key.
    """
    value: str
    type: IdentifierType
    hash: str = field(init=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "hash", sha256_hex(self.value))

    @classmethod
    def create(cls, raw: str, default_region: Optional[str] = None) -> "Identifier":
        """
        Detect, validate and normalize a phone number or email address.

        Args:
            raw: User input
            default_region: ISO region used for numbers without a leading +

        Returns:
            Normalized Identifier

        Raises:
            ValidationError: If the input is neither a valid phone nor email
        """
        if not isinstance(raw, str):
            raise ValidationError("Identifier must be a string")

        trimmed = raw.strip()
        if cls._looks_like_phone(trimmed):
            return cls.create_phone(trimmed, default_region=default_region)
        return cls.create_email(trimmed)

    @classmethod
    def create_phone(cls, raw: str, default_region: Optional[str] = None) -> "Identifier":
        """Parse and normalize a phone number to E.164."""
        try:
            parsed = phonenumbers.parse(raw.strip(), default_region)
        except phonenumbers.NumberParseException as e:
            raise ValidationError(f"Invalid phone number: {e}") from e

        if not phonenumbers.is_valid_number(parsed):
            raise ValidationError("Invalid phone number format")

        normalized = phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)
        return cls(value=normalized, type=IdentifierType.PHONE)

    @classmethod
    def create_email(cls, raw: str) -> "Identifier":
        """Lower-case and validate an email address."""
        normalized = raw.strip().lower()
        if not EMAIL_PATTERN.match(normalized):
            raise ValidationError("Invalid email format")
        return cls(value=normalized, type=IdentifierType.EMAIL)

    @staticmethod
    def _looks_like_phone(value: str) -> bool:
        return "@" not in value and bool(PHONE_SHAPE.match(value))

    @property
    def is_phone(self) -> bool:
        return self.type == IdentifierType.PHONE

    @property
    def is_email(self) -> bool:
        return self.type == IdentifierType.EMAIL

    @property
    def email_domain(self) -> Optional[str]:
        """Domain part of an email identifier, None for phones."""
        if not self.is_email:
            return None
        return self.value.rsplit("@", 1)[1]

    def masked(self) -> str:
        """Masked form safe to echo back to users and logs."""
        if self.is_email:
            local, domain = self.value.rsplit("@", 1)
            if len(local) <= 2:
                return f"{local[:1]}***@{domain}"
            return f"{local[:2]}***{local[-1]}@{domain}"
        return "***" + self.value[-4:]

    def equals(self, other: "Identifier") -> bool:
        return self == other

    def __str__(self) -> str:
        return self.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "value": self.value,
            "type": self.type.value,
            "hash": self.hash,
        }
