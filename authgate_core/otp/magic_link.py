"""
Magic Link Tokens
=================
Signed, single-use sign-in links.

The token is an HS256 JWT bound to a challenge. Its ``jti`` plays the role of
the one-time code: the challenge stores ``hash(jti)``, so redeeming a link
goes through the same atomic verify-and-consume as an OTP.
"""

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, urlencode, urlsplit

import jwt
import structlog

from ..errors import ChallengeExpired, ValidationError
from ..identity import Identifier
from .hashing import generate_nonce
from .models import ChallengeIntent, parse_enum

logger = structlog.get_logger(__name__)

ALGORITHM = "HS256"
DEFAULT_VALIDITY_MINUTES = 15
DEFAULT_ISSUER = "authgate"
DEFAULT_AUDIENCE = "authgate-client"
VERIFY_PATH = "/auth/verify"


@dataclass
class MagicLinkPayload:
    """Decoded magic-link claims."""
    identifier: str
    identifier_type: str
    intent: ChallengeIntent
    challenge_id: str
    iat: int
    exp: int
    jti: str

    @classmethod
    def from_claims(cls, claims: Dict[str, Any]) -> "MagicLinkPayload":
        try:
            return cls(
                identifier=claims["identifier"],
                identifier_type=claims["identifierType"],
                intent=parse_enum(ChallengeIntent, claims["intent"]),
                challenge_id=claims["challengeId"],
                iat=int(claims["iat"]),
                exp=int(claims["exp"]),
                jti=claims["jti"],
            )
        except KeyError as e:
            raise ValidationError(f"Magic link token is missing claim {e}") from e


class MagicLinkToken:
    """Issues and verifies magic-link JWTs."""

    def __init__(
        self,
        secret: str,
        validity_minutes: int = DEFAULT_VALIDITY_MINUTES,
        issuer: str = DEFAULT_ISSUER,
        audience: str = DEFAULT_AUDIENCE,
        base_url: Optional[str] = None,
        verify_path: str = VERIFY_PATH,
    ):
        """
        Args:
            secret: HMAC signing secret (required)
            validity_minutes: Token lifetime
            issuer: ``iss`` claim
            audience: ``aud`` claim
            base_url: Default origin for generated links
            verify_path: Path of the link landing endpoint
        """
        if not secret:
            raise ValueError("Magic link secret must not be empty")
        self.secret = secret
        self.validity_minutes = validity_minutes
        self.issuer = issuer
        self.audience = audience
        self.base_url = base_url
        self.verify_path = verify_path

    def generate(
        self,
        identifier: Identifier,
        intent,
        challenge_id: str,
        jti: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> str:
        """
        Sign a token for a challenge.

        Args:
            identifier: Recipient identifier
            intent: Challenge intent
            challenge_id: Challenge the link redeems
            jti: Token id; a random one is generated when omitted
            now: Issue time

        Returns:
            Encoded JWT
        """
        issued_at = int(now.timestamp()) if now else int(time.time())
        claims = {
            "identifier": identifier.value,
            "identifierType": identifier.type.value,
            "intent": parse_enum(ChallengeIntent, intent).value,
            "challengeId": challenge_id,
            "iat": issued_at,
            "exp": issued_at + self.validity_minutes * 60,
            "jti": jti or generate_nonce(),
            "iss": self.issuer,
            "aud": self.audience,
        }
        return jwt.encode(claims, self.secret, algorithm=ALGORITHM)

    def verify(self, token: str) -> MagicLinkPayload:
        """
        Verify signature, issuer, audience and expiry.

        Raises:
            ChallengeExpired: If the token has expired
            ValidationError: If the token is malformed or not ours
        """
        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[ALGORITHM],
                issuer=self.issuer,
                audience=self.audience,
                options={"require": ["exp", "iat", "jti"]},
            )
        except jwt.ExpiredSignatureError as e:
            raise ChallengeExpired("Magic link has expired") from e
        except jwt.PyJWTError as e:
            logger.warning("Invalid magic link token", error=str(e))
            raise ValidationError("Invalid magic link token") from e

        return MagicLinkPayload.from_claims(claims)

    @staticmethod
    def decode(token: str) -> Optional[MagicLinkPayload]:
        """Decode without verification, for inspection only."""
        try:
            claims = jwt.decode(token, options={"verify_signature": False})
            return MagicLinkPayload.from_claims(claims)
        except (jwt.PyJWTError, ValidationError):
            return None

    def generate_link(
        self,
        identifier: Identifier,
        intent,
        challenge_id: str,
        base_url: Optional[str] = None,
        jti: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> str:
        """Build ``<base>/auth/verify?token=...&intent=...``."""
        base = base_url or self.base_url
        if not base:
            raise ValueError("A base URL is required to build a magic link")

        intent_value = parse_enum(ChallengeIntent, intent).value
        token = self.generate(identifier, intent_value, challenge_id, jti=jti, now=now)
        query = urlencode({"token": token, "intent": intent_value})
        return f"{base.rstrip('/')}{self.verify_path}?{query}"

    @staticmethod
    def extract_token_from_url(url: str) -> Optional[str]:
        try:
            values = parse_qs(urlsplit(url).query).get("token")
        except ValueError:
            return None
        return values[0] if values else None

    @staticmethod
    def is_expired(payload: MagicLinkPayload, now: Optional[datetime] = None) -> bool:
        current = int(now.timestamp()) if now else int(time.time())
        return current >= payload.exp

    @staticmethod
    def time_to_expire(payload: MagicLinkPayload, now: Optional[datetime] = None) -> int:
        """Seconds until expiry, never negative."""
        current = int(now.timestamp()) if now else int(time.time())
        return max(0, payload.exp - current)
