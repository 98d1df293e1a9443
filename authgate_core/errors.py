"""
Error Taxonomy
==============
Typed errors raised by the challenge engine and its protective shell.

Every error carries an internal ``code`` and technical ``message`` for logs,
plus a ``user_message`` that is safe to show to end users.

CRITICAL: user messages never reveal which control fired (denylist, abuse
score, CAPTCHA) to avoid enumeration of phone numbers and email addresses.
"""

from datetime import datetime
from typing import Any, Dict, Optional


# Shared by every control that refuses to issue a challenge
GENERIC_REFUSAL_MESSAGE = "We could not process this request. Please try again later."
GENERIC_VERIFY_MESSAGE = "The code is invalid or has expired."


class AuthGateError(Exception):
    """Base class for all authgate errors."""

    code: str = "AUTH_ERROR"
    status_code: int = 400
    user_message: str = GENERIC_REFUSAL_MESSAGE

    def __init__(self, message: Optional[str] = None, user_message: Optional[str] = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        if user_message is not None:
            self.user_message = user_message

    def to_dict(self) -> Dict[str, Any]:
        """User-safe payload for the calling layer."""
        return {
            "error": self.code,
            "message": self.user_message,
        }


class ValidationError(AuthGateError):
    """Malformed identifier, code, channel or intent. Never retried."""

    code = "VALIDATION_ERROR"
    status_code = 400
    user_message = "The request is invalid."


class NotFoundError(AuthGateError):
    """No active challenge exists."""

    code = "NOT_FOUND"
    status_code = 404
    user_message = GENERIC_VERIFY_MESSAGE


class RateLimitExceeded(AuthGateError):
    """Too many requests in the current window."""

    code = "RATE_LIMITED"
    status_code = 429
    user_message = "Too many requests. Please try again later."

    def __init__(self, reset_at: datetime, scope: Optional[str] = None, message: Optional[str] = None):
        super().__init__(message or f"Rate limit exceeded for scope {scope}")
        self.reset_at = reset_at
        self.scope = scope

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["reset_at"] = self.reset_at.isoformat()
        return payload


class Blocked(AuthGateError):
    """Identifier is denylisted or the request scored as abusive."""

    code = "REFUSED"
    status_code = 403

    def __init__(self, reason: Optional[str] = None, source: Optional[str] = None):
        super().__init__(f"Blocked ({source}): {reason}")
        self.reason = reason
        self.source = source


class CaptchaRequired(AuthGateError):
    """A CAPTCHA token is required or the supplied token was rejected."""

    code = "REFUSED"
    status_code = 403

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or "CAPTCHA verification required")
        self.requires_captcha = True

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["requires_captcha"] = True
        return payload


class ChallengeExpired(AuthGateError):
    """The challenge validity window has passed."""

    code = "CHALLENGE_EXPIRED"
    status_code = 410
    user_message = GENERIC_VERIFY_MESSAGE


class ChallengeExhausted(AuthGateError):
    """Verification attempts or resends are used up."""

    code = "CHALLENGE_EXHAUSTED"
    status_code = 429
    user_message = "Too many attempts. Please request a new code."


class VerificationFailed(AuthGateError):
    """Wrong code, attempts remain."""

    code = "VERIFICATION_FAILED"
    status_code = 400
    user_message = GENERIC_VERIFY_MESSAGE

    def __init__(self, attempts_remaining: int, message: Optional[str] = None):
        super().__init__(message or "Invalid code")
        self.attempts_remaining = attempts_remaining

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["attempts_remaining"] = self.attempts_remaining
        return payload


class ChallengeConflictError(AuthGateError):
    """A challenge with the same id already exists in the store."""

    code = "CHALLENGE_CONFLICT"
    status_code = 409


class DeliveryError(AuthGateError):
    """No sender could deliver the outbound message."""

    code = "DELIVERY_FAILED"
    status_code = 502
    user_message = "We could not send the code. Please try again later."
