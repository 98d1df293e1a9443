"""
AuthGate Core
=============
Passwordless challenge engine: one-time codes and magic links behind
rate limiting, abuse scoring, a denylist and bounce feedback.

Usage:
    from authgate_core import AuthService, AuthGateConfig, StartAuthRequest
    from authgate_core.stores import InMemoryChallengeStore, InMemoryCounterStore
"""

__version__ = "1.0.0"

from .config import AuthGateConfig
from .errors import (
    AuthGateError,
    Blocked,
    CaptchaRequired,
    ChallengeConflictError,
    ChallengeExhausted,
    ChallengeExpired,
    DeliveryError,
    NotFoundError,
    RateLimitExceeded,
    ValidationError,
    VerificationFailed,
)
from .identity import DeviceFingerprint, Identifier, IdentifierType, TrustedDevice
from .otp import (
    ChallengeChannel,
    ChallengeIntent,
    ChallengeMethod,
    ChallengeStatus,
    MagicLinkToken,
    OTPChallenge,
)
from .rate_limit import RateLimiter, RateLimitService
from .abuse import AbuseDetector
from .denylist import DenylistService
from .devices import DeviceService
from .bounces import BounceHandler
from .captcha import CaptchaVerifier, HttpCaptchaVerifier
from .service import AuthService, StartAuthRequest, StartAuthResult, VerifyAuthResult
from .logging_config import setup_logging

__all__ = [
    "__version__",
    # Config
    "AuthGateConfig",
    "setup_logging",
    # Errors
    "AuthGateError",
    "ValidationError",
    "NotFoundError",
    "RateLimitExceeded",
    "Blocked",
    "CaptchaRequired",
    "ChallengeExpired",
    "ChallengeExhausted",
    "VerificationFailed",
    "ChallengeConflictError",
    "DeliveryError",
    # Identity
    "Identifier",
    "IdentifierType",
    "DeviceFingerprint",
    "TrustedDevice",
    # Challenges
    "ChallengeChannel",
    "ChallengeIntent",
    "ChallengeMethod",
    "ChallengeStatus",
    "OTPChallenge",
    "MagicLinkToken",
    # Controls
    "RateLimiter",
    "RateLimitService",
    "AbuseDetector",
    "DenylistService",
    "DeviceService",
    "BounceHandler",
    "CaptchaVerifier",
    "HttpCaptchaVerifier",
    # Flows
    "AuthService",
    "StartAuthRequest",
    "StartAuthResult",
    "VerifyAuthResult",
]
