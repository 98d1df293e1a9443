"""
AuthGate OTP
============
Challenge state machine, code generation and magic-link tokens.
"""

from .models import (
    ChallengeChannel,
    ChallengeConfig,
    ChallengeIntent,
    ChallengeMethod,
    ChallengeStatus,
)
from .hashing import generate_code, generate_nonce, hash_code, verify_code_hash
from .challenge import OTPChallenge
from .magic_link import MagicLinkPayload, MagicLinkToken

__all__ = [
    # Models
    "ChallengeChannel",
    "ChallengeIntent",
    "ChallengeStatus",
    "ChallengeMethod",
    "ChallengeConfig",
    # Hashing
    "generate_code",
    "hash_code",
    "verify_code_hash",
    "generate_nonce",
    # Challenge
    "OTPChallenge",
    # Magic link
    "MagicLinkToken",
    "MagicLinkPayload",
]
