"""
AuthGate Rate Limiting
======================
Fixed-window rate limiting per identifier, IP and global scope.
"""

from .models import DEFAULT_RULES, RateLimitInfo, RateLimitResult, RateLimitRule, RateLimitScope
from .limiter import RateLimiter
from .service import RateLimitService

__all__ = [
    # Models
    "RateLimitScope",
    "RateLimitResult",
    "RateLimitRule",
    "RateLimitInfo",
    "DEFAULT_RULES",
    # Limiter
    "RateLimiter",
    # Service
    "RateLimitService",
]
