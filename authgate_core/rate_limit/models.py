"""
Rate Limit Models
=================
Scopes, rules and check results for fixed-window rate limiting.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class RateLimitScope(str, Enum):
    """What a counter is keyed on."""
    IDENTIFIER = "identifier"
    IP = "ip"
    GLOBAL = "global"


class RateLimitResult(str, Enum):
    """Rate limit decision result."""
    ALLOWED = "allowed"
    BLOCKED = "blocked"


@dataclass
class RateLimitRule:
    """At most ``max_attempts`` per ``window_minutes`` for one scope."""
    scope: RateLimitScope
    max_attempts: int
    window_minutes: int

    @property
    def window_seconds(self) -> int:
        return self.window_minutes * 60


DEFAULT_RULES = (
    RateLimitRule(scope=RateLimitScope.IDENTIFIER, max_attempts=5, window_minutes=60),
    RateLimitRule(scope=RateLimitScope.IP, max_attempts=10, window_minutes=60),
    RateLimitRule(scope=RateLimitScope.GLOBAL, max_attempts=1000, window_minutes=60),
)


@dataclass
class RateLimitInfo:
    """Rate limit check result with quota information."""
    allowed: bool
    remaining: int
    limit: int
    reset_at: datetime
    scope: Optional[RateLimitScope] = None
    retry_after: Optional[int] = None  # Seconds until retry allowed

    @property
    def result(self) -> RateLimitResult:
        return RateLimitResult.ALLOWED if self.allowed else RateLimitResult.BLOCKED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "remaining": self.remaining,
            "limit": self.limit,
            "resetAt": self.reset_at.isoformat(),
            "scope": self.scope.value if self.scope else None,
            "retryAfter": self.retry_after,
        }
