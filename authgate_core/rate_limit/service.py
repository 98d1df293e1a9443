"""
Rate Limit Service
==================
Store-backed fixed-window enforcement for identifier and IP scopes.
"""

import sys
from typing import Optional

import structlog

from ..otp.models import utcnow
from ..stores.base import CounterStore
from .limiter import RateLimiter, ScopeLike
from .models import RateLimitInfo, RateLimitScope

logger = structlog.get_logger(__name__)


class RateLimitService:
    """
    Count attempts in a shared CounterStore and apply the limiter's rules.

    The increment is the decision: a request is counted even when denied.
    """

    def __init__(self, counter_store: CounterStore, limiter: Optional[RateLimiter] = None):
        self.counter_store = counter_store
        self.limiter = limiter or RateLimiter()

    async def check_scope(self, scope: ScopeLike, key: str) -> RateLimitInfo:
        """
        Count one attempt against a scope and decide.

        Args:
            scope: Rule scope
            key: Raw subject (identifier hash, IP address, ...). Only its hash is stored.

        Returns:
            RateLimitInfo for this scope
        """
        rule = self.limiter.get_rule(scope)
        if rule is None:
            return RateLimitInfo(
                allowed=True,
                remaining=sys.maxsize,
                limit=sys.maxsize,
                reset_at=utcnow(),
            )

        counter_key = self.limiter.make_counter_key(rule.scope, key)
        counter = await self.counter_store.increment(counter_key, rule.window_seconds)

        if counter.count > rule.max_attempts:
            logger.warning("Rate limit exceeded", scope=rule.scope.value, key=counter_key)
            return RateLimitInfo(
                allowed=False,
                remaining=0,
                limit=rule.max_attempts,
                reset_at=counter.expires_at,
                scope=rule.scope,
                retry_after=max(0, int((counter.expires_at - utcnow()).total_seconds())),
            )

        return RateLimitInfo(
            allowed=True,
            remaining=rule.max_attempts - counter.count,
            limit=rule.max_attempts,
            reset_at=counter.expires_at,
            scope=rule.scope,
        )

    async def check_limits(self, identifier_hash: str, ip: str) -> RateLimitInfo:
        """
        Check identifier and IP scopes together.

        Both counters are incremented. Allowed only if both pass; the result
        carries the later reset time, the lesser remaining quota and the
        scope that denied, if any.
        """
        identifier_info = await self.check_scope(RateLimitScope.IDENTIFIER, identifier_hash)
        ip_info = await self.check_scope(RateLimitScope.IP, ip)

        allowed = identifier_info.allowed and ip_info.allowed
        if not identifier_info.allowed:
            denying = identifier_info
        elif not ip_info.allowed:
            denying = ip_info
        else:
            denying = None

        return RateLimitInfo(
            allowed=allowed,
            remaining=min(identifier_info.remaining, ip_info.remaining),
            limit=min(identifier_info.limit, ip_info.limit),
            reset_at=max(identifier_info.reset_at, ip_info.reset_at),
            scope=denying.scope if denying else None,
            retry_after=denying.retry_after if denying else None,
        )

    async def reset_counters(self, scope: ScopeLike, key: str) -> None:
        """Clear the counter for one scope and subject."""
        await self.counter_store.reset(self.limiter.make_counter_key(scope, key))
