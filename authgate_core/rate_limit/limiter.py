"""
Fixed-Window Rate Limiter
=========================
Pure rate limit decisions from a counter snapshot. No storage access.
"""

import sys
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Union

from ..identity import short_hash
from ..otp.models import utcnow
from .models import DEFAULT_RULES, RateLimitInfo, RateLimitRule, RateLimitScope

ScopeLike = Union[RateLimitScope, str]


def _scope_value(scope: ScopeLike) -> str:
    return scope.value if isinstance(scope, RateLimitScope) else str(scope)


class RateLimiter:
    """
    Evaluate fixed-window rules against an observed count.

    The caller supplies the count and window start; ``check`` only decides.
    """

    def __init__(self, rules: Optional[Iterable[RateLimitRule]] = None):
        self._rules: Dict[str, RateLimitRule] = {}
        for rule in (DEFAULT_RULES if rules is None else rules):
            self.add_rule(rule)

    def add_rule(self, rule: RateLimitRule) -> None:
        """Add or replace the rule for a scope."""
        self._rules[_scope_value(rule.scope)] = rule

    def get_rule(self, scope: ScopeLike) -> Optional[RateLimitRule]:
        return self._rules.get(_scope_value(scope))

    @property
    def rules(self) -> List[RateLimitRule]:
        return list(self._rules.values())

    def check(
        self,
        scope: ScopeLike,
        key: str,
        current_count: int,
        window_start: datetime,
        now: Optional[datetime] = None,
    ) -> RateLimitInfo:
        """
        Decide whether one more attempt fits in the window.

        Args:
            scope: Rule scope
            key: Subject key (unused by the decision, kept for symmetry with stores)
            current_count: Attempts already counted in the window
            window_start: Start of the observed window
            now: Evaluation time

        Returns:
            RateLimitInfo with decision and quota
        """
        now = now or utcnow()
        rule = self.get_rule(scope)
        resolved_scope = scope if isinstance(scope, RateLimitScope) else None

        if rule is None:
            return RateLimitInfo(
                allowed=True,
                remaining=sys.maxsize,
                limit=sys.maxsize,
                reset_at=now,
                scope=resolved_scope,
            )

        window = timedelta(minutes=rule.window_minutes)
        window_end = window_start + window

        if now >= window_end:
            # First attempt of a fresh window
            return RateLimitInfo(
                allowed=True,
                remaining=max(0, rule.max_attempts - 1),
                limit=rule.max_attempts,
                reset_at=now + window,
                scope=rule.scope,
            )

        allowed = current_count < rule.max_attempts
        return RateLimitInfo(
            allowed=allowed,
            remaining=max(0, rule.max_attempts - current_count - 1),
            limit=rule.max_attempts,
            reset_at=window_end,
            scope=rule.scope,
            retry_after=None if allowed else max(0, int((window_end - now).total_seconds())),
        )

    @staticmethod
    def make_counter_key(scope: ScopeLike, key: str) -> str:
        """Counter key that never contains the raw subject."""
        return f"{_scope_value(scope)}#{short_hash(key)}"
