"""
Denylist Service
================
Blocks identifiers from the internal denylist and disposable email domains.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

import structlog

from .config import DenylistConfig
from .identity import Identifier
from .stores.base import DenylistEntry, DenylistStore

logger = structlog.get_logger(__name__)

DISPOSABLE_EMAIL_DOMAINS = frozenset({
    "10minutemail.com",
    "guerrillamail.com",
    "mailinator.com",
    "tempmail.com",
    "throwaway.email",
    "yopmail.com",
    "temp-mail.org",
    "getnada.com",
    "mohmal.com",
    "fakeinbox.com",
})


class DenylistSource(str, Enum):
    """Which control blocked the identifier."""
    INTERNAL = "internal"
    DISPOSABLE_EMAIL = "disposable_email"


@dataclass
class DenylistCheckResult:
    blocked: bool
    reason: Optional[str] = None
    source: Optional[DenylistSource] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "blocked": self.blocked,
            "reason": self.reason,
            "source": self.source.value if self.source else None,
        }


class DenylistService:
    """
    Denylist lookups and administration.

    The internal store is consulted first; disposable email domains second.
    """

    def __init__(
        self,
        store: DenylistStore,
        config: Optional[DenylistConfig] = None,
        disposable_domains: Optional[Iterable[str]] = None,
        default_phone_region: Optional[str] = None,
    ):
        self.store = store
        self.config = config or DenylistConfig()
        self.default_phone_region = default_phone_region
        self._disposable_domains = {
            d.lower() for d in (DISPOSABLE_EMAIL_DOMAINS if disposable_domains is None else disposable_domains)
        }
        for domain in self.config.extra_disposable_domains:
            self.add_disposable_domain(domain)

    def _parse(self, identifier) -> Identifier:
        if isinstance(identifier, Identifier):
            return identifier
        return Identifier.create(identifier, default_region=self.default_phone_region)

    async def check_identifier(self, identifier) -> DenylistCheckResult:
        """
        Check whether an identifier may receive challenges.

        Args:
            identifier: Raw string or normalized Identifier

        Returns:
            DenylistCheckResult naming the blocking source, if any

        Raises:
            ValidationError: If a raw identifier cannot be normalized
        """
        parsed = self._parse(identifier)

        status = await self.store.is_blocked(parsed.hash)
        if status.blocked:
            return DenylistCheckResult(
                blocked=True,
                reason=status.reason,
                source=DenylistSource.INTERNAL,
            )

        domain = parsed.email_domain
        if domain and self.is_disposable_domain(domain):
            logger.warning("Blocked disposable email domain", domain=domain)
            return DenylistCheckResult(
                blocked=True,
                reason="Disposable email addresses are not allowed",
                source=DenylistSource.DISPOSABLE_EMAIL,
            )

        return DenylistCheckResult(blocked=False)

    async def block_identifier(
        self,
        identifier,
        reason: str,
        expires_at: Optional[datetime] = None,
    ) -> None:
        """Add an identifier to the denylist, permanently unless expires_at is given."""
        parsed = self._parse(identifier)
        await self.store.add(parsed.hash, reason, expires_at)
        logger.info("Blocked identifier", identifier_type=parsed.type.value, reason=reason)

    async def unblock_identifier(self, identifier) -> bool:
        parsed = self._parse(identifier)
        removed = await self.store.remove(parsed.hash)
        logger.info("Unblocked identifier", identifier_type=parsed.type.value, removed=removed)
        return removed

    async def list_blocked(self, limit: int = 100) -> List[DenylistEntry]:
        return await self.store.list(limit)

    def add_disposable_domain(self, domain: str) -> None:
        self._disposable_domains.add(domain.strip().lower())

    def is_disposable_domain(self, domain: str) -> bool:
        return domain.strip().lower() in self._disposable_domains
