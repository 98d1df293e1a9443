"""
Abuse Detection
===============
Heuristic risk scoring for challenge issuance.

Signals (additive, score capped at 1.0):
- identifier velocity: requests per identifier in the window
- geo velocity: requests per identifier that carried a country
- IP velocity: requests per client IP
- user agent: automation markers or implausibly short strings

Decisions: score >= block threshold blocks, score >= challenge threshold
asks for a CAPTCHA, anything lower is allowed.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

import structlog

from .config import AbuseConfig
from .identity import short_hash
from .otp.models import utcnow
from .stores.base import CounterStore

logger = structlog.get_logger(__name__)

BOT_USER_AGENT = re.compile(r"bot|crawler|spider|scraper", re.IGNORECASE)


class AbuseAction(str, Enum):
    ALLOW = "allow"
    CHALLENGE = "challenge"
    BLOCK = "block"


class AbuseSignalType(str, Enum):
    """Kinds of abuse signals."""
    IDENTIFIER_VELOCITY = "identifier_velocity"
    GEO_VELOCITY = "geo_velocity"
    IP_VELOCITY = "ip_velocity"
    USER_AGENT = "user_agent"


@dataclass
class AbuseSignal:
    """One fired heuristic."""
    signal_type: AbuseSignalType
    weight: float
    reason: str
    observed: Optional[int] = None  # Counter value that tripped the signal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "signal_type": self.signal_type.value,
            "weight": self.weight,
            "reason": self.reason,
            "observed": self.observed,
        }


@dataclass
class AbuseCheckResult:
    """Aggregated abuse assessment."""
    suspicious: bool
    risk_score: float
    reasons: List[str]
    action: AbuseAction
    signals: List[AbuseSignal] = field(default_factory=list)
    checked_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "suspicious": self.suspicious,
            "risk_score": self.risk_score,
            "reasons": list(self.reasons),
            "action": self.action.value,
            "signals": [s.to_dict() for s in self.signals],
            "checked_at": self.checked_at.isoformat(),
        }


class AbuseDetector:
    """
    Scores a request from shared velocity counters and request metadata.

    Deterministic given the counter values. Every check increments the
    counters it reads.
    """

    def __init__(self, counter_store: CounterStore, config: Optional[AbuseConfig] = None):
        self.counter_store = counter_store
        self.config = config or AbuseConfig()

    @staticmethod
    def identifier_velocity_key(identifier_hash: str) -> str:
        return f"velocity:identifier:{identifier_hash}"

    @staticmethod
    def geo_velocity_key(identifier_hash: str) -> str:
        return f"geo:identifier:{identifier_hash}"

    @staticmethod
    def ip_velocity_key(ip: str) -> str:
        return f"velocity:ip:{short_hash(ip)}"

    async def check_abuse(
        self,
        identifier_hash: str,
        ip: str,
        user_agent: Optional[str] = None,
        geo_country: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> AbuseCheckResult:
        """
        Evaluate every signal and decide.

        Args:
            identifier_hash: SHA-256 of the normalized identifier
            ip: Client IP address (hashed before use as a key)
            user_agent: Client user agent; an empty string is evaluated
            geo_country: ISO country resolved from the IP, if known
            timestamp: Evaluation time

        Returns:
            AbuseCheckResult with score, reasons and action
        """
        cfg = self.config
        signals: List[AbuseSignal] = []

        # 1. Identifier velocity
        velocity = await self.counter_store.increment(
            self.identifier_velocity_key(identifier_hash), cfg.window_seconds
        )
        if velocity.count > cfg.velocity_threshold:
            signals.append(AbuseSignal(
                signal_type=AbuseSignalType.IDENTIFIER_VELOCITY,
                weight=cfg.velocity_weight,
                reason=f"High request velocity: {velocity.count} requests in window",
                observed=velocity.count,
            ))

        # 2. Geo velocity
        if geo_country:
            geo = await self.counter_store.increment(
                self.geo_velocity_key(identifier_hash), cfg.window_seconds
            )
            if geo.count > cfg.geo_velocity_threshold:
                signals.append(AbuseSignal(
                    signal_type=AbuseSignalType.GEO_VELOCITY,
                    weight=cfg.geo_velocity_weight,
                    reason=f"High geo velocity: {geo.count} located requests in window",
                    observed=geo.count,
                ))

        # 3. IP velocity
        ip_velocity = await self.counter_store.increment(self.ip_velocity_key(ip), cfg.window_seconds)
        if ip_velocity.count > cfg.ip_velocity_threshold:
            signals.append(AbuseSignal(
                signal_type=AbuseSignalType.IP_VELOCITY,
                weight=cfg.ip_velocity_weight,
                reason=f"High IP velocity: {ip_velocity.count} requests in window",
                observed=ip_velocity.count,
            ))

        # 4. User agent
        if user_agent is not None and self._is_suspicious_user_agent(user_agent):
            signals.append(AbuseSignal(
                signal_type=AbuseSignalType.USER_AGENT,
                weight=cfg.user_agent_weight,
                reason="Suspicious user agent",
            ))

        # Rounded so that summed weights land exactly on the thresholds
        risk_score = round(min(sum(s.weight for s in signals), 1.0), 4)
        action = self._determine_action(risk_score)

        result = AbuseCheckResult(
            suspicious=risk_score >= cfg.challenge_threshold,
            risk_score=risk_score,
            reasons=[s.reason for s in signals],
            action=action,
            signals=signals,
            checked_at=timestamp or utcnow(),
        )

        if result.suspicious:
            logger.warning(
                "abuse_check_suspicious",
                identifier_hash=identifier_hash[:16],
                risk_score=risk_score,
                action=action.value,
                signal_count=len(signals),
            )
        return result

    def _is_suspicious_user_agent(self, user_agent: str) -> bool:
        if BOT_USER_AGENT.search(user_agent):
            return True
        return len(user_agent) < self.config.min_user_agent_length

    def _determine_action(self, risk_score: float) -> AbuseAction:
        if risk_score >= self.config.block_threshold:
            return AbuseAction.BLOCK
        if risk_score >= self.config.challenge_threshold:
            return AbuseAction.CHALLENGE
        return AbuseAction.ALLOW

    async def reset_counters(self, identifier_hash: str) -> None:
        """Clear the per-identifier velocity counters."""
        await self.counter_store.reset(self.identifier_velocity_key(identifier_hash))
        await self.counter_store.reset(self.geo_velocity_key(identifier_hash))
