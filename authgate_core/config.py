"""
AuthGate Configuration
======================
Explicit, constructor-injected configuration for every component.

Defaults are plain constants; ``AuthGateConfig.from_env()`` overlays
``AUTHGATE_*`` environment variables once at startup.
"""

import os
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from .otp.models import ChallengeConfig
from .rate_limit.models import DEFAULT_RULES, RateLimitRule


@dataclass
class RateLimitConfig:
    """Fixed-window rules per scope."""
    rules: List[RateLimitRule] = field(default_factory=lambda: list(DEFAULT_RULES))


@dataclass
class AbuseConfig:
    """Thresholds and weights for heuristic abuse scoring."""
    window_seconds: int = 3600  # 1 hour
    velocity_threshold: int = 10  # requests per hour per identifier
    geo_velocity_threshold: int = 5  # located requests per hour per identifier
    ip_velocity_threshold: int = 20  # requests per hour per IP
    velocity_weight: float = 0.3
    geo_velocity_weight: float = 0.2
    ip_velocity_weight: float = 0.2
    user_agent_weight: float = 0.1
    min_user_agent_length: int = 10
    block_threshold: float = 0.8
    challenge_threshold: float = 0.5


@dataclass
class DenylistConfig:
    """Denylist and bounce feedback settings."""
    extra_disposable_domains: List[str] = field(default_factory=list)
    permanent_bounce_threshold: int = 2


@dataclass
class MagicLinkConfig:
    """Signing settings for magic-link tokens."""
    secret: str = ""
    issuer: str = "authgate"
    audience: str = "authgate-client"
    base_url: str = "http://localhost:3000"
    verify_path: str = "/auth/verify"


@dataclass
class CaptchaConfig:
    """CAPTCHA verification settings. Disabled when secret_key is empty."""
    provider: str = "hcaptcha"  # "hcaptcha" or "recaptcha"
    secret_key: str = ""
    verify_url: Optional[str] = None
    timeout: float = 10.0
    min_score: float = 0.5  # reCAPTCHA v3 only

    @property
    def enabled(self) -> bool:
        return bool(self.secret_key)


@dataclass
class AuthGateConfig:
    """Top-level configuration."""
    service_name: str = "authgate"
    default_phone_region: Optional[str] = None
    challenge: ChallengeConfig = field(default_factory=ChallengeConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    abuse: AbuseConfig = field(default_factory=AbuseConfig)
    denylist: DenylistConfig = field(default_factory=DenylistConfig)
    magic_link: MagicLinkConfig = field(default_factory=MagicLinkConfig)
    captcha: CaptchaConfig = field(default_factory=CaptchaConfig)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "AuthGateConfig":
        """
        Build configuration from ``AUTHGATE_*`` environment variables.

        Args:
            environ: Mapping to read from (defaults to os.environ)

        Returns:
            AuthGateConfig with environment overrides applied
        """
        env = os.environ if environ is None else environ

        def _int(name: str, default: int) -> int:
            return int(env.get(name, default))

        def _float(name: str, default: float) -> float:
            return float(env.get(name, default))

        challenge = ChallengeConfig(
            code_length=_int("AUTHGATE_CODE_LENGTH", 6),
            otp_validity_minutes=_int("AUTHGATE_OTP_VALIDITY_MINUTES", 5),
            magic_link_validity_minutes=_int("AUTHGATE_MAGIC_LINK_VALIDITY_MINUTES", 15),
            max_attempts=_int("AUTHGATE_MAX_ATTEMPTS", 3),
            max_resends=_int("AUTHGATE_MAX_RESENDS", 5),
        )

        rules = [
            RateLimitRule(
                scope=rule.scope,
                max_attempts=_int(f"AUTHGATE_RATE_LIMIT_{rule.scope.value.upper()}_MAX", rule.max_attempts),
                window_minutes=_int(f"AUTHGATE_RATE_LIMIT_{rule.scope.value.upper()}_WINDOW_MINUTES", rule.window_minutes),
            )
            for rule in DEFAULT_RULES
        ]

        abuse = AbuseConfig(
            velocity_threshold=_int("AUTHGATE_ABUSE_VELOCITY_THRESHOLD", 10),
            geo_velocity_threshold=_int("AUTHGATE_ABUSE_GEO_VELOCITY_THRESHOLD", 5),
            ip_velocity_threshold=_int("AUTHGATE_ABUSE_IP_VELOCITY_THRESHOLD", 20),
            ip_velocity_weight=_float("AUTHGATE_ABUSE_IP_VELOCITY_WEIGHT", 0.2),
        )

        extra_domains = [
            d.strip() for d in env.get("AUTHGATE_DISPOSABLE_DOMAINS", "").split(",") if d.strip()
        ]
        denylist = DenylistConfig(
            extra_disposable_domains=extra_domains,
            permanent_bounce_threshold=_int("AUTHGATE_PERMANENT_BOUNCE_THRESHOLD", 2),
        )

        magic_link = MagicLinkConfig(
            secret=env.get("AUTHGATE_MAGIC_LINK_SECRET", ""),
            issuer=env.get("AUTHGATE_MAGIC_LINK_ISSUER", "authgate"),
            audience=env.get("AUTHGATE_MAGIC_LINK_AUDIENCE", "authgate-client"),
            base_url=env.get("AUTHGATE_BASE_URL", "http://localhost:3000"),
        )

        captcha = CaptchaConfig(
            provider=env.get("AUTHGATE_CAPTCHA_PROVIDER", "hcaptcha"),
            secret_key=env.get("AUTHGATE_CAPTCHA_SECRET", ""),
            verify_url=env.get("AUTHGATE_CAPTCHA_VERIFY_URL") or None,
        )

        return cls(
            service_name=env.get("AUTHGATE_SERVICE_NAME", "authgate"),
            default_phone_region=env.get("AUTHGATE_DEFAULT_PHONE_REGION") or None,
            challenge=challenge,
            rate_limit=RateLimitConfig(rules=rules),
            abuse=abuse,
            denylist=denylist,
            magic_link=magic_link,
            captcha=captcha,
        )
