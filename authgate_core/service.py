"""
Auth Service
============
Orchestrates the passwordless flows on top of the challenge engine.

start_auth:  normalize -> denylist -> abuse (+CAPTCHA) -> rate limit
             -> create challenge -> deliver
verify_auth: active challenge -> atomic verify-and-consume -> classify
resend_auth: rate limit -> active challenge -> atomic resend -> deliver
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

import structlog

from .abuse import AbuseAction, AbuseDetector
from .captcha import CaptchaVerifier
from .config import AuthGateConfig
from .denylist import DenylistService
from .devices import DeviceService
from .errors import (
    Blocked,
    CaptchaRequired,
    ChallengeExhausted,
    ChallengeExpired,
    DeliveryError,
    NotFoundError,
    RateLimitExceeded,
    ValidationError,
    VerificationFailed,
)
from .identity import DeviceFingerprint, Identifier, sha256_hex
from .messaging import OutboundMessage, SenderRegistry, build_magic_link_message, build_otp_message
from .otp import (
    ChallengeChannel,
    ChallengeIntent,
    ChallengeMethod,
    ChallengeStatus,
    MagicLinkToken,
    OTPChallenge,
    generate_code,
    generate_nonce,
    hash_code,
)
from .otp.models import parse_enum, utcnow
from .rate_limit import RateLimiter, RateLimitService
from .stores.base import ChallengeStore, CounterStore, DenylistStore, DeviceStore

logger = structlog.get_logger(__name__)


@dataclass
class StartAuthRequest:
    """Inbound start request, already parsed by the transport layer."""
    identifier: str
    channel: Any  # ChallengeChannel or raw string
    intent: Any  # ChallengeIntent or raw string
    ip: str
    user_agent: Optional[str] = None
    device_id: Optional[str] = None
    captcha_token: Optional[str] = None
    geo_country: Optional[str] = None


@dataclass
class StartAuthResult:
    challenge_id: str
    method: ChallengeMethod
    sent_to: str  # Masked
    expires_in: int  # Seconds
    can_resend: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "challengeId": self.challenge_id,
            "method": self.method.value,
            "sentTo": self.sent_to,
            "expiresIn": self.expires_in,
            "canResend": self.can_resend,
        }


@dataclass
class VerifyAuthResult:
    challenge_id: str
    identifier: Identifier
    intent: ChallengeIntent
    method: ChallengeMethod
    device_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "challengeId": self.challenge_id,
            "identifier": self.identifier.masked(),
            "intent": self.intent.value,
            "method": self.method.value,
            "deviceId": self.device_id,
        }


class AuthService:
    """
    Passwordless authentication flows.

    All collaborators are injected; the service holds no global state.
    """

    def __init__(
        self,
        challenge_store: ChallengeStore,
        rate_limits: RateLimitService,
        abuse_detector: AbuseDetector,
        denylist: DenylistService,
        senders: SenderRegistry,
        magic_link: Optional[MagicLinkToken] = None,
        captcha_verifier: Optional[CaptchaVerifier] = None,
        config: Optional[AuthGateConfig] = None,
        devices: Optional[DeviceService] = None,
    ):
        self.challenge_store = challenge_store
        self.rate_limits = rate_limits
        self.abuse_detector = abuse_detector
        self.denylist = denylist
        self.senders = senders
        self.magic_link = magic_link
        self.captcha_verifier = captcha_verifier
        self.config = config or AuthGateConfig()
        self.devices = devices

    @classmethod
    def from_config(
        cls,
        config: AuthGateConfig,
        challenge_store: ChallengeStore,
        counter_store: CounterStore,
        denylist_store: DenylistStore,
        senders: SenderRegistry,
        captcha_verifier: Optional[CaptchaVerifier] = None,
        device_store: Optional[DeviceStore] = None,
    ) -> "AuthService":
        """Wire the standard components from one configuration object."""
        magic_link = None
        if config.magic_link.secret:
            magic_link = MagicLinkToken(
                secret=config.magic_link.secret,
                validity_minutes=config.challenge.magic_link_validity_minutes,
                issuer=config.magic_link.issuer,
                audience=config.magic_link.audience,
                base_url=config.magic_link.base_url,
                verify_path=config.magic_link.verify_path,
            )

        return cls(
            challenge_store=challenge_store,
            rate_limits=RateLimitService(counter_store, RateLimiter(config.rate_limit.rules)),
            abuse_detector=AbuseDetector(counter_store, config.abuse),
            denylist=DenylistService(
                denylist_store,
                config=config.denylist,
                default_phone_region=config.default_phone_region,
            ),
            senders=senders,
            magic_link=magic_link,
            captcha_verifier=captcha_verifier,
            config=config,
            devices=DeviceService(device_store) if device_store is not None else None,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _parse_identifier(self, raw) -> Identifier:
        if isinstance(raw, Identifier):
            return raw
        return Identifier.create(raw, default_region=self.config.default_phone_region)

    def _method_for(self, channel: ChallengeChannel, intent: ChallengeIntent) -> ChallengeMethod:
        if channel == ChallengeChannel.EMAIL and intent == ChallengeIntent.LOGIN and self.magic_link:
            return ChallengeMethod.MAGIC_LINK
        return ChallengeMethod.OTP

    def _validity_minutes(self, method: ChallengeMethod) -> int:
        if method == ChallengeMethod.MAGIC_LINK:
            return self.config.challenge.magic_link_validity_minutes
        return self.config.challenge.otp_validity_minutes

    def _new_secret(self, method: ChallengeMethod) -> str:
        if method == ChallengeMethod.MAGIC_LINK:
            return generate_nonce()
        return generate_code(self.config.challenge.code_length)

    def _build_message(self, challenge: OTPChallenge, method: ChallengeMethod, secret: str) -> OutboundMessage:
        validity = self._validity_minutes(method)
        if method == ChallengeMethod.MAGIC_LINK:
            link = self.magic_link.generate_link(
                challenge.identifier,
                challenge.intent,
                challenge.id,
                jti=secret,
                now=challenge.created_at,
            )
            return build_magic_link_message(challenge.identifier, link, validity)
        return build_otp_message(challenge.identifier, challenge.channel, secret, validity)

    async def _deliver(self, message: OutboundMessage, challenge_id: str) -> None:
        result = await self.senders.send(message)
        if not result.success:
            logger.error(
                "Challenge delivery failed",
                challenge_id=challenge_id,
                channel=message.channel.value,
                error=result.error,
            )
            raise DeliveryError(f"Delivery failed: {result.error}")
        logger.info(
            "Challenge delivered",
            challenge_id=challenge_id,
            channel=message.channel.value,
            provider=result.provider,
        )

    async def _enforce_rate_limits(self, identifier: Identifier, ip: str) -> None:
        info = await self.rate_limits.check_limits(identifier.hash, ip)
        if not info.allowed:
            raise RateLimitExceeded(
                reset_at=info.reset_at,
                scope=info.scope.value if info.scope else None,
            )

    # ------------------------------------------------------------------
    # Flows
    # ------------------------------------------------------------------

    async def start_auth(self, request: StartAuthRequest) -> StartAuthResult:
        """
        Issue a challenge and deliver it.

        Args:
            request: Start request

        Returns:
            StartAuthResult with a masked destination

        Raises:
            ValidationError: Malformed identifier, channel or intent
            Blocked: Denylisted identifier or abusive request
            CaptchaRequired: Suspicious request without a valid CAPTCHA token
            RateLimitExceeded: Identifier or IP over its window quota
            DeliveryError: No sender could deliver the message
        """
        channel = parse_enum(ChallengeChannel, request.channel)
        intent = parse_enum(ChallengeIntent, request.intent)
        identifier = self._parse_identifier(request.identifier)

        if channel == ChallengeChannel.EMAIL and not identifier.is_email:
            raise ValidationError("Email channel requires an email identifier")
        if channel != ChallengeChannel.EMAIL and not identifier.is_phone:
            raise ValidationError(f"{channel.value} channel requires a phone identifier")

        log = logger.bind(identifier_hash=identifier.hash[:16], channel=channel.value, intent=intent.value)

        # 1. Denylist
        denylisted = await self.denylist.check_identifier(identifier)
        if denylisted.blocked:
            log.warning("Start refused by denylist", source=denylisted.source.value)
            raise Blocked(reason=denylisted.reason, source=denylisted.source.value)

        # 2. Abuse heuristics
        abuse = await self.abuse_detector.check_abuse(
            identifier.hash,
            request.ip,
            user_agent=request.user_agent,
            geo_country=request.geo_country,
        )
        if abuse.action == AbuseAction.BLOCK:
            log.warning("Start refused by abuse score", risk_score=abuse.risk_score)
            raise Blocked(reason="; ".join(abuse.reasons), source="abuse")

        if abuse.action == AbuseAction.CHALLENGE:
            await self._require_captcha(request)

        # 3. Rate limits
        await self._enforce_rate_limits(identifier, request.ip)

        # 4. Challenge
        now = utcnow()
        method = self._method_for(channel, intent)
        secret = self._new_secret(method)
        challenge = OTPChallenge.create(
            identifier=identifier,
            channel=channel,
            intent=intent,
            code=secret,
            ip_hash=sha256_hex(request.ip),
            device_id=request.device_id,
            validity_minutes=self._validity_minutes(method),
            max_attempts=self.config.challenge.max_attempts,
            max_resends=self.config.challenge.max_resends,
            now=now,
        )

        previous = await self.challenge_store.get_active_by_identifier(identifier.hash, now=now)
        if previous:
            await self.challenge_store.mark_expired(previous.id)

        await self.challenge_store.create(challenge)
        log.info("Challenge created", challenge_id=challenge.id, method=method.value)

        # 5. Delivery
        try:
            await self._deliver(self._build_message(challenge, method, secret), challenge.id)
        except DeliveryError:
            await self.challenge_store.mark_expired(challenge.id)
            raise

        return StartAuthResult(
            challenge_id=challenge.id,
            method=method,
            sent_to=identifier.masked(),
            expires_in=self._validity_minutes(method) * 60,
            can_resend=challenge.can_resend(now),
        )

    async def _require_captcha(self, request: StartAuthRequest) -> None:
        if not request.captcha_token:
            raise CaptchaRequired()
        if self.captcha_verifier is None:
            raise CaptchaRequired("CAPTCHA token supplied but no verifier is configured")

        result = await self.captcha_verifier.verify(request.captcha_token, remote_ip=request.ip)
        if not result.success:
            raise CaptchaRequired(f"CAPTCHA verification failed: {result.error}")

    async def verify_auth(
        self,
        identifier,
        code: str,
        now: Optional[datetime] = None,
        fingerprint: Optional[DeviceFingerprint] = None,
    ) -> VerifyAuthResult:
        """
        Verify a one-time code for the identifier's active challenge.

        A verified ``bind`` challenge with a fingerprint binds that device as
        trusted, owned by the identifier hash.

        Raises:
            NotFoundError: No active challenge
            ChallengeExpired: Validity window passed
            ChallengeExhausted: Attempts used up
            VerificationFailed: Wrong code, attempts remain
        """
        if not isinstance(code, str) or not code.strip():
            raise ValidationError("Code is required")

        now = now or utcnow()
        parsed = self._parse_identifier(identifier)

        challenge = await self.challenge_store.get_active_by_identifier(parsed.hash, now=now)
        if challenge is None:
            raise NotFoundError("No active challenge")
        if challenge.is_expired(now):
            raise ChallengeExpired(f"Challenge {challenge.id} expired")
        if challenge.attempts >= challenge.max_attempts:
            raise ChallengeExhausted(f"Challenge {challenge.id} has no attempts left")

        if await self.challenge_store.verify_and_consume(challenge.id, code.strip(), now=now):
            logger.info("Challenge verified", challenge_id=challenge.id, channel=challenge.channel.value)

            device_id = None
            if challenge.intent == ChallengeIntent.BIND and fingerprint is not None and self.devices is not None:
                device = await self.devices.bind_device(challenge.identifier.hash, fingerprint, now=now)
                device_id = device.id

            return VerifyAuthResult(
                challenge_id=challenge.id,
                identifier=challenge.identifier,
                intent=challenge.intent,
                method=ChallengeMethod.OTP,
                device_id=device_id,
            )

        current = await self.challenge_store.get_by_id(challenge.id)
        if current is None or current.status == ChallengeStatus.VERIFIED:
            raise NotFoundError("Challenge already consumed")
        if current.status == ChallengeStatus.FAILED:
            raise ChallengeExhausted(f"Challenge {challenge.id} attempts exhausted")
        if current.status == ChallengeStatus.EXPIRED:
            raise ChallengeExpired(f"Challenge {challenge.id} expired")

        raise VerificationFailed(attempts_remaining=current.attempts_remaining)

    async def verify_magic_link(self, token: str, now: Optional[datetime] = None) -> VerifyAuthResult:
        """
        Redeem a magic link. Single use across processes.

        Raises:
            ValidationError: Bad token, or link already used
            ChallengeExpired: Token or challenge expired
            NotFoundError: Challenge no longer exists
        """
        if self.magic_link is None:
            raise ValidationError("Magic links are not configured")

        payload = self.magic_link.verify(token)

        if await self.challenge_store.verify_and_consume(payload.challenge_id, payload.jti, now=now):
            challenge = await self.challenge_store.get_by_id(payload.challenge_id)
            logger.info("Magic link redeemed", challenge_id=payload.challenge_id)
            return VerifyAuthResult(
                challenge_id=payload.challenge_id,
                identifier=challenge.identifier,
                intent=challenge.intent,
                method=ChallengeMethod.MAGIC_LINK,
            )

        challenge = await self.challenge_store.get_by_id(payload.challenge_id)
        if challenge is None:
            raise NotFoundError(f"Challenge {payload.challenge_id} not found")
        if challenge.status == ChallengeStatus.EXPIRED:
            raise ChallengeExpired(f"Challenge {payload.challenge_id} expired")

        logger.warning("Magic link rejected", challenge_id=payload.challenge_id, status=challenge.status.value)
        raise ValidationError(
            "Magic link already used or superseded",
            user_message="This link is invalid or has already been used.",
        )

    async def resend_auth(self, identifier, ip: str, now: Optional[datetime] = None) -> StartAuthResult:
        """
        Send a fresh code (or link) for the active challenge.

        Raises:
            RateLimitExceeded: Identifier or IP over its window quota
            NotFoundError: No active challenge
            ChallengeExhausted: Resends used up
            DeliveryError: No sender could deliver the message
        """
        now = now or utcnow()
        parsed = self._parse_identifier(identifier)

        await self._enforce_rate_limits(parsed, ip)

        challenge = await self.challenge_store.get_active_by_identifier(parsed.hash, now=now)
        if challenge is None:
            raise NotFoundError("No active challenge")
        if not challenge.can_resend(now):
            raise ChallengeExhausted(f"Challenge {challenge.id} cannot be resent")

        method = self._method_for(challenge.channel, challenge.intent)
        secret = self._new_secret(method)

        resend_count = await self.challenge_store.increment_send_count(
            challenge.id, new_code_hash=hash_code(secret), now=now
        )
        if resend_count is None:
            raise ChallengeExhausted(f"Challenge {challenge.id} cannot be resent")

        logger.info("Challenge resent", challenge_id=challenge.id, resend_count=resend_count)
        await self._deliver(self._build_message(challenge, method, secret), challenge.id)

        return StartAuthResult(
            challenge_id=challenge.id,
            method=method,
            sent_to=parsed.masked(),
            expires_in=max(0, int((challenge.expires_at - now).total_seconds())),
            can_resend=resend_count < challenge.max_resends,
        )
