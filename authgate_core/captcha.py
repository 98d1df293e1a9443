"""
CAPTCHA Verification
====================
Server-side verification of hCaptcha and reCAPTCHA response tokens.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import httpx
import structlog

from .config import CaptchaConfig

logger = structlog.get_logger(__name__)

SITEVERIFY_URLS = {
    "hcaptcha": "https://api.hcaptcha.com/siteverify",
    "recaptcha": "https://www.google.com/recaptcha/api/siteverify",
}


@dataclass
class CaptchaResult:
    success: bool
    score: Optional[float] = None  # reCAPTCHA v3 only
    error: Optional[str] = None


class CaptchaVerifier(ABC):
    """Verifies a client-side CAPTCHA response token."""

    @abstractmethod
    async def verify(self, token: str, remote_ip: Optional[str] = None) -> CaptchaResult:
        """
        Verify a response token.

        Args:
            token: Token produced by the client widget
            remote_ip: Client IP address, forwarded to the provider

        Returns:
            CaptchaResult; transport failures are reported as success=False
        """


class HttpCaptchaVerifier(CaptchaVerifier):
    """
    Verifier for the hCaptcha / reCAPTCHA ``siteverify`` endpoints.

    Both providers accept the same form fields and answer with
    ``{"success": bool, "score"?: float, "error-codes"?: [...]}``.
    """

    def __init__(self, config: CaptchaConfig, client: Optional[httpx.AsyncClient] = None):
        """
        Args:
            config: Provider, secret and timeout
            client: Shared HTTP client (one is created when omitted)
        """
        if config.provider not in SITEVERIFY_URLS and not config.verify_url:
            raise ValueError(f"Unknown CAPTCHA provider: {config.provider}")

        self.config = config
        self.verify_url = config.verify_url or SITEVERIFY_URLS[config.provider]
        self._client = client or httpx.AsyncClient(timeout=config.timeout)

    async def close(self) -> None:
        """Close HTTP client."""
        await self._client.aclose()

    async def verify(self, token: str, remote_ip: Optional[str] = None) -> CaptchaResult:
        if not token:
            return CaptchaResult(success=False, error="missing-input-response")

        payload = {"secret": self.config.secret_key, "response": token}
        if remote_ip:
            payload["remoteip"] = remote_ip

        try:
            response = await self._client.post(self.verify_url, data=payload)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("CAPTCHA verification failed", provider=self.config.provider, error=str(e))
            return CaptchaResult(success=False, error=str(e))

        score = data.get("score")
        error_codes = data.get("error-codes") or []

        if not data.get("success"):
            return CaptchaResult(
                success=False,
                score=score,
                error=",".join(error_codes) or "verification-failed",
            )

        if score is not None and score < self.config.min_score:
            logger.warning("CAPTCHA score below threshold", score=score, min_score=self.config.min_score)
            return CaptchaResult(success=False, score=score, error="score-too-low")

        return CaptchaResult(success=True, score=score)
