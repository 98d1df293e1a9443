"""
Twilio Sender
=============
SMS and WhatsApp delivery through the Twilio Messages API.
"""

from base64 import b64encode
from typing import Any, Dict, Optional

import httpx
import structlog

from ..otp.models import ChallengeChannel
from .base import MessageSender
from .models import DeliveryStatus, OutboundMessage, SendResult

logger = structlog.get_logger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"


class TwilioSender(MessageSender):
    """
    Twilio SMS/WhatsApp sender.

    Features:
    - Messaging Service or fixed sender number
    - ``whatsapp:`` address prefixing for the WhatsApp channel
    """

    name = "twilio"
    channels = frozenset({ChallengeChannel.SMS, ChallengeChannel.WHATSAPP})

    def __init__(self, config: Dict[str, Any], client: Optional[httpx.AsyncClient] = None):
        """
        Args:
            config: {
                "account_sid": "ACxxx",
                "auth_token": "xxx",
                "from_number": "+15550001111",
                "messaging_service_sid": "MGxxx",  # optional
                "whatsapp_from": "+14155238886",  # optional, defaults to from_number
            }
            client: Pre-built HTTP client (auth headers are still applied)
        """
        super().__init__()
        self.account_sid = config["account_sid"]
        self.auth_token = config["auth_token"]
        self.from_number = config.get("from_number")
        self.messaging_service_sid = config.get("messaging_service_sid")
        self.whatsapp_from = config.get("whatsapp_from") or self.from_number
        self.timeout = config.get("timeout", 30.0)
        self.base_url = f"{TWILIO_API_BASE}/Accounts/{self.account_sid}"
        self._client = client

    def _auth_header(self) -> str:
        token = b64encode(f"{self.account_sid}:{self.auth_token}".encode()).decode()
        return f"Basic {token}"

    async def initialize(self) -> None:
        """Create HTTP client with auth."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        self._client.headers["Authorization"] = self._auth_header()
        await super().initialize()

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
        await super().close()

    @staticmethod
    def _whatsapp_address(number: str) -> str:
        return number if number.startswith("whatsapp:") else f"whatsapp:{number}"

    def _build_payload(self, message: OutboundMessage) -> Dict[str, str]:
        payload = {"Body": message.body}

        if message.channel == ChallengeChannel.WHATSAPP:
            if not self.whatsapp_from:
                raise ValueError("WhatsApp sender number is not configured")
            payload["To"] = self._whatsapp_address(message.to)
            payload["From"] = self._whatsapp_address(self.whatsapp_from)
        elif self.messaging_service_sid:
            payload["To"] = message.to
            payload["MessagingServiceSid"] = self.messaging_service_sid
        else:
            payload["To"] = message.to
            payload["From"] = self.from_number

        return payload

    async def send(self, message: OutboundMessage) -> SendResult:
        """Send SMS or WhatsApp via Twilio."""
        if not self._client or not self._is_initialized:
            logger.error("Twilio sender used before initialize", channel=message.channel.value)
            return SendResult(
                success=False,
                error="Sender not initialized",
                provider=self.name,
                status=DeliveryStatus.FAILED,
            )

        if not self.supports_channel(message.channel):
            return SendResult(
                success=False,
                error=f"Channel {message.channel.value} not supported by Twilio",
                provider=self.name,
                status=DeliveryStatus.FAILED,
            )

        try:
            response = await self._client.post(
                f"{self.base_url}/Messages.json",
                data=self._build_payload(message),
            )

            if response.status_code == 201:
                data = response.json()
                return SendResult(
                    success=True,
                    message_id=data["sid"],
                    provider=self.name,
                    status=DeliveryStatus.SENT,
                )

            error_data = response.json()
            return SendResult(
                success=False,
                error=error_data.get("message") or f"Twilio API error: {response.status_code}",
                provider=self.name,
                status=DeliveryStatus.FAILED,
            )
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Twilio send failed", channel=message.channel.value, error=str(e))
            return SendResult(
                success=False,
                error=str(e),
                provider=self.name,
                status=DeliveryStatus.FAILED,
            )
