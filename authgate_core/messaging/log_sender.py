"""
Log Message Sender
==================
Development sender that logs deliveries instead of sending them.
"""

import uuid
from typing import List

import structlog

from ..otp.models import ChallengeChannel
from .base import MessageSender
from .models import DeliveryStatus, OutboundMessage, SendResult

logger = structlog.get_logger(__name__)


def _mask(to: str) -> str:
    if "@" in to:
        local, domain = to.rsplit("@", 1)
        return f"{local[:1]}***@{domain}"
    return "***" + to[-4:]


class LogMessageSender(MessageSender):
    """
    Logs each message with a masked recipient and keeps it in ``sent``.

    For development and testing only.
    """

    name = "log"
    channels = frozenset(ChallengeChannel)

    def __init__(self):
        super().__init__()
        self.sent: List[OutboundMessage] = []

    async def send(self, message: OutboundMessage) -> SendResult:
        self.sent.append(message)
        message_id = f"log-{uuid.uuid4().hex[:12]}"
        logger.info(
            "Message logged",
            channel=message.channel.value,
            to=_mask(message.to),
            message_id=message_id,
        )
        return SendResult(
            success=True,
            message_id=message_id,
            provider=self.name,
            status=DeliveryStatus.SENT,
        )

    async def health_check(self) -> bool:
        return True
