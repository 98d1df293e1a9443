"""
Sender Registry
===============
Channel-keyed provider selection with ordered fallback.
"""

from collections import defaultdict
from typing import Dict, List, Optional, Sequence

import structlog

from ..otp.models import ChallengeChannel
from .base import MessageSender
from .models import DeliveryStatus, OutboundMessage, SendResult

logger = structlog.get_logger(__name__)


class SenderRegistry:
    """
    Registry of message senders per channel.

    Senders are tried in registration order unless an explicit order is
    configured for the channel; the first successful send wins.
    """

    def __init__(self, senders: Optional[Sequence[MessageSender]] = None):
        self._senders: Dict[ChallengeChannel, List[MessageSender]] = defaultdict(list)
        for sender in senders or ():
            self.register(sender)

    def register(self, sender: MessageSender) -> None:
        """Register a sender for every channel it supports."""
        for channel in sender.channels:
            if sender not in self._senders[channel]:
                self._senders[channel].append(sender)
        logger.info(
            "Sender registered",
            provider=sender.name,
            channels=sorted(c.value for c in sender.channels),
        )

    def set_order(self, channel: ChallengeChannel, names: Sequence[str]) -> None:
        """
        Restrict and order the senders used for a channel.

        Args:
            channel: Delivery channel
            names: Sender names in preference order

        Raises:
            ValueError: If a name is not registered for the channel
        """
        by_name = {s.name.lower(): s for s in self._senders.get(channel, [])}
        ordered = []
        for name in names:
            sender = by_name.get(name.lower())
            if sender is None:
                raise ValueError(f"Unknown sender for {channel.value}: {name}")
            ordered.append(sender)
        self._senders[channel] = ordered

    def get(self, channel: ChallengeChannel) -> List[MessageSender]:
        return list(self._senders.get(channel, []))

    def channels(self) -> List[ChallengeChannel]:
        return [c for c, senders in self._senders.items() if senders]

    async def send(self, message: OutboundMessage) -> SendResult:
        """
        Send through the channel's senders until one succeeds.

        Returns:
            The first successful SendResult, or the last failure
        """
        senders = self._senders.get(message.channel)
        if not senders:
            return SendResult(
                success=False,
                error=f"No sender registered for channel {message.channel.value}",
                status=DeliveryStatus.FAILED,
            )

        result = None
        for sender in senders:
            result = await sender.send(message)
            if result.success:
                return result
            logger.warning(
                "Sender failed, trying next",
                provider=sender.name,
                channel=message.channel.value,
                error=result.error,
            )
        return result

    async def close_all(self) -> None:
        """Close all registered senders."""
        closed = set()
        for senders in self._senders.values():
            for sender in senders:
                if id(sender) not in closed:
                    closed.add(id(sender))
                    await sender.close()
