"""
Message Sender Contract
=======================
Base class for the "send a message" capability behind challenge delivery.
"""

from abc import ABC, abstractmethod
from typing import FrozenSet

import structlog

from ..otp.models import ChallengeChannel
from .models import OutboundMessage, SendResult

logger = structlog.get_logger(__name__)


class MessageSender(ABC):
    """
    Abstract base class for outbound message providers.

    Implementations report failures through ``SendResult`` instead of raising.
    """

    name: str = "base"
    channels: FrozenSet[ChallengeChannel] = frozenset()

    def __init__(self):
        self._is_initialized = False

    async def initialize(self) -> None:
        """Initialize the sender (e.g., create HTTP clients)."""
        self._is_initialized = True
        logger.info("Message sender initialized", provider=self.name)

    async def close(self) -> None:
        """Clean up resources (e.g., close HTTP clients)."""
        self._is_initialized = False
        logger.info("Message sender closed", provider=self.name)

    def supports_channel(self, channel: ChallengeChannel) -> bool:
        return channel in self.channels

    @abstractmethod
    async def send(self, message: OutboundMessage) -> SendResult:
        """
        Deliver one message.

        Args:
            message: Rendered outbound message

        Returns:
            SendResult with provider response
        """

    async def health_check(self) -> bool:
        """
        Check if the provider is usable.

        Returns:
            True if the sender is initialized
        """
        return self._is_initialized
