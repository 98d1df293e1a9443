"""
Messaging Models
================
Outbound message and delivery result types.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from ..otp.models import ChallengeChannel


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


@dataclass
class OutboundMessage:
    """A rendered message ready for a provider."""
    to: str  # E.164 phone number or email address
    channel: ChallengeChannel
    body: str
    subject: Optional[str] = None  # Email only
    variables: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SendResult:
    """Result of a message send operation."""
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    provider: Optional[str] = None
    status: DeliveryStatus = DeliveryStatus.PENDING
