"""
AuthGate Messaging
==================
Outbound delivery of challenge codes and magic links.
"""

from .models import DeliveryStatus, OutboundMessage, SendResult
from .base import MessageSender
from .registry import SenderRegistry
from .log_sender import LogMessageSender
from .twilio import TwilioSender
from .templates import build_magic_link_message, build_otp_message

__all__ = [
    # Models
    "DeliveryStatus",
    "OutboundMessage",
    "SendResult",
    # Senders
    "MessageSender",
    "LogMessageSender",
    "TwilioSender",
    "SenderRegistry",
    # Copy
    "build_otp_message",
    "build_magic_link_message",
]
