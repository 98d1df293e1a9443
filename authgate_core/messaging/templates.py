"""
Challenge Copy
==============
Minimal channel-appropriate text for OTP and magic-link messages.
"""

from ..identity import Identifier
from ..otp.models import ChallengeChannel
from .models import OutboundMessage

OTP_SUBJECT = "Your verification code"
MAGIC_LINK_SUBJECT = "Your sign-in link"


def build_otp_message(
    identifier: Identifier,
    channel: ChallengeChannel,
    code: str,
    validity_minutes: int,
    app_name: str = "AuthGate",
) -> OutboundMessage:
    """
    Render a one-time code message.

    Args:
        identifier: Recipient
        channel: Delivery channel
        code: Plain code (only ever placed in the message body)
        validity_minutes: Shown to the user
        app_name: Product name used in the copy

    Returns:
        OutboundMessage for the channel
    """
    if channel == ChallengeChannel.EMAIL:
        body = (
            f"Your {app_name} verification code is {code}.\n\n"
            f"It expires in {validity_minutes} minutes. "
            "If you did not request this code, you can ignore this email."
        )
        subject = OTP_SUBJECT
    else:
        body = f"{code} is your {app_name} verification code. It expires in {validity_minutes} minutes."
        subject = None

    return OutboundMessage(
        to=identifier.value,
        channel=channel,
        subject=subject,
        body=body,
        variables={"code": code, "validity_minutes": validity_minutes},
    )


def build_magic_link_message(
    identifier: Identifier,
    link: str,
    validity_minutes: int,
    app_name: str = "AuthGate",
) -> OutboundMessage:
    """Render a magic-link email."""
    body = (
        f"Click the link below to sign in to {app_name}:\n\n{link}\n\n"
        f"The link expires in {validity_minutes} minutes and can be used once. "
        "If you did not request it, you can ignore this email."
    )
    return OutboundMessage(
        to=identifier.value,
        channel=ChallengeChannel.EMAIL,
        subject=MAGIC_LINK_SUBJECT,
        body=body,
        variables={"link": link, "validity_minutes": validity_minutes},
    )
