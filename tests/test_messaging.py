"""
Messaging Tests
===============
Sender registry fallback, Twilio requests and message copy.
"""

from base64 import b64encode
from urllib.parse import parse_qs

import httpx
import pytest

TWILIO_CONFIG = {
    "account_sid": "AC123",
    "auth_token": "secret-token",
    "from_number": "+15550001111",
}


def _form(request: httpx.Request):
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


def _sms(to="+12025551234", body="123456 is your code"):
    from authgate_core.messaging import OutboundMessage
    from authgate_core.otp import ChallengeChannel

    return OutboundMessage(to=to, channel=ChallengeChannel.SMS, body=body)


class FailingSender:
    """Sender double that always reports failure."""

    name = "failing"

    def __init__(self):
        from authgate_core.otp import ChallengeChannel

        self.channels = frozenset({ChallengeChannel.SMS})
        self.calls = 0
        self.closed = False

    async def send(self, message):
        from authgate_core.messaging import DeliveryStatus, SendResult

        self.calls += 1
        return SendResult(success=False, error="provider down", provider=self.name, status=DeliveryStatus.FAILED)

    async def close(self):
        self.closed = True


class TestTwilioSender:
    """Tests for the Twilio sender."""

    @pytest.mark.asyncio
    async def test_sms_request(self):
        from authgate_core.messaging import DeliveryStatus, TwilioSender

        captured = {}

        def handler(request):
            captured["url"] = str(request.url)
            captured["auth"] = request.headers["Authorization"]
            captured["form"] = _form(request)
            return httpx.Response(201, json={"sid": "SM42"})

        sender = TwilioSender(TWILIO_CONFIG, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        await sender.initialize()

        result = await sender.send(_sms())

        assert result.success
        assert result.message_id == "SM42"
        assert result.status == DeliveryStatus.SENT
        assert captured["url"] == "https://api.twilio.com/2010-04-01/Accounts/AC123/Messages.json"
        assert captured["auth"] == "Basic " + b64encode(b"AC123:secret-token").decode()
        assert captured["form"] == {"To": "+12025551234", "From": "+15550001111", "Body": "123456 is your code"}

        await sender.close()

    @pytest.mark.asyncio
    async def test_whatsapp_prefix(self):
        from authgate_core.messaging import OutboundMessage, TwilioSender
        from authgate_core.otp import ChallengeChannel

        captured = {}

        def handler(request):
            captured.update(_form(request))
            return httpx.Response(201, json={"sid": "SM43"})

        sender = TwilioSender(
            {**TWILIO_CONFIG, "whatsapp_from": "+14155238886"},
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        await sender.initialize()

        await sender.send(OutboundMessage(to="+12025551234", channel=ChallengeChannel.WHATSAPP, body="hi"))

        assert captured["To"] == "whatsapp:+12025551234"
        assert captured["From"] == "whatsapp:+14155238886"

    @pytest.mark.asyncio
    async def test_messaging_service_sid(self):
        from authgate_core.messaging import TwilioSender

        captured = {}

        def handler(request):
            captured.update(_form(request))
            return httpx.Response(201, json={"sid": "SM44"})

        sender = TwilioSender(
            {**TWILIO_CONFIG, "messaging_service_sid": "MG9"},
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        await sender.initialize()
        await sender.send(_sms())

        assert captured["MessagingServiceSid"] == "MG9"
        assert "From" not in captured

    @pytest.mark.asyncio
    async def test_api_error(self):
        from authgate_core.messaging import DeliveryStatus, TwilioSender

        def handler(request):
            return httpx.Response(400, json={"code": 21211, "message": "Invalid 'To' Phone Number"})

        sender = TwilioSender(TWILIO_CONFIG, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        await sender.initialize()

        result = await sender.send(_sms())

        assert not result.success
        assert result.status == DeliveryStatus.FAILED
        assert result.error == "Invalid 'To' Phone Number"

    @pytest.mark.asyncio
    async def test_transport_error(self):
        from authgate_core.messaging import TwilioSender

        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        sender = TwilioSender(TWILIO_CONFIG, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        await sender.initialize()

        result = await sender.send(_sms())

        assert not result.success
        assert "connection refused" in result.error

    @pytest.mark.asyncio
    async def test_send_before_initialize(self):
        """An uninitialized sender reports a failed delivery instead of raising."""
        from authgate_core.messaging import DeliveryStatus, TwilioSender

        sender = TwilioSender(TWILIO_CONFIG)

        result = await sender.send(_sms())

        assert not result.success
        assert result.status == DeliveryStatus.FAILED
        assert result.error == "Sender not initialized"

    @pytest.mark.asyncio
    async def test_health_check(self):
        from authgate_core.messaging import TwilioSender

        sender = TwilioSender(TWILIO_CONFIG)
        assert await sender.health_check() is False

        await sender.initialize()
        assert await sender.health_check() is True

        await sender.close()
        assert await sender.health_check() is False


class TestSenderRegistry:
    """Tests for channel routing and fallback."""

    @pytest.mark.asyncio
    async def test_falls_back_to_next_sender(self):
        from authgate_core.messaging import LogMessageSender, SenderRegistry

        failing = FailingSender()
        log_sender = LogMessageSender()
        registry = SenderRegistry([failing, log_sender])

        result = await registry.send(_sms())

        assert result.success
        assert result.provider == "log"
        assert failing.calls == 1
        assert len(log_sender.sent) == 1

    @pytest.mark.asyncio
    async def test_no_sender_for_channel(self):
        from authgate_core.messaging import DeliveryStatus, SenderRegistry

        result = await SenderRegistry().send(_sms())

        assert not result.success
        assert result.status == DeliveryStatus.FAILED

    @pytest.mark.asyncio
    async def test_all_senders_fail(self):
        from authgate_core.messaging import SenderRegistry

        registry = SenderRegistry([FailingSender()])

        result = await registry.send(_sms())

        assert not result.success
        assert result.error == "provider down"

    def test_set_order(self):
        from authgate_core.messaging import LogMessageSender, SenderRegistry
        from authgate_core.otp import ChallengeChannel

        failing = FailingSender()
        registry = SenderRegistry([failing, LogMessageSender()])

        registry.set_order(ChallengeChannel.SMS, ["LOG", "failing"])

        assert [s.name for s in registry.get(ChallengeChannel.SMS)] == ["log", "failing"]
        with pytest.raises(ValueError):
            registry.set_order(ChallengeChannel.SMS, ["twilio"])

    def test_channels(self):
        from authgate_core.messaging import SenderRegistry
        from authgate_core.otp import ChallengeChannel

        registry = SenderRegistry([FailingSender()])

        assert registry.channels() == [ChallengeChannel.SMS]

    @pytest.mark.asyncio
    async def test_close_all_closes_each_sender_once(self):
        from authgate_core.messaging import SenderRegistry

        failing = FailingSender()
        registry = SenderRegistry([failing])

        await registry.close_all()

        assert failing.closed


class TestTemplates:
    """Tests for message copy."""

    def test_sms_otp_message(self, phone):
        from authgate_core.messaging import build_otp_message
        from authgate_core.otp import ChallengeChannel

        message = build_otp_message(phone, ChallengeChannel.SMS, "482913", 5)

        assert message.to == "+12025551234"
        assert message.subject is None
        assert message.body.startswith("482913 is your AuthGate verification code")
        assert message.variables["code"] == "482913"

    def test_email_otp_message(self, email):
        from authgate_core.messaging import build_otp_message
        from authgate_core.otp import ChallengeChannel

        message = build_otp_message(email, ChallengeChannel.EMAIL, "482913", 5, app_name="Acme")

        assert message.subject == "Your verification code"
        assert "Acme" in message.body
        assert "5 minutes" in message.body

    def test_magic_link_message(self, email):
        from authgate_core.messaging import build_magic_link_message

        message = build_magic_link_message(email, "https://app.example.com/auth/verify?token=t", 15)

        assert message.subject == "Your sign-in link"
        assert "https://app.example.com/auth/verify?token=t" in message.body
        assert message.variables["link"].endswith("token=t")
