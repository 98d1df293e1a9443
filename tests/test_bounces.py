"""
Bounce Handling Tests
=====================
SES bounce and complaint notifications feeding the denylist.
"""

import hashlib
import json

import pytest


def bounce_event(address, bounce_type="Permanent", sub_type="General", message_id="msg-1"):
    return {
        "notificationType": "Bounce",
        "bounce": {
            "bounceType": bounce_type,
            "bounceSubType": sub_type,
            "bouncedRecipients": [{"emailAddress": address, "status": "5.1.1"}],
            "timestamp": "2024-05-01T12:00:00.000Z",
        },
        "mail": {
            "messageId": message_id,
            "destination": [address],
            "timestamp": "2024-05-01T11:59:58.000Z",
        },
    }


def complaint_event(address, feedback_type="abuse"):
    return {
        "notificationType": "Complaint",
        "complaint": {
            "complainedRecipients": [{"emailAddress": address}],
            "complaintFeedbackType": feedback_type,
            "timestamp": "2024-05-01T12:10:00.000Z",
        },
        "mail": {"messageId": "msg-c", "destination": [address]},
    }


def _hash(address):
    return hashlib.sha256(address.encode()).hexdigest()


@pytest.fixture
def stores(clock):
    from authgate_core.stores import InMemoryBounceStore, InMemoryDenylistStore

    return InMemoryBounceStore(), InMemoryDenylistStore(clock=clock)


@pytest.fixture
def handler(stores):
    from authgate_core.bounces import BounceHandler

    bounce_store, denylist_store = stores
    return BounceHandler(bounce_store, denylist_store)


class TestBounceHandler:
    """Tests for bounce processing."""

    @pytest.mark.asyncio
    async def test_second_permanent_bounce_blocks(self, handler, stores):
        """Two permanent bounces reach the default threshold."""
        _, denylist_store = stores

        first = await handler.process_event(bounce_event("gone@example.com", message_id="m1"))
        assert first.processed
        assert first.blocked_identifiers == []
        assert not (await denylist_store.is_blocked(_hash("gone@example.com"))).blocked

        second = await handler.process_event(bounce_event("gone@example.com", message_id="m2"))

        assert second.blocked_identifiers == ["gone@example.com"]
        status = await denylist_store.is_blocked(_hash("gone@example.com"))
        assert status.blocked
        assert status.reason == "Permanent bounce: General"

    @pytest.mark.asyncio
    async def test_transient_bounces_never_block(self, handler, stores):
        _, denylist_store = stores

        for i in range(5):
            result = await handler.process_event(
                bounce_event("full@example.com", bounce_type="Transient", sub_type="MailboxFull", message_id=f"m{i}")
            )
            assert result.blocked_identifiers == []

        assert not (await denylist_store.is_blocked(_hash("full@example.com"))).blocked

    @pytest.mark.asyncio
    async def test_recipient_address_is_normalized(self, handler, stores):
        bounce_store, _ = stores

        await handler.process_event(bounce_event("Mixed.Case@Example.COM"))

        assert await bounce_store.get_bounce_count(_hash("mixed.case@example.com")) == 1

    @pytest.mark.asyncio
    async def test_custom_threshold(self, stores):
        from authgate_core.bounces import BounceHandler
        from authgate_core.config import DenylistConfig

        bounce_store, denylist_store = stores
        handler = BounceHandler(bounce_store, denylist_store, DenylistConfig(permanent_bounce_threshold=1))

        result = await handler.process_event(bounce_event("once@example.com"))

        assert result.blocked_identifiers == ["once@example.com"]

    @pytest.mark.asyncio
    async def test_invalid_recipient_collected_as_error(self, handler):
        event = bounce_event("good@example.com")
        event["bounce"]["bouncedRecipients"].insert(0, {"emailAddress": "not an address"})

        result = await handler.process_event(event)

        assert result.processed
        assert len(result.errors) == 1
        assert "not an address" in result.errors[0]

    @pytest.mark.asyncio
    async def test_malformed_event_rejected(self, handler):
        from authgate_core.errors import ValidationError

        with pytest.raises(ValidationError):
            await handler.process_event({"notificationType": "Bounce"})

    @pytest.mark.asyncio
    async def test_unknown_notification_type(self, handler):
        result = await handler.process_event({
            "notificationType": "Delivery",
            "mail": {"messageId": "m1"},
        })

        assert not result.processed


class TestComplaints:
    """Tests for complaint processing."""

    @pytest.mark.asyncio
    async def test_complaint_blocks_immediately(self, handler, stores):
        _, denylist_store = stores

        result = await handler.process_event(complaint_event("angry@example.com"))

        assert result.blocked_identifiers == ["angry@example.com"]
        status = await denylist_store.is_blocked(_hash("angry@example.com"))
        assert status.blocked
        assert status.reason == "Complaint: abuse"

    @pytest.mark.asyncio
    async def test_bounce_stats(self, handler):
        await handler.process_event(bounce_event("stats@example.com", bounce_type="Transient", message_id="m1"))
        await handler.process_event(bounce_event("stats@example.com", message_id="m2"))
        await handler.process_event(complaint_event("stats@example.com"))

        stats = await handler.get_bounce_stats("stats@example.com")

        assert stats.bounce_count == 2
        assert stats.permanent_bounce_count == 1
        assert stats.complaint_count == 1
        assert stats.last_complaint_at.minute == 10
        assert stats.to_dict()["complaintCount"] == 1


class TestSnsEnvelope:
    """Tests for SNS-wrapped notifications."""

    @pytest.mark.asyncio
    async def test_notification_unwrapped(self, handler):
        body = json.dumps({
            "Type": "Notification",
            "MessageId": "sns-1",
            "TopicArn": "arn:aws:sns:eu-west-1:123456789012:ses-feedback",
            "Message": json.dumps(complaint_event("wrapped@example.com")),
        })

        result = await handler.process_sns_message(body)

        assert result.blocked_identifiers == ["wrapped@example.com"]

    @pytest.mark.asyncio
    async def test_subscription_confirmation_ignored(self, handler):
        result = await handler.process_sns_message({
            "Type": "SubscriptionConfirmation",
            "Message": "You have chosen to subscribe",
        })

        assert not result.processed

    @pytest.mark.asyncio
    async def test_malformed_body(self, handler):
        from authgate_core.errors import ValidationError

        with pytest.raises(ValidationError):
            await handler.process_sns_message("{not json")
