"""
Bounce Handling
===============
Turns mail-provider bounce and complaint feedback into denylist entries.

Input is the SES notification JSON, either directly or wrapped in an SNS
envelope. Permanent bounces block an identifier once its permanent-bounce
count reaches the configured threshold; complaints block immediately.
Nothing here ever unblocks.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .config import DenylistConfig
from .errors import ValidationError
from .identity import Identifier
from .otp.models import utcnow
from .stores.base import (
    BounceRecord,
    BounceStore,
    BounceType,
    ComplaintRecord,
    DenylistStore,
)

logger = structlog.get_logger(__name__)


class NotificationType(str, Enum):
    BOUNCE = "Bounce"
    COMPLAINT = "Complaint"


class _SesModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Recipient(_SesModel):
    email_address: str = Field(alias="emailAddress")


class BounceDetail(_SesModel):
    bounce_type: BounceType = Field(alias="bounceType")
    bounce_sub_type: Optional[str] = Field(default=None, alias="bounceSubType")
    bounced_recipients: List[Recipient] = Field(default_factory=list, alias="bouncedRecipients")
    timestamp: Optional[datetime] = None


class ComplaintDetail(_SesModel):
    complained_recipients: List[Recipient] = Field(default_factory=list, alias="complainedRecipients")
    complaint_feedback_type: Optional[str] = Field(default=None, alias="complaintFeedbackType")
    timestamp: Optional[datetime] = None


class MailDetail(_SesModel):
    message_id: str = Field(alias="messageId")
    destination: List[str] = Field(default_factory=list)
    timestamp: Optional[datetime] = None


class BounceNotification(_SesModel):
    """SES bounce or complaint notification."""
    notification_type: str = Field(alias="notificationType")
    mail: MailDetail
    bounce: Optional[BounceDetail] = None
    complaint: Optional[ComplaintDetail] = None


class SnsEnvelope(_SesModel):
    """SNS HTTP/Lambda message wrapper."""
    type: str = Field(default="Notification", alias="Type")
    message: str = Field(alias="Message")
    message_id: Optional[str] = Field(default=None, alias="MessageId")
    topic_arn: Optional[str] = Field(default=None, alias="TopicArn")


@dataclass
class ProcessBounceResult:
    processed: bool
    blocked_identifiers: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


@dataclass
class BounceStats:
    bounce_count: int
    permanent_bounce_count: int
    complaint_count: int
    last_bounce_at: Optional[datetime] = None
    last_complaint_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bounceCount": self.bounce_count,
            "permanentBounceCount": self.permanent_bounce_count,
            "complaintCount": self.complaint_count,
            "lastBounceAt": self.last_bounce_at.isoformat() if self.last_bounce_at else None,
            "lastComplaintAt": self.last_complaint_at.isoformat() if self.last_complaint_at else None,
        }


def _load_json(body: Union[str, bytes, Dict[str, Any]]) -> Dict[str, Any]:
    if isinstance(body, dict):
        return body
    try:
        return json.loads(body)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Malformed notification body: {e}") from e


class BounceHandler:
    """Records bounces and complaints and denylists offending identifiers."""

    def __init__(
        self,
        bounce_store: BounceStore,
        denylist_store: DenylistStore,
        config: Optional[DenylistConfig] = None,
    ):
        self.bounce_store = bounce_store
        self.denylist_store = denylist_store
        self.config = config or DenylistConfig()

    async def process_event(
        self,
        event: Union[BounceNotification, Dict[str, Any]],
    ) -> ProcessBounceResult:
        """
        Process one SES notification.

        Args:
            event: Parsed notification or its raw JSON mapping

        Returns:
            ProcessBounceResult with blocked identifiers and per-recipient errors

        Raises:
            ValidationError: If the notification does not match the SES shape
        """
        if not isinstance(event, BounceNotification):
            try:
                event = BounceNotification.model_validate(event)
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid bounce notification: {e.error_count()} errors") from e

        if event.notification_type == NotificationType.BOUNCE.value and event.bounce:
            return await self._handle_bounce(event.bounce, event.mail)
        if event.notification_type == NotificationType.COMPLAINT.value and event.complaint:
            return await self._handle_complaint(event.complaint, event.mail)

        logger.warning("Unknown notification type", notification_type=event.notification_type)
        return ProcessBounceResult(processed=False)

    async def process_sns_message(
        self,
        body: Union[str, bytes, Dict[str, Any]],
    ) -> ProcessBounceResult:
        """
        Unwrap an SNS envelope and process the SES notification inside it.

        Subscription confirmations are logged and left for an operator.
        """
        try:
            envelope = SnsEnvelope.model_validate(_load_json(body))
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid SNS envelope: {e.error_count()} errors") from e

        if envelope.type != "Notification":
            logger.info("Ignoring SNS message", sns_type=envelope.type, topic_arn=envelope.topic_arn)
            return ProcessBounceResult(processed=False)

        return await self.process_event(_load_json(envelope.message))

    async def _handle_bounce(self, bounce: BounceDetail, mail: MailDetail) -> ProcessBounceResult:
        result = ProcessBounceResult(processed=True)
        timestamp = bounce.timestamp or mail.timestamp or utcnow()

        for recipient in bounce.bounced_recipients:
            try:
                identifier = Identifier.create_email(recipient.email_address)
                await self.bounce_store.record_bounce(BounceRecord(
                    identifier_hash=identifier.hash,
                    identifier=identifier.value,
                    bounce_type=bounce.bounce_type,
                    bounce_sub_type=bounce.bounce_sub_type,
                    message_id=mail.message_id,
                    timestamp=timestamp,
                ))
                logger.info(
                    "Bounce recorded",
                    identifier_hash=identifier.hash[:16],
                    bounce_type=bounce.bounce_type.value,
                    bounce_sub_type=bounce.bounce_sub_type or "unknown",
                )

                if bounce.bounce_type != BounceType.PERMANENT:
                    continue

                count = await self.bounce_store.get_bounce_count(identifier.hash, BounceType.PERMANENT)
                if count >= self.config.permanent_bounce_threshold:
                    await self.denylist_store.add(
                        identifier.hash,
                        f"Permanent bounce: {bounce.bounce_sub_type or 'unknown'}",
                    )
                    result.blocked_identifiers.append(identifier.value)
                    logger.warning(
                        "Identifier blocked due to permanent bounces",
                        identifier_hash=identifier.hash[:16],
                        bounce_count=count,
                    )
            except Exception as e:
                logger.error("Failed to process bounce recipient", error=str(e))
                result.errors.append(f"Failed to process bounce for {recipient.email_address}: {e}")

        return result

    async def _handle_complaint(self, complaint: ComplaintDetail, mail: MailDetail) -> ProcessBounceResult:
        result = ProcessBounceResult(processed=True)
        timestamp = complaint.timestamp or mail.timestamp or utcnow()

        for recipient in complaint.complained_recipients:
            try:
                identifier = Identifier.create_email(recipient.email_address)
                await self.bounce_store.record_complaint(ComplaintRecord(
                    identifier_hash=identifier.hash,
                    identifier=identifier.value,
                    complaint_type=complaint.complaint_feedback_type,
                    message_id=mail.message_id,
                    timestamp=timestamp,
                ))
                await self.denylist_store.add(
                    identifier.hash,
                    f"Complaint: {complaint.complaint_feedback_type or 'spam'}",
                )
                result.blocked_identifiers.append(identifier.value)
                logger.warning(
                    "Identifier blocked due to complaint",
                    identifier_hash=identifier.hash[:16],
                    complaint_type=complaint.complaint_feedback_type,
                )
            except Exception as e:
                logger.error("Failed to process complaint recipient", error=str(e))
                result.errors.append(f"Failed to process complaint for {recipient.email_address}: {e}")

        return result

    async def get_bounce_stats(self, identifier) -> BounceStats:
        """Bounce and complaint history for one identifier."""
        parsed = identifier if isinstance(identifier, Identifier) else Identifier.create(identifier)
        last_bounce = await self.bounce_store.get_last_bounce(parsed.hash)
        last_complaint = await self.bounce_store.get_last_complaint(parsed.hash)
        return BounceStats(
            bounce_count=await self.bounce_store.get_bounce_count(parsed.hash),
            permanent_bounce_count=await self.bounce_store.get_bounce_count(parsed.hash, BounceType.PERMANENT),
            complaint_count=await self.bounce_store.get_complaint_count(parsed.hash),
            last_bounce_at=last_bounce.timestamp if last_bounce else None,
            last_complaint_at=last_complaint.timestamp if last_complaint else None,
        )
