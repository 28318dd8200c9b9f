"""
Postcard Event Publishers

Publishes events to NATS JetStream.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from core.nats_client import EventType, ServiceSource, create_event

from ..models import Campaign, CampaignStatus, Recipient, RecipientStatus
from .models import (
    CampaignChargedEventData,
    CampaignEventData,
    CampaignFinishedEventData,
    CampaignSendRequestedEventData,
    IntegrityViolationEventData,
    RecipientEventData,
)

logger = logging.getLogger(__name__)

FINISHED_EVENT_TYPES = {
    CampaignStatus.COMPLETED: EventType.CAMPAIGN_COMPLETED,
    CampaignStatus.COMPLETED_WITH_ERRORS: EventType.CAMPAIGN_COMPLETED,
    CampaignStatus.FAILED: EventType.CAMPAIGN_FAILED,
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


class PostcardEventPublisher:
    """Publisher for postcard service events"""

    def __init__(self, event_bus=None):
        self.event_bus = event_bus

    async def publish(self, event_type: EventType, data: Dict[str, Any]) -> bool:
        """
        Publish an event to NATS.

        Returns:
            True if published successfully, False otherwise
        """
        if not self.event_bus:
            logger.debug(f"Event bus not configured, skipping event: {event_type.value}")
            return False

        try:
            event = create_event(
                event_type=event_type,
                source=ServiceSource.POSTCARD_SERVICE,
                data=data,
                subject=data.get("campaign_id"),
            )
            result = await self.event_bus.publish_event(event)
            logger.debug(f"Published event: {event_type.value}")
            return result is not False
        except Exception as e:
            logger.error(f"Failed to publish event {event_type.value}: {e}")
            return False

    # ====================
    # Campaign Events
    # ====================

    async def publish_campaign_event(
        self,
        event_type: EventType,
        campaign: Campaign,
        actor: Optional[str] = None,
        changed_fields: Optional[list] = None,
    ) -> bool:
        data = CampaignEventData(
            campaign_id=campaign.campaign_id,
            organization_id=campaign.organization_id,
            status=campaign.status.value,
            name=campaign.name,
            actor=actor,
            changed_fields=changed_fields or [],
            scheduled_at=campaign.scheduled_at,
            timestamp=_now(),
        )
        return await self.publish(event_type, data.model_dump(mode="json"))

    async def publish_send_requested(
        self,
        campaign: Campaign,
        task_id: Optional[str] = None,
        requested_by: Optional[str] = None,
    ) -> bool:
        data = CampaignSendRequestedEventData(
            campaign_id=campaign.campaign_id,
            organization_id=campaign.organization_id,
            recipient_count=campaign.recipient_count,
            estimated_cost_cents=campaign.estimated_cost_cents,
            task_id=task_id,
            requested_by=requested_by,
            timestamp=_now(),
        )
        return await self.publish(EventType.CAMPAIGN_SEND_REQUESTED, data.model_dump(mode="json"))

    async def publish_campaign_finished(
        self, campaign: Campaign, error: Optional[str] = None
    ) -> bool:
        event_type = FINISHED_EVENT_TYPES.get(campaign.status, EventType.CAMPAIGN_UPDATED)
        data = CampaignFinishedEventData(
            campaign_id=campaign.campaign_id,
            organization_id=campaign.organization_id,
            status=campaign.status.value,
            sent_count=campaign.sent_count,
            failed_count=campaign.failed_count,
            actual_cost_cents=campaign.actual_cost_cents,
            error=error,
            timestamp=_now(),
        )
        return await self.publish(event_type, data.model_dump(mode="json"))

    async def publish_campaign_charged(
        self, campaign: Campaign, amount_cents: int, transaction_id: Optional[str] = None
    ) -> bool:
        data = CampaignChargedEventData(
            campaign_id=campaign.campaign_id,
            organization_id=campaign.organization_id,
            amount_cents=amount_cents,
            transaction_id=transaction_id,
            timestamp=_now(),
        )
        return await self.publish(EventType.CAMPAIGN_CHARGED, data.model_dump(mode="json"))

    # ====================
    # Recipient Events
    # ====================

    async def publish_recipient_event(
        self,
        event_type: EventType,
        recipient: Recipient,
        previous_status: Optional[RecipientStatus] = None,
    ) -> bool:
        data = RecipientEventData(
            recipient_id=recipient.recipient_id,
            campaign_id=recipient.campaign_id,
            organization_id=recipient.organization_id,
            status=recipient.status.value,
            previous_status=previous_status.value if previous_status else None,
            vendor_object_id=recipient.vendor_object_id,
            error=recipient.send_error,
            timestamp=_now(),
        )
        return await self.publish(event_type, data.model_dump(mode="json"))

    async def publish_integrity_violation(
        self, recipient: Recipient, vendor_object_id: str, message: str
    ) -> bool:
        data = IntegrityViolationEventData(
            recipient_id=recipient.recipient_id,
            campaign_id=recipient.campaign_id,
            organization_id=recipient.organization_id,
            vendor_object_id=vendor_object_id,
            message=message,
            timestamp=_now(),
        )
        return await self.publish(EventType.INTEGRITY_VIOLATION, data.model_dump(mode="json"))


__all__ = ["PostcardEventPublisher"]
