"""
Dispatch Orchestrator

Sends a processing campaign: each pending recipient is submitted to the mail
vendor in creation order, one at a time, with a fixed delay between calls.
Per-recipient failures are recorded on the recipient and never stop the
batch; setup failures abort it before any vendor call.
"""

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from core.nats_client import EventType

from .campaign_service import PostcardCampaignService
from .cost_estimator import unit_cost
from .events import PostcardEventPublisher
from .lifecycle import ensure_recipient_transition
from .models import (
    Campaign,
    CampaignStatus,
    DispatchResult,
    Recipient,
    RecipientStatus,
)
from .protocols import (
    BillingClientProtocol,
    CampaignNotFoundError,
    DispatchInProgressError,
    DispatchSetupError,
    DuplicateVendorObjectError,
    EventBusProtocol,
    NotificationClientProtocol,
    NotSendableError,
    PostcardRepositoryProtocol,
)
from .vendor_errors import describe_error
from .vendor_gateway import VendorGateway, lob_address

logger = logging.getLogger(__name__)

DEFAULT_DELAY_SECONDS = 0.1

# Campaigns whose failed recipients may be re-sent individually
RETRYABLE_CAMPAIGN_STATUSES = frozenset({
    CampaignStatus.PROCESSING,
    CampaignStatus.COMPLETED,
    CampaignStatus.COMPLETED_WITH_ERRORS,
    CampaignStatus.FAILED,
})


class SendOutcome(str, Enum):
    SENT = "sent"
    FAILED = "failed"
    INTEGRITY_ERROR = "integrity_error"


class DispatchOrchestrator:
    """Runs campaign dispatches and single-recipient retries"""

    def __init__(
        self,
        repository: PostcardRepositoryProtocol,
        campaign_service: PostcardCampaignService,
        gateway: VendorGateway,
        billing_client: Optional[BillingClientProtocol] = None,
        notification_client: Optional[NotificationClientProtocol] = None,
        event_bus: Optional[EventBusProtocol] = None,
        delay_seconds: float = DEFAULT_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.repository = repository
        self.campaign_service = campaign_service
        self.gateway = gateway
        self.billing_client = billing_client
        self.notification_client = notification_client
        self.events = PostcardEventPublisher(event_bus)
        self.delay_seconds = delay_seconds
        self._sleep = sleep
        self._active: Set[str] = set()

    # ====================
    # Setup
    # ====================

    async def resolve_setup(self, campaign: Campaign) -> Dict[str, Any]:
        """
        Validate everything a batch needs and return the vendor "from" address.

        Raises:
            DispatchSetupError: missing return address or unusable artwork
        """
        settings = await self.campaign_service.get_tenant_settings(campaign.organization_id)
        if settings.return_address is None or not settings.return_name:
            raise DispatchSetupError(
                "Return address is not configured. Set a return name and address "
                "in the mail settings before sending."
            )
        self.gateway.ensure_artwork_available(campaign)
        return lob_address(settings.return_name, settings.return_address)

    # ====================
    # Campaign dispatch
    # ====================

    def is_dispatching(self, campaign_id: str) -> bool:
        return campaign_id in self._active

    async def dispatch(self, campaign_id: str) -> DispatchResult:
        """
        Dispatch one campaign. A campaign that is not processing is skipped,
        so re-running a finished dispatch does nothing.

        Raises:
            DispatchInProgressError: this process is already dispatching the campaign
        """
        if campaign_id in self._active:
            raise DispatchInProgressError(f"Campaign {campaign_id} is already dispatching")
        self._active.add(campaign_id)
        try:
            return await self._dispatch(campaign_id)
        finally:
            self._active.discard(campaign_id)

    async def _dispatch(self, campaign_id: str) -> DispatchResult:
        campaign = await self.repository.get_campaign(campaign_id)
        if campaign is None:
            raise CampaignNotFoundError(f"Campaign not found: {campaign_id}")
        if campaign.status != CampaignStatus.PROCESSING:
            logger.info(f"Skipping dispatch of {campaign_id}: status is {campaign.status.value}")
            return DispatchResult(campaign_id=campaign_id, final_status=campaign.status, skipped=True)

        result = DispatchResult(campaign_id=campaign_id)
        logger.info(f"Dispatch started for campaign {campaign_id}")
        try:
            from_address = await self.resolve_setup(campaign)
            recipients = await self.repository.list_sendable_recipients(
                campaign_id, include_suppressed=campaign.suppression_override
            )

            for index, recipient in enumerate(recipients):
                if index > 0 and self.delay_seconds > 0:
                    await self._sleep(self.delay_seconds)

                outcome = await self.send_recipient(recipient, campaign, from_address)
                result.attempted += 1
                if outcome == SendOutcome.SENT:
                    result.sent += 1
                elif outcome == SendOutcome.INTEGRITY_ERROR:
                    result.integrity_errors += 1
                else:
                    result.failed += 1

            campaign = await self.campaign_service.recompute_rollups(campaign_id)
            campaign = await self.campaign_service.finalize(
                campaign_id,
                campaign.sent_count,
                campaign.failed_count,
                campaign.actual_cost_cents,
            )
        except Exception as e:
            logger.error(f"Dispatch of campaign {campaign_id} aborted: {e}", exc_info=True)
            error = describe_error(e) if not isinstance(e, DispatchSetupError) else str(e)
            failed = await self.campaign_service.mark_failed(campaign_id, error)
            if failed is not None:
                await self._notify(failed, CampaignStatus.FAILED, error)
            raise

        result.final_status = campaign.status
        result.actual_cost_cents = campaign.actual_cost_cents
        result.charged = await self._charge(campaign)
        await self._notify(campaign, campaign.status)

        logger.info(
            f"Dispatch finished for campaign {campaign_id}: {campaign.status.value}, "
            f"{result.sent} sent, {result.failed} failed, {result.integrity_errors} integrity errors"
        )
        return result

    async def send_recipient(
        self, recipient: Recipient, campaign: Campaign, from_address: Dict[str, Any]
    ) -> SendOutcome:
        """Submit one recipient. Errors are recorded on the recipient, not raised."""
        ensure_recipient_transition(recipient.status, RecipientStatus.SENDING)
        recipient = await self.repository.update_recipient(recipient.recipient_id, {
            "status": RecipientStatus.SENDING,
            "send_attempts": recipient.send_attempts + 1,
            "send_error": None,
        })

        try:
            piece = await self.gateway.create_mail_piece(recipient, campaign, from_address)
        except Exception as e:
            message = describe_error(e)
            logger.warning(f"Postcard for recipient {recipient.recipient_id} failed: {message}")
            recipient = await self.repository.update_recipient(recipient.recipient_id, {
                "status": RecipientStatus.FAILED,
                "send_error": message,
            })
            await self.events.publish_recipient_event(
                EventType.RECIPIENT_FAILED, recipient, previous_status=RecipientStatus.SENDING
            )
            return SendOutcome.FAILED

        cost = piece.price_cents
        if cost is None:
            cost = unit_cost(campaign.mail_class, campaign.size)

        try:
            recipient = await self.repository.assign_vendor_object_id(
                recipient.recipient_id,
                piece.id,
                {
                    "status": RecipientStatus.SENT,
                    "actual_cost_cents": cost,
                    "tracking_url": piece.url,
                    "expected_delivery_date": piece.expected_delivery_date,
                    "vendor_response": piece.snapshot(),
                },
            )
        except DuplicateVendorObjectError as e:
            message = (
                f"Data integrity error: vendor postcard {piece.id} is already assigned. "
                "The postcard was not recorded; contact support before retrying."
            )
            logger.error(
                f"Vendor object collision for recipient {recipient.recipient_id} "
                f"(campaign {campaign.campaign_id}): {e}"
            )
            recipient = await self.repository.update_recipient(recipient.recipient_id, {
                "status": RecipientStatus.FAILED,
                "send_error": message,
                "vendor_response": piece.snapshot(),
            })
            await self.events.publish_integrity_violation(recipient, piece.id, str(e))
            return SendOutcome.INTEGRITY_ERROR

        if recipient.profile_id:
            try:
                await self.repository.touch_profile_mailed(
                    recipient.profile_id, datetime.now(timezone.utc)
                )
            except Exception as e:
                logger.warning(f"Could not stamp last_mailed_at on profile {recipient.profile_id}: {e}")

        await self.events.publish_recipient_event(
            EventType.RECIPIENT_SENT, recipient, previous_status=RecipientStatus.SENDING
        )
        return SendOutcome.SENT

    # ====================
    # Retry
    # ====================

    async def retry_recipient(
        self, recipient_id: str, organization_id: Optional[str] = None
    ) -> Recipient:
        """Reset a failed recipient of a sent campaign and submit it again now"""
        recipient = await self.campaign_service.get_recipient(recipient_id, organization_id)
        campaign = await self.campaign_service.get_campaign(recipient.campaign_id)
        if campaign.status not in RETRYABLE_CAMPAIGN_STATUSES:
            raise NotSendableError(
                f"Campaign {campaign.campaign_id} has not been sent",
                [f"Campaign is {campaign.status.value}"],
            )

        from_address = await self.resolve_setup(campaign)
        recipient = await self.campaign_service.reset_recipient(recipient_id, organization_id)
        await self.send_recipient(recipient, campaign, from_address)
        await self.campaign_service.recompute_rollups(campaign.campaign_id)
        return await self.campaign_service.get_recipient(recipient_id)

    # ====================
    # Completion side effects
    # ====================

    async def _charge(self, campaign: Campaign) -> bool:
        """Debit the ledger once per campaign; failures are logged, never raised"""
        if self.billing_client is None:
            return False
        if campaign.charged_at is not None or campaign.actual_cost_cents <= 0:
            return False

        try:
            charge = await self.billing_client.charge_for_campaign(
                campaign, campaign.actual_cost_cents, actor=campaign.created_by
            )
        except Exception as e:
            logger.error(f"Billing charge for campaign {campaign.campaign_id} failed: {e}")
            return False

        if not charge.success:
            logger.error(f"Billing charge for campaign {campaign.campaign_id} rejected: {charge.error}")
            return False

        marked = await self.repository.mark_campaign_charged(
            campaign.campaign_id, datetime.now(timezone.utc)
        )
        if marked:
            await self.events.publish_campaign_charged(
                campaign, campaign.actual_cost_cents, charge.transaction_id
            )
        return marked

    async def _notify(
        self, campaign: Campaign, final_status: CampaignStatus, error: Optional[str] = None
    ) -> None:
        if self.notification_client is None:
            return
        try:
            await self.notification_client.notify_campaign_result(campaign, final_status, error)
        except Exception as e:
            logger.error(f"Campaign result notification for {campaign.campaign_id} failed: {e}")


__all__ = ["DispatchOrchestrator", "SendOutcome"]
