"""
Status Reconciler

Polls the mail vendor for recipients that were sent or are in transit and
advances their status. Runs periodically across all tenants.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from core.nats_client import EventType

from .campaign_service import PostcardCampaignService
from .events import PostcardEventPublisher
from .lifecycle import can_transition_recipient
from .models import ReconcileResult, Recipient, RecipientStatus
from .protocols import EventBusProtocol, PostcardRepositoryProtocol
from .vendor_gateway import AuditContext, VendorGateway

logger = logging.getLogger(__name__)

VENDOR_STATUS_MAP: Dict[str, RecipientStatus] = {
    "in transit": RecipientStatus.IN_TRANSIT,
    "in local area": RecipientStatus.IN_TRANSIT,
    "processed for delivery": RecipientStatus.IN_TRANSIT,
    "delivered": RecipientStatus.DELIVERED,
    "mailed": RecipientStatus.DELIVERED,
    "returned to sender": RecipientStatus.RETURNED,
    "returned": RecipientStatus.RETURNED,
    "failed": RecipientStatus.FAILED,
}


def map_vendor_status(value: Optional[str]) -> Optional[RecipientStatus]:
    """Vendor status or tracking event name -> recipient status; None if unknown"""
    if not value:
        return None
    normalized = " ".join(value.replace("_", " ").lower().split())
    return VENDOR_STATUS_MAP.get(normalized)


class StatusReconciler:
    """Advances recipient delivery status from vendor tracking data"""

    def __init__(
        self,
        repository: PostcardRepositoryProtocol,
        gateway: VendorGateway,
        campaign_service: PostcardCampaignService,
        event_bus: Optional[EventBusProtocol] = None,
        batch_size: int = 500,
        delay_seconds: float = 0.1,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.repository = repository
        self.gateway = gateway
        self.campaign_service = campaign_service
        self.events = PostcardEventPublisher(event_bus)
        self.batch_size = batch_size
        self.delay_seconds = delay_seconds
        self._sleep = sleep

    async def reconcile(self) -> ReconcileResult:
        """
        One scan over every eligible recipient, a page of ``batch_size`` at a
        time. Per-recipient errors are logged and counted; they never abort
        the scan.
        """
        result = ReconcileResult()
        touched: List[str] = []
        cursor: Optional[Tuple[datetime, str]] = None

        while True:
            page = await self.repository.list_reconcilable_recipients(self.batch_size, after=cursor)
            if not page:
                break

            for recipient in page:
                if result.checked > 0 and self.delay_seconds > 0:
                    await self._sleep(self.delay_seconds)
                result.checked += 1

                try:
                    if await self._reconcile_one(recipient):
                        result.updated += 1
                        if recipient.campaign_id not in touched:
                            touched.append(recipient.campaign_id)
                except Exception as e:
                    result.errors += 1
                    logger.error(f"Reconcile failed for recipient {recipient.recipient_id}: {e}")

            if len(page) < self.batch_size:
                break
            last = page[-1]
            cursor = (last.created_at, last.recipient_id)

        result.campaigns_touched = touched
        logger.info(
            f"Reconcile finished: {result.checked} checked, {result.updated} updated, "
            f"{result.errors} errors"
        )
        return result

    async def _reconcile_one(self, recipient: Recipient) -> bool:
        """Apply the vendor's current status; True if the recipient changed"""
        piece = await self.gateway.get_mail_piece(
            recipient.vendor_object_id,
            AuditContext(recipient.organization_id, recipient.campaign_id),
        )
        target = map_vendor_status(piece.status)
        if target is None or target == recipient.status:
            return False
        if not can_transition_recipient(recipient.status, target):
            logger.debug(
                f"Ignoring vendor status {piece.status} for {recipient.recipient_id} "
                f"in {recipient.status.value}"
            )
            return False

        updates: Dict[str, Any] = {"status": target}
        if target == RecipientStatus.DELIVERED and recipient.delivered_at is None:
            updates["delivered_at"] = datetime.now(timezone.utc)
        if piece.url:
            updates["tracking_url"] = piece.url

        previous = recipient.status
        updated = await self.repository.update_recipient(recipient.recipient_id, updates)
        await self.campaign_service.recompute_rollups(recipient.campaign_id)
        if updated is not None:
            await self.events.publish_recipient_event(
                EventType.RECIPIENT_STATUS_CHANGED, updated, previous_status=previous
            )
        return True


__all__ = ["VENDOR_STATUS_MAP", "map_vendor_status", "StatusReconciler"]
