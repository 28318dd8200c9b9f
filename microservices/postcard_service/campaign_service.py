"""
Postcard Campaign Service Business Logic

Campaign aggregate: lifecycle, recipient registry operations, suppression
gating, cost estimation and the send entry point. Dispatch itself runs in
the background through the task queue (see dispatcher.py).
"""

import html
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from pydantic import ValidationError

from core.nats_client import EventType

from . import cost_estimator
from .clients.template_client import substitute_variables
from .events import PostcardEventPublisher
from .lifecycle import ensure_campaign_transition, ensure_recipient_transition, terminal_status
from .models import (
    SUBMITTED_STATUSES,
    Address,
    ArtworkPreviewRequest,
    ArtworkPreviewResponse,
    Campaign,
    CampaignCreateRequest,
    CampaignStatus,
    CampaignUpdateRequest,
    CostEstimate,
    CustomerProfile,
    ImportResult,
    Recipient,
    RecipientCreateRequest,
    RecipientStatus,
    SuppressionDecision,
    SuppressionEntryCreateRequest,
    SuppressionListEntry,
    SuppressionPolicy,
    TenantSettings,
    TenantSettingsUpdateRequest,
    VendorApiLog,
    VendorLogStats,
    address_key,
    normalize_email,
)
from .protocols import (
    BillingClientProtocol,
    CampaignNotFoundError,
    CampaignValidationError,
    EventBusProtocol,
    InsufficientBalanceError,
    InvalidTransitionError,
    NotEditableError,
    NotSendableError,
    PostcardRepositoryProtocol,
    PostcardServiceError,
    RecipientNotFoundError,
    RecipientValidationError,
    SuppressionEntryNotFoundError,
    SuppressionEntryValidationError,
    TaskQueueProtocol,
    TemplateRendererProtocol,
    VendorError,
)
from .suppression import dnm_lookup_keys, evaluate
from .vendor_gateway import VendorGateway, message_html

logger = logging.getLogger(__name__)

# Column aliases accepted by bulk import
ROW_ALIASES = {
    "first": "first_name",
    "last": "last_name",
    "address": "address_line1",
    "address1": "address_line1",
    "address2": "address_line2",
    "zip": "zip_code",
    "postal_code": "zip_code",
}

SAMPLE_CONTACT = {
    "first_name": "Jane",
    "last_name": "Doe",
    "full_name": "Jane Doe",
    "company": "Example Co",
    "email": "jane@example.com",
    "phone": "555-0100",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _first_error(e: ValidationError) -> Tuple[Optional[str], str]:
    """(field, message) of the first pydantic error"""
    errors = e.errors()
    if not errors:
        return None, str(e)
    loc = errors[0].get("loc") or ()
    field = str(loc[-1]) if loc else None
    message = errors[0].get("msg", str(e))
    return field, f"{field}: {message}" if field else message


def _normalize_row(row: Dict[str, Any]) -> Dict[str, Any]:
    data = {}
    for key, value in row.items():
        key = ROW_ALIASES.get(str(key).strip().lower(), str(key).strip().lower())
        if isinstance(value, str):
            value = value.strip()
            if value == "":
                value = None
        data[key] = value
    return data


class PostcardCampaignService:
    """Postcard campaign business logic layer"""

    def __init__(
        self,
        repository: PostcardRepositoryProtocol,
        event_bus: Optional[EventBusProtocol] = None,
        task_queue: Optional[TaskQueueProtocol] = None,
        billing_client: Optional[BillingClientProtocol] = None,
        gateway: Optional[VendorGateway] = None,
        template_renderer: Optional[TemplateRendererProtocol] = None,
    ):
        self.repository = repository
        self.event_bus = event_bus
        self.task_queue = task_queue
        self.billing_client = billing_client
        self.gateway = gateway
        self.template_renderer = template_renderer
        self.events = PostcardEventPublisher(event_bus)

    # ====================
    # Tenant settings
    # ====================

    async def get_tenant_settings(self, organization_id: str) -> TenantSettings:
        """Stored settings, or defaults when the tenant never saved any"""
        settings = await self.repository.get_tenant_settings(organization_id)
        return settings or TenantSettings(organization_id=organization_id)

    async def update_tenant_settings(
        self, organization_id: str, request: TenantSettingsUpdateRequest
    ) -> TenantSettings:
        settings = await self.get_tenant_settings(organization_id)
        changes = {field: getattr(request, field) for field in request.model_fields_set}
        updated = settings.model_copy(update=changes)
        saved = await self.repository.save_tenant_settings(updated)
        logger.info(f"Tenant mail settings updated for {organization_id}: {sorted(changes)}")
        return saved

    # ====================
    # Campaign CRUD
    # ====================

    async def create_campaign(
        self,
        request: CampaignCreateRequest,
        organization_id: str,
        created_by: Optional[str] = None,
    ) -> Campaign:
        """Create a campaign in draft status"""
        campaign = Campaign(
            organization_id=organization_id,
            created_by=created_by,
            **request.model_dump(),
        )
        campaign = await self.repository.save_campaign(campaign)

        await self.events.publish_campaign_event(
            EventType.CAMPAIGN_CREATED, campaign, actor=created_by
        )
        logger.info(f"Postcard campaign created: {campaign.campaign_id}")
        return campaign

    async def get_campaign(
        self, campaign_id: str, organization_id: Optional[str] = None
    ) -> Campaign:
        campaign = await self.repository.get_campaign(campaign_id, organization_id)
        if not campaign:
            raise CampaignNotFoundError(f"Campaign not found: {campaign_id}")
        return campaign

    async def list_campaigns(
        self,
        organization_id: str,
        status: Optional[List[CampaignStatus]] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[Campaign], int]:
        return await self.repository.list_campaigns(organization_id, status, limit, offset)

    @staticmethod
    def _ensure_editable(campaign: Campaign) -> None:
        if not campaign.is_editable:
            raise NotEditableError(
                f"Campaign {campaign.campaign_id} is {campaign.status.value}; "
                "only draft campaigns can be modified",
                campaign.status,
            )

    async def update_campaign(
        self,
        campaign_id: str,
        request: CampaignUpdateRequest,
        organization_id: Optional[str] = None,
        updated_by: Optional[str] = None,
    ) -> Campaign:
        campaign = await self.get_campaign(campaign_id, organization_id)
        self._ensure_editable(campaign)

        updates = request.model_dump(exclude_unset=True)
        if not updates:
            return campaign

        changes_cost = "mail_class" in updates or "size" in updates
        campaign = await self.repository.update_campaign(campaign_id, updates)
        if changes_cost:
            await self._apply_estimate(campaign)
            campaign = await self.get_campaign(campaign_id)

        await self.events.publish_campaign_event(
            EventType.CAMPAIGN_UPDATED, campaign, actor=updated_by, changed_fields=sorted(updates)
        )
        return campaign

    async def delete_campaign(
        self, campaign_id: str, organization_id: Optional[str] = None
    ) -> bool:
        campaign = await self.get_campaign(campaign_id, organization_id)
        self._ensure_editable(campaign)

        deleted = await self.repository.delete_campaign(campaign_id)
        if deleted:
            await self.events.publish_campaign_event(EventType.CAMPAIGN_DELETED, campaign)
            logger.info(f"Postcard campaign deleted: {campaign_id}")
        return deleted

    # ====================
    # Suppression
    # ====================

    async def _policy_for(self, campaign: Campaign) -> SuppressionPolicy:
        settings = await self.get_tenant_settings(campaign.organization_id)
        return SuppressionPolicy.resolve(settings, campaign)

    async def _evaluate_suppression(
        self,
        recipient: Recipient,
        policy: SuppressionPolicy,
        profile: Optional[CustomerProfile] = None,
    ) -> SuppressionDecision:
        if profile is None and recipient.profile_id:
            profiles = await self.repository.get_profiles(
                recipient.organization_id, [recipient.profile_id]
            )
            profile = profiles[0] if profiles else None

        entries: List[SuppressionListEntry] = []
        if policy.dnm_enabled:
            email, key = dnm_lookup_keys(recipient)
            entries = await self.repository.find_suppression_matches(
                recipient.organization_id, email=email, address_key=key
            )

        return evaluate(recipient, policy, _utcnow(), profile=profile, dnm_entries=entries)

    async def reevaluate_suppression(
        self, campaign_id: str, organization_id: Optional[str] = None
    ) -> Dict[str, int]:
        """Re-run suppression for every pending recipient of a draft campaign"""
        campaign = await self.get_campaign(campaign_id, organization_id)
        self._ensure_editable(campaign)
        policy = await self._policy_for(campaign)

        recipients = await self.repository.list_sendable_recipients(
            campaign_id, include_suppressed=True
        )
        changed = 0
        suppressed = 0
        for recipient in recipients:
            decision = await self._evaluate_suppression(recipient, policy)
            if decision.suppressed:
                suppressed += 1
            if (decision.suppressed, decision.reason) != (recipient.suppressed, recipient.suppression_reason):
                await self.repository.update_recipient(recipient.recipient_id, {
                    "suppressed": decision.suppressed,
                    "suppression_reason": decision.reason,
                })
                changed += 1

        logger.info(
            f"Suppression re-evaluated for {campaign_id}: "
            f"{len(recipients)} checked, {suppressed} suppressed, {changed} changed"
        )
        return {"evaluated": len(recipients), "suppressed": suppressed, "changed": changed}

    # ====================
    # Recipients
    # ====================

    def _build_recipient(
        self,
        campaign: Campaign,
        data: Union[RecipientCreateRequest, Dict[str, Any]],
    ) -> Recipient:
        try:
            if not isinstance(data, RecipientCreateRequest):
                data = RecipientCreateRequest(**data)
            address = Address(
                address_line1=data.address_line1,
                address_line2=data.address_line2 or None,
                city=data.city,
                state=data.state,
                zip_code=data.zip_code,
                country=data.country,
            )
            return Recipient(
                campaign_id=campaign.campaign_id,
                organization_id=campaign.organization_id,
                profile_id=data.profile_id,
                first_name=data.first_name,
                last_name=data.last_name,
                company=data.company,
                address=address,
                email=data.email,
                phone=data.phone,
                metadata=data.metadata,
                estimated_cost_cents=cost_estimator.unit_cost(campaign.mail_class, campaign.size),
            )
        except ValidationError as e:
            field, message = _first_error(e)
            raise RecipientValidationError(message, field=field) from e

    async def add_recipient(
        self,
        campaign_id: str,
        data: Union[RecipientCreateRequest, Dict[str, Any]],
        organization_id: Optional[str] = None,
    ) -> Recipient:
        """
        Add one recipient to a draft campaign.

        Suppression is decided here, once, and stored on the recipient.

        Raises:
            NotEditableError: campaign is not draft
            RecipientValidationError: invalid name or address
        """
        campaign = await self.get_campaign(campaign_id, organization_id)
        self._ensure_editable(campaign)

        recipient = self._build_recipient(campaign, data)
        decision = await self._evaluate_suppression(recipient, await self._policy_for(campaign))
        recipient.suppressed = decision.suppressed
        recipient.suppression_reason = decision.reason

        recipient = await self.repository.save_recipient(recipient)
        await self.recompute_rollups(campaign_id)
        return recipient

    async def import_recipients(
        self,
        campaign_id: str,
        rows: Iterable[Dict[str, Any]],
        organization_id: Optional[str] = None,
    ) -> ImportResult:
        """Bulk add; invalid rows are reported, not raised"""
        campaign = await self.get_campaign(campaign_id, organization_id)
        self._ensure_editable(campaign)
        policy = await self._policy_for(campaign)

        result = ImportResult()
        for index, row in enumerate(rows, start=1):
            try:
                recipient = self._build_recipient(campaign, _normalize_row(row))
            except RecipientValidationError as e:
                result.invalid += 1
                result.errors.append({"row": index, "field": e.field, "error": str(e)})
                continue

            decision = await self._evaluate_suppression(recipient, policy)
            recipient.suppressed = decision.suppressed
            recipient.suppression_reason = decision.reason
            await self.repository.save_recipient(recipient)
            result.imported += 1
            if decision.suppressed:
                result.suppressed += 1

        await self.recompute_rollups(campaign_id)
        logger.info(
            f"Imported {result.imported} recipients into {campaign_id} "
            f"({result.suppressed} suppressed, {result.invalid} invalid)"
        )
        return result

    async def import_from_profiles(
        self,
        campaign_id: str,
        profile_ids: List[str],
        organization_id: Optional[str] = None,
    ) -> ImportResult:
        """Add recipients from customer profiles, linking them for suppression"""
        campaign = await self.get_campaign(campaign_id, organization_id)
        self._ensure_editable(campaign)
        policy = await self._policy_for(campaign)

        profiles = await self.repository.get_profiles(campaign.organization_id, profile_ids)
        by_id = {p.profile_id: p for p in profiles}

        result = ImportResult()
        for profile_id in profile_ids:
            profile = by_id.get(profile_id)
            if profile is None:
                result.invalid += 1
                result.errors.append({"profile_id": profile_id, "error": "Profile not found"})
                continue
            if profile.address is None:
                result.invalid += 1
                result.errors.append({"profile_id": profile_id, "error": "Profile has no address"})
                continue

            row = {
                "first_name": profile.first_name,
                "last_name": profile.last_name,
                "company": profile.company,
                "email": profile.email,
                "phone": profile.phone,
                "profile_id": profile.profile_id,
                **profile.address.model_dump(),
            }
            try:
                recipient = self._build_recipient(campaign, row)
            except RecipientValidationError as e:
                result.invalid += 1
                result.errors.append({"profile_id": profile_id, "field": e.field, "error": str(e)})
                continue

            decision = await self._evaluate_suppression(recipient, policy, profile=profile)
            recipient.suppressed = decision.suppressed
            recipient.suppression_reason = decision.reason
            await self.repository.save_recipient(recipient)
            result.imported += 1
            if decision.suppressed:
                result.suppressed += 1

        await self.recompute_rollups(campaign_id)
        return result

    async def get_recipient(
        self, recipient_id: str, organization_id: Optional[str] = None
    ) -> Recipient:
        recipient = await self.repository.get_recipient(recipient_id, organization_id)
        if not recipient:
            raise RecipientNotFoundError(f"Recipient not found: {recipient_id}")
        return recipient

    async def list_recipients(
        self,
        campaign_id: str,
        organization_id: Optional[str] = None,
        status: Optional[List[RecipientStatus]] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> Tuple[List[Recipient], int]:
        await self.get_campaign(campaign_id, organization_id)
        return await self.repository.list_recipients(campaign_id, status, limit, offset)

    async def remove_recipient(
        self,
        campaign_id: str,
        recipient_id: str,
        organization_id: Optional[str] = None,
    ) -> bool:
        campaign = await self.get_campaign(campaign_id, organization_id)
        self._ensure_editable(campaign)

        recipient = await self.get_recipient(recipient_id, organization_id)
        if recipient.campaign_id != campaign_id:
            raise RecipientNotFoundError(f"Recipient not found: {recipient_id}")

        deleted = await self.repository.delete_recipient(recipient_id)
        await self.recompute_rollups(campaign_id)
        return deleted

    async def validate_recipient_address(
        self, recipient_id: str, organization_id: Optional[str] = None
    ) -> Recipient:
        """
        Verify a pending recipient's address with the vendor.

        Deliverable addresses return to pending with the corrected address;
        undeliverable ones become failed with a reason.
        """
        if self.gateway is None:
            raise PostcardServiceError("Address verification is not configured")

        recipient = await self.get_recipient(recipient_id, organization_id)
        ensure_recipient_transition(recipient.status, RecipientStatus.VALIDATING)
        recipient = await self.repository.update_recipient(
            recipient_id, {"status": RecipientStatus.VALIDATING}
        )

        try:
            verification = await self.gateway.verify_address(recipient)
        except VendorError:
            await self.repository.update_recipient(recipient_id, {"status": RecipientStatus.PENDING})
            raise

        if verification.deliverable:
            updates: Dict[str, Any] = {"status": RecipientStatus.PENDING}
            if verification.corrected_address is not None:
                updates["address"] = verification.corrected_address
            recipient = await self.repository.update_recipient(recipient_id, updates)
        else:
            recipient = await self.repository.update_recipient(recipient_id, {
                "status": RecipientStatus.FAILED,
                "send_error": (
                    "Address validation failed: "
                    f"{verification.deliverability or 'undeliverable'}"
                ),
            })
            await self.events.publish_recipient_event(
                EventType.RECIPIENT_FAILED, recipient, previous_status=RecipientStatus.VALIDATING
            )
            await self.recompute_rollups(recipient.campaign_id)
        return recipient

    async def reset_recipient(
        self, recipient_id: str, organization_id: Optional[str] = None
    ) -> Recipient:
        """Return a failed recipient to pending, clearing vendor state"""
        recipient = await self.get_recipient(recipient_id, organization_id)
        ensure_recipient_transition(recipient.status, RecipientStatus.PENDING)

        recipient = await self.repository.update_recipient(recipient_id, {
            "status": RecipientStatus.PENDING,
            "vendor_object_id": None,
            "send_error": None,
            "vendor_response": None,
            "tracking_url": None,
            "expected_delivery_date": None,
            "actual_cost_cents": 0,
        })
        await self.recompute_rollups(recipient.campaign_id)
        await self.events.publish_recipient_event(
            EventType.RECIPIENT_RESET, recipient, previous_status=RecipientStatus.FAILED
        )
        logger.info(f"Recipient {recipient_id} reset to pending")
        return recipient

    # ====================
    # Rollups and cost
    # ====================

    async def recompute_rollups(self, campaign_id: str) -> Campaign:
        """Recount cached campaign counters and actual cost from recipients"""
        counts = await self.repository.count_recipients_by_status(campaign_id)
        total_cost = await self.repository.sum_recipient_cost(
            campaign_id, cost_estimator.BILLABLE_STATUSES
        )
        updates = {
            "recipient_count": sum(counts.values()),
            "sent_count": sum(n for s, n in counts.items() if s in SUBMITTED_STATUSES),
            "failed_count": counts.get(RecipientStatus.FAILED, 0),
            "delivered_count": counts.get(RecipientStatus.DELIVERED, 0),
            "actual_cost_cents": total_cost,
        }
        campaign = await self.repository.update_campaign(campaign_id, updates)
        if campaign is None:
            raise CampaignNotFoundError(f"Campaign not found: {campaign_id}")
        return campaign

    async def _apply_estimate(self, campaign: Campaign) -> CostEstimate:
        estimate = cost_estimator.estimate(campaign.recipient_count, campaign.mail_class, campaign.size)
        await self.repository.set_recipient_estimates(campaign.campaign_id, estimate.unit_cost_cents)
        await self.repository.update_campaign(
            campaign.campaign_id, {"estimated_cost_cents": estimate.total_cost_cents}
        )
        return estimate

    async def estimate_cost(
        self, campaign_id: str, organization_id: Optional[str] = None
    ) -> CostEstimate:
        """Store and return recipient_count x unit cost; draft only"""
        campaign = await self.get_campaign(campaign_id, organization_id)
        self._ensure_editable(campaign)
        return await self._apply_estimate(campaign)

    # ====================
    # Lifecycle
    # ====================

    async def send_now(
        self,
        campaign_id: str,
        organization_id: Optional[str] = None,
        requested_by: Optional[str] = None,
    ) -> Campaign:
        """
        Move a draft campaign to processing and enqueue its dispatch.

        Returns as soon as the dispatch task is queued.

        Raises:
            NotSendableError: not draft, no recipients, or no artwork
            InsufficientBalanceError: ledger cannot cover the estimate
        """
        campaign = await self.get_campaign(campaign_id, organization_id)

        reasons = []
        if campaign.status != CampaignStatus.DRAFT:
            reasons.append(f"Campaign is {campaign.status.value}")
        if campaign.recipient_count == 0:
            reasons.append("Campaign has no recipients")
        if not campaign.has_artwork:
            reasons.append("Campaign has no artwork")
        if reasons:
            raise NotSendableError(f"Campaign {campaign_id} cannot be sent", reasons)

        estimate = await self._apply_estimate(campaign)

        if self.billing_client is not None:
            sufficient = await self.billing_client.has_sufficient_balance(
                campaign.organization_id, estimate.total_cost_cents
            )
            if not sufficient:
                raise InsufficientBalanceError(
                    f"Insufficient balance: {cost_estimator.format_cents(estimate.total_cost_cents)} "
                    "required to send this campaign",
                    required_cents=estimate.total_cost_cents,
                )

        updated = await self.repository.update_campaign_status(
            campaign_id,
            [CampaignStatus.DRAFT],
            CampaignStatus.PROCESSING,
            {"sent_at": _utcnow()},
        )
        if updated is None:
            current = await self.get_campaign(campaign_id)
            raise InvalidTransitionError(
                f"Campaign {campaign_id} is no longer draft",
                current.status,
                CampaignStatus.PROCESSING,
            )

        task_id = None
        if self.task_queue is not None:
            try:
                task_id = await self.task_queue.enqueue_dispatch(
                    campaign_id, updated.organization_id
                )
            except Exception as e:
                logger.error(f"Failed to enqueue dispatch for {campaign_id}: {e}")
                await self.mark_failed(campaign_id, f"Could not queue dispatch: {e}")
                raise
        else:
            logger.warning(f"No task queue configured; campaign {campaign_id} awaits an external trigger")

        await self.events.publish_send_requested(updated, task_id=task_id, requested_by=requested_by)
        logger.info(
            f"Campaign {campaign_id} queued for dispatch: {updated.recipient_count} recipients, "
            f"estimated {cost_estimator.format_cents(estimate.total_cost_cents)}"
        )
        return updated

    async def finalize(
        self,
        campaign_id: str,
        sent_count: int,
        failed_count: int,
        total_cost_cents: int,
    ) -> Campaign:
        """
        Set the terminal status of a processing campaign.

        Raises:
            InvalidTransitionError: campaign is not processing (e.g. already finalized)
        """
        status = terminal_status(sent_count, failed_count)
        campaign = await self.repository.update_campaign_status(
            campaign_id,
            [CampaignStatus.PROCESSING],
            status,
            {
                "sent_count": sent_count,
                "failed_count": failed_count,
                "actual_cost_cents": total_cost_cents,
                "completed_at": _utcnow(),
            },
        )
        if campaign is None:
            current = await self.get_campaign(campaign_id)
            raise InvalidTransitionError(
                f"Campaign {campaign_id} cannot be finalized from {current.status.value}",
                current.status,
                status,
            )

        await self.events.publish_campaign_finished(campaign)
        logger.info(
            f"Campaign {campaign_id} finalized as {status.value}: "
            f"{sent_count} sent, {failed_count} failed, "
            f"{cost_estimator.format_cents(total_cost_cents)}"
        )
        return campaign

    async def mark_failed(self, campaign_id: str, error: str) -> Optional[Campaign]:
        """Fail a processing campaign; None if it was no longer processing"""
        campaign = await self.repository.update_campaign_status(
            campaign_id,
            [CampaignStatus.PROCESSING],
            CampaignStatus.FAILED,
            {"completed_at": _utcnow()},
        )
        if campaign is not None:
            await self.events.publish_campaign_finished(campaign, error=error)
            logger.error(f"Campaign {campaign_id} failed: {error}")
        return campaign

    async def schedule(
        self,
        campaign_id: str,
        scheduled_at: datetime,
        organization_id: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> Campaign:
        campaign = await self.get_campaign(campaign_id, organization_id)
        ensure_campaign_transition(campaign.status, CampaignStatus.SCHEDULED)

        if scheduled_at.tzinfo is None:
            scheduled_at = scheduled_at.replace(tzinfo=timezone.utc)
        if scheduled_at <= _utcnow():
            raise CampaignValidationError("Scheduled time must be in the future")

        updated = await self.repository.update_campaign_status(
            campaign_id,
            [CampaignStatus.DRAFT],
            CampaignStatus.SCHEDULED,
            {"scheduled_at": scheduled_at},
        )
        if updated is None:
            raise InvalidTransitionError(
                f"Campaign {campaign_id} is no longer draft", campaign.status, CampaignStatus.SCHEDULED
            )
        await self.events.publish_campaign_event(EventType.CAMPAIGN_SCHEDULED, updated, actor=actor)
        return updated

    async def unschedule(
        self,
        campaign_id: str,
        organization_id: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> Campaign:
        campaign = await self.get_campaign(campaign_id, organization_id)
        ensure_campaign_transition(campaign.status, CampaignStatus.DRAFT)

        updated = await self.repository.update_campaign_status(
            campaign_id,
            [CampaignStatus.SCHEDULED],
            CampaignStatus.DRAFT,
            {"scheduled_at": None},
        )
        if updated is None:
            raise InvalidTransitionError(
                f"Campaign {campaign_id} is no longer scheduled", campaign.status, CampaignStatus.DRAFT
            )
        await self.events.publish_campaign_event(EventType.CAMPAIGN_UNSCHEDULED, updated, actor=actor)
        return updated

    async def cancel(
        self,
        campaign_id: str,
        organization_id: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> Campaign:
        """Cancel a scheduled campaign"""
        campaign = await self.get_campaign(campaign_id, organization_id)
        ensure_campaign_transition(campaign.status, CampaignStatus.CANCELLED)

        updated = await self.repository.update_campaign_status(
            campaign_id,
            [CampaignStatus.SCHEDULED],
            CampaignStatus.CANCELLED,
            {"completed_at": _utcnow()},
        )
        if updated is None:
            raise InvalidTransitionError(
                f"Campaign {campaign_id} is no longer scheduled",
                campaign.status,
                CampaignStatus.CANCELLED,
            )
        await self.events.publish_campaign_event(EventType.CAMPAIGN_CANCELLED, updated, actor=actor)
        logger.info(f"Campaign {campaign_id} cancelled")
        return updated

    # ====================
    # Artwork preview
    # ====================

    async def preview_artwork(
        self,
        campaign_id: str,
        request: ArtworkPreviewRequest,
        organization_id: Optional[str] = None,
    ) -> ArtworkPreviewResponse:
        campaign = await self.get_campaign(campaign_id, organization_id)
        side = request.side

        if campaign.template_id and self.template_renderer is not None:
            merge_fields = {**campaign.template_data, **SAMPLE_CONTACT, **request.sample}
            content = await self.template_renderer.render(campaign.template_id, side, merge_fields)
        elif campaign.has_pdf_artwork:
            url = campaign.front_pdf_url if side == "front" else campaign.back_pdf_url
            content = (
                f'<html><body><embed src="{html.escape(url, quote=True)}" '
                'type="application/pdf" width="100%" height="100%"></body></html>'
            )
        else:
            # Lob fills merge variables at print time; the preview uses sample data
            text = campaign.front_message if side == "front" else campaign.back_message
            if text:
                text = substitute_variables(
                    text, {**campaign.merge_variables, **SAMPLE_CONTACT, **request.sample}
                )
            content = message_html(side, text)
        return ArtworkPreviewResponse(side=side, html=content)

    # ====================
    # Suppression list
    # ====================

    async def add_suppression_entry(
        self,
        organization_id: str,
        request: SuppressionEntryCreateRequest,
        created_by: Optional[str] = None,
    ) -> SuppressionListEntry:
        """
        Raises:
            SuppressionEntryValidationError: neither email nor complete address
            DuplicateSuppressionEntryError: already listed
        """
        try:
            entry = SuppressionListEntry(
                organization_id=organization_id,
                created_by=created_by,
                **request.model_dump(),
            )
        except ValidationError as e:
            _, message = _first_error(e)
            raise SuppressionEntryValidationError(message) from e

        entry = await self.repository.save_suppression_entry(entry)
        logger.info(f"Suppression entry {entry.entry_id} added for {organization_id}")
        return entry

    async def list_suppression_entries(
        self, organization_id: str, limit: int = 100, offset: int = 0
    ) -> Tuple[List[SuppressionListEntry], int]:
        return await self.repository.list_suppression_entries(organization_id, limit, offset)

    async def remove_suppression_entry(self, organization_id: str, entry_id: str) -> bool:
        deleted = await self.repository.delete_suppression_entry(organization_id, entry_id)
        if not deleted:
            raise SuppressionEntryNotFoundError(f"Suppression entry not found: {entry_id}")
        return True

    async def check_suppressed(
        self,
        organization_id: str,
        email: Optional[str] = None,
        address_line1: Optional[str] = None,
        city: Optional[str] = None,
        state: Optional[str] = None,
        zip_code: Optional[str] = None,
    ) -> Optional[SuppressionListEntry]:
        """First DNM entry matching the email or complete address, if any"""
        matches = await self.repository.find_suppression_matches(
            organization_id,
            email=normalize_email(email),
            address_key=address_key(address_line1, city, state, zip_code),
        )
        return matches[0] if matches else None

    # ====================
    # Vendor audit log
    # ====================

    async def list_vendor_logs(
        self,
        organization_id: str,
        campaign_id: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[VendorApiLog]:
        return await self.repository.list_vendor_logs(organization_id, campaign_id, limit, offset)

    async def get_vendor_log_stats(self, organization_id: str) -> VendorLogStats:
        return await self.repository.get_vendor_log_stats(organization_id)


__all__ = ["PostcardCampaignService"]
