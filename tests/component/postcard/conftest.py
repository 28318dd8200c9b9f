"""
Component Test Fixtures for Postcard Service

In-memory repository and fake collaborators (vendor, billing, notification,
template rendering) wired into the real service, dispatcher and reconciler.
"""

import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple
from uuid import uuid4

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from microservices.postcard_service.campaign_service import PostcardCampaignService
from microservices.postcard_service.dispatcher import DispatchOrchestrator
from microservices.postcard_service.models import (
    Campaign,
    CampaignStatus,
    ChargeResult,
    CustomerProfile,
    Recipient,
    RecipientStatus,
    SuppressionListEntry,
    TenantSettings,
    VendorApiLog,
    VendorLogStats,
)
from microservices.postcard_service.protocols import (
    DuplicateSuppressionEntryError,
    DuplicateVendorObjectError,
    RecipientNotFoundError,
)
from microservices.postcard_service.reconciler import StatusReconciler
from microservices.postcard_service.vendor_gateway import VendorGateway
from tests.contracts.postcard.data_contract import PostcardTestDataFactory


# =============================================================================
# Mock Repository
# =============================================================================

class MockPostcardRepository:
    """In-memory PostcardRepositoryProtocol implementation"""

    def __init__(self):
        self.campaigns: Dict[str, Campaign] = {}
        self.recipients: Dict[str, Recipient] = {}
        self.profiles: Dict[str, CustomerProfile] = {}
        self.settings: Dict[str, TenantSettings] = {}
        self.suppression: Dict[str, SuppressionListEntry] = {}
        self.vendor_logs: List[VendorApiLog] = []
        self.mailed: Dict[str, datetime] = {}

    async def initialize(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def health_check(self) -> bool:
        return True

    # Campaigns

    async def save_campaign(self, campaign: Campaign) -> Campaign:
        self.campaigns[campaign.campaign_id] = campaign.model_copy(deep=True)
        return campaign.model_copy(deep=True)

    async def get_campaign(
        self, campaign_id: str, organization_id: Optional[str] = None
    ) -> Optional[Campaign]:
        campaign = self.campaigns.get(campaign_id)
        if campaign is None:
            return None
        if organization_id and campaign.organization_id != organization_id:
            return None
        return campaign.model_copy(deep=True)

    async def list_campaigns(
        self,
        organization_id: str,
        status: Optional[List[CampaignStatus]] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[Campaign], int]:
        results = [c for c in self.campaigns.values() if c.organization_id == organization_id]
        if status:
            results = [c for c in results if c.status in status]
        results.sort(key=lambda c: c.created_at, reverse=True)
        return [c.model_copy(deep=True) for c in results[offset:offset + limit]], len(results)

    async def update_campaign(self, campaign_id: str, updates: Dict[str, Any]) -> Optional[Campaign]:
        if campaign_id not in self.campaigns:
            return None
        updated = self.campaigns[campaign_id].model_copy(
            update={**updates, "updated_at": datetime.now(timezone.utc)}
        )
        self.campaigns[campaign_id] = updated
        return updated.model_copy(deep=True)

    async def update_campaign_status(
        self,
        campaign_id: str,
        expected: Iterable[CampaignStatus],
        status: CampaignStatus,
        updates: Optional[Dict[str, Any]] = None,
    ) -> Optional[Campaign]:
        campaign = self.campaigns.get(campaign_id)
        if campaign is None or campaign.status not in list(expected):
            return None
        return await self.update_campaign(campaign_id, {**(updates or {}), "status": status})

    async def mark_campaign_charged(self, campaign_id: str, charged_at: datetime) -> bool:
        campaign = self.campaigns.get(campaign_id)
        if campaign is None or campaign.charged_at is not None:
            return False
        await self.update_campaign(campaign_id, {"charged_at": charged_at})
        return True

    async def delete_campaign(self, campaign_id: str) -> bool:
        if self.campaigns.pop(campaign_id, None) is None:
            return False
        for recipient_id in [r.recipient_id for r in self.recipients.values() if r.campaign_id == campaign_id]:
            del self.recipients[recipient_id]
        return True

    # Recipients

    async def save_recipient(self, recipient: Recipient) -> Recipient:
        self.recipients[recipient.recipient_id] = recipient.model_copy(deep=True)
        return recipient.model_copy(deep=True)

    async def get_recipient(
        self, recipient_id: str, organization_id: Optional[str] = None
    ) -> Optional[Recipient]:
        recipient = self.recipients.get(recipient_id)
        if recipient is None:
            return None
        if organization_id and recipient.organization_id != organization_id:
            return None
        return recipient.model_copy(deep=True)

    def _campaign_recipients(self, campaign_id: str) -> List[Recipient]:
        results = [r for r in self.recipients.values() if r.campaign_id == campaign_id]
        results.sort(key=lambda r: r.created_at)
        return results

    async def list_recipients(
        self,
        campaign_id: str,
        status: Optional[List[RecipientStatus]] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> Tuple[List[Recipient], int]:
        results = self._campaign_recipients(campaign_id)
        if status:
            results = [r for r in results if r.status in status]
        return [r.model_copy(deep=True) for r in results[offset:offset + limit]], len(results)

    async def list_sendable_recipients(
        self, campaign_id: str, include_suppressed: bool = False
    ) -> List[Recipient]:
        return [
            r.model_copy(deep=True)
            for r in self._campaign_recipients(campaign_id)
            if r.status == RecipientStatus.PENDING and (include_suppressed or not r.suppressed)
        ]

    async def list_reconcilable_recipients(
        self, limit: int = 500, after: Optional[Tuple[datetime, str]] = None
    ) -> List[Recipient]:
        results = [
            r for r in self.recipients.values()
            if r.status in (RecipientStatus.SENT, RecipientStatus.IN_TRANSIT) and r.vendor_object_id
            and (after is None or (r.created_at, r.recipient_id) > after)
        ]
        results.sort(key=lambda r: (r.created_at, r.recipient_id))
        return [r.model_copy(deep=True) for r in results[:limit]]

    async def update_recipient(self, recipient_id: str, updates: Dict[str, Any]) -> Optional[Recipient]:
        if recipient_id not in self.recipients:
            return None
        updated = self.recipients[recipient_id].model_copy(
            update={**updates, "updated_at": datetime.now(timezone.utc)}
        )
        self.recipients[recipient_id] = updated
        return updated.model_copy(deep=True)

    async def assign_vendor_object_id(
        self, recipient_id: str, vendor_object_id: str, updates: Dict[str, Any]
    ) -> Recipient:
        recipient = self.recipients.get(recipient_id)
        if recipient is None:
            raise RecipientNotFoundError(f"Recipient not found: {recipient_id}")
        for other in self.recipients.values():
            if other.vendor_object_id == vendor_object_id:
                raise DuplicateVendorObjectError(
                    f"Vendor object {vendor_object_id} is already assigned to another recipient",
                    recipient_id=recipient_id,
                    vendor_object_id=vendor_object_id,
                )
        if recipient.vendor_object_id is not None:
            raise DuplicateVendorObjectError(
                f"Recipient {recipient_id} already holds vendor object {recipient.vendor_object_id}",
                recipient_id=recipient_id,
                vendor_object_id=vendor_object_id,
            )
        return await self.update_recipient(
            recipient_id, {**updates, "vendor_object_id": vendor_object_id}
        )

    async def delete_recipient(self, recipient_id: str) -> bool:
        return self.recipients.pop(recipient_id, None) is not None

    async def count_recipients_by_status(self, campaign_id: str) -> Dict[RecipientStatus, int]:
        counts: Dict[RecipientStatus, int] = {}
        for r in self._campaign_recipients(campaign_id):
            counts[r.status] = counts.get(r.status, 0) + 1
        return counts

    async def sum_recipient_cost(self, campaign_id: str, statuses: Iterable[RecipientStatus]) -> int:
        statuses = set(statuses)
        return sum(
            r.actual_cost_cents for r in self._campaign_recipients(campaign_id) if r.status in statuses
        )

    async def set_recipient_estimates(self, campaign_id: str, unit_cost_cents: int) -> int:
        recipients = self._campaign_recipients(campaign_id)
        for r in recipients:
            self.recipients[r.recipient_id] = r.model_copy(update={"estimated_cost_cents": unit_cost_cents})
        return len(recipients)

    # Profiles

    async def get_profiles(self, organization_id: str, profile_ids: List[str]) -> List[CustomerProfile]:
        return [
            self.profiles[pid].model_copy(deep=True)
            for pid in profile_ids
            if pid in self.profiles and self.profiles[pid].organization_id == organization_id
        ]

    async def touch_profile_mailed(self, profile_id: str, mailed_at: datetime) -> None:
        self.mailed[profile_id] = mailed_at
        if profile_id in self.profiles:
            self.profiles[profile_id] = self.profiles[profile_id].model_copy(
                update={"last_mailed_at": mailed_at}
            )

    # Tenant settings

    async def get_tenant_settings(self, organization_id: str) -> Optional[TenantSettings]:
        settings = self.settings.get(organization_id)
        return settings.model_copy(deep=True) if settings else None

    async def save_tenant_settings(self, settings: TenantSettings) -> TenantSettings:
        self.settings[settings.organization_id] = settings.model_copy(deep=True)
        return settings

    # Suppression list

    async def save_suppression_entry(self, entry: SuppressionListEntry) -> SuppressionListEntry:
        for existing in self.suppression.values():
            if existing.organization_id != entry.organization_id:
                continue
            if entry.email and existing.email == entry.email:
                raise DuplicateSuppressionEntryError("Already on the suppression list")
            if entry.address_key and existing.address_key == entry.address_key:
                raise DuplicateSuppressionEntryError("Already on the suppression list")
        self.suppression[entry.entry_id] = entry
        return entry

    async def list_suppression_entries(
        self, organization_id: str, limit: int = 100, offset: int = 0
    ) -> Tuple[List[SuppressionListEntry], int]:
        results = [e for e in self.suppression.values() if e.organization_id == organization_id]
        return results[offset:offset + limit], len(results)

    async def find_suppression_matches(
        self,
        organization_id: str,
        email: Optional[str] = None,
        address_key: Optional[str] = None,
    ) -> List[SuppressionListEntry]:
        if not email and not address_key:
            return []
        return [
            e for e in self.suppression.values()
            if e.organization_id == organization_id
            and ((email and e.email == email) or (address_key and e.address_key == address_key))
        ]

    async def delete_suppression_entry(self, organization_id: str, entry_id: str) -> bool:
        entry = self.suppression.get(entry_id)
        if entry is None or entry.organization_id != organization_id:
            return False
        del self.suppression[entry_id]
        return True

    # Vendor audit log

    async def save_vendor_log(self, log: VendorApiLog) -> VendorApiLog:
        self.vendor_logs.append(log)
        return log

    async def list_vendor_logs(
        self,
        organization_id: Optional[str] = None,
        campaign_id: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[VendorApiLog]:
        logs = [
            log for log in reversed(self.vendor_logs)
            if (organization_id is None or log.organization_id == organization_id)
            and (campaign_id is None or log.campaign_id == campaign_id)
        ]
        return logs[offset:offset + limit]

    async def get_vendor_log_stats(self, organization_id: Optional[str] = None) -> VendorLogStats:
        logs = await self.list_vendor_logs(organization_id, limit=len(self.vendor_logs) or 1)
        successful = [log for log in logs if log.success]
        total = len(logs)
        return VendorLogStats(
            total_calls=total,
            successful_calls=len(successful),
            failed_calls=total - len(successful),
            success_rate=round(len(successful) / total * 100, 2) if total else 0.0,
            total_cost_cents=sum(log.cost_cents or 0 for log in successful),
            average_duration_ms=round(sum(log.duration_ms for log in logs) / total, 2) if total else 0.0,
        )

    # Test helpers

    def seed_campaign(self, campaign: Campaign) -> Campaign:
        self.campaigns[campaign.campaign_id] = campaign
        return campaign

    def seed_recipient(self, recipient: Recipient) -> Recipient:
        self.recipients[recipient.recipient_id] = recipient
        return recipient


# =============================================================================
# Fake Collaborators
# =============================================================================

class FakeLobClient:
    """
    Scripted vendor client.

    Queued create outcomes are consumed in order; a queued exception is
    raised, a queued dict is returned. With nothing queued a fresh postcard
    body is returned.
    """

    def __init__(self):
        self.create_calls: List[Dict[str, Any]] = []
        self.create_outcomes: List[Any] = []
        self.postcards: Dict[str, Any] = {}
        self.verification: Dict[str, Any] = {"deliverability": "deliverable"}
        self.is_configured = True

    def queue_create(self, *outcomes: Any) -> None:
        self.create_outcomes.extend(outcomes)

    async def create_postcard(
        self, payload: Dict[str, Any], idempotency_key: Optional[str] = None
    ) -> Dict[str, Any]:
        self.create_calls.append({"payload": payload, "idempotency_key": idempotency_key})
        if self.create_outcomes:
            outcome = self.create_outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return PostcardTestDataFactory.make_lob_postcard(f"psc_{uuid4().hex[:20]}")

    async def get_postcard(self, postcard_id: str) -> Dict[str, Any]:
        outcome = self.postcards.get(postcard_id)
        if isinstance(outcome, Exception):
            raise outcome
        if outcome is None:
            return {"id": postcard_id}
        return outcome

    async def verify_us_address(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if isinstance(self.verification, Exception):
            raise self.verification
        return self.verification


class MockBillingClient:
    def __init__(self, balance_cents: int = 1_000_000):
        self.balance_cents = balance_cents
        self.charges: List[Dict[str, Any]] = []
        self.fail_charge = False

    async def has_sufficient_balance(self, organization_id: str, amount_cents: int) -> bool:
        return self.balance_cents >= amount_cents

    async def charge_for_campaign(
        self, campaign: Campaign, amount_cents: int, actor: Optional[str] = None
    ) -> ChargeResult:
        if self.fail_charge:
            return ChargeResult(success=False, error="ledger unavailable")
        self.charges.append({"campaign_id": campaign.campaign_id, "amount_cents": amount_cents})
        return ChargeResult(success=True, transaction_id=f"txn_{len(self.charges)}")


class MockNotificationClient:
    def __init__(self):
        self.notifications: List[Dict[str, Any]] = []

    async def notify_campaign_result(
        self, campaign: Campaign, final_status: CampaignStatus, error: Optional[str] = None
    ) -> bool:
        self.notifications.append({
            "campaign_id": campaign.campaign_id,
            "status": final_status,
            "error": error,
        })
        return True


class MockTemplateRenderer:
    def __init__(self):
        self.calls: List[Tuple[str, str, Dict[str, Any]]] = []

    async def render(self, template_id: str, side: str, merge_fields: Dict[str, Any]) -> str:
        self.calls.append((template_id, side, merge_fields))
        return f"<html><body>{side}: {merge_fields.get('first_name', '')}</body></html>"


class MockTaskQueue:
    def __init__(self):
        self.enqueued: List[Tuple[str, str]] = []
        self.error: Optional[Exception] = None

    async def enqueue_dispatch(self, campaign_id: str, organization_id: str) -> str:
        if self.error:
            raise self.error
        self.enqueued.append((campaign_id, organization_id))
        return f"task_{len(self.enqueued)}"

    async def close(self) -> None:
        pass


class SleepRecorder:
    """Stands in for asyncio.sleep and records requested delays"""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def mock_repository() -> MockPostcardRepository:
    return MockPostcardRepository()


@pytest.fixture
def fake_lob() -> FakeLobClient:
    return FakeLobClient()


@pytest.fixture
def mock_billing() -> MockBillingClient:
    return MockBillingClient()


@pytest.fixture
def mock_notifier() -> MockNotificationClient:
    return MockNotificationClient()


@pytest.fixture
def mock_renderer() -> MockTemplateRenderer:
    return MockTemplateRenderer()


@pytest.fixture
def mock_task_queue() -> MockTaskQueue:
    return MockTaskQueue()


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def gateway(fake_lob, mock_repository, mock_renderer) -> VendorGateway:
    return VendorGateway(
        lob_client=fake_lob,
        repository=mock_repository,
        template_renderer=mock_renderer,
        public_app_url="https://app.example.com",
    )


@pytest.fixture
def service(
    mock_repository, mock_event_bus, mock_task_queue, mock_billing, gateway, mock_renderer
) -> PostcardCampaignService:
    return PostcardCampaignService(
        repository=mock_repository,
        event_bus=mock_event_bus,
        task_queue=mock_task_queue,
        billing_client=mock_billing,
        gateway=gateway,
        template_renderer=mock_renderer,
    )


@pytest.fixture
def dispatcher(
    mock_repository, service, gateway, mock_billing, mock_notifier, mock_event_bus, sleep_recorder
) -> DispatchOrchestrator:
    return DispatchOrchestrator(
        repository=mock_repository,
        campaign_service=service,
        gateway=gateway,
        billing_client=mock_billing,
        notification_client=mock_notifier,
        event_bus=mock_event_bus,
        delay_seconds=0.1,
        sleep=sleep_recorder,
    )


@pytest.fixture
def reconciler(mock_repository, gateway, service, mock_event_bus, sleep_recorder) -> StatusReconciler:
    return StatusReconciler(
        repository=mock_repository,
        gateway=gateway,
        campaign_service=service,
        event_bus=mock_event_bus,
        delay_seconds=0,
        sleep=sleep_recorder,
    )


@pytest.fixture
def org_settings(mock_repository, org_id, factory) -> TenantSettings:
    """Tenant with a return address configured"""
    settings = factory.make_settings(org_id)
    mock_repository.settings[org_id] = settings
    return settings


@pytest.fixture
def processing_campaign(mock_repository, org_id, org_settings, factory):
    """
    Processing campaign with three pending recipients, as left by send_now.

    Returns (campaign, [recipients]) in creation order.
    """
    campaign = factory.make_campaign(
        status=CampaignStatus.PROCESSING,
        organization_id=org_id,
        recipient_count=3,
        sent_at=datetime.now(timezone.utc),
    )
    mock_repository.seed_campaign(campaign)
    recipients = [
        mock_repository.seed_recipient(factory.make_recipient(campaign)) for _ in range(3)
    ]
    return campaign, recipients
