"""
Postcard Service Protocols

Defines interfaces for dependency injection and testing.
Following the protocol-based architecture pattern.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple

from .models import (
    Campaign,
    CampaignStatus,
    ChargeResult,
    CustomerProfile,
    Recipient,
    RecipientStatus,
    SuppressionListEntry,
    TenantSettings,
    VendorApiLog,
    VendorErrorCause,
    VendorLogStats,
)


# ====================
# Repository Protocol
# ====================


class PostcardRepositoryProtocol(Protocol):
    """Protocol for postcard data repository"""

    async def initialize(self) -> None:
        ...

    async def close(self) -> None:
        ...

    async def health_check(self) -> bool:
        ...

    # Campaigns
    async def save_campaign(self, campaign: Campaign) -> Campaign:
        ...

    async def get_campaign(
        self, campaign_id: str, organization_id: Optional[str] = None
    ) -> Optional[Campaign]:
        ...

    async def list_campaigns(
        self,
        organization_id: str,
        status: Optional[List[CampaignStatus]] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[Campaign], int]:
        ...

    async def update_campaign(
        self, campaign_id: str, updates: Dict[str, Any]
    ) -> Optional[Campaign]:
        ...

    async def update_campaign_status(
        self,
        campaign_id: str,
        expected: Iterable[CampaignStatus],
        status: CampaignStatus,
        updates: Optional[Dict[str, Any]] = None,
    ) -> Optional[Campaign]:
        """Move status only if the current status is in expected; None otherwise"""
        ...

    async def mark_campaign_charged(self, campaign_id: str, charged_at: datetime) -> bool:
        """Set charged_at only if it is still unset"""
        ...

    async def delete_campaign(self, campaign_id: str) -> bool:
        ...

    # Recipients
    async def save_recipient(self, recipient: Recipient) -> Recipient:
        ...

    async def get_recipient(
        self, recipient_id: str, organization_id: Optional[str] = None
    ) -> Optional[Recipient]:
        ...

    async def list_recipients(
        self,
        campaign_id: str,
        status: Optional[List[RecipientStatus]] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> Tuple[List[Recipient], int]:
        ...

    async def list_sendable_recipients(
        self, campaign_id: str, include_suppressed: bool = False
    ) -> List[Recipient]:
        """Pending recipients in creation order"""
        ...

    async def list_reconcilable_recipients(
        self, limit: int = 500, after: Optional[Tuple[datetime, str]] = None
    ) -> List[Recipient]:
        """Sent or in-transit recipients with a vendor id, all tenants.

        Keyset-paged: returns rows ordered by (created_at, recipient_id)
        strictly after the ``after`` cursor.
        """
        ...

    async def update_recipient(
        self, recipient_id: str, updates: Dict[str, Any]
    ) -> Optional[Recipient]:
        ...

    async def assign_vendor_object_id(
        self, recipient_id: str, vendor_object_id: str, updates: Dict[str, Any]
    ) -> Recipient:
        """Write-once assignment; raises DuplicateVendorObjectError on collision"""
        ...

    async def delete_recipient(self, recipient_id: str) -> bool:
        ...

    async def count_recipients_by_status(self, campaign_id: str) -> Dict[RecipientStatus, int]:
        ...

    async def sum_recipient_cost(
        self, campaign_id: str, statuses: Iterable[RecipientStatus]
    ) -> int:
        ...

    async def set_recipient_estimates(self, campaign_id: str, unit_cost_cents: int) -> int:
        ...

    # Profiles
    async def get_profiles(
        self, organization_id: str, profile_ids: List[str]
    ) -> List[CustomerProfile]:
        ...

    async def touch_profile_mailed(self, profile_id: str, mailed_at: datetime) -> None:
        ...

    # Tenant settings
    async def get_tenant_settings(self, organization_id: str) -> Optional[TenantSettings]:
        ...

    async def save_tenant_settings(self, settings: TenantSettings) -> TenantSettings:
        ...

    # Suppression list
    async def save_suppression_entry(self, entry: SuppressionListEntry) -> SuppressionListEntry:
        ...

    async def list_suppression_entries(
        self, organization_id: str, limit: int = 100, offset: int = 0
    ) -> Tuple[List[SuppressionListEntry], int]:
        ...

    async def find_suppression_matches(
        self,
        organization_id: str,
        email: Optional[str] = None,
        address_key: Optional[str] = None,
    ) -> List[SuppressionListEntry]:
        ...

    async def delete_suppression_entry(self, organization_id: str, entry_id: str) -> bool:
        ...

    # Vendor audit log
    async def save_vendor_log(self, log: VendorApiLog) -> VendorApiLog:
        ...

    async def list_vendor_logs(
        self,
        organization_id: Optional[str] = None,
        campaign_id: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[VendorApiLog]:
        ...

    async def get_vendor_log_stats(
        self, organization_id: Optional[str] = None
    ) -> VendorLogStats:
        ...


# ====================
# Collaborator Protocols
# ====================


class EventBusProtocol(Protocol):
    """Protocol for event bus"""

    async def publish_event(self, event: Any) -> None:
        ...


class LobClientProtocol(Protocol):
    """Protocol for the raw mail vendor HTTP client"""

    async def create_postcard(
        self, payload: Dict[str, Any], idempotency_key: Optional[str] = None
    ) -> Dict[str, Any]:
        ...

    async def get_postcard(self, postcard_id: str) -> Dict[str, Any]:
        ...

    async def verify_us_address(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        ...


class BillingClientProtocol(Protocol):
    """Protocol for the billing ledger"""

    async def has_sufficient_balance(self, organization_id: str, amount_cents: int) -> bool:
        ...

    async def charge_for_campaign(
        self, campaign: Campaign, amount_cents: int, actor: Optional[str] = None
    ) -> ChargeResult:
        ...


class TemplateRendererProtocol(Protocol):
    """Protocol for artwork template rendering"""

    async def render(
        self, template_id: str, side: str, merge_fields: Dict[str, Any]
    ) -> str:
        ...


class NotificationClientProtocol(Protocol):
    """Protocol for campaign result notifications"""

    async def notify_campaign_result(
        self,
        campaign: Campaign,
        final_status: CampaignStatus,
        error: Optional[str] = None,
    ) -> bool:
        ...


class TaskQueueProtocol(Protocol):
    """Protocol for background dispatch scheduling"""

    async def enqueue_dispatch(self, campaign_id: str, organization_id: str) -> str:
        ...

    async def close(self) -> None:
        ...


# ====================
# Exceptions
# ====================


class PostcardServiceError(Exception):
    """Base exception for postcard service errors"""
    pass


class CampaignNotFoundError(PostcardServiceError):
    """Raised when campaign is not found"""
    pass


class RecipientNotFoundError(PostcardServiceError):
    """Raised when recipient is not found"""
    pass


class SuppressionEntryNotFoundError(PostcardServiceError):
    pass


class NotEditableError(PostcardServiceError):
    """Raised when a campaign is modified outside draft"""

    def __init__(self, message: str, current_status: Optional[CampaignStatus] = None):
        super().__init__(message)
        self.current_status = current_status


class NotSendableError(PostcardServiceError):
    """Raised when send preconditions are not met"""

    def __init__(self, message: str, reasons: Optional[List[str]] = None):
        super().__init__(message)
        self.reasons = reasons or []


class InvalidTransitionError(PostcardServiceError):
    """Raised when a lifecycle transition is not allowed"""

    def __init__(self, message: str, current_status: Any = None, target_status: Any = None):
        super().__init__(message)
        self.current_status = current_status
        self.target_status = target_status


class CampaignValidationError(PostcardServiceError):
    """Raised when campaign input fails validation"""
    pass


class RecipientValidationError(PostcardServiceError):
    """Raised when recipient data fails validation"""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class SuppressionEntryValidationError(PostcardServiceError):
    pass


class DuplicateSuppressionEntryError(PostcardServiceError):
    pass


class InsufficientBalanceError(PostcardServiceError):
    """Raised when the ledger cannot cover the estimated cost"""

    def __init__(self, message: str, required_cents: int = 0):
        super().__init__(message)
        self.required_cents = required_cents


class DispatchInProgressError(PostcardServiceError):
    """Raised when a dispatch is requested for a campaign already dispatching"""
    pass


class DispatchSetupError(PostcardServiceError):
    """Raised when a campaign batch cannot start; aborts the whole send"""
    pass


class ArtworkUnavailableError(DispatchSetupError):
    """Raised when artwork cannot be resolved for the vendor"""
    pass


class VendorError(PostcardServiceError):
    """Classified failure of a mail vendor call"""

    def __init__(
        self,
        message: str,
        cause: VendorErrorCause = VendorErrorCause.UNRECOGNIZED,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        user_message: Optional[str] = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.cause = cause
        self.code = code
        self.status_code = status_code
        self.user_message = user_message or message
        self.retryable = retryable


class DuplicateVendorObjectError(PostcardServiceError):
    """Raised when a vendor object id collides with an existing assignment"""

    def __init__(self, message: str, recipient_id: str, vendor_object_id: str):
        super().__init__(message)
        self.recipient_id = recipient_id
        self.vendor_object_id = vendor_object_id


class BillingError(PostcardServiceError):
    pass


__all__ = [
    "PostcardRepositoryProtocol",
    "EventBusProtocol",
    "LobClientProtocol",
    "BillingClientProtocol",
    "TemplateRendererProtocol",
    "NotificationClientProtocol",
    "TaskQueueProtocol",
    "PostcardServiceError",
    "CampaignNotFoundError",
    "RecipientNotFoundError",
    "SuppressionEntryNotFoundError",
    "NotEditableError",
    "NotSendableError",
    "InvalidTransitionError",
    "CampaignValidationError",
    "RecipientValidationError",
    "SuppressionEntryValidationError",
    "DuplicateSuppressionEntryError",
    "InsufficientBalanceError",
    "DispatchInProgressError",
    "DispatchSetupError",
    "ArtworkUnavailableError",
    "VendorError",
    "DuplicateVendorObjectError",
    "BillingError",
]
