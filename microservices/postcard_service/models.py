"""
Postcard Service Data Models

Canonical data structures for the postcard campaign service: campaigns,
recipients, suppression data, vendor audit rows and API request/response
shapes.
"""

import re
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator


STATE_PATTERN = re.compile(r"^[A-Z]{2}$")
ZIP_PATTERN = re.compile(r"^\d{5}(-\d{4})?$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# NORMALIZATION
# =============================================================================

def normalize_email(value: Optional[str]) -> Optional[str]:
    """Lower-case and trim an email; blank becomes None"""
    if value is None:
        return None
    value = value.strip().lower()
    return value or None


def normalize_address_part(value: Optional[str]) -> Optional[str]:
    """Upper-case, strip punctuation and squeeze whitespace"""
    if value is None:
        return None
    value = re.sub(r"[^A-Z0-9\s]", "", value.strip().upper())
    value = re.sub(r"\s+", " ", value).strip()
    return value or None


def normalize_zip(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def address_key(
    address_line1: Optional[str],
    city: Optional[str],
    state: Optional[str],
    zip_code: Optional[str],
) -> Optional[str]:
    """
    Build the comparison key for a complete address.

    Returns None unless all four parts are present after normalization.
    """
    parts = [
        normalize_address_part(address_line1),
        normalize_address_part(city),
        normalize_address_part(state),
        normalize_zip(zip_code),
    ]
    if not all(parts):
        return None
    return "|".join(parts)


# =============================================================================
# ENUMS
# =============================================================================

class CampaignStatus(str, Enum):
    """Campaign lifecycle status"""
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    PROCESSING = "processing"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"
    CANCELLED = "cancelled"


class RecipientStatus(str, Enum):
    """Recipient (single postcard) lifecycle status"""
    PENDING = "pending"
    VALIDATING = "validating"
    SENDING = "sending"
    SENT = "sent"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    RETURNED = "returned"
    FAILED = "failed"


class MailClass(str, Enum):
    FIRST_CLASS = "usps_first_class"
    STANDARD = "usps_standard"


class PostcardSize(str, Enum):
    SIZE_4X6 = "4x6"
    SIZE_6X9 = "6x9"
    SIZE_6X11 = "6x11"


class VendorErrorCause(str, Enum):
    """Plain-language cause of a failed vendor call"""
    ADDRESS_UNDELIVERABLE = "address_undeliverable"
    INVALID_ADDRESS = "invalid_address"
    ADDRESS_TOO_LONG = "address_too_long"
    RATE_LIMITED = "rate_limited"
    AUTHENTICATION = "authentication"
    TIMEOUT = "timeout"
    NETWORK = "network"
    SERVER_ERROR = "server_error"
    UNRECOGNIZED = "unrecognized"


class VendorObjectType(str, Enum):
    POSTCARD = "postcard"
    VERIFICATION = "verification"


class SuppressionRule(str, Enum):
    """Suppression rules in precedence order"""
    RECENT_ORDER = "recent_order"
    RECENT_MAIL = "recent_mail"
    DO_NOT_MAIL = "do_not_mail"


# Statuses that mean the vendor accepted the mail piece
SUBMITTED_STATUSES = frozenset({
    RecipientStatus.SENT,
    RecipientStatus.IN_TRANSIT,
    RecipientStatus.DELIVERED,
    RecipientStatus.RETURNED,
})

TERMINAL_CAMPAIGN_STATUSES = frozenset({
    CampaignStatus.COMPLETED,
    CampaignStatus.COMPLETED_WITH_ERRORS,
    CampaignStatus.FAILED,
    CampaignStatus.CANCELLED,
})


# =============================================================================
# BASE
# =============================================================================

class BaseContract(BaseModel):
    """Base model with ORM-friendly config"""
    model_config = {"from_attributes": True}


# =============================================================================
# ADDRESS
# =============================================================================

class Address(BaseContract):
    """US postal address"""
    address_line1: str = Field(..., min_length=1, max_length=200)
    address_line2: Optional[str] = Field(None, max_length=200)
    city: str = Field(..., min_length=1, max_length=100)
    state: str
    zip_code: str
    country: str = Field(default="US")

    @field_validator("state", mode="before")
    @classmethod
    def validate_state(cls, v):
        if not isinstance(v, str):
            raise ValueError("State must be a 2-letter code")
        v = v.strip().upper()
        if not STATE_PATTERN.match(v):
            raise ValueError("State must be a 2-letter code")
        return v

    @field_validator("zip_code", mode="before")
    @classmethod
    def validate_zip_code(cls, v):
        if not isinstance(v, str):
            v = str(v)
        v = v.strip()
        if not ZIP_PATTERN.match(v):
            raise ValueError("ZIP code must be 12345 or 12345-6789")
        return v

    @field_validator("country", mode="before")
    @classmethod
    def validate_country(cls, v):
        v = (v or "US").strip().upper()
        if v != "US":
            raise ValueError("Only US addresses are supported")
        return v

    @property
    def key(self) -> Optional[str]:
        return address_key(self.address_line1, self.city, self.state, self.zip_code)


# =============================================================================
# CORE MODELS
# =============================================================================

class Campaign(BaseContract):
    """Postcard campaign aggregate"""
    campaign_id: str = Field(default_factory=lambda: f"pcm_{uuid4().hex[:16]}")
    organization_id: str
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=2000)
    status: CampaignStatus = Field(default=CampaignStatus.DRAFT)

    # Rollups
    recipient_count: int = Field(default=0, ge=0)
    sent_count: int = Field(default=0, ge=0)
    failed_count: int = Field(default=0, ge=0)
    delivered_count: int = Field(default=0, ge=0)

    # Cost (cents)
    estimated_cost_cents: int = Field(default=0, ge=0)
    actual_cost_cents: int = Field(default=0, ge=0)

    mail_class: MailClass = Field(default=MailClass.FIRST_CLASS)
    size: PostcardSize = Field(default=PostcardSize.SIZE_6X9)

    # Suppression
    suppression_override: bool = False
    recent_order_suppression_days: Optional[int] = Field(None, ge=0)
    recent_mail_suppression_days: Optional[int] = Field(None, ge=0)

    # Artwork
    front_pdf_url: Optional[str] = None
    back_pdf_url: Optional[str] = None
    template_id: Optional[str] = None
    front_message: Optional[str] = None
    back_message: Optional[str] = None
    merge_variables: Dict[str, Any] = Field(default_factory=dict)
    template_data: Dict[str, Any] = Field(default_factory=dict)

    # Lifecycle timestamps
    scheduled_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    charged_at: Optional[datetime] = None

    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def has_pdf_artwork(self) -> bool:
        return bool(self.front_pdf_url and self.back_pdf_url)

    @property
    def has_artwork(self) -> bool:
        return (
            self.has_pdf_artwork
            or bool(self.template_id)
            or bool(self.front_message)
            or bool(self.back_message)
        )

    @property
    def is_editable(self) -> bool:
        return self.status == CampaignStatus.DRAFT

    @property
    def is_sendable(self) -> bool:
        return (
            self.status == CampaignStatus.DRAFT
            and self.recipient_count > 0
            and self.has_artwork
        )

    @property
    def completion_percentage(self) -> int:
        if self.recipient_count == 0:
            return 0
        done = self.sent_count + self.failed_count
        return round(done / self.recipient_count * 100)


class Recipient(BaseContract):
    """One postcard target within a campaign"""
    recipient_id: str = Field(default_factory=lambda: f"rcp_{uuid4().hex[:16]}")
    campaign_id: str
    organization_id: str
    profile_id: Optional[str] = None

    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    company: Optional[str] = Field(None, max_length=200)
    address: Address
    email: Optional[str] = None
    phone: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    status: RecipientStatus = Field(default=RecipientStatus.PENDING)
    suppressed: bool = False
    suppression_reason: Optional[str] = None

    vendor_object_id: Optional[str] = None
    send_attempts: int = Field(default=0, ge=0)
    estimated_cost_cents: int = Field(default=0, ge=0)
    actual_cost_cents: int = Field(default=0, ge=0)
    tracking_url: Optional[str] = None
    expected_delivery_date: Optional[date] = None
    send_error: Optional[str] = None
    vendor_response: Optional[Dict[str, Any]] = None
    delivered_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("email", mode="before")
    @classmethod
    def validate_email(cls, v):
        v = normalize_email(v)
        if v is not None and not EMAIL_PATTERN.match(v):
            raise ValueError("Email is not a valid address")
        return v

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def idempotency_key(self) -> str:
        return f"postcard-{self.recipient_id}-{self.send_attempts}"


class CustomerProfile(BaseContract):
    """Historical customer profile maintained by the commerce sync"""
    profile_id: str
    organization_id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[Address] = None
    last_order_at: Optional[datetime] = None
    last_mailed_at: Optional[datetime] = None


class TenantSettings(BaseContract):
    """Per-organization mail settings"""
    organization_id: str
    return_name: Optional[str] = Field(None, max_length=100)
    return_address: Optional[Address] = None
    recent_order_suppression_days: int = Field(default=0, ge=0)
    recent_mail_suppression_days: int = Field(default=0, ge=0)
    dnm_enabled: bool = True
    updated_at: datetime = Field(default_factory=_utcnow)


class SuppressionPolicy(BaseContract):
    """Effective thresholds; a days value of 0 disables the rule"""
    recent_order_days: int = Field(default=0, ge=0)
    recent_mail_days: int = Field(default=0, ge=0)
    dnm_enabled: bool = True

    @classmethod
    def resolve(cls, settings: TenantSettings, campaign: Campaign) -> "SuppressionPolicy":
        """Tenant defaults with per-campaign overrides applied"""
        order_days = campaign.recent_order_suppression_days
        mail_days = campaign.recent_mail_suppression_days
        return cls(
            recent_order_days=(
                settings.recent_order_suppression_days if order_days is None else order_days
            ),
            recent_mail_days=(
                settings.recent_mail_suppression_days if mail_days is None else mail_days
            ),
            dnm_enabled=settings.dnm_enabled,
        )


class SuppressionListEntry(BaseContract):
    """Do-not-mail entry, stored normalized"""
    entry_id: str = Field(default_factory=lambda: f"dnm_{uuid4().hex[:16]}")
    organization_id: str
    email: Optional[str] = None
    address_line1: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    reason: Optional[str] = Field(None, max_length=500)
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)

    @field_validator("email", mode="before")
    @classmethod
    def _normalize_email(cls, v):
        return normalize_email(v)

    @field_validator("address_line1", "city", "state", mode="before")
    @classmethod
    def _normalize_address_part(cls, v):
        return normalize_address_part(v)

    @field_validator("zip_code", mode="before")
    @classmethod
    def _normalize_zip(cls, v):
        return normalize_zip(v)

    @model_validator(mode="after")
    def validate_identity(self):
        """Either an email or a complete address must be present"""
        if not self.email and not self.address_key:
            raise ValueError("Either email or complete address must be provided")
        return self

    @property
    def address_key(self) -> Optional[str]:
        return address_key(self.address_line1, self.city, self.state, self.zip_code)


class SuppressionDecision(BaseContract):
    suppressed: bool = False
    rule: Optional[SuppressionRule] = None
    reason: Optional[str] = None


class VendorApiLog(BaseContract):
    """Append-only audit row for one outbound vendor call"""
    log_id: str = Field(default_factory=lambda: f"vlg_{uuid4().hex[:16]}")
    organization_id: Optional[str] = None
    campaign_id: Optional[str] = None
    endpoint: str
    method: str
    request_body: Optional[Dict[str, Any]] = None
    response_body: Optional[Dict[str, Any]] = None
    status_code: Optional[int] = None
    success: bool
    error_message: Optional[str] = None
    duration_ms: int = 0
    cost_cents: Optional[int] = None
    vendor_object_id: Optional[str] = None
    vendor_object_type: Optional[VendorObjectType] = None
    created_at: datetime = Field(default_factory=_utcnow)


class MailPiece(BaseContract):
    """Vendor-side view of a created postcard"""
    id: str
    url: Optional[str] = None
    status: Optional[str] = None
    expected_delivery_date: Optional[date] = None
    date_created: Optional[datetime] = None
    price_cents: Optional[int] = None
    carrier: Optional[str] = None
    raw: Dict[str, Any] = Field(default_factory=dict, exclude=True)

    def snapshot(self) -> Dict[str, Any]:
        """Small response snapshot kept on the recipient"""
        return {
            "id": self.id,
            "url": self.url,
            "expected_delivery_date": (
                self.expected_delivery_date.isoformat() if self.expected_delivery_date else None
            ),
            "date_created": self.date_created.isoformat() if self.date_created else None,
            "carrier": self.carrier,
        }


class AddressVerification(BaseContract):
    deliverable: bool
    deliverability: Optional[str] = None
    corrected_address: Optional[Address] = None


class ChargeResult(BaseContract):
    success: bool
    transaction_id: Optional[str] = None
    error: Optional[str] = None


# =============================================================================
# RESULT MODELS
# =============================================================================

class CostEstimate(BaseContract):
    recipient_count: int
    unit_cost_cents: int
    total_cost_cents: int
    mail_class: MailClass
    size: PostcardSize


class DispatchResult(BaseContract):
    campaign_id: str
    final_status: Optional[CampaignStatus] = None
    attempted: int = 0
    sent: int = 0
    failed: int = 0
    integrity_errors: int = 0
    actual_cost_cents: int = 0
    charged: bool = False
    skipped: bool = False


class ReconcileResult(BaseContract):
    checked: int = 0
    updated: int = 0
    errors: int = 0
    campaigns_touched: List[str] = Field(default_factory=list)


class ImportResult(BaseContract):
    imported: int = 0
    suppressed: int = 0
    invalid: int = 0
    errors: List[Dict[str, Any]] = Field(default_factory=list)


class VendorLogStats(BaseContract):
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    success_rate: float = 0.0
    total_cost_cents: int = 0
    average_duration_ms: float = 0.0


# =============================================================================
# REQUEST MODELS
# =============================================================================

class CampaignCreateRequest(BaseContract):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=2000)
    mail_class: MailClass = MailClass.FIRST_CLASS
    size: PostcardSize = PostcardSize.SIZE_6X9
    suppression_override: bool = False
    recent_order_suppression_days: Optional[int] = Field(None, ge=0)
    recent_mail_suppression_days: Optional[int] = Field(None, ge=0)
    front_pdf_url: Optional[str] = None
    back_pdf_url: Optional[str] = None
    template_id: Optional[str] = None
    front_message: Optional[str] = None
    back_message: Optional[str] = None
    merge_variables: Dict[str, Any] = Field(default_factory=dict)
    template_data: Dict[str, Any] = Field(default_factory=dict)


class CampaignUpdateRequest(BaseContract):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=2000)
    mail_class: Optional[MailClass] = None
    size: Optional[PostcardSize] = None
    suppression_override: Optional[bool] = None
    recent_order_suppression_days: Optional[int] = Field(None, ge=0)
    recent_mail_suppression_days: Optional[int] = Field(None, ge=0)
    front_pdf_url: Optional[str] = None
    back_pdf_url: Optional[str] = None
    template_id: Optional[str] = None
    front_message: Optional[str] = None
    back_message: Optional[str] = None
    merge_variables: Optional[Dict[str, Any]] = None
    template_data: Optional[Dict[str, Any]] = None


class RecipientCreateRequest(BaseContract):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    company: Optional[str] = Field(None, max_length=200)
    address_line1: str = Field(..., min_length=1, max_length=200)
    address_line2: Optional[str] = Field(None, max_length=200)
    city: str = Field(..., min_length=1, max_length=100)
    state: str
    zip_code: str
    country: str = "US"
    email: Optional[str] = None
    phone: Optional[str] = None
    profile_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class RecipientImportRequest(BaseContract):
    rows: List[Dict[str, Any]] = Field(..., min_length=1)


class ProfileImportRequest(BaseContract):
    profile_ids: List[str] = Field(..., min_length=1)


class ScheduleRequest(BaseContract):
    scheduled_at: datetime


class TenantSettingsUpdateRequest(BaseContract):
    return_name: Optional[str] = Field(None, max_length=100)
    return_address: Optional[Address] = None
    recent_order_suppression_days: Optional[int] = Field(None, ge=0)
    recent_mail_suppression_days: Optional[int] = Field(None, ge=0)
    dnm_enabled: Optional[bool] = None


class SuppressionEntryCreateRequest(BaseContract):
    email: Optional[str] = None
    address_line1: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    reason: Optional[str] = Field(None, max_length=500)


class ArtworkPreviewRequest(BaseContract):
    side: str = Field(default="front", pattern="^(front|back)$")
    sample: Dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# RESPONSE MODELS
# =============================================================================

class CampaignResponse(BaseContract):
    campaign: Campaign
    completion_percentage: int = 0

    @classmethod
    def from_campaign(cls, campaign: Campaign) -> "CampaignResponse":
        return cls(campaign=campaign, completion_percentage=campaign.completion_percentage)


class CampaignListResponse(BaseContract):
    campaigns: List[Campaign]
    total: int
    limit: int
    offset: int


class RecipientListResponse(BaseContract):
    recipients: List[Recipient]
    total: int


class SuppressionEntryListResponse(BaseContract):
    entries: List[SuppressionListEntry]
    total: int


class SuppressionCheckResponse(BaseContract):
    suppressed: bool
    entry: Optional[SuppressionListEntry] = None


class VendorLogListResponse(BaseContract):
    logs: List[VendorApiLog]
    limit: int
    offset: int


class ArtworkPreviewResponse(BaseContract):
    side: str
    html: str


class HealthResponse(BaseContract):
    status: str
    service: str
    port: int
    version: str
    dependencies: Dict[str, str] = Field(default_factory=dict)


class ReadinessResponse(BaseContract):
    ready: bool
    checks: Dict[str, bool] = Field(default_factory=dict)
    details: Dict[str, str] = Field(default_factory=dict)


class LivenessResponse(BaseContract):
    alive: bool
    uptime_seconds: float


__all__ = [
    "normalize_email",
    "normalize_address_part",
    "normalize_zip",
    "address_key",
    "CampaignStatus",
    "RecipientStatus",
    "MailClass",
    "PostcardSize",
    "VendorErrorCause",
    "VendorObjectType",
    "SuppressionRule",
    "SUBMITTED_STATUSES",
    "TERMINAL_CAMPAIGN_STATUSES",
    "BaseContract",
    "Address",
    "Campaign",
    "Recipient",
    "CustomerProfile",
    "TenantSettings",
    "SuppressionPolicy",
    "SuppressionListEntry",
    "SuppressionDecision",
    "VendorApiLog",
    "MailPiece",
    "AddressVerification",
    "ChargeResult",
    "CostEstimate",
    "DispatchResult",
    "ReconcileResult",
    "ImportResult",
    "VendorLogStats",
    "CampaignCreateRequest",
    "CampaignUpdateRequest",
    "RecipientCreateRequest",
    "RecipientImportRequest",
    "ProfileImportRequest",
    "ScheduleRequest",
    "TenantSettingsUpdateRequest",
    "SuppressionEntryCreateRequest",
    "ArtworkPreviewRequest",
    "CampaignResponse",
    "CampaignListResponse",
    "RecipientListResponse",
    "SuppressionEntryListResponse",
    "SuppressionCheckResponse",
    "VendorLogListResponse",
    "ArtworkPreviewResponse",
    "HealthResponse",
    "ReadinessResponse",
    "LivenessResponse",
]
