"""
Postcard Event Data Models

Payloads for events published by postcard_service.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class CampaignEventData(BaseModel):
    """Campaign lifecycle event (created, updated, scheduled, cancelled, ...)"""
    campaign_id: str
    organization_id: str
    status: str
    name: Optional[str] = None
    actor: Optional[str] = None
    changed_fields: List[str] = Field(default_factory=list)
    scheduled_at: Optional[datetime] = None
    timestamp: datetime


class CampaignSendRequestedEventData(BaseModel):
    campaign_id: str
    organization_id: str
    recipient_count: int
    estimated_cost_cents: int
    task_id: Optional[str] = None
    requested_by: Optional[str] = None
    timestamp: datetime


class CampaignFinishedEventData(BaseModel):
    """Dispatch finished (completed, completed_with_errors or failed)"""
    campaign_id: str
    organization_id: str
    status: str
    sent_count: int = 0
    failed_count: int = 0
    actual_cost_cents: int = 0
    error: Optional[str] = None
    timestamp: datetime


class CampaignChargedEventData(BaseModel):
    campaign_id: str
    organization_id: str
    amount_cents: int
    transaction_id: Optional[str] = None
    timestamp: datetime


class RecipientEventData(BaseModel):
    """Recipient sent / failed / status change / reset"""
    recipient_id: str
    campaign_id: str
    organization_id: str
    status: str
    previous_status: Optional[str] = None
    vendor_object_id: Optional[str] = None
    error: Optional[str] = None
    timestamp: datetime


class IntegrityViolationEventData(BaseModel):
    """Vendor object id collided with an existing assignment"""
    recipient_id: str
    campaign_id: str
    organization_id: str
    vendor_object_id: str
    message: str
    timestamp: datetime


__all__ = [
    "CampaignEventData",
    "CampaignSendRequestedEventData",
    "CampaignFinishedEventData",
    "CampaignChargedEventData",
    "RecipientEventData",
    "IntegrityViolationEventData",
]
