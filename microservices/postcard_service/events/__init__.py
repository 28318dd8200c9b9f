"""
Postcard Service Events
"""

from .models import (
    CampaignChargedEventData,
    CampaignEventData,
    CampaignFinishedEventData,
    CampaignSendRequestedEventData,
    IntegrityViolationEventData,
    RecipientEventData,
)
from .publishers import PostcardEventPublisher

__all__ = [
    "PostcardEventPublisher",
    "CampaignEventData",
    "CampaignSendRequestedEventData",
    "CampaignFinishedEventData",
    "CampaignChargedEventData",
    "RecipientEventData",
    "IntegrityViolationEventData",
]
