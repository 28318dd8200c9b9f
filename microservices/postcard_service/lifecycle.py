"""
Campaign and recipient lifecycle rules.

Transition tables are keyed by every status member so a new status cannot be
added without deciding its exits.
"""

from typing import Dict, FrozenSet

from .models import CampaignStatus, RecipientStatus
from .protocols import InvalidTransitionError


CAMPAIGN_TRANSITIONS: Dict[CampaignStatus, FrozenSet[CampaignStatus]] = {
    CampaignStatus.DRAFT: frozenset({CampaignStatus.SCHEDULED, CampaignStatus.PROCESSING}),
    CampaignStatus.SCHEDULED: frozenset({CampaignStatus.DRAFT, CampaignStatus.CANCELLED}),
    CampaignStatus.PROCESSING: frozenset({
        CampaignStatus.COMPLETED,
        CampaignStatus.COMPLETED_WITH_ERRORS,
        CampaignStatus.FAILED,
    }),
    CampaignStatus.COMPLETED: frozenset(),  # Terminal state
    CampaignStatus.COMPLETED_WITH_ERRORS: frozenset(),  # Terminal state
    CampaignStatus.FAILED: frozenset(),  # Terminal state
    CampaignStatus.CANCELLED: frozenset(),  # Terminal state
}

RECIPIENT_TRANSITIONS: Dict[RecipientStatus, FrozenSet[RecipientStatus]] = {
    RecipientStatus.PENDING: frozenset({RecipientStatus.VALIDATING, RecipientStatus.SENDING}),
    RecipientStatus.VALIDATING: frozenset({RecipientStatus.PENDING, RecipientStatus.FAILED}),
    RecipientStatus.SENDING: frozenset({RecipientStatus.SENT, RecipientStatus.FAILED}),
    RecipientStatus.SENT: frozenset({
        RecipientStatus.IN_TRANSIT,
        RecipientStatus.DELIVERED,
        RecipientStatus.RETURNED,
        RecipientStatus.FAILED,
    }),
    RecipientStatus.IN_TRANSIT: frozenset({
        RecipientStatus.DELIVERED,
        RecipientStatus.RETURNED,
        RecipientStatus.FAILED,
    }),
    RecipientStatus.DELIVERED: frozenset(),
    RecipientStatus.RETURNED: frozenset(),
    RecipientStatus.FAILED: frozenset({RecipientStatus.PENDING}),
}


def can_transition_campaign(current: CampaignStatus, target: CampaignStatus) -> bool:
    return target in CAMPAIGN_TRANSITIONS[current]


def can_transition_recipient(current: RecipientStatus, target: RecipientStatus) -> bool:
    return target in RECIPIENT_TRANSITIONS[current]


def ensure_campaign_transition(current: CampaignStatus, target: CampaignStatus) -> None:
    if not can_transition_campaign(current, target):
        raise InvalidTransitionError(
            f"Cannot transition campaign from {current.value} to {target.value}",
            current,
            target,
        )


def ensure_recipient_transition(current: RecipientStatus, target: RecipientStatus) -> None:
    if not can_transition_recipient(current, target):
        raise InvalidTransitionError(
            f"Cannot transition recipient from {current.value} to {target.value}",
            current,
            target,
        )


def terminal_status(sent_count: int, failed_count: int) -> CampaignStatus:
    """
    Final campaign status for a finished batch.

    No successful sends means the campaign failed, even when nothing failed
    either (an empty batch). Otherwise any failure yields
    completed_with_errors.
    """
    if sent_count == 0:
        return CampaignStatus.FAILED
    if failed_count == 0:
        return CampaignStatus.COMPLETED
    return CampaignStatus.COMPLETED_WITH_ERRORS


__all__ = [
    "CAMPAIGN_TRANSITIONS",
    "RECIPIENT_TRANSITIONS",
    "can_transition_campaign",
    "can_transition_recipient",
    "ensure_campaign_transition",
    "ensure_recipient_transition",
    "terminal_status",
]
