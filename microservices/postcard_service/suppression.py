"""
Suppression Engine

Pure decision function deciding whether a recipient may be mailed. Rules are
checked in precedence order and the first match supplies the reason:

1. recent order  - linked profile ordered within the lookback window
2. recent mail   - linked profile was mailed within the lookback window
3. do-not-mail   - email OR complete address matches a DNM entry
"""

from datetime import datetime, timedelta
from typing import Iterable, Optional, Tuple

from .models import (
    CustomerProfile,
    Recipient,
    SuppressionDecision,
    SuppressionListEntry,
    SuppressionPolicy,
    SuppressionRule,
    normalize_email,
)


def _within(timestamp: Optional[datetime], days: int, now: datetime) -> bool:
    if days <= 0 or timestamp is None:
        return False
    return timestamp >= now - timedelta(days=days)


def match_suppression_entry(
    recipient: Recipient, entries: Iterable[SuppressionListEntry]
) -> Optional[SuppressionListEntry]:
    """Return the first DNM entry matching by email or by full address"""
    email = normalize_email(recipient.email)
    key = recipient.address.key
    for entry in entries:
        if email and entry.email and entry.email == email:
            return entry
        if key and entry.address_key and entry.address_key == key:
            return entry
    return None


def evaluate(
    recipient: Recipient,
    policy: SuppressionPolicy,
    now: datetime,
    profile: Optional[CustomerProfile] = None,
    dnm_entries: Iterable[SuppressionListEntry] = (),
) -> SuppressionDecision:
    """Decide suppression for one recipient. Deterministic for equal inputs."""
    if profile is not None:
        if _within(profile.last_order_at, policy.recent_order_days, now):
            return SuppressionDecision(
                suppressed=True,
                rule=SuppressionRule.RECENT_ORDER,
                reason=f"Ordered within the last {policy.recent_order_days} days",
            )
        if _within(profile.last_mailed_at, policy.recent_mail_days, now):
            return SuppressionDecision(
                suppressed=True,
                rule=SuppressionRule.RECENT_MAIL,
                reason=f"Mailed within the last {policy.recent_mail_days} days",
            )

    if policy.dnm_enabled:
        entry = match_suppression_entry(recipient, dnm_entries)
        if entry is not None:
            reason = "On do-not-mail list"
            if entry.reason:
                reason = f"{reason}: {entry.reason}"
            return SuppressionDecision(
                suppressed=True,
                rule=SuppressionRule.DO_NOT_MAIL,
                reason=reason,
            )

    return SuppressionDecision(suppressed=False)


def dnm_lookup_keys(recipient: Recipient) -> Tuple[Optional[str], Optional[str]]:
    """(email, address key) used to query the DNM list for a recipient"""
    return normalize_email(recipient.email), recipient.address.key


__all__ = ["evaluate", "match_suppression_entry", "dnm_lookup_keys"]
