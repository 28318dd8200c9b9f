"""
Postage cost computation (integer cents). Pure functions only; charging is
delegated to the billing ledger.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional, Tuple

from .models import (
    SUBMITTED_STATUSES,
    CostEstimate,
    MailClass,
    PostcardSize,
    RecipientStatus,
)


UNIT_COST_CENTS: Dict[Tuple[MailClass, PostcardSize], int] = {
    (MailClass.FIRST_CLASS, PostcardSize.SIZE_4X6): 84,
    (MailClass.FIRST_CLASS, PostcardSize.SIZE_6X9): 105,
    (MailClass.FIRST_CLASS, PostcardSize.SIZE_6X11): 115,
    (MailClass.STANDARD, PostcardSize.SIZE_4X6): 63,
    (MailClass.STANDARD, PostcardSize.SIZE_6X9): 78,
    (MailClass.STANDARD, PostcardSize.SIZE_6X11): 88,
}

BILLABLE_STATUSES = SUBMITTED_STATUSES


def unit_cost(mail_class: MailClass, size: PostcardSize) -> int:
    try:
        return UNIT_COST_CENTS[(MailClass(mail_class), PostcardSize(size))]
    except (KeyError, ValueError):
        raise ValueError(f"No postage rate for {mail_class} {size}")


def estimate(recipient_count: int, mail_class: MailClass, size: PostcardSize) -> CostEstimate:
    if recipient_count < 0:
        raise ValueError("recipient_count must be non-negative")
    per_unit = unit_cost(mail_class, size)
    return CostEstimate(
        recipient_count=recipient_count,
        unit_cost_cents=per_unit,
        total_cost_cents=recipient_count * per_unit,
        mail_class=mail_class,
        size=size,
    )


def price_to_cents(price: Any, fallback_cents: Optional[int] = None) -> Optional[int]:
    """
    Convert a vendor decimal-dollar price ("1.05", 1.05) to cents.

    Rounds half-up; unparseable or missing prices return the fallback.
    """
    if price is None or price == "":
        return fallback_cents
    try:
        amount = Decimal(str(price))
    except (InvalidOperation, ValueError):
        return fallback_cents
    if amount < 0:
        return fallback_cents
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def actual_cost(costs_by_status: Mapping[RecipientStatus, int]) -> int:
    """Sum per-status cost totals over billable statuses only"""
    return sum(
        cents for status, cents in costs_by_status.items()
        if RecipientStatus(status) in BILLABLE_STATUSES
    )


def format_cents(cents: int) -> str:
    return f"${Decimal(cents) / 100:.2f}"


__all__ = [
    "UNIT_COST_CENTS",
    "BILLABLE_STATUSES",
    "unit_cost",
    "estimate",
    "price_to_cents",
    "actual_cost",
    "format_cents",
]
