"""
Postcard Service Data Contract

Test data factories for the postcard service. Models are imported from the
service itself so tests and implementation share one definition.

Usage:
    factory = PostcardTestDataFactory()
    campaign = factory.make_campaign(recipient_count=3)
    recipient = factory.make_recipient(campaign)
"""

import random
import string
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from microservices.postcard_service.models import (
    Address,
    Campaign,
    CampaignCreateRequest,
    CampaignStatus,
    CustomerProfile,
    MailClass,
    PostcardSize,
    Recipient,
    RecipientCreateRequest,
    RecipientStatus,
    SuppressionListEntry,
    TenantSettings,
)


# =============================================================================
# TEST DATA FACTORY
# =============================================================================

STREETS = ["Main St", "Oak Ave", "Pine Rd", "Maple Dr", "Cedar Ln", "Elm St"]
CITIES = [("Springfield", "IL", "62701"), ("Austin", "TX", "78701"), ("Portland", "OR", "97201")]


class PostcardTestDataFactory:
    """Factory for generating postcard service test data"""

    @staticmethod
    def make_id(prefix: str) -> str:
        return f"{prefix}_{uuid4().hex[:16]}"

    @staticmethod
    def make_organization_id() -> str:
        return f"org_{uuid4().hex[:12]}"

    @staticmethod
    def make_user_id() -> str:
        return f"usr_{uuid4().hex[:12]}"

    @staticmethod
    def make_email() -> str:
        local = "".join(random.choices(string.ascii_lowercase, k=8))
        return f"{local}@example.com"

    @staticmethod
    def make_address(**overrides) -> Address:
        city, state, zip_code = random.choice(CITIES)
        data = {
            "address_line1": f"{random.randint(10, 9999)} {random.choice(STREETS)}",
            "city": city,
            "state": state,
            "zip_code": zip_code,
        }
        data.update(overrides)
        return Address(**data)

    @classmethod
    def make_settings(
        cls,
        organization_id: str,
        with_return_address: bool = True,
        **overrides,
    ) -> TenantSettings:
        data: Dict[str, Any] = {"organization_id": organization_id}
        if with_return_address:
            data["return_name"] = "Acme Mailroom"
            data["return_address"] = Address(
                address_line1="1 Market St",
                city="San Francisco",
                state="CA",
                zip_code="94105",
            )
        data.update(overrides)
        return TenantSettings(**data)

    @classmethod
    def make_campaign(
        cls,
        status: CampaignStatus = CampaignStatus.DRAFT,
        organization_id: Optional[str] = None,
        created_by: Optional[str] = None,
        **overrides,
    ) -> Campaign:
        """Campaign with plain-text artwork unless overridden"""
        data: Dict[str, Any] = {
            "campaign_id": cls.make_id("pcm"),
            "organization_id": organization_id or cls.make_organization_id(),
            "name": f"Spring Mailer {random.randint(1, 100)}",
            "status": status,
            "mail_class": MailClass.FIRST_CLASS,
            "size": PostcardSize.SIZE_6X9,
            "front_message": "Spring sale!",
            "back_message": "20% off everything this week.",
            "created_by": created_by or cls.make_user_id(),
        }
        data.update(overrides)
        return Campaign(**data)

    @staticmethod
    def make_campaign_create_request(**overrides) -> CampaignCreateRequest:
        data: Dict[str, Any] = {
            "name": "Welcome Back",
            "front_message": "We miss you",
            "back_message": "Come back for 10% off",
        }
        data.update(overrides)
        return CampaignCreateRequest(**data)

    @classmethod
    def make_recipient(
        cls,
        campaign: Campaign,
        status: RecipientStatus = RecipientStatus.PENDING,
        **overrides,
    ) -> Recipient:
        data: Dict[str, Any] = {
            "recipient_id": cls.make_id("rcp"),
            "campaign_id": campaign.campaign_id,
            "organization_id": campaign.organization_id,
            "first_name": random.choice(["Ada", "Grace", "Alan", "Edsger"]),
            "last_name": random.choice(["Lovelace", "Hopper", "Turing", "Dijkstra"]),
            "address": cls.make_address(),
            "status": status,
            "estimated_cost_cents": 105,
        }
        data.update(overrides)
        return Recipient(**data)

    @staticmethod
    def make_recipient_request(**overrides) -> RecipientCreateRequest:
        data: Dict[str, Any] = {
            "first_name": "Jane",
            "last_name": "Doe",
            "address_line1": "185 Berry St",
            "address_line2": "Suite 6100",
            "city": "San Francisco",
            "state": "CA",
            "zip_code": "94107",
        }
        data.update(overrides)
        return RecipientCreateRequest(**data)

    @staticmethod
    def make_recipient_row(**overrides) -> Dict[str, Any]:
        """Loose import row using column aliases"""
        row = {
            "First": "John",
            "Last": "Smith",
            "Address": "742 Evergreen Terrace",
            "City": "Springfield",
            "State": "il",
            "Zip": "62704",
            "Email": "John.Smith@Example.com ",
        }
        row.update(overrides)
        return row

    @classmethod
    def make_profile(
        cls,
        organization_id: str,
        last_order_days_ago: Optional[int] = None,
        last_mailed_days_ago: Optional[int] = None,
        **overrides,
    ) -> CustomerProfile:
        now = datetime.now(timezone.utc)
        data: Dict[str, Any] = {
            "profile_id": cls.make_id("prf"),
            "organization_id": organization_id,
            "first_name": "Pat",
            "last_name": "Customer",
            "email": cls.make_email(),
            "address": cls.make_address(),
            "last_order_at": (
                now - timedelta(days=last_order_days_ago) if last_order_days_ago is not None else None
            ),
            "last_mailed_at": (
                now - timedelta(days=last_mailed_days_ago) if last_mailed_days_ago is not None else None
            ),
        }
        data.update(overrides)
        return CustomerProfile(**data)

    @staticmethod
    def make_dnm_entry(organization_id: str, **overrides) -> SuppressionListEntry:
        data: Dict[str, Any] = {"organization_id": organization_id, "reason": "Customer request"}
        data.update(overrides)
        return SuppressionListEntry(**data)

    @staticmethod
    def make_lob_postcard(
        postcard_id: Optional[str] = None,
        price: Optional[str] = "1.05",
        **overrides,
    ) -> Dict[str, Any]:
        """Vendor postcard body as returned by POST/GET /postcards"""
        body: Dict[str, Any] = {
            "id": postcard_id or f"psc_{uuid4().hex[:20]}",
            "url": "https://lob-assets.example.com/psc_preview.pdf",
            "expected_delivery_date": "2026-10-24",
            "date_created": "2026-10-19T16:00:00.000Z",
            "carrier": "USPS",
            "to": {
                "name": "JANE DOE",
                "address_line1": "185 BERRY ST STE 6100",
                "address_city": "SAN FRANCISCO",
                "address_state": "CA",
                "address_zip": "94107-1741",
            },
            "tracking_events": [],
        }
        if price is not None:
            body["price"] = price
        body.update(overrides)
        return body

    @staticmethod
    def make_tracking_events(*names: str) -> List[Dict[str, Any]]:
        return [{"name": name, "type": "postcard.tracking"} for name in names]


__all__ = ["PostcardTestDataFactory"]
