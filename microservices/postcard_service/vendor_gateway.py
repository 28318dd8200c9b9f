"""
Vendor Gateway

Every call to the mail vendor goes through here. Calls are wrapped by
`audited_call`, which writes one redacted VendorApiLog row per call whether
it succeeds or fails.
"""

import functools
import html
import logging
import time
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urljoin, urlparse

from .cost_estimator import price_to_cents, unit_cost
from .models import (
    Address,
    AddressVerification,
    Campaign,
    MailPiece,
    Recipient,
    VendorApiLog,
    VendorObjectType,
)
from .protocols import (
    ArtworkUnavailableError,
    LobClientProtocol,
    PostcardRepositoryProtocol,
    TemplateRendererProtocol,
    VendorError,
)
from .redaction import redact_request, redact_response

logger = logging.getLogger(__name__)

LOCAL_HOSTS = frozenset({"localhost", "127.0.0.1", "0.0.0.0", "::1"})

DELIVERABLE_VERDICTS = frozenset({
    "deliverable",
    "deliverable_unnecessary_unit",
    "deliverable_incorrect_unit",
    "deliverable_missing_unit",
})


@dataclass
class AuditContext:
    """Tenant and campaign the audit row is attributed to"""
    organization_id: Optional[str] = None
    campaign_id: Optional[str] = None


def audited_call(endpoint: str, method: str, object_type: VendorObjectType):
    """
    Record a VendorApiLog row around a gateway call.

    The wrapped coroutine takes (self, payload, context, ...) where payload is
    the request body (dict) or the object id being fetched (str). A failed
    call is logged and re-raised unchanged.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(self, payload, context: AuditContext, *args, **kwargs):
            resolved_endpoint = endpoint.format(payload) if isinstance(payload, str) else endpoint
            request_body = payload if isinstance(payload, dict) else None
            started = time.perf_counter()
            try:
                response = await func(self, payload, context, *args, **kwargs)
            except Exception as e:
                await self._write_log(VendorApiLog(
                    organization_id=context.organization_id,
                    campaign_id=context.campaign_id,
                    endpoint=resolved_endpoint,
                    method=method,
                    request_body=redact_request(request_body),
                    status_code=getattr(e, "status_code", None),
                    success=False,
                    error_message=str(e)[:1000],
                    duration_ms=int((time.perf_counter() - started) * 1000),
                    vendor_object_type=object_type,
                ))
                raise

            await self._write_log(VendorApiLog(
                organization_id=context.organization_id,
                campaign_id=context.campaign_id,
                endpoint=resolved_endpoint,
                method=method,
                request_body=redact_request(request_body),
                response_body=redact_response(response),
                status_code=200,
                success=True,
                duration_ms=int((time.perf_counter() - started) * 1000),
                cost_cents=(
                    price_to_cents(response.get("price"))
                    if object_type == VendorObjectType.POSTCARD else None
                ),
                vendor_object_id=response.get("id"),
                vendor_object_type=object_type,
            ))
            return response

        return wrapper

    return decorator


def lob_address(name: Optional[str], address: Address, company: Optional[str] = None) -> Dict[str, Any]:
    """Vendor address object; None fields are dropped"""
    data = {
        "name": name,
        "company": company,
        "address_line1": address.address_line1,
        "address_line2": address.address_line2,
        "address_city": address.city,
        "address_state": address.state,
        "address_zip": address.zip_code,
        "address_country": address.country,
    }
    return {k: v for k, v in data.items() if v}


def message_html(side: str, message: Optional[str]) -> str:
    """Minimal printable HTML for a plain-text front or back message"""
    if side == "front":
        return f"<html><body><h1>{html.escape(message or 'Hello!')}</h1></body></html>"
    return f"<html><body><p>{html.escape(message or 'Thank you!')}</p></body></html>"


def vendor_status(body: Dict[str, Any]) -> Optional[str]:
    """Current vendor status: explicit status, else the latest tracking event"""
    if body.get("status"):
        return str(body["status"])
    events = body.get("tracking_events") or []
    if events and isinstance(events[-1], dict):
        return events[-1].get("name") or events[-1].get("type")
    return None


def _parse_date(value: Any) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _parse_datetime(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def parse_mail_piece(body: Dict[str, Any], fallback_cents: Optional[int] = None) -> MailPiece:
    return MailPiece(
        id=body["id"],
        url=body.get("url"),
        status=vendor_status(body),
        expected_delivery_date=_parse_date(body.get("expected_delivery_date")),
        date_created=_parse_datetime(body.get("date_created")),
        price_cents=price_to_cents(body.get("price"), fallback_cents),
        carrier=body.get("carrier"),
        raw=body,
    )


class VendorGateway:
    """Audited, redacting facade over the mail vendor client"""

    def __init__(
        self,
        lob_client: LobClientProtocol,
        repository: PostcardRepositoryProtocol,
        template_renderer: Optional[TemplateRendererProtocol] = None,
        public_app_url: Optional[str] = None,
    ):
        self.lob_client = lob_client
        self.repository = repository
        self.template_renderer = template_renderer
        self.public_app_url = public_app_url

    async def _write_log(self, log: VendorApiLog) -> None:
        # Audit failure must not turn a successful send into a failed one
        try:
            await self.repository.save_vendor_log(log)
        except Exception as e:
            logger.error(f"Failed to write vendor API log for {log.method} {log.endpoint}: {e}")

    # ====================
    # Artwork
    # ====================

    def resolve_asset_url(self, url: str) -> str:
        """
        Absolute, publicly reachable URL for a stored PDF asset.

        Raises:
            ArtworkUnavailableError: if the vendor could not fetch the asset
        """
        if not urlparse(url).scheme:
            if not self.public_app_url:
                raise ArtworkUnavailableError(
                    "PDF artwork requires a publicly accessible URL. Set PUBLIC_APP_URL "
                    "to a public base URL (for example a tunnel to this service), or use "
                    "HTML templates instead."
                )
            url = urljoin(self.public_app_url.rstrip("/") + "/", url.lstrip("/"))

        host = (urlparse(url).hostname or "").lower()
        if host in LOCAL_HOSTS:
            raise ArtworkUnavailableError(
                f"PDF artwork URL points at {host}, which the mail vendor cannot reach. "
                "Set PUBLIC_APP_URL to a public base URL, or use HTML templates instead."
            )
        return url

    def ensure_artwork_available(self, campaign: Campaign) -> None:
        """Fail fast before any vendor call if artwork cannot be resolved"""
        if campaign.has_pdf_artwork:
            self.resolve_asset_url(campaign.front_pdf_url)
            self.resolve_asset_url(campaign.back_pdf_url)
        elif campaign.template_id and self.template_renderer is None:
            raise ArtworkUnavailableError(
                f"Campaign {campaign.campaign_id} uses template {campaign.template_id} "
                "but no template renderer is configured"
            )
        elif not campaign.has_artwork:
            raise ArtworkUnavailableError(f"Campaign {campaign.campaign_id} has no artwork")

    @staticmethod
    def contact_data(recipient: Recipient) -> Dict[str, Any]:
        return {
            "first_name": recipient.first_name,
            "last_name": recipient.last_name,
            "full_name": recipient.full_name,
            "company": recipient.company,
            "email": recipient.email,
            "phone": recipient.phone,
        }

    async def resolve_artwork(self, recipient: Recipient, campaign: Campaign) -> Tuple[str, str]:
        """(front, back) as URLs or rendered HTML"""
        if campaign.has_pdf_artwork:
            return (
                self.resolve_asset_url(campaign.front_pdf_url),
                self.resolve_asset_url(campaign.back_pdf_url),
            )

        if campaign.template_id:
            if self.template_renderer is None:
                raise ArtworkUnavailableError("No template renderer is configured")
            merge_fields = {**campaign.template_data, **self.contact_data(recipient)}
            front = await self.template_renderer.render(campaign.template_id, "front", merge_fields)
            back = await self.template_renderer.render(campaign.template_id, "back", merge_fields)
            return front, back

        return (
            message_html("front", campaign.front_message),
            message_html("back", campaign.back_message),
        )

    @staticmethod
    def merge_variables(recipient: Recipient, campaign: Campaign) -> Dict[str, Any]:
        variables = {
            **campaign.merge_variables,
            "first_name": recipient.first_name,
            "last_name": recipient.last_name,
            "full_name": recipient.full_name,
            "company": recipient.company,
        }
        return {k: v for k, v in variables.items() if v is not None}

    # ====================
    # Vendor operations
    # ====================

    async def build_postcard_payload(
        self, recipient: Recipient, campaign: Campaign, from_address: Dict[str, Any]
    ) -> Dict[str, Any]:
        front, back = await self.resolve_artwork(recipient, campaign)
        return {
            "description": f"Campaign: {campaign.name} - {recipient.full_name}",
            "to": lob_address(recipient.full_name, recipient.address, recipient.company),
            "from": from_address,
            "front": front,
            "back": back,
            "size": campaign.size.value,
            "mail_type": campaign.mail_class.value,
            "use_type": "marketing",
            "merge_variables": self.merge_variables(recipient, campaign),
            "metadata": {
                "campaign_id": campaign.campaign_id,
                "recipient_id": recipient.recipient_id,
                "tenant_id": campaign.organization_id,
            },
        }

    @audited_call("/postcards", "POST", VendorObjectType.POSTCARD)
    async def _create_postcard(
        self, payload: Dict[str, Any], context: AuditContext, idempotency_key: Optional[str] = None
    ) -> Dict[str, Any]:
        return await self.lob_client.create_postcard(payload, idempotency_key=idempotency_key)

    @audited_call("/postcards/{}", "GET", VendorObjectType.POSTCARD)
    async def _get_postcard(self, postcard_id: str, context: AuditContext) -> Dict[str, Any]:
        return await self.lob_client.get_postcard(postcard_id)

    @audited_call("/us_verifications", "POST", VendorObjectType.VERIFICATION)
    async def _verify(self, payload: Dict[str, Any], context: AuditContext) -> Dict[str, Any]:
        return await self.lob_client.verify_us_address(payload)

    async def create_mail_piece(
        self, recipient: Recipient, campaign: Campaign, from_address: Dict[str, Any]
    ) -> MailPiece:
        """
        Submit one postcard.

        The idempotency key is derived from the recipient id and its attempt
        counter, so replaying the same attempt cannot create a second piece.
        """
        payload = await self.build_postcard_payload(recipient, campaign, from_address)
        body = await self._create_postcard(
            payload,
            AuditContext(campaign.organization_id, campaign.campaign_id),
            idempotency_key=recipient.idempotency_key,
        )
        if not body.get("id"):
            raise VendorError("Vendor response did not include a postcard id")
        return parse_mail_piece(body, fallback_cents=unit_cost(campaign.mail_class, campaign.size))

    async def get_mail_piece(
        self, vendor_object_id: str, context: Optional[AuditContext] = None
    ) -> MailPiece:
        body = await self._get_postcard(vendor_object_id, context or AuditContext())
        return parse_mail_piece(body)

    async def verify_address(self, recipient: Recipient) -> AddressVerification:
        a = recipient.address
        payload = {
            "primary_line": a.address_line1,
            "secondary_line": a.address_line2,
            "city": a.city,
            "state": a.state,
            "zip_code": a.zip_code,
        }
        payload = {k: v for k, v in payload.items() if v}
        body = await self._verify(
            payload, AuditContext(recipient.organization_id, recipient.campaign_id)
        )

        deliverability = body.get("deliverability")
        deliverable = deliverability in DELIVERABLE_VERDICTS
        corrected = None
        components = body.get("components") or {}
        if deliverable and body.get("primary_line") and components.get("zip_code"):
            zip_code = components["zip_code"]
            if components.get("zip_code_plus_4"):
                zip_code = f"{zip_code}-{components['zip_code_plus_4']}"
            corrected = Address(
                address_line1=body["primary_line"],
                address_line2=body.get("secondary_line") or None,
                city=components.get("city") or a.city,
                state=components.get("state") or a.state,
                zip_code=zip_code,
            )
        return AddressVerification(
            deliverable=deliverable,
            deliverability=deliverability,
            corrected_address=corrected,
        )


__all__ = [
    "AuditContext",
    "audited_call",
    "lob_address",
    "message_html",
    "vendor_status",
    "parse_mail_piece",
    "VendorGateway",
]
