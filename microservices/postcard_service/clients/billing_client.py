"""
Billing Service Client

Client for the billing ledger: balance checks and per-campaign charges.
"""

import logging
from typing import Optional

import httpx

from core.config_manager import ConfigManager

from ..models import Campaign, ChargeResult
from ..protocols import BillingError

logger = logging.getLogger(__name__)


class BillingClient:
    """Client for billing_service"""

    def __init__(
        self,
        config: Optional[ConfigManager] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if config is None:
            config = ConfigManager("postcard_service")

        host, port = config.discover_service(
            service_name='billing_service',
            default_host='localhost',
            default_port=8216,
            env_host_key='BILLING_SERVICE_HOST',
            env_port_key='BILLING_SERVICE_PORT'
        )
        self.base_url = f"http://{host}:{port}"
        self.timeout = 30.0
        self._transport = transport

    def _client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout or self.timeout, transport=self._transport)

    async def has_sufficient_balance(self, organization_id: str, amount_cents: int) -> bool:
        """
        Check that the organization's balance covers an amount.

        Raises:
            BillingError: if the ledger cannot be queried
        """
        try:
            async with self._client() as client:
                response = await client.get(
                    f"{self.base_url}/api/v1/billing/balance/{organization_id}"
                )
                response.raise_for_status()
                balance_cents = int(response.json().get("balance_cents", 0))
                return balance_cents >= amount_cents

        except httpx.HTTPStatusError as e:
            logger.error(f"Error checking balance for {organization_id}: {e.response.text}")
            raise BillingError(f"Balance check failed: HTTP {e.response.status_code}") from e

        except httpx.HTTPError as e:
            logger.error(f"Error checking balance for {organization_id}: {e}")
            raise BillingError(f"Balance check failed: {e}") from e

    async def charge_for_campaign(
        self, campaign: Campaign, amount_cents: int, actor: Optional[str] = None
    ) -> ChargeResult:
        """
        Debit the ledger for a campaign's actual cost.

        The campaign id is the idempotency key, so a repeated call for the
        same campaign is not charged twice by the ledger.
        """
        request_data = {
            "organization_id": campaign.organization_id,
            "amount_cents": amount_cents,
            "reference_type": "postcard_campaign",
            "reference_id": campaign.campaign_id,
            "idempotency_key": f"postcard-campaign-{campaign.campaign_id}",
            "description": f"Postcard campaign: {campaign.name}",
            "actor": actor or campaign.created_by or "system",
        }
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.base_url}/api/v1/billing/charges",
                    json=request_data,
                )
                response.raise_for_status()
                data = response.json()
                return ChargeResult(success=True, transaction_id=data.get("transaction_id"))

        except httpx.HTTPStatusError as e:
            logger.error(f"Error charging campaign {campaign.campaign_id}: {e.response.text}")
            return ChargeResult(success=False, error=f"HTTP {e.response.status_code}")

        except httpx.HTTPError as e:
            logger.error(f"Error charging campaign {campaign.campaign_id}: {e}")
            return ChargeResult(success=False, error=str(e))

    async def health_check(self) -> bool:
        """Check if billing_service is healthy"""
        try:
            async with self._client(timeout=5.0) as client:
                response = await client.get(f"{self.base_url}/health")
                return response.status_code == 200
        except httpx.HTTPError:
            return False


__all__ = ["BillingClient"]
