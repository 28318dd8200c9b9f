"""
Notification Service Client

Sends campaign result emails (sent / failed) to the campaign owner.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from core.config_manager import ConfigManager

from ..models import Campaign, CampaignStatus
from ..cost_estimator import format_cents

logger = logging.getLogger(__name__)


class NotificationClient:
    """Client for notification_service"""

    def __init__(
        self,
        config: Optional[ConfigManager] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if config is None:
            config = ConfigManager("postcard_service")

        host, port = config.discover_service(
            service_name='notification_service',
            default_host='localhost',
            default_port=8270,
            env_host_key='NOTIFICATION_SERVICE_HOST',
            env_port_key='NOTIFICATION_SERVICE_PORT'
        )
        self.base_url = f"http://{host}:{port}"
        self.timeout = 10.0
        self._transport = transport

    @staticmethod
    def build_content(
        campaign: Campaign, final_status: CampaignStatus, error: Optional[str] = None
    ) -> Dict[str, Any]:
        if final_status == CampaignStatus.FAILED:
            template = "postcard_campaign_failed"
            subject = f"Campaign failed: {campaign.name}"
        else:
            template = "postcard_campaign_sent"
            subject = f"Campaign sent: {campaign.name}"
        return {
            "template": template,
            "subject": subject,
            "variables": {
                "campaign_id": campaign.campaign_id,
                "campaign_name": campaign.name,
                "status": final_status.value,
                "recipient_count": campaign.recipient_count,
                "sent_count": campaign.sent_count,
                "failed_count": campaign.failed_count,
                "actual_cost": format_cents(campaign.actual_cost_cents),
                "error": error,
            },
        }

    async def notify_campaign_result(
        self,
        campaign: Campaign,
        final_status: CampaignStatus,
        error: Optional[str] = None,
    ) -> bool:
        """
        Fire-and-forget result email. Never raises.

        Returns:
            True if the notification service accepted the request
        """
        if not campaign.created_by:
            logger.debug(f"Campaign {campaign.campaign_id} has no owner, skipping notification")
            return False

        request_data = {
            "user_id": campaign.created_by,
            "organization_id": campaign.organization_id,
            "channel_type": "email",
            "content": self.build_content(campaign, final_status, error),
            "metadata": {"campaign_id": campaign.campaign_id, "source": "postcard_service"},
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.base_url}/api/v1/notifications",
                    json=request_data,
                )
                response.raise_for_status()
                return True

        except httpx.HTTPStatusError as e:
            logger.error(f"Error sending campaign notification: {e.response.text}")
            return False

        except Exception as e:
            logger.error(f"Error sending campaign notification: {e}")
            return False


__all__ = ["NotificationClient"]
