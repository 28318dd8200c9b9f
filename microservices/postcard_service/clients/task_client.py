"""
Task Service Client

Hands campaign dispatches to task_service. The task service runs each task
by calling back this service's internal dispatch endpoint, so the task
carries the callback route alongside the campaign reference.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel, Field

from core.config_manager import ConfigManager

logger = logging.getLogger(__name__)

DISPATCH_TASK_TYPE = "postcard.dispatch"
DISPATCH_CALLBACK_PATH = "/internal/postcards/dispatch/{campaign_id}"


class DispatchTaskPayload(BaseModel):
    """Payload task_service stores and replays for one campaign dispatch"""
    campaign_id: str = Field(..., min_length=1)
    organization_id: str = Field(..., min_length=1)
    callback_service: str = "postcard_service"
    callback_method: str = "POST"
    callback_path: str = ""

    def model_post_init(self, __context: Any) -> None:
        if not self.callback_path:
            self.callback_path = DISPATCH_CALLBACK_PATH.format(campaign_id=self.campaign_id)


class TaskClient:
    """Client for task_service"""

    def __init__(
        self,
        config: Optional[ConfigManager] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if config is None:
            config = ConfigManager("postcard_service")

        host, port = config.discover_service(
            service_name='task_service',
            default_host='localhost',
            default_port=8260,
            env_host_key='TASK_SERVICE_HOST',
            env_port_key='TASK_SERVICE_PORT'
        )
        self.base_url = f"http://{host}:{port}"
        self.timeout = 30.0
        self._transport = transport

    async def create_dispatch_task(
        self,
        campaign_id: str,
        organization_id: str,
        run_at: Optional[datetime] = None,
    ) -> str:
        """
        Queue one campaign dispatch.

        Args:
            campaign_id: Campaign to dispatch
            organization_id: Owning tenant
            run_at: When to run; now when omitted

        Returns:
            The task service's task id

        Raises:
            httpx.HTTPError: task_service rejected or could not be reached
            ValueError: the response carried no task id
        """
        payload = DispatchTaskPayload(campaign_id=campaign_id, organization_id=organization_id)
        request_data = {
            "task_type": DISPATCH_TASK_TYPE,
            "payload": payload.model_dump(),
            "scheduled_at": (run_at or datetime.now(timezone.utc)).isoformat(),
            "idempotency_key": f"postcard-dispatch-{campaign_id}",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.base_url}/api/v1/tasks",
                    json=request_data,
                )
                response.raise_for_status()
                data = response.json()

        except httpx.HTTPStatusError as e:
            logger.error(f"Error creating dispatch task for {campaign_id}: {e.response.text}")
            raise

        except httpx.HTTPError as e:
            logger.error(f"Error creating dispatch task for {campaign_id}: {e}")
            raise

        task_id = data.get("task_id") or data.get("id")
        if not task_id:
            raise ValueError(f"task_service returned no task id for campaign {campaign_id}")
        return task_id


__all__ = [
    "DISPATCH_TASK_TYPE",
    "DISPATCH_CALLBACK_PATH",
    "DispatchTaskPayload",
    "TaskClient",
]
