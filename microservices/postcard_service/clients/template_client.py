"""
Template Service Client

Renders postcard artwork HTML for a template and a set of merge fields.
"""

import logging
import re
from typing import Any, Dict, Optional

import httpx

from core.config_manager import ConfigManager

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*(\w+(?:\.\w+)*)\s*\}\}")


def substitute_variables(template: str, data: Dict[str, Any]) -> str:
    """Replace {{name}} / {{a.b}} placeholders; unresolved ones become empty"""

    def replace_var(match):
        value: Any = data
        for part in match.group(1).split("."):
            if isinstance(value, dict) and part in value:
                value = value[part]
            else:
                return ""
        return "" if value is None else str(value)

    return PLACEHOLDER_PATTERN.sub(replace_var, template)


class TemplateClient:
    """Client for template_service"""

    def __init__(
        self,
        config: Optional[ConfigManager] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if config is None:
            config = ConfigManager("postcard_service")

        host, port = config.discover_service(
            service_name='template_service',
            default_host='localhost',
            default_port=8295,
            env_host_key='TEMPLATE_SERVICE_HOST',
            env_port_key='TEMPLATE_SERVICE_PORT'
        )
        self.base_url = f"http://{host}:{port}"
        self.timeout = 30.0
        self._transport = transport

    async def render(
        self, template_id: str, side: str, merge_fields: Dict[str, Any]
    ) -> str:
        """
        Render one side of a postcard template to HTML.

        Args:
            template_id: Template identifier
            side: "front" or "back"
            merge_fields: Personalization values

        Returns:
            Rendered HTML
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.base_url}/api/v1/templates/{template_id}/render",
                    json={"side": side, "data": merge_fields},
                )
                response.raise_for_status()
                return response.json()["html"]

        except httpx.HTTPStatusError as e:
            logger.error(f"Error rendering template {template_id} ({side}): {e.response.text}")
            raise

        except Exception as e:
            logger.error(f"Error rendering template {template_id} ({side}): {e}")
            raise


__all__ = ["TemplateClient", "substitute_variables", "PLACEHOLDER_PATTERN"]
