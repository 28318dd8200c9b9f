"""
Postcard Service Clients

Clients for the mail vendor and for other microservices.
"""

from .lob_client import LobClient
from .billing_client import BillingClient
from .template_client import TemplateClient, substitute_variables
from .notification_client import NotificationClient
from .task_client import TaskClient

__all__ = [
    "LobClient",
    "BillingClient",
    "TemplateClient",
    "substitute_variables",
    "NotificationClient",
    "TaskClient",
]
