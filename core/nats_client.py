"""
NATS JetStream Client for Python Microservices

Thin event bus over nats-py. Events are published to JetStream subjects
named after the event type, in a stream per subject prefix
(postcard.* -> postcard-stream).
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Set, TYPE_CHECKING

import nats
from nats.js.errors import BadRequestError

if TYPE_CHECKING:
    from core.config_manager import ConfigManager

logger = logging.getLogger(__name__)


class DecimalEncoder(json.JSONEncoder):
    """Custom JSON encoder that handles Decimal types"""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return float(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)


class EventType(Enum):
    """Event types published by the postcard service"""

    CAMPAIGN_CREATED = "postcard.campaign.created"
    CAMPAIGN_UPDATED = "postcard.campaign.updated"
    CAMPAIGN_DELETED = "postcard.campaign.deleted"
    CAMPAIGN_SCHEDULED = "postcard.campaign.scheduled"
    CAMPAIGN_UNSCHEDULED = "postcard.campaign.unscheduled"
    CAMPAIGN_CANCELLED = "postcard.campaign.cancelled"
    CAMPAIGN_SEND_REQUESTED = "postcard.campaign.send_requested"
    CAMPAIGN_COMPLETED = "postcard.campaign.completed"
    CAMPAIGN_FAILED = "postcard.campaign.failed"
    CAMPAIGN_CHARGED = "postcard.campaign.charged"

    RECIPIENT_SENT = "postcard.recipient.sent"
    RECIPIENT_FAILED = "postcard.recipient.failed"
    RECIPIENT_STATUS_CHANGED = "postcard.recipient.status_changed"
    RECIPIENT_RESET = "postcard.recipient.reset"

    INTEGRITY_VIOLATION = "postcard.integrity.violation"


class ServiceSource(Enum):
    POSTCARD_SERVICE = "postcard_service"


class Event:
    """Event model"""

    def __init__(
        self,
        event_type: EventType,
        source: ServiceSource,
        data: Dict[str, Any],
        subject: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ):
        self.id = str(uuid.uuid4())
        self.type = event_type.value
        self.source = source.value
        self.data = data
        self.subject = subject
        self.timestamp = datetime.now(timezone.utc).isoformat()
        self.metadata = metadata or {}
        self.version = "1.0.0"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "source": self.source,
            "subject": self.subject,
            "timestamp": self.timestamp,
            "data": self.data,
            "metadata": self.metadata,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        event = cls.__new__(cls)
        event.id = data.get("id")
        event.type = data.get("type")
        event.source = data.get("source")
        event.subject = data.get("subject")
        event.timestamp = data.get("timestamp")
        event.data = data.get("data", {})
        event.metadata = data.get("metadata", {})
        event.version = data.get("version", "1.0.0")
        return event


class NATSEventBus:
    """NATS JetStream event bus"""

    def __init__(
        self,
        service_name: str,
        config: Optional["ConfigManager"] = None,
        url: Optional[str] = None,
    ):
        from core.config_manager import ConfigManager

        self.service_name = service_name

        if config is None:
            config = ConfigManager(service_name)

        host, port = config.discover_service(
            service_name='nats_service',
            default_host='localhost',
            default_port=4222,
            env_host_key='NATS_HOST',
            env_port_key='NATS_PORT'
        )
        self.url = url or config.get("NATS_URL") or f"nats://{host}:{port}"

        self._nc = None
        self._js = None
        self._streams: Set[str] = set()

        logger.info(f"NATS EventBus initialized: {self.url}")

    async def connect(self):
        """Connect to NATS and open a JetStream context"""
        try:
            self._nc = await nats.connect(servers=[self.url], name=self.service_name)
            self._js = self._nc.jetstream()
            logger.info(f"Connected to NATS as {self.service_name}")
        except Exception as e:
            logger.error(f"Failed to connect to NATS: {e}")
            raise

    async def _ensure_stream(self, event_type: str) -> str:
        prefix = event_type.split('.')[0]
        stream_name = f"{prefix}-stream"
        if stream_name in self._streams:
            return stream_name
        try:
            await self._js.add_stream(name=stream_name, subjects=[f"{prefix}.>"])
        except BadRequestError as e:
            # Stream already exists with a compatible config
            logger.debug(f"Stream creation note: {e}")
        self._streams.add(stream_name)
        return stream_name

    async def publish_event(self, event: Event) -> bool:
        """
        Publish an event to JetStream.

        Returns False instead of raising; event delivery is best effort for
        callers.
        """
        if not self.is_connected:
            logger.error("Not connected to NATS")
            return False

        try:
            stream_name = await self._ensure_stream(event.type)
            data = json.dumps(event.to_dict(), cls=DecimalEncoder).encode()
            ack = await self._js.publish(event.type, data)
            logger.info(f"Published event {event.type} [{event.id}] to stream {stream_name}, seq={ack.seq}")
            return True
        except Exception as e:
            logger.error(f"Error publishing event {event.id}: {e}")
            return False

    async def close(self):
        """Drain and close the connection"""
        if self._nc is not None:
            try:
                await self._nc.drain()
            except Exception as e:
                logger.warning(f"NATS drain failed: {e}")
            self._nc = None
            self._js = None
        logger.info("Disconnected from NATS")

    @property
    def is_connected(self) -> bool:
        """Check if connected to NATS"""
        return self._nc is not None and self._nc.is_connected


def create_event(
    event_type: EventType,
    source: ServiceSource,
    data: Dict[str, Any],
    subject: Optional[str] = None,
    metadata: Optional[Dict[str, str]] = None,
) -> Event:
    """Create an Event instance"""
    return Event(
        event_type=event_type,
        source=source,
        data=data,
        subject=subject,
        metadata=metadata,
    )


__all__: List[str] = [
    "EventType",
    "ServiceSource",
    "Event",
    "NATSEventBus",
    "create_event",
]
