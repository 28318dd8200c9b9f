"""
Postcard Service Factory

Factory for creating postcard service instances with proper dependency injection.
"""

import logging
from typing import Optional, Union

from core.config import InfraConfig, PostcardConfig, get_settings
from core.config_manager import ConfigManager
from core.nats_client import NATSEventBus
from core.postgres_client import PostgresClientWrapper

from .campaign_service import PostcardCampaignService
from .clients import BillingClient, LobClient, NotificationClient, TaskClient, TemplateClient
from .dispatcher import DispatchOrchestrator
from .postcard_repository import PostcardRepository
from .reconciler import StatusReconciler
from .task_queue import AsyncioTaskQueue, PeriodicRunner, TaskServiceQueue
from .vendor_gateway import VendorGateway

logger = logging.getLogger(__name__)


class PostcardServiceFactory:
    """Factory for creating postcard service components"""

    def __init__(
        self,
        config: Optional[ConfigManager] = None,
        settings: Optional[PostcardConfig] = None,
        infra: Optional[InfraConfig] = None,
    ):
        self.config = config or ConfigManager("postcard_service")
        self.settings = settings or get_settings()
        self.infra = infra or InfraConfig.from_env()
        self._repository: Optional[PostcardRepository] = None
        self._service: Optional[PostcardCampaignService] = None
        self._dispatcher: Optional[DispatchOrchestrator] = None
        self._reconciler: Optional[StatusReconciler] = None
        self._gateway: Optional[VendorGateway] = None
        self._nats_client: Optional[NATSEventBus] = None
        self._lob_client: Optional[LobClient] = None
        self._billing_client: Optional[BillingClient] = None
        self._task_client: Optional[TaskClient] = None
        self._task_queue: Optional[Union[AsyncioTaskQueue, TaskServiceQueue]] = None
        self._reconcile_runner: Optional[PeriodicRunner] = None

    async def initialize(self, run_migrations: Optional[bool] = None) -> None:
        """Initialize all components"""
        logger.info("Initializing Postcard Service components...")
        settings = self.settings

        # Initialize repository
        db = PostgresClientWrapper(
            "postcard_service",
            host=self.infra.postgres_host,
            port=self.infra.postgres_port,
            database=self.infra.postgres_db,
            username=self.infra.postgres_user,
            password=self.infra.postgres_password,
            min_size=self.infra.postgres_pool_min,
            max_size=self.infra.postgres_pool_max,
        )
        self._repository = PostcardRepository(self.config, db=db)
        if run_migrations is None:
            run_migrations = settings.is_development
        await self._repository.initialize(run_migrations=run_migrations)

        # Initialize NATS client
        if settings.nats_enabled:
            try:
                self._nats_client = NATSEventBus(
                    service_name="postcard_service",
                    config=self.config,
                    url=self.infra.nats_url,
                )
                await self._nats_client.connect()
                logger.info("NATS client connected")
            except Exception as e:
                logger.warning(f"NATS client initialization failed: {e}")
                self._nats_client = None

        # Initialize vendor and service clients
        self._lob_client = LobClient(
            api_key=settings.lob_api_key,
            base_url=settings.lob_base_url,
            timeout=settings.vendor_timeout_seconds,
            max_retries=settings.vendor_max_retries,
        )
        if not self._lob_client.is_configured:
            logger.warning("LOB_API_KEY is not set; vendor calls will fail until it is configured")

        template_client = TemplateClient(self.config)
        notification_client = NotificationClient(self.config)
        self._task_client = TaskClient(self.config)
        if settings.billing_enabled:
            self._billing_client = BillingClient(self.config)

        self._gateway = VendorGateway(
            lob_client=self._lob_client,
            repository=self._repository,
            template_renderer=template_client,
            public_app_url=settings.public_app_url,
        )

        if settings.task_backend == "task_service":
            self._task_queue = TaskServiceQueue(self._task_client)
        else:
            self._task_queue = AsyncioTaskQueue()

        # Initialize main service
        self._service = PostcardCampaignService(
            repository=self._repository,
            event_bus=self._nats_client,
            task_queue=self._task_queue,
            billing_client=self._billing_client,
            gateway=self._gateway,
            template_renderer=template_client,
        )

        self._dispatcher = DispatchOrchestrator(
            repository=self._repository,
            campaign_service=self._service,
            gateway=self._gateway,
            billing_client=self._billing_client,
            notification_client=notification_client,
            event_bus=self._nats_client,
            delay_seconds=settings.dispatch_delay_seconds,
        )
        self._reconciler = StatusReconciler(
            repository=self._repository,
            gateway=self._gateway,
            campaign_service=self._service,
            event_bus=self._nats_client,
            batch_size=settings.reconcile_batch_size,
            delay_seconds=settings.dispatch_delay_seconds,
        )

        if isinstance(self._task_queue, AsyncioTaskQueue):
            self._task_queue.bind(self._dispatcher.dispatch)
            if settings.reconcile_enabled:
                self._reconcile_runner = PeriodicRunner(
                    "postcard-reconcile",
                    settings.reconcile_interval_seconds,
                    self._reconciler.reconcile,
                )
                self._reconcile_runner.start()

        logger.info(f"Postcard Service components initialized (task backend: {settings.task_backend})")

    async def close(self) -> None:
        """Close all components"""
        logger.info("Closing Postcard Service components...")

        if self._reconcile_runner:
            await self._reconcile_runner.stop()

        if self._task_queue:
            await self._task_queue.close()

        if self._nats_client:
            await self._nats_client.close()

        if self._repository:
            await self._repository.close()

        logger.info("Postcard Service components closed")

    @property
    def repository(self) -> PostcardRepository:
        """Get postcard repository"""
        if not self._repository:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._repository

    @property
    def service(self) -> PostcardCampaignService:
        """Get campaign service"""
        if not self._service:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._service

    @property
    def dispatcher(self) -> DispatchOrchestrator:
        if not self._dispatcher:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._dispatcher

    @property
    def reconciler(self) -> StatusReconciler:
        if not self._reconciler:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._reconciler

    @property
    def task_queue(self) -> Union[AsyncioTaskQueue, TaskServiceQueue]:
        if not self._task_queue:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._task_queue

    @property
    def lob_client(self) -> LobClient:
        if not self._lob_client:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._lob_client

    @property
    def nats_client(self) -> Optional[NATSEventBus]:
        """Get NATS client"""
        return self._nats_client


# Global factory instance
_factory: Optional[PostcardServiceFactory] = None


async def get_factory() -> PostcardServiceFactory:
    """Get or create factory instance"""
    global _factory
    if _factory is None:
        _factory = PostcardServiceFactory()
        await _factory.initialize()
    return _factory


async def close_factory() -> None:
    """Close factory instance"""
    global _factory
    if _factory:
        await _factory.close()
        _factory = None


__all__ = [
    "PostcardServiceFactory",
    "get_factory",
    "close_factory",
]
