#!/usr/bin/env python3
"""Postcard service configuration

Mail vendor credentials, dispatch pacing and reconciliation schedule.
"""
import os
from dataclasses import dataclass
from typing import Optional

def _bool(val: str) -> bool:
    return val.lower() == "true"

def _int(val: str, default: int) -> int:
    try:
        return int(val) if val else default
    except ValueError:
        return default

def _float(val: str, default: float) -> float:
    try:
        return float(val) if val else default
    except ValueError:
        return default


@dataclass
class PostcardConfig:
    """Postcard service settings"""

    # ===========================================
    # Service
    # ===========================================
    service_name: str = "postcard_service"
    service_port: int = 8290
    environment: str = "development"

    # ===========================================
    # Mail vendor (Lob)
    # ===========================================
    lob_api_key: Optional[str] = None
    lob_base_url: str = "https://api.lob.com/v1"
    vendor_timeout_seconds: float = 30.0
    vendor_max_retries: int = 3

    # Public base URL the vendor uses to fetch PDF artwork
    public_app_url: Optional[str] = None

    # ===========================================
    # Dispatch / reconciliation
    # ===========================================
    dispatch_delay_seconds: float = 0.1
    reconcile_enabled: bool = True
    reconcile_interval_seconds: int = 3600
    reconcile_batch_size: int = 500

    # local: in-process asyncio tasks; task_service: external scheduler callbacks
    task_backend: str = "local"

    # ===========================================
    # Collaborators
    # ===========================================
    billing_enabled: bool = True
    nats_enabled: bool = True

    @classmethod
    def from_env(cls) -> 'PostcardConfig':
        """Load postcard config from environment"""
        return cls(
            service_name=os.getenv("SERVICE_NAME", "postcard_service"),
            service_port=_int(os.getenv("SERVICE_PORT", "8290"), 8290),
            environment=os.getenv("ENV") or os.getenv("ENVIRONMENT", "development"),
            lob_api_key=os.getenv("LOB_API_KEY"),
            lob_base_url=os.getenv("LOB_BASE_URL", "https://api.lob.com/v1"),
            vendor_timeout_seconds=_float(os.getenv("VENDOR_TIMEOUT_SECONDS", "30"), 30.0),
            vendor_max_retries=_int(os.getenv("VENDOR_MAX_RETRIES", "3"), 3),
            public_app_url=os.getenv("PUBLIC_APP_URL") or os.getenv("APP_URL"),
            dispatch_delay_seconds=_float(os.getenv("DISPATCH_DELAY_SECONDS", "0.1"), 0.1),
            reconcile_enabled=_bool(os.getenv("RECONCILE_ENABLED", "true")),
            reconcile_interval_seconds=_int(os.getenv("RECONCILE_INTERVAL_SECONDS", "3600"), 3600),
            reconcile_batch_size=_int(os.getenv("RECONCILE_BATCH_SIZE", "500"), 500),
            task_backend=os.getenv("TASK_BACKEND", "local"),
            billing_enabled=_bool(os.getenv("BILLING_ENABLED", "true")),
            nats_enabled=_bool(os.getenv("NATS_ENABLED", "true")),
        )

    @property
    def is_development(self) -> bool:
        return self.environment in ("development", "dev")
