#!/usr/bin/env python3
"""
Centralized configuration access for microservices.

Resolution order for service endpoints: explicit environment variables, then
the built-in default. Environment files are loaded by core.config on import.
"""

import logging
import os
from enum import Enum
from typing import Optional, Tuple

logger = logging.getLogger(__name__)


class Environment(Enum):
    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"

    @classmethod
    def current(cls) -> "Environment":
        value = (os.getenv("ENV") or os.getenv("ENVIRONMENT", "development")).lower()
        aliases = {"dev": "development", "test": "testing", "prod": "production"}
        value = aliases.get(value, value)
        try:
            return cls(value)
        except ValueError:
            logger.warning(f"Unknown environment '{value}', using development")
            return cls.DEVELOPMENT


class ConfigManager:
    """Per-service configuration and endpoint discovery"""

    def __init__(self, service_name: str):
        self.service_name = service_name
        self.environment = Environment.current()

    @property
    def is_development(self) -> bool:
        return self.environment == Environment.DEVELOPMENT

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = os.getenv(key)
        return value if value not in (None, "") else default

    def get_int(self, key: str, default: int) -> int:
        try:
            return int(self.get(key, str(default)))
        except (TypeError, ValueError):
            logger.warning(f"Invalid integer for {key}, using {default}")
            return default

    def get_float(self, key: str, default: float) -> float:
        try:
            return float(self.get(key, str(default)))
        except (TypeError, ValueError):
            logger.warning(f"Invalid number for {key}, using {default}")
            return default

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.get(key)
        if value is None:
            return default
        return value.lower() in ("true", "1", "yes")

    def discover_service(
        self,
        service_name: str,
        default_host: str,
        default_port: int,
        env_host_key: Optional[str] = None,
        env_port_key: Optional[str] = None,
    ) -> Tuple[str, int]:
        """
        Resolve host and port for a dependency.

        Returns:
            (host, port) from the environment, or the defaults
        """
        host = self.get(env_host_key, default_host) if env_host_key else default_host
        port = self.get_int(env_port_key, default_port) if env_port_key else default_port
        logger.debug(f"[{self.service_name}] {service_name} -> {host}:{port}")
        return host, port


__all__ = ["ConfigManager", "Environment"]
