#!/usr/bin/env python3
"""
Core Module for Microservices Architecture

Shared infrastructure components for the microservices in this repository.

COMPONENTS:
    - config/: Dataclass configuration loaded from environment files
    - config_manager.py: Per-service configuration and endpoint discovery
    - postgres_client.py: asyncpg pool wrapper
    - nats_client.py: NATS JetStream event bus

USAGE:
    from core.config_manager import ConfigManager

    config = ConfigManager("postcard_service")
    host, port = config.discover_service(
        service_name="postgres_service",
        default_host="localhost",
        default_port=5432,
        env_host_key="POSTGRES_HOST",
        env_port_key="POSTGRES_PORT",
    )
"""

from .config_manager import ConfigManager, Environment

__all__ = [
    "ConfigManager",
    "Environment",
]

__version__ = "2.1.0"
