#!/usr/bin/env python3
"""Modular configuration system

Configuration hierarchy:
- infra_config: Infrastructure services (PostgreSQL, NATS)
- postcard_config: Postcard service settings (mail vendor, dispatch, reconciliation)
- logging_config: Logging configuration
"""
import os
from dotenv import load_dotenv
from .logging_config import LoggingConfig, setup_logging
from .infra_config import InfraConfig
from .postcard_config import PostcardConfig

# Load environment file based on ENV
env = os.getenv("ENV") or os.getenv("ENVIRONMENT", "development")
env_files = {
    "development": "deployment/environments/dev.env",
    "dev": "deployment/environments/dev.env",
    "testing": "deployment/environments/test.env",
    "test": "deployment/environments/test.env",
    "staging": "deployment/environments/staging.env",
    "production": "deployment/environments/production.env",
}
env_file = env_files.get(env, "deployment/environments/dev.env")
load_dotenv(env_file, override=False)

# Create global settings instance
settings = PostcardConfig.from_env()

def get_settings() -> PostcardConfig:
    """Get global settings instance"""
    return settings

def reload_settings() -> PostcardConfig:
    """Reload settings from environment"""
    global settings
    settings = PostcardConfig.from_env()
    return settings

__all__ = [
    'PostcardConfig',
    'get_settings',
    'reload_settings',
    'settings',
    'LoggingConfig',
    'setup_logging',
    'InfraConfig',
]
