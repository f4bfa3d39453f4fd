"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

import logging

from pydantic_settings import BaseSettings
from typing import Optional

from .logging_config import setup_logging
from .storage import StorageInterface, InMemoryStorage, SQLiteStorage


class WorkflowEngineConfig(BaseSettings):
    """Workflow engine configuration"""

    # Storage configuration
    storage_backend: str = "memory"  # memory or sqlite
    database_path: str = "talent_workflows.db"
    restore_on_start: bool = True

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    # Action dispatch configuration
    action_dispatch_mode: str = "background"  # background or sync
    action_timeout_seconds: float = 10.0
    action_workers: int = 4
    webhook_timeout_seconds: float = 5.0

    # Identity used for engine-initiated history entries
    system_actor_id: str = "system"
    system_actor_name: str = "System"

    # Feature flags
    enable_audit_logging: bool = True

    class Config:
        env_prefix = "TALENT_WF_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = WorkflowEngineConfig()


def get_config() -> WorkflowEngineConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> WorkflowEngineConfig:
    """Reload configuration from environment"""
    global config
    config = WorkflowEngineConfig()
    return config


def create_storage(settings: Optional[WorkflowEngineConfig] = None) -> StorageInterface:
    """Build the storage backend named by the configuration"""
    settings = settings or get_config()
    backend = settings.storage_backend.lower()

    if backend == "memory":
        return InMemoryStorage()
    if backend == "sqlite":
        return SQLiteStorage(settings.database_path)

    raise ValueError(f"Unknown storage backend: {settings.storage_backend}")


def configure_logging(settings: Optional[WorkflowEngineConfig] = None) -> logging.Logger:
    """Set up the package logger from the configured level and format"""
    settings = settings or get_config()
    return setup_logging(settings.log_level, log_format=settings.log_format)
