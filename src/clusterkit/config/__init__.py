"""Configuration management module.

This module provides:
- Environment-based configuration with validation
- Service-specific settings classes
- Cached settings access via get_settings()
"""

from .settings import (
    Environment,
    ExecSettings,
    HelperSettings,
    LogFormat,
    LogLevel,
    RedisSettings,
    Settings,
    StorageSettings,
    get_settings,
)

__all__ = [
    # Main settings
    "Settings",
    "get_settings",
    # Enums
    "Environment",
    "LogLevel",
    "LogFormat",
    # Component settings
    "RedisSettings",
    "StorageSettings",
    "ExecSettings",
    # Service-specific settings
    "HelperSettings",
]
