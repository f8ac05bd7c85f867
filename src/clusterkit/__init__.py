"""Kube Credential Helper shared package.

This package contains shared components used by the helper service:
- models: Pydantic data models and exec-credential wire types
- config: Configuration management
- observability: Structured logging
- redis_client: Redis client wrapper for the synchronized store
"""

__version__ = "0.1.0"
