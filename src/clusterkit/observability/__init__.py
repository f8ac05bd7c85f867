"""Observability module for structured logging."""

from .logging import (
    ClusterContext,
    cluster_id_var,
    context_name_var,
    external_call,
    get_logger,
    setup_logging,
)

__all__ = [
    # Setup
    "setup_logging",
    "get_logger",
    # Context
    "ClusterContext",
    "cluster_id_var",
    "context_name_var",
    # Logging helpers
    "external_call",
]
