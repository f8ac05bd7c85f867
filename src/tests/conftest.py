"""Pytest configuration and shared fixtures."""

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from uuid import uuid4

import pytest

# Set test environment before importing settings
os.environ["ENV"] = "development"
os.environ["LOG_LEVEL"] = "DEBUG"
os.environ["LOG_FORMAT"] = "text"


@pytest.fixture
def sample_cluster_data() -> dict[str, Any]:
    """Sample persisted cluster record."""
    return {
        "id": str(uuid4()),
        "storage_backend": "local",
        "position": 0.1,
        "name": "dev-east",
        "endpoint": {
            "server": "https://api.dev-east.example.com:6443",
            "tls_server_name": "api.dev-east.example.com",
        },
        "auth": {"token": "sample-token"},
        "default_namespace": "default",
        "device_id": "device-1",
        "device_user": "alice",
        "kubeconfig_path": str(Path("/home/alice/.kube/config")),
        "context_name": "dev-east",
        "last_evaluation": datetime(2024, 1, 1, tzinfo=timezone.utc).isoformat(),
    }


# =============================================================================
# Markers
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (no external dependencies)")
    config.addinivalue_line(
        "markers", "integration: Integration tests (require external services)"
    )
    config.addinivalue_line("markers", "slow: Slow tests")
