"""Shared data models for the credential helper.

All models follow these conventions:
- Timestamps: ISO 8601 format with timezone (UTC preferred)
- IDs: UUID v4
- Field names: lowercase snake_case
- Binary material: standard base64 in JSON
"""

# Base
from .base import Base64Data, ClusterKitBaseModel

# Authentication
from .auth import (
    AuthDescriptor,
    AuthSource,
    ExecEnvVar,
    ExecInteractiveMode,
    ExecPluginConfig,
    ResolvedAuth,
)

# Cluster domain
from .cluster import (
    ClusterEndpoint,
    DeviceIdentity,
    ResolvedCluster,
    StorageBackend,
)

# Descriptors
from .descriptor import ContextDescriptor, DescriptorFile

# Exec credential wire types
from .exec_credential import (
    EXEC_CREDENTIAL_KIND,
    ExecCredential,
    ExecCredentialCluster,
    ExecCredentialSpec,
    ExecCredentialStatus,
)

__all__ = [
    # Base
    "Base64Data",
    "ClusterKitBaseModel",
    # Authentication
    "AuthDescriptor",
    "AuthSource",
    "ExecEnvVar",
    "ExecInteractiveMode",
    "ExecPluginConfig",
    "ResolvedAuth",
    # Cluster
    "ClusterEndpoint",
    "DeviceIdentity",
    "ResolvedCluster",
    "StorageBackend",
    # Descriptors
    "ContextDescriptor",
    "DescriptorFile",
    # Exec credential
    "EXEC_CREDENTIAL_KIND",
    "ExecCredential",
    "ExecCredentialCluster",
    "ExecCredentialSpec",
    "ExecCredentialStatus",
]
