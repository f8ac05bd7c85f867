"""Cluster domain models."""

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from uuid import UUID, uuid4

from pydantic import ConfigDict, Field, model_validator

from .auth import AuthDescriptor
from .base import Base64Data, ClusterKitBaseModel


class StorageBackend(str, Enum):
    """Secret store holding the live copy of a record."""

    LOCAL = "local"
    SYNCHRONIZED = "synchronized"

    @property
    def other(self) -> "StorageBackend":
        if self is StorageBackend.LOCAL:
            return StorageBackend.SYNCHRONIZED
        return StorageBackend.LOCAL


class ClusterEndpoint(ClusterKitBaseModel):
    """Cluster connection info (kubeconfig cluster entry).

    CA material is either a file path or inline bytes. Resolution replaces the
    path with the file contents, see ClusterEndpoint.with_ca_data().
    """

    model_config = ConfigDict(frozen=True)

    server: str = Field(description="Kubernetes API server URL")
    tls_server_name: str | None = None
    insecure_skip_tls_verify: bool = False
    proxy_url: str | None = None
    certificate_authority: str | None = Field(default=None, description="CA file path")
    certificate_authority_data: Base64Data | None = Field(default=None, description="CA PEM bytes")
    disable_compression: bool = False

    @model_validator(mode="after")
    def validate_ca_source(self) -> "ClusterEndpoint":
        if self.certificate_authority and self.certificate_authority_data:
            raise ValueError(
                "certificate_authority and certificate_authority_data are mutually exclusive"
            )
        return self

    def with_ca_data(self, data: bytes) -> "ClusterEndpoint":
        return self.model_copy(
            update={"certificate_authority": None, "certificate_authority_data": data}
        )


class DeviceIdentity(ClusterKitBaseModel):
    """The device and user a record belongs to."""

    device_id: str
    user: str


class ResolvedCluster(ClusterKitBaseModel):
    """A tracked cluster with its evaluated credentials (the persisted unit)."""

    id: UUID = Field(default_factory=uuid4, frozen=True)
    storage_backend: StorageBackend = StorageBackend.LOCAL
    position: float
    name: str

    endpoint: ClusterEndpoint
    auth: AuthDescriptor

    default_namespace: str = "default"

    error: str | None = None

    device_id: str
    device_user: str
    kubeconfig_path: Path
    context_name: str
    credentials_expire_at: datetime | None = None
    last_evaluation: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def is_owned_by(self, identity: DeviceIdentity) -> bool:
        return self.device_id == identity.device_id and self.device_user == identity.user

    def matches(self, kubeconfig_path: Path, context_name: str) -> bool:
        return self.kubeconfig_path == Path(kubeconfig_path) and self.context_name == context_name
