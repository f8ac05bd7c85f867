"""Descriptor models handed over by the kubeconfig collaborator."""

from pathlib import Path

from pydantic import Field

from .auth import AuthDescriptor
from .base import ClusterKitBaseModel
from .cluster import ClusterEndpoint


class ContextDescriptor(ClusterKitBaseModel):
    """One kubeconfig context joined with its cluster and user entries."""

    name: str
    endpoint: ClusterEndpoint
    auth: AuthDescriptor
    namespace: str | None = None


class DescriptorFile(ClusterKitBaseModel):
    """All contexts of a tracked file, or the reason it could not be decoded."""

    path: Path
    contexts: list[ContextDescriptor] = Field(default_factory=list)
    error: str | None = None

    @property
    def is_ok(self) -> bool:
        return self.error is None

    def find(self, context_name: str) -> ContextDescriptor | None:
        return next((c for c in self.contexts if c.name == context_name), None)
