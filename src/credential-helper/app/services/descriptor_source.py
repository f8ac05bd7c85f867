"""Kubeconfig descriptor source.

Maps the contexts of a tracked kubeconfig file to ContextDescriptors. Each
context is joined with the cluster and user entries it names (entries named
like the context are the fallback). Contexts whose cluster or user entry is
missing are skipped.

Only the fields the credential helper needs are mapped; merging of several
files and current-context handling are left to kubectl.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
from pathlib import Path
from typing import Any, Protocol

import yaml
from pydantic import ValidationError

from clusterkit.models import (
    AuthDescriptor,
    ClusterEndpoint,
    ContextDescriptor,
    DescriptorFile,
)
from clusterkit.observability import get_logger

from .errors import DescriptorNotFoundError

logger = get_logger(__name__)

# kubeconfig key -> model field
CLUSTER_FIELDS = {
    "server": "server",
    "tls-server-name": "tls_server_name",
    "insecure-skip-tls-verify": "insecure_skip_tls_verify",
    "proxy-url": "proxy_url",
    "certificate-authority": "certificate_authority",
    "certificate-authority-data": "certificate_authority_data",
    "disable-compression": "disable_compression",
}

USER_FIELDS = {
    "username": "username",
    "password": "password",
    "token": "token",
    "tokenFile": "token_file",
    "client-certificate": "client_certificate",
    "client-key": "client_key",
    "client-certificate-data": "client_certificate_data",
    "client-key-data": "client_key_data",
    "as": "impersonate",
    "as-groups": "impersonate_groups",
    "as-user-extra": "impersonate_user_extra",
    "auth-provider": "auth_provider",
    "exec": "exec",
}

DATA_FIELDS = {"certificate_authority_data", "client_certificate_data", "client_key_data"}
PATH_FIELDS = {"certificate_authority", "token_file", "client_certificate", "client_key"}


class DescriptorSource(Protocol):
    """Supplies the contexts of tracked files."""

    async def load(self, path: Path) -> DescriptorFile: ...

    async def find(self, path: Path, context_name: str) -> ContextDescriptor: ...


class KubeconfigDescriptorSource:
    """Reads kubeconfig files with PyYAML."""

    async def load(self, path: Path) -> DescriptorFile:
        """Read and map a kubeconfig file off the event loop."""
        return await asyncio.to_thread(self.read, path)

    async def find(self, path: Path, context_name: str) -> ContextDescriptor:
        """Look up one context of a kubeconfig file.

        Raises:
            DescriptorNotFoundError: If the file cannot be decoded or has no such context
        """
        descriptor_file = await self.load(path)
        if not descriptor_file.is_ok:
            raise DescriptorNotFoundError(descriptor_file.error)

        context = descriptor_file.find(context_name)
        if context is None:
            raise DescriptorNotFoundError(f"Context {context_name} not found in {path}.")
        return context

    def read(self, path: Path) -> DescriptorFile:
        path = Path(path).expanduser()
        try:
            document = yaml.safe_load(path.read_text(encoding="utf-8"))
        except OSError as e:
            return DescriptorFile(path=path, error=f"Couldn't read {path}: {e.strerror or e}")
        except yaml.YAMLError as e:
            return DescriptorFile(path=path, error=f"Couldn't decode {path}: {e}")

        if document is None:
            return DescriptorFile(path=path)
        if not isinstance(document, dict):
            return DescriptorFile(path=path, error=f"Couldn't decode {path}: not a kubeconfig")

        try:
            contexts = self.parse(document, base_dir=path.parent)
        except (ValidationError, ValueError, TypeError) as e:
            return DescriptorFile(path=path, error=f"Couldn't decode {path}: {e}")

        return DescriptorFile(path=path, contexts=contexts)

    def parse(self, document: dict[str, Any], base_dir: Path) -> list[ContextDescriptor]:
        """Join contexts with their cluster and user entries."""
        clusters = _named_entries(document.get("clusters"), "cluster")
        users = _named_entries(document.get("users"), "user")

        descriptors = []
        for name, context in _named_entries(document.get("contexts"), "context").items():
            cluster = clusters.get(context.get("cluster") or name)
            user = users.get(context.get("user") or name)
            if cluster is None or user is None:
                logger.debug(
                    "Skipping context without cluster or user",
                    context=name,
                    has_cluster=cluster is not None,
                    has_user=user is not None,
                )
                continue

            descriptors.append(
                ContextDescriptor(
                    name=name,
                    endpoint=ClusterEndpoint.model_validate(
                        _map_fields(cluster, CLUSTER_FIELDS, base_dir)
                    ),
                    auth=AuthDescriptor.model_validate(_map_fields(user, USER_FIELDS, base_dir)),
                    namespace=context.get("namespace"),
                )
            )
        return descriptors


def _named_entries(items: Any, body_key: str) -> dict[str, dict[str, Any]]:
    """Index a kubeconfig list of {name, <body_key>} entries by name."""
    entries: dict[str, dict[str, Any]] = {}
    for item in items or []:
        if not isinstance(item, dict) or "name" not in item:
            continue
        entries[str(item["name"])] = item.get(body_key) or {}
    return entries


def _map_fields(entry: dict[str, Any], fields: dict[str, str], base_dir: Path) -> dict[str, Any]:
    mapped: dict[str, Any] = {}
    for key, field in fields.items():
        value = entry.get(key)
        if value is None:
            continue
        if field in DATA_FIELDS:
            try:
                value = base64.b64decode(value, validate=True)
            except binascii.Error as e:
                raise ValueError(f"{key} is not valid base64") from e
        elif field in PATH_FIELDS:
            # Relative paths are relative to the kubeconfig file
            value = str(base_dir / Path(value).expanduser())
        elif field == "exec" and isinstance(value, dict):
            value = {k: v for k, v in value.items() if v is not None}
        mapped[field] = value
    return mapped
