"""Test fixtures for the credential helper."""

import os
import stat
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import redis.asyncio as redis
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from app.services.credential_resolver import CredentialResolver
from app.services.errors import DescriptorNotFoundError, StorageError
from app.services.exec_plugin import ExecPluginRunner
from app.services.secret_backends import InMemorySecretBackend
from app.services.secret_store import SecretStore
from app.services.trust_store import TrustStore
from clusterkit.models import (
    AuthDescriptor,
    ClusterEndpoint,
    ContextDescriptor,
    DescriptorFile,
    DeviceIdentity,
    ResolvedCluster,
    StorageBackend,
)

KUBECONFIG_PATH = Path("/home/alice/.kube/config")


class MockRedisClient:
    """Mock Redis client for testing."""

    def __init__(self):
        self._hashes: dict[str, dict[str, str]] = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise redis.ConnectionError("Connection refused")

    async def connect(self):
        pass

    async def close(self):
        pass

    async def set_secret(self, namespace: str, key: str, value: str):
        self._check()
        self._hashes.setdefault(namespace, {})[key] = value

    async def get_secret(self, namespace: str, key: str):
        self._check()
        return self._hashes.get(namespace, {}).get(key)

    async def delete_secret(self, namespace: str, key: str):
        self._check()
        return self._hashes.get(namespace, {}).pop(key, None) is not None

    async def list_secret_keys(self, namespace: str):
        self._check()
        return sorted(self._hashes.get(namespace, {}))


class FlakyBackend(InMemorySecretBackend):
    """In-memory backend whose writes can be made to fail."""

    def __init__(self, kind: StorageBackend):
        super().__init__(kind)
        self.fail_writes = False
        self.fail_keys = False

    async def set(self, key, value, label=None):
        if self.fail_writes:
            raise StorageError("Backend unavailable")
        await super().set(key, value, label)

    async def remove(self, key):
        if self.fail_writes:
            raise StorageError("Backend unavailable")
        return await super().remove(key)

    async def keys(self):
        if self.fail_keys:
            raise StorageError("Backend unavailable")
        return await super().keys()


class FakeDescriptorSource:
    """Descriptor source backed by a dict of contexts."""

    def __init__(self):
        self.contexts: dict[tuple[Path, str], ContextDescriptor] = {}

    def put(self, context: ContextDescriptor, path: Path = KUBECONFIG_PATH) -> None:
        self.contexts[(Path(path), context.name)] = context

    def drop(self, name: str, path: Path = KUBECONFIG_PATH) -> None:
        del self.contexts[(Path(path), name)]

    async def load(self, path: Path) -> DescriptorFile:
        return DescriptorFile(
            path=path,
            contexts=[c for (p, _), c in self.contexts.items() if p == Path(path)],
        )

    async def find(self, path: Path, context_name: str) -> ContextDescriptor:
        try:
            return self.contexts[(Path(path), context_name)]
        except KeyError:
            raise DescriptorNotFoundError(f"Context {context_name} not found in {path}.") from None


@pytest.fixture
def mock_redis():
    """Create mock Redis client."""
    return MockRedisClient()


@pytest.fixture
def identity():
    return DeviceIdentity(device_id="device-1", user="alice")


@pytest.fixture
def local_backend():
    return FlakyBackend(StorageBackend.LOCAL)


@pytest.fixture
def sync_backend():
    return FlakyBackend(StorageBackend.SYNCHRONIZED)


@pytest.fixture
def secret_store(local_backend, sync_backend, identity):
    return SecretStore(local_backend, sync_backend, identity)


@pytest.fixture
def descriptor_source():
    return FakeDescriptorSource()


@pytest.fixture
def exec_runner():
    """Runner using a plain, non-login /bin/sh."""
    return ExecPluginRunner(
        shell="/bin/sh",
        login_shell=False,
        environ={"PATH": os.environ.get("PATH", "/usr/bin:/bin")},
    )


@pytest.fixture
def resolver(exec_runner):
    return CredentialResolver(trust_store=TrustStore(), exec_runner=exec_runner)


@pytest.fixture
def exec_script(tmp_path):
    """Factory writing an executable /bin/sh script and returning its path."""

    def write(body: str, name: str = "plugin.sh") -> str:
        path = tmp_path / name
        path.write_text(f"#!/bin/sh\n{body}\n")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return str(path)

    return write


@pytest.fixture
def ca_pem() -> bytes:
    """A self-signed CA certificate in PEM form."""
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "test-ca")])
    now = datetime.now(timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=30))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )
    return certificate.public_bytes(serialization.Encoding.PEM)


@pytest.fixture
def make_context():
    def make(name: str = "dev", **auth) -> ContextDescriptor:
        return ContextDescriptor(
            name=name,
            endpoint=ClusterEndpoint(server=f"https://{name}.example.com"),
            auth=AuthDescriptor(**(auth or {"token": f"{name}-token"})),
        )

    return make


@pytest.fixture
def make_record(identity):
    def make(**overrides) -> ResolvedCluster:
        name = overrides.pop("name", "dev")
        data = {
            "position": 0.5,
            "name": name,
            "endpoint": ClusterEndpoint(server=f"https://{name}.example.com"),
            "auth": AuthDescriptor(token=f"{name}-token"),
            "device_id": identity.device_id,
            "device_user": identity.user,
            "kubeconfig_path": KUBECONFIG_PATH,
            "context_name": name,
        }
        data.update(overrides)
        return ResolvedCluster(**data)

    return make
