"""Credential helper services."""

from .cluster_registry import ClusterRegistry
from .credential_resolver import CredentialResolver
from .descriptor_source import DescriptorSource, KubeconfigDescriptorSource
from .errors import (
    ClusterNotFoundError,
    CredentialHelperError,
    CredentialIOError,
    DescriptorNotFoundError,
    ExecFailedError,
    ExecutableNotFoundError,
    NoOutputError,
    ParseError,
    StorageError,
)
from .exec_plugin import ExecPluginRunner, ExecResult
from .identity import get_device_identity
from .scheduler import RefreshScheduler
from .secret_backends import (
    EncryptedFileSecretBackend,
    InMemorySecretBackend,
    RedisSecretBackend,
    SecretBackend,
    SecretCipher,
)
from .secret_store import RecordCodec, SchemaDriftDiscarded, SecretStore
from .trust_store import TrustRoots, TrustStore

__all__ = [
    "ClusterNotFoundError",
    "ClusterRegistry",
    "CredentialHelperError",
    "CredentialIOError",
    "CredentialResolver",
    "DescriptorNotFoundError",
    "DescriptorSource",
    "EncryptedFileSecretBackend",
    "ExecFailedError",
    "ExecPluginRunner",
    "ExecResult",
    "ExecutableNotFoundError",
    "InMemorySecretBackend",
    "KubeconfigDescriptorSource",
    "NoOutputError",
    "ParseError",
    "RecordCodec",
    "RedisSecretBackend",
    "RefreshScheduler",
    "SchemaDriftDiscarded",
    "SecretBackend",
    "SecretCipher",
    "SecretStore",
    "StorageError",
    "TrustRoots",
    "TrustStore",
    "get_device_identity",
]
