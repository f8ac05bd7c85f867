"""Secret store backends.

Each backend is a flat key/value store of serialized cluster records, tagged
with the StorageBackend it serves:
- EncryptedFileSecretBackend: device-local, AES-256-GCM encrypted files
- RedisSecretBackend: synchronized, one Redis hash per namespace
- InMemorySecretBackend: process-local, for development and tests

Values that cannot be decrypted raise ParseError so callers can tell them from
backend failures (StorageError).
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import os
import re
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from pathlib import Path

import redis.asyncio as redis
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from pydantic import BaseModel, ValidationError

from clusterkit.models import StorageBackend
from clusterkit.observability import get_logger
from clusterkit.redis_client import RedisClient

from .errors import ParseError, StorageError

logger = get_logger(__name__)

KEY_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")


class EncryptedSecret(BaseModel):
    """Encrypted secret envelope."""

    encrypted_data: str  # Base64 encoded ciphertext
    nonce: str  # Base64 encoded nonce
    label: str | None = None
    created_at: str


class SecretCipher:
    """AES-256-GCM encryption of secret values."""

    def __init__(self, key: bytes):
        self._aesgcm = AESGCM(key)

    @staticmethod
    def generate_key() -> bytes:
        return AESGCM.generate_key(bit_length=256)

    @classmethod
    def from_base64(cls, key_b64: str) -> SecretCipher:
        return cls(base64.b64decode(key_b64))

    @classmethod
    def from_key_file(cls, path: Path) -> SecretCipher:
        """Load the key file, creating it (mode 0600) on first use."""
        path = Path(path).expanduser()
        if path.exists():
            return cls(base64.b64decode(path.read_bytes()))

        key = cls.generate_key()
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(base64.b64encode(key))
        logger.info("Created new encryption key", path=str(path))
        return cls(key)

    def encrypt(self, plaintext: bytes, label: str | None = None) -> str:
        """Encrypt plaintext into a JSON envelope."""
        nonce = os.urandom(12)  # 96-bit nonce
        ciphertext = self._aesgcm.encrypt(nonce, plaintext, None)
        return EncryptedSecret(
            encrypted_data=base64.b64encode(ciphertext).decode(),
            nonce=base64.b64encode(nonce).decode(),
            label=label,
            created_at=datetime.now(UTC).isoformat(),
        ).model_dump_json()

    def decrypt(self, envelope: str | bytes) -> bytes:
        """Decrypt a JSON envelope.

        Raises:
            ParseError: If the envelope is malformed or fails authentication
        """
        try:
            secret = EncryptedSecret.model_validate_json(envelope)
            ciphertext = base64.b64decode(secret.encrypted_data)
            nonce = base64.b64decode(secret.nonce)
            return self._aesgcm.decrypt(nonce, ciphertext, None)
        except (ValidationError, binascii.Error, InvalidTag, ValueError) as e:
            raise ParseError(f"Undecryptable secret: {type(e).__name__}") from e


class SecretBackend(ABC):
    """Key/value store of serialized records."""

    def __init__(self, kind: StorageBackend, service: str):
        self.kind = StorageBackend(kind)
        self.service = service

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value!r}, service={self.service!r})"

    @abstractmethod
    async def set(self, key: str, value: bytes, label: str | None = None) -> None:
        """Create or overwrite a value."""

    @abstractmethod
    async def get(self, key: str) -> bytes | None:
        """Read a value, None if the key does not exist."""

    @abstractmethod
    async def remove(self, key: str) -> bool:
        """Remove a value, True if it existed."""

    @abstractmethod
    async def keys(self) -> list[str]:
        """All keys, in a stable order."""


class InMemorySecretBackend(SecretBackend):
    """Process-local backend."""

    def __init__(self, kind: StorageBackend, service: str = "memory"):
        super().__init__(kind, service)
        self._data: dict[str, bytes] = {}

    async def set(self, key: str, value: bytes, label: str | None = None) -> None:
        self._data[key] = value

    async def get(self, key: str) -> bytes | None:
        return self._data.get(key)

    async def remove(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    async def keys(self) -> list[str]:
        return sorted(self._data)


class EncryptedFileSecretBackend(SecretBackend):
    """Device-local backend: one encrypted file per key."""

    def __init__(
        self,
        kind: StorageBackend,
        service: str,
        directory: Path,
        cipher: SecretCipher,
    ):
        super().__init__(kind, service)
        self.directory = Path(directory).expanduser() / service
        self._cipher = cipher

    def _path(self, key: str) -> Path:
        if not KEY_PATTERN.match(key):
            raise StorageError(f"Invalid secret key {key!r}")
        return self.directory / f"{key}.json"

    def _write(self, key: str, value: bytes, label: str | None) -> None:
        path = self._path(key)
        self.directory.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".tmp")
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(self._cipher.encrypt(value, label=label))
        os.replace(tmp_path, path)

    def _read(self, key: str) -> bytes | None:
        path = self._path(key)
        try:
            envelope = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        return self._cipher.decrypt(envelope)

    def _remove(self, key: str) -> bool:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            return False
        return True

    def _keys(self) -> list[str]:
        if not self.directory.is_dir():
            return []
        return sorted(path.stem for path in self.directory.glob("*.json"))

    async def set(self, key: str, value: bytes, label: str | None = None) -> None:
        try:
            await asyncio.to_thread(self._write, key, value, label)
        except OSError as e:
            raise StorageError(f"Couldn't write {key} to {self.kind.value} store: {e}") from e

    async def get(self, key: str) -> bytes | None:
        try:
            return await asyncio.to_thread(self._read, key)
        except OSError as e:
            raise StorageError(f"Couldn't read {key} from {self.kind.value} store: {e}") from e

    async def remove(self, key: str) -> bool:
        try:
            return await asyncio.to_thread(self._remove, key)
        except OSError as e:
            raise StorageError(f"Couldn't remove {key} from {self.kind.value} store: {e}") from e

    async def keys(self) -> list[str]:
        try:
            return await asyncio.to_thread(self._keys)
        except OSError as e:
            raise StorageError(f"Couldn't list {self.kind.value} store: {e}") from e


class RedisSecretBackend(SecretBackend):
    """Synchronized backend: a Redis hash shared by all devices."""

    def __init__(
        self,
        kind: StorageBackend,
        service: str,
        redis_client: RedisClient,
        cipher: SecretCipher | None = None,
    ):
        super().__init__(kind, service)
        self.redis = redis_client
        self._cipher = cipher

    async def set(self, key: str, value: bytes, label: str | None = None) -> None:
        payload = self._cipher.encrypt(value, label=label) if self._cipher else value.decode()
        try:
            await self.redis.set_secret(self.service, key, payload)
        except redis.RedisError as e:
            raise StorageError(f"Couldn't write {key} to {self.kind.value} store: {e}") from e

    async def get(self, key: str) -> bytes | None:
        try:
            payload = await self.redis.get_secret(self.service, key)
        except redis.RedisError as e:
            raise StorageError(f"Couldn't read {key} from {self.kind.value} store: {e}") from e
        if payload is None:
            return None
        return self._cipher.decrypt(payload) if self._cipher else payload.encode()

    async def remove(self, key: str) -> bool:
        try:
            return await self.redis.delete_secret(self.service, key)
        except redis.RedisError as e:
            raise StorageError(f"Couldn't remove {key} from {self.kind.value} store: {e}") from e

    async def keys(self) -> list[str]:
        try:
            return await self.redis.list_secret_keys(self.service)
        except redis.RedisError as e:
            raise StorageError(f"Couldn't list {self.kind.value} store: {e}") from e
