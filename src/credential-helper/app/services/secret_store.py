"""Persistence of resolved clusters.

Records live in exactly one of two backends, selected by their
storage_backend tag. Listing walks both backends (local first) and doubles
as garbage collection: entries that no longer deserialize are deleted.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from pydantic import ValidationError

from clusterkit.models import DeviceIdentity, ResolvedCluster, StorageBackend
from clusterkit.observability import get_logger

from .errors import ParseError, StorageError
from .secret_backends import SecretBackend

logger = get_logger(__name__)


class RecordCodec:
    """JSON codec of persisted records."""

    def encode(self, record: ResolvedCluster) -> bytes:
        return record.model_dump_json().encode("utf-8")

    def decode(self, data: bytes) -> ResolvedCluster:
        return ResolvedCluster.model_validate_json(data)


@dataclass(frozen=True)
class SchemaDriftDiscarded:
    """An undecodable entry removed while listing."""

    backend: StorageBackend
    key: str
    reason: str


class SecretStore:
    """Two-backend store of ResolvedCluster records keyed by id."""

    def __init__(
        self,
        local: SecretBackend,
        synchronized: SecretBackend,
        identity: DeviceIdentity,
        codec: RecordCodec | None = None,
    ):
        self.backends: dict[StorageBackend, SecretBackend] = {
            StorageBackend.LOCAL: local,
            StorageBackend.SYNCHRONIZED: synchronized,
        }
        self.identity = identity
        self.codec = codec or RecordCodec()
        self.discarded: list[SchemaDriftDiscarded] = []

    def backend_for(self, record: ResolvedCluster) -> SecretBackend:
        return self.backends[StorageBackend(record.storage_backend)]

    async def save(self, record: ResolvedCluster) -> None:
        """Write a record to its tagged backend and drop any copy in the other.

        Raises:
            StorageError: If either backend fails
        """
        target = StorageBackend(record.storage_backend)
        key = str(record.id)

        await self.backends[target].set(key, self.codec.encode(record), label=record.name)
        if await self.backends[target.other].remove(key):
            logger.info(
                "Moved cluster between stores",
                cluster_id=key,
                from_backend=target.other.value,
                to_backend=target.value,
            )

    async def delete(self, record: ResolvedCluster) -> None:
        """Remove a record from its tagged backend.

        Raises:
            StorageError: If the backend fails
        """
        await self.backend_for(record).remove(str(record.id))

    async def list_all(self) -> list[ResolvedCluster]:
        """All records owned by this device and user, sorted by position.

        Undecodable entries are deleted and recorded in self.discarded.
        Records owned by others are skipped but kept. A record found in both
        backends (an interrupted move) is listed once: the copy with the newer
        last_evaluation wins, the synchronized one on a tie, and the other
        copy is deleted.

        Raises:
            StorageError: If a backend fails
        """
        found: dict[UUID, tuple[ResolvedCluster, SecretBackend]] = {}

        for kind in (StorageBackend.LOCAL, StorageBackend.SYNCHRONIZED):
            backend = self.backends[kind]
            for key in await backend.keys():
                try:
                    data = await backend.get(key)
                    if data is None:
                        continue
                    record = self.codec.decode(data)
                except (ParseError, ValidationError, UnicodeDecodeError) as e:
                    await self._discard(backend, key, e)
                    continue

                if not record.is_owned_by(self.identity):
                    continue

                if record.id in found:
                    kept, kept_backend = found[record.id]
                    # Synchronized is walked last, so it wins ties
                    if kept.last_evaluation > record.last_evaluation:
                        await self._drop_duplicate(backend, key, kept_backend)
                        continue
                    await self._drop_duplicate(kept_backend, key, backend)
                found[record.id] = (record, backend)

        records = [record for record, _ in found.values()]
        records.sort(key=lambda r: r.position)
        return records

    async def _drop_duplicate(
        self, stale: SecretBackend, key: str, kept: SecretBackend
    ) -> None:
        logger.warning(
            "Removing duplicate cluster record",
            key=key,
            stale_backend=stale.kind.value,
            kept_backend=kept.kind.value,
        )
        try:
            await stale.remove(key)
        except StorageError as e:
            logger.warning("Couldn't remove duplicate cluster record", key=key, error=str(e))

    async def _discard(self, backend: SecretBackend, key: str, error: Exception) -> None:
        reason = str(error).splitlines()[0] if str(error) else type(error).__name__
        logger.warning(
            "Discarding undecodable cluster record",
            backend=backend.kind.value,
            key=key,
            reason=reason,
        )
        try:
            await backend.remove(key)
        except StorageError as e:
            logger.warning("Couldn't discard cluster record", key=key, error=str(e))
            return
        self.discarded.append(SchemaDriftDiscarded(backend=backend.kind, key=key, reason=reason))
