"""Cluster registry.

The in-memory, ordered list of tracked clusters. Only coroutines running on
the event loop mutate it; resolution and storage I/O happen in awaited calls
or background tasks whose results are applied back by cluster id.

Writes to the SecretStore are background tasks, chained per cluster so that a
save and a later delete of the same record land in order. A failed write is
logged and retried by the next refresh.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from pathlib import Path
from uuid import UUID

from clusterkit.models import (
    ContextDescriptor,
    DeviceIdentity,
    ResolvedCluster,
    StorageBackend,
)
from clusterkit.observability import ClusterContext, get_logger

from .credential_resolver import CredentialResolver
from .descriptor_source import DescriptorSource
from .errors import ClusterNotFoundError, DescriptorNotFoundError, StorageError
from .secret_store import SecretStore

logger = get_logger(__name__)

POSITION_MIN_STEP = 0.000001
POSITION_MAX_STEP = 0.2

# Fields a refresh pass owns; everything else belongs to the caller
REFRESHED_FIELDS = (
    "endpoint",
    "auth",
    "default_namespace",
    "error",
    "credentials_expire_at",
    "last_evaluation",
)


def position_after(position: float) -> float:
    return position + random.uniform(POSITION_MIN_STEP, POSITION_MAX_STEP)


def position_before(position: float) -> float:
    return position - random.uniform(POSITION_MIN_STEP, POSITION_MAX_STEP)


class ClusterRegistry:
    """Ordered list of the clusters tracked by this device and user."""

    def __init__(
        self,
        resolver: CredentialResolver,
        store: SecretStore,
        source: DescriptorSource,
        identity: DeviceIdentity,
        default_namespace: str = "default",
    ):
        self.resolver = resolver
        self.store = store
        self.source = source
        self.identity = identity
        self.default_namespace = default_namespace

        self.clusters: list[ResolvedCluster] = []

        # Records whose latest value is not known to be persisted
        self._unpersisted: set[UUID] = set()
        # Removed records whose persisted copy may still exist
        self._pending_deletes: dict[UUID, ResolvedCluster] = {}
        # Latest write task per cluster, and all running write tasks
        self._writes: dict[UUID, asyncio.Task] = {}
        self._tasks: set[asyncio.Task] = set()
        # Clusters written or removed since the last store listing began
        self._touched: set[UUID] = set()

        self._refresh_task: asyncio.Task | None = None

    # =========================================================================
    # Lookup
    # =========================================================================

    def get(self, cluster_id: UUID) -> ResolvedCluster | None:
        return next((c for c in self.clusters if c.id == cluster_id), None)

    def _index_of(self, cluster_id: UUID) -> int:
        for index, cluster in enumerate(self.clusters):
            if cluster.id == cluster_id:
                return index
        raise ClusterNotFoundError(f"Cluster {cluster_id} not found")

    def next_position(self) -> float:
        """A position after every tracked cluster."""
        last = self.clusters[-1].position if self.clusters else 0.0
        return position_after(last)

    # =========================================================================
    # Mutations
    # =========================================================================

    async def load(self) -> list[ResolvedCluster]:
        """Replace the in-memory list with the persisted records.

        Raises:
            StorageError: If a backend cannot be listed
        """
        self.clusters = await self.store.list_all()
        self._unpersisted.clear()
        logger.info("Loaded clusters", count=len(self.clusters))
        return list(self.clusters)

    async def add(
        self,
        descriptor: ContextDescriptor,
        kubeconfig_path: Path,
        storage_backend: StorageBackend = StorageBackend.LOCAL,
    ) -> ResolvedCluster:
        """Resolve a context and start tracking it.

        The credentials are resolved before the cluster is added; a cluster
        that cannot be resolved is never added. Persistence runs in the
        background and its failure does not undo the add.

        Raises:
            CredentialHelperError: If the credentials cannot be resolved
        """
        record = ResolvedCluster(
            storage_backend=storage_backend,
            position=0.0,
            name=descriptor.name,
            endpoint=descriptor.endpoint,
            auth=descriptor.auth,
            default_namespace=descriptor.namespace or self.default_namespace,
            device_id=self.identity.device_id,
            device_user=self.identity.user,
            kubeconfig_path=Path(kubeconfig_path),
            context_name=descriptor.name,
        )

        with ClusterContext(cluster_id=str(record.id), context_name=record.context_name):
            record = await self.resolver.evaluate(record)

            # Positioned after the await so concurrent adds stay ordered
            record = record.model_copy(update={"position": self.next_position()})
            self.clusters.append(record)
            self._schedule_save(record)

            logger.info("Cluster added", kubeconfig_path=str(record.kubeconfig_path))
        return record

    async def track_file(self, kubeconfig_path: Path) -> list[ResolvedCluster]:
        """Add every context of a kubeconfig file that is not tracked yet.

        Contexts that fail to resolve are logged and skipped.
        """
        descriptor_file = await self.source.load(kubeconfig_path)
        if not descriptor_file.is_ok:
            logger.warning("Couldn't load kubeconfig", error=descriptor_file.error)
            return []

        added = []
        for context in descriptor_file.contexts:
            if any(c.matches(descriptor_file.path, context.name) for c in self.clusters):
                continue
            try:
                added.append(await self.add(context, descriptor_file.path))
            except Exception as e:
                logger.warning(
                    "Couldn't add cluster",
                    context=context.name,
                    kubeconfig_path=str(descriptor_file.path),
                    error=str(e),
                )
        return added

    def remove(self, kubeconfig_path: Path, context_name: str) -> ResolvedCluster | None:
        """Stop tracking the first cluster created from a context.

        The persisted copy is deleted in the background.
        """
        for index, cluster in enumerate(self.clusters):
            if cluster.matches(kubeconfig_path, context_name):
                break
        else:
            return None

        record = self.clusters.pop(index)
        self._unpersisted.discard(record.id)
        self._pending_deletes[record.id] = record
        self._schedule(record.id, self._delete, record)

        logger.info("Cluster removed", cluster_id=str(record.id), context=context_name)
        return record

    def update(self, record: ResolvedCluster) -> ResolvedCluster:
        """Replace the tracked record with the same id and persist it.

        Raises:
            ClusterNotFoundError: If no tracked cluster has the record's id
        """
        self.clusters[self._index_of(record.id)] = record
        self._schedule_save(record)
        return record

    def move_to_backend(self, cluster_id: UUID, backend: StorageBackend) -> ResolvedCluster:
        """Move a cluster to the other secret store.

        Raises:
            ClusterNotFoundError: If the cluster is not tracked
        """
        record = self.clusters[self._index_of(cluster_id)]
        if record.storage_backend == backend:
            return record
        return self.update(record.model_copy(update={"storage_backend": StorageBackend(backend)}))

    def reorder(self, cluster_id: UUID, index: int) -> ResolvedCluster:
        """Move a cluster to a new index without renumbering the others.

        Raises:
            ClusterNotFoundError: If the cluster is not tracked
        """
        record = self.clusters.pop(self._index_of(cluster_id))
        index = max(0, min(index, len(self.clusters)))

        before = self.clusters[index - 1] if index > 0 else None
        after = self.clusters[index] if index < len(self.clusters) else None
        if before is not None and after is not None:
            position = (before.position + after.position) / 2
        elif before is not None:
            position = position_after(before.position)
        elif after is not None:
            position = position_before(after.position)
        else:
            position = record.position

        record = record.model_copy(update={"position": position})
        self.clusters.insert(index, record)
        self._schedule_save(record)
        return record

    # =========================================================================
    # Refresh
    # =========================================================================

    async def refresh_all(self) -> list[ResolvedCluster]:
        """Re-evaluate every cluster.

        Only one pass runs at a time: a call made while a pass is in flight
        waits for that pass. Cancelling the caller does not abort the pass.
        """
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.create_task(self._refresh_all())
        return await asyncio.shield(self._refresh_task)

    async def _refresh_all(self) -> list[ResolvedCluster]:
        await self._retry_pending_deletes()

        self._touched = set()
        try:
            persisted = await self.store.list_all()
        except StorageError as e:
            logger.warning("Couldn't list stored clusters, refreshing known ones", error=str(e))
            persisted = None

        if persisted is not None:
            self.clusters = self._reconcile(persisted)

        evaluated = list(self.clusters)
        results = await asyncio.gather(*(self._evaluate(cluster) for cluster in evaluated))
        applied = self._apply(evaluated, results)

        saves = [self._schedule_save(record) for record in applied]
        if saves:
            await asyncio.wait(saves)

        failed = sum(1 for record in applied if record.error)
        logger.info("Refreshed clusters", count=len(applied), failed=failed)
        return list(self.clusters)

    def _reconcile(self, persisted: list[ResolvedCluster]) -> list[ResolvedCluster]:
        """Merge the store's records with in-memory ones not persisted yet."""
        by_id = {
            r.id: r
            for r in persisted
            if r.id not in self._pending_deletes and r.id not in self._touched
        }
        for cluster in self.clusters:
            if cluster.id in self._unpersisted or cluster.id in self._touched:
                by_id[cluster.id] = cluster
        return sorted(by_id.values(), key=lambda r: r.position)

    async def _evaluate(self, record: ResolvedCluster) -> ResolvedCluster:
        """Re-read a record's context and resolve it; failures become record.error."""
        with ClusterContext(cluster_id=str(record.id), context_name=record.context_name):
            try:
                context = await self.source.find(record.kubeconfig_path, record.context_name)
                refreshed = record.model_copy(
                    update={
                        "endpoint": context.endpoint,
                        "auth": context.auth,
                        "default_namespace": context.namespace or self.default_namespace,
                    }
                )
                return await self.resolver.evaluate(refreshed)
            except DescriptorNotFoundError as e:
                logger.warning("Cluster context not found", error=str(e))
                return record.model_copy(update={"error": str(e)})
            except Exception as e:
                logger.warning("Couldn't refresh cluster credentials", error=str(e))
                return record.model_copy(update={"error": str(e) or type(e).__name__})

    def _apply(
        self,
        evaluated: list[ResolvedCluster],
        results: list[ResolvedCluster],
    ) -> list[ResolvedCluster]:
        """Write refresh results back, keeping changes made during the pass.

        A record replaced while the pass ran only takes the refreshed fields.
        """
        by_id = {
            original.id: (original, result)
            for original, result in zip(evaluated, results, strict=True)
        }
        applied = []
        for index, current in enumerate(self.clusters):
            if current.id not in by_id:
                continue
            original, result = by_id[current.id]
            if current is original:
                merged = result.model_copy(
                    update={
                        "position": current.position,
                        "storage_backend": current.storage_backend,
                    }
                )
            else:
                merged = current.model_copy(
                    update={field: getattr(result, field) for field in REFRESHED_FIELDS}
                )
            self.clusters[index] = merged
            applied.append(merged)
        return applied

    # =========================================================================
    # Background writes
    # =========================================================================

    def _schedule(
        self,
        cluster_id: UUID,
        operation: Callable[[ResolvedCluster], Awaitable[None]],
        record: ResolvedCluster,
    ) -> asyncio.Task:
        self._touched.add(cluster_id)
        previous = self._writes.get(cluster_id)

        async def run() -> None:
            if previous is not None and not previous.done():
                await asyncio.wait([previous])
            await operation(record)

        task = asyncio.create_task(run())
        self._writes[cluster_id] = task
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._write_done(cluster_id, t))
        return task

    def _write_done(self, cluster_id: UUID, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if self._writes.get(cluster_id) is task:
            del self._writes[cluster_id]

    def _schedule_save(self, record: ResolvedCluster) -> asyncio.Task:
        self._unpersisted.add(record.id)
        return self._schedule(record.id, self._save, record)

    async def _save(self, record: ResolvedCluster) -> None:
        try:
            await self.store.save(record)
        except StorageError as e:
            logger.warning("Couldn't persist cluster", cluster_id=str(record.id), error=str(e))
            return

        # A later write of the same record is still queued
        if self._writes.get(record.id) is asyncio.current_task():
            self._unpersisted.discard(record.id)

    async def _delete(self, record: ResolvedCluster) -> None:
        try:
            await self.store.delete(record)
        except StorageError as e:
            logger.warning("Couldn't delete cluster", cluster_id=str(record.id), error=str(e))
            return
        self._pending_deletes.pop(record.id, None)

    async def _retry_pending_deletes(self) -> None:
        retries = [
            self._schedule(cluster_id, self._delete, record)
            for cluster_id, record in list(self._pending_deletes.items())
            if cluster_id not in self._writes
        ]
        if retries:
            await asyncio.wait(retries)

    async def wait_for_pending_writes(self) -> None:
        """Wait until every background write has finished."""
        while pending := [task for task in self._tasks if not task.done()]:
            await asyncio.wait(pending)
