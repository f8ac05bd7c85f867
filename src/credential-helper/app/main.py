"""Kubernetes credential helper entry point.

The helper keeps the credentials of the tracked kubeconfig contexts fresh:
- Loads tracked clusters from the secret stores
- Tracks the contexts of the configured kubeconfig files
- Re-evaluates every cluster on a fixed interval
- Persists the results to the local or synchronized store
"""

from __future__ import annotations

import argparse
import asyncio
import signal
from collections.abc import Sequence
from dataclasses import dataclass

from clusterkit.config import HelperSettings
from clusterkit.models import StorageBackend
from clusterkit.observability import get_logger, setup_logging
from clusterkit.redis_client import RedisClient

from .services import (
    ClusterRegistry,
    CredentialResolver,
    EncryptedFileSecretBackend,
    ExecPluginRunner,
    InMemorySecretBackend,
    KubeconfigDescriptorSource,
    RedisSecretBackend,
    RefreshScheduler,
    SecretBackend,
    SecretCipher,
    SecretStore,
    StorageError,
    TrustStore,
    get_device_identity,
)

logger = get_logger(__name__)


@dataclass
class Components:
    """Wired services of a helper process."""

    registry: ClusterRegistry
    scheduler: RefreshScheduler
    redis_client: RedisClient | None = None


async def build_synchronized_backend(
    settings: HelperSettings,
) -> tuple[SecretBackend, RedisClient | None]:
    storage = settings.storage
    if not storage.sync_enabled:
        backend = InMemorySecretBackend(StorageBackend.SYNCHRONIZED, storage.synchronized_service)
        return backend, None

    redis_client = RedisClient(settings.redis.url)
    await redis_client.connect()
    cipher = (
        SecretCipher.from_base64(storage.sync_encryption_key)
        if storage.sync_encryption_key
        else None
    )
    backend = RedisSecretBackend(
        StorageBackend.SYNCHRONIZED,
        storage.synchronized_service,
        redis_client,
        cipher=cipher,
    )
    return backend, redis_client


async def build_components(settings: HelperSettings) -> Components:
    """Wire the registry and scheduler from settings."""
    storage = settings.storage
    identity = get_device_identity(settings.device_id, settings.device_user)

    cipher = await asyncio.to_thread(SecretCipher.from_key_file, storage.key_file)
    local = EncryptedFileSecretBackend(
        StorageBackend.LOCAL,
        storage.local_service,
        storage.local_dir,
        cipher,
    )
    synchronized, redis_client = await build_synchronized_backend(settings)

    registry = ClusterRegistry(
        resolver=CredentialResolver(
            trust_store=TrustStore(),
            exec_runner=ExecPluginRunner.from_settings(settings.exec),
        ),
        store=SecretStore(local, synchronized, identity),
        source=KubeconfigDescriptorSource(),
        identity=identity,
        default_namespace=settings.default_namespace,
    )
    scheduler = RefreshScheduler(registry, interval=settings.refresh_interval_seconds)
    return Components(registry=registry, scheduler=scheduler, redis_client=redis_client)


async def serve(settings: HelperSettings, once: bool = False) -> int:
    """Run the helper until SIGINT/SIGTERM, or for a single refresh."""
    logger.info(
        "Starting credential helper",
        version=settings.app_version,
        device_id=settings.device_id,
        once=once,
    )
    components = await build_components(settings)
    registry = components.registry

    try:
        try:
            await registry.load()
        except StorageError as e:
            # The next refresh reconciles once the store is reachable
            logger.warning("Couldn't load stored clusters, starting empty", error=str(e))
        for path in settings.kubeconfig_paths:
            await registry.track_file(path)

        if once:
            clusters = await registry.refresh_all()
            failed = [c for c in clusters if c.error]
            for cluster in failed:
                logger.error(
                    "Cluster refresh failed",
                    context=cluster.context_name,
                    error=cluster.error,
                )
            return 1 if failed else 0

        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)

        components.scheduler.start()
        logger.info("Credential helper started", clusters=len(registry.clusters))
        await stop_event.wait()
        return 0
    finally:
        logger.info("Shutting down credential helper")
        await components.scheduler.stop()
        await registry.wait_for_pending_writes()
        if components.redis_client is not None:
            await components.redis_client.close()
        logger.info("Credential helper shutdown complete")


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="kube-credential-helper",
        description="Keep kubeconfig credentials fresh.",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single refresh and exit",
    )
    return parser.parse_args(argv)


def run(argv: Sequence[str] | None = None) -> int:
    """Console script entry point."""
    args = parse_args(argv)
    settings = HelperSettings()
    setup_logging(log_level=settings.log_level, log_format=settings.log_format)
    return asyncio.run(serve(settings, once=args.once))


if __name__ == "__main__":
    raise SystemExit(run())
