"""Tests for the helper entry point and process wiring."""

import textwrap

import pytest
from app.main import build_components, parse_args, serve
from app.services import EncryptedFileSecretBackend, InMemorySecretBackend, get_device_identity

from clusterkit.config import HelperSettings, StorageSettings
from clusterkit.models import StorageBackend

KUBECONFIG = textwrap.dedent(
    """
    clusters:
      - name: dev
        cluster: {server: "https://dev.example.com"}
    users:
      - name: dev
        user: {token: dev-token}
      - name: broken
        user: {tokenFile: /nonexistent/token}
    contexts:
      - name: dev
        context: {cluster: dev, user: dev}
    """
)


@pytest.fixture
def settings(tmp_path):
    kubeconfig = tmp_path / "config"
    kubeconfig.write_text(KUBECONFIG)
    return HelperSettings(
        storage=StorageSettings(
            local_dir=tmp_path / "clusters",
            key_file=tmp_path / "secret.key",
        ),
        kubeconfig_paths=[kubeconfig],
        device_id="device-1",
        device_user="alice",
        refresh_interval_seconds=5,
    )


class TestParseArgs:
    def test_defaults(self):
        """Test the helper runs as a service by default."""
        assert parse_args([]).once is False

    def test_once(self):
        """Test --once selects a single refresh."""
        assert parse_args(["--once"]).once is True


class TestBuildComponents:
    async def test_local_only(self, settings, tmp_path):
        """Test sync disabled wires an in-process synchronized store."""
        components = await build_components(settings)

        store = components.registry.store
        assert isinstance(store.backends[StorageBackend.LOCAL], EncryptedFileSecretBackend)
        assert isinstance(store.backends[StorageBackend.SYNCHRONIZED], InMemorySecretBackend)
        assert components.redis_client is None
        assert components.scheduler.interval == 5
        assert (tmp_path / "secret.key").exists()

    async def test_identity_overrides(self, settings):
        """Test the settings override the platform identity."""
        components = await build_components(settings)

        assert components.registry.identity == get_device_identity("device-1", "alice")
        assert components.registry.identity.device_id == "device-1"
        assert components.registry.identity.user == "alice"


class TestServe:
    async def test_once_tracks_and_persists(self, settings):
        """Test a single run tracks the kubeconfig and persists the clusters."""
        assert await serve(settings, once=True) == 0

        components = await build_components(settings)
        clusters = await components.registry.load()

        assert [c.context_name for c in clusters] == ["dev"]
        assert clusters[0].auth.token == "dev-token"

    async def test_once_reports_failures(self, settings, tmp_path):
        """Test a cluster that fails to refresh makes the run fail."""
        assert await serve(settings, once=True) == 0

        kubeconfig = settings.kubeconfig_paths[0]
        kubeconfig.write_text(KUBECONFIG.replace("user: dev}", "user: broken}"))

        assert await serve(settings, once=True) == 1

    async def test_unreachable_sync_store_is_not_fatal(self, settings, mock_redis, monkeypatch):
        """Test the helper starts and refreshes while Redis is down."""
        mock_redis.fail = True
        monkeypatch.setattr("app.main.RedisClient", lambda url: mock_redis)
        settings.storage.sync_enabled = True

        assert await serve(settings, once=True) == 0

        mock_redis.fail = False
        assert await serve(settings, once=True) == 0

        settings.storage.sync_enabled = False
        components = await build_components(settings)
        clusters = await components.registry.load()
        assert [c.context_name for c in clusters] == ["dev"]
