"""Tests for the two-backend secret store."""

from datetime import datetime, timezone

import pytest
from app.services.errors import StorageError
from app.services.secret_backends import EncryptedFileSecretBackend, SecretCipher
from app.services.secret_store import SecretStore

from clusterkit.models import StorageBackend


class TestSave:
    async def test_save_to_tagged_backend(
        self, secret_store, local_backend, sync_backend, make_record
    ):
        """Test a record is written to the backend its tag names."""
        record = make_record()

        await secret_store.save(record)

        assert await local_backend.keys() == [str(record.id)]
        assert await sync_backend.keys() == []

    async def test_backend_switch_leaves_one_copy(
        self, secret_store, local_backend, sync_backend, make_record
    ):
        """Test saving to synchronized removes the local copy."""
        record = make_record()
        await secret_store.save(record)

        moved = record.model_copy(update={"storage_backend": StorageBackend.SYNCHRONIZED})
        await secret_store.save(moved)

        assert await local_backend.keys() == []
        assert await sync_backend.keys() == [str(record.id)]
        assert await secret_store.list_all() == [moved]

    async def test_overwrite(self, secret_store, make_record):
        """Test saving the same id again replaces the record."""
        record = make_record()
        await secret_store.save(record)
        updated = record.model_copy(update={"error": "expired"})

        await secret_store.save(updated)

        assert await secret_store.list_all() == [updated]

    async def test_backend_failure(self, secret_store, local_backend, make_record):
        """Test backend failures raise StorageError."""
        local_backend.fail_writes = True

        with pytest.raises(StorageError):
            await secret_store.save(make_record())


class TestDelete:
    async def test_delete_from_tagged_backend_only(
        self, secret_store, local_backend, sync_backend, make_record
    ):
        """Test delete only touches the record's tagged backend."""
        record = make_record()
        data = secret_store.codec.encode(record)
        await local_backend.set(str(record.id), data)
        await sync_backend.set(str(record.id), data)

        await secret_store.delete(record)

        assert await local_backend.keys() == []
        assert await sync_backend.keys() == [str(record.id)]


class TestListAll:
    async def test_sorted_by_position(self, secret_store, make_record):
        """Test records from both backends are sorted by position."""
        first = make_record(name="a", position=0.1, storage_backend=StorageBackend.SYNCHRONIZED)
        second = make_record(name="b", position=0.2)
        third = make_record(name="c", position=0.3, storage_backend=StorageBackend.SYNCHRONIZED)
        for record in (third, first, second):
            await secret_store.save(record)

        assert [r.name for r in await secret_store.list_all()] == ["a", "b", "c"]

    async def test_ownership_filtering(self, secret_store, local_backend, make_record):
        """Test records of other devices or users are skipped but kept."""
        mine = make_record(name="mine")
        other_device = make_record(name="other-device", device_id="device-2")
        other_user = make_record(name="other-user", device_user="bob")
        for record in (mine, other_device, other_user):
            await secret_store.save(record)

        assert await secret_store.list_all() == [mine]
        assert len(await local_backend.keys()) == 3

    async def test_interrupted_move_is_listed_once(
        self, secret_store, local_backend, sync_backend, make_record
    ):
        """Test a record left in both backends is listed once and the stale copy removed."""
        record = make_record()
        await secret_store.save(record)

        local_backend.fail_writes = True
        moved = record.model_copy(update={"storage_backend": StorageBackend.SYNCHRONIZED})
        with pytest.raises(StorageError):
            await secret_store.save(moved)
        local_backend.fail_writes = False

        assert await secret_store.list_all() == [moved]
        assert await local_backend.keys() == []
        assert await sync_backend.keys() == [str(record.id)]

    async def test_duplicate_keeps_newest_evaluation(
        self, secret_store, local_backend, sync_backend, make_record
    ):
        """Test the copy evaluated last wins over the other backend's copy."""
        stale = make_record(
            storage_backend=StorageBackend.SYNCHRONIZED,
            last_evaluation=datetime(2024, 1, 1, tzinfo=timezone.utc),
        )
        fresh = stale.model_copy(
            update={
                "storage_backend": StorageBackend.LOCAL,
                "last_evaluation": datetime(2024, 1, 2, tzinfo=timezone.utc),
            }
        )
        await local_backend.set(str(fresh.id), secret_store.codec.encode(fresh))
        await sync_backend.set(str(stale.id), secret_store.codec.encode(stale))

        assert await secret_store.list_all() == [fresh]
        assert await sync_backend.keys() == []

    async def test_duplicate_removal_failure(
        self, secret_store, local_backend, sync_backend, make_record
    ):
        """Test a stale copy that cannot be removed is still listed once."""
        record = make_record()
        moved = record.model_copy(update={"storage_backend": StorageBackend.SYNCHRONIZED})
        await local_backend.set(str(record.id), secret_store.codec.encode(record))
        await sync_backend.set(str(record.id), secret_store.codec.encode(moved))
        local_backend.fail_writes = True

        assert await secret_store.list_all() == [moved]
        assert await local_backend.keys() == [str(record.id)]

    async def test_undecodable_entry_is_discarded(self, secret_store, sync_backend, make_record):
        """Test schema drift is deleted on the first list and gone on the second."""
        record = make_record()
        await secret_store.save(record)
        await sync_backend.set("stale", b'{"name": "from an older release"}')

        assert await secret_store.list_all() == [record]
        assert await sync_backend.keys() == []
        assert len(secret_store.discarded) == 1
        assert secret_store.discarded[0].key == "stale"
        assert secret_store.discarded[0].backend == StorageBackend.SYNCHRONIZED

        assert await secret_store.list_all() == [record]
        assert len(secret_store.discarded) == 1

    async def test_non_utf8_entry_is_discarded(self, secret_store, local_backend):
        """Test binary garbage is discarded too."""
        await local_backend.set("garbage", b"\xff\xfe\x00")

        assert await secret_store.list_all() == []
        assert await local_backend.keys() == []

    async def test_undecryptable_entry_is_discarded(
        self, tmp_path, sync_backend, identity, make_record
    ):
        """Test entries encrypted with a lost key are discarded."""
        old = EncryptedFileSecretBackend(
            StorageBackend.LOCAL, "io.test.local", tmp_path, SecretCipher(b"0" * 32)
        )
        new = EncryptedFileSecretBackend(
            StorageBackend.LOCAL, "io.test.local", tmp_path, SecretCipher(b"1" * 32)
        )
        await SecretStore(old, sync_backend, identity).save(make_record())

        store = SecretStore(new, sync_backend, identity)

        assert await store.list_all() == []
        assert await new.keys() == []
        assert len(store.discarded) == 1

    async def test_empty_store(self, secret_store):
        """Test listing empty backends."""
        assert await secret_store.list_all() == []

    async def test_listing_failure(self, secret_store, sync_backend):
        """Test a backend that cannot be listed raises StorageError."""
        sync_backend.fail_keys = True

        with pytest.raises(StorageError):
            await secret_store.list_all()
