"""Tests for the file and memory state stores."""

import json
import threading
from datetime import timedelta

import pytest

from leasekeeper.base.exceptions import RecordNotFoundError, StoreError
from leasekeeper.storage import FileStore, MemoryStore

from conftest import make_record


@pytest.fixture(params=["file", "memory"])
def any_store(request, tmp_path):
    if request.param == "file":
        return FileStore(tmp_path / "state" / "instances.json")
    return MemoryStore()


class TestStoreContract:
    def test_empty(self, any_store):
        assert any_store.list_all() == []

    def test_save_and_get(self, any_store):
        record = make_record("i-1")
        any_store.save(record)
        assert any_store.get("i-1") == record

    def test_save_is_upsert(self, any_store):
        any_store.save(make_record("i-1", state="running"))
        any_store.save(make_record("i-1", state="stopped"))
        assert [r.state for r in any_store.list_all()] == ["stopped"]

    def test_get_missing(self, any_store):
        with pytest.raises(RecordNotFoundError):
            any_store.get("i-missing")

    def test_delete(self, any_store):
        any_store.save(make_record("i-1"))
        any_store.delete("i-1")
        any_store.delete("i-1")
        assert any_store.list_all() == []

    def test_update(self, any_store):
        any_store.save(make_record("i-1", expires_in=timedelta(hours=1)))
        updated = any_store.update("i-1", lambda r: r.extended(timedelta(minutes=30)))
        assert any_store.get("i-1").expires_at == updated.expires_at

    def test_update_missing(self, any_store):
        with pytest.raises(RecordNotFoundError):
            any_store.update("i-missing", lambda r: r)

    def test_save_never_moves_expiry_backwards(self, any_store):
        stale = make_record("i-1", state="running", expires_in=timedelta(hours=1))
        any_store.save(stale)
        any_store.update("i-1", lambda r: r.extended(timedelta(hours=2)))

        stored = any_store.save(stale.model_copy(update={"state": "stopping"}))

        assert stored.state == "stopping"
        assert stored.expires_at == stale.expires_at + timedelta(hours=2)
        assert any_store.get("i-1").lease_duration == stale.lease_duration + timedelta(hours=2)

    def test_concurrent_updates_are_not_lost(self, any_store):
        any_store.save(make_record("i-1", expires_in=timedelta(hours=1)))
        start = any_store.get("i-1").expires_at

        def extend():
            for _ in range(10):
                any_store.update("i-1", lambda r: r.extended(timedelta(minutes=1)))

        threads = [threading.Thread(target=extend) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert any_store.get("i-1").expires_at == start + timedelta(minutes=40)


class TestFileStore:
    def test_persists_across_instances(self, tmp_path):
        path = tmp_path / "instances.json"
        FileStore(path).save(make_record("i-1"))
        assert FileStore(path).get("i-1").id == "i-1"

    def test_document_layout(self, tmp_path):
        path = tmp_path / "instances.json"
        FileStore(path).save(make_record("i-1"))
        doc = json.loads(path.read_text())
        entry = doc["instances"]["i-1"]
        assert entry["instance"]["id"] == "i-1"
        assert "created_at" in entry
        assert "updated_at" in doc

    def test_created_at_survives_updates(self, tmp_path):
        path = tmp_path / "instances.json"
        store = FileStore(path)
        store.save(make_record("i-1"))
        created = json.loads(path.read_text())["instances"]["i-1"]["created_at"]
        store.save(make_record("i-1", state="stopped"))
        assert json.loads(path.read_text())["instances"]["i-1"]["created_at"] == created

    def test_empty_file(self, tmp_path):
        path = tmp_path / "instances.json"
        path.write_text("")
        assert FileStore(path).list_all() == []

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "instances.json"
        path.write_text("{not json")
        with pytest.raises(StoreError):
            FileStore(path).list_all()

    def test_no_temp_files_left(self, tmp_path):
        store = FileStore(tmp_path / "instances.json")
        store.save(make_record("i-1"))
        store.save(make_record("i-2"))
        assert [p.name for p in tmp_path.iterdir()] == ["instances.json"]
