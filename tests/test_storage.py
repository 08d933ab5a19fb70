"""Tests for the SQLite stats storage."""
import pytest
import torch

from cdrbm.storage import SQLiteStatsStorage, deserialize, serialize


@pytest.fixture
def storage():
    with SQLiteStatsStorage() as storage:
        yield storage


class TestSerialization:
    def test_round_trip_of_snapshot(self):
        snapshot = {"step": 3, "weights": torch.arange(6, dtype=torch.float64).view(2, 3), "note": "x"}
        loaded = deserialize(serialize(snapshot))
        assert loaded["step"] == 3
        assert loaded["note"] == "x"
        assert torch.equal(loaded["weights"], snapshot["weights"])


class TestSQLiteStatsStorage:
    def test_metadata(self, storage):
        assert storage.get_metadata("s", "rbm") is None
        storage.put_metadata("s", "rbm", {"n_visible": 4})
        assert storage.get_metadata("s", "rbm") == {"n_visible": 4}

    def test_metadata_is_replaced(self, storage):
        storage.put_metadata("s", "rbm", {"version": 1})
        storage.put_metadata("s", "rbm", {"version": 2})
        assert storage.get_metadata("s", "rbm") == {"version": 2}

    def test_static_info(self, storage):
        storage.put_static_info("s", "rbm", "w0", {"host": "a"})
        storage.put_static_info("s", "rbm", "w1", {"host": "b"})
        assert storage.get_static_info("s", "rbm", "w1") == {"host": "b"}
        assert storage.get_static_info("s", "rbm", "w2") is None

    def test_updates(self, storage):
        assert storage.get_latest_update("s", "rbm", "w0") is None
        for timestamp in [30, 10, 20]:
            storage.put_update("s", "rbm", "w0", timestamp, {"t": timestamp})
        assert storage.get_latest_update("s", "rbm", "w0") == (30, {"t": 30})
        assert storage.get_all_updates_after("s", "rbm", "w0", 10) == [(20, {"t": 20}), (30, {"t": 30})]
        assert storage.num_updates("s", "rbm", "w0") == 3

    def test_updates_are_keyed_by_worker(self, storage):
        storage.put_update("s", "rbm", "w0", 1, {"worker": 0})
        storage.put_update("s", "rbm", "w1", 1, {"worker": 1})
        assert storage.get_latest_update("s", "rbm", "w1") == (1, {"worker": 1})
        assert storage.num_updates("s", "rbm", "w0") == 1

    def test_list_ids(self, storage):
        storage.put_metadata("b", "rbm", {})
        storage.put_static_info("a", "rbm", "w1", {})
        storage.put_update("a", "rbm", "w0", 5, {})
        assert storage.list_session_ids() == ["a", "b"]
        assert storage.list_worker_ids("a") == ["w0", "w1"]
        assert storage.list_worker_ids("b") == []

    def test_persists_to_file(self, tmp_path):
        path = str(tmp_path / "stats.db")
        with SQLiteStatsStorage(path) as storage:
            storage.put_update("s", "rbm", "w0", 1, {"weights": torch.ones(2, 2, dtype=torch.float64)})
        with SQLiteStatsStorage(path) as storage:
            timestamp, snapshot = storage.get_latest_update("s", "rbm", "w0")
        assert timestamp == 1
        assert torch.equal(snapshot["weights"], torch.ones(2, 2, dtype=torch.float64))

    def test_get_update_by_timestamp(self, storage):
        storage.put_update("s", "rbm", "w0", 10, {"t": 10})
        storage.put_update("s", "rbm", "w0", 20, {"t": 20})
        assert storage.get_update("s", "rbm", "w0", 10) == {"t": 10}
        assert storage.get_update("s", "rbm", "w0", 15) is None
        assert storage.get_update("s", "rbm", "w1", 10) is None

    def test_session_exists(self, storage):
        assert not storage.session_exists("s")
        storage.put_static_info("s", "rbm", "w0", {})
        assert storage.session_exists("s")

    def test_list_type_ids(self, storage):
        storage.put_metadata("s", "rbm", {})
        storage.put_update("s", "observer", "w0", 1, {})
        storage.put_static_info("other", "ignored", "w0", {})
        assert storage.list_type_ids("s") == ["observer", "rbm"]
        assert storage.list_type_ids("missing") == []

    def test_get_all_static_infos(self, storage):
        storage.put_static_info("s", "rbm", "w1", {"host": "b"})
        storage.put_static_info("s", "rbm", "w0", {"host": "a"})
        storage.put_static_info("s", "other", "w2", {"host": "c"})
        assert storage.get_all_static_infos("s", "rbm") == {"w0": {"host": "a"}, "w1": {"host": "b"}}

    def test_get_latest_update_all_workers(self, storage):
        for worker_id, timestamp in [("w0", 1), ("w0", 3), ("w1", 2), ("w1", 1)]:
            storage.put_update("s", "rbm", worker_id, timestamp, {"t": timestamp})
        storage.put_update("other", "rbm", "w0", 9, {"t": 9})
        assert storage.get_latest_update_all_workers("s", "rbm") == {"w0": (3, {"t": 3}), "w1": (2, {"t": 2})}
        assert storage.get_latest_update_all_workers("s", "missing") == {}

    def test_is_closed(self):
        storage = SQLiteStatsStorage()
        assert not storage.closed
        storage.close()
        assert storage.closed
        with SQLiteStatsStorage() as storage:
            pass
        assert storage.closed
