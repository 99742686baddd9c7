import pytest

from src.api.db import SQLiteSnapshotStore
from src.api.errors import DuplicateKeyError, NotFoundError

PAYLOAD = [
    {
        "id": "p1",
        "name": "Home",
        "tasks": [
            {
                "id": "t1",
                "project_id": "p1",
                "parent_id": None,
                "title": "Paint",
                "description": "",
                "status": "Pending",
                "sort_order": 0,
                "subtasks": [
                    {
                        "id": "t2",
                        "project_id": "p1",
                        "parent_id": "t1",
                        "title": "Buy paint",
                        "description": "white",
                        "status": "Done",
                        "sort_order": 1,
                        "subtasks": [],
                    }
                ],
            }
        ],
    }
]


class TestSnapshotStore:
    def test_create_then_get(self, store):
        meta = store.create("S1", "test", [])
        assert meta["id"] == "S1"
        assert meta["description"] == "test"
        assert meta["created_at"] is not None

        snap = store.get("S1")
        assert snap["id"] == "S1"
        assert snap["description"] == "test"
        assert snap["data"] == []

    def test_payload_round_trip(self, store):
        store.create("S1", None, PAYLOAD)
        snap = store.get("S1")
        assert snap["data"] == PAYLOAD
        assert snap["description"] is None

    def test_payload_is_immutable(self, store):
        data = [{"id": "p1", "name": "Home", "tasks": []}]
        store.create("S1", None, data)
        data[0]["name"] = "Changed"
        fetched = store.get("S1")
        fetched["data"].append({"id": "p2", "name": "Other", "tasks": []})
        assert store.get("S1")["data"] == [{"id": "p1", "name": "Home", "tasks": []}]

    def test_latest_on_empty_store_is_sentinel(self, store):
        latest = store.get_latest()
        assert latest == {"id": None, "created_at": None, "description": None, "data": []}

    def test_latest_is_most_recent(self, store):
        store.create("a", "first", [])
        store.create("b", "second", PAYLOAD)
        latest = store.get_latest()
        assert latest["id"] == "b"
        assert latest["data"] == PAYLOAD

    def test_list_newest_first_without_payload(self, store):
        for sid in ["a", "b", "c"]:
            store.create(sid, f"snap {sid}", PAYLOAD)
        items = store.list()
        assert [s["id"] for s in items] == ["c", "b", "a"]
        assert all("data" not in s for s in items)
        stamps = [s["created_at"] for s in items]
        assert stamps == sorted(stamps, reverse=True)

    def test_duplicate_id_rejected(self, store):
        store.create("S1", "first", [])
        with pytest.raises(DuplicateKeyError):
            store.create("S1", "second", PAYLOAD)
        assert store.get("S1")["description"] == "first"
        assert store.count() == 1

    def test_generated_ids_are_unique(self, store):
        first = store.create(None, None, [])
        second = store.create(None, None, [])
        assert first["id"].isdigit()
        assert first["id"] != second["id"]
        assert store.count() == 2

    def test_empty_id_is_generated(self, store):
        meta = store.create("", None, [])
        assert meta["id"].isdigit()
        assert store.get(meta["id"])["data"] == []

    def test_get_missing_raises(self, store):
        with pytest.raises(NotFoundError):
            store.get("nope")

    def test_delete(self, store):
        store.create("S1", None, [])
        store.delete("S1")
        assert store.count() == 0
        with pytest.raises(NotFoundError):
            store.get("S1")
        with pytest.raises(NotFoundError):
            store.delete("S1")

    def test_is_ready(self, store):
        assert store.is_ready() is True


class TestSQLiteSnapshotStore:
    def test_not_ready_without_schema(self, db_path):
        store = SQLiteSnapshotStore(db_path, create_schema=False)
        assert store.is_ready() is False

    def test_persists_across_instances(self, db_path):
        SQLiteSnapshotStore(db_path).create("S1", "kept", PAYLOAD)
        reopened = SQLiteSnapshotStore(db_path)
        assert reopened.get("S1")["data"] == PAYLOAD
        assert reopened.get_latest()["id"] == "S1"
