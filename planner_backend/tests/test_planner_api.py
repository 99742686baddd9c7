import os
from datetime import datetime

import pytest
from fastapi.testclient import TestClient

# Ensure we default to memory backend for tests to avoid filesystem dependencies
os.environ.setdefault("PERSISTENCE_BACKEND", "memory")

# Import the FastAPI app
from src.api.client import HttpSnapshotClient  # noqa: E402
from src.api.errors import DuplicateKeyError, NotFoundError  # noqa: E402
from src.api.main import app  # noqa: E402
from src.api.repositories import InMemoryPlannerRepository, get_repository  # noqa: E402
from src.api.snapshots import InMemorySnapshotStore, get_snapshot_store  # noqa: E402
from src.api.state import StateController  # noqa: E402

client = TestClient(app)


@pytest.fixture(autouse=True)
def fresh_storage():
    repo = InMemoryPlannerRepository()
    store = InMemorySnapshotStore()
    app.dependency_overrides[get_repository] = lambda: repo
    app.dependency_overrides[get_snapshot_store] = lambda: store
    yield
    app.dependency_overrides.clear()


def create_project(name="Home", project_id=None):
    payload = {"name": name}
    if project_id is not None:
        payload["id"] = project_id
    res = client.post("/api/v1/projects/", json=payload)
    assert res.status_code == 201
    return res.json()


def create_task(project_id, title="Test Task", parent_id=None, **extra):
    payload = {"project_id": project_id, "parent_id": parent_id, "title": title, **extra}
    res = client.post("/api/v1/tasks/", json=payload)
    assert res.status_code == 201
    return res.json()


def project_payload(project_id="p1", name="Home"):
    return {
        "id": project_id,
        "name": name,
        "tasks": [
            {
                "id": f"{project_id}-t1",
                "project_id": project_id,
                "title": "Paint",
                "subtasks": [
                    {
                        "id": f"{project_id}-t2",
                        "project_id": project_id,
                        "parent_id": f"{project_id}-t1",
                        "title": "Buy paint",
                        "status": "Doing",
                    }
                ],
            }
        ],
    }


class TestHealth:
    def test_health_check(self):
        res = client.get("/")
        assert res.status_code == 200
        data = res.json()
        assert data["message"] == "Healthy"
        assert data["backend"] in ("memory", "sqlite")


class TestProjectsAndTasks:
    def test_create_project_and_nested_read(self):
        project = create_project("Home", project_id="home")
        assert project == {"id": "home", "name": "Home", "tasks": []}

        root = create_task("home", "Paint")
        child = create_task("home", "Buy paint", parent_id=root["id"], description="white")
        create_task("home", "Pick colour", parent_id=child["id"])
        create_task("home", "Mow lawn")

        res = client.get("/api/v1/projects/home")
        assert res.status_code == 200
        tree = res.json()["tasks"]
        assert [t["title"] for t in tree] == ["Paint", "Mow lawn"]
        assert tree[0]["subtasks"][0]["description"] == "white"
        assert tree[0]["subtasks"][0]["subtasks"][0]["title"] == "Pick colour"

        listing = client.get("/api/v1/projects/").json()
        assert [p["id"] for p in listing] == ["home"]

    def test_task_shape(self):
        create_project(project_id="p")
        task = create_task("p", "Paint")
        for key in ["id", "project_id", "parent_id", "title", "description", "status", "sort_order", "created_at"]:
            assert key in task
        assert task["status"] == "Pending"
        datetime.fromisoformat(task["created_at"])

        fetched = client.get(f"/api/v1/tasks/{task['id']}")
        assert fetched.status_code == 200
        assert fetched.json()["id"] == task["id"]

    def test_patch_task_and_reparent(self):
        create_project(project_id="p")
        a = create_task("p", "a")
        b = create_task("p", "b")
        res = client.patch(f"/api/v1/tasks/{b['id']}", json={"parent_id": a["id"], "status": "Done"})
        assert res.status_code == 200
        assert res.json()["parent_id"] == a["id"]
        assert res.json()["status"] == "Done"

        res_cycle = client.patch(f"/api/v1/tasks/{a['id']}", json={"parent_id": b["id"]})
        assert res_cycle.status_code == 400
        assert res_cycle.json()["error"] == "ValidationError"

    def test_delete_project_cascades(self):
        create_project(project_id="p")
        root = create_task("p", "root")
        child = create_task("p", "child", parent_id=root["id"])

        res = client.delete("/api/v1/projects/p")
        assert res.status_code == 204
        assert res.text == ""

        assert client.get(f"/api/v1/tasks/{child['id']}").status_code == 404
        res_again = client.delete("/api/v1/projects/p")
        assert res_again.status_code == 404
        assert res_again.json() == {"error": "NotFound", "detail": "Project not found"}

    def test_delete_task_cascades(self):
        create_project(project_id="p")
        root = create_task("p", "root")
        child = create_task("p", "child", parent_id=root["id"])
        assert client.delete(f"/api/v1/tasks/{root['id']}").status_code == 204
        assert client.get(f"/api/v1/tasks/{child['id']}").status_code == 404

    def test_not_found_and_duplicates(self):
        assert client.get("/api/v1/projects/nope").status_code == 404
        res = client.post("/api/v1/tasks/", json={"project_id": "nope", "title": "x"})
        assert res.status_code == 404
        create_project(project_id="dup")
        res_dup = client.post("/api/v1/projects/", json={"id": "dup", "name": "Again"})
        assert res_dup.status_code == 409
        assert res_dup.json()["error"] == "DuplicateKey"


class TestSnapshotsApi:
    def test_create_and_get(self):
        res = client.post("/api/v1/snapshots/", json={"id": "S1", "description": "test", "data": []})
        assert res.status_code == 201
        meta = res.json()
        assert meta["id"] == "S1"
        assert meta["description"] == "test"
        assert "data" not in meta

        res_get = client.get("/api/v1/snapshots/S1")
        assert res_get.status_code == 200
        snap = res_get.json()
        assert snap["id"] == "S1"
        assert snap["description"] == "test"
        assert snap["data"] == []

    def test_latest_on_empty_store(self):
        res = client.get("/api/v1/snapshots/latest")
        assert res.status_code == 200
        assert res.json() == {"id": None, "created_at": None, "description": None, "data": []}

    def test_list_newest_first_and_latest(self):
        for sid in ["a", "b", "c"]:
            client.post("/api/v1/snapshots/", json={"id": sid, "data": [project_payload()]})
        items = client.get("/api/v1/snapshots/").json()
        assert [s["id"] for s in items] == ["c", "b", "a"]
        assert all("data" not in s for s in items)

        latest = client.get("/api/v1/snapshots/latest").json()
        assert latest["id"] == "c"
        subtask = latest["data"][0]["tasks"][0]["subtasks"][0]
        assert subtask["status"] == "Doing"
        assert subtask["description"] == ""

    def test_duplicate_and_missing(self):
        client.post("/api/v1/snapshots/", json={"id": "S1", "data": []})
        res_dup = client.post("/api/v1/snapshots/", json={"id": "S1", "data": []})
        assert res_dup.status_code == 409
        assert client.get("/api/v1/snapshots/nope").status_code == 404
        assert client.delete("/api/v1/snapshots/nope").status_code == 404
        assert client.delete("/api/v1/snapshots/S1").status_code == 204

    def test_data_is_required(self):
        res = client.post("/api/v1/snapshots/", json={"description": "no data"})
        assert res.status_code == 422
        body = res.json()
        assert body.get("error") == "ValidationError"
        assert body.get("message") == "Request validation failed"
        assert isinstance(body.get("detail"), list)

    def test_inconsistent_tree_rejected(self):
        bad = project_payload()
        bad["tasks"][0]["project_id"] = "p2"
        res = client.post("/api/v1/snapshots/", json={"id": "S1", "data": [bad]})
        assert res.status_code == 422
        assert res.json()["error"] == "ValidationError"

        nested = project_payload()
        nested["tasks"][0]["subtasks"][0]["parent_id"] = "elsewhere"
        assert client.post("/api/v1/snapshots/", json={"data": [nested]}).status_code == 422

        blank = project_payload()
        blank["tasks"][0]["title"] = ""
        assert client.post("/api/v1/snapshots/", json={"data": [blank]}).status_code == 422
        assert client.get("/api/v1/snapshots/").json() == []


class TestValidationErrors:
    def test_create_project_blank_name(self):
        res = client.post("/api/v1/projects/", json={"name": "  "})
        assert res.status_code == 422
        assert res.json().get("error") == "ValidationError"

    def test_create_task_bad_status(self):
        create_project(project_id="p")
        res = client.post("/api/v1/tasks/", json={"project_id": "p", "title": "x", "status": "Later"})
        assert res.status_code == 422
        assert isinstance(res.json().get("detail"), list)


class TestHttpSnapshotClient:
    def test_controller_saves_and_loads_over_http(self):
        remote = HttpSnapshotClient(client=client)
        controller = StateController(remote)
        controller.load()
        assert controller.projects == ()

        project = controller.add_project("Home")
        parent = controller.add_task(project.id, "Paint")
        controller.add_task(project.id, "Buy paint", parent_id=parent.id)
        meta = controller.save("from client", snapshot_id="remote-1")
        assert meta["id"] == "remote-1"
        assert isinstance(meta["created_at"], datetime)
        assert controller.dirty is False

        restored = StateController(remote)
        restored.load()
        assert restored.projects == controller.projects

        assert [s["id"] for s in remote.list()] == ["remote-1"]
        assert remote.get("remote-1")["description"] == "from client"

    def test_errors_map_to_domain_errors(self):
        remote = HttpSnapshotClient(client=client)
        remote.create("S1", None, [])
        with pytest.raises(DuplicateKeyError):
            remote.create("S1", None, [])
        remote.delete("S1")
        with pytest.raises(NotFoundError):
            remote.get("S1")

    @pytest.mark.parametrize("snapshot_id", ["a/b", "what?", "tag#1", "50% done"])
    def test_ids_with_reserved_characters(self, snapshot_id):
        remote = HttpSnapshotClient(client=client)
        remote.create(snapshot_id, "odd id", [])
        assert remote.get(snapshot_id)["id"] == snapshot_id
        remote.delete(snapshot_id)
        with pytest.raises(NotFoundError):
            remote.get(snapshot_id)
