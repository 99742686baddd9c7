import pytest

from src.api.db import apply_task_columns, connect
from src.api.errors import DuplicateKeyError, NotFoundError, StorageUnavailableError, ValidationError
from src.api.schemas import ProjectCreate, TaskCreate, TaskStatus, TaskUpdate


def add_project(repo, name="Home", project_id=None):
    return repo.insert_project(ProjectCreate(id=project_id, name=name))


def add_task(repo, project_id, title, parent_id=None, **extra):
    return repo.insert_task(TaskCreate(project_id=project_id, parent_id=parent_id, title=title, **extra))


class TestProjects:
    def test_insert_and_list_in_creation_order(self, repo):
        a = add_project(repo, "A")
        b = add_project(repo, "B", project_id="b")
        assert b["id"] == "b"
        assert [p["id"] for p in repo.list_projects()] == [a["id"], "b"]
        assert repo.get_project("b")["name"] == "B"

    def test_duplicate_project_id(self, repo):
        add_project(repo, "A", project_id="x")
        with pytest.raises(DuplicateKeyError):
            add_project(repo, "B", project_id="x")

    def test_get_missing_project(self, repo):
        with pytest.raises(NotFoundError):
            repo.get_project("nope")

    def test_delete_project_cascades_to_all_tasks(self, repo):
        keep = add_project(repo, "Keep")
        doomed = add_project(repo, "Doomed")
        root = add_task(repo, doomed["id"], "root")
        child = add_task(repo, doomed["id"], "child", root["id"])
        add_task(repo, doomed["id"], "grandchild", child["id"])
        kept = add_task(repo, keep["id"], "stays")

        repo.delete_project(doomed["id"])

        assert repo.list_tasks_by_project(doomed["id"]) == []
        assert [t["id"] for t in repo.list_tasks()] == [kept["id"]]
        with pytest.raises(NotFoundError):
            repo.get_task(child["id"])
        with pytest.raises(NotFoundError):
            repo.delete_project(doomed["id"])


class TestTasks:
    def test_insert_defaults(self, repo):
        p = add_project(repo)
        t = add_task(repo, p["id"], "  Paint  ")
        assert t["title"] == "Paint"
        assert t["status"] == "Pending"
        assert t["description"] == ""
        assert t["sort_order"] == 0
        assert t["parent_id"] is None

    def test_insert_requires_existing_project(self, repo):
        with pytest.raises(NotFoundError):
            add_task(repo, "nope", "x")

    def test_insert_requires_existing_parent(self, repo):
        p = add_project(repo)
        with pytest.raises(NotFoundError):
            add_task(repo, p["id"], "x", parent_id="missing")

    def test_parent_must_share_project(self, repo):
        p1 = add_project(repo, "One")
        p2 = add_project(repo, "Two")
        parent = add_task(repo, p1["id"], "parent")
        with pytest.raises(ValidationError):
            add_task(repo, p2["id"], "child", parent_id=parent["id"])

    def test_update_fields(self, repo):
        p = add_project(repo)
        t = add_task(repo, p["id"], "Paint", description="x")
        updated = repo.update_task(t["id"], TaskUpdate(title="Paint twice", status=TaskStatus.DOING, sort_order=2))
        assert updated["title"] == "Paint twice"
        assert updated["status"] == "Doing"
        assert updated["sort_order"] == 2
        assert updated["description"] == "x"

    def test_update_missing_task(self, repo):
        with pytest.raises(NotFoundError):
            repo.update_task("nope", TaskUpdate(title="x"))

    def test_reparent_and_move_to_top_level(self, repo):
        p = add_project(repo)
        a = add_task(repo, p["id"], "a")
        b = add_task(repo, p["id"], "b")
        moved = repo.update_task(b["id"], TaskUpdate(parent_id=a["id"]))
        assert moved["parent_id"] == a["id"]
        tree = repo.get_project_tree(p["id"])
        assert [t.id for t in tree.tasks] == [a["id"]]
        assert [t.id for t in tree.tasks[0].subtasks] == [b["id"]]

        back = repo.update_task(b["id"], TaskUpdate(parent_id=None))
        assert back["parent_id"] is None

    def test_title_only_update_keeps_parent(self, repo):
        p = add_project(repo)
        a = add_task(repo, p["id"], "a")
        b = add_task(repo, p["id"], "b", parent_id=a["id"])
        assert repo.update_task(b["id"], TaskUpdate(title="bb"))["parent_id"] == a["id"]

    def test_reparent_into_own_subtree_rejected(self, repo):
        p = add_project(repo)
        a = add_task(repo, p["id"], "a")
        b = add_task(repo, p["id"], "b", parent_id=a["id"])
        c = add_task(repo, p["id"], "c", parent_id=b["id"])
        with pytest.raises(ValidationError):
            repo.update_task(a["id"], TaskUpdate(parent_id=c["id"]))
        with pytest.raises(ValidationError):
            repo.update_task(a["id"], TaskUpdate(parent_id=a["id"]))
        assert repo.get_task(a["id"])["parent_id"] is None

    def test_nesting_depth_is_limited(self, repo, monkeypatch):
        monkeypatch.setattr("src.api.repositories.MAX_TASK_DEPTH", 3)
        p = add_project(repo)
        a = add_task(repo, p["id"], "a")
        b = add_task(repo, p["id"], "b", parent_id=a["id"])
        c = add_task(repo, p["id"], "c", parent_id=b["id"])
        with pytest.raises(ValidationError):
            add_task(repo, p["id"], "d", parent_id=c["id"])

        x = add_task(repo, p["id"], "x")
        add_task(repo, p["id"], "y", parent_id=x["id"])
        with pytest.raises(ValidationError):
            repo.update_task(x["id"], TaskUpdate(parent_id=b["id"]))
        assert repo.update_task(x["id"], TaskUpdate(parent_id=a["id"]))["parent_id"] == a["id"]

    def test_delete_task_cascades_to_subtasks(self, repo):
        p = add_project(repo)
        a = add_task(repo, p["id"], "a")
        b = add_task(repo, p["id"], "b", parent_id=a["id"])
        add_task(repo, p["id"], "c", parent_id=b["id"])
        other = add_task(repo, p["id"], "other")

        repo.delete_task(a["id"])

        assert [t["id"] for t in repo.list_tasks_by_project(p["id"])] == [other["id"]]
        with pytest.raises(NotFoundError):
            repo.delete_task(a["id"])

    def test_project_trees(self, repo):
        p1 = add_project(repo, "One")
        p2 = add_project(repo, "Two")
        a = add_task(repo, p1["id"], "a")
        add_task(repo, p1["id"], "b", parent_id=a["id"])
        add_task(repo, p2["id"], "c")
        trees = repo.list_project_trees()
        assert [p.name for p in trees] == ["One", "Two"]
        assert [t.title for t in trees[0].tasks] == ["a"]
        assert [t.title for t in trees[0].tasks[0].subtasks] == ["b"]
        assert [t.title for t in trees[1].tasks] == ["c"]


class TestTaskColumnsMigration:
    def test_adds_missing_columns(self, db_path):
        with connect(db_path) as conn:
            conn.execute("CREATE TABLE tasks (id TEXT PRIMARY KEY, project_id TEXT, parent_id TEXT, "
                         "title TEXT, status TEXT, created_at TEXT)")
        assert apply_task_columns(db_path) == ["description", "sort_order"]
        assert apply_task_columns(db_path) == []

    def test_requires_tasks_table(self, db_path):
        with pytest.raises(StorageUnavailableError):
            apply_task_columns(db_path)
