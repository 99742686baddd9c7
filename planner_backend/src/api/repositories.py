from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from functools import lru_cache
from threading import RLock
from typing import Dict, List, Optional

from .errors import DuplicateKeyError, NotFoundError, ValidationError
from .hierarchy import build_hierarchy
from .models import ProjectEntity, TaskEntity
from .schemas import MAX_TASK_DEPTH, ProjectCreate, ProjectNode, TaskCreate, TaskUpdate, tree_depth
from .settings import get_settings
from .utils import new_entity_id

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
class PlannerRepository(ABC):
    """
    Abstract contract for the live (legacy) project/task storage.

    Rows are flat: each task references its project and an optional parent.
    Nested reads are derived through `build_hierarchy`.
    """

    @abstractmethod
    def has_tables(self) -> bool:
        """Return True when the projects and tasks structures exist."""

    @abstractmethod
    def list_projects(self) -> List[ProjectEntity]:
        """Return all projects in creation order."""

    @abstractmethod
    def get_project(self, project_id: str) -> ProjectEntity:
        """Return a project by id. Raises NotFoundError if absent."""

    @abstractmethod
    def insert_project(self, data: ProjectCreate) -> ProjectEntity:
        """Create a project. Raises DuplicateKeyError if the id is taken."""

    @abstractmethod
    def delete_project(self, project_id: str) -> None:
        """Delete a project and, transitively, all of its tasks. Raises NotFoundError if absent."""

    @abstractmethod
    def list_tasks(self) -> List[TaskEntity]:
        """Return every task row in creation order."""

    @abstractmethod
    def list_tasks_by_project(self, project_id: str) -> List[TaskEntity]:
        """Return the task rows of one project in creation order."""

    @abstractmethod
    def get_task(self, task_id: str) -> TaskEntity:
        """Return a task row by id. Raises NotFoundError if absent."""

    @abstractmethod
    def insert_task(self, data: TaskCreate) -> TaskEntity:
        """
        Create a task row. The project must exist; a parent, when given, must
        exist in the same project.
        """

    @abstractmethod
    def update_task(self, task_id: str, data: TaskUpdate) -> TaskEntity:
        """Update only the provided fields of a task row and return it."""

    @abstractmethod
    def delete_task(self, task_id: str) -> None:
        """Delete a task and all of its subtasks. Raises NotFoundError if absent."""

    def get_project_tree(self, project_id: str) -> ProjectNode:
        """Return one project with its nested task trees."""
        project = self.get_project(project_id)
        return ProjectNode(
            id=project["id"],
            name=project["name"],
            tasks=build_hierarchy(self.list_tasks_by_project(project_id)),
        )

    def list_project_trees(self) -> List[ProjectNode]:
        """Return every project with its nested task trees, in creation order."""
        tasks = self.list_tasks()
        return [
            ProjectNode(
                id=p["id"],
                name=p["name"],
                tasks=build_hierarchy([t for t in tasks if t["project_id"] == p["id"]]),
            )
            for p in self.list_projects()
        ]

    def _check_parent(self, project_id: str, parent_id: Optional[str], task_id: Optional[str] = None) -> None:
        """
        Validate a parent reference for a task in `project_id`.

        When `task_id` is given (re-parenting), also reject parents inside the
        task's own subtree, which would turn the parent graph into a cycle.
        The task, with its subtree, must fit within MAX_TASK_DEPTH levels below the parent.
        """
        if parent_id is None:
            return
        try:
            parent = self.get_task(parent_id)
        except NotFoundError:
            raise NotFoundError("Parent task not found") from None
        if parent["project_id"] != project_id:
            raise ValidationError("Parent task belongs to a different project")

        depth = 0
        current: Optional[str] = parent_id
        while current is not None:
            if current == task_id:
                raise ValidationError("A task cannot be moved under itself or one of its subtasks")
            depth += 1
            current = self.get_task(current)["parent_id"]

        height = 1
        if task_id is not None:
            height += tree_depth(build_hierarchy(self.list_tasks_by_project(project_id), task_id))
        if depth + height > MAX_TASK_DEPTH:
            raise ValidationError(f"Tasks cannot be nested more than {MAX_TASK_DEPTH} levels deep")


class InMemoryPlannerRepository(PlannerRepository):
    """
    Thread-safe in-memory repository suitable for testing and default runtime.
    Dict insertion order doubles as creation order.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._projects: Dict[str, ProjectEntity] = {}
        self._tasks: Dict[str, TaskEntity] = {}

    def _now(self) -> datetime:
        return datetime.now()

    def has_tables(self) -> bool:
        return True

    def list_projects(self) -> List[ProjectEntity]:
        with self._lock:
            return [p.copy() for p in self._projects.values()]

    def get_project(self, project_id: str) -> ProjectEntity:
        with self._lock:
            item = self._projects.get(project_id)
            if item is None:
                raise NotFoundError("Project not found")
            return item.copy()

    def insert_project(self, data: ProjectCreate) -> ProjectEntity:
        with self._lock:
            pid = data.id or new_entity_id()
            if pid in self._projects:
                raise DuplicateKeyError(f"Project '{pid}' already exists")
            entity: ProjectEntity = {"id": pid, "name": data.name, "created_at": self._now()}
            self._projects[pid] = entity
            return entity.copy()

    def delete_project(self, project_id: str) -> None:
        with self._lock:
            if self._projects.pop(project_id, None) is None:
                raise NotFoundError("Project not found")
            doomed = [tid for tid, t in self._tasks.items() if t["project_id"] == project_id]
            for tid in doomed:
                del self._tasks[tid]
        logger.info("Deleted project %s with %d task(s)", project_id, len(doomed))

    def list_tasks(self) -> List[TaskEntity]:
        with self._lock:
            return [t.copy() for t in self._tasks.values()]

    def list_tasks_by_project(self, project_id: str) -> List[TaskEntity]:
        with self._lock:
            return [t.copy() for t in self._tasks.values() if t["project_id"] == project_id]

    def get_task(self, task_id: str) -> TaskEntity:
        with self._lock:
            item = self._tasks.get(task_id)
            if item is None:
                raise NotFoundError("Task not found")
            return item.copy()

    def insert_task(self, data: TaskCreate) -> TaskEntity:
        with self._lock:
            self.get_project(data.project_id)
            self._check_parent(data.project_id, data.parent_id)
            tid = data.id or new_entity_id()
            if tid in self._tasks:
                raise DuplicateKeyError(f"Task '{tid}' already exists")
            entity: TaskEntity = {
                "id": tid,
                "project_id": data.project_id,
                "parent_id": data.parent_id,
                "title": data.title,
                "description": data.description,
                "status": data.status.value,
                "sort_order": data.sort_order,
                "created_at": self._now(),
            }
            self._tasks[tid] = entity
            return entity.copy()

    def update_task(self, task_id: str, data: TaskUpdate) -> TaskEntity:
        with self._lock:
            updated = self.get_task(task_id)
            if data.title is not None:
                updated["title"] = data.title
            if data.description is not None:
                updated["description"] = data.description
            if data.status is not None:
                updated["status"] = data.status.value
            if data.sort_order is not None:
                updated["sort_order"] = data.sort_order
            if "parent_id" in data.model_fields_set:
                # Respect explicit nulling of parent_id (move to top level)
                self._check_parent(updated["project_id"], data.parent_id, task_id)
                updated["parent_id"] = data.parent_id
            self._tasks[task_id] = updated
            return updated.copy()

    def delete_task(self, task_id: str) -> None:
        with self._lock:
            if task_id not in self._tasks:
                raise NotFoundError("Task not found")
            doomed = {task_id}
            # Re-parenting breaks creation order, so sweep until no new descendants turn up
            grew = True
            while grew:
                grew = False
                for tid, t in self._tasks.items():
                    if tid not in doomed and t["parent_id"] in doomed:
                        doomed.add(tid)
                        grew = True
            for tid in doomed:
                del self._tasks[tid]


# PUBLIC_INTERFACE
@lru_cache(maxsize=1)
def get_repository() -> PlannerRepository:
    """
    Factory to return the configured live state repository based on settings.
    - memory: InMemoryPlannerRepository
    - sqlite: SQLitePlannerRepository at SQLITE_DB_PATH
    The instance is shared for the lifetime of the process.
    """
    settings = get_settings()
    if settings.persistence_backend == "sqlite":
        from .db import SQLitePlannerRepository

        return SQLitePlannerRepository(settings.sqlite_db_path)
    return InMemoryPlannerRepository()
