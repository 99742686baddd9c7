"""
Client-side application state: the whole project/task tree held in memory,
changed through pure tree transforms and checkpointed as snapshots.

Every mutation builds a new tree value and marks the state dirty. `save`
writes the whole tree as a new snapshot and clears the flag only once the
write succeeded. `load` adopts the latest snapshot as-is; snapshot payloads
are already nested, so no hierarchy rebuild is involved.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from pydantic import ValidationError as PydanticValidationError

from .errors import DuplicateKeyError, NotFoundError, ValidationError
from .hierarchy import check_depth
from .schemas import ProjectNode, TaskNode, TaskStatus
from .utils import new_entity_id

logger = logging.getLogger(__name__)


class SnapshotGateway(Protocol):
    """The part of a snapshot store the controller needs. Local stores and HttpSnapshotClient both fit."""

    def create(
        self, snapshot_id: Optional[str], description: Optional[str], data: List[Dict[str, Any]]
    ) -> Mapping[str, Any]: ...

    def get_latest(self) -> Mapping[str, Any]: ...


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class PlannerState:
    """
    Immutable view of the application state.

    Fields:
    - projects: Every project with its nested tasks, in creation order
    - dirty: True when the tree has changes not yet written as a snapshot
    - version: Incremented by every successful mutation
    """

    projects: Tuple[ProjectNode, ...] = ()
    dirty: bool = False
    version: int = 0


def _find_task(tasks: Sequence[TaskNode], task_id: str) -> Optional[TaskNode]:
    for task in tasks:
        if task.id == task_id:
            return task
        found = _find_task(task.subtasks, task_id)
        if found is not None:
            return found
    return None


def _map_task(
    tasks: Sequence[TaskNode], task_id: str, fn: Callable[[TaskNode], TaskNode]
) -> Tuple[List[TaskNode], bool]:
    """Return a copy of `tasks` with `fn` applied to the task `task_id`, and whether it was found."""
    result: List[TaskNode] = []
    found = False
    for task in tasks:
        if not found and task.id == task_id:
            result.append(fn(task))
            found = True
            continue
        if not found:
            subtasks, found = _map_task(task.subtasks, task_id, fn)
            if found:
                task = task.model_copy(update={"subtasks": subtasks})
        result.append(task)
    return result, found


def _remove_task(tasks: Sequence[TaskNode], task_id: str) -> Tuple[List[TaskNode], Optional[TaskNode]]:
    """Return a copy of `tasks` without `task_id` (and its subtree), plus the removed node."""
    result: List[TaskNode] = []
    removed: Optional[TaskNode] = None
    for task in tasks:
        if removed is None and task.id == task_id:
            removed = task
            continue
        if removed is None:
            subtasks, removed = _remove_task(task.subtasks, task_id)
            if removed is not None:
                task = task.model_copy(update={"subtasks": subtasks})
        result.append(task)
    return result, removed


def _insert(siblings: Sequence[TaskNode], node: TaskNode, index: Optional[int]) -> List[TaskNode]:
    result = list(siblings)
    if index is None or index >= len(result):
        result.append(node)
    else:
        result.insert(max(index, 0), node)
    return result


def _with_project(node: TaskNode, project_id: str) -> TaskNode:
    return node.model_copy(
        update={
            "project_id": project_id,
            "subtasks": [_with_project(t, project_id) for t in node.subtasks],
        }
    )


def _required(value: Optional[str], field: str) -> str:
    s = (value or "").strip()
    if not s:
        raise ValidationError(f"{field} must not be empty")
    return s


# PUBLIC_INTERFACE
class StateController:
    """
    Owns the in-memory project/task tree between load and save boundaries.

    A mutation either fully applies or raises and leaves the state untouched.
    Local changes are not atomic with persistence: until `save` succeeds the
    tree in memory may be ahead of the stored snapshots, which `dirty` reports.
    """

    def __init__(self, gateway: SnapshotGateway) -> None:
        self._gateway = gateway
        self._state = PlannerState()

    @property
    def state(self) -> PlannerState:
        return self._state

    @property
    def projects(self) -> Tuple[ProjectNode, ...]:
        return self._state.projects

    @property
    def dirty(self) -> bool:
        return self._state.dirty

    # Persistence

    def load(self) -> PlannerState:
        """Replace the tree with the latest snapshot's payload, or an empty tree if there is none."""
        latest = self._gateway.get_latest()
        data = latest.get("data") or []
        try:
            projects = tuple(ProjectNode.model_validate(p) for p in data)
        except PydanticValidationError as e:
            raise ValidationError(f"Snapshot {latest.get('id')} holds an invalid tree: {e}") from e
        self._state = PlannerState(projects=projects, dirty=False, version=self._state.version + 1)
        logger.info("Loaded %d project(s) from snapshot %s", len(projects), latest.get("id"))
        return self._state

    def save(self, description: Optional[str] = None, snapshot_id: Optional[str] = None) -> Mapping[str, Any]:
        """
        Write the whole tree as a new snapshot and return its metadata.
        On failure the error propagates and the state stays dirty.
        """
        state = self._state
        payload = [p.model_dump(mode="json") for p in state.projects]
        meta = self._gateway.create(snapshot_id, description, payload)
        if self._state is state:
            self._state = replace(state, dirty=False)
        logger.info("Saved snapshot %s", meta.get("id"))
        return meta

    def _commit(self, projects: Sequence[ProjectNode]) -> None:
        for project in projects:
            check_depth(project.tasks, f"Project '{project.name}'")
        self._state = PlannerState(projects=tuple(projects), dirty=True, version=self._state.version + 1)

    # Lookups

    def get_project(self, project_id: str) -> ProjectNode:
        for project in self._state.projects:
            if project.id == project_id:
                return project
        raise NotFoundError("Project not found")

    def find_task(self, task_id: str) -> TaskNode:
        return self._locate(task_id)[1]

    def _locate(self, task_id: str) -> Tuple[ProjectNode, TaskNode]:
        """Return the project whose tree holds `task_id`, and the task itself."""
        for project in self._state.projects:
            task = _find_task(project.tasks, task_id)
            if task is not None:
                return project, task
        raise NotFoundError("Task not found")

    # Projects

    def add_project(self, name: str, project_id: Optional[str] = None) -> ProjectNode:
        project = ProjectNode(id=project_id or new_entity_id(), name=_required(name, "name"))
        if any(p.id == project.id for p in self._state.projects):
            raise DuplicateKeyError(f"Project '{project.id}' already exists")
        self._commit([*self._state.projects, project])
        return project

    def delete_project(self, project_id: str) -> None:
        self.get_project(project_id)
        self._commit([p for p in self._state.projects if p.id != project_id])

    # Tasks

    def add_task(
        self,
        project_id: str,
        title: str,
        parent_id: Optional[str] = None,
        description: str = "",
        status: TaskStatus = TaskStatus.PENDING,
        task_id: Optional[str] = None,
    ) -> TaskNode:
        """Append a task to a project's top level, or as the last subtask of `parent_id`."""
        project = self.get_project(project_id)
        if parent_id is not None:
            owner, _ = self._locate(parent_id)
            if owner.id != project_id:
                raise ValidationError("Parent task belongs to a different project")
        node = TaskNode(
            id=task_id or new_entity_id(),
            project_id=project_id,
            parent_id=parent_id,
            title=_required(title, "title"),
            description=description or "",
            status=status,
        )
        if any(_find_task(p.tasks, node.id) is not None for p in self._state.projects):
            raise DuplicateKeyError(f"Task '{node.id}' already exists")

        if parent_id is None:
            tasks = [*project.tasks, node]
        else:
            tasks, _ = _map_task(
                project.tasks,
                parent_id,
                lambda t: t.model_copy(update={"subtasks": [*t.subtasks, node]}),
            )
        self._replace_project(project.model_copy(update={"tasks": tasks}))
        return node

    def delete_task(self, task_id: str) -> None:
        """Remove a task together with all of its subtasks."""
        for project in self._state.projects:
            tasks, removed = _remove_task(project.tasks, task_id)
            if removed is not None:
                self._replace_project(project.model_copy(update={"tasks": tasks}))
                return
        raise NotFoundError("Task not found")

    def update_task(
        self,
        task_id: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
        status: Optional[TaskStatus] = None,
        sort_order: Optional[int] = None,
    ) -> TaskNode:
        """Change only the provided fields of a task."""
        changes: Dict[str, Any] = {}
        if title is not None:
            changes["title"] = _required(title, "title")
        if description is not None:
            changes["description"] = description
        if status is not None:
            changes["status"] = TaskStatus(status)
        if sort_order is not None:
            changes["sort_order"] = int(sort_order)

        project, task = self._locate(task_id)
        updated = task.model_copy(update=changes)
        tasks, found = _map_task(project.tasks, task_id, lambda _: updated)
        if not found:
            raise NotFoundError("Task not found")
        self._replace_project(project.model_copy(update={"tasks": tasks}))
        return updated

    def set_status(self, task_id: str, status: TaskStatus) -> TaskNode:
        return self.update_task(task_id, status=status)

    def cycle_status(self, task_id: str) -> TaskNode:
        """Advance a task's status: Pending -> Doing -> Done -> Pending."""
        return self.update_task(task_id, status=self.find_task(task_id).status.next())

    def move_task(
        self,
        task_id: str,
        new_parent_id: Optional[str] = None,
        project_id: Optional[str] = None,
        index: Optional[int] = None,
    ) -> TaskNode:
        """
        Re-parent a task with its whole subtree.

        Args:
            task_id: Task being moved.
            new_parent_id: Drop target task; None moves the task to a project's top level.
            project_id: Target project for top-level moves; defaults to the task's
                current project. Ignored when `new_parent_id` is given, since the
                parent decides the project.
            index: Position among the new siblings; None appends.

        Raises:
            NotFoundError: the task, parent or project does not exist.
            ValidationError: the new parent is the task itself or one of its subtasks.
        """
        source, task = self._locate(task_id)
        if new_parent_id is not None:
            if new_parent_id == task_id or _find_task(task.subtasks, new_parent_id) is not None:
                raise ValidationError("A task cannot be moved under itself or one of its subtasks")
            target_project_id = self._locate(new_parent_id)[0].id
        else:
            target_project_id = project_id or source.id
            self.get_project(target_project_id)

        source_tasks, removed = _remove_task(source.tasks, task_id)
        if removed is None:
            raise NotFoundError("Task not found")
        projects = [
            p.model_copy(update={"tasks": source_tasks}) if p.id == source.id else p
            for p in self._state.projects
        ]

        moved = task.model_copy(update={"parent_id": new_parent_id})
        if target_project_id != task.project_id:
            moved = _with_project(moved, target_project_id)

        result: List[ProjectNode] = []
        for p in projects:
            if p.id == target_project_id:
                if new_parent_id is None:
                    tasks = _insert(p.tasks, moved, index)
                else:
                    tasks, found = _map_task(
                        p.tasks,
                        new_parent_id,
                        lambda t: t.model_copy(update={"subtasks": _insert(t.subtasks, moved, index)}),
                    )
                    if not found:
                        raise NotFoundError("Parent task not found")
                p = p.model_copy(update={"tasks": tasks})
            result.append(p)
        self._commit(result)
        return moved

    def _replace_project(self, updated: ProjectNode) -> None:
        self._commit([updated if p.id == updated.id else p for p in self._state.projects])
