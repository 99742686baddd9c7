from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Nesting deeper than this cannot be serialized into a snapshot payload
MAX_TASK_DEPTH = 100


# PUBLIC_INTERFACE
class TaskStatus(str, Enum):
    """Workflow status of a task."""

    PENDING = "Pending"
    DOING = "Doing"
    DONE = "Done"

    def next(self) -> "TaskStatus":
        """Return the status that follows this one in the Pending -> Doing -> Done cycle."""
        order = [TaskStatus.PENDING, TaskStatus.DOING, TaskStatus.DONE]
        return order[(order.index(self) + 1) % len(order)]


def _strip_required(value: Optional[str], field: str) -> Optional[str]:
    """
    Strip whitespace and reject empty strings. None passes through so partial
    updates can leave the field untouched.
    """
    if value is None:
        return value
    s = value.strip()
    if not s:
        raise ValueError(f"{field} must not be empty")
    return s


# PUBLIC_INTERFACE
def tree_depth(tasks: Iterable[TaskNode]) -> int:
    """Return the number of nesting levels in `tasks`: 0 when empty, 1 for top-level tasks only."""
    deepest = 0
    stack = [(task, 1) for task in tasks]
    while stack:
        task, depth = stack.pop()
        deepest = max(deepest, depth)
        stack.extend((child, depth + 1) for child in task.subtasks)
    return deepest


# PUBLIC_INTERFACE
class TaskNode(BaseModel):
    """
    A task with its nested subtasks. This is the shape stored inside snapshot
    payloads and returned by nested project reads.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Unique identifier of the task")
    project_id: str = Field(..., description="Identifier of the owning project")
    parent_id: Optional[str] = Field(default=None, description="Parent task id; null for top-level tasks")
    title: str = Field(..., description="Task title")
    description: str = Field(default="", description="Free-text description")
    status: TaskStatus = Field(default=TaskStatus.PENDING, description="Pending, Doing or Done")
    sort_order: int = Field(default=0, description="Integer ordering hint")
    subtasks: List[TaskNode] = Field(default_factory=list, description="Child tasks in order")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("title must not be empty")
        return v

    @model_validator(mode="after")
    def validate_subtasks(self) -> TaskNode:
        """Subtasks must belong to this task's project and name this task as their parent."""
        for child in self.subtasks:
            if child.project_id != self.project_id:
                raise ValueError(
                    f"Subtask '{child.id}' has project_id '{child.project_id}' "
                    f"but is nested in project '{self.project_id}'"
                )
            if child.parent_id != self.id:
                raise ValueError(
                    f"Subtask '{child.id}' has parent_id '{child.parent_id}' but is nested under '{self.id}'"
                )
        return self


TaskNode.model_rebuild()


# PUBLIC_INTERFACE
class ProjectNode(BaseModel):
    """A project with its ordered top-level tasks and their subtrees."""

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "id": "1700000000000",
                "name": "Home",
                "tasks": [
                    {
                        "id": "1700000000001",
                        "project_id": "1700000000000",
                        "parent_id": None,
                        "title": "Paint the fence",
                        "description": "",
                        "status": "Pending",
                        "sort_order": 0,
                        "subtasks": [],
                    }
                ],
            }
        },
    )

    id: str = Field(..., description="Unique identifier of the project")
    name: str = Field(..., description="Project name")
    tasks: List[TaskNode] = Field(default_factory=list, description="Top-level tasks in creation order")

    @model_validator(mode="after")
    def validate_tasks(self) -> ProjectNode:
        """Top-level tasks belong to this project and have no parent; nesting stays within MAX_TASK_DEPTH."""
        for task in self.tasks:
            if task.project_id != self.id:
                raise ValueError(
                    f"Task '{task.id}' has project_id '{task.project_id}' but is stored in project '{self.id}'"
                )
            if task.parent_id is not None:
                raise ValueError(f"Top-level task '{task.id}' has parent_id '{task.parent_id}'")
        depth = tree_depth(self.tasks)
        if depth > MAX_TASK_DEPTH:
            raise ValueError(f"Task tree is {depth} levels deep; at most {MAX_TASK_DEPTH} are supported")
        return self


# PUBLIC_INTERFACE
class ProjectCreate(BaseModel):
    """Schema for creating a project. The id is generated when omitted."""

    model_config = ConfigDict(json_schema_extra={"example": {"name": "Home"}})

    id: Optional[str] = Field(default=None, description="Optional client-chosen identifier", min_length=1)
    name: str = Field(..., description="Project name", min_length=1, max_length=200)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _strip_required(v, "name")  # type: ignore[return-value]


# PUBLIC_INTERFACE
class TaskCreate(BaseModel):
    """
    Schema for creating a task in the live state repository.
    A parent_id makes the task a subtask; the parent must belong to the same project.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "project_id": "1700000000000",
                "parent_id": None,
                "title": "Paint the fence",
                "description": "Two coats",
                "status": "Pending",
            }
        }
    )

    id: Optional[str] = Field(default=None, description="Optional client-chosen identifier", min_length=1)
    project_id: str = Field(..., description="Identifier of the owning project", min_length=1)
    parent_id: Optional[str] = Field(default=None, description="Parent task id; null for top-level")
    title: str = Field(..., description="Task title", min_length=1, max_length=200)
    description: str = Field(default="", description="Free-text description")
    status: TaskStatus = Field(default=TaskStatus.PENDING, description="Initial status")
    sort_order: int = Field(default=0, description="Integer ordering hint")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        return _strip_required(v, "title")  # type: ignore[return-value]


# PUBLIC_INTERFACE
class TaskUpdate(BaseModel):
    """
    Schema for updating an existing task.
    All fields are optional; only provided fields will be updated. An explicit
    null parent_id moves the task to the top level of its project.
    """

    model_config = ConfigDict(
        json_schema_extra={"example": {"title": "Paint the fence twice", "status": "Doing"}}
    )

    title: Optional[str] = Field(default=None, description="Task title", min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, description="Free-text description")
    status: Optional[TaskStatus] = Field(default=None, description="New status")
    sort_order: Optional[int] = Field(default=None, description="Integer ordering hint")
    parent_id: Optional[str] = Field(default=None, description="New parent task id; null for top-level")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: Optional[str]) -> Optional[str]:
        return _strip_required(v, "title")


# PUBLIC_INTERFACE
class TaskOut(BaseModel):
    """Flat task row returned by the task endpoints."""

    id: str = Field(..., description="Unique identifier of the task")
    project_id: str = Field(..., description="Identifier of the owning project")
    parent_id: Optional[str] = Field(default=None, description="Parent task id")
    title: str = Field(..., description="Task title")
    description: str = Field(default="", description="Free-text description")
    status: TaskStatus = Field(..., description="Pending, Doing or Done")
    sort_order: int = Field(default=0, description="Integer ordering hint")
    created_at: datetime = Field(..., description="Creation timestamp")


# PUBLIC_INTERFACE
class SnapshotCreate(BaseModel):
    """
    Schema for creating a snapshot: the complete application state at the
    moment of saving. The id is timestamp-derived when omitted.
    """

    model_config = ConfigDict(
        json_schema_extra={"example": {"description": "Before spring cleaning", "data": []}}
    )

    id: Optional[str] = Field(default=None, description="Optional unique snapshot id", min_length=1, max_length=36)
    description: Optional[str] = Field(default=None, description="Optional label", max_length=255)
    data: List[ProjectNode] = Field(..., description="Every project with its nested task trees")


# PUBLIC_INTERFACE
class SnapshotMetaOut(BaseModel):
    """Snapshot metadata; the payload is excluded from listings."""

    id: str = Field(..., description="Snapshot id")
    created_at: datetime = Field(..., description="Store-assigned creation timestamp")
    description: Optional[str] = Field(default=None, description="Optional label")


# PUBLIC_INTERFACE
class SnapshotOut(BaseModel):
    """
    Full snapshot record. For the latest-snapshot read on an empty store the
    id, created_at and description are null and data is empty.
    """

    id: Optional[str] = Field(default=None, description="Snapshot id")
    created_at: Optional[datetime] = Field(default=None, description="Store-assigned creation timestamp")
    description: Optional[str] = Field(default=None, description="Optional label")
    data: List[ProjectNode] = Field(default_factory=list, description="Whole application state")
