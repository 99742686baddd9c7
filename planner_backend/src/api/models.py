from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, TypedDict


# PUBLIC_INTERFACE
class ProjectEntity(TypedDict):
    """
    A project row as stored by the live state repository.

    Fields:
    - id: Unique string identifier
    - name: Non-empty project name (trimmed on input via schemas)
    - created_at: Creation timestamp, defines project order
    """

    id: str
    name: str
    created_at: datetime


# PUBLIC_INTERFACE
class TaskEntity(TypedDict):
    """
    A flat task row. The nested view is always derived from these rows via
    the hierarchy codec; subtasks are never stored.

    Fields:
    - id: Unique string identifier
    - project_id: Owning project
    - parent_id: Parent task id, or None for a top-level task
    - title: Non-empty title
    - description: Free text, empty by default
    - status: 'Pending', 'Doing' or 'Done'
    - sort_order: Integer ordering hint, 0 by default
    - created_at: Creation timestamp, defines sibling order
    """

    id: str
    project_id: str
    parent_id: Optional[str]
    title: str
    description: str
    status: str
    sort_order: int
    created_at: datetime


# PUBLIC_INTERFACE
class SnapshotMetaEntity(TypedDict):
    """Snapshot metadata without the payload, as returned by listings."""

    id: str
    created_at: datetime
    description: Optional[str]


# PUBLIC_INTERFACE
class SnapshotEntity(TypedDict):
    """
    A full snapshot record. `data` is the whole application state: a list of
    projects, each with its nested task trees, as plain JSON values.

    The empty sentinel returned when no snapshot exists has id, created_at and
    description set to None and an empty data list.
    """

    id: Optional[str]
    created_at: Optional[datetime]
    description: Optional[str]
    data: List[Dict[str, Any]]
