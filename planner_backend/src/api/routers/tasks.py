from __future__ import annotations

from fastapi import APIRouter, Depends, status

from ..repositories import PlannerRepository, get_repository
from ..schemas import TaskCreate, TaskOut, TaskUpdate

router = APIRouter(
    prefix="/api/v1/tasks",
    tags=["tasks"],
)


def _get_repo(repo: PlannerRepository = Depends(get_repository)) -> PlannerRepository:
    return repo


# PUBLIC_INTERFACE
@router.post(
    "/",
    response_model=TaskOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create Task",
    description=(
        "Create a task in a project. Supplying parent_id creates a subtask; the parent "
        "must exist in the same project."
    ),
    responses={
        201: {"description": "Task created successfully"},
        400: {"description": "Parent belongs to another project"},
        404: {"description": "Project or parent task not found"},
        409: {"description": "A task with this id already exists"},
    },
)
def create_task(payload: TaskCreate, repo: PlannerRepository = Depends(_get_repo)) -> TaskOut:
    """
    Create a new task row.
    """
    return TaskOut(**repo.insert_task(payload))  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.get(
    "/{task_id}",
    response_model=TaskOut,
    summary="Get Task",
    description="Get a single flat task row by ID.",
    responses={
        200: {"description": "Task found"},
        404: {"description": "Task not found"},
    },
)
def get_task(task_id: str, repo: PlannerRepository = Depends(_get_repo)) -> TaskOut:
    return TaskOut(**repo.get_task(task_id))  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.patch(
    "/{task_id}",
    response_model=TaskOut,
    summary="Update Task",
    description=(
        "Partially update a task. Setting parent_id re-parents the task within its project; "
        "an explicit null moves it to the top level."
    ),
    responses={
        200: {"description": "Task updated"},
        400: {"description": "The move would create a cycle or cross projects"},
        404: {"description": "Task or parent not found"},
    },
)
def patch_task(task_id: str, payload: TaskUpdate, repo: PlannerRepository = Depends(_get_repo)) -> TaskOut:
    """
    Partial update of a task row.
    """
    return TaskOut(**repo.update_task(task_id, payload))  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.delete(
    "/{task_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Task",
    description="Delete a task and all of its subtasks.",
    responses={
        204: {"description": "Task deleted"},
        404: {"description": "Task not found"},
    },
)
def delete_task(task_id: str, repo: PlannerRepository = Depends(_get_repo)) -> None:
    repo.delete_task(task_id)
    return None
