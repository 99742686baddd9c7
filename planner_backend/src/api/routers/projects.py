from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, status

from ..repositories import PlannerRepository, get_repository
from ..schemas import ProjectCreate, ProjectNode

router = APIRouter(
    prefix="/api/v1/projects",
    tags=["projects"],
)


def _get_repo(repo: PlannerRepository = Depends(get_repository)) -> PlannerRepository:
    """
    Dependency wrapper for repository to keep signatures clean.
    """
    return repo


# PUBLIC_INTERFACE
@router.get(
    "/",
    response_model=List[ProjectNode],
    summary="List Projects",
    description="List every project in creation order, each with its nested task trees.",
    responses={200: {"description": "Projects retrieved successfully"}},
)
def list_projects(repo: PlannerRepository = Depends(_get_repo)) -> List[ProjectNode]:
    """
    List projects with their task hierarchies rebuilt from the flat task rows.
    """
    return repo.list_project_trees()


# PUBLIC_INTERFACE
@router.get(
    "/{project_id}",
    response_model=ProjectNode,
    summary="Get Project",
    description="Get a single project with its nested task trees.",
    responses={
        200: {"description": "Project found"},
        404: {"description": "Project not found"},
    },
)
def get_project(project_id: str, repo: PlannerRepository = Depends(_get_repo)) -> ProjectNode:
    return repo.get_project_tree(project_id)


# PUBLIC_INTERFACE
@router.post(
    "/",
    response_model=ProjectNode,
    status_code=status.HTTP_201_CREATED,
    summary="Create Project",
    description="Create a project. The id is generated unless the client supplies one.",
    responses={
        201: {"description": "Project created successfully"},
        409: {"description": "A project with this id already exists"},
    },
)
def create_project(payload: ProjectCreate, repo: PlannerRepository = Depends(_get_repo)) -> ProjectNode:
    created = repo.insert_project(payload)
    return ProjectNode(id=created["id"], name=created["name"], tasks=[])


# PUBLIC_INTERFACE
@router.delete(
    "/{project_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Project",
    description="Delete a project together with all of its tasks and subtasks.",
    responses={
        204: {"description": "Project deleted"},
        404: {"description": "Project not found"},
    },
)
def delete_project(project_id: str, repo: PlannerRepository = Depends(_get_repo)) -> None:
    repo.delete_project(project_id)
    return None
