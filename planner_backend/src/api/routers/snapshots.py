from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, status

from ..schemas import SnapshotCreate, SnapshotMetaOut, SnapshotOut
from ..snapshots import SnapshotStore, get_snapshot_store

router = APIRouter(
    prefix="/api/v1/snapshots",
    tags=["snapshots"],
)


def _get_store(store: SnapshotStore = Depends(get_snapshot_store)) -> SnapshotStore:
    """
    Dependency wrapper for the snapshot store to keep signatures clean.
    """
    return store


# PUBLIC_INTERFACE
@router.get(
    "/",
    response_model=List[SnapshotMetaOut],
    summary="List Snapshots",
    description="List snapshot metadata, most recent first. Payloads are not included.",
    responses={200: {"description": "Snapshots retrieved successfully"}},
)
def list_snapshots(store: SnapshotStore = Depends(_get_store)) -> List[SnapshotMetaOut]:
    return [SnapshotMetaOut(**meta) for meta in store.list()]


# PUBLIC_INTERFACE
@router.get(
    "/latest",
    response_model=SnapshotOut,
    summary="Get Latest Snapshot",
    description=(
        "Return the most recent snapshot with its payload. When no snapshot exists yet the "
        "response has null id/created_at/description and an empty data list."
    ),
    responses={200: {"description": "Latest snapshot or empty state"}},
)
def get_latest_snapshot(store: SnapshotStore = Depends(_get_store)) -> SnapshotOut:
    return SnapshotOut(**store.get_latest())  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.get(
    "/{snapshot_id:path}",
    response_model=SnapshotOut,
    summary="Get Snapshot",
    description="Get a single snapshot including its full payload.",
    responses={
        200: {"description": "Snapshot found"},
        404: {"description": "Snapshot not found"},
    },
)
def get_snapshot(snapshot_id: str, store: SnapshotStore = Depends(_get_store)) -> SnapshotOut:
    return SnapshotOut(**store.get(snapshot_id))  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.post(
    "/",
    response_model=SnapshotMetaOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create Snapshot",
    description=(
        "Store the complete application state as a new immutable snapshot. The creation "
        "timestamp is assigned by the server."
    ),
    responses={
        201: {"description": "Snapshot created"},
        409: {"description": "A snapshot with this id already exists"},
    },
)
def create_snapshot(payload: SnapshotCreate, store: SnapshotStore = Depends(_get_store)) -> SnapshotMetaOut:
    """
    Create a snapshot from a nested project/task payload.
    """
    meta = store.create(
        payload.id,
        payload.description,
        [p.model_dump(mode="json") for p in payload.data],
    )
    return SnapshotMetaOut(**meta)


# PUBLIC_INTERFACE
@router.delete(
    "/{snapshot_id:path}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Snapshot",
    description="Delete a snapshot by ID.",
    responses={
        204: {"description": "Snapshot deleted"},
        404: {"description": "Snapshot not found"},
    },
)
def delete_snapshot(snapshot_id: str, store: SnapshotStore = Depends(_get_store)) -> None:
    store.delete(snapshot_id)
    return None
