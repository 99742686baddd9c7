import os

import pytest

# Default to the memory backend so importing the app never touches the filesystem
os.environ.setdefault("PERSISTENCE_BACKEND", "memory")

from src.api.db import SQLitePlannerRepository, SQLiteSnapshotStore  # noqa: E402
from src.api.repositories import InMemoryPlannerRepository  # noqa: E402
from src.api.snapshots import InMemorySnapshotStore  # noqa: E402


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "planner.db")


@pytest.fixture(params=["memory", "sqlite"])
def store(request, db_path):
    """A fresh snapshot store for each backend."""
    if request.param == "sqlite":
        return SQLiteSnapshotStore(db_path)
    return InMemorySnapshotStore()


@pytest.fixture(params=["memory", "sqlite"])
def repo(request, db_path):
    """A fresh live state repository for each backend."""
    if request.param == "sqlite":
        return SQLitePlannerRepository(db_path)
    return InMemoryPlannerRepository()
