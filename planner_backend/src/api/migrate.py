"""
One-shot migrations for the SQLite backend.

Commands:
    snapshots     create the snapshots table if it is missing
    task-columns  add description/sort_order to a legacy tasks table
    legacy        copy the legacy projects/tasks tables into one snapshot

Usage:
    python -m src.api.migrate legacy --db-path ./data/planner.db [--yes]

The legacy tables are never dropped. Once the migrated snapshot has been
checked they can be removed by hand.
"""
from __future__ import annotations

import argparse
import logging
import sqlite3
import sys
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError

from .db import SQLitePlannerRepository, SQLiteSnapshotStore, apply_snapshot_schema, apply_task_columns
from .errors import PlannerError, StorageUnavailableError, ValidationError
from .hierarchy import build_hierarchy, check_depth, count_tasks, find_orphans
from .repositories import PlannerRepository
from .schemas import ProjectNode
from .settings import configure_logging, get_settings
from .snapshots import SnapshotStore

logger = logging.getLogger(__name__)

EMPTY_STATE_DESCRIPTION = "Initial empty state"
EMPTY_MIGRATION_DESCRIPTION = "Migrated from legacy data (empty)"


@dataclass(frozen=True)
class MigrationResult:
    """Outcome of a legacy migration run."""

    snapshot_id: Optional[str]
    description: Optional[str]
    project_count: int = 0
    task_count: int = 0
    cancelled: bool = False


def _decline(existing: int) -> bool:
    return False


# PUBLIC_INTERFACE
def migrate_legacy_data(
    repository: PlannerRepository,
    store: SnapshotStore,
    confirm: Callable[[int], bool] = _decline,
) -> MigrationResult:
    """
    Build one snapshot holding every legacy project with its nested tasks.

    Args:
        repository: Live state repository holding the legacy rows.
        store: Snapshot store the migrated state is written to.
        confirm: Called with the number of existing snapshots when the store is
            not empty; the run is cancelled unless it returns True.

    Returns:
        MigrationResult describing the written snapshot, or a cancelled result.

    Raises:
        StorageUnavailableError: the snapshot store has not been initialized.
        ValidationError: a legacy tree cannot be stored as a snapshot (empty
            title, nesting deeper than MAX_TASK_DEPTH, a parent cycle).
    """
    if not store.is_ready():
        raise StorageUnavailableError(
            "Snapshots table does not exist; run the 'snapshots' migration first"
        )

    existing = store.count()
    if existing > 0:
        logger.warning("Found %d existing snapshot(s)", existing)
        if not confirm(existing):
            logger.info("Migration cancelled")
            return MigrationResult(snapshot_id=None, description=None, cancelled=True)

    if not repository.has_tables():
        logger.info("Legacy tables do not exist; starting with empty state")
        meta = store.create(None, EMPTY_STATE_DESCRIPTION, [])
        return MigrationResult(snapshot_id=meta["id"], description=EMPTY_STATE_DESCRIPTION)

    projects = repository.list_projects()
    logger.info("Found %d project(s)", len(projects))
    if not projects:
        meta = store.create(None, EMPTY_MIGRATION_DESCRIPTION, [])
        return MigrationResult(snapshot_id=meta["id"], description=EMPTY_MIGRATION_DESCRIPTION)

    tasks = repository.list_tasks()
    logger.info("Found %d task(s)", len(tasks))

    trees: List[ProjectNode] = []
    for project in projects:
        project_tasks = [t for t in tasks if t["project_id"] == project["id"]]
        orphans = find_orphans(project_tasks)
        if orphans:
            logger.warning(
                "Project %s: skipping %d task(s) with missing parents: %s",
                project["name"],
                len(orphans),
                ", ".join(str(t["id"]) for t in orphans),
            )
        try:
            tree = build_hierarchy(project_tasks)
            check_depth(tree, f"Project {project['name']}")
            node = ProjectNode(id=project["id"], name=project["name"], tasks=tree)
        except PydanticValidationError as e:
            raise ValidationError(f"Project {project['name']}: {e}") from e
        logger.info("  - %s: %d task(s)", project["name"], count_tasks(tree))
        trees.append(node)

    total = sum(count_tasks(p.tasks) for p in trees)
    description = f"Migrated from legacy data - {len(trees)} project(s), {total} task(s)"
    meta = store.create(None, description, [p.model_dump(mode="json") for p in trees])
    logger.info("Snapshot %s created: %s", meta["id"], description)
    return MigrationResult(
        snapshot_id=meta["id"],
        description=description,
        project_count=len(trees),
        task_count=total,
    )


def _prompt(existing: int) -> bool:
    try:
        answer = input("Continue and create migration snapshot anyway? (yes/no): ")
    except EOFError:
        # stdin closed: nobody can confirm
        return False
    return answer.strip().lower() in {"yes", "y"}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="python -m src.api.migrate", description="Planner database migrations")
    parser.add_argument("--db-path", default=None, help="SQLite database file (default: SQLITE_DB_PATH)")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("snapshots", help="Create the snapshots table")
    sub.add_parser("task-columns", help="Add description/sort_order columns to legacy tasks")
    legacy = sub.add_parser("legacy", help="Copy legacy projects/tasks into a snapshot")
    legacy.add_argument("--yes", "-y", action="store_true", help="Do not ask before migrating into a non-empty store")
    return parser


# PUBLIC_INTERFACE
def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run a migration command and return the process exit code."""
    settings = get_settings()
    configure_logging(settings.log_level)
    args = _build_parser().parse_args(argv)
    db_path = args.db_path or settings.sqlite_db_path

    try:
        if args.command == "snapshots":
            apply_snapshot_schema(db_path)
        elif args.command == "task-columns":
            added = apply_task_columns(db_path)
            if not added:
                logger.info("Migration already applied")
        else:
            result = migrate_legacy_data(
                SQLitePlannerRepository(db_path, create_schema=False),
                SQLiteSnapshotStore(db_path, create_schema=False),
                confirm=(lambda n: True) if args.yes else _prompt,
            )
            if not result.cancelled:
                logger.info("Legacy tables were kept; drop them manually once the snapshot is verified")
    except (PlannerError, sqlite3.Error) as e:
        logger.error("Migration failed: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
