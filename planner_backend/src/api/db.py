from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Generator, List, Optional

from .errors import DuplicateKeyError, NotFoundError, StorageUnavailableError
from .models import ProjectEntity, SnapshotEntity, SnapshotMetaEntity, TaskEntity
from .repositories import PlannerRepository
from .schemas import ProjectCreate, TaskCreate, TaskUpdate
from .snapshots import SnapshotStore, decode_payload, empty_snapshot, encode_payload
from .utils import monotonic_now, new_entity_id, new_snapshot_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _ProjectCols:
    table: str = "projects"
    id: str = "id"
    name: str = "name"
    created_at: str = "created_at"


@dataclass(frozen=True)
class _TaskCols:
    table: str = "tasks"
    id: str = "id"
    project_id: str = "project_id"
    parent_id: str = "parent_id"
    title: str = "title"
    description: str = "description"
    status: str = "status"
    sort_order: str = "sort_order"
    created_at: str = "created_at"


@dataclass(frozen=True)
class _SnapshotCols:
    table: str = "snapshots"
    id: str = "id"
    created_at: str = "created_at"
    description: str = "description"
    data: str = "data"


_P = _ProjectCols()
_T = _TaskCols()
_S = _SnapshotCols()


def _ts(value: datetime) -> str:
    # Fixed width so lexical order in SQL matches chronological order
    return value.isoformat(timespec="microseconds")


def _parse_dt(s: Optional[str]) -> Optional[datetime]:
    if s is None:
        return None
    return datetime.fromisoformat(str(s))


# PUBLIC_INTERFACE
@contextmanager
def connect(db_path: str) -> Generator[sqlite3.Connection, None, None]:
    """
    Open a connection with row access by name and foreign keys enforced.
    Commits on success, rolls back on error. Operational failures (missing file
    permissions, locked database, missing table) surface as StorageUnavailableError.
    """
    try:
        conn = sqlite3.connect(db_path)
    except sqlite3.Error as e:
        raise StorageUnavailableError(f"Cannot open database {db_path}: {e}") from e
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA foreign_keys = ON")
        yield conn
        conn.commit()
    except sqlite3.OperationalError as e:
        conn.rollback()
        raise StorageUnavailableError(str(e)) from e
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


# PUBLIC_INTERFACE
def table_exists(conn: sqlite3.Connection, name: str) -> bool:
    """Return True when a table called `name` exists."""
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (name,)
    ).fetchone()
    return row is not None


# PUBLIC_INTERFACE
def column_names(conn: sqlite3.Connection, table: str) -> List[str]:
    """Return the column names of `table` in declaration order."""
    return [r["name"] for r in conn.execute(f"PRAGMA table_info({table})").fetchall()]


def _create_snapshot_table(conn: sqlite3.Connection) -> None:
    conn.execute(
        f"""
        CREATE TABLE IF NOT EXISTS {_S.table} (
            {_S.id} TEXT PRIMARY KEY,
            {_S.created_at} TEXT NOT NULL,
            {_S.description} TEXT NULL,
            {_S.data} TEXT NOT NULL
        )
        """
    )
    conn.execute(
        f"CREATE INDEX IF NOT EXISTS idx_{_S.table}_created_at ON {_S.table}({_S.created_at} DESC)"
    )


def _create_legacy_tables(conn: sqlite3.Connection) -> None:
    conn.execute(
        f"""
        CREATE TABLE IF NOT EXISTS {_P.table} (
            {_P.id} TEXT PRIMARY KEY,
            {_P.name} TEXT NOT NULL,
            {_P.created_at} TEXT NOT NULL
        )
        """
    )
    conn.execute(
        f"""
        CREATE TABLE IF NOT EXISTS {_T.table} (
            {_T.id} TEXT PRIMARY KEY,
            {_T.project_id} TEXT NOT NULL REFERENCES {_P.table}({_P.id}) ON DELETE CASCADE,
            {_T.parent_id} TEXT NULL REFERENCES {_T.table}({_T.id}) ON DELETE CASCADE,
            {_T.title} TEXT NOT NULL,
            {_T.description} TEXT NULL,
            {_T.status} TEXT NOT NULL DEFAULT 'Pending'
                CHECK ({_T.status} IN ('Pending', 'Doing', 'Done')),
            {_T.sort_order} INTEGER DEFAULT 0,
            {_T.created_at} TEXT NOT NULL
        )
        """
    )
    conn.execute(
        f"CREATE INDEX IF NOT EXISTS idx_{_T.table}_project_id ON {_T.table}({_T.project_id})"
    )
    conn.execute(
        f"CREATE INDEX IF NOT EXISTS idx_{_T.table}_parent_id ON {_T.table}({_T.parent_id})"
    )


# PUBLIC_INTERFACE
def apply_snapshot_schema(db_path: str) -> bool:
    """
    Create the snapshots table if it does not exist yet.

    Returns:
        True when the table was created, False when it was already present.
    """
    os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
    with connect(db_path) as conn:
        if table_exists(conn, _S.table):
            logger.info("Snapshots table already exists; skipping creation")
            return False
        _create_snapshot_table(conn)
    logger.info("Snapshots table created")
    return True


# PUBLIC_INTERFACE
def apply_task_columns(db_path: str) -> List[str]:
    """
    Add the description and sort_order columns to a legacy tasks table that
    predates them. Already-present columns are left alone.

    Returns:
        Names of the columns that were added (empty when already migrated).

    Raises:
        StorageUnavailableError: the tasks table does not exist.
    """
    with connect(db_path) as conn:
        if not table_exists(conn, _T.table):
            raise StorageUnavailableError("Legacy tasks table does not exist")
        existing = set(column_names(conn, _T.table))
        wanted = {
            _T.description: f"ALTER TABLE {_T.table} ADD COLUMN {_T.description} TEXT",
            _T.sort_order: f"ALTER TABLE {_T.table} ADD COLUMN {_T.sort_order} INTEGER DEFAULT 0",
        }
        missing = [name for name in wanted if name not in existing]
        if missing and len(missing) < len(wanted):
            logger.warning("Partial migration detected; adding %s", ", ".join(missing))
        for name in missing:
            conn.execute(wanted[name])
            logger.info("Added '%s' column", name)
    return missing


class SQLitePlannerRepository(PlannerRepository):
    """
    SQLite implementation of the live state repository. Tasks reference their
    project and parent with ON DELETE CASCADE foreign keys; deletes also walk
    the subtree explicitly so databases created without the constraints behave
    the same.
    """

    def __init__(self, db_path: str, create_schema: bool = True) -> None:
        self._db_path = db_path
        if create_schema:
            os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
            with connect(db_path) as conn:
                _create_legacy_tables(conn)

    def _conn(self):
        return connect(self._db_path)

    def _row_to_project(self, row: sqlite3.Row) -> ProjectEntity:
        return {
            "id": str(row[_P.id]),
            "name": str(row[_P.name]),
            "created_at": _parse_dt(row[_P.created_at]),  # type: ignore
        }

    def _row_to_task(self, row: sqlite3.Row) -> TaskEntity:
        keys = row.keys()
        description = row[_T.description] if _T.description in keys else None
        sort_order = row[_T.sort_order] if _T.sort_order in keys else None
        return {
            "id": str(row[_T.id]),
            "project_id": str(row[_T.project_id]),
            "parent_id": None if row[_T.parent_id] is None else str(row[_T.parent_id]),
            "title": str(row[_T.title]),
            "description": description or "",
            "status": str(row[_T.status]),
            "sort_order": int(sort_order or 0),
            "created_at": _parse_dt(row[_T.created_at]),  # type: ignore
        }

    def has_tables(self) -> bool:
        with self._conn() as conn:
            return table_exists(conn, _P.table) and table_exists(conn, _T.table)

    def list_projects(self) -> List[ProjectEntity]:
        with self._conn() as conn:
            rows = conn.execute(
                f"SELECT * FROM {_P.table} ORDER BY {_P.created_at} ASC, rowid ASC"
            ).fetchall()
            return [self._row_to_project(r) for r in rows]

    def get_project(self, project_id: str) -> ProjectEntity:
        with self._conn() as conn:
            row = conn.execute(f"SELECT * FROM {_P.table} WHERE {_P.id} = ?", (project_id,)).fetchone()
            if row is None:
                raise NotFoundError("Project not found")
            return self._row_to_project(row)

    def insert_project(self, data: ProjectCreate) -> ProjectEntity:
        pid = data.id or new_entity_id()
        with self._conn() as conn:
            try:
                conn.execute(
                    f"INSERT INTO {_P.table} ({_P.id}, {_P.name}, {_P.created_at}) VALUES (?, ?, ?)",
                    (pid, data.name, _ts(datetime.now())),
                )
            except sqlite3.IntegrityError as e:
                raise DuplicateKeyError(f"Project '{pid}' already exists") from e
            row = conn.execute(f"SELECT * FROM {_P.table} WHERE {_P.id} = ?", (pid,)).fetchone()
            assert row is not None
            return self._row_to_project(row)

    def delete_project(self, project_id: str) -> None:
        with self._conn() as conn:
            removed = conn.execute(
                f"DELETE FROM {_T.table} WHERE {_T.project_id} = ?", (project_id,)
            ).rowcount
            cur = conn.execute(f"DELETE FROM {_P.table} WHERE {_P.id} = ?", (project_id,))
            if cur.rowcount == 0:
                raise NotFoundError("Project not found")
        logger.info("Deleted project %s with %d task(s)", project_id, removed)

    def list_tasks(self) -> List[TaskEntity]:
        with self._conn() as conn:
            rows = conn.execute(
                f"SELECT * FROM {_T.table} ORDER BY {_T.created_at} ASC, rowid ASC"
            ).fetchall()
            return [self._row_to_task(r) for r in rows]

    def list_tasks_by_project(self, project_id: str) -> List[TaskEntity]:
        with self._conn() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM {_T.table}
                WHERE {_T.project_id} = ?
                ORDER BY {_T.created_at} ASC, rowid ASC
                """,
                (project_id,),
            ).fetchall()
            return [self._row_to_task(r) for r in rows]

    def get_task(self, task_id: str) -> TaskEntity:
        with self._conn() as conn:
            row = conn.execute(f"SELECT * FROM {_T.table} WHERE {_T.id} = ?", (task_id,)).fetchone()
            if row is None:
                raise NotFoundError("Task not found")
            return self._row_to_task(row)

    def insert_task(self, data: TaskCreate) -> TaskEntity:
        self.get_project(data.project_id)
        self._check_parent(data.project_id, data.parent_id)
        tid = data.id or new_entity_id()
        with self._conn() as conn:
            try:
                conn.execute(
                    f"""
                    INSERT INTO {_T.table} ({_T.id}, {_T.project_id}, {_T.parent_id}, {_T.title},
                        {_T.description}, {_T.status}, {_T.sort_order}, {_T.created_at})
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        tid,
                        data.project_id,
                        data.parent_id,
                        data.title,
                        data.description,
                        data.status.value,
                        data.sort_order,
                        _ts(datetime.now()),
                    ),
                )
            except sqlite3.IntegrityError as e:
                raise DuplicateKeyError(f"Task '{tid}' already exists") from e
            row = conn.execute(f"SELECT * FROM {_T.table} WHERE {_T.id} = ?", (tid,)).fetchone()
            assert row is not None
            return self._row_to_task(row)

    def update_task(self, task_id: str, data: TaskUpdate) -> TaskEntity:
        current = self.get_task(task_id)
        updates: Dict[str, Any] = {}
        if data.title is not None:
            updates[_T.title] = data.title
        if data.description is not None:
            updates[_T.description] = data.description
        if data.status is not None:
            updates[_T.status] = data.status.value
        if data.sort_order is not None:
            updates[_T.sort_order] = data.sort_order
        if "parent_id" in data.model_fields_set:
            self._check_parent(current["project_id"], data.parent_id, task_id)
            updates[_T.parent_id] = data.parent_id
        if not updates:
            return current

        assignments = ", ".join(f"{col} = ?" for col in updates)
        with self._conn() as conn:
            conn.execute(
                f"UPDATE {_T.table} SET {assignments} WHERE {_T.id} = ?",
                [*updates.values(), task_id],
            )
            row = conn.execute(f"SELECT * FROM {_T.table} WHERE {_T.id} = ?", (task_id,)).fetchone()
            assert row is not None
            return self._row_to_task(row)

    def delete_task(self, task_id: str) -> None:
        with self._conn() as conn:
            cur = conn.execute(
                f"""
                WITH RECURSIVE subtree(id) AS (
                    SELECT {_T.id} FROM {_T.table} WHERE {_T.id} = ?
                    UNION
                    SELECT t.{_T.id} FROM {_T.table} t JOIN subtree s ON t.{_T.parent_id} = s.id
                )
                DELETE FROM {_T.table} WHERE {_T.id} IN (SELECT id FROM subtree)
                """,
                (task_id,),
            )
            if cur.rowcount == 0:
                raise NotFoundError("Task not found")


class SQLiteSnapshotStore(SnapshotStore):
    """
    SQLite snapshot store. The payload is kept as JSON text in the `data`
    column; recency queries use the descending created_at index, with rowid
    breaking ties between snapshots written in the same microsecond.
    """

    def __init__(self, db_path: str, create_schema: bool = True) -> None:
        self._db_path = db_path
        if create_schema:
            os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
            with connect(db_path) as conn:
                _create_snapshot_table(conn)

    def _conn(self):
        return connect(self._db_path)

    def _row_to_meta(self, row: sqlite3.Row) -> SnapshotMetaEntity:
        return {
            "id": str(row[_S.id]),
            "created_at": _parse_dt(row[_S.created_at]),  # type: ignore
            "description": row[_S.description],
        }

    def _row_to_entity(self, row: sqlite3.Row) -> SnapshotEntity:
        entity: SnapshotEntity = {**self._row_to_meta(row), "data": decode_payload(row[_S.data])}  # type: ignore
        return entity

    def is_ready(self) -> bool:
        if not os.path.exists(self._db_path):
            return False
        with self._conn() as conn:
            return table_exists(conn, _S.table)

    def count(self) -> int:
        with self._conn() as conn:
            row = conn.execute(f"SELECT COUNT(*) AS cnt FROM {_S.table}").fetchone()
            return int(row["cnt"]) if row else 0

    def create(
        self,
        snapshot_id: Optional[str],
        description: Optional[str],
        data: List[Dict[str, Any]],
    ) -> SnapshotMetaEntity:
        encoded = encode_payload(data)
        with self._conn() as conn:
            if not snapshot_id:
                taken = {r[_S.id] for r in conn.execute(f"SELECT {_S.id} FROM {_S.table}").fetchall()}
                snapshot_id = new_snapshot_id(taken)
            last = conn.execute(f"SELECT MAX({_S.created_at}) AS last FROM {_S.table}").fetchone()
            created_at = monotonic_now(_parse_dt(last["last"]) if last else None)
            try:
                conn.execute(
                    f"""
                    INSERT INTO {_S.table} ({_S.id}, {_S.created_at}, {_S.description}, {_S.data})
                    VALUES (?, ?, ?, ?)
                    """,
                    (snapshot_id, _ts(created_at), description, encoded),
                )
            except sqlite3.IntegrityError as e:
                raise DuplicateKeyError(f"Snapshot '{snapshot_id}' already exists") from e
        logger.info("Created snapshot %s (%d project(s))", snapshot_id, len(data))
        return {"id": snapshot_id, "created_at": created_at, "description": description}

    def list(self) -> List[SnapshotMetaEntity]:
        with self._conn() as conn:
            rows = conn.execute(
                f"""
                SELECT {_S.id}, {_S.created_at}, {_S.description} FROM {_S.table}
                ORDER BY {_S.created_at} DESC, rowid DESC
                """
            ).fetchall()
            return [self._row_to_meta(r) for r in rows]

    def get(self, snapshot_id: str) -> SnapshotEntity:
        with self._conn() as conn:
            row = conn.execute(f"SELECT * FROM {_S.table} WHERE {_S.id} = ?", (snapshot_id,)).fetchone()
            if row is None:
                raise NotFoundError("Snapshot not found")
            return self._row_to_entity(row)

    def get_latest(self) -> SnapshotEntity:
        with self._conn() as conn:
            row = conn.execute(
                f"SELECT * FROM {_S.table} ORDER BY {_S.created_at} DESC, rowid DESC LIMIT 1"
            ).fetchone()
            if row is None:
                return empty_snapshot()
            return self._row_to_entity(row)

    def delete(self, snapshot_id: str) -> None:
        with self._conn() as conn:
            cur = conn.execute(f"DELETE FROM {_S.table} WHERE {_S.id} = ?", (snapshot_id,))
            if cur.rowcount == 0:
                raise NotFoundError("Snapshot not found")
        logger.info("Deleted snapshot %s", snapshot_id)
