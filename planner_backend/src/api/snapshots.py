from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from functools import lru_cache
from itertools import count
from threading import RLock
from typing import Any, Dict, List, Optional, Tuple

from .errors import DuplicateKeyError, NotFoundError
from .models import SnapshotEntity, SnapshotMetaEntity
from .settings import get_settings
from .utils import monotonic_now, new_snapshot_id

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
def empty_snapshot() -> SnapshotEntity:
    """Return the sentinel used when no snapshot has been created yet."""
    return {"id": None, "created_at": None, "description": None, "data": []}


def encode_payload(data: List[Dict[str, Any]]) -> str:
    """Serialize a snapshot payload to its stored text form."""
    return json.dumps(data, ensure_ascii=False, separators=(",", ":"))


def decode_payload(raw: Any) -> List[Dict[str, Any]]:
    """Decode a stored payload; every read returns a fresh copy."""
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8")
    if isinstance(raw, str):
        return json.loads(raw)
    return raw


# PUBLIC_INTERFACE
class SnapshotStore(ABC):
    """
    Abstract contract for snapshot storage backends.

    Snapshots are immutable once created: only creation and deletion are
    supported. Each holds a complete copy of the application state.
    """

    @abstractmethod
    def create(
        self,
        snapshot_id: Optional[str],
        description: Optional[str],
        data: List[Dict[str, Any]],
    ) -> SnapshotMetaEntity:
        """
        Store a new snapshot and return its metadata.
        The creation timestamp is assigned here. A missing id is generated from
        the current time. Raises DuplicateKeyError if the id already exists.
        """

    @abstractmethod
    def list(self) -> List[SnapshotMetaEntity]:
        """Return metadata for every snapshot, most recent first, without payloads."""

    @abstractmethod
    def get(self, snapshot_id: str) -> SnapshotEntity:
        """Return the full snapshot. Raises NotFoundError if absent."""

    @abstractmethod
    def get_latest(self) -> SnapshotEntity:
        """Return the most recent snapshot, or `empty_snapshot()` when there is none."""

    @abstractmethod
    def delete(self, snapshot_id: str) -> None:
        """Delete a snapshot. Raises NotFoundError if absent."""

    @abstractmethod
    def count(self) -> int:
        """Return the number of stored snapshots."""

    @abstractmethod
    def is_ready(self) -> bool:
        """Return True when the backing structure exists and can be written to."""


class InMemorySnapshotStore(SnapshotStore):
    """
    Thread-safe in-memory snapshot store suitable for testing and default runtime.
    Payloads are kept serialized so callers can never mutate a stored snapshot.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        # id -> (created_at, sequence, description, encoded payload)
        self._items: Dict[str, Tuple[datetime, int, Optional[str], str]] = {}
        self._seq = count()
        self._last_created: Optional[datetime] = None

    def create(
        self,
        snapshot_id: Optional[str],
        description: Optional[str],
        data: List[Dict[str, Any]],
    ) -> SnapshotMetaEntity:
        encoded = encode_payload(data)
        with self._lock:
            sid = snapshot_id or new_snapshot_id(self._items)
            if sid in self._items:
                raise DuplicateKeyError(f"Snapshot '{sid}' already exists")
            created_at = monotonic_now(self._last_created)
            self._last_created = created_at
            self._items[sid] = (created_at, next(self._seq), description, encoded)
        logger.info("Created snapshot %s (%d project(s))", sid, len(data))
        return {"id": sid, "created_at": created_at, "description": description}

    def _ordered(self) -> List[Tuple[str, Tuple[datetime, int, Optional[str], str]]]:
        return sorted(self._items.items(), key=lambda kv: (kv[1][0], kv[1][1]), reverse=True)

    def list(self) -> List[SnapshotMetaEntity]:
        with self._lock:
            return [
                {"id": sid, "created_at": created_at, "description": description}
                for sid, (created_at, _, description, _) in self._ordered()
            ]

    def get(self, snapshot_id: str) -> SnapshotEntity:
        with self._lock:
            item = self._items.get(snapshot_id)
        if item is None:
            raise NotFoundError("Snapshot not found")
        created_at, _, description, encoded = item
        return {
            "id": snapshot_id,
            "created_at": created_at,
            "description": description,
            "data": decode_payload(encoded),
        }

    def get_latest(self) -> SnapshotEntity:
        with self._lock:
            ordered = self._ordered()
        if not ordered:
            return empty_snapshot()
        return self.get(ordered[0][0])

    def delete(self, snapshot_id: str) -> None:
        with self._lock:
            if self._items.pop(snapshot_id, None) is None:
                raise NotFoundError("Snapshot not found")
        logger.info("Deleted snapshot %s", snapshot_id)

    def count(self) -> int:
        with self._lock:
            return len(self._items)

    def is_ready(self) -> bool:
        return True


# PUBLIC_INTERFACE
@lru_cache(maxsize=1)
def get_snapshot_store() -> SnapshotStore:
    """
    Return the configured snapshot store based on settings.
    - memory: InMemorySnapshotStore
    - sqlite: SQLiteSnapshotStore at SQLITE_DB_PATH
    The instance is shared for the lifetime of the process.
    """
    settings = get_settings()
    if settings.persistence_backend == "sqlite":
        from .db import SQLiteSnapshotStore

        return SQLiteSnapshotStore(settings.sqlite_db_path)
    return InMemorySnapshotStore()
