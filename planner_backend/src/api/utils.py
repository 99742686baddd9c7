from __future__ import annotations

import time
import uuid
from datetime import datetime
from typing import Container, Optional


# PUBLIC_INTERFACE
def new_entity_id() -> str:
    """Return a fresh identifier for a project or task."""
    return uuid.uuid4().hex


# PUBLIC_INTERFACE
def new_snapshot_id(taken: Container[str] = ()) -> str:
    """
    Return a timestamp-derived snapshot id (milliseconds since the epoch).

    Args:
        taken: Ids already in use. The value is bumped until it is free, so two
            snapshots saved within the same millisecond still get distinct ids.
    """
    value = int(time.time() * 1000)
    while str(value) in taken:
        value += 1
    return str(value)


# PUBLIC_INTERFACE
def monotonic_now(previous: Optional[datetime]) -> datetime:
    """
    Return the current time, never earlier than `previous`.

    Keeps store-assigned creation timestamps non-decreasing when the wall clock
    steps backwards between two writes.
    """
    now = datetime.now()
    if previous is not None and now < previous:
        return previous
    return now
