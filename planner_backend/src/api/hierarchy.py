"""
Conversion between flat task rows and nested task trees.

Rows reference their parent by id. The nested view is derived on every read
and never stored in relational form. Rows whose parent id points at a task
that does not exist (orphans) are left out of the derived tree; use
`find_orphans` to report them.

Writers keep the parent graph acyclic (see the repositories and the state
controller); `build_hierarchy` only reports a cycle it runs into.
"""
from __future__ import annotations

from collections import defaultdict
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from .errors import ValidationError
from .schemas import MAX_TASK_DEPTH, TaskNode, TaskStatus, tree_depth


def _node_from_row(row: Mapping[str, Any], subtasks: List[TaskNode]) -> TaskNode:
    # Rows from databases that predate the description/sort_order columns lack them
    return TaskNode(
        id=str(row["id"]),
        project_id=str(row["project_id"]),
        parent_id=None if row.get("parent_id") is None else str(row["parent_id"]),
        title=row["title"],
        description=row.get("description") or "",
        status=row.get("status") or TaskStatus.PENDING,
        sort_order=row.get("sort_order") or 0,
        subtasks=subtasks,
    )


# PUBLIC_INTERFACE
def build_hierarchy(flat_tasks: Sequence[Mapping[str, Any]], parent_id: Optional[str] = None) -> List[TaskNode]:
    """
    Build the ordered list of tasks whose parent is `parent_id`, each with its
    subtasks filled in. Works on an explicit stack, so depth is not bounded by
    the interpreter's recursion limit.

    Args:
        flat_tasks: Task rows with at least id, project_id, parent_id and title.
            Their relative order is kept; callers pass them in creation order.
        parent_id: Parent to collect children for. None selects top-level tasks.

    Returns:
        List of TaskNode; empty when no row references `parent_id`.

    Raises:
        ValidationError: the rows below `parent_id` reference each other in a cycle.
    """
    children: Dict[Optional[str], List[int]] = defaultdict(list)
    for index, row in enumerate(flat_tasks):
        key = None if row.get("parent_id") is None else str(row["parent_id"])
        children[key].append(index)

    built: Dict[int, TaskNode] = {}
    on_path: Set[int] = set()
    # (row index, children already pushed); a row is built once all its children are
    stack: List[Tuple[int, bool]] = [(i, False) for i in reversed(children.get(parent_id, []))]
    while stack:
        index, expanded = stack.pop()
        row = flat_tasks[index]
        kids = children.get(str(row["id"]), [])
        if expanded:
            on_path.discard(index)
            built[index] = _node_from_row(row, [built[k] for k in kids])
            continue
        if any(k in on_path for k in kids):
            raise ValidationError(f"Task '{row['id']}' is its own ancestor")
        on_path.add(index)
        stack.append((index, True))
        stack.extend((k, False) for k in reversed(kids))

    return [built[i] for i in children.get(parent_id, [])]


# PUBLIC_INTERFACE
def count_tasks(tree: Iterable[TaskNode]) -> int:
    """Return the number of tasks in `tree`, subtasks included."""
    total = 0
    stack = list(tree)
    while stack:
        task = stack.pop()
        total += 1
        stack.extend(task.subtasks)
    return total


# PUBLIC_INTERFACE
def check_depth(tree: Iterable[TaskNode], label: str = "Task tree") -> None:
    """Raise ValidationError when `tree` nests deeper than MAX_TASK_DEPTH levels."""
    depth = tree_depth(tree)
    if depth > MAX_TASK_DEPTH:
        raise ValidationError(f"{label} is {depth} levels deep; at most {MAX_TASK_DEPTH} are supported")


# PUBLIC_INTERFACE
def flatten_hierarchy(tree: Iterable[TaskNode]) -> List[Dict[str, Any]]:
    """
    Flatten nested tasks into rows without `subtasks`, parents before their
    children, so that `build_hierarchy(flatten_hierarchy(t))` rebuilds `t`.
    """
    rows: List[Dict[str, Any]] = []
    stack = list(reversed(list(tree)))
    while stack:
        task = stack.pop()
        rows.append(task.model_dump(mode="json", exclude={"subtasks"}))
        stack.extend(reversed(task.subtasks))
    return rows


# PUBLIC_INTERFACE
def find_orphans(flat_tasks: Sequence[Mapping[str, Any]]) -> List[Mapping[str, Any]]:
    """Return the rows whose parent id references a task absent from `flat_tasks`."""
    ids = {str(row["id"]) for row in flat_tasks}
    return [
        row for row in flat_tasks
        if row.get("parent_id") is not None and str(row["parent_id"]) not in ids
    ]
